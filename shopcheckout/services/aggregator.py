# shopcheckout/services/aggregator.py

from typing import Dict, List, Mapping, Sequence

from shopcheckout.schemas.cart import CartLine, ProductMeta, StoreGroup

UNKNOWN_STORE_PREFIX = "unknown-"


def group_lines_by_store(lines: Sequence[CartLine], product_metas: Mapping[str, ProductMeta]) -> List[StoreGroup]:
    """
    Группирует позиции корзины по магазину-владельцу.
    Позиции, чей магазин еще не известен (метаданные не загружены), попадают
    в синтетическую группу "unknown-{productRef}" - ни одна позиция не теряется.
    Порядок групп и позиций внутри группы - порядок первого появления в корзине.
    """
    groups: Dict[str, StoreGroup] = {}
    for line in lines:
        meta = product_metas.get(line.product_ref)
        if meta is not None:
            key, name, resolved = meta.store_id, meta.store_name, True
        else:
            key, name, resolved = f"{UNKNOWN_STORE_PREFIX}{line.product_ref}", "", False

        group = groups.get(key)
        if group is None:
            group = StoreGroup(store_id=key, store_name=name, lines=[], resolved=resolved)
            groups[key] = group
        elif not group.store_name and name:
            group.store_name = name
        group.lines.append(line)
    return list(groups.values())


def line_store_index(groups: Sequence[StoreGroup]) -> Dict[str, str]:
    """cartLineId -> storeId"""
    return {line.id: group.store_id for group in groups for line in group.lines}


def select_lines(lines: Sequence[CartLine], selected_line_ids: Sequence[str] | None) -> List[CartLine]:
    if selected_line_ids is None:
        return list(lines)
    wanted = set(selected_line_ids)
    return [line for line in lines if line.id in wanted]
