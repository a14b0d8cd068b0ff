# shopcheckout/services/discount.py

import logging
import math
from datetime import datetime
from typing import Dict, List, Literal, Optional, Sequence

from pydantic import Field

from shopcheckout.core import locales
from shopcheckout.core.config import settings
from shopcheckout.schemas.base import CamelModel
from shopcheckout.schemas.cart import CartLine, LineKind, StoreGroup
from shopcheckout.schemas.checkout import PricingNotice
from shopcheckout.schemas.voucher import Voucher, VoucherKind, VoucherSelection
from shopcheckout.services.vouchers import VoucherCatalog, is_voucher_active

logger = logging.getLogger(__name__)

MinOrderBasis = Literal["base", "post_platform"]


def round_half_up(value: float) -> int:
    """Округление до целой денежной единицы, .5 всегда вверх."""
    return int(math.floor(value + 0.5))


def format_money(value: float) -> str:
    return f"{round_half_up(value):,}".replace(",", " ")


def compute_voucher_discount(voucher: Voucher, base: float) -> int:
    """
    Сумма скидки ваучера от базы. Результат всегда в [0, base] и не больше
    maxDiscountValue, если он задан.
    """
    if base <= 0:
        return 0
    if voucher.kind == VoucherKind.PERCENT:
        raw = base * (voucher.percent_value or 0) / 100
    else:
        raw = voucher.fixed_value or 0
    if voucher.max_discount_value is not None:
        raw = min(raw, voucher.max_discount_value)

    amount = max(0, round_half_up(raw))
    if voucher.max_discount_value is not None:
        amount = min(amount, max(0, math.floor(voucher.max_discount_value)))
    if amount > base:
        amount = math.floor(base)
    return amount


def meets_min_order(voucher: Voucher, amount: float) -> bool:
    return voucher.min_order_value is None or amount >= voucher.min_order_value


class PlatformLayer(CamelModel):
    subtotal_base: float = 0
    subtotal_after_platform: float = 0

    @property
    def platform_discount(self) -> float:
        return max(0.0, self.subtotal_base - self.subtotal_after_platform)


def platform_layer(lines: Sequence[CartLine]) -> PlatformLayer:
    return PlatformLayer(
        subtotal_base=sum(line.base_unit_price * line.quantity for line in lines),
        subtotal_after_platform=sum(line.post_platform_unit_price * line.quantity for line in lines),
    )


class GroupDiscount(CamelModel):
    """Результат DiscountEngine для одного магазина."""
    store_id: str
    subtotal_base: float
    subtotal_after_platform: float
    platform_discount: float
    store_voucher_discount: int = 0
    product_voucher_discount: int = 0
    applied_store_voucher_code: Optional[str] = None
    # cartLineId -> код
    applied_product_voucher_codes: Dict[str, str] = Field(default_factory=dict)
    notices: List[PricingNotice] = Field(default_factory=list)

    @property
    def voucher_discount(self) -> int:
        return self.store_voucher_discount + self.product_voucher_discount


class DiscountEngine:
    """
    Три слоя скидок: цена кампании платформы, магазинный ваучер и товарные
    ваучеры. Магазинный и товарные ваучеры считаются каждый от своей базы
    и складываются, результат одного никогда не уменьшает базу другого.
    """

    def __init__(self, min_order_basis: Optional[MinOrderBasis] = None):
        self.min_order_basis: MinOrderBasis = min_order_basis or settings.MIN_ORDER_BASIS

    def _check_voucher(
        self, voucher: Optional[Voucher], voucher_ref: str, eligibility_amount: float,
        store_id: str, now: Optional[datetime], notices: List[PricingNotice],
    ) -> bool:
        if voucher is None:
            logger.info(f"Selected voucher {voucher_ref} for store {store_id} is not in the resolved catalog, skipping.")
            notices.append(PricingNotice(
                level="warning", code="VOUCHER_NOT_FOUND", store_id=store_id, voucher_code=voucher_ref,
                message=locales.NOTICE_VOUCHER_NOT_FOUND.format(code=voucher_ref),
            ))
            return False
        if not is_voucher_active(voucher, now):
            notices.append(PricingNotice(
                level="warning", code="VOUCHER_INACTIVE", store_id=store_id, voucher_code=voucher.code,
                message=locales.NOTICE_VOUCHER_INACTIVE.format(code=voucher.code),
            ))
            return False
        if not meets_min_order(voucher, eligibility_amount):
            notices.append(PricingNotice(
                level="info", code="VOUCHER_MIN_ORDER", store_id=store_id, voucher_code=voucher.code,
                message=locales.NOTICE_VOUCHER_MIN_ORDER.format(
                    code=voucher.code, min_order_value=format_money(voucher.min_order_value)
                ),
            ))
            return False
        return True

    def _store_voucher(
        self, group: StoreGroup, selection: VoucherSelection, catalog: VoucherCatalog,
        now: Optional[datetime], result: GroupDiscount,
    ) -> None:
        voucher_ref = selection.store_wide.get(group.store_id)
        if not voucher_ref:
            return
        # комбо не участвуют в магазинных ваучерах
        layer = platform_layer([line for line in group.lines if line.kind == LineKind.PRODUCT])
        eligibility_amount = layer.subtotal_base if self.min_order_basis == "base" else layer.subtotal_after_platform

        voucher = catalog.find_store_voucher(group.store_id, voucher_ref)
        if not self._check_voucher(voucher, voucher_ref, eligibility_amount, group.store_id, now, result.notices):
            return
        result.store_voucher_discount = compute_voucher_discount(voucher, layer.subtotal_after_platform)
        result.applied_store_voucher_code = voucher.code

    def _product_vouchers(
        self, group: StoreGroup, selection: VoucherSelection, catalog: VoucherCatalog,
        now: Optional[datetime], result: GroupDiscount,
    ) -> None:
        for line in group.lines:
            voucher_ref = selection.product.get(line.id)
            if not voucher_ref:
                continue
            base = line.voucher_unit_price * line.quantity
            voucher = catalog.find_product_voucher(line.id, voucher_ref)
            if not self._check_voucher(voucher, voucher_ref, base, group.store_id, now, result.notices):
                continue
            # каждая позиция округляется отдельно до суммирования
            result.product_voucher_discount += compute_voucher_discount(voucher, base)
            result.applied_product_voucher_codes[line.id] = voucher.code

    def apply(
        self,
        group: StoreGroup,
        selection: VoucherSelection,
        catalog: VoucherCatalog,
        now: Optional[datetime] = None,
    ) -> GroupDiscount:
        layer = platform_layer(group.lines)
        result = GroupDiscount(
            store_id=group.store_id,
            subtotal_base=layer.subtotal_base,
            subtotal_after_platform=layer.subtotal_after_platform,
            platform_discount=layer.platform_discount,
        )
        self._store_voucher(group, selection, catalog, now, result)
        self._product_vouchers(group, selection, catalog, now, result)
        return result
