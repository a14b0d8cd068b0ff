# shopcheckout/services/vouchers.py

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

import httpx

from shopcheckout.clients.marketplace import MarketplaceClient
from shopcheckout.schemas.cart import StoreGroup
from shopcheckout.schemas.voucher import (
    BLOCKING_STATUSES,
    PlatformCampaign,
    ProductVoucherCatalog,
    ResolvedCampaign,
    Voucher,
    VoucherScope,
    VoucherStatus,
)

logger = logging.getLogger(__name__)


def parse_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Разбирает дату из ответа бэкенда. Даты без часового пояса считаются UTC.
    Неразбираемая дата возвращает None, то есть "ограничения нет".
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        logger.debug(f"Ignoring unparseable voucher date: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _within_window(start: Optional[str], end: Optional[str], now: datetime) -> bool:
    valid_from = parse_datetime(start)
    if valid_from is not None and now < valid_from:
        return False
    valid_to = parse_datetime(end)
    if valid_to is not None and now > valid_to:
        return False
    return True


def is_voucher_active(voucher: Voucher, now: Optional[datetime] = None) -> bool:
    now = now or _utcnow()
    if voucher.status and voucher.status.upper() in BLOCKING_STATUSES:
        return False
    return _within_window(voucher.valid_from, voucher.valid_to, now)


def _campaign_active(campaign: PlatformCampaign, now: datetime) -> bool:
    if (campaign.status or "").upper() != VoucherStatus.ACTIVE.value:
        return False
    return _within_window(campaign.start_time, campaign.end_time, now)


def resolve_platform_campaign(
    catalog: ProductVoucherCatalog, now: Optional[datetime] = None
) -> Optional[ResolvedCampaign]:
    """
    Находит первую активную кампанию платформы, у которой есть активный
    ваучер. Новый список platformVouchers приоритетнее старого platform.
    """
    now = now or _utcnow()
    campaigns = catalog.platform_campaigns or catalog.legacy_platform_campaigns
    for campaign in campaigns:
        if not _campaign_active(campaign, now):
            continue
        for item in campaign.vouchers:
            status = (item.status or VoucherStatus.ACTIVE.value).upper()
            if status != VoucherStatus.ACTIVE.value:
                continue
            if not _within_window(item.start_time, item.end_time, now):
                continue
            return ResolvedCampaign(
                campaign_id=item.campaign_id or campaign.campaign_id,
                platform_voucher_id=item.platform_voucher_id,
            )
    return None


def dedupe_by_code(vouchers: Iterable[Voucher]) -> List[Voucher]:
    seen = set()
    result = []
    for voucher in vouchers:
        if voucher.code in seen:
            continue
        seen.add(voucher.code)
        result.append(voucher)
    return result


class VoucherCache:
    """
    Кеш ваучеров одной сессии оформления.
    Ключ - множество id позиций корзины: пока оно не меняется, записи только
    добавляются; при изменении кеш сбрасывается целиком.
    """

    def __init__(self):
        self.key: Optional[FrozenSet[str]] = None
        self.store_wide: Dict[str, List[Voucher]] = {}
        self.product: Dict[str, List[Voucher]] = {}
        self.campaigns: Dict[str, Optional[ResolvedCampaign]] = {}

    def ensure_key(self, line_ids: Iterable[str]) -> bool:
        """Возвращает True, если кеш был сброшен."""
        key = frozenset(line_ids)
        if key == self.key:
            return False
        if self.key is not None:
            logger.info("Cart line set changed, dropping voucher cache.")
        self.key = key
        self.store_wide.clear()
        self.product.clear()
        self.campaigns.clear()
        return True


class VoucherCatalog:
    """Снимок разрешенных ваучеров, с которым работает DiscountEngine."""

    def __init__(
        self,
        store_wide: Dict[str, List[Voucher]],
        product: Dict[str, List[Voucher]],
        campaigns: Dict[str, Optional[ResolvedCampaign]],
    ):
        self._store_wide = {key: list(value) for key, value in store_wide.items()}
        self._product = {key: list(value) for key, value in product.items()}
        self._campaigns = dict(campaigns)

    @staticmethod
    def _find(vouchers: Sequence[Voucher], voucher_ref: str) -> Optional[Voucher]:
        # Выбор может ссылаться как на id, так и на код ваучера
        by_id = next((v for v in vouchers if v.id == voucher_ref), None)
        return by_id or next((v for v in vouchers if v.code == voucher_ref), None)

    def store_vouchers(self, store_id: str, now: Optional[datetime] = None) -> List[Voucher]:
        """Активные магазинные ваучеры, доступные для выбора."""
        return [v for v in self._store_wide.get(store_id, []) if is_voucher_active(v, now)]

    def product_vouchers(self, line_id: str, now: Optional[datetime] = None) -> List[Voucher]:
        return [v for v in self._product.get(line_id, []) if is_voucher_active(v, now)]

    def find_store_voucher(self, store_id: str, voucher_ref: str) -> Optional[Voucher]:
        return self._find(self._store_wide.get(store_id, []), voucher_ref)

    def find_product_voucher(self, line_id: str, voucher_ref: str) -> Optional[Voucher]:
        return self._find(self._product.get(line_id, []), voucher_ref)

    def campaign_for(self, product_ref: str) -> Optional[ResolvedCampaign]:
        return self._campaigns.get(product_ref)


class VoucherCatalogResolver:
    """
    Собирает ваучеры, доступные для товаров корзины: каталог по каждому
    товару плюс магазинные ваучеры по каждому магазину. Запросы идут
    параллельно, ошибка по одному товару или магазину дает пустой список.
    """

    def __init__(self, client: MarketplaceClient):
        self.client = client

    async def fetch_product_catalog(self, product_ref: str, access_token: str | None = None) -> ProductVoucherCatalog:
        try:
            response = await self.client.get(f"/products/{product_ref}/vouchers", access_token=access_token)
            return ProductVoucherCatalog.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            if e.response.status_code != 404:
                logger.warning(f"Voucher catalog for product {product_ref} failed with {e.response.status_code}.")
        except Exception as e:
            logger.warning(f"Voucher catalog for product {product_ref} is unavailable: {e}")
        return ProductVoucherCatalog()

    async def fetch_store_vouchers(self, store_id: str, access_token: str | None = None) -> List[Voucher]:
        params = {"status": VoucherStatus.ACTIVE.value, "scope": "ALL_SHOP_VOUCHER"}
        try:
            response = await self.client.get(f"/v1/stores/{store_id}/vouchers", params=params, access_token=access_token)
        except httpx.HTTPStatusError as e:
            if e.response.status_code != 404:
                logger.warning(f"Store vouchers for {store_id} failed with {e.response.status_code}.")
            return []
        except Exception as e:
            logger.warning(f"Store vouchers for {store_id} are unavailable: {e}")
            return []

        payload = response.json()
        items = payload.get("data", payload) if isinstance(payload, dict) else payload
        if isinstance(items, dict):
            items = items.get("content") or items.get("vouchers") or []
        vouchers = []
        for raw in items or []:
            try:
                voucher = Voucher.model_validate(raw)
            except Exception as e:
                logger.warning(f"Skipping malformed store voucher for {store_id}: {e}")
                continue
            # эндпоинт отдает только магазинные ваучеры
            vouchers.append(voucher.model_copy(update={"scope": VoucherScope.STORE_WIDE}))
        return vouchers

    async def resolve(
        self,
        groups: Sequence[StoreGroup],
        cache: VoucherCache,
        access_token: str | None = None,
        now: Optional[datetime] = None,
    ) -> VoucherCatalog:
        cache.ensure_key(line.id for group in groups for line in group.lines)

        missing_stores = [g for g in groups if g.store_id not in cache.store_wide]
        missing_lines = [
            (group, line) for group in groups for line in group.lines if line.id not in cache.product
        ]
        product_refs = {line.product_ref for group in missing_stores for line in group.lines}
        product_refs.update(line.product_ref for _, line in missing_lines)
        product_refs.update(
            line.product_ref for group in groups for line in group.lines if line.product_ref not in cache.campaigns
        )
        refs = sorted(product_refs)
        resolved_stores = [g for g in missing_stores if g.resolved]

        catalogs_list, store_lists = await asyncio.gather(
            asyncio.gather(*(self.fetch_product_catalog(ref, access_token) for ref in refs)),
            asyncio.gather(*(self.fetch_store_vouchers(g.store_id, access_token) for g in resolved_stores)),
        )
        catalogs: Dict[str, ProductVoucherCatalog] = dict(zip(refs, catalogs_list))
        from_store_endpoint = {g.store_id: vouchers for g, vouchers in zip(resolved_stores, store_lists)}

        for group in missing_stores:
            candidates = list(from_store_endpoint.get(group.store_id, []))
            for line in group.lines:
                catalog = catalogs.get(line.product_ref)
                if catalog is None:
                    continue
                candidates.extend(v for v in catalog.shop_vouchers if v.scope == VoucherScope.STORE_WIDE)
            cache.store_wide[group.store_id] = dedupe_by_code(candidates)

        for _, line in missing_lines:
            catalog = catalogs.get(line.product_ref) or ProductVoucherCatalog()
            cache.product[line.id] = dedupe_by_code(
                v for v in catalog.shop_vouchers
                if v.scope == VoucherScope.PRODUCT and (not v.product_ids or line.product_ref in v.product_ids)
            )

        for ref, catalog in catalogs.items():
            if ref not in cache.campaigns:
                cache.campaigns[ref] = resolve_platform_campaign(catalog, now)

        return VoucherCatalog(cache.store_wide, cache.product, cache.campaigns)
