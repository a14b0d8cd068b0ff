# shopcheckout/services/shipping.py

import asyncio
import json
import logging
import math
from decimal import Decimal
from typing import List, Mapping, Optional, Sequence

import httpx
from redis.asyncio import Redis
from redis.exceptions import RedisError

from shopcheckout.clients.marketplace import MarketplaceClient
from shopcheckout.core import locales
from shopcheckout.core.config import settings
from shopcheckout.core.logging_config import throttled_log
from shopcheckout.schemas.cart import CartLine, ProductMeta, StoreGroup
from shopcheckout.schemas.shipping import (
    CarrierFeeItem,
    CarrierFeeRequest,
    DeliveryAddress,
    OriginAddress,
    ServiceTier,
    ShippingEstimate,
    ShippingQuote,
)
from shopcheckout.services.discount import round_half_up

logger = logging.getLogger(__name__)


def _line_weight_kg(line: CartLine, metas: Mapping[str, ProductMeta]) -> Decimal:
    meta = metas.get(line.product_ref)
    weight = meta.weight_kg if meta is not None and meta.weight_kg is not None else settings.DEFAULT_WEIGHT_KG
    # через строку, чтобы 0.1 * 3 не превратилось в 300.00000000000006 г
    return Decimal(str(weight))


def total_weight_grams(lines: Sequence[CartLine], metas: Mapping[str, ProductMeta]) -> int:
    total_kg = sum((_line_weight_kg(line, metas) * line.quantity for line in lines), Decimal(0))
    return int(math.ceil(total_kg * 1000))


def select_service_tier(weight_grams: int) -> ServiceTier:
    return ServiceTier.LIGHT if weight_grams <= settings.LIGHT_TIER_MAX_GRAMS else ServiceTier.HEAVY


def service_type_id(tier: ServiceTier) -> int:
    return settings.SERVICE_TYPE_LIGHT if tier == ServiceTier.LIGHT else settings.SERVICE_TYPE_HEAVY


def build_fee_items(lines: Sequence[CartLine], metas: Mapping[str, ProductMeta]) -> List[CarrierFeeItem]:
    return [
        CarrierFeeItem(
            name=line.name or line.product_ref,
            quantity=line.quantity,
            length=settings.DEFAULT_PARCEL_LENGTH_CM,
            width=settings.DEFAULT_PARCEL_WIDTH_CM,
            height=settings.DEFAULT_PARCEL_HEIGHT_CM,
            weight=int(math.ceil(_line_weight_kg(line, metas) * 1000)),
        )
        for line in lines
    ]


class ShippingEstimator:
    """
    Расчет доставки по магазинам. Каждый магазин считается независимо и
    параллельно: ошибка одного магазина дает 0 и текст ошибки в его котировке,
    остальные магазины это не затрагивает.
    """

    def __init__(self, client: MarketplaceClient, redis: Redis):
        self.client = client
        self.redis = redis

    async def fetch_store_origin(self, product_ref: str, access_token: str | None = None) -> Optional[OriginAddress]:
        """Адрес отправки по умолчанию для магазина, которому принадлежит товар."""
        cache_key = f"store_origin:{product_ref}"
        try:
            cached = await self.redis.get(cache_key)
        except RedisError as e:
            logger.warning(f"Redis is unavailable for origin cache of {product_ref}: {e}")
            cached = None
        if cached:
            try:
                return OriginAddress.model_validate(json.loads(cached))
            except Exception as e:
                logger.warning(f"Failed to validate cached origin for {product_ref}: {e}")

        try:
            response = await self.client.get(f"/stores/address/default-by-product/{product_ref}", access_token=access_token)
            payload = response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            logger.warning(f"Store origin lookup for product {product_ref} failed with {e.response.status_code}.")
            return None
        except httpx.RequestError:
            return None
        except ValueError as e:
            logger.warning(f"Store origin for product {product_ref} is not valid JSON: {e}")
            return None

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not data.get("districtCode") or not data.get("wardCode"):
            return None
        origin = OriginAddress(district_code=str(data["districtCode"]), ward_code=str(data["wardCode"]), source="store")
        try:
            await self.redis.set(cache_key, origin.model_dump_json(), ex=settings.STORE_ADDRESS_CACHE_TTL_SECONDS)
        except RedisError as e:
            logger.warning(f"Failed to cache origin for {product_ref}: {e}")
        return origin

    async def resolve_origin(
        self, group: StoreGroup, metas: Mapping[str, ProductMeta], access_token: str | None = None
    ) -> Optional[OriginAddress]:
        if not group.lines:
            return None
        first_ref = group.lines[0].product_ref
        origin = await self.fetch_store_origin(first_ref, access_token)
        if origin is not None:
            return origin
        meta = metas.get(first_ref)
        if meta is not None and meta.origin_district_code and meta.origin_ward_code:
            return OriginAddress(
                district_code=meta.origin_district_code, ward_code=meta.origin_ward_code, source="product"
            )
        return None

    async def request_fee(self, request: CarrierFeeRequest, access_token: str | None = None) -> int:
        """
        Запрос стоимости у перевозчика. 404 означает "услуга недоступна" и дает 0.
        """
        try:
            data = await self.client.post("/ghn/fee", json=request.model_dump(), access_token=access_token)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return 0
            raise
        if data.get("code") == 200 and data.get("data"):
            return round_half_up(data["data"].get("service_fee") or 0)
        raise ValueError(data.get("message") or locales.SHIPPING_ERROR_UNKNOWN)

    async def quote_store(
        self,
        group: StoreGroup,
        metas: Mapping[str, ProductMeta],
        address: Optional[DeliveryAddress],
        access_token: str | None = None,
    ) -> ShippingQuote:
        weight = total_weight_grams(group.lines, metas)
        tier = select_service_tier(weight)
        quote = ShippingQuote(store_id=group.store_id, service_tier=tier, weight_grams=weight)

        if address is None or not address.is_complete:
            quote.error = locales.NOTICE_ADDRESS_INCOMPLETE
            return quote

        try:
            origin = await self.resolve_origin(group, metas, access_token)
        except Exception as e:
            logger.warning(f"Origin lookup for store {group.store_id} failed: {e}")
            origin = None
        if origin is None:
            quote.error = locales.SHIPPING_ERROR_MISSING_ORIGIN
            return quote
        quote.origin_resolved = True

        if weight <= 0:
            quote.error = locales.SHIPPING_ERROR_ZERO_WEIGHT
            return quote

        try:
            request = CarrierFeeRequest(
                service_type_id=service_type_id(tier),
                from_district_id=int(origin.district_code),
                from_ward_code=origin.ward_code,
                to_district_id=address.district_id,
                to_ward_code=address.ward_code,
                weight=weight,
                items=build_fee_items(group.lines, metas),
            )
            quote.fee_amount = await self.request_fee(request, access_token)
        except Exception as e:
            logger.warning(f"Shipping quote for store {group.store_id} failed: {e}")
            quote.error = str(e) or locales.SHIPPING_ERROR_UNKNOWN
        return quote

    async def estimate(
        self,
        groups: Sequence[StoreGroup],
        metas: Mapping[str, ProductMeta],
        address: Optional[DeliveryAddress],
        access_token: str | None = None,
    ) -> ShippingEstimate:
        quotes = await asyncio.gather(*(self.quote_store(g, metas, address, access_token) for g in groups))
        estimate = ShippingEstimate(
            quotes={q.store_id: q for q in quotes},
            total_fee=sum(q.fee_amount for q in quotes),
        )

        failed = [q for q in quotes if q.error]
        if failed:
            if address is None or not address.is_complete:
                estimate.error_message = locales.NOTICE_ADDRESS_INCOMPLETE
            else:
                names = {g.store_id: g.store_name or g.store_id for g in groups}
                details = "; ".join(f"{names[q.store_id]}: {q.error}" for q in failed)
                estimate.error_message = locales.NOTICE_SHIPPING_PARTIAL.format(details=details)

        throttled_log(
            "shipping-estimate",
            lambda: logger.info(
                f"Shipping estimated for {len(groups)} store(s): total={estimate.total_fee}, failed={len(failed)}"
            ),
        )
        return estimate
