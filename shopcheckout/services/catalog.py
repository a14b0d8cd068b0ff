# shopcheckout/services/catalog.py

import asyncio
import json
import logging
from typing import Dict, Iterable, Optional

import httpx
from redis.asyncio import Redis

from shopcheckout.clients.marketplace import MarketplaceClient
from shopcheckout.core.config import settings
from shopcheckout.schemas.cart import ProductMeta

logger = logging.getLogger(__name__)


def _cache_key(product_ref: str) -> str:
    return f"product_meta:{product_ref}"


async def get_product_meta(client: MarketplaceClient, redis: Redis, product_ref: str) -> Optional[ProductMeta]:
    """
    Получает метаданные товара (магазин, вес, коды адреса отправки),
    используя кеширование в Redis. Товар, которого нет (404), - не ошибка.
    """
    cached = await redis.get(_cache_key(product_ref))
    if cached:
        try:
            return ProductMeta.model_validate(json.loads(cached))
        except Exception as e:
            logger.warning(f"Failed to validate cached product meta for {product_ref}: {e}. Fetching fresh data.")

    try:
        response = await client.get(f"/products/{product_ref}")
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 404:
            return None
        raise

    payload = response.json()
    data = payload.get("data", payload) if isinstance(payload, dict) else {}
    if not data.get("storeId"):
        logger.warning(f"Product {product_ref} has no storeId, cannot group it by store.")
        return None

    meta = ProductMeta(
        product_ref=product_ref,
        store_id=str(data["storeId"]),
        store_name=data.get("storeName") or "",
        weight_kg=data.get("weight") if data.get("weight") is not None else settings.DEFAULT_WEIGHT_KG,
        origin_district_code=str(data["districtCode"]) if data.get("districtCode") else None,
        origin_ward_code=str(data["wardCode"]) if data.get("wardCode") else None,
    )
    await redis.set(_cache_key(product_ref), meta.model_dump_json(), ex=settings.PRODUCT_CACHE_TTL_SECONDS)
    return meta


async def load_product_metas(
    client: MarketplaceClient, redis: Redis, product_refs: Iterable[str]
) -> Dict[str, ProductMeta]:
    """
    Параллельно загружает метаданные для всех товаров корзины.
    Товары, которые не удалось загрузить, просто отсутствуют в результате.
    """
    refs = list(dict.fromkeys(product_refs))

    async def fetch(ref: str):
        try:
            return ref, await get_product_meta(client, redis, ref)
        except Exception:
            logger.error(f"Failed to load product meta for {ref}", exc_info=True)
            return ref, None

    results = await asyncio.gather(*(fetch(ref) for ref in refs))
    return {ref: meta for ref, meta in results if meta is not None}
