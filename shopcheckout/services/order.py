# shopcheckout/services/order.py

import logging
from typing import Dict, List, Mapping, Optional, Sequence

import httpx
from pydantic import ValidationError

from shopcheckout.clients.marketplace import MarketplaceClient
from shopcheckout.core import locales
from shopcheckout.core.logging_config import throttled_log
from shopcheckout.schemas.cart import CartLine, LineKind, ProductMeta, StoreGroup
from shopcheckout.schemas.checkout import (
    CheckoutItemPayload,
    CheckoutOrder,
    CheckoutPreview,
    CheckoutRequestPayload,
    PlatformVoucherPayload,
    StoreVoucherPayload,
)
from shopcheckout.schemas.shipping import DeliveryAddress
from shopcheckout.services.discount import GroupDiscount
from shopcheckout.services.shipping import select_service_tier, service_type_id, total_weight_grams
from shopcheckout.services.vouchers import VoucherCatalog

logger = logging.getLogger(__name__)


class CheckoutSubmissionError(Exception):
    """Сервер отклонил создание заказа. Повторно автоматически не отправляется."""

    BAD_REQUEST = "BAD_REQUEST"
    OUT_OF_STOCK = "OUT_OF_STOCK"
    INVALID_ADDRESS = "INVALID_ADDRESS"
    NOT_FOUND = "NOT_FOUND"
    QUANTITY_EXCEEDED = "QUANTITY_EXCEEDED"
    INVALID_VOUCHER = "INVALID_VOUCHER"
    UNPROCESSABLE = "UNPROCESSABLE"
    AUTH_EXPIRED = "AUTH_EXPIRED"
    SERVER_ERROR = "SERVER_ERROR"
    NETWORK = "NETWORK"
    UNKNOWN = "UNKNOWN"

    def __init__(self, category: str, status_code: Optional[int], message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.category = category
        self.status_code = status_code
        self.message = message
        self.detail = detail


def _backend_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict):
        return body.get("message") or body.get("detail")
    return None


def categorize_submission_error(status_code: int, backend_message: Optional[str]) -> CheckoutSubmissionError:
    text = (backend_message or "").lower()
    if status_code == 400:
        return CheckoutSubmissionError(
            CheckoutSubmissionError.BAD_REQUEST, status_code, locales.ERROR_SUBMIT_BAD_REQUEST, backend_message
        )
    if status_code == 404:
        if "product" in text:
            category, message = CheckoutSubmissionError.OUT_OF_STOCK, locales.ERROR_SUBMIT_OUT_OF_STOCK
        elif "address" in text:
            category, message = CheckoutSubmissionError.INVALID_ADDRESS, locales.ERROR_SUBMIT_INVALID_ADDRESS
        else:
            category, message = CheckoutSubmissionError.NOT_FOUND, locales.ERROR_SUBMIT_NOT_FOUND
        return CheckoutSubmissionError(category, status_code, message, backend_message)
    if status_code == 409:
        if "quantity" in text:
            category, message = CheckoutSubmissionError.QUANTITY_EXCEEDED, locales.ERROR_SUBMIT_QUANTITY_EXCEEDED
        else:
            category, message = CheckoutSubmissionError.OUT_OF_STOCK, locales.ERROR_SUBMIT_CONFLICT
        return CheckoutSubmissionError(category, status_code, message, backend_message)
    if status_code == 422:
        if "voucher" in text:
            category, message = CheckoutSubmissionError.INVALID_VOUCHER, locales.ERROR_SUBMIT_INVALID_VOUCHER
        else:
            category, message = CheckoutSubmissionError.UNPROCESSABLE, locales.ERROR_SUBMIT_UNPROCESSABLE
        return CheckoutSubmissionError(category, status_code, message, backend_message)
    if status_code == 401:
        return CheckoutSubmissionError(
            CheckoutSubmissionError.AUTH_EXPIRED, status_code, locales.ERROR_SUBMIT_AUTH_EXPIRED, backend_message
        )
    if status_code >= 500:
        return CheckoutSubmissionError(
            CheckoutSubmissionError.SERVER_ERROR, status_code, locales.ERROR_SUBMIT_SERVER_ERROR, backend_message
        )
    return CheckoutSubmissionError(
        CheckoutSubmissionError.UNKNOWN, status_code, backend_message or locales.ERROR_SUBMIT_DEFAULT, backend_message
    )


def build_item(line: CartLine) -> CheckoutItemPayload:
    if line.kind == LineKind.COMBO:
        return CheckoutItemPayload(type="COMBO", quantity=line.quantity, combo_id=line.product_ref)
    if line.variant_ref:
        return CheckoutItemPayload(type="PRODUCT", quantity=line.quantity, variant_id=line.variant_ref)
    return CheckoutItemPayload(type="PRODUCT", quantity=line.quantity, product_id=line.product_ref)


class OrderPayloadBuilder:
    """Тело запроса превью и оформления заказа из итогового выбора покупателя."""

    def build(
        self,
        groups: Sequence[StoreGroup],
        discounts: Mapping[str, GroupDiscount],
        catalog: Optional[VoucherCatalog],
        metas: Mapping[str, ProductMeta],
        address: Optional[DeliveryAddress] = None,
    ) -> CheckoutRequestPayload:
        items = [build_item(line) for group in groups for line in group.lines]

        store_vouchers = []
        for group in groups:
            discount = discounts.get(group.store_id)
            if discount is None:
                continue
            codes = []
            if discount.applied_store_voucher_code:
                codes.append(discount.applied_store_voucher_code)
            for line in group.lines:
                code = discount.applied_product_voucher_codes.get(line.id)
                if code and code not in codes:
                    codes.append(code)
            if codes:
                store_vouchers.append(StoreVoucherPayload(store_id=group.store_id, codes=codes))

        platform_usage: Dict[str, int] = {}
        for group in groups:
            for line in group.lines:
                if line.kind != LineKind.PRODUCT or not line.in_platform_campaign or line.campaign_quota_exceeded:
                    continue
                campaign = catalog.campaign_for(line.product_ref) if catalog else None
                if campaign is None or not campaign.campaign_product_id:
                    continue
                usable = line.quantity
                if line.campaign_remaining_units is not None:
                    usable = max(0, min(line.quantity, line.campaign_remaining_units))
                key = campaign.campaign_product_id
                platform_usage[key] = platform_usage.get(key, 0) + usable
        platform_vouchers = [
            PlatformVoucherPayload(campaign_product_id=key, quantity=qty)
            for key, qty in platform_usage.items() if qty > 0
        ]

        service_type_ids = {
            group.store_id: service_type_id(select_service_tier(total_weight_grams(group.lines, metas)))
            for group in groups if group.resolved
        }

        return CheckoutRequestPayload(
            items=items,
            address_id=address.id if address else None,
            message=address.note if address else None,
            store_vouchers=store_vouchers or None,
            platform_vouchers=platform_vouchers or None,
            service_type_ids=service_type_ids or None,
        )


async def fetch_checkout_preview(
    client: MarketplaceClient, customer_id: str, payload: CheckoutRequestPayload, access_token: str | None = None
) -> Optional[CheckoutPreview]:
    """
    Превью заказа на сервере. Недоступное превью не ошибка: сводка
    просто остается без сверки.
    """
    try:
        response = await client.post(
            f"/v1/customers/{customer_id}/cart/checkout/preview", json=payload.to_request(), access_token=access_token
        )
        data = response.get("data") if isinstance(response, dict) else None
        if not data:
            return None
        return CheckoutPreview.model_validate(data)
    except (httpx.HTTPStatusError, httpx.RequestError, ValidationError, ValueError) as e:
        throttled_log(
            "checkout-preview-failed",
            lambda: logger.warning(f"Checkout preview for customer {customer_id} is unavailable: {e}"),
        )
        return None


async def submit_checkout(
    client: MarketplaceClient, customer_id: str, payload: CheckoutRequestPayload, access_token: str | None = None
) -> List[CheckoutOrder]:
    """
    Создает заказы (по одному на магазин) с оплатой при получении.
    Ошибки сервера превращаются в CheckoutSubmissionError с категорией.
    """
    request = payload.to_request()
    logger.info(
        f"Submitting checkout for customer {customer_id}: {len(payload.items)} item(s), "
        f"store vouchers={request.get('storeVouchers')}, platform vouchers={request.get('platformVouchers')}"
    )
    try:
        response = await client.post(
            f"/v1/customers/{customer_id}/cart/checkout-cod", json=request, access_token=access_token
        )
    except httpx.HTTPStatusError as e:
        error = categorize_submission_error(e.response.status_code, _backend_message(e.response))
        logger.warning(f"Checkout for customer {customer_id} rejected: {error.category} ({error.detail})")
        raise error from e
    except httpx.RequestError as e:
        raise CheckoutSubmissionError(CheckoutSubmissionError.NETWORK, None, locales.ERROR_SUBMIT_NETWORK, str(e)) from e

    data = response.get("data") if isinstance(response, dict) else response
    if isinstance(data, dict):
        data = data.get("orders") or [data]
    orders = [CheckoutOrder.model_validate(item) for item in data or []]
    logger.info(f"Checkout for customer {customer_id} created {len(orders)} order(s).")
    return orders
