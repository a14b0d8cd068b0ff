# shopcheckout/schemas/checkout.py
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import ConfigDict, Field, field_serializer

from .base import CamelModel
from .cart import CartLine
from .shipping import DeliveryAddress, ServiceTier
from .voucher import VoucherSelection


class PricingNotice(CamelModel):
    level: Literal["info", "warning", "error"]
    code: str
    message: str
    store_id: Optional[str] = None
    voucher_code: Optional[str] = None


class ReconciliationState(str, Enum):
    NO_BACKEND = "NO_BACKEND"      # превью сервера нет
    AGREED = "AGREED"              # выбора нет, сервер скидок тоже не насчитал
    BACKEND_ONLY = "BACKEND_ONLY"  # выбора нет, скидка сервера показана как предполагаемая
    SELECTION = "SELECTION"        # выбор покупателя приоритетнее, излишек сервера - "прочая скидка"


class StoreSummary(CamelModel):
    model_config = ConfigDict(frozen=True)

    store_id: str
    store_name: str
    subtotal_base: int
    subtotal_after_platform: int
    platform_discount: int
    store_voucher_discount: int
    product_voucher_discount: int
    shipping_fee: int
    store_grand_total: int
    service_tier: Optional[ServiceTier] = None
    shipping_error: Optional[str] = None
    applied_store_voucher_code: Optional[str] = None
    applied_product_voucher_codes: Dict[str, str] = Field(default_factory=dict)
    # Корректировки сверки с сервером (только для отображения)
    reconciliation: ReconciliationState = ReconciliationState.NO_BACKEND
    inferred_store_discount: int = 0
    other_store_discount: int = 0
    backend_grand_total: Optional[int] = None


class CheckoutSummary(CamelModel):
    model_config = ConfigDict(frozen=True)

    per_store: List[StoreSummary]
    overall_subtotal: int
    overall_platform_discount: int
    overall_voucher_discount: int
    overall_shipping: int
    overall_grand_total: int
    # Расчет клиента без учета корректировок сверки
    client_grand_total: int
    overall_adjustment_discount: int = 0
    backend_grand_total: Optional[int] = None
    reconciliation: ReconciliationState = ReconciliationState.NO_BACKEND
    notices: List[PricingNotice] = Field(default_factory=list)


# --- Превью заказа на сервере ---

class PreviewStore(CamelModel):
    store_id: str
    store_name: str = ""
    subtotal: float = 0
    shipping_fee: float = 0
    platform_discount: float = 0
    store_discount: float = 0
    discount_total: float = 0
    grand_total: float = 0
    shipping_service_type_id: Optional[int] = None


class CheckoutPreview(CamelModel):
    overall_subtotal: float = 0
    overall_shipping: float = 0
    overall_discount: float = 0
    overall_grand_total: float = 0
    stores: List[PreviewStore] = Field(default_factory=list)

    def store(self, store_id: str) -> Optional[PreviewStore]:
        return next((s for s in self.stores if s.store_id == store_id), None)


# --- Тело запроса на оформление ---

class CheckoutItemPayload(CamelModel):
    type: Literal["PRODUCT", "COMBO"]
    quantity: int
    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    combo_id: Optional[str] = None


class StoreVoucherPayload(CamelModel):
    store_id: str
    codes: List[str]


class PlatformVoucherPayload(CamelModel):
    campaign_product_id: str
    quantity: int


class CheckoutRequestPayload(CamelModel):
    items: List[CheckoutItemPayload]
    address_id: Optional[str] = None
    message: Optional[str] = None
    store_vouchers: Optional[List[StoreVoucherPayload]] = None
    platform_vouchers: Optional[List[PlatformVoucherPayload]] = None
    service_type_ids: Optional[Dict[str, int]] = None

    @field_serializer("items")
    def serialize_items(self, items: List[CheckoutItemPayload]):
        # у позиции передается только один из productId / variantId / comboId
        return [item.model_dump(by_alias=True, exclude_none=True) for item in items]

    def to_request(self) -> dict:
        return self.model_dump(by_alias=True)


class CheckoutOrder(CamelModel):
    model_config = ConfigDict(extra="allow")

    id: str
    order_code: Optional[str] = None
    status: Optional[str] = None
    store_id: Optional[str] = None
    store_name: Optional[str] = None
    total_amount: Optional[float] = None
    shipping_fee_total: Optional[float] = None
    discount_total: Optional[float] = None
    grand_total: Optional[float] = None


# --- Схемы HTTP API сервиса ---

class CheckoutSnapshotRequest(CamelModel):
    lines: List[CartLine]
    selection: VoucherSelection = Field(default_factory=VoucherSelection)
    address: Optional[DeliveryAddress] = None
    # None - к оформлению выбраны все позиции
    selected_line_ids: Optional[List[str]] = None


class CheckoutSubmitResponse(CamelModel):
    orders: List[CheckoutOrder]
    summary: CheckoutSummary
