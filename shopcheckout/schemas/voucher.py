# shopcheckout/schemas/voucher.py
from enum import Enum
from typing import Dict, List, Optional

from pydantic import AliasChoices, Field, model_validator

from .base import CamelModel


class VoucherScope(str, Enum):
    STORE_WIDE = "STORE_WIDE"
    PRODUCT = "PRODUCT"


class VoucherKind(str, Enum):
    PERCENT = "PERCENT"
    FIXED = "FIXED"


class VoucherStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    EXPIRED = "EXPIRED"
    USED = "USED"


# Статусы, при которых ваучер точно нельзя применить
BLOCKING_STATUSES = {VoucherStatus.INACTIVE.value, VoucherStatus.EXPIRED.value, VoucherStatus.USED.value}

# Как бэкенд называл области действия в разных версиях API
_SCOPE_ALIASES = {
    "STORE_WIDE": VoucherScope.STORE_WIDE,
    "ALL_SHOP_VOUCHER": VoucherScope.STORE_WIDE,
    "SHOP": VoucherScope.STORE_WIDE,
    "PRODUCT": VoucherScope.PRODUCT,
    "PRODUCT_VOUCHER": VoucherScope.PRODUCT,
}


class Voucher(CamelModel):
    id: str = Field(validation_alias=AliasChoices("id", "voucherId", "shopVoucherId"))
    code: str
    name: Optional[str] = None
    scope: VoucherScope = VoucherScope.STORE_WIDE
    kind: VoucherKind = Field(VoucherKind.FIXED, validation_alias=AliasChoices("kind", "type"))
    percent_value: Optional[float] = Field(
        None, validation_alias=AliasChoices("percentValue", "percent_value", "discountPercent")
    )
    fixed_value: Optional[float] = Field(
        None, validation_alias=AliasChoices("fixedValue", "fixed_value", "discountValue")
    )
    max_discount_value: Optional[float] = None
    min_order_value: Optional[float] = None
    # Даты храним строками: неразбираемая дата не делает ваучер невалидным
    valid_from: Optional[str] = Field(None, validation_alias=AliasChoices("validFrom", "valid_from", "startTime"))
    valid_to: Optional[str] = Field(None, validation_alias=AliasChoices("validTo", "valid_to", "endTime"))
    status: Optional[str] = None
    store_id: Optional[str] = None
    product_ids: List[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy_fields(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # Ваучер без маркера области действия считается магазинным
        raw_scope = data.get("scope") or data.get("scopeType")
        if isinstance(raw_scope, VoucherScope):
            data["scope"] = raw_scope
        elif raw_scope:
            data["scope"] = _SCOPE_ALIASES.get(str(raw_scope).upper(), VoucherScope.STORE_WIDE)
        else:
            data["scope"] = VoucherScope.STORE_WIDE
        data.pop("scopeType", None)
        if not (data.get("kind") or data.get("type")):
            percent = data.get("percentValue", data.get("percent_value", data.get("discountPercent")))
            data["kind"] = VoucherKind.PERCENT if percent else VoucherKind.FIXED
        return data


class PlatformVoucherItem(CamelModel):
    platform_voucher_id: Optional[str] = None
    campaign_id: Optional[str] = None
    type: Optional[str] = None
    discount_percent: Optional[float] = None
    discount_value: Optional[float] = None
    max_discount_value: Optional[float] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    status: Optional[str] = None


class PlatformCampaign(CamelModel):
    campaign_id: Optional[str] = None
    code: Optional[str] = None
    name: Optional[str] = None
    campaign_type: Optional[str] = None
    status: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    vouchers: List[PlatformVoucherItem] = Field(default_factory=list)


class ResolvedCampaign(CamelModel):
    """Активная кампания платформы для товара."""
    campaign_id: Optional[str] = None
    platform_voucher_id: Optional[str] = None

    @property
    def campaign_product_id(self) -> Optional[str]:
        return self.platform_voucher_id or self.campaign_id


class ProductVoucherCatalog(CamelModel):
    """
    Ответ каталога ваучеров по товару. Исторически бэкенд отдавал списки
    под разными именами: shop / shopVouchers и platform / platformVouchers.
    """
    shop_vouchers: List[Voucher] = Field(default_factory=list)
    platform_campaigns: List[PlatformCampaign] = Field(default_factory=list)
    legacy_platform_campaigns: List[PlatformCampaign] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def accept_both_namings(cls, data):
        if not isinstance(data, dict):
            return data
        if "data" in data and isinstance(data["data"], dict):
            data = data["data"]
        vouchers = data.get("vouchers") if isinstance(data.get("vouchers"), dict) else data
        shop = vouchers.get("shopVouchers")
        if shop is None:
            shop = vouchers.get("shop")
        return {
            "shopVouchers": shop or [],
            "platformCampaigns": vouchers.get("platformVouchers") or [],
            "legacyPlatformCampaigns": vouchers.get("platform") or [],
        }


class VoucherSelection(CamelModel):
    """
    Выбор покупателя: не более одного ваучера на ключ.
    store_wide: storeId -> id ваучера, product: cartLineId -> id ваучера.
    """
    store_wide: Dict[str, str] = Field(default_factory=dict)
    product: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.store_wide and not self.product

    def with_store_voucher(self, store_id: str, voucher_id: Optional[str]) -> "VoucherSelection":
        store_wide = dict(self.store_wide)
        if voucher_id is None:
            store_wide.pop(store_id, None)
        else:
            store_wide[store_id] = voucher_id
        return VoucherSelection(store_wide=store_wide, product=dict(self.product))

    def with_product_voucher(self, line_id: str, voucher_id: Optional[str]) -> "VoucherSelection":
        product = dict(self.product)
        if voucher_id is None:
            product.pop(line_id, None)
        else:
            product[line_id] = voucher_id
        return VoucherSelection(store_wide=dict(self.store_wide), product=product)

    def has_selection_for(self, store_id: str, line_ids) -> bool:
        return store_id in self.store_wide or any(line_id in self.product for line_id in line_ids)
