# shopcheckout/schemas/cart.py
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, Field, model_validator

from .base import CamelModel


class LineKind(str, Enum):
    PRODUCT = "PRODUCT"
    COMBO = "COMBO"


class CartLine(CamelModel):
    """
    Позиция корзины. Принимает как собственные имена полей, так и имена
    из ответа корзины бэкенда (cartItemId, refId, platformCampaignPrice и т.д.).
    """
    id: str = Field(validation_alias=AliasChoices("id", "cartItemId", "cart_item_id"))
    kind: LineKind = Field(LineKind.PRODUCT, validation_alias=AliasChoices("kind", "type"))
    product_ref: str = Field(validation_alias=AliasChoices("productRef", "product_ref", "refId"))
    variant_ref: Optional[str] = Field(None, validation_alias=AliasChoices("variantRef", "variant_ref", "variantId"))
    name: str = ""
    quantity: int = Field(ge=1)
    # Текущая цена за единицу (уже с учетом серверной кампании, если она есть)
    unit_price: Optional[float] = Field(None, ge=0)
    # Цена до кампании платформы
    base_unit_price: Optional[float] = Field(None, ge=0)
    platform_campaign_unit_price: Optional[float] = Field(
        None, ge=0,
        validation_alias=AliasChoices("platformCampaignUnitPrice", "platform_campaign_unit_price", "platformCampaignPrice"),
    )
    in_platform_campaign: bool = False
    campaign_quota_exceeded: bool = Field(
        False, validation_alias=AliasChoices("campaignQuotaExceeded", "campaign_quota_exceeded", "campaignUsageExceeded")
    )
    campaign_remaining_units: Optional[int] = Field(
        None, validation_alias=AliasChoices("campaignRemainingUnits", "campaign_remaining_units", "campaignRemaining")
    )

    @model_validator(mode="after")
    def fill_prices(self) -> "CartLine":
        if self.base_unit_price is None and self.unit_price is None:
            raise ValueError("either baseUnitPrice or unitPrice is required")
        if self.base_unit_price is None:
            self.base_unit_price = self.unit_price
        if self.unit_price is None:
            self.unit_price = self.base_unit_price
        if self.platform_campaign_unit_price is not None and self.platform_campaign_unit_price > self.base_unit_price:
            raise ValueError("platformCampaignUnitPrice must not exceed baseUnitPrice")
        return self

    @property
    def campaign_price_active(self) -> bool:
        return (
            self.in_platform_campaign
            and not self.campaign_quota_exceeded
            and self.platform_campaign_unit_price is not None
        )

    @property
    def post_platform_unit_price(self) -> float:
        """Цена после слоя платформы."""
        if self.campaign_price_active:
            return self.platform_campaign_unit_price
        if self.in_platform_campaign and self.campaign_quota_exceeded:
            # квота кампании исчерпана - покупатель платит полную цену
            return self.base_unit_price
        return self.unit_price

    @property
    def voucher_unit_price(self) -> float:
        """Цена, от которой считается товарный ваучер."""
        if self.campaign_price_active:
            return self.platform_campaign_unit_price
        return self.base_unit_price


class ProductMeta(CamelModel):
    """Метаданные товара, нужные для группировки по магазинам и расчета доставки."""
    product_ref: str = Field(validation_alias=AliasChoices("productRef", "product_ref", "productId"))
    store_id: str
    store_name: str = ""
    weight_kg: Optional[float] = Field(None, validation_alias=AliasChoices("weightKg", "weight_kg", "weight"))
    origin_district_code: Optional[str] = Field(
        None, validation_alias=AliasChoices("originDistrictCode", "origin_district_code", "districtCode")
    )
    origin_ward_code: Optional[str] = Field(
        None, validation_alias=AliasChoices("originWardCode", "origin_ward_code", "wardCode")
    )


class StoreGroup(CamelModel):
    store_id: str
    store_name: str
    lines: List[CartLine]
    # False для синтетической группы "unknown-{productRef}"
    resolved: bool = True
