# shopcheckout/schemas/shipping.py
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field

from .base import CamelModel


class ServiceTier(str, Enum):
    LIGHT = "LIGHT"  # тариф A, до порога веса включительно
    HEAVY = "HEAVY"  # тариф B


class DeliveryAddress(CamelModel):
    """Выбранный адрес покупателя (коды перевозчика)."""
    id: str = Field(validation_alias=AliasChoices("id", "addressId"))
    province_code: Optional[str] = None
    district_id: Optional[int] = None
    ward_code: Optional[str] = None
    note: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(self.province_code and self.district_id and self.ward_code)


class OriginAddress(CamelModel):
    district_code: str
    ward_code: str
    source: Literal["store", "product"] = "store"


# Запрос к перевозчику уходит в snake_case, как в его API
class CarrierFeeItem(BaseModel):
    name: str
    quantity: int
    length: int
    width: int
    height: int
    weight: int  # граммы


class CarrierFeeRequest(BaseModel):
    service_type_id: int
    from_district_id: int
    from_ward_code: str
    to_district_id: int
    to_ward_code: str
    weight: int  # граммы
    items: List[CarrierFeeItem]


class ShippingQuote(CamelModel):
    store_id: str
    fee_amount: int = 0
    service_tier: ServiceTier
    weight_grams: int = 0
    origin_resolved: bool = False
    error: Optional[str] = None


class ShippingEstimate(CamelModel):
    quotes: Dict[str, ShippingQuote] = Field(default_factory=dict)
    total_fee: int = 0
    # Сводное сообщение для покупателя, если часть магазинов не рассчиталась
    error_message: Optional[str] = None
