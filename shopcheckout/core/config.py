# shopcheckout/core/config.py

from typing import List, Literal
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Бэкенд маркетплейса (корзина, товары, ваучеры, прокси к перевозчику)
    MARKET_API_URL: str
    MARKET_API_TIMEOUT: float = 20.0
    MARKET_API_READ_TIMEOUT: float = 60.0

    # Redis
    REDIS_HOST: str
    REDIS_PORT: int
    PRODUCT_CACHE_TTL_SECONDS: int = 600
    STORE_ADDRESS_CACHE_TTL_SECONDS: int = 3600

    # Политика доставки
    LIGHT_TIER_MAX_GRAMS: int = 7500
    SERVICE_TYPE_LIGHT: int = 2
    SERVICE_TYPE_HEAVY: int = 5
    DEFAULT_WEIGHT_KG: float = 0.5
    DEFAULT_PARCEL_LENGTH_CM: int = 20
    DEFAULT_PARCEL_WIDTH_CM: int = 15
    DEFAULT_PARCEL_HEIGHT_CM: int = 10

    # Debounce / throttle пересчета сводки (мс)
    RECOMPUTE_DEBOUNCE_MS: int = 1500
    RECOMPUTE_THROTTLE_MS: int = 2000

    # Сессия оформления без обращений дольше этого времени удаляется из памяти
    SESSION_IDLE_TTL_SECONDS: int = 1800

    # Политика ценообразования
    # base - minOrderValue магазинного ваучера проверяется по сумме до кампании платформы,
    # post_platform - по сумме после нее.
    MIN_ORDER_BASIS: Literal["base", "post_platform"] = "base"
    RECONCILIATION_TOLERANCE: int = 1

    LOG_THROTTLE_SECONDS: int = 90
    CHECKOUT_RATE_LIMIT: str = "20/minute"
    # Например redis://redis:6379 в проде; memory:// для локального запуска и тестов
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    ALLOWED_ORIGINS_STR: str = Field(default="http://localhost:8081", alias="ALLOWED_ORIGINS")

    @property
    def ALLOWED_ORIGINS(self) -> List[str]:
        return [origin.strip() for origin in self.ALLOWED_ORIGINS_STR.split(',') if origin.strip()]

    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}"

    model_config = SettingsConfigDict(env_file=".env", populate_by_name=True)

settings = Settings()
