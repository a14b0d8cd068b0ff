# shopcheckout/core/limiter.py

import logging
from typing import Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from shopcheckout.core.config import settings

logger = logging.getLogger(__name__)


def key_func(request: Request) -> str:
    """
    Определяет, как идентифицировать запрос для применения лимита.
    Приоритет: ID покупателя (если уже извлечен из токена) -> IP-адрес.
    """
    customer_id: Optional[str] = getattr(request.state, "customer_id", None)
    if customer_id:
        return customer_id
    return get_remote_address(request)


# Хранилище счетчиков задается в настройках (redis:// в проде).
limiter = Limiter(
    key_func=key_func,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    strategy="moving-window",
)
