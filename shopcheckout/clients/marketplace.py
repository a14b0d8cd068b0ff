# shopcheckout/clients/marketplace.py

import httpx
from shopcheckout.core.config import settings
import logging

logger = logging.getLogger(__name__)

class MarketplaceClient:
    """
    Асинхронный клиент для REST API бэкенда маркетплейса.
    Токен покупателя передается в каждый вызов отдельно: сам клиент
    не хранит сессию и разделяется между всеми запросами.
    """
    def __init__(self, base_url: str, timeout: float = 20.0, read_timeout: float = 60.0,
                 transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = base_url.rstrip("/")
        timeouts = httpx.Timeout(timeout, read=read_timeout)
        self.async_client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeouts,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @staticmethod
    def _headers(access_token: str | None) -> dict:
        if not access_token:
            return {}
        return {"Authorization": f"Bearer {access_token}"}

    async def get(self, endpoint: str, params: dict = None, access_token: str | None = None) -> httpx.Response:
        """
        Выполняет GET-запрос. В случае успеха возвращает объект Response.
        В случае HTTP-ошибки (4xx/5xx) выбрасывает исключение.
        """
        try:
            response = await self.async_client.get(endpoint, params=params, headers=self._headers(access_token))
            response.raise_for_status()
            return response
        except httpx.RequestError as e:
            logger.error(f"Network error during GET request to {e.request.url!r}.", exc_info=True)
            raise
        except httpx.HTTPStatusError as e:
            # 404 для этого API - штатный ответ "ничего нет", не засоряем лог трейсбеком
            if e.response.status_code == 404:
                logger.info(f"GET {e.request.url!r} returned 404.")
            else:
                logger.error(f"HTTP error during GET request to {e.request.url!r}: {e.response.text}", exc_info=True)
            raise

    async def post(self, endpoint: str, json: dict, access_token: str | None = None) -> dict:
        """
        Выполняет POST-запрос. В случае успеха возвращает JSON-ответ (dict).
        В случае HTTP-ошибки (4xx/5xx) выбрасывает исключение.
        """
        try:
            response = await self.async_client.post(endpoint, json=json, headers=self._headers(access_token))
            response.raise_for_status()
            return response.json()
        except httpx.RequestError as e:
            logger.error(f"Network error during POST request to {e.request.url!r}.", exc_info=True)
            raise
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.info(f"POST {e.request.url!r} returned 404.")
            else:
                logger.error(f"HTTP error during POST request to {e.request.url!r}: {e.response.text}", exc_info=True)
            raise

    async def aclose(self):
        await self.async_client.aclose()

# Создаем синглтон
market_client = MarketplaceClient(
    base_url=settings.MARKET_API_URL,
    timeout=settings.MARKET_API_TIMEOUT,
    read_timeout=settings.MARKET_API_READ_TIMEOUT,
)
