# tests/conftest.py
import os

# Settings() читается при импорте пакета, поэтому окружение задается до импортов
os.environ.setdefault("MARKET_API_URL", "http://market.test/api")
os.environ.setdefault("REDIS_HOST", "localhost")
os.environ.setdefault("REDIS_PORT", "6379")
os.environ.setdefault("RATE_LIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("RECOMPUTE_DEBOUNCE_MS", "10")
os.environ.setdefault("RECOMPUTE_THROTTLE_MS", "0")

import httpx
import pytest

from shopcheckout.clients.marketplace import MarketplaceClient
from shopcheckout.core import logging_config
from shopcheckout.schemas.cart import CartLine, ProductMeta, StoreGroup
from shopcheckout.schemas.voucher import Voucher, VoucherKind, VoucherScope

MARKET_BASE_URL = "http://market.test/api"


class FakeRedis:
    """In-memory замена redis.asyncio.Redis для нужных сервису команд."""

    def __init__(self):
        self.store = {}
        self.expirations = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None, nx=False):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.expirations[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed

    async def aclose(self):
        pass


class MarketBackend:
    """
    Фейковый бэкенд маркетплейса для httpx.MockTransport.
    Маршрут: (METHOD, путь без /api) -> (status, json) или функция request -> httpx.Response.
    Неизвестный маршрут отвечает 404.
    """

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, path, status=200, json=None, handler=None):
        self.routes[(method.upper(), path)] = handler or (status, json)

    def calls_to(self, method, path):
        return [r for r in self.calls if r.method == method.upper() and self._path(r) == path]

    @staticmethod
    def _path(request):
        return request.url.path.removeprefix("/api")

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get((request.method, self._path(request)))
        if route is None:
            return httpx.Response(404, json={"message": "not found"})
        if callable(route):
            return route(request)
        status, payload = route
        return httpx.Response(status, json=payload)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def backend():
    return MarketBackend()


@pytest.fixture
async def market(backend):
    client = MarketplaceClient(MARKET_BASE_URL, transport=httpx.MockTransport(backend))
    yield client
    await client.aclose()


@pytest.fixture(autouse=True)
def reset_log_throttle():
    logging_config._last_log_time.clear()
    yield
    logging_config._last_log_time.clear()


# --- Фабрики моделей ---

@pytest.fixture
def make_line():
    def _make(line_id="l1", product_ref="p1", quantity=1, base=100_000, **kwargs):
        return CartLine(id=line_id, product_ref=product_ref, quantity=quantity, base_unit_price=base, **kwargs)
    return _make


@pytest.fixture
def make_voucher():
    def _make(code="SHOP10", kind=VoucherKind.FIXED, scope=VoucherScope.STORE_WIDE, voucher_id=None, **kwargs):
        return Voucher(id=voucher_id or f"id-{code}", code=code, kind=kind, scope=scope, **kwargs)
    return _make


@pytest.fixture
def make_meta():
    def _make(product_ref="p1", store_id="s1", store_name="Store 1", weight_kg=0.5, **kwargs):
        return ProductMeta(product_ref=product_ref, store_id=store_id, store_name=store_name, weight_kg=weight_kg, **kwargs)
    return _make


@pytest.fixture
def make_group():
    def _make(lines, store_id="s1", store_name="Store 1", resolved=True):
        return StoreGroup(store_id=store_id, store_name=store_name, lines=list(lines), resolved=resolved)
    return _make
