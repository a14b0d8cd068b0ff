# tests/test_session.py

import pytest

from shopcheckout.schemas.checkout import CheckoutSnapshotRequest
from shopcheckout.schemas.shipping import DeliveryAddress
from shopcheckout.schemas.voucher import VoucherSelection
from shopcheckout.services.order import CheckoutSubmissionError
from shopcheckout.services.session import CheckoutSession, SessionRegistry


@pytest.fixture
def two_store_backend(backend):
    for ref, store in (("p1", "s1"), ("p2", "s2")):
        backend.add("GET", f"/products/{ref}", json={"data": {
            "storeId": store, "storeName": store.upper(), "districtCode": "1", "wardCode": "11",
        }})
    backend.add("GET", "/products/p1/vouchers", json={"vouchers": {"shopVouchers": [
        {"voucherId": "v1", "code": "FIX10K", "type": "FIXED", "discountValue": 10000},
        {"voucherId": "v2", "code": "P5", "scope": "PRODUCT", "type": "PERCENT", "discountPercent": 5},
    ]}})
    backend.add("POST", "/ghn/fee", json={"code": 200, "data": {"service_fee": 10000}})
    return backend


def _snapshot(**kwargs):
    return CheckoutSnapshotRequest(
        lines=[
            {"id": "l1", "productRef": "p1", "quantity": 1, "baseUnitPrice": 200000},
            {"id": "l2", "productRef": "p2", "quantity": 2, "baseUnitPrice": 50000},
        ],
        address=DeliveryAddress(id="a1", province_code="79", district_id=1442, ward_code="20109"),
        **kwargs,
    )


async def test_full_pipeline(market, fake_redis, two_store_backend):
    session = CheckoutSession("cust-1", market, fake_redis)
    selection = VoucherSelection(store_wide={"s1": "v1"}, product={"l1": "v2"})

    summary = await session.recompute(_snapshot(selection=selection))

    s1, s2 = summary.per_store
    assert (s1.store_id, s2.store_id) == ("s1", "s2")
    assert s1.store_voucher_discount + s1.product_voucher_discount == 20000
    assert s1.store_grand_total == 200000 - 20000 + 10000
    assert s2.store_grand_total == 100000 + 10000
    # превью недоступно (404) - сверки нет
    assert summary.reconciliation == "NO_BACKEND"
    assert summary.overall_grand_total == summary.client_grand_total == 300000


async def test_toggling_lines_keeps_voucher_cache(market, fake_redis, two_store_backend):
    session = CheckoutSession("cust-1", market, fake_redis)

    await session.recompute(_snapshot())
    summary = await session.recompute(_snapshot(selected_line_ids=["l2"]))

    assert [s.store_id for s in summary.per_store] == ["s2"]
    assert len(two_store_backend.calls_to("GET", "/products/p1/vouchers")) == 1


async def test_state_setters_feed_scheduled_recompute(market, fake_redis, two_store_backend):
    session = CheckoutSession("cust-1", market, fake_redis)
    session.apply_snapshot(_snapshot())
    session.update_selection(VoucherSelection(store_wide={"s1": "FIX10K"}))
    session.select_lines(["l1"])

    session.schedule_recompute()
    await session.scheduler.wait()

    assert session.latest_summary.overall_voucher_discount == 10000
    assert [s.store_id for s in session.latest_summary.per_store] == ["s1"]
    await session.close()


async def test_submit_requires_address(market, fake_redis):
    session = CheckoutSession("cust-1", market, fake_redis)
    snapshot = _snapshot()
    session.apply_snapshot(snapshot)
    session.select_address(None)

    with pytest.raises(CheckoutSubmissionError) as exc_info:
        await session.submit()

    assert exc_info.value.category == CheckoutSubmissionError.BAD_REQUEST


async def test_registry_returns_same_session(market, fake_redis):
    registry = SessionRegistry()

    first = await registry.get_or_create("cust-1", market, fake_redis)

    assert await registry.get_or_create("cust-1", market, fake_redis) is first
    assert registry.get("cust-2") is None


async def test_registry_evicts_idle_sessions(mocker, market, fake_redis):
    clock = mocker.patch("shopcheckout.services.session.time.monotonic", return_value=1000.0)
    registry = SessionRegistry(idle_ttl=60)
    idle = await registry.get_or_create("cust-1", market, fake_redis)
    close = mocker.spy(idle, "close")

    clock.return_value = 1030.0
    active = await registry.get_or_create("cust-2", market, fake_redis)
    assert len(registry) == 2

    clock.return_value = 1075.0
    assert await registry.get_or_create("cust-2", market, fake_redis) is active

    assert registry.get("cust-1") is None
    assert len(registry) == 1
    assert close.call_count == 1
    # вернувшийся покупатель получает новую сессию
    assert await registry.get_or_create("cust-1", market, fake_redis) is not idle


async def test_malformed_preview_keeps_summary(market, fake_redis, two_store_backend):
    two_store_backend.add("POST", "/v1/customers/cust-1/cart/checkout/preview",
                          json={"data": {"stores": [{"storeName": "x"}]}})
    session = CheckoutSession("cust-1", market, fake_redis)

    summary = await session.recompute(_snapshot())

    assert summary.reconciliation == "NO_BACKEND"
    assert summary.overall_grand_total == 320000
