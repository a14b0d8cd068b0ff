# tests/test_shipping.py

import json

import httpx
import pytest
from redis.exceptions import RedisError

from shopcheckout.core import locales
from shopcheckout.schemas.shipping import DeliveryAddress, ServiceTier
from shopcheckout.services.shipping import (
    ShippingEstimator,
    build_fee_items,
    select_service_tier,
    service_type_id,
    total_weight_grams,
)

ADDRESS = DeliveryAddress(id="addr-1", province_code="79", district_id=1442, ward_code="20109", note="call me")


def _fee_ok(fee):
    return {"code": 200, "message": "Success", "data": {"total": fee, "service_fee": fee}}


def test_weight_defaults_and_rounds_up(make_line, make_meta):
    lines = [make_line("l1", "p1", quantity=3), make_line("l2", "p2", quantity=1)]
    metas = {"p1": make_meta("p1", weight_kg=0.1)}

    # 0.1 * 3 + 0.5 (по умолчанию) = 0.8 кг
    assert total_weight_grams(lines, metas) == 800
    assert total_weight_grams([make_line(quantity=1)], {"p1": make_meta(weight_kg=0.0001)}) == 1


def test_service_tier_boundary():
    assert select_service_tier(7500) == ServiceTier.LIGHT
    assert select_service_tier(7501) == ServiceTier.HEAVY
    assert service_type_id(ServiceTier.LIGHT) == 2
    assert service_type_id(ServiceTier.HEAVY) == 5


def test_fee_items_use_default_dimensions(make_line, make_meta):
    items = build_fee_items([make_line(quantity=2, name="Kettle")], {"p1": make_meta(weight_kg=1.25)})

    assert items[0].model_dump() == {
        "name": "Kettle", "quantity": 2, "length": 20, "width": 15, "height": 10, "weight": 1250,
    }


async def test_quote_uses_store_origin_and_caches_it(market, backend, fake_redis, make_line, make_meta, make_group):
    backend.add("GET", "/stores/address/default-by-product/p1",
                json={"data": {"districtCode": "2603", "wardCode": "260303"}})
    captured = {}

    def fee_handler(request: httpx.Request):
        captured.update(json.loads(request.content))
        return httpx.Response(200, json=_fee_ok(22_000))

    backend.add("POST", "/ghn/fee", handler=fee_handler)
    group = make_group([make_line(quantity=16)])  # 16 * 0.5 = 8 кг
    metas = {"p1": make_meta()}

    quote = await ShippingEstimator(market, fake_redis).quote_store(group, metas, ADDRESS)

    assert quote.fee_amount == 22_000
    assert quote.error is None
    assert quote.service_tier == ServiceTier.HEAVY
    assert captured["service_type_id"] == 5
    assert captured["from_district_id"] == 2603
    assert captured["to_district_id"] == 1442
    assert captured["weight"] == 8000
    assert "store_origin:p1" in fake_redis.store


async def test_origin_falls_back_to_product_meta(market, backend, fake_redis, make_line, make_meta, make_group):
    backend.add("POST", "/ghn/fee", json=_fee_ok(15_000))
    metas = {"p1": make_meta(origin_district_code="1001", origin_ward_code="10010")}

    origin = await ShippingEstimator(market, fake_redis).resolve_origin(make_group([make_line()]), metas)

    assert origin.source == "product"
    assert origin.district_code == "1001"


async def test_missing_origin_fails_only_that_store(market, backend, fake_redis, make_line, make_meta, make_group):
    backend.add("GET", "/stores/address/default-by-product/p2",
                json={"data": {"districtCode": "2603", "wardCode": "260303"}})
    backend.add("POST", "/ghn/fee", json=_fee_ok(30_000))
    groups = [
        make_group([make_line("l1", "p1")], store_id="s1", store_name="No Origin"),
        make_group([make_line("l2", "p2")], store_id="s2", store_name="Good"),
    ]
    metas = {"p1": make_meta("p1", "s1"), "p2": make_meta("p2", "s2")}

    estimate = await ShippingEstimator(market, fake_redis).estimate(groups, metas, ADDRESS)

    assert estimate.quotes["s1"].error == locales.SHIPPING_ERROR_MISSING_ORIGIN
    assert estimate.quotes["s1"].fee_amount == 0
    assert estimate.quotes["s2"].fee_amount == 30_000
    assert estimate.total_fee == 30_000
    assert "No Origin" in estimate.error_message


async def test_scenario_d_carrier_404_is_zero_fee(market, backend, fake_redis, make_line, make_meta, make_group):
    def fee_handler(request: httpx.Request):
        body = json.loads(request.content)
        if body["from_district_id"] == 1:
            return httpx.Response(404, json={"message": "service not available"})
        return httpx.Response(200, json=_fee_ok(18_000))

    backend.add("POST", "/ghn/fee", handler=fee_handler)
    groups = [
        make_group([make_line("l1", "p1")], store_id="sx"),
        make_group([make_line("l2", "p2")], store_id="sy"),
    ]
    metas = {
        "p1": make_meta("p1", "sx", origin_district_code="1", origin_ward_code="11"),
        "p2": make_meta("p2", "sy", origin_district_code="2", origin_ward_code="22"),
    }

    estimate = await ShippingEstimator(market, fake_redis).estimate(groups, metas, ADDRESS)

    assert estimate.quotes["sx"].fee_amount == 0
    assert estimate.quotes["sx"].error is None
    assert estimate.quotes["sy"].fee_amount == 18_000
    assert estimate.error_message is None


@pytest.mark.parametrize("response", [
    httpx.Response(500, json={"message": "carrier down"}),
    httpx.Response(200, json={"code": 400, "message": "bad ward"}),
])
async def test_carrier_failure_is_recorded_per_store(market, backend, fake_redis, make_line, make_meta, make_group, response):
    backend.add("POST", "/ghn/fee", handler=lambda request: response)
    metas = {"p1": make_meta(origin_district_code="1", origin_ward_code="11")}

    estimate = await ShippingEstimator(market, fake_redis).estimate([make_group([make_line()])], metas, ADDRESS)

    assert estimate.quotes["s1"].fee_amount == 0
    assert estimate.quotes["s1"].error
    assert estimate.error_message.startswith(locales.NOTICE_SHIPPING_PARTIAL.split("{")[0])


async def test_incomplete_address_skips_carrier(market, backend, fake_redis, make_line, make_meta, make_group):
    address = DeliveryAddress(id="addr-2", province_code="79")

    estimate = await ShippingEstimator(market, fake_redis).estimate(
        [make_group([make_line(quantity=20)])], {"p1": make_meta()}, address
    )

    assert estimate.quotes["s1"].service_tier == ServiceTier.HEAVY
    assert estimate.quotes["s1"].error == locales.NOTICE_ADDRESS_INCOMPLETE
    assert estimate.error_message == locales.NOTICE_ADDRESS_INCOMPLETE
    assert backend.calls_to("POST", "/ghn/fee") == []


@pytest.mark.parametrize("origin_response", [
    httpx.Response(200, text="<html>oops</html>"),
    httpx.Response(200, json={"data": ["2603", "260303"]}),
])
async def test_malformed_origin_does_not_abort_other_stores(
    market, backend, fake_redis, make_line, make_meta, make_group, origin_response
):
    backend.add("GET", "/stores/address/default-by-product/p1", handler=lambda request: origin_response)
    backend.add("GET", "/stores/address/default-by-product/p2",
                json={"data": {"districtCode": "2603", "wardCode": "260303"}})
    backend.add("POST", "/ghn/fee", json=_fee_ok(20_000))
    groups = [
        make_group([make_line("l1", "p1")], store_id="s1", store_name="Broken"),
        make_group([make_line("l2", "p2")], store_id="s2", store_name="Good"),
    ]
    metas = {"p1": make_meta("p1", "s1"), "p2": make_meta("p2", "s2")}

    estimate = await ShippingEstimator(market, fake_redis).estimate(groups, metas, ADDRESS)

    assert estimate.quotes["s1"].error == locales.SHIPPING_ERROR_MISSING_ORIGIN
    assert estimate.quotes["s2"].fee_amount == 20_000
    assert estimate.total_fee == 20_000


async def test_malformed_origin_falls_back_to_product_meta(market, backend, fake_redis, make_line, make_meta, make_group):
    backend.add("GET", "/stores/address/default-by-product/p1",
                handler=lambda request: httpx.Response(200, text="not json"))
    metas = {"p1": make_meta(origin_district_code="1001", origin_ward_code="10010")}

    origin = await ShippingEstimator(market, fake_redis).resolve_origin(make_group([make_line()]), metas)

    assert origin.source == "product"
    assert origin.ward_code == "10010"


async def test_redis_outage_does_not_block_origin_lookup(mocker, market, backend, fake_redis, make_line, make_meta, make_group):
    mocker.patch.object(fake_redis, "get", side_effect=RedisError("connection refused"))
    mocker.patch.object(fake_redis, "set", side_effect=RedisError("connection refused"))
    backend.add("GET", "/stores/address/default-by-product/p1",
                json={"data": {"districtCode": "2603", "wardCode": "260303"}})
    backend.add("POST", "/ghn/fee", json=_fee_ok(12_000))

    estimate = await ShippingEstimator(market, fake_redis).estimate(
        [make_group([make_line()])], {"p1": make_meta()}, ADDRESS
    )

    assert estimate.quotes["s1"].origin_resolved is True
    assert estimate.quotes["s1"].fee_amount == 12_000


async def test_unexpected_origin_error_stays_in_its_store(mocker, market, backend, fake_redis, make_line, make_meta, make_group):
    estimator = ShippingEstimator(market, fake_redis)
    real_resolve = estimator.resolve_origin

    async def resolve(group, metas, access_token=None):
        if group.store_id == "s1":
            raise RuntimeError("boom")
        return await real_resolve(group, metas, access_token)

    mocker.patch.object(estimator, "resolve_origin", side_effect=resolve)
    backend.add("POST", "/ghn/fee", json=_fee_ok(9_000))
    groups = [
        make_group([make_line("l1", "p1")], store_id="s1"),
        make_group([make_line("l2", "p2")], store_id="s2"),
    ]
    metas = {
        "p1": make_meta("p1", "s1"),
        "p2": make_meta("p2", "s2", origin_district_code="2", origin_ward_code="22"),
    }

    estimate = await estimator.estimate(groups, metas, ADDRESS)

    assert estimate.quotes["s1"].error == locales.SHIPPING_ERROR_MISSING_ORIGIN
    assert estimate.quotes["s2"].fee_amount == 9_000
