# tests/test_pricing.py

import pytest

from shopcheckout.schemas.checkout import CheckoutPreview, ReconciliationState
from shopcheckout.schemas.shipping import ServiceTier, ShippingEstimate, ShippingQuote
from shopcheckout.schemas.voucher import VoucherKind, VoucherSelection
from shopcheckout.services.discount import DiscountEngine
from shopcheckout.services.pricing import PricingCompiler
from shopcheckout.services.vouchers import VoucherCatalog


@pytest.fixture
def two_stores(make_line, make_voucher, make_group):
    groups = [
        make_group([make_line("l1", "p1", quantity=2, base=100_000)], store_id="s1"),
        make_group([make_line("l2", "p2", quantity=1, base=50_000)], store_id="s2", store_name="Store 2"),
    ]
    voucher = make_voucher("SHOP10", kind=VoucherKind.PERCENT, percent_value=10, voucher_id="v1")
    catalog = VoucherCatalog({"s1": [voucher]}, {}, {})
    shipping = ShippingEstimate(
        quotes={
            "s1": ShippingQuote(store_id="s1", fee_amount=20_000, service_tier=ServiceTier.LIGHT),
            "s2": ShippingQuote(store_id="s2", fee_amount=15_000, service_tier=ServiceTier.LIGHT),
        },
        total_fee=35_000,
    )
    return groups, catalog, shipping


def _compile(groups, catalog, shipping, selection):
    engine = DiscountEngine()
    discounts = {g.store_id: engine.apply(g, selection, catalog) for g in groups}
    return PricingCompiler().compile(groups, discounts, shipping)


def _preview(overall_grand_total, **store_discounts):
    return CheckoutPreview.model_validate({
        "overallGrandTotal": overall_grand_total,
        "stores": [{"storeId": sid, "storeDiscount": d, "grandTotal": 0} for sid, d in store_discounts.items()],
    })


def test_overall_totals_sum_stores(two_stores):
    groups, catalog, shipping = two_stores
    summary = _compile(groups, catalog, shipping, VoucherSelection(store_wide={"s1": "v1"}))

    assert summary.overall_subtotal == 250_000
    assert summary.overall_voucher_discount == 20_000
    assert summary.overall_shipping == 35_000
    assert summary.overall_grand_total == 250_000 - 20_000 + 35_000
    assert summary.reconciliation == ReconciliationState.NO_BACKEND


def test_recompute_is_idempotent(two_stores):
    groups, catalog, shipping = two_stores
    selection = VoucherSelection(store_wide={"s1": "v1"})

    assert _compile(groups, catalog, shipping, selection) == _compile(groups, catalog, shipping, selection)


def test_reconcile_without_preview_keeps_summary(two_stores):
    groups, catalog, shipping = two_stores
    summary = _compile(groups, catalog, shipping, VoucherSelection())

    assert PricingCompiler().reconcile(summary, groups, VoucherSelection(), None) is summary


def test_backend_discount_is_inferred_without_selection(two_stores):
    groups, catalog, shipping = two_stores
    selection = VoucherSelection()
    summary = _compile(groups, catalog, shipping, selection)

    reconciled = PricingCompiler().reconcile(summary, groups, selection, _preview(270_000, s1=15_000, s2=0))

    s1, s2 = reconciled.per_store
    assert s1.reconciliation == ReconciliationState.BACKEND_ONLY
    assert s1.inferred_store_discount == 15_000
    assert s2.reconciliation == ReconciliationState.AGREED
    assert reconciled.overall_adjustment_discount == 15_000
    assert reconciled.overall_grand_total == 270_000
    assert reconciled.client_grand_total == 285_000
    assert reconciled.reconciliation == ReconciliationState.BACKEND_ONLY
    assert not any(n.code == "TOTAL_MISMATCH" for n in reconciled.notices)


def test_selection_takes_precedence_and_excess_is_other_discount(two_stores):
    groups, catalog, shipping = two_stores
    selection = VoucherSelection(store_wide={"s1": "v1"})
    summary = _compile(groups, catalog, shipping, selection)

    reconciled = PricingCompiler().reconcile(summary, groups, selection, _preview(260_000, s1=25_000))

    s1 = reconciled.per_store[0]
    assert s1.reconciliation == ReconciliationState.SELECTION
    assert s1.store_voucher_discount == 20_000
    assert s1.inferred_store_discount == 0
    # не считаем дважды: только излишек над выбором
    assert s1.other_store_discount == 5_000
    assert reconciled.reconciliation == ReconciliationState.SELECTION


def test_total_mismatch_produces_warning_and_backend_wins(two_stores):
    groups, catalog, shipping = two_stores
    selection = VoucherSelection()
    summary = _compile(groups, catalog, shipping, selection)

    reconciled = PricingCompiler().reconcile(summary, groups, selection, _preview(250_000))

    mismatch = [n for n in reconciled.notices if n.code == "TOTAL_MISMATCH"]
    assert len(mismatch) == 1
    assert mismatch[0].level == "warning"
    assert reconciled.overall_grand_total == 250_000
    assert reconciled.backend_grand_total == 250_000
    # клиентская разбивка не меняется
    assert reconciled.client_grand_total == 285_000


def test_difference_within_tolerance_is_accepted(two_stores):
    groups, catalog, shipping = two_stores
    selection = VoucherSelection()
    summary = _compile(groups, catalog, shipping, selection)

    reconciled = PricingCompiler(tolerance=1).reconcile(summary, groups, selection, _preview(285_001))

    assert not any(n.code == "TOTAL_MISMATCH" for n in reconciled.notices)


def test_shipping_error_becomes_notice(two_stores):
    groups, catalog, _ = two_stores
    shipping = ShippingEstimate(
        quotes={"s1": ShippingQuote(store_id="s1", service_tier=ServiceTier.LIGHT, error="boom")},
        error_message="Для некоторых магазинов не удалось рассчитать доставку: Store 1: boom",
    )

    summary = _compile(groups, catalog, shipping, VoucherSelection())

    assert summary.per_store[0].shipping_error == "boom"
    assert summary.per_store[1].shipping_fee == 0
    assert [n.code for n in summary.notices] == ["SHIPPING_PARTIAL"]
