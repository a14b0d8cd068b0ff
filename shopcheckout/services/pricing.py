# shopcheckout/services/pricing.py

import logging
from typing import List, Mapping, Optional, Sequence

from shopcheckout.core import locales
from shopcheckout.core.config import settings
from shopcheckout.schemas.cart import StoreGroup
from shopcheckout.schemas.checkout import (
    CheckoutPreview,
    CheckoutSummary,
    PricingNotice,
    ReconciliationState,
    StoreSummary,
)
from shopcheckout.schemas.shipping import ShippingEstimate
from shopcheckout.schemas.voucher import VoucherSelection
from shopcheckout.services.discount import GroupDiscount, format_money, round_half_up

logger = logging.getLogger(__name__)


class PricingCompiler:
    """
    Собирает CheckoutSummary из результатов DiscountEngine и ShippingEstimator.
    Сверка с превью сервера выполняется отдельным шагом reconcile() и не
    меняет клиентскую разбивку по слоям.
    """

    def __init__(self, tolerance: Optional[int] = None):
        self.tolerance = settings.RECONCILIATION_TOLERANCE if tolerance is None else tolerance

    def compile(
        self,
        groups: Sequence[StoreGroup],
        discounts: Mapping[str, GroupDiscount],
        shipping: Optional[ShippingEstimate],
    ) -> CheckoutSummary:
        per_store: List[StoreSummary] = []
        notices: List[PricingNotice] = []

        for group in groups:
            discount = discounts[group.store_id]
            quote = shipping.quotes.get(group.store_id) if shipping else None
            subtotal_after_platform = round_half_up(discount.subtotal_after_platform)
            shipping_fee = quote.fee_amount if quote else 0
            grand_total = max(
                0,
                subtotal_after_platform - discount.store_voucher_discount - discount.product_voucher_discount + shipping_fee,
            )
            per_store.append(StoreSummary(
                store_id=group.store_id,
                store_name=group.store_name,
                subtotal_base=round_half_up(discount.subtotal_base),
                subtotal_after_platform=subtotal_after_platform,
                platform_discount=round_half_up(discount.platform_discount),
                store_voucher_discount=discount.store_voucher_discount,
                product_voucher_discount=discount.product_voucher_discount,
                shipping_fee=shipping_fee,
                store_grand_total=grand_total,
                service_tier=quote.service_tier if quote else None,
                shipping_error=quote.error if quote else None,
                applied_store_voucher_code=discount.applied_store_voucher_code,
                applied_product_voucher_codes=dict(discount.applied_product_voucher_codes),
            ))
            notices.extend(discount.notices)

        if shipping and shipping.error_message:
            code = "ADDRESS_INCOMPLETE" if shipping.error_message == locales.NOTICE_ADDRESS_INCOMPLETE else "SHIPPING_PARTIAL"
            notices.append(PricingNotice(level="warning", code=code, message=shipping.error_message))

        client_total = sum(s.store_grand_total for s in per_store)
        return CheckoutSummary(
            per_store=per_store,
            overall_subtotal=sum(s.subtotal_base for s in per_store),
            overall_platform_discount=sum(s.platform_discount for s in per_store),
            overall_voucher_discount=sum(s.store_voucher_discount + s.product_voucher_discount for s in per_store),
            overall_shipping=sum(s.shipping_fee for s in per_store),
            overall_grand_total=client_total,
            client_grand_total=client_total,
            notices=notices,
        )

    def reconcile(
        self,
        summary: CheckoutSummary,
        groups: Sequence[StoreGroup],
        selection: VoucherSelection,
        preview: Optional[CheckoutPreview],
    ) -> CheckoutSummary:
        """
        Сверка с превью сервера.
        - Превью нет: NO_BACKEND, сводка не меняется.
        - Выбора в магазине нет: скидка сервера показывается как inferredStoreDiscount
          (BACKEND_ONLY) или AGREED, если сервер скидок не насчитал.
        - Выбор есть: он приоритетнее, излишек сервера над ним - otherStoreDiscount (SELECTION).
        Итог сервера считается окончательным; расхождение с клиентским итогом
        больше допуска дает предупреждение TOTAL_MISMATCH.
        """
        if preview is None:
            return summary

        lines_by_store = {g.store_id: [line.id for line in g.lines] for g in groups}
        per_store = []
        adjustments = 0
        for store in summary.per_store:
            preview_store = preview.store(store.store_id)
            backend_discount = round_half_up(preview_store.store_discount) if preview_store else 0
            inferred, other = 0, 0
            if selection.has_selection_for(store.store_id, lines_by_store.get(store.store_id, [])):
                state = ReconciliationState.SELECTION
                other = max(0, backend_discount - store.store_voucher_discount - store.product_voucher_discount)
            elif backend_discount > 0:
                state = ReconciliationState.BACKEND_ONLY
                inferred = backend_discount
            else:
                state = ReconciliationState.AGREED
            adjustments += inferred + other
            per_store.append(store.model_copy(update={
                "reconciliation": state,
                "inferred_store_discount": inferred,
                "other_store_discount": other,
                "backend_grand_total": round_half_up(preview_store.grand_total) if preview_store else None,
            }))

        backend_total = round_half_up(preview.overall_grand_total)
        adjusted_client_total = max(0, summary.client_grand_total - adjustments)
        notices = list(summary.notices)
        if abs(adjusted_client_total - backend_total) > self.tolerance:
            logger.warning(
                f"Client total {adjusted_client_total} differs from backend preview total {backend_total}."
            )
            notices.append(PricingNotice(
                level="warning",
                code="TOTAL_MISMATCH",
                message=locales.NOTICE_TOTAL_MISMATCH.format(
                    backend_total=format_money(backend_total), client_total=format_money(adjusted_client_total)
                ),
            ))

        if not selection.is_empty:
            overall_state = ReconciliationState.SELECTION
        elif any(s.reconciliation == ReconciliationState.BACKEND_ONLY for s in per_store):
            overall_state = ReconciliationState.BACKEND_ONLY
        else:
            overall_state = ReconciliationState.AGREED

        return summary.model_copy(update={
            "per_store": per_store,
            "overall_grand_total": backend_total,
            "overall_adjustment_discount": adjustments,
            "backend_grand_total": backend_total,
            "reconciliation": overall_state,
            "notices": notices,
        })
