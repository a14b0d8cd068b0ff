# shopcheckout/services/session.py

import asyncio
import logging
import time
from typing import Dict, List, Mapping, Optional

from redis.asyncio import Redis

from shopcheckout.clients.marketplace import MarketplaceClient
from shopcheckout.core import locales
from shopcheckout.core.config import settings
from shopcheckout.schemas.cart import CartLine, ProductMeta, StoreGroup
from shopcheckout.schemas.checkout import (
    CheckoutOrder,
    CheckoutPreview,
    CheckoutRequestPayload,
    CheckoutSnapshotRequest,
    CheckoutSummary,
)
from shopcheckout.schemas.shipping import DeliveryAddress, ShippingEstimate
from shopcheckout.schemas.voucher import VoucherSelection
from shopcheckout.services import catalog as catalog_service
from shopcheckout.services.aggregator import group_lines_by_store, select_lines
from shopcheckout.services.discount import DiscountEngine, GroupDiscount
from shopcheckout.services.order import (
    CheckoutSubmissionError,
    OrderPayloadBuilder,
    fetch_checkout_preview,
    submit_checkout,
)
from shopcheckout.services.pricing import PricingCompiler
from shopcheckout.services.scheduler import DebouncedRecompute
from shopcheckout.services.shipping import ShippingEstimator
from shopcheckout.services.vouchers import VoucherCache, VoucherCatalog, VoucherCatalogResolver

logger = logging.getLogger(__name__)


class PricedCheckout:
    """Все промежуточные результаты одного прохода расчета."""

    def __init__(
        self,
        groups: List[StoreGroup],
        metas: Mapping[str, ProductMeta],
        catalog: Optional[VoucherCatalog],
        discounts: Dict[str, GroupDiscount],
        payload: CheckoutRequestPayload,
        shipping: Optional[ShippingEstimate],
        preview: Optional[CheckoutPreview],
        summary: CheckoutSummary,
    ):
        self.groups = groups
        self.metas = metas
        self.catalog = catalog
        self.discounts = discounts
        self.payload = payload
        self.shipping = shipping
        self.preview = preview
        self.summary = summary


class CheckoutSession:
    """
    Состояние оформления заказа одного покупателя: кеш ваучеров, выбор
    ваучеров, адрес, выбранные позиции и последняя опубликованная сводка.
    """

    def __init__(self, customer_id: str, client: MarketplaceClient, redis: Redis):
        self.customer_id = customer_id
        self.client = client
        self.redis = redis
        self.access_token: Optional[str] = None

        self.voucher_cache = VoucherCache()
        self.lines: List[CartLine] = []
        self.selection = VoucherSelection()
        self.address: Optional[DeliveryAddress] = None
        self.selected_line_ids: Optional[List[str]] = None

        self.resolver = VoucherCatalogResolver(client)
        self.engine = DiscountEngine()
        self.estimator = ShippingEstimator(client, redis)
        self.compiler = PricingCompiler()
        self.builder = OrderPayloadBuilder()
        self.scheduler = DebouncedRecompute(self._compute_summary, name=f"summary:{customer_id}")

    # --- Изменение состояния ---

    def apply_snapshot(self, snapshot: CheckoutSnapshotRequest) -> None:
        self.lines = list(snapshot.lines)
        self.selection = snapshot.selection
        self.address = snapshot.address
        self.selected_line_ids = snapshot.selected_line_ids

    def update_selection(self, selection: VoucherSelection) -> None:
        self.selection = selection

    def select_address(self, address: Optional[DeliveryAddress]) -> None:
        self.address = address

    def select_lines(self, line_ids: Optional[List[str]]) -> None:
        self.selected_line_ids = line_ids

    def snapshot(self) -> CheckoutSnapshotRequest:
        return CheckoutSnapshotRequest(
            lines=list(self.lines),
            selection=self.selection,
            address=self.address,
            selected_line_ids=list(self.selected_line_ids) if self.selected_line_ids is not None else None,
        )

    # --- Расчет ---

    async def price(self, snapshot: CheckoutSnapshotRequest, with_preview: bool = True) -> PricedCheckout:
        """
        Полный проход: группировка -> ваучеры -> скидки -> (доставка || превью) -> сводка.
        Чистая функция снимка, кроме кешей (Redis и кеш ваучеров сессии).
        """
        token = self.access_token
        metas = await catalog_service.load_product_metas(
            self.client, self.redis, [line.product_ref for line in snapshot.lines]
        )
        # Ваучеры резолвятся по всей корзине, чтобы переключение позиций не сбрасывало кеш
        catalog = await self.resolver.resolve(group_lines_by_store(snapshot.lines, metas), self.voucher_cache, token)

        groups = group_lines_by_store(select_lines(snapshot.lines, snapshot.selected_line_ids), metas)
        discounts = {g.store_id: self.engine.apply(g, snapshot.selection, catalog) for g in groups}
        payload = self.builder.build(groups, discounts, catalog, metas, snapshot.address)

        shipping, preview = None, None
        if groups:
            preview_call = (
                fetch_checkout_preview(self.client, self.customer_id, payload, token)
                if with_preview and snapshot.address is not None
                else asyncio.sleep(0)
            )
            shipping, preview = await asyncio.gather(
                self.estimator.estimate(groups, metas, snapshot.address, token),
                preview_call,
            )

        summary = self.compiler.compile(groups, discounts, shipping)
        summary = self.compiler.reconcile(summary, groups, snapshot.selection, preview)
        return PricedCheckout(groups, metas, catalog, discounts, payload, shipping, preview, summary)

    async def recompute(self, snapshot: Optional[CheckoutSnapshotRequest] = None) -> CheckoutSummary:
        priced = await self.price(snapshot or self.snapshot())
        return priced.summary

    async def _compute_summary(self, snapshot: CheckoutSnapshotRequest) -> CheckoutSummary:
        return await self.recompute(snapshot)

    def schedule_recompute(self) -> int:
        return self.scheduler.trigger(self.snapshot())

    @property
    def latest_summary(self) -> Optional[CheckoutSummary]:
        return self.scheduler.latest

    async def build_payload(self, snapshot: Optional[CheckoutSnapshotRequest] = None) -> CheckoutRequestPayload:
        priced = await self.price(snapshot or self.snapshot(), with_preview=False)
        return priced.payload

    async def submit(self, snapshot: Optional[CheckoutSnapshotRequest] = None) -> tuple[List[CheckoutOrder], CheckoutSummary]:
        snapshot = snapshot or self.snapshot()
        if not select_lines(snapshot.lines, snapshot.selected_line_ids):
            raise CheckoutSubmissionError(CheckoutSubmissionError.BAD_REQUEST, None, locales.ERROR_EMPTY_SELECTION)
        if snapshot.address is None:
            raise CheckoutSubmissionError(CheckoutSubmissionError.BAD_REQUEST, None, locales.ERROR_ADDRESS_REQUIRED)

        priced = await self.price(snapshot, with_preview=False)
        orders = await submit_checkout(self.client, self.customer_id, priced.payload, self.access_token)
        return orders, priced.summary

    async def close(self) -> None:
        await self.scheduler.close()


class SessionRegistry:
    """
    customerId -> CheckoutSession, в памяти процесса.
    Сессии, к которым не обращались дольше idle_ttl секунд, закрываются
    и удаляются при следующем обращении к реестру.
    """

    def __init__(self, idle_ttl: Optional[float] = None):
        self.idle_ttl = settings.SESSION_IDLE_TTL_SECONDS if idle_ttl is None else idle_ttl
        self._sessions: Dict[str, CheckoutSession] = {}
        self._last_seen: Dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, customer_id: str) -> Optional[CheckoutSession]:
        return self._sessions.get(customer_id)

    async def evict_idle(self) -> int:
        now = time.monotonic()
        stale = [cid for cid, seen in self._last_seen.items() if now - seen > self.idle_ttl]
        for customer_id in stale:
            session = self._sessions.pop(customer_id, None)
            self._last_seen.pop(customer_id, None)
            if session is not None:
                await session.close()
        if stale:
            logger.info(f"Evicted {len(stale)} idle checkout session(s), {len(self._sessions)} remain.")
        return len(stale)

    async def get_or_create(self, customer_id: str, client: MarketplaceClient, redis: Redis) -> CheckoutSession:
        await self.evict_idle()
        session = self._sessions.get(customer_id)
        if session is None:
            session = CheckoutSession(customer_id, client, redis)
            self._sessions[customer_id] = session
        self._last_seen[customer_id] = time.monotonic()
        return session

    async def close_all(self) -> None:
        for session in self._sessions.values():
            await session.close()
        self._sessions.clear()
        self._last_seen.clear()


session_registry = SessionRegistry()
