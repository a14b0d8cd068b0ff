# shopcheckout/routers/checkout.py

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from shopcheckout.core.config import settings
from shopcheckout.core.limiter import limiter
from shopcheckout.dependencies import get_checkout_session
from shopcheckout.schemas.checkout import (
    CheckoutSnapshotRequest,
    CheckoutSubmitResponse,
    CheckoutSummary,
)
from shopcheckout.services.order import CheckoutSubmissionError
from shopcheckout.services.session import CheckoutSession

logger = logging.getLogger(__name__)

router = APIRouter()

# HTTP-статус ответа сервиса для каждой категории ошибки оформления
_SUBMISSION_STATUS = {
    CheckoutSubmissionError.BAD_REQUEST: status.HTTP_400_BAD_REQUEST,
    CheckoutSubmissionError.OUT_OF_STOCK: status.HTTP_409_CONFLICT,
    CheckoutSubmissionError.INVALID_ADDRESS: status.HTTP_404_NOT_FOUND,
    CheckoutSubmissionError.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    CheckoutSubmissionError.QUANTITY_EXCEEDED: status.HTTP_409_CONFLICT,
    CheckoutSubmissionError.INVALID_VOUCHER: status.HTTP_422_UNPROCESSABLE_CONTENT,
    CheckoutSubmissionError.UNPROCESSABLE: status.HTTP_422_UNPROCESSABLE_CONTENT,
    CheckoutSubmissionError.AUTH_EXPIRED: status.HTTP_401_UNAUTHORIZED,
    CheckoutSubmissionError.SERVER_ERROR: status.HTTP_502_BAD_GATEWAY,
    CheckoutSubmissionError.NETWORK: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@router.post("/checkout/summary", response_model=CheckoutSummary)
@limiter.limit(settings.CHECKOUT_RATE_LIMIT)
async def compute_summary(
    request: Request,
    snapshot: CheckoutSnapshotRequest,
    session: CheckoutSession = Depends(get_checkout_session),
):
    """Сводка по магазинам и общий итог для переданного снимка корзины."""
    session.apply_snapshot(snapshot)
    return await session.recompute(snapshot)


@router.post("/checkout/payload")
@limiter.limit(settings.CHECKOUT_RATE_LIMIT)
async def build_payload(
    request: Request,
    snapshot: CheckoutSnapshotRequest,
    session: CheckoutSession = Depends(get_checkout_session),
):
    """Тело запроса оформления без отправки на сервер."""
    session.apply_snapshot(snapshot)
    payload = await session.build_payload(snapshot)
    return payload.to_request()


@router.post("/checkout/submit", response_model=CheckoutSubmitResponse)
@limiter.limit(settings.CHECKOUT_RATE_LIMIT)
async def submit(
    request: Request,
    snapshot: CheckoutSnapshotRequest,
    session: CheckoutSession = Depends(get_checkout_session),
):
    """Оформление заказа (оплата при получении), по одному заказу на магазин."""
    session.apply_snapshot(snapshot)
    try:
        orders, summary = await session.submit(snapshot)
    except CheckoutSubmissionError as e:
        raise HTTPException(
            status_code=_SUBMISSION_STATUS.get(e.category, status.HTTP_400_BAD_REQUEST),
            detail={"category": e.category, "message": e.message, "backendMessage": e.detail},
        )
    return CheckoutSubmitResponse(orders=orders, summary=summary)


@router.post("/checkout/summary/schedule", status_code=status.HTTP_202_ACCEPTED)
async def schedule_summary(
    request: Request,
    snapshot: CheckoutSnapshotRequest,
    session: CheckoutSession = Depends(get_checkout_session),
):
    """
    Отложенный пересчет для интерактивного клиента: частые вызовы
    схлопываются, результат забирается через /checkout/summary/latest.
    """
    session.apply_snapshot(snapshot)
    generation = session.schedule_recompute()
    return {"generation": generation}


@router.get("/checkout/summary/latest", response_model=CheckoutSummary)
async def latest_summary(session: CheckoutSession = Depends(get_checkout_session)):
    summary = session.latest_summary
    if summary is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Summary is not computed yet")
    return summary
