"""
Payment API Endpoints.

Thin transport over the payment ledger: apply an EMI payment and read an
account's ledger. Every ledger failure is rendered by the global
AppException handler with its own error code.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Header, Path, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.redis_client import get_redis
from backend.app.core.reliability import RetryPolicy, retry_transient
from backend.app.db.session import get_db
from backend.app.schemas.payment import (
    PaymentCreate, PaymentResponse, PaymentAppliedResponse, PaymentListResponse
)
from backend.app.services.idempotency import IdempotencyStore
from backend.app.services.payment_ledger import PaymentLedger, get_payment_ledger, parse_amount

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("", response_model=PaymentAppliedResponse, status_code=status.HTTP_201_CREATED)
async def apply_payment(
    payment_data: PaymentCreate,
    idempotency_key: Optional[str] = Header(None, max_length=128),
    db: AsyncSession = Depends(get_db),
    ledger: PaymentLedger = Depends(get_payment_ledger),
    redis=Depends(get_redis)
):
    """
    Apply an EMI payment to a customer account.

    Lock timeouts and storage failures are retried as fresh attempts.
    With an Idempotency-Key header, a repeated request returns the first
    response (200, ``Idempotent-Replay: true``) without paying twice; the
    same key with a different account or amount is rejected.
    """
    amount = parse_amount(payment_data.amount, ledger.max_amount)
    fingerprint = IdempotencyStore.fingerprint(payment_data.account_number, amount)

    store = IdempotencyStore(redis) if idempotency_key else None
    if store:
        cached = await store.begin(idempotency_key, fingerprint)
        if cached is not None:
            return JSONResponse(
                content=cached,
                status_code=status.HTTP_200_OK,
                headers={"Idempotent-Replay": "true"}
            )

    policy = RetryPolicy(
        attempts=settings.payment_retry_attempts,
        base_delay=settings.payment_retry_base_delay
    )
    try:
        applied = await retry_transient(
            lambda: ledger.apply_payment(db, payment_data.account_number, amount),
            policy,
            operation="apply_payment"
        )
    except Exception:
        if store:
            await store.release(idempotency_key)
        raise

    body = PaymentAppliedResponse(
        payment=PaymentResponse.model_validate(applied.payment),
        outstanding_balance=applied.outstanding_balance
    )
    if store:
        await store.complete(idempotency_key, fingerprint, body.model_dump(mode="json"))
    return body


@router.get("/{account_number}", response_model=PaymentListResponse)
async def list_payments(
    account_number: str = Path(..., max_length=32),
    db: AsyncSession = Depends(get_db),
    ledger: PaymentLedger = Depends(get_payment_ledger)
):
    """
    List committed payments for an account in commit order.

    Returns 404 for an unknown account, an empty list for an account
    without payments.
    """
    payments = await ledger.list_payments(db, account_number)
    return PaymentListResponse(
        account_number=account_number,
        payments=[PaymentResponse.model_validate(p) for p in payments],
        total=len(payments)
    )
