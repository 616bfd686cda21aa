"""
Payment ledger tests.

Covers atomic application, validation, overpayment rejection, ordering
and reconciliation against the engine directly.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from backend.app.core.exceptions import (
    CustomerNotFoundError,
    InvalidAmountError,
    LockTimeoutError,
    OverpaymentRejectedError,
    StorageFailureError,
)
from backend.app.models.audit_log import AuditLog
from backend.app.models.customer import Customer
from backend.app.models.payment import Payment
from backend.app.services.account_locks import AccountLockRegistry
from backend.app.services.payment_ledger import PaymentLedger, parse_amount, is_lock_timeout
import backend.app.services.payment_ledger as ledger_module

MAX = Decimal("10000000.00")


async def read_state(session_factory, account_number):
    """Balance and payment count as seen by a fresh reader."""
    async with session_factory() as session:
        balance = (await session.execute(
            select(Customer.outstanding_balance).where(Customer.account_number == account_number)
        )).scalar_one_or_none()
        count = (await session.execute(
            select(func.count(Payment.id)).where(Payment.account_number == account_number)
        )).scalar()
    return balance, count


@pytest.fixture
def ledger():
    return PaymentLedger(lock_timeout=2.0, locks=AccountLockRegistry())


# TEST 1: Example scenario
@pytest.mark.asyncio
async def test_apply_payment_reduces_balance(ledger, make_customer, db_session, session_factory):
    await make_customer("ACC001", "250000")

    applied = await ledger.apply_payment(db_session, "ACC001", 2000)

    assert applied.outstanding_balance == Decimal("248000")
    assert applied.payment.id is not None
    assert applied.payment.amount == Decimal("2000")

    payments = await ledger.list_payments(db_session, "ACC001")
    assert len(payments) == 1
    assert payments[0].amount == Decimal("2000")

    balance, count = await read_state(session_factory, "ACC001")
    assert balance == Decimal("248000")
    assert count == 1


@pytest.mark.asyncio
async def test_unknown_account_not_found(ledger, make_customer, db_session, session_factory):
    await make_customer("ACC001", "250000")

    with pytest.raises(CustomerNotFoundError) as exc_info:
        await ledger.apply_payment(db_session, "ACC002", 100)

    assert exc_info.value.error_code == "ERR_NOT_FOUND_001"
    assert exc_info.value.retryable is False
    _, count = await read_state(session_factory, "ACC002")
    assert count == 0


@pytest.mark.asyncio
async def test_negative_amount_rejected(ledger, make_customer, db_session, session_factory):
    await make_customer("ACC001", "250000")

    with pytest.raises(InvalidAmountError):
        await ledger.apply_payment(db_session, "ACC001", -50)

    balance, count = await read_state(session_factory, "ACC001")
    assert balance == Decimal("250000")
    assert count == 0


@pytest.mark.parametrize("amount", [0, "0.00", -1, "-50", "abc", "", "NaN", "Infinity", True, None, "1.001", [100]])
def test_parse_amount_rejects_invalid(amount):
    with pytest.raises(InvalidAmountError):
        parse_amount(amount, MAX)


def test_parse_amount_rejects_above_maximum():
    with pytest.raises(InvalidAmountError):
        parse_amount("10000000.01", MAX)


@pytest.mark.parametrize("amount, expected", [
    (2000, Decimal("2000.00")),
    ("2000.5", Decimal("2000.50")),
    (" 15.25 ", Decimal("15.25")),
    (0.1, Decimal("0.10")),
    (Decimal("10000000.00"), Decimal("10000000.00")),
])
def test_parse_amount_normalizes(amount, expected):
    value = parse_amount(amount, MAX)
    assert value == expected
    assert value.as_tuple().exponent == -2


@pytest.mark.asyncio
async def test_overpayment_rejected(ledger, make_customer, db_session, session_factory):
    await make_customer("ACC001", "1000")

    with pytest.raises(OverpaymentRejectedError) as exc_info:
        await ledger.apply_payment(db_session, "ACC001", "1000.01")

    assert exc_info.value.details["outstanding_balance"] == "1000.00"
    balance, count = await read_state(session_factory, "ACC001")
    assert balance == Decimal("1000")
    assert count == 0


@pytest.mark.asyncio
async def test_exact_payoff_reaches_zero(ledger, make_customer, db_session):
    await make_customer("ACC001", "1000")

    applied = await ledger.apply_payment(db_session, "ACC001", "1000.00")
    assert applied.outstanding_balance == Decimal("0")

    with pytest.raises(OverpaymentRejectedError):
        await ledger.apply_payment(db_session, "ACC001", "0.01")


@pytest.mark.asyncio
async def test_payment_timestamp_comes_from_clock(make_customer, db_session):
    fixed = datetime(2025, 4, 1, 9, 30, tzinfo=timezone.utc)
    ledger = PaymentLedger(clock=lambda: fixed, locks=AccountLockRegistry())
    await make_customer("ACC001", "5000")

    applied = await ledger.apply_payment(db_session, "ACC001", 100)

    assert applied.payment.created_at == fixed


@pytest.mark.asyncio
async def test_payments_listed_in_commit_order(ledger, make_customer, db_session):
    await make_customer("ACC001", "5000")
    for amount in ("100", "250.50", "75"):
        await ledger.apply_payment(db_session, "ACC001", amount)

    payments = await ledger.list_payments(db_session, "ACC001")

    assert [p.amount for p in payments] == [Decimal("100"), Decimal("250.50"), Decimal("75")]
    ids = [p.id for p in payments]
    assert ids == sorted(ids)


@pytest.mark.asyncio
async def test_list_payments_empty_and_unknown(ledger, make_customer, db_session):
    await make_customer("ACC001", "5000")

    assert await ledger.list_payments(db_session, "ACC001") == []
    with pytest.raises(CustomerNotFoundError):
        await ledger.list_payments(db_session, "NOPE")


@pytest.mark.asyncio
async def test_payment_writes_audit_row(ledger, make_customer, db_session):
    await make_customer("ACC001", "5000")
    applied = await ledger.apply_payment(db_session, "ACC001", 100)

    result = await db_session.execute(
        select(AuditLog).where(AuditLog.action == "PAYMENT_APPLIED")
    )
    audit = result.scalar_one()
    assert audit.account_number == "ACC001"
    assert audit.meta_data["payment_id"] == applied.payment.id
    assert audit.meta_data["outstanding_balance"] == "4900.00"


# Atomicity: failure after the insert and the balance update were flushed
@pytest.mark.asyncio
async def test_storage_failure_rolls_back_everything(ledger, make_customer, db_session, session_factory, monkeypatch):
    await make_customer("ACC001", "5000")

    async def failing_log_event(*args, **kwargs):
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(ledger_module, "log_event", failing_log_event)

    with pytest.raises(StorageFailureError) as exc_info:
        await ledger.apply_payment(db_session, "ACC001", 1000)

    assert exc_info.value.retryable is True
    balance, count = await read_state(session_factory, "ACC001")
    assert balance == Decimal("5000")
    assert count == 0

    # The session is usable again for a fresh attempt
    monkeypatch.undo()
    applied = await ledger.apply_payment(db_session, "ACC001", 1000)
    assert applied.outstanding_balance == Decimal("4000")


@pytest.mark.asyncio
async def test_unexpected_error_rolls_back(make_customer, db_session, session_factory):
    def broken_clock():
        raise RuntimeError("clock unavailable")

    ledger = PaymentLedger(clock=broken_clock, locks=AccountLockRegistry())
    await make_customer("ACC001", "5000")

    with pytest.raises(RuntimeError):
        await ledger.apply_payment(db_session, "ACC001", 1000)

    balance, count = await read_state(session_factory, "ACC001")
    assert balance == Decimal("5000")
    assert count == 0


@pytest.mark.asyncio
async def test_driver_lock_error_maps_to_lock_timeout(ledger, make_customer, db_session, session_factory, monkeypatch):
    await make_customer("ACC001", "5000")

    async def locked_log_event(*args, **kwargs):
        raise OperationalError("UPDATE customers", {}, Exception("database is locked"))

    monkeypatch.setattr(ledger_module, "log_event", locked_log_event)

    with pytest.raises(LockTimeoutError):
        await ledger.apply_payment(db_session, "ACC001", 1000)

    balance, count = await read_state(session_factory, "ACC001")
    assert balance == Decimal("5000")
    assert count == 0


def test_is_lock_timeout_detects_postgres_sqlstate():
    class LockNotAvailable(Exception):
        sqlstate = "55P03"

    class UniqueViolation(Exception):
        sqlstate = "23505"

    assert is_lock_timeout(OperationalError("SELECT", {}, LockNotAvailable("canceling statement")))
    assert not is_lock_timeout(OperationalError("INSERT", {}, UniqueViolation("duplicate key")))


@pytest.mark.asyncio
async def test_reconcile_matches_ledger(ledger, make_customer, db_session):
    await make_customer("ACC001", "5000")
    await ledger.apply_payment(db_session, "ACC001", "1200.25")
    await ledger.apply_payment(db_session, "ACC001", "799.75")

    report = await ledger.reconcile(db_session, "ACC001")

    assert report.opening_balance == Decimal("5000.00")
    assert report.total_paid == Decimal("2000.00")
    assert report.payment_count == 2
    assert report.expected_balance == Decimal("3000.00")
    assert report.outstanding_balance == Decimal("3000.00")
    assert report.in_balance


@pytest.mark.asyncio
async def test_reconcile_without_payments(ledger, make_customer, db_session):
    await make_customer("ACC001", "5000")

    report = await ledger.reconcile(db_session, "ACC001")

    assert report.total_paid == Decimal("0.00")
    assert report.payment_count == 0
    assert report.in_balance
