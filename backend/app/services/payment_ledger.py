"""
Payment Ledger (Domain Logic).

Applies EMI payments against a customer's outstanding balance and
exposes the append-only payment ledger.

Flow of apply_payment (one atomic unit of work):
1. Validate amount (before touching storage)
2. Acquire exclusive access to the customer row
3. Re-read the balance under the lock
4. Reject overpayment
5. Insert Payment (clock timestamp)
6. Decrement outstanding balance
7. Commit, or roll back everything on any failure

Invariant: outstanding_balance == opening_balance - sum(payments.amount).
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, AsyncIterator, Callable, List, Optional

from sqlalchemy import select, func, text
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AppException,
    CustomerNotFoundError,
    InvalidAmountError,
    LockTimeoutError,
    OverpaymentRejectedError,
    StorageFailureError,
)
from backend.app.db.session import unit_of_work
from backend.app.models.customer import Customer
from backend.app.models.payment import Payment
from backend.app.services.account_locks import AccountLockRegistry, account_locks
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.emi import CENT, quantize_money

logger = logging.getLogger("emi.ledger")

# Dialects whose SELECT ... FOR UPDATE takes a real row lock
ROW_LOCK_DIALECTS = frozenset({"postgresql", "mysql", "mariadb", "oracle", "mssql"})

# PostgreSQL SQLSTATE lock_not_available (raised when lock_timeout expires)
LOCK_NOT_AVAILABLE = "55P03"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AppliedPayment:
    """Result of a committed payment."""
    payment: Payment
    outstanding_balance: Decimal


@dataclass
class ReconciliationReport:
    """Comparison of the cached balance against the payment history."""
    account_number: str
    opening_balance: Decimal
    total_paid: Decimal
    payment_count: int
    expected_balance: Decimal
    outstanding_balance: Decimal

    @property
    def in_balance(self) -> bool:
        return self.expected_balance == self.outstanding_balance


def parse_amount(value: Any, max_amount: Decimal) -> Decimal:
    """
    Validate a payment amount and return it as a 2-place Decimal.

    Accepts Decimal, int, float or numeric strings. Rejects booleans,
    non-finite values, zero or negative amounts, fractions of a cent and
    amounts above ``max_amount``.

    Raises:
        InvalidAmountError
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError("Amount must be a number", value)

    try:
        if isinstance(value, str):
            amount = Decimal(value.strip())
        elif isinstance(value, float):
            amount = Decimal(repr(value))
        else:
            amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidAmountError("Amount must be a number", value) from None

    if not amount.is_finite():
        raise InvalidAmountError("Amount must be a finite number", value)
    if amount <= 0:
        raise InvalidAmountError("Amount must be greater than zero", value)
    if amount != amount.quantize(CENT):
        raise InvalidAmountError("Amount cannot have more than 2 decimal places", value)
    if amount > max_amount:
        raise InvalidAmountError(f"Amount cannot exceed {max_amount}", value)

    return quantize_money(amount)


def is_lock_timeout(exc: DBAPIError) -> bool:
    """True when the driver error means a lock wait gave up."""
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code == LOCK_NOT_AVAILABLE:
        return True
    # SQLite busy timeout
    return "database is locked" in str(orig)


class PaymentLedger:

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        lock_timeout: Optional[float] = None,
        max_amount: Optional[Decimal] = None,
        locks: Optional[AccountLockRegistry] = None
    ):
        self.clock = clock
        self.lock_timeout = settings.payment_lock_timeout_seconds if lock_timeout is None else lock_timeout
        self.max_amount = settings.max_payment_amount if max_amount is None else max_amount
        self.locks = account_locks if locks is None else locks

    async def apply_payment(self, db: AsyncSession, account_number: str, amount: Any) -> AppliedPayment:
        """
        Apply one EMI payment as an all-or-nothing operation.

        Args:
            db: Database session. The ledger owns the transaction boundary.
            account_number: Customer account to pay against
            amount: Payment amount (validated with parse_amount)

        Returns:
            AppliedPayment with the committed Payment and the new balance

        Raises:
            InvalidAmountError, CustomerNotFoundError, OverpaymentRejectedError,
            LockTimeoutError, StorageFailureError
        """
        value = parse_amount(amount, self.max_amount)

        try:
            async with self._exclusive(db, account_number):
                async with unit_of_work(db):
                    await self._set_lock_timeout(db)
                    customer = await self._lock_customer(db, account_number)
                    if customer is None:
                        raise CustomerNotFoundError(account_number)

                    balance = customer.outstanding_balance
                    if value > balance:
                        raise OverpaymentRejectedError(account_number, value, balance)

                    payment = Payment(
                        account_number=account_number,
                        amount=value,
                        created_at=self.clock()
                    )
                    db.add(payment)
                    customer.outstanding_balance = balance - value
                    await db.flush()

                    await log_event(
                        db=db,
                        action=AuditAction.PAYMENT_APPLIED,
                        account_number=account_number,
                        metadata={
                            "payment_id": payment.id,
                            "amount": str(value),
                            "outstanding_balance": str(customer.outstanding_balance)
                        }
                    )
                    new_balance = customer.outstanding_balance
        except LockTimeoutError:
            logger.warning(
                "payment_lock_timeout",
                extra={"account_number": account_number, "timeout_seconds": self.lock_timeout}
            )
            raise
        except AppException as exc:
            logger.info(
                "payment_rejected",
                extra={"account_number": account_number, "amount": str(value), "error_code": exc.error_code}
            )
            raise
        except DBAPIError as exc:
            if is_lock_timeout(exc):
                logger.warning(
                    "payment_lock_timeout",
                    extra={"account_number": account_number, "timeout_seconds": self.lock_timeout}
                )
                raise LockTimeoutError(account_number, self.lock_timeout) from exc
            logger.error(
                "payment_storage_failure",
                extra={"account_number": account_number, "error": str(exc.orig)}
            )
            raise StorageFailureError(details={"account_number": account_number}) from exc
        except SQLAlchemyError as exc:
            logger.error(
                "payment_storage_failure",
                extra={"account_number": account_number, "error": str(exc)}
            )
            raise StorageFailureError(details={"account_number": account_number}) from exc

        logger.info(
            "payment_applied",
            extra={
                "account_number": account_number,
                "payment_id": payment.id,
                "amount": str(value),
                "outstanding_balance": str(new_balance)
            }
        )
        return AppliedPayment(payment=payment, outstanding_balance=new_balance)

    async def list_payments(self, db: AsyncSession, account_number: str) -> List[Payment]:
        """
        Committed payments for an account in commit order.

        Raises:
            CustomerNotFoundError: if the account does not exist
        """
        await self._require_customer(db, account_number)
        result = await db.execute(
            select(Payment)
            .where(Payment.account_number == account_number)
            .order_by(Payment.id)
        )
        return list(result.scalars().all())

    async def reconcile(self, db: AsyncSession, account_number: str) -> ReconciliationReport:
        """
        Recompute the balance from the ledger and compare it with the cached one.

        Raises:
            CustomerNotFoundError: if the account does not exist
        """
        customer = await self._require_customer(db, account_number)
        result = await db.execute(
            select(func.coalesce(func.sum(Payment.amount), 0), func.count(Payment.id))
            .where(Payment.account_number == account_number)
        )
        total, count = result.one()
        total_paid = quantize_money(Decimal(str(total)))
        opening = quantize_money(customer.opening_balance)

        return ReconciliationReport(
            account_number=account_number,
            opening_balance=opening,
            total_paid=total_paid,
            payment_count=count,
            expected_balance=opening - total_paid,
            outstanding_balance=quantize_money(customer.outstanding_balance)
        )

    def uses_row_locks(self, db: AsyncSession) -> bool:
        return db.get_bind().dialect.name in ROW_LOCK_DIALECTS

    @asynccontextmanager
    async def _exclusive(self, db: AsyncSession, account_number: str) -> AsyncIterator[None]:
        if self.uses_row_locks(db):
            yield
        else:
            async with self.locks.hold(account_number, self.lock_timeout):
                yield

    async def _set_lock_timeout(self, db: AsyncSession) -> None:
        if db.get_bind().dialect.name == "postgresql":
            # SET does not accept bind parameters
            timeout_ms = max(1, int(self.lock_timeout * 1000))
            await db.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))

    async def _lock_customer(self, db: AsyncSession, account_number: str) -> Optional[Customer]:
        result = await db.execute(
            select(Customer)
            .where(Customer.account_number == account_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _require_customer(self, db: AsyncSession, account_number: str) -> Customer:
        result = await db.execute(
            select(Customer)
            .where(Customer.account_number == account_number)
            .execution_options(populate_existing=True)
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            raise CustomerNotFoundError(account_number)
        return customer


payment_ledger = PaymentLedger()


def get_payment_ledger() -> PaymentLedger:
    """FastAPI dependency for the shared ledger."""
    return payment_ledger
