"""
Customer database model.

A loan customer identified by an immutable account number. The
outstanding balance is mutated only by the payment ledger.
"""

from sqlalchemy import Column, Integer, String, Date, DateTime, Numeric, CheckConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base

MONEY = Numeric(14, 2, asdecimal=True)


class Customer(Base):
    """
    Customer model.

    Invariant: outstanding_balance == opening_balance - sum(payments.amount).
    The balance is maintained incrementally by the payment ledger and is
    never allowed below zero.
    """
    __tablename__ = "customers"
    __table_args__ = (
        CheckConstraint("outstanding_balance >= 0", name="ck_customers_outstanding_non_negative"),
        CheckConstraint("tenure_months > 0", name="ck_customers_tenure_positive"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    account_number = Column(String(32), unique=True, nullable=False, index=True)

    # Loan terms (immutable after creation)
    customer_name = Column(String(200), nullable=False)
    issue_date = Column(Date, nullable=False)
    interest_rate = Column(Numeric(6, 3, asdecimal=True), nullable=False)
    tenure_months = Column(Integer, nullable=False)
    emi_due_amount = Column(MONEY, nullable=False)
    opening_balance = Column(MONEY, nullable=False)

    # Mutable, ledger-owned
    outstanding_balance = Column(MONEY, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Customer(account_number='{self.account_number}', outstanding={self.outstanding_balance})>"
