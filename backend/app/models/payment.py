"""
Payment database model.

Append-only EMI payment ledger.
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, CheckConstraint
from backend.app.db.session import Base
from backend.app.models.customer import MONEY


class Payment(Base):
    """
    Payment model.

    Created exactly once, inside the transaction that decrements the
    customer's balance. NO updates or deletions allowed.
    """
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Linkage
    account_number = Column(
        String(32),
        ForeignKey("customers.account_number"),
        nullable=False,
        index=True
    )

    # Financials
    amount = Column(MONEY, nullable=False)

    # Timestamps (Immutable - no updated_at). Set from the ledger clock.
    created_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<Payment(id={self.id}, account='{self.account_number}', amount={self.amount})>"
