"""
Payment Schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Any, List


class PaymentCreate(BaseModel):
    """
    Schema for applying an EMI payment.

    ``amount`` is passed through untyped; parse_amount validates it so
    every invalid amount, booleans and objects included, surfaces as
    ERR_PAYMENT_001.
    """
    account_number: str = Field(..., min_length=1, max_length=32)
    amount: Any = Field(..., description="Positive amount with at most 2 decimal places")


class PaymentResponse(BaseModel):
    """Schema for displaying a committed payment."""
    id: int
    account_number: str
    amount: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class PaymentAppliedResponse(BaseModel):
    """Response for a successful payment."""
    payment: PaymentResponse
    outstanding_balance: Decimal


class PaymentListResponse(BaseModel):
    """Ledger for one account, in commit order."""
    account_number: str
    payments: List[PaymentResponse]
    total: int


class ReconciliationResponse(BaseModel):
    """Cached balance versus balance recomputed from the ledger."""
    account_number: str
    opening_balance: Decimal
    total_paid: Decimal
    payment_count: int
    expected_balance: Decimal
    outstanding_balance: Decimal
    in_balance: bool

    class Config:
        from_attributes = True
