"""
Customer Pydantic schemas.

Defines request and response models for customer management.
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List


class CustomerCreate(BaseModel):
    """Schema for creating a new customer."""
    account_number: str = Field(..., min_length=1, max_length=32, pattern=r"^[A-Za-z0-9_-]+$")
    customer_name: str = Field(..., min_length=1, max_length=200)
    issue_date: date
    interest_rate: Decimal = Field(..., ge=0, le=100, decimal_places=3, description="Annual rate in percent")
    tenure_months: int = Field(..., gt=0, le=600)
    emi_due_amount: Optional[Decimal] = Field(
        None, gt=0, decimal_places=2, description="Computed from balance, rate and tenure when omitted"
    )
    outstanding_balance: Decimal = Field(..., ge=0, le=Decimal("999999999999.99"), decimal_places=2)


class CustomerResponse(BaseModel):
    """Schema for customer response."""
    account_number: str
    customer_name: str
    issue_date: date
    interest_rate: Decimal
    tenure_months: int
    emi_due_amount: Decimal
    opening_balance: Decimal
    outstanding_balance: Decimal
    created_at: datetime

    class Config:
        from_attributes = True


class CustomerListResponse(BaseModel):
    """Schema for paginated customer list."""
    customers: List[CustomerResponse]
    total: int
    page: int
    page_size: int
