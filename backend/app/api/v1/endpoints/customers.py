"""
Customer API Endpoints.

Create and browse loan customers, and reconcile their ledgers.
"""

from typing import Optional
from fastapi import APIRouter, Depends, status, Query, Path
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.schemas.customer import CustomerCreate, CustomerResponse, CustomerListResponse
from backend.app.schemas.payment import ReconciliationResponse
from backend.app.services.customers import CustomerService
from backend.app.services.payment_ledger import PaymentLedger, get_payment_ledger

router = APIRouter(prefix="/customers", tags=["Customers"])


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_data: CustomerCreate,
    db: AsyncSession = Depends(get_db)
):
    """
    Create a new loan customer.

    The submitted outstanding balance becomes the opening balance.
    Returns 409 if the account number already exists.
    """
    customer = await CustomerService.create_customer(db, customer_data)
    return CustomerResponse.model_validate(customer)


@router.get("", response_model=CustomerListResponse)
async def list_customers(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    name: Optional[str] = Query(None, max_length=200, description="Filter by name fragment"),
    db: AsyncSession = Depends(get_db)
):
    """List customers ordered by account number."""
    customers, total = await CustomerService.list_customers(db, page=page, page_size=page_size, name=name)

    return CustomerListResponse(
        customers=[CustomerResponse.model_validate(c) for c in customers],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/{account_number}", response_model=CustomerResponse)
async def get_customer(
    account_number: str = Path(..., max_length=32),
    db: AsyncSession = Depends(get_db)
):
    """Get a single customer with the current outstanding balance."""
    customer = await CustomerService.get_customer(db, account_number)
    return CustomerResponse.model_validate(customer)


@router.get("/{account_number}/reconciliation", response_model=ReconciliationResponse)
async def reconcile_customer(
    account_number: str = Path(..., max_length=32),
    db: AsyncSession = Depends(get_db),
    ledger: PaymentLedger = Depends(get_payment_ledger)
):
    """
    Compare the cached outstanding balance with opening balance minus
    the sum of committed payments.
    """
    report = await ledger.reconcile(db, account_number)
    return ReconciliationResponse.model_validate(report)
