"""
Customer Service.

Creates and reads loan customers. Balances are never changed here;
only the payment ledger mutates outstanding_balance.
"""

from typing import List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from backend.app.core.exceptions import CustomerExistsError, CustomerNotFoundError
from backend.app.db.session import unit_of_work
from backend.app.models.customer import Customer
from backend.app.schemas.customer import CustomerCreate
from backend.app.services.audit import log_event, AuditAction
from backend.app.services.emi import calculate_emi, quantize_money


class CustomerService:

    @staticmethod
    async def create_customer(db: AsyncSession, data: CustomerCreate) -> Customer:
        """
        Create a customer.

        The opening balance is the submitted outstanding balance. When the
        EMI is omitted it is derived from balance, rate and tenure.

        Raises:
            CustomerExistsError: if the account number is already taken
        """
        balance = quantize_money(data.outstanding_balance)
        emi = data.emi_due_amount
        if emi is None:
            emi = calculate_emi(balance, data.interest_rate, data.tenure_months)

        customer = Customer(
            account_number=data.account_number,
            customer_name=data.customer_name,
            issue_date=data.issue_date,
            interest_rate=data.interest_rate,
            tenure_months=data.tenure_months,
            emi_due_amount=quantize_money(emi),
            opening_balance=balance,
            outstanding_balance=balance
        )

        try:
            async with unit_of_work(db):
                db.add(customer)
                await db.flush()
                await log_event(
                    db=db,
                    action=AuditAction.CUSTOMER_CREATED,
                    account_number=customer.account_number,
                    metadata={
                        "customer_name": customer.customer_name,
                        "opening_balance": str(balance),
                        "emi_due_amount": str(customer.emi_due_amount)
                    }
                )
        except IntegrityError:
            raise CustomerExistsError(data.account_number) from None

        await db.refresh(customer)
        return customer

    @staticmethod
    async def get_customer(db: AsyncSession, account_number: str) -> Customer:
        """
        Raises:
            CustomerNotFoundError
        """
        result = await db.execute(
            select(Customer)
            .where(Customer.account_number == account_number)
            .execution_options(populate_existing=True)
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            raise CustomerNotFoundError(account_number)
        return customer

    @staticmethod
    async def list_customers(
        db: AsyncSession,
        page: int = 1,
        page_size: int = 50,
        name: Optional[str] = None
    ) -> Tuple[List[Customer], int]:
        """Paginated customers ordered by account number, with total count."""
        count_query = select(func.count(Customer.id))
        query = select(Customer).execution_options(populate_existing=True)
        if name:
            count_query = count_query.where(Customer.customer_name.ilike(f"%{name}%"))
            query = query.where(Customer.customer_name.ilike(f"%{name}%"))

        total_result = await db.execute(count_query)
        total = total_result.scalar()

        offset = (page - 1) * page_size
        result = await db.execute(
            query.order_by(Customer.account_number).offset(offset).limit(page_size)
        )
        return list(result.scalars().all()), total
