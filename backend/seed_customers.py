"""
Database seeding script for demo customers.

Creates a few loan customers for development and manual testing.
Run this script after the database is reachable; tables are created if missing.
"""

import asyncio
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.models.customer import Customer
from backend.app.models.payment import Payment
from backend.app.models.audit_log import AuditLog
from backend.app.schemas.customer import CustomerCreate
from backend.app.services.customers import CustomerService
from sqlalchemy import select


DEMO_CUSTOMERS = [
    CustomerCreate(
        account_number="ACC001",
        customer_name="Asha Verma",
        issue_date=date(2024, 1, 15),
        interest_rate=Decimal("10.5"),
        tenure_months=60,
        outstanding_balance=Decimal("250000.00"),
    ),
    CustomerCreate(
        account_number="ACC002",
        customer_name="Rahul Iyer",
        issue_date=date(2024, 3, 1),
        interest_rate=Decimal("12.0"),
        tenure_months=36,
        emi_due_amount=Decimal("6642.86"),
        outstanding_balance=Decimal("200000.00"),
    ),
    CustomerCreate(
        account_number="ACC003",
        customer_name="Meera Nair",
        issue_date=date(2023, 11, 20),
        interest_rate=Decimal("0"),
        tenure_months=12,
        outstanding_balance=Decimal("60000.00"),
    ),
]


async def seed_customers():
    """
    Seed demo customers.

    Existing account numbers are skipped, so the script can be re-run.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting customer seeding...")

        created = 0
        for data in DEMO_CUSTOMERS:
            result = await db.execute(
                select(Customer.id).where(Customer.account_number == data.account_number)
            )
            if result.scalar_one_or_none():
                print(f"ℹ️  {data.account_number} already exists, skipping")
                continue

            customer = await CustomerService.create_customer(db, data)
            created += 1
            print(
                f"✅ Created {customer.account_number} ({customer.customer_name}) "
                f"balance={customer.outstanding_balance} emi={customer.emi_due_amount}"
            )

        print(f"\n🎉 Customer seeding completed: {created} created")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_customers())
