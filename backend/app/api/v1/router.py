"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import customers, payments

router = APIRouter()

router.include_router(customers.router)
router.include_router(payments.router)
