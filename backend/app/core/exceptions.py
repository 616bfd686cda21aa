"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers. Every
failure of the payment ledger is one of the typed errors below, so the
API layer can map each kind to a stable response signal.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict

logger = logging.getLogger("emi.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 500,
        details: Dict[str, Any] = None,
        retryable: bool = False
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        self.retryable = retryable
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class CustomerNotFoundError(ResourceNotFoundError):
    """Raised when an account number does not reference a customer."""

    def __init__(self, account_number: str):
        self.account_number = account_number
        super().__init__(resource="Customer", resource_id=account_number)


class CustomerExistsError(AppException):
    """Raised when creating a customer whose account number is taken."""

    def __init__(self, account_number: str):
        super().__init__(
            message=f"Customer with account number {account_number} already exists",
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"account_number": account_number}
        )


class InvalidAmountError(AppException):
    """Raised when a payment amount fails input constraints."""

    def __init__(self, message: str, amount: Any = None):
        super().__init__(
            message=message,
            error_code="ERR_PAYMENT_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"amount": None if amount is None else str(amount)}
        )


class OverpaymentRejectedError(AppException):
    """Raised when a payment would drive the outstanding balance below zero."""

    def __init__(self, account_number: str, amount: Any, outstanding_balance: Any):
        super().__init__(
            message=(
                f"Payment of {amount} exceeds outstanding balance "
                f"{outstanding_balance} for account {account_number}"
            ),
            error_code="ERR_PAYMENT_002",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={
                "account_number": account_number,
                "amount": str(amount),
                "outstanding_balance": str(outstanding_balance)
            }
        )


class LockTimeoutError(AppException):
    """Raised when another payment holds the account lock past the wait bound."""

    def __init__(self, account_number: str, timeout_seconds: float = None):
        super().__init__(
            message=f"Another payment is in progress for account {account_number}",
            error_code="ERR_LOCK_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"account_number": account_number, "timeout_seconds": timeout_seconds},
            retryable=True
        )


class StorageFailureError(AppException):
    """Raised when the database fails during a payment; the transaction is aborted."""

    def __init__(self, message: str = "Storage failure while applying payment", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_STORAGE_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details=details,
            retryable=True
        )


class IdempotencyConflictError(AppException):
    """Raised when a request with the same Idempotency-Key is still being processed."""

    def __init__(self, idempotency_key: str):
        super().__init__(
            message="A request with this Idempotency-Key is already in progress",
            error_code="ERR_CONFLICT_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"idempotency_key": idempotency_key},
            retryable=True
        )


class IdempotencyKeyReusedError(AppException):
    """Raised when an Idempotency-Key is replayed with a different payment."""

    def __init__(self, idempotency_key: str):
        super().__init__(
            message="Idempotency-Key was already used for a different payment",
            error_code="ERR_CONFLICT_003",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"idempotency_key": idempotency_key}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details,
            "retryable": exc.retryable
        },
        headers=headers
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        405: "ERR_METHOD_NOT_ALLOWED",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {},
            "retryable": False
        }
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_encoder(exc.errors())
            },
            "retryable": False
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "exception_type": type(exc).__name__}
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {},
            "retryable": False
        }
    )
