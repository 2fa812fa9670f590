"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers for the
allocation engine's error taxonomy.
"""

import logging
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
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


class GeocodeError(AppException):
    """
    Raised when an address cannot be turned into coordinates.

    Recoverable: the caller may retry with a more specific address or
    fall back to manual zone selection.
    """

    def __init__(self, address: str, reason: str = "GEOCODING_FAILED", message: Optional[str] = None):
        self.address = address
        self.reason = reason
        super().__init__(
            message=message or f"Failed to geocode address '{address}'",
            error_code="ERR_GEO_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"address": address, "reason": reason}
        )


class AmbiguousZoneMatch(AppException):
    """Raised when a point falls inside more than one zone of the requested type."""

    def __init__(self, zone_type: str, candidates: List[Dict[str, Any]]):
        self.candidates = candidates
        super().__init__(
            message=f"Address matches {len(candidates)} {zone_type} zones; manual selection required",
            error_code="ERR_GEO_002",
            status_code=status.HTTP_409_CONFLICT,
            details={"zone_type": zone_type, "candidates": candidates}
        )


class MixedPickupZoneError(AppException):
    """Raised when a reservation spans producers with different pickup zones."""

    def __init__(self, pickup_zone_ids: List[int]):
        self.pickup_zone_ids = pickup_zone_ids
        super().__init__(
            message="Order contains wines from producers in different pickup zones",
            error_code="ERR_ZONE_001",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"pickup_zone_ids": pickup_zone_ids}
        )


class ZonePairConflict(AppException):
    """Raised when a second non-terminal pallet would claim an occupied zone pair."""

    def __init__(self, pickup_zone_id: int, delivery_zone_id: int, existing_pallet_id: Optional[int] = None):
        super().__init__(
            message=(
                f"Zone pair ({pickup_zone_id}, {delivery_zone_id}) is already held "
                f"by active pallet {existing_pallet_id}"
            ),
            error_code="ERR_ZONE_002",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "pickup_zone_id": pickup_zone_id,
                "delivery_zone_id": delivery_zone_id,
                "existing_pallet_id": existing_pallet_id,
            }
        )


class InvalidZoneError(AppException):
    """Raised when a zone is missing or of the wrong type for its role."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_ZONE_003",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class ReferencedZoneDeletion(AppException):
    """Raised when deleting a zone that pallets, reservations or producers still use."""

    def __init__(self, zone_id: int, references: Dict[str, List[int]]):
        super().__init__(
            message=f"Zone {zone_id} is still referenced and cannot be deleted",
            error_code="ERR_ZONE_004",
            status_code=status.HTTP_409_CONFLICT,
            details={"zone_id": zone_id, "references": references}
        )


class InvalidStateTransition(AppException):
    """Raised when a pallet or reservation is not in a state that allows the action."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_STATE_001",
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class ConfirmationRequired(AppException):
    """Raised when a destructive admin action is called without its confirmation token."""

    def __init__(self, expected: str):
        super().__init__(
            message=f'Confirmation required. Send {{"confirm": "{expected}"}}.',
            error_code="ERR_CONFIRM_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details={"expected": expected}
        )


class PalletLockTimeout(AppException):
    """Raised when the per-pallet lock cannot be acquired in time."""

    def __init__(self, lock_key: str):
        super().__init__(
            message=f"Timed out waiting for pallet lock {lock_key}",
            error_code="ERR_LOCK_001",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"lock": lock_key}
        )


class NoZoneMatch(AppException):
    """Raised when an address lies outside every zone of the requested type."""

    def __init__(self, zone_type: str, address: Optional[str] = None):
        super().__init__(
            message=f"No {zone_type} zone covers this address; select a zone manually",
            error_code="ERR_GEO_003",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"zone_type": zone_type, "address": address}
        )


class CollaboratorUnavailable(AppException):
    """Raised when an external collaborator (pricing, payments) fails."""

    def __init__(self, collaborator: str, reason: str):
        self.collaborator = collaborator
        super().__init__(
            message=f"{collaborator} service unavailable: {reason}",
            error_code="ERR_UPSTREAM_001",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"collaborator": collaborator, "reason": reason}
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    # Map status code to error code
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
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
                "errors": [
                    {"loc": list(err.get("loc", [])), "msg": err.get("msg"), "type": err.get("type")}
                    for err in exc.errors()
                ]
            }
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception: %s: %s", type(exc).__name__, exc)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
