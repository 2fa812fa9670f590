"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from backend.app.api.v1.endpoints import (
    zones, reservations, payments,
    admin_zones, admin_pallets, admin_ops
)

router = APIRouter()

# Customer-facing endpoints
router.include_router(zones.router)
router.include_router(reservations.router)

# Payment collaborator callbacks
router.include_router(payments.router)

# Admin endpoints
router.include_router(admin_zones.router)
router.include_router(admin_pallets.router)
router.include_router(admin_ops.router)
