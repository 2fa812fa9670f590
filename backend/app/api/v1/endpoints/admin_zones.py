"""
Admin Zone API Endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_engine
from backend.app.db.session import get_db
from backend.app.domain.allocation.engine import AllocationEngine
from backend.app.models.enums import ZoneType
from backend.app.schemas.zone import ZoneCreate, ZoneListResponse, ZoneResponse

router = APIRouter(prefix="/admin/zones", tags=["Admin - Zones"])


@router.post("", response_model=ZoneResponse, status_code=status.HTTP_201_CREATED)
async def create_zone(
    data: ZoneCreate,
    actor: str = Header("admin", alias="X-Actor"),
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """Create a pickup or delivery zone."""
    zone = await engine.create_zone(db, data, actor=actor)
    return ZoneResponse.model_validate(zone)


@router.get("", response_model=ZoneListResponse)
async def list_zones(
    zone_type: Optional[ZoneType] = Query(None, description="Filter by zone type"),
    db: AsyncSession = Depends(get_db),
):
    zones = await AllocationEngine.list_zones(db, zone_type)
    return ZoneListResponse(zones=[ZoneResponse.model_validate(z) for z in zones], total=len(zones))


@router.delete("/{zone_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_zone(
    zone_id: int,
    actor: str = Header("admin", alias="X-Actor"),
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """
    Delete a zone.

    Refused with 409 while any producer, reservation or pallet references it.
    """
    await engine.delete_zone(db, zone_id, actor=actor)
