"""
Zone Matching API Endpoints.

Geocodes an address and lists every zone of the requested type containing it.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_engine
from backend.app.db.session import get_db
from backend.app.domain.allocation.engine import AllocationEngine
from backend.app.schemas.zone import ZoneMatchCandidate, ZoneMatchRequest, ZoneMatchResponse

router = APIRouter(prefix="/zones", tags=["Zones"])


@router.post("/match", response_model=ZoneMatchResponse)
async def match_address(
    request: ZoneMatchRequest,
    db: AsyncSession = Depends(get_db),
    engine: AllocationEngine = Depends(get_engine),
):
    """
    Match an address against zones.

    Returns all matches, nearest first; `ambiguous` is set when more than one
    zone contains the address and the customer has to pick one.
    """
    point, matches = await engine.match_address(db, request.address, request.zone_type, request.country_code)
    return ZoneMatchResponse(
        latitude=point.lat,
        longitude=point.lon,
        matches=[ZoneMatchCandidate(**m.as_candidate()) for m in matches],
        ambiguous=len(matches) > 1,
    )
