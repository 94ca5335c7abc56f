"""
HTTP routes for match records and queue statistics.
"""
import logging

from fastapi import APIRouter, HTTPException

from api.dependencies import get_services
from api.schemas import StatsData, match_to_wire
from core.errors import MatchNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["matching"])


@router.get("/matches/{match_id}")
async def get_match(match_id: str):
    try:
        match = await get_services().matchmaker.get_match(match_id)
    except MatchNotFoundError:
        raise HTTPException(status_code=404, detail="Match not found")
    return match_to_wire(match)


@router.post("/matches/{match_id}/end")
async def end_match(match_id: str):
    """Mark a match as ended."""
    try:
        match = await get_services().matchmaker.end_match(match_id)
    except MatchNotFoundError:
        raise HTTPException(status_code=404, detail="Match not found")
    except Exception as e:
        logger.error(f"Failed to end match {match_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to end match")
    return match_to_wire(match)


@router.get("/matching/stats", response_model=StatsData)
async def matching_stats():
    """Queue statistics, same payload as the stats-updated event."""
    try:
        stats = await get_services().matchmaker.get_stats()
    except Exception as e:
        logger.error(f"Failed to get stats: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to get stats")
    return StatsData(**stats)
