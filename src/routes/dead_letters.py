"""Operator view of undeliverable alerts."""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.bridge import Bridge, get_bridge
from src.errors import StoreError
from src.schemas.twist import DeadLetterOut

router = APIRouter(tags=["operations"])


@router.get("/dead-letters", response_model=list[DeadLetterOut])
async def list_dead_letters(
    limit: int = Query(default=100, ge=1, le=1000),
    bridge: Bridge = Depends(get_bridge),
) -> list[DeadLetterOut]:
    """Most recent dead letters first."""
    try:
        rows = await bridge.dead_letters.recent(limit)
    except StoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [DeadLetterOut.model_validate(row) for row in rows]
