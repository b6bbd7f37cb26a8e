"""Twist integration routes: configure and outgoing webhooks."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.bridge import Bridge, get_bridge
from src.database import get_db
from src.errors import StoreError
from src.handlers.twist_handler import UnsupportedEvent, handle_configure, handle_outgoing
from src.schemas.twist import TwistOnConfigure, TwistOutgoing, TwistReply

router = APIRouter(prefix="/twist", tags=["twist"])


@router.get("/on_configure", response_class=PlainTextResponse)
async def twist_configure(
    install_id: str,
    post_data_url: str,
    user_id: str,
    user_name: str,
    channel_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    bridge: Bridge = Depends(get_bridge),
) -> str:
    """Twist calls this when a user configures the integration."""
    cfg = TwistOnConfigure(
        install_id=install_id,
        post_data_url=post_data_url,
        user_id=user_id,
        user_name=user_name,
        channel_id=channel_id,
    )
    try:
        return await handle_configure(db, bridge.client, cfg)
    except StoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.post("/outgoing", response_model=TwistReply)
async def twist_outgoing(
    event: TwistOutgoing,
    db: AsyncSession = Depends(get_db),
) -> TwistReply:
    try:
        return await handle_outgoing(db, event)
    except UnsupportedEvent as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except StoreError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
