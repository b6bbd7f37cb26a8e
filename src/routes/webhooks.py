"""GCP notification-channel webhook route."""

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.bridge import Bridge, get_bridge
from src.database import get_db
from src.errors import PipelineClosed, StoreError, VerifyError
from src.handlers.webhook_handler import handle_gcp_webhook
from src.schemas.events import WebhookResponse

router = APIRouter(tags=["webhooks"])


@router.post(
    "/gcp/webhooks/{install_id}",
    response_model=WebhookResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def gcp_webhook(
    install_id: str,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    bridge: Bridge = Depends(get_bridge),
) -> WebhookResponse:
    """Receive an incident notification from a GCP notification channel.

    Answers before delivery to Twist completes. Duplicate deliveries of the
    same notification are acknowledged with 200 and not relayed again.
    """
    raw = await request.body()
    try:
        result = await handle_gcp_webhook(bridge, db, install_id, raw, request.headers)
    except VerifyError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    except (StoreError, PipelineClosed) as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if result.status == "duplicate":
        response.status_code = status.HTTP_200_OK
    return result
