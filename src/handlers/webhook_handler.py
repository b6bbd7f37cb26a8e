"""Turns a GCP webhook call into a queued delivery task.

Idempotent: a delivery id seen within the retention horizon is acknowledged
without being queued again. Delivery itself happens after the response, in
the pipeline; the caller only learns whether the alert was accepted.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from src.bridge import Bridge
from src.delivery.task import DeliveryTask
from src.errors import PipelineClosed, Unauthenticated
from src.handlers.twist_handler import find_integration
from src.handlers.verifier import verify_and_parse
from src.schemas.events import WebhookResponse
from src.templates.twist_templates import (
    build_alert_message,
    build_thread_opening,
    build_thread_title,
)

logger = logging.getLogger(__name__)


async def handle_gcp_webhook(
    bridge: Bridge,
    db: AsyncSession,
    install_id: str,
    raw_payload: bytes,
    headers: Mapping[str, str],
) -> WebhookResponse:
    """Verify, deduplicate and enqueue one notification.

    Raises ``VerifyError`` for rejected calls, ``StoreError`` when the
    integration or dedup store is unavailable and ``PipelineClosed`` during
    shutdown.
    """
    integration = await find_integration(db, install_id)
    if integration is None:
        logger.warning("no twist integration found with id %s", install_id)
        raise Unauthenticated("unknown installation")

    event = verify_and_parse(raw_payload, headers, bridge.settings.webhook_secret)

    # Scope keys per installation so two workspaces never share a thread.
    incident_key = f"{install_id}/{event.incident_key}"
    dedup_id = f"{install_id}/{event.id}"
    if not bridge.dedup.accept(dedup_id):
        logger.info("Duplicate delivery %s for incident %s; skipping", event.id, incident_key)
        return WebhookResponse(status="duplicate", event_id=event.id, incident_key=event.incident_key)

    task = DeliveryTask(
        incident_key=incident_key,
        event_id=event.id,
        state=event.state,
        message_body=build_alert_message(event),
        thread_title=build_thread_title(event),
        thread_opening=build_thread_opening(event),
        channel_id=integration.channel_id or bridge.settings.twist_default_channel_id,
    )
    try:
        bridge.pipeline.enqueue(task)
    except PipelineClosed:
        # let the provider retry against the next process
        bridge.dedup.forget(dedup_id)
        raise
    logger.info("Accepted %s (%s) for incident %s", event.id, event.state.value, incident_key)
    return WebhookResponse(status="accepted", event_id=event.id, incident_key=event.incident_key)
