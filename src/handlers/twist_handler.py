"""Twist installation lifecycle: configure, outgoing webhooks, uninstall."""

from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.errors import SinkError, StoreError
from src.models.integration import TwistIntegration
from src.schemas.twist import TwistOnConfigure, TwistOutgoing, TwistReply

logger = logging.getLogger(__name__)

HELLO_MESSAGE = "Hello from the other side."

CONFIGURE_REPLY = """
Twist configuration successful.

# GCP Notification Channel
Webhook URL: {webhook_url}

A hello message has been sent to your thread and should appear per integration settings.

GCP Notifications will be show up in the thread as per integration settings.
"""


class UnsupportedEvent(ValueError):
    pass


def webhook_url(install_id: str) -> str:
    return f"https://{settings.server_name}{settings.api_prefix}/gcp/webhooks/{install_id}"


async def find_integration(db: AsyncSession, install_id: str) -> TwistIntegration | None:
    try:
        result = await db.execute(
            select(TwistIntegration).where(TwistIntegration.install_id == install_id)
        )
        return result.scalar_one_or_none()
    except SQLAlchemyError as exc:
        raise StoreError(f"integration lookup failed: {exc}") from exc


async def register_integration(db: AsyncSession, cfg: TwistOnConfigure) -> TwistIntegration:
    """Insert or update the installation identified by ``cfg.install_id``."""
    try:
        integration = await find_integration(db, cfg.install_id)
        if integration is None:
            integration = TwistIntegration(install_id=cfg.install_id)
            db.add(integration)
        integration.post_data_url = cfg.post_data_url
        integration.user_id = cfg.user_id
        integration.user_name = cfg.user_name
        integration.channel_id = cfg.channel_id
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreError(f"could not register integration: {exc}") from exc
    logger.info("configure for %s on %s", cfg.user_name, cfg.post_data_url)
    return integration


async def unregister_integration(db: AsyncSession, install_id: str) -> bool:
    try:
        result = await db.execute(
            delete(TwistIntegration).where(TwistIntegration.install_id == install_id)
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        raise StoreError(f"could not unregister integration: {exc}") from exc
    removed = result.rowcount > 0
    if removed:
        logger.info("Integration %s uninstalled", install_id)
    return removed


async def handle_configure(db: AsyncSession, client, cfg: TwistOnConfigure) -> str:
    """Register the installation, greet its thread, return the setup page."""
    await register_integration(db, cfg)
    try:
        await client.post_to_integration(cfg.post_data_url, HELLO_MESSAGE)
    except SinkError as exc:
        logger.warning("Hello message to %s failed: %s", cfg.post_data_url, exc)
    return CONFIGURE_REPLY.format(webhook_url=webhook_url(cfg.install_id))


async def handle_outgoing(db: AsyncSession, event: TwistOutgoing) -> TwistReply:
    if event.event_type == "ping":
        return TwistReply(content="pong")
    if event.event_type == "message":
        return TwistReply(content="")
    if event.event_type == "uninstall":
        if not event.install_id:
            raise UnsupportedEvent("uninstall event without install_id")
        await unregister_integration(db, event.install_id)
        return TwistReply(content="uninstalled!")
    raise UnsupportedEvent(f"unsupported event_type {event.event_type!r}")
