"""Pydantic models for the Twist integration endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class TwistOnConfigure(BaseModel):
    """Query parameters Twist sends when an installation is configured."""

    install_id: str
    post_data_url: str
    user_id: str
    user_name: str
    channel_id: Optional[str] = None


class TwistOutgoing(BaseModel):
    """Outgoing webhook from Twist.

    ``event_type`` is one of message, thread, comment, uninstall, ping.
    """

    model_config = ConfigDict(extra="ignore")

    event_type: str
    user_id: str = ""
    user_name: str = ""
    # only on message, thread or comment
    content: Optional[str] = None
    # only when event_type = uninstall
    install_id: Optional[str] = None


class TwistReply(BaseModel):
    content: str


class DeadLetterOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    incident_key: str
    event_id: str
    last_error: str
    attempt_count: int
    created_at: datetime
