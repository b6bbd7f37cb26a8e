"""Pydantic models for GCP notification payloads and normalized alerts."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class AlertState(str, Enum):
    OPENED = "opened"
    ESCALATED = "escalated"
    RESOLVED = "resolved"


# Raw ``incident.state`` values sent by notification channels.
GCP_STATES: dict[str, AlertState] = {
    "open": AlertState.OPENED,
    "opened": AlertState.OPENED,
    "escalated": AlertState.ESCALATED,
    "closed": AlertState.RESOLVED,
    "resolved": AlertState.RESOLVED,
}


class GcpDocumentation(BaseModel):
    content: str = ""
    mime_type: str = "text/markdown"


class GcpResource(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    resource_type: str = Field(default="", alias="type")
    labels: dict[str, Any] = Field(default_factory=dict)


class GcpIncident(BaseModel):
    """``incident`` object of a Cloud Monitoring webhook.

    Uptime-check payloads carry no resource; log-based alert payloads carry no
    state. Both shapes are accepted.
    """

    model_config = ConfigDict(extra="ignore")

    incident_id: Optional[str] = None
    policy_name: str
    url: str = ""
    state: Optional[str] = None
    summary: str = ""
    condition_name: str = ""
    started_at: Optional[int] = None
    ended_at: Optional[int] = None
    resource: Optional[GcpResource] = None
    documentation: Optional[GcpDocumentation] = None


class GcpWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    incident: GcpIncident
    version: str = ""


class AlertEvent(BaseModel):
    """One inbound notification, normalized."""

    id: str
    incident_key: str
    state: AlertState
    summary: str = ""
    resource: dict[str, str] = Field(default_factory=dict)
    received_at: datetime

    policy_name: str = ""
    condition_name: str = ""
    url: str = ""
    resource_type: str = ""
    documentation: str = ""


class WebhookResponse(BaseModel):
    status: str
    event_id: Optional[str] = None
    incident_key: Optional[str] = None
