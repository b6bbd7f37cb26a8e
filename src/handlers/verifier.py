"""Authenticate and normalize GCP notification-channel webhooks."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone

from pydantic import ValidationError

from src.errors import Malformed, Unauthenticated
from src.schemas.events import GCP_STATES, AlertEvent, AlertState, GcpIncident, GcpWebhookPayload

logger = logging.getLogger(__name__)


def _presented_token(headers: Mapping[str, str]) -> str | None:
    """Extract the token from a bearer or basic ``Authorization`` header."""
    auth = headers.get("authorization") or headers.get("Authorization") or ""
    scheme, _, value = auth.strip().partition(" ")
    scheme = scheme.lower()
    if scheme == "bearer":
        return value.strip()
    if scheme == "basic":
        try:
            decoded = base64.b64decode(value.strip(), validate=True).decode()
        except (binascii.Error, UnicodeDecodeError):
            return None
        _, _, password = decoded.partition(":")
        return password
    return None


def check_token(headers: Mapping[str, str], secret: str) -> None:
    """Raise ``Unauthenticated`` unless the request carries ``secret``."""
    if not secret:
        return
    presented = _presented_token(headers)
    if presented is None or not hmac.compare_digest(presented.encode(), secret.encode()):
        raise Unauthenticated("missing or invalid webhook credentials")


def _incident_key(incident: GcpIncident, labels: dict[str, str]) -> str:
    if incident.incident_id:
        return incident.incident_id
    label_part = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
    return f"{incident.policy_name}|{label_part}" if label_part else incident.policy_name


def _event_id(incident_key: str, state: AlertState, incident: GcpIncident, raw: bytes) -> str:
    ts = incident.ended_at if state is AlertState.RESOLVED else incident.started_at
    if ts is None:
        ts = incident.started_at
    if ts is None:
        return hashlib.sha256(raw).hexdigest()
    return f"{incident_key}:{state.value}:{ts}"


def parse_alert(raw_payload: bytes | str, received_at: datetime | None = None) -> AlertEvent:
    """Parse a GCP webhook body into an ``AlertEvent``; raise ``Malformed``."""
    raw = raw_payload.encode() if isinstance(raw_payload, str) else raw_payload
    try:
        data = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as exc:
        raise Malformed(f"payload is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise Malformed("payload must be a JSON object")

    try:
        payload = GcpWebhookPayload.model_validate(data)
    except ValidationError as exc:
        raise Malformed(f"payload does not match a GCP incident: {exc.error_count()} error(s)") from exc

    incident = payload.incident
    if incident.state is None:
        # log-based alerts carry no state
        state = AlertState.OPENED
    else:
        state = GCP_STATES.get(incident.state.strip().lower())
        if state is None:
            raise Malformed(f"unknown incident state {incident.state!r}")

    resource = incident.resource
    labels = {k: str(v) for k, v in (resource.labels if resource else {}).items()}
    incident_key = _incident_key(incident, labels)

    return AlertEvent(
        id=_event_id(incident_key, state, incident, raw),
        incident_key=incident_key,
        state=state,
        summary=incident.summary,
        resource=labels,
        received_at=received_at or datetime.now(timezone.utc),
        policy_name=incident.policy_name,
        condition_name=incident.condition_name,
        url=incident.url,
        resource_type=resource.resource_type if resource else "",
        documentation=incident.documentation.content if incident.documentation else "",
    )


def verify_and_parse(
    raw_payload: bytes | str,
    headers: Mapping[str, str],
    secret: str = "",
) -> AlertEvent:
    """Authenticate the caller, then parse the payload.

    Raises ``Unauthenticated`` or ``Malformed``; the caller answers with an
    HTTP rejection and does not retry.
    """
    check_token(headers, secret)
    event = parse_alert(raw_payload)
    logger.debug("Parsed alert %s (%s) for incident %s", event.id, event.state.value, event.incident_key)
    return event
