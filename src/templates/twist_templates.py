"""Twist message builders (Markdown)."""

from __future__ import annotations

from src.schemas.events import AlertEvent, AlertState

_STATE_EMOJI = {
    AlertState.OPENED: "🚨",
    AlertState.ESCALATED: "⚠️",
    AlertState.RESOLVED: "✅",
}

# Labels that name the affected resource in thread titles, most specific first.
_NAME_LABELS = ("container_name", "service_name", "instance_id", "host", "project_id")


def resource_name(event: AlertEvent) -> str | None:
    for label in _NAME_LABELS:
        value = event.resource.get(label)
        if value:
            return value
    return None


def build_alert_message(event: AlertEvent) -> str:
    """Build the comment posted to the incident thread."""
    if event.documentation and event.resource and event.state is AlertState.OPENED:
        container = event.resource.get("container_name") or "unknown"
        return (
            f"{_STATE_EMOJI[event.state]} {event.policy_name} on {container} "
            f"[incident]({event.url})\n\n{event.documentation}"
        )

    text = f"{_STATE_EMOJI[event.state]} {event.policy_name} [incident]({event.url})"
    body = event.summary or event.documentation
    if body:
        text += f"\n\n{body}"
    return text


def build_thread_title(event: AlertEvent) -> str:
    name = resource_name(event)
    if name:
        return f"{event.policy_name}: {name}"
    return event.policy_name or event.incident_key


def build_thread_opening(event: AlertEvent) -> str:
    """First post of a thread opened by an ``Opened`` alert."""
    lines = [f"Incident thread for **{event.policy_name}**."]
    if event.condition_name:
        lines.append(f"Condition: {event.condition_name}")
    if event.resource_type:
        lines.append(f"Resource type: `{event.resource_type}`")
    return "\n".join(lines)


def build_context_missing_note(state: AlertState) -> str:
    """First post of a thread created for an incident we never saw open."""
    return (
        f"ℹ️ Received a {state.value} notification for an incident with no "
        "recorded opening notification. Earlier context may be missing."
    )


def build_parse_failure(error: Exception, payload: str) -> str:
    return f"Failed to parse due to {error}:\n\n```\n{payload}\n```"
