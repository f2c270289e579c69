"""
Event normalizer: raw transport payloads to canonical lifecycle events
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import structlog

from session_monitor.core.exceptions import MalformedPayload
from session_monitor.schemas.session import EventKind, LifecycleEvent

logger = structlog.get_logger(__name__)

UNKNOWN_DEVICE = "unknown"

# Ordered by priority: the first present key wins
DEVICE_ID_KEYS: Tuple[str, ...] = ("deviceId", "device_id", "playerId", "player_id")
DISPLAY_NAME_KEYS: Tuple[str, ...] = ("displayName", "deviceName", "playerName", "name")
KIND_KEYS: Tuple[str, ...] = ("event", "type")
SESSION_ID_KEYS: Tuple[str, ...] = ("sessionId", "session_id")
TIMESTAMP_KEY = "timestamp"
# Exclusive bounds for accepted timestamps
MIN_YEAR = 1
MAX_YEAR = 9999

KIND_ALIASES: Dict[str, EventKind] = {
    "game_start": EventKind.START,
    "start": EventKind.START,
    "game_end": EventKind.END,
    "end": EventKind.END,
}

RawPayload = Union[bytes, bytearray, str, Mapping[str, Any]]


def normalize(raw: RawPayload, received_at: Optional[datetime] = None) -> LifecycleEvent:
    """Turn a raw payload into a :class:`LifecycleEvent`.

    Raises :class:`MalformedPayload` for undecodable or structurally invalid
    payloads. A missing device id is not an error: the event is attributed to
    the ``"unknown"`` device.
    """
    received_at = received_at or datetime.now(timezone.utc)
    data = _decode(raw)

    device_id = _device_id(data)
    raw_kind = _first_value(data, KIND_KEYS)
    kind = KIND_ALIASES.get(raw_kind, EventKind.UNKNOWN) if isinstance(raw_kind, str) else EventKind.UNKNOWN
    session_id = _first_value(data, SESSION_ID_KEYS)
    display_name = _first_value(data, DISPLAY_NAME_KEYS)

    return LifecycleEvent(
        device_id=device_id,
        kind=kind,
        timestamp=parse_timestamp(data.get(TIMESTAMP_KEY)) or received_at,
        received_at=received_at,
        session_id=str(session_id) if session_id is not None else None,
        display_name=str(display_name) if display_name is not None else None,
        raw_kind=str(raw_kind) if raw_kind is not None else None,
        attributes=dict(data),
    )


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string or epoch milliseconds; None when unusable.

    Naive values are taken as UTC. Instants in the first or last
    representable year are rejected; they cannot be shifted into every
    calendar timezone.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        elif isinstance(value, str):
            text = value.strip()
            if text.endswith(("Z", "z")):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
        else:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        parsed = parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None

    if not MIN_YEAR < parsed.year < MAX_YEAR:
        return None
    return parsed


def _decode(raw: RawPayload) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPayload(f"payload is not valid UTF-8: {exc}") from exc
    if not isinstance(raw, str):
        raise MalformedPayload(f"unsupported payload type {type(raw).__name__}")
    try:
        data = json.loads(raw)
    except ValueError as exc:
        raise MalformedPayload(f"payload is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedPayload(f"payload must be a JSON object, got {type(data).__name__}")
    return data


def _device_id(data: Mapping[str, Any]) -> str:
    value = _first_value(data, DEVICE_ID_KEYS)
    if value is None:
        return UNKNOWN_DEVICE
    if isinstance(value, (dict, list)):
        raise MalformedPayload("device identifier must be a scalar value")
    return str(value)


def _first_value(data: Mapping[str, Any], keys: Tuple[str, ...]) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None
