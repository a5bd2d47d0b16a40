"""Structured telemetry events for feed generation, delivery and maintenance."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import RLock
from typing import Any, Callable, Dict, List

logger = logging.getLogger("feedcache.telemetry")


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


TelemetryListener = Callable[[TelemetryEvent], None]

_listeners: List[TelemetryListener] = []
_lock = RLock()


def register_listener(listener: TelemetryListener) -> None:
    """Register an in-process listener (tests use this to capture events)."""
    with _lock:
        _listeners.append(listener)


def unregister_listener(listener: TelemetryListener) -> None:
    with _lock:
        if listener in _listeners:
            _listeners.remove(listener)


def clear_listeners() -> None:
    with _lock:
        _listeners.clear()


def emit_event(name: str, **fields: Any) -> None:
    """Log a structured event and hand it to every registered listener.

    Listener failures are logged and never reach the caller, so emitting from
    the request path or a scheduler task cannot change its outcome.
    """
    event = TelemetryEvent(name=name, payload=_sanitize(fields))

    with _lock:
        listeners = list(_listeners)

    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    structured = {"event": name, "at": event.emitted_at.isoformat(), **event.payload}
    logger.info("TELEMETRY %s", json.dumps(structured, default=str, sort_keys=True))


def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            sanitized[key] = value.isoformat()
        elif isinstance(value, Enum):
            sanitized[key] = value.value
        elif isinstance(value, (set, frozenset, tuple)):
            sanitized[key] = sorted(value) if isinstance(value, (set, frozenset)) else list(value)
        else:
            sanitized[key] = value
    return sanitized


__all__ = [
    "TelemetryEvent",
    "TelemetryListener",
    "clear_listeners",
    "emit_event",
    "register_listener",
    "unregister_listener",
]
