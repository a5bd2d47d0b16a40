from __future__ import annotations

import logging
from datetime import datetime, timezone

from feedcache.telemetry import TelemetryEvent, emit_event, register_listener, unregister_listener


def test_emit_event_sanitizes_payload_and_logs(events, caplog) -> None:
    caplog.set_level(logging.INFO, logger="feedcache.telemetry")

    emit_event(
        "feed_delivery",
        user_id="u1",
        at=datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc),
        categories={"science", "art"},
        hours=(8, 13),
    )

    assert len(events) == 1
    payload = events[0].payload
    assert payload["at"] == "2026-10-19T12:00:00+00:00"
    assert payload["categories"] == ["art", "science"]
    assert payload["hours"] == [8, 13]
    assert any("TELEMETRY" in record.getMessage() and "feed_delivery" in record.getMessage() for record in caplog.records)


def test_failing_listener_does_not_reach_caller(events) -> None:
    def broken(event: TelemetryEvent) -> None:
        raise RuntimeError("listener bug")

    register_listener(broken)
    try:
        emit_event("feed_task", job="cleanup_expired", status="success")
    finally:
        unregister_listener(broken)

    assert [event.name for event in events] == ["feed_task"]
