"""Tests for the append-only event log — hashing, persistence, and recovery."""

import json
import pytest
from datetime import datetime, timezone
from pathlib import Path

from buyout.persistence.event_log import EventKind, EventLog, EventRecord


def _now() -> datetime:
    return datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


def _event(event_id: str = "EVT-00000001", item_id: int = 1) -> EventRecord:
    return EventRecord.create(
        event_id=event_id,
        event_kind=EventKind.BID_PLACED,
        actor_id="alice",
        payload={"item_id": item_id, "price": 10**17},
        timestamp_utc=_now(),
    )


class TestEventRecord:
    def test_hash_is_deterministic(self) -> None:
        assert _event().event_hash == _event().event_hash
        assert _event().event_hash.startswith("sha256:")

    def test_hash_covers_payload(self) -> None:
        assert _event(item_id=1).event_hash != _event(item_id=2).event_hash

    def test_timestamp_format(self) -> None:
        assert _event().timestamp_utc == "2026-03-02T12:00:00Z"


class TestEventLog:
    def test_append_and_filter(self) -> None:
        log = EventLog()
        log.append(_event("EVT-00000001", item_id=1))
        log.append(EventRecord.create(
            "EVT-00000002", EventKind.CLAIMED, "bob", {"epoch": 0}, _now(),
        ))
        assert log.count == 2
        assert len(log.events(EventKind.BID_PLACED)) == 1
        assert [e.event_id for e in log.events_for_item(1)] == ["EVT-00000001"]
        assert log.last_event.event_kind == EventKind.CLAIMED

    def test_duplicate_rejected(self) -> None:
        log = EventLog()
        log.append(_event())
        with pytest.raises(ValueError, match="Duplicate"):
            log.append(_event())
        assert log.count == 1


class TestPersistence:
    def test_reload_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        log = EventLog(path)
        log.append(_event("EVT-00000001"))
        log.append(_event("EVT-00000002", item_id=2))

        reloaded = EventLog(path)
        assert reloaded.count == 2
        assert reloaded.events()[1].payload["item_id"] == 2
        assert reloaded.events()[0].event_hash == log.events()[0].event_hash

    def test_large_amounts_survive_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(path).append(EventRecord.create(
            "EVT-00000001", EventKind.FRACTIONALISED, "seller",
            {"total_supply": 2**127}, _now(),
        ))
        assert EventLog(path).events()[0].payload["total_supply"] == 2**127

    def test_tampered_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(path).append(_event())
        data = json.loads(path.read_text(encoding="utf-8"))
        data["payload"]["price"] = 1
        path.write_text(json.dumps(data) + "\n", encoding="utf-8")
        with pytest.raises(ValueError, match="Integrity check failed"):
            EventLog(path)

    def test_replayed_record_rejected(self, tmp_path: Path) -> None:
        path = tmp_path / "events.jsonl"
        EventLog(path).append(_event())
        line = path.read_text(encoding="utf-8")
        path.write_text(line + line, encoding="utf-8")
        with pytest.raises(ValueError, match="Duplicate event ID on recovery"):
            EventLog(path)
