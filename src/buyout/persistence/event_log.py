"""Append-only audit log of protocol actions.

Every successful state change made through the service produces one
event. Records are immutable, hashed over their canonical JSON form, and
optionally persisted as JSONL (one object per line). Loading a log file
recomputes every hash and rejects tampered or replayed records.

Amounts in payloads are plain integers; JSON carries them exactly.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of protocol events."""
    ITEM_REGISTERED = "item_registered"
    EPOCH_OPENED = "epoch_opened"
    FRACTIONALISED = "fractionalised"
    ADDITIONAL_FRACTIONS_MINTED = "additional_fractions_minted"
    FRACTIONS_TRANSFERRED = "fractions_transferred"
    # Auction
    BID_PLACED = "bid_placed"
    BID_REMOVED = "bid_removed"
    AUCTION_STARTED = "auction_started"
    VOTE_CAST = "vote_cast"
    VOTE_REMOVED = "vote_removed"
    REDEEMED = "redeemed"
    # Distribution
    CLAIMED = "claimed"
    # Exit price governance
    EXIT_PRICE_UPDATED = "exit_price_updated"
    PROPOSAL_CREATED = "proposal_created"
    PROPOSAL_VOTED = "proposal_voted"
    PROPOSAL_VOTE_REMOVED = "proposal_vote_removed"
    PROPOSAL_FINALIZED = "proposal_finalized"
    ORACLE_ADDED = "oracle_added"
    ORACLE_REMOVED = "oracle_removed"


def _event_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable protocol event."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        ts = (timestamp_utc or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts,
            actor_id=actor_id,
            payload=payload,
            event_hash=_event_hash(event_id, event_kind.value, ts, actor_id, payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional JSONL persistence.

    Usage:
        log = EventLog(Path("events.jsonl"))
        log.append(EventRecord.create("EVT-00000001", EventKind.BID_PLACED, "alice", {...}))
        bids = log.events(EventKind.BID_PLACED)
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._event_ids: set[str] = set()
        self._storage_path = storage_path
        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event. Raises ValueError on a duplicate event_id."""
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")
        self._events.append(event)
        self._event_ids.add(event.event_id)
        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def events_for_item(self, item_id: int) -> list[EventRecord]:
        return [e for e in self._events if e.payload.get("item_id") == item_id]

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _load_from_file(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )
                expected = _event_hash(
                    event_id, data["event_kind"], data["timestamp_utc"],
                    data["actor_id"], data["payload"],
                )
                if data["event_hash"] != expected:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected}"
                    )
                self._events.append(EventRecord(
                    event_id=event_id,
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                ))
                self._event_ids.add(event_id)
