"""Append-only event log — the notifications a program emits.

Every successful register/renew produces a Referral event, and
commission-bearing programs add a ReferralWithCommission event carrying
the amount paid. Owner actions are logged as well. Events are immutable
once written and are only appended after the whole operation succeeded,
so a rolled-back operation leaves no trace here.

The log can be persisted to a JSONL file (one JSON object per line) and
loaded back; loading verifies every record's hash and rejects replays.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from referrals.models.referral import normalize_identity


class EventKind(str, enum.Enum):
    """Classification of program events."""
    REFERRAL = "referral"
    REFERRAL_WITH_COMMISSION = "referral_with_commission"
    ALLOWLIST_ROOT_UPDATED = "allowlist_root_updated"
    TREASURY_DEPOSITED = "treasury_deposited"
    TREASURY_CLOSED = "treasury_closed"
    COMMISSION_WITHDRAWN = "commission_withdrawn"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"


def _canonical_hash(
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
    """A single immutable program event.

    The event_hash is computed at creation time over the canonical JSON
    of every other field.
    """
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
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(
                event_id, event_kind.value, ts_str, actor_id, payload,
            ),
        )

    @property
    def name(self) -> Optional[str]:
        return self.payload.get("name")

    @property
    def referrer(self) -> Optional[str]:
        return self.payload.get("referrer")

    def to_line(self) -> str:
        return json.dumps(
            {
                "event_id": self.event_id,
                "event_kind": self.event_kind.value,
                "timestamp_utc": self.timestamp_utc,
                "actor_id": self.actor_id,
                "payload": self.payload,
                "event_hash": self.event_hash,
            },
            sort_keys=True,
            ensure_ascii=False,
        )

    @staticmethod
    def from_line(line: str) -> EventRecord:
        """Parse one stored line, refusing records whose hash does not match."""
        data = json.loads(line)
        computed = _canonical_hash(
            data["event_id"],
            data["event_kind"],
            data["timestamp_utc"],
            data["actor_id"],
            data["payload"],
        )
        if data["event_hash"] != computed:
            raise ValueError(
                f"Integrity check failed: event {data['event_id']} "
                f"stored hash {data['event_hash']} != computed {computed}"
            )
        return EventRecord(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            event_hash=data["event_hash"],
        )


class EventLog:
    """Append-only record of what a program did.

    Usage:
        log = EventLog(Path("data/alice-program.jsonl"))
        program = ReferralProgram(..., event_log=log)
        log.commission_paid_to(referrer)   # total wei paid to a referrer
        log.events(referrer=referrer)      # that referrer's referrals

    With a storage path, records are written through to a JSONL file and
    an existing file is replayed on construction.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._storage_path = storage_path
        self._records: dict[str, EventRecord] = {}
        if storage_path is not None and storage_path.exists():
            self._recover(storage_path)

    def append(self, event: EventRecord) -> None:
        """Raises ValueError on a repeated event_id."""
        self._admit(event, "Duplicate event ID")
        if self._storage_path is not None:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(event.to_line() + "\n")

    def events(
        self,
        kind: Optional[EventKind] = None,
        *,
        name: Optional[str] = None,
        referrer: Optional[str] = None,
    ) -> list[EventRecord]:
        """Events in append order, narrowed by kind, name and/or referrer."""
        if referrer is not None:
            referrer = normalize_identity(referrer)
        return [
            e for e in self._records.values()
            if (kind is None or e.event_kind == kind)
            and (name is None or e.name == name)
            and (referrer is None or e.referrer == referrer)
        ]

    def commission_paid_to(self, referrer: str) -> int:
        """Sum of commissions recorded for a referrer, in wei."""
        return sum(
            e.payload["amount"]
            for e in self.events(EventKind.REFERRAL_WITH_COMMISSION, referrer=referrer)
        )

    def referral_count(self, referrer: str) -> int:
        return len(self.events(EventKind.REFERRAL, referrer=referrer))

    @property
    def count(self) -> int:
        return len(self._records)

    @property
    def last_event(self) -> Optional[EventRecord]:
        if not self._records:
            return None
        return next(reversed(self._records.values()))

    def _admit(self, event: EventRecord, duplicate_message: str) -> None:
        if event.event_id in self._records:
            raise ValueError(f"{duplicate_message}: {event.event_id}")
        self._records[event.event_id] = event

    def _recover(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    event = EventRecord.from_line(line)
                except ValueError as exc:
                    raise ValueError(f"{exc} (line {line_num})") from exc
                self._admit(event, f"Duplicate event ID on recovery (line {line_num})")
