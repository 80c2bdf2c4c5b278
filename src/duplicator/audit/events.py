from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path


@dataclass
class EventLog:
    """Append-only JSONL log of reconcile activity."""

    path: Path

    def emit(self, event: str, payload: dict) -> None:
        record = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "payload": payload,
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")


@dataclass
class RecordingEventLog:
    records: list[tuple[str, dict]] = field(default_factory=list)

    def emit(self, event: str, payload: dict) -> None:
        self.records.append((event, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.records]


class NullEventLog:
    def emit(self, event: str, payload: dict) -> None:
        return None
