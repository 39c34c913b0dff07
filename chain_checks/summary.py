from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class CycleSummary:
    """Outcome of one poll cycle; only the latest one is kept."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    failed_monitors: list[str] = field(default_factory=list)
    successful_monitors: list[str] = field(default_factory=list)
    failed_alerts: list[str] = field(default_factory=list)
    successful_alerts: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
            "failed_monitors": list(self.failed_monitors),
            "successful_monitors": list(self.successful_monitors),
            "failed_alerts": list(self.failed_alerts),
            "successful_alerts": list(self.successful_alerts),
        }

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), ensure_ascii=False).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes | str) -> "CycleSummary":
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("cycle summary must be a JSON object")
        ts_raw = str(data.get("timestamp") or "")
        if ts_raw.endswith("Z"):
            ts_raw = ts_raw[:-1] + "+00:00"
        return cls(
            timestamp=datetime.fromisoformat(ts_raw),
            failed_monitors=[str(x) for x in data.get("failed_monitors") or []],
            successful_monitors=[str(x) for x in data.get("successful_monitors") or []],
            failed_alerts=[str(x) for x in data.get("failed_alerts") or []],
            successful_alerts=[str(x) for x in data.get("successful_alerts") or []],
        )
