"""
Structured telemetry for workflow editing and execution.
"""

from __future__ import annotations

import json
import threading
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TelemetryEvent(BaseModel):
    trace_id: str
    event: str
    timestamp: str
    data: Dict[str, Any] = Field(default_factory=dict)


class TelemetryCollector:
    """
    Per-trace event log. A trace is a workflow instance id or an editor
    session id. With a root_dir, each trace is also appended to
    <root_dir>/<trace_id>.jsonl.
    """

    def __init__(self, root_dir: Optional[str] = None) -> None:
        self.root_dir = Path(root_dir) if root_dir else None
        if self.root_dir is not None:
            self.root_dir.mkdir(parents=True, exist_ok=True)
        self._traces: Dict[str, List[TelemetryEvent]] = {}
        self._lock = threading.Lock()

    def log(self, trace_id: str, event: str, **data: Any) -> TelemetryEvent:
        record = TelemetryEvent(
            trace_id=trace_id,
            event=event,
            timestamp=datetime.now(timezone.utc).isoformat(),
            data=data,
        )
        with self._lock:
            self._traces.setdefault(trace_id, []).append(record)
            if self.root_dir is not None:
                line = json.dumps(record.model_dump(mode="json"), sort_keys=True)
                with (self.root_dir / f"{trace_id}.jsonl").open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        return record

    def events(self, trace_id: str, event: Optional[str] = None) -> List[TelemetryEvent]:
        with self._lock:
            recorded = list(self._traces.get(trace_id, []))
        if event is None:
            return recorded
        return [item for item in recorded if item.event == event]

    def summarize(self, trace_id: str) -> Dict[str, Any]:
        recorded = self.events(trace_id)
        return {
            "trace_id": trace_id,
            "event_count": len(recorded),
            "counts": dict(Counter(item.event for item in recorded)),
            "first_at": recorded[0].timestamp if recorded else None,
            "last_at": recorded[-1].timestamp if recorded else None,
        }
