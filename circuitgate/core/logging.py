from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List


class EventLogger:
    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def log(self, event: str, payload: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc)
        record = {"ts": now.isoformat(), "event": event, **payload}
        line = json.dumps(record, ensure_ascii=True, default=str) + "\n"
        with self._lock:
            with self._path_for(now).open("a", encoding="utf-8") as handle:
                handle.write(line)

    def read(self, day: datetime | None = None) -> List[Dict[str, Any]]:
        path = self._path_for(day or datetime.now(timezone.utc))
        if not path.exists():
            return []
        with path.open("r", encoding="utf-8") as handle:
            return [json.loads(line) for line in handle if line.strip()]

    def _path_for(self, day: datetime) -> Path:
        return self.base_dir / f"run-{day.strftime('%Y%m%d')}.jsonl"
