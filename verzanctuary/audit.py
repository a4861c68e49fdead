from __future__ import annotations

import json
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any


class AuditLog:
    """Append-only JSON Lines record of sanctuary operations."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def append(
        self,
        *,
        type: str,
        message: str,
        result: str,
        branch: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        event: dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "type": type,
            "message": message,
            "result": result,
        }
        if branch is not None:
            event["branch"] = branch
        if details:
            event["details"] = details
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event, ensure_ascii=False) + "\n")
        return event

    def tail(self, last_n: int = 10) -> list[str]:
        if not self.path.exists() or last_n <= 0:
            return []
        with self.path.open(encoding="utf-8") as f:
            return [line.rstrip("\n") for line in deque(f, maxlen=last_n)]

    def events(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        out: list[dict[str, Any]] = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            if line.strip():
                out.append(json.loads(line))
        return out
