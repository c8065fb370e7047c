"""Shared memory sink that graduated sandbox memories are promoted into."""

from __future__ import annotations

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

from core.errors import PromotionFailed
from memory.provenance import new_id, sha256_text


class SharedMemory(Protocol):
    """Boundary of the persistent conversational memory system."""

    def promote_memory(
        self,
        content: str,
        context_data: dict[str, Any],
        target_session_id: str | None = None,
    ) -> str:
        """Write one memory and return its id in the shared store."""
        ...


class JsonlSharedMemory:
    """Appends promoted memories as JSON lines."""

    def __init__(self, log_path: Path) -> None:
        self.log_path = log_path
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger("esm.shared_memory")
        self._lock = threading.Lock()

    def promote_memory(
        self,
        content: str,
        context_data: dict[str, Any],
        target_session_id: str | None = None,
    ) -> str:
        """Append one promoted memory and return its new id."""
        promoted_id = new_id()
        entry = {
            "id": promoted_id,
            "timestamp": datetime.now(UTC).isoformat(),
            "session_id": target_session_id or "default",
            "content": content,
            "content_hash": sha256_text(content),
            "context": context_data,
        }
        try:
            line = json.dumps(entry, ensure_ascii=True, default=str)
            with self._lock, self.log_path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except (OSError, TypeError, ValueError) as exc:
            raise PromotionFailed(str(context_data.get("memory_id", "")), str(exc)) from exc
        self.logger.info("Promoted memory %s into session %s", promoted_id, entry["session_id"])
        return promoted_id

    def read_all(self) -> list[dict[str, Any]]:
        """Return every promoted entry."""
        if not self.log_path.exists():
            return []
        with self.log_path.open("r", encoding="utf-8") as fh:
            return [json.loads(line) for line in fh if line.strip()]
