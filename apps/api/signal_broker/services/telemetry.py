"""Bounded in-memory GPS sample store."""
from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 100


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class TelemetryStore:
    """Keep the most recent samples, evicting the oldest beyond capacity."""

    def __init__(self, max_history: int = 1000) -> None:
        if max_history < 1:
            raise ValueError("max_history must be positive")
        self.max_history = max_history
        self._history: Deque[Dict[str, Any]] = deque(maxlen=max_history)
        self._latest: Optional[Dict[str, Any]] = None

    @property
    def size(self) -> int:
        return len(self._history)

    def add(self, sample: Dict[str, Any]) -> Dict[str, Any]:
        """Stamp and store a sample, returning the stored copy."""

        stored = {**sample, "timestamp": utc_timestamp()}
        self._latest = stored
        self._history.append(stored)
        logger.debug("GPS sample stored (%d/%d)", len(self._history), self.max_history)
        return stored

    def latest(self) -> Optional[Dict[str, Any]]:
        return self._latest

    def history(self, limit: int = DEFAULT_HISTORY_LIMIT) -> list[Dict[str, Any]]:
        """Return up to ``limit`` most recent samples, oldest first."""

        if limit <= 0:
            return []
        items = list(self._history)
        return items[-limit:]

    def clear(self) -> None:
        self._history.clear()
        self._latest = None
