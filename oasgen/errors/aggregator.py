"""Grouping of handled errors by fingerprint plus a bounded history."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

from loguru import logger

from .base import ErrorCategory, GeneratorError

DEFAULT_HISTORY_LIMIT = 1000
DEFAULT_SAMPLE_LIMIT = 10


@dataclass
class ErrorGroup:
    """All occurrences of one fingerprint."""

    fingerprint: str
    category: ErrorCategory
    code: str
    message: str
    first_seen: datetime
    last_seen: datetime
    count: int = 0
    recent_ids: Deque[str] = field(default_factory=lambda: deque(maxlen=DEFAULT_SAMPLE_LIMIT))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "category": self.category.value,
            "code": self.code,
            "message": self.message,
            "count": self.count,
            "firstSeen": self.first_seen.isoformat(),
            "lastSeen": self.last_seen.isoformat(),
            "recentIds": list(self.recent_ids),
        }


class ErrorAggregator:
    """Collects handled errors into groups and keeps the most recent records."""

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT, sample_limit: int = DEFAULT_SAMPLE_LIMIT):
        self.history_limit = history_limit
        self.sample_limit = sample_limit
        self._groups: Dict[str, ErrorGroup] = {}
        self._history: Deque[GeneratorError] = deque(maxlen=history_limit)
        self._lock = threading.RLock()

    def add(self, error: GeneratorError) -> ErrorGroup:
        """Store ``error`` and fold it into its fingerprint's group."""
        with self._lock:
            self._history.append(error)
            group = self._groups.get(error.fingerprint)
            if group is None:
                group = ErrorGroup(
                    fingerprint=error.fingerprint,
                    category=error.category,
                    code=error.code,
                    message=error.message,
                    first_seen=error.timestamp,
                    last_seen=error.timestamp,
                    recent_ids=deque(maxlen=self.sample_limit),
                )
                self._groups[error.fingerprint] = group
                logger.debug(f"New error group {error.fingerprint} ({error.code})")
            group.count += 1
            group.last_seen = error.timestamp
            group.recent_ids.append(error.id)
            return group

    def list_groups(self) -> List[ErrorGroup]:
        """Groups ordered by occurrence count, most frequent first."""
        with self._lock:
            return sorted(self._groups.values(), key=lambda g: g.count, reverse=True)

    def get_group(self, fingerprint: str) -> Optional[ErrorGroup]:
        with self._lock:
            return self._groups.get(fingerprint)

    def recent(self, limit: int = 10) -> List[GeneratorError]:
        """The ``limit`` most recent records, newest last."""
        if limit <= 0:
            return []
        with self._lock:
            return list(self._history)[-limit:]

    @property
    def history(self) -> List[GeneratorError]:
        with self._lock:
            return list(self._history)

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    def clear(self) -> None:
        with self._lock:
            self._groups.clear()
            self._history.clear()
