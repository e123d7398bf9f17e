"""In-memory result cache for select queries.

Entries are keyed by the SQL text plus its bound parameters and expire after
a duration in milliseconds. An entry may carry an identifier so callers can
drop it explicitly once the underlying rows change::

    posts = await builder.cache("recent_posts", 60000).get_many()
    connection.query_result_cache.remove(["recent_posts"])
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


def cache_key(sql: str, parameters: dict[str, Any] | None) -> str:
    """Deterministic key of a statement and its parameters."""
    return sql + " -- " + json.dumps(parameters or {}, sort_keys=True, default=repr)


@dataclass
class CacheEntry:
    query: str
    rows: list[dict[str, Any]]
    time: float
    duration: int
    identifier: str | None = None

    @property
    def is_expired(self) -> bool:
        return self.time + self.duration < _now_ms()


class QueryResultCache:
    """Rows of cached select statements.

    Args:
        duration: Default lifetime of an entry in milliseconds.
    """

    def __init__(self, duration: int = 1000) -> None:
        self.duration = duration
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> list[dict[str, Any]] | None:
        """Copy of the cached rows, or None when missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired:
            del self._entries[key]
            return None
        logger.debug("Query result cache hit: %s", entry.query)
        return [dict(row) for row in entry.rows]

    def store(
        self,
        key: str,
        query: str,
        rows: list[dict[str, Any]],
        duration: int | None = None,
        identifier: str | None = None,
    ) -> None:
        self._entries[key] = CacheEntry(
            query=query,
            rows=[dict(row) for row in rows],
            time=_now_ms(),
            duration=self.duration if duration is None else duration,
            identifier=identifier,
        )

    def remove(self, identifiers: list[str]) -> None:
        """Drop the entries stored under any of ``identifiers``."""
        wanted = set(identifiers)
        for key in [k for k, e in self._entries.items() if e.identifier in wanted]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()
