"""Fingerprinted LRU cache of final analysis results.

Entries are keyed by ``sha256(path | size | mtime | sorted-JSON options)``
and stored as serialized JSON, so a cached result can never be mutated
through a reference held by a caller.  Two eviction policies apply before
every insert: memory pressure (evict the oldest half when process RSS is
above ``pressure_ratio`` of the ceiling) and capacity (LRU).
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable

import psutil

from sheetkit.errors import CacheWriteFailureError
from sheetkit.models import AnalysisResult

logger = logging.getLogger("sheetkit")

_MB = 1024 * 1024


def process_rss() -> int:
    """Resident set size of the current process in bytes."""
    return psutil.Process(os.getpid()).memory_info().rss


@dataclass
class _Entry:
    payload: str
    created_at: float = field(default_factory=time.time)
    accessed_at: float = field(default_factory=time.time)


class ResultCache:
    """Per-engine result cache.

    Parameters
    ----------
    max_entries:
        Capacity; the least recently used entry is evicted at this size.
    max_result_bytes:
        Serialized results larger than this are not stored.
    memory_ceiling_bytes:
        Memory budget used by the pressure check.
    pressure_ratio:
        Fraction of *memory_ceiling_bytes* above which half the entries
        are evicted before an insert.
    memory_gauge:
        Returns current memory use in bytes.  Defaults to process RSS.
    """

    def __init__(
        self,
        max_entries: int = 100,
        max_result_bytes: int = 10 * _MB,
        memory_ceiling_bytes: int = 1024 * _MB,
        pressure_ratio: float = 0.8,
        memory_gauge: Callable[[], int] | None = None,
    ) -> None:
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        self._max_entries = max_entries
        self._max_result_bytes = max_result_bytes
        self._memory_ceiling = memory_ceiling_bytes
        self._pressure_ratio = pressure_ratio
        self._memory_gauge = memory_gauge or process_rss
        self._hits = 0
        self._misses = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @staticmethod
    def make_key(file_path: str, size: int, mtime: float, options: dict[str, Any]) -> str:
        """Fingerprint of a file version plus the options that shaped its result."""
        options_json = json.dumps(options, sort_keys=True, default=str)
        raw = f"{os.path.abspath(file_path)}|{size}|{mtime}|{options_json}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def get(self, key: str) -> AnalysisResult | None:
        """Cached result tagged ``cache_hit=True``, or ``None`` on a miss."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        entry.accessed_at = time.time()
        self._entries.move_to_end(key)
        result = AnalysisResult.model_validate_json(entry.payload)
        result.cache_hit = True
        result.cached_at = entry.created_at
        return result

    def put(self, key: str, result: AnalysisResult) -> bool:
        """Store *result*.  Returns False when it was too large to cache.

        Raises:
            CacheWriteFailureError: If the result cannot be serialized.
        """
        try:
            payload = result.model_dump_json()
        except (TypeError, ValueError) as exc:
            raise CacheWriteFailureError(f"Could not serialize result: {exc}", stage="cache") from exc

        size = len(payload.encode("utf-8"))
        if size > self._max_result_bytes:
            logger.debug(
                "sheetkit | stage=cache | key=%s | detail=result %d bytes > %d, not cached",
                key[:12],
                size,
                self._max_result_bytes,
            )
            return False

        self._relieve_memory_pressure()
        self._entries.pop(key, None)
        while len(self._entries) >= self._max_entries:
            self._entries.popitem(last=False)
        self._entries[key] = _Entry(payload=payload)
        return True

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def hit_rate(self) -> float:
        lookups = self._hits + self._misses
        return self._hits / lookups if lookups else 0.0

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self._max_entries,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self.hit_rate,
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _relieve_memory_pressure(self) -> None:
        used = self._memory_gauge()
        limit = self._memory_ceiling * self._pressure_ratio
        if used <= limit or not self._entries:
            return
        evict = max(1, len(self._entries) // 2)
        for _ in range(evict):
            self._entries.popitem(last=False)
        logger.info(
            "sheetkit | stage=cache | detail=memory %d MB above %.0f MB, evicted %d entries",
            used // _MB,
            limit / _MB,
            evict,
        )
