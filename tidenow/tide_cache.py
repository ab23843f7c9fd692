"""
Time-limited cache of provider tide events, keyed by station.

Two interchangeable backends: a cachetools TTLCache (tests, single process)
and a directory of JSON files (survives restarts). Both expire entries after
a fixed TTL measured from when they were saved.
"""
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from cachetools import TTLCache

from .config import TIDE_CACHE_MAX_ENTRIES, TIDE_CACHE_TTL_HOURS
from .models import TideEvent
from .station_catalog import normalize_name

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def cache_key(station_name: str) -> str:
    """Cache key for a station: its normalized name."""
    return f"tides:{normalize_name(station_name)}"


@dataclass(frozen=True)
class CacheEntry:
    """
    Tide events saved for one station.

    `day` is the local calendar day (ISO date) the events describe.
    """
    tides: List[TideEvent]
    saved_at: datetime
    source_label: str
    day: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "tides": [tide.to_dict() for tide in self.tides],
            "saved_at": self.saved_at.isoformat(),
            "source_label": self.source_label,
            "day": self.day,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "CacheEntry":
        return cls(
            tides=[TideEvent.from_dict(t) for t in data["tides"]],
            saved_at=datetime.fromisoformat(data["saved_at"]),
            source_label=data["source_label"],
            day=data.get("day"),
        )


class TideCache(ABC):
    """Cache interface used by the tide service."""

    def __init__(self, ttl: timedelta = timedelta(hours=TIDE_CACHE_TTL_HOURS), clock: Clock = utc_now):
        self.ttl = ttl
        self._clock = clock

    @abstractmethod
    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for key, or None if missing or expired."""

    def set(self, key: str, tides: List[TideEvent], source_label: str, day: Optional[str] = None) -> CacheEntry:
        """Save tides for key, stamped with the current time."""
        entry = CacheEntry(tides=list(tides), saved_at=self._clock(), source_label=source_label, day=day)
        self._write(key, entry)
        return entry

    @abstractmethod
    def _write(self, key: str, entry: CacheEntry) -> None:
        ...


class MemoryTideCache(TideCache):
    """In-process cache; expiry and eviction are handled by cachetools."""

    def __init__(
        self,
        ttl: timedelta = timedelta(hours=TIDE_CACHE_TTL_HOURS),
        clock: Clock = utc_now,
        maxsize: int = TIDE_CACHE_MAX_ENTRIES,
    ):
        super().__init__(ttl, clock)
        self._entries: TTLCache = TTLCache(
            maxsize=maxsize,
            ttl=ttl.total_seconds(),
            timer=lambda: self._clock().timestamp(),
        )

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def _write(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry

    def __len__(self) -> int:
        return len(self._entries)


class FileTideCache(TideCache):
    """One JSON file per key inside a directory."""

    def __init__(
        self,
        directory: str,
        ttl: timedelta = timedelta(hours=TIDE_CACHE_TTL_HOURS),
        clock: Clock = utc_now,
    ):
        super().__init__(ttl, clock)
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        safe = ''.join(c if c.isalnum() or c in '-_' else '_' for c in key)
        return os.path.join(self.directory, f"{safe}.json")

    def is_fresh(self, entry: CacheEntry) -> bool:
        # Same boundary as TTLCache: an entry expires once its age reaches the TTL
        return self._clock() - entry.saved_at < self.ttl

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._read(key)
        if entry is None:
            return None
        if not self.is_fresh(entry):
            logger.debug(f"Cache entry {key} expired (saved {entry.saved_at.isoformat()})")
            self._delete(key)
            return None
        return entry

    def _read(self, key: str) -> Optional[CacheEntry]:
        path = self._path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r', encoding='utf-8') as f:
                return CacheEntry.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache file {path}: {e}")
            self._delete(key)
            return None

    def _write(self, key: str, entry: CacheEntry) -> None:
        path = self._path(key)
        tmp_path = f"{path}.tmp"
        try:
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(entry.to_dict(), f)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.warning(f"Could not write cache file {path}: {e}")

    def _delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete cache file for {key}: {e}")
