from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

import fcntl

from scorely.misc.utils import time_now_ms
from scorely.models import MatchRecord

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator
    from logging import Logger
    from typing import IO

    from scorely.types import LocationStatsJson

DEFAULT_HISTORY_LIMIT: Final = 50
DAY_MS: Final = 86_400_000


class MatchHistoryStore:
    """
    JSON-backed match history so the engine can run on small servers.
    Written only when a session ends; read by the HTTP query endpoints.
    """

    def __init__(self, path: Path | str, now: Callable[[], int] = time_now_ms) -> None:
        self.path = Path(path)
        self.matches: list[MatchRecord] = []
        self.locations: dict[str, dict[str, Any]] = {}
        self._now = now
        self._lock = threading.Lock()
        self._log: Logger = logging.getLogger("History")
        self.load()

    @contextmanager
    def _file_lock(self, mode: str) -> Iterator[IO[str]]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, mode) as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            try:
                yield f
                f.flush()
                os.fsync(f.fileno())
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)

    def load(self) -> None:
        if not self.path.exists():
            return
        with self._file_lock("r") as f:
            raw = json.load(f)
        self.matches = [MatchRecord.model_validate(item) for item in raw.get("matches", [])]
        self.locations = raw.get("locations", {})
        self._log.debug("Loaded %d matches from %s", len(self.matches), self.path)

    def save(self) -> None:
        payload = {
            "locations": self.locations,
            "matches": [m.model_dump(mode="json", by_alias=True) for m in self.matches],
        }
        with self._file_lock("w") as f:
            json.dump(payload, f, indent=2)

    def save_match(self, record: MatchRecord) -> str:
        """Insert or replace a match keyed by match id. Return the match id."""
        with self._lock:
            self.locations.setdefault(record.location_id, {"name": record.location_id, "createdAt": self._now()})
            for idx, existing in enumerate(self.matches):
                if existing.match_id == record.match_id:
                    self.matches[idx] = record
                    break
            else:
                self.matches.append(record)
            self.save()
        return record.match_id

    def add_location(self, location_id: str, name: str | None = None) -> dict[str, Any]:
        with self._lock:
            loc = self.locations.setdefault(location_id, {"name": name or location_id, "createdAt": self._now()})
            self.save()
            return {"id": location_id, **loc}

    def get_locations(self) -> list[dict[str, Any]]:
        with self._lock:
            return [{"id": loc_id, **loc} for loc_id, loc in sorted(self.locations.items())]

    def get_match_history(
        self,
        location_id: str | None = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
        offset: int = 0,
    ) -> list[MatchRecord]:
        """Matches newest first, optionally filtered by location."""
        with self._lock:
            found = [m for m in self.matches if location_id is None or m.location_id == location_id]
        found.sort(key=lambda m: m.ended_at, reverse=True)
        return found[offset : offset + limit]

    def get_location_stats(self, location_id: str, days: int = 30) -> LocationStatsJson:
        since = self._now() - days * DAY_MS
        with self._lock:
            recent = [m for m in self.matches if m.location_id == location_id and m.ended_at >= since]

        return {
            "locationId": location_id,
            "days": days,
            "totalMatches": len(recent),
            "team1Wins": sum(1 for m in recent if m.winner == "team1"),
            "team2Wins": sum(1 for m in recent if m.winner == "team2"),
            "draws": sum(1 for m in recent if m.winner == "draw"),
            "averageDuration": sum(m.duration for m in recent) / len(recent) if recent else None,
        }
