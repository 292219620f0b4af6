"""Sheet snapshot cache — invalidated by Smartsheet webhooks.

Learn: Freshness is driven by invalidation, not by time. A webhook change
event marks the entry invalidated and from then on it is a miss until the
fetch path (GET /api/sheets/{id}) stores a new snapshot with set().
The TTL is only a backstop in case a webhook is lost.

All operations are synchronous — no await between reading and writing
the map, so concurrent handlers on the event loop never see a half-updated
entry.
"""

import enum
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional


class CacheState(str, enum.Enum):
    VALID = "valid"
    INVALIDATED = "invalidated"


@dataclass
class CacheEntry:
    sheet_id: str
    value: dict[str, Any]
    state: CacheState
    stored_at: float
    version: Optional[str] = None


class SheetCache:
    """In-memory map of sheet id → last fetched snapshot."""

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._generations: dict[str, int] = {}

    def get(self, sheet_id: str) -> Optional[dict[str, Any]]:
        """Return the snapshot if it is fresh, None on a miss."""
        entry = self._entries.get(sheet_id)
        if entry is None or entry.state is not CacheState.VALID:
            return None
        if self._expired(entry):
            entry.state = CacheState.INVALIDATED
            return None
        return entry.value

    def generation(self, sheet_id: str) -> int:
        """Counter bumped by every invalidate(); read it before a fetch."""
        return self._generations.get(sheet_id, 0)

    def set(
        self,
        sheet_id: str,
        snapshot: dict[str, Any],
        version: Optional[str] = None,
        generation: Optional[int] = None,
    ) -> bool:
        """Store a freshly fetched snapshot, overwriting any previous entry.

        With generation, the write is dropped if the sheet was invalidated
        since that generation was read (the snapshot may predate the change).
        """
        if generation is not None and generation != self.generation(sheet_id):
            return False
        self._entries[sheet_id] = CacheEntry(
            sheet_id=sheet_id,
            value=snapshot,
            state=CacheState.VALID,
            stored_at=self._clock(),
            version=version,
        )
        return True

    def invalidate(self, sheet_id: str) -> None:
        """Mark an entry stale. Idempotent; an absent key stays absent."""
        self._generations[sheet_id] = self.generation(sheet_id) + 1
        entry = self._entries.get(sheet_id)
        if entry is not None:
            entry.state = CacheState.INVALIDATED

    def status(self, sheet_id: str) -> Optional[CacheState]:
        entry = self._entries.get(sheet_id)
        return entry.state if entry else None

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, int]:
        valid = sum(
            1 for e in self._entries.values()
            if e.state is CacheState.VALID and not self._expired(e)
        )
        return {
            "size": len(self._entries),
            "valid": valid,
            "invalidated": len(self._entries) - valid,
        }

    def _expired(self, entry: CacheEntry) -> bool:
        if self.ttl_seconds <= 0:
            return False
        return self._clock() - entry.stored_at > self.ttl_seconds
