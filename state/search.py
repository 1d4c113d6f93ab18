"""
Entity search and input rate limiting.

search_entities() is the synchronous ranking; DebouncedEntitySearch wraps it
so that only the last of a burst of queries produces results. Throttle
bounds how often viewport updates trigger a recompute.
"""
import asyncio
import logging
import time
from typing import Callable, Iterable, List, Optional

from core.schemas import Entity

logger = logging.getLogger(__name__)


def search_entities(entities: Iterable[Entity], query: str, limit: int = 20) -> List[Entity]:
    """
    Case-insensitive match on display name or id.

    Ranking: exact name, then name prefix, then substring (name or id);
    ties broken by name then id. A blank query matches nothing.
    """
    needle = (query or "").strip().lower()
    if not needle or limit <= 0:
        return []

    ranked = []
    for entity in entities:
        name = entity.display_name.lower()
        if name == needle:
            rank = 0
        elif name.startswith(needle):
            rank = 1
        elif needle in name or needle in entity.id.lower():
            rank = 2
        else:
            continue
        ranked.append((rank, name, entity.id, entity))

    ranked.sort(key=lambda r: r[:3])
    return [r[3] for r in ranked[:limit]]


class DebouncedEntitySearch:
    """
    Debounced search over a snapshot provider.

    Each call waits `delay` seconds; if another call arrived meanwhile the
    earlier one returns None and its results are discarded.

    Usage:
        search = DebouncedEntitySearch(lambda: session.entities, delay=0.3)
        results = await search.search("locket")   # None if superseded
    """

    def __init__(
        self,
        source: Callable[[], Iterable[Entity]],
        delay: float = 0.3,
        max_results: int = 20,
    ):
        self.source = source
        self.delay = delay
        self.max_results = max_results
        self._generation = 0

    async def search(self, query: str) -> Optional[List[Entity]]:
        self._generation += 1
        generation = self._generation

        await asyncio.sleep(self.delay)
        if generation != self._generation:
            logger.debug(f"Search for {query!r} superseded")
            return None

        return search_entities(self.source(), query, self.max_results)

    def cancel(self) -> None:
        """Supersede every pending call."""
        self._generation += 1


class Throttle:
    """
    Allows at most one call per `interval` seconds.

    A refused call leaves the throttle pending; flush() consumes it so the
    last call of a burst is not lost.

    Usage:
        throttle = Throttle.per_second(10)
        if throttle.allow():
            recompute()
        ...
        if throttle.flush():    # on idle / end of gesture
            recompute()
    """

    def __init__(self, interval: float, clock: Callable[[], float] = time.monotonic):
        if interval < 0:
            raise ValueError(f"interval must be >= 0, got {interval}")
        self.interval = interval
        self.clock = clock
        self._last: Optional[float] = None
        self.pending = False

    @classmethod
    def per_second(cls, rate: float, clock: Callable[[], float] = time.monotonic) -> "Throttle":
        if rate <= 0:
            raise ValueError(f"rate must be positive, got {rate}")
        return cls(1.0 / rate, clock)

    def allow(self) -> bool:
        now = self.clock()
        if self._last is not None and now - self._last < self.interval:
            self.pending = True
            return False
        self._last = now
        self.pending = False
        return True

    def flush(self) -> bool:
        """
        Returns:
            True if a refused call was waiting (the caller should run it now)
        """
        if not self.pending:
            return False
        self._last = self.clock()
        self.pending = False
        return True

    def reset(self) -> None:
        self._last = None
        self.pending = False
