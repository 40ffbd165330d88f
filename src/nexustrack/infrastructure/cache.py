# src/nexustrack/infrastructure/cache.py
"""
Cycle-scoped cache of upstream answers.

The manager builds one `SubscriptionCache` at the start of every cycle,
prepares it with one bulk query per (category, game) shared by all the items
that ask the same question, and drops it when the cycle ends. Nothing here
expires or gets cleared: a stale cache is simply never reused.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from nexustrack.domain.entities import BATCHED_CATEGORIES, GameItem, UpdateCategory

log = logging.getLogger(__name__)

CacheKey = Tuple[UpdateCategory, str]


class SubscriptionCache:
    """
    Primary map `(category, entity key) -> mods`, each entry fetched from the
    low-water mark of its group, plus a secondary detail memo keyed by
    `(kind, key)` for per-entity lookups (mod files, collection data).
    """

    def __init__(self, client):
        self.client = client
        self._entries: Dict[CacheKey, List[Dict[str, Any]]] = {}
        self._floors: Dict[CacheKey, datetime] = {}
        self._details: Dict[Tuple[str, str], Any] = {}
        self.queries_issued = 0

    @staticmethod
    def low_water_marks(items: Iterable) -> Dict[CacheKey, datetime]:
        """Earliest watermark per batched (category, domain) among game items."""
        floors: Dict[CacheKey, datetime] = {}
        for item in items:
            if not isinstance(item, GameItem):
                continue
            for category in item.categories():
                if category not in BATCHED_CATEGORIES:
                    continue
                key = (category, item.domain)
                current = floors.get(key)
                if current is None or item.last_update < current:
                    floors[key] = item.last_update
        return floors

    def _fetcher(self, category: UpdateCategory) -> Callable[[str, datetime], Awaitable[List[Dict[str, Any]]]]:
        if category is UpdateCategory.NEW_MODS:
            return self.client.new_mods_for_game
        return self.client.updated_mods_for_game

    async def prepare(self, items: Iterable) -> int:
        """
        Issues one query per group, all concurrently. A failed group is logged
        and left out; lookups for it miss and the resolver queries directly.
        Returns the number of groups populated.
        """
        floors = self.low_water_marks(items)
        if not floors:
            return 0
        keys = list(floors)

        async def fetch(key: CacheKey):
            category, domain = key
            self.queries_issued += 1
            return await self._fetcher(category)(domain, floors[key])

        results = await asyncio.gather(*(fetch(k) for k in keys), return_exceptions=True)
        populated = 0
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                log.warning(f"Cache preparation failed for {key[0].value}:{key[1]}: {result}")
                continue
            self.add(key[0], key[1], result, floors[key])
            populated += 1
        log.debug(f"Cache prepared: {populated}/{len(keys)} groups, {self.queries_issued} queries")
        return populated

    def add(self, category: UpdateCategory, key: str, mods: List[Dict[str, Any]], floor: datetime) -> bool:
        """Write-once: a key already present is left untouched."""
        cache_key = (category, key)
        if cache_key in self._entries:
            log.debug(f"Cache entry {category.value}:{key} already present; ignoring write")
            return False
        self._entries[cache_key] = list(mods)
        self._floors[cache_key] = floor
        return True

    def lookup(self, category: UpdateCategory, key: str, since: Optional[datetime] = None) -> Optional[List[Dict[str, Any]]]:
        """
        Cached mods for a group, or None on a miss. An entry fetched from a
        floor later than `since` cannot answer for it and also counts as a miss.
        """
        cache_key = (category, key)
        if cache_key not in self._entries:
            return None
        if since is not None and since < self._floors[cache_key]:
            return None
        return self._entries[cache_key]

    # --- Detail memo ---

    def add_detail(self, kind: str, payload: Any, key: str) -> bool:
        detail_key = (kind, str(key))
        if detail_key in self._details:
            return False
        self._details[detail_key] = payload
        return True

    def get_detail(self, kind: str, key: str) -> Optional[Any]:
        return self._details.get((kind, str(key)))

    async def get_or_fetch_detail(self, kind: str, key: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        detail_key = (kind, str(key))
        if detail_key in self._details:
            return self._details[detail_key]
        payload = await fetch()
        self.add_detail(kind, payload, key)
        return payload
