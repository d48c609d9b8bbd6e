"""Single-slot memoisation of recommendation results."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from ..models import Rating, Title
from ..utils import collection_fingerprint
from .preferences import analyze_preferences
from .recommendations import RecommendationEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheFingerprint:
    """Order-insensitive digests of the inputs that shape recommendations."""

    watchlist_hash: str
    watched_list_hash: str
    ratings_hash: str

    @classmethod
    def from_state(
        cls,
        watchlist: Iterable[Title],
        watched_list: Iterable[Title],
        ratings: Iterable[Rating],
    ) -> "CacheFingerprint":
        return cls(
            watchlist_hash=collection_fingerprint(title.id for title in watchlist),
            watched_list_hash=collection_fingerprint(title.id for title in watched_list),
            ratings_hash=collection_fingerprint(rating.title_id for rating in ratings),
        )


@dataclass(frozen=True, slots=True)
class RecommendationCacheEntry:
    results: tuple[Title, ...]
    fingerprint: CacheFingerprint


class RecommendationCache:
    """Remembers the most recent recommendation list and its inputs.

    Only one entry is kept. Any change to the watchlist, watched list or rated
    title ids replaces it on the next call; reordering the same ids does not.
    """

    def __init__(self, engine: RecommendationEngine, *, limit: int = 12):
        self._engine = engine
        self._limit = limit
        self._entry: RecommendationCacheEntry | None = None
        self.computations = 0

    @property
    def entry(self) -> RecommendationCacheEntry | None:
        return self._entry

    def invalidate(self) -> None:
        self._entry = None

    async def get_or_compute(
        self,
        watchlist: Sequence[Title],
        watched_list: Sequence[Title],
        ratings: Sequence[Rating],
    ) -> list[Title]:
        fingerprint = CacheFingerprint.from_state(watchlist, watched_list, ratings)
        entry = self._entry
        if entry is not None and entry.fingerprint == fingerprint:
            return list(entry.results)

        self.computations += 1
        preferences = analyze_preferences(ratings, watched_list)
        results = await self._engine.recommend(preferences, watched_list, self._limit)
        # Concurrent callers may race here; the last computation to finish wins.
        self._entry = RecommendationCacheEntry(
            results=tuple(results), fingerprint=fingerprint
        )
        logger.debug("Cached %s recommendations", len(results))
        return list(results)

    async def load_more(
        self,
        watched_list: Sequence[Title],
        ratings: Sequence[Rating],
        already_returned: Iterable[Title | int],
        limit: int,
    ) -> list[Title]:
        """Fetch another batch without touching the cached slot."""

        preferences = analyze_preferences(ratings, watched_list)
        return await self._engine.recommend_more(
            preferences, watched_list, already_returned, limit
        )
