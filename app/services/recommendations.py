"""Genre-weighted recommendation ranking over the title catalog."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from ..errors import CatalogError
from ..models import GenrePreference, Title
from .catalog import CatalogSort, CatalogSource
from .preferences import TOP_GENRE_COUNT, top_preferences

logger = logging.getLogger(__name__)

# Jikan throttles at roughly three requests per second.
RESOLVE_CONCURRENCY = 3


@dataclass(slots=True)
class ScoredCandidate:
    """Accumulated recommendation score for one catalog title."""

    title_id: int
    score: float = 0.0


class RecommendationEngine:
    """Ranks unseen titles from the user's strongest genres."""

    def __init__(self, catalog: CatalogSource):
        self._catalog = catalog

    async def recommend(
        self,
        preferences: Sequence[GenrePreference],
        watched: Sequence[Title],
        limit: int,
        *,
        exclude: Iterable[int] = (),
    ) -> list[Title]:
        """Return up to ``limit`` unseen titles, best match first.

        Catalog failures never escape: a genre whose listing cannot be fetched
        contributes no candidates, and a candidate whose record cannot be
        resolved is dropped. When nothing can be fetched the result is empty.
        """

        if limit <= 0:
            return []
        top = top_preferences(preferences, TOP_GENRE_COUNT)
        if not top:
            return []

        skipped = {title.id for title in watched}
        skipped.update(exclude)
        candidates = await self._score_candidates(top, skipped)
        if not candidates:
            logger.info("No recommendation candidates found for genres %s",
                        [p.genre_id for p in top])
            return []

        ranked = sorted(candidates.values(), key=lambda c: c.score, reverse=True)
        return await self._resolve([candidate.title_id for candidate in ranked[:limit]])

    async def recommend_more(
        self,
        preferences: Sequence[GenrePreference],
        watched: Sequence[Title],
        already_returned: Iterable[Title | int],
        limit: int,
    ) -> list[Title]:
        """Return further recommendations, skipping titles the caller has shown."""

        shown = {
            item.id if isinstance(item, Title) else int(item)
            for item in already_returned
        }
        return await self.recommend(preferences, watched, limit, exclude=shown)

    async def _score_candidates(
        self, top: list[GenrePreference], skipped: set[int]
    ) -> dict[int, ScoredCandidate]:
        top_ids = {preference.genre_id for preference in top}
        listings = await asyncio.gather(
            *(
                self._catalog.list_by_genre(preference.genre_id, CatalogSort.POPULARITY, 1)
                for preference in top
            ),
            return_exceptions=True,
        )

        candidates: dict[int, ScoredCandidate] = {}
        for preference, listing in zip(top, listings):
            if isinstance(listing, CatalogError):
                logger.warning(
                    "Skipping genre %s for recommendations: %s",
                    preference.genre_id,
                    listing,
                )
                continue
            if isinstance(listing, BaseException):
                raise listing
            for title in listing:
                if title.id in skipped:
                    continue
                match_count = sum(1 for genre_id in title.genre_ids if genre_id in top_ids)
                candidate = candidates.setdefault(title.id, ScoredCandidate(title.id))
                candidate.score += preference.weight * match_count * (title.score / 10)
        return candidates

    async def _resolve(self, title_ids: list[int]) -> list[Title]:
        limiter = asyncio.Semaphore(RESOLVE_CONCURRENCY)

        async def _fetch(title_id: int) -> Title:
            async with limiter:
                return await self._catalog.get_title(title_id)

        resolved = await asyncio.gather(
            *(_fetch(title_id) for title_id in title_ids),
            return_exceptions=True,
        )
        titles: list[Title] = []
        for title_id, result in zip(title_ids, resolved):
            if isinstance(result, CatalogError):
                logger.warning("Dropping unresolvable recommendation %s: %s", title_id, result)
                continue
            if isinstance(result, BaseException):
                raise result
            titles.append(result)
        return titles
