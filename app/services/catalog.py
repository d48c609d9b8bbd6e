"""Client for the Jikan anime catalog plus a stale-result guard for browsing."""

from __future__ import annotations

import asyncio
import enum
import logging
import re
from typing import Any, Protocol

import httpx
from pydantic import ValidationError

from ..config import Settings
from ..errors import CatalogError, NotFoundError, TransientNetworkError
from ..models import CastMember, DetailedTitle, Title, VoiceCredit
from ..retry import RetryPolicy

logger = logging.getLogger(__name__)

# Well-known Japanese animation studios; titles without one of these (or a
# studio name written in kana/kanji) are hidden when the Japanese-only filter
# is enabled.
JAPANESE_STUDIOS = frozenset(
    {
        "Kyoto Animation", "Studio Ghibli", "Madhouse", "Production I.G",
        "A-1 Pictures", "ufotable", "MAPPA", "Shaft", "Sunrise", "TRIGGER",
        "WIT STUDIO", "P.A.Works", "J.C.Staff", "Toei Animation", "OLM",
        "GAINAX", "Kinema Citrus", "GONZO", "GoHands", "Satellite", "Sanzigen",
        "SILVER LINK.", "XEBEC", "Studio GoHands", "Studio Comet",
        "Studio DEEN", "ZEXCS", "Zero-G", "Tatsunoko Production", "Diomedéa",
        "DLE", "david production", "TMS Entertainment", "Fanworks", "feel.",
        "Brains Base", "project No.9", "Production IMS", "WHITE FOX", "Bones",
        "Polygon Pictures", "LIDEN FILMS", "Lerche",
    }
)
_CJK_RE = re.compile(r"[\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]")

VOICE_CAST_LIMIT = 6


class CatalogSort(str, enum.Enum):
    POPULARITY = "popularity"
    RATING = "rating"
    AIRING = "airing"
    NEWEST = "newest"


_SORT_PARAMS: dict[CatalogSort, dict[str, str | int]] = {
    CatalogSort.POPULARITY: {"order_by": "members", "sort": "desc"},
    CatalogSort.RATING: {
        "order_by": "score",
        "sort": "desc",
        "min_scoring_users": 1000,
    },
    CatalogSort.AIRING: {"status": "airing", "order_by": "score", "sort": "desc"},
    CatalogSort.NEWEST: {"order_by": "start_date", "sort": "desc"},
}


class CatalogSource(Protocol):
    """Operations the recommendation pipeline needs from a catalog."""

    async def list_by_genre(
        self, genre_id: int | None, sort: CatalogSort = ..., page: int = ...
    ) -> list[Title]: ...

    async def search(self, query: str, page: int = ...) -> list[Title]: ...

    async def get_title(self, title_id: int) -> DetailedTitle: ...

    async def get_detail(self, title_id: int) -> DetailedTitle: ...


def is_japanese_production(title: Title) -> bool:
    return any(
        studio.name in JAPANESE_STUDIOS or _CJK_RE.search(studio.name)
        for studio in title.studios
    )


class CatalogClient:
    """Thin wrapper around the Jikan v4 HTTP API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        *,
        retry_policy: RetryPolicy | None = None,
    ):
        self._settings = settings
        self._client = http_client
        self._retry = retry_policy or settings.catalog_retry_policy

    async def list_by_genre(
        self,
        genre_id: int | None,
        sort: CatalogSort = CatalogSort.POPULARITY,
        page: int = 1,
    ) -> list[Title]:
        """Return one page of titles, optionally restricted to a genre."""

        params: dict[str, Any] = {
            "page": max(1, page),
            "limit": self._settings.catalog_page_size,
        }
        if genre_id:
            params["genres"] = genre_id
        params.update(_SORT_PARAMS[CatalogSort(sort)])
        payload = await self._get_json("/anime", params=params)
        return self._titles_from_listing(payload)

    async def search(self, query: str, page: int = 1) -> list[Title]:
        """Return titles matching a free-text query."""

        params = {
            "q": query.strip(),
            "page": max(1, page),
            "limit": self._settings.catalog_page_size,
        }
        payload = await self._get_json("/anime", params=params)
        return self._titles_from_listing(payload)

    async def get_detail(self, title_id: int) -> DetailedTitle:
        """Fetch the full record and Japanese voice cast for one title."""

        full, characters = await asyncio.gather(
            self._get_json(f"/anime/{title_id}/full"),
            self._get_json(f"/anime/{title_id}/characters"),
        )
        return _detail_from_payload(title_id, full, self._voice_cast(characters.get("data")))

    async def get_title(self, title_id: int) -> DetailedTitle:
        """Fetch one title record with a single request and no voice cast."""

        payload = await self._get_json(f"/anime/{title_id}")
        return _detail_from_payload(title_id, payload)

    async def _get_json(
        self, path: str, *, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        async def _request() -> dict[str, Any]:
            try:
                response = await self._client.get(path, params=params)
            except httpx.HTTPError as exc:
                raise TransientNetworkError(str(exc) or exc.__class__.__name__) from exc
            if response.status_code == 404:
                raise NotFoundError(f"Catalog resource {path} not found")
            if response.status_code == 429 or response.status_code >= 500:
                raise TransientNetworkError(
                    f"Catalog returned HTTP {response.status_code} for {path}"
                )
            if response.status_code >= 400:
                raise CatalogError(
                    f"Catalog rejected {path} with HTTP {response.status_code}"
                )
            try:
                data = response.json()
            except ValueError as exc:
                raise TransientNetworkError(f"Non-JSON catalog response for {path}") from exc
            if not isinstance(data, dict):
                raise TransientNetworkError(f"Unexpected catalog payload for {path}")
            return data

        return await self._retry.run(_request, description=f"catalog GET {path}")

    def _titles_from_listing(self, payload: dict[str, Any]) -> list[Title]:
        entries = payload.get("data") or []
        titles: list[Title] = []
        for entry in entries:
            if not isinstance(entry, dict) or entry.get("mal_id") is None:
                continue
            try:
                titles.append(Title.from_catalog_payload(entry))
            except ValidationError as exc:
                logger.warning(
                    "Skipping malformed catalog entry %s (%s validation errors)",
                    entry.get("mal_id"),
                    exc.error_count(),
                )
        if self._settings.show_only_japanese:
            titles = [title for title in titles if is_japanese_production(title)]
        return titles

    @staticmethod
    def _voice_cast(entries: object) -> list[VoiceCredit]:
        if not isinstance(entries, list):
            return []
        credits: list[VoiceCredit] = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            actor = next(
                (
                    va
                    for va in entry.get("voice_actors") or []
                    if isinstance(va, dict) and va.get("language") == "Japanese"
                ),
                None,
            )
            character = entry.get("character")
            if actor is None or not isinstance(character, dict):
                continue
            credits.append(
                VoiceCredit(
                    person=_cast_member(actor.get("person") or {}),
                    character=_cast_member(character),
                )
            )
            if len(credits) >= VOICE_CAST_LIMIT:
                break
        return credits


def _detail_from_payload(
    title_id: int, payload: dict[str, Any], voice_cast: list[VoiceCredit] | None = None
) -> DetailedTitle:
    data = payload.get("data")
    if not isinstance(data, dict):
        raise NotFoundError(f"Title {title_id} not found")
    try:
        return DetailedTitle.from_catalog_detail(data, voice_cast or ())
    except ValidationError as exc:
        raise CatalogError(f"Malformed catalog record for title {title_id}") from exc


def _cast_member(data: dict[str, Any]) -> CastMember:
    image = ((data.get("images") or {}).get("jpg") or {}).get("image_url")
    return CastMember(id=data.get("mal_id") or 0, name=data.get("name") or "", image_url=image)


class CatalogBrowser:
    """Keeps the latest browse/search result and drops superseded ones.

    Every call takes a new generation number. A response that arrives after a
    newer call has started is discarded and ``None`` is returned, so rapid
    genre or sort changes can never overwrite fresher results.
    """

    def __init__(self, catalog: CatalogSource):
        self._catalog = catalog
        self._generation = 0
        self.results: list[Title] = []

    @property
    def generation(self) -> int:
        return self._generation

    async def browse(
        self,
        genre_id: int | None,
        sort: CatalogSort = CatalogSort.POPULARITY,
        page: int = 1,
    ) -> list[Title] | None:
        return await self._track(self._catalog.list_by_genre(genre_id, sort, page))

    async def search(self, query: str, page: int = 1) -> list[Title] | None:
        return await self._track(self._catalog.search(query, page))

    async def _track(self, pending) -> list[Title] | None:
        self._generation += 1
        generation = self._generation
        titles = await pending
        if generation != self._generation:
            logger.debug(
                "Discarding catalog result for superseded request %s", generation
            )
            return None
        self.results = list(titles)
        return self.results
