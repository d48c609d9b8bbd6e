"""Pytest configuration and test helpers."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Callable, Mapping

import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from app.errors import NotFoundError, TransientNetworkError  # noqa: E402
from app.models import DetailedTitle, Rating, Title, UserDocument  # noqa: E402
from app.services.catalog import CatalogSort  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_title(
    title_id: int,
    genres: dict[int, str] | None = None,
    *,
    score: float = 8.0,
    name: str | None = None,
) -> Title:
    return Title(
        id=title_id,
        title=name or f"Title {title_id}",
        score=score,
        genres=[{"id": genre_id, "name": label} for genre_id, label in (genres or {}).items()],
    )


def build_rating(title_id: int, total: int, **extra: Any) -> Rating:
    """Spread ``total`` over the criteria, ten points at a time."""

    criteria = [
        "story", "character", "animation", "music", "voiceActing", "worldBuilding",
        "theme", "originality", "reality", "genreAccuracy", "universality", "overall",
    ]
    scores: dict[str, int] = {}
    remaining = total
    for criterion in criteria:
        portion = min(10, remaining)
        scores[criterion] = portion
        remaining -= portion
    assert remaining == 0, "total must be within 0..120"
    return Rating(title_id=title_id, scores=scores, **extra)


@pytest.fixture
def make_title() -> Callable[..., Title]:
    return build_title


@pytest.fixture
def make_rating() -> Callable[..., Rating]:
    return build_rating


class FakeCatalog:
    """In-memory catalog that records calls and can fail per genre or id."""

    def __init__(
        self,
        listings: dict[int | None, list[Title]] | None = None,
        *,
        failing_genres: set[int | None] | None = None,
        missing_ids: set[int] | None = None,
    ) -> None:
        self.listings = listings or {}
        self.failing_genres = failing_genres or set()
        self.missing_ids = missing_ids or set()
        self.listing_calls: list[tuple[int | None, CatalogSort, int]] = []
        self.detail_calls: list[int] = []
        self.title_calls: list[int] = []

    @property
    def call_count(self) -> int:
        return len(self.listing_calls) + len(self.detail_calls) + len(self.title_calls)

    async def list_by_genre(
        self,
        genre_id: int | None,
        sort: CatalogSort = CatalogSort.POPULARITY,
        page: int = 1,
    ) -> list[Title]:
        self.listing_calls.append((genre_id, sort, page))
        if genre_id in self.failing_genres:
            raise TransientNetworkError(f"genre {genre_id} unavailable")
        return list(self.listings.get(genre_id, []))

    async def search(self, query: str, page: int = 1) -> list[Title]:
        matches = [
            title
            for titles in self.listings.values()
            for title in titles
            if query.lower() in title.title.lower()
        ]
        return matches

    async def get_title(self, title_id: int) -> DetailedTitle:
        self.title_calls.append(title_id)
        return self._lookup(title_id)

    async def get_detail(self, title_id: int) -> DetailedTitle:
        self.detail_calls.append(title_id)
        return self._lookup(title_id)

    def _lookup(self, title_id: int) -> DetailedTitle:
        if title_id in self.missing_ids:
            raise NotFoundError(f"Title {title_id} not found")
        for titles in self.listings.values():
            for title in titles:
                if title.id == title_id:
                    return DetailedTitle.model_validate(
                        {**title.model_dump(), "synopsis": f"About {title.title}"}
                    )
        raise NotFoundError(f"Title {title_id} not found")


@pytest.fixture
def fake_catalog_factory() -> Callable[..., FakeCatalog]:
    return FakeCatalog




class FakeRemoteState:
    """In-memory remote document store with controllable writes."""

    def __init__(self, documents: dict[str, UserDocument] | None = None) -> None:
        self.documents: dict[str, UserDocument] = dict(documents or {})
        self.writes: list[tuple[str, dict[str, Any]]] = []
        self.subscribers: dict[str, list[tuple[Callable, Callable]]] = {}
        self.fail_writes = False
        self.fail_reads = False
        self.write_gate: asyncio.Event | None = None

    async def read(self, user_id: str) -> UserDocument | None:
        if self.fail_reads:
            raise ConnectionError("remote unavailable")
        return self.documents.get(user_id)

    async def write_partial(self, user_id: str, fields: Mapping[str, Any]) -> None:
        self.writes.append((user_id, dict(fields)))
        if self.write_gate is not None:
            await self.write_gate.wait()
        if self.fail_writes:
            raise ConnectionError("write rejected")
        current = self.documents.get(user_id) or UserDocument()
        self.documents[user_id] = current.model_copy(update=dict(fields))

    async def subscribe(
        self,
        user_id: str,
        on_snapshot: Callable[[UserDocument], None],
        on_error: Callable[[Exception], None],
    ) -> Callable[[], None]:
        entry = (on_snapshot, on_error)
        self.subscribers.setdefault(user_id, []).append(entry)
        if user_id in self.documents and not self.fail_reads:
            on_snapshot(self.documents[user_id])

        def _unsubscribe() -> None:
            self.subscribers.get(user_id, []).remove(entry)

        return _unsubscribe

    def push(self, user_id: str, document: UserDocument) -> None:
        """Deliver ``document`` to every subscriber as a remote change."""

        self.documents[user_id] = document
        for on_snapshot, _ in list(self.subscribers.get(user_id, [])):
            on_snapshot(document)

    def fail(self, user_id: str, exc: Exception) -> None:
        for _, on_error in list(self.subscribers.get(user_id, [])):
            on_error(exc)


@pytest.fixture
def fake_remote() -> FakeRemoteState:
    return FakeRemoteState()
