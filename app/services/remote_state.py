"""Remote document store holding each user's synchronised state."""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Mapping, Protocol, Sequence

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import UserDocumentRecord
from ..models import UserDocument

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[UserDocument], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]

DOCUMENT_FIELDS = ("watchlist", "watched_list", "ratings")


class RemoteStateClient(Protocol):
    """Document store keyed by user id with change notifications."""

    async def read(self, user_id: str) -> UserDocument | None: ...

    async def write_partial(self, user_id: str, fields: Mapping[str, Any]) -> None: ...

    async def subscribe(
        self,
        user_id: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe: ...


def _serialise_items(items: Sequence[Any]) -> list[dict[str, Any]]:
    serialised: list[dict[str, Any]] = []
    for item in items:
        if isinstance(item, BaseModel):
            serialised.append(item.model_dump(mode="json", by_alias=True))
        elif isinstance(item, dict):
            serialised.append(dict(item))
        else:
            raise TypeError(f"Cannot store {type(item).__name__} in a user document")
    return serialised


def _record_to_document(record: UserDocumentRecord) -> UserDocument:
    return UserDocument.model_validate(
        {
            "watchlist": record.watchlist or [],
            "watched_list": record.watched_list or [],
            "ratings": record.ratings or [],
            "updated_at": record.updated_at,
        }
    )


class SqlRemoteStateClient:
    """SQLAlchemy-backed document store with in-process change fan-out.

    Writes merge at the top-level field: only the fields passed to
    :meth:`write_partial` are replaced. The server assigns ``updated_at`` on
    every write, and every committed write is pushed to the subscribers of
    that user as a full document snapshot.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._subscribers: dict[str, list[tuple[SnapshotCallback, ErrorCallback]]] = (
            defaultdict(list)
        )

    async def read(self, user_id: str) -> UserDocument | None:
        async with self._session_factory() as session:
            record = await session.get(UserDocumentRecord, user_id)
            if record is None:
                return None
            return _record_to_document(record)

    async def write_partial(self, user_id: str, fields: Mapping[str, Any]) -> None:
        unknown = set(fields) - set(DOCUMENT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown document fields: {', '.join(sorted(unknown))}")

        now = datetime.utcnow()
        async with self._session_factory() as session:
            record = await session.get(UserDocumentRecord, user_id)
            if record is None:
                record = UserDocumentRecord(
                    user_id=user_id,
                    watchlist=[],
                    watched_list=[],
                    ratings=[],
                    created_at=now,
                )
                session.add(record)
            for name, value in fields.items():
                setattr(record, name, _serialise_items(value))
            record.updated_at = now
            await session.commit()
            document = _record_to_document(record)

        self._publish(user_id, document)

    async def subscribe(
        self,
        user_id: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        entry = (on_snapshot, on_error)
        self._subscribers[user_id].append(entry)

        def _unsubscribe() -> None:
            listeners = self._subscribers.get(user_id)
            if listeners and entry in listeners:
                listeners.remove(entry)
            if not listeners:
                self._subscribers.pop(user_id, None)

        try:
            document = await self.read(user_id)
        except Exception as exc:
            logger.warning("Initial snapshot for %s failed: %s", user_id, exc)
            on_error(exc)
        else:
            if document is not None:
                on_snapshot(document)
        return _unsubscribe

    def subscriber_count(self, user_id: str) -> int:
        return len(self._subscribers.get(user_id, ()))

    def _publish(self, user_id: str, document: UserDocument) -> None:
        for on_snapshot, _ in list(self._subscribers.get(user_id, ())):
            try:
                on_snapshot(document)
            except Exception:  # pragma: no cover - listener bugs must not fail writes
                logger.exception("Snapshot listener for %s failed", user_id)
