"""Session-scoped user state with optimistic writes and remote snapshot merge."""

from __future__ import annotations

import enum
import json
import logging
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, Callable, Mapping

from ..errors import AuthRequiredError
from ..models import Rating, Title, UserDocument, UserState
from .remote_state import RemoteStateClient, Unsubscribe

logger = logging.getLogger(__name__)

StateListener = Callable[[UserState], None]


class SyncStatus(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    SYNCED = "synced"
    STALE = "stale"


class LocalStateFile:
    """Persists the latest local snapshot as JSON so it survives restarts."""

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self, user_id: str) -> UserState | None:
        if not self._path.exists():
            return None
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            if raw.get("userId") != user_id:
                return None
            return UserState.model_validate(raw.get("state") or {})
        except (OSError, ValueError, AttributeError) as exc:
            logger.warning("Ignoring unreadable local state at %s: %s", self._path, exc)
            return None

    def save(self, user_id: str, state: UserState) -> None:
        payload = {
            "userId": user_id,
            "state": state.model_dump(mode="json", by_alias=True),
        }
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(payload, indent=2, sort_keys=True) + "\n", encoding="utf-8"
        )


class UserStateStore:
    """State container for one authenticated session.

    Mutations update local state first and notify listeners before any remote
    round trip; the remote write only happens while online. While online,
    snapshots pushed by the remote store replace all three collections
    wholesale, so the most recent snapshot wins over any local edit still in
    flight. Offline, pushed snapshots are ignored and the status stays stale.
    """

    def __init__(
        self,
        remote: RemoteStateClient,
        *,
        local_state: LocalStateFile | None = None,
        online: bool = True,
    ):
        self._remote = remote
        self._local_state = local_state
        self._state = UserState()
        self._listeners: list[StateListener] = []
        self._unsubscribe_remote: Unsubscribe | None = None
        self.user_id: str | None = None
        self.status = SyncStatus.UNINITIALIZED
        self.is_online = online
        self.is_loading = False
        self.is_syncing = False
        self.pending_writes = 0
        self.error: str | None = None

    # -- reading -------------------------------------------------------------

    @property
    def state(self) -> UserState:
        return self._state

    @property
    def watchlist(self) -> list[Title]:
        return list(self._state.watchlist)

    @property
    def watched_list(self) -> list[Title]:
        return list(self._state.watched_list)

    @property
    def ratings(self) -> list[Rating]:
        return list(self._state.ratings)

    @property
    def last_synced_at(self) -> datetime | None:
        return self._state.last_synced_at

    def is_in_watchlist(self, title_id: int) -> bool:
        return self._state.is_in_watchlist(title_id)

    def is_in_watched_list(self, title_id: int) -> bool:
        return self._state.is_in_watched_list(title_id)

    def get_rating(self, title_id: int) -> Rating | None:
        return self._state.get_rating(title_id)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` for every state transition."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def status_payload(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "status": self.status.value,
            "isOnline": self.is_online,
            "isLoading": self.is_loading,
            "isSyncing": self.is_syncing,
            "pendingWrites": self.pending_writes,
            "lastSyncedAt": (
                self.last_synced_at.isoformat() if self.last_synced_at else None
            ),
            "error": self.error,
        }

    # -- session lifecycle ---------------------------------------------------

    async def start(self, user_id: str) -> None:
        """Seed state for a signed-in user and open the remote subscription."""

        if self.user_id == user_id and self.status is not SyncStatus.UNINITIALIZED:
            return
        if self.user_id is not None:
            await self.stop()

        self.user_id = user_id
        self.status = SyncStatus.LOADING
        self.is_loading = True
        self.error = None
        try:
            if self._local_state is not None:
                cached = self._local_state.load(user_id)
                if cached is not None:
                    self._commit(cached, persist=False)

            if self.is_online:
                await self._fetch_remote(user_id)
            else:
                logger.info("Offline at sign-in; using local state for %s", user_id)
                self.status = SyncStatus.STALE

            try:
                self._unsubscribe_remote = await self._remote.subscribe(
                    user_id,
                    partial(self._on_remote_snapshot, user_id),
                    partial(self._on_remote_error, user_id),
                )
            except Exception as exc:
                logger.warning("Could not subscribe to remote state for %s: %s", user_id, exc)
                self._record_failure("Realtime sync is unavailable")
        finally:
            self.is_loading = False

    async def stop(self) -> None:
        """Tear down the subscription and forget the signed-in user."""

        if self._unsubscribe_remote is not None:
            self._unsubscribe_remote()
            self._unsubscribe_remote = None
        self.user_id = None
        self.status = SyncStatus.UNINITIALIZED
        self.error = None
        self.pending_writes = 0
        self._commit(UserState(), persist=False)

    async def sync(self) -> None:
        """Replace local state with a fresh remote read, when possible."""

        user_id = self.user_id
        if user_id is None or not self.is_online:
            return
        self.is_syncing = True
        self.error = None
        try:
            await self._fetch_remote(user_id)
        finally:
            self.is_syncing = False

    def set_online(self, online: bool) -> None:
        """Record a connectivity change; reconnecting does not resync."""

        if online == self.is_online:
            return
        self.is_online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        if not online and self.status is SyncStatus.SYNCED:
            self.status = SyncStatus.STALE

    def clear_error(self) -> None:
        self.error = None

    # -- mutations -----------------------------------------------------------

    async def add_to_watchlist(self, title: Title) -> None:
        user_id = self._signed_in_user("add to watchlist")
        if user_id is None:
            return
        if self.is_in_watchlist(title.id) or self.is_in_watched_list(title.id):
            return
        state = self._evolve(watchlist=[*self._state.watchlist, title])
        self._commit(state)
        await self._write_through(
            user_id, {"watchlist": state.watchlist}, "add to watchlist"
        )

    async def remove_from_watchlist(self, title_id: int) -> None:
        user_id = self._signed_in_user("remove from watchlist")
        if user_id is None or not self.is_in_watchlist(title_id):
            return
        state = self._evolve(
            watchlist=[t for t in self._state.watchlist if t.id != title_id]
        )
        self._commit(state)
        await self._write_through(
            user_id, {"watchlist": state.watchlist}, "remove from watchlist"
        )

    async def add_to_watched_list(self, title: Title) -> None:
        user_id = self._signed_in_user("add to watched list")
        if user_id is None or self.is_in_watched_list(title.id):
            return
        state = self._evolve(
            watched_list=[*self._state.watched_list, title],
            watchlist=[t for t in self._state.watchlist if t.id != title.id],
        )
        self._commit(state)
        await self._write_through(
            user_id,
            {"watched_list": state.watched_list, "watchlist": state.watchlist},
            "add to watched list",
        )

    async def remove_from_watched_list(self, title_id: int) -> None:
        user_id = self._signed_in_user("remove from watched list")
        if user_id is None or not self.is_in_watched_list(title_id):
            return
        state = self._evolve(
            watched_list=[t for t in self._state.watched_list if t.id != title_id]
        )
        self._commit(state)
        await self._write_through(
            user_id, {"watched_list": state.watched_list}, "remove from watched list"
        )

    async def add_rating(self, rating: Rating) -> None:
        """Store ``rating``, replacing any earlier rating of the same title."""

        user_id = self._signed_in_user("add rating")
        if user_id is None:
            return
        state = self._evolve(
            ratings=[
                *(r for r in self._state.ratings if r.title_id != rating.title_id),
                rating,
            ]
        )
        self._commit(state)
        await self._write_through(user_id, {"ratings": state.ratings}, "add rating")

    # -- internals -----------------------------------------------------------

    def _require_user(self) -> str:
        if self.user_id is None:
            raise AuthRequiredError("No signed-in user")
        return self.user_id

    def _signed_in_user(self, action: str) -> str | None:
        try:
            return self._require_user()
        except AuthRequiredError as exc:
            logger.info("Ignoring %s: %s", action, exc)
            return None

    def _evolve(self, **changes: Any) -> UserState:
        data: dict[str, Any] = {
            "watchlist": self._state.watchlist,
            "watched_list": self._state.watched_list,
            "ratings": self._state.ratings,
            "last_synced_at": self._state.last_synced_at,
        }
        data.update(changes)
        return UserState(**data)

    def _commit(self, state: UserState, *, persist: bool = True) -> None:
        self._state = state
        if persist and self._local_state is not None and self.user_id is not None:
            try:
                self._local_state.save(self.user_id, state)
            except OSError as exc:
                logger.warning("Failed to persist local state: %s", exc)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:  # pragma: no cover - listener bugs stay local
                logger.exception("User state listener failed")

    async def _write_through(
        self, user_id: str, fields: Mapping[str, Any], action: str
    ) -> None:
        if not self.is_online:
            logger.info("Offline; %s kept locally for %s", action, user_id)
            return
        self.pending_writes += 1
        try:
            await self._remote.write_partial(user_id, fields)
        except Exception as exc:
            logger.warning("Failed to %s for %s: %s", action, user_id, exc)
            self._record_failure(f"Failed to {action}")
        finally:
            self.pending_writes = max(0, self.pending_writes - 1)

    async def _fetch_remote(self, user_id: str) -> None:
        try:
            document = await self._remote.read(user_id)
        except Exception as exc:
            logger.warning("Failed to load remote state for %s: %s", user_id, exc)
            self._record_failure("Failed to sync user data")
            return
        if self.user_id != user_id:
            return
        if document is None:
            logger.info("No remote document for %s yet; keeping local state", user_id)
            self._commit(self._evolve(last_synced_at=datetime.utcnow()))
            self.status = SyncStatus.SYNCED
            return
        self._apply_document(document)

    def _apply_document(self, document: UserDocument) -> None:
        self._commit(
            UserState(
                watchlist=document.watchlist,
                watched_list=document.watched_list,
                ratings=document.ratings,
                last_synced_at=datetime.utcnow(),
            )
        )
        self.status = SyncStatus.SYNCED

    def _on_remote_snapshot(self, user_id: str, document: UserDocument) -> None:
        if self.user_id != user_id:
            return
        if not self.is_online:
            # The local snapshot stays authoritative until an explicit sync.
            logger.info("Offline; ignoring remote snapshot for %s", user_id)
            return
        self._apply_document(document)

    def _on_remote_error(self, user_id: str, exc: Exception) -> None:
        if self.user_id != user_id:
            return
        logger.error("Realtime sync error for %s: %s", user_id, exc)
        self._record_failure("Failed to sync user data")

    def _record_failure(self, message: str) -> None:
        self.error = message
        if self.status in (SyncStatus.SYNCED, SyncStatus.LOADING):
            self.status = SyncStatus.STALE
