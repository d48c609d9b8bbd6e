"""Entry point for the FastAPI-powered personalization service."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any, Callable, TypeVar

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .config import settings
from .database import Database
from .errors import CatalogError, NotFoundError
from .models import Rating, Title
from .services.catalog import CatalogBrowser, CatalogClient, CatalogSort, CatalogSource
from .services.preferences import analyze_preferences, summarize_preferences
from .services.recommendation_cache import RecommendationCache
from .services.recommendations import RecommendationEngine
from .services.remote_state import SqlRemoteStateClient
from .services.user_state import LocalStateFile, UserStateStore

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

T = TypeVar("T")

app: FastAPI


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SessionRequest(_Payload):
    user_id: str = Field(min_length=1, max_length=128)


class ConnectivityRequest(_Payload):
    online: bool


class MoreRecommendationsRequest(_Payload):
    exclude: list[int] = Field(default_factory=list)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    catalog_http_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.catalog_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    catalog = CatalogClient(settings, catalog_http_client)
    remote = SqlRemoteStateClient(database.session_factory)
    local_state = (
        LocalStateFile(settings.local_state_path)
        if settings.local_state_path is not None
        else None
    )
    store = UserStateStore(remote, local_state=local_state)
    cache = RecommendationCache(
        RecommendationEngine(catalog), limit=settings.recommendation_limit
    )

    fastapi_app.state.catalog = catalog
    fastapi_app.state.browser = CatalogBrowser(catalog)
    fastapi_app.state.user_state = store
    fastapi_app.state.recommendations = cache
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await store.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Genre-aware anime recommendations with offline-tolerant sync",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def _state_service(fastapi_app: FastAPI, name: str, kind: type[T]) -> T:
    service = getattr(fastapi_app.state, name, None)
    if not isinstance(service, kind):
        raise RuntimeError(f"{name} service not initialised")
    return service


def _dump(value: BaseModel) -> dict[str, Any]:
    return value.model_dump(mode="json", by_alias=True)


def register_routes(fastapi_app: FastAPI) -> None:
    def user_state() -> UserStateStore:
        return _state_service(fastapi_app, "user_state", UserStateStore)

    def recommendations() -> RecommendationCache:
        return _state_service(fastapi_app, "recommendations", RecommendationCache)

    def browser() -> CatalogBrowser:
        return _state_service(fastapi_app, "browser", CatalogBrowser)

    def catalog() -> CatalogSource:
        service = getattr(fastapi_app.state, "catalog", None)
        if service is None:
            raise RuntimeError("catalog service not initialised")
        return service

    def signed_in_store() -> UserStateStore:
        store = user_state()
        if store.user_id is None:
            raise HTTPException(status_code=401, detail="Sign in required")
        return store

    def state_payload(store: UserStateStore) -> dict[str, Any]:
        return {"state": _dump(store.state), "sync": store.status_payload()}

    async def call_catalog(operation: Callable[[], Any]) -> Any:
        try:
            return await operation()
        except NotFoundError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        except CatalogError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc

    @fastapi_app.exception_handler(RequestValidationError)
    async def _invalid_payload(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/api/session")
    async def start_session(payload: SessionRequest) -> JSONResponse:
        store = user_state()
        await store.start(payload.user_id)
        return JSONResponse(state_payload(store))

    @fastapi_app.delete("/api/session")
    async def end_session() -> JSONResponse:
        store = user_state()
        await store.stop()
        recommendations().invalidate()
        return JSONResponse(state_payload(store))

    @fastapi_app.get("/api/state")
    async def read_state() -> JSONResponse:
        return JSONResponse(state_payload(user_state()))

    @fastapi_app.post("/api/connectivity")
    async def set_connectivity(payload: ConnectivityRequest) -> JSONResponse:
        store = user_state()
        store.set_online(payload.online)
        return JSONResponse(store.status_payload())

    @fastapi_app.post("/api/sync")
    async def sync_state() -> JSONResponse:
        store = signed_in_store()
        await store.sync()
        return JSONResponse(state_payload(store))

    @fastapi_app.delete("/api/sync/error")
    async def dismiss_sync_error() -> JSONResponse:
        store = user_state()
        store.clear_error()
        return JSONResponse(store.status_payload())

    @fastapi_app.post("/api/watchlist")
    async def add_to_watchlist(title: Title) -> JSONResponse:
        store = signed_in_store()
        await store.add_to_watchlist(title)
        return JSONResponse(state_payload(store))

    @fastapi_app.delete("/api/watchlist/{title_id}")
    async def remove_from_watchlist(title_id: int) -> JSONResponse:
        store = signed_in_store()
        await store.remove_from_watchlist(title_id)
        return JSONResponse(state_payload(store))

    @fastapi_app.post("/api/watched")
    async def add_to_watched(title: Title) -> JSONResponse:
        store = signed_in_store()
        await store.add_to_watched_list(title)
        return JSONResponse(state_payload(store))

    @fastapi_app.delete("/api/watched/{title_id}")
    async def remove_from_watched(title_id: int) -> JSONResponse:
        store = signed_in_store()
        await store.remove_from_watched_list(title_id)
        return JSONResponse(state_payload(store))

    @fastapi_app.put("/api/ratings")
    async def put_rating(rating: Rating) -> JSONResponse:
        store = signed_in_store()
        await store.add_rating(rating)
        return JSONResponse(state_payload(store))

    @fastapi_app.get("/api/ratings/{title_id}")
    async def get_rating(title_id: int) -> JSONResponse:
        rating = signed_in_store().get_rating(title_id)
        if rating is None:
            raise HTTPException(status_code=404, detail=f"No rating for title {title_id}")
        payload = _dump(rating)
        payload["totalScore"] = rating.total_score
        payload["tier"] = {"label": rating.tier.label, "color": rating.tier.color}
        return JSONResponse(payload)

    @fastapi_app.get("/api/preferences")
    async def preferences() -> JSONResponse:
        store = user_state()
        ranked = analyze_preferences(store.ratings, store.watched_list)
        summary = summarize_preferences(ranked, store.watched_list)
        return JSONResponse(
            {
                "preferences": [_dump(preference) for preference in ranked],
                "summary": _dump(summary),
            }
        )

    @fastapi_app.get("/api/recommendations")
    async def get_recommendations() -> JSONResponse:
        store = user_state()
        titles = await recommendations().get_or_compute(
            store.watchlist, store.watched_list, store.ratings
        )
        return JSONResponse({"titles": [_dump(title) for title in titles]})

    @fastapi_app.post("/api/recommendations/more")
    async def more_recommendations(payload: MoreRecommendationsRequest) -> JSONResponse:
        store = user_state()
        titles = await recommendations().load_more(
            store.watched_list,
            store.ratings,
            payload.exclude,
            settings.recommendation_more_limit,
        )
        return JSONResponse({"titles": [_dump(title) for title in titles]})

    @fastapi_app.get("/api/catalog")
    async def browse_catalog(
        genre: int | None = Query(default=None, ge=1),
        sort: CatalogSort = CatalogSort.POPULARITY,
        page: int = Query(default=1, ge=1),
    ) -> JSONResponse:
        titles = await call_catalog(lambda: browser().browse(genre, sort, page))
        return JSONResponse(
            {
                "titles": [_dump(title) for title in titles or []],
                "superseded": titles is None,
            }
        )

    @fastapi_app.get("/api/catalog/search")
    async def search_catalog(
        q: str = Query(min_length=1),
        page: int = Query(default=1, ge=1),
    ) -> JSONResponse:
        titles = await call_catalog(lambda: browser().search(q, page))
        return JSONResponse(
            {
                "titles": [_dump(title) for title in titles or []],
                "superseded": titles is None,
            }
        )

    @fastapi_app.get("/api/catalog/{title_id}")
    async def title_detail(title_id: int) -> JSONResponse:
        detail = await call_catalog(lambda: catalog().get_detail(title_id))
        return JSONResponse(_dump(detail))


app = create_app()
