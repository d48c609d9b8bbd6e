"""Pydantic models describing titles, ratings and user state."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Literal, NamedTuple

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
)
from pydantic.alias_generators import to_camel

from .utils import unique_by


class _Record(BaseModel):
    """Base for wire records: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class Genre(_Record):
    id: int = Field(validation_alias=AliasChoices("id", "mal_id", "malId"))
    name: str = ""


class Studio(_Record):
    id: int = Field(validation_alias=AliasChoices("id", "mal_id", "malId"))
    name: str = ""


class Title(_Record):
    """Lightweight catalog entry, treated as a value once fetched."""

    id: int = Field(validation_alias=AliasChoices("id", "mal_id", "malId"))
    title: str = ""
    title_japanese: str | None = None
    images: dict[str, Any] = Field(default_factory=dict)
    score: float = 0.0
    genres: list[Genre] = Field(default_factory=list)
    year: int | None = None
    season: str | None = None
    studios: list[Studio] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, value: object) -> float:
        if value is None or value == "":
            return 0.0
        try:
            score = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.0
        return min(10.0, max(0.0, score))

    @field_validator("genres")
    @classmethod
    def _unique_genres(cls, value: list[Genre]) -> list[Genre]:
        return unique_by(value, lambda genre: genre.id)

    @property
    def genre_ids(self) -> list[int]:
        return [genre.id for genre in self.genres]

    def display_title(self) -> str:
        """Return a human-friendly title for cards and lists."""

        for candidate in (self.title, self.title_japanese):
            if candidate and candidate.strip():
                return candidate.strip()
        return f"Title {self.id}"

    @classmethod
    def from_catalog_payload(cls, data: dict[str, Any]) -> "Title":
        """Build a title from a raw catalog listing entry."""

        return cls.model_validate(_normalise_catalog_payload(data))


class AiringWindow(_Record):
    start: datetime | None = Field(
        default=None, validation_alias=AliasChoices("start", "from")
    )
    end: datetime | None = Field(
        default=None, validation_alias=AliasChoices("end", "to")
    )


class CastMember(_Record):
    id: int = Field(validation_alias=AliasChoices("id", "mal_id", "malId"))
    name: str = ""
    image_url: str | None = None


class VoiceCredit(_Record):
    person: CastMember
    character: CastMember


class DetailedTitle(Title):
    """Title enriched with synopsis, airing data and the voice cast."""

    synopsis: str = ""
    age_rating: str | None = None
    status: str | None = None
    episodes: int = 0
    duration: str | None = None
    aired: AiringWindow = Field(default_factory=AiringWindow)
    voice_cast: list[VoiceCredit] = Field(default_factory=list)

    @classmethod
    def from_catalog_detail(
        cls,
        data: dict[str, Any],
        voice_cast: Iterable[VoiceCredit] = (),
    ) -> "DetailedTitle":
        payload = _normalise_catalog_payload(data)
        payload.update(
            {
                "synopsis": data.get("synopsis")
                or data.get("background")
                or "No synopsis available.",
                "age_rating": data.get("rating"),
                "status": data.get("status"),
                "episodes": data.get("episodes") or 0,
                "duration": data.get("duration"),
                "aired": _airing_window(data.get("aired")),
                "voice_cast": list(voice_cast),
            }
        )
        return cls.model_validate(payload)


def _airing_window(value: object) -> dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    return {"start": value.get("from"), "end": value.get("to")}


def _normalise_catalog_payload(data: dict[str, Any]) -> dict[str, Any]:
    year = data.get("year")
    if not year:
        aired_from = (data.get("aired") or {}).get("from")
        if isinstance(aired_from, str) and len(aired_from) >= 4 and aired_from[:4].isdigit():
            year = int(aired_from[:4])
    return {
        "id": data.get("mal_id", data.get("id")),
        "title": data.get("title") or "",
        "title_japanese": data.get("title_japanese"),
        "images": data.get("images") or {},
        "score": data.get("score"),
        "genres": [g for g in data.get("genres") or [] if isinstance(g, dict)],
        "year": year or None,
        "season": data.get("season"),
        "studios": [s for s in data.get("studios") or [] if isinstance(s, dict)],
    }


CriterionCategory = Literal["story", "visual", "audio", "character"]


class RatingCriterion(NamedTuple):
    id: str
    name: str
    category: CriterionCategory


RATING_CRITERIA: tuple[RatingCriterion, ...] = (
    RatingCriterion("story", "Story", "story"),
    RatingCriterion("character", "Characters", "character"),
    RatingCriterion("animation", "Animation", "visual"),
    RatingCriterion("music", "Music", "audio"),
    RatingCriterion("voiceActing", "Voice acting", "audio"),
    RatingCriterion("worldBuilding", "World building", "story"),
    RatingCriterion("theme", "Theme & message", "story"),
    RatingCriterion("originality", "Originality", "story"),
    RatingCriterion("reality", "Believability", "character"),
    RatingCriterion("genreAccuracy", "Genre fit", "story"),
    RatingCriterion("universality", "Timelessness", "story"),
    RatingCriterion("overall", "Overall", "story"),
)
CRITERION_IDS: frozenset[str] = frozenset(criterion.id for criterion in RATING_CRITERIA)
MAX_CRITERION_SCORE = 10
MAX_TOTAL_SCORE = MAX_CRITERION_SCORE * len(RATING_CRITERIA)


class RatingTier(NamedTuple):
    threshold: int
    label: str
    color: str


# Ordered from the highest lower bound down; the last band catches everything.
RATING_TIERS: tuple[RatingTier, ...] = (
    RatingTier(108, "Legendary", "yellow"),
    RatingTier(96, "Masterpiece", "purple"),
    RatingTier(84, "Excellent", "blue"),
    RatingTier(72, "Great", "green"),
    RatingTier(60, "Good", "cyan"),
    RatingTier(48, "Average", "gray"),
    RatingTier(36, "Poor", "red"),
    RatingTier(0, "Disaster", "dark-red"),
)


def rating_tier(total_score: float) -> RatingTier:
    """Return the tier band containing ``total_score``."""

    for tier in RATING_TIERS:
        if total_score >= tier.threshold:
            return tier
    return RATING_TIERS[-1]


class Rating(_Record):
    """Multi-criteria rating for one title; at most one per title.

    Every criterion in ``RATING_CRITERIA`` must be scored.
    """

    title_id: int = Field(
        validation_alias=AliasChoices("title_id", "titleId", "animeId")
    )
    scores: dict[str, int] = Field(
        validation_alias=AliasChoices("scores", "ratings")
    )
    comment: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator("scores")
    @classmethod
    def _validate_scores(cls, value: dict[str, int]) -> dict[str, int]:
        unknown = set(value) - CRITERION_IDS
        if unknown:
            raise ValueError(f"Unknown rating criteria: {', '.join(sorted(unknown))}")
        missing = CRITERION_IDS - set(value)
        if missing:
            raise ValueError(f"Missing rating criteria: {', '.join(sorted(missing))}")
        for criterion, score in value.items():
            if not 0 <= score <= MAX_CRITERION_SCORE:
                raise ValueError(
                    f"Score for {criterion} must be between 0 and {MAX_CRITERION_SCORE}"
                )
        return value

    @property
    def total_score(self) -> int:
        return sum(self.scores.values())

    @property
    def tier(self) -> RatingTier:
        return rating_tier(self.total_score)


class UserState(_Record):
    """Immutable snapshot of a user's lists and ratings.

    Construction normalises the collections: entries are unique by id, a
    later rating for the same title replaces the earlier one, and a title
    present on both lists is kept only on the watched list.
    """

    watched_list: list[Title] = Field(default_factory=list)
    watchlist: list[Title] = Field(default_factory=list)
    ratings: list[Rating] = Field(default_factory=list)
    last_synced_at: datetime | None = None

    @field_validator("watched_list")
    @classmethod
    def _unique_watched(cls, value: list[Title]) -> list[Title]:
        return unique_by(value, lambda title: title.id)

    @field_validator("watchlist")
    @classmethod
    def _exclusive_watchlist(
        cls, value: list[Title], info: ValidationInfo
    ) -> list[Title]:
        watched_ids = {title.id for title in info.data.get("watched_list", [])}
        return [
            title
            for title in unique_by(value, lambda title: title.id)
            if title.id not in watched_ids
        ]

    @field_validator("ratings")
    @classmethod
    def _latest_rating_per_title(cls, value: list[Rating]) -> list[Rating]:
        latest: dict[int, Rating] = {}
        for rating in value:
            latest.pop(rating.title_id, None)
            latest[rating.title_id] = rating
        return list(latest.values())

    def is_in_watchlist(self, title_id: int) -> bool:
        return any(title.id == title_id for title in self.watchlist)

    def is_in_watched_list(self, title_id: int) -> bool:
        return any(title.id == title_id for title in self.watched_list)

    def get_rating(self, title_id: int) -> Rating | None:
        for rating in self.ratings:
            if rating.title_id == title_id:
                return rating
        return None


class UserDocument(_Record):
    """Remote document shape stored per user id."""

    watchlist: list[Title] = Field(default_factory=list)
    watched_list: list[Title] = Field(default_factory=list)
    ratings: list[Rating] = Field(default_factory=list)
    updated_at: datetime | None = None


class GenrePreference(_Record):
    genre_id: int
    weight: float


class GenreShare(_Record):
    genre_id: int
    name: str
    weight: float
    share_percent: float


PreferenceFocus = Literal["none", "focused", "clear", "broad"]


class PreferenceSummary(_Record):
    """Chart-ready breakdown of the strongest genre preferences."""

    shares: list[GenreShare] = Field(default_factory=list)
    top_share_percent: float = 0.0
    focus: PreferenceFocus = "none"
