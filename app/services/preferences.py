"""Genre preference inference from ratings and viewing history."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..models import (
    GenrePreference,
    GenreShare,
    PreferenceFocus,
    PreferenceSummary,
    Rating,
    Title,
)

WATCHED_BASELINE_SCORE = 60
TOP_GENRE_COUNT = 3
CHART_GENRE_LIMIT = 6


def analyze_preferences(
    ratings: Iterable[Rating], watched: Sequence[Title]
) -> list[GenrePreference]:
    """Return per-genre weights, strongest first.

    Each rating of a watched title adds its total score (0-120) to every genre
    on that title, and every watched title adds a baseline of 60 to each of
    its genres. A genre's weight is the mean of everything it accumulated.
    Ratings for titles that are not on the watched list are ignored.

    Equal weights keep the order in which genres were first seen: genres
    reached through ratings first (in rating order), then those reached only
    through the watched list (in list order).
    """

    watched_by_id = {title.id: title for title in watched}
    totals: dict[int, list[float]] = {}

    def _accumulate(title: Title, score: float) -> None:
        for genre_id in title.genre_ids:
            bucket = totals.setdefault(genre_id, [0.0, 0])
            bucket[0] += score
            bucket[1] += 1

    for rating in ratings:
        title = watched_by_id.get(rating.title_id)
        if title is None:
            continue
        _accumulate(title, rating.total_score)

    for title in watched:
        _accumulate(title, WATCHED_BASELINE_SCORE)

    preferences = [
        GenrePreference(genre_id=genre_id, weight=total / count)
        for genre_id, (total, count) in totals.items()
        if count
    ]
    preferences.sort(key=lambda preference: preference.weight, reverse=True)
    return preferences


def top_preferences(
    preferences: Sequence[GenrePreference], count: int = TOP_GENRE_COUNT
) -> list[GenrePreference]:
    return sorted(preferences, key=lambda p: p.weight, reverse=True)[:count]


def summarize_preferences(
    preferences: Sequence[GenrePreference],
    watched: Sequence[Title],
    *,
    limit: int = CHART_GENRE_LIMIT,
) -> PreferenceSummary:
    """Describe the strongest genres as percentages of the total weight."""

    total_weight = sum(preference.weight for preference in preferences)
    if not preferences or total_weight <= 0:
        return PreferenceSummary()

    names: dict[int, str] = {}
    for title in watched:
        for genre in title.genres:
            names.setdefault(genre.id, genre.name)

    shares = [
        GenreShare(
            genre_id=preference.genre_id,
            name=names.get(preference.genre_id) or "Unknown",
            weight=preference.weight,
            share_percent=preference.weight / total_weight * 100,
        )
        for preference in preferences[:limit]
    ]
    top_share = sum(share.share_percent for share in shares[:TOP_GENRE_COUNT])
    return PreferenceSummary(
        shares=shares,
        top_share_percent=top_share,
        focus=_focus_for(top_share),
    )


def _focus_for(top_share: float) -> PreferenceFocus:
    if top_share > 75:
        return "focused"
    if top_share > 50:
        return "clear"
    return "broad"
