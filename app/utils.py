"""Utility helpers for the AnimePicks service."""

from __future__ import annotations

import hashlib
from typing import Callable, Hashable, Iterable, TypeVar

T = TypeVar("T")


def unique_by(items: Iterable[T], key: Callable[[T], Hashable]) -> list[T]:
    """Return ``items`` without repeated keys, keeping the first occurrence."""

    seen: set[Hashable] = set()
    unique: list[T] = []
    for item in items:
        marker = key(item)
        if marker in seen:
            continue
        seen.add(marker)
        unique.append(item)
    return unique


def collection_fingerprint(identifiers: Iterable[Hashable]) -> str:
    """Return an order-insensitive digest of a collection's identifiers.

    Duplicates are collapsed so the digest describes the set of ids only.
    """

    normalised = sorted({str(identifier) for identifier in identifiers})
    digest = hashlib.sha256()
    for identifier in normalised:
        digest.update(identifier.encode("utf-8"))
        digest.update(b"\x1f")
    return digest.hexdigest()
