"""Configuration settings behaviour tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from app.config import Settings


def test_defaults_target_public_catalog() -> None:
    """Settings should fall back to the public catalog and sane limits."""

    settings = Settings(_env_file=None)

    assert str(settings.catalog_api_url).startswith("https://api.jikan.moe/v4")
    assert settings.catalog_page_size == 12
    assert settings.show_only_japanese is True
    assert settings.local_state_path is None


def test_retry_policy_reflects_configuration() -> None:
    """The catalog retry policy should mirror the configured attempts and delay."""

    settings = Settings(_env_file=None, CATALOG_RETRY_ATTEMPTS=5, CATALOG_RETRY_DELAY=0.5)

    policy = settings.catalog_retry_policy

    assert policy.max_attempts == 5
    assert policy.delay_for(2) == pytest.approx(1.0)


def test_blank_local_state_path_is_ignored() -> None:
    """An empty LOCAL_STATE_PATH should disable local persistence."""

    assert Settings(_env_file=None, LOCAL_STATE_PATH="  ").local_state_path is None
    assert Settings(_env_file=None, LOCAL_STATE_PATH="state.json").local_state_path == Path(
        "state.json"
    )


def test_page_size_is_bounded() -> None:
    """Catalog page sizes beyond the upstream maximum should be rejected."""

    with pytest.raises(ValueError):
        Settings(_env_file=None, CATALOG_PAGE_SIZE=40)
