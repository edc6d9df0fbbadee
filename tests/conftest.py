"""
Pytest configuration for QTrack.

Provides fixtures for:
- Settings pointing at a throwaway database file
- An opened DataStore per test
- Record builders for the three QTrack tables
"""

from __future__ import annotations

from typing import Any, AsyncGenerator, Dict

import pytest
import pytest_asyncio

from qtrack.config import Settings, get_settings
from qtrack.infrastructure.store import DataStore


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """
    Settings fixture with test-specific overrides.

    Each test gets its own database file under pytest's tmp_path.
    """
    return Settings(
        db_path=str(tmp_path / "qtrack.db"),
        db_name="QTrackTestDB",
        max_retries=1,
        log_level="DEBUG",
    )


@pytest_asyncio.fixture
async def store(test_settings: Settings) -> AsyncGenerator[DataStore, None]:
    """
    Provide an initialized DataStore, closed after the test.
    """
    async with DataStore(settings=test_settings) as opened:
        yield opened


@pytest.fixture
def clear_settings_cache():
    """Drop the cached Settings before and after a test that edits the env."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_nc(**overrides: Any) -> Dict[str, Any]:
    nc: Dict[str, Any] = {
        "type_defaut": "rayure",
        "poste": "P3",
        "gravite": "Mineure",
        "description": "surface",
        "id_declarant": 7,
    }
    nc.update(overrides)
    return nc


def make_action(id_nc: int, **overrides: Any) -> Dict[str, Any]:
    action: Dict[str, Any] = {
        "description": "reprendre le polissage",
        "responsable": "bob",
        "delai": 5,
        "id_nc": id_nc,
    }
    action.update(overrides)
    return action


@pytest.fixture
def nc_factory():
    return make_nc


@pytest.fixture
def action_factory():
    return make_action
