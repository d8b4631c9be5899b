"""
Pytest configuration for internal level estimator tests.
"""

import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from maimai_analysis.database import SongDatabase, song_from_dict


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (randomised cross-checks)"
    )


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-slow", action="store_true", default=False, help="Run slow tests"
    )


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless --run-slow is specified."""
    if config.getoption("--run-slow"):
        return
    skip_slow = pytest.mark.skip(reason="Need --run-slow option to run")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


# =============================================================================
# Shared song data
# =============================================================================

def song_dict(name, level, version="BUDDIES", debut=None, difficulty="master",
              generation="deluxe", removed=None, revived=None):
    """JSON form of a one-chart song. Negative `level` means "displayed level only"."""
    data = {
        "name": name,
        "icon": f"icon_{name}",
        "scores": {
            generation: {
                "version": debut or version,
                "levels": {difficulty: {version: level}},
            },
        },
    }
    if removed is not None:
        data["removed"] = removed
    if revived is not None:
        data["revived"] = revived
    return data


@pytest.fixture
def make_database():
    """Factory building a SongDatabase from song_dict keyword sets."""
    def build(*songs):
        return SongDatabase([song_from_dict(song_dict(**song)) for song in songs])
    return build


@pytest.fixture
def level7_database(make_database):
    """
    Three BUDDiES charts:
        A: Lv.7, constant unknown (7.0-7.6)
        B: Lv.7, constant unknown
        K: known 7.3
    """
    return make_database(
        dict(name="A", level=-7.0),
        dict(name="B", level=-7.0),
        dict(name="K", level=7.3),
    )
