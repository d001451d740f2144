"""
Wine Atlas Test Configuration

Shared fixtures for testing pipeline components without network access.
"""

import sys
from pathlib import Path

import pandas as pd
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from wine_atlas.geocode import NOT_FOUND, RATE_LIMITED, Resolved  # noqa: E402

BURGUNDY = Resolved(47.05, 4.38)


class FakeLookup:
    """Scripted geocoder: each place maps to one outcome or a list consumed in order."""

    def __init__(self, answers=None, on_call=None, default=NOT_FOUND):
        self.answers = {k: (list(v) if isinstance(v, list) else v) for k, v in (answers or {}).items()}
        self.calls = []
        self.on_call = on_call
        self.default = default

    def __call__(self, place):
        self.calls.append(place)
        if self.on_call is not None:
            self.on_call(place)
        answer = self.answers.get(place, self.default)
        if isinstance(answer, list):
            answer = answer.pop(0) if len(answer) > 1 else answer[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def fake_lookup():
    return FakeLookup


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def raw_reviews_df() -> pd.DataFrame:
    """Rows shaped like the Kaggle winemag-data-130k CSV."""
    return pd.DataFrame([
        {
            "Unnamed: 0": 0,
            "country": "France",
            "description": "Firm tannins and red cherry.",
            "points": 92,
            "price": 45.0,
            "province": "Burgundy",
            "region_1": "Gevrey-Chambertin",
            "taster_name": "Roger Voss",
            "variety": "Pinot Noir",
        },
        {
            "Unnamed: 0": 1,
            "country": "France",
            "description": "Light and bright.",
            "points": 86,
            "price": None,
            "province": "Burgundy",
            "region_1": "Bourgogne",
            "taster_name": "Roger Voss",
            "variety": "Pinot Noir",
        },
        {
            "Unnamed: 0": 2,
            "country": "Italy",
            "description": "Tar and roses.",
            "points": 95,
            "price": 80.0,
            "province": "Piedmont",
            "region_1": "Barolo",
            "taster_name": "Kerin O'Keefe",
            "variety": "Nebbiolo",
        },
        {
            "Unnamed: 0": 3,
            "country": "US",
            "description": "  ",
            "points": 88,
            "price": 30.0,
            "province": "Oregon",
            "region_1": None,
            "taster_name": None,
            "variety": "Pinot Noir",
        },
        {
            "Unnamed: 0": 4,
            "country": None,
            "description": "Unlabelled bottle.",
            "points": 84,
            "price": 12.0,
            "province": None,
            "region_1": None,
            "taster_name": None,
            "variety": "Red Blend",
        },
    ])


@pytest.fixture
def reviews_df() -> pd.DataFrame:
    """Records already in the loader's output shape."""
    return pd.DataFrame([
        {"country": "France", "province": "Burgundy", "region": "Gevrey-Chambertin",
         "variety": "Pinot Noir", "points": 92, "price": 45.0},
        {"country": "France", "province": "Burgundy", "region": "Bourgogne",
         "variety": "Pinot Noir", "points": 86, "price": None},
        {"country": "Italy", "province": "Piedmont", "region": "Barolo",
         "variety": "Nebbiolo", "points": 95, "price": 80.0},
        {"country": "US", "province": "Oregon", "region": None,
         "variety": "Pinot Noir", "points": 88, "price": 30.0},
        {"country": None, "province": None, "region": None,
         "variety": "Red Blend", "points": 84, "price": 12.0},
    ])


@pytest.fixture
def burgundy_piedmont_df() -> pd.DataFrame:
    """Two Burgundy reviews and one Piedmont review."""
    return pd.DataFrame([
        {"country": "France", "province": "Burgundy", "region": None,
         "variety": "Pinot Noir", "points": 90, "price": 40.0},
        {"country": "France", "province": "Burgundy", "region": None,
         "variety": "Chardonnay", "points": 94, "price": 55.0},
        {"country": "Italy", "province": "Piedmont", "region": None,
         "variety": "Nebbiolo", "points": 85, "price": 25.0},
    ])


@pytest.fixture
def empty_reviews_df() -> pd.DataFrame:
    return pd.DataFrame(columns=["country", "province", "region", "variety", "points", "price"])


@pytest.fixture
def burgundy_piedmont_answers():
    """Burgundy resolves; Piedmont stays rate limited."""
    return {"Burgundy": BURGUNDY, "Piedmont": RATE_LIMITED}
