"""
Tests for analyze module.

These tests verify that review statistics are deterministic and
correctly structured.
"""

import json

import pandas as pd
import pytest

from wine_atlas.analyze import (
    analyze_reviews,
    best_country_per_variety,
    points_price_sample,
    price_points_correlation,
    ratings_by_country,
    top_countries_by_volume,
    variety_counts,
)


@pytest.fixture
def tied_df() -> pd.DataFrame:
    """Pinot Noir where France and England tie on mean rating."""
    return pd.DataFrame([
        {"country": "France", "variety": "Pinot Noir", "points": 90, "price": 40.0},
        {"country": "France", "variety": "Pinot Noir", "points": 92, "price": 60.0},
        {"country": "England", "variety": "Pinot Noir", "points": 91, "price": 50.0},
        {"country": "US", "variety": "Pinot Noir", "points": 88, "price": 30.0},
        {"country": "Italy", "variety": "Nebbiolo", "points": 95, "price": 90.0},
        {"country": "US", "variety": "Nebbiolo", "points": 87, "price": 35.0},
    ])


class TestPricePointsCorrelation:
    """Tests for the price/points correlation."""

    def test_positive_correlation(self, tied_df):
        """Pricier bottles score higher in the fixture."""
        r = price_points_correlation(tied_df)
        assert r is not None
        assert r > 0.9

    def test_ignores_missing_prices(self, reviews_df):
        """Rows without a price are left out."""
        assert price_points_correlation(reviews_df) is not None

    def test_too_few_rows(self):
        """A single complete row has no correlation."""
        df = pd.DataFrame({"points": [90, 91], "price": [10.0, None]})
        assert price_points_correlation(df) is None


class TestPointsPriceSample:
    """Tests for the points/price scatter data."""

    def test_complete_pairs_only(self, reviews_df):
        """Rows missing a price are left out."""
        out = points_price_sample(reviews_df)
        assert list(out.columns) == ["points", "price"]
        assert len(out) == 4
        assert out["price"].notna().all()

    def test_sampled_down_reproducibly(self, tied_df):
        """Large inputs are cut to n rows, the same rows for the same seed."""
        first = points_price_sample(tied_df, n=3, seed=7)
        assert len(first) == 3
        pd.testing.assert_frame_equal(first, points_price_sample(tied_df, n=3, seed=7))

    def test_missing_columns(self):
        """Frames without a price column give an empty sample."""
        assert points_price_sample(pd.DataFrame({"points": [90]})).empty


class TestCountryRatings:
    """Tests for per-country aggregates."""

    def test_ratings_by_country(self, tied_df):
        """Mean rating and count per country, best first."""
        out = ratings_by_country(tied_df)
        assert out["country"].tolist() == ["Italy", "England", "France", "US"]
        assert out.set_index("country").loc["France", "number_of_wines"] == 2
        assert out.set_index("country").loc["US", "mean_rating"] == 87.5

    def test_top_countries_by_volume(self, tied_df):
        """Top n by count, then ranked by rating."""
        out = top_countries_by_volume(tied_df, n=2)
        assert set(out["country"]) == {"France", "US"}
        assert out["country"].tolist() == ["France", "US"]


class TestVarietyCounts:
    """Tests for variety counts."""

    def test_counts_descending(self, tied_df):
        """Most reviewed variety first."""
        out = variety_counts(tied_df)
        assert out["variety"].tolist() == ["Pinot Noir", "Nebbiolo"]
        assert out["count"].tolist() == [4, 2]


class TestBestCountryPerVariety:
    """Tests for the tie-preserving best-country aggregation."""

    def test_keeps_ties(self, tied_df):
        """France and England both average 91 for Pinot Noir."""
        out = best_country_per_variety(tied_df)
        pinot = out[out["variety"] == "Pinot Noir"]
        assert sorted(pinot["top_country"]) == ["England", "France"]
        assert (pinot["mean_rating"] == 91.0).all()

    def test_single_winner(self, tied_df):
        """Italy wins Nebbiolo alone."""
        out = best_country_per_variety(tied_df)
        assert out[out["variety"] == "Nebbiolo"]["top_country"].tolist() == ["Italy"]

    def test_sorted_by_variety_count(self, tied_df):
        """Popular varieties come first and carry their count."""
        out = best_country_per_variety(tied_df)
        assert out.iloc[0]["variety"] == "Pinot Noir"
        assert out.iloc[0]["count"] == 4
        assert list(out.columns) == ["variety", "top_country", "mean_rating", "count"]

    def test_rounds_before_comparing(self):
        """Means equal to two decimals count as a tie."""
        df = pd.DataFrame([
            {"country": "A", "variety": "V", "points": 90},
            {"country": "A", "variety": "V", "points": 91},
            {"country": "A", "variety": "V", "points": 91},
            {"country": "B", "variety": "V", "points": 90},
            {"country": "B", "variety": "V", "points": 91},
            {"country": "B", "variety": "V", "points": 91},
        ])
        assert len(best_country_per_variety(df)) == 2

    def test_unknown_country_on_top_drops_variety(self):
        """The runner-up is not promoted past reviews with no country."""
        df = pd.DataFrame([
            {"country": None, "variety": "Red Blend", "points": 93},
            {"country": "US", "variety": "Red Blend", "points": 88},
            {"country": None, "variety": "Riesling", "points": 85},
            {"country": "Germany", "variety": "Riesling", "points": 91},
        ])
        out = best_country_per_variety(df)
        assert out["variety"].tolist() == ["Riesling"]
        assert out["top_country"].tolist() == ["Germany"]
        assert out["top_country"].notna().all()


class TestAnalyzeReviews:
    """Tests for the summary series."""

    def test_returns_expected_keys(self, tied_df):
        """Output should contain all expected keys."""
        result = analyze_reviews(tied_df)
        for key in ["num_reviews", "num_countries", "num_varieties", "mean_points",
                    "price_points_correlation", "top_countries", "top_varieties", "run_timestamp"]:
            assert key in result.index, f"Missing key: {key}"

    def test_counts(self, tied_df):
        """Counts reflect the input."""
        result = analyze_reviews(tied_df)
        assert result["num_reviews"] == 6
        assert result["num_countries"] == 4
        assert result["num_varieties"] == 2

    def test_handles_empty_dataframe(self, empty_reviews_df):
        """Should handle empty input gracefully."""
        result = analyze_reviews(empty_reviews_df)
        assert result["num_reviews"] == 0
        assert result["top_countries"] == []

    def test_handles_none_input(self):
        """Should handle None input."""
        assert analyze_reviews(None)["num_reviews"] == 0

    def test_output_is_serializable(self, tied_df):
        """Output should be JSON-serializable."""
        parsed = json.loads(analyze_reviews(tied_df).to_json())
        assert parsed["num_reviews"] == 6
        assert parsed["top_varieties"][0] == ["Pinot Noir", 4]
