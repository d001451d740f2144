import logging

import pandas as pd

from wine_atlas.geocode import GeocodeResult, GeocodeRun
from wine_atlas.places import PLACE_FIELDS

RATING_CATEGORIES = ["low", "medium", "high"]
RATING_COLORS = {"low": "red", "medium": "yellow", "high": "green"}

logger = logging.getLogger(__name__)


def rating_category(points) -> str:
    """low up to 87, medium from 88 to 93, high from 94."""
    if points <= 87:
        return "low"
    if points < 94:
        return "medium"
    return "high"


def _place_lookup(results) -> dict[str, GeocodeResult]:
    if isinstance(results, GeocodeRun):
        return results.by_place()
    if isinstance(results, dict):
        return {r.place: r for r in results.values() if r.resolved}
    return {r.place: r for r in results if r.resolved}


def join_coordinates(df: pd.DataFrame, results, field: str) -> pd.DataFrame:
    """
    Attach lat/lon and a rating category to every review whose ``field``
    resolved; reviews with unresolved or missing places are dropped.

    Input order is preserved.
    """
    if field not in PLACE_FIELDS:
        raise ValueError(f"Unknown place field {field!r}; expected one of {PLACE_FIELDS}")
    if df is None:
        df = pd.DataFrame()
    columns = list(df.columns) + ["place_index", "lat", "lon", "rating_category"]
    if df.empty:
        return pd.DataFrame(columns=columns)
    if field not in df.columns:
        logger.warning("Reviews have no %r column; nothing to join", field)
        return pd.DataFrame(columns=columns)

    by_place = _place_lookup(results)
    matched = [None if pd.isna(v) else by_place.get(str(v)) for v in df[field].tolist()]
    keep = [m is not None for m in matched]
    hits = [m for m in matched if m is not None]

    out = df[keep].copy()
    out["place_index"] = [r.index for r in hits]
    out["lat"] = [r.latitude for r in hits]
    out["lon"] = [r.longitude for r in hits]
    out["rating_category"] = out["points"].map(rating_category)

    dropped = len(df) - len(out)
    if dropped:
        logger.info("Dropped %d of %d reviews without coordinates for %s", dropped, len(df), field)
    return out.reset_index(drop=True)
