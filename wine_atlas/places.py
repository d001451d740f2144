import logging

import pandas as pd

PLACE_FIELDS = ("province", "region")

logger = logging.getLogger(__name__)


def _check_field(field: str):
    if field not in PLACE_FIELDS:
        raise ValueError(f"Unknown place field {field!r}; expected one of {PLACE_FIELDS}")


def filter_records(df: pd.DataFrame, country: str | None = None, variety: str | None = None) -> pd.DataFrame:
    """Subset of reviews to geocode, e.g. French Pinot Noir."""
    if df is None or df.empty:
        return df
    mask = pd.Series(True, index=df.index)
    if country is not None:
        mask &= (df["country"] == country).fillna(False).astype(bool)
    if variety is not None:
        mask &= (df["variety"] == variety).fillna(False).astype(bool)
    return df[mask].reset_index(drop=True)


def extract_place_keys(df: pd.DataFrame, field: str) -> pd.DataFrame:
    """
    Distinct place names for ``field`` in first-seen order, one row per key.

    Returns a frame with columns ``index`` (0..N-1) and ``place``. Null or
    blank places never become keys; duplicates collapse on exact string
    equality, so "Burgundy" and "burgundy" are two keys.
    """
    _check_field(field)
    empty = pd.DataFrame({"index": pd.Series(dtype=int), "place": pd.Series(dtype=object)})
    if df is None or df.empty:
        return empty
    if field not in df.columns:
        logger.warning("Reviews have no %r column; no place keys extracted", field)
        return empty

    places = []
    seen = set()
    for value in df[field].tolist():
        if value is None or pd.isna(value):
            continue
        place = str(value)
        if not place.strip() or place in seen:
            continue
        seen.add(place)
        places.append(place)

    return pd.DataFrame({"index": range(len(places)), "place": places})
