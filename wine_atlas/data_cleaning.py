import pandas as pd
from pathlib import Path

from wine_atlas.errors import MissingField

REQUIRED_COLUMNS = ["country", "province", "variety", "points"]
TEXT_COLUMNS = ["country", "province", "region", "region_2", "variety", "winery",
                "designation", "title", "taster_name", "taster_twitter_handle", "description"]
RECORD_COLUMNS = ["country", "province", "region", "variety", "points", "price"]


def _clean_text(series: pd.Series) -> pd.Series:
    return series.astype("string").str.strip().replace("", pd.NA)


def clean_reviews(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    unnamed = [c for c in df.columns if str(c).startswith("Unnamed")]
    if unnamed:
        df = df.drop(columns=unnamed)
    if "region_1" in df.columns and "region" not in df.columns:
        df = df.rename(columns={"region_1": "region"})

    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise MissingField(", ".join(missing))
    if "region" not in df.columns:
        df["region"] = None
    if "price" not in df.columns:
        df["price"] = float("nan")

    for col in TEXT_COLUMNS:
        if col in df.columns:
            df[col] = _clean_text(df[col])

    df["points"] = pd.to_numeric(df["points"], errors="coerce")
    df["price"] = pd.to_numeric(df["price"], errors="coerce").astype(float)
    df = df.dropna(subset=["points", "variety"])
    df["points"] = df["points"].astype(int)

    ordered = RECORD_COLUMNS + [c for c in df.columns if c not in RECORD_COLUMNS]
    return df[ordered].reset_index(drop=True)


def load_reviews(path) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Reviews CSV not found: {path}")
    return clean_reviews(pd.read_csv(path, low_memory=False))


def sample_reviews(df: pd.DataFrame, n: int, seed: int | None = None) -> pd.DataFrame:
    if df is None or df.empty:
        return df
    n = min(int(n), len(df))
    return df.sample(n=n, random_state=seed).reset_index(drop=True)
