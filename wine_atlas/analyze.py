import pandas as pd


def price_points_correlation(df: pd.DataFrame) -> float | None:
    if df is None or df.empty or not {"points", "price"}.issubset(df.columns):
        return None
    complete = df[["points", "price"]].dropna().astype(float)
    if len(complete) < 2:
        return None
    r = complete["points"].corr(complete["price"])
    return None if pd.isna(r) else float(r)


def points_price_sample(df: pd.DataFrame, n: int = 5000, seed: int | None = None) -> pd.DataFrame:
    """Reviews with both points and price, sampled down to n rows for plotting."""
    if df is None or not {"points", "price"}.issubset(df.columns):
        return pd.DataFrame(columns=["points", "price"])
    complete = df[["points", "price"]].dropna().astype(float)
    if len(complete) > n:
        complete = complete.sample(n=n, random_state=seed)
    return complete.reset_index(drop=True)


def ratings_by_country(df: pd.DataFrame) -> pd.DataFrame:
    return (df.groupby("country", as_index=False)
              .agg(number_of_wines=("points", "size"), mean_rating=("points", "mean"))
              .sort_values(["mean_rating", "country"], ascending=[False, True])
              .reset_index(drop=True))


def top_countries_by_volume(df: pd.DataFrame, n: int = 10) -> pd.DataFrame:
    """The n countries with the most reviews, ranked by mean rating."""
    by_country = ratings_by_country(df)
    return (by_country.sort_values(["number_of_wines", "country"], ascending=[False, True])
                      .head(n)
                      .sort_values(["mean_rating", "country"], ascending=[False, True])
                      .reset_index(drop=True))


def variety_counts(df: pd.DataFrame) -> pd.DataFrame:
    return (df.groupby("variety", as_index=False)
              .size()
              .rename(columns={"size": "count"})
              .sort_values(["count", "variety"], ascending=[False, True])
              .reset_index(drop=True))


def best_country_per_variety(df: pd.DataFrame) -> pd.DataFrame:
    """
    Country with the highest mean rating for every variety.

    Mean ratings are rounded to two places before ranking, and every country
    tied for the top stays in the result, so a variety can appear more than
    once. Reviews without a country form their own group; a variety whose
    best group is that unknown country is left out rather than handed to the
    runner-up.
    """
    means = (df.groupby(["variety", "country"], as_index=False, dropna=False)["points"]
               .mean()
               .rename(columns={"points": "mean_rating"}))
    means["mean_rating"] = means["mean_rating"].round(2)
    top = means[means["mean_rating"] == means.groupby("variety")["mean_rating"].transform("max")]
    joined = (top.merge(variety_counts(df), on="variety", how="left")
                 .dropna()
                 .rename(columns={"country": "top_country"})
                 .sort_values(["count", "variety", "top_country"], ascending=[False, True, True]))
    joined["count"] = joined["count"].astype(int)
    return joined[["variety", "top_country", "mean_rating", "count"]].reset_index(drop=True)


def analyze_reviews(df: pd.DataFrame) -> pd.Series:
    df = df if df is not None else pd.DataFrame()
    out = {
        "num_reviews": int(len(df)),
        "num_countries": 0,
        "num_varieties": 0,
        "mean_points": None,
        "price_points_correlation": None,
        "top_countries": [],
        "top_varieties": [],
        "run_timestamp": pd.Timestamp.now(tz="UTC").isoformat(),
    }
    if df.empty:
        return pd.Series(out)

    out["num_countries"] = int(df["country"].nunique())
    out["num_varieties"] = int(df["variety"].nunique())
    out["mean_points"] = round(float(df["points"].mean()), 2)
    out["price_points_correlation"] = price_points_correlation(df)
    out["top_countries"] = [
        (str(r.country), int(r.number_of_wines), round(float(r.mean_rating), 2))
        for r in top_countries_by_volume(df).itertuples(index=False)
    ]
    out["top_varieties"] = [
        (str(variety), int(count))
        for variety, count in variety_counts(df).head(20)[["variety", "count"]].itertuples(index=False)
    ]
    return pd.Series(out)
