# Wine Atlas dashboard: geocoded reviews by rating category (Folium)

from __future__ import annotations

import json
import sys
from pathlib import Path

import pandas as pd
import streamlit as st
from streamlit_folium import st_folium

BASE = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BASE))

from wine_atlas.joiner import RATING_CATEGORIES, rating_category  # noqa: E402
from wine_atlas.maps import FRANCE_BOUNDS, build_rating_map  # noqa: E402

st.set_page_config(page_title="Wine Atlas", layout="wide")
DATA_DIR = BASE / "data" / "processed"

DATASETS = {
    "World sample (province)": ("world_sample_joined.csv", None),
    "French Pinot Noir (province)": ("pinot_france_by_province.csv", FRANCE_BOUNDS),
    "French Pinot Noir (region)": ("pinot_france_by_region.csv", FRANCE_BOUNDS),
}


@st.cache_data(show_spinner=False)
def load_joined(filename: str) -> pd.DataFrame:
    fp = DATA_DIR / filename
    if not fp.exists():
        return pd.DataFrame()
    df = pd.read_csv(fp)
    for col in ("lat", "lon", "points"):
        if col in df.columns:
            df[col] = pd.to_numeric(df[col], errors="coerce")
    df = df.dropna(subset=["lat", "lon", "points"])
    df = df[df["lat"].between(-90, 90) & df["lon"].between(-180, 180)]
    if "rating_category" not in df.columns:
        df["rating_category"] = df["points"].map(rating_category)
    return df.reset_index(drop=True)


@st.cache_data(show_spinner=False)
def load_points_price() -> pd.DataFrame:
    fp = DATA_DIR / "points_price.csv"
    if not fp.exists():
        return pd.DataFrame(columns=["points", "price"])
    return pd.read_csv(fp)


@st.cache_data(show_spinner=False)
def load_analysis() -> dict:
    fp = DATA_DIR / "analysis.json"
    if not fp.exists():
        return {}
    return json.loads(fp.read_text(encoding="utf-8"))


def kpi_cards(df: pd.DataFrame, analysis: dict):
    c1, c2, c3, c4 = st.columns(4)
    with c1:
        st.metric("Reviews in dataset", f"{analysis.get('num_reviews', 0):,}")
    with c2:
        st.metric("Reviews mapped", f"{len(df):,}")
    with c3:
        st.metric("Mean points (mapped)", f"{df['points'].mean():.1f}" if len(df) else "-")
    with c4:
        r = analysis.get("price_points_correlation")
        st.metric("Price/points r", f"{r:.2f}" if r is not None else "-")


def charts(analysis: dict):
    st.subheader("Wine Ratings vs. Price")
    points_price = load_points_price()
    if points_price.empty:
        st.caption("No points/price data yet.")
    else:
        st.scatter_chart(points_price, x="points", y="price")

    st.subheader("Wine Ratings of Top 10 Countries")
    top = pd.DataFrame(analysis.get("top_countries", []), columns=["country", "number_of_wines", "mean_rating"])
    if top.empty:
        st.caption("No country ratings yet.")
    else:
        st.bar_chart(top, x="country", y="mean_rating")
        st.dataframe(top, use_container_width=True, hide_index=True)


def sidebar_filters(df: pd.DataFrame):
    st.sidebar.header("Filters")
    countries = sorted(df["country"].dropna().unique()) if "country" in df.columns else []
    selected = st.sidebar.multiselect("Country", options=countries, default=countries)
    if selected:
        df = df[df["country"].isin(selected)]

    cats = st.sidebar.multiselect("Rating category", options=RATING_CATEGORIES, default=RATING_CATEGORIES)
    df = df[df["rating_category"].isin(cats)]
    return df


def main():
    st.title("Wine Atlas")
    dataset = st.sidebar.selectbox("Dataset", options=list(DATASETS))
    filename, bounds = DATASETS[dataset]
    df = load_joined(filename)

    if df.empty:
        st.info(f"No data yet. Run `python -m wine_atlas.pipeline` to generate `data/processed/{filename}`.")
        return

    analysis = load_analysis()
    kpi_cards(df, analysis)
    st.divider()
    filtered = sidebar_filters(df)

    tabs = st.tabs(["Map", "Charts", "Tables"])
    with tabs[0]:
        st_folium(build_rating_map(filtered, bounds=bounds), width=1100, height=640)

    with tabs[1]:
        charts(analysis)

    with tabs[2]:
        show_cols = [c for c in ["country", "province", "region", "variety", "points",
                                 "rating_category", "lat", "lon"] if c in filtered.columns]
        st.dataframe(filtered[show_cols].reset_index(drop=True), use_container_width=True)
        st.download_button(
            "Download filtered CSV",
            filtered.to_csv(index=False).encode("utf-8"),
            "filtered_wines.csv",
            "text/csv"
        )


if __name__ == "__main__":
    main()
