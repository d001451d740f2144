import logging
import os
import sys
from pathlib import Path

import pandas as pd
from dotenv import load_dotenv

from wine_atlas.analyze import analyze_reviews, best_country_per_variety, points_price_sample
from wine_atlas.data_cleaning import load_reviews, sample_reviews
from wine_atlas.errors import ServiceUnavailable
from wine_atlas.geocache import GeocodeCache
from wine_atlas.geocode import RateLimitedGeocoder
from wine_atlas.joiner import join_coordinates
from wine_atlas.maps import FRANCE_BOUNDS, save_rating_map
from wine_atlas.places import extract_place_keys, filter_records


def ensure_dirs(base: Path):
    (base / "data").mkdir(exist_ok=True)
    (base / "data" / "processed").mkdir(parents=True, exist_ok=True)
    (base / "data" / "cache").mkdir(parents=True, exist_ok=True)


def geocode_and_join(records: pd.DataFrame, field: str, geocoder: RateLimitedGeocoder,
                     timeout: float | None = None):
    """Extract distinct places, resolve them and join coordinates back on."""
    keys = extract_place_keys(records, field)
    run = geocoder.resolve(keys, timeout=timeout)
    return join_coordinates(records, run, field), run


def _report(label: str, records: pd.DataFrame, joined: pd.DataFrame, run):
    s = run.summary()
    print(f"{label}: {s['keys']} places, {s['attempted']} looked up, {s['resolved']} resolved "
          f"({s['cached']} cached), {s['failed']} failed"
          + (f", {s['cancelled'] + s['retry_pending']} cancelled" if run.cancelled else "")
          + f"; {len(joined)}/{len(records)} reviews mapped")


def _timeout():
    raw = os.getenv("GEOCODER_TIMEOUT_TOTAL", "").strip()
    return float(raw) if raw else None


def run_maps(reviews: pd.DataFrame, geocoder: RateLimitedGeocoder, proc: Path):
    timeout = _timeout()
    sample_size = int(os.getenv("WORLD_SAMPLE_SIZE", "100"))
    seed = int(os.getenv("SAMPLE_SEED", "42"))

    world = sample_reviews(reviews, sample_size, seed=seed)
    world = world[["country", "province", "points"]].dropna().reset_index(drop=True)
    world_joined, run = geocode_and_join(world, "province", geocoder, timeout)
    _report("World sample", world, world_joined, run)
    world_joined.to_csv(proc / "world_sample_joined.csv", index=False)
    save_rating_map(world_joined, proc / "world_wines_map.html", title="Wines Mapped Across the World")

    pinot = filter_records(reviews, country="France", variety="Pinot Noir")
    pinot = pinot[["country", "province", "region", "variety", "points"]]

    by_province, run = geocode_and_join(pinot, "province", geocoder, timeout)
    _report("French Pinot Noir by province", pinot, by_province, run)
    by_province.to_csv(proc / "pinot_france_by_province.csv", index=False)

    by_region, run = geocode_and_join(pinot, "region", geocoder, timeout)
    _report("French Pinot Noir by region", pinot, by_region, run)
    run.to_frame().to_csv(proc / "pinot_france_regions_geocoded.csv", index=False)
    by_region.to_csv(proc / "pinot_france_by_region.csv", index=False)
    save_rating_map(by_region, proc / "pinot_france_map.html",
                    title="Pinot Noirs Across France", bounds=FRANCE_BOUNDS)


def main():
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    base = Path(os.getenv("WINE_ATLAS_HOME", str(Path(__file__).resolve().parents[1])))
    ensure_dirs(base)
    proc = base / "data" / "processed"

    csv_path = Path(os.getenv("WINE_REVIEWS_CSV", str(base / "data" / "winemag-data-130k-v2.csv")))
    reviews = load_reviews(csv_path)
    print(f"Loaded {len(reviews):,} reviews from {csv_path}")

    analysis = analyze_reviews(reviews)
    with open(proc / "analysis.json", "w", encoding="utf-8") as f:
        f.write(analysis.to_json(indent=2))
    best_country_per_variety(reviews).to_csv(proc / "best_country_per_variety.csv", index=False)
    points_price_sample(reviews, seed=int(os.getenv("SAMPLE_SEED", "42"))).to_csv(
        proc / "points_price.csv", index=False)
    if analysis["price_points_correlation"] is not None:
        print(f"Price vs. points correlation: r = {analysis['price_points_correlation']:.2f}")

    if os.getenv("USE_GEOCODING", "true").lower() != "true":
        print("Geocoding disabled via USE_GEOCODING=false")
        return 0

    cache = GeocodeCache.load(base / "data" / "cache" / "geocache.csv")
    geocoder = RateLimitedGeocoder.from_env(cache=cache)
    try:
        run_maps(reviews, geocoder, proc)
    except ServiceUnavailable as e:
        print(f"Geocoding aborted: {e}")
        if e.run is not None:
            print(f"Partial run: {e.run.summary()}")
        return 2
    finally:
        if cache.save():
            print(f"Geocache saved to {cache.path} ({len(cache)} places)")

    print("Wine atlas pipeline complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
