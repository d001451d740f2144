from pathlib import Path

import folium
import pandas as pd

from wine_atlas.joiner import RATING_COLORS

WORLD_CENTER = [30.0, 10.0]
WORLD_ZOOM = 2
# lon -10..12.5, lat 40..53
FRANCE_BOUNDS = [[40.0, -10.0], [53.0, 12.5]]


def _popup_html(r) -> str:
    place = r.get("region") if isinstance(r.get("region"), str) else r.get("province")
    lines = [
        f"<b>{r.get('variety', '')}</b>",
        ", ".join(str(x) for x in (place, r.get("country")) if isinstance(x, str)),
        f"{int(r['points'])} points ({r['rating_category']})",
    ]
    if pd.notna(r.get("price")):
        lines.append(f"${float(r['price']):.0f}")
    return "<br>".join(x for x in lines if x)


def build_rating_map(joined: pd.DataFrame, title: str = "", bounds=None) -> folium.Map:
    """Circle marker per review, coloured by rating category."""
    m = folium.Map(location=WORLD_CENTER, zoom_start=WORLD_ZOOM, tiles="CartoDB positron")
    if title:
        m.get_root().html.add_child(folium.Element(f"<h3 style='text-align:center'>{title}</h3>"))

    layers = {cat: folium.FeatureGroup(name=cat.title()) for cat in ("high", "medium", "low")}
    for _, r in joined.iterrows():
        if pd.isna(r.get("lat")) or pd.isna(r.get("lon")):
            continue
        color = RATING_COLORS.get(r["rating_category"], "gray")
        folium.CircleMarker(
            location=[r["lat"], r["lon"]],
            radius=6,
            color=color,
            fill=True,
            fill_color=color,
            fill_opacity=0.85,
            popup=folium.Popup(_popup_html(r), max_width=280),
        ).add_to(layers.get(r["rating_category"], m))

    for layer in layers.values():
        layer.add_to(m)
    if bounds is not None:
        m.fit_bounds(bounds)
    elif not joined.empty:
        pts = joined[["lat", "lon"]].dropna().astype(float)
        if not pts.empty:
            m.fit_bounds([[pts["lat"].min(), pts["lon"].min()], [pts["lat"].max(), pts["lon"].max()]])
    folium.LayerControl(collapsed=True).add_to(m)
    return m


def save_rating_map(joined: pd.DataFrame, out_path, title: str = "", bounds=None):
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    build_rating_map(joined, title=title, bounds=bounds).save(str(out_path))
    return out_path
