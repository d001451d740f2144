import logging
from pathlib import Path
from threading import Lock

import pandas as pd

CACHE_COLUMNS = ["place", "lat", "lon"]

logger = logging.getLogger(__name__)


class GeocodeCache:
    """Place -> (lat, lon) store backed by a CSV file.

    Loaded once at pipeline start and saved at the end. Writes are guarded by
    a lock so geocoder workers can record results concurrently.
    """

    def __init__(self, path: Path | None = None, entries: dict | None = None):
        self.path = Path(path) if path is not None else None
        self._lock = Lock()
        self._entries: dict[str, tuple[float, float]] = dict(entries or {})
        self._dirty = False

    @classmethod
    def load(cls, path) -> "GeocodeCache":
        path = Path(path)
        cache = cls(path)
        if not path.exists():
            return cache
        try:
            frame = pd.read_csv(path, dtype={"place": str})
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
            logger.warning("Could not read geocache %s (%s); starting empty", path, exc)
            return cache
        if not set(CACHE_COLUMNS).issubset(frame.columns):
            logger.warning("Geocache %s lacks columns %s; starting empty", path, CACHE_COLUMNS)
            return cache
        frame = frame.dropna(subset=CACHE_COLUMNS)
        for place, lat, lon in frame[CACHE_COLUMNS].itertuples(index=False):
            cache._entries[str(place)] = (float(lat), float(lon))
        logger.info("Loaded %d cached places from %s", len(cache._entries), path)
        return cache

    def get(self, place: str):
        with self._lock:
            return self._entries.get(place)

    def put(self, place: str, lat: float, lon: float):
        with self._lock:
            # first write wins; resolved coordinates are never overwritten
            if place in self._entries:
                return
            self._entries[place] = (float(lat), float(lon))
            self._dirty = True

    def __contains__(self, place) -> bool:
        with self._lock:
            return place in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _rows(self) -> list[dict]:
        return [{"place": p, "lat": lat, "lon": lon} for p, (lat, lon) in self._entries.items()]

    def to_frame(self) -> pd.DataFrame:
        with self._lock:
            rows = self._rows()
        return pd.DataFrame(rows, columns=CACHE_COLUMNS)

    def save(self, path=None) -> bool:
        target = Path(path) if path is not None else self.path
        if target is None:
            raise ValueError("No path given for geocache save")
        with self._lock:
            if not self._dirty and target == self.path and target.exists():
                return False
            # snapshot and flag reset together; later puts mark the cache dirty again
            rows = self._rows()
            self._dirty = False
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".tmp")
        try:
            pd.DataFrame(rows, columns=CACHE_COLUMNS).to_csv(tmp, index=False)
            tmp.replace(target)
        except OSError:
            with self._lock:
                self._dirty = True
            raise
        return True
