"""
Rate-limited geocoding of place keys.

Each place goes through a small state machine::

    pending -> in_flight -> resolved
                         -> retry_scheduled -> (backoff) -> in_flight
                         -> failed

Rate-limited or erroring lookups are retried with exponential backoff up to
``max_attempts``; a not-found answer fails the key at once. Resolved places
are written to a :class:`~wine_atlas.geocache.GeocodeCache`, and places
already in the cache never reach the lookup.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from threading import Event, Lock
from typing import Callable, Iterable

import pandas as pd
from geopy.exc import GeocoderQueryError, GeocoderRateLimited, GeocoderServiceError
from geopy.geocoders import Nominatim

from wine_atlas.errors import RateLimitExceeded, ResolutionFailed, ServiceUnavailable
from wine_atlas.geocache import GeocodeCache

logger = logging.getLogger(__name__)


class KeyState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    RETRY_SCHEDULED = "retry_scheduled"
    RESOLVED = "resolved"
    FAILED = "failed"
    CANCELLED = "cancelled"


class LookupOutcome(Enum):
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"


NOT_FOUND = LookupOutcome.NOT_FOUND
RATE_LIMITED = LookupOutcome.RATE_LIMITED


@dataclass(frozen=True)
class Resolved:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class GeocodeResult:
    index: int
    place: str
    latitude: float | None
    longitude: float | None
    status: KeyState
    attempts: int = 0
    from_cache: bool = False
    reason: str = ""

    @property
    def resolved(self) -> bool:
        return self.status is KeyState.RESOLVED


@dataclass
class GeocodeRun:
    results: dict[int, GeocodeResult] = field(default_factory=dict)
    cancelled: bool = False
    backoff_delays: int = 0

    @property
    def resolved(self) -> dict[int, GeocodeResult]:
        return {i: r for i, r in self.results.items() if r.resolved}

    def by_place(self) -> dict[str, GeocodeResult]:
        return {r.place: r for r in self.results.values() if r.resolved}

    def _count(self, *states) -> int:
        return sum(1 for r in self.results.values() if r.status in states)

    def summary(self) -> dict:
        cached = sum(1 for r in self.results.values() if r.from_cache)
        looked_up = sum(1 for r in self.results.values() if r.attempts > 0)
        return {
            "keys": len(self.results),
            "attempted": looked_up,
            "resolved": self._count(KeyState.RESOLVED),
            "cached": cached,
            "failed": self._count(KeyState.FAILED),
            "retry_pending": self._count(KeyState.RETRY_SCHEDULED),
            "cancelled": self._count(KeyState.CANCELLED),
            "backoff_delays": self.backoff_delays,
        }

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "index": r.index,
                "place": r.place,
                "lat": r.latitude,
                "lon": r.longitude,
                "status": r.status.value,
                "attempts": r.attempts,
                "from_cache": r.from_cache,
                "reason": r.reason,
            }
            for r in sorted(self.results.values(), key=lambda r: r.index)
        ]
        return pd.DataFrame(rows, columns=["index", "place", "lat", "lon", "status",
                                           "attempts", "from_cache", "reason"])


class TokenBucket:
    """Allow ``rate`` acquisitions per second on average, at most ``capacity`` at once."""

    def __init__(self, rate: float, capacity: float = 1.0, clock=time.monotonic, sleep=time.sleep):
        if rate <= 0:
            raise ValueError("rate must be > 0")
        self.rate = float(rate)
        self.capacity = float(capacity)
        self._clock = clock
        self._sleep = sleep
        self._lock = Lock()
        self._tokens = float(capacity)
        self._last_refill = clock()

    def acquire(self):
        while True:
            with self._lock:
                now = self._clock()
                elapsed = now - self._last_refill
                if elapsed > 0:
                    self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
                    self._last_refill = now
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                wait_time = (1.0 - self._tokens) / self.rate
            self._sleep(max(wait_time, 0.01))


class NominatimLookup:
    """Lookup backed by OpenStreetMap Nominatim through geopy."""

    def __init__(self, user_agent: str | None = None, timeout: float | None = None, geolocator=None):
        if geolocator is None:
            geolocator = Nominatim(
                user_agent=user_agent or os.getenv("GEOCODER_USER_AGENT", "wine-atlas/1.0"),
                timeout=timeout or float(os.getenv("GEOCODER_TIMEOUT", "10")),
            )
        self.geolocator = geolocator

    def __call__(self, place: str):
        try:
            location = self.geolocator.geocode(place)
        except GeocoderRateLimited:
            return RATE_LIMITED
        except GeocoderQueryError:
            return NOT_FOUND
        if location is None:
            return NOT_FOUND
        return Resolved(location.latitude, location.longitude)


def _iter_keys(keys) -> Iterable[tuple[int, str]]:
    if isinstance(keys, pd.DataFrame):
        for index, place in keys[["index", "place"]].itertuples(index=False):
            yield int(index), str(place)
        return
    for i, key in enumerate(keys):
        if isinstance(key, tuple):
            yield int(key[0]), str(key[1])
        else:
            yield i, str(key)


class RateLimitedGeocoder:
    """
    Resolve place keys through ``lookup`` without exceeding the service's rate.

    ``lookup(place)`` returns :class:`Resolved`, ``NOT_FOUND`` or
    ``RATE_LIMITED``; raising ``GeocoderServiceError``, ``RateLimitExceeded``
    or ``OSError`` counts as a transient failure. Any other exception is a bug
    and propagates.
    """

    TRANSIENT_ERRORS = (GeocoderServiceError, RateLimitExceeded, OSError)

    def __init__(
        self,
        lookup: Callable,
        cache: GeocodeCache | None = None,
        rate_per_second: float | None = 1.0,
        max_workers: int = 1,
        max_attempts: int = 4,
        backoff_base: float = 1.0,
        backoff_max: float = 30.0,
        outage_threshold: int = 10,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.lookup = lookup
        self.cache = cache if cache is not None else GeocodeCache()
        self.bucket = TokenBucket(rate_per_second, clock=clock, sleep=sleep) if rate_per_second else None
        self.max_workers = max(1, int(max_workers))
        self.max_attempts = int(max_attempts)
        self.backoff_base = float(backoff_base)
        self.backoff_max = float(backoff_max)
        self.outage_threshold = int(outage_threshold)
        self._sleep = sleep
        self._clock = clock
        self._state_lock = Lock()
        self._consecutive_transient = 0
        self._delays = 0
        self._outage = Event()

    @classmethod
    def from_env(cls, lookup=None, cache=None, **overrides) -> "RateLimitedGeocoder":
        settings = {
            "rate_per_second": float(os.getenv("GEOCODER_RATE_PER_SECOND", "1.0")),
            "max_workers": int(os.getenv("GEOCODER_MAX_WORKERS", "1")),
            "max_attempts": int(os.getenv("GEOCODER_MAX_ATTEMPTS", "4")),
            "backoff_base": float(os.getenv("GEOCODER_BACKOFF_BASE", "1.0")),
            "outage_threshold": int(os.getenv("GEOCODER_OUTAGE_THRESHOLD", "10")),
        }
        settings.update(overrides)
        return cls(lookup or NominatimLookup(), cache=cache, **settings)

    def backoff_delay(self, attempt: int) -> float:
        return min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)

    def resolve(self, keys, cancel: Event | None = None, timeout: float | None = None) -> GeocodeRun:
        """
        Resolve every key and return the run.

        Setting ``cancel`` or passing ``timeout`` (seconds) stops new lookups;
        in-flight ones finish and the partial run comes back with
        ``cancelled=True``. Raises :class:`ServiceUnavailable` (carrying the
        partial run) when ``outage_threshold`` places in a row fail
        transiently, or when nothing resolved and every lookup failed that way.
        """
        stop = cancel if cancel is not None else Event()
        deadline = self._clock() + timeout if timeout is not None else None
        run = GeocodeRun()
        self._consecutive_transient = 0
        self._delays = 0
        self._outage.clear()

        pending = []
        for index, place in _iter_keys(keys):
            hit = self.cache.get(place)
            if hit is not None:
                run.results[index] = GeocodeResult(index, place, hit[0], hit[1], KeyState.RESOLVED, from_cache=True)
            else:
                pending.append((index, place))
        if run.results:
            logger.info("%d of %d places served from cache", len(run.results), len(run.results) + len(pending))

        def halted() -> bool:
            if deadline is not None and self._clock() >= deadline:
                stop.set()
            return stop.is_set() or self._outage.is_set()

        if pending:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = {pool.submit(self._resolve_key, index, place, halted): index for index, place in pending}
                for fut in as_completed(futures):
                    result = fut.result()
                    run.results[result.index] = result

        run.backoff_delays = self._delays
        run.cancelled = stop.is_set()
        summary = run.summary()
        logger.info(
            "Geocoded %d keys: %d resolved (%d cached), %d failed, %d cancelled",
            summary["keys"], summary["resolved"], summary["cached"],
            summary["failed"], summary["cancelled"] + summary["retry_pending"],
        )

        if self._outage.is_set():
            raise ServiceUnavailable(
                f"Geocoding service unavailable: {self._consecutive_transient} consecutive places failed",
                run=run,
            )
        network = [r for r in run.results.values() if r.attempts > 0]
        outage = all(r.status is KeyState.FAILED and r.reason != "not found" for r in network)
        if network and outage and not run.resolved and not run.cancelled:
            raise ServiceUnavailable(
                f"No coordinates resolved: all {len(network)} lookups failed",
                run=run,
            )
        return run

    def _record(self, transient_failure: bool):
        with self._state_lock:
            if transient_failure:
                self._consecutive_transient += 1
                if self.outage_threshold and self._consecutive_transient >= self.outage_threshold:
                    self._outage.set()
            else:
                self._consecutive_transient = 0

    def _resolve_key(self, index: int, place: str, halted: Callable[[], bool]) -> GeocodeResult:
        state = KeyState.PENDING
        attempt = 0
        reason = ""
        def cancelled() -> GeocodeResult:
            status = KeyState.CANCELLED if state is KeyState.PENDING else KeyState.RETRY_SCHEDULED
            return GeocodeResult(index, place, None, None, status, attempts=attempt, reason="cancelled")

        while attempt < self.max_attempts:
            if halted():
                return cancelled()
            if self.bucket is not None:
                self.bucket.acquire()
                # the wait for a token can outlast the deadline
                if halted():
                    return cancelled()
            attempt += 1
            state = KeyState.IN_FLIGHT
            try:
                outcome = self.lookup(place)
            except RateLimitExceeded:
                outcome = RATE_LIMITED
            except self.TRANSIENT_ERRORS as exc:
                outcome = RATE_LIMITED
                reason = f"{type(exc).__name__}: {exc}"
            else:
                reason = ""

            if isinstance(outcome, Resolved):
                self._record(transient_failure=False)
                self.cache.put(place, outcome.latitude, outcome.longitude)
                return GeocodeResult(index, place, outcome.latitude, outcome.longitude,
                                     KeyState.RESOLVED, attempts=attempt)
            if outcome is NOT_FOUND:
                self._record(transient_failure=False)
                err = ResolutionFailed(place, "not found")
                logger.info("%s", err)
                return GeocodeResult(index, place, None, None, KeyState.FAILED, attempts=attempt, reason=err.reason)
            if outcome is not RATE_LIMITED:
                raise TypeError(f"lookup returned unexpected value {outcome!r} for {place!r}")

            if attempt >= self.max_attempts:
                break
            state = KeyState.RETRY_SCHEDULED
            delay = self.backoff_delay(attempt)
            logger.debug("Rate limited on %r (attempt %d/%d); retrying in %.1fs",
                         place, attempt, self.max_attempts, delay)
            with self._state_lock:
                self._delays += 1
            self._sleep(delay)

        self._record(transient_failure=True)
        err = ResolutionFailed(place, reason or f"rate limited after {attempt} attempts")
        logger.warning("%s", err)
        return GeocodeResult(index, place, None, None, KeyState.FAILED, attempts=attempt, reason=err.reason)
