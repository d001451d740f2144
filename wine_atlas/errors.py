"""Exception types shared by the geocode pipeline."""


class WineAtlasError(Exception):
    pass


class MissingField(WineAtlasError):
    """A column the caller asked for is not present in the reviews frame."""

    def __init__(self, field: str):
        super().__init__(f"Missing field: {field}")
        self.field = field


class ResolutionFailed(WineAtlasError):
    """A place could not be geocoded. Recorded per key, never raised out of a run."""

    def __init__(self, place: str, reason: str):
        super().__init__(f"Could not geocode {place!r}: {reason}")
        self.place = place
        self.reason = reason


class RateLimitExceeded(WineAtlasError):
    """Transient refusal from the geocoding service."""


class ServiceUnavailable(WineAtlasError):
    """The geocoding service failed for every lookup, or for too many in a row."""

    def __init__(self, message: str, run=None):
        super().__init__(message)
        self.run = run
