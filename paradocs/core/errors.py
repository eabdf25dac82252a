"""Exception types shared by the pattern engine."""


class PatternEngineError(Exception):
    """Base class for engine failures."""


class StoreUnavailableError(PatternEngineError):
    """A store operation kept failing with transient errors until retries ran out."""

    def __init__(self, operation: str, attempts: int, cause: Exception | None = None):
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"{operation} failed after {attempts} attempts: {cause}")


class PatternNotFoundError(PatternEngineError):
    """No Pattern exists with the requested id."""


class GeocodingUnavailableError(PatternEngineError):
    """The geocoding provider could not answer (HTTP error, timeout, bad body)."""

    def __init__(self, query: str, cause: Exception | None = None):
        self.query = query
        self.cause = cause
        super().__init__(f"geocoding {query!r} unavailable: {cause}")
