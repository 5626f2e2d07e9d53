"""Data layer errors."""


class DataError(Exception):
    """Base class for market data failures."""


class MissingDataError(DataError):
    """A requested bar or field is not available."""


class InvalidBarError(DataError):
    """A bar carries a non-positive price or a malformed field."""


class InconsistentDataError(DataError):
    """Paired observations disagree (e.g. timestamps differ)."""


class DataTimeoutError(DataError):
    """The data request timed out."""


class RateLimitedError(DataError):
    """The data endpoint rejected the request for rate limiting."""


class HttpError(DataError):
    """Non-success HTTP response or transport error."""
