class ColorGenieError(Exception):
    """Base class for all color-genie errors."""


class ConfigurationError(ColorGenieError):
    """Missing credentials or an unusable setting. Fatal at startup."""


class ValidationError(ColorGenieError):
    """A source row failed validation; `field` names the offending column."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"{field}: {reason}")
        self.field = field
        self.reason = reason


class EmbeddingError(ColorGenieError):
    """The provider returned nothing usable.

    `index` is set for a per-item failure inside a batch and left as None
    when the whole request failed.
    """

    def __init__(self, message: str, index: int = None):
        super().__init__(message)
        self.index = index


class PersistenceError(ColorGenieError):
    """A store read or write failed."""


class SearchTimeout(ColorGenieError):
    """The nearest-neighbour query exceeded its deadline."""


class NoDataError(ColorGenieError):
    """No stored rows carry an embedding for the requested column."""
