"""
Exception hierarchy for the Roof Measurement Engine.

Hierarchy::

    MeasurementEngineError               <- catch-all base
    ├── AdapterUnavailableError          <- credential / network failure
    │   └── DeadlineExceededError        <- caller deadline ran out
    ├── NoDataAtLocationError            <- provider answered, found nothing
    └── InvalidInputError                <- bad numeric input (also ValueError)

Adapter errors are caught at the resolver / consensus boundary and turned
into reason strings. Only InvalidInputError is meant to reach callers.
"""


class MeasurementEngineError(Exception):
    """Base exception for the measurement engine."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r})"


class AdapterUnavailableError(MeasurementEngineError):
    """A measurement or imagery source could not be reached or is not configured."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")


class DeadlineExceededError(AdapterUnavailableError):
    """The caller-supplied deadline expired before the source answered."""

    def __init__(self, source: str) -> None:
        super().__init__(source, "deadline exceeded")


class NoDataAtLocationError(MeasurementEngineError):
    """The source answered but has no building data for the location."""

    def __init__(self, source: str, lat: float, lng: float) -> None:
        self.source = source
        self.lat = lat
        self.lng = lng
        super().__init__(f"{source}: no data at ({lat:.5f}, {lng:.5f})")


class InvalidInputError(MeasurementEngineError, ValueError):
    """Numeric input violates a precondition (e.g. a non-positive reference area)."""
