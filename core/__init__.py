"""
Core module for the Roof Measurement Engine.
Contains data models, geometry, scoring and tiered resolution.

Resolver, measurement builders and the report assembler depend on the
loader contracts and are imported from their own modules.
"""

from core.models import (
    BuildingFootprint,
    Complexity,
    ConfidenceFactors,
    ConfidenceLevel,
    ConfidenceResult,
    ImageryQuality,
    ImagerySource,
    MeasurementResult,
    MeasurementSource,
    MultiSourceImagerySet,
    TieredMeasurementResult,
    TierFailure,
    ValidationResult,
)
from core.exceptions import (
    AdapterUnavailableError,
    DeadlineExceededError,
    InvalidInputError,
    MeasurementEngineError,
    NoDataAtLocationError,
)
from core.deadline import Deadline

__all__ = [
    # Models
    "BuildingFootprint",
    "Complexity",
    "ConfidenceFactors",
    "ConfidenceLevel",
    "ConfidenceResult",
    "ImageryQuality",
    "ImagerySource",
    "MeasurementResult",
    "MeasurementSource",
    "MultiSourceImagerySet",
    "TieredMeasurementResult",
    "TierFailure",
    "ValidationResult",
    # Errors
    "AdapterUnavailableError",
    "DeadlineExceededError",
    "InvalidInputError",
    "MeasurementEngineError",
    "NoDataAtLocationError",
    "Deadline",
]
