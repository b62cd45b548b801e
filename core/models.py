"""
Core data models for the Roof Measurement Engine.
"""

from dataclasses import asdict, dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

# (lat, lon) in WGS84 degrees
LatLon = Tuple[float, float]

SQM_TO_SQFT = 10.7639


class Complexity(Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"
    VERY_COMPLEX = "very-complex"

    @classmethod
    def from_segments(cls, segment_count: int) -> "Complexity":
        if segment_count <= 4:
            return cls.SIMPLE
        if segment_count <= 8:
            return cls.MODERATE
        if segment_count <= 12:
            return cls.COMPLEX
        return cls.VERY_COMPLEX


class MeasurementSource(Enum):
    LIDAR = "lidar"
    SOLAR = "solar"
    OSM = "osm"
    FOOTPRINT_ESTIMATE = "footprint-estimate"
    MANUAL = "manual"


class ImageryQuality(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "ImageryQuality":
        """Map provider spellings ("HIGH", "high", None) onto the enum."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.UNKNOWN


class ConfidenceLevel(Enum):
    GAF_LEVEL = "gaf-level"
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"


class ValidationStatus(Enum):
    AGREES = "agrees"
    MINOR_VARIANCE = "minor-variance"
    SIGNIFICANT_VARIANCE = "significant-variance"


class OverallValidation(Enum):
    VALIDATED = "validated"
    UNVALIDATED = "unvalidated"
    DISCREPANCY_DETECTED = "discrepancy-detected"


def _plain(value: Any) -> Any:
    """Convert enums and dates inside asdict() output to JSON-friendly values."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


# ═══════════════════════════════════════════════════════════════════════════
# MEASUREMENTS
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class MeasurementResult:
    """
    A single roof measurement from exactly one source.

    Immutable: corrections go through `with_adjusted_area`, which returns a
    new value.
    """
    footprint_area_sqm: float
    footprint_area_sqft: float
    adjusted_area_sqft: float
    squares: float
    pitch_degrees: float
    pitch_multiplier: float
    segment_count: int
    complexity: Complexity
    source: MeasurementSource
    confidence: float
    imagery_quality: ImageryQuality = ImageryQuality.UNKNOWN
    imagery_date: Optional[date] = None
    warning: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        """True for the manual-tracing placeholder."""
        return self.source == MeasurementSource.MANUAL

    def with_adjusted_area(self, adjusted_area_sqft: float, **changes) -> "MeasurementResult":
        return replace(
            self,
            adjusted_area_sqft=adjusted_area_sqft,
            squares=adjusted_area_sqft / 100,
            **changes,
        )

    def to_dict(self) -> Dict:
        return _plain(asdict(self))


@dataclass(frozen=True)
class TierFailure:
    """A higher-priority tier that was skipped or failed."""
    tier: int
    tier_name: str
    reason: str


@dataclass
class TieredMeasurementResult:
    """Resolver output: the chosen measurement plus why better tiers were passed over."""
    measurement: MeasurementResult
    tier_used: int
    tier_name: str
    higher_tier_failures: List[TierFailure] = field(default_factory=list)
    fallbacks_available: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return _plain(asdict(self))


# ═══════════════════════════════════════════════════════════════════════════
# CONFIDENCE
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class ConfidenceFactors:
    """Situational inputs to the confidence scorer. Unset fields contribute nothing."""
    imagery_quality: Optional[ImageryQuality] = None
    imagery_date: Optional[date] = None
    segment_count: Optional[int] = None
    pitch_degrees: Optional[float] = None
    source_count: Optional[int] = None
    source_agreement_percent: Optional[float] = None
    has_gaf_calibration: bool = False
    has_lidar_data: bool = False


@dataclass(frozen=True)
class FactorImpact:
    name: str
    impact: float
    description: str


@dataclass
class ConfidenceResult:
    score: int
    level: ConfidenceLevel
    label: str
    factors: List[FactorImpact] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return _plain(asdict(self))


# ═══════════════════════════════════════════════════════════════════════════
# CROSS-VALIDATION
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class ValidationCheck:
    source: str
    measurement: float  # secondary adjusted area, sq ft
    variance_from_primary: float  # percent, signed
    status: ValidationStatus


@dataclass
class ValidationResult:
    primary_measurement: MeasurementResult
    checks: List[ValidationCheck] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    overall_validation: OverallValidation = OverallValidation.UNVALIDATED

    def to_dict(self) -> Dict:
        return _plain(asdict(self))


# ═══════════════════════════════════════════════════════════════════════════
# GEOMETRY / FOOTPRINTS
# ═══════════════════════════════════════════════════════════════════════════
@dataclass(frozen=True)
class GeometryAnalysis:
    vertex_count: int
    is_rectangular: bool
    perimeter_m: float
    compactness_ratio: float  # area / perimeter^2 (circle = 0.0796)
    aspect_ratio: float
    estimated_segments: int
    complexity: Complexity


@dataclass
class BuildingFootprint:
    """A building outline from one footprint source."""
    geometry: List[LatLon]
    area_sqm: float
    area_sqft: float
    source: str  # "osm", "microsoft", "auto-trace"
    confidence: float
    tags: Dict[str, str] = field(default_factory=dict)


# ═══════════════════════════════════════════════════════════════════════════
# IMAGERY
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class ImagerySource:
    """One imagery provider's view of a location."""
    provider: str  # "google", "bing", "usgs", "sentinel"
    image_url: str
    capture_date: Optional[date]
    resolution_meters_per_pixel: float
    quality: ImageryQuality
    cost: float = 0.0
    cloud_cover_percent: Optional[float] = None
    shadow_quality: Optional[str] = None  # "poor", "moderate", "good"
    footprint: Optional[BuildingFootprint] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def footprint_area_sqft(self) -> float:
        return self.footprint.area_sqft if self.footprint else 0.0


@dataclass
class MultiSourceImagerySet:
    location: LatLon
    timestamp: datetime
    sources: List[ImagerySource] = field(default_factory=list)
    footprint_variance_percent: float = 0.0
    recommended_primary: Optional[ImagerySource] = None
    quality_flags: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return _plain(asdict(self))
