"""
Seasonal Analyzer for footprint consistency across the year.

Samples one capture per season (spring, summer, fall, winter), compares the
footprint areas and flags seasonal artifacts:

- snow-cover: winter outline inflated by snow
- leaf-cover: spring outline shrunk by foliage
- structural-change: the building itself changed
- high-variance / shadow-artifact / data-gap
"""

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError, as_completed
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

import numpy as np

from core.deadline import Deadline, remaining_timeout
from core.models import ImagerySource

log = logging.getLogger("inference.seasonal")

SEASONS = ("spring", "summer", "fall", "winter")


@dataclass
class SeasonalConfig:
    # (month, day) sampled each year
    season_dates: Dict[str, tuple] = field(default_factory=lambda: {
        "spring": (4, 15),
        "summer": (7, 15),
        "fall": (10, 15),
        "winter": (2, 15),
    })
    base_scores: Dict[str, int] = field(default_factory=lambda: {
        "spring": 70,  # leaf budding obscures edges
        "summer": 85,  # full foliage
        "fall": 95,    # leaves down, no snow
        "winter": 75,  # snow risk
    })
    anomaly_penalties: Dict[str, int] = field(default_factory=lambda: {
        "low": 5,
        "medium": 15,
        "high": 25,
    })
    snow_inflation_percent: float = 5.0
    leaf_reduction_percent: float = 3.0
    high_variance_percent: float = 10.0
    structural_change_percent: float = 15.0
    window_days: int = 15
    max_cloud_cover: float = 20.0
    fetch_timeout: float = 60.0


@dataclass
class SeasonalAnomaly:
    season: str  # a season name or "all"
    type: str    # snow-cover, leaf-cover, shadow-artifact, structural-change, high-variance, data-gap
    severity: str
    area_impact_percent: float
    description: str


@dataclass
class SeasonalImagerySet:
    location: tuple
    capture_year: int
    captures: Dict[str, Optional[ImagerySource]] = field(default_factory=dict)

    @property
    def available_seasons(self) -> List[str]:
        return [s for s in SEASONS if self.captures.get(s) is not None]


@dataclass
class SeasonRecommendation:
    season: str
    score: int
    reasoning: List[str] = field(default_factory=list)


@dataclass
class SeasonalValidationResult:
    seasonal_set: SeasonalImagerySet
    footprint_consistency: float
    pitch_consistency: float
    area_variance: float
    anomalies: List[SeasonalAnomaly]
    issues: List[str]
    recommendation: SeasonRecommendation
    season_scores: Dict[str, int]
    quality_score: float


@dataclass
class SnowDetectionResult:
    snow_detected: bool
    coverage_percent: float
    confidence: int
    method: str  # "combined" or "insufficient-data"
    recommendation: str
    area_inflation: float = 0.0
    seasonal_match: bool = False
    latitude_appropriate: bool = False


def _coefficient_of_variation(values: List[float]) -> float:
    arr = np.asarray(values, dtype=float)
    return float(arr.std() / arr.mean() * 100)


def _positive(areas: Dict[str, float]) -> List[float]:
    return [a for a in areas.values() if a > 0]


# ═══════════════════════════════════════════════════════════════════════════
# ANOMALY DETECTORS
# ═══════════════════════════════════════════════════════════════════════════
def detect_leaf_cover(spring_area: float, fall_area: float, threshold: float = 3.0) -> Optional[SeasonalAnomaly]:
    """Spring outline smaller than the fall baseline."""
    if fall_area <= 0 or spring_area <= 0:
        return None

    reduction = (1 - spring_area / fall_area) * 100
    if reduction <= threshold:
        return None

    if reduction > 10:
        severity = "high"
    elif reduction > 7:
        severity = "medium"
    else:
        severity = "low"

    return SeasonalAnomaly(
        season="spring",
        type="leaf-cover",
        severity=severity,
        area_impact_percent=reduction,
        description=(
            f"Spring area {reduction:.1f}% smaller than fall baseline. "
            "Recommend using fall or winter imagery."
        ),
    )


def detect_structural_change(areas: Dict[str, float], threshold: float = 15.0) -> Optional[SeasonalAnomaly]:
    values = _positive(areas)
    if len(values) < 2:
        return None

    change = (max(values) - min(values)) / min(values) * 100
    if change <= threshold:
        return None

    return SeasonalAnomaly(
        season="all",
        type="structural-change",
        severity="high" if change > 25 else "medium",
        area_impact_percent=change,
        description=(
            f"Significant structural change detected ({change:.1f}% variance). "
            "Building may have been renovated or expanded. Use most recent imagery."
        ),
    )


def detect_high_variance(areas: Dict[str, float], threshold: float = 10.0) -> Optional[SeasonalAnomaly]:
    values = _positive(areas)
    if len(values) < 2:
        return None

    cv = _coefficient_of_variation(values)
    if cv <= threshold:
        return None

    if cv > 20:
        severity = "high"
    elif cv > 15:
        severity = "medium"
    else:
        severity = "low"

    return SeasonalAnomaly(
        season="all",
        type="high-variance",
        severity=severity,
        area_impact_percent=cv,
        description=f"High measurement variance detected ({cv:.1f}% coefficient of variation).",
    )


def detect_shadow_artifacts(areas: Dict[str, float]) -> Optional[SeasonalAnomaly]:
    """A small (3-8%) winter/summer gap is typical of sun-angle edge shifts."""
    winter = areas.get("winter", 0)
    summer = areas.get("summer", 0)
    if winter <= 0 or summer <= 0:
        return None

    difference = abs((winter - summer) / summer * 100)
    if not 3 < difference < 8:
        return None

    return SeasonalAnomaly(
        season="winter",
        type="shadow-artifact",
        severity="low",
        area_impact_percent=difference,
        description=(
            f"Possible shadow artifacts detected ({difference:.1f}% difference). "
            "Prefer summer imagery for most accurate shadows."
        ),
    )


def detect_data_gap(available_seasons: int) -> Optional[SeasonalAnomaly]:
    if available_seasons < 2:
        return SeasonalAnomaly(
            season="all",
            type="data-gap",
            severity="high",
            area_impact_percent=0.0,
            description=(
                f"Insufficient seasonal data (only {available_seasons} season available). "
                "Need at least 2 seasons for meaningful comparison."
            ),
        )
    if available_seasons == 2:
        return SeasonalAnomaly(
            season="all",
            type="data-gap",
            severity="medium",
            area_impact_percent=0.0,
            description="Limited seasonal data (only 2 seasons available).",
        )
    return None


def summarize_anomalies(anomalies: List[SeasonalAnomaly]) -> str:
    if not anomalies:
        return "No seasonal anomalies detected. Measurements are consistent across seasons."

    counts = {sev: sum(1 for a in anomalies if a.severity == sev) for sev in ("high", "medium", "low")}
    parts = []
    if counts["high"]:
        parts.append(f"{counts['high']} high-severity anomaly(ies) detected")
    if counts["medium"]:
        parts.append(f"{counts['medium']} medium-severity anomaly(ies)")
    if counts["low"]:
        parts.append(f"{counts['low']} low-severity anomaly(ies)")
    summary = ", ".join(parts) + ". "

    significant = [a.type for a in anomalies if a.severity != "low"]
    if significant:
        return summary + f"Types: {', '.join(significant)}. Review individual anomalies for details."
    return summary + "Minor anomalies detected, measurements should still be reliable."


# ═══════════════════════════════════════════════════════════════════════════
# SNOW
# ═══════════════════════════════════════════════════════════════════════════
def detect_snow_cover(
    winter: Optional[ImagerySource],
    summer: Optional[ImagerySource],
    latitude: float,
) -> SnowDetectionResult:
    """
    Combine area inflation, capture month and latitude into a snow call.

    +50 for winter area > summer by more than 5%, +30 for a Nov-Feb capture,
    +20 above 35 degrees latitude. Detected at 60 or more.
    """
    if winter is None or summer is None:
        return SnowDetectionResult(
            False, 0.0, 0, "insufficient-data",
            "Insufficient data for snow detection (need both winter and summer imagery)",
        )

    winter_area = winter.footprint_area_sqft
    summer_area = summer.footprint_area_sqft
    if summer_area <= 0:
        return SnowDetectionResult(
            False, 0.0, 0, "insufficient-data", "No summer baseline available for comparison",
        )

    inflation = (winter_area / summer_area - 1) * 100
    seasonal_match = winter.capture_date is not None and winter.capture_date.month in (11, 12, 1, 2)
    latitude_appropriate = abs(latitude) > 35

    confidence = 0
    if inflation > 5:
        confidence += 50
    if seasonal_match:
        confidence += 30
    if latitude_appropriate:
        confidence += 20

    detected = confidence >= 60
    if detected:
        recommendation = (
            f"Snow cover detected with {confidence}% confidence. "
            f"Winter measurement inflated by ~{inflation:.1f}%. "
            "Recommend using summer or fall imagery for accurate measurements."
        )
    elif 0 < inflation < 5:
        recommendation = (
            f"Minor area difference detected ({inflation:.1f}%), but below snow detection threshold. "
            "Consider using summer imagery for best accuracy."
        )
    else:
        recommendation = "No significant snow cover detected. Winter imagery appears reliable."

    return SnowDetectionResult(
        snow_detected=detected,
        coverage_percent=max(0.0, inflation),
        confidence=confidence,
        method="combined",
        recommendation=recommendation,
        area_inflation=inflation,
        seasonal_match=seasonal_match,
        latitude_appropriate=latitude_appropriate,
    )


def calculate_snow_probability(lat: float, when: date) -> int:
    probability = 0

    abs_lat = abs(lat)
    if abs_lat > 50:
        probability += 40
    elif abs_lat > 40:
        probability += 30
    elif abs_lat > 35:
        probability += 20
    elif abs_lat > 30:
        probability += 10

    month = when.month
    if lat > 0:
        if month in (12, 1, 2):
            probability += 40
        elif month in (3, 11):
            probability += 20
    else:
        if month in (6, 7, 8):
            probability += 40
        elif month in (5, 9):
            probability += 20

    return min(100, probability)


def recommend_season_for_location(lat: float) -> List[str]:
    """Seasons in order of preference for imagery at this latitude."""
    if lat < 0 and abs(lat) > 45:
        return ["summer", "spring", "fall", "winter"]
    return ["summer", "fall", "spring", "winter"]


# ═══════════════════════════════════════════════════════════════════════════
# ANALYZER
# ═══════════════════════════════════════════════════════════════════════════
class SeasonalAnalyzer:
    """
    Seasonal footprint validation.

    Usage:
        analyzer = SeasonalAnalyzer(Sentinel2Provider())
        result = analyzer.validate(42.36, -71.06, year=2024)
        print(result.recommendation.season, result.quality_score)

    The provider must offer fetch_window(lat, lng, start, end,
    max_cloud_cover=..., timeout=...).
    """

    def __init__(self, provider, config: Optional[SeasonalConfig] = None):
        self.provider = provider
        self.config = config or SeasonalConfig()

    def season_date(self, season: str, year: int) -> date:
        month, day = self.config.season_dates[season]
        return date(year, month, day)

    def fetch_seasonal_set(
        self,
        lat: float,
        lng: float,
        year: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> SeasonalImagerySet:
        """Fetch the four seasonal captures concurrently; failures leave a gap."""
        year = year or date.today().year
        seasonal_set = SeasonalImagerySet(location=(lat, lng), capture_year=year)
        window = timedelta(days=self.config.window_days)
        per_call = remaining_timeout(deadline, self.config.fetch_timeout)

        def fetch(season: str) -> Optional[ImagerySource]:
            target = self.season_date(season, year)
            return self.provider.fetch_window(
                lat, lng, target - window, target + window,
                max_cloud_cover=self.config.max_cloud_cover,
                timeout=per_call,
            )

        executor = ThreadPoolExecutor(max_workers=len(SEASONS))
        try:
            futures = {executor.submit(fetch, season): season for season in SEASONS}
            wait_for = deadline.remaining() if deadline else self.config.fetch_timeout
            try:
                for future in as_completed(futures, timeout=wait_for):
                    season = futures[future]
                    try:
                        seasonal_set.captures[season] = future.result()
                    except Exception as e:
                        log.warning(f"Failed to fetch {season} imagery: {e}")
                        seasonal_set.captures[season] = None
            except FuturesTimeoutError:
                log.warning(f"Seasonal fetch timed out with {len(seasonal_set.captures)} of 4 seasons")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return seasonal_set

    def analyze_footprint_consistency(self, footprints: Dict[str, float]):
        """
        Returns:
            (consistency 0-100, issues, anomalies)
        """
        issues: List[str] = []
        anomalies: List[SeasonalAnomaly] = []
        areas = _positive(footprints)

        if len(areas) < 2:
            gap = detect_data_gap(len(areas))
            if gap:
                anomalies.append(gap)
            return 50.0, ["insufficient-seasonal-data"], anomalies

        if len(areas) == 2:
            anomalies.append(detect_data_gap(2))

        cv = _coefficient_of_variation(areas)
        cfg = self.config

        winter = footprints.get("winter", 0)
        summer = footprints.get("summer", 0)
        if winter > 0 and summer > 0:
            inflation = (winter / summer - 1) * 100
            if inflation > cfg.snow_inflation_percent:
                issues.append(f"snow-cover-detected: Winter {inflation:.1f}% larger")
                anomalies.append(SeasonalAnomaly(
                    season="winter",
                    type="snow-cover",
                    severity="high" if inflation > 10 else "medium",
                    area_impact_percent=inflation,
                    description=f"Snow cover inflates measurement by {inflation:.1f}%",
                ))

        leaf = detect_leaf_cover(footprints.get("spring", 0), footprints.get("fall", 0), cfg.leaf_reduction_percent)
        if leaf:
            issues.append(f"leaf-cover-detected: {leaf.description}")
            anomalies.append(leaf)

        structural = detect_structural_change(footprints, cfg.structural_change_percent)
        if structural:
            issues.append(f"structural-change: {structural.description}")
            anomalies.append(structural)

        variance = detect_high_variance(footprints, cfg.high_variance_percent)
        if variance:
            issues.append(f"high-seasonal-variance: {cv:.1f}% CV")
            anomalies.append(variance)

        shadow = detect_shadow_artifacts(footprints)
        if shadow:
            issues.append(f"shadow-artifacts: {shadow.description}")
            anomalies.append(shadow)

        consistency = max(0.0, min(100.0, 100 - cv * 8))
        return consistency, issues, anomalies

    def recommend_best_season(self, anomalies: List[SeasonalAnomaly], available: List[str]) -> SeasonRecommendation:
        scores = dict(self.config.base_scores)
        reasoning: List[str] = []

        for anomaly in anomalies:
            penalty = self.config.anomaly_penalties[anomaly.severity]
            if anomaly.season in scores:
                scores[anomaly.season] -= penalty
                reasoning.append(f"{anomaly.season}: -{penalty} ({anomaly.type})")

        candidates = sorted(
            ((season, score) for season, score in scores.items() if season in available),
            key=lambda item: item[1],
            reverse=True,
        )
        if not candidates:
            return SeasonRecommendation("summer", 0, ["No seasonal data available, defaulting to summer"])

        best, best_score = candidates[0]
        reasoning.insert(0, f"Recommended: {best} (score: {best_score})")
        return SeasonRecommendation(best, best_score, reasoning)

    @staticmethod
    def minimum_confidence(available_seasons: int) -> int:
        return {2: 60, 3: 80, 4: 100}.get(available_seasons, 0)

    def validate(
        self,
        lat: float,
        lng: float,
        year: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> SeasonalValidationResult:
        seasonal_set = self.fetch_seasonal_set(lat, lng, year, deadline)
        return self.evaluate(seasonal_set)

    def evaluate(self, seasonal_set: SeasonalImagerySet) -> SeasonalValidationResult:
        """Score an already-fetched seasonal set."""
        footprints = {
            season: capture.footprint_area_sqft
            for season, capture in seasonal_set.captures.items()
            if capture is not None and capture.footprint_area_sqft > 0
        }
        consistency, issues, anomalies = self.analyze_footprint_consistency(footprints)
        available = seasonal_set.available_seasons
        recommendation = self.recommend_best_season(anomalies, available)

        areas = list(footprints.values())
        area_variance = (max(areas) - min(areas)) / float(np.mean(areas)) * 100 if len(areas) > 1 else 0.0

        high_count = sum(1 for a in anomalies if a.severity == "high")
        quality = (
            consistency * 0.4
            + self.minimum_confidence(len(available)) * 0.4
            + (100 - 15 * high_count) * 0.2
        )

        return SeasonalValidationResult(
            seasonal_set=seasonal_set,
            footprint_consistency=consistency,
            pitch_consistency=85.0,  # no per-season pitch source yet
            area_variance=area_variance,
            anomalies=anomalies,
            issues=issues,
            recommendation=recommendation,
            season_scores=dict(self.config.base_scores),
            quality_score=max(0.0, min(100.0, quality)),
        )
