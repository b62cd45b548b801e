"""
Tiered Measurement Resolver

Tries measurement sources in a fixed priority order and stops at the first
one that produces a measurement:

    1  LiDAR (Instant Roofer)            95-98%
    2  Google Solar API (HIGH)           92-95%
    3  Google Solar API (MEDIUM)         85-90%
    4  Google Solar API (LOW)            75-85%
    5  OpenStreetMap + Estimated Pitch   50-70%
    6  Building Footprint Estimation     40-60%
    7  Manual Polygon Tracing            85-95% (once traced)

Every tier above the one used gets exactly one TierFailure explaining why it
was passed over. Results are never blended across tiers.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from core.deadline import Deadline, remaining_timeout
from core.measurement import (
    from_footprint_estimate,
    from_lidar,
    from_osm_footprint,
    from_solar,
    manual_placeholder,
)
from core.models import (
    ImageryQuality,
    MeasurementResult,
    MeasurementSource,
    TieredMeasurementResult,
    TierFailure,
)
from loaders.contracts import ElevationAdapter, FootprintAdapter, LidarAdapter, SolarAdapter
from loaders.elevation import get_elevation_loader
from loaders.footprints import get_footprint_loader
from loaders.lidar import get_lidar_loader
from loaders.osm import get_osm_loader
from loaders.solar import get_solar_loader

log = logging.getLogger(__name__)

TIER_NAMES = {
    1: "LiDAR (Instant Roofer)",
    2: "Google Solar API (HIGH)",
    3: "Google Solar API (MEDIUM)",
    4: "Google Solar API (LOW)",
    5: "OpenStreetMap + Estimated Pitch",
    6: "Building Footprint Estimation",
    7: "Manual Polygon Tracing",
}

TIER_ACCURACY = {
    1: "95-98%",
    2: "92-95%",
    3: "85-90%",
    4: "75-85%",
    5: "50-70%",
    6: "40-60%",
    7: "85-95%",
}

SOLAR_TIERS = {
    ImageryQuality.HIGH: 2,
    ImageryQuality.MEDIUM: 3,
    ImageryQuality.LOW: 4,
}
SOLAR_TIER_QUALITY = {2: "HIGH", 3: "MEDIUM", 4: "LOW"}

MANUAL_TIER = 7


@dataclass
class MeasurementOptions:
    """Per-call resolver options."""
    address: Optional[str] = None
    region_key: Optional[str] = None
    deadline: Optional[Deadline] = None
    tier_timeout: float = 15.0

    def timeout(self) -> Optional[float]:
        return remaining_timeout(self.deadline, self.tier_timeout)

    @property
    def expired(self) -> bool:
        return self.deadline is not None and self.deadline.expired


def get_tier_accuracy(tier: int) -> str:
    return TIER_ACCURACY.get(tier, "Unknown")


def is_configured(adapter) -> bool:
    """An adapter is usable when present and not missing credentials."""
    return adapter is not None and getattr(adapter, "is_configured", True)


class TieredResolver:
    """
    Resolves a point to one measurement using injected adapters.

    Usage:
        resolver = TieredResolver(
            lidar=InstantRooferLoader(),
            solar=GoogleSolarLoader(),
            osm=get_osm_loader(),
            footprints=[MicrosoftFootprintLoader()],
            elevation=get_elevation_loader(),
        )
        result = resolver.resolve(42.3601, -71.0589, MeasurementOptions(address="..., MA 02134"))

    Any adapter may be None (not configured). resolve() always returns a
    result; tier 7 is the floor.
    """

    def __init__(
        self,
        lidar: Optional[LidarAdapter] = None,
        solar: Optional[SolarAdapter] = None,
        osm: Optional[FootprintAdapter] = None,
        footprints: Optional[Sequence[FootprintAdapter]] = None,
        elevation: Optional[ElevationAdapter] = None,
    ):
        self.lidar = lidar
        self.solar = solar
        self.osm = osm
        self.footprints = list(footprints or [])
        self.elevation = elevation

    @classmethod
    def from_environment(cls) -> "TieredResolver":
        """Shared default loaders; keys come from the environment."""
        return cls(
            lidar=get_lidar_loader(),
            solar=get_solar_loader(),
            osm=get_osm_loader(),
            footprints=[get_footprint_loader()],
            elevation=get_elevation_loader(),
        )

    # ═══════════════════════════════════════════════════════════════════════
    # TIERS
    # ═══════════════════════════════════════════════════════════════════════
    def _try_lidar(self, lat, lng, options, failures) -> Optional[MeasurementResult]:
        name = TIER_NAMES[1]
        if not is_configured(self.lidar):
            failures.append(TierFailure(1, name, "Instant Roofer API key not configured"))
            return None
        if options.expired:
            failures.append(TierFailure(1, name, f"Deadline exceeded before {name} could run"))
            return None

        try:
            payload = self.lidar.fetch_lidar(lat, lng, timeout=options.timeout())
        except Exception as e:
            log.warning(f"{name} failed at ({lat:.5f}, {lng:.5f}): {e}")
            failures.append(TierFailure(1, name, f"{name} failed: {e}"))
            return None

        if payload is None:
            failures.append(TierFailure(1, name, "LiDAR data not available for this location"))
            return None
        return from_lidar(payload)

    def _try_solar(self, lat, lng, options, failures) -> Optional[MeasurementResult]:
        """One Solar call covers tiers 2-4; its imagery quality picks the tier."""
        if not is_configured(self.solar):
            for tier in (2, 3, 4):
                failures.append(TierFailure(tier, TIER_NAMES[tier], "Google Solar API key not configured"))
            return None
        if options.expired:
            for tier in (2, 3, 4):
                name = TIER_NAMES[tier]
                failures.append(TierFailure(tier, name, f"Deadline exceeded before {name} could run"))
            return None

        try:
            insights = self.solar.fetch_solar(lat, lng, timeout=options.timeout())
        except Exception as e:
            log.warning(f"Google Solar API failed at ({lat:.5f}, {lng:.5f}): {e}")
            for tier in (2, 3, 4):
                name = TIER_NAMES[tier]
                failures.append(TierFailure(tier, name, f"{name} failed: {e}"))
            return None

        if insights is None:
            for tier in (2, 3, 4):
                failures.append(TierFailure(tier, TIER_NAMES[tier], "No building data available for this location"))
            return None

        # Unknown quality is graded as LOW
        quality = insights.imagery_quality
        tier = SOLAR_TIERS.get(quality, 4)
        label = quality.value.upper()
        for skipped in range(2, tier):
            failures.append(TierFailure(
                skipped,
                TIER_NAMES[skipped],
                f"Only {label} quality imagery available (not {SOLAR_TIER_QUALITY[skipped]})",
            ))
        return from_solar(insights)

    def _try_osm(self, lat, lng, options, failures) -> Optional[MeasurementResult]:
        name = TIER_NAMES[5]
        if self.osm is None:
            failures.append(TierFailure(5, name, "OpenStreetMap adapter not configured"))
            return None
        if options.expired:
            failures.append(TierFailure(5, name, f"Deadline exceeded before {name} could run"))
            return None

        try:
            footprint = self.osm.fetch_footprint(lat, lng, timeout=options.timeout())
        except Exception as e:
            log.warning(f"{name} failed at ({lat:.5f}, {lng:.5f}): {e}")
            failures.append(TierFailure(5, name, f"{name} failed: {e}"))
            return None

        if footprint is None:
            failures.append(TierFailure(5, name, "No building footprint found in OpenStreetMap for this location"))
            return None
        return from_osm_footprint(footprint, options.address)

    def _fetch_elevation(self, lat, lng, options) -> Optional[float]:
        if self.elevation is None or options.expired:
            return None
        try:
            return self.elevation.fetch_elevation(lat, lng, timeout=options.timeout())
        except Exception as e:
            log.warning(f"Elevation lookup failed at ({lat:.5f}, {lng:.5f}): {e}")
            return None

    def _try_footprint(self, lat, lng, options, failures) -> Optional[MeasurementResult]:
        name = TIER_NAMES[6]
        if not self.footprints:
            failures.append(TierFailure(6, name, "Insufficient data for footprint estimation"))
            return None

        errors: List[str] = []
        for adapter in self.footprints:
            if options.expired:
                failures.append(TierFailure(6, name, f"Deadline exceeded before {name} could run"))
                return None
            try:
                footprint = adapter.fetch_footprint(lat, lng, timeout=options.timeout())
            except Exception as e:
                log.warning(f"Footprint source {type(adapter).__name__} failed: {e}")
                errors.append(str(e))
                continue
            if footprint is not None:
                elevation = self._fetch_elevation(lat, lng, options)
                return from_footprint_estimate(footprint, options.address, elevation)

        if errors:
            failures.append(TierFailure(6, name, f"{name} failed: {'; '.join(errors)}"))
        else:
            failures.append(TierFailure(6, name, "Insufficient data for footprint estimation"))
        return None

    # ═══════════════════════════════════════════════════════════════════════
    # RESOLUTION
    # ═══════════════════════════════════════════════════════════════════════
    def fallbacks_below(self, tier_used: int) -> List[str]:
        """Configured tiers below tier_used, then manual tracing."""
        if tier_used >= MANUAL_TIER:
            return []

        fallbacks = []
        if tier_used < 2 and is_configured(self.solar):
            fallbacks.append("solar")
        if tier_used < 5 and self.osm is not None:
            fallbacks.append("osm")
        if tier_used < 6 and self.footprints:
            fallbacks.append("footprint-estimate")
        fallbacks.append("manual-tracing")
        return fallbacks

    def resolve(self, lat: float, lng: float, options: Optional[MeasurementOptions] = None) -> TieredMeasurementResult:
        """
        Measure the roof at a point with the best available source.

        Args:
            lat: Latitude
            lng: Longitude
            options: Address (for regional pitch), deadline, per-tier timeout

        Returns:
            TieredMeasurementResult; tier 7 (manual placeholder) when all else fails
        """
        options = options or MeasurementOptions()
        failures: List[TierFailure] = []

        attempts = (
            (1, self._try_lidar),
            (2, self._try_solar),
            (5, self._try_osm),
            (6, self._try_footprint),
        )
        for _, attempt in attempts:
            measurement = attempt(lat, lng, options, failures)
            if measurement is not None:
                tier = self._tier_for(measurement)
                return self._result(measurement, tier, failures, lat, lng)

        return self._result(manual_placeholder(), MANUAL_TIER, failures, lat, lng)

    def _tier_for(self, measurement: MeasurementResult) -> int:
        if measurement.source == MeasurementSource.LIDAR:
            return 1
        if measurement.source == MeasurementSource.SOLAR:
            return SOLAR_TIERS.get(measurement.imagery_quality, 4)
        if measurement.source == MeasurementSource.OSM:
            return 5
        if measurement.source == MeasurementSource.FOOTPRINT_ESTIMATE:
            return 6
        return MANUAL_TIER

    def _result(self, measurement, tier, failures, lat, lng) -> TieredMeasurementResult:
        log.info(
            f"Resolved ({lat:.5f}, {lng:.5f}) with tier {tier} ({TIER_NAMES[tier]}), "
            f"{len(failures)} higher tiers skipped"
        )
        return TieredMeasurementResult(
            measurement=measurement,
            tier_used=tier,
            tier_name=TIER_NAMES[tier],
            higher_tier_failures=failures,
            fallbacks_available=self.fallbacks_below(tier),
        )

    def secondary_measurements(
        self,
        lat: float,
        lng: float,
        primary: MeasurementResult,
        options: Optional[MeasurementOptions] = None,
    ) -> List[MeasurementResult]:
        """
        OSM and footprint-estimate measurements from sources other than the
        primary one, for cross-validation only.
        """
        options = options or MeasurementOptions()
        secondaries: List[MeasurementResult] = []
        discarded: List[TierFailure] = []

        if primary.source != MeasurementSource.OSM:
            osm = self._try_osm(lat, lng, options, discarded)
            if osm is not None:
                secondaries.append(osm)
        if primary.source != MeasurementSource.FOOTPRINT_ESTIMATE:
            estimate = self._try_footprint(lat, lng, options, discarded)
            if estimate is not None:
                secondaries.append(estimate)

        log.debug(f"Collected {len(secondaries)} secondary measurements")
        return secondaries
