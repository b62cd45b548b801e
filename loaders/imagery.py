"""
Multi-Source Imagery - Fetch the free imagery providers in parallel.

Providers:
- Google Static Maps (current imagery, free tier)
- Bing Maps (different provider, capture vintage from metadata)
- USGS / Microsoft building footprints (outline only, no image)
- Sentinel-2 via Copernicus (10m, historical archive)

The manager fetches all providers concurrently, turns each failure into a
quality flag, measures footprint agreement and picks a recommended source.
Nothing here changes a measurement; the set is for cross-checking.
"""

import logging
import math
import os
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from core.deadline import Deadline, remaining_timeout
from core.exceptions import AdapterUnavailableError
from core.models import ImageryQuality, ImagerySource, MultiSourceImagerySet
from inference.source_comparator import calculate_overall_variance, identify_outlier_sources
from loaders.contracts import FootprintAdapter, ImageryFetchOptions, ImageryProvider
from loaders.footprints import MicrosoftFootprintLoader

log = logging.getLogger(__name__)

BASE_RESOLUTION_M = 0.149  # meters per pixel at zoom 20
DEFAULT_FETCH_TIMEOUT = 60


def resolution_for_zoom(zoom: int) -> float:
    return BASE_RESOLUTION_M * math.pow(2, 20 - zoom)


def _parse_date(value) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


_http_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    retry=retry_if_exception_type(requests.RequestException),
    reraise=True,
)


# ═══════════════════════════════════════════════════════════════════════════
# PROVIDERS
# ═══════════════════════════════════════════════════════════════════════════
class GoogleStaticMapsProvider(ImageryProvider):
    """Satellite tile URL; Static Maps exposes no capture date."""

    name = "Google Static Maps"
    STATIC_MAPS_URL = "https://maps.googleapis.com/maps/api/staticmap"

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = (
            api_key
            or os.environ.get("GOOGLE_MAPS_API_KEY")
            or os.environ.get("GOOGLE_SOLAR_API_KEY")
        )

    def fetch_imagery(self, lat, lng, timeout=None, options=None) -> Optional[ImagerySource]:
        if not self.api_key:
            raise AdapterUnavailableError(self.name, "API key not configured")

        options = options or ImageryFetchOptions()
        zoom = options.zoom
        url = (
            f"{self.STATIC_MAPS_URL}?center={lat},{lng}&zoom={zoom}"
            f"&size=640x640&maptype=satellite&key={self.api_key}"
        )

        if zoom >= 20:
            quality = ImageryQuality.HIGH
        elif zoom >= 18:
            quality = ImageryQuality.MEDIUM
        else:
            quality = ImageryQuality.LOW

        return ImagerySource(
            provider="google",
            image_url=url,
            capture_date=None,
            resolution_meters_per_pixel=resolution_for_zoom(zoom),
            quality=quality,
        )


class BingMapsProvider(ImageryProvider):
    """Bing aerial tile plus vintage metadata."""

    name = "Bing Maps"
    BASE_URL = "https://dev.virtualearth.net/REST/v1/Imagery"

    def __init__(self, api_key: Optional[str] = None, timeout: float = 10.0):
        self.api_key = api_key or os.environ.get("BING_MAPS_KEY")
        self.timeout = timeout
        self.session = requests.Session()

    @_http_retry
    def _fetch_metadata(self, lat: float, lng: float, timeout: float) -> Dict:
        response = self.session.get(
            f"{self.BASE_URL}/Metadata/Aerial/{lat},{lng}",
            params={"key": self.api_key},
            timeout=timeout,
        )
        response.raise_for_status()
        return response.json()

    def fetch_imagery(self, lat, lng, timeout=None, options=None) -> Optional[ImagerySource]:
        if not self.api_key:
            raise AdapterUnavailableError(self.name, "API key not configured")

        options = options or ImageryFetchOptions()
        try:
            data = self._fetch_metadata(lat, lng, timeout or self.timeout)
        except requests.RequestException as e:
            raise AdapterUnavailableError(self.name, str(e)) from e

        resources = ((data.get("resourceSets") or [{}])[0]).get("resources") or []
        resource = resources[0] if resources else {}
        capture_date = _parse_date(resource.get("vintageStart"))

        zoom = options.zoom
        if zoom >= 20 and capture_date:
            quality = ImageryQuality.HIGH
        elif zoom < 18:
            quality = ImageryQuality.LOW
        else:
            quality = ImageryQuality.MEDIUM

        return ImagerySource(
            provider="bing",
            image_url=f"{self.BASE_URL}/Map/Aerial/{lat},{lng}/{zoom}?mapSize=640,640&key={self.api_key}",
            capture_date=capture_date,
            resolution_meters_per_pixel=resolution_for_zoom(zoom),
            quality=quality,
            metadata={
                "vintage_start": resource.get("vintageStart"),
                "vintage_end": resource.get("vintageEnd"),
                "zoom_min": resource.get("zoomMin", 1),
                "zoom_max": resource.get("zoomMax", 21),
            },
        )


class USGSBuildingProvider(ImageryProvider):
    """Building outline from the Microsoft/USGS footprint service (no image)."""

    name = "USGS building data"

    def __init__(self, footprints: Optional[FootprintAdapter] = None):
        self.footprints = footprints or MicrosoftFootprintLoader()

    def fetch_imagery(self, lat, lng, timeout=None, options=None) -> Optional[ImagerySource]:
        footprint = self.footprints.fetch_footprint(lat, lng, timeout=timeout)
        if footprint is None:
            return None

        return ImagerySource(
            provider="usgs",
            image_url="",
            capture_date=None,
            resolution_meters_per_pixel=1.0,  # outlines derived from ~1m LiDAR
            quality=ImageryQuality.HIGH,
            footprint=footprint,
        )


class Sentinel2Provider(ImageryProvider):
    """
    Most recent Sentinel-2 product over the point from the Copernicus catalogue.

    Requires COPERNICUS_USERNAME and COPERNICUS_PASSWORD.
    """

    name = "Sentinel-2 imagery"
    CATALOGUE_URL = "https://catalogue.dataspace.copernicus.eu/odata/v1/Products"
    BBOX_DEGREES = 0.01
    RESOLUTION_M = 10.0

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 20.0,
    ):
        self.username = username or os.environ.get("COPERNICUS_USERNAME")
        self.password = password or os.environ.get("COPERNICUS_PASSWORD")
        self.timeout = timeout
        self.session = requests.Session()

    def _build_filter(self, lat: float, lng: float, start: date, end: date, max_cloud_cover: float) -> str:
        d = self.BBOX_DEGREES
        west, east, south, north = lng - d, lng + d, lat - d, lat + d
        polygon = (
            f"POLYGON(({west} {south},{east} {south},{east} {north},"
            f"{west} {north},{west} {south}))"
        )
        return " and ".join([
            "Collection/Name eq 'SENTINEL-2'",
            f"ContentDate/Start ge {start.isoformat()}T00:00:00.000Z",
            f"ContentDate/Start le {end.isoformat()}T23:59:59.999Z",
            "Attributes/OData.CSC.DoubleAttribute/any(att:att/Name eq 'cloudCover' "
            f"and att/OData.CSC.DoubleAttribute/Value le {max_cloud_cover})",
            f"OData.CSC.Intersects(area=geography'SRID=4326;{polygon}')",
        ])

    @_http_retry
    def _query(self, params: Dict[str, str], timeout: float) -> Dict:
        response = self.session.get(
            self.CATALOGUE_URL,
            params=params,
            auth=(self.username, self.password),
            headers={"Accept": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()
        return response.json()

    def fetch_window(
        self,
        lat: float,
        lng: float,
        start: date,
        end: date,
        max_cloud_cover: float = 20.0,
        timeout: Optional[float] = None,
    ) -> Optional[ImagerySource]:
        """Latest product sensed between `start` and `end`, or None."""
        if not (self.username and self.password):
            raise AdapterUnavailableError(self.name, "Copernicus credentials not configured")

        params = {
            "$filter": self._build_filter(lat, lng, start, end, max_cloud_cover),
            "$orderby": "ContentDate/Start desc",
            "$top": "1",
        }
        try:
            data = self._query(params, timeout or self.timeout)
        except requests.RequestException as e:
            raise AdapterUnavailableError(self.name, str(e)) from e

        products = data.get("value") or []
        if not products:
            log.debug(f"No Sentinel-2 products for ({lat:.4f}, {lng:.4f}) {start} - {end}")
            return None

        product = products[0]
        cloud_cover = 0.0
        for attribute in product.get("Attributes", []):
            if attribute.get("Name") == "cloudCover":
                cloud_cover = float(attribute.get("Value") or 0)
        # Catalogue search results carry no sun angles
        sun_elevation = float(product.get("SunElevation", 45))

        if cloud_cover < 5:
            quality = ImageryQuality.HIGH
        elif cloud_cover > 30:
            quality = ImageryQuality.LOW
        else:
            quality = ImageryQuality.MEDIUM

        if sun_elevation > 50:
            shadow_quality = "good"
        elif sun_elevation < 30:
            shadow_quality = "poor"
        else:
            shadow_quality = "moderate"

        name = product.get("Name", "")
        sensed = (product.get("ContentDate") or {}).get("Start") or product.get("IngestionDate")
        return ImagerySource(
            provider="sentinel",
            image_url=product.get("S3Path") or f"{self.CATALOGUE_URL}({product.get('Id')})/$value",
            capture_date=_parse_date(sensed),
            resolution_meters_per_pixel=self.RESOLUTION_M,
            quality=quality,
            cloud_cover_percent=cloud_cover,
            shadow_quality=shadow_quality,
            metadata={
                "product_id": product.get("Id"),
                "platform": "Sentinel-2A" if "S2A" in name else "Sentinel-2B",
                "processing_level": "L2A" if "L2A" in name else "L1C",
                "sun_elevation": sun_elevation,
            },
        )

    def fetch_imagery(self, lat, lng, timeout=None, options=None) -> Optional[ImagerySource]:
        options = options or ImageryFetchOptions()
        end = date.today()
        days = options.max_age_days if options.include_archive else 365
        return self.fetch_window(
            lat, lng, end - timedelta(days=days), end,
            max_cloud_cover=options.max_cloud_cover,
            timeout=timeout,
        )


# ═══════════════════════════════════════════════════════════════════════════
# SOURCE SELECTION
# ═══════════════════════════════════════════════════════════════════════════
@dataclass
class SourceScoringWeights:
    resolution: float = 40
    recency: float = 30
    quality: float = 20
    cloud_cover: float = 10


@dataclass
class SourceSelectionResult:
    selected_source: ImagerySource
    score: float
    reasoning: List[str] = field(default_factory=list)
    alternative_sources: List[ImagerySource] = field(default_factory=list)


QUALITY_POINTS = {
    ImageryQuality.HIGH: 20,
    ImageryQuality.MEDIUM: 15,
    ImageryQuality.LOW: 10,
    ImageryQuality.UNKNOWN: 10,
}


def _age_days(source: ImagerySource, today: date) -> Optional[int]:
    if source.capture_date is None:
        return None
    return (today - source.capture_date).days


def footprint_areas(sources: List[ImagerySource]) -> List[float]:
    return [s.footprint_area_sqft for s in sources if s.footprint_area_sqft > 0]


class ImagerySourceManager:
    """
    Orchestrates the imagery providers.

    Usage:
        manager = ImagerySourceManager()
        imagery = manager.fetch_all(42.3601, -71.0589)
        print(imagery.recommended_primary, imagery.quality_flags)
    """

    def __init__(
        self,
        providers: Optional[List[ImageryProvider]] = None,
        weights: Optional[SourceScoringWeights] = None,
    ):
        if providers is None:
            providers = [
                GoogleStaticMapsProvider(),
                BingMapsProvider(),
                USGSBuildingProvider(),
                Sentinel2Provider(),
            ]
        self.providers = providers
        self.weights = weights or SourceScoringWeights()

    def fetch_all(
        self,
        lat: float,
        lng: float,
        options: Optional[ImageryFetchOptions] = None,
        deadline: Optional[Deadline] = None,
    ) -> MultiSourceImagerySet:
        """
        Fetch every provider concurrently.

        A provider that fails (or misses the deadline) is flagged
        "<name> unavailable"; one that returns None is left out silently.
        """
        options = options or ImageryFetchOptions()
        results: Dict[int, Optional[ImagerySource]] = {}
        flags: List[str] = []
        per_call = remaining_timeout(deadline, options.per_source_timeout)

        executor = ThreadPoolExecutor(max_workers=max(1, len(self.providers)))
        try:
            futures = {
                executor.submit(provider.fetch_imagery, lat, lng, per_call, options): index
                for index, provider in enumerate(self.providers)
            }
            wait_for = deadline.remaining() if deadline else DEFAULT_FETCH_TIMEOUT
            try:
                for future in as_completed(futures, timeout=wait_for):
                    index = futures[future]
                    try:
                        results[index] = future.result()
                    except Exception as e:
                        log.error(f"Error fetching {self.providers[index].name}: {e}")
                        flags.append(f"{self.providers[index].name} unavailable")
            except FuturesTimeoutError:
                for future, index in futures.items():
                    if index not in results and f"{self.providers[index].name} unavailable" not in flags:
                        log.warning(f"{self.providers[index].name} did not answer before the deadline")
                        flags.append(f"{self.providers[index].name} unavailable")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        # Provider order, not completion order
        sources = [results[i] for i in sorted(results) if results[i] is not None]

        variance = calculate_overall_variance(footprint_areas(sources))
        if variance > 15:
            flags.append(f"High variance between sources ({variance:.1f}%)")

        outliers = identify_outlier_sources(
            [(s.provider, s.footprint_area_sqft) for s in sources if s.footprint_area_sqft > 0]
        )
        if outliers:
            flags.append(f"Outlier sources: {', '.join(outliers)}")

        recommended = self.select_best(sources).selected_source if sources else None
        if not sources:
            flags.append("No imagery sources available for this location")

        log.info(f"Imagery set at ({lat:.4f}, {lng:.4f}): {len(sources)} sources, {len(flags)} flags")
        return MultiSourceImagerySet(
            location=(lat, lng),
            timestamp=datetime.now(),
            sources=sources,
            footprint_variance_percent=variance,
            recommended_primary=recommended,
            quality_flags=flags,
        )

    def score_source(self, source: ImagerySource, today: Optional[date] = None) -> float:
        today = today or date.today()
        w = self.weights

        resolution = max(0.0, 40 - (source.resolution_meters_per_pixel - BASE_RESOLUTION_M) * 4)
        total = resolution * (w.resolution / 40)

        age = _age_days(source, today)
        if age is None:
            recency = 15
        elif age < 30:
            recency = 30
        elif age < 90:
            recency = 25
        elif age < 365:
            recency = 20
        elif age < 730:
            recency = 10
        else:
            recency = 5
        total += recency * (w.recency / 30)

        total += QUALITY_POINTS[source.quality] * (w.quality / 20)

        if source.cloud_cover_percent is not None:
            cloud = max(0.0, 10 - source.cloud_cover_percent / 10)
        else:
            cloud = 5
        total += cloud * (w.cloud_cover / 10)

        return min(100.0, max(0.0, total))

    def select_best(self, sources: List[ImagerySource], today: Optional[date] = None) -> SourceSelectionResult:
        """Highest weighted score wins; ties go to the earlier source."""
        if not sources:
            raise ValueError("No sources to select from")

        today = today or date.today()
        if len(sources) == 1:
            return SourceSelectionResult(
                selected_source=sources[0],
                score=self.score_source(sources[0], today),
                reasoning=[f"Only one source available: {sources[0].provider}"],
            )

        scored = sorted(
            ((self.score_source(s, today), s) for s in sources),
            key=lambda item: item[0],
            reverse=True,
        )
        best_score, best = scored[0]

        reasoning = [f"Selected {best.provider} with score {best_score:.1f}/100"]
        if best.quality == ImageryQuality.HIGH:
            reasoning.append("High quality imagery")
        if best.resolution_meters_per_pixel <= 0.5:
            reasoning.append(f"High resolution ({best.resolution_meters_per_pixel:.2f}m/pixel)")
        age = _age_days(best, today)
        if age is not None:
            if age < 30:
                reasoning.append("Recent imagery (< 30 days old)")
            elif age < 365:
                reasoning.append("Reasonably current imagery (< 1 year old)")
        if best.cloud_cover_percent is not None and best.cloud_cover_percent < 10:
            reasoning.append("Low cloud cover")

        return SourceSelectionResult(
            selected_source=best,
            score=best_score,
            reasoning=reasoning,
            alternative_sources=[s for _, s in scored[1:]],
        )

    def identify_quality_flags(self, sources: List[ImagerySource], today: Optional[date] = None) -> List[str]:
        today = today or date.today()
        flags: List[str] = []

        for source in sources:
            age = _age_days(source, today)
            if age is not None and age > 730:
                flags.append(f"{source.provider}: Imagery is over 2 years old")
            if source.cloud_cover_percent is not None and source.cloud_cover_percent > 30:
                flags.append(f"{source.provider}: High cloud cover ({source.cloud_cover_percent:.1f}%)")
            if source.resolution_meters_per_pixel > 5:
                flags.append(f"{source.provider}: Low resolution ({source.resolution_meters_per_pixel:g}m/pixel)")
            if source.shadow_quality == "poor":
                flags.append(f"{source.provider}: Poor shadow quality may affect accuracy")

        variance = calculate_overall_variance(footprint_areas(sources))
        if variance > 25:
            flags.append(f"High disagreement between sources ({variance:.1f}% variance)")

        if sources and not any(s.quality == ImageryQuality.HIGH for s in sources):
            flags.append("No high-quality imagery available")

        return flags


# Singleton
_manager: Optional[ImagerySourceManager] = None


def get_imagery_manager() -> ImagerySourceManager:
    """Get singleton imagery manager."""
    global _manager
    if _manager is None:
        _manager = ImagerySourceManager()
    return _manager
