"""
Self-Learning Calibrator for regional correction factors.

Learns from verified ground truth (GAF reports, LiDAR, manual checks):

- stores correction factors per region key (zip prefix)
- keeps a recency/confidence weighted average per region
- applies learned corrections to future measurements

Models live in an injected CorrectionStore and are recomputed from their full
point list on every insert.
"""

import json
import logging
import threading
import time
import uuid
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

import joblib
import numpy as np
import pandas as pd

from core.exceptions import InvalidInputError
from core.models import MeasurementResult
from inference.correction_store import (
    CorrectionDataPoint,
    CorrectionSource,
    CorrectionStore,
    InMemoryCorrectionStore,
    RecommendedAction,
    RegionCorrectionModel,
    TrendDirection,
    as_utc,
    parse_timestamp,
)

log = logging.getLogger("inference.calibrator")

SECONDS_PER_YEAR = 365.25 * 24 * 3600

SOURCE_WEIGHTS = {
    CorrectionSource.LIDAR: 1.2,
    CorrectionSource.GAF_REPORT: 1.0,
    CorrectionSource.MANUAL_VERIFICATION: 0.8,
}

DEFAULT_SOURCE_CONFIDENCE = {
    CorrectionSource.LIDAR: 95.0,
    CorrectionSource.GAF_REPORT: 90.0,
    CorrectionSource.MANUAL_VERIFICATION: 75.0,
}

NO_LOCAL_DATA_RECOMMENDATION = "Consider uploading a GAF report to improve accuracy for this area"


@dataclass
class CalibrationConfig:
    min_data_points: int = 3
    max_data_point_age_days: float = 365.0
    weight_decay_factor: float = 0.9  # per year
    outlier_threshold: float = 2.0  # population std deviations
    confidence_boost_per_sample: float = 5.0
    max_confidence: float = 95.0
    max_apply_boost: float = 15.0
    high_confidence_threshold: float = 85.0
    high_confidence_samples: int = 5
    trend_threshold: float = 0.02
    region_key_length: int = 5


@dataclass
class CalibrationState:
    total_data_points: int
    regions_modeled: int
    average_accuracy_improvement: float
    last_global_update: datetime
    top_performing_regions: List[str] = field(default_factory=list)
    needs_attention_regions: List[str] = field(default_factory=list)


# ═══════════════════════════════════════════════════════════════════════════
# MODEL MATH
# ═══════════════════════════════════════════════════════════════════════════
def _age_seconds(point: CorrectionDataPoint, now: datetime) -> float:
    return max(0.0, (now - point.timestamp).total_seconds())


def weighted_correction(
    points: List[CorrectionDataPoint],
    now: datetime,
    config: CalibrationConfig,
) -> Tuple[float, float]:
    """
    Weighted correction factor and confidence.

    Points further than outlier_threshold population std deviations from the
    mean factor, or older than max_data_point_age_days, get no weight.

    Returns:
        (factor, confidence); (1.0, 0.0) when nothing carries weight
    """
    if not points:
        return 1.0, 0.0

    factors = np.array([p.correction_factor for p in points], dtype=float)
    mean = factors.mean()
    std = factors.std()

    weighted_sum = 0.0
    total_weight = 0.0
    confidence_sum = 0.0
    for point in points:
        if abs(point.correction_factor - mean) > config.outlier_threshold * std:
            log.debug(f"Skipping outlier {point.id} (factor {point.correction_factor:.3f})")
            continue

        age = _age_seconds(point, now)
        if age / 86400 > config.max_data_point_age_days:
            log.debug(f"Skipping stale point {point.id}")
            continue

        weight = (
            config.weight_decay_factor ** (age / SECONDS_PER_YEAR)
            * (point.confidence / 100)
            * SOURCE_WEIGHTS[point.source]
        )
        weighted_sum += point.correction_factor * weight
        total_weight += weight
        confidence_sum += point.confidence * weight

    if total_weight == 0:
        return 1.0, 0.0

    confidence = min(
        config.max_confidence,
        confidence_sum / total_weight + (len(points) - 1) * config.confidence_boost_per_sample,
    )
    return weighted_sum / total_weight, confidence


def calculate_trend(points: List[CorrectionDataPoint], threshold: float = 0.02) -> TrendDirection:
    """Improving when recent factors sit closer to 1.0 than older ones."""
    if len(points) < 3:
        return TrendDirection.STABLE

    ordered = sorted(points, key=lambda p: p.timestamp)
    midpoint = len(ordered) // 2
    older = float(np.mean([p.correction_factor for p in ordered[:midpoint]]))
    recent = float(np.mean([p.correction_factor for p in ordered[midpoint:]]))

    if abs(recent - older) < threshold:
        return TrendDirection.STABLE
    if abs(recent - 1) < abs(older - 1):
        return TrendDirection.IMPROVING
    return TrendDirection.DEGRADING


def recommended_action(sample_count: int, weighted_confidence: float, config: CalibrationConfig) -> RecommendedAction:
    if sample_count < config.min_data_points:
        return RecommendedAction.NEEDS_MORE_DATA
    if weighted_confidence >= config.high_confidence_threshold and sample_count >= config.high_confidence_samples:
        return RecommendedAction.HIGH_CONFIDENCE
    return RecommendedAction.APPLY_CORRECTION


def recompute_model(
    region_key: str,
    points: List[CorrectionDataPoint],
    now: datetime,
    config: Optional[CalibrationConfig] = None,
) -> RegionCorrectionModel:
    """Build a region model from scratch out of its full point list."""
    config = config or CalibrationConfig()
    factor, confidence = weighted_correction(points, now, config)
    return RegionCorrectionModel(
        region_key=region_key,
        correction_factor=factor,
        sample_count=len(points),
        weighted_confidence=confidence,
        trend_direction=calculate_trend(points, config.trend_threshold),
        recommended_action=recommended_action(len(points), confidence, config),
        last_updated=now,
        data_points=list(points),
    )


# ═══════════════════════════════════════════════════════════════════════════
# CALIBRATOR
# ═══════════════════════════════════════════════════════════════════════════
class SelfLearningCalibrator:
    """
    Learns regional correction factors and applies them to measurements.

    Usage:
        calibrator = SelfLearningCalibrator(SQLiteCorrectionStore("calibration.db"))
        calibrator.learn(2450, 2100, "02134", source="gaf-report", confidence=90)
        corrected, applied, details = calibrator.apply(measurement, "02134")

    learn() is a read-modify-write under a per-region lock, so learns for
    different regions never block each other.
    """

    def __init__(
        self,
        store: Optional[CorrectionStore] = None,
        config: Optional[CalibrationConfig] = None,
        now_fn: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store if store is not None else InMemoryCorrectionStore()
        self.config = config or CalibrationConfig()
        self._now = now_fn or (lambda: datetime.now(timezone.utc))
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _region_lock(self, region_key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(region_key)
            if lock is None:
                lock = threading.Lock()
                self._locks[region_key] = lock
            return lock

    def normalize_region_key(self, region_key: str) -> str:
        key = str(region_key or "").strip()[:self.config.region_key_length]
        if not key:
            raise InvalidInputError("Region key must not be empty")
        return key

    def learn(
        self,
        ground_truth_sqft: float,
        reference_sqft: float,
        region_key: str,
        source: Union[CorrectionSource, str] = CorrectionSource.GAF_REPORT,
        confidence: Optional[float] = None,
        timestamp: Optional[datetime] = None,
        building_type: Optional[str] = None,
        roof_complexity: Optional[str] = None,
    ) -> CorrectionDataPoint:
        """
        Record one ground-truth comparison and recompute the region model.

        Args:
            ground_truth_sqft: Verified roof area
            reference_sqft: Area the engine measured for the same roof
            region_key: Zip code or other region key (first 5 chars are used)
            source: gaf-report, lidar or manual-verification
            confidence: 0-100, defaults by source
            timestamp: When the ground truth was taken (default now)

        Raises:
            InvalidInputError: non-positive areas, confidence outside [0, 100],
                empty region key or unknown source
        """
        try:
            source = CorrectionSource(source)
        except ValueError:
            raise InvalidInputError(f"Unknown correction source: {source}")

        if reference_sqft is None or reference_sqft <= 0:
            raise InvalidInputError(f"Reference area must be positive, got {reference_sqft}")
        if ground_truth_sqft is None or ground_truth_sqft <= 0:
            raise InvalidInputError(f"Ground truth area must be positive, got {ground_truth_sqft}")
        if confidence is None:
            confidence = DEFAULT_SOURCE_CONFIDENCE[source]
        if not 0 <= confidence <= 100:
            raise InvalidInputError(f"Confidence must be within [0, 100], got {confidence}")

        key = self.normalize_region_key(region_key)
        point = CorrectionDataPoint(
            id=uuid.uuid4().hex,
            region_key=key,
            reference_area_sqft=float(reference_sqft),
            ground_truth_area_sqft=float(ground_truth_sqft),
            correction_factor=float(ground_truth_sqft) / float(reference_sqft),
            source=source,
            timestamp=as_utc(timestamp) if timestamp else self._now(),
            confidence=float(confidence),
            building_type=building_type,
            roof_complexity=roof_complexity,
        )

        with self._region_lock(key):
            existing = self.store.get(key)
            points = (existing.data_points if existing else []) + [point]
            model = recompute_model(key, points, self._now(), self.config)
            self.store.put(model)

        log.info(
            f"Region {key}: factor={model.correction_factor:.3f} "
            f"confidence={model.weighted_confidence:.1f} n={model.sample_count} "
            f"({model.recommended_action.value})"
        )
        return point

    def get_model(self, region_key: str) -> Optional[RegionCorrectionModel]:
        return self.store.get(self.normalize_region_key(region_key))

    def list_models(self) -> List[RegionCorrectionModel]:
        return list(self.store.snapshot().values())

    def apply(self, measurement: MeasurementResult, region_key: str) -> Tuple[MeasurementResult, bool, Dict]:
        """
        Apply a region's learned correction to a measurement.

        Returns:
            (corrected measurement, whether a correction was applied, details)
        """
        model = self.get_model(region_key)
        original = measurement.adjusted_area_sqft

        if model is None or model.sample_count < self.config.min_data_points:
            details = {
                "reason": "insufficient-data" if model else "no-model",
                "original_area_sqft": original,
                "corrected_area_sqft": original,
                "correction_factor": 1.0,
                "confidence_boost": 0.0,
                "data_point_count": model.sample_count if model else 0,
            }
            return measurement, False, details

        corrected_area = original * model.correction_factor
        boost = max(0.0, min(self.config.max_apply_boost, model.weighted_confidence - measurement.confidence))
        note = (
            f"Self-learning correction applied (factor: {model.correction_factor:.3f}, "
            f"based on {model.sample_count} samples)."
        )
        corrected = measurement.with_adjusted_area(
            corrected_area,
            confidence=min(self.config.max_confidence, measurement.confidence + boost),
            warning=f"{measurement.warning or ''} {note}".strip(),
        )

        details = {
            "reason": "correction-applied",
            "original_area_sqft": original,
            "corrected_area_sqft": corrected_area,
            "correction_factor": model.correction_factor,
            "confidence_boost": boost,
            "data_point_count": model.sample_count,
        }
        return corrected, True, details

    def get_state(self) -> CalibrationState:
        models = self.list_models()
        established = [m for m in models if m.sample_count >= self.config.min_data_points]

        improvements = [abs(m.correction_factor - 1) * 100 for m in established]
        ranked = sorted(established, key=lambda m: m.weighted_confidence, reverse=True)
        needs_attention = [
            m.region_key for m in ranked
            if m.weighted_confidence < 70 or abs(m.correction_factor - 1) > 0.2
        ]

        return CalibrationState(
            total_data_points=sum(m.sample_count for m in models),
            regions_modeled=len(models),
            average_accuracy_improvement=float(np.mean(improvements)) if improvements else 0.0,
            last_global_update=self._now(),
            top_performing_regions=[m.region_key for m in ranked[:5]],
            needs_attention_regions=needs_attention[:5],
        )

    def predict_accuracy(self, region_key: str, measurement_confidence: float) -> Dict:
        """
        Expected accuracy for a new measurement in this region.

        Returns:
            {"expected_accuracy", "has_local_data", "recommendation"}
        """
        model = self.get_model(region_key)
        if model is None or model.sample_count < self.config.min_data_points:
            return {
                "expected_accuracy": min(measurement_confidence, 75.0),
                "has_local_data": False,
                "recommendation": NO_LOCAL_DATA_RECOMMENDATION,
            }

        deviation = abs(1 - model.correction_factor) * 100
        expected = min(95.0, 100 - deviation + (model.weighted_confidence - 70) * 0.2)

        if model.recommended_action == RecommendedAction.HIGH_CONFIDENCE:
            recommendation = "High confidence in measurements for this area"
        elif deviation > 15:
            direction = "under-measure" if model.correction_factor > 1 else "over-measure"
            recommendation = (
                f"Automated measurements typically {direction} by {deviation:.1f}% "
                "in this area. Correction will be applied."
            )
        else:
            recommendation = "Measurements should be accurate with applied corrections"

        return {
            "expected_accuracy": expected,
            "has_local_data": True,
            "recommendation": recommendation,
        }

    def import_historical(self, records: Iterable[Dict]) -> Dict:
        """
        Bulk-learn historical comparisons; a bad record never stops the batch.

        Each record needs ground_truth_sqft, reference_sqft and region_key, and
        may carry source, confidence, timestamp, building_type and
        roof_complexity.

        Returns:
            {"imported": int, "errors": [str]}
        """
        imported = 0
        errors: List[str] = []

        for record in records:
            region = record.get("region_key")
            try:
                timestamp = record.get("timestamp")
                if isinstance(timestamp, str):
                    timestamp = parse_timestamp(timestamp)
                self.learn(
                    ground_truth_sqft=record["ground_truth_sqft"],
                    reference_sqft=record["reference_sqft"],
                    region_key=region,
                    source=record.get("source") or CorrectionSource.GAF_REPORT,
                    confidence=record.get("confidence"),
                    timestamp=timestamp,
                    building_type=record.get("building_type"),
                    roof_complexity=record.get("roof_complexity"),
                )
                imported += 1
            except (InvalidInputError, KeyError, TypeError, ValueError) as e:
                log.warning(f"Skipping historical record for region {region}: {e}")
                errors.append(f"Failed to import data for region {region}: {e}")

        log.info(f"Imported {imported} historical records ({len(errors)} errors)")
        return {"imported": imported, "errors": errors}

    def clear(self) -> None:
        self.store.clear()
        log.info("Cleared all calibration data")

    def _restore(self, models: Dict[str, RegionCorrectionModel]) -> None:
        """Replace the store contents while holding every affected region lock."""
        keys = sorted(set(self.store.keys()) | set(models))
        with ExitStack() as stack:
            for key in keys:
                stack.enter_context(self._region_lock(key))
            self.store.restore(models)

    # ═══════════════════════════════════════════════════════════════════════
    # PERSISTENCE
    # ═══════════════════════════════════════════════════════════════════════
    def export_data(self) -> str:
        """Canonical JSON of every region model (sorted keys)."""
        payload = {"models": [m.to_dict() for m in self.list_models()]}
        return json.dumps(payload, sort_keys=True, indent=2)

    def import_data(self, text: str) -> int:
        """
        Replace the store contents with an export_data() payload.

        Returns:
            Number of region models loaded
        """
        payload = json.loads(text)
        models = [RegionCorrectionModel.from_dict(m) for m in payload.get("models", [])]
        self._restore({m.region_key: m for m in models})
        log.info(f"Imported {len(models)} region models")
        return len(models)

    def save(self, path: str) -> bool:
        """
        Checkpoint every region model to disk.

        Returns:
            True on success, False on failure
        """
        snapshot = self.store.snapshot()
        state = {
            "models": snapshot,
            "config": self.config,
            "timestamp": time.time(),
        }
        try:
            with open(path, "wb") as f:
                joblib.dump(state, f)
        except OSError as e:
            log.error(f"Failed to save calibration checkpoint: {e}")
            return False

        log.info(f"Saved calibration checkpoint to {path} ({len(snapshot)} regions)")
        return True

    def load(self, path: str) -> bool:
        """Restore a checkpoint written by save(). Returns False if unreadable."""
        try:
            with open(path, "rb") as f:
                state = joblib.load(f)
        except Exception as e:
            log.warning(f"Could not load calibration checkpoint from {path}: {e}")
            return False

        if not isinstance(state, dict) or not isinstance(state.get("models"), dict):
            log.warning(f"Could not load calibration checkpoint from {path}: no region models")
            return False

        self._restore(state["models"])
        log.info(f"Loaded calibration checkpoint from {path} ({len(state['models'])} regions)")
        return True

    def summary_frame(self) -> pd.DataFrame:
        """One row per region, sorted by region key."""
        columns = [
            "region_key", "correction_factor", "sample_count", "weighted_confidence",
            "trend_direction", "recommended_action", "last_updated",
        ]
        rows = [
            {
                "region_key": m.region_key,
                "correction_factor": m.correction_factor,
                "sample_count": m.sample_count,
                "weighted_confidence": m.weighted_confidence,
                "trend_direction": m.trend_direction.value,
                "recommended_action": m.recommended_action.value,
                "last_updated": m.last_updated,
            }
            for m in self.list_models()
        ]
        return pd.DataFrame(rows, columns=columns)
