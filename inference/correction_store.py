"""
Correction Store for learned per-region calibration models.

Holds RegionCorrectionModel values keyed by region key. The calibrator owns
all read-modify-write logic; stores only need get/put semantics with
read-your-writes.
"""

import copy
import json
import logging
import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

log = logging.getLogger("inference.correction_store")


class CorrectionSource(Enum):
    GAF_REPORT = "gaf-report"
    LIDAR = "lidar"
    MANUAL_VERIFICATION = "manual-verification"


class TrendDirection(Enum):
    STABLE = "stable"
    IMPROVING = "improving"
    DEGRADING = "degrading"


class RecommendedAction(Enum):
    NEEDS_MORE_DATA = "needs-more-data"
    APPLY_CORRECTION = "apply-correction"
    HIGH_CONFIDENCE = "high-confidence"


def as_utc(value: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(value))


@dataclass(frozen=True)
class CorrectionDataPoint:
    """One ground-truth comparison. correction_factor = ground_truth / reference."""
    id: str
    region_key: str
    reference_area_sqft: float
    ground_truth_area_sqft: float
    correction_factor: float
    source: CorrectionSource
    timestamp: datetime
    confidence: float
    building_type: Optional[str] = None
    roof_complexity: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "region_key": self.region_key,
            "reference_area_sqft": self.reference_area_sqft,
            "ground_truth_area_sqft": self.ground_truth_area_sqft,
            "correction_factor": self.correction_factor,
            "source": self.source.value,
            "timestamp": self.timestamp.isoformat(),
            "confidence": self.confidence,
            "building_type": self.building_type,
            "roof_complexity": self.roof_complexity,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "CorrectionDataPoint":
        return cls(
            id=data["id"],
            region_key=data["region_key"],
            reference_area_sqft=data["reference_area_sqft"],
            ground_truth_area_sqft=data["ground_truth_area_sqft"],
            correction_factor=data["correction_factor"],
            source=CorrectionSource(data["source"]),
            timestamp=parse_timestamp(data["timestamp"]),
            confidence=data["confidence"],
            building_type=data.get("building_type"),
            roof_complexity=data.get("roof_complexity"),
        )


@dataclass
class RegionCorrectionModel:
    """Learned correction for one region, recomputed from data_points on every insert."""
    region_key: str
    correction_factor: float
    sample_count: int
    weighted_confidence: float
    trend_direction: TrendDirection
    recommended_action: RecommendedAction
    last_updated: datetime
    data_points: List[CorrectionDataPoint] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            "region_key": self.region_key,
            "correction_factor": self.correction_factor,
            "sample_count": self.sample_count,
            "weighted_confidence": self.weighted_confidence,
            "trend_direction": self.trend_direction.value,
            "recommended_action": self.recommended_action.value,
            "last_updated": self.last_updated.isoformat(),
            "data_points": [p.to_dict() for p in self.data_points],
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "RegionCorrectionModel":
        return cls(
            region_key=data["region_key"],
            correction_factor=data["correction_factor"],
            sample_count=data["sample_count"],
            weighted_confidence=data["weighted_confidence"],
            trend_direction=TrendDirection(data["trend_direction"]),
            recommended_action=RecommendedAction(data["recommended_action"]),
            last_updated=parse_timestamp(data["last_updated"]),
            data_points=[CorrectionDataPoint.from_dict(p) for p in data.get("data_points", [])],
        )


# ═══════════════════════════════════════════════════════════════════════════
# STORES
# ═══════════════════════════════════════════════════════════════════════════
class CorrectionStore(ABC):
    """Keyed store: region key -> RegionCorrectionModel."""

    @abstractmethod
    def get(self, region_key: str) -> Optional[RegionCorrectionModel]:
        ...

    @abstractmethod
    def put(self, model: RegionCorrectionModel) -> None:
        ...

    @abstractmethod
    def delete(self, region_key: str) -> None:
        ...

    @abstractmethod
    def keys(self) -> List[str]:
        """Region keys in sorted order."""

    @abstractmethod
    def clear(self) -> None:
        ...

    def snapshot(self) -> Dict[str, RegionCorrectionModel]:
        models = {}
        for key in self.keys():
            model = self.get(key)
            if model is not None:
                models[key] = model
        return models

    def restore(self, models: Dict[str, RegionCorrectionModel]) -> None:
        """Replace the whole store contents."""
        self.clear()
        for model in models.values():
            self.put(model)


class InMemoryCorrectionStore(CorrectionStore):
    """Dict-backed store. Values are copied on the way in and out."""

    def __init__(self):
        self._models: Dict[str, RegionCorrectionModel] = {}
        self._lock = threading.Lock()

    def get(self, region_key: str) -> Optional[RegionCorrectionModel]:
        with self._lock:
            model = self._models.get(region_key)
            return copy.deepcopy(model) if model is not None else None

    def put(self, model: RegionCorrectionModel) -> None:
        with self._lock:
            self._models[model.region_key] = copy.deepcopy(model)

    def delete(self, region_key: str) -> None:
        with self._lock:
            self._models.pop(region_key, None)

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._models)

    def clear(self) -> None:
        with self._lock:
            self._models.clear()

    def __len__(self) -> int:
        return len(self._models)


class SQLiteCorrectionStore(CorrectionStore):
    """
    SQLite-backed store, one JSON document per region.

    Usage:
        store = SQLiteCorrectionStore("calibration.db")
        calibrator = SelfLearningCalibrator(store)
    """

    def __init__(self, db_path: str = "calibration.db"):
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS region_models (
                region_key TEXT PRIMARY KEY,
                model_json TEXT,
                updated_at REAL
            )
        """)
        conn.commit()
        conn.close()

    def get(self, region_key: str) -> Optional[RegionCorrectionModel]:
        conn = sqlite3.connect(self.db_path)
        row = conn.execute(
            "SELECT model_json FROM region_models WHERE region_key = ?",
            (region_key,)
        ).fetchone()
        conn.close()
        if row:
            return RegionCorrectionModel.from_dict(json.loads(row[0]))
        return None

    def put(self, model: RegionCorrectionModel) -> None:
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            "INSERT OR REPLACE INTO region_models (region_key, model_json, updated_at) VALUES (?, ?, ?)",
            (model.region_key, json.dumps(model.to_dict(), sort_keys=True), time.time())
        )
        conn.commit()
        conn.close()
        log.debug(f"Stored model for region {model.region_key} ({model.sample_count} points)")

    def delete(self, region_key: str) -> None:
        conn = sqlite3.connect(self.db_path)
        conn.execute("DELETE FROM region_models WHERE region_key = ?", (region_key,))
        conn.commit()
        conn.close()

    def keys(self) -> List[str]:
        conn = sqlite3.connect(self.db_path)
        rows = conn.execute("SELECT region_key FROM region_models ORDER BY region_key").fetchall()
        conn.close()
        return [row[0] for row in rows]

    def clear(self) -> None:
        conn = sqlite3.connect(self.db_path)
        conn.execute("DELETE FROM region_models")
        conn.commit()
        conn.close()
