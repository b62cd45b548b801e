"""
Inference module for the Roof Measurement Engine.
Provides accuracy detection, regional calibration, source agreement and
seasonal analysis.
"""

from inference.accuracy_detection import AccuracyDetector, CorrectionAction
from inference.calibrator import CalibrationConfig, SelfLearningCalibrator
from inference.correction_store import InMemoryCorrectionStore, SQLiteCorrectionStore
from inference.seasonal import SeasonalAnalyzer, SeasonalConfig
from inference.source_comparator import calculate_multi_source_consensus, compare_footprints

__all__ = [
    "AccuracyDetector",
    "CorrectionAction",
    "CalibrationConfig",
    "SelfLearningCalibrator",
    "InMemoryCorrectionStore",
    "SQLiteCorrectionStore",
    "SeasonalAnalyzer",
    "SeasonalConfig",
    "calculate_multi_source_consensus",
    "compare_footprints",
]
