"""
Bulk-load historical GAF / LiDAR comparisons into the calibration store.

Expected CSV columns:
    region_key, ground_truth_sqft, reference_sqft
Optional:
    source, confidence, timestamp, building_type, roof_complexity
"""

import argparse
import logging
from typing import Dict, List, Optional

import pandas as pd

from inference.calibrator import SelfLearningCalibrator
from inference.correction_store import SQLiteCorrectionStore

log = logging.getLogger("tools.import_calibration")

REQUIRED_COLUMNS = ["region_key", "ground_truth_sqft", "reference_sqft"]
OPTIONAL_COLUMNS = ["source", "confidence", "timestamp", "building_type", "roof_complexity"]


def load_records(csv_path: str) -> List[Dict]:
    """Read the CSV into learn() records; blank cells become None."""
    frame = pd.read_csv(csv_path, dtype={"region_key": str})
    missing = [c for c in REQUIRED_COLUMNS if c not in frame.columns]
    if missing:
        raise ValueError(f"{csv_path} is missing columns: {', '.join(missing)}")

    columns = REQUIRED_COLUMNS + [c for c in OPTIONAL_COLUMNS if c in frame.columns]
    frame = frame[columns].astype(object).where(frame[columns].notna(), None)
    return frame.to_dict(orient="records")


def import_csv(csv_path: str, calibrator: SelfLearningCalibrator) -> Dict:
    records = load_records(csv_path)
    log.info(f"Loaded {len(records)} records from {csv_path}")
    return calibrator.import_historical(records)


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    parser = argparse.ArgumentParser(description="Import historical calibration data")
    parser.add_argument("csv", help="CSV of ground-truth comparisons")
    parser.add_argument("--store", default="calibration.db", help="Calibration SQLite database")
    parser.add_argument("--summary", help="Write the per-region summary to this CSV")
    args = parser.parse_args(argv)

    calibrator = SelfLearningCalibrator(SQLiteCorrectionStore(args.store))
    result = import_csv(args.csv, calibrator)

    print(f"Imported {result['imported']} records")
    for error in result["errors"]:
        print(f"  ! {error}")

    summary = calibrator.summary_frame()
    if args.summary:
        summary.to_csv(args.summary, index=False)
        print(f"Wrote summary for {len(summary)} regions to {args.summary}")
    else:
        print(summary.to_string(index=False))

    return 1 if result["errors"] and not result["imported"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
