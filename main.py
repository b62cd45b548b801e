"""
Roof measurement CLI.

    python main.py --lat 42.3601 --lng -71.0589 --address "1 Main St, Boston, MA 02134" --region 02134
"""

import argparse
import json
import logging
from typing import List, Optional

from core.deadline import Deadline
from core.report import MeasurementReport, ReportAssembler
from core.resolver import MeasurementOptions, TieredResolver
from inference.calibrator import SelfLearningCalibrator
from inference.correction_store import SQLiteCorrectionStore
from loaders.imagery import get_imagery_manager

log = logging.getLogger("main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Resolve and score a roof measurement for a point")
    parser.add_argument("--lat", type=float, required=True, help="Latitude")
    parser.add_argument("--lng", type=float, required=True, help="Longitude")
    parser.add_argument("--address", help="Street address (enables regional pitch)")
    parser.add_argument("--region", help="Region key / zip code for learned corrections")
    parser.add_argument("--store", default="calibration.db", help="Calibration SQLite database")
    parser.add_argument("--imagery", action="store_true", help="Also fetch the free imagery providers")
    parser.add_argument("--timeout", type=float, default=60.0, help="Overall deadline in seconds")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    return parser


def print_report(report: MeasurementReport) -> None:
    m = report.measurement
    print(f"\n=== ROOF MEASUREMENT (tier {report.tiered.tier_used}: {report.tiered.tier_name}) ===")
    print(f"Expected accuracy: {report.accuracy_range}")
    print(f"Footprint:  {m.footprint_area_sqft:,.0f} sq ft")
    print(f"Roof area:  {m.adjusted_area_sqft:,.0f} sq ft ({m.squares:.1f} squares)")
    print(f"Pitch:      {m.pitch_degrees:.1f}° (x{m.pitch_multiplier:.3f})")
    print(f"Segments:   {m.segment_count} ({m.complexity.value})")
    if m.warning:
        print(f"Note:       {m.warning}")

    if report.tiered.higher_tier_failures:
        print("\nSkipped tiers:")
        for failure in report.tiered.higher_tier_failures:
            print(f"  {failure.tier}. {failure.tier_name}: {failure.reason}")
    if report.tiered.fallbacks_available:
        print(f"Fallbacks: {', '.join(report.tiered.fallbacks_available)}")

    print(f"\nValidation: {report.validation.overall_validation.value}")
    for warning in report.validation.warnings:
        print(f"  ! {warning}")

    if report.accuracy is not None and report.accuracy.issues:
        print(f"\nAccuracy: {report.accuracy.overall_score:.0f}/100, next step {report.accuracy.recommended_action.value}")
        for reason in report.accuracy.reasons:
            print(f"  - {reason}")

    if report.imagery is not None:
        print(f"\nImagery sources: {len(report.imagery.sources)}")
        for flag in report.imagery.quality_flags:
            print(f"  - {flag}")

    print()
    print(report.explain())


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = build_parser().parse_args(argv)

    calibrator = SelfLearningCalibrator(SQLiteCorrectionStore(args.store))
    assembler = ReportAssembler(
        TieredResolver.from_environment(),
        calibrator=calibrator,
        imagery=get_imagery_manager() if args.imagery else None,
    )
    options = MeasurementOptions(
        address=args.address,
        region_key=args.region,
        deadline=Deadline.after(args.timeout),
    )

    report = assembler.assemble(args.lat, args.lng, options)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print_report(report)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
