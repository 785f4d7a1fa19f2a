"""
Wall kernel command line entry point.

    python -m wall_kernel plan.json [--output report.json] [--log-level INFO] [--full]

plan.json holds {"walls": [{"id": ..., "baseline": [[x, y], ...], "thickness": ...}], ...}
with coordinates in millimeters.
"""

import argparse
import json
import sys

import structlog
from pydantic import ValidationError

from .config import KernelConfig, settings
from .logging_config import configure_logging
from .pipeline import FloorPlanInput, PipelineExecutor

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wall_kernel", description="Build wall solids from a floor plan JSON file.")
    parser.add_argument("plan", help="floor plan JSON file")
    parser.add_argument("--output", "-o", help="write the report here instead of stdout")
    parser.add_argument("--log-level", default=settings.log_level, help="log level (default: %(default)s)")
    parser.add_argument("--full", action="store_true", help="include full wall geometry in the report")
    return parser


def main(argv=None) -> int:
    """Main CLI process."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        with open(args.plan, "r", encoding="utf-8") as f:
            plan = FloorPlanInput.model_validate(json.load(f))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.error("Failed to load floor plan", plan=args.plan, error=str(e))
        return 2

    config = KernelConfig.from_settings(settings)
    if plan.document_precision is not None:
        config = config.model_copy(update={"document_precision": plan.document_precision})

    logger.info("Processing floor plan", plan=args.plan, walls=len(plan.walls))
    result = PipelineExecutor(config).process_floor_plan(plan.walls)

    report = result.model_dump(mode="json") if args.full else result.summary()
    text = json.dumps(report, indent=2)
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(text)
        logger.info("Report written", output=args.output, success=result.success)
    else:
        sys.stdout.write(text + "\n")
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
