#!/usr/bin/env python3
"""
Screenshot Change Forensics
Command entry point: re-compare a saved record or print its summary.
"""

import argparse
import logging
import sys
from typing import List, Optional

from core.errors import SchemaValidationError
from core.models import BeforeAfterResult
from core.recompare import recompare_record
from core.record_store import RecordStore
from core.visual_diff import ComparisonOptions, ComparisonSummary, summarize

logger = logging.getLogger('screendiff')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='screendiff',
        description='Compare before/after screenshots recorded in a data file',
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    commands = parser.add_subparsers(dest='command', required=True)

    compare = commands.add_parser('compare', help='Re-compare all before/after pairs of a record')
    compare.add_argument('record', help='Path to the data file (.jsonc)')
    compare.add_argument('--threshold', type=float, help='Per-pixel colour tolerance, 0-1')
    compare.add_argument('--min-change', type=float, dest='min_change_threshold',
                         help='Percentage of changed pixels that counts as significant')
    compare.add_argument('--no-diff-images', action='store_false', dest='generate_diff_image', default=None,
                         help='Do not write diff images')
    compare.add_argument('--ignore-antialiasing', action='store_true', default=None,
                         help='Leave anti-aliased pixels out of the count')

    summary = commands.add_parser('summary', help='Show the comparison summary of a record')
    summary.add_argument('record', help='Path to the data file (.jsonc)')
    return parser


def log_summary(summary: ComparisonSummary) -> None:
    logger.info(f"Images compared: {summary.total_images}")
    logger.info(f"Changed: {summary.changed_images}, unchanged: {summary.unchanged_images}")
    logger.info(f"Average change: {summary.average_change_percentage}%, max: {summary.max_change_percentage}%")
    for level, count in summary.change_level_counts.items():
        if count:
            logger.info(f"  {level.value}: {count}")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(levelname)s %(name)s: %(message)s',
    )

    try:
        if args.command == 'compare':
            options = ComparisonOptions.from_env().with_overrides(
                threshold=args.threshold,
                min_change_threshold=args.min_change_threshold,
                generate_diff_image=args.generate_diff_image,
                ignore_antialiasing=args.ignore_antialiasing,
            )
            record = recompare_record(args.record, options)
        else:
            record = RecordStore().load(args.record)
    except (SchemaValidationError, OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1

    verdicts = [r.comparison for r in record.results
                if isinstance(r, BeforeAfterResult) and r.comparison is not None]
    log_summary(summarize(verdicts))
    return 0


if __name__ == '__main__':
    sys.exit(main())
