#!/usr/bin/env python3
"""
Sort a list of evaluator files into good and bad files

Usage:
  trackcuts-check-tuples [--config-dir DIR] [--list-file FILE] [--merge] [-v]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from trackcuts.modules.config import StudyConfig
from trackcuts.modules.exceptions import TrackStudyError
from trackcuts.modules.tuple_checker import TupleChecker
from trackcuts.utils.logging_config import setup_logging, suppress_warnings


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Check evaluator files for the track and truth tuples")
    parser.add_argument("--config-dir", default=None,
                        help="Directory with io/cuts/binning/plotting.toml (default: packaged config)")
    parser.add_argument("--list-file", default=None, help="List of ROOT files (overrides io.toml)")
    parser.add_argument("--output", default=None, help="Output ROOT file of the pt spectra (overrides io.toml)")
    parser.add_argument("--merge", default=None, metavar="FILE",
                        help="Merge the good tuples into FILE")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    suppress_warnings()
    logger = logging.getLogger("TrackCutStudy.check_tuples")

    try:
        checker = TupleChecker.from_config(StudyConfig(args.config_dir))
        if args.list_file:
            checker.list_file = Path(args.list_file)
        if args.output:
            checker.output_file = Path(args.output)
        if args.merge:
            checker.merged_file = Path(args.merge)

        print("\n" + "=" * 80)
        print("CHECKING TRACK TUPLES")
        print("=" * 80)
        result = checker.run()
    except TrackStudyError as e:
        logger.error(str(e))
        sys.exit(1)

    print(f"  good files: {result['good']}")
    print(f"  bad files:  {result['bad']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
