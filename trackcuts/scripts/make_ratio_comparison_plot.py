#!/usr/bin/env python3
"""
Divide and draw histograms of study output files

Jobs are defined in plotting.toml under [ratio_comparison.<job>].

Usage:
  trackcuts-ratio [--config-dir DIR] [--job NAME ...] [--list] [--no-plots] [-v]
"""

from __future__ import annotations

import argparse
import logging
import sys

from trackcuts.modules.config import StudyConfig
from trackcuts.modules.exceptions import TrackStudyError
from trackcuts.modules.ratio_comparison import RatioComparison
from trackcuts.utils.logging_config import setup_logging, suppress_warnings


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Histogram ratio comparison plots")
    parser.add_argument("--config-dir", default=None,
                        help="Directory with io/cuts/binning/plotting.toml (default: packaged config)")
    parser.add_argument("--job", action="append", default=[],
                        help="Job to run (repeatable, default: all jobs)")
    parser.add_argument("--list", action="store_true", help="List the configured jobs and exit")
    parser.add_argument("--no-plots", action="store_true", help="Only write the ratio histograms")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    suppress_warnings()
    logger = logging.getLogger("TrackCutStudy.ratio")

    try:
        config = StudyConfig(args.config_dir)
        jobs = args.job or list(config.get_ratio_jobs())
        if args.list:
            for name in config.get_ratio_jobs():
                print(name)
            return 0

        for name in jobs:
            print("\n" + "=" * 80)
            print(f"RATIO COMPARISON: {name}")
            print("=" * 80)
            RatioComparison.from_config(config, name).run(make_plots=not args.no_plots)
    except TrackStudyError as e:
        logger.error(str(e))
        sys.exit(1)
    return 0


if __name__ == "__main__":
    sys.exit(main())
