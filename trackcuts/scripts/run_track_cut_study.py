#!/usr/bin/env python3
"""
Run the track cut study on the embed-only (and optional with-pileup) tuples

Fills before/after-cut histograms of tracks, truth matches, weird tracks and
pileup tracks, derives the tracking efficiency, and writes the histogram file,
plots and cut-flow tables.

Usage:
  trackcuts-study [--config-dir DIR] [--embed-only FILE] [--pileup FILE]
                  [--output FILE] [--no-plots] [--disable-cut NAME ...] [-v]
"""

from __future__ import annotations

import argparse
import logging
import sys

from trackcuts.modules.config import StudyConfig
from trackcuts.modules.exceptions import TrackStudyError
from trackcuts.modules.track_cut_study import TrackCutStudy
from trackcuts.utils.logging_config import setup_logging, suppress_warnings


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Track quality cut study")
    parser.add_argument("--config-dir", default=None,
                        help="Directory with io/cuts/binning/plotting.toml (default: packaged config)")
    parser.add_argument("--embed-only", default=None, help="Embed-only evaluator file (overrides io.toml)")
    parser.add_argument("--pileup", default=None, help="With-pileup evaluator file (overrides io.toml)")
    parser.add_argument("--output", default=None, help="Output ROOT file (overrides io.toml)")
    parser.add_argument("--plots-dir", default=None, help="Plot directory (overrides io.toml)")
    parser.add_argument("--no-plots", action="store_true", help="Skip plotting")
    parser.add_argument("--disable-cut", action="append", default=[], metavar="NAME",
                        help="Disable a cut from cuts.toml (repeatable)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    suppress_warnings()
    logger = logging.getLogger("TrackCutStudy.run")

    try:
        config = StudyConfig(args.config_dir)
        study = TrackCutStudy.from_config(config)

        if args.embed_only or args.pileup or args.output:
            study.set_input_output_files(
                args.embed_only or study.embed_only_file,
                args.pileup or study.pileup_file,
                args.output or study.output_file,
            )
        if args.plots_dir:
            study.set_output_dirs(args.plots_dir, study.tables_dir)
        if args.disable_cut:
            study.set_selector(study.selector.with_disabled(*args.disable_cut))
        study.make_plots = not args.no_plots

        print("\n" + "=" * 80)
        print("TRACK CUT STUDY")
        print("=" * 80)
        for line in study.selector.describe():
            print(f"  cut: {line}")

        counts = study.run()
    except TrackStudyError as e:
        logger.error(str(e))
        sys.exit(1)

    print("\n" + "=" * 80)
    print("SUMMARY")
    print("=" * 80)
    for key, value in counts.items():
        print(f"  {key:<12} {value}")
    print(study.cut_flow().to_string(index=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
