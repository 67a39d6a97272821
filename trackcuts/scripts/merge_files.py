#!/usr/bin/env python3
"""
Merge the evaluator tuples of many files into one

Files are selected with a glob pattern; the matched paths are written to a
list file (sorted) before merging.

Usage:
  trackcuts-merge "input/embed_only/*.root" output/merged.root [--list-file FILE] [-v]
"""

from __future__ import annotations

import argparse
import glob
import logging
import sys

from trackcuts.modules.config import StudyConfig
from trackcuts.modules.exceptions import DataLoadError, TrackStudyError
from trackcuts.modules.tuple_checker import write_file_list
from trackcuts.modules.tuple_reader import merge_tuple_files
from trackcuts.utils.logging_config import setup_logging, suppress_warnings


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Merge evaluator tuples")
    parser.add_argument("pattern", help="Glob pattern of the input files")
    parser.add_argument("output", help="Merged ROOT file")
    parser.add_argument("--list-file", default=None, help="Write the matched files to this list")
    parser.add_argument("--config-dir", default=None,
                        help="Directory with io/cuts/binning/plotting.toml (default: packaged config)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    suppress_warnings()
    logger = logging.getLogger("TrackCutStudy.merge_files")

    try:
        config = StudyConfig(args.config_dir)
        inputs = sorted(glob.glob(args.pattern))
        if not inputs:
            raise DataLoadError(f"No files match '{args.pattern}'")
        if args.list_file:
            write_file_list(inputs, args.list_file)

        print("\n" + "=" * 80)
        print(f"MERGING {len(inputs)} FILES")
        print("=" * 80)
        counts = merge_tuple_files(
            inputs, args.output,
            tuple_names=(config.get_tuple_name("track"), config.get_tuple_name("truth")),
            step_size=config.step_size,
        )
    except TrackStudyError as e:
        logger.error(str(e))
        sys.exit(1)

    for name, n in counts.items():
        print(f"  {name}: {n} entries")
    return 0


if __name__ == "__main__":
    sys.exit(main())
