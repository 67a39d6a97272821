#!/usr/bin/env python3
"""
Scan maximum delta-pt/pt cuts and report the rejection of weird tracks

Usage:
  trackcuts-delta-pt [--config-dir DIR] [--input FILE] [--output FILE]
                     [--thresholds 0.5,0.1,0.05] [--no-plots] [-v]
"""

from __future__ import annotations

import argparse
import logging
import sys

from trackcuts.modules.config import StudyConfig
from trackcuts.modules.delta_pt_extractor import DeltaPtExtractor
from trackcuts.modules.exceptions import ConfigurationError, TrackStudyError
from trackcuts.utils.logging_config import setup_logging, suppress_warnings


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Delta-pt/pt cut scan with rejection factors")
    parser.add_argument("--config-dir", default=None,
                        help="Directory with io/cuts/binning/plotting.toml (default: packaged config)")
    parser.add_argument("--input", default=None, help="Evaluator file (overrides io.toml embed_only_file)")
    parser.add_argument("--output", default=None, help="Output ROOT file (overrides io.toml delta_pt_file)")
    parser.add_argument("--thresholds", default=None,
                        help="Comma-separated delta-pt/pt thresholds (overrides cuts.toml)")
    parser.add_argument("--no-plots", action="store_true", help="Skip plotting")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)
    suppress_warnings()
    logger = logging.getLogger("TrackCutStudy.delta_pt")

    try:
        config = StudyConfig(args.config_dir)
        if args.thresholds:
            try:
                thresholds = [float(t) for t in args.thresholds.split(",")]
            except ValueError:
                raise ConfigurationError(f"Invalid --thresholds '{args.thresholds}'")
            if any(t <= 0 for t in thresholds):
                raise ConfigurationError(f"Thresholds must be positive, got {thresholds}")
            config.cuts.setdefault("delta_pt", {})["thresholds"] = thresholds

        extractor = DeltaPtExtractor.from_config(config)
        if args.input or args.output:
            extractor.set_input_output_files(args.input or extractor.input_file,
                                             args.output or extractor.output_file)
        extractor.make_plots = not args.no_plots

        print("\n" + "=" * 80)
        print("DELTA-PT CUT SCAN")
        print("=" * 80)
        extractor.run()
    except TrackStudyError as e:
        logger.error(str(e))
        sys.exit(1)

    print("\n" + "=" * 80)
    print("REJECTION FACTORS")
    print("=" * 80)
    print(extractor.scan.to_dataframe().to_string(index=False))
    return 0


if __name__ == "__main__":
    sys.exit(main())
