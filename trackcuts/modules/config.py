"""
TOML configuration for the track cut study

Every parameter of the study (file names, tuple names, cut thresholds,
binning, plot text) lives in a small set of TOML files in one config
directory:

- io.toml:       input/output files, tuple names, reader chunk size
- cuts.toml:     track quality cuts, weird-track pt fraction window,
                 delta-pt/pt thresholds, truth selection
- binning.toml:  per-variable binning overrides
- plotting.toml: plot style, info text, ratio comparison jobs

Usage:
    config = StudyConfig("trackcuts/config")
    cuts = config.get_track_cuts()
    low, high = config.get_weird_range()
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import tomli

from .exceptions import ConfigurationError

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

CONFIG_FILES = ("io", "cuts", "binning", "plotting")


class StudyConfig:
    """
    Load and manage all TOML configuration files

    Attributes:
        config_dir: Directory the TOML files were read from
        io: Parsed io.toml
        cuts: Parsed cuts.toml
        binning: Parsed binning.toml
        plotting: Parsed plotting.toml
    """

    def __init__(self, config_dir: Optional[str] = None):
        self.config_dir = Path(config_dir) if config_dir is not None else DEFAULT_CONFIG_DIR
        self.logger = logging.getLogger("TrackCutStudy.StudyConfig")

        if not self.config_dir.is_dir():
            raise ConfigurationError(
                f"Configuration directory not found: {self.config_dir}"
            )

        self.io = self._load_toml("io.toml")
        self.cuts = self._load_toml("cuts.toml")
        self.binning = self._load_toml("binning.toml")
        self.plotting = self._load_toml("plotting.toml")

        self._validate()
        self.logger.debug(f"Loaded configuration from {self.config_dir}")

    def _load_toml(self, filename: str) -> dict:
        """
        Load TOML configuration file with proper error handling

        Args:
            filename: Name of the TOML file to load

        Returns:
            dict: Parsed TOML configuration

        Raises:
            ConfigurationError: If file not found or parsing fails
        """
        config_path = self.config_dir / filename
        try:
            with open(config_path, 'rb') as f:
                return tomli.load(f)
        except FileNotFoundError:
            raise ConfigurationError(
                f"Configuration file not found: {config_path}\n"
                f"Please ensure all config files are present in {self.config_dir}"
            )
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(
                f"Error parsing TOML file {config_path}: {e}"
            )

    def _validate(self) -> None:
        """Check the sections every study needs"""
        for section in ("inputs", "tuples", "output"):
            if section not in self.io:
                raise ConfigurationError(
                    f"Missing required section [{section}] in {self.config_dir / 'io.toml'}"
                )

        low, high = self.get_weird_range()
        if low >= high:
            raise ConfigurationError(
                f"Weird-track pt fraction window is empty: ({low}, {high})"
            )

        thresholds = self.get_delta_pt_thresholds()
        if not thresholds:
            raise ConfigurationError("[delta_pt] thresholds must not be empty")
        if any(t <= 0 for t in thresholds):
            raise ConfigurationError(
                f"[delta_pt] thresholds must be positive, got {thresholds}"
            )

    # ------------------------------------------------------------------
    # io.toml
    # ------------------------------------------------------------------

    def get_input(self, key: str) -> Optional[str]:
        """Input file path for 'embed_only_file' or 'pileup_file' (None if unset)"""
        value = self.io["inputs"].get(key)
        return value or None

    def get_tuple_name(self, key: str) -> str:
        """Tuple name for 'track', 'truth' or 'pileup' (the <key>_tuple entry)"""
        try:
            return self.io["tuples"][f"{key}_tuple"]
        except KeyError:
            raise ConfigurationError(f"Missing tuple name '{key}_tuple' in [tuples] of io.toml")

    def get_output(self, key: str) -> str:
        """Output path for 'root_file', 'plots_dir' or 'tables_dir'"""
        try:
            return self.io["output"][key]
        except KeyError:
            raise ConfigurationError(f"Missing output entry '{key}' in [output] of io.toml")

    def get_tuple_check(self) -> Dict[str, Any]:
        """[tuple_check] list files and output of the tuple checker"""
        return self.io.get("tuple_check", {})

    @property
    def step_size(self) -> int:
        return int(self.io.get("reader", {}).get("step_size", 100_000))

    # ------------------------------------------------------------------
    # cuts.toml
    # ------------------------------------------------------------------

    def get_track_cuts(self) -> Dict[str, Dict[str, Any]]:
        """
        Get track quality cut definitions

        Returns: {cut_name: {branch, type, value | min/max, absolute, enabled, label}}
        """
        return self.cuts.get("track_cuts", {})

    def get_weird_range(self) -> Tuple[float, float]:
        """Returns (min, max) of the normal reco/truth pt fraction window"""
        weird = self.cuts.get("weird", {})
        return (float(weird.get("pt_frac_min", 0.2)), float(weird.get("pt_frac_max", 1.2)))

    def get_delta_pt_thresholds(self) -> List[float]:
        """Maximum delta-pt/pt values scanned by the rejection study"""
        return [float(t) for t in self.cuts.get("delta_pt", {}).get("thresholds", [])]

    @property
    def require_primary(self) -> bool:
        return bool(self.cuts.get("truth", {}).get("require_primary", True))

    # ------------------------------------------------------------------
    # binning.toml / plotting.toml
    # ------------------------------------------------------------------

    def get_binning(self, key: str) -> Optional[Tuple[int, float, float]]:
        """
        Get binning override for a histogram variable

        Args:
            key: Variable key, e.g. 'Pt', 'DcaXY' or 'truth.PtFrac'

        Returns:
            (bins, low, high) or None when the variable is not overridden
        """
        table: Any = self.binning.get("variables", {})
        for part in key.split("."):
            if not isinstance(table, dict) or part not in table:
                return None
            table = table[part]

        try:
            bins, low, high = int(table["bins"]), float(table["low"]), float(table["high"])
        except KeyError as e:
            raise ConfigurationError(f"Incomplete binning for '{key}': missing {e}")
        if bins <= 0 or low >= high:
            raise ConfigurationError(f"Invalid binning for '{key}': {bins} bins in [{low}, {high})")
        return bins, low, high

    def get_plot_style(self) -> Dict[str, Any]:
        return self.plotting.get("style", {})

    def get_ratio_jobs(self) -> Dict[str, Dict[str, Any]]:
        """Ratio comparison job definitions keyed by job name"""
        return self.plotting.get("ratio_comparison", {})
