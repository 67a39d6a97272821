"""
Global pytest fixtures for the track cut study test suite.

Provides temporary directories, TOML configurations written with tomli_w and
mock evaluator files written with uproot.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import pytest

from trackcuts.modules.config import StudyConfig
from trackcuts.modules.cut_selector import TrackSelector

from .utils.mock_data_generator import (
    create_mock_track_file,
    generate_track_tuple,
    generate_truth_tuple,
)
from .utils.test_helpers import write_config_dir

# Default track quality cuts, as in the packaged cuts.toml
DEFAULT_TRACK_CUTS: Dict[str, Dict[str, Any]] = {
    "vz": {"branch": "vz", "type": "less", "value": 10.0, "absolute": True},
    "intt_hits": {"branch": "nintt", "type": "greater_equal", "value": 1},
    "mvtx_layers": {"branch": "nlmaps", "type": "greater", "value": 2},
    "tpc_hits": {"branch": "ntpc", "type": "greater", "value": 35},
    "pt": {"branch": "pt", "type": "greater", "value": 0.1},
    "quality": {"branch": "quality", "type": "less", "value": 10.0},
    "dca_xy": {"branch": "dca3dxy", "type": "range", "min": -0.05, "max": 0.05, "enabled": False},
}

DELTA_PT_THRESHOLDS = [0.5, 0.25, 0.1, 0.05, 0.03, 0.02, 0.01]


@pytest.fixture
def tmp_test_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test operations.

    Automatically cleaned up after test completion.
    """
    tmp_dir = Path(tempfile.mkdtemp(prefix="trackcuts_test_"))
    try:
        yield tmp_dir
    finally:
        if tmp_dir.exists():
            shutil.rmtree(tmp_dir)


@pytest.fixture
def fixed_track_file(tmp_test_dir: Path) -> Path:
    """Evaluator file holding the fixed sample (8 tracks, 6 truth particles)"""
    return create_mock_track_file(tmp_test_dir / "input" / "fixed_g4svtxeval.root")


@pytest.fixture
def random_track_file(tmp_test_dir: Path) -> Path:
    """Evaluator file with 2000 random tracks and 1500 truth particles"""
    return create_mock_track_file(
        tmp_test_dir / "input" / "random_g4svtxeval.root",
        tracks=generate_track_tuple(2000, seed=7),
        truth=generate_truth_tuple(1500, seed=8),
    )


@pytest.fixture
def config_tables(tmp_test_dir: Path, fixed_track_file: Path) -> Dict[str, Dict[str, Any]]:
    """
    Contents of a complete, valid configuration pointing into tmp_test_dir.

    Coarse binning keeps the 2D histograms small.
    """
    output = tmp_test_dir / "output"
    coarse = {"bins": 100}
    return {
        "io": {
            "inputs": {"embed_only_file": str(fixed_track_file), "pileup_file": ""},
            "tuples": {"track_tuple": "ntp_track", "truth_tuple": "ntp_gtrack", "pileup_tuple": "ntp_track"},
            "output": {
                "root_file": str(output / "trackCutStudy.root"),
                "delta_pt_file": str(output / "deltaPtCutStudy.root"),
                "plots_dir": str(output / "plots"),
                "tables_dir": str(output / "tables"),
            },
            "reader": {"step_size": 3},
            "tuple_check": {
                "list_file": str(tmp_test_dir / "input" / "files.list"),
                "good_list": str(output / "good.list"),
                "bad_list": str(output / "bad.list"),
                "output_file": str(output / "checkingTrackTuples.root"),
                "merge_tuples": False,
            },
        },
        "cuts": {
            "track_cuts": DEFAULT_TRACK_CUTS,
            "weird": {"pt_frac_min": 0.2, "pt_frac_max": 1.2},
            "delta_pt": {"thresholds": DELTA_PT_THRESHOLDS},
            "truth": {"require_primary": True},
        },
        "binning": {
            "variables": {
                "DcaXY": {**coarse, "low": -5.0, "high": 5.0},
                "DcaZ": {**coarse, "low": -20.0, "high": 20.0},
                "EtaFrac": {**coarse, "low": 0.0, "high": 10.0},
                "PhiFrac": {**coarse, "low": 0.0, "high": 10.0},
                "PtFrac": {**coarse, "low": 0.0, "high": 10.0},
                "EtaDiff": {**coarse, "low": -5.0, "high": 5.0},
                "PhiDiff": {**coarse, "low": -5.0, "high": 5.0},
                "PtDiff": {**coarse, "low": -50.0, "high": 50.0},
                "extractor": {
                    "Pt2D": {"bins": 50, "low": 0.0, "high": 50.0},
                    "PtFrac2D": {"bins": 50, "low": 0.0, "high": 10.0},
                    "DeltaPt2D": {"bins": 50, "low": 0.0, "high": 5.0},
                },
            },
        },
        "plotting": {
            "style": {
                "mplhep_style": "ROOT",
                "formats": ["png"],
                "info": ["Simulation", "test sample"],
                "log_y": True,
                "pt_range": [0.0, 30.0],
            },
            "ratio_comparison": {},
        },
    }


@pytest.fixture
def config_dir(tmp_test_dir: Path, config_tables: Dict[str, Dict[str, Any]]) -> Path:
    """Temporary config directory with all four TOML files"""
    return write_config_dir(tmp_test_dir / "config", config_tables)


@pytest.fixture
def study_config(config_dir: Path) -> StudyConfig:
    return StudyConfig(str(config_dir))


@pytest.fixture
def default_selector() -> TrackSelector:
    """Selector with the default cuts (dca_xy disabled)"""
    return TrackSelector.from_config(StudyConfig())
