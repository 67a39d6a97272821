"""
Assertion helpers shared by the test modules
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np
import tomli_w
import uproot

from trackcuts.modules.histograms import Histogram1D


def assert_arrays_close(
    actual: np.ndarray,
    expected: np.ndarray,
    rtol: float = 1e-7,
    atol: float = 0.0,
    msg: str | None = None,
) -> None:
    """
    Assert that two numpy arrays are element-wise close.

    Args:
        actual: Actual array from test
        expected: Expected array
        rtol: Relative tolerance
        atol: Absolute tolerance
        msg: Optional error message
    """
    error_msg = msg or f"Arrays not close:\nActual: {actual}\nExpected: {expected}"
    np.testing.assert_allclose(actual, expected, rtol=rtol, atol=atol, err_msg=error_msg)


def assert_file_exists(file_path: str | Path) -> None:
    path = Path(file_path)
    assert path.exists(), f"File does not exist: {path}"
    assert path.is_file(), f"Path is not a file: {path}"


def assert_raises_with_message(
    exception_type: type, message_substring: str, callable_obj: callable, *args: Any, **kwargs: Any
) -> None:
    """
    Assert that a callable raises an exception with a specific message.

    Args:
        exception_type: Expected exception type
        message_substring: Substring expected in exception message
        callable_obj: Callable to execute
    """
    try:
        callable_obj(*args, **kwargs)
    except exception_type as e:
        assert message_substring in str(
            e
        ), f"Expected substring '{message_substring}' not found in error message: {str(e)}"
        return
    raise AssertionError(f"Expected {exception_type.__name__} was not raised")


def root_keys(file_path: str | Path) -> set:
    """All object paths in a ROOT file, without cycle numbers"""
    with uproot.open(file_path) as f:
        return {key.split(";")[0] for key in f.keys(recursive=True)}


def make_hist(name: str, values, bins: int = 10, low: float = 0.0, high: float = 10.0) -> Histogram1D:
    """Histogram1D filled with the given values"""
    hist = Histogram1D(name, bins, low, high)
    hist.fill(values)
    return hist


def write_config_dir(config_dir: Path, tables: dict) -> Path:
    """Write one TOML file per top-level key of tables into config_dir"""
    config_dir.mkdir(parents=True, exist_ok=True)
    for name, content in tables.items():
        with open(config_dir / f"{name}.toml", "wb") as f:
            tomli_w.dump(content, f)
    return config_dir

