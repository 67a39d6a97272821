"""
Logging and Warning Configuration Utilities

Centralized control over log output, warning messages and progress bars
for the track cut study scripts.

Usage:
    from trackcuts.utils.logging_config import setup_logging, suppress_warnings
    setup_logging(verbose=False)
    suppress_warnings()  # Suppress library warnings by default

    # Via environment variables:
    export TRACKCUTS_WARNINGS=on    # Show warnings
    export TRACKCUTS_WARNINGS=off   # Suppress warnings (default)
    export TRACKCUTS_PROGRESS=off   # Hide tqdm progress bars
"""

import logging
import os
import sys
import warnings
from typing import Literal

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False) -> None:
    """
    Configure the root logger once for a script run

    Log records go to stderr so that aborts print their diagnostic there.

    Args:
        verbose: Log at DEBUG level instead of INFO
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    # matplotlib font lookups are noisy at DEBUG
    logging.getLogger("matplotlib").setLevel(logging.WARNING)


def suppress_warnings(level: Literal["off", "error", "default", "all"] = "off") -> None:
    """
    Configure warning levels for the study.

    Args:
        level: Warning level to set
            - 'off': Suppress all warnings (default for scripts)
            - 'error': Turn warnings into errors
            - 'default': Show important warnings but filter common noise
            - 'all': Show everything (useful for debugging)

    Environment variable TRACKCUTS_WARNINGS overrides the level parameter.
    """
    env_level = os.environ.get("TRACKCUTS_WARNINGS", "").lower()
    if env_level in ["on", "yes", "true", "1"]:
        level = "all"
    elif env_level in ["off", "no", "false", "0"]:
        level = "off"
    elif env_level in ["error", "default"]:
        level = env_level

    import numpy as np

    if level == "off":
        warnings.filterwarnings("ignore")
        # 0/0 in ratio histograms is handled explicitly
        np.seterr(all="ignore")

    elif level == "error":
        warnings.filterwarnings("error")
        warnings.filterwarnings("ignore", category=DeprecationWarning)
        warnings.filterwarnings("ignore", category=FutureWarning)

    elif level == "default":
        warnings.filterwarnings("default")
        warnings.filterwarnings("ignore", category=DeprecationWarning)
        warnings.filterwarnings("ignore", message=".*uproot.*")
        warnings.filterwarnings("ignore", message=".*awkward.*")

    elif level == "all":
        warnings.filterwarnings("default")
        np.seterr(all="warn")

    _suppress_library_warnings(level)


def _suppress_library_warnings(level: str) -> None:
    """Suppress known noisy warnings from specific libraries."""
    if level in ["off", "default"]:
        warnings.filterwarnings("ignore", module="awkward.*")
        warnings.filterwarnings("ignore", module="mplhep.*")
        warnings.filterwarnings("ignore", message=".*Matplotlib.*")


def enable_progress_bars() -> bool:
    """
    Check if progress bars should be enabled.

    Returns:
        True if progress bars should be shown, False otherwise.

    Can be controlled via TRACKCUTS_PROGRESS environment variable.
    """
    env_progress = os.environ.get("TRACKCUTS_PROGRESS", "on").lower()
    return env_progress in ["on", "yes", "true", "1"]


def get_tqdm_kwargs(desc: str = "", **kwargs) -> dict:
    """
    Get standard kwargs for tqdm progress bars with consistent styling.

    Args:
        desc: Description for the progress bar
        **kwargs: Additional tqdm parameters

    Returns:
        Dictionary of tqdm parameters
    """
    default_kwargs = {
        "desc": desc,
        "unit": "it",
        "ncols": 80,
        "bar_format": "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]",
        "disable": not enable_progress_bars(),
    }
    default_kwargs.update(kwargs)
    return default_kwargs
