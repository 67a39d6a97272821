"""
Ratio, efficiency and rejection-factor calculations

- divide():        bin-by-bin numerator / denominator of two histograms
- efficiency():    passed / total with binomial errors
- RejectionScan:   normal / weird track counts per delta-pt/pt threshold
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import ConfigurationError, HistogramError
from .histograms import Histogram1D, Histogram2D

logger = logging.getLogger("TrackCutStudy.Efficiency")

Histogram = Union[Histogram1D, Histogram2D]


def divide(numerator: Histogram, denominator: Histogram, name: str,
           binomial: bool = False) -> Histogram:
    """
    Bin-by-bin ratio of two histograms with the same binning

    Bins with an empty denominator are set to 0 (value and error).

    Errors:
    - uncorrelated: σ² = (σ_n² d² + σ_d² n²) / d⁴
    - binomial (numerator is a subset of the denominator):
      σ² = |((1 - 2r) σ_n² + r² σ_d²) / d²|, r = n / d

    Args:
        numerator: Numerator histogram
        denominator: Denominator histogram
        name: Name of the ratio histogram
        binomial: Use binomial instead of uncorrelated errors

    Returns:
        New histogram holding the ratio (sumw2 holds the squared errors)

    Raises:
        HistogramError: If the binnings differ
    """
    if not numerator.same_binning(denominator):
        raise HistogramError(
            f"Cannot divide '{numerator.name}' by '{denominator.name}': binning differs"
        )

    n, d = numerator.counts, denominator.counts
    e2_n, e2_d = numerator.sumw2, denominator.sumw2
    filled = d != 0

    ratio = np.zeros_like(n)
    np.divide(n, d, out=ratio, where=filled)

    err2 = np.zeros_like(n)
    if binomial:
        np.divide(np.abs((1.0 - 2.0 * ratio) * e2_n + ratio**2 * e2_d), d**2, out=err2, where=filled)
    else:
        np.divide(e2_n * d**2 + e2_d * n**2, d**4, out=err2, where=filled)

    result = numerator.clone(name)
    result.reset()
    result.counts = ratio
    result.sumw2 = err2
    result.entries = numerator.entries
    return result


def efficiency(passed: Histogram, total: Histogram, name: str) -> Histogram:
    """
    Efficiency histogram passed / total with binomial errors

    Earlier versions of the study divided with uncorrelated errors, which
    overestimate the error of an efficiency; divide(passed, total, name)
    with binomial=False reproduces those numbers.
    """
    result = divide(passed, total, name, binomial=True)
    result.y_label = r"$\epsilon_{trk}$"
    return result


def binomial_efficiency(n_pass: int, n_total: int) -> Tuple[float, float]:
    """
    Single efficiency value with its binomial error

    For large N: σ_eff ≈ sqrt(eff × (1-eff) / N)
    """
    if n_total <= 0:
        return 0.0, 0.0
    eff = n_pass / n_total
    return eff, float(np.sqrt(eff * (1.0 - eff) / n_total))


def threshold_suffix(threshold: float) -> str:
    """Histogram name suffix of a delta-pt/pt threshold, e.g. 0.05 -> '_dPt05'"""
    return f"_dPt{int(round(threshold * 100)):02d}"


class RejectionScan:
    """
    Count normal and weird tracks passing each delta-pt/pt threshold

    A track passes threshold t when delta_pt_frac < t. It is normal when
    low < pt_frac < high and weird otherwise (including a NaN fraction).
    Rejection factor = n_normal / n_weird per threshold, 0 without weird tracks.

    Attributes:
        thresholds: Maximum delta-pt/pt values
        normal_range: (low, high) of the normal reco/truth pt fraction
    """

    def __init__(self, thresholds: Sequence[float], normal_range: Tuple[float, float] = (0.2, 1.2)):
        if len(thresholds) == 0:
            raise ConfigurationError("Rejection scan needs at least one threshold")
        low, high = normal_range
        if low >= high:
            raise ConfigurationError(f"Normal pt fraction range is empty: ({low}, {high})")

        self.thresholds = np.asarray(thresholds, dtype=np.float64)
        self.normal_range = (float(low), float(high))
        self.n_normal = np.zeros(len(self.thresholds), dtype=np.int64)
        self.n_weird = np.zeros(len(self.thresholds), dtype=np.int64)

    def update(self, delta_pt_frac, pt_frac) -> None:
        """
        Add a batch of tracks to the counters

        Args:
            delta_pt_frac: delta-pt / pt per track
            pt_frac: reco pt / truth pt per track
        """
        dpt = np.atleast_1d(np.asarray(delta_pt_frac, dtype=np.float64))
        frac = np.atleast_1d(np.asarray(pt_frac, dtype=np.float64))
        if dpt.shape != frac.shape:
            raise HistogramError(
                f"Rejection scan update with {len(dpt)} delta-pt and {len(frac)} pt fraction values"
            )

        low, high = self.normal_range
        normal = (frac > low) & (frac < high)
        for i, threshold in enumerate(self.thresholds):
            passing = dpt < threshold
            self.n_normal[i] += int(np.sum(passing & normal))
            self.n_weird[i] += int(np.sum(passing & ~normal))

    def rejection(self) -> np.ndarray:
        result = np.zeros(len(self.thresholds))
        np.divide(self.n_normal, self.n_weird, out=result, where=self.n_weird != 0)
        return result

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({
            "threshold": self.thresholds,
            "suffix": [threshold_suffix(t) for t in self.thresholds],
            "n_normal": self.n_normal,
            "n_weird": self.n_weird,
            "rejection": self.rejection(),
        })

    def to_arrays(self) -> Dict[str, np.ndarray]:
        """Columns for a small output TTree"""
        return {
            "threshold": self.thresholds.copy(),
            "n_normal": self.n_normal.copy(),
            "n_weird": self.n_weird.copy(),
            "rejection": self.rejection(),
        }

    def decreasing_thresholds(self) -> List[float]:
        """
        Thresholds at which the rejection drops below the one of the next
        tighter threshold

        The ratio is not monotone by construction: loosening the cut can add
        weird tracks faster than normal ones.
        """
        order = np.argsort(self.thresholds)
        rejection = self.rejection()[order]
        thresholds = self.thresholds[order]
        return [float(t) for t, prev, cur in zip(thresholds[1:], rejection[:-1], rejection[1:]) if cur < prev]

    def log_summary(self) -> None:
        for t, n_norm, n_weird, rej in zip(self.thresholds, self.n_normal, self.n_weird, self.rejection()):
            logger.info(f"  delta-pt/pt < {t:<5g}: normal = {n_norm}, weird = {n_weird}, rejection = {rej:.3f}")
        decreasing = self.decreasing_thresholds()
        if decreasing:
            logger.warning(f"Rejection decreases as the delta-pt/pt cut is loosened to {decreasing}")


def write_efficiency_table(table: pd.DataFrame, output_dir: Union[str, Path], stem: str) -> List[Path]:
    """
    Save a summary table as CSV and markdown

    Args:
        table: DataFrame to save
        output_dir: Directory for the tables (created if needed)
        stem: File name without extension

    Returns:
        Paths of the written files
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    csv_path = output_dir / f"{stem}.csv"
    md_path = output_dir / f"{stem}.md"
    table.to_csv(csv_path, index=False)
    table.to_markdown(md_path, index=False)

    logger.info(f"Saved table: {csv_path}")
    return [csv_path, md_path]
