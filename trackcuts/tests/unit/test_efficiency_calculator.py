"""
Unit tests for ratios, efficiencies and the rejection scan.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from trackcuts.modules.efficiency_calculator import (
    RejectionScan,
    binomial_efficiency,
    divide,
    efficiency,
    threshold_suffix,
    write_efficiency_table,
)
from trackcuts.modules.exceptions import ConfigurationError, HistogramError
from trackcuts.modules.histograms import Histogram1D, Histogram2D

from ..utils.mock_data_generator import FIXED_EXPECTED
from ..utils.test_helpers import assert_arrays_close, make_hist

THRESHOLDS = [0.5, 0.25, 0.1, 0.05, 0.03, 0.02, 0.01]


@pytest.mark.unit
class TestDivide:
    """Bin-by-bin ratios."""

    def test_ratio_values(self) -> None:
        num = make_hist("num", [0.5, 1.5, 1.5], bins=3, high=3.0)
        den = make_hist("den", [0.5, 0.5, 1.5, 1.5, 1.5, 1.5], bins=3, high=3.0)

        ratio = divide(num, den, "hRatio")

        assert ratio.name == "hRatio"
        assert_arrays_close(ratio.counts, [0.5, 0.5, 0.0])

    def test_empty_denominator_gives_zero(self) -> None:
        num = make_hist("num", [2.5], bins=3, high=3.0)
        den = make_hist("den", [0.5], bins=3, high=3.0)

        ratio = divide(num, den, "hRatio")

        assert ratio.counts[2] == 0.0
        assert ratio.errors()[2] == 0.0
        assert np.all(np.isfinite(ratio.counts))

    def test_inputs_untouched(self) -> None:
        num = make_hist("num", [0.5], bins=2, high=2.0)
        den = make_hist("den", [0.5, 0.5], bins=2, high=2.0)
        divide(num, den, "hRatio")

        assert num.counts.tolist() == [1.0, 0.0]
        assert den.counts.tolist() == [2.0, 0.0]

    def test_uncorrelated_errors(self) -> None:
        num = make_hist("num", [0.5] * 4, bins=1, high=1.0)
        den = make_hist("den", [0.5] * 16, bins=1, high=1.0)

        ratio = divide(num, den, "hRatio")

        # r = 1/4, sigma^2 = (4 * 256 + 16 * 16) / 16^4
        assert ratio.errors()[0] == pytest.approx(np.sqrt((4 * 256 + 16 * 16) / 16**4))

    def test_binomial_errors(self) -> None:
        passed = make_hist("passed", [0.5] * 4, bins=1, high=1.0)
        total = make_hist("total", [0.5] * 16, bins=1, high=1.0)

        eff = efficiency(passed, total, "hEff")

        assert eff.counts[0] == pytest.approx(0.25)
        assert eff.errors()[0] == pytest.approx(np.sqrt(0.25 * 0.75 / 16))

    def test_full_efficiency_has_zero_error(self) -> None:
        hist = make_hist("h", [0.5, 0.5], bins=1, high=1.0)

        assert efficiency(hist, hist.clone("total"), "hEff").errors()[0] == pytest.approx(0.0)

    def test_different_binning(self) -> None:
        with pytest.raises(HistogramError, match="binning differs"):
            divide(Histogram1D("a", 10, 0.0, 1.0), Histogram1D("b", 5, 0.0, 1.0), "r")

    def test_1d_by_2d(self) -> None:
        with pytest.raises(HistogramError):
            divide(Histogram1D("a", 2, 0.0, 1.0), Histogram2D("b", 2, 0.0, 1.0, 2, 0.0, 1.0), "r")

    def test_2d_ratio(self) -> None:
        num = Histogram2D("n", 2, 0.0, 2.0, 2, 0.0, 2.0)
        den = Histogram2D("d", 2, 0.0, 2.0, 2, 0.0, 2.0)
        num.fill([0.5], [0.5])
        den.fill([0.5, 0.5, 1.5], [0.5, 0.5, 1.5])

        assert divide(num, den, "r").counts.tolist() == [[0.5, 0.0], [0.0, 0.0]]


@pytest.mark.unit
class TestBinomialEfficiency:

    def test_value_and_error(self) -> None:
        eff, err = binomial_efficiency(30, 40)

        assert eff == pytest.approx(0.75)
        assert err == pytest.approx(np.sqrt(0.75 * 0.25 / 40))

    def test_no_total(self) -> None:
        assert binomial_efficiency(0, 0) == (0.0, 0.0)


@pytest.mark.unit
class TestThresholdSuffix:

    @pytest.mark.parametrize("threshold, suffix", [
        (0.5, "_dPt50"), (0.25, "_dPt25"), (0.1, "_dPt10"), (0.05, "_dPt05"),
        (0.03, "_dPt03"), (0.02, "_dPt02"), (0.01, "_dPt01"),
    ])
    def test_suffix(self, threshold, suffix) -> None:
        assert threshold_suffix(threshold) == suffix


@pytest.mark.unit
class TestRejectionScan:
    """Normal/weird counts per delta-pt/pt threshold."""

    # delta-pt/pt and pt fraction of the good tracks of the fixed sample
    DELTA = [0.005, 0.04, 0.15, 0.015, 0.2]
    FRAC = [1.0, 0.8, 3.0, 0.1, 5.0 / 5.5]

    def test_fixed_sample(self) -> None:
        scan = RejectionScan(THRESHOLDS, (0.2, 1.2))
        scan.update(self.DELTA, self.FRAC)

        assert scan.n_normal.tolist() == FIXED_EXPECTED["n_normal"]
        assert scan.n_weird.tolist() == FIXED_EXPECTED["n_weird"]
        assert_arrays_close(scan.rejection(), FIXED_EXPECTED["rejection"])

    def test_rejection_grows_as_cut_loosens(self) -> None:
        # one weird track at small delta-pt/pt, normal tracks spread to larger values
        scan = RejectionScan(THRESHOLDS)
        scan.update([0.005, 0.005, 0.05, 0.2, 0.4], [3.0, 1.0, 1.0, 1.0, 1.0])

        loosening = scan.rejection()[np.argsort(scan.thresholds)]
        assert np.all(np.diff(loosening) >= 0)
        assert loosening.tolist() == [1.0, 1.0, 1.0, 1.0, 2.0, 3.0, 4.0]
        assert scan.decreasing_thresholds() == []

    def test_decreasing_rejection_is_reported(self, caplog) -> None:
        scan = RejectionScan(THRESHOLDS)
        scan.update(self.DELTA, self.FRAC)

        assert scan.decreasing_thresholds() == [0.25]
        with caplog.at_level(logging.WARNING, logger="TrackCutStudy.Efficiency"):
            scan.log_summary()
        assert "Rejection decreases" in caplog.text

    def test_chunked_updates_match_single_update(self) -> None:
        single = RejectionScan(THRESHOLDS)
        single.update(self.DELTA, self.FRAC)
        chunked = RejectionScan(THRESHOLDS)
        chunked.update(self.DELTA[:2], self.FRAC[:2])
        chunked.update(self.DELTA[2:], self.FRAC[2:])

        assert chunked.n_normal.tolist() == single.n_normal.tolist()
        assert chunked.n_weird.tolist() == single.n_weird.tolist()

    def test_counts_shrink_with_tighter_threshold(self) -> None:
        rng = np.random.default_rng(11)
        scan = RejectionScan(THRESHOLDS)
        scan.update(rng.exponential(0.05, 5000), rng.normal(1.0, 0.4, 5000))

        # thresholds are listed loosest first
        assert np.all(np.diff(scan.n_normal) <= 0)
        assert np.all(np.diff(scan.n_weird) <= 0)

    def test_threshold_is_strict(self) -> None:
        scan = RejectionScan([0.1])
        scan.update([0.1, 0.0999], [1.0, 1.0])

        assert scan.n_normal.tolist() == [1]

    def test_nan_fraction_is_weird(self) -> None:
        scan = RejectionScan([0.5])
        scan.update([0.01], [np.nan])

        assert scan.n_weird.tolist() == [1]
        assert scan.rejection().tolist() == [0.0]

    def test_dataframe(self) -> None:
        scan = RejectionScan(THRESHOLDS)
        scan.update(self.DELTA, self.FRAC)
        table = scan.to_dataframe()

        assert list(table.columns) == ["threshold", "suffix", "n_normal", "n_weird", "rejection"]
        assert table["suffix"].iloc[0] == "_dPt50"
        assert set(scan.to_arrays()) == {"threshold", "n_normal", "n_weird", "rejection"}

    def test_shape_mismatch(self) -> None:
        with pytest.raises(HistogramError):
            RejectionScan(THRESHOLDS).update([0.1, 0.2], [1.0])

    @pytest.mark.parametrize("thresholds, normal_range", [
        ([], (0.2, 1.2)),
        ([0.1], (1.2, 0.2)),
    ])
    def test_invalid_setup(self, thresholds, normal_range) -> None:
        with pytest.raises(ConfigurationError):
            RejectionScan(thresholds, normal_range)


@pytest.mark.unit
class TestEfficiencyTable:

    def test_write_csv_and_markdown(self, tmp_test_dir: Path) -> None:
        table = pd.DataFrame({"quantity": ["good / all"], "fraction": [0.5]})

        paths = write_efficiency_table(table, tmp_test_dir / "tables", "summary")

        assert [p.name for p in paths] == ["summary.csv", "summary.md"]
        assert pd.read_csv(paths[0])["fraction"].tolist() == [0.5]
        assert "good / all" in paths[1].read_text()
