"""
Unit tests for writing and reading histogram files.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
import uproot

from trackcuts.modules.efficiency_calculator import efficiency
from trackcuts.modules.exceptions import DataLoadError, HistogramError, HistogramMissingError
from trackcuts.modules.histogram_io import read_histogram, read_histograms, write_histograms
from trackcuts.modules.histograms import Histogram1D, Histogram2D, HistogramBook

from ..utils.mock_data_generator import create_mock_histogram_file, create_mock_track_file
from ..utils.test_helpers import assert_arrays_close, make_hist, root_keys


@pytest.fixture
def book() -> HistogramBook:
    book = HistogramBook()
    book.book_1d("hPt_Track", 10, 0.0, 10.0, directory="Track").fill([0.5, 1.5, 1.5, 12.0])
    book.book_2d("hPtVsQuality_CutTrack", 4, 0.0, 4.0, 5, 0.0, 5.0,
                 directory="CutTrack").fill([0.5, 3.5], [1.5, 4.5])
    book.book_1d("hEfficiency", 2, 0.0, 2.0).fill([0.5])
    return book


@pytest.mark.unit
class TestWriteHistograms:

    def test_directories_and_names(self, tmp_test_dir: Path, book: HistogramBook) -> None:
        path = write_histograms(tmp_test_dir / "out" / "study.root", book)

        keys = root_keys(path)
        assert {"Track", "Track/hPt_Track", "CutTrack/hPtVsQuality_CutTrack", "hEfficiency"} <= keys

    def test_extra_trees(self, tmp_test_dir: Path, book: HistogramBook) -> None:
        path = write_histograms(tmp_test_dir / "study.root", book,
                                extra_trees={"Reject": {"threshold": np.array([0.5, 0.1]),
                                                        "rejection": np.array([1.5, 2.0])}})

        with uproot.open(path) as f:
            assert f["Reject"].num_entries == 2
            assert f["Reject"]["rejection"].array(library="np").tolist() == [1.5, 2.0]

    def test_summary_tables_are_ttrees(self, tmp_test_dir: Path, book: HistogramBook) -> None:
        path = write_histograms(tmp_test_dir / "study.root", book,
                                extra_trees={"Reject": {"rejection": np.array([1.5, 2.0])},
                                             "Counts": {"n_tracks": np.array([8], dtype=np.int64)}})

        with uproot.open(path) as f:
            assert f["Reject"].classname == "TTree"
            assert f["Counts"].classname == "TTree"
            assert f["Counts"]["n_tracks"].array(library="np").tolist() == [8]


@pytest.mark.unit
class TestReadHistogram:

    def test_write_then_read_1d(self, tmp_test_dir: Path, book: HistogramBook) -> None:
        path = write_histograms(tmp_test_dir / "study.root", book)

        hist = read_histogram(path, "Track/hPt_Track")

        assert isinstance(hist, Histogram1D)
        assert hist.name == "hPt_Track"
        assert hist.counts.tolist() == book.get("hPt_Track", "Track").counts.tolist()
        assert hist.edges.tolist() == book.get("hPt_Track", "Track").edges.tolist()
        assert hist.overflow == 1.0
        assert hist.underflow == 0.0
        assert hist.entries == 4

    def test_read_2d_with_new_name(self, tmp_test_dir: Path, book: HistogramBook) -> None:
        path = write_histograms(tmp_test_dir / "study.root", book)

        hist = read_histogram(path, "CutTrack/hPtVsQuality_CutTrack", name="h2")

        assert isinstance(hist, Histogram2D)
        assert hist.name == "h2"
        assert hist.shape == (4, 5)
        assert hist.counts[0, 1] == 1.0
        assert hist.counts[3, 4] == 1.0

    def test_2d_errors_and_outside_entries(self, tmp_test_dir: Path) -> None:
        book = HistogramBook()
        hist = book.book_2d("hDcaVsPt", 3, 0.0, 3.0, 2, 0.0, 2.0)
        hist.fill([0.5, 0.5, 2.5, 7.0], [0.5, 0.5, 1.5, 0.5])
        hist.scale(0.5)
        path = write_histograms(tmp_test_dir / "study.root", book)

        read = read_histogram(path, "hDcaVsPt")

        assert_arrays_close(read.counts, hist.counts)
        assert_arrays_close(read.errors(), hist.errors())
        assert read.outside == pytest.approx(hist.outside)
        assert read.entries == 4

    def test_efficiency_errors_survive(self, tmp_test_dir: Path) -> None:
        passed = make_hist("hPassed", [0.5] * 90 + [1.5], bins=2, low=0.0, high=2.0)
        total = make_hist("hTotal", [0.5] * 100 + [1.5] * 4, bins=2, low=0.0, high=2.0)
        eff = efficiency(passed, total, "hEff")
        book = HistogramBook()
        book.add(eff)
        path = write_histograms(tmp_test_dir / "eff.root", book)

        read = read_histogram(path, "hEff")

        assert_arrays_close(read.counts, [0.9, 0.25])
        assert_arrays_close(read.errors(), [0.03, np.sqrt(0.046875)])
        assert read.entries == 91

    def test_read_many(self, tmp_test_dir: Path, book: HistogramBook) -> None:
        path = write_histograms(tmp_test_dir / "study.root", book)

        hists = read_histograms(path, {"a": "Track/hPt_Track", "b": "hEfficiency"})

        assert sorted(hists) == ["a", "b"]
        assert hists["b"].integral() == 1.0

    def test_missing_histogram(self, tmp_test_dir: Path, book: HistogramBook) -> None:
        path = write_histograms(tmp_test_dir / "study.root", book)

        with pytest.raises(HistogramMissingError, match="Track/hNope"):
            read_histogram(path, "Track/hNope")

    def test_missing_file(self, tmp_test_dir: Path) -> None:
        with pytest.raises(DataLoadError, match="not found"):
            read_histogram(tmp_test_dir / "nope.root", "h")

    def test_truncated_file(self, tmp_test_dir: Path, book: HistogramBook) -> None:
        path = write_histograms(tmp_test_dir / "study.root", book)
        data = path.read_bytes()
        path.write_bytes(data[:256])

        with pytest.raises(DataLoadError):
            read_histogram(path, "Track/hPt_Track")

    def test_not_a_histogram(self, fixed_track_file: Path) -> None:
        with pytest.raises(HistogramError, match="not a 1D or 2D histogram"):
            read_histogram(fixed_track_file, "ntp_track")

    def test_foreign_histogram(self, tmp_test_dir: Path) -> None:
        path = create_mock_histogram_file(
            tmp_test_dir / "foreign.root",
            {"hDcaXY": (np.array([1.0, 4.0, 1.0]), np.array([-1.0, -0.5, 0.5, 1.0]))},
        )

        hist = read_histogram(path, "hDcaXY")

        assert hist.counts.tolist() == [1.0, 4.0, 1.0]
        assert hist.widths().tolist() == [0.5, 1.0, 0.5]
