"""
Scan maximum delta-pt/pt cuts on good tracks

For tracks passing the quality cuts the extractor fills pt, pt-fraction and
delta-pt/pt histograms, repeats them for every delta-pt/pt threshold (suffix
_dPt50, _dPt25, ...), counts normal and weird tracks per threshold for the
rejection factor, and divides the matched truth pt by the primary truth pt
spectrum for the tracking efficiency.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import awkward as ak
import numpy as np

from .config import StudyConfig
from .cut_selector import TrackSelector
from .efficiency_calculator import RejectionScan, efficiency, threshold_suffix, write_efficiency_table
from .exceptions import BranchMissingError, ConfigurationError
from .histogram_io import write_histograms
from .histograms import HistogramBook
from .plotter import TrackStudyPlotter
from .tuple_reader import TupleReader, compute_derived_branches

# Default binning: (bins, low, high)
DEFAULT_BINNING: Dict[str, Tuple[int, float, float]] = {
    "Pt": (500, 0.0, 50.0),
    "PtFrac": (1000, 0.0, 10.0),
    "DeltaPt": (5000, 0.0, 5.0),
    # coarser axes of the 2D histograms
    "Pt2D": (500, 0.0, 50.0),
    "PtFrac2D": (500, 0.0, 10.0),
    "DeltaPt2D": (500, 0.0, 5.0),
}

LABELS = {
    "PtTrue": r"$p_{T}^{true}$ [GeV/c]",
    "PtReco": r"$p_{T}^{reco}$ [GeV/c]",
    "PtFrac": r"$p_{T}^{reco} / p_{T}^{true}$",
    "DeltaPt": r"$\Delta p_{T} / p_{T}^{reco}$",
}


def _column(tracks: ak.Array, name: str) -> np.ndarray:
    if name not in tracks.fields:
        raise BranchMissingError(name, "required by the delta-pt extractor")
    return ak.to_numpy(tracks[name]).astype(np.float64)


class DeltaPtExtractor:
    """
    Delta-pt/pt cut scan with rejection factors and efficiencies

    Attributes:
        selector: Track quality cuts
        scan: Normal/weird counters per threshold
        book: All histograms, written flat to the output file
    """

    def __init__(self, selector: TrackSelector, thresholds: Sequence[float],
                 normal_range: Tuple[float, float] = (0.2, 1.2),
                 binning: Optional[Dict[str, Tuple[int, float, float]]] = None,
                 require_primary: bool = True, step_size: int = 100_000):
        self.logger = logging.getLogger("TrackCutStudy.DeltaPtExtractor")
        self.selector = selector
        self.thresholds = [float(t) for t in thresholds]
        self.normal_range = normal_range
        self.binning = dict(DEFAULT_BINNING)
        self.binning.update(binning or {})
        self.require_primary = require_primary
        self.step_size = step_size

        suffixes = [threshold_suffix(t) for t in self.thresholds]
        if len(set(suffixes)) != len(suffixes):
            raise ConfigurationError(f"Delta-pt thresholds give duplicate histogram suffixes: {suffixes}")
        self.suffixes = suffixes

        self.input_file: Optional[Path] = None
        self.output_file: Optional[Path] = None
        self.track_tuple = "ntp_track"
        self.truth_tuple = "ntp_gtrack"
        self.plots_dir: Optional[Path] = None
        self.tables_dir: Optional[Path] = None
        self.plot_style: Dict = {}
        self.make_plots = True

        self.scan = RejectionScan(self.thresholds, normal_range)
        self.book: Optional[HistogramBook] = None
        self._reader: Optional[TupleReader] = None

    @classmethod
    def from_config(cls, config: StudyConfig) -> "DeltaPtExtractor":
        binning = {}
        for key in DEFAULT_BINNING:
            override = config.get_binning(f"extractor.{key}")
            if override is not None:
                binning[key] = override

        extractor = cls(
            TrackSelector.from_config(config),
            config.get_delta_pt_thresholds(),
            normal_range=config.get_weird_range(),
            binning=binning,
            require_primary=config.require_primary,
            step_size=config.step_size,
        )
        extractor.set_input_output_files(config.get_input("embed_only_file"), config.get_output("delta_pt_file"))
        extractor.set_input_tuples(config.get_tuple_name("track"), config.get_tuple_name("truth"))
        extractor.set_output_dirs(config.get_output("plots_dir"), config.get_output("tables_dir"))
        extractor.plot_style = config.get_plot_style()
        return extractor

    def set_input_output_files(self, input_file: Union[str, Path], output_file: Union[str, Path]) -> None:
        self.input_file = Path(input_file) if input_file else None
        self.output_file = Path(output_file)

    def set_input_tuples(self, track_tuple: str, truth_tuple: str) -> None:
        self.track_tuple = track_tuple
        self.truth_tuple = truth_tuple

    def set_output_dirs(self, plots_dir: Optional[Union[str, Path]],
                        tables_dir: Optional[Union[str, Path]]) -> None:
        self.plots_dir = Path(plots_dir) if plots_dir else None
        self.tables_dir = Path(tables_dir) if tables_dir else None

    # ------------------------------------------------------------------

    def init(self) -> None:
        """Open the input tuples and book the histograms"""
        if self.input_file is None or self.output_file is None:
            raise ConfigurationError("Input and output files must be set before init()")

        self._reader = TupleReader(self.input_file)
        self._reader.tree(self.track_tuple)
        self._reader.tree(self.truth_tuple)

        self.book = HistogramBook()
        self.book.book_1d("hPtTrue", *self.binning["Pt"], x_label=LABELS["PtTrue"])
        for suffix in [""] + self.suffixes:
            self._book_set(suffix)
        self.scan = RejectionScan(self.thresholds, self.normal_range)
        self.logger.info(f"Booked {len(self.book)} histograms for {len(self.thresholds)} delta-pt cuts")

    def _book_set(self, suffix: str) -> None:
        pt, frac, delta = self.binning["Pt"], self.binning["PtFrac"], self.binning["DeltaPt"]
        pt2, frac2, delta2 = self.binning["Pt2D"], self.binning["PtFrac2D"], self.binning["DeltaPt2D"]

        self.book.book_1d(f"hPtReco{suffix}", *pt, x_label=LABELS["PtReco"])
        self.book.book_1d(f"hPtFrac{suffix}", *frac, x_label=LABELS["PtFrac"])
        self.book.book_1d(f"hDeltaPt{suffix}", *delta, x_label=LABELS["DeltaPt"])
        self.book.book_1d(f"hPtTrkTruth{suffix}", *pt, x_label=LABELS["PtTrue"])
        self.book.book_2d(f"hDeltaPtVsPtFrac{suffix}", *frac2, *delta2,
                          x_label=LABELS["PtFrac"], y_label=LABELS["DeltaPt"])
        self.book.book_2d(f"hDeltaPtVsPtTrue{suffix}", *pt2, *delta2,
                          x_label=LABELS["PtTrue"], y_label=LABELS["DeltaPt"])
        self.book.book_2d(f"hDeltaPtVsPtReco{suffix}", *pt2, *delta2,
                          x_label=LABELS["PtReco"], y_label=LABELS["DeltaPt"])
        self.book.book_2d(f"hPtTrueVsPtReco{suffix}", *pt2, *pt2,
                          x_label=LABELS["PtReco"], y_label=LABELS["PtTrue"])

    def _fill_set(self, suffix: str, pt: np.ndarray, gpt: np.ndarray, frac: np.ndarray,
                  delta: np.ndarray, matched: np.ndarray) -> None:
        """Fill one histogram set; matched selects the tracks entering the efficiency numerator"""
        self.book.fill_1d(f"hPtReco{suffix}", pt)
        self.book.fill_1d(f"hPtFrac{suffix}", frac)
        self.book.fill_1d(f"hDeltaPt{suffix}", delta)
        self.book.fill_1d(f"hPtTrkTruth{suffix}", gpt[matched])
        self.book.fill_2d(f"hDeltaPtVsPtFrac{suffix}", frac, delta)
        self.book.fill_2d(f"hDeltaPtVsPtTrue{suffix}", gpt, delta)
        self.book.fill_2d(f"hDeltaPtVsPtReco{suffix}", pt, delta)
        self.book.fill_2d(f"hPtTrueVsPtReco{suffix}", pt, gpt)

    def analyze(self) -> Dict[str, int]:
        """
        Track loop over good tracks, then truth loop over primary particles

        Returns:
            {'tracks': all tracks, 'good': good tracks, 'truth': filled truth particles}
        """
        if self.book is None:
            raise ConfigurationError("init() must be called before analyze()")

        counts = {"tracks": 0, "good": 0, "truth": 0}
        for chunk in self._reader.iterate(self.track_tuple, step_size=self.step_size):
            tracks = compute_derived_branches(chunk)
            good = self.selector.good_track_mask(tracks)
            counts["tracks"] += len(tracks)
            counts["good"] += int(np.sum(good))

            pt = _column(tracks, "pt")[good]
            gpt = _column(tracks, "gpt")[good]
            frac = _column(tracks, "pt_frac")[good]
            delta = _column(tracks, "delta_pt_frac")[good]
            matched = np.ones(len(pt), dtype=bool)
            if self.require_primary:
                matched = _column(tracks, "gprimary")[good] == 1

            self._fill_set("", pt, gpt, frac, delta, matched)
            for threshold, suffix in zip(self.thresholds, self.suffixes):
                passing = delta < threshold
                self._fill_set(suffix, pt[passing], gpt[passing], frac[passing],
                               delta[passing], matched[passing])
            self.scan.update(delta, frac)

        branches = ["gpt", "gprimary"] if self.require_primary else ["gpt"]
        for chunk in self._reader.iterate(self.truth_tuple, branches=branches, step_size=self.step_size):
            gpt = _column(chunk, "gpt")
            if self.require_primary:
                gpt = gpt[_column(chunk, "gprimary") == 1]
            self.book.fill_1d("hPtTrue", gpt)
            counts["truth"] += len(gpt)

        self.logger.info(f"Finished tuple loops: {counts['good']}/{counts['tracks']} good tracks, "
                         f"{counts['truth']} truth particles. Calculated rejection factors:")
        self.scan.log_summary()
        return counts

    def end(self) -> Dict[str, np.ndarray]:
        """
        Efficiencies, output file, rejection table and plots

        Returns:
            Rejection scan columns (threshold, n_normal, n_weird, rejection)
        """
        if self.book is None:
            raise ConfigurationError("init() and analyze() must be called before end()")

        truth = self.book.get("hPtTrue")
        self.book.add(efficiency(self.book.get("hPtTrkTruth"), truth, "hEfficiency"))
        for suffix in self.suffixes:
            self.book.add(efficiency(self.book.get(f"hPtTrkTruth{suffix}"), truth, f"hEfficiency{suffix}"))

        rejection = self.scan.to_arrays()
        write_histograms(self.output_file, self.book, extra_trees={"Reject": rejection})

        if self.tables_dir is not None:
            write_efficiency_table(self.scan.to_dataframe(), self.tables_dir, "delta_pt_rejection")

        if self.make_plots and self.plots_dir is not None:
            self._make_plots()

        self.close()
        self.logger.info(f"Delta-pt study finished, output in {self.output_file}")
        return rejection

    def _make_plots(self) -> None:
        style = self.plot_style
        plotter = TrackStudyPlotter(
            self.plots_dir,
            style=style.get("mplhep_style", "ROOT"),
            formats=style.get("formats", ["pdf"]),
            info_lines=style.get("info", []),
        )
        pt_range = tuple(style["pt_range"]) if "pt_range" in style else None
        frac_range = tuple(style["frac_range"]) if "frac_range" in style else None
        delta_range = tuple(style["delta_range"]) if "delta_range" in style else None
        cut_labels = [rf"$\Delta p_{{T}} / p_{{T}} < {t:g}$" for t in self.thresholds]

        plotter.plot_efficiency(
            [self.book.get("hEfficiency")] + [self.book.get(f"hEfficiency{s}") for s in self.suffixes],
            ["tracks (w/ cuts)"] + cut_labels, "delta_pt_efficiency",
            spectra=[self.book.get("hPtTrue"), self.book.get("hPtTrkTruth")],
            spectra_labels=["truth", "tracks (w/ cuts)"], x_range=pt_range,
        )
        plotter.plot_overlay(
            [self.book.get("hDeltaPt")] + [self.book.get(f"hDeltaPt{s}") for s in self.suffixes],
            ["tracks (w/ cuts)"] + cut_labels, "delta_pt_distribution", log_y=True, x_range=delta_range,
        )
        plotter.plot_overlay(
            [self.book.get("hPtFrac")] + [self.book.get(f"hPtFrac{s}") for s in self.suffixes],
            ["tracks (w/ cuts)"] + cut_labels, "delta_pt_pt_fraction", log_y=True, x_range=frac_range,
        )
        plotter.plot_2d(self.book.get("hPtTrueVsPtReco"), "delta_pt_true_vs_reco_before",
                        x_range=pt_range, y_range=pt_range)
        tightest = self.suffixes[int(np.argmin(self.thresholds))]
        plotter.plot_2d(self.book.get(f"hPtTrueVsPtReco{tightest}"), "delta_pt_true_vs_reco_after",
                        x_range=pt_range, y_range=pt_range)
        plotter.plot_rejection(self.scan.to_dataframe(), "delta_pt_rejection")

    def close(self) -> None:
        """Close the input file; safe to call more than once"""
        if self._reader is not None:
            self._reader.close()
            self._reader = None

    def run(self) -> Dict[str, np.ndarray]:
        """init -> analyze -> end, closing the input on failure"""
        try:
            self.init()
            self.analyze()
            return self.end()
        finally:
            self.close()
