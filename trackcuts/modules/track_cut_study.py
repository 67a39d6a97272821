"""
Study the impact of track quality cuts on the evaluator track tuple

Lifecycle:
    study = TrackCutStudy()
    study.set_input_output_files("embed_only.root", "with_pileup.root", "out.root")
    study.set_input_tuples("ntp_track", "ntp_track")
    study.set_weird_fraction_cuts(0.2, 1.2)
    study.init()      # open tuples, book histograms
    study.analyze()   # one sequential pass per tuple, fill histograms
    study.end()       # efficiency, plots, tables, output file

Histograms are grouped by record type, before cuts ('Track') and after cuts
('CutTrack'), and named h<Variable>_<Type>, e.g. CutWeird/hDcaXY_CutWeird:

- Track:  reconstructed quantities of the embed-only tracks
- Truth:  truth-particle quantities of the same tracks (fractions, differences)
- Weird:  reconstructed quantities of tracks with reco/truth pt outside the normal window
- Pileup: reconstructed quantities of the with-pileup tracks (only with a pileup file)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import awkward as ak
import numpy as np
import pandas as pd

from .config import StudyConfig
from .cut_selector import TrackSelector, weird_mask
from .efficiency_calculator import binomial_efficiency, efficiency, write_efficiency_table
from .exceptions import BranchMissingError, ConfigurationError
from .histogram_io import write_histograms
from .histograms import TRACK_VS, TRUTH_VS, HistogramBook, Variable, build_variables
from .plotter import TrackStudyPlotter
from .tuple_reader import TupleReader, compute_derived_branches

RECORD_TYPES = ("Track", "Truth", "Weird", "Pileup")

EFFICIENCY_DIR = "Efficiency"


def _column(tracks: ak.Array, name: str) -> np.ndarray:
    if name not in tracks.fields:
        raise BranchMissingError(name, "required by the track cut study histograms")
    return ak.to_numpy(tracks[name]).astype(np.float64)


class TrackCutStudy:
    """
    Fill before/after-cut histograms of tracks, truth matches, weird tracks
    and pileup tracks, and derive the tracking efficiency

    Attributes:
        selector: Track quality cuts ("good" tracks pass all enabled cuts)
        weird_range: (min, max) of the normal reco/truth pt fraction
        counts: Running track counters filled by analyze()
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger("TrackCutStudy.TrackCutStudy")

        # i/o
        self.embed_only_file: Optional[Path] = None
        self.pileup_file: Optional[Path] = None
        self.output_file: Optional[Path] = None
        self.embed_only_tuple = "ntp_track"
        self.pileup_tuple = "ntp_track"
        self.truth_tuple: Optional[str] = "ntp_gtrack"
        self.plots_dir: Optional[Path] = None
        self.tables_dir: Optional[Path] = None
        self.step_size = 100_000

        # calculation parameters
        self.weird_range: Tuple[float, float] = (0.2, 1.2)
        self.selector = TrackSelector([])
        self.require_primary = True
        self.track_variables: Dict[str, Variable] = build_variables("track")
        self.truth_variables: Dict[str, Variable] = build_variables("truth")

        # plot options
        self.plot_style: Dict = {}
        self.make_plots = True

        self.book: Optional[HistogramBook] = None
        self.counts: Dict[str, int] = {}
        self._readers: Dict[str, TupleReader] = {}
        self._cut_flow: Optional[pd.DataFrame] = None

    @classmethod
    def from_config(cls, config: StudyConfig) -> "TrackCutStudy":
        """Set up a study from the TOML configuration"""
        study = cls()
        study.set_input_output_files(
            config.get_input("embed_only_file"),
            config.get_input("pileup_file"),
            config.get_output("root_file"),
        )
        study.set_input_tuples(config.get_tuple_name("track"), config.get_tuple_name("pileup"))
        study.set_truth_tuple(config.get_tuple_name("truth"))
        study.set_weird_fraction_cuts(*config.get_weird_range())
        study.set_selector(TrackSelector.from_config(config))
        study.set_output_dirs(config.get_output("plots_dir"), config.get_output("tables_dir"))
        study.step_size = config.step_size
        study.require_primary = config.require_primary
        study.track_variables = build_variables("track", config)
        study.truth_variables = build_variables("truth", config)
        study.plot_style = config.get_plot_style()
        return study

    # ------------------------------------------------------------------
    # setters
    # ------------------------------------------------------------------

    def set_input_output_files(self, embed_only: Union[str, Path], pileup: Optional[Union[str, Path]],
                               output: Union[str, Path]) -> None:
        self.embed_only_file = Path(embed_only) if embed_only else None
        self.pileup_file = Path(pileup) if pileup else None
        self.output_file = Path(output)

    def set_input_tuples(self, embed_only_tuple: str, pileup_tuple: Optional[str] = None) -> None:
        self.embed_only_tuple = embed_only_tuple
        if pileup_tuple:
            self.pileup_tuple = pileup_tuple

    def set_truth_tuple(self, truth_tuple: Optional[str]) -> None:
        """Tuple of truth particles for the efficiency (None skips the efficiency)"""
        self.truth_tuple = truth_tuple

    def set_weird_fraction_cuts(self, low: float, high: float) -> None:
        if low >= high:
            raise ConfigurationError(f"Weird-track pt fraction window is empty: ({low}, {high})")
        self.weird_range = (float(low), float(high))

    def set_selector(self, selector: TrackSelector) -> None:
        self.selector = selector

    def set_output_dirs(self, plots_dir: Optional[Union[str, Path]],
                        tables_dir: Optional[Union[str, Path]]) -> None:
        self.plots_dir = Path(plots_dir) if plots_dir else None
        self.tables_dir = Path(tables_dir) if tables_dir else None

    # ------------------------------------------------------------------
    # init
    # ------------------------------------------------------------------

    def init(self) -> None:
        """
        Open the input tuples and book all histograms

        Raises:
            ConfigurationError: If no embed-only input or output file is set
            DataLoadError: If an input file cannot be opened
            TupleMissingError: If a tuple is missing from its file
        """
        if self.embed_only_file is None or self.output_file is None:
            raise ConfigurationError("Embed-only input and output files must be set before init()")

        self._readers["embed_only"] = TupleReader(self.embed_only_file)
        self._readers["embed_only"].tree(self.embed_only_tuple)
        if self.truth_tuple:
            self._readers["embed_only"].tree(self.truth_tuple)
        if self.pileup_file is not None:
            self._readers["pileup"] = TupleReader(self.pileup_file)
            self._readers["pileup"].tree(self.pileup_tuple)
        self.logger.info(f"Opened inputs: embed-only = {self.embed_only_file}, "
                         f"pileup = {self.pileup_file or 'none'}")

        self.book = HistogramBook()
        self._book_record_type("Track", self.track_variables, TRACK_VS)
        self._book_record_type("Truth", self.truth_variables, TRUTH_VS)
        self._book_record_type("Weird", self.track_variables, [])
        if self.pileup_file is not None:
            self._book_record_type("Pileup", self.track_variables, TRACK_VS)

        pt_true = self.truth_variables["Pt"]
        self.book.book_variable(pt_true, "hPtTruth", EFFICIENCY_DIR)
        self.book.book_variable(pt_true, "hPtTrkTruth", EFFICIENCY_DIR)

        self.counts = {"tracks": 0, "good": 0, "weird": 0, "good_weird": 0,
                       "pileup": 0, "good_pileup": 0, "truth": 0}
        self._cut_flow = None
        self.logger.info(f"Booked {len(self.book)} histograms")

    def _book_record_type(self, record_type: str, variables: Dict[str, Variable],
                          pairs: Sequence[Tuple[str, str]]) -> None:
        for prefix in (record_type, f"Cut{record_type}"):
            for key, var in variables.items():
                self.book.book_variable(var, f"h{key}_{prefix}", prefix)
            for y_key, x_key in pairs:
                self.book.book_variable_2d(variables[y_key], variables[x_key],
                                           f"h{y_key}Vs{x_key}_{prefix}", prefix)

    # ------------------------------------------------------------------
    # analyze
    # ------------------------------------------------------------------

    def analyze(self) -> None:
        """Single sequential pass over every input tuple"""
        if self.book is None:
            raise ConfigurationError("init() must be called before analyze()")

        reader = self._readers["embed_only"]
        self.logger.info(f"Processing {reader.num_entries(self.embed_only_tuple)} embed-only tracks...")
        for chunk in reader.iterate(self.embed_only_tuple, step_size=self.step_size):
            self._process_embed_only(compute_derived_branches(chunk))

        if "pileup" in self._readers:
            reader = self._readers["pileup"]
            self.logger.info(f"Processing {reader.num_entries(self.pileup_tuple)} with-pileup tracks...")
            for chunk in reader.iterate(self.pileup_tuple, step_size=self.step_size):
                self._process_pileup(compute_derived_branches(chunk))

        if self.truth_tuple:
            reader = self._readers["embed_only"]
            branches = ["gpt", "gprimary"] if self.require_primary else ["gpt"]
            for chunk in reader.iterate(self.truth_tuple, branches=branches, step_size=self.step_size):
                pt = _column(chunk, "gpt")
                if self.require_primary:
                    pt = pt[_column(chunk, "gprimary") == 1]
                self.book.fill_1d("hPtTruth", pt, EFFICIENCY_DIR)
                self.counts["truth"] += len(pt)

        self.logger.info(
            f"Tracks: {self.counts['tracks']} total, {self.counts['good']} good, "
            f"{self.counts['weird']} weird, {self.counts['good_weird']} good weird"
        )

    def _fill(self, prefix: str, tracks: ak.Array, mask: np.ndarray,
              variables: Dict[str, Variable], pairs: Sequence[Tuple[str, str]]) -> None:
        columns = {key: _column(tracks, var.column)[mask] for key, var in variables.items()}
        for key in variables:
            self.book.fill_1d(f"h{key}_{prefix}", columns[key], prefix)
        for y_key, x_key in pairs:
            self.book.fill_2d(f"h{y_key}Vs{x_key}_{prefix}", columns[x_key], columns[y_key], prefix)

    def _process_embed_only(self, tracks: ak.Array) -> None:
        n = len(tracks)
        if n == 0:
            return
        everything = np.ones(n, dtype=bool)
        good = self.selector.good_track_mask(tracks)
        weird = weird_mask(_column(tracks, "pt_frac"), *self.weird_range)

        self._fill("Track", tracks, everything, self.track_variables, TRACK_VS)
        self._fill("CutTrack", tracks, good, self.track_variables, TRACK_VS)
        self._fill("Truth", tracks, everything, self.truth_variables, TRUTH_VS)
        self._fill("CutTruth", tracks, good, self.truth_variables, TRUTH_VS)
        self._fill("Weird", tracks, weird, self.track_variables, [])
        self._fill("CutWeird", tracks, good & weird, self.track_variables, [])

        matched = good
        if self.require_primary:
            matched = good & (_column(tracks, "gprimary") == 1)
        self.book.fill_1d("hPtTrkTruth", _column(tracks, "gpt")[matched], EFFICIENCY_DIR)

        self.counts["tracks"] += n
        self.counts["good"] += int(np.sum(good))
        self.counts["weird"] += int(np.sum(weird))
        self.counts["good_weird"] += int(np.sum(good & weird))

        flow = self.selector.cut_flow(tracks)[["cut", "label", "n_pass", "n_cumulative"]]
        if self._cut_flow is None:
            self._cut_flow = flow
        else:
            self._cut_flow[["n_pass", "n_cumulative"]] += flow[["n_pass", "n_cumulative"]].values

    def _process_pileup(self, tracks: ak.Array) -> None:
        n = len(tracks)
        if n == 0:
            return
        good = self.selector.good_track_mask(tracks)
        self._fill("Pileup", tracks, np.ones(n, dtype=bool), self.track_variables, TRACK_VS)
        self._fill("CutPileup", tracks, good, self.track_variables, TRACK_VS)
        self.counts["pileup"] += n
        self.counts["good_pileup"] += int(np.sum(good))

    # ------------------------------------------------------------------
    # end
    # ------------------------------------------------------------------

    def cut_flow(self) -> pd.DataFrame:
        """Cut flow of the embed-only tracks accumulated by analyze()"""
        if self._cut_flow is None:
            cuts = self.selector.enabled_cuts
            return pd.DataFrame({
                "cut": ["all"] + [cut.name for cut in cuts],
                "label": ["no cuts"] + [cut.describe() for cut in cuts],
                "n_pass": 0,
                "n_cumulative": 0,
                "eff_individual": 0.0,
                "eff_cumulative": 0.0,
            })
        table = self._cut_flow.copy()
        n_total = self.counts["tracks"]
        table["eff_individual"] = table["n_pass"] / n_total if n_total else 0.0
        table["eff_cumulative"] = table["n_cumulative"] / n_total if n_total else 0.0
        return table

    def summary(self) -> pd.DataFrame:
        rows = []
        for label, n_pass, n_total in (
            ("good / all tracks", self.counts["good"], self.counts["tracks"]),
            ("weird / all tracks", self.counts["weird"], self.counts["tracks"]),
            ("good weird / good tracks", self.counts["good_weird"], self.counts["good"]),
            ("good / all pileup tracks", self.counts["good_pileup"], self.counts["pileup"]),
        ):
            eff, err = binomial_efficiency(n_pass, n_total)
            rows.append({"quantity": label, "n_pass": n_pass, "n_total": n_total,
                         "fraction": eff, "error": err})
        return pd.DataFrame(rows)

    def end(self) -> Dict[str, int]:
        """
        Derive the efficiency, draw plots, write tables and the output file

        Returns:
            Track counters of the pass
        """
        if self.book is None:
            raise ConfigurationError("init() and analyze() must be called before end()")

        if self.truth_tuple:
            eff = efficiency(self.book.get("hPtTrkTruth", EFFICIENCY_DIR),
                             self.book.get("hPtTruth", EFFICIENCY_DIR), "hEfficiency")
            self.book.add(eff, EFFICIENCY_DIR)

        if self.make_plots and self.plots_dir is not None:
            self._make_plots()

        if self.tables_dir is not None:
            write_efficiency_table(self.cut_flow(), self.tables_dir, "track_cut_flow")
            write_efficiency_table(self.summary(), self.tables_dir, "track_cut_summary")

        counts_tree = {key: np.array([value], dtype=np.int64) for key, value in self.counts.items()}
        write_histograms(self.output_file, self.book, extra_trees={"Counts": counts_tree})

        self.close()
        self.logger.info(f"Track cut study finished, output in {self.output_file}")
        return dict(self.counts)

    def _make_plots(self) -> None:
        style = self.plot_style
        plotter = TrackStudyPlotter(
            self.plots_dir,
            style=style.get("mplhep_style", "ROOT"),
            formats=style.get("formats", ["pdf"]),
            info_lines=style.get("info", []),
        )
        normalize = bool(style.get("normalize_by_integral", False))
        log_y = bool(style.get("log_y", True))
        cut_labels = self.selector.describe()

        types: List[str] = ["Track", "Weird"] + (["Pileup"] if self.pileup_file is not None else [])
        for key in self.track_variables:
            hists, labels = [], []
            for record_type in types:
                for prefix, label in ((record_type, f"{record_type.lower()} (all)"),
                                      (f"Cut{record_type}", f"{record_type.lower()} (w/ cuts)")):
                    hists.append(self.book.get(f"h{key}_{prefix}", prefix))
                    labels.append(label)
            plotter.plot_overlay(hists, labels, f"track_{key}", normalize=normalize, log_y=log_y,
                                 extra_info=cut_labels)

        for key in self.truth_variables:
            hists = [self.book.get(f"h{key}_Truth", "Truth"), self.book.get(f"h{key}_CutTruth", "CutTruth")]
            plotter.plot_overlay(hists, ["truth (all)", "truth (w/ cuts)"], f"truth_{key}",
                                 normalize=normalize, log_y=log_y)

        for prefix, pairs in (("CutTrack", TRACK_VS), ("CutTruth", TRUTH_VS)):
            for y_key, x_key in pairs:
                name = f"h{y_key}Vs{x_key}_{prefix}"
                plotter.plot_2d(self.book.get(name, prefix), name)

        if self.truth_tuple:
            plotter.plot_efficiency(
                [self.book.get("hEfficiency", EFFICIENCY_DIR)], ["tracks (w/ cuts)"], "efficiency",
                spectra=[self.book.get("hPtTruth", EFFICIENCY_DIR), self.book.get("hPtTrkTruth", EFFICIENCY_DIR)],
                spectra_labels=["truth", "tracks (w/ cuts)"],
                x_range=tuple(style["pt_range"]) if "pt_range" in style else None,
            )

    def close(self) -> None:
        """Close all input files"""
        for reader in self._readers.values():
            reader.close()
        self._readers = {}

    def run(self) -> Dict[str, int]:
        """init -> analyze -> end, closing the inputs on failure"""
        try:
            self.init()
            self.analyze()
            return self.end()
        finally:
            self.close()
