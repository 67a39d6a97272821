"""
Compare histograms from study output files with ratio panels

A ratio job names denominator and numerator histograms (file, path in the
file, new name, legend label, optional rebin). Every numerator is divided by
the denominator with the same index, or by the only denominator when just one
is given. Input histograms and ratios are written to the job's output file and
drawn in a two-panel plot.

Example plotting.toml job:
    [ratio_comparison.dca_xy_weird_over_all]
    output_file = "output/dcaXY_weirdOverAll.root"
    plot_name = "dcaXY_weirdOverAll"

    [[ratio_comparison.dca_xy_weird_over_all.denominators]]
    file = "output/trackCutStudy.root"
    hist = "CutTrack/hDcaXY_CutTrack"
    name = "hAllTrackDcaXY"
    label = "all tracks (w/ cuts)"
    rebin = 10
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .config import StudyConfig
from .efficiency_calculator import divide
from .exceptions import ConfigurationError, HistogramError
from .histogram_io import read_histogram, write_histograms
from .histograms import Histogram1D, HistogramBook
from .plotter import TrackStudyPlotter


@dataclass(frozen=True)
class HistogramEntry:
    """One input histogram of a ratio job"""

    file: str
    hist: str
    name: str
    label: str = ""
    rebin: int = 1

    @classmethod
    def from_dict(cls, table: Mapping[str, Any]) -> "HistogramEntry":
        missing = [key for key in ("file", "hist", "name") if key not in table]
        if missing:
            raise ConfigurationError(f"Ratio comparison entry {dict(table)} is missing {missing}")
        rebin = int(table.get("rebin", 1))
        if rebin < 1:
            raise ConfigurationError(f"Rebin factor of '{table['name']}' must be >= 1, got {rebin}")
        return cls(str(table["file"]), str(table["hist"]), str(table["name"]),
                   str(table.get("label", table["name"])), rebin)


@dataclass
class RatioJob:
    """
    Definition of one ratio comparison

    Attributes:
        name: Job name (key in plotting.toml)
        denominators: One entry, or one per numerator
        numerators: Histograms divided by their denominator
        output_file: ROOT file receiving inputs and ratios
        plot_name: Plot file name without extension
        normalize: Scale every input to unit integral before dividing
    """

    name: str
    denominators: List[HistogramEntry]
    numerators: List[HistogramEntry]
    output_file: str
    plot_name: str
    x_label: Optional[str] = None
    y_label: Optional[str] = None
    ratio_label: str = "ratio"
    x_range: Optional[Tuple[float, float]] = None
    normalize: bool = False
    log_y: bool = False
    extra_info: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.numerators or not self.denominators:
            raise ConfigurationError(f"Ratio job '{self.name}' needs at least one numerator and one denominator")
        if len(self.denominators) not in (1, len(self.numerators)):
            raise ConfigurationError(
                f"Ratio job '{self.name}' has {len(self.numerators)} numerators but "
                f"{len(self.denominators)} denominators (expected 1 or {len(self.numerators)})"
            )

    @classmethod
    def from_dict(cls, name: str, table: Mapping[str, Any]) -> "RatioJob":
        x_range = table.get("x_range")
        return cls(
            name=name,
            denominators=[HistogramEntry.from_dict(t) for t in table.get("denominators", [])],
            numerators=[HistogramEntry.from_dict(t) for t in table.get("numerators", [])],
            output_file=table.get("output_file", f"output/{name}.root"),
            plot_name=table.get("plot_name", name),
            x_label=table.get("x_label"),
            y_label=table.get("y_label"),
            ratio_label=table.get("ratio_label", "ratio"),
            x_range=tuple(x_range) if x_range else None,
            normalize=bool(table.get("normalize", False)),
            log_y=bool(table.get("log_y", False)),
            extra_info=list(table.get("info", [])),
        )

    def denominator_index(self, i: int) -> int:
        """Index of the denominator that numerator i is divided by"""
        return 0 if len(self.denominators) == 1 else i


class RatioComparison:
    """Load, divide, write and draw the histograms of one ratio job"""

    def __init__(self, job: RatioJob, plots_dir: Optional[Union[str, Path]] = None,
                 plot_style: Optional[Dict[str, Any]] = None):
        self.logger = logging.getLogger("TrackCutStudy.RatioComparison")
        self.job = job
        self.plots_dir = Path(plots_dir) if plots_dir else None
        self.plot_style = plot_style or {}

        self.numerators: List[Histogram1D] = []
        self.denominators: List[Histogram1D] = []
        self.ratios: List[Histogram1D] = []

    @classmethod
    def from_config(cls, config: StudyConfig, job_name: str) -> "RatioComparison":
        jobs = config.get_ratio_jobs()
        if job_name not in jobs:
            raise ConfigurationError(
                f"Unknown ratio comparison job '{job_name}'. Available: {sorted(jobs)}"
            )
        return cls(RatioJob.from_dict(job_name, jobs[job_name]),
                   plots_dir=config.get_output("plots_dir"),
                   plot_style=config.get_plot_style())

    def _load_entry(self, entry: HistogramEntry) -> Histogram1D:
        hist = read_histogram(entry.file, entry.hist, entry.name)
        if not isinstance(hist, Histogram1D):
            raise HistogramError(f"Ratio comparison needs 1D histograms, '{entry.hist}' in {entry.file} is 2D")
        if entry.rebin > 1:
            hist.rebin(entry.rebin)
        if self.job.normalize:
            hist.normalize()
        return hist

    def load(self) -> None:
        """
        Read every input histogram, aborting on the first missing one

        Raises:
            DataLoadError: If an input file cannot be opened
            HistogramMissingError: If a histogram is not in its file
            HistogramError: On a 2D input or an impossible rebin
        """
        self.denominators = [self._load_entry(e) for e in self.job.denominators]
        self.numerators = [self._load_entry(e) for e in self.job.numerators]
        self.logger.info(f"Loaded {len(self.numerators)} numerators and "
                         f"{len(self.denominators)} denominators for '{self.job.name}'")

    def compute(self) -> List[Histogram1D]:
        """Divide each numerator by its denominator"""
        if not self.numerators:
            raise ConfigurationError("load() must be called before compute()")

        self.ratios = []
        for i, numerator in enumerate(self.numerators):
            denominator = self.denominators[self.job.denominator_index(i)]
            ratio = divide(numerator, denominator, f"hRatio_{numerator.name}")
            ratio.y_label = self.job.ratio_label
            self.ratios.append(ratio)
        return self.ratios

    def write(self) -> Path:
        book = HistogramBook()
        for hist in self.denominators + self.numerators + self.ratios:
            book.add(hist)
        return write_histograms(self.job.output_file, book)

    def plot(self) -> None:
        style = self.plot_style
        plotter = TrackStudyPlotter(
            self.plots_dir,
            style=style.get("mplhep_style", "ROOT"),
            formats=style.get("formats", ["pdf"]),
            info_lines=list(style.get("info", [])) + self.job.extra_info,
        )
        denominators = [self.denominators[self.job.denominator_index(i)] for i in range(len(self.numerators))]
        den_labels = [self.job.denominators[self.job.denominator_index(i)].label for i in range(len(self.numerators))]
        plotter.plot_ratio(
            self.numerators, denominators, self.ratios,
            [e.label for e in self.job.numerators], den_labels,
            self.job.plot_name, x_range=self.job.x_range,
            x_label=self.job.x_label, y_label=self.job.y_label,
            ratio_label=self.job.ratio_label, log_y=self.job.log_y,
        )

    def run(self, make_plots: bool = True) -> List[Histogram1D]:
        """load -> compute -> write -> plot"""
        self.load()
        self.compute()
        output = self.write()
        if make_plots and self.plots_dir is not None:
            self.plot()
        self.logger.info(f"Ratio comparison '{self.job.name}' written to {output}")
        return self.ratios
