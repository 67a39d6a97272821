"""
Plots of the track cut study histograms

Example usage:
    plotter = TrackStudyPlotter("output/plots", info_lines=["sPHENIX Simulation"])

    # Before/after cut comparison
    plotter.plot_overlay([h_all, h_cut], ["all tracks", "with cuts"], "track_pt", log_y=True)

    # Efficiency over the truth/reco spectra
    plotter.plot_efficiency([h_eff], ["tracks (w/ cuts)"], "efficiency",
                            spectra=[h_true, h_reco], spectra_labels=["truth", "reco"])
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from matplotlib.colors import LogNorm
import mplhep as hep
import numpy as np
import pandas as pd

from .histograms import Histogram1D, Histogram2D

logging.getLogger('matplotlib.font_manager').setLevel(logging.ERROR)

# Marker cycle for overlaid histograms
MARKERS = ["o", "s", "^", "v", "D", "P", "X", "*", "<", ">"]


class TrackStudyPlotter:
    """Draw and save histograms with mplhep styling"""

    def __init__(self, output_dir, style: str = "ROOT", formats: Sequence[str] = ("pdf",),
                 info_lines: Optional[Sequence[str]] = None):
        """
        Initialize with output directory

        Args:
            output_dir: Directory to save plots (created if needed)
            style: Name of an mplhep style, e.g. 'ROOT', 'ATLAS', 'LHCb2'
            formats: File formats every plot is saved in
            info_lines: Text drawn in the corner of every plot
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.formats = list(formats)
        self.info_lines = list(info_lines or [])
        self.logger = logging.getLogger("TrackCutStudy.TrackStudyPlotter")

        if not hasattr(hep.style, style):
            self.logger.warning(f"Unknown mplhep style '{style}', using ROOT")
            style = "ROOT"
        plt.style.use(getattr(hep.style, style))
        matplotlib.rcParams['font.family'] = 'sans-serif'

    def _draw_info(self, ax, extra: Sequence[str] = ()) -> None:
        lines = self.info_lines + list(extra)
        if lines:
            ax.text(0.04, 0.96, "\n".join(lines), transform=ax.transAxes,
                    va="top", ha="left", fontsize=12)

    def _save(self, fig, filename: str) -> List[Path]:
        paths = []
        for fmt in self.formats:
            path = self.output_dir / f"{filename}.{fmt}"
            fig.savefig(path, dpi=300, bbox_inches='tight')
            paths.append(path)
        plt.close(fig)
        self.logger.info(f"Created plot: {paths[0]}")
        return paths

    def plot_overlay(self, hists: Sequence[Histogram1D], labels: Sequence[str], filename: str,
                     normalize: bool = False, log_y: bool = False,
                     x_range: Optional[Tuple[float, float]] = None,
                     x_label: Optional[str] = None, y_label: Optional[str] = None,
                     extra_info: Sequence[str] = ()) -> List[Path]:
        """
        Overlay several 1D histograms

        Args:
            hists: Histograms to draw (not modified)
            labels: Legend entries
            filename: Output file name without extension
            normalize: Draw each histogram scaled to unit integral
            log_y: Logarithmic y axis
        """
        fig, ax = plt.subplots(figsize=(10, 8))
        for i, (hist, label) in enumerate(zip(hists, labels)):
            if normalize:
                hist = hist.clone()
                hist.normalize()
            hep.histplot(hist.counts, hist.edges, yerr=hist.errors(), ax=ax, label=label,
                         histtype="errorbar", marker=MARKERS[i % len(MARKERS)], markersize=5)

        ax.set_xlabel(x_label or hists[0].x_label)
        ax.set_ylabel(y_label or ("normalized counts" if normalize else hists[0].y_label))
        if x_range is not None:
            ax.set_xlim(*x_range)
        if log_y and any(np.any(h.counts > 0) for h in hists):
            ax.set_yscale("log")
        ax.legend(loc="upper right")
        self._draw_info(ax, extra_info)
        return self._save(fig, filename)

    def plot_2d(self, hist: Histogram2D, filename: str, log_z: bool = True,
                x_range: Optional[Tuple[float, float]] = None,
                y_range: Optional[Tuple[float, float]] = None) -> List[Path]:
        """Draw a 2D histogram as a color map"""
        fig, ax = plt.subplots(figsize=(10, 8))
        norm = None
        if log_z and np.any(hist.counts > 0):
            norm = LogNorm(vmin=hist.counts[hist.counts > 0].min(),
                           vmax=hist.counts.max())
        hep.hist2dplot(hist.counts.copy(), hist.x_edges, hist.y_edges, ax=ax, norm=norm, cmin=1e-12)

        ax.set_xlabel(hist.x_label)
        ax.set_ylabel(hist.y_label)
        if x_range is not None:
            ax.set_xlim(*x_range)
        if y_range is not None:
            ax.set_ylim(*y_range)
        self._draw_info(ax)
        return self._save(fig, filename)

    def plot_efficiency(self, efficiencies: Sequence[Histogram1D], labels: Sequence[str], filename: str,
                        spectra: Sequence[Histogram1D] = (), spectra_labels: Sequence[str] = (),
                        x_range: Optional[Tuple[float, float]] = None) -> List[Path]:
        """
        Efficiency curves, optionally over a panel of the underlying spectra

        Args:
            efficiencies: Efficiency histograms (values in [0, 1])
            labels: Legend entries of the efficiencies
            filename: Output file name without extension
            spectra: Count histograms drawn in the lower panel
            spectra_labels: Legend entries of the spectra
        """
        if spectra:
            fig, (ax_eff, ax_spec) = plt.subplots(2, 1, figsize=(10, 10), sharex=True,
                                                  gridspec_kw={"height_ratios": [2, 1], "hspace": 0.05})
        else:
            fig, ax_eff = plt.subplots(figsize=(10, 8))
            ax_spec = None

        for i, (hist, label) in enumerate(zip(efficiencies, labels)):
            ax_eff.errorbar(hist.centers(), hist.counts, yerr=hist.errors(), xerr=hist.widths() / 2,
                            fmt=MARKERS[i % len(MARKERS)], markersize=5, label=label)
        ax_eff.set_ylabel(r"$\epsilon_{trk}$")
        ax_eff.set_ylim(0.0, 1.5)
        ax_eff.axhline(1.0, color="gray", linestyle="--", linewidth=1)
        ax_eff.legend(loc="upper right")
        self._draw_info(ax_eff)

        bottom = ax_eff
        if ax_spec is not None:
            for hist, label in zip(spectra, spectra_labels):
                hep.histplot(hist.counts, hist.edges, ax=ax_spec, label=label,
                             histtype="step", linewidth=1.5)
            if any(np.any(h.counts > 0) for h in spectra):
                ax_spec.set_yscale("log")
            ax_spec.set_ylabel("counts")
            ax_spec.legend(loc="upper right")
            bottom = ax_spec

        bottom.set_xlabel(efficiencies[0].x_label)
        if x_range is not None:
            bottom.set_xlim(*x_range)
        return self._save(fig, filename)

    def plot_rejection(self, table: pd.DataFrame, filename: str) -> List[Path]:
        """
        Rejection factor versus the maximum delta-pt/pt

        Args:
            table: RejectionScan.to_dataframe() output
            filename: Output file name without extension
        """
        fig, ax = plt.subplots(figsize=(10, 8))
        ordered = table.sort_values("threshold")
        ax.plot(ordered["threshold"], ordered["rejection"], marker="o", color="black")

        ax.set_xscale("log")
        if (ordered["rejection"] > 0).any():
            ax.set_yscale("log")
        ax.set_xlabel(r"max $\Delta p_{T} / p_{T}^{reco}$")
        ax.set_ylabel("rejection factor")
        self._draw_info(ax)
        return self._save(fig, filename)

    def plot_ratio(self, numerators: Sequence[Histogram1D], denominators: Sequence[Histogram1D],
                   ratios: Sequence[Histogram1D], num_labels: Sequence[str], den_labels: Sequence[str],
                   filename: str, x_range: Optional[Tuple[float, float]] = None,
                   x_label: Optional[str] = None, y_label: Optional[str] = None,
                   ratio_label: str = "ratio", log_y: bool = False) -> List[Path]:
        """
        Distributions in the upper panel and numerator/denominator in the lower panel

        Every denominator is drawn once, even if it serves several numerators.
        """
        fig, (ax_top, ax_ratio) = plt.subplots(2, 1, figsize=(10, 10), sharex=True,
                                               gridspec_kw={"height_ratios": [3, 1], "hspace": 0.05})

        drawn = set()
        for hist, label in zip(denominators, den_labels):
            if id(hist) in drawn:
                continue
            drawn.add(id(hist))
            hep.histplot(hist.counts, hist.edges, yerr=hist.errors(), ax=ax_top, label=label,
                         histtype="errorbar", marker="o", color="black", markersize=5)
        for i, (hist, label) in enumerate(zip(numerators, num_labels)):
            hep.histplot(hist.counts, hist.edges, yerr=hist.errors(), ax=ax_top, label=label,
                         histtype="errorbar", marker=MARKERS[(i + 1) % len(MARKERS)], markersize=5)
        for i, hist in enumerate(ratios):
            hep.histplot(hist.counts, hist.edges, yerr=hist.errors(), ax=ax_ratio,
                         histtype="errorbar", marker=MARKERS[(i + 1) % len(MARKERS)], markersize=5)

        ax_top.set_ylabel(y_label or numerators[0].y_label)
        if log_y and any(np.any(h.counts > 0) for h in numerators):
            ax_top.set_yscale("log")
        ax_top.legend(loc="upper right")
        self._draw_info(ax_top)

        ax_ratio.axhline(1.0, color="gray", linestyle="--", linewidth=1)
        ax_ratio.set_ylabel(ratio_label)
        ax_ratio.set_xlabel(x_label or numerators[0].x_label)
        if x_range is not None:
            ax_ratio.set_xlim(*x_range)
        return self._save(fig, filename)
