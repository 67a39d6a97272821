"""
Fixed-binning 1D/2D histograms and the variable registry

Histograms follow the ROOT bin convention: bin i covers [edge_i, edge_i+1),
values below the first edge go to the underflow, values at or above the last
edge go to the overflow, NaN is ignored. Counts and sum of squared weights are
plain numpy arrays so that histograms can be written with uproot.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Dict, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .exceptions import HistogramError, HistogramMissingError

if TYPE_CHECKING:
    from .config import StudyConfig

logger = logging.getLogger("TrackCutStudy.Histograms")


def _make_edges(bins: Optional[int], low: Optional[float], high: Optional[float],
                edges: Optional[Sequence[float]], axis: str) -> np.ndarray:
    if edges is not None:
        edges = np.asarray(edges, dtype=np.float64)
        if edges.ndim != 1 or len(edges) < 2 or np.any(np.diff(edges) <= 0):
            raise HistogramError(f"{axis} edges must be a strictly increasing sequence of at least 2 values")
        return edges
    if bins is None or low is None or high is None:
        raise HistogramError(f"{axis} binning needs either edges or bins, low and high")
    if bins <= 0 or low >= high:
        raise HistogramError(f"Invalid {axis} binning: {bins} bins in [{low}, {high})")
    return np.linspace(low, high, int(bins) + 1)


def _locate(edges: np.ndarray, values: np.ndarray) -> np.ndarray:
    """Bin index per value: -1 for underflow, nbins for overflow"""
    return np.searchsorted(edges, values, side="right") - 1


class _Histogram:
    """Shared bookkeeping of 1D and 2D histograms"""

    def __init__(self, name: str, title: str = ""):
        self.name = name
        self.title = title
        self.entries = 0

    def integral(self) -> float:
        """Sum of in-range bin contents"""
        return float(self.counts.sum())

    def scale(self, factor: float) -> None:
        self.counts *= factor
        self.sumw2 *= factor * factor
        self._scale_flow(factor)

    def normalize(self) -> None:
        """Scale to unit integral; empty histograms are left untouched"""
        integral = self.integral()
        if integral == 0:
            logger.warning(f"Cannot normalize empty histogram '{self.name}'")
            return
        self.scale(1.0 / integral)

    def errors(self) -> np.ndarray:
        return np.sqrt(self.sumw2)

    def reset(self) -> None:
        self.counts[...] = 0.0
        self.sumw2[...] = 0.0
        self._scale_flow(0.0)
        self.entries = 0

    def clone(self, name: Optional[str] = None):
        other = copy.deepcopy(self)
        if name is not None:
            other.name = name
        return other

    def _scale_flow(self, factor: float) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}('{self.name}', shape={self.counts.shape}, entries={self.entries})"


class Histogram1D(_Histogram):
    """
    One-dimensional histogram with unit-weight fills

    Args:
        name: Histogram name (key in the output file)
        bins, low, high: Uniform binning
        edges: Variable binning (takes precedence over bins/low/high)
        title: Histogram title
        x_label, y_label: Axis titles used by the plotter
    """

    def __init__(self, name: str, bins: Optional[int] = None, low: Optional[float] = None,
                 high: Optional[float] = None, edges: Optional[Sequence[float]] = None,
                 title: str = "", x_label: str = "", y_label: str = "counts"):
        super().__init__(name, title)
        self.edges = _make_edges(bins, low, high, edges, "x")
        self.x_label = x_label
        self.y_label = y_label
        self.counts = np.zeros(len(self.edges) - 1)
        self.sumw2 = np.zeros(len(self.edges) - 1)
        self.underflow = 0.0
        self.overflow = 0.0

    @property
    def nbins(self) -> int:
        return len(self.edges) - 1

    def fill(self, x) -> None:
        """
        Fill every value of x with unit weight

        Args:
            x: Scalar or array-like of values (NaN entries are skipped)
        """
        x = np.atleast_1d(np.asarray(x, dtype=np.float64)).ravel()
        x = x[~np.isnan(x)]
        if len(x) == 0:
            return

        idx = _locate(self.edges, x)
        inside = (idx >= 0) & (idx < self.nbins)
        filled = np.bincount(idx[inside], minlength=self.nbins).astype(np.float64)
        self.counts += filled
        self.sumw2 += filled
        self.underflow += float(np.sum(idx < 0))
        self.overflow += float(np.sum(idx >= self.nbins))
        self.entries += len(x)

    def _scale_flow(self, factor: float) -> None:
        self.underflow *= factor
        self.overflow *= factor

    def centers(self) -> np.ndarray:
        return 0.5 * (self.edges[:-1] + self.edges[1:])

    def widths(self) -> np.ndarray:
        return np.diff(self.edges)

    def same_binning(self, other: "Histogram1D") -> bool:
        return isinstance(other, Histogram1D) and np.array_equal(self.edges, other.edges)

    def rebin(self, n: int) -> "Histogram1D":
        """
        Merge every n adjacent bins in place

        Raises:
            HistogramError: If n does not divide the number of bins
        """
        if n < 1 or self.nbins % n != 0:
            raise HistogramError(
                f"Cannot rebin '{self.name}' ({self.nbins} bins) by a factor of {n}"
            )
        if n == 1:
            return self
        self.counts = self.counts.reshape(-1, n).sum(axis=1)
        self.sumw2 = self.sumw2.reshape(-1, n).sum(axis=1)
        self.edges = self.edges[::n].copy()
        return self

    def to_numpy(self) -> Tuple[np.ndarray, np.ndarray]:
        """(counts, edges), the form uproot writes as a TH1D"""
        return self.counts.copy(), self.edges.copy()

    @classmethod
    def from_uproot(cls, obj, name: Optional[str] = None) -> "Histogram1D":
        """Build from a TH1 read with uproot"""
        hist = cls(name or obj.member("fName"), edges=obj.axis(0).edges(), title=obj.member("fTitle"))
        values = np.asarray(obj.values(flow=True), dtype=np.float64)
        variances = np.asarray(obj.variances(flow=True), dtype=np.float64)
        hist.counts = values[1:-1].copy()
        hist.sumw2 = variances[1:-1].copy()
        hist.underflow, hist.overflow = float(values[0]), float(values[-1])
        hist.entries = int(round(obj.member("fEntries")))
        return hist


class Histogram2D(_Histogram):
    """
    Two-dimensional histogram, counts indexed as [x bin, y bin]

    Entries outside either axis are summed into `outside`.
    """

    def __init__(self, name: str,
                 x_bins: Optional[int] = None, x_low: Optional[float] = None, x_high: Optional[float] = None,
                 y_bins: Optional[int] = None, y_low: Optional[float] = None, y_high: Optional[float] = None,
                 x_edges: Optional[Sequence[float]] = None, y_edges: Optional[Sequence[float]] = None,
                 title: str = "", x_label: str = "", y_label: str = "", z_label: str = "counts"):
        super().__init__(name, title)
        self.x_edges = _make_edges(x_bins, x_low, x_high, x_edges, "x")
        self.y_edges = _make_edges(y_bins, y_low, y_high, y_edges, "y")
        self.x_label = x_label
        self.y_label = y_label
        self.z_label = z_label
        shape = (len(self.x_edges) - 1, len(self.y_edges) - 1)
        self.counts = np.zeros(shape)
        self.sumw2 = np.zeros(shape)
        self.outside = 0.0

    @property
    def shape(self) -> Tuple[int, int]:
        return self.counts.shape

    def fill(self, x, y) -> None:
        """Fill (x, y) pairs with unit weight; pairs with a NaN are skipped"""
        x = np.atleast_1d(np.asarray(x, dtype=np.float64)).ravel()
        y = np.atleast_1d(np.asarray(y, dtype=np.float64)).ravel()
        if len(x) != len(y):
            raise HistogramError(f"Cannot fill '{self.name}' with {len(x)} x and {len(y)} y values")

        valid = ~(np.isnan(x) | np.isnan(y))
        x, y = x[valid], y[valid]
        if len(x) == 0:
            return

        nx, ny = self.shape
        ix = _locate(self.x_edges, x)
        iy = _locate(self.y_edges, y)
        inside = (ix >= 0) & (ix < nx) & (iy >= 0) & (iy < ny)
        flat = ix[inside] * ny + iy[inside]
        filled = np.bincount(flat, minlength=nx * ny).astype(np.float64).reshape(nx, ny)
        self.counts += filled
        self.sumw2 += filled
        self.outside += float(np.sum(~inside))
        self.entries += len(x)

    def _scale_flow(self, factor: float) -> None:
        self.outside *= factor

    def centers(self) -> Tuple[np.ndarray, np.ndarray]:
        return (0.5 * (self.x_edges[:-1] + self.x_edges[1:]),
                0.5 * (self.y_edges[:-1] + self.y_edges[1:]))

    def same_binning(self, other: "Histogram2D") -> bool:
        return (isinstance(other, Histogram2D)
                and np.array_equal(self.x_edges, other.x_edges)
                and np.array_equal(self.y_edges, other.y_edges))

    def rebin(self, nx: int, ny: Optional[int] = None) -> "Histogram2D":
        """Merge nx x-bins and ny y-bins (default ny = nx) in place"""
        ny = nx if ny is None else ny
        bx, by = self.shape
        if nx < 1 or ny < 1 or bx % nx != 0 or by % ny != 0:
            raise HistogramError(
                f"Cannot rebin '{self.name}' ({bx}x{by} bins) by factors {nx}x{ny}"
            )
        self.counts = self.counts.reshape(bx // nx, nx, by // ny, ny).sum(axis=(1, 3))
        self.sumw2 = self.sumw2.reshape(bx // nx, nx, by // ny, ny).sum(axis=(1, 3))
        self.x_edges = self.x_edges[::nx].copy()
        self.y_edges = self.y_edges[::ny].copy()
        return self

    def projection_x(self, name: Optional[str] = None) -> Histogram1D:
        hist = Histogram1D(name or f"{self.name}_px", edges=self.x_edges, x_label=self.x_label)
        hist.counts = self.counts.sum(axis=1)
        hist.sumw2 = self.sumw2.sum(axis=1)
        hist.entries = self.entries
        return hist

    def to_numpy(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(counts, x_edges, y_edges), the form uproot writes as a TH2D"""
        return self.counts.copy(), self.x_edges.copy(), self.y_edges.copy()

    @classmethod
    def from_uproot(cls, obj, name: Optional[str] = None) -> "Histogram2D":
        """Build from a TH2 read with uproot"""
        hist = cls(name or obj.member("fName"), x_edges=obj.axis(0).edges(), y_edges=obj.axis(1).edges(),
                   title=obj.member("fTitle"))
        values = np.asarray(obj.values(flow=True), dtype=np.float64)
        variances = np.asarray(obj.variances(flow=True), dtype=np.float64)
        hist.counts = values[1:-1, 1:-1].copy()
        hist.sumw2 = variances[1:-1, 1:-1].copy()
        hist.outside = float(values.sum() - hist.counts.sum())
        hist.entries = int(round(obj.member("fEntries")))
        return hist


Histogram = Union[Histogram1D, Histogram2D]


# ----------------------------------------------------------------------
# Variable registry
# ----------------------------------------------------------------------

@dataclass(frozen=True)
class Variable:
    """
    A histogrammed quantity

    Attributes:
        key: Short name used in histogram names, e.g. 'Pt' -> hTrackPt
        column: Tuple leaf or derived field it is filled from
        label: Axis title
        bins, low, high: Default binning
    """
    key: str
    column: str
    label: str
    bins: int
    low: float
    high: float


def _variables(*items: Tuple[str, str, str, int, float, float]) -> Dict[str, Variable]:
    return {item[0]: Variable(*item) for item in items}


# Reconstructed-track quantities (Track, Weird and Pileup record types)
TRACK_VARIABLES: Dict[str, Variable] = _variables(
    ("NMms", "nmms", r"$N_{clust}^{mms}$", 10, 0.0, 10.0),
    ("NMap", "nmaps", r"$N_{clust}^{mvtx}$", 10, 0.0, 10.0),
    ("NInt", "nintt", r"$N_{clust}^{intt}$", 10, 0.0, 10.0),
    ("NTpc", "ntpc", r"$N_{clust}^{tpc}$", 100, 0.0, 100.0),
    ("NTot", "nhits", r"$N_{clust}^{tot}$", 100, 0.0, 100.0),
    ("PerMms", "per_mms", r"$N_{clust}^{mms} / N_{true}^{mms}$", 500, 0.0, 5.0),
    ("PerMap", "per_maps", r"$N_{clust}^{mvtx} / N_{true}^{mvtx}$", 500, 0.0, 5.0),
    ("PerInt", "per_intt", r"$N_{clust}^{intt} / N_{true}^{intt}$", 500, 0.0, 5.0),
    ("PerTpc", "per_tpc", r"$N_{clust}^{tpc} / N_{true}^{tpc}$", 500, 0.0, 5.0),
    ("PerTot", "per_tot", r"$N_{clust}^{tot} / N_{true}^{tot}$", 500, 0.0, 5.0),
    ("Chi2", "chisq", r"$\chi^{2}$", 500, 0.0, 500.0),
    ("NDF", "ndf", "NDF", 100, 0.0, 100.0),
    ("Quality", "quality", "quality", 200, 0.0, 20.0),
    ("DcaXY", "dca_xy", r"$DCA_{xy}$ [cm]", 2000, -5.0, 5.0),
    ("DcaZ", "dca_z", r"$DCA_{z}$ [cm]", 2000, -20.0, 20.0),
    ("Eta", "eta", r"$\eta^{reco}$", 160, -4.0, 4.0),
    ("Phi", "phi", r"$\varphi^{reco}$", 180, -3.15, 3.15),
    ("Pt", "pt", r"$p_{T}^{reco}$ [GeV/c]", 500, 0.0, 50.0),
    ("DeltaDcaXY", "dca_xy_sigma", r"$\delta DCA_{xy}$ [cm]", 500, 0.0, 5.0),
    ("DeltaDcaZ", "dca_z_sigma", r"$\delta DCA_{z}$ [cm]", 500, 0.0, 5.0),
    ("DeltaEta", "deltaeta", r"$\delta\eta$", 500, 0.0, 0.5),
    ("DeltaPhi", "deltaphi", r"$\delta\varphi$", 500, 0.0, 0.5),
    ("DeltaPt", "deltapt", r"$\delta p_{T}$ [GeV/c]", 500, 0.0, 5.0),
)

# Truth-particle quantities of matched tracks (Truth record type)
TRUTH_VARIABLES: Dict[str, Variable] = _variables(
    ("NMms", "gnmms", r"$N_{hit}^{mms}$", 10, 0.0, 10.0),
    ("NMap", "gnmaps", r"$N_{hit}^{mvtx}$", 10, 0.0, 10.0),
    ("NInt", "gnintt", r"$N_{hit}^{intt}$", 10, 0.0, 10.0),
    ("NTpc", "gntpc", r"$N_{hit}^{tpc}$", 100, 0.0, 100.0),
    ("NTot", "gnhits", r"$N_{hit}^{tot}$", 100, 0.0, 100.0),
    ("Eta", "geta", r"$\eta^{true}$", 160, -4.0, 4.0),
    ("Phi", "gphi", r"$\varphi^{true}$", 180, -3.15, 3.15),
    ("Pt", "gpt", r"$p_{T}^{true}$ [GeV/c]", 500, 0.0, 50.0),
    ("EtaFrac", "eta_frac", r"$\eta^{reco} / \eta^{true}$", 1000, 0.0, 10.0),
    ("PhiFrac", "phi_frac", r"$\varphi^{reco} / \varphi^{true}$", 1000, 0.0, 10.0),
    ("PtFrac", "pt_frac", r"$p_{T}^{reco} / p_{T}^{true}$", 1000, 0.0, 10.0),
    ("EtaDiff", "eta_diff", r"$\eta^{reco} - \eta^{true}$", 1000, -5.0, 5.0),
    ("PhiDiff", "phi_diff", r"$\varphi^{reco} - \varphi^{true}$", 1000, -5.0, 5.0),
    ("PtDiff", "pt_diff", r"$p_{T}^{reco} - p_{T}^{true}$ [GeV/c]", 1000, -50.0, 50.0),
    ("RecoEta", "eta", r"$\eta^{reco}$", 160, -4.0, 4.0),
    ("RecoPhi", "phi", r"$\varphi^{reco}$", 180, -3.15, 3.15),
    ("RecoPt", "pt", r"$p_{T}^{reco}$ [GeV/c]", 500, 0.0, 50.0),
)

# 2D histograms as (y key, x key): "AVsB" puts A on y and B on x
TRACK_VS: List[Tuple[str, str]] = (
    [("Pt", key) for key in ("NMms", "NMap", "NInt", "NTpc", "NTot",
                             "PerMms", "PerMap", "PerInt", "PerTpc", "PerTot",
                             "Chi2", "NDF", "Quality", "DcaXY", "DcaZ")]
    + [(key, "Pt") for key in ("DeltaDcaXY", "DeltaDcaZ", "DeltaEta", "DeltaPhi", "DeltaPt")]
)

TRUTH_VS: List[Tuple[str, str]] = [
    ("Eta", "RecoEta"), ("Phi", "RecoPhi"), ("Pt", "RecoPt"),
    ("EtaFrac", "Eta"), ("PhiFrac", "Phi"), ("PtFrac", "Pt"),
    ("EtaDiff", "Eta"), ("PhiDiff", "Phi"), ("PtDiff", "Pt"),
    ("Pt", "NMms"), ("Pt", "NMap"), ("Pt", "NInt"), ("Pt", "NTpc"), ("Pt", "NTot"),
]


def build_variables(level: str, config: Optional[StudyConfig] = None) -> Dict[str, Variable]:
    """
    Variable registry of one level with binning overrides from binning.toml

    Overrides are looked up as '<level>.<key>' first, then as '<key>'.

    Args:
        level: 'track' or 'truth'
        config: Study configuration (defaults only when None)
    """
    registry = {"track": TRACK_VARIABLES, "truth": TRUTH_VARIABLES}
    if level not in registry:
        raise HistogramError(f"Unknown variable level '{level}', expected 'track' or 'truth'")

    variables = dict(registry[level])
    if config is None:
        return variables

    for key, var in variables.items():
        binning = config.get_binning(f"{level}.{key}") or config.get_binning(key)
        if binning is not None:
            bins, low, high = binning
            variables[key] = replace(var, bins=bins, low=low, high=high)
    return variables


# ----------------------------------------------------------------------
# Histogram book
# ----------------------------------------------------------------------

class HistogramBook:
    """
    Named histograms grouped in directories

    Histograms are addressed by path 'directory/name' (or 'name' at top level)
    and keep their booking order, which is also the write order.
    """

    def __init__(self) -> None:
        self._hists: Dict[str, Histogram] = {}

    @staticmethod
    def path(name: str, directory: str = "") -> str:
        return f"{directory}/{name}" if directory else name

    def add(self, hist: Histogram, directory: str = "") -> Histogram:
        key = self.path(hist.name, directory)
        if key in self._hists:
            raise HistogramError(f"Histogram '{key}' is already booked")
        self._hists[key] = hist
        return hist

    def book_1d(self, name: str, bins: Optional[int] = None, low: Optional[float] = None,
                high: Optional[float] = None, directory: str = "", **kwargs) -> Histogram1D:
        return self.add(Histogram1D(name, bins, low, high, **kwargs), directory)

    def book_2d(self, name: str, x_bins: Optional[int] = None, x_low: Optional[float] = None,
                x_high: Optional[float] = None, y_bins: Optional[int] = None,
                y_low: Optional[float] = None, y_high: Optional[float] = None,
                directory: str = "", **kwargs) -> Histogram2D:
        return self.add(Histogram2D(name, x_bins, x_low, x_high, y_bins, y_low, y_high, **kwargs),
                        directory)

    def book_variable(self, var: Variable, name: str, directory: str = "") -> Histogram1D:
        return self.book_1d(name, var.bins, var.low, var.high, directory=directory, x_label=var.label)

    def book_variable_2d(self, y_var: Variable, x_var: Variable, name: str,
                         directory: str = "") -> Histogram2D:
        return self.book_2d(name, x_var.bins, x_var.low, x_var.high,
                            y_var.bins, y_var.low, y_var.high, directory=directory,
                            x_label=x_var.label, y_label=y_var.label)

    def get(self, name: str, directory: str = "") -> Histogram:
        key = self.path(name, directory)
        try:
            return self._hists[key]
        except KeyError:
            raise HistogramMissingError(key)

    def fill_1d(self, name: str, x, directory: str = "") -> None:
        self.get(name, directory).fill(x)

    def fill_2d(self, name: str, x, y, directory: str = "") -> None:
        self.get(name, directory).fill(x, y)

    def directories(self) -> List[str]:
        seen: Dict[str, None] = {}
        for key in self._hists:
            seen.setdefault(key.rpartition("/")[0], None)
        return list(seen)

    def items(self, directory: Optional[str] = None) -> Iterator[Tuple[str, Histogram]]:
        """(path, histogram) pairs, optionally only those of one directory"""
        for key, hist in self._hists.items():
            if directory is None or key.rpartition("/")[0] == directory:
                yield key, hist

    def __contains__(self, key: str) -> bool:
        return key in self._hists

    def __len__(self) -> int:
        return len(self._hists)

    def __iter__(self) -> Iterator[str]:
        return iter(self._hists)
