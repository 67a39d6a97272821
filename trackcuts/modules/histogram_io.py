"""
Write and read histogram files with uproot
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

import numpy as np
import uproot
from uproot.deserialization import DeserializationError

from .exceptions import DataLoadError, HistogramError, HistogramMissingError
from .histograms import Histogram1D, Histogram2D, HistogramBook

logger = logging.getLogger("TrackCutStudy.HistogramIO")


def _axis(name: str, label: str, edges: Optional[np.ndarray] = None):
    """TAxis over the given edges, or the single-bin axis of an unused dimension"""
    if edges is None:
        return uproot.writing.identify.to_TAxis(fName=name, fTitle=label, fNbins=1, fXmin=0.0, fXmax=1.0)
    return uproot.writing.identify.to_TAxis(
        fName=name, fTitle=label, fNbins=len(edges) - 1,
        fXmin=float(edges[0]), fXmax=float(edges[-1]), fXbins=np.asarray(edges, dtype=np.float64),
    )


def _to_th1(hist: Histogram1D):
    """TH1D with bin errors (fSumw2), under/overflow and entries"""
    data = np.concatenate([[hist.underflow], hist.counts, [hist.overflow]])
    sumw2 = np.concatenate([[hist.underflow], hist.sumw2, [hist.overflow]])
    x = hist.centers()
    return uproot.writing.identify.to_TH1x(
        fName=hist.name, fTitle=hist.title, data=data,
        fEntries=float(hist.entries),
        fTsumw=float(hist.counts.sum()), fTsumw2=float(hist.sumw2.sum()),
        fTsumwx=float((hist.counts * x).sum()), fTsumwx2=float((hist.counts * x * x).sum()),
        fSumw2=sumw2,
        fXaxis=_axis("xaxis", hist.x_label, hist.edges),
        fYaxis=_axis("yaxis", hist.y_label),
    )


def _to_th2(hist: Histogram2D):
    """
    TH2D with bin errors and entries

    Entries outside the axes are not kept per flow bin; their sum goes into
    the (underflow, underflow) bin so that totals survive a round trip.
    """
    nx, ny = hist.shape
    data = np.zeros((nx + 2, ny + 2))
    sumw2 = np.zeros((nx + 2, ny + 2))
    data[1:-1, 1:-1] = hist.counts
    sumw2[1:-1, 1:-1] = hist.sumw2
    data[0, 0] = sumw2[0, 0] = hist.outside

    x, y = hist.centers()
    wx, wy = hist.counts.sum(axis=1), hist.counts.sum(axis=0)
    # ROOT global bin = ix + (nx + 2) * iy, so x runs fastest
    return uproot.writing.identify.to_TH2x(
        fName=hist.name, fTitle=hist.title, data=data.T.ravel(),
        fEntries=float(hist.entries),
        fTsumw=float(hist.counts.sum()), fTsumw2=float(hist.sumw2.sum()),
        fTsumwx=float((wx * x).sum()), fTsumwx2=float((wx * x * x).sum()),
        fTsumwy=float((wy * y).sum()), fTsumwy2=float((wy * y * y).sum()),
        fTsumwxy=float((hist.counts * np.outer(x, y)).sum()),
        fSumw2=sumw2.T.ravel(),
        fXaxis=_axis("xaxis", hist.x_label, hist.x_edges),
        fYaxis=_axis("yaxis", hist.y_label, hist.y_edges),
        fZaxis=_axis("zaxis", hist.z_label),
    )


def write_tree(fout, name: str, columns: Mapping[str, np.ndarray]) -> None:
    """Create a TTree in an open writable file and fill it with flat columns"""
    arrays = {col: np.asarray(values) for col, values in columns.items()}
    fout.mktree(name, {col: values.dtype for col, values in arrays.items()})
    fout[name].extend(arrays)


def write_histograms(path: Union[str, Path], book: HistogramBook,
                     extra_trees: Optional[Mapping[str, Mapping[str, np.ndarray]]] = None) -> Path:
    """
    Recreate a ROOT file holding every histogram of a book

    Histograms land in their book directories ('Track/hTrackPt' is written as
    hTrackPt in directory Track) as TH1D/TH2D with their bin errors, flow and
    entries. Small summary tables go in as TTrees.

    Args:
        path: Output ROOT file
        book: Histograms to write
        extra_trees: {tree name: {column: array}}

    Returns:
        Path of the written file
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with uproot.recreate(path) as fout:
        for key, hist in book.items():
            fout[key] = _to_th2(hist) if isinstance(hist, Histogram2D) else _to_th1(hist)
        for name, columns in (extra_trees or {}).items():
            write_tree(fout, name, columns)

    logger.info(f"Wrote {len(book)} histograms to {path}")
    return path


def read_histogram(path: Union[str, Path], key: str,
                   name: Optional[str] = None) -> Union[Histogram1D, Histogram2D]:
    """
    Read one TH1/TH2 from a ROOT file

    Args:
        path: ROOT file
        key: Histogram path inside the file, e.g. 'CutTrack/hCutTrackDcaXY'
        name: Name for the returned histogram (default: last part of the key)

    Raises:
        DataLoadError: If the file cannot be opened
        HistogramMissingError: If the key is not in the file
        HistogramError: If the object is not a 1D or 2D histogram
    """
    path = Path(path)
    if not path.exists():
        raise DataLoadError(f"Histogram file not found: {path}")

    try:
        with uproot.open(path) as fin:
            if key not in fin:
                raise HistogramMissingError(key, str(path))
            obj = fin[key]
            name = name or key.rsplit("/", 1)[-1].split(";")[0]
            classname = obj.classname
            if classname.startswith("TH2"):
                return Histogram2D.from_uproot(obj, name)
            if classname.startswith("TH1"):
                return Histogram1D.from_uproot(obj, name)
    except (OSError, ValueError, DeserializationError) as e:
        raise DataLoadError(f"Error reading ROOT file {path}: {e}")

    raise HistogramError(f"Object '{key}' in {path} is a {classname}, not a 1D or 2D histogram")


def read_histograms(path: Union[str, Path], keys: Mapping[str, str]) -> Dict[str, Union[Histogram1D, Histogram2D]]:
    """Read several histograms of one file: {new name: key in file}"""
    return {name: read_histogram(path, key, name) for name, key in keys.items()}
