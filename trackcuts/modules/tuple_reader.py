"""
Read the evaluator track/truth tuples

The tracking evaluator writes two flat tuples per file:
- ntp_track:  one row per reconstructed track (with its matched truth particle)
- ntp_gtrack: one row per simulated truth particle (with its matched track)

Every leaf is a float scalar. Tuples are read with uproot into awkward arrays.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

import awkward as ak
import numpy as np
import uproot
from uproot.deserialization import DeserializationError
from tqdm import tqdm

from .exceptions import BranchMissingError, DataLoadError, TupleMissingError
from ..utils.logging_config import get_tqdm_kwargs

# Leaves shared by both tuples (reconstructed and truth halves of a match)
_COMMON_LEAVES = [
    "event", "seed", "gntracks", "gtrackID", "gflavor",
    "gnhits", "gnmaps", "gnintt", "gntpc", "gnmms",
    "gnintt1", "gnintt2", "gnintt3", "gnintt4", "gnintt5", "gnintt6", "gnintt7", "gnintt8",
    "gnlmaps", "gnlintt", "gnltpc", "gnlmms",
    "gpx", "gpy", "gpz", "gpt", "geta", "gphi",
    "gvx", "gvy", "gvz", "gvt", "gfpx", "gfpy", "gfpz", "gfx", "gfy", "gfz",
    "gembed", "gprimary",
    "trackID", "px", "py", "pz", "pt", "eta", "phi",
    "deltapt", "deltaeta", "deltaphi", "charge", "quality", "chisq", "ndf",
    "nhits", "nmaps", "nintt", "ntpc", "nmms", "ntpc1", "ntpc11", "ntpc2", "ntpc3",
    "nlmaps", "nlintt", "nltpc", "nlmms", "layers",
    "vertexID", "vx", "vy", "vz",
    "dca2d", "dca2dsigma", "dca3dxy", "dca3dxysigma", "dca3dz", "dca3dzsigma",
    "pcax", "pcay", "pcaz",
    "nfromtruth", "nwrong", "ntrumaps", "ntruintt", "ntrutpc", "ntrumms",
    "ntrutpc1", "ntrutpc11", "ntrutpc2", "ntrutpc3", "layersfromtruth",
]

TRACK_LEAVES: List[str] = _COMMON_LEAVES[:2] + ["crossing"] + _COMMON_LEAVES[2:] + [
    "nhittpcall", "nhittpcin", "nhittpcmid", "nhittpcout",
    "nclusall", "nclustpc", "nclusintt", "nclusmaps", "nclusmms",
]

TRUTH_LEAVES: List[str] = list(_COMMON_LEAVES)

# (derived field, reco leaf, truth leaf) for reco/truth hit fractions
_HIT_FRACTIONS = [
    ("per_mms", "nmms", "gnmms"),
    ("per_maps", "nmaps", "gnmaps"),
    ("per_intt", "nintt", "gnintt"),
    ("per_tpc", "ntpc", "gntpc"),
    ("per_tot", "nhits", "gnhits"),
]

# (derived field, reco leaf, truth leaf) for reco/truth kinematic comparisons
_KINEMATIC_PAIRS = [
    ("eta", "eta", "geta"),
    ("phi", "phi", "gphi"),
    ("pt", "pt", "gpt"),
]


def safe_ratio(numerator, denominator) -> np.ndarray:
    """
    Element-wise numerator / denominator with NaN where the denominator is zero

    NaN never fills a histogram bin, so tracks without a truth match drop out
    of fraction histograms instead of landing in a bogus bin.
    """
    num = np.asarray(numerator, dtype=np.float64)
    den = np.asarray(denominator, dtype=np.float64)
    out = np.full(np.broadcast(num, den).shape, np.nan)
    np.divide(num, den, out=out, where=den != 0)
    return out


def compute_derived_branches(tracks: ak.Array) -> ak.Array:
    """
    Compute derived quantities not directly in the tuples

    Derived branches (added only when the input leaves are present):
    1. pt_frac: reco pt / truth pt
    2. delta_pt_frac: delta-pt / pt (relative momentum uncertainty)
    3. per_mms ... per_tot: reco hits / truth hits per subsystem
    4. eta_frac, phi_frac, pt_frac and eta_diff, phi_diff, pt_diff:
       reco / truth and reco - truth
    5. dca_xy, dca_z, dca_xy_sigma, dca_z_sigma: short names of the 3D DCA leaves

    Args:
        tracks: Awkward array of tuple records

    Returns:
        Awkward array with the derived fields added
    """
    fields = set(tracks.fields)

    for name, reco, truth in _KINEMATIC_PAIRS:
        if reco in fields and truth in fields:
            tracks = ak.with_field(tracks, safe_ratio(tracks[reco], tracks[truth]), f"{name}_frac")
            tracks = ak.with_field(tracks, tracks[reco] - tracks[truth], f"{name}_diff")

    if "deltapt" in fields and "pt" in fields:
        tracks = ak.with_field(tracks, safe_ratio(tracks["deltapt"], tracks["pt"]), "delta_pt_frac")

    for name, reco, truth in _HIT_FRACTIONS:
        if reco in fields and truth in fields:
            tracks = ak.with_field(tracks, safe_ratio(tracks[reco], tracks[truth]), name)

    for alias, leaf in (("dca_xy", "dca3dxy"), ("dca_z", "dca3dz"),
                        ("dca_xy_sigma", "dca3dxysigma"), ("dca_z_sigma", "dca3dzsigma")):
        if leaf in fields:
            tracks = ak.with_field(tracks, tracks[leaf], alias)

    return tracks


class TupleReader:
    """
    Open one evaluator output file and read its tuples

    Usage:
        with TupleReader("eval.root") as reader:
            tracks = reader.load("ntp_track", ["pt", "gpt", "vz"])
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.logger = logging.getLogger("TrackCutStudy.TupleReader")

        if not self.path.exists():
            raise DataLoadError(
                f"Input file not found: {self.path}\n"
                f"Please check the paths in io.toml or on the command line"
            )
        try:
            self._file = uproot.open(self.path)
        except (OSError, ValueError, DeserializationError) as e:
            raise DataLoadError(f"Error opening ROOT file {self.path}: {e}")

        self.logger.debug(f"Opened {self.path}")

    def __enter__(self) -> "TupleReader":
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.close()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def has_tuple(self, tuple_name: str) -> bool:
        """True when the file holds a tuple with this name"""
        if self._file is None or tuple_name not in self._file:
            return False
        return isinstance(self._file[tuple_name], uproot.TTree)

    def tree(self, tuple_name: str):
        """Return the uproot tree of a tuple, raising TupleMissingError if absent"""
        if self._file is None:
            raise DataLoadError(f"File already closed: {self.path}")
        if not self.has_tuple(tuple_name):
            available = [key.split(";")[0] for key in self._file.keys()]
            self.logger.error(f"Available keys in {self.path}: {available}")
            raise TupleMissingError(tuple_name, str(self.path))
        return self._file[tuple_name]

    def _resolve_branches(self, tree, tuple_name: str,
                          branches: Optional[Sequence[str]]) -> List[str]:
        available = set(tree.keys())
        if branches is None:
            return sorted(available)
        for branch in branches:
            if branch not in available:
                raise BranchMissingError(branch, f"tuple '{tuple_name}' in {self.path}")
        return list(branches)

    def num_entries(self, tuple_name: str) -> int:
        return int(self.tree(tuple_name).num_entries)

    def load(self, tuple_name: str, branches: Optional[Sequence[str]] = None) -> ak.Array:
        """
        Load a whole tuple

        Args:
            tuple_name: Tuple name, e.g. 'ntp_track'
            branches: Leaves to read (all leaves if None)

        Returns:
            Awkward array of records

        Raises:
            TupleMissingError: If the tuple is not in the file
            BranchMissingError: If a requested leaf is not in the tuple
        """
        tree = self.tree(tuple_name)
        names = self._resolve_branches(tree, tuple_name, branches)
        try:
            records = tree.arrays(names, library="ak")
        except OSError as e:
            raise DataLoadError(f"Error reading '{tuple_name}' from {self.path}: {e}")

        self.logger.info(f"Loaded {tuple_name} from {self.path.name}: {len(records)} entries")
        return records

    def iterate(self, tuple_name: str, branches: Optional[Sequence[str]] = None,
                step_size: int = 100_000) -> Iterator[ak.Array]:
        """
        Read a tuple sequentially in chunks of at most step_size entries

        Chunks come back in file order; a progress bar tracks the entries read.
        """
        tree = self.tree(tuple_name)
        names = self._resolve_branches(tree, tuple_name, branches)

        with tqdm(total=tree.num_entries, **get_tqdm_kwargs(desc=tuple_name, unit="entries")) as pbar:
            for chunk in tree.iterate(names, step_size=step_size, library="ak"):
                pbar.update(len(chunk))
                yield chunk


def merge_tuple_files(inputs: Sequence[Union[str, Path]],
                      output: Union[str, Path],
                      tuple_names: Sequence[str] = ("ntp_track", "ntp_gtrack"),
                      step_size: int = 100_000) -> dict:
    """
    Concatenate the named tuples of many files into one output file

    Args:
        inputs: Input ROOT files, merged in the given order
        output: Output ROOT file (recreated)
        tuple_names: Tuples to merge; every input must hold all of them
        step_size: Reader chunk size

    Returns:
        {tuple_name: number of merged entries}

    Raises:
        DataLoadError: If no inputs are given or an input cannot be opened
        TupleMissingError: If an input lacks one of the tuples
    """
    logger = logging.getLogger("TrackCutStudy.merge")
    if not inputs:
        raise DataLoadError("No input files to merge")

    output = Path(output)
    output.parent.mkdir(parents=True, exist_ok=True)
    counts = {name: 0 for name in tuple_names}
    written = set()

    with uproot.recreate(output) as fout:
        for path in tqdm(inputs, **get_tqdm_kwargs(desc="Merging", unit="files")):
            with TupleReader(path) as reader:
                for name in tuple_names:
                    for chunk in reader.tree(name).iterate(step_size=step_size, library="np"):
                        if name not in written:
                            fout.mktree(name, {col: values.dtype for col, values in chunk.items()})
                            written.add(name)
                        fout[name].extend(chunk)
                        counts[name] += len(next(iter(chunk.values()), []))

    for name, n in counts.items():
        logger.info(f"Merged {name}: {n} entries from {len(inputs)} files into {output}")
    return counts
