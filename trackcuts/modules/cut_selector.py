from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Sequence

import awkward as ak
import numpy as np
import pandas as pd

from .exceptions import BranchMissingError, ConfigurationError

if TYPE_CHECKING:
    from .config import StudyConfig

CUT_TYPES = ("less", "less_equal", "greater", "greater_equal", "range")

_OPERATORS = {
    "less": "<",
    "less_equal": "<=",
    "greater": ">",
    "greater_equal": ">=",
}


def _column(tracks: Any, branch: str) -> np.ndarray:
    """Fetch one column of an awkward array or mapping of arrays as float64 numpy"""
    if isinstance(tracks, ak.Array):
        if branch not in tracks.fields:
            raise BranchMissingError(branch, "required by track cut")
        return ak.to_numpy(tracks[branch]).astype(np.float64)
    if branch not in tracks:
        raise BranchMissingError(branch, "required by track cut")
    return np.asarray(tracks[branch], dtype=np.float64)


def _num_records(tracks: Any) -> int:
    if isinstance(tracks, ak.Array):
        return len(tracks)
    return len(next(iter(tracks.values()), []))


@dataclass(frozen=True)
class TrackCut:
    """
    One numeric range check on a single tuple leaf

    Attributes:
        name: Cut identifier, e.g. 'vz'
        branch: Leaf the cut is applied to
        cut_type: 'less', 'less_equal', 'greater', 'greater_equal' or 'range'
        value: Threshold for one-sided cuts
        low: Lower bound of a range cut (exclusive)
        high: Upper bound of a range cut (exclusive)
        absolute: Compare |x| instead of x
        enabled: Disabled cuts pass every track
        label: Legend text (built from the cut when empty)
    """
    name: str
    branch: str
    cut_type: str
    value: Optional[float] = None
    low: Optional[float] = None
    high: Optional[float] = None
    absolute: bool = False
    enabled: bool = True
    label: str = ""

    def __post_init__(self) -> None:
        if self.cut_type not in CUT_TYPES:
            raise ConfigurationError(
                f"Unknown cut type '{self.cut_type}' for cut '{self.name}'. "
                f"Expected one of {CUT_TYPES}"
            )
        if self.cut_type == "range":
            if self.low is None or self.high is None:
                raise ConfigurationError(f"Range cut '{self.name}' needs both min and max")
            if self.low >= self.high:
                raise ConfigurationError(
                    f"Range cut '{self.name}' has min >= max ({self.low} >= {self.high})"
                )
        elif self.value is None:
            raise ConfigurationError(f"Cut '{self.name}' of type '{self.cut_type}' needs a value")

    @classmethod
    def from_dict(cls, name: str, table: Mapping[str, Any]) -> "TrackCut":
        """Build a cut from one [track_cuts.<name>] table of cuts.toml"""
        try:
            branch = table["branch"]
            cut_type = table["type"]
        except KeyError as e:
            raise ConfigurationError(f"Cut '{name}' is missing required key {e}")

        def _float(key: str) -> Optional[float]:
            return float(table[key]) if key in table else None

        return cls(
            name=name,
            branch=branch,
            cut_type=cut_type,
            value=_float("value"),
            low=_float("min"),
            high=_float("max"),
            absolute=bool(table.get("absolute", False)),
            enabled=bool(table.get("enabled", True)),
            label=table.get("label", ""),
        )

    def _compare(self, x):
        if self.absolute:
            x = np.abs(x)
        if self.cut_type == "less":
            return x < self.value
        if self.cut_type == "less_equal":
            return x <= self.value
        if self.cut_type == "greater":
            return x > self.value
        if self.cut_type == "greater_equal":
            return x >= self.value
        return (x > self.low) & (x < self.high)

    def mask(self, tracks: Any) -> np.ndarray:
        """
        Boolean pass mask of this cut

        Args:
            tracks: Awkward array of records (or mapping of column arrays)

        Returns:
            numpy bool array, all True when the cut is disabled
        """
        if not self.enabled:
            return np.ones(_num_records(tracks), dtype=bool)
        return np.asarray(self._compare(_column(tracks, self.branch)), dtype=bool)

    def passes(self, record: Mapping[str, Any]) -> bool:
        """Whether a single record passes (NaN never passes an enabled cut)"""
        if not self.enabled:
            return True
        if self.branch not in record:
            raise BranchMissingError(self.branch, f"required by cut '{self.name}'")
        return bool(self._compare(float(record[self.branch])))

    def describe(self) -> str:
        if self.label:
            return self.label
        var = f"|{self.branch}|" if self.absolute else self.branch
        if self.cut_type == "range":
            return f"{self.low:g} < {var} < {self.high:g}"
        return f"{var} {_OPERATORS[self.cut_type]} {self.value:g}"


class TrackSelector:
    """
    Decide whether tracks are "good": the AND of all enabled track cuts

    Attributes:
        cuts: Ordered track cuts (disabled ones are kept but always pass)
    """

    def __init__(self, cuts: Sequence[TrackCut]) -> None:
        names = [cut.name for cut in cuts]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate track cut names: {duplicates}")

        self.cuts: List[TrackCut] = list(cuts)
        self.logger = logging.getLogger("TrackCutStudy.TrackSelector")

    @classmethod
    def from_config(cls, config: StudyConfig) -> "TrackSelector":
        return cls([TrackCut.from_dict(name, table)
                    for name, table in config.get_track_cuts().items()])

    @property
    def enabled_cuts(self) -> List[TrackCut]:
        return [cut for cut in self.cuts if cut.enabled]

    def __len__(self) -> int:
        return len(self.cuts)

    def good_track_mask(self, tracks: Any) -> np.ndarray:
        """
        Mask of tracks passing every enabled cut

        Args:
            tracks: Awkward array of track records

        Returns:
            numpy bool array (all True when no cut is enabled)

        Raises:
            BranchMissingError: If an enabled cut needs a missing leaf
        """
        mask = np.ones(_num_records(tracks), dtype=bool)
        for cut in self.enabled_cuts:
            mask &= cut.mask(tracks)
        return mask

    def is_good_track(self, record: Mapping[str, Any]) -> bool:
        return all(cut.passes(record) for cut in self.enabled_cuts)

    def apply(self, tracks: ak.Array) -> ak.Array:
        """Return only the good tracks"""
        mask = self.good_track_mask(tracks)
        n_before = len(tracks)
        n_after = int(np.sum(mask))
        if n_before > 0:
            self.logger.info(f"Track selection: {n_before} → {n_after} ({100*n_after/n_before:.1f}%)")
        return tracks[mask]

    def _toggle(self, names: Sequence[str], enabled: bool) -> "TrackSelector":
        known = {cut.name for cut in self.cuts}
        unknown = [n for n in names if n not in known]
        if unknown:
            raise ConfigurationError(f"Unknown track cuts: {unknown}. Known cuts: {sorted(known)}")
        return TrackSelector([
            replace(cut, enabled=enabled) if cut.name in names else cut
            for cut in self.cuts
        ])

    def with_disabled(self, *names: str) -> "TrackSelector":
        """New selector with the named cuts switched off"""
        return self._toggle(names, False)

    def with_enabled(self, *names: str) -> "TrackSelector":
        """New selector with the named cuts switched on"""
        return self._toggle(names, True)

    def cut_flow(self, tracks: Any) -> pd.DataFrame:
        """
        Individual and cumulative pass counts of the enabled cuts

        Returns:
            DataFrame with columns: cut, label, n_pass, eff_individual,
            n_cumulative, eff_cumulative. The first row is the input count.
        """
        n_total = _num_records(tracks)
        cumulative = np.ones(n_total, dtype=bool)
        rows: List[Dict[str, Any]] = [{
            "cut": "all",
            "label": "no cuts",
            "n_pass": n_total,
            "eff_individual": 1.0 if n_total else 0.0,
            "n_cumulative": n_total,
            "eff_cumulative": 1.0 if n_total else 0.0,
        }]

        for cut in self.enabled_cuts:
            mask = cut.mask(tracks)
            cumulative &= mask
            n_pass = int(np.sum(mask))
            n_cum = int(np.sum(cumulative))
            rows.append({
                "cut": cut.name,
                "label": cut.describe(),
                "n_pass": n_pass,
                "eff_individual": n_pass / n_total if n_total else 0.0,
                "n_cumulative": n_cum,
                "eff_cumulative": n_cum / n_total if n_total else 0.0,
            })

        return pd.DataFrame(rows)

    def describe(self) -> List[str]:
        """Human readable labels of the enabled cuts (plot legends)"""
        return [cut.describe() for cut in self.enabled_cuts]


def weird_mask(pt_frac: Any, low: float, high: float) -> np.ndarray:
    """
    Mask of weird tracks: reco/truth pt fraction not strictly inside (low, high)

    A NaN fraction (no matched truth particle) counts as weird.
    """
    frac = np.asarray(pt_frac, dtype=np.float64)
    return ~((frac > low) & (frac < high))


def is_weird_track(pt_frac: float, low: float, high: float) -> bool:
    return bool(weird_mask(pt_frac, low, high))
