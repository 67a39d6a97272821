"""
Check a list of evaluator outputs before running the study

Every path in the list file is opened; a file is good when it holds both the
track and the truth tuple. Good and bad paths go to separate list files, the
reco pt and truth pt spectra of the good files are written for a quick look,
and the good tuples can optionally be merged into one file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import StudyConfig
from .exceptions import ConfigurationError, DataLoadError
from .histogram_io import write_histograms
from .histograms import HistogramBook
from .tuple_reader import TupleReader, merge_tuple_files

PT_BINNING = (500, 0.0, 50.0)


def read_file_list(list_file: Union[str, Path]) -> List[Path]:
    """
    Paths listed one per line; blank lines and '#' comments are skipped

    Raises:
        DataLoadError: If the list file does not exist
    """
    list_file = Path(list_file)
    if not list_file.is_file():
        raise DataLoadError(f"File list not found: {list_file}")

    paths = []
    with open(list_file) as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#"):
                paths.append(Path(line))
    return paths


def write_file_list(paths: Sequence[Path], list_file: Union[str, Path]) -> Path:
    list_file = Path(list_file)
    list_file.parent.mkdir(parents=True, exist_ok=True)
    with open(list_file, "w") as f:
        for path in paths:
            f.write(f"{path}\n")
    return list_file


class TupleChecker:
    """
    Sort evaluator outputs into good and bad files

    Attributes:
        list_file: Input list of ROOT files
        good_list, bad_list: Output lists
        output_file: ROOT file receiving the pt spectra
        merged_file: Merged good tuples (None to skip merging)
    """

    def __init__(self, list_file: Union[str, Path], good_list: Union[str, Path],
                 bad_list: Union[str, Path], output_file: Union[str, Path],
                 track_tuple: str = "ntp_track", truth_tuple: str = "ntp_gtrack",
                 merged_file: Optional[Union[str, Path]] = None, step_size: int = 100_000):
        self.logger = logging.getLogger("TrackCutStudy.TupleChecker")
        self.list_file = Path(list_file)
        self.good_list = Path(good_list)
        self.bad_list = Path(bad_list)
        self.output_file = Path(output_file)
        self.track_tuple = track_tuple
        self.truth_tuple = truth_tuple
        self.merged_file = Path(merged_file) if merged_file else None
        self.step_size = step_size

        self.good_files: List[Path] = []
        self.bad_files: List[Path] = []
        self.book: Optional[HistogramBook] = None

    @classmethod
    def from_config(cls, config: StudyConfig) -> "TupleChecker":
        check = config.get_tuple_check()
        missing = [key for key in ("list_file", "good_list", "bad_list", "output_file") if key not in check]
        if missing:
            raise ConfigurationError(f"Missing {missing} in [tuple_check] of io.toml")

        merged_file = None
        if check.get("merge_tuples", False):
            merged_file = check.get("merged_file", "output/checkingTrackTuples.merged.root")
        return cls(
            check["list_file"], check["good_list"], check["bad_list"], check["output_file"],
            track_tuple=config.get_tuple_name("track"),
            truth_tuple=config.get_tuple_name("truth"),
            merged_file=merged_file,
            step_size=config.step_size,
        )

    def is_good_file(self, path: Path) -> bool:
        """True when the file opens and holds both tuples"""
        try:
            reader = TupleReader(path)
        except DataLoadError as e:
            self.logger.warning(f"Bad file: {e}")
            return False

        with reader:
            missing = [name for name in (self.track_tuple, self.truth_tuple) if not reader.has_tuple(name)]
        if missing:
            self.logger.warning(f"Bad file {path}: missing {missing}")
            return False
        return True

    def check(self) -> Tuple[List[Path], List[Path]]:
        """
        Sort the listed files and write the good/bad lists

        Returns:
            (good files, bad files)
        """
        paths = read_file_list(self.list_file)
        self.logger.info(f"Checking {len(paths)} files from {self.list_file}")

        self.good_files, self.bad_files = [], []
        for path in paths:
            (self.good_files if self.is_good_file(path) else self.bad_files).append(path)

        write_file_list(self.good_files, self.good_list)
        write_file_list(self.bad_files, self.bad_list)
        self.logger.info(f"Good files: {len(self.good_files)} -> {self.good_list}")
        self.logger.info(f"Bad files:  {len(self.bad_files)} -> {self.bad_list}")
        return self.good_files, self.bad_files

    def fill_spectra(self) -> HistogramBook:
        """Reco pt of the track tuples and truth pt of the truth tuples of all good files"""
        self.book = HistogramBook()
        self.book.book_1d("hPtReco", *PT_BINNING, x_label=r"$p_{T}^{reco}$ [GeV/c]")
        self.book.book_1d("hPtTrue", *PT_BINNING, x_label=r"$p_{T}^{true}$ [GeV/c]")

        for path in self.good_files:
            with TupleReader(path) as reader:
                for chunk in reader.iterate(self.track_tuple, branches=["pt"], step_size=self.step_size):
                    self.book.fill_1d("hPtReco", np.asarray(chunk["pt"], dtype=np.float64))
                for chunk in reader.iterate(self.truth_tuple, branches=["gpt"], step_size=self.step_size):
                    self.book.fill_1d("hPtTrue", np.asarray(chunk["gpt"], dtype=np.float64))
        return self.book

    def run(self) -> Dict[str, int]:
        """
        check -> spectra -> (merge)

        Returns:
            {'good': n good files, 'bad': n bad files}
        """
        self.check()
        write_histograms(self.output_file, self.fill_spectra())

        if self.merged_file is not None:
            if self.good_files:
                merge_tuple_files(self.good_files, self.merged_file,
                                  tuple_names=(self.track_tuple, self.truth_tuple),
                                  step_size=self.step_size)
            else:
                self.logger.warning("No good files, nothing to merge")

        return {"good": len(self.good_files), "bad": len(self.bad_files)}
