"""
Unit tests for reading and merging evaluator tuples.
"""

from __future__ import annotations

from pathlib import Path

import awkward as ak
import numpy as np
import pytest
import uproot

from trackcuts.modules.exceptions import BranchMissingError, DataLoadError, TupleMissingError
from trackcuts.modules.tuple_reader import (
    TRACK_LEAVES,
    TRUTH_LEAVES,
    TupleReader,
    compute_derived_branches,
    merge_tuple_files,
    safe_ratio,
)

from ..utils.mock_data_generator import create_mock_track_file, fixed_track_columns


@pytest.mark.unit
class TestLeafLists:

    def test_track_tuple_has_crossing_and_clusters(self) -> None:
        assert "crossing" in TRACK_LEAVES
        assert "nclustpc" in TRACK_LEAVES
        assert "crossing" not in TRUTH_LEAVES

    def test_no_duplicate_leaves(self) -> None:
        assert len(set(TRACK_LEAVES)) == len(TRACK_LEAVES)
        assert len(set(TRUTH_LEAVES)) == len(TRUTH_LEAVES)


@pytest.mark.unit
class TestDerivedBranches:

    def test_safe_ratio(self) -> None:
        result = safe_ratio([1.0, 2.0, 3.0], [2.0, 0.0, 3.0])

        assert result[0] == 0.5
        assert np.isnan(result[1])
        assert result[2] == 1.0

    def test_fixed_sample_fractions(self) -> None:
        tracks = compute_derived_branches(ak.Array(fixed_track_columns()))

        np.testing.assert_allclose(ak.to_numpy(tracks["pt_frac"])[:4], [1.0, 0.8, 3.0, 0.1], rtol=1e-6)
        np.testing.assert_allclose(ak.to_numpy(tracks["delta_pt_frac"])[:4], [0.005, 0.04, 0.15, 0.015],
                                   rtol=1e-5)
        np.testing.assert_allclose(ak.to_numpy(tracks["per_tpc"])[0], 40.0 / 45.0, rtol=1e-6)

    def test_zero_truth_hits_give_nan(self) -> None:
        tracks = compute_derived_branches(ak.Array(fixed_track_columns()))

        # no micromegas hits in the sample
        assert np.all(np.isnan(ak.to_numpy(tracks["per_mms"])))

    def test_dca_aliases(self) -> None:
        tracks = compute_derived_branches(ak.Array(fixed_track_columns()))

        np.testing.assert_array_equal(ak.to_numpy(tracks["dca_xy"]), ak.to_numpy(tracks["dca3dxy"]))

    def test_only_available_inputs(self) -> None:
        tracks = compute_derived_branches(ak.Array({"pt": np.array([1.0]), "deltapt": np.array([0.1])}))

        assert set(tracks.fields) == {"pt", "deltapt", "delta_pt_frac"}


@pytest.mark.unit
class TestTupleReader:

    def test_load(self, fixed_track_file: Path) -> None:
        with TupleReader(fixed_track_file) as reader:
            tracks = reader.load("ntp_track", ["pt", "gpt"])

        assert len(tracks) == 8
        assert set(tracks.fields) == {"pt", "gpt"}

    def test_load_all_leaves(self, fixed_track_file: Path) -> None:
        with TupleReader(fixed_track_file) as reader:
            truth = reader.load("ntp_gtrack")

        assert set(truth.fields) == set(TRUTH_LEAVES)

    def test_iterate_in_chunks(self, fixed_track_file: Path) -> None:
        with TupleReader(fixed_track_file) as reader:
            chunks = list(reader.iterate("ntp_track", ["event"], step_size=3))

        assert [len(c) for c in chunks] == [3, 3, 2]
        events = np.concatenate([ak.to_numpy(c["event"]) for c in chunks])
        assert events.tolist() == list(range(8))

    def test_has_tuple(self, fixed_track_file: Path) -> None:
        with TupleReader(fixed_track_file) as reader:
            assert reader.has_tuple("ntp_track")
            assert not reader.has_tuple("ntp_vertex")
            assert reader.tree("ntp_track").classname == "TTree"
            assert reader.num_entries("ntp_gtrack") == 6

    def test_missing_file(self, tmp_test_dir: Path) -> None:
        with pytest.raises(DataLoadError, match="Input file not found"):
            TupleReader(tmp_test_dir / "nope.root")

    def test_not_a_root_file(self, tmp_test_dir: Path) -> None:
        path = tmp_test_dir / "garbage.root"
        path.write_bytes(b"this is not a ROOT file")

        with pytest.raises(DataLoadError):
            TupleReader(path)

    def test_truncated_root_file(self, tmp_test_dir: Path) -> None:
        path = create_mock_track_file(tmp_test_dir / "eval.root")
        data = path.read_bytes()
        path.write_bytes(data[:256])

        with pytest.raises(DataLoadError, match="Error opening ROOT file"):
            TupleReader(path)

    def test_missing_tuple(self, fixed_track_file: Path) -> None:
        with TupleReader(fixed_track_file) as reader:
            with pytest.raises(TupleMissingError, match="ntp_vertex"):
                reader.load("ntp_vertex")

    def test_missing_branch(self, fixed_track_file: Path) -> None:
        with TupleReader(fixed_track_file) as reader:
            with pytest.raises(BranchMissingError, match="not_a_leaf"):
                reader.load("ntp_track", ["pt", "not_a_leaf"])

    def test_closed_reader(self, fixed_track_file: Path) -> None:
        reader = TupleReader(fixed_track_file)
        reader.close()

        with pytest.raises(DataLoadError, match="already closed"):
            reader.tree("ntp_track")


@pytest.mark.unit
class TestMergeTupleFiles:

    def test_merge_two_files(self, tmp_test_dir: Path) -> None:
        first = create_mock_track_file(tmp_test_dir / "a.root")
        second = create_mock_track_file(tmp_test_dir / "b.root")
        output = tmp_test_dir / "merged" / "merged.root"

        counts = merge_tuple_files([first, second], output, step_size=5)

        assert counts == {"ntp_track": 16, "ntp_gtrack": 12}
        with uproot.open(output) as f:
            assert f["ntp_track"].num_entries == 16
            assert f["ntp_gtrack"].num_entries == 12
            pt = f["ntp_track"]["pt"].array(library="np")
        np.testing.assert_allclose(pt[:8], pt[8:])

    def test_merged_tuples_are_ttrees(self, tmp_test_dir: Path) -> None:
        first = create_mock_track_file(tmp_test_dir / "a.root")
        second = create_mock_track_file(tmp_test_dir / "b.root")
        output = tmp_test_dir / "merged.root"
        merge_tuple_files([first, second], output)

        with uproot.open(output) as f:
            assert f["ntp_track"].classname == "TTree"
            assert f["ntp_gtrack"].classname == "TTree"
        with TupleReader(output) as reader:
            assert reader.has_tuple("ntp_track")
            assert reader.has_tuple("ntp_gtrack")
            assert len(reader.load("ntp_track", ["pt", "gpt"])) == 16

    def test_no_inputs(self, tmp_test_dir: Path) -> None:
        with pytest.raises(DataLoadError, match="No input files"):
            merge_tuple_files([], tmp_test_dir / "merged.root")

    def test_input_without_truth(self, tmp_test_dir: Path) -> None:
        path = create_mock_track_file(tmp_test_dir / "a.root", truth_tuple=None)

        with pytest.raises(TupleMissingError, match="ntp_gtrack"):
            merge_tuple_files([path], tmp_test_dir / "merged.root")
