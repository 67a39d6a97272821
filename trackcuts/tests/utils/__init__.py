"""
Test utilities: mock evaluator tuples and assertion helpers.
"""

from .mock_data_generator import (
    FIXED_EXPECTED,
    create_mock_histogram_file,
    create_mock_track_file,
    fixed_track_columns,
    fixed_truth_columns,
    generate_track_tuple,
    generate_truth_tuple,
)
from .test_helpers import (
    assert_arrays_close,
    assert_file_exists,
    assert_raises_with_message,
    make_hist,
    root_keys,
    write_config_dir,
)

__all__ = [
    "FIXED_EXPECTED",
    "create_mock_histogram_file",
    "create_mock_track_file",
    "fixed_track_columns",
    "fixed_truth_columns",
    "generate_track_tuple",
    "generate_truth_tuple",
    "assert_arrays_close",
    "assert_file_exists",
    "assert_raises_with_message",
    "make_hist",
    "root_keys",
    "write_config_dir",
]
