#!/usr/bin/env python3
"""
Custom exceptions for the track cut study

Provides a hierarchy of exceptions for better error handling and diagnostics.
All custom exceptions inherit from TrackStudyError for easy catching.
"""


class TrackStudyError(Exception):
    """
    Base exception for all track cut study errors

    All custom exceptions inherit from this class, allowing the scripts to
    catch every study-specific error with a single except clause.
    """
    pass


class ConfigurationError(TrackStudyError):
    """
    Raised when configuration is invalid or missing required fields

    Examples:
    - Missing TOML file in the config directory
    - Unknown cut type
    - Range cut with min >= max
    """
    pass


class DataLoadError(TrackStudyError):
    """
    Raised when an input file cannot be found or opened

    Examples:
    - File not found
    - Corrupted ROOT file
    - Empty file list
    """
    pass


class TupleMissingError(TrackStudyError):
    """
    Raised when a named tuple is not found in an opened file
    """
    def __init__(self, tuple_name: str, file_path: str = None):
        """
        Initialize TupleMissingError

        Args:
            tuple_name: Name of the missing tuple (e.g. 'ntp_track')
            file_path: Optional path to the file being read
        """
        self.tuple_name = tuple_name
        self.file_path = file_path

        message = f"Required tuple '{tuple_name}' not found"
        if file_path:
            message += f" in file: {file_path}"

        super().__init__(message)


class BranchMissingError(TrackStudyError):
    """
    Raised when a required column is not found in the records

    Examples:
    - Cut configured on a leaf the evaluator did not write
    - Leaf name typo in cuts.toml
    """
    def __init__(self, branch_name: str, context: str = None):
        """
        Initialize BranchMissingError

        Args:
            branch_name: Name of the missing branch
            context: Optional file path or description of the consumer
        """
        self.branch_name = branch_name
        self.context = context

        message = f"Required branch '{branch_name}' not found"
        if context:
            message += f" ({context})"

        super().__init__(message)


class HistogramMissingError(TrackStudyError):
    """
    Raised when a named histogram cannot be found

    Examples:
    - Wrong histogram path in a ratio comparison job
    - Lookup of a histogram that was never booked
    """
    def __init__(self, hist_name: str, file_path: str = None):
        self.hist_name = hist_name
        self.file_path = file_path

        message = f"Histogram '{hist_name}' not found"
        if file_path:
            message += f" in file: {file_path}"

        super().__init__(message)


class HistogramError(TrackStudyError):
    """
    Raised when a histogram operation is not possible

    Examples:
    - Dividing histograms with different binning
    - Rebinning by a factor that does not divide the number of bins
    - Booking two histograms with the same name
    """
    pass
