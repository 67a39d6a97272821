"""
Track-quality cut study on tracking-evaluator ntuples

Reads the evaluator track/truth tuples, applies configurable track quality
cuts, fills histograms before and after cuts, and derives efficiency curves,
rejection factors and ratio plots.
"""

__version__ = "0.3.0"
