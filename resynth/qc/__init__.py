"""
Quality Control module for assembled outputs.
"""
from resynth.qc.qc import analyze
from resynth.qc.thresholds import QC_THRESHOLDS

__all__ = ["analyze", "QC_THRESHOLDS"]
