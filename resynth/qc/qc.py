"""
Quality Control analysis for an assembled output.
Reports level, clipping and DC, plus how far the output still is from the
target in the same spectral terms the search optimizes.
"""
from typing import Dict, Optional

import numpy as np
import torch

from resynth.core.types import SignalBuffer
from resynth.dsp.spectral import SpectralAnalyzer
from resynth.qc.thresholds import QC_THRESHOLDS


def _db(x: float) -> float:
    """Convert linear to dB."""
    if x <= 0:
        return -np.inf
    return 20.0 * np.log10(abs(x))


def analyze(output: SignalBuffer, target: Optional[SignalBuffer] = None,
            analyzer: Optional[SpectralAnalyzer] = None) -> Dict:
    """
    Analyze an output buffer for QC issues.

    Returns:
        Dict with metrics, pass/warn status and warning messages
    """
    audio = output.samples.view(-1).float()
    n = audio.shape[-1]

    peak = float(torch.max(torch.abs(audio))) if n else 0.0
    rms = float(torch.sqrt(torch.mean(audio ** 2) + 1e-12)) if n else 0.0
    metrics = {
        "duration_s": output.duration,
        "peak_dbfs": _db(peak),
        "rms_dbfs": _db(rms),
        "peak_linear": peak,
        "rms_linear": rms,
        "clipped_samples": int(torch.sum(torch.abs(audio) > 1.0)) if n else 0,
        "dc_offset": float(torch.mean(audio)) if n else 0.0,
    }

    if target is not None:
        analyzer = analyzer or SpectralAnalyzer()
        metrics["spectral_mse"] = analyzer.mse(analyzer.grid(output), analyzer.grid(target))

    warnings = []
    if metrics["peak_dbfs"] > QC_THRESHOLDS["peak_dbfs_max"]:
        warnings.append(f"Peak above full scale: {metrics['peak_dbfs']:.2f} dBFS")
    if metrics["clipped_samples"] > QC_THRESHOLDS["clipped_samples_max"]:
        warnings.append(f"{metrics['clipped_samples']} samples beyond +/-1.0")
    if abs(metrics["dc_offset"]) > QC_THRESHOLDS["dc_offset_max"]:
        warnings.append(f"DC offset {metrics['dc_offset']:.4f}")

    return {
        "status": "WARN" if warnings else "PASS",
        "metrics": metrics,
        "warnings": warnings,
    }
