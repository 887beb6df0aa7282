"""
Shelf filters using torchaudio biquad implementations.
All filters are IIR (minimum-phase); corner frequencies are fixed so a Gain
transform is fully described by its dB value and shelf type.
"""

import torch
import torchaudio.functional as F

LOW_SHELF_HZ = 200.0
HIGH_SHELF_HZ = 3000.0
SHELF_Q = 0.707


class Filter:
    @staticmethod
    def _safe_corner(corner_freq: float, sample_rate: int) -> float:
        # Ensure corner is within Nyquist
        return min(corner_freq, sample_rate / 2 - 1)

    @staticmethod
    def low_shelf(waveform: torch.Tensor, sample_rate: int, gain_db: float,
                  corner_freq: float = LOW_SHELF_HZ, q: float = SHELF_Q) -> torch.Tensor:
        """Boost or cut everything below corner_freq by gain_db."""
        corner_freq = Filter._safe_corner(corner_freq, sample_rate)
        return F.bass_biquad(waveform, sample_rate, gain_db, corner_freq, q)

    @staticmethod
    def high_shelf(waveform: torch.Tensor, sample_rate: int, gain_db: float,
                   corner_freq: float = HIGH_SHELF_HZ, q: float = SHELF_Q) -> torch.Tensor:
        """Boost or cut everything above corner_freq by gain_db."""
        corner_freq = Filter._safe_corner(corner_freq, sample_rate)
        return F.treble_biquad(waveform, sample_rate, gain_db, corner_freq, q)
