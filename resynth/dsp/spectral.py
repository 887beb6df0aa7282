"""
Spectral analysis for fitness scoring only (never used for playback).
Fixed-size Hann-windowed STFT magnitude grid laid out as [frames, bins].
"""
import torch

from resynth.core.types import SignalBuffer

DEFAULT_N_FFT = 1024
DEFAULT_HOP = 256


class SpectralAnalyzer:
    def __init__(self, n_fft: int = DEFAULT_N_FFT, hop_length: int = DEFAULT_HOP):
        if n_fft < 2 or hop_length < 1:
            raise ValueError(f"invalid STFT geometry n_fft={n_fft} hop_length={hop_length}")
        self.n_fft = int(n_fft)
        self.hop_length = int(hop_length)
        self.window = torch.hann_window(self.n_fft)

    @property
    def n_bins(self) -> int:
        return self.n_fft // 2 + 1

    def frame_count(self, length: int) -> int:
        """Frames produced for a signal of `length` samples."""
        if length <= 0:
            return 0
        if length <= self.n_fft:
            return 1
        return 1 + (length - self.n_fft) // self.hop_length

    def grid(self, signal) -> torch.Tensor:
        """
        Magnitude grid [frames, bins]. Signals shorter than one window are
        zero-padded to a single frame; empty signals give zero frames.
        """
        x = signal.samples if isinstance(signal, SignalBuffer) else signal
        n = x.shape[-1]
        if n == 0:
            return torch.zeros(0, self.n_bins)
        if n < self.n_fft:
            x = torch.nn.functional.pad(x, (0, self.n_fft - n))
        stft = torch.stft(
            x.view(1, -1),
            n_fft=self.n_fft,
            hop_length=self.hop_length,
            window=self.window,
            center=False,
            return_complex=True,
        )
        return torch.abs(stft).squeeze(0).transpose(0, 1)

    @staticmethod
    def mse(a: torch.Tensor, b: torch.Tensor) -> float:
        """Mean squared error over the overlapping frame range (shorter grid wins)."""
        frames = min(a.shape[0], b.shape[0])
        if frames == 0:
            return float("inf")
        diff = a[:frames] - b[:frames]
        return float(torch.mean(diff.double() ** 2))
