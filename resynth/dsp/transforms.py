"""
Transform library: pure, deterministic buffer -> buffer functions.
Every function returns a new SignalBuffer and never touches its input.
"""
import math
from fractions import Fraction
from typing import Tuple

import torch
import torchaudio.functional as F

from resynth.core.errors import TransformError
from resynth.core.types import SignalBuffer
from resynth.dsp.filters import Filter

# Ratios are approximated by p/q with q bounded, which keeps the sinc kernel small.
MAX_RATIO_DENOMINATOR = 1000
SPLIT_MIN = 0.25
SPLIT_MAX = 0.75
SHELF_TYPES = ("low", "high")


def cents_to_ratio(cents: float) -> float:
    """Playback-rate ratio for a pitch offset in cents. +1200 -> 2.0."""
    return 2.0 ** (cents / 1200.0)


def split_index(length: int, point: float) -> int:
    """Sample index for a fractional split point, kept inside [1, length - 1]."""
    if length < 2:
        raise TransformError(f"cannot split a buffer of length {length}")
    return min(max(1, int(math.floor(point * length))), length - 1)


def split(buffer: SignalBuffer, point: float) -> Tuple[SignalBuffer, SignalBuffer]:
    """Split into [0, idx) and [idx, len) where idx = floor(point * len)."""
    idx = split_index(len(buffer), point)
    return buffer.slice(0, idx), buffer.slice(idx, len(buffer))


def reverse(buffer: SignalBuffer) -> SignalBuffer:
    return SignalBuffer(torch.flip(buffer.samples, dims=[0]), buffer.sample_rate)


def ratio_fraction(ratio: float) -> Fraction:
    if not math.isfinite(ratio) or ratio <= 0:
        raise TransformError(f"resample ratio must be finite and > 0, got {ratio}")
    frac = Fraction(ratio).limit_denominator(MAX_RATIO_DENOMINATOR)
    if frac.numerator == 0:
        raise TransformError(f"resample ratio {ratio} is too small")
    return frac


def resampled_length(length: int, ratio: float) -> int:
    """Output length of resample() for an input of `length` samples."""
    frac = ratio_fraction(ratio)
    return int(round(length * frac.denominator / frac.numerator))


def resample(buffer: SignalBuffer, ratio: float) -> SignalBuffer:
    """
    Varispeed resample: ratio > 1 raises pitch and shortens, ratio < 1 lowers and lengthens.
    Band-limited (windowed sinc) interpolation via torchaudio.
    """
    frac = ratio_fraction(ratio)
    out_len = resampled_length(len(buffer), ratio)
    if frac.numerator == frac.denominator or len(buffer) == 0:
        out = buffer.samples.clone()
    else:
        # Treat the buffer as recorded at `numerator` Hz and convert to `denominator` Hz.
        out = F.resample(buffer.samples, frac.numerator, frac.denominator)

    n = out.shape[-1]
    if n > out_len:
        out = out[:out_len]
    elif n < out_len:
        out = torch.nn.functional.pad(out, (0, out_len - n))
    return SignalBuffer(out, buffer.sample_rate)


def shelf_gain(buffer: SignalBuffer, db: float, shelf: str) -> SignalBuffer:
    """Fixed low or high shelf with gain in dB."""
    if not math.isfinite(db):
        raise TransformError(f"gain must be finite, got {db}")
    if shelf not in SHELF_TYPES:
        raise TransformError(f"unknown shelf type {shelf!r}")
    if len(buffer) == 0 or db == 0.0:
        return SignalBuffer(buffer.samples.clone(), buffer.sample_rate)
    if shelf == "low":
        out = Filter.low_shelf(buffer.samples, buffer.sample_rate, db)
    else:
        out = Filter.high_shelf(buffer.samples, buffer.sample_rate, db)
    return SignalBuffer(out, buffer.sample_rate)


def mix(a: SignalBuffer, b: SignalBuffer) -> SignalBuffer:
    """Elementwise sum; the shorter input is zero-padded to the longer length."""
    if a.sample_rate != b.sample_rate:
        raise TransformError(f"cannot mix {a.sample_rate} Hz with {b.sample_rate} Hz")
    ref_len = max(len(a), len(b))
    x = torch.nn.functional.pad(a.samples, (0, ref_len - len(a)))
    y = torch.nn.functional.pad(b.samples, (0, ref_len - len(b)))
    return SignalBuffer(x + y, a.sample_rate)
