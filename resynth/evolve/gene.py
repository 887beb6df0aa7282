"""
Transform chain expression tree.

A Gene is a library entry name plus an ordered tuple of transforms. It is
hashable and immutable, so the chain itself is the memoization key for
rendering. Evaluation is distributive: a gene evaluates to a tuple of
fragments, and Split doubles the fragment count while Reverse, Resample and
Gain act on every fragment independently. Mix flattens both sides into one
fragment.
"""
import math
from dataclasses import dataclass
from typing import ClassVar, FrozenSet, Optional, Sequence, Tuple

import numpy as np

from resynth.core.errors import TransformError
from resynth.core.types import SignalBuffer
from resynth.dsp import transforms as T

TRANSFORM_KINDS = ("split", "reverse", "resample", "gain", "mix")


# -----------------------------------------------------------------------------
# Transform variants
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Split:
    point: float
    kind: ClassVar[str] = "split"

    def __post_init__(self):
        if not math.isfinite(self.point) or not 0.0 < self.point < 1.0:
            raise TransformError(f"split point must be inside (0, 1), got {self.point}")

    def lengths(self, lengths: Tuple[int, ...], renderer) -> Tuple[int, ...]:
        out = []
        for n in lengths:
            idx = T.split_index(n, self.point)
            out.extend((idx, n - idx))
        return tuple(out)

    def apply(self, parts: Tuple[SignalBuffer, ...], renderer) -> Tuple[SignalBuffer, ...]:
        out = []
        for part in parts:
            out.extend(T.split(part, self.point))
        return tuple(out)


@dataclass(frozen=True)
class Reverse:
    kind: ClassVar[str] = "reverse"

    def lengths(self, lengths, renderer):
        return lengths

    def apply(self, parts, renderer):
        return tuple(T.reverse(p) for p in parts)


@dataclass(frozen=True)
class Resample:
    ratio: float
    kind: ClassVar[str] = "resample"

    def __post_init__(self):
        T.ratio_fraction(self.ratio)

    def lengths(self, lengths, renderer):
        return tuple(T.resampled_length(n, self.ratio) for n in lengths)

    def apply(self, parts, renderer):
        return tuple(T.resample(p, self.ratio) for p in parts)


@dataclass(frozen=True)
class Gain:
    db: float
    shelf: str = "low"
    kind: ClassVar[str] = "gain"

    def __post_init__(self):
        if not math.isfinite(self.db):
            raise TransformError(f"gain must be finite, got {self.db}")
        if self.shelf not in T.SHELF_TYPES:
            raise TransformError(f"unknown shelf type {self.shelf!r}")

    def lengths(self, lengths, renderer):
        return lengths

    def apply(self, parts, renderer):
        return tuple(T.shelf_gain(p, self.db, self.shelf) for p in parts)


@dataclass(frozen=True)
class Mix:
    """Crossover: sum with another individual's rendered output."""
    other: "Gene"
    kind: ClassVar[str] = "mix"

    def lengths(self, lengths, renderer):
        return (max(sum(lengths), renderer.length(self.other)),)

    def apply(self, parts, renderer):
        own = SignalBuffer.concat(parts, renderer.sample_rate)
        return (T.mix(own, renderer.render(self.other)),)


# -----------------------------------------------------------------------------
# Gene
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class Gene:
    source: str
    transforms: Tuple[object, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "transforms", tuple(self.transforms))
        object.__setattr__(self, "_hash", hash((self.source, self.transforms)))
        size = len(self.transforms)
        for t in self.transforms:
            if isinstance(t, Mix):
                size += t.other.size
        object.__setattr__(self, "_size", size)

    def __hash__(self) -> int:
        return self._hash

    @property
    def size(self) -> int:
        """Number of transforms in the whole tree, Mix partners included."""
        return self._size

    @property
    def parent(self) -> Optional["Gene"]:
        if not self.transforms:
            return None
        return Gene(self.source, self.transforms[:-1])

    def extend(self, transform) -> "Gene":
        return Gene(self.source, self.transforms + (transform,))

    def sources(self) -> FrozenSet[str]:
        """Library entries this gene draws on, Mix partners included."""
        names = {self.source}
        for t in self.transforms:
            if isinstance(t, Mix):
                names |= t.other.sources()
        return frozenset(names)

    def describe(self) -> str:
        parts = [self.source]
        for t in self.transforms:
            if isinstance(t, Split):
                parts.append(f"split({t.point:.2f})")
            elif isinstance(t, Resample):
                parts.append(f"resample({t.ratio:.3f})")
            elif isinstance(t, Gain):
                parts.append(f"gain({t.db:+.1f}dB,{t.shelf})")
            elif isinstance(t, Mix):
                parts.append(f"mix[{t.other.describe()}]")
            else:
                parts.append(t.kind)
        return " > ".join(parts)


# -----------------------------------------------------------------------------
# Random parameter draws
# -----------------------------------------------------------------------------

def random_transform(
    kind: str,
    rng: np.random.Generator,
    cents_range: float = 1200.0,
    gain_db_range: Sequence[float] = (-12.0, 6.0),
    partner: Optional[Gene] = None,
):
    """Draw a transform of the given kind with fresh random parameters."""
    if kind == "split":
        return Split(float(rng.uniform(T.SPLIT_MIN, T.SPLIT_MAX)))
    if kind == "reverse":
        return Reverse()
    if kind == "resample":
        cents = float(rng.uniform(-cents_range, cents_range))
        return Resample(T.cents_to_ratio(cents))
    if kind == "gain":
        lo, hi = gain_db_range
        shelf = T.SHELF_TYPES[int(rng.integers(len(T.SHELF_TYPES)))]
        return Gain(float(rng.uniform(lo, hi)), shelf)
    if kind == "mix":
        if partner is None:
            raise TransformError("mix needs a partner gene")
        return Mix(partner)
    raise TransformError(f"unknown transform kind {kind!r}")
