"""
Output assembly: additive placement of committed individuals into a section
buffer, plus the per-generation occupancy map used for proximity filtering.
"""
import logging
import threading
from dataclasses import dataclass
from typing import FrozenSet, List, Sequence, Tuple

import torch

from resynth.core.types import SignalBuffer, TargetSection
from resynth.evolve.gene import Gene
from resynth.evolve.individual import Individual

logger = logging.getLogger(__name__)


def boundary_fades(samples: torch.Tensor, fade_samples: int) -> torch.Tensor:
    """Linear fade-in and fade-out of fade_samples each. Returns a new tensor."""
    n = samples.shape[-1]
    if n == 0 or fade_samples <= 0:
        return samples
    k = min(fade_samples, n // 2)
    if k == 0:
        return samples
    out = samples.clone()
    ramp = torch.linspace(0.0, 1.0, k, dtype=samples.dtype)
    out[:k] = out[:k] * ramp
    out[-k:] = out[-k:] * torch.flip(ramp, dims=[0])
    return out


class OccupancyMap:
    """Delay ranges [start, end) claimed during the current generation."""

    def __init__(self):
        self._ranges: List[Tuple[int, int]] = []

    def clear(self) -> None:
        self._ranges.clear()

    def claim(self, start: int, end: int) -> None:
        self._ranges.append((int(start), int(end)))

    @property
    def ranges(self) -> List[Tuple[int, int]]:
        return list(self._ranges)

    @staticmethod
    def gap(a: Tuple[int, int], b: Tuple[int, int]) -> int:
        """Samples between two ranges; negative when they overlap."""
        return max(b[0] - a[1], a[0] - b[1])

    def is_clear(self, start: int, end: int, min_distance: int) -> bool:
        candidate = (int(start), int(end))
        return all(self.gap(candidate, r) >= min_distance for r in self._ranges)

    def __len__(self) -> int:
        return len(self._ranges)


@dataclass(frozen=True)
class Commit:
    section: int
    cycle: int
    generation: int
    delay: int
    length: int
    score: float
    gene: Gene

    @property
    def sources(self) -> FrozenSet[str]:
        return self.gene.sources()

    @property
    def end(self) -> int:
        return self.delay + self.length


class OutputAssembler:
    """
    Single mutable output buffer for one target section.
    Writes are additive only and serialized through a lock.
    """

    def __init__(self, section: TargetSection, fade_samples: int = 0):
        self.section = section
        self.fade_samples = int(fade_samples)
        self.occupancy = OccupancyMap()
        self.commits: List[Commit] = []
        self._output = torch.zeros(len(section), dtype=torch.float32)
        self._lock = threading.Lock()

    def begin_generation(self) -> None:
        with self._lock:
            self.occupancy.clear()

    def commit(self, individual: Individual, buffer: SignalBuffer, cycle: int, generation: int) -> Commit:
        """Sum buffer into the output at the individual's delay, truncated at the section end."""
        samples = boundary_fades(buffer.samples, self.fade_samples)
        delay = individual.delay
        with self._lock:
            n = self._output.shape[-1]
            start = min(max(0, delay), n)
            end = min(delay + len(buffer), n)
            if end > start:
                self._output[start:end] += samples[: end - start]
            self.occupancy.claim(delay, delay + len(buffer))
            record = Commit(
                section=self.section.index,
                cycle=cycle,
                generation=generation,
                delay=delay,
                length=len(buffer),
                score=float(individual.score),
                gene=individual.gene,
            )
            self.commits.append(record)
        logger.info(
            "section %d cycle %d: committed %s at %d (score %.6g)",
            self.section.index, cycle, individual.gene.describe(), delay, record.score,
        )
        return record

    def result(self) -> SignalBuffer:
        with self._lock:
            return SignalBuffer(self._output.clone(), self.section.sample_rate)

    @staticmethod
    def stitch(parts: Sequence[SignalBuffer], sample_rate: int) -> SignalBuffer:
        """Concatenate section outputs in temporal order (no summing across boundaries)."""
        return SignalBuffer.concat(list(parts), sample_rate)
