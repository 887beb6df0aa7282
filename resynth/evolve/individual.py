"""
Individuals and the lazy gene interpreter.

An Individual never holds audio. Its waveform is produced on demand by
Renderer.render(gene), which memoizes every chain prefix it evaluates so that
offspring sharing a parent only pay for their last transform.
"""
import threading
from collections import OrderedDict
from typing import Dict, Optional, Tuple

from resynth.core.errors import TransformError
from resynth.core.types import SignalBuffer
from resynth.evolve.gene import Gene


class _LRU:
    """Small thread-safe LRU map."""

    def __init__(self, capacity: int):
        self.capacity = max(0, int(capacity))
        self._data: "OrderedDict[object, object]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            value = self._data.get(key)
            if value is not None:
                self._data.move_to_end(key)
            return value

    def put(self, key, value) -> None:
        if self.capacity == 0:
            return
        with self._lock:
            self._data[key] = value
            self._data.move_to_end(key)
            while len(self._data) > self.capacity:
                self._data.popitem(last=False)

    def __len__(self) -> int:
        return len(self._data)


class Renderer:
    """
    Evaluates genes against a read-only sample library.
    Safe to share between worker threads: the library is never written and
    the caches are locked. Two threads may occasionally render the same gene
    twice; results are identical.
    """

    def __init__(self, library: Dict[str, SignalBuffer], cache_size: int = 256):
        if not library:
            raise ValueError("sample library is empty")
        self.library = library
        self.sample_rate = next(iter(library.values())).sample_rate
        self._parts = _LRU(cache_size)
        self._lengths = _LRU(cache_size * 16)

    def _root(self, gene: Gene) -> SignalBuffer:
        try:
            return self.library[gene.source]
        except KeyError:
            raise TransformError(f"unknown library entry {gene.source!r}") from None

    def lengths(self, gene: Gene) -> Tuple[int, ...]:
        """Fragment lengths of a gene, inferred without rendering any audio."""
        cached = self._lengths.get(gene)
        if cached is not None:
            return cached
        if not gene.transforms:
            result = (len(self._root(gene)),)
        else:
            result = gene.transforms[-1].lengths(self.lengths(gene.parent), self)
        self._lengths.put(gene, result)
        return result

    def length(self, gene: Gene) -> int:
        return sum(self.lengths(gene))

    def parts(self, gene: Gene) -> Tuple[SignalBuffer, ...]:
        cached = self._parts.get(gene)
        if cached is not None:
            return cached
        if not gene.transforms:
            result = (self._root(gene),)
        else:
            result = gene.transforms[-1].apply(self.parts(gene.parent), self)
        self._parts.put(gene, result)
        return result

    def render(self, gene: Gene) -> SignalBuffer:
        return SignalBuffer.concat(self.parts(gene), self.sample_rate)


class Individual:
    """
    Candidate fragment: gene + placement delay + memoized score.
    Assigning a new gene or delay invalidates the score.
    """

    def __init__(self, gene: Gene, delay: int = 0, score: Optional[float] = None):
        self._gene = gene
        self._delay = int(delay)
        self._score = score

    @property
    def gene(self) -> Gene:
        return self._gene

    @gene.setter
    def gene(self, value: Gene) -> None:
        self._gene = value
        self._score = None

    @property
    def delay(self) -> int:
        return self._delay

    @delay.setter
    def delay(self, value: int) -> None:
        self._delay = int(value)
        self._score = None

    @property
    def score(self) -> Optional[float]:
        return self._score

    @score.setter
    def score(self, value: float) -> None:
        self._score = float(value)

    @property
    def is_scored(self) -> bool:
        return self._score is not None

    def invalidate(self) -> None:
        self._score = None

    @property
    def sources(self):
        return self._gene.sources()

    def clone(self) -> "Individual":
        return Individual(self._gene, self._delay, self._score)

    def derive(self, gene: Optional[Gene] = None, delay: Optional[int] = None) -> "Individual":
        """New individual with the given changes; the score carries over only if nothing changed."""
        new_gene = self._gene if gene is None else gene
        new_delay = self._delay if delay is None else int(delay)
        unchanged = new_gene == self._gene and new_delay == self._delay
        return Individual(new_gene, new_delay, self._score if unchanged else None)

    def __repr__(self) -> str:
        score = "invalid" if self._score is None else f"{self._score:.6g}"
        return f"Individual({self._gene.describe()}, delay={self._delay}, score={score})"
