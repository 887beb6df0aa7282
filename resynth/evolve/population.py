"""
Population manager: one generation is mutate -> score -> select.

Parents are never replaced outright: every parent yields exactly one
offspring and both compete in the same ranked working set. Mutation and
scoring are mapped over a worker pool; each map call is a barrier.
"""
import logging
import math
from concurrent.futures import Executor
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from resynth.core.errors import TransformError
from resynth.core.params import get_param, ms_to_samples
from resynth.core.types import TargetSection
from resynth.evolve.assembler import OccupancyMap
from resynth.evolve.elitism import ElitismSchedule
from resynth.evolve.fitness import CorrelationAligner, SpectralFitness
from resynth.evolve.gene import TRANSFORM_KINDS, Gene, random_transform
from resynth.evolve.individual import Individual, Renderer

logger = logging.getLogger(__name__)


# Stream tags keep the entropy paths of different consumers disjoint.
STREAM_MUTATE = 1
STREAM_SELECT = 2
STREAM_SEED = 3


def spawn_rng(seed: int, *path: int) -> np.random.Generator:
    """Independent generator for a (seed, stream, section, cycle, generation, ...) path."""
    return np.random.default_rng([int(seed)] + [int(p) for p in path])


class GenerationState(Enum):
    SEEDED = "seeded"
    MUTATED = "mutated"
    SCORED = "scored"
    SELECTED = "selected"


@dataclass
class GenerationResult:
    survivors: List[Individual]
    ranked: List[Individual]
    best_score: float
    best: Optional[Individual]


@dataclass(frozen=True)
class MutationSettings:
    rate: float = 1.0
    delay_rate: float = 0.5
    delay_reset: float = 0.05
    delay_step: int = 4410
    kinds: Tuple[str, ...] = TRANSFORM_KINDS
    weights: Tuple[float, ...] = (1.0, 1.0, 1.0, 1.0, 1.0)
    cents_range: float = 1200.0
    gain_db_range: Tuple[float, float] = (-12.0, 6.0)
    max_transforms: int = 16
    max_retries: int = 8
    root_rate: float = 0.1

    @classmethod
    def from_config(cls, config: dict, sample_rate: int) -> "MutationSettings":
        enabled = tuple(get_param(config, "mutation.enabled", TRANSFORM_KINDS))
        raw = [float(get_param(config, f"mutation.weights.{k}", 1.0)) for k in enabled]
        total = sum(raw)
        weights = tuple(w / total for w in raw) if total > 0 else ()
        return cls(
            rate=float(get_param(config, "mutation.rate", 1.0)),
            delay_rate=float(get_param(config, "mutation.delay_rate", 0.5)),
            delay_reset=float(get_param(config, "mutation.delay_reset", 0.05)),
            delay_step=max(1, ms_to_samples(get_param(config, "mutation.delay_step_ms", 100.0), sample_rate)),
            kinds=enabled if weights else (),
            weights=weights,
            cents_range=float(get_param(config, "mutation.cents_range", 1200.0)),
            gain_db_range=tuple(get_param(config, "mutation.gain_db_range", (-12.0, 6.0))),
            max_transforms=int(get_param(config, "mutation.max_transforms", 16)),
            max_retries=int(get_param(config, "mutation.max_retries", 8)),
            root_rate=float(get_param(config, "mutation.root_rate", 0.1)),
        )


def rank(individuals: Sequence[Individual]) -> List[Individual]:
    """Sort by score descending; unscored individuals sink to the bottom. Stable."""
    def key(ind: Individual) -> float:
        return ind.score if ind.score is not None else -math.inf
    return sorted(individuals, key=key, reverse=True)


def initial_population(
    library: Dict[str, object],
    size: int,
    section_length: int,
    rng: Optional[np.random.Generator] = None,
    random_delays: bool = False,
) -> List[Individual]:
    """
    Library entries in order, cycled to fill `size` slots. When the library
    is larger than the population and a generator is given, `size` distinct
    entries are drawn from the whole library instead.
    """
    names = list(library)
    if rng is not None and len(names) > size:
        picks = sorted(int(i) for i in rng.choice(len(names), size=size, replace=False))
        names = [names[i] for i in picks]
    population = []
    for i in range(size):
        delay = 0
        if random_delays and rng is not None and section_length > 0:
            delay = int(rng.integers(section_length))
        population.append(Individual(Gene(names[i % len(names)]), delay))
    return population


class PopulationManager:
    def __init__(
        self,
        config: dict,
        renderer: Renderer,
        fitness: SpectralFitness,
        section: TargetSection,
        schedule: Optional[ElitismSchedule] = None,
        executor: Optional[Executor] = None,
        aligner: Optional[CorrelationAligner] = None,
    ):
        self.renderer = renderer
        self.fitness = fitness
        self.section = section
        self.executor = executor
        self.aligner = aligner
        self.schedule = schedule or ElitismSchedule()
        self.population_size = int(get_param(config, "population.size", 16))
        self.max_fraction = float(get_param(config, "elitism.max_fraction", 0.5))
        self.settings = MutationSettings.from_config(config, section.sample_rate)
        self.state = GenerationState.SEEDED

    def _map(self, fn, items):
        if self.executor is None:
            return list(map(fn, items))
        return list(self.executor.map(fn, items))

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def mutate_delay(self, delay: int, rng: np.random.Generator) -> int:
        n = len(self.section)
        if n <= 1:
            return 0
        if rng.random() < self.settings.delay_reset:
            return int(rng.integers(n))
        step = self.settings.delay_step
        return int(min(max(0, delay + int(rng.integers(-step, step + 1))), n - 1))

    def _draw_gene(self, parent: Individual, rng: np.random.Generator, partners: Sequence[Individual]) -> Gene:
        s = self.settings
        for attempt in range(s.max_retries + 1):
            kind = s.kinds[int(rng.choice(len(s.kinds), p=s.weights))]
            try:
                partner = None
                if kind == "mix":
                    partner = partners[int(rng.integers(len(partners)))].gene
                transform = random_transform(kind, rng, s.cents_range, s.gain_db_range, partner)
                gene = parent.gene.extend(transform)
                if gene.size > s.max_transforms:
                    raise TransformError(f"chain of {gene.size} transforms exceeds {s.max_transforms}")
                self.renderer.lengths(gene)
                return gene
            except TransformError as exc:
                logger.debug("mutation %s on %s discarded (attempt %d): %s",
                             kind, parent.gene.describe(), attempt + 1, exc)
        return parent.gene

    def _fresh_root(self, rng: np.random.Generator, partners: Sequence[Individual]) -> Optional[Gene]:
        """A library entry no current parent is rooted at, or None when every entry is in play."""
        in_play = {ind.gene.source for ind in partners}
        absent = [name for name in self.renderer.library if name not in in_play]
        if not absent:
            return None
        return Gene(absent[int(rng.integers(len(absent)))])

    def offspring(self, parent: Individual, rng: np.random.Generator, partners: Sequence[Individual]) -> Individual:
        """
        Exactly one child: maybe one new transform, independently maybe a new
        delay. A gene mutation is occasionally a fresh root instead, so library
        entries outside the population stay reachable.
        """
        s = self.settings
        gene = parent.gene
        if s.kinds and rng.random() < s.rate:
            root = self._fresh_root(rng, partners) if rng.random() < s.root_rate else None
            gene = root if root is not None else self._draw_gene(parent, rng, partners)

        delay = parent.delay
        if self.aligner is not None:
            try:
                delay = self.aligner.align(self.renderer.render(gene), self.section)
            except TransformError as exc:
                logger.debug("alignment of %s skipped: %s", gene.describe(), exc)
        elif rng.random() < s.delay_rate:
            delay = self.mutate_delay(delay, rng)
        return parent.derive(gene=gene, delay=delay)

    def mutate(self, parents: Sequence[Individual], rngs: Sequence[np.random.Generator]) -> List[Individual]:
        """Parents plus one offspring each."""
        partners = list(parents)
        children = self._map(lambda pair: self.offspring(pair[0], pair[1], partners), list(zip(parents, rngs)))
        self.state = GenerationState.MUTATED
        return list(parents) + children

    # -------------------------------------------------------------------------
    # Scoring and selection
    # -------------------------------------------------------------------------

    def score(self, working: Sequence[Individual]) -> None:
        pending = [ind for ind in working if not ind.is_scored]
        self._map(lambda ind: self.fitness.evaluate(ind, self.renderer, self.section), pending)
        self.state = GenerationState.SCORED

    def select(self, working: Sequence[Individual], cycles_elapsed: int,
               rng: np.random.Generator) -> Tuple[List[Individual], List[Individual]]:
        """
        Returns (survivors, ranked). Elites are sampled from a rank-linear
        distribution with a probability that follows the elitism schedule;
        the rest of the slots are filled from the top of the ranking.
        """
        ranked = rank(working)
        size = min(self.population_size, len(ranked))
        strength = self.schedule.strength(cycles_elapsed)

        elites: List[Individual] = []
        if strength > 0.0 and self.max_fraction > 0.0 and rng.random() < strength:
            n_elite = min(size, max(1, int(round(strength * self.max_fraction * size))))
            weights = np.arange(len(ranked), 0, -1, dtype=np.float64)
            picks = rng.choice(len(ranked), size=n_elite, replace=False, p=weights / weights.sum())
            elites = [ranked[i] for i in sorted(int(p) for p in picks)]

        taken = {id(ind) for ind in elites}
        fill = [ind for ind in ranked if id(ind) not in taken][: size - len(elites)]
        survivors = rank(elites + fill)
        self.state = GenerationState.SELECTED
        return survivors, ranked

    def pick_commits(self, ranked: Sequence[Individual], occupancy: OccupancyMap,
                     count: int, min_distance: int) -> List[Individual]:
        """
        Best individuals whose delay range keeps min_distance from every range
        already claimed this generation and from each other.
        """
        scratch = OccupancyMap()
        for start, end in occupancy.ranges:
            scratch.claim(start, end)
        picks: List[Individual] = []
        for ind in ranked:
            if len(picks) >= count:
                break
            if ind.score is None or not math.isfinite(ind.score):
                continue
            try:
                length = self.renderer.length(ind.gene)
            except TransformError:
                continue
            if scratch.is_clear(ind.delay, ind.delay + length, min_distance):
                picks.append(ind)
                scratch.claim(ind.delay, ind.delay + length)
        return picks

    def step(self, parents: Sequence[Individual], cycles_elapsed: int, seed: int,
             cycle: int, generation: int) -> GenerationResult:
        """One full generation: Seeded -> Mutated -> Scored -> Selected."""
        self.state = GenerationState.SEEDED
        path = (self.section.index, cycle, generation)
        rngs = [spawn_rng(seed, STREAM_MUTATE, *path, i) for i in range(len(parents))]
        working = self.mutate(parents, rngs)
        self.score(working)
        survivors, ranked = self.select(working, cycles_elapsed, spawn_rng(seed, STREAM_SELECT, *path))
        best = ranked[0] if ranked else None
        best_score = best.score if best is not None and best.score is not None else -math.inf
        return GenerationResult(survivors, ranked, best_score, best)
