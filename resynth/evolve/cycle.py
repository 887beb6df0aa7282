"""
Cycle controller: runs generations against a fixed seed until one beats the
previous cycle's committed score, commits the winner(s), then resets.

All loop state (previous best score, current seed, cycle counters) lives in
an explicit CycleState value rather than module globals.
"""
import logging
import math
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from resynth.core.params import get_param, ms_to_samples
from resynth.core.types import SignalBuffer
from resynth.evolve.assembler import Commit, OutputAssembler
from resynth.evolve.individual import Individual, Renderer
from resynth.evolve.population import PopulationManager, rank

logger = logging.getLogger(__name__)


@dataclass
class CycleState:
    seed: List[Individual]
    best_score_prev_cycle: float = -math.inf
    cycles_run: int = 0


@dataclass
class CycleResult:
    cycle: int
    generations: int
    best_score: float
    commits: List[Commit] = field(default_factory=list)
    restarted: bool = False

    @property
    def committed(self) -> bool:
        return bool(self.commits)


@dataclass
class SectionReport:
    section: int
    output: SignalBuffer
    cycles: List[CycleResult]
    commits: List[Commit]
    cancelled: bool = False


class CycleController:
    def __init__(
        self,
        config: dict,
        manager: PopulationManager,
        assembler: OutputAssembler,
        renderer: Renderer,
        initial: List[Individual],
        cycle_offset: int = 0,
    ):
        self.manager = manager
        self.assembler = assembler
        self.renderer = renderer
        self.initial = list(initial)
        self.cycle_offset = int(cycle_offset)
        self.seed = int(get_param(config, "seed", 0))
        self.budget = int(get_param(config, "cycle.budget", 100))
        self.restart_interval = int(get_param(config, "cycle.restart_interval", 10))
        self.max_generations = int(get_param(config, "cycle.max_generations", 50))
        self.min_improvement = float(get_param(config, "cycle.min_improvement", 0.0))
        self.per_cycle = int(get_param(config, "commit.per_cycle", 1))
        self.min_distance = ms_to_samples(
            get_param(config, "proximity.min_distance_ms", 0.0), assembler.section.sample_rate
        )

    def _fold_into_seed(self, state: CycleState, winner: Individual) -> None:
        """Winner takes the place of the weakest seed member."""
        ranked = rank(state.seed)
        weakest = ranked[-1]
        idx = next(i for i, ind in enumerate(state.seed) if ind is weakest)
        state.seed[idx] = winner.clone()

    def run_cycle(self, cycle: int, state: CycleState,
                  stop_event: Optional[threading.Event] = None) -> Optional[CycleResult]:
        """
        Run one cycle. Returns None if cancelled before the cycle finished;
        nothing is committed in that case.
        """
        parents = list(state.seed)
        cycle_best = -math.inf
        section = self.assembler.section.index

        for generation in range(self.max_generations):
            if stop_event is not None and stop_event.is_set():
                return None
            result = self.manager.step(
                parents, self.cycle_offset + cycle, self.seed, cycle, generation
            )
            parents = result.survivors
            cycle_best = max(cycle_best, result.best_score)
            logger.debug(
                "section %d cycle %d gen %d: best %.6g (to beat %.6g)",
                section, cycle, generation, result.best_score, state.best_score_prev_cycle,
            )
            if cycle_best <= state.best_score_prev_cycle + self.min_improvement:
                continue

            self.assembler.begin_generation()
            picks = self.manager.pick_commits(
                result.ranked, self.assembler.occupancy, self.per_cycle, self.min_distance
            )
            commits = [
                self.assembler.commit(ind, self.renderer.render(ind.gene), cycle, generation)
                for ind in picks
            ]
            if commits:
                state.best_score_prev_cycle = max(c.score for c in commits)
                self._fold_into_seed(state, picks[0])
            return CycleResult(cycle, generation + 1, cycle_best, commits)

        logger.warning(
            "section %d cycle %d: no improvement on %.6g after %d generations",
            section, cycle, state.best_score_prev_cycle, self.max_generations,
        )
        return CycleResult(cycle, self.max_generations, cycle_best)

    def run(self, stop_event: Optional[threading.Event] = None) -> SectionReport:
        state = CycleState(seed=list(self.initial))
        results: List[CycleResult] = []
        cancelled = False
        section = self.assembler.section.index

        for cycle in range(self.budget):
            if stop_event is not None and stop_event.is_set():
                cancelled = True
                break
            restarted = False
            if cycle > 0 and self.restart_interval > 0 and cycle % self.restart_interval == 0:
                state.seed = list(self.initial)
                restarted = True
                logger.info("section %d cycle %d: restart from the initial population", section, cycle)

            result = self.run_cycle(cycle, state, stop_event)
            if result is None:
                cancelled = True
                break
            result.restarted = restarted
            state.cycles_run += 1
            results.append(result)

        if cancelled:
            logger.warning("section %d cancelled after %d cycles", section, state.cycles_run)
        return SectionReport(
            section=section,
            output=self.assembler.result(),
            cycles=results,
            commits=list(self.assembler.commits),
            cancelled=cancelled,
        )
