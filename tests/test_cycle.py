"""
Tests for resynth/evolve/cycle: commit ordering, restarts, generation cap,
proximity filtering and cooperative cancellation.
"""
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import itertools
import math
import threading

import pytest
import torch

from resynth.core.types import SignalBuffer, TargetSection
from resynth.dsp.spectral import SpectralAnalyzer
from resynth.evolve.assembler import OccupancyMap, OutputAssembler
from resynth.evolve.cycle import CycleController, CycleState
from resynth.evolve.elitism import ElitismSchedule
from resynth.evolve.fitness import SpectralFitness
from resynth.evolve.individual import Renderer
from resynth.evolve.population import PopulationManager, initial_population
from resynth.params.resolve import resolve_config

SR = 8000
FREQS = (220.0, 330.0, 440.0)


def _sine(freq: float, n: int, amp: float = 0.2) -> torch.Tensor:
    t = torch.arange(n, dtype=torch.float64) / SR
    return (amp * torch.sin(2 * math.pi * freq * t)).float()


@pytest.fixture
def library():
    return {f"s{int(f)}": SignalBuffer(_sine(f, SR // 4), SR) for f in FREQS}


@pytest.fixture
def target():
    n = SR
    return SignalBuffer(sum(_sine(f, n) for f in FREQS), SR)


def _controller(library, target, overrides):
    config = resolve_config(overrides)
    section = TargetSection(target, 0)
    renderer = Renderer(library)
    fitness = SpectralFitness(SpectralAnalyzer(512, 128))
    manager = PopulationManager(config, renderer, fitness, section, schedule=ElitismSchedule())
    assembler = OutputAssembler(section)
    initial = initial_population(library, config["population"]["size"], len(section))
    return CycleController(config, manager, assembler, renderer, initial)


BASE = {
    "seed": 3,
    "population": {"size": 6},
    "cycle": {"budget": 6, "restart_interval": 0, "max_generations": 8},
}


def _with(**sections):
    config = {k: dict(v) if isinstance(v, dict) else v for k, v in BASE.items()}
    for key, value in sections.items():
        config.setdefault(key, {}).update(value)
    return config


def test_committed_scores_strictly_increase(library, target):
    report = _controller(library, target, BASE).run()
    scores = [c.score for c in report.commits]
    assert scores
    assert all(b > a for a, b in zip(scores, scores[1:]))
    assert not report.cancelled
    assert len(report.cycles) == 6


def test_commit_matches_cycle_best(library, target):
    report = _controller(library, target, BASE).run()
    for result in report.cycles:
        if result.committed:
            assert result.commits[0].score == result.best_score


def test_output_is_sum_of_commits(library, target):
    controller = _controller(library, target, BASE)
    report = controller.run()
    expected = torch.zeros(len(target))
    for c in report.commits:
        rendered = controller.renderer.render(c.gene).samples
        end = min(c.delay + len(rendered), len(target))
        expected[c.delay:end] += rendered[: end - c.delay]
    torch.testing.assert_close(report.output.samples, expected)
    assert len(report.output) == len(target)


def test_restart_flags(library, target):
    overrides = _with(cycle={"budget": 5, "restart_interval": 2, "max_generations": 3})
    report = _controller(library, target, overrides).run()
    assert [r.restarted for r in report.cycles] == [False, False, True, False, True]


def test_generation_cap_commits_nothing(library, target):
    overrides = _with(
        mutation={"rate": 0.0, "delay_rate": 0.0},
        cycle={"budget": 2, "max_generations": 4},
    )
    report = _controller(library, target, overrides).run()
    first, second = report.cycles
    assert first.committed and first.generations == 1
    assert not second.committed
    assert second.generations == 4
    assert len(report.commits) == 1


def test_run_cycle_leaves_state_explicit(library, target):
    controller = _controller(library, target, BASE)
    state = CycleState(seed=list(controller.initial))
    result = controller.run_cycle(0, state)
    assert result.committed
    assert state.best_score_prev_cycle == result.commits[0].score
    assert any(ind.gene == result.commits[0].gene for ind in state.seed)
    assert len(state.seed) == len(controller.initial)


def test_proximity_filter_within_generation(library, target):
    overrides = _with(
        population={"size": 8, "random_delays": True},
        commit={"per_cycle": 3},
        proximity={"min_distance_ms": 50.0},
    )
    controller = _controller(library, target, overrides)
    report = controller.run()
    min_distance = int(round(0.05 * SR))
    groups = itertools.groupby(report.commits, key=lambda c: (c.cycle, c.generation))
    for _, commits in groups:
        commits = list(commits)
        assert len(commits) <= 3
        for a, b in itertools.combinations(commits, 2):
            assert OccupancyMap.gap((a.delay, a.end), (b.delay, b.end)) >= min_distance


def test_preset_stop_event_cancels_immediately(library, target):
    stop = threading.Event()
    stop.set()
    report = _controller(library, target, BASE).run(stop)
    assert report.cancelled
    assert report.cycles == []
    assert report.commits == []
    assert len(report.output) == len(target)
    assert float(report.output.samples.abs().max()) == 0.0


def test_stop_during_run_keeps_committed_output(library, target):
    stop = threading.Event()
    controller = _controller(library, target, BASE)
    original = controller.assembler.commit

    def commit_then_stop(*args, **kwargs):
        record = original(*args, **kwargs)
        stop.set()
        return record

    controller.assembler.commit = commit_then_stop
    report = controller.run(stop)
    assert report.cancelled
    assert len(report.commits) == 1
    assert len(report.output) == len(target)
    assert float(report.output.samples.abs().max()) > 0.0


def test_min_improvement_blocks_marginal_commits(library, target):
    overrides = _with(cycle={"budget": 4, "max_generations": 4, "min_improvement": 1e6})
    report = _controller(library, target, overrides).run()
    assert [r.committed for r in report.cycles] == [True, False, False, False]
    assert len(report.commits) == 1
