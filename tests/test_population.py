"""
Tests for resynth/evolve/population: offspring production, retry on transform
errors, truncation and elitism, proximity filtering, determinism.
"""
import sys
import os

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

import math
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
import torch

from resynth.core.types import SignalBuffer, TargetSection
from resynth.dsp.spectral import SpectralAnalyzer
from resynth.evolve.assembler import OccupancyMap
from resynth.evolve.elitism import ElitismSchedule
from resynth.evolve.fitness import SpectralFitness
from resynth.evolve.gene import Gene, Reverse
from resynth.evolve.individual import Individual, Renderer
from resynth.evolve.population import (
    GenerationState,
    PopulationManager,
    initial_population,
    rank,
    spawn_rng,
)
from resynth.params.resolve import resolve_config

SR = 8000


def _sine(freq: float, n: int, amp: float = 0.3) -> SignalBuffer:
    t = torch.arange(n, dtype=torch.float64) / SR
    return SignalBuffer((amp * torch.sin(2 * math.pi * freq * t)).float(), SR)


@pytest.fixture
def library():
    return {
        "low": _sine(220.0, 1000),
        "mid": _sine(440.0, 1000),
        "high": _sine(880.0, 1000),
    }


@pytest.fixture
def section():
    n = 4 * SR
    t = torch.arange(n, dtype=torch.float64) / SR
    target = (0.3 * torch.sin(2 * math.pi * 440.0 * t)).float()
    return TargetSection(SignalBuffer(target, SR), 0)


def _manager(library, section, overrides=None, schedule=None, executor=None):
    config = resolve_config(overrides or {})
    return PopulationManager(
        config,
        Renderer(library),
        SpectralFitness(SpectralAnalyzer(512, 128)),
        section,
        schedule=schedule or ElitismSchedule(max_strength=0.0),
        executor=executor,
    )


def _rngs(n, seed=0):
    return [spawn_rng(seed, 9, i) for i in range(n)]


# -----------------------------------------------------------------------------
# Mutation
# -----------------------------------------------------------------------------

def test_initial_population_cycles_library(library):
    pop = initial_population(library, 7, 1000)
    assert [ind.gene.source for ind in pop] == ["low", "mid", "high", "low", "mid", "high", "low"]
    assert all(ind.delay == 0 for ind in pop)


def test_initial_population_random_delays(library):
    pop = initial_population(library, 6, 1000, rng=np.random.default_rng(1), random_delays=True)
    assert all(0 <= ind.delay < 1000 for ind in pop)
    assert len({ind.delay for ind in pop}) > 1


def test_initial_population_reaches_past_population_size():
    library = {name: _sine(220.0, 100) for name in ("a", "b", "c", "d", "e", "f")}
    seen = set()
    for seed in range(40):
        pop = initial_population(library, 2, 1000, rng=np.random.default_rng(seed))
        sources = [ind.gene.source for ind in pop]
        assert len(set(sources)) == 2
        seen.update(sources)
    assert seen == set(library)


def test_fresh_root_brings_in_absent_entry(library, section):
    manager = _manager(library, section, {"mutation": {"rate": 1.0, "root_rate": 1.0, "delay_rate": 0.0}})
    parents = [Individual(Gene("low", (Reverse(),)), 0), Individual(Gene("low"), 0)]
    children = manager.mutate(parents, _rngs(2))[2:]
    assert all(child.gene in (Gene("mid"), Gene("high")) for child in children)


def test_fresh_root_skipped_when_every_entry_in_play(library, section):
    manager = _manager(library, section, {"mutation": {"rate": 1.0, "root_rate": 1.0, "delay_rate": 0.0}})
    parents = initial_population(library, 3, len(section))
    children = manager.mutate(parents, _rngs(3))[3:]
    for parent, child in zip(parents, children):
        assert child.gene.parent == parent.gene


def test_mutate_keeps_parents_and_adds_one_child_each(library, section):
    manager = _manager(library, section, {"population": {"size": 6}})
    parents = initial_population(library, 6, len(section))
    working = manager.mutate(parents, _rngs(6))
    assert len(working) == 12
    assert all(a is b for a, b in zip(working[:6], parents))
    assert manager.state is GenerationState.MUTATED


def test_zero_mutation_rates_clone_parents(library, section):
    manager = _manager(library, section, {"mutation": {"rate": 0.0, "delay_rate": 0.0}})
    parents = initial_population(library, 4, len(section))
    children = manager.mutate(parents, _rngs(4))[4:]
    for parent, child in zip(parents, children):
        assert child is not parent
        assert child.gene == parent.gene
        assert child.delay == parent.delay


def test_full_mutation_rate_extends_chain(library, section):
    manager = _manager(library, section, {"mutation": {"rate": 1.0, "delay_rate": 0.0}})
    parents = initial_population(library, 8, len(section))
    children = manager.mutate(parents, _rngs(8))[8:]
    for parent, child in zip(parents, children):
        assert child.gene.parent == parent.gene


def test_only_enabled_kinds_are_drawn(library, section):
    manager = _manager(library, section, {"mutation": {"rate": 1.0, "enabled": ["reverse"]}})
    parents = initial_population(library, 8, len(section))
    children = manager.mutate(parents, _rngs(8))[8:]
    assert all(child.gene.transforms[-1].kind == "reverse" for child in children)


def test_transform_errors_fall_back_to_parent_gene(section):
    library = {"one": SignalBuffer(torch.ones(1), SR)}
    manager = _manager(library, section, {"mutation": {"rate": 1.0, "enabled": ["split"], "max_retries": 3}})
    parents = initial_population(library, 3, len(section))
    children = manager.mutate(parents, _rngs(3))[3:]
    assert all(child.gene == Gene("one") for child in children)


def test_chain_length_is_capped(library, section):
    manager = _manager(library, section, {"mutation": {"rate": 1.0, "enabled": ["reverse"], "max_transforms": 1, "root_rate": 0.0}})
    parent = Individual(Gene("low", (Reverse(),)), 0)
    child = manager.offspring(parent, spawn_rng(0, 1), [parent])
    assert child.gene == parent.gene


def test_delay_mutation_stays_inside_section(library, section):
    manager = _manager(library, section, {"mutation": {"delay_reset": 0.5, "delay_step_ms": 5000.0}})
    rng = np.random.default_rng(4)
    delays = [manager.mutate_delay(len(section) - 1, rng) for _ in range(200)]
    assert all(0 <= d < len(section) for d in delays)


# -----------------------------------------------------------------------------
# Scoring and selection
# -----------------------------------------------------------------------------

def _scored(n):
    return [Individual(Gene("low"), delay=i, score=-float(i)) for i in range(n)]


def test_rank_sorts_descending_with_unscored_last():
    pop = [Individual(Gene("low"), 0), Individual(Gene("low"), 1, -2.0), Individual(Gene("low"), 2, -1.0)]
    assert [ind.delay for ind in rank(pop)] == [2, 1, 0]


def test_truncation_keeps_top_population_size(library, section):
    manager = _manager(library, section, {"population": {"size": 5}})
    working = _scored(10)
    survivors, ranked = manager.select(list(reversed(working)), 0, np.random.default_rng(0))
    assert [ind.delay for ind in survivors] == [0, 1, 2, 3, 4]
    assert [ind.delay for ind in ranked] == list(range(10))
    assert manager.state is GenerationState.SELECTED


def test_elitism_keeps_population_size(library, section):
    schedule = ElitismSchedule(curve="linear", ramp_cycles=1, max_strength=1.0)
    manager = _manager(library, section, {"population": {"size": 6}, "elitism": {"max_fraction": 1.0}},
                       schedule=schedule)
    working = _scored(12)
    for seed in range(20):
        survivors, _ = manager.select(working, 10, np.random.default_rng(seed))
        assert len(survivors) == 6
        assert len({id(s) for s in survivors}) == 6
        assert all(s in working for s in survivors)


def test_elitism_can_rescue_lower_ranks(library, section):
    schedule = ElitismSchedule(curve="linear", ramp_cycles=1, max_strength=1.0)
    manager = _manager(library, section, {"population": {"size": 4}, "elitism": {"max_fraction": 1.0}},
                       schedule=schedule)
    working = _scored(40)
    rescued = False
    for seed in range(20):
        survivors, _ = manager.select(working, 10, np.random.default_rng(seed))
        if any(s.delay >= 4 for s in survivors):
            rescued = True
    assert rescued


def test_score_fills_every_individual(library, section):
    with ThreadPoolExecutor(max_workers=3) as pool:
        manager = _manager(library, section, executor=pool)
        parents = initial_population(library, 6, len(section))
        working = manager.mutate(parents, _rngs(6))
        manager.score(working)
    assert all(ind.is_scored for ind in working)
    assert manager.state is GenerationState.SCORED


def test_step_is_reproducible(library, section):
    results = []
    for _ in range(2):
        manager = _manager(library, section, {"population": {"size": 6}})
        parents = initial_population(library, 6, len(section))
        gen = manager.step(parents, cycles_elapsed=0, seed=42, cycle=0, generation=0)
        results.append([(ind.gene, ind.delay, ind.score) for ind in gen.survivors])
    assert results[0] == results[1]


def test_step_never_shrinks_below_population_size(library, section):
    manager = _manager(library, section, {"population": {"size": 6}})
    parents = initial_population(library, 6, len(section))
    for generation in range(3):
        gen = manager.step(parents, 0, 1, 0, generation)
        assert len(gen.survivors) == 6
        assert gen.best is gen.ranked[0]
        parents = gen.survivors


def test_best_is_the_matching_tone(library, section):
    manager = _manager(library, section, {"mutation": {"rate": 0.0, "delay_rate": 0.0}})
    parents = initial_population(library, 3, len(section))
    gen = manager.step(parents, 0, 0, 0, 0)
    assert gen.best.gene.source == "mid"


# -----------------------------------------------------------------------------
# Proximity filtering
# -----------------------------------------------------------------------------

def test_pick_commits_respects_min_distance(library, section):
    manager = _manager(library, section)
    ranked = [Individual(Gene("low"), d, score=-float(i)) for i, d in enumerate([0, 10, 5000, 10000])]
    picks = manager.pick_commits(ranked, OccupancyMap(), count=3, min_distance=2000)
    assert [p.delay for p in picks] == [0, 5000, 10000]


def test_pick_commits_skips_claimed_and_worst(library, section):
    manager = _manager(library, section)
    occupancy = OccupancyMap()
    occupancy.claim(0, 1000)
    ranked = [
        Individual(Gene("low"), 500, score=-1.0),
        Individual(Gene("low"), 3000, score=-float("inf")),
        Individual(Gene("low"), 6000, score=-3.0),
    ]
    picks = manager.pick_commits(ranked, occupancy, count=2, min_distance=100)
    assert [p.delay for p in picks] == [6000]


def test_occupancy_gap():
    assert OccupancyMap.gap((0, 100), (150, 200)) == 50
    assert OccupancyMap.gap((150, 200), (0, 100)) == 50
    assert OccupancyMap.gap((0, 100), (50, 200)) < 0
    occ = OccupancyMap()
    occ.claim(0, 100)
    assert occ.is_clear(100, 200, 0)
    assert not occ.is_clear(90, 200, 0)
    occ.clear()
    assert len(occ) == 0
