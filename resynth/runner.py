"""
Engine entry point: validates inputs, then runs the cycle controller over
each target section and stitches the section outputs in order.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from resynth.core.errors import ConfigError
from resynth.core.params import get_param, ms_to_samples
from resynth.core.types import SignalBuffer, make_sections
from resynth.dsp.spectral import SpectralAnalyzer
from resynth.evolve.assembler import Commit, OutputAssembler
from resynth.evolve.cycle import CycleController, CycleResult, SectionReport
from resynth.evolve.elitism import ElitismSchedule
from resynth.evolve.fitness import CorrelationAligner, SpectralFitness
from resynth.evolve.individual import Renderer
from resynth.evolve.population import STREAM_SEED, PopulationManager, initial_population, spawn_rng
from resynth.params.resolve import resolve_config
from resynth.qc import analyze

logger = logging.getLogger(__name__)


@dataclass
class RunResult:
    output: SignalBuffer
    commits: List[Commit]
    cycles: List[CycleResult]
    sections: List[SectionReport] = field(default_factory=list)
    cancelled: bool = False
    report: Dict = field(default_factory=dict)

    @property
    def committed_sources(self):
        names = set()
        for c in self.commits:
            names |= c.sources
        return names


class Resynthesizer:
    """
    Rebuild `target` from fragments of `library`.
    Configuration errors are raised here, before any generation runs.
    """

    def __init__(self, target: SignalBuffer, library: Dict[str, SignalBuffer], params: Optional[dict] = None):
        self.config = resolve_config(params or {})
        if not library:
            raise ConfigError("sample library is empty")
        rates = {name: buf.sample_rate for name, buf in library.items()}
        mismatched = sorted(name for name, sr in rates.items() if sr != target.sample_rate)
        if mismatched:
            raise ConfigError(
                f"library entries {mismatched} do not match the target sample rate {target.sample_rate} Hz"
            )
        if len(target) == 0:
            raise ConfigError("target signal is empty")
        if all(len(buf) == 0 for buf in library.values()):
            raise ConfigError("every library entry is empty")
        self.target = target
        self.library = dict(library)

    def _schedule(self) -> ElitismSchedule:
        c = self.config
        return ElitismSchedule(
            curve=get_param(c, "elitism.curve"),
            ramp_cycles=get_param(c, "elitism.ramp_cycles"),
            exponent=get_param(c, "elitism.exponent"),
            max_strength=get_param(c, "elitism.max_strength"),
        )

    def run(self, stop_event: Optional[threading.Event] = None) -> RunResult:
        c = self.config
        sr = self.target.sample_rate
        seed = get_param(c, "seed")
        section_samples = int(round(get_param(c, "section_seconds") * sr))
        sections = make_sections(self.target, section_samples)

        renderer = Renderer(self.library, cache_size=get_param(c, "render.cache_size"))
        analyzer = SpectralAnalyzer(get_param(c, "fitness.n_fft"), get_param(c, "fitness.hop_length"))
        fitness = SpectralFitness(analyzer, get_param(c, "fitness.silence_rms"))
        aligner = CorrelationAligner() if get_param(c, "fitness.strategy") == "xcorr" else None
        schedule = self._schedule()
        fade = ms_to_samples(get_param(c, "commit.fade_ms"), sr)
        workers = get_param(c, "workers")

        logger.info(
            "Resynthesizing %.2fs target from %d library entries in %d section(s)",
            self.target.duration, len(self.library), len(sections),
        )

        reports: List[SectionReport] = []
        cancelled = False
        cycle_offset = 0
        executor = ThreadPoolExecutor(max_workers=workers) if workers > 1 else None
        try:
            for section in sections:
                assembler = OutputAssembler(section, fade_samples=fade)
                if cancelled or (stop_event is not None and stop_event.is_set()):
                    # Remaining sections stay silent so the output keeps its full length.
                    cancelled = True
                    reports.append(SectionReport(section.index, assembler.result(), [], [], cancelled=True))
                    continue

                logger.info("Section %d: %d samples at %d", section.index, len(section), section.start)
                manager = PopulationManager(
                    c, renderer, fitness, section, schedule=schedule, executor=executor, aligner=aligner
                )
                initial = initial_population(
                    self.library,
                    get_param(c, "population.size"),
                    len(section),
                    rng=spawn_rng(seed, STREAM_SEED, section.index),
                    random_delays=get_param(c, "population.random_delays"),
                )
                controller = CycleController(c, manager, assembler, renderer, initial, cycle_offset)
                report = controller.run(stop_event)
                cycle_offset += len(report.cycles)
                cancelled = cancelled or report.cancelled
                reports.append(report)
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        output = OutputAssembler.stitch([r.output for r in reports], sr)
        commits = [cm for r in reports for cm in r.commits]
        cycles = [cy for r in reports for cy in r.cycles]
        qc = analyze(output, self.target, analyzer)
        logger.info(
            "Run %s: %d commits over %d cycles, QC %s (spectral mse %.6g)",
            "cancelled" if cancelled else "finished",
            len(commits), len(cycles), qc["status"], qc["metrics"].get("spectral_mse", float("nan")),
        )
        for message in qc["warnings"]:
            logger.warning("QC: %s", message)
        return RunResult(output, commits, cycles, reports, cancelled, qc)


def resynthesize(target: SignalBuffer, library: Dict[str, SignalBuffer], params: Optional[dict] = None,
                 stop_event: Optional[threading.Event] = None) -> RunResult:
    """Convenience wrapper: validate and run in one call."""
    return Resynthesizer(target, library, params).run(stop_event)
