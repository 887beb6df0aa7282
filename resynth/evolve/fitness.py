"""
Fitness: negative spectral MSE between a candidate and the target slice it covers.
Higher is better; silent candidates and degenerate results score -inf.
"""
import logging
import math
from typing import Optional

import numpy as np
import torch

from resynth.core.errors import TransformError
from resynth.core.types import SignalBuffer, TargetSection
from resynth.dsp.spectral import SpectralAnalyzer
from resynth.evolve.individual import Individual, Renderer

logger = logging.getLogger(__name__)

WORST_SCORE = float("-inf")
DEFAULT_SILENCE_RMS = 1e-4


class SpectralFitness:
    def __init__(self, analyzer: Optional[SpectralAnalyzer] = None, silence_rms: float = DEFAULT_SILENCE_RMS):
        self.analyzer = analyzer or SpectralAnalyzer()
        self.silence_rms = float(silence_rms)

    def score(self, buffer: SignalBuffer, delay: int, section: TargetSection) -> float:
        if len(buffer) == 0 or buffer.rms() < self.silence_rms:
            return WORST_SCORE
        target = section.buffer.slice(delay, delay + len(buffer))
        if len(target) == 0:
            return WORST_SCORE
        err = self.analyzer.mse(self.analyzer.grid(buffer), self.analyzer.grid(target))
        if not math.isfinite(err):
            return WORST_SCORE
        return -err

    def evaluate(self, individual: Individual, renderer: Renderer, section: TargetSection) -> float:
        """Score an individual, reusing its memoized score when still valid."""
        if individual.is_scored:
            return individual.score
        try:
            buffer = renderer.render(individual.gene)
        except TransformError as exc:
            logger.debug("render failed for %s: %s", individual.gene.describe(), exc)
            individual.score = WORST_SCORE
            return WORST_SCORE
        individual.score = self.score(buffer, individual.delay, section)
        return individual.score


class CorrelationAligner:
    """
    Alternate placement strategy: put the candidate where its cross-correlation
    with the section peaks instead of mutating the delay at random.
    """

    def align(self, buffer: SignalBuffer, section: TargetSection) -> int:
        n_cand = len(buffer)
        n_target = len(section)
        if n_cand == 0 or n_target == 0:
            return 0
        n = 1 << int(np.ceil(np.log2(n_cand + n_target)))
        spec_t = torch.fft.rfft(section.buffer.samples.double(), n=n)
        spec_c = torch.fft.rfft(buffer.samples.double(), n=n)
        corr = torch.fft.irfft(spec_t * torch.conj(spec_c), n=n)
        # Only non-negative lags place the candidate inside the section.
        lag = int(torch.argmax(corr[:n_target]))
        return lag
