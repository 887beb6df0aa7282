from dataclasses import dataclass
from typing import Sequence

import numpy as np
import torch


@dataclass(frozen=True)
class SignalBuffer:
    samples: torch.Tensor  # 1-D float32
    sample_rate: int

    def __post_init__(self):
        if int(self.sample_rate) <= 0:
            raise ValueError(f"sample_rate must be > 0, got {self.sample_rate}")
        samples = self.samples
        if not isinstance(samples, torch.Tensor):
            samples = torch.as_tensor(samples)
        if samples.dim() != 1:
            samples = samples.reshape(-1)
        object.__setattr__(self, "samples", samples.to(torch.float32).contiguous())
        object.__setattr__(self, "sample_rate", int(self.sample_rate))

    def __len__(self) -> int:
        return int(self.samples.shape[-1])

    @property
    def duration(self) -> float:
        return len(self) / self.sample_rate

    @classmethod
    def zeros(cls, length: int, sample_rate: int) -> "SignalBuffer":
        return cls(torch.zeros(max(0, int(length)), dtype=torch.float32), sample_rate)

    @classmethod
    def from_numpy(cls, data: np.ndarray, sample_rate: int) -> "SignalBuffer":
        """Build a mono buffer from a numpy array; 2-D input is averaged over channels."""
        arr = np.asarray(data, dtype=np.float32)
        if arr.ndim == 2:
            arr = arr.mean(axis=1)
        return cls(torch.from_numpy(np.ascontiguousarray(arr)), sample_rate)

    @classmethod
    def concat(cls, parts: Sequence["SignalBuffer"], sample_rate: int) -> "SignalBuffer":
        if not parts:
            return cls.zeros(0, sample_rate)
        if len(parts) == 1:
            return parts[0]
        return cls(torch.cat([p.samples for p in parts]), sample_rate)

    def slice(self, start: int, stop: int) -> "SignalBuffer":
        n = len(self)
        start = min(max(0, int(start)), n)
        stop = min(max(start, int(stop)), n)
        return SignalBuffer(self.samples[start:stop], self.sample_rate)

    def rms(self) -> float:
        if len(self) == 0:
            return 0.0
        return float(torch.sqrt(torch.mean(self.samples.double() ** 2)))

    def numpy(self) -> np.ndarray:
        return self.samples.detach().cpu().numpy()


@dataclass(frozen=True)
class TargetSection:
    """Immutable slice of the target plus where it sits in the full signal."""
    buffer: SignalBuffer
    start: int
    index: int = 0

    def __len__(self) -> int:
        return len(self.buffer)

    @property
    def sample_rate(self) -> int:
        return self.buffer.sample_rate


def make_sections(target: SignalBuffer, section_samples: int) -> list:
    """Cut the target into consecutive sections. 0 means a single whole-signal section."""
    n = len(target)
    if section_samples <= 0 or section_samples >= n:
        return [TargetSection(target, 0, 0)]
    sections = []
    for i, start in enumerate(range(0, n, section_samples)):
        sections.append(TargetSection(target.slice(start, start + section_samples), start, i))
    return sections
