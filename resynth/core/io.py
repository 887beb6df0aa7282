import logging
from pathlib import Path
from typing import Dict, Union

import numpy as np
import soundfile as sf
import torch

from resynth.core.types import SignalBuffer

logger = logging.getLogger(__name__)

AUDIO_SUFFIXES = (".wav", ".flac", ".aiff", ".aif", ".ogg")


class AudioIO:
    @staticmethod
    def load_wav(path: Union[str, Path]) -> SignalBuffer:
        """Reads an audio file into a mono SignalBuffer (channels averaged)."""
        data, sample_rate = sf.read(str(path), dtype="float32", always_2d=True)
        return SignalBuffer.from_numpy(data, sample_rate)

    @staticmethod
    def save_wav(buffer: SignalBuffer, path: Union[str, Path], normalize: bool = False):
        """Saves a buffer to a WAV file."""
        data = buffer.samples
        if isinstance(data, torch.Tensor):
            data = data.detach().cpu().numpy()

        if normalize:
            peak = np.max(np.abs(data)) if data.size else 0.0
            if peak > 0:
                data = data / peak

        # Clamp to avoid wrap-around clipping
        data = np.clip(data, -1.0, 1.0)

        sf.write(str(path), data, buffer.sample_rate)

    @staticmethod
    def load_library(directory: Union[str, Path]) -> Dict[str, SignalBuffer]:
        """
        Load every audio file in a directory as a library entry keyed by file stem.
        Files are visited in sorted order so entry order is stable between runs.
        """
        directory = Path(directory)
        library: Dict[str, SignalBuffer] = {}
        for path in sorted(directory.iterdir()):
            if path.suffix.lower() not in AUDIO_SUFFIXES:
                continue
            library[path.stem] = AudioIO.load_wav(path)
        logger.info("Loaded %d library entries from %s", len(library), directory)
        return library
