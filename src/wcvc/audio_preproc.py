"""Waveform preprocessing for the conversion pipeline.

Provides the signal helpers shared by codebook training and resynthesis
(mono downmix, resampling to the codebook rate, normalisation, pre-emphasis
and its inverse) and the batch preprocessor that probes every input item
before conversion starts.

Design goals:
- Deterministic, idempotent transforms
- Safe handling of edge cases (silent audio, short clips, NaNs)
"""
from __future__ import annotations

import logging
from typing import Dict, Sequence, Tuple

import librosa
import numpy as np
import soundfile as sf
from scipy.signal import lfilter

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Helper utilities
# -----------------------------------------------------------------------------

def _to_mono(audio: np.ndarray) -> np.ndarray:
    """Convert multi-channel audio to mono by averaging channels."""
    if audio.ndim > 1:
        return np.mean(audio, axis=1)
    return audio


def normalize(audio: np.ndarray, peak: float = 1.0) -> np.ndarray:
    """Scale to ``peak`` absolute amplitude (no-op for all-zero signals)."""
    max_abs = float(np.max(np.abs(audio))) if audio.size else 0.0
    if max_abs > 0.0:
        audio = audio * (peak / max_abs)
    return audio


def pre_emphasize(audio: np.ndarray, coeff: float) -> np.ndarray:
    """Apply first-order pre-emphasis filter y[n] = x[n] - a*x[n-1]."""
    if coeff == 0.0 or audio.size == 0:
        return np.asarray(audio, dtype=np.float64)
    return lfilter([1.0, -coeff], [1.0], audio)


def de_emphasize(audio: np.ndarray, coeff: float) -> np.ndarray:
    """Undo pre-emphasis with a simple inverse filter."""
    if coeff == 0.0 or audio.size == 0:
        return np.asarray(audio, dtype=np.float64)
    return lfilter([1.0], [1.0, -float(coeff)], audio)


def match_length(audio: np.ndarray, target_len: int) -> np.ndarray:
    """Pad or trim to the desired length."""
    if target_len <= 0:
        return np.zeros(0, dtype=audio.dtype)
    if audio.size == target_len:
        return audio
    if audio.size > target_len:
        return audio[:target_len]
    return np.pad(audio, (0, target_len - audio.size))


def prepare_waveform(audio: np.ndarray, sr: int, target_sr: int) -> Tuple[np.ndarray, int]:
    """Mono float64 waveform at ``target_sr`` with NaNs/Infs zeroed.

    Returns
    -------
    tuple
        (waveform, target_sr)
    """

    if sr <= 0 or target_sr <= 0:
        raise ValueError("Sample rate must be positive")

    audio = np.asarray(audio, dtype=np.float64)
    audio = np.nan_to_num(audio, nan=0.0, posinf=0.0, neginf=0.0)
    audio = _to_mono(audio)
    if sr != target_sr and audio.size:
        audio = librosa.resample(audio, orig_sr=sr, target_sr=target_sr)
    return np.asarray(audio, dtype=np.float64), target_sr


def compute_rms_energy(audio: np.ndarray) -> float:
    """Compute RMS energy of audio signal."""

    audio = np.asarray(audio, dtype=np.float64)
    audio = np.nan_to_num(audio, nan=0.0, posinf=0.0, neginf=0.0)
    audio = _to_mono(audio)

    if audio.size == 0:
        return 0.0

    return float(np.sqrt(np.mean(np.square(audio))))


# -----------------------------------------------------------------------------
# Batch preprocessing
# -----------------------------------------------------------------------------

class AudioPreprocessor:
    """Probes the input items once before the conversion loop.

    Reports files that libsndfile cannot open and files whose sample rate or
    channel count differ from what the codebook was trained on (those are
    downmixed/resampled on the fly during resynthesis). Unreadable items are
    not removed; their conversion fails on its own and is reported per item.
    """

    def run(self, items: Sequence, sampling_rate: int) -> Dict[int, int]:
        """Return the native sample rate of every readable item, keyed by index."""
        readable: Dict[int, int] = {}
        for index, item in enumerate(items):
            try:
                info = sf.info(str(item.audio_file))
            except RuntimeError as exc:
                logger.warning("Input %s is not readable: %s", item.audio_file, exc)
                continue
            if info.samplerate != sampling_rate:
                logger.info(
                    "%s: sample rate %d Hz differs from codebook rate %d Hz; resampling",
                    item.audio_file.name,
                    info.samplerate,
                    sampling_rate,
                )
            if info.channels > 1:
                logger.info("%s: %d channels; downmixing to mono", item.audio_file.name, info.channels)
            readable[index] = int(info.samplerate)
        logger.info("Preprocessing: %d of %d input(s) readable", len(readable), len(items))
        return readable


__all__ = [
    "normalize",
    "pre_emphasize",
    "de_emphasize",
    "match_length",
    "prepare_waveform",
    "compute_rms_energy",
    "AudioPreprocessor",
]
