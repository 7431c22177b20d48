"""Feature extraction for weighted codebook voice conversion.

Implements F0 tracking and frame-wise linear prediction analysis. Spectral
envelopes are represented as line spectral frequencies (LSFs) in Hz together
with inverse-harmonic weights that emphasise closely spaced LSF pairs
(formant peaks). Functions are defensive against silent frames and unstable
predictors: they fall back to a flat envelope instead of raising.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import librosa
import numpy as np
from scipy.signal import lfilter

from wcvc import audio_preproc, config, io_utils
from wcvc.exceptions import UnsupportedAudioFormatError

logger = logging.getLogger(__name__)

_ANGLE_TOL = 1e-6
_SILENCE_ENERGY = 1e-10


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _sanitize_audio(audio: np.ndarray) -> np.ndarray:
    """Ensure float32 mono audio with NaNs/Infs replaced by zeros."""
    audio = np.asarray(audio, dtype=np.float32)
    audio = np.nan_to_num(audio, nan=0.0, posinf=0.0, neginf=0.0)
    if audio.ndim > 1:
        audio = np.mean(audio, axis=1)
    return audio


def frame_samples(seconds: float, sr: int) -> int:
    return max(int(round(seconds * sr)), 1)


def f0_frame_length(sr: int, fmin: float = config.F0_MIN) -> int:
    """Power-of-two frame long enough for the yin lag search down to ``fmin``.

    The half-frame cumulative difference must cover ``sr / fmin`` lags.
    """
    needed = 2.0 * (sr / fmin + 1.0) + 1.0
    return max(1024, 2 ** int(math.ceil(math.log2(needed))))


def flat_lsfs(lp_order: int) -> np.ndarray:
    """LSFs (radians) of a flat spectrum: uniformly spaced on (0, pi)."""
    return np.pi * np.arange(1, lp_order + 1, dtype=np.float64) / (lp_order + 1)


# -----------------------------------------------------------------------------
# LPC <-> LSF
# -----------------------------------------------------------------------------
def lpc_to_lsf(a: np.ndarray) -> np.ndarray:
    """Convert predictor polynomial ``[1, a1, ..., ap]`` to sorted LSFs (radians).

    Unstable or degenerate predictors yield the LSFs of a flat spectrum.
    """

    a = np.asarray(a, dtype=np.float64).ravel()
    order = a.size - 1
    if order < 1:
        raise ValueError("Predictor must have order >= 1")
    if a[0] != 1.0:
        a = a / a[0]

    a_ext = np.concatenate([a, [0.0]])
    sum_poly = a_ext + a_ext[::-1]
    diff_poly = a_ext - a_ext[::-1]

    angles = np.concatenate([np.angle(np.roots(sum_poly)), np.angle(np.roots(diff_poly))])
    lsfs = np.sort(angles[(angles > _ANGLE_TOL) & (angles < np.pi - _ANGLE_TOL)])
    if lsfs.size != order:
        logger.debug("LSF root count %d != order %d; using flat envelope", lsfs.size, order)
        return flat_lsfs(order)
    return lsfs


def lsf_to_lpc(lsfs: np.ndarray) -> np.ndarray:
    """Convert sorted LSFs (radians) to predictor polynomial ``[1, a1, ..., ap]``."""

    lsfs = np.asarray(lsfs, dtype=np.float64).ravel()
    order = lsfs.size
    if order < 1:
        raise ValueError("Need at least one LSF")

    z = np.exp(1j * lsfs)
    roots_sum = np.concatenate([z[0::2], np.conj(z[0::2])])
    roots_diff = np.concatenate([z[1::2], np.conj(z[1::2])])
    sum_poly = np.real(np.poly(roots_sum))
    diff_poly = np.real(np.poly(roots_diff))

    if order % 2:
        diff_poly = np.convolve(diff_poly, [1.0, 0.0, -1.0])
    else:
        diff_poly = np.convolve(diff_poly, [1.0, -1.0])
        sum_poly = np.convolve(sum_poly, [1.0, 1.0])

    a = 0.5 * (sum_poly + diff_poly)
    return a[: order + 1]


def radians_to_hz(lsfs: np.ndarray, sr: int) -> np.ndarray:
    return np.asarray(lsfs, dtype=np.float64) * sr / (2.0 * np.pi)


def hz_to_radians(lsfs: np.ndarray, sr: int) -> np.ndarray:
    return np.asarray(lsfs, dtype=np.float64) * 2.0 * np.pi / sr


def sanitize_lsfs(lsfs_hz: np.ndarray, sr: int, min_gap_hz: float = 10.0) -> np.ndarray:
    """Sort LSFs and keep them strictly inside (0, sr/2) with a minimum spacing."""

    nyquist = 0.5 * sr
    out = np.sort(np.asarray(lsfs_hz, dtype=np.float64).ravel())
    gap = min(min_gap_hz, nyquist / (2.0 * (out.size + 1)))
    out = np.clip(out, gap, nyquist - gap)
    for i in range(1, out.size):
        out[i] = max(out[i], out[i - 1] + gap)
    out[-1] = min(out[-1], nyquist - gap)
    for i in range(out.size - 2, -1, -1):
        out[i] = min(out[i], out[i + 1] - gap)
    return out


def lsf_weights(lsfs_hz: np.ndarray, sr: int) -> np.ndarray:
    """Inverse-harmonic weights of an LSF vector, normalised to sum to 1.

    ``w_i = 1 / (f_i - f_{i-1}) + 1 / (f_{i+1} - f_i)`` with ``f_0 = 0`` and
    ``f_{p+1} = sr / 2``; closely spaced pairs get large weights.
    """

    f = np.asarray(lsfs_hz, dtype=np.float64).ravel()
    padded = np.concatenate([[0.0], f, [0.5 * sr]])
    gaps = np.maximum(np.diff(padded), 1e-6)
    weights = 1.0 / gaps[:-1] + 1.0 / gaps[1:]
    return weights / np.sum(weights)


def center_frequency(lsfs_hz: np.ndarray) -> float:
    """Midpoint of the two closest adjacent LSFs."""

    f = np.asarray(lsfs_hz, dtype=np.float64).ravel()
    if f.size == 1:
        return float(f[0])
    i = int(np.argmin(np.diff(f)))
    return float(0.5 * (f[i] + f[i + 1]))


# -----------------------------------------------------------------------------
# Frame analysis
# -----------------------------------------------------------------------------
def frame_lpc(frame: np.ndarray, lp_order: int) -> np.ndarray:
    """LPC polynomial of a (windowed) frame; flat predictor for silent frames."""

    frame = np.asarray(frame, dtype=np.float64)
    if frame.size <= lp_order or float(np.mean(np.square(frame))) < _SILENCE_ENERGY:
        a = np.zeros(lp_order + 1, dtype=np.float64)
        a[0] = 1.0
        return a
    try:
        a = librosa.lpc(frame, order=lp_order)
    except (FloatingPointError, ValueError) as exc:
        logger.debug("LPC failed (%s); using flat predictor", exc)
        a = np.zeros(lp_order + 1, dtype=np.float64)
        a[0] = 1.0
    return np.nan_to_num(np.asarray(a, dtype=np.float64), nan=0.0)


@dataclass(frozen=True)
class LsfFrames:
    """Frame-wise LSF analysis of one waveform."""

    lsfs: np.ndarray      # (frames, lp_order), Hz
    weights: np.ndarray   # (frames, lp_order)
    energies: np.ndarray  # (frames,), mean square of the windowed frame
    sampling_rate: int

    @property
    def num_frames(self) -> int:
        return int(self.lsfs.shape[0])


def extract_lsfs(
    audio: np.ndarray,
    sr: int,
    lp_order: int = config.LP_ORDER,
    frame_length: float = config.FRAME_LENGTH_S,
    frame_skip: float = config.FRAME_SKIP_S,
    preemphasis: float = config.PREEMPH,
) -> LsfFrames:
    """Fixed-rate LSF analysis (Hamming window, pre-emphasised signal)."""

    if sr <= 0:
        raise ValueError("Sample rate must be positive")
    if lp_order < 1:
        raise ValueError("lp_order must be positive")

    audio = _sanitize_audio(audio).astype(np.float64)
    win = frame_samples(frame_length, sr)
    hop = frame_samples(frame_skip, sr)
    if audio.size < win:
        audio = np.pad(audio, (0, win - audio.size))
    emphasized = lfilter([1.0, -preemphasis], [1.0], audio)
    window = np.hamming(win)

    num_frames = 1 + (emphasized.size - win) // hop
    lsfs = np.zeros((num_frames, lp_order), dtype=np.float64)
    weights = np.zeros_like(lsfs)
    energies = np.zeros(num_frames, dtype=np.float64)
    for i in range(num_frames):
        frame = emphasized[i * hop : i * hop + win] * window
        energies[i] = float(np.mean(np.square(frame)))
        lsf_hz = sanitize_lsfs(radians_to_hz(lpc_to_lsf(frame_lpc(frame, lp_order)), sr), sr)
        lsfs[i] = lsf_hz
        weights[i] = lsf_weights(lsf_hz, sr)

    return LsfFrames(lsfs=lsfs, weights=weights, energies=energies, sampling_rate=sr)


def extract_f0(
    audio: np.ndarray, sr: int, frame_skip: float = config.FRAME_SKIP_S
) -> np.ndarray:
    """Extract F0 contour.

    Returns
    -------
    np.ndarray
        F0 array (Hz) with ``0`` for unvoiced frames, one value every
        ``frame_skip`` seconds.
    """

    audio = _sanitize_audio(audio)
    if audio.size == 0 or sr <= 0:
        return np.array([], dtype=np.float64)

    frame_length = f0_frame_length(sr)
    hop_length = frame_samples(frame_skip, sr)
    if audio.size < frame_length:
        audio = np.pad(audio, (0, frame_length - audio.size))

    try:
        f0, _, _ = librosa.pyin(
            audio,
            fmin=config.F0_MIN,
            fmax=config.F0_MAX,
            sr=sr,
            frame_length=frame_length,
            hop_length=hop_length,
            center=True,
        )
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.warning("pyin failed (%s); falling back to yin", exc)
        f0 = librosa.yin(
            audio,
            fmin=config.F0_MIN,
            fmax=config.F0_MAX,
            sr=sr,
            frame_length=frame_length,
            hop_length=hop_length,
        )

    f0 = np.nan_to_num(np.asarray(f0, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    f0[f0 < 0.0] = 0.0
    return f0


# -----------------------------------------------------------------------------
# Batch feature extraction
# -----------------------------------------------------------------------------
class FeatureExtractor:
    """Writes the companion pitch track of every item that lacks one.

    With ``sampling_rate`` set, audio is resampled to that rate before
    tracking so that every track matches the codebook analysis rate.
    """

    def __init__(
        self, frame_skip: float = config.FRAME_SKIP_S, sampling_rate: Optional[int] = None
    ) -> None:
        self.frame_skip = frame_skip
        self.sampling_rate = sampling_rate

    def run(self, items: Sequence, forced: bool = False) -> int:
        """Extract pitch tracks; returns the number of tracks written.

        Items whose audio cannot be read or tracked are logged and left
        without a pitch track; the conversion of that item fails later on
        its own.
        """

        written = 0
        for item in items:
            if item.f0_file.exists() and not forced:
                continue
            try:
                audio, sr = io_utils.load_audio(item.audio_file)
            except (OSError, UnsupportedAudioFormatError) as exc:
                logger.warning("Skipping pitch extraction for %s: %s", item.audio_file, exc)
                continue
            try:
                if self.sampling_rate is not None:
                    audio, sr = audio_preproc.prepare_waveform(audio, sr, self.sampling_rate)
                f0 = extract_f0(audio, sr, frame_skip=self.frame_skip)
            except (ValueError, librosa.util.exceptions.ParameterError) as exc:
                logger.warning("Pitch extraction failed for %s: %s", item.audio_file, exc)
                continue
            io_utils.save_f0(item.f0_file, f0, self.frame_skip, sr)
            written += 1
            logger.debug("Pitch track written: %s (%d frames)", item.f0_file, f0.size)
        logger.info("Feature extraction done: %d pitch track(s) written", written)
        return written


__all__ = [
    "LsfFrames",
    "FeatureExtractor",
    "lpc_to_lsf",
    "lsf_to_lpc",
    "radians_to_hz",
    "hz_to_radians",
    "sanitize_lsfs",
    "lsf_weights",
    "center_frequency",
    "frame_lpc",
    "extract_lsfs",
    "extract_f0",
    "f0_frame_length",
    "flat_lsfs",
]
