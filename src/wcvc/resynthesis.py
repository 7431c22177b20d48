"""LPC analysis/synthesis engine that applies codebook mapping and prosody.

The engine works on one file per call. Vocal tract conversion runs a
frame-wise LPC analysis (fixed rate, or pitch synchronous with two-period
Hann windows), replaces each frame's envelope with the codebook estimate,
refilters the prediction residual and overlap-adds the result. Prosody
modification then imposes the pitch contour (codebook pitch statistics and
pitch scales), the energy scales and the duration scales.

Scale sequences with more than one factor describe a trajectory over the
utterance: pitch, energy and vocal tract factors are placed at evenly spaced
points and linearly interpolated, duration factors are applied piecewise over
equal-length parts.
"""
from __future__ import annotations

import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

import librosa
import numpy as np
from scipy.signal import lfilter
from tqdm import tqdm

from wcvc import audio_preproc, config, features, io_utils
from wcvc.codebook import Codebook
from wcvc.exceptions import ResynthesisError
from wcvc.mapping import CodebookMapper
from wcvc.params import IDENTITY_SCALES, ProsodyParams, is_scaling_required
from wcvc.prosody import pitch_scale_contour, transform_f0

logger = logging.getLogger(__name__)

_EPS = 1e-8


@dataclass(frozen=True)
class ResynthesisRequest:
    """One engine invocation: input/output files plus the conversion settings."""

    input_file: Path
    pitch_file: Path
    output_file: Path
    is_vocal_tract_transformation: bool = False
    is_fixed_rate: bool = False
    is_resynthesize_from_source_codebook: bool = False
    is_match_using_target_codebook: bool = False
    pitch_scales: Tuple[float, ...] = IDENTITY_SCALES
    time_scales: Tuple[float, ...] = IDENTITY_SCALES
    energy_scales: Tuple[float, ...] = IDENTITY_SCALES
    vocal_tract_scales: Tuple[float, ...] = IDENTITY_SCALES
    prosody: ProsodyParams = field(default_factory=ProsodyParams)
    mapper: Optional[CodebookMapper] = None
    codebook: Optional[Codebook] = None
    display_progress: bool = False

    def __post_init__(self) -> None:
        for name in ("input_file", "pitch_file", "output_file"):
            object.__setattr__(self, name, Path(getattr(self, name)))

    @property
    def is_envelope_modification(self) -> bool:
        return self.is_vocal_tract_transformation or is_scaling_required(self.vocal_tract_scales)

    @property
    def is_prosody_modification(self) -> bool:
        return (
            is_scaling_required(self.pitch_scales, self.time_scales, self.energy_scales)
            or self.prosody.is_transformation_requested
        )


class ResynthesisEngine(Protocol):
    """Anything that can turn a request into an output waveform file."""

    def run(self, request: ResynthesisRequest) -> None:
        ...


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def scale_curve(scales: Sequence[float], length: int) -> np.ndarray:
    """Spread ``scales`` evenly over ``length`` points with linear interpolation."""

    scales = np.asarray(scales, dtype=np.float64).ravel()
    if length <= 0:
        return np.zeros(0, dtype=np.float64)
    if scales.size == 1:
        return np.full(length, scales[0])
    anchors = np.linspace(0.0, length - 1, num=scales.size)
    return np.interp(np.arange(length), anchors, scales)


def analysis_frames(
    num_samples: int,
    sr: int,
    f0: np.ndarray,
    frame_period: float,
    frame_skip: float,
    frame_length: float,
    fixed_rate: bool,
) -> List[Tuple[int, int]]:
    """``(center, half_length)`` of every analysis frame, in samples.

    Fixed-rate frames advance by ``frame_skip`` and span ``frame_length``.
    Pitch-synchronous frames advance by one pitch period on voiced frames and
    by ``frame_skip`` on unvoiced ones, and span two periods.
    """

    hop = features.frame_samples(frame_skip, sr)
    if fixed_rate:
        half = max(features.frame_samples(frame_length, sr) // 2, 1)
        return [(c, half) for c in range(0, num_samples, hop)]

    samples_per_f0 = max(float(frame_period) * sr, 1.0)
    frames: List[Tuple[int, int]] = []
    center = 0
    while center < num_samples:
        f0_value = 0.0
        if f0.size:
            f0_value = float(f0[min(int(center / samples_per_f0), f0.size - 1)])
        period = int(round(sr / f0_value)) if f0_value > 0.0 else hop
        period = max(period, 1)
        frames.append((center, period))
        center += period
    return frames


def _segment(signal: np.ndarray, center: int, half: int) -> np.ndarray:
    """``signal[center-half:center+half]`` with zero padding past the edges."""

    start, stop = center - half, center + half
    seg = signal[max(start, 0) : min(stop, signal.size)]
    return np.pad(seg, (max(-start, 0), max(stop - signal.size, 0)))


def _crossfade_masks(levels: np.ndarray, num_levels: int, fade: int) -> np.ndarray:
    """One smoothed selection mask per level; masks sum to 1 at every sample."""

    masks = np.zeros((num_levels, levels.size), dtype=np.float64)
    masks[levels, np.arange(levels.size)] = 1.0
    if fade > 1:
        kernel = np.ones(fade) / fade
        masks = np.stack([np.convolve(m, kernel, mode="same") for m in masks])
        masks /= np.maximum(masks.sum(axis=0, keepdims=True), _EPS)
    return masks


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------
class LpcResynthesizer:
    """Default engine: LPC envelope substitution plus librosa prosody effects.

    Parameters
    ----------
    pitch_step_semitones : float
        Time-varying pitch ratios are quantised to this step; each distinct
        level is shifted once with ``librosa.effects.pitch_shift`` and the
        levels are crossfaded.
    crossfade_s : float
        Crossfade length between pitch levels and between duration parts.
    """

    def __init__(self, pitch_step_semitones: float = 0.5, crossfade_s: float = 0.01) -> None:
        if pitch_step_semitones <= 0.0:
            raise ValueError("pitch_step_semitones must be positive")
        self.pitch_step_semitones = float(pitch_step_semitones)
        self.crossfade_s = float(crossfade_s)

    def run(self, request: ResynthesisRequest) -> None:
        codebook = request.codebook
        if request.is_vocal_tract_transformation and (request.mapper is None or codebook is None):
            raise ResynthesisError("Vocal tract transformation requested without mapper and codebook")

        audio, native_sr = io_utils.load_audio(request.input_file)
        sr = codebook.header.sampling_rate if codebook is not None else int(native_sr)
        f0, frame_period = self._load_pitch(request.pitch_file)

        try:
            y, sr = audio_preproc.prepare_waveform(audio, native_sr, sr)
            if y.size == 0:
                raise ResynthesisError(f"{request.input_file} holds no samples")
            if request.is_envelope_modification:
                y = self.convert_vocal_tract(y, sr, f0, frame_period, request)
            if request.is_prosody_modification:
                y = self.modify_prosody(y, sr, f0, frame_period, request)
        except (ValueError, FloatingPointError, librosa.util.exceptions.ParameterError) as exc:
            raise ResynthesisError(f"Resynthesis of {request.input_file} failed: {exc}") from exc

        peak = float(np.max(np.abs(y))) if y.size else 0.0
        if peak > 1.0:
            y = audio_preproc.normalize(y, 0.99)
        io_utils.save_audio(request.output_file, y, sr)
        logger.debug("Wrote %s (%.2f s)", request.output_file, y.size / float(sr))

    @staticmethod
    def _load_pitch(path: Path) -> Tuple[np.ndarray, float]:
        try:
            f0, frame_period = io_utils.load_f0(path)
        except (ValueError, KeyError, zipfile.BadZipFile) as exc:
            raise ResynthesisError(f"Unreadable pitch track {path}: {exc}") from exc
        if frame_period <= 0.0:
            raise ResynthesisError(f"Pitch track {path} has frame period {frame_period}")
        return f0, frame_period

    # ------------------------------------------------------------------
    # Vocal tract
    # ------------------------------------------------------------------
    def convert_vocal_tract(
        self,
        y: np.ndarray,
        sr: int,
        f0: np.ndarray,
        frame_period: float,
        request: ResynthesisRequest,
    ) -> np.ndarray:
        """Frame-wise envelope substitution with residual refiltering."""

        codebook = request.codebook
        if codebook is not None:
            header = codebook.header
            lp_order, preemphasis = header.lp_order, header.preemphasis
            frame_skip, frame_length = header.frame_skip, header.frame_length
        else:
            lp_order, preemphasis = config.LP_ORDER, config.PREEMPH
            frame_skip, frame_length = config.FRAME_SKIP_S, config.FRAME_LENGTH_S

        frames = analysis_frames(
            y.size, sr, f0, frame_period, frame_skip, frame_length, request.is_fixed_rate
        )
        vt_scales = scale_curve(request.vocal_tract_scales, len(frames))
        use_mapper = request.is_vocal_tract_transformation and request.mapper is not None

        emphasized = audio_preproc.pre_emphasize(y, preemphasis)
        out = np.zeros(y.size, dtype=np.float64)
        norm = np.zeros(y.size, dtype=np.float64)
        fallbacks = 0

        iterator = tqdm(
            enumerate(frames),
            total=len(frames),
            desc=request.input_file.name,
            unit="frame",
            disable=not request.display_progress,
        )
        for i, (center, half) in iterator:
            seg = _segment(emphasized, center, half)
            window = np.hanning(seg.size)
            a = features.frame_lpc(seg * window, lp_order)
            lsfs = features.sanitize_lsfs(features.radians_to_hz(features.lpc_to_lsf(a), sr), sr)

            if use_mapper:
                match = request.mapper.transform(
                    lsfs,
                    features.lsf_weights(lsfs, sr),
                    codebook,
                    use_target=request.is_match_using_target_codebook,
                )
                fallbacks += int(match.is_fallback)
                if request.is_resynthesize_from_source_codebook:
                    lsfs = match.source_lsfs
                else:
                    lsfs = match.target_lsfs
            if vt_scales[i] != 1.0:
                lsfs = lsfs * vt_scales[i]
            a_new = features.lsf_to_lpc(features.hz_to_radians(features.sanitize_lsfs(lsfs, sr), sr))

            residual = lfilter(a, [1.0], seg)
            synth = lfilter([1.0], a_new, residual)
            seg_rms = audio_preproc.compute_rms_energy(seg)
            synth_rms = audio_preproc.compute_rms_energy(synth)
            if synth_rms > _EPS:
                synth *= seg_rms / synth_rms
            synth = np.nan_to_num(synth, nan=0.0, posinf=0.0, neginf=0.0)

            start = center - half
            lo, hi = max(start, 0), min(center + half, y.size)
            out[lo:hi] += (synth * window)[lo - start : hi - start]
            norm[lo:hi] += window[lo - start : hi - start]

        if fallbacks:
            logger.debug(
                "%s: %d of %d frame(s) matched outside the frequency window",
                request.input_file.name,
                fallbacks,
                len(frames),
            )
        out = np.where(norm > 1e-3, out / np.maximum(norm, _EPS), 0.0)
        return audio_preproc.match_length(audio_preproc.de_emphasize(out, preemphasis), y.size)

    # ------------------------------------------------------------------
    # Prosody
    # ------------------------------------------------------------------
    def pitch_ratio_contour(
        self, f0: np.ndarray, frame_period: float, request: ResynthesisRequest
    ) -> np.ndarray:
        """Per pitch-frame ratio combining the pitch transformation and pitch scales."""

        ratios = np.ones(f0.size, dtype=np.float64)
        prosody = request.prosody
        if prosody.is_transformation_requested and f0.size:
            header = request.codebook.header if request.codebook is not None else None
            target = prosody.target_statistics
            if target is None and header is not None:
                target = header.target_f0_stats
            if target is None:
                raise ResynthesisError("Pitch transformation requested but no target pitch statistics")
            source = header.source_f0_stats if header is not None else None
            ratios = pitch_scale_contour(f0, transform_f0(f0, frame_period, prosody, source, target))

        voiced = np.flatnonzero(f0 > 0.0)
        if 0 < voiced.size < f0.size:
            # Unvoiced frames follow their voiced neighbours to avoid level switching
            ratios = np.interp(np.arange(f0.size), voiced, ratios[voiced])
        return ratios * scale_curve(request.pitch_scales, f0.size)

    def modify_prosody(
        self,
        y: np.ndarray,
        sr: int,
        f0: np.ndarray,
        frame_period: float,
        request: ResynthesisRequest,
    ) -> np.ndarray:
        if f0.size == 0:
            f0 = np.zeros(1, dtype=np.float64)
        ratios = self.pitch_ratio_contour(f0, frame_period, request)
        frame_pos = np.minimum((np.arange(y.size) / (frame_period * sr)).astype(int), f0.size - 1)
        y = self.shift_pitch(y, sr, ratios[frame_pos])

        if is_scaling_required(request.energy_scales):
            y = y * scale_curve(request.energy_scales, y.size)
        if is_scaling_required(request.time_scales):
            y = self.stretch_time(y, sr, request.time_scales)
        return y

    def shift_pitch(self, y: np.ndarray, sr: int, ratios: np.ndarray) -> np.ndarray:
        """Apply a per-sample pitch ratio, quantised to ``pitch_step_semitones``."""

        steps = 12.0 * np.log2(np.clip(ratios, 0.25, 4.0))
        levels_st = np.round(steps / self.pitch_step_semitones) * self.pitch_step_semitones
        unique, levels = np.unique(levels_st, return_inverse=True)
        if unique.size == 1 and unique[0] == 0.0:
            return y

        shifted: Dict[int, np.ndarray] = {}
        for k, n_steps in enumerate(unique):
            if n_steps == 0.0:
                shifted[k] = y
                continue
            out = librosa.effects.pitch_shift(y, sr=sr, n_steps=float(n_steps))
            shifted[k] = audio_preproc.match_length(np.nan_to_num(out), y.size)
        if unique.size == 1:
            return shifted[0]

        fade = features.frame_samples(self.crossfade_s, sr)
        masks = _crossfade_masks(levels.ravel(), unique.size, fade)
        return np.sum([masks[k] * shifted[k] for k in range(unique.size)], axis=0)

    def stretch_time(self, y: np.ndarray, sr: int, time_scales: Sequence[float]) -> np.ndarray:
        """Duration scaling: a factor of 2.0 doubles the length of its part."""

        parts = np.array_split(y, len(time_scales))
        fade = features.frame_samples(self.crossfade_s, sr)
        out = np.zeros(0, dtype=np.float64)
        for part, scale in zip(parts, time_scales):
            if part.size == 0:
                continue
            if scale != 1.0:
                target_len = int(round(part.size * scale))
                part = librosa.effects.time_stretch(part, rate=1.0 / scale)
                part = audio_preproc.match_length(np.nan_to_num(part), target_len)
            out = self._append_crossfaded(out, np.asarray(part, dtype=np.float64), fade)
        return out

    @staticmethod
    def _append_crossfaded(head: np.ndarray, tail: np.ndarray, fade: int) -> np.ndarray:
        n = min(fade, head.size, tail.size)
        if n <= 1:
            return np.concatenate([head, tail])
        ramp = np.linspace(0.0, 1.0, n)
        mixed = head[-n:] * (1.0 - ramp) + tail[:n] * ramp
        return np.concatenate([head[:-n], mixed, tail[n:]])


__all__ = [
    "ResynthesisRequest",
    "ResynthesisEngine",
    "LpcResynthesizer",
    "analysis_frames",
    "scale_curve",
]
