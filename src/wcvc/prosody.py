"""Pitch statistics and statistic-driven F0 transformation.

A pitch contour is summarised by five statistics of its voiced frames: mean,
standard deviation, range and a first-order trend (slope and intercept over
time in seconds). Statistics are computed either on Hz values or on log-Hz
values. The transformation methods impose one or two statistics of a target
distribution on the input contour; ``GLOBAL_*`` methods compare against the
source speaker's training statistics, ``SENTENCE_*`` methods against the
statistics of the sentence being converted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

import numpy as np

if TYPE_CHECKING:  # pragma: no cover
    from wcvc.params import ProsodyParams

logger = logging.getLogger(__name__)

_MIN_OUTPUT_F0 = 1.0


class PitchStatisticsType(Enum):
    HERTZ = 0
    LOG_HERTZ = 1


class PitchTransformationMethod(Enum):
    """Which statistic(s) of the target distribution to impose."""

    NO_TRANSFORMATION = "none"
    GLOBAL_MEAN = "global_mean"
    GLOBAL_STDDEV = "global_stddev"
    GLOBAL_RANGE = "global_range"
    GLOBAL_SLOPE = "global_slope"
    GLOBAL_INTERCEPT = "global_intercept"
    GLOBAL_MEAN_STDDEV = "global_mean_stddev"
    GLOBAL_MEAN_SLOPE = "global_mean_slope"
    GLOBAL_INTERCEPT_STDDEV = "global_intercept_stddev"
    GLOBAL_INTERCEPT_SLOPE = "global_intercept_slope"
    SENTENCE_MEAN = "sentence_mean"
    SENTENCE_STDDEV = "sentence_stddev"
    SENTENCE_RANGE = "sentence_range"
    SENTENCE_SLOPE = "sentence_slope"
    SENTENCE_INTERCEPT = "sentence_intercept"
    SENTENCE_MEAN_STDDEV = "sentence_mean_stddev"
    SENTENCE_MEAN_SLOPE = "sentence_mean_slope"
    SENTENCE_INTERCEPT_STDDEV = "sentence_intercept_stddev"
    SENTENCE_INTERCEPT_SLOPE = "sentence_intercept_slope"

    @property
    def is_global(self) -> bool:
        return self.value.startswith("global_")

    @property
    def statistic(self) -> str:
        """Statistic part of the method name, e.g. ``"mean_stddev"``."""
        if self is PitchTransformationMethod.NO_TRANSFORMATION:
            return ""
        return self.value.split("_", 1)[1]


@dataclass(frozen=True)
class PitchStatistics:
    """Summary statistics of the voiced frames of one or more F0 contours."""

    mean: float = 0.0
    stddev: float = 0.0
    range: float = 0.0
    slope: float = 0.0
    intercept: float = 0.0
    statistics_type: PitchStatisticsType = PitchStatisticsType.HERTZ

    def as_array(self) -> np.ndarray:
        return np.array(
            [self.mean, self.stddev, self.range, self.slope, self.intercept], dtype=np.float64
        )

    @classmethod
    def from_array(
        cls, values: Sequence[float], statistics_type: PitchStatisticsType
    ) -> "PitchStatistics":
        mean, stddev, rng, slope, intercept = (float(v) for v in values)
        return cls(mean, stddev, rng, slope, intercept, statistics_type)

    @classmethod
    def from_f0(
        cls,
        f0: np.ndarray,
        frame_period: float,
        statistics_type: PitchStatisticsType = PitchStatisticsType.HERTZ,
    ) -> "PitchStatistics":
        """Statistics of a single contour (F0 in Hz, 0 for unvoiced frames)."""

        times, values = _voiced_values(f0, frame_period, statistics_type)
        if values.size == 0:
            return cls(statistics_type=statistics_type)
        slope, intercept = _fit_line(times, values)
        return cls(
            mean=float(np.mean(values)),
            stddev=float(np.std(values)),
            range=float(np.max(values) - np.min(values)),
            slope=slope,
            intercept=intercept,
            statistics_type=statistics_type,
        )

    @classmethod
    def from_contours(
        cls,
        contours: Iterable[np.ndarray],
        frame_period: float,
        statistics_type: PitchStatisticsType = PitchStatisticsType.HERTZ,
    ) -> "PitchStatistics":
        """Global statistics pooled over many contours.

        Mean, deviation and range are computed on the pooled voiced values;
        slope and intercept are averaged over the per-contour line fits.
        """

        pooled = []
        fits = []
        for f0 in contours:
            times, values = _voiced_values(f0, frame_period, statistics_type)
            if values.size == 0:
                continue
            pooled.append(values)
            fits.append(_fit_line(times, values))
        if not pooled:
            return cls(statistics_type=statistics_type)
        values = np.concatenate(pooled)
        slopes, intercepts = zip(*fits)
        return cls(
            mean=float(np.mean(values)),
            stddev=float(np.std(values)),
            range=float(np.max(values) - np.min(values)),
            slope=float(np.mean(slopes)),
            intercept=float(np.mean(intercepts)),
            statistics_type=statistics_type,
        )


def _voiced_values(
    f0: np.ndarray, frame_period: float, statistics_type: PitchStatisticsType
) -> tuple[np.ndarray, np.ndarray]:
    f0 = np.nan_to_num(np.asarray(f0, dtype=np.float64).ravel(), nan=0.0)
    voiced = np.flatnonzero(f0 > 0.0)
    times = voiced * float(frame_period)
    values = f0[voiced]
    if statistics_type is PitchStatisticsType.LOG_HERTZ:
        values = np.log(values)
    return times, values


def _fit_line(times: np.ndarray, values: np.ndarray) -> tuple[float, float]:
    if values.size < 2 or np.ptp(times) == 0.0:
        return 0.0, float(np.mean(values)) if values.size else 0.0
    slope, intercept = np.polyfit(times, values, deg=1)
    return float(slope), float(intercept)


def _ratio(numerator: float, denominator: float) -> float:
    if denominator <= 0.0 or not np.isfinite(denominator):
        return 1.0
    return numerator / denominator


def resolve_target(
    input_stats: PitchStatistics, target_stats: PitchStatistics, params: "ProsodyParams"
) -> PitchStatistics:
    """Target statistics with the ``use_input_*`` flags applied."""

    return PitchStatistics(
        mean=input_stats.mean if params.use_input_mean else target_stats.mean,
        stddev=input_stats.stddev if params.use_input_stddev else target_stats.stddev,
        range=input_stats.range if params.use_input_range else target_stats.range,
        slope=input_stats.slope if params.use_input_slope else target_stats.slope,
        intercept=input_stats.intercept if params.use_input_intercept else target_stats.intercept,
        statistics_type=target_stats.statistics_type,
    )


def transform_f0(
    f0: np.ndarray,
    frame_period: float,
    params: "ProsodyParams",
    source_stats: Optional[PitchStatistics],
    target_stats: PitchStatistics,
) -> np.ndarray:
    """Return a copy of ``f0`` with the configured target statistics imposed.

    ``source_stats`` is the global input-speaker distribution used by the
    ``GLOBAL_*`` methods; when it is ``None`` (or a ``SENTENCE_*`` method is
    selected) the statistics of ``f0`` itself are used. Unvoiced frames stay 0.
    """

    method = params.transformation_method
    out = np.nan_to_num(np.asarray(f0, dtype=np.float64).ravel(), nan=0.0).copy()
    if method is PitchTransformationMethod.NO_TRANSFORMATION:
        return out

    stype = params.statistics_type
    if target_stats.statistics_type is not stype:
        raise ValueError(
            f"Target statistics are in {target_stats.statistics_type.name}, "
            f"prosody parameters expect {stype.name}"
        )

    sentence_stats = PitchStatistics.from_f0(out, frame_period, stype)
    if method.is_global and source_stats is not None:
        if source_stats.statistics_type is not stype:
            raise ValueError("Source statistics type does not match prosody parameters")
        src = source_stats
    else:
        if method.is_global:
            logger.warning("No global source pitch statistics; using sentence statistics")
        src = sentence_stats
    tgt = resolve_target(src, target_stats, params)

    voiced = np.flatnonzero(out > 0.0)
    if voiced.size == 0:
        return out
    t = voiced * float(frame_period)
    x = out[voiced]
    if stype is PitchStatisticsType.LOG_HERTZ:
        x = np.log(x)
    t_mean = float(np.mean(t))

    kind = method.statistic
    if kind == "mean":
        y = x - src.mean + tgt.mean
    elif kind == "stddev":
        y = src.mean + (x - src.mean) * _ratio(tgt.stddev, src.stddev)
    elif kind == "range":
        y = src.mean + (x - src.mean) * _ratio(tgt.range, src.range)
    elif kind == "slope":
        y = x + (tgt.slope - src.slope) * (t - t_mean)
    elif kind == "intercept":
        y = x - src.intercept + tgt.intercept
    elif kind == "mean_stddev":
        y = tgt.mean + (x - src.mean) * _ratio(tgt.stddev, src.stddev)
    elif kind == "mean_slope":
        y = x + (tgt.slope - src.slope) * (t - t_mean) - src.mean + tgt.mean
    elif kind == "intercept_stddev":
        y = tgt.intercept + (x - src.intercept) * _ratio(tgt.stddev, src.stddev)
    elif kind == "intercept_slope":
        y = x - (src.slope * t + src.intercept) + (tgt.slope * t + tgt.intercept)
    else:  # pragma: no cover - enum is exhaustive
        raise ValueError(f"Unknown pitch transformation method: {method}")

    if stype is PitchStatisticsType.LOG_HERTZ:
        y = np.exp(y)
    out[voiced] = np.maximum(y, _MIN_OUTPUT_F0)
    return out


def pitch_scale_contour(source_f0: np.ndarray, target_f0: np.ndarray) -> np.ndarray:
    """Per-frame pitch scale factors (1.0 on unvoiced frames)."""

    src = np.asarray(source_f0, dtype=np.float64).ravel()
    tgt = np.asarray(target_f0, dtype=np.float64).ravel()
    scales = np.ones_like(src)
    voiced = (src > 0.0) & (tgt > 0.0)
    scales[voiced] = tgt[voiced] / src[voiced]
    return scales


__all__ = [
    "PitchStatisticsType",
    "PitchTransformationMethod",
    "PitchStatistics",
    "resolve_target",
    "transform_f0",
    "pitch_scale_contour",
]
