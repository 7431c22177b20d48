"""Parameter objects for the codebook mapper, prosody and batch transformer.

All parameter objects are frozen dataclasses; derive variants with
``dataclasses.replace``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from wcvc.prosody import PitchStatistics, PitchStatisticsType, PitchTransformationMethod

logger = logging.getLogger(__name__)

MIN_STEEPNESS: float = 0.0
MAX_STEEPNESS: float = 10.0

IDENTITY_SCALES: Tuple[float, ...] = (1.0,)


class DistanceMeasure(Enum):
    EUCLIDEAN = "euclidean"
    MAHALANOBIS = "mahalanobis"
    ABSOLUTE_VALUE = "absolute"
    INVERSE_HARMONIC = "inverse_harmonic"
    INVERSE_HARMONIC_SYMMETRIC = "inverse_harmonic_symmetric"


class WeightingMethod(Enum):
    EXPONENTIAL_HALF_WINDOW = "exponential"
    TRIANGLE_HALF_WINDOW = "triangle"


@dataclass(frozen=True)
class MapperParams:
    """Settings for codebook matching and weighting."""

    num_best_matches: int = 1
    weighting_steepness: float = 1.0
    freq_range: float = 5000.0
    distance_measure: DistanceMeasure = DistanceMeasure.INVERSE_HARMONIC_SYMMETRIC
    weighting_method: WeightingMethod = WeightingMethod.EXPONENTIAL_HALF_WINDOW
    alpha_for_symmetric: float = 0.5
    distance_mean: float = 0.0
    distance_variance: float = 1.0

    def __post_init__(self) -> None:
        if self.num_best_matches < 1:
            raise ValueError(f"num_best_matches must be >= 1, got {self.num_best_matches}")
        if not 0.0 <= self.alpha_for_symmetric <= 1.0:
            raise ValueError(
                f"alpha_for_symmetric must be in [0, 1], got {self.alpha_for_symmetric}"
            )
        if self.distance_variance <= 0.0:
            raise ValueError(f"distance_variance must be positive, got {self.distance_variance}")
        if self.freq_range < 0.0:
            raise ValueError(f"freq_range must be non-negative, got {self.freq_range}")
        steepness = min(max(float(self.weighting_steepness), MIN_STEEPNESS), MAX_STEEPNESS)
        if steepness != self.weighting_steepness:
            logger.warning(
                "weighting_steepness %.3f clamped to %.3f", self.weighting_steepness, steepness
            )
            object.__setattr__(self, "weighting_steepness", steepness)


@dataclass(frozen=True)
class ProsodyParams:
    """Pitch statistic representation and transformation method."""

    statistics_type: PitchStatisticsType = PitchStatisticsType.HERTZ
    transformation_method: PitchTransformationMethod = PitchTransformationMethod.NO_TRANSFORMATION
    use_input_mean: bool = False
    use_input_stddev: bool = False
    use_input_range: bool = False
    use_input_intercept: bool = False
    use_input_slope: bool = False
    # Overrides the target statistics stored in the codebook header
    target_statistics: Optional[PitchStatistics] = None

    @property
    def is_transformation_requested(self) -> bool:
        return self.transformation_method is not PitchTransformationMethod.NO_TRANSFORMATION


def is_scaling_required(*scale_sets) -> bool:
    """True if any factor in any of the scale sequences differs from 1.0."""

    return any(float(s) != 1.0 for scales in scale_sets for s in scales)


@dataclass(frozen=True)
class TransformerParams:
    """Everything a batch conversion run needs.

    Requesting fixed-rate vocal tract conversion forces separate prosody
    processing on: duration scaling cannot be combined with fixed-rate
    synthesis in a single pass.
    """

    input_folder: Path = Path(".")
    output_folder: Path = Path("output")
    codebook_file: Path = Path("codebook.wcf")
    mapper: MapperParams = field(default_factory=MapperParams)
    prosody: ProsodyParams = field(default_factory=ProsodyParams)

    pitch_scales: Tuple[float, ...] = IDENTITY_SCALES
    time_scales: Tuple[float, ...] = IDENTITY_SCALES
    energy_scales: Tuple[float, ...] = IDENTITY_SCALES
    vocal_tract_scales: Tuple[float, ...] = IDENTITY_SCALES

    is_vocal_tract_transformation: bool = True
    is_fixed_rate_vocal_tract_conversion: bool = False
    is_resynthesize_vocal_tract_from_source_codebook: bool = False
    is_vocal_tract_match_using_target_codebook: bool = False
    is_separate_prosody: bool = True
    is_save_vocal_tract_only_version: bool = False
    is_forced_analysis: bool = False
    is_display_processing_frame_count: bool = False

    # Append "[info_]best{n}_steep{s}_prosody{t}x{m}" to the output folder
    tag_output_folder: bool = False
    output_folder_info: str = ""
    num_workers: int = 1
    write_report: bool = True

    def __post_init__(self) -> None:
        for name in ("input_folder", "output_folder", "codebook_file"):
            object.__setattr__(self, name, Path(getattr(self, name)))
        for name in ("pitch_scales", "time_scales", "energy_scales", "vocal_tract_scales"):
            scales = tuple(float(s) for s in getattr(self, name))
            if not scales:
                raise ValueError(f"{name} must hold at least one factor")
            if any(s <= 0.0 for s in scales):
                raise ValueError(f"{name} must be positive, got {scales}")
            object.__setattr__(self, name, scales)
        if self.num_workers < 1:
            raise ValueError(f"num_workers must be >= 1, got {self.num_workers}")
        if self.is_fixed_rate_vocal_tract_conversion and not self.is_separate_prosody:
            logger.info("Fixed-rate vocal tract conversion requested; enabling separate prosody")
            object.__setattr__(self, "is_separate_prosody", True)

    @property
    def scales(self) -> Tuple[Tuple[float, ...], ...]:
        return (self.pitch_scales, self.time_scales, self.energy_scales, self.vocal_tract_scales)

    @property
    def is_scaling_required(self) -> bool:
        return is_scaling_required(*self.scales)

    @property
    def is_prosody_pass_required(self) -> bool:
        return self.is_scaling_required or self.prosody.is_transformation_requested

    def tagged_output_folder(self) -> Path:
        """Output folder, with the run tag appended when ``tag_output_folder`` is set."""

        if not self.tag_output_folder:
            return self.output_folder
        tag = (
            f"best{self.mapper.num_best_matches}"
            f"_steep{self.mapper.weighting_steepness}"
            f"_prosody{self.prosody.statistics_type.value}"
            f"x{self.prosody.transformation_method.value}"
        )
        if self.output_folder_info:
            tag = f"{self.output_folder_info}_{tag}"
        return self.output_folder / tag


__all__ = [
    "MIN_STEEPNESS",
    "MAX_STEEPNESS",
    "IDENTITY_SCALES",
    "DistanceMeasure",
    "WeightingMethod",
    "MapperParams",
    "ProsodyParams",
    "TransformerParams",
    "is_scaling_required",
]
