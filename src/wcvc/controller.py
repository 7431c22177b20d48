"""Two-pass conversion of a single item.

The vocal tract pass runs the engine with the codebook mapper attached. When
prosody is processed separately, its output goes to an intermediate
``<output>_vt.wav`` file which the prosody pass then reads with the mapper
disabled; if no prosody change is requested the intermediate file is copied
to the output instead. The intermediate file is removed at the end unless the
vocal-tract-only version is to be kept.
"""
from __future__ import annotations

import logging
import time
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet

from wcvc import config, io_utils
from wcvc.codebook import Codebook
from wcvc.exceptions import ResynthesisError
from wcvc.items import AdaptationItem, ItemResult
from wcvc.mapping import CodebookMapper
from wcvc.params import IDENTITY_SCALES, ProsodyParams, TransformerParams
from wcvc.resynthesis import ResynthesisEngine, ResynthesisRequest

logger = logging.getLogger(__name__)


class PassStage(Enum):
    START = "start"
    VOCAL_TRACT_PASS = "vocal_tract_pass"
    PROSODY_PASS = "prosody_pass"
    COPY_OUTPUT = "copy_output"
    FINALIZE = "finalize"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: Dict[PassStage, FrozenSet[PassStage]] = {
    PassStage.START: frozenset({PassStage.VOCAL_TRACT_PASS, PassStage.FAILED}),
    PassStage.VOCAL_TRACT_PASS: frozenset(
        {PassStage.PROSODY_PASS, PassStage.COPY_OUTPUT, PassStage.FINALIZE, PassStage.FAILED}
    ),
    PassStage.PROSODY_PASS: frozenset({PassStage.FINALIZE, PassStage.FAILED}),
    PassStage.COPY_OUTPUT: frozenset({PassStage.FINALIZE, PassStage.FAILED}),
    PassStage.FINALIZE: frozenset({PassStage.DONE, PassStage.FAILED}),
    PassStage.DONE: frozenset(),
    PassStage.FAILED: frozenset(),
}


def intermediate_path(output_file: Path) -> Path:
    """``<dir>/<stem>_vt.wav`` next to the final output."""
    output_file = Path(output_file)
    return output_file.with_name(output_file.stem + config.VOCAL_TRACT_SUFFIX + config.WAV_EXT)


class _StageTracker:
    """Current stage plus the stages visited so far; rejects illegal moves."""

    def __init__(self, result: ItemResult) -> None:
        self.stage = PassStage.START
        self._result = result
        result.stages.append(self.stage.value)

    def advance(self, stage: PassStage) -> None:
        if stage not in _TRANSITIONS[self.stage]:
            raise RuntimeError(f"Illegal pass transition {self.stage.name} -> {stage.name}")
        self.stage = stage
        self._result.stages.append(stage.value)


class PassController:
    """Drives the engine through the vocal tract and prosody passes of one item."""

    def __init__(self, engine: ResynthesisEngine) -> None:
        self.engine = engine

    def convert(
        self,
        input_item: AdaptationItem,
        output_item: AdaptationItem,
        params: TransformerParams,
        mapper: CodebookMapper,
        codebook: Codebook,
        index: int = 0,
    ) -> ItemResult:
        """Convert one item; failures are logged and reported, never raised."""

        output_file = output_item.audio_file
        result = ItemResult(index=index, input_file=str(input_item.audio_file), output_file=str(output_file))
        tracker = _StageTracker(result)
        started = time.perf_counter()

        separate = params.is_separate_prosody
        vt_output = intermediate_path(output_file) if separate else output_file
        try:
            tracker.advance(PassStage.VOCAL_TRACT_PASS)
            self.engine.run(self._vocal_tract_request(input_item, vt_output, params, mapper, codebook))

            if separate:
                result.intermediate_file = str(vt_output)
                if params.is_prosody_pass_required:
                    tracker.advance(PassStage.PROSODY_PASS)
                    self.engine.run(
                        self._prosody_request(input_item, vt_output, output_file, params, codebook)
                    )
                else:
                    tracker.advance(PassStage.COPY_OUTPUT)
                    io_utils.copy_file(vt_output, output_file)

            tracker.advance(PassStage.FINALIZE)
            if separate and not params.is_save_vocal_tract_only_version:
                io_utils.delete_file(vt_output)
                result.intermediate_file = None
            tracker.advance(PassStage.DONE)
            result.ok = True
        except (ResynthesisError, OSError, RuntimeError, ValueError) as exc:
            logger.exception(
                "Conversion of %s failed during %s", input_item.audio_file.name, tracker.stage.name
            )
            tracker.advance(PassStage.FAILED)
            result.error = f"{type(exc).__name__}: {exc}"
        result.elapsed_s = time.perf_counter() - started
        return result

    @staticmethod
    def _vocal_tract_request(
        input_item: AdaptationItem,
        output_file: Path,
        params: TransformerParams,
        mapper: CodebookMapper,
        codebook: Codebook,
    ) -> ResynthesisRequest:
        if params.is_separate_prosody:
            scales = dict(
                pitch_scales=IDENTITY_SCALES,
                time_scales=IDENTITY_SCALES,
                energy_scales=IDENTITY_SCALES,
                vocal_tract_scales=IDENTITY_SCALES,
            )
            prosody = ProsodyParams(statistics_type=params.prosody.statistics_type)
        else:
            scales = dict(
                pitch_scales=params.pitch_scales,
                time_scales=params.time_scales,
                energy_scales=params.energy_scales,
                vocal_tract_scales=params.vocal_tract_scales,
            )
            prosody = params.prosody
        return ResynthesisRequest(
            input_file=input_item.audio_file,
            pitch_file=input_item.f0_file,
            output_file=output_file,
            is_vocal_tract_transformation=params.is_vocal_tract_transformation,
            is_fixed_rate=params.is_fixed_rate_vocal_tract_conversion,
            is_resynthesize_from_source_codebook=params.is_resynthesize_vocal_tract_from_source_codebook,
            is_match_using_target_codebook=params.is_vocal_tract_match_using_target_codebook,
            prosody=prosody,
            mapper=mapper if params.is_vocal_tract_transformation else None,
            codebook=codebook,
            display_progress=params.is_display_processing_frame_count,
            **scales,
        )

    @staticmethod
    def _prosody_request(
        input_item: AdaptationItem,
        vt_output: Path,
        output_file: Path,
        params: TransformerParams,
        codebook: Codebook,
    ) -> ResynthesisRequest:
        # The intermediate file keeps the input timing, so the input pitch track applies
        return ResynthesisRequest(
            input_file=vt_output,
            pitch_file=input_item.f0_file,
            output_file=output_file,
            pitch_scales=params.pitch_scales,
            time_scales=params.time_scales,
            energy_scales=params.energy_scales,
            vocal_tract_scales=params.vocal_tract_scales,
            prosody=params.prosody,
            mapper=None,
            codebook=codebook,
            display_progress=params.is_display_processing_frame_count,
        )


__all__ = ["PassStage", "PassController", "intermediate_path"]
