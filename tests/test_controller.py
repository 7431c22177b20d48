from pathlib import Path

import pytest

from wcvc.controller import PassController, PassStage, intermediate_path
from wcvc.exceptions import ResynthesisError
from wcvc.items import AdaptationItem
from wcvc.mapping import CodebookMapper
from wcvc.params import ProsodyParams, TransformerParams
from wcvc.prosody import PitchTransformationMethod


class RecordingEngine:
    """Writes a small marker file instead of audio and remembers every request."""

    def __init__(self, fail_on_call=None, error=ResynthesisError):
        self.requests = []
        self.fail_on_call = fail_on_call
        self.error = error

    def run(self, request):
        self.requests.append(request)
        if self.fail_on_call == len(self.requests):
            raise self.error("engine failure")
        request.output_file.parent.mkdir(parents=True, exist_ok=True)
        request.output_file.write_bytes(f"{request.input_file.name}:{len(self.requests)}".encode())


def _items(tmp_path: Path):
    return AdaptationItem(tmp_path / "in" / "a.wav"), AdaptationItem(tmp_path / "out" / "a_output.wav")


def _convert(tmp_path, codebook, engine, **params):
    src, dst = _items(tmp_path)
    result = PassController(engine).convert(
        src, dst, TransformerParams(**params), CodebookMapper(), codebook, index=4
    )
    return result, src, dst


def test_intermediate_path_naming():
    assert intermediate_path(Path("out/a_output.wav")) == Path("out/a_output_vt.wav")


def test_identity_scales_copy_intermediate(tmp_path, codebook):
    engine = RecordingEngine()
    result, src, dst = _convert(tmp_path, codebook, engine)

    assert result.ok and result.index == 4
    assert len(engine.requests) == 1
    assert result.stages == ["start", "vocal_tract_pass", "copy_output", "finalize", "done"]
    assert dst.audio_file.read_bytes() == b"a.wav:1"
    assert not intermediate_path(dst.audio_file).exists()
    assert result.intermediate_file is None

    request = engine.requests[0]
    assert request.output_file == intermediate_path(dst.audio_file)
    assert request.mapper is not None and request.codebook is codebook
    assert request.pitch_file == src.f0_file


def test_scaling_runs_prosody_pass(tmp_path, codebook):
    engine = RecordingEngine()
    result, src, dst = _convert(tmp_path, codebook, engine, pitch_scales=(1.2,), time_scales=(0.9,))

    assert result.ok
    assert PassStage.PROSODY_PASS.value in result.stages
    vt_request, prosody_request = engine.requests
    assert vt_request.pitch_scales == (1.0,) and vt_request.time_scales == (1.0,)
    assert vt_request.is_vocal_tract_transformation
    assert prosody_request.input_file == intermediate_path(dst.audio_file)
    assert prosody_request.output_file == dst.audio_file
    assert prosody_request.pitch_file == src.f0_file
    assert prosody_request.mapper is None
    assert not prosody_request.is_vocal_tract_transformation
    assert prosody_request.pitch_scales == (1.2,) and prosody_request.time_scales == (0.9,)
    assert not intermediate_path(dst.audio_file).exists()


def test_pitch_transformation_alone_runs_prosody_pass(tmp_path, codebook_with_stats):
    engine = RecordingEngine()
    prosody = ProsodyParams(transformation_method=PitchTransformationMethod.GLOBAL_MEAN)
    result, _, _ = _convert(tmp_path, codebook_with_stats, engine, prosody=prosody)
    assert result.ok
    assert len(engine.requests) == 2
    assert not engine.requests[0].prosody.is_transformation_requested
    assert engine.requests[1].prosody is prosody


def test_vocal_tract_only_version_is_kept(tmp_path, codebook):
    engine = RecordingEngine()
    result, _, dst = _convert(tmp_path, codebook, engine, energy_scales=(0.5,), is_save_vocal_tract_only_version=True)
    vt = intermediate_path(dst.audio_file)
    assert result.ok
    assert vt.exists()
    assert result.intermediate_file == str(vt)


def test_single_pass_writes_output_directly(tmp_path, codebook):
    engine = RecordingEngine()
    result, _, dst = _convert(tmp_path, codebook, engine, is_separate_prosody=False, pitch_scales=(1.5,))
    assert result.ok
    assert result.stages == ["start", "vocal_tract_pass", "finalize", "done"]
    (request,) = engine.requests
    assert request.output_file == dst.audio_file
    assert request.pitch_scales == (1.5,)
    assert not intermediate_path(dst.audio_file).exists()


def test_disabled_vocal_tract_transformation_detaches_mapper(tmp_path, codebook):
    engine = RecordingEngine()
    _convert(tmp_path, codebook, engine, is_vocal_tract_transformation=False)
    assert engine.requests[0].mapper is None


@pytest.mark.parametrize("error", [ResynthesisError, OSError, RuntimeError, ValueError])
def test_engine_failure_is_reported_not_raised(tmp_path, codebook, error):
    engine = RecordingEngine(fail_on_call=1, error=error)
    result, _, dst = _convert(tmp_path, codebook, engine, pitch_scales=(1.2,))
    assert not result.ok
    assert result.stages[-1] == "failed"
    assert "engine failure" in result.error
    assert len(engine.requests) == 1
    assert not dst.audio_file.exists()


def test_prosody_failure_leaves_intermediate(tmp_path, codebook):
    engine = RecordingEngine(fail_on_call=2)
    result, _, dst = _convert(tmp_path, codebook, engine, pitch_scales=(1.2,))
    assert not result.ok
    assert result.stages[-2:] == ["prosody_pass", "failed"]
    assert intermediate_path(dst.audio_file).exists()
