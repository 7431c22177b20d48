import json
import logging

import pytest

from conftest import build_codebook, harmonic_tone
from wcvc import config, io_utils
from wcvc.codebook import save_codebook
from wcvc.exceptions import ConfigurationError
from wcvc.params import ProsodyParams, TransformerParams
from wcvc.prosody import PitchStatistics, PitchStatisticsType, PitchTransformationMethod
from wcvc.transformer import BatchTransformer


class CopyEngine:
    """Reads the input like a real engine would and writes it back unchanged."""

    def __init__(self):
        self.calls = 0

    def run(self, request):
        self.calls += 1
        audio, sr = io_utils.load_audio(request.input_file)
        io_utils.save_audio(request.output_file, audio, sr)


@pytest.fixture
def codebook_file(tmp_path):
    path = tmp_path / "cb.wcf"
    save_codebook(build_codebook(with_stats=True), path)
    return path


def _params(tmp_path, codebook_file, **kwargs) -> TransformerParams:
    return TransformerParams(
        input_folder=tmp_path / "input",
        output_folder=tmp_path / "output",
        codebook_file=codebook_file,
        **kwargs,
    )


def _three_items_with_corrupt_second(tmp_path, write_item):
    write_item("a")
    corrupt = tmp_path / "input" / "b.wav"
    corrupt.write_bytes(b"RIFF....garbage")
    write_item("c")


@pytest.mark.parametrize("workers", [1, 2])
def test_corrupt_item_does_not_stop_batch(tmp_path, codebook_file, write_item, caplog, workers):
    _three_items_with_corrupt_second(tmp_path, write_item)
    caplog.set_level(logging.INFO)

    report = BatchTransformer(_params(tmp_path, codebook_file, num_workers=workers), engine=CopyEngine()).run()

    assert report.completed
    assert report.num_items == 3
    assert [r.ok for r in report.results] == [True, False, True]
    assert [r.index for r in report.results] == [0, 1, 2]
    assert "UnsupportedAudioFormatError" in report.results[1].error
    out = tmp_path / "output"
    assert (out / "a_output.wav").exists()
    assert (out / "c_output.wav").exists()
    assert not (out / "b_output.wav").exists()
    assert not report.ok

    for i in (1, 2, 3):
        assert f"Transformed file {i} of 3" in caplog.text
    assert "Transformation completed" in caplog.text
    assert "Skipping pitch extraction" not in caplog.text

    summary = json.loads((out / config.REPORT_NAME).read_text())
    assert summary["total"] == 3
    assert summary["failed"] == 1
    assert summary["items"][1]["input_file"].endswith("b.wav")


def test_outputs_and_intermediates(tmp_path, codebook_file, write_item):
    write_item("a")
    engine = CopyEngine()
    report = BatchTransformer(_params(tmp_path, codebook_file, write_report=False), engine=engine).run()
    assert report.ok
    assert engine.calls == 1
    assert sorted(p.name for p in (tmp_path / "output").iterdir()) == ["a_output.wav"]


def test_output_set_mirrors_input_set(tmp_path, codebook_file, write_item):
    write_item("x")
    write_item("y")
    transformer = BatchTransformer(_params(tmp_path, codebook_file), engine=CopyEngine())
    inputs = transformer.get_input_set()
    outputs = transformer.get_output_set(inputs)
    assert [i.basename for i in inputs] == ["x", "y"]
    assert [o.audio_file.name for o in outputs] == ["x_output.wav", "y_output.wav"]
    assert inputs[0].f0_file.name == "x.f0.npz"


def test_empty_input_folder(tmp_path, codebook_file, caplog):
    (tmp_path / "input").mkdir()
    report = BatchTransformer(_params(tmp_path, codebook_file), engine=CopyEngine()).run()
    assert report.completed
    assert report.num_items == 0
    assert "No input files" in caplog.text


def test_tagged_output_folder_is_created(tmp_path, codebook_file):
    (tmp_path / "input").mkdir()
    params = _params(tmp_path, codebook_file, tag_output_folder=True, output_folder_info="exp")
    transformer = BatchTransformer(params, engine=CopyEngine())
    header = transformer.check_params()
    assert header.lp_order == 4
    assert transformer.output_folder.is_dir()
    assert transformer.output_folder.name.startswith("exp_best1_")


def test_missing_codebook_is_fatal(tmp_path):
    (tmp_path / "input").mkdir()
    with pytest.raises(ConfigurationError):
        BatchTransformer(_params(tmp_path, tmp_path / "none.wcf")).check_params()


def test_unreadable_codebook_is_fatal(tmp_path):
    (tmp_path / "input").mkdir()
    bad = tmp_path / "bad.wcf"
    bad.write_bytes(b"nonsense")
    with pytest.raises(ConfigurationError):
        BatchTransformer(_params(tmp_path, bad)).check_params()


def test_missing_input_folder_is_fatal(tmp_path, codebook_file):
    with pytest.raises(ConfigurationError):
        BatchTransformer(_params(tmp_path, codebook_file)).check_params()


def test_pitch_transformation_needs_target_statistics(tmp_path):
    (tmp_path / "input").mkdir()
    path = tmp_path / "plain.wcf"
    save_codebook(build_codebook(), path)
    prosody = ProsodyParams(transformation_method=PitchTransformationMethod.SENTENCE_MEAN)
    with pytest.raises(ConfigurationError):
        BatchTransformer(_params(tmp_path, path, prosody=prosody)).check_params()

    explicit = ProsodyParams(
        transformation_method=PitchTransformationMethod.SENTENCE_MEAN,
        target_statistics=PitchStatistics(mean=200.0),
    )
    BatchTransformer(_params(tmp_path, path, prosody=explicit)).check_params()


def test_statistics_type_mismatch_is_fatal(tmp_path, codebook_file):
    (tmp_path / "input").mkdir()
    prosody = ProsodyParams(
        statistics_type=PitchStatisticsType.LOG_HERTZ,
        transformation_method=PitchTransformationMethod.GLOBAL_MEAN,
    )
    with pytest.raises(ConfigurationError):
        BatchTransformer(_params(tmp_path, codebook_file, prosody=prosody)).check_params()


def test_high_sample_rate_item_is_tracked_and_converted(tmp_path, codebook_file, write_item):
    write_item("a", seconds=0.3)
    high = tmp_path / "input" / "b.wav"
    io_utils.save_audio(high, harmonic_tone(seconds=0.3, sr=96000), 96000)
    write_item("c", seconds=0.3)

    report = BatchTransformer(_params(tmp_path, codebook_file)).run()

    assert report.completed
    assert [r.ok for r in report.results] == [True, True, True]
    assert io_utils.pitch_track_path(high).exists()
    for name in ("a", "b", "c"):
        assert (tmp_path / "output" / f"{name}_output.wav").exists()
    assert (tmp_path / "output" / config.REPORT_NAME).exists()
