import numpy as np
import pytest

from conftest import SR, harmonic_tone
from wcvc import io_utils
from wcvc.codebook import load_codebook, save_codebook
from wcvc.training import TrainingPair, _non_silent, pair_parallel_files, reduce_entries, train_codebook


def _write_pair(tmp_path, name, src_f0=130.0, tgt_f0=210.0):
    src = tmp_path / "source" / f"{name}.wav"
    tgt = tmp_path / "target" / f"{name}.wav"
    silence = np.zeros(int(0.1 * SR), dtype=np.float32)
    io_utils.save_audio(src, np.concatenate([silence, harmonic_tone(src_f0, 0.4)]), SR)
    io_utils.save_audio(tgt, np.concatenate([silence, harmonic_tone(tgt_f0, 0.5)]), SR)
    return TrainingPair(src, tgt)


def test_pairs_are_matched_by_basename(tmp_path):
    _write_pair(tmp_path, "s01")
    _write_pair(tmp_path, "s02")
    io_utils.save_audio(tmp_path / "source" / "lonely.wav", harmonic_tone(seconds=0.1), SR)
    pairs = pair_parallel_files(tmp_path / "source", tmp_path / "target")
    assert [p.source_file.stem for p in pairs] == ["s01", "s02"]
    assert all(p.target_file.parent.name == "target" for p in pairs)


def test_train_codebook_with_pitch_statistics(tmp_path):
    pairs = [_write_pair(tmp_path, "s01"), _write_pair(tmp_path, "s02")]
    codebook = train_codebook(pairs, lp_order=8, sampling_rate=SR, show_progress=False)

    assert len(codebook) > 0
    assert codebook.lp_order == 8
    assert codebook.header.sampling_rate == SR
    assert np.all(np.diff(codebook.source_lsfs, axis=1) > 0.0)
    assert codebook.header.source_f0_stats.mean == pytest.approx(130.0, rel=0.1)
    assert codebook.header.target_f0_stats.mean == pytest.approx(210.0, rel=0.1)

    path = tmp_path / "cb.wcf"
    save_codebook(codebook, path)
    assert len(load_codebook(path)) == len(codebook)


def test_kmeans_reduction(tmp_path):
    pairs = [_write_pair(tmp_path, "s01")]
    full = train_codebook(pairs, lp_order=6, sampling_rate=SR, show_progress=False)
    reduced = train_codebook(pairs, lp_order=6, sampling_rate=SR, num_clusters=3, show_progress=False)
    assert 1 <= len(reduced) <= 3 < len(full)


def test_reduce_entries_keeps_small_sets():
    src = np.array([[500.0, 1500.0], [600.0, 1600.0]])
    tgt = src + 50.0
    out_src, out_tgt = reduce_entries(src, tgt, 5, SR)
    assert out_src is src and out_tgt is tgt


def test_silent_frames_are_skipped():
    energies = np.array([0.0, 1e-9, 0.5, 1.0])
    np.testing.assert_array_equal(_non_silent(energies, -40.0), [False, False, True, True])
    assert not _non_silent(np.zeros(3), -40.0).any()


def test_unreadable_pairs_are_skipped(tmp_path):
    good = _write_pair(tmp_path, "s01")
    broken = tmp_path / "source" / "s02.wav"
    broken.write_bytes(b"not audio")
    pairs = [good, TrainingPair(broken, good.target_file)]
    codebook = train_codebook(pairs, lp_order=6, sampling_rate=SR, show_progress=False)
    assert len(codebook) > 0


def test_no_usable_frames_raises(tmp_path):
    broken = tmp_path / "x.wav"
    broken.write_bytes(b"not audio")
    with pytest.raises(ValueError):
        train_codebook([TrainingPair(broken, broken)], lp_order=6, sampling_rate=SR, show_progress=False)
