import numpy as np
import pytest

from wcvc.params import ProsodyParams
from wcvc.prosody import (
    PitchStatistics,
    PitchStatisticsType,
    PitchTransformationMethod,
    pitch_scale_contour,
    resolve_target,
    transform_f0,
)

HZ = PitchStatisticsType.HERTZ
LOG = PitchStatisticsType.LOG_HERTZ
FRAME = 0.01


def _params(method, stype=HZ, **flags) -> ProsodyParams:
    return ProsodyParams(statistics_type=stype, transformation_method=PitchTransformationMethod(method), **flags)


def _target(mean=250.0, stddev=40.0, rng=100.0, slope=0.0, intercept=250.0, stype=HZ) -> PitchStatistics:
    return PitchStatistics(mean, stddev, rng, slope, intercept, stype)


def test_statistics_ignore_unvoiced_frames():
    f0 = np.array([0.0, 200.0, 200.0, 0.0, 200.0])
    stats = PitchStatistics.from_f0(f0, FRAME)
    assert stats.mean == pytest.approx(200.0)
    assert stats.stddev == pytest.approx(0.0)
    assert stats.range == pytest.approx(0.0)
    assert stats.slope == pytest.approx(0.0, abs=1e-6)
    assert stats.intercept == pytest.approx(200.0)


def test_log_statistics():
    stats = PitchStatistics.from_f0(np.full(5, 200.0), FRAME, LOG)
    assert stats.mean == pytest.approx(np.log(200.0))
    assert stats.statistics_type is LOG


def test_silent_contour_gives_zero_statistics():
    stats = PitchStatistics.from_f0(np.zeros(10), FRAME)
    np.testing.assert_allclose(stats.as_array(), np.zeros(5))


def test_pooled_statistics():
    stats = PitchStatistics.from_contours([np.full(4, 100.0), np.full(4, 300.0), np.zeros(3)], FRAME)
    assert stats.mean == pytest.approx(200.0)
    assert stats.range == pytest.approx(200.0)
    assert stats.intercept == pytest.approx(200.0)


def test_sentence_mean_shift_keeps_unvoiced_frames():
    f0 = np.array([0.0, 200.0, 200.0, 0.0])
    out = transform_f0(f0, FRAME, _params("sentence_mean"), None, _target())
    np.testing.assert_allclose(out, [0.0, 250.0, 250.0, 0.0])


def test_global_mean_uses_source_statistics():
    f0 = np.full(4, 200.0)
    source = _target(mean=100.0, intercept=100.0)
    out = transform_f0(f0, FRAME, _params("global_mean"), source, _target())
    np.testing.assert_allclose(out, np.full(4, 350.0))


def test_global_method_without_source_statistics_uses_sentence():
    f0 = np.full(4, 200.0)
    out = transform_f0(f0, FRAME, _params("global_mean"), None, _target())
    np.testing.assert_allclose(out, np.full(4, 250.0))


def test_stddev_scaling():
    f0 = np.array([180.0, 220.0, 180.0, 220.0])
    out = transform_f0(f0, FRAME, _params("sentence_stddev"), None, _target(stddev=40.0))
    np.testing.assert_allclose(out, [160.0, 240.0, 160.0, 240.0])


def test_mean_stddev():
    f0 = np.array([180.0, 220.0, 180.0, 220.0])
    out = transform_f0(f0, FRAME, _params("sentence_mean_stddev"), None, _target(mean=300.0, stddev=10.0))
    np.testing.assert_allclose(out, [290.0, 310.0, 290.0, 310.0])


def test_slope_flattening():
    t = np.arange(10) * 0.1
    f0 = 100.0 + 100.0 * t
    out = transform_f0(f0, 0.1, _params("sentence_slope"), None, _target(slope=0.0))
    np.testing.assert_allclose(out, np.full(10, np.mean(f0)))


def test_log_domain_mean():
    f0 = np.full(3, 200.0)
    target = _target(mean=np.log(400.0), stype=LOG)
    out = transform_f0(f0, FRAME, _params("sentence_mean", LOG), None, target)
    np.testing.assert_allclose(out, np.full(3, 400.0))


def test_use_input_flags_keep_input_statistics():
    source = _target(mean=100.0, stddev=5.0)
    resolved = resolve_target(source, _target(), _params("sentence_mean_stddev", use_input_mean=True))
    assert resolved.mean == 100.0
    assert resolved.stddev == 40.0

    f0 = np.full(4, 200.0)
    out = transform_f0(f0, FRAME, _params("sentence_mean", use_input_mean=True), None, _target())
    np.testing.assert_allclose(out, f0)


def test_statistics_type_mismatch_raises():
    with pytest.raises(ValueError):
        transform_f0(np.full(3, 200.0), FRAME, _params("sentence_mean", LOG), None, _target())


def test_no_transformation_is_identity():
    f0 = np.array([0.0, 123.0, 0.0])
    out = transform_f0(f0, FRAME, ProsodyParams(), None, _target())
    np.testing.assert_allclose(out, f0)
    assert out is not f0


def test_output_is_floored_above_zero():
    f0 = np.full(3, 100.0)
    out = transform_f0(f0, FRAME, _params("sentence_mean"), None, _target(mean=-500.0))
    assert np.all(out >= 1.0)


def test_pitch_scale_contour():
    ratio = pitch_scale_contour(np.array([0.0, 100.0, 200.0]), np.array([0.0, 150.0, 100.0]))
    np.testing.assert_allclose(ratio, [1.0, 1.5, 0.5])


def test_method_properties():
    assert PitchTransformationMethod.GLOBAL_MEAN_SLOPE.is_global
    assert PitchTransformationMethod.GLOBAL_MEAN_SLOPE.statistic == "mean_slope"
    assert not PitchTransformationMethod.SENTENCE_RANGE.is_global
