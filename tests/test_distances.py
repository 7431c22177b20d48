import numpy as np
import pytest

from wcvc import distances
from wcvc.params import DistanceMeasure

QUERY = np.array([300.0, 900.0, 1600.0, 2700.0])
CANDIDATES = np.array([[300.0, 800.0, 1500.0, 2500.0], [500.0, 1200.0, 2000.0, 3000.0]])
QUERY_WEIGHTS = np.array([0.4, 0.3, 0.2, 0.1])
CANDIDATE_WEIGHTS = np.array([[0.1, 0.2, 0.3, 0.4], [0.25, 0.25, 0.25, 0.25]])


def test_euclidean_and_absolute():
    np.testing.assert_allclose(
        distances.euclidean(QUERY, CANDIDATES), [0 + 100**2 + 100**2 + 200**2, 200**2 + 300**2 + 400**2 + 300**2]
    )
    np.testing.assert_allclose(distances.absolute_value(QUERY, CANDIDATES), [400.0, 1200.0])


def test_mahalanobis_scales_by_variance():
    variances = np.array([1.0, 2.0, 4.0, 8.0])
    expected = [100**2 / 2 + 100**2 / 4 + 200**2 / 8, 200**2 + 300**2 / 2 + 400**2 / 4 + 300**2 / 8]
    np.testing.assert_allclose(distances.mahalanobis(QUERY, CANDIDATES, variances), expected)


def test_inverse_harmonic_uses_candidate_weights():
    d = distances.inverse_harmonic(QUERY, CANDIDATES, CANDIDATE_WEIGHTS)
    assert d[0] == pytest.approx(0.2 * 100**2 + 0.3 * 100**2 + 0.4 * 200**2)


def test_symmetric_distance_is_symmetric_at_half_alpha():
    candidate = CANDIDATES[:1]
    forward = distances.inverse_harmonic_symmetric(QUERY, candidate, QUERY_WEIGHTS, CANDIDATE_WEIGHTS[:1], 0.5)
    backward = distances.inverse_harmonic_symmetric(
        candidate[0], QUERY[None, :], CANDIDATE_WEIGHTS[0], QUERY_WEIGHTS[None, :], 0.5
    )
    np.testing.assert_allclose(forward, backward)


def test_symmetric_distance_alpha_extremes():
    d_query = distances.inverse_harmonic_symmetric(QUERY, CANDIDATES, QUERY_WEIGHTS, CANDIDATE_WEIGHTS, 1.0)
    d_cand = distances.inverse_harmonic_symmetric(QUERY, CANDIDATES, QUERY_WEIGHTS, CANDIDATE_WEIGHTS, 0.0)
    np.testing.assert_allclose(d_cand, distances.inverse_harmonic(QUERY, CANDIDATES, CANDIDATE_WEIGHTS))
    np.testing.assert_allclose(d_query, distances.inverse_harmonic(QUERY, CANDIDATES, np.tile(QUERY_WEIGHTS, (2, 1))))


@pytest.mark.parametrize("measure", list(DistanceMeasure))
def test_dispatch_returns_one_distance_per_candidate(measure):
    d = distances.compute_distances(
        measure, QUERY, QUERY_WEIGHTS, CANDIDATES, CANDIDATE_WEIGHTS, np.ones(4), alpha=0.5
    )
    assert d.shape == (2,)
    assert np.all(d >= 0.0)


def test_z_normalize():
    d = np.array([1.0, 3.0])
    assert distances.z_normalize(d) is d
    np.testing.assert_allclose(distances.z_normalize(d, mean=1.0, variance=4.0), [0.0, 1.0])
