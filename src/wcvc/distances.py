"""Distance measures between a query LSF vector and codebook LSF vectors.

Every function takes a query of shape ``(p,)`` and candidates of shape
``(n, p)`` and returns ``n`` distances. Squared-difference measures are not
square-rooted; only the ordering and relative size of distances matter to the
mapper.
"""
from __future__ import annotations

import numpy as np

from wcvc.params import DistanceMeasure


def _diff(query: np.ndarray, candidates: np.ndarray) -> np.ndarray:
    return np.atleast_2d(candidates) - np.asarray(query, dtype=np.float64)[None, :]


def euclidean(query: np.ndarray, candidates: np.ndarray) -> np.ndarray:
    return np.sum(np.square(_diff(query, candidates)), axis=1)


def absolute_value(query: np.ndarray, candidates: np.ndarray) -> np.ndarray:
    return np.sum(np.abs(_diff(query, candidates)), axis=1)


def mahalanobis(query: np.ndarray, candidates: np.ndarray, variances: np.ndarray) -> np.ndarray:
    """Squared differences normalised by per-coefficient codebook variance."""
    return np.sum(np.square(_diff(query, candidates)) / variances[None, :], axis=1)


def inverse_harmonic(
    query: np.ndarray, candidates: np.ndarray, candidate_weights: np.ndarray
) -> np.ndarray:
    return np.sum(np.atleast_2d(candidate_weights) * np.square(_diff(query, candidates)), axis=1)


def inverse_harmonic_symmetric(
    query: np.ndarray,
    candidates: np.ndarray,
    query_weights: np.ndarray,
    candidate_weights: np.ndarray,
    alpha: float,
) -> np.ndarray:
    """Weights mixed as ``alpha * query + (1 - alpha) * candidate``."""
    mixed = alpha * np.asarray(query_weights, dtype=np.float64)[None, :] + (1.0 - alpha) * np.atleast_2d(
        candidate_weights
    )
    return np.sum(mixed * np.square(_diff(query, candidates)), axis=1)


def compute_distances(
    measure: DistanceMeasure,
    query: np.ndarray,
    query_weights: np.ndarray,
    candidates: np.ndarray,
    candidate_weights: np.ndarray,
    variances: np.ndarray,
    alpha: float = 0.5,
) -> np.ndarray:
    """Dispatch on ``measure``."""

    if measure is DistanceMeasure.EUCLIDEAN:
        return euclidean(query, candidates)
    if measure is DistanceMeasure.ABSOLUTE_VALUE:
        return absolute_value(query, candidates)
    if measure is DistanceMeasure.MAHALANOBIS:
        return mahalanobis(query, candidates, variances)
    if measure is DistanceMeasure.INVERSE_HARMONIC:
        return inverse_harmonic(query, candidates, candidate_weights)
    if measure is DistanceMeasure.INVERSE_HARMONIC_SYMMETRIC:
        return inverse_harmonic_symmetric(query, candidates, query_weights, candidate_weights, alpha)
    raise ValueError(f"Unknown distance measure: {measure}")


def z_normalize(distances: np.ndarray, mean: float = 0.0, variance: float = 1.0) -> np.ndarray:
    """``(d - mean) / sqrt(variance)``; the defaults are a no-op."""
    if mean == 0.0 and variance == 1.0:
        return distances
    return (distances - mean) / np.sqrt(variance)


__all__ = [
    "euclidean",
    "absolute_value",
    "mahalanobis",
    "inverse_harmonic",
    "inverse_harmonic_symmetric",
    "compute_distances",
    "z_normalize",
]
