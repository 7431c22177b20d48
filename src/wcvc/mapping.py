"""Weighted codebook mapping.

Maps a source LSF vector to an estimate of the target speaker's LSF vector:
the closest codebook entries (by source LSFs) are selected, their distances
are turned into weights, and the weighted sum of their target LSFs is
returned. The mapper holds only its parameters, so a single instance can be
shared by every item (and every worker) of a batch run.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from wcvc import distances, features
from wcvc.codebook import Codebook
from wcvc.params import MapperParams, WeightingMethod

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class CodebookMatch:
    """Selected entries, their weights and the weighted LSF estimates."""

    indices: np.ndarray
    weights: np.ndarray
    distances: np.ndarray
    source_lsfs: np.ndarray
    target_lsfs: np.ndarray
    is_fallback: bool = False


def compute_weights(
    best_distances: np.ndarray, method: WeightingMethod, steepness: float
) -> np.ndarray:
    """Turn the distances of the selected matches into weights summing to 1.

    Distances are normalised to ``[0, 1]`` between the best and the worst
    selected match, so the best match always gets the largest weight.
    """

    d = np.asarray(best_distances, dtype=np.float64).ravel()
    if d.size == 0:
        raise ValueError("No distances to weight")
    if d.size == 1:
        return np.ones(1, dtype=np.float64)

    span = float(np.max(d) - np.min(d))
    if span > 0.0 and np.isfinite(span):
        normalized = (d - np.min(d)) / span
    else:
        normalized = np.zeros_like(d)

    if method is WeightingMethod.EXPONENTIAL_HALF_WINDOW:
        weights = np.exp(-steepness * normalized)
    elif method is WeightingMethod.TRIANGLE_HALF_WINDOW:
        weights = 1.0 - normalized
    else:
        raise ValueError(f"Unknown weighting method: {method}")

    total = float(np.sum(weights))
    if total <= 0.0 or not np.isfinite(total):
        weights = np.ones_like(d)
        total = float(d.size)
    return weights / total


class CodebookMapper:
    """Nearest-entry search plus weighted interpolation over a codebook."""

    def __init__(self, params: Optional[MapperParams] = None) -> None:
        self._params = params or MapperParams()

    @property
    def params(self) -> MapperParams:
        return self._params

    def candidate_indices(
        self, query_lsfs: np.ndarray, codebook: Codebook, use_target: bool = False
    ) -> np.ndarray:
        """Entries whose characteristic frequency lies within ``freq_range`` of the query's."""

        center = features.center_frequency(query_lsfs)
        centers = codebook.center_frequencies(use_target)
        return np.flatnonzero(np.abs(centers - center) <= self._params.freq_range)

    def transform(
        self,
        query_lsfs: np.ndarray,
        query_weights: Optional[np.ndarray],
        codebook: Codebook,
        use_target: bool = False,
    ) -> CodebookMatch:
        """Full match of one frame.

        ``use_target`` matches the query against the target side of the
        codebook instead of the source side. If no entry falls inside the
        frequency window, the globally nearest entry is used alone.
        """

        query = np.nan_to_num(np.asarray(query_lsfs, dtype=np.float64).ravel())
        if query.size != codebook.lp_order:
            raise ValueError(
                f"Query has {query.size} coefficients, codebook order is {codebook.lp_order}"
            )
        if query_weights is None:
            query_weights = features.lsf_weights(query, codebook.header.sampling_rate)
        query_weights = np.asarray(query_weights, dtype=np.float64).ravel()
        if query_weights.size != query.size:
            raise ValueError("Query weights must match the query length")

        params = self._params
        candidates = self.candidate_indices(query, codebook, use_target)
        is_fallback = candidates.size == 0
        if is_fallback:
            candidates = np.arange(len(codebook))

        dist = distances.compute_distances(
            params.distance_measure,
            query,
            query_weights,
            codebook.lsfs(use_target)[candidates],
            codebook.weights(use_target)[candidates],
            codebook.variances(use_target),
            params.alpha_for_symmetric,
        )
        dist = distances.z_normalize(dist, params.distance_mean, params.distance_variance)

        num_best = 1 if is_fallback else min(params.num_best_matches, candidates.size)
        order = np.argsort(dist, kind="stable")[:num_best]
        best = candidates[order]
        best_dist = dist[order]
        if is_fallback:
            logger.debug("No codebook entry within %.1f Hz; using nearest entry %d", params.freq_range, best[0])

        weights = compute_weights(best_dist, params.weighting_method, params.weighting_steepness)
        return CodebookMatch(
            indices=best,
            weights=weights,
            distances=best_dist,
            source_lsfs=weights @ codebook.source_lsfs[best],
            target_lsfs=weights @ codebook.target_lsfs[best],
            is_fallback=is_fallback,
        )

    def match(
        self,
        query_lsfs: np.ndarray,
        query_weights: Optional[np.ndarray],
        codebook: Codebook,
        use_target: bool = False,
    ) -> np.ndarray:
        """Target LSF estimate for one query vector."""

        return self.transform(query_lsfs, query_weights, codebook, use_target).target_lsfs


__all__ = ["CodebookMatch", "CodebookMapper", "compute_weights"]
