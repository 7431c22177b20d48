"""Frame alignment utilities (DTW) for codebook training.

Aligns the LSF sequences of a parallel source/target utterance pair so that
aligned frame pairs can become codebook entries. The alignment path is
returned as integer index pairs that are stable across runs.
"""
from __future__ import annotations

import numpy as np
from fastdtw import fastdtw
from scipy.spatial.distance import euclidean


def _to_frame_matrix(features: np.ndarray) -> np.ndarray:
    """Convert arbitrary input to a 2D (frames, feature_dim) float64 matrix.

    NaNs/Infs are replaced with zeros to keep the distance computation stable.
    """

    arr = np.asarray(features, dtype=np.float64)
    arr = np.nan_to_num(arr, nan=0.0, posinf=0.0, neginf=0.0)

    if arr.ndim == 1:
        arr = arr[:, None]  # shape -> (frames, 1)
    if arr.ndim != 2:
        raise ValueError("features must be 1D or 2D array-like")

    return arr


def align_features_dtw(
    source_features: np.ndarray, target_features: np.ndarray, radius: int = 1
) -> np.ndarray:
    """Align frame sequences using Dynamic Time Warping.

    Parameters
    ----------
    source_features : np.ndarray
        Array shaped ``(frames_s, feature_dim)``.
    target_features : np.ndarray
        Array shaped ``(frames_t, feature_dim)``.
    radius : int
        Search radius of the fastdtw approximation.

    Returns
    -------
    np.ndarray
        Alignment path as an array of shape ``(path_len, 2)`` where each row is
        ``(src_idx, tgt_idx)``. Empty inputs yield an empty path.
    """

    src = _to_frame_matrix(source_features)
    tgt = _to_frame_matrix(target_features)

    if src.shape[0] == 0 or tgt.shape[0] == 0:
        return np.zeros((0, 2), dtype=np.int64)
    if src.shape[1] != tgt.shape[1]:
        raise ValueError(
            f"Feature dimensions differ: source {src.shape[1]}, target {tgt.shape[1]}"
        )

    _, path = fastdtw(src, tgt, radius=radius, dist=euclidean)

    if not path:
        return np.zeros((0, 2), dtype=np.int64)

    return np.asarray(path, dtype=np.int64)


__all__ = ["align_features_dtw"]
