"""Codebook training from parallel source/target recordings.

Each pair of recordings of the same sentence is analysed frame by frame,
aligned with DTW, and every aligned pair of non-silent frames becomes a
codebook entry. Large codebooks can be reduced with k-means: entries are
clustered on their source LSFs and each cluster contributes one entry (source
centroid, mean of the paired target LSFs).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
from sklearn.cluster import KMeans
from tqdm import tqdm

from wcvc import alignment, audio_preproc, config, features, io_utils
from wcvc.codebook import Codebook, CodebookEntry, CodebookHeader
from wcvc.exceptions import UnsupportedAudioFormatError
from wcvc.prosody import PitchStatistics, PitchStatisticsType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingPair:
    """Source and target recordings of the same sentence."""

    source_file: Path
    target_file: Path


def pair_parallel_files(source_folder: Path, target_folder: Path) -> List[TrainingPair]:
    """Pair ``*.wav`` files of two folders by basename (unmatched files are skipped)."""

    targets = {p.stem: p for p in io_utils.list_audio_files(target_folder)}
    pairs = []
    for src in io_utils.list_audio_files(source_folder):
        tgt = targets.get(src.stem)
        if tgt is None:
            logger.warning("No target recording for %s", src.name)
            continue
        pairs.append(TrainingPair(src, tgt))
    return pairs


def _non_silent(energies: np.ndarray, threshold_db: float) -> np.ndarray:
    """Frames whose energy is within ``threshold_db`` of the loudest frame."""

    peak = float(np.max(energies)) if energies.size else 0.0
    if peak <= 0.0:
        return np.zeros(energies.shape, dtype=bool)
    return energies >= peak * 10.0 ** (threshold_db / 10.0)


def _prepare_aligned_frames(
    source: features.LsfFrames, target: features.LsfFrames, threshold_db: float, radius: int
) -> Tuple[np.ndarray, np.ndarray]:
    """DTW-aligned LSF frame pairs where both sides are non-silent."""

    path = alignment.align_features_dtw(source.lsfs, target.lsfs, radius=radius)
    if path.size == 0:
        return np.zeros((0, source.lsfs.shape[1])), np.zeros((0, target.lsfs.shape[1]))
    keep = _non_silent(source.energies, threshold_db)[path[:, 0]] & _non_silent(
        target.energies, threshold_db
    )[path[:, 1]]
    path = path[keep]
    return source.lsfs[path[:, 0]], target.lsfs[path[:, 1]]


def reduce_entries(
    source_lsfs: np.ndarray, target_lsfs: np.ndarray, num_clusters: int, sr: int, seed: int = 0
) -> Tuple[np.ndarray, np.ndarray]:
    """K-means reduction of aligned LSF pairs to ``num_clusters`` entries."""

    if num_clusters >= source_lsfs.shape[0]:
        return source_lsfs, target_lsfs
    km = KMeans(n_clusters=num_clusters, n_init=10, random_state=seed)
    labels = km.fit_predict(source_lsfs)
    src_out, tgt_out = [], []
    for k in range(num_clusters):
        members = labels == k
        if not np.any(members):
            continue
        src_out.append(features.sanitize_lsfs(km.cluster_centers_[k], sr))
        tgt_out.append(features.sanitize_lsfs(np.mean(target_lsfs[members], axis=0), sr))
    return np.asarray(src_out), np.asarray(tgt_out)


def train_codebook(
    pairs: Sequence[TrainingPair],
    lp_order: int = config.LP_ORDER,
    sampling_rate: int = config.TARGET_SR,
    frame_length: float = config.FRAME_LENGTH_S,
    frame_skip: float = config.FRAME_SKIP_S,
    preemphasis: float = config.PREEMPH,
    num_clusters: Optional[int] = None,
    silence_threshold_db: float = -40.0,
    statistics_type: PitchStatisticsType = PitchStatisticsType.HERTZ,
    dtw_radius: int = 1,
    show_progress: bool = True,
) -> Codebook:
    """Build a codebook (with global pitch statistics) from parallel recordings.

    Pairs whose audio cannot be read are skipped with a warning.

    Raises
    ------
    ValueError
        If no aligned non-silent frame pair was found.
    """

    if num_clusters is not None and num_clusters < 1:
        raise ValueError("num_clusters must be positive")

    src_frames: List[np.ndarray] = []
    tgt_frames: List[np.ndarray] = []
    src_f0: List[np.ndarray] = []
    tgt_f0: List[np.ndarray] = []
    for pair in tqdm(pairs, desc="Training codebook", unit="pair", disable=not show_progress):
        try:
            src_audio, src_sr = io_utils.load_audio(pair.source_file)
            tgt_audio, tgt_sr = io_utils.load_audio(pair.target_file)
        except (OSError, UnsupportedAudioFormatError) as exc:
            logger.warning("Skipping pair %s: %s", pair.source_file.name, exc)
            continue
        src_audio, _ = audio_preproc.prepare_waveform(src_audio, src_sr, sampling_rate)
        tgt_audio, _ = audio_preproc.prepare_waveform(tgt_audio, tgt_sr, sampling_rate)

        analysis = dict(
            sr=sampling_rate,
            lp_order=lp_order,
            frame_length=frame_length,
            frame_skip=frame_skip,
            preemphasis=preemphasis,
        )
        src_lsf = features.extract_lsfs(src_audio, **analysis)
        tgt_lsf = features.extract_lsfs(tgt_audio, **analysis)
        x, y = _prepare_aligned_frames(src_lsf, tgt_lsf, silence_threshold_db, dtw_radius)
        logger.debug("%s: %d aligned frame pair(s)", pair.source_file.name, x.shape[0])
        src_frames.append(x)
        tgt_frames.append(y)
        src_f0.append(features.extract_f0(src_audio, sampling_rate, frame_skip))
        tgt_f0.append(features.extract_f0(tgt_audio, sampling_rate, frame_skip))

    source_lsfs = np.concatenate(src_frames) if src_frames else np.zeros((0, lp_order))
    target_lsfs = np.concatenate(tgt_frames) if tgt_frames else np.zeros((0, lp_order))
    if source_lsfs.shape[0] == 0:
        raise ValueError("Cannot train codebook: no aligned non-silent frames")
    if num_clusters is not None:
        source_lsfs, target_lsfs = reduce_entries(source_lsfs, target_lsfs, num_clusters, sampling_rate)

    header = CodebookHeader(
        lp_order=lp_order,
        sampling_rate=sampling_rate,
        frame_length=frame_length,
        frame_skip=frame_skip,
        preemphasis=preemphasis,
        source_f0_stats=PitchStatistics.from_contours(src_f0, frame_skip, statistics_type),
        target_f0_stats=PitchStatistics.from_contours(tgt_f0, frame_skip, statistics_type),
    )
    entries = [
        CodebookEntry.from_lsfs(s, t, sampling_rate) for s, t in zip(source_lsfs, target_lsfs)
    ]
    logger.info("Codebook trained: %d entries from %d pair(s)", len(entries), len(src_frames))
    return Codebook(header, entries)


__all__ = ["TrainingPair", "pair_parallel_files", "reduce_entries", "train_codebook"]
