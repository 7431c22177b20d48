"""Codebook store: paired source/target LSF entries and the ``.wcf`` file format.

A codebook is built once (see :mod:`wcvc.training`), written to disk, and
loaded once per conversion run. After construction it is read-only: entry
arrays are flagged non-writeable and the derived statistics used by the
mapper (stacked matrices, per-coefficient variances, characteristic
frequencies) are computed and validated up front.

File layout (little endian)::

    "WCVC" | uint16 version
    int32 lp_order | int32 sampling_rate | f64 frame_length | f64 frame_skip
    f64 preemphasis | int32 num_entries | uint8 has_f0_stats | uint8 stats_type
    f64[5] source pitch statistics | f64[5] target pitch statistics
    num_entries x (f64[p] src lsfs, f64[p] src weights, f64[p] tgt lsfs, f64[p] tgt weights)
"""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple, Union

import numpy as np

from wcvc import config, features
from wcvc.exceptions import CodebookFormatError
from wcvc.prosody import PitchStatistics, PitchStatisticsType

logger = logging.getLogger(__name__)

VARIANCE_FLOOR: float = 1e-3

_MAGIC = b"WCVC"
_VERSION = 1
_PREFIX = struct.Struct("<4sH")
_FIELDS = struct.Struct("<iidddiBB")
_STATS = struct.Struct("<10d")
HEADER_SIZE = _PREFIX.size + _FIELDS.size + _STATS.size

PathLike = Union[str, Path]


@dataclass(frozen=True)
class CodebookHeader:
    """Analysis configuration shared by all entries of a codebook."""

    lp_order: int
    sampling_rate: int
    frame_length: float = config.FRAME_LENGTH_S
    frame_skip: float = config.FRAME_SKIP_S
    preemphasis: float = config.PREEMPH
    num_entries: int = 0
    source_f0_stats: Optional[PitchStatistics] = None
    target_f0_stats: Optional[PitchStatistics] = None

    def __post_init__(self) -> None:
        if self.lp_order < 1:
            raise CodebookFormatError(f"Invalid LP order {self.lp_order}")
        if self.sampling_rate <= 0:
            raise CodebookFormatError(f"Invalid sampling rate {self.sampling_rate}")
        if self.frame_length <= 0.0 or self.frame_skip <= 0.0:
            raise CodebookFormatError("Frame length and skip must be positive")
        if self.num_entries < 0:
            raise CodebookFormatError(f"Invalid entry count {self.num_entries}")
        if (self.source_f0_stats is None) != (self.target_f0_stats is None):
            raise CodebookFormatError("Pitch statistics must be given for both speakers")

    @property
    def has_f0_stats(self) -> bool:
        return self.source_f0_stats is not None


def _readonly_vector(values) -> np.ndarray:
    arr = np.array(values, dtype=np.float64).ravel()
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class CodebookEntry:
    """One aligned source/target acoustic unit (LSFs in Hz plus weights)."""

    source_lsfs: np.ndarray
    source_weights: np.ndarray
    target_lsfs: np.ndarray
    target_weights: np.ndarray

    def __post_init__(self) -> None:
        for name in ("source_lsfs", "source_weights", "target_lsfs", "target_weights"):
            object.__setattr__(self, name, _readonly_vector(getattr(self, name)))
        lengths = {
            self.source_lsfs.size,
            self.source_weights.size,
            self.target_lsfs.size,
            self.target_weights.size,
        }
        if len(lengths) != 1:
            raise CodebookFormatError(f"Entry vectors differ in length: {sorted(lengths)}")

    @property
    def lp_order(self) -> int:
        return int(self.source_lsfs.size)

    @classmethod
    def from_lsfs(cls, source_lsfs: np.ndarray, target_lsfs: np.ndarray, sr: int) -> "CodebookEntry":
        """Entry with inverse-harmonic weights derived from the LSFs."""
        return cls(
            source_lsfs=source_lsfs,
            source_weights=features.lsf_weights(source_lsfs, sr),
            target_lsfs=target_lsfs,
            target_weights=features.lsf_weights(target_lsfs, sr),
        )


def _readonly(arr: np.ndarray) -> np.ndarray:
    arr = np.ascontiguousarray(arr, dtype=np.float64)
    arr.setflags(write=False)
    return arr


class Codebook:
    """Header plus an ordered, immutable sequence of entries."""

    def __init__(self, header: CodebookHeader, entries: Iterable[CodebookEntry]) -> None:
        entries = tuple(entries)
        if not entries:
            raise CodebookFormatError("Codebook holds no entries")
        for i, entry in enumerate(entries):
            if entry.lp_order != header.lp_order:
                raise CodebookFormatError(
                    f"Entry {i} has order {entry.lp_order}, header declares {header.lp_order}"
                )
        if header.num_entries == 0:
            header = replace(header, num_entries=len(entries))
        elif header.num_entries != len(entries):
            raise CodebookFormatError(
                f"Header declares {header.num_entries} entries, got {len(entries)}"
            )

        self._header = header
        self._entries = entries

        self._source_lsfs = _readonly(np.stack([e.source_lsfs for e in entries]))
        self._source_weights = _readonly(np.stack([e.source_weights for e in entries]))
        self._target_lsfs = _readonly(np.stack([e.target_lsfs for e in entries]))
        self._target_weights = _readonly(np.stack([e.target_weights for e in entries]))
        for name, mat in (
            ("source LSFs", self._source_lsfs),
            ("source weights", self._source_weights),
            ("target LSFs", self._target_lsfs),
            ("target weights", self._target_weights),
        ):
            if not np.isfinite(mat).all():
                raise CodebookFormatError(f"Codebook {name} contain NaN/Inf values")

        self._source_variances = self._variances(self._source_lsfs, "source")
        self._target_variances = self._variances(self._target_lsfs, "target")
        self._source_centers = _readonly(
            np.array([features.center_frequency(v) for v in self._source_lsfs])
        )
        self._target_centers = _readonly(
            np.array([features.center_frequency(v) for v in self._target_lsfs])
        )

    @staticmethod
    def _variances(mat: np.ndarray, label: str) -> np.ndarray:
        variances = np.var(mat, axis=0)
        floored = variances < VARIANCE_FLOOR
        if np.any(floored):
            logger.warning(
                "%d %s LSF variance(s) below %.1e; flooring for Mahalanobis distance",
                int(np.count_nonzero(floored)),
                label,
                VARIANCE_FLOOR,
            )
            variances = np.maximum(variances, VARIANCE_FLOOR)
        return _readonly(variances)

    # ------------------------------------------------------------------
    # Sequence protocol
    # ------------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[CodebookEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> CodebookEntry:
        return self._entries[index]

    def __repr__(self) -> str:
        return (
            f"Codebook(entries={len(self)}, lp_order={self._header.lp_order}, "
            f"sr={self._header.sampling_rate})"
        )

    # ------------------------------------------------------------------
    # Accessors used by the mapper
    # ------------------------------------------------------------------
    @property
    def header(self) -> CodebookHeader:
        return self._header

    @property
    def entries(self) -> Tuple[CodebookEntry, ...]:
        return self._entries

    @property
    def lp_order(self) -> int:
        return self._header.lp_order

    def lsfs(self, use_target: bool = False) -> np.ndarray:
        return self._target_lsfs if use_target else self._source_lsfs

    def weights(self, use_target: bool = False) -> np.ndarray:
        return self._target_weights if use_target else self._source_weights

    def variances(self, use_target: bool = False) -> np.ndarray:
        return self._target_variances if use_target else self._source_variances

    def center_frequencies(self, use_target: bool = False) -> np.ndarray:
        return self._target_centers if use_target else self._source_centers

    @property
    def source_lsfs(self) -> np.ndarray:
        return self._source_lsfs

    @property
    def target_lsfs(self) -> np.ndarray:
        return self._target_lsfs


class CodebookFile:
    """Reader/writer for ``.wcf`` codebook files.

    The header can be read on its own (to recover the LP order before any
    frame analysis is set up); the entries are read later with
    :meth:`read_codebook_excluding_header`.
    """

    def __init__(self, path: PathLike) -> None:
        self.path = Path(path)

    def read_header(self) -> CodebookHeader:
        if not self.path.is_file():
            raise FileNotFoundError(f"Codebook file not found: {self.path}")
        with open(self.path, "rb") as fh:
            blob = fh.read(HEADER_SIZE)
        if len(blob) < HEADER_SIZE:
            raise CodebookFormatError(f"Truncated codebook header in {self.path}")

        magic, version = _PREFIX.unpack_from(blob, 0)
        if magic != _MAGIC:
            raise CodebookFormatError(f"{self.path} is not a codebook file")
        if version != _VERSION:
            raise CodebookFormatError(f"Unsupported codebook version {version}")

        (
            lp_order,
            sampling_rate,
            frame_length,
            frame_skip,
            preemphasis,
            num_entries,
            has_stats,
            stats_type,
        ) = _FIELDS.unpack_from(blob, _PREFIX.size)
        stats = _STATS.unpack_from(blob, _PREFIX.size + _FIELDS.size)

        source_stats = target_stats = None
        if has_stats:
            try:
                stype = PitchStatisticsType(stats_type)
            except ValueError as exc:
                raise CodebookFormatError(f"Unknown pitch statistics type {stats_type}") from exc
            source_stats = PitchStatistics.from_array(stats[:5], stype)
            target_stats = PitchStatistics.from_array(stats[5:], stype)

        return CodebookHeader(
            lp_order=lp_order,
            sampling_rate=sampling_rate,
            frame_length=frame_length,
            frame_skip=frame_skip,
            preemphasis=preemphasis,
            num_entries=num_entries,
            source_f0_stats=source_stats,
            target_f0_stats=target_stats,
        )

    def read_codebook_excluding_header(self, header: CodebookHeader) -> Codebook:
        """Read the entry records that follow a previously read header."""

        record = 4 * header.lp_order
        expected = header.num_entries * record * 8
        with open(self.path, "rb") as fh:
            fh.seek(HEADER_SIZE)
            blob = fh.read(expected)
        if len(blob) != expected:
            raise CodebookFormatError(
                f"Truncated codebook {self.path}: expected {expected} bytes of entries, "
                f"got {len(blob)}"
            )
        data = np.frombuffer(blob, dtype="<f8").reshape(header.num_entries, 4, header.lp_order)
        entries = [
            CodebookEntry(
                source_lsfs=row[0],
                source_weights=row[1],
                target_lsfs=row[2],
                target_weights=row[3],
            )
            for row in data
        ]
        codebook = Codebook(header, entries)
        logger.info("Loaded codebook %s: %d entries, LP order %d", self.path, len(codebook), header.lp_order)
        return codebook

    def read(self) -> Codebook:
        return self.read_codebook_excluding_header(self.read_header())

    def write(self, codebook: Codebook) -> None:
        header = codebook.header
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if header.has_f0_stats:
            stats_type = header.source_f0_stats.statistics_type
            if header.target_f0_stats.statistics_type is not stats_type:
                raise CodebookFormatError("Source and target pitch statistics types differ")
            stats = np.concatenate(
                [header.source_f0_stats.as_array(), header.target_f0_stats.as_array()]
            )
            has_stats, stats_code = 1, stats_type.value
        else:
            stats = np.zeros(10, dtype=np.float64)
            has_stats, stats_code = 0, 0

        data = np.stack(
            [
                codebook.lsfs(use_target=False),
                codebook.weights(use_target=False),
                codebook.lsfs(use_target=True),
                codebook.weights(use_target=True),
            ],
            axis=1,
        ).astype("<f8")

        with open(self.path, "wb") as fh:
            fh.write(_PREFIX.pack(_MAGIC, _VERSION))
            fh.write(
                _FIELDS.pack(
                    header.lp_order,
                    header.sampling_rate,
                    header.frame_length,
                    header.frame_skip,
                    header.preemphasis,
                    len(codebook),
                    has_stats,
                    stats_code,
                )
            )
            fh.write(_STATS.pack(*stats))
            fh.write(data.tobytes())
        logger.info("Wrote codebook %s (%d entries)", self.path, len(codebook))


def load_codebook(path: PathLike) -> Codebook:
    return CodebookFile(path).read()


def save_codebook(codebook: Codebook, path: PathLike) -> None:
    CodebookFile(path).write(codebook)


__all__ = [
    "VARIANCE_FLOOR",
    "HEADER_SIZE",
    "CodebookHeader",
    "CodebookEntry",
    "Codebook",
    "CodebookFile",
    "load_codebook",
    "save_codebook",
]
