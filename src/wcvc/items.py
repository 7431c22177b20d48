"""Adaptation items (input/output file sets) and per-item results."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple

from wcvc import io_utils


@dataclass(frozen=True)
class AdaptationItem:
    """One waveform file and its companion pitch track."""

    audio_file: Path
    f0_file: Optional[Path] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "audio_file", Path(self.audio_file))
        f0_file = self.f0_file
        if f0_file is None:
            f0_file = io_utils.pitch_track_path(self.audio_file)
        object.__setattr__(self, "f0_file", Path(f0_file))

    @property
    def basename(self) -> str:
        return self.audio_file.stem


@dataclass(frozen=True)
class AdaptationSet:
    """Ordered items; input and output sets are index-aligned."""

    items: Tuple[AdaptationItem, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))

    @classmethod
    def from_audio_files(cls, paths: Sequence[Path]) -> "AdaptationSet":
        return cls(tuple(AdaptationItem(p) for p in paths))

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[AdaptationItem]:
        return iter(self.items)

    def __getitem__(self, index: int) -> AdaptationItem:
        return self.items[index]


@dataclass
class ItemResult:
    """Outcome of converting one item."""

    index: int
    input_file: str
    output_file: str
    ok: bool = False
    stages: List[str] = field(default_factory=list)
    error: Optional[str] = None
    intermediate_file: Optional[str] = None
    elapsed_s: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BatchReport:
    """Ordered per-item results of a batch run."""

    results: List[ItemResult] = field(default_factory=list)
    completed: bool = False
    codebook_file: Optional[str] = None
    output_folder: Optional[str] = None

    @property
    def num_items(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> List[ItemResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> List[ItemResult]:
        return [r for r in self.results if not r.ok]

    @property
    def ok(self) -> bool:
        return self.completed and not self.failed

    def to_dict(self) -> dict:
        return {
            "codebook_file": self.codebook_file,
            "output_folder": self.output_folder,
            "completed": self.completed,
            "total": self.num_items,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "items": [r.to_dict() for r in self.results],
        }

    def write_json(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))


__all__ = ["AdaptationItem", "AdaptationSet", "ItemResult", "BatchReport"]
