import sys
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from wcvc import io_utils  # noqa: E402
from wcvc.codebook import Codebook, CodebookEntry, CodebookHeader  # noqa: E402
from wcvc.prosody import PitchStatistics, PitchStatisticsType  # noqa: E402

SR = 8000

SOURCE_LSFS = [
    [300.0, 800.0, 1500.0, 2500.0],
    [500.0, 1200.0, 2000.0, 3000.0],
    [700.0, 1000.0, 2200.0, 3300.0],
]
TARGET_LSFS = [
    [350.0, 900.0, 1600.0, 2600.0],
    [550.0, 1300.0, 2100.0, 3100.0],
    [750.0, 1100.0, 2300.0, 3400.0],
]


def build_codebook(source_lsfs=SOURCE_LSFS, target_lsfs=TARGET_LSFS, sr=SR, with_stats=False) -> Codebook:
    stats = {}
    if with_stats:
        stats = dict(
            source_f0_stats=PitchStatistics(120.0, 20.0, 80.0, 0.0, 120.0, PitchStatisticsType.HERTZ),
            target_f0_stats=PitchStatistics(220.0, 30.0, 120.0, 0.0, 220.0, PitchStatisticsType.HERTZ),
        )
    header = CodebookHeader(
        lp_order=len(source_lsfs[0]), sampling_rate=sr, frame_length=0.02, frame_skip=0.01, **stats
    )
    entries = [
        CodebookEntry.from_lsfs(np.array(s), np.array(t), sr) for s, t in zip(source_lsfs, target_lsfs)
    ]
    return Codebook(header, entries)


@pytest.fixture
def codebook() -> Codebook:
    return build_codebook()


@pytest.fixture
def codebook_with_stats() -> Codebook:
    return build_codebook(with_stats=True)


def harmonic_tone(f0: float = 150.0, seconds: float = 0.5, sr: int = SR) -> np.ndarray:
    """A few harmonics of ``f0`` with a slow decay; voiced-like test signal."""
    t = np.arange(int(seconds * sr)) / sr
    tone = sum(np.sin(2.0 * np.pi * f0 * k * t) / k for k in range(1, 6))
    return (0.3 * tone / np.max(np.abs(tone))).astype(np.float32)


@pytest.fixture
def write_item(tmp_path):
    """Write ``<name>.wav`` plus a constant-F0 pitch track into ``tmp_path/input``."""

    def _write(name: str, f0: float = 150.0, seconds: float = 0.5, sr: int = SR) -> Path:
        wav = tmp_path / "input" / f"{name}.wav"
        io_utils.save_audio(wav, harmonic_tone(f0, seconds, sr), sr)
        frames = int(seconds / 0.01) + 1
        io_utils.save_f0(io_utils.pitch_track_path(wav), np.full(frames, f0), 0.01, sr)
        return wav

    return _write
