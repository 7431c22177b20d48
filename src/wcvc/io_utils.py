"""Common I/O helpers for audio files, pitch tracks and the filesystem."""
from pathlib import Path
from typing import Iterable, List, Tuple, Union
import logging
import shutil

import numpy as np
import soundfile as sf

from wcvc import config
from wcvc.exceptions import UnsupportedAudioFormatError

logger = logging.getLogger(__name__)


PathLike = Union[str, Path]


def list_audio_files(
    root: PathLike, exts: Iterable[str] = (config.WAV_EXT,), recursive: bool = False
) -> List[Path]:
    """List audio files under ``root`` with matching extensions, sorted by name."""
    root_path = Path(root)
    if not root_path.exists():
        logger.warning("Audio root %s does not exist", root_path)
        return []
    exts_l = tuple(e.lower() for e in exts)
    candidates = root_path.rglob("*") if recursive else root_path.iterdir()
    return sorted(p for p in candidates if p.is_file() and p.suffix.lower() in exts_l)


def load_audio(path: PathLike) -> Tuple[np.ndarray, int]:
    """Load an audio file as float32 array in range [-1, 1].

    Raises
    ------
    FileNotFoundError
        If ``path`` does not exist.
    UnsupportedAudioFormatError
        If libsndfile cannot decode the file.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Audio file not found: {path}")
    try:
        data, sr = sf.read(str(path), always_2d=False)
    except RuntimeError as exc:
        raise UnsupportedAudioFormatError(str(path), str(exc)) from exc
    if data.dtype.kind == "i":
        max_val = np.iinfo(data.dtype).max
        data = data.astype(np.float32) / max_val
    data = np.asarray(data, dtype=np.float32)
    return data, sr


def save_audio(path: PathLike, audio: np.ndarray, sr: int) -> None:
    """Save audio to ``path`` as 16-bit PCM WAV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    sf.write(str(path), np.clip(audio, -1.0, 1.0).astype(np.float32), sr, subtype="PCM_16")


def ensure_parent(path: PathLike) -> None:
    """Create parent directories for a file path."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)


def copy_file(src: PathLike, dst: PathLike) -> None:
    """Byte-for-byte copy of ``src`` to ``dst``."""
    ensure_parent(dst)
    shutil.copyfile(str(src), str(dst))


def delete_file(path: PathLike) -> None:
    """Remove ``path`` if it exists."""
    Path(path).unlink(missing_ok=True)


# -----------------------------------------------------------------------------
# Pitch tracks
# -----------------------------------------------------------------------------
def pitch_track_path(audio_path: PathLike) -> Path:
    """Companion pitch-track path sharing the audio file's basename."""
    audio_path = Path(audio_path)
    return audio_path.with_name(audio_path.stem + config.PITCH_EXT)


def save_f0(path: PathLike, f0: np.ndarray, frame_period: float, sr: int) -> None:
    """Store an F0 contour (Hz, 0 for unvoiced) with its frame period in seconds."""
    ensure_parent(path)
    f0 = np.nan_to_num(np.asarray(f0, dtype=np.float64), nan=0.0, posinf=0.0, neginf=0.0)
    # np.savez appends ".npz" to names lacking it; open the handle ourselves.
    with open(path, "wb") as fh:
        np.savez(fh, f0=f0, frame_period=float(frame_period), sampling_rate=int(sr))


def load_f0(path: PathLike) -> Tuple[np.ndarray, float]:
    """Load an F0 contour and its frame period (seconds)."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Pitch track not found: {path}")
    with np.load(path, allow_pickle=False) as npz:
        f0 = np.asarray(npz["f0"], dtype=np.float64)
        frame_period = float(npz["frame_period"])
    f0 = np.nan_to_num(f0, nan=0.0, posinf=0.0, neginf=0.0)
    f0[f0 < 0.0] = 0.0
    return f0, frame_period
