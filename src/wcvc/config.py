"""Global configuration for weighted codebook voice conversion.

These values are shared across the library and the stage scripts. Run-time
parameters live in :mod:`wcvc.params`; this module only holds constants.
"""
from pathlib import Path

# Analysis defaults used when training a codebook
TARGET_SR: int = 16_000
PREEMPH: float = 0.97
LP_ORDER: int = 18
FRAME_LENGTH_S: float = 0.020
FRAME_SKIP_S: float = 0.010

# F0 search range for pitch tracking (Hz)
F0_MIN: float = 50.0
F0_MAX: float = 500.0

# File naming
WAV_EXT: str = ".wav"
PITCH_EXT: str = ".f0.npz"
CODEBOOK_EXT: str = ".wcf"
OUTPUT_SUFFIX: str = "_output"
VOCAL_TRACT_SUFFIX: str = "_vt"
REPORT_NAME: str = "transform_report.json"

# Repository paths (relative to project root)
PROJECT_ROOT = Path(__file__).resolve().parents[2]
ARTIFACT_ROOT = PROJECT_ROOT / "artifacts"
CODEBOOK_DIR = ARTIFACT_ROOT / "codebooks"
OUTPUTS_DIR = ARTIFACT_ROOT / "outputs"


def ensure_directories() -> None:
    """Create the artifact directories the stage scripts default to."""
    for path in [ARTIFACT_ROOT, CODEBOOK_DIR, OUTPUTS_DIR]:
        path.mkdir(parents=True, exist_ok=True)
