"""Weighted codebook voice conversion.

Converts recordings of a source speaker to sound like a target speaker using
a codebook of parallel LSF vectors, a two-pass (vocal tract, then prosody)
resynthesis pipeline and a batch driver over folders of recordings.
"""

import warnings

# Suppress noisy pkg_resources deprecation warning emitted by librosa dependency chain.
warnings.filterwarnings(
    "ignore",
    message="pkg_resources is deprecated as an API",
    category=UserWarning,
)

from . import config, exceptions, io_utils, audio_preproc, features, prosody, params
from .codebook import Codebook, CodebookEntry, CodebookFile, CodebookHeader
from .controller import PassController, PassStage
from .mapping import CodebookMapper
from .params import MapperParams, ProsodyParams, TransformerParams
from .resynthesis import LpcResynthesizer, ResynthesisRequest
from .transformer import BatchTransformer

__all__ = [
    "config",
    "exceptions",
    "io_utils",
    "audio_preproc",
    "features",
    "prosody",
    "params",
    "Codebook",
    "CodebookEntry",
    "CodebookFile",
    "CodebookHeader",
    "CodebookMapper",
    "MapperParams",
    "ProsodyParams",
    "TransformerParams",
    "PassController",
    "PassStage",
    "LpcResynthesizer",
    "ResynthesisRequest",
    "BatchTransformer",
]

__version__ = "0.1.0"
