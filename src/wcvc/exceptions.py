"""Exception hierarchy for weighted codebook voice conversion."""


class WcvcError(Exception):
    """Base class for conversion errors."""


class ConfigurationError(WcvcError):
    """A run cannot start: missing codebook, bad input folder, etc."""


class CodebookFormatError(WcvcError, ValueError):
    """Codebook file is truncated, malformed or holds unusable statistics."""


class ResynthesisError(WcvcError):
    """The resynthesis engine could not render an item."""


class UnsupportedAudioFormatError(ResynthesisError):
    """Input audio could not be decoded."""

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        self.detail = detail
        super().__init__(f"Unsupported audio file {path}: {detail}")
