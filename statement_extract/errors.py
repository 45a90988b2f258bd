class StatementExtractError(Exception):
    """Base class for all extraction pipeline errors"""


class DocumentLoadError(StatementExtractError):
    """The input bytes are not a readable document. Fatal, no fallback."""


class OCRError(StatementExtractError):
    """Base class for recoverable OCR failures"""


class OCREngineError(OCRError):
    """The OCR engine failed to process a page (crash, missing binary, bad language data)"""


class OCRTimeoutError(OCRError):
    """The OCR engine did not finish a page within its wall-clock budget"""


class AmountParseError(StatementExtractError, ValueError):
    """An amount token could not be normalized to a number"""

    def __init__(self, value: str, message: str = "Unrecognized amount"):
        self.value = value
        super().__init__(f"{message}: {value!r}")


class ExtractionTimeoutError(StatementExtractError, TimeoutError):
    """The caller-specified overall timeout elapsed"""
