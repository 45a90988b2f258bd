"""Bank statement transaction extraction: text layer, coordinate rows and OCR fallback."""
from .errors import (
    StatementExtractError,
    DocumentLoadError,
    OCRError,
    OCREngineError,
    OCRTimeoutError,
    AmountParseError,
    ExtractionTimeoutError,
)
from .schemas import ExtractionOptions, ExtractionResult, ParsedTransaction
from .services.extraction import extract_statement, run_extraction

__version__ = "1.0.0"

__all__ = [
    'extract_statement',
    'run_extraction',
    'ExtractionOptions',
    'ExtractionResult',
    'ParsedTransaction',
    'StatementExtractError',
    'DocumentLoadError',
    'OCRError',
    'OCREngineError',
    'OCRTimeoutError',
    'AmountParseError',
    'ExtractionTimeoutError',
]
