from .geometry import PositionedFragment, TableRow
from .extraction import ExtractionMethod, ExtractionOptions, ParsedTransaction, ExtractionResult

__all__ = [
    'PositionedFragment',
    'TableRow',
    'ExtractionMethod',
    'ExtractionOptions',
    'ParsedTransaction',
    'ExtractionResult',
]
