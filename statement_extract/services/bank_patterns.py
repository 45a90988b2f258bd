"""
Bank Pattern Registry - per-institution parsing heuristics.

Every institution is a BankPattern record in a single ordered catalog; there
are no per-bank classes. The catalog is built once at import time and is
read-only afterwards, so concurrent pipelines can share it without locking.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Pattern, Sequence, Tuple

logger = logging.getLogger(__name__)

UNKNOWN_BANK = "Unknown"

_FLAGS = re.IGNORECASE

# Italian + English month names, abbreviated and full
MONTH_NAME = (
    r'(?:gen(?:naio)?|feb(?:braio|ruary)?|mar(?:zo|ch)?|apr(?:ile|il)?|mag(?:gio)?|giu(?:gno)?'
    r'|lug(?:lio)?|ago(?:sto)?|set(?:tembre)?|ott(?:obre)?|nov(?:embre|ember)?|dic(?:embre)?'
    r'|jan(?:uary)?|may|jun(?:e)?|jul(?:y)?|aug(?:ust)?|sep(?:t|tember)?|oct(?:ober)?|dec(?:ember)?)\.?'
)

DATE_ISO = r'\b\d{4}[/.\-]\d{1,2}[/.\-]\d{1,2}\b'
DATE_NUMERIC = r'\b\d{1,2}[/.\-]\d{1,2}[/.\-](?:\d{4}|\d{2})\b(?![.,]\d)'
DATE_DAY_MONTH_NAME = rf'\b\d{{1,2}}\s+{MONTH_NAME}\s+(?:\d{{4}}|\d{{2}})\b(?![.,]\d)'
DATE_MONTH_NAME_DAY = rf'\b{MONTH_NAME}\s+\d{{1,2}},?\s+\d{{4}}\b'

# 1.234,56 / 1,234.56 / 1234.56 / -12,00 / (500,00) / €12.00 / 12,00€ / 12,00-
AMOUNT = (
    r'(?<![\w.,])\(?(?:[-+]\s?)?(?:[€$£]\s?)?[-+]?'
    r'(?:\d{1,3}(?:[.,]\d{3})+|\d+)[.,]\d{2}'
    r'(?![\d])(?![.,]\d)(?:\s?[€$£])?\)?(?:-(?=\s|$))?'
)


def _compile(*patterns: str) -> Tuple[Pattern, ...]:
    return tuple(re.compile(p, _FLAGS) for p in patterns)


GENERIC_DATE_PATTERNS = _compile(DATE_ISO, DATE_NUMERIC, DATE_DAY_MONTH_NAME, DATE_MONTH_NAME_DAY)
GENERIC_AMOUNT_PATTERNS = _compile(AMOUNT)


@dataclass(frozen=True)
class BankPattern:
    """
    Parsing heuristics for one issuing institution.

    Attributes:
        bank_name: Display name reported as bankDetected
        header_signature: Matched anywhere in the document text to detect the bank
        date_patterns: Date token regexes, tried in order
        amount_patterns: Amount token regexes
        description_patterns: Bank-specific boilerplate stripped from descriptions
        transaction_line_patterns: Whole-line regexes with named groups
            ``date`` and optionally ``description`` / ``amount``
        section_start: Marks the start of a transaction section
        section_end: Marks the end of a transaction section
        day_first: Numeric dates are DD/MM (True) or MM/DD (False)
        decimal_comma: A lone comma is a decimal separator
        amount_selection: Which amount of a multi-amount row is the transaction amount
    """
    bank_name: str
    header_signature: Pattern
    date_patterns: Tuple[Pattern, ...] = GENERIC_DATE_PATTERNS
    amount_patterns: Tuple[Pattern, ...] = GENERIC_AMOUNT_PATTERNS
    description_patterns: Tuple[Pattern, ...] = ()
    transaction_line_patterns: Tuple[Pattern, ...] = ()
    section_start: Optional[Pattern] = None
    section_end: Optional[Pattern] = None
    day_first: bool = True
    decimal_comma: bool = True
    amount_selection: str = "first"

    def __post_init__(self):
        if self.amount_selection not in ("first", "last"):
            raise ValueError(f"amount_selection must be 'first' or 'last', got {self.amount_selection!r}")


_ITALIAN_LINE = rf'^\s*(?P<date>{DATE_NUMERIC})\s+(?:{DATE_NUMERIC}\s+)?(?P<description>.+?)\s+(?P<amount>{AMOUNT})'
_ITALIAN_SECTION_START = r'data\s+(?:contabile\s+)?(?:data\s+)?(?:valuta\s+)?descrizione'
_ITALIAN_SECTION_END = r'^\s*(?:totale|saldo\s+(?:finale|contabile)|riepilogo)\b'


def _italian_bank(name: str, signature: str) -> BankPattern:
    return BankPattern(
        bank_name=name,
        header_signature=re.compile(signature, _FLAGS),
        transaction_line_patterns=_compile(_ITALIAN_LINE),
        section_start=re.compile(_ITALIAN_SECTION_START, _FLAGS),
        section_end=re.compile(_ITALIAN_SECTION_END, _FLAGS),
    )


def _us_bank(name: str, signature: str) -> BankPattern:
    return BankPattern(
        bank_name=name,
        header_signature=re.compile(signature, _FLAGS),
        day_first=False,
        decimal_comma=False,
    )


def _uk_bank(name: str, signature: str) -> BankPattern:
    return BankPattern(
        bank_name=name,
        header_signature=re.compile(signature, _FLAGS),
        day_first=True,
        decimal_comma=False,
    )


REVOLUT = BankPattern(
    bank_name="Revolut",
    header_signature=re.compile(r'\brevolut\b', _FLAGS),
    date_patterns=_compile(DATE_DAY_MONTH_NAME, DATE_NUMERIC, DATE_ISO),
    description_patterns=_compile(
        r'tasso\s+revolut',
        r'tasso\s+ecb',
        r'revolut\s+rate',
        r'ecb\s+rate',
    ),
    section_start=re.compile(r'transazioni\s+del\s+conto\s+dal|account\s+transactions\s+from', _FLAGS),
)

GENERIC = BankPattern(
    bank_name="Generic",
    header_signature=re.compile(r'(?!x)x'),  # never matches
)

CATALOG: Tuple[BankPattern, ...] = (
    REVOLUT,
    _italian_bank("Intesa Sanpaolo", r'intesa\s*sanpaolo'),
    _italian_bank("UniCredit", r'\bunicredit\b'),
    _italian_bank("Poste Italiane", r'poste\s*italiane|bancoposta'),
    _italian_bank("BNL", r'\bBNL\b|banca\s+nazionale\s+del\s+lavoro'),
    _italian_bank("Banco BPM", r'banco\s*bpm'),
    _italian_bank("Fineco", r'\bfineco(?:bank)?\b'),
    _italian_bank("ING", r'\bING\s+(?:bank|direct)\b'),
    _us_bank("Chase", r'\bjpmorgan\s+chase\b|\bchase\s+bank\b|\bchase\.com\b'),
    _us_bank("Bank of America", r'bank\s*of\s*america'),
    _us_bank("Wells Fargo", r'wells\s*fargo'),
    _us_bank("Capital One", r'capital\s*one'),
    _uk_bank("HSBC", r'\bhsbc\b'),
    _uk_bank("Barclays", r'\bbarclays\b'),
)


@dataclass(frozen=True)
class BankPatternRegistry:
    """Ordered, read-only catalog of bank patterns"""
    patterns: Tuple[BankPattern, ...] = CATALOG
    generic: BankPattern = GENERIC
    _by_name: dict = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, '_by_name', {p.bank_name.lower(): p for p in self.patterns})

    def detect(self, text: str) -> str:
        """
        Detect the issuing bank from document text.

        Returns:
            The first bank (in catalog order) whose header signature occurs in
            the text, or "Unknown"
        """
        pattern = self._match(text)
        return pattern.bank_name if pattern else UNKNOWN_BANK

    def resolve(self, text: str) -> Tuple[BankPattern, str]:
        """
        Pick the parsing rules for a document.

        Returns:
            (pattern, detected_name); the generic pattern with "Unknown" when no
            signature matches
        """
        pattern = self._match(text)
        if pattern is None:
            logger.info("Bank not recognized, using generic pattern")
            return self.generic, UNKNOWN_BANK
        logger.info(f"Detected bank: {pattern.bank_name}")
        return pattern, pattern.bank_name

    def get(self, bank_name: str) -> Optional[BankPattern]:
        return self._by_name.get(bank_name.lower())

    @property
    def bank_names(self) -> Sequence[str]:
        return [p.bank_name for p in self.patterns]

    def _match(self, text: str) -> Optional[BankPattern]:
        if not text:
            return None
        for pattern in self.patterns:
            if pattern.header_signature.search(text):
                return pattern
        return None


DEFAULT_REGISTRY = BankPatternRegistry()
