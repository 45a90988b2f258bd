import re
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Callable, List, Optional, Tuple

from .. import config
from ..errors import AmountParseError
from ..schemas.extraction import ParsedTransaction
from .bank_patterns import GENERIC, GENERIC_DATE_PATTERNS, MONTH_NAME, BankPattern
from .categorizer import Categorization, categorize as default_categorize

logger = logging.getLogger(__name__)

MONTHS = {
    'gen': 1, 'feb': 2, 'mar': 3, 'apr': 4, 'mag': 5, 'giu': 6,
    'lug': 7, 'ago': 8, 'set': 9, 'ott': 10, 'nov': 11, 'dic': 12,
    'jan': 1, 'may': 5, 'jun': 6, 'jul': 7, 'aug': 8, 'sep': 9, 'oct': 10, 'dec': 12,
}

_MONTH_NAME_RE = re.compile(MONTH_NAME, re.IGNORECASE)
_ISO_RE = re.compile(r'(\d{4})[/.\-](\d{1,2})[/.\-](\d{1,2})')
_NUMERIC_RE = re.compile(r'(\d{1,2})[/.\-](\d{1,2})[/.\-](\d{4}|\d{2})')
_DAY_MONTH_RE = re.compile(r'(\d{1,2})\s+([^\W\d_]+\.?)\s+(\d{4}|\d{2})')
_MONTH_DAY_RE = re.compile(r'([^\W\d_]+\.?)\s+(\d{1,2}),?\s+(\d{4})')

_CURRENCY_RE = re.compile(r'[€$£\s]|\b(?:EUR|USD|GBP)\b', re.IGNORECASE)

# Secondary boilerplate inside transaction rows
DESCRIPTION_NOISE = tuple(re.compile(p) for p in (
    r'(?i)carta:\s*\d+\*+\d+',
    r'\b\d{4,6}\*{2,}\d{4}\b',
    r'(?i)\btasso\s+(?:revolut|ecb)\b',
    r'(?i)\b(?:revolut|ecb)\s+rate\b',
    r'(?i)\b(?:tasso\s+di\s+cambio|exchange\s+rate|cambio)\s*:?\s*\d+(?:[.,]\d+)?',
    r'\b1\s*(?:[€$£]|[A-Z]{3})\s*=\s*[€$£]?\s*\d+(?:[.,]\d+)?\s*(?:[€$£]|[A-Z]{3})?',
    r'(?i:\ba:)\s*[^,]{0,50},\s*[A-Z]{2}\b',
    r'(?i)\briferimento:',
    r'(?i)\bref(?:erence)?:',
    r'(?i)\bda:',
))

_CURRENCY_TOKEN_RE = re.compile(r'[€$£]|\b(?:EUR|USD|GBP)\b')


def normalize_date(text: str, day_first: bool = True) -> str:
    """
    Normalize a date token to YYYY-MM-DD.

    Supports DD/MM/YYYY (or MM/DD/YYYY when day_first is False) with / - .
    separators, YYYY-MM-DD, "15 gen 2024", "15 January 2024" and
    "Jan 15, 2024". Two-digit years are taken as 20YY.

    Args:
        text: Date token
        day_first: Preferred order for ambiguous numeric dates

    Returns:
        ISO date string

    Raises:
        ValueError: If the token is not a valid calendar date
    """
    token = (text or '').strip().lower()

    match = _ISO_RE.fullmatch(token)
    if match:
        year, month, day = (int(g) for g in match.groups())
        return _build_date(year, month, day)

    match = _NUMERIC_RE.fullmatch(token)
    if match:
        first, second, year = match.groups()
        year = _expand_year(year)
        first, second = int(first), int(second)
        day, month = (first, second) if day_first else (second, first)
        try:
            return _build_date(year, month, day)
        except ValueError:
            # Preferred order impossible (e.g. month 13), try the other one
            return _build_date(year, day, month)

    match = _DAY_MONTH_RE.fullmatch(token)
    if match:
        day, name, year = match.groups()
        return _build_date(_expand_year(year), _month_number(name), int(day))

    match = _MONTH_DAY_RE.fullmatch(token)
    if match:
        name, day, year = match.groups()
        return _build_date(int(year), _month_number(name), int(day))

    raise ValueError(f"Unrecognized date: {text!r}")


def _expand_year(year: str) -> int:
    return int('20' + year) if len(year) == 2 else int(year)


def _month_number(name: str) -> int:
    if not _MONTH_NAME_RE.fullmatch(name):
        raise ValueError(f"Unknown month name: {name!r}")
    return MONTHS[name[:3].lower()]


def _build_date(year: int, month: int, day: int) -> str:
    return date(year, month, day).isoformat()


def normalize_amount(text: str, decimal_comma: bool = True) -> Decimal:
    """
    Convert a locale-formatted amount token to a signed Decimal.

    Examples (decimal_comma=True): "-1.234,56" -> -1234.56, "(500,00)" -> -500.00,
    "1.200,00" -> 1200.00, "€ 12,50-" -> -12.50. When both separators appear
    the last one is the decimal separator regardless of locale.

    Raises:
        AmountParseError: If the token is not numeric
    """
    raw = (text or '').strip()
    value = raw
    negative = False

    if value.startswith('(') and value.endswith(')'):
        negative = True
    value = _CURRENCY_RE.sub('', value.strip('()'))

    if value.endswith('-'):
        negative = True
        value = value[:-1]
    if value.startswith('-'):
        negative = True
        value = value[1:]
    elif value.startswith('+'):
        value = value[1:]

    if not value or not re.fullmatch(r'[\d.,]+', value) or not re.search(r'\d', value):
        raise AmountParseError(raw)

    if ',' in value and '.' in value:
        if value.rfind(',') > value.rfind('.'):
            value = value.replace('.', '').replace(',', '.')
        else:
            value = value.replace(',', '')
    elif ',' in value:
        if re.fullmatch(r'\d{1,3}(?:,\d{3}){2,}', value) or (
                not decimal_comma and re.fullmatch(r'\d{1,3}(?:,\d{3})+', value)):
            value = value.replace(',', '')
        else:
            value = value.replace(',', '.')
    elif value.count('.') > 1 or (decimal_comma and re.fullmatch(r'\d{1,3}\.\d{3}', value)):
        if not re.fullmatch(r'\d{1,3}(?:\.\d{3})+', value):
            raise AmountParseError(raw)
        value = value.replace('.', '')

    try:
        amount = Decimal(value)
    except InvalidOperation as e:
        raise AmountParseError(raw) from e

    return -amount if negative else amount


def find_dates(line: str, pattern: BankPattern = GENERIC) -> List[Tuple[int, int, str]]:
    """Non-overlapping date tokens as (start, end, text), in line order"""
    spans = _find_spans(line, pattern.date_patterns)
    if not spans and pattern.date_patterns is not GENERIC_DATE_PATTERNS:
        spans = _find_spans(line, GENERIC_DATE_PATTERNS)
    return spans


def find_amounts(line: str, pattern: BankPattern = GENERIC) -> List[Tuple[int, int, str]]:
    """Non-overlapping amount tokens as (start, end, text), in line order"""
    return _find_spans(line, pattern.amount_patterns)


def _find_spans(line: str, patterns) -> List[Tuple[int, int, str]]:
    matches = sorted(
        (m.start(), -m.end(), m.group(0)) for p in patterns for m in p.finditer(line)
    )
    spans = []
    covered_until = -1
    for start, neg_end, token in matches:
        if start < covered_until:
            continue
        spans.append((start, -neg_end, token.strip()))
        covered_until = -neg_end
    return spans


def _remove_spans(line: str, spans: List[Tuple[int, int, str]]) -> str:
    for start, end, _ in sorted(spans, reverse=True):
        line = line[:start] + ' ' + line[end:]
    return line


def strip_description_noise(text: str, pattern: Optional[BankPattern] = None) -> str:
    """Remove card masks, exchange-rate clauses, addresses and reference labels"""
    if pattern is not None:
        for regex in pattern.description_patterns:
            text = regex.sub(' ', text)
    for regex in DESCRIPTION_NOISE:
        text = regex.sub(' ', text)
    return text


def clean_description(text: str, pattern: Optional[BankPattern] = None,
                      max_length: int = config.MAX_DESCRIPTION_LENGTH) -> str:
    """
    Clean a raw description.

    Args:
        text: Row text with date and amount tokens already removed
        pattern: Bank pattern whose description_patterns are stripped too
        max_length: Maximum description length

    Returns:
        Cleaned description, or "Transaction" when fewer than 3 characters remain
    """
    description = strip_description_noise(text or '', pattern)
    description = _CURRENCY_TOKEN_RE.sub(' ', description)
    description = re.sub(r'\s+', ' ', description).strip(' -,;:|')
    description = description[:max_length].strip()

    if len(description) < 3:
        return 'Transaction'
    return description


def extract_payee(description: str) -> str:
    """First three words longer than two characters, digits and currency symbols removed"""
    cleaned = re.sub(r'\d+', '', description or '')
    cleaned = re.sub(r'[€$£]', '', cleaned)
    words = [w for w in cleaned.split() if len(w) > 2]
    return ' '.join(words[:3]) if words else 'Unknown'


def parse_transaction_line(line: str, pattern: BankPattern = GENERIC,
                           categorize: Callable[[str, Decimal], Categorization] = default_categorize
                           ) -> Optional[ParsedTransaction]:
    """
    Parse one filtered line into a transaction.

    The bank's whole-line patterns are tried first; otherwise the earliest
    date token is the transaction date, and the remaining text is searched
    for amount tokens. When a row carries several amounts (e.g. outflow,
    inflow, balance) pattern.amount_selection picks the first or the last.

    Args:
        line: Transaction candidate line
        pattern: Resolved bank pattern
        categorize: Categorization function

    Returns:
        ParsedTransaction, or None if the line has no usable date or amount

    Raises:
        AmountParseError: If the selected amount token is not numeric
    """
    line = (line or '').strip()
    if not line:
        return None

    date_text = description_text = amount_text = None
    for line_pattern in pattern.transaction_line_patterns:
        match = line_pattern.search(line)
        if match:
            groups = match.groupdict()
            date_text = groups.get('date')
            description_text = groups.get('description')
            amount_text = groups.get('amount')
            logger.debug(f"Line matched {pattern.bank_name} transaction pattern")
            break

    dates = find_dates(line, pattern)
    if date_text is None:
        if not dates:
            return None
        date_text = dates[0][2]

    remainder = strip_description_noise(_remove_spans(line, dates), pattern)
    amounts = find_amounts(remainder, pattern)
    if amount_text is None:
        if not amounts:
            return None
        amount_text = amounts[0][2] if pattern.amount_selection == 'first' else amounts[-1][2]

    try:
        normalized_date = normalize_date(date_text, day_first=pattern.day_first)
    except ValueError as e:
        logger.debug(f"Skipping line with invalid date: {e}")
        return None

    amount = normalize_amount(amount_text, decimal_comma=pattern.decimal_comma)

    if description_text is None:
        description_text = _remove_spans(remainder, amounts)
    description = clean_description(description_text, pattern)

    categorization = categorize(description, amount)

    return ParsedTransaction(
        date=normalized_date,
        description=description,
        amount=amount,
        category=categorization.category,
        payee=extract_payee(description),
        confidence=categorization.confidence,
    )
