"""
Noise Filter - separates transaction rows from statement boilerplate.

Statements interleave real transactions with legal notices, page numbers,
repeated column headers, balance summaries and support prompts. A line
survives only if it matches none of the exclusion patterns and carries a
date token.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

from .bank_patterns import GENERIC_DATE_PATTERNS, BankPattern

logger = logging.getLogger(__name__)

RUN_ON_LINE_LENGTH = 500

EXCLUDE_PATTERNS: Tuple[Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in (
    # legal and regulatory footers
    r'revolut\s+bank\s+uab',
    r'\bautorizzat[ao]\s+(?:e|da|dalla)\b',
    r'\bregolamentat[ao]\s+da',
    r'\b(?:authorised|authorized)\s+(?:and|by)\b',
    r'\bregulated\s+by\b',
    r'depositi\s+sono\s+protetti',
    r'deposits\s+are\s+protected',
    r'in\s+caso\s+di\s+domande',
    r'if\s+you\s+have\s+any\s+questions',
    # page numbers and copyright
    r'\bpagina\s+\d+\s+di\s+\d+',
    r'\bpage\s+\d+\s+of\s+\d+',
    r'©\s*\d{4}',
    r'\bcopyright\b',
    # repeated column headers
    r'^\s*data\s+descrizione',
    r'^\s*date\s+description',
    r'denaro\s+in\s+uscita\s+denaro\s+in\s+entrata',
    r'money\s+out\s+money\s+in',
    r'^\s*prodotto\s+saldo',
    # balances and totals
    r'^\s*saldo\s+(?:iniziale|finale|di\s+apertura|di\s+chiusura)',
    r'^\s*(?:opening|closing|starting|ending|beginning|previous)\s+balance',
    r'balance\s+(?:brought|carried)\s+forward',
    r'^\s*totale?\b',
    r'^\s*il\s+saldo\s+sul\s+tuo\s+estratto',
    r'^\s*transazioni\s+del\s+conto\s+dal',
    r'^\s*account\s+transactions\s+from',
    # support prompts
    r'scansiona\s+(?:il\s+)?codice',
    r'scan\s+the\s+qr\s+code',
    r'\bqr\s+code\b',
    r'ottieni\s+assistenza',
    r'get\s+help',
    r'segnala\s+(?:la\s+)?carta',
    r'report\s+(?:a\s+)?(?:lost|stolen)\s+card',
    r'contact\s+support',
    # account identifiers
    r'\biban\s+bic\b',
    r'\biban\b.*\bbic\b',
))


@dataclass
class FilterResult:
    """Lines kept as transaction candidates and lines dropped as noise"""
    kept: List[str] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)


def is_boilerplate(line: str) -> bool:
    return any(p.search(line) for p in EXCLUDE_PATTERNS)


def has_date(line: str, pattern: Optional[BankPattern] = None) -> bool:
    """True if the line carries a date token the bank pattern (or the generic set) recognises"""
    candidates: Sequence[Pattern] = pattern.date_patterns if pattern else ()
    return any(p.search(line) for p in candidates) or any(p.search(line) for p in GENERIC_DATE_PATTERNS)


def filter_lines(lines: Iterable[str], pattern: Optional[BankPattern] = None) -> FilterResult:
    """
    Keep transaction candidate lines.

    Args:
        lines: Text lines (or reconstructed row texts) in page order
        pattern: Resolved bank pattern; supplies sections and date formats

    Returns:
        FilterResult with kept lines in their original order
    """
    result = FilterResult()
    lines = [line.strip() for line in lines]
    eligible = _section_mask(lines, pattern)

    for line, inside in zip(lines, eligible):
        if not line:
            continue
        if not inside or is_boilerplate(line) or not has_date(line, pattern):
            result.excluded.append(line)
            continue
        result.kept.append(line)

    logger.info(f"Noise filter kept {len(result.kept)} of {len(result.kept) + len(result.excluded)} lines")
    return result


def _section_mask(lines: List[str], pattern: Optional[BankPattern]) -> List[bool]:
    """
    Mark lines inside transaction sections.

    Without a section_start on the pattern, or when the marker never occurs,
    every line is eligible. Marker lines themselves are never eligible.
    """
    start = pattern.section_start if pattern else None
    if start is None or not any(start.search(line) for line in lines):
        return [True] * len(lines)

    end = pattern.section_end
    mask = []
    inside = False
    for line in lines:
        if start.search(line):
            inside = True
            mask.append(False)
        elif inside and end is not None and end.search(line):
            inside = False
            mask.append(False)
        else:
            mask.append(inside)

    logger.debug(f"Section markers restricted eligibility to {sum(mask)} of {len(lines)} lines")
    return mask


def split_run_on_lines(lines: Iterable[str], pattern: Optional[BankPattern] = None,
                       max_length: int = RUN_ON_LINE_LENGTH) -> List[str]:
    """
    Re-split very long lines at date tokens.

    Some PDFs put a whole page of transactions on a single text line; each
    date token then marks the start of a new transaction.
    """
    date_patterns = tuple(pattern.date_patterns if pattern else ()) + GENERIC_DATE_PATTERNS
    output: List[str] = []

    for line in lines:
        if len(line) <= max_length:
            output.append(line)
            continue

        spans = sorted({m.span() for p in date_patterns for m in p.finditer(line)})
        cuts = []
        covered_until = -1
        for start, stop in spans:
            if start < covered_until:
                continue
            cuts.append(start)
            covered_until = stop

        if not cuts:
            output.append(line)
            continue

        bounds = [0] + [c for c in cuts if c > 0] + [len(line)]
        parts = [line[a:b].strip() for a, b in zip(bounds, bounds[1:])]
        parts = [part for part in parts if part]
        logger.debug(f"Re-split a {len(line)} character line into {len(parts)} lines")
        output.extend(parts)

    return output
