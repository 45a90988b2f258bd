"""
Extraction Orchestrator - runs the strategy chain over one document.

Strategies are tried in order: native text layer, coordinate row
reconstruction, then OCR. The first strategy whose text passes the quality
gate and yields transactions wins. Every outcome is reported through
ExtractionResult; only an unreadable input raises.
"""
import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from PIL import Image
from starlette.concurrency import run_in_threadpool

from .. import config
from ..errors import AmountParseError, DocumentLoadError, ExtractionTimeoutError, OCRError
from ..schemas.extraction import ExtractionOptions, ExtractionResult, ParsedTransaction
from .bank_patterns import DEFAULT_REGISTRY, BankPattern, BankPatternRegistry
from .categorizer import CategoryRefiner
from .coordinates import looks_tabular, reconstruct_rows, rows_to_text
from .noise_filter import filter_lines, split_run_on_lines
from .parser import find_amounts, find_dates, parse_transaction_line
from .pdf_utils import DocumentText, is_text_page, load_document, load_image, render_page_image
from .tesseract_ocr import recognize_page
from .timeouts import Deadline

logger = logging.getLogger(__name__)

PDF_MIME_TYPES = {'application/pdf', 'application/x-pdf'}

# Control characters and the unicode replacement character; accented letters are fine
CORRUPTED_CHAR_RE = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f�]')
READABLE_PUNCTUATION = set(".,;:-/()€$£%+*'\"&@#!?")
STATEMENT_KEYWORDS_RE = re.compile(
    r'\b(?:saldo|balance|conto|account|estratto|statement|iban|bonifico|pagamento|payment|'
    r'transazion[ei]|transactions?|importo|amount)\b',
    re.IGNORECASE,
)

ITALIAN_WORDS_RE = re.compile(
    r'\b(?:banca|conto|saldo|movimenti?|transazion[ei]|euro|estratto|bonifico|pagamento|importo)\b|€',
    re.IGNORECASE,
)
ENGLISH_WORDS_RE = re.compile(
    r'\b(?:bank|account|balance|transactions?|statement|dollars?|payment|amount)\b|\$',
    re.IGNORECASE,
)

MAX_CORRUPTION_RATIO = 0.1
MIN_READABLE_RATIO = 0.5
HIGH_AMOUNT_FACTOR = 5
LOW_CONFIDENCE = 0.5


@dataclass
class StrategyOutcome:
    """What one strategy produced, accepted or not"""
    method: str
    text: str = ""
    transactions: List[ParsedTransaction] = field(default_factory=list)
    bank_detected: str = "Unknown"
    passed_gate: bool = False
    skipped_rows: int = 0
    ocr_confidence: Optional[float] = None
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    timed_out: bool = False
    requires_gate: bool = True
    incomplete: bool = False

    @property
    def accepted(self) -> bool:
        if not self.transactions or self.timed_out or self.incomplete:
            return False
        return self.passed_gate or not self.requires_gate


@dataclass
class ExtractionContext:
    """Per-document state shared by the strategies"""
    data: bytes
    options: ExtractionOptions
    registry: BankPatternRegistry
    deadline: Deadline
    document: Optional[DocumentText] = None
    image: Optional[Image.Image] = None

    def scanned_pages(self) -> List[int]:
        """Decoded pages without a usable text layer"""
        if self.document is None:
            return []
        return [page.page_number for page in self.document.pages if not is_text_page(page)]

    def needs_ocr_pass(self) -> bool:
        """Some, but not all, pages are scanned and OCR may run"""
        scanned = self.scanned_pages()
        return self.options.enable_ocr and 0 < len(scanned) < len(self.document.pages)


# ---------------------------------------------------------------------------
# Text quality
# ---------------------------------------------------------------------------

def corruption_ratio(text: str) -> float:
    if not text:
        return 0.0
    return len(CORRUPTED_CHAR_RE.findall(text)) / len(text)


def readable_ratio(text: str) -> float:
    if not text:
        return 0.0
    readable = sum(1 for c in text if c.isalnum() or c.isspace() or c in READABLE_PUNCTUATION)
    return readable / len(text)


def has_transaction_line(text: str, pattern: BankPattern) -> bool:
    """True if at least one line carries both a date and an amount token"""
    for line in text.splitlines():
        dates = find_dates(line, pattern)
        if not dates:
            continue
        if find_amounts(_blank_spans(line, dates), pattern):
            return True
    return False


def _blank_spans(line: str, spans) -> str:
    for start, end, _ in sorted(spans, reverse=True):
        line = line[:start] + ' ' + line[end:]
    return line


def quality_gate(text: str, pattern: BankPattern,
                 min_length: int = config.MIN_TEXT_LENGTH) -> Tuple[bool, Optional[str]]:
    """
    Decide whether extracted text is good enough to trust.

    Returns:
        (passed, reason) where reason explains a failure
    """
    stripped = (text or '').strip()
    if len(stripped) < min_length:
        return False, f"text too short ({len(stripped)} < {min_length} characters)"

    corruption = corruption_ratio(stripped)
    if corruption >= MAX_CORRUPTION_RATIO:
        return False, f"text looks corrupted ({corruption:.0%} control characters)"

    readable = readable_ratio(stripped)
    if readable <= MIN_READABLE_RATIO:
        return False, f"text mostly unreadable ({readable:.0%} readable characters)"

    if not has_transaction_line(stripped, pattern):
        return False, "no line carries both a date and an amount"

    return True, None


def text_confidence(text: str, pattern: Optional[BankPattern] = None) -> float:
    """
    Heuristic confidence for extracted text when no transactions are available.

    Base 0.5, +0.2 if dates are present, +0.2 if amounts are present, +0.1 for
    statement keywords, -0.3 when more than 10% of characters are corrupted.
    Text under MIN_TEXT_LENGTH characters scores 0.1. Clamped to [0.1, 1.0].
    """
    if not text or len(text.strip()) < config.MIN_TEXT_LENGTH:
        return 0.1

    pattern = pattern or DEFAULT_REGISTRY.generic
    confidence = 0.5
    if any(find_dates(line, pattern) for line in text.splitlines()):
        confidence += 0.2
    if any(p.search(text) for p in pattern.amount_patterns):
        confidence += 0.2
    if STATEMENT_KEYWORDS_RE.search(text):
        confidence += 0.1
    if corruption_ratio(text) > MAX_CORRUPTION_RATIO:
        confidence -= 0.3

    return round(max(0.1, min(1.0, confidence)), 4)


def detect_language(text: str) -> str:
    """
    Guess the statement language from common banking words.

    Returns:
        "it", "en" or "unknown"; ties between non-zero counts go to Italian
    """
    italian = len(ITALIAN_WORDS_RE.findall(text or ''))
    english = len(ENGLISH_WORDS_RE.findall(text or ''))
    if not italian and not english:
        return "unknown"
    return "it" if italian >= english else "en"


# ---------------------------------------------------------------------------
# Result checks
# ---------------------------------------------------------------------------

def detect_anomalies(transactions: List[ParsedTransaction]) -> List[str]:
    """
    Warnings for rows worth a second look.

    Duplicates share date, description (case-insensitive) and amount; high
    amounts exceed HIGH_AMOUNT_FACTOR times the mean absolute amount.
    """
    if not transactions:
        return []

    warnings: List[str] = []
    seen = set()
    duplicates = 0
    for transaction in transactions:
        key = (transaction.date, transaction.description.lower(), transaction.amount)
        if key in seen:
            duplicates += 1
        seen.add(key)
    if duplicates:
        warnings.append(f"Found {duplicates} potential duplicate transactions")

    amounts = [abs(t.amount) for t in transactions]
    mean = sum(amounts) / len(amounts)
    high = sum(1 for amount in amounts if amount > mean * HIGH_AMOUNT_FACTOR)
    if high:
        warnings.append(f"Found {high} unusually high amount transactions")

    return warnings


def low_confidence_warning(transactions: List[ParsedTransaction]) -> Optional[str]:
    count = sum(1 for t in transactions if t.confidence < LOW_CONFIDENCE)
    if count:
        return f"{count} transactions have low confidence scores"
    return None


# ---------------------------------------------------------------------------
# Line parsing
# ---------------------------------------------------------------------------

def parse_statement_lines(lines: Iterable[str], pattern: BankPattern) -> Tuple[List[ParsedTransaction], int, List[str]]:
    """
    Filter candidate lines and parse them into transactions.

    Returns:
        (transactions, skipped_rows, warnings)
    """
    lines = split_run_on_lines(list(lines), pattern)
    filtered = filter_lines(lines, pattern)

    transactions: List[ParsedTransaction] = []
    warnings: List[str] = []
    skipped = 0

    for line in filtered.kept:
        try:
            transaction = parse_transaction_line(line, pattern)
        except AmountParseError as e:
            logger.debug(f"Dropping row with unparseable amount: {line[:100]}")
            warnings.append(f"Unparseable amount {e.value!r} in row: {line[:80]}")
            skipped += 1
            continue

        if transaction is None:
            logger.debug(f"Dropping row without usable date/amount: {line[:100]}")
            skipped += 1
            continue

        transactions.append(transaction)

    if skipped:
        warnings.append(f"Skipped {skipped} candidate rows that could not be parsed")

    return transactions, skipped, warnings


def _outcome_from_text(method: str, text: str, lines: List[str], ctx: ExtractionContext,
                       requires_gate: bool = True) -> StrategyOutcome:
    pattern, bank_name = ctx.registry.resolve(text)
    passed, reason = quality_gate(text, pattern)
    transactions, skipped, warnings = parse_statement_lines(lines, pattern)

    outcome = StrategyOutcome(
        method=method,
        text=text,
        transactions=transactions,
        bank_detected=bank_name,
        passed_gate=passed,
        skipped_rows=skipped,
        warnings=warnings,
        requires_gate=requires_gate,
    )
    if not passed:
        logger.info(f"{method} strategy failed the quality gate: {reason}")
        outcome.warnings.append(f"{method} extraction rejected: {reason}")
    logger.info(f"{method} strategy produced {len(transactions)} transactions (bank: {bank_name})")
    return outcome


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class TextLayerStrategy:
    """Parse the native text layer line by line"""
    method = "text"

    def applicable(self, ctx: ExtractionContext) -> bool:
        return ctx.document is not None and bool(ctx.document.pages)

    def run(self, ctx: ExtractionContext) -> StrategyOutcome:
        text = ctx.document.text
        return _mark_incomplete(_outcome_from_text(self.method, text, text.splitlines(), ctx), ctx)


class CoordinateStrategy:
    """Rebuild visual table rows from positioned words, for tabular layouts"""
    method = "coordinate"

    def applicable(self, ctx: ExtractionContext) -> bool:
        if ctx.document is None or not ctx.document.has_fragments:
            return False
        return any(looks_tabular(reconstruct_rows(page.fragments)) for page in ctx.document.pages)

    def run(self, ctx: ExtractionContext) -> StrategyOutcome:
        rows = []
        for page in ctx.document.pages:
            ctx.deadline.check(f"row reconstruction of page {page.page_number}")
            page_rows = reconstruct_rows(page.fragments)
            logger.debug(f"Page {page.page_number}: {len(page_rows)} rows")
            rows.extend(page_rows)
        text = rows_to_text(rows)
        return _mark_incomplete(_outcome_from_text(self.method, text, [row.text for row in rows], ctx), ctx)


def _mark_incomplete(outcome: StrategyOutcome, ctx: ExtractionContext) -> StrategyOutcome:
    # Scanned pages would be lost if a native-only result were accepted
    if ctx.needs_ocr_pass():
        outcome.incomplete = True
        outcome.warnings.append(f"{len(ctx.scanned_pages())} page(s) have no text layer; running OCR")
    return outcome


class OCRStrategy:
    """
    Terminal strategy: OCR the pages whose text layer is insufficient.

    Pages with a usable text layer keep their native text; when both kinds
    are combined the method is "hybrid". A raster image input is a single
    OCR page.
    """

    def applicable(self, ctx: ExtractionContext) -> bool:
        return ctx.options.enable_ocr and (ctx.image is not None or (
            ctx.document is not None and bool(ctx.document.pages)))

    def run(self, ctx: ExtractionContext) -> StrategyOutcome:
        errors: List[str] = []
        confidences: List[float] = []
        timed_out = False

        if ctx.image is not None:
            page_texts = {1: ''}
            ocr_pages = [1]
            native_pages: List[int] = []
        else:
            pages = ctx.document.pages
            page_texts = {page.page_number: page.text for page in pages}
            ocr_pages = [page.page_number for page in pages if not is_text_page(page)]
            if not ocr_pages:
                # Text layer present on every page but unusable (e.g. broken font encoding)
                ocr_pages = [page.page_number for page in pages]
            native_pages = [n for n in page_texts if n not in ocr_pages]

        # Native text, when present, hints which language to try first
        preferred = detect_language(ctx.document.text) if ctx.document is not None else None
        logger.info(f"OCR strategy: {len(ocr_pages)} page(s) to recognise, {len(native_pages)} native"
                    f" (language hint: {preferred or 'none'})")

        for page_number in ocr_pages:
            try:
                ctx.deadline.check(f"OCR of page {page_number}")
            except ExtractionTimeoutError as e:
                errors.append(str(e))
                timed_out = True
                break

            try:
                image = self._page_image(ctx, page_number)
            except TimeoutError:
                logger.error(f"Rendering page {page_number} timed out")
                errors.append(f"Page {page_number}: rendering timed out")
                continue
            except Exception as e:
                logger.error(f"Rendering page {page_number} failed: {e}")
                errors.append(f"Page {page_number}: rendering failed ({e})")
                continue

            try:
                result = recognize_page(image, language=ctx.options.language,
                                        timeout=ctx.deadline.cap(config.OCR_PAGE_TIMEOUT),
                                        preferred=preferred)
            except OCRError as e:
                logger.error(f"OCR failed on page {page_number}: {e}")
                errors.append(f"Page {page_number}: OCR failed ({e})")
                continue
            finally:
                if image is not ctx.image:
                    image.close()

            page_texts[page_number] = result.text
            confidences.append(result.confidence)

        recognised = bool(confidences)
        method = "hybrid" if native_pages and recognised else "ocr"

        text = '\n'.join(page_texts[n] for n in sorted(page_texts) if page_texts[n])
        outcome = _outcome_from_text(method, text, text.splitlines(), ctx, requires_gate=False)
        outcome.errors.extend(errors)
        outcome.timed_out = timed_out

        if recognised:
            outcome.ocr_confidence = sum(confidences) / len(confidences)
            if outcome.ocr_confidence < config.OCR_MIN_CONFIDENCE:
                outcome.warnings.append(f"Low OCR confidence ({outcome.ocr_confidence:.2f})")
        else:
            # Nothing was recognised; any transactions come from native pages only
            outcome.incomplete = True
        return outcome

    def _page_image(self, ctx: ExtractionContext, page_number: int) -> Image.Image:
        if ctx.image is not None:
            return ctx.image
        return render_page_image(ctx.data, page_number,
                                 resolution=config.OCR_RESOLUTION,
                                 render_timeout=ctx.deadline.cap(config.PAGE_DECODE_TIMEOUT))


PDF_STRATEGIES = (TextLayerStrategy(), CoordinateStrategy(), OCRStrategy())
IMAGE_STRATEGIES = (OCRStrategy(),)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def extract_statement(data: bytes, mime_type: str = "application/pdf",
                      options: Optional[ExtractionOptions] = None,
                      registry: BankPatternRegistry = DEFAULT_REGISTRY,
                      refiner: Optional[CategoryRefiner] = None) -> ExtractionResult:
    """
    Extract transactions from a bank statement document.

    Args:
        data: Raw document bytes
        mime_type: "application/pdf" or an "image/*" type
        options: Processing options (OCR toggle, language, page limit, timeout)
        registry: Bank pattern registry used for detection and parsing rules
        refiner: Optional hook re-categorising the accepted transactions

    Returns:
        ExtractionResult; failures other than an unreadable input are reported
        through success/errors/warnings

    Raises:
        DocumentLoadError: If the input is empty, of an unsupported type, or
            not a readable PDF/image
    """
    options = options or ExtractionOptions()
    media_type = (mime_type or '').split(';')[0].strip().lower()
    deadline = Deadline(options.timeout_ms)
    ctx = ExtractionContext(data=data, options=options, registry=registry, deadline=deadline)

    logger.info(f"Starting extraction ({media_type}, {len(data or b'')} bytes, "
                f"ocr={'on' if options.enable_ocr else 'off'})")

    if media_type in PDF_MIME_TYPES:
        try:
            ctx.document = load_document(data, max_pages=options.max_pages, deadline=deadline)
        except ExtractionTimeoutError as e:
            logger.warning(f"Extraction timed out while loading the document: {e}")
            return _failed_result(ctx, [], 0, [str(e)])
        page_count = ctx.document.page_count
        strategies = PDF_STRATEGIES
        base_errors = list(ctx.document.errors)
    elif media_type.startswith('image/'):
        ctx.image = load_image(data)
        page_count = 1
        strategies = IMAGE_STRATEGIES
        base_errors = []
    else:
        raise DocumentLoadError(f"Unsupported document type: {mime_type!r}")

    outcomes: List[StrategyOutcome] = []
    try:
        try:
            for strategy in strategies:
                if not strategy.applicable(ctx):
                    logger.debug(f"Skipping {type(strategy).__name__}: not applicable")
                    continue
                deadline.check(type(strategy).__name__)
                outcome = strategy.run(ctx)
                outcomes.append(outcome)
                if outcome.accepted:
                    logger.info(f"Accepted {outcome.method} extraction with "
                                f"{len(outcome.transactions)} transactions")
                    return _accepted_result(outcome, outcomes, page_count, base_errors, refiner)
                if outcome.timed_out:
                    break
        except ExtractionTimeoutError as e:
            logger.warning(f"Extraction timed out: {e}")
            base_errors.append(str(e))
            return _failed_result(ctx, outcomes, page_count, base_errors)

        # OCR could not add the scanned pages; fall back to the native-only result
        fallback = next((o for o in outcomes if o.incomplete and o.passed_gate and o.transactions
                         and o.method in ("text", "coordinate")), None)
        if fallback is not None and not any(o.timed_out for o in outcomes):
            logger.warning(f"Accepting {fallback.method} extraction without the scanned pages")
            return _accepted_result(fallback, outcomes, page_count, base_errors, refiner)

        return _failed_result(ctx, outcomes, page_count, base_errors)
    finally:
        if ctx.image is not None:
            ctx.image.close()


async def run_extraction(data: bytes, mime_type: str = "application/pdf",
                         options: Optional[ExtractionOptions] = None,
                         registry: BankPatternRegistry = DEFAULT_REGISTRY,
                         refiner: Optional[CategoryRefiner] = None) -> ExtractionResult:
    """Run extract_statement in the thread pool so the event loop is not blocked"""
    return await run_in_threadpool(extract_statement, data, mime_type, options, registry, refiner)


def _collect_warnings(outcomes: List[StrategyOutcome]) -> List[str]:
    warnings: List[str] = []
    for outcome in outcomes:
        for warning in outcome.warnings:
            if warning not in warnings:
                warnings.append(warning)
    return warnings


def _mean_confidence(transactions: List[ParsedTransaction]) -> float:
    total = sum(Decimal(str(t.confidence)) for t in transactions)
    return round(float(total / len(transactions)), 4)


def _accepted_result(outcome: StrategyOutcome, outcomes: List[StrategyOutcome], page_count: int,
                     base_errors: List[str], refiner: Optional[CategoryRefiner]) -> ExtractionResult:
    warnings = _collect_warnings(outcomes)
    errors = list(base_errors)
    for attempt in outcomes:
        errors.extend(e for e in attempt.errors if e not in errors)
    transactions = outcome.transactions

    if refiner is not None:
        try:
            transactions = list(refiner.refine(list(transactions)))
        except Exception as e:
            logger.warning(f"Category refiner failed, keeping rule-based categories: {e}")
            warnings.append(f"Category refinement failed: {e}")
            transactions = outcome.transactions

    warnings.extend(w for w in detect_anomalies(transactions) if w not in warnings)
    low_confidence = low_confidence_warning(transactions)
    if low_confidence:
        warnings.append(low_confidence)

    return ExtractionResult(
        success=True,
        transactions=transactions,
        raw_text=outcome.text,
        bank_detected=outcome.bank_detected,
        language_detected=detect_language(outcome.text),
        method=outcome.method,
        document_confidence=_mean_confidence(transactions) if transactions else text_confidence(outcome.text),
        page_count=page_count,
        errors=errors,
        warnings=warnings,
        skipped_rows=outcome.skipped_rows,
    )


def _failed_result(ctx: ExtractionContext, outcomes: List[StrategyOutcome], page_count: int,
                   base_errors: List[str]) -> ExtractionResult:
    """
    Report the best unaccepted outcome.

    A text layer that failed the quality gate is never reported as "text":
    without an OCR pass to replace it the result is labelled "hybrid", the
    last-resort combination of whatever text was available.
    """
    errors = list(base_errors)
    for outcome in outcomes:
        errors.extend(e for e in outcome.errors if e not in errors)

    best = max(outcomes, key=lambda o: (len(o.transactions), o.passed_gate), default=None)

    if best is None:
        method = "ocr" if ctx.image is not None else "hybrid"
        if ctx.image is not None and not ctx.options.enable_ocr:
            errors.append("OCR is disabled; image documents require OCR")
        errors.append("No transactions found")
        return ExtractionResult(
            success=False,
            method=method,
            page_count=page_count,
            document_confidence=0.1,
            errors=errors,
            warnings=_collect_warnings(outcomes),
        )

    method = best.method
    if method == "text" and not best.passed_gate:
        method = "hybrid"
        if not ctx.options.enable_ocr:
            errors.append("Text layer insufficient and OCR is disabled")

    if not best.transactions:
        errors.append("No transactions found")
    elif best.requires_gate and not best.passed_gate:
        errors.append("Extracted text did not pass the quality gate")

    document_confidence = (_mean_confidence(best.transactions) if best.transactions
                           else text_confidence(best.text))

    return ExtractionResult(
        success=False,
        transactions=best.transactions,
        raw_text=best.text,
        bank_detected=best.bank_detected,
        language_detected=detect_language(best.text),
        method=method,
        document_confidence=document_confidence,
        page_count=page_count,
        errors=errors,
        warnings=_collect_warnings(outcomes),
        skipped_rows=best.skipped_rows,
    )
