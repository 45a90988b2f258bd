import io
import logging
from typing import Iterable, Iterator, List, Optional, Tuple

import pdfplumber
from pdfminer.pdfdocument import PDFEncryptionError, PDFPasswordIncorrect
from PIL import Image
from pydantic import BaseModel, ConfigDict, Field

from .. import config
from ..errors import DocumentLoadError, ExtractionTimeoutError
from ..schemas.geometry import PositionedFragment
from .timeouts import Deadline, call_with_timeout

logger = logging.getLogger(__name__)


class PageText(BaseModel):
    """Text layer of a single page"""
    model_config = ConfigDict(frozen=True)

    page_number: int
    text: str = ""
    fragments: Tuple[PositionedFragment, ...] = ()
    width: float = 0.0
    height: float = 0.0


class DocumentText(BaseModel):
    """Text layer of a whole document"""
    model_config = ConfigDict(frozen=True)

    pages: List[PageText] = Field(default_factory=list)
    page_count: int = 0
    encrypted: bool = False
    errors: List[str] = Field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(page.text for page in self.pages if page.text)

    @property
    def has_fragments(self) -> bool:
        return any(page.fragments for page in self.pages)


def load_document(data: bytes, max_pages: Optional[int] = None,
                  page_timeout: Optional[float] = config.PAGE_DECODE_TIMEOUT,
                  password: Optional[str] = None,
                  deadline: Optional[Deadline] = None) -> DocumentText:
    """
    Read the embedded text layer of a PDF, page by page.

    Args:
        data: Raw PDF bytes
        max_pages: Only decode the first N pages
        page_timeout: Seconds allowed for opening the stream and for each page decode
        password: Password for encrypted documents
        deadline: Overall pipeline budget; checked before opening and before
            each page, and caps page_timeout

    Returns:
        DocumentText with per-page text and positioned fragments. Encrypted
        documents without a valid password and zero-page documents yield an
        empty DocumentText.

    Raises:
        DocumentLoadError: If the bytes are empty or not a parseable PDF
        ExtractionTimeoutError: If the overall deadline runs out while loading
    """
    if not data:
        raise DocumentLoadError("Empty document")

    if deadline is not None:
        deadline.check("opening document")
    timeout, deadline_bound = _step_timeout(page_timeout, deadline)
    try:
        pdf = call_with_timeout(_open_pdf, timeout, data, password)
    except TimeoutError as e:
        if deadline_bound:
            raise ExtractionTimeoutError(
                f"Extraction timed out after {deadline.timeout_ms} ms while opening document") from e
        raise DocumentLoadError(f"Timed out opening document: {e}") from e
    except Exception as e:
        if _is_password_error(e):
            logger.warning("Document is encrypted and no valid password was supplied")
            return DocumentText(encrypted=True, errors=["Document is encrypted"])
        logger.error(f"Failed to open PDF: {e}")
        raise DocumentLoadError(f"Unreadable PDF: {e}") from e

    try:
        try:
            total_pages = len(pdf.pages)
        except Exception as e:
            if _is_password_error(e):
                return DocumentText(encrypted=True, errors=["Document is encrypted"])
            raise DocumentLoadError(f"Unreadable PDF page tree: {e}") from e

        if total_pages == 0:
            logger.warning("Document has no pages")
            return DocumentText()

        page_limit = min(total_pages, max_pages) if max_pages else total_pages
        logger.info(f"Reading text layer from {page_limit}/{total_pages} pages")

        pages: List[PageText] = []
        errors: List[str] = []
        for page_index in range(page_limit):
            page_number = page_index + 1
            if deadline is not None:
                deadline.check(f"text layer decode of page {page_number}")
            timeout, deadline_bound = _step_timeout(page_timeout, deadline)
            try:
                page_text = call_with_timeout(_decode_page, timeout, pdf.pages[page_index], page_number)
            except TimeoutError as e:
                if deadline_bound:
                    raise ExtractionTimeoutError(
                        f"Extraction timed out after {deadline.timeout_ms} ms "
                        f"during text layer decode of page {page_number}") from e
                logger.error(f"Text layer decode timed out on page {page_number}, abandoning remaining pages")
                errors.append(f"Page {page_number}: text layer decode timed out")
                break
            except Exception as e:
                logger.warning(f"Text layer decode failed on page {page_number}: {e}")
                errors.append(f"Page {page_number}: text layer decode failed ({e})")
                page_text = PageText(page_number=page_number)

            logger.debug(f"Page {page_number}: {len(page_text.text)} characters, "
                         f"{len(page_text.fragments)} fragments")
            pages.append(page_text)

        return DocumentText(pages=pages, page_count=page_limit, errors=errors)
    finally:
        pdf.close()


def _step_timeout(page_timeout: Optional[float], deadline: Optional[Deadline]) -> Tuple[Optional[float], bool]:
    """Per-step timeout and whether the overall deadline is the binding limit"""
    if deadline is None:
        return page_timeout, False
    remaining = deadline.remaining()
    if page_timeout is None or remaining < page_timeout:
        return remaining, True
    return page_timeout, False


def _open_pdf(data: bytes, password: Optional[str]):
    pdf = pdfplumber.open(io.BytesIO(data), password=password or "")
    # Force the page tree to load while still inside the bounded call
    try:
        len(pdf.pages)
    except Exception:
        pdf.close()
        raise
    return pdf


def _decode_page(page, page_number: int) -> PageText:
    text = page.extract_text() or ""
    words = page.extract_words(use_text_flow=True)

    fragments = tuple(
        PositionedFragment(
            text=word['text'],
            x=float(word['x0']),
            y=float(word['top']),
            width=max(0.0, float(word['x1']) - float(word['x0'])),
            height=max(0.0, float(word['bottom']) - float(word['top'])),
        )
        for word in words
        if word.get('text', '').strip()
    )

    return PageText(
        page_number=page_number,
        text=text.strip(),
        fragments=fragments,
        width=float(page.width),
        height=float(page.height),
    )


def _is_password_error(error: BaseException) -> bool:
    """Walk the exception chain looking for pdfminer's encryption errors"""
    seen = set()
    pending = [error]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, (PDFPasswordIncorrect, PDFEncryptionError)):
            return True
        pending.append(current.__cause__)
        pending.append(current.__context__)
        pending.extend(arg for arg in getattr(current, 'args', ()) if isinstance(arg, BaseException))
    return False


def is_text_page(page: PageText, min_chars: int = config.MIN_PAGE_TEXT_LENGTH) -> bool:
    """
    Determine if a page carries a usable text layer.

    Args:
        page: Decoded page
        min_chars: Minimum number of alphanumeric characters

    Returns:
        True if the page has enough meaningful text, False otherwise
    """
    text = (page.text or "").strip()
    if not text:
        logger.debug(f"Page {page.page_number} has no extractable text")
        return False

    meaningful_chars = len([c for c in text if c.isalnum()])
    logger.debug(f"Page {page.page_number} contains {meaningful_chars} meaningful characters")
    return meaningful_chars >= min_chars


def is_scanned_page(page: PageText, min_chars: int = config.MIN_PAGE_TEXT_LENGTH) -> bool:
    """Inverse of is_text_page()"""
    return not is_text_page(page, min_chars)


def iter_page_images(data: bytes, page_numbers: Iterable[int],
                     resolution: int = config.OCR_RESOLUTION,
                     render_timeout: Optional[float] = config.PAGE_DECODE_TIMEOUT) -> Iterator[Tuple[int, Image.Image]]:
    """
    Rasterise the requested pages one at a time.

    Args:
        data: Raw PDF bytes
        page_numbers: 1-indexed page numbers to render
        resolution: DPI for rendering
        render_timeout: Seconds allowed per page render

    Yields:
        (page_number, PIL image) tuples in the order requested

    Raises:
        DocumentLoadError: If the document cannot be opened
        TimeoutError: If rendering a page exceeds render_timeout
    """
    try:
        pdf = pdfplumber.open(io.BytesIO(data))
    except Exception as e:
        raise DocumentLoadError(f"Unreadable PDF: {e}") from e

    with pdf:
        total_pages = len(pdf.pages)
        for page_number in page_numbers:
            if page_number < 1 or page_number > total_pages:
                logger.warning(f"Skipping out-of-range page {page_number} (document has {total_pages})")
                continue
            image = call_with_timeout(_convert_page_to_image, render_timeout,
                                      pdf.pages[page_number - 1], resolution)
            yield page_number, image


def render_page_image(data: bytes, page_number: int, resolution: int = config.OCR_RESOLUTION,
                      render_timeout: Optional[float] = config.PAGE_DECODE_TIMEOUT) -> Image.Image:
    """
    Rasterise a single page.

    Raises:
        DocumentLoadError: If the document cannot be opened
        ValueError: If the page does not exist
        TimeoutError: If rendering exceeds render_timeout
    """
    for _, image in iter_page_images(data, [page_number], resolution, render_timeout):
        return image
    raise ValueError(f"Page {page_number} does not exist")


def _convert_page_to_image(page, resolution: int = 300) -> Image.Image:
    """
    Convert a pdfplumber page to PIL Image.

    Args:
        page: pdfplumber page object
        resolution: DPI for image conversion

    Returns:
        PIL Image object
    """
    try:
        page_image = page.to_image(resolution=resolution)
        return page_image.original
    except Exception as e:
        logger.error(f"Failed to convert page to image: {e}")
        raise


def load_image(data: bytes) -> Image.Image:
    """
    Decode raster image bytes (PNG, JPEG, TIFF...).

    Raises:
        DocumentLoadError: If the bytes are empty or not a decodable image
    """
    if not data:
        raise DocumentLoadError("Empty document")
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
        return image
    except Exception as e:
        logger.error(f"Failed to decode image: {e}")
        raise DocumentLoadError(f"Unreadable image: {e}") from e
