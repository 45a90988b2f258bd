import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence, Tuple, Union

import pandas as pd
import pytesseract
from PIL import Image, ImageOps
from pydantic import BaseModel, ConfigDict, Field

from .. import config
from ..errors import OCREngineError, OCRError, OCRTimeoutError
from ..schemas.geometry import PositionedFragment

logger = logging.getLogger(__name__)

if config.TESSERACT_CMD:
    pytesseract.pytesseract.tesseract_cmd = config.TESSERACT_CMD

# Locale hints accepted by the pipeline, mapped to tesseract traineddata names
LANGUAGE_CODES = {
    'it': 'ita',
    'ita': 'ita',
    'italian': 'ita',
    'en': 'eng',
    'eng': 'eng',
    'english': 'eng',
}

LANGUAGE_PRESETS = {
    'auto': config.OCR_LANGUAGES,
    'it': ['ita', 'ita+eng'],
    'en': ['eng'],
}

# Page segmentation mode 6: assume a uniform block of text (statement tables)
TESSERACT_CONFIG = '--oem 3 --psm 6'


class OCRResult(BaseModel):
    """Text recognised on one page image"""
    model_config = ConfigDict(frozen=True)

    text: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    language: str
    fragments: Tuple[PositionedFragment, ...] = ()


def language_configurations(language: Union[str, Sequence[str], None] = 'auto',
                            preferred: Optional[str] = None) -> List[str]:
    """
    Ordered tesseract language strings to try for a language hint.

    Args:
        language: 'auto', a locale ('it', 'en'), a comma separated list or a list of locales
        preferred: Locale detected from the document; with 'auto', configurations
            whose primary language matches it are tried first

    Returns:
        List of tesseract language specs, e.g. ['ita+eng', 'eng', 'ita']
    """
    if language is None:
        language = 'auto'

    if isinstance(language, str):
        key = language.strip().lower()
        if key == 'auto' and preferred:
            return _prefer(list(LANGUAGE_PRESETS['auto']), preferred)
        if key in LANGUAGE_PRESETS:
            return list(LANGUAGE_PRESETS[key])
        parts = [part.strip() for part in key.split(',') if part.strip()]
    else:
        parts = [str(part).strip().lower() for part in language if str(part).strip()]

    configurations = []
    for part in parts:
        tess_lang = '+'.join(LANGUAGE_CODES.get(code, code) for code in part.split('+'))
        if tess_lang not in configurations:
            configurations.append(tess_lang)

    return configurations or list(LANGUAGE_PRESETS['auto'])


def _prefer(configurations: List[str], locale: str) -> List[str]:
    code = LANGUAGE_CODES.get(locale.strip().lower())
    if code is None:
        return configurations
    # stable sort: preset order holds within each group
    return sorted(configurations, key=lambda tess_lang: tess_lang.split('+')[0] != code)


class TesseractWorker:
    """
    Short-lived OCR engine instance scoped to a single page recognition.

    Holds a preprocessed copy of the page image for the duration of the call;
    terminate() releases it. Use through tesseract_worker() so release is
    guaranteed on both success and failure.
    """

    def __init__(self, lang: str, timeout: Optional[float] = config.OCR_PAGE_TIMEOUT,
                 tesseract_config: str = TESSERACT_CONFIG):
        self.lang = lang
        self.timeout = timeout
        self.tesseract_config = tesseract_config
        self._images: List[Image.Image] = []
        self.terminated = False

    def prepare(self, image: Image.Image) -> Image.Image:
        """Grayscale + autocontrast copy of the page image"""
        gray = ImageOps.grayscale(image)
        self._images.append(gray)
        prepared = ImageOps.autocontrast(gray, cutoff=2)
        self._images.append(prepared)
        return prepared

    def recognize(self, image: Image.Image) -> OCRResult:
        """
        Run tesseract over an image.

        Raises:
            OCRTimeoutError: If tesseract exceeds the timeout
            OCREngineError: If tesseract fails or is not installed
        """
        if self.terminated:
            raise OCREngineError("OCR worker already terminated")
        if self.timeout is not None and self.timeout <= 0:
            raise OCRTimeoutError(f"No time left to run OCR for lang={self.lang}")

        prepared = self.prepare(image)
        kwargs = {
            'lang': self.lang,
            'config': self.tesseract_config,
            'output_type': pytesseract.Output.DATAFRAME,
        }
        if self.timeout is not None:
            kwargs['timeout'] = self.timeout

        try:
            data = pytesseract.image_to_data(prepared, **kwargs)
        except pytesseract.TesseractNotFoundError as e:
            raise OCREngineError(f"Tesseract binary not found: {e}") from e
        except pytesseract.TesseractError as e:
            raise OCREngineError(f"Tesseract failed for lang={self.lang}: {e}") from e
        except RuntimeError as e:
            # pytesseract kills the process and raises a bare RuntimeError on timeout
            if 'timeout' in str(e).lower():
                raise OCRTimeoutError(f"OCR exceeded {self.timeout}s for lang={self.lang}") from e
            raise OCREngineError(f"Tesseract failed for lang={self.lang}: {e}") from e

        return _result_from_dataframe(data, self.lang)

    def terminate(self) -> None:
        for image in self._images:
            try:
                image.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing OCR buffer: {e}")
        self._images = []
        self.terminated = True


@contextmanager
def tesseract_worker(lang: str, timeout: Optional[float] = config.OCR_PAGE_TIMEOUT) -> Iterator[TesseractWorker]:
    """Create a TesseractWorker and always terminate it"""
    worker = TesseractWorker(lang, timeout=timeout)
    logger.debug(f"OCR worker started (lang={lang}, timeout={timeout})")
    try:
        yield worker
    finally:
        worker.terminate()
        logger.debug(f"OCR worker terminated (lang={lang})")


def recognize_page(image: Image.Image, language: Union[str, Sequence[str], None] = 'auto',
                   timeout: Optional[float] = config.OCR_PAGE_TIMEOUT,
                   preferred: Optional[str] = None) -> OCRResult:
    """
    Recognise text on a page image, trying each language configuration in order.

    Args:
        image: Rendered page
        language: Language hint, see language_configurations()
        timeout: Wall-clock seconds allowed per attempt
        preferred: Detected document locale, see language_configurations()

    Returns:
        OCRResult of the first configuration that completes

    Raises:
        OCRError: The last engine error if every configuration failed
    """
    last_error: Optional[OCRError] = None

    for lang in language_configurations(language, preferred=preferred):
        try:
            with tesseract_worker(lang, timeout=timeout) as worker:
                result = worker.recognize(image)
            logger.info(f"OCR lang={lang}: {len(result.text)} characters, confidence {result.confidence:.2f}")
            return result
        except OCRError as e:
            logger.warning(f"OCR attempt with lang={lang} failed: {e}")
            last_error = e

    if last_error is None:
        last_error = OCREngineError("No OCR language configuration available")
    raise last_error


def _result_from_dataframe(data: pd.DataFrame, lang: str) -> OCRResult:
    """
    Build text lines, fragments and a confidence from tesseract word boxes.

    Rows with conf == -1 are layout entries (blocks, paragraphs, lines), not words.
    """
    if data is None or data.empty:
        return OCRResult(text="", confidence=0.0, language=lang)

    words = data[data['conf'].astype(float) >= 0].copy()
    words['text'] = words['text'].fillna('').astype(str).str.strip()
    words = words[words['text'] != '']

    if words.empty:
        return OCRResult(text="", confidence=0.0, language=lang)

    lines = []
    for _, group in words.groupby(['block_num', 'par_num', 'line_num'], sort=True):
        group = group.sort_values('left')
        lines.append(' '.join(group['text'].tolist()))

    fragments = tuple(
        PositionedFragment(
            text=row.text,
            x=float(row.left),
            y=float(row.top),
            width=float(row.width),
            height=float(row.height),
        )
        for row in words.itertuples(index=False)
    )

    confidence = float(words['conf'].astype(float).mean()) / 100.0
    confidence = max(0.0, min(1.0, confidence))

    return OCRResult(text='\n'.join(lines), confidence=confidence, language=lang, fragments=fragments)
