import os
from typing import List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [part.strip() for part in raw.split(",") if part.strip()]


# Text layer quality gate
MIN_TEXT_LENGTH = _env_int("MIN_TEXT_LENGTH", 100)
MIN_PAGE_TEXT_LENGTH = _env_int("MIN_PAGE_TEXT_LENGTH", 20)
PAGE_DECODE_TIMEOUT = _env_float("PAGE_DECODE_TIMEOUT", 30.0)  # seconds

# Coordinate reconstruction (layout units)
ROW_Y_THRESHOLD = _env_float("ROW_Y_THRESHOLD", 5.0)

# OCR
OCR_RESOLUTION = _env_int("OCR_RESOLUTION", 300)
OCR_PAGE_TIMEOUT = _env_float("OCR_PAGE_TIMEOUT", 120.0)  # seconds
OCR_LANGUAGES = _env_list("OCR_LANGUAGES", "ita+eng,eng,ita")
OCR_MIN_CONFIDENCE = _env_float("OCR_MIN_CONFIDENCE", 0.30)
TESSERACT_CMD = os.getenv("TESSERACT_CMD")

# Pipeline
DEFAULT_TIMEOUT_MS = _env_int("DEFAULT_TIMEOUT_MS", 300000)
MAX_DESCRIPTION_LENGTH = _env_int("MAX_DESCRIPTION_LENGTH", 150)

# HTTP
MAX_UPLOAD_MB = _env_int("MAX_UPLOAD_MB", 10)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
