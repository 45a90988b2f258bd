from typing import Optional
import logging

from fastapi import FastAPI, File, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from . import config
from .errors import DocumentLoadError
from .schemas import ExtractionOptions
from .services.extraction import PDF_MIME_TYPES, run_extraction

# Configure logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create FastAPI instance
app = FastAPI(
    title="Statement Extract API",
    description="Bank statement transaction extraction (text layer, coordinate rows, OCR)",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy"}


@app.post("/extract")
async def extract(
    file: UploadFile = File(...),
    enable_ocr: bool = Query(True, alias="enableOCR", description="Fall back to OCR for scanned pages"),
    language: str = Query("auto", description="OCR language hint: auto, it, en or a comma separated list"),
    max_pages: Optional[int] = Query(None, alias="maxPages", description="Only process the first N pages"),
    timeout_ms: int = Query(config.DEFAULT_TIMEOUT_MS, alias="timeoutMs", description="Overall timeout in ms"),
):
    """Extract transactions from an uploaded PDF or image bank statement"""

    content_type = (file.content_type or "").split(";")[0].strip().lower()
    if content_type not in PDF_MIME_TYPES and not content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only PDF or image files are allowed")

    # Read file content to check size
    file_content = await file.read()
    file_size_mb = len(file_content) / (1024 * 1024)

    if file_size_mb > config.MAX_UPLOAD_MB:
        raise HTTPException(status_code=400, detail=f"File size must be ≤{config.MAX_UPLOAD_MB} MB")

    try:
        options = ExtractionOptions(
            enable_ocr=enable_ocr,
            language=language,
            max_pages=max_pages,
            timeout_ms=timeout_ms,
        )
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    logger.info(f"Extracting {file.filename} ({content_type}, {file_size_mb:.2f} MB)")
    try:
        result = await run_extraction(file_content, content_type, options)
    except DocumentLoadError as e:
        logger.warning(f"Rejected unreadable document {file.filename}: {e}")
        raise HTTPException(status_code=422, detail=str(e))

    logger.info(f"Extraction of {file.filename} finished: success={result.success}, "
                f"method={result.method}, {len(result.transactions)} transactions")
    return result.model_dump(mode="json", by_alias=True)
