import re
from decimal import Decimal
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from .. import config

ExtractionMethod = Literal["text", "ocr", "coordinate", "hybrid"]

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class ExtractionOptions(BaseModel):
    """Per-call processing options"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enable_ocr: bool = Field(default=True, alias="enableOCR")
    language: Union[str, List[str]] = "auto"
    max_pages: Optional[int] = Field(default=None, alias="maxPages")
    timeout_ms: int = Field(default=config.DEFAULT_TIMEOUT_MS, alias="timeoutMs")

    @field_validator('max_pages')
    @classmethod
    def validate_max_pages(cls, v):
        if v is not None and v < 1:
            raise ValueError('maxPages must be at least 1')
        return v

    @field_validator('timeout_ms')
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError('timeoutMs must be positive')
        return v


class ParsedTransaction(BaseModel):
    """A single transaction recovered from a statement row"""
    model_config = ConfigDict(frozen=True)

    date: str = Field(..., description="Transaction date, YYYY-MM-DD")
    description: str = Field(..., max_length=config.MAX_DESCRIPTION_LENGTH)
    amount: Decimal = Field(..., description="Signed amount (negative for outflows when the statement says so)")
    category: str
    payee: str
    confidence: float = Field(..., ge=0.0, le=1.0)

    @field_validator('date')
    @classmethod
    def validate_date(cls, v):
        if not ISO_DATE_RE.match(v):
            raise ValueError(f'Date must be YYYY-MM-DD, got {v!r}')
        return v

    @field_serializer('amount', when_used='json')
    def serialize_amount(self, v: Decimal) -> float:
        return float(v)


class ExtractionResult(BaseModel):
    """Outcome of running the pipeline over one document"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    success: bool
    transactions: List[ParsedTransaction] = Field(default_factory=list)
    raw_text: str = Field(default="", alias="rawText")
    bank_detected: str = Field(default="Unknown", alias="bankDetected")
    language_detected: str = Field(default="unknown", alias="languageDetected")
    method: ExtractionMethod = "text"
    document_confidence: float = Field(default=0.0, ge=0.0, le=1.0, alias="documentConfidence")
    page_count: int = Field(default=0, ge=0, alias="pageCount")
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    skipped_rows: int = Field(default=0, ge=0, alias="skippedRows")
