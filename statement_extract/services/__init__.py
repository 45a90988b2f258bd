from .pdf_utils import is_text_page, is_scanned_page, load_document, load_image, render_page_image
from .tesseract_ocr import recognize_page, language_configurations
from .coordinates import reconstruct_rows, rows_to_text, looks_tabular
from .bank_patterns import BankPattern, BankPatternRegistry, DEFAULT_REGISTRY
from .noise_filter import filter_lines, split_run_on_lines
from .parser import normalize_date, normalize_amount, clean_description, extract_payee, parse_transaction_line
from .categorizer import Categorization, CategoryRefiner, categorize
from .extraction import extract_statement, run_extraction

__all__ = [
    'is_text_page',
    'is_scanned_page',
    'load_document',
    'load_image',
    'render_page_image',
    'recognize_page',
    'language_configurations',
    'reconstruct_rows',
    'rows_to_text',
    'looks_tabular',
    'BankPattern',
    'BankPatternRegistry',
    'DEFAULT_REGISTRY',
    'filter_lines',
    'split_run_on_lines',
    'normalize_date',
    'normalize_amount',
    'clean_description',
    'extract_payee',
    'parse_transaction_line',
    'Categorization',
    'CategoryRefiner',
    'categorize',
    'extract_statement',
    'run_extraction',
]
