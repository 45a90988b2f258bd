import time
from unittest.mock import MagicMock, Mock, patch

import pytest
from PIL import Image
from pdfminer.pdfdocument import PDFPasswordIncorrect

from pdf_factory import build_pdf
from statement_extract.errors import DocumentLoadError, ExtractionTimeoutError
from statement_extract.services import pdf_utils
from statement_extract.services.pdf_utils import (
    PageText,
    is_scanned_page,
    is_text_page,
    load_document,
    load_image,
    render_page_image,
)
from statement_extract.services.timeouts import Deadline

decode_page = pdf_utils._decode_page
open_pdf = pdf_utils._open_pdf


def mock_pdf(pages):
    """pdfplumber.PDF stand-in usable both directly and as a context manager"""
    pdf = MagicMock()
    pdf.pages = pages
    pdf.__enter__.return_value = pdf
    pdf.__exit__.return_value = None
    return pdf


class TestLoadDocument:
    """Test suite for reading the text layer of PDFs"""

    def test_reads_text_and_fragments(self):
        """Test text and positioned words are read from each page"""
        data = build_pdf([
            [(50, 100, "05/01/2024"), (130, 100, "ESSELUNGA"), (450, 100, "-45,20")],
            [(50, 100, "06/01/2024"), (130, 100, "CONAD"), (450, 100, "-12,00")],
        ])

        document = load_document(data)

        assert document.page_count == 2
        assert document.encrypted is False
        assert document.errors == []
        assert "ESSELUNGA" in document.pages[0].text
        assert "CONAD" in document.pages[1].text
        assert document.has_fragments

        words = {f.text: f for f in document.pages[0].fragments}
        assert words["05/01/2024"].x == pytest.approx(50, abs=1)
        assert words["-45,20"].x > words["ESSELUNGA"].x
        # screen coordinates: top of the glyph box sits just above the baseline
        assert 85 < words["ESSELUNGA"].y < 100

    def test_document_text_joins_pages(self):
        """Test the document text is the page texts joined by newlines"""
        data = build_pdf([[(50, 100, "PRIMA")], [(50, 100, "SECONDA")]])

        document = load_document(data)

        assert document.text == "PRIMA\nSECONDA"

    def test_max_pages(self):
        """Test only the first max_pages pages are decoded"""
        data = build_pdf([[(50, 100, "UNO")], [(50, 100, "DUE")], [(50, 100, "TRE")]])

        document = load_document(data, max_pages=2)

        assert document.page_count == 2
        assert [page.page_number for page in document.pages] == [1, 2]

    def test_empty_bytes(self):
        """Test empty input is a load error"""
        with pytest.raises(DocumentLoadError):
            load_document(b"")

    def test_garbage_bytes(self):
        """Test non-PDF bytes are a load error"""
        with pytest.raises(DocumentLoadError):
            load_document(b"this is not a pdf at all")

    @patch('statement_extract.services.pdf_utils.pdfplumber.open')
    def test_encrypted_document(self, mock_open):
        """Test encrypted documents yield an empty, flagged result"""
        mock_open.side_effect = PDFPasswordIncorrect()

        document = load_document(b"%PDF-1.4 encrypted")

        assert document.encrypted is True
        assert document.pages == []
        assert document.errors == ["Document is encrypted"]

    @patch('statement_extract.services.pdf_utils.pdfplumber.open')
    def test_zero_pages(self, mock_open):
        """Test a document without pages yields no text rather than an error"""
        pdf = mock_pdf([])
        mock_open.return_value = pdf

        document = load_document(b"%PDF-1.4 empty")

        assert document.page_count == 0
        assert document.text == ""
        pdf.close.assert_called()

    @patch('statement_extract.services.pdf_utils.pdfplumber.open')
    def test_page_decode_failure_is_recorded(self, mock_open):
        """Test a failing page is recorded and the remaining pages still decode"""
        bad_page = Mock()
        bad_page.extract_text.side_effect = Exception("broken content stream")
        good_page = Mock(width=612, height=792)
        good_page.extract_text.return_value = "05/01/2024 ESSELUNGA -45,20"
        good_page.extract_words.return_value = [
            {'text': 'ESSELUNGA', 'x0': 130.0, 'x1': 190.0, 'top': 92.0, 'bottom': 102.0},
        ]
        mock_open.return_value = mock_pdf([bad_page, good_page])

        document = load_document(b"%PDF-1.4 partial", page_timeout=None)

        assert document.page_count == 2
        assert document.pages[0].text == ""
        assert document.pages[1].text == "05/01/2024 ESSELUNGA -45,20"
        assert len(document.pages[1].fragments) == 1
        assert len(document.errors) == 1
        assert document.errors[0].startswith("Page 1")


class TestPageClassification:
    """Test suite for text/scanned page detection"""

    def test_text_page(self):
        """Test a page with plenty of alphanumerics is a text page"""
        page = PageText(page_number=1, text="05/01/2024 ESSELUNGA MILANO -45,20")

        assert is_text_page(page) is True
        assert is_scanned_page(page) is False

    def test_blank_page_is_scanned(self):
        """Test a page with no text is a scanned page"""
        page = PageText(page_number=1, text="   \n\t ")

        assert is_text_page(page) is False
        assert is_scanned_page(page) is True

    def test_punctuation_only(self):
        """Test formatting characters alone do not make a text page"""
        page = PageText(page_number=1, text="---- |||| ____ .... ////")
        assert is_text_page(page) is False

    def test_custom_threshold(self):
        """Test the alphanumeric threshold is configurable"""
        page = PageText(page_number=1, text="ABC 123")
        assert is_text_page(page, min_chars=6) is True
        assert is_text_page(page, min_chars=7) is False


class TestRendering:
    """Test suite for page rasterisation and image decoding"""

    @patch('statement_extract.services.pdf_utils.pdfplumber.open')
    def test_render_page_image(self, mock_open):
        """Test the requested page is rendered at the given resolution"""
        image = Image.new('RGB', (10, 10), 'white')
        first, second = Mock(), Mock()
        second.to_image.return_value.original = image
        mock_open.return_value = mock_pdf([first, second])

        result = render_page_image(b"%PDF-1.4", 2, resolution=150, render_timeout=None)

        assert result is image
        second.to_image.assert_called_once_with(resolution=150)
        first.to_image.assert_not_called()

    @patch('statement_extract.services.pdf_utils.pdfplumber.open')
    def test_render_missing_page(self, mock_open):
        """Test out-of-range pages raise ValueError"""
        mock_open.return_value = mock_pdf([Mock()])

        with pytest.raises(ValueError):
            render_page_image(b"%PDF-1.4", 5, render_timeout=None)

    @patch('statement_extract.services.pdf_utils.pdfplumber.open')
    def test_render_unreadable_document(self, mock_open):
        """Test unreadable documents raise DocumentLoadError"""
        mock_open.side_effect = Exception("bad xref")

        with pytest.raises(DocumentLoadError):
            render_page_image(b"junk", 1)

    def test_load_image(self, png_bytes):
        """Test raster images decode to PIL images"""
        image = load_image(png_bytes)

        assert image.size == (800, 600)

    def test_load_image_rejects_garbage(self):
        """Test undecodable and empty images raise DocumentLoadError"""
        with pytest.raises(DocumentLoadError):
            load_image(b"not an image")
        with pytest.raises(DocumentLoadError):
            load_image(b"")


def slow_pages(delay, slow_from=1):
    """_decode_page replacement that stalls on pages from slow_from onwards"""
    def decode(page, page_number):
        if page_number >= slow_from:
            time.sleep(delay)
        return decode_page(page, page_number)
    return decode


class TestLoadDocumentTimeouts:
    """Test suite for decode timeouts and the overall deadline while loading"""

    def setup_method(self):
        self.data = build_pdf([[(50, 100, f"PAGINA {n} 05/01/2024 ESSELUNGA -45,20")] for n in range(1, 9)])

    def test_page_timeout_abandons_remaining_pages(self):
        """Test a page exceeding its decode timeout is recorded and later pages are skipped"""
        with patch('statement_extract.services.pdf_utils._decode_page', side_effect=slow_pages(0.5, slow_from=2)):
            document = load_document(self.data, page_timeout=0.1)

        assert [page.page_number for page in document.pages] == [1]
        assert document.errors == ["Page 2: text layer decode timed out"]

    def test_deadline_expires_during_page_decode(self):
        """Test the overall deadline stops decoding instead of waiting on every page"""
        deadline = Deadline(500)
        started = time.monotonic()

        with patch('statement_extract.services.pdf_utils._decode_page', side_effect=slow_pages(0.25)):
            with pytest.raises(ExtractionTimeoutError):
                load_document(self.data, deadline=deadline)

        assert time.monotonic() - started < 1.0

    def test_deadline_expires_while_opening(self):
        """Test a slow open under a tight deadline is a timeout, not an unreadable document"""
        def slow_open(data, password):
            time.sleep(0.3)
            return open_pdf(data, password)

        with patch('statement_extract.services.pdf_utils._open_pdf', side_effect=slow_open):
            with pytest.raises(ExtractionTimeoutError):
                load_document(self.data, deadline=Deadline(100))

    def test_expired_deadline_before_opening(self):
        """Test nothing is decoded once the budget is spent"""
        deadline = Deadline(1000, clock=iter([0.0, 5.0, 5.0, 5.0]).__next__)

        with pytest.raises(ExtractionTimeoutError):
            load_document(self.data, deadline=deadline)

    def test_generous_deadline_reads_everything(self):
        """Test a deadline with time to spare changes nothing"""
        document = load_document(self.data, deadline=Deadline(60000))

        assert document.page_count == 8
        assert document.errors == []
