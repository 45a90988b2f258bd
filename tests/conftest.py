import io
import os
import sys
from typing import List

import pandas as pd
import pytest
from PIL import Image

# Add project root and tests directory to Python path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from pdf_factory import build_pdf, statement_rows  # noqa: E402

PAGE_ONE_ROWS = [
    ("05/01/2024", "ESSELUNGA MILANO", "-45,20"),
    ("08/01/2024", "STIPENDIO GENNAIO ACME SRL", "2.150,00"),
    ("10/01/2024", "NETFLIX.COM ABBONAMENTO", "-12,99"),
    ("12/01/2024", "TRENITALIA BIGLIETTO", "-29,90"),
    ("15/01/2024", "FARMACIA CENTRALE", "-18,50"),
    ("17/01/2024", "AMAZON MARKETPLACE", "-64,99"),
]

PAGE_TWO_ROWS = [
    ("19/01/2024", "BONIFICO DA MARIO ROSSI", "150,00"),
    ("21/01/2024", "RISTORANTE DA LUIGI", "-38,00"),
    ("23/01/2024", "ENEL ENERGIA BOLLETTA", "-82,45"),
    ("25/01/2024", "PRELIEVO BANCOMAT", "-100,00"),
    ("27/01/2024", "SPOTIFY PREMIUM", "-10,99"),
    ("29/01/2024", "UBER TRIP", "-15,30"),
]


def ocr_dataframe(lines: List[str], conf: float = 91.0) -> pd.DataFrame:
    """Tesseract image_to_data DATAFRAME output for the given text lines"""
    records = []
    for line_index, line in enumerate(lines):
        left = 20
        for word_index, word in enumerate(line.split()):
            records.append({
                'level': 5,
                'page_num': 1,
                'block_num': 1,
                'par_num': 1,
                'line_num': line_index + 1,
                'word_num': word_index + 1,
                'left': left,
                'top': 30 + line_index * 40,
                'width': 12 * len(word),
                'height': 20,
                'conf': conf,
                'text': word,
            })
            left += 12 * len(word) + 15
    # Layout rows carry conf -1 and no text
    records.insert(0, {
        'level': 1, 'page_num': 1, 'block_num': 0, 'par_num': 0, 'line_num': 0, 'word_num': 0,
        'left': 0, 'top': 0, 'width': 800, 'height': 600, 'conf': -1, 'text': None,
    })
    return pd.DataFrame.from_records(records)


@pytest.fixture
def two_page_statement_pdf():
    """Native two-page statement: 12 transactions and 4 boilerplate lines carrying dates"""
    page_one = [
        (50, 50, "ESTRATTO CONTO - Gennaio 2024"),
        (50, 80, "Data"), (130, 80, "Descrizione"), (450, 80, "Importo"),
        (50, 100, "Saldo iniziale al 01/01/2024"), (450, 100, "1.000,00"),
        *statement_rows(PAGE_ONE_ROWS),
        (50, 700, "Pagina 1 di 2"),
    ]
    page_two = [
        (50, 80, "Data"), (130, 80, "Descrizione"), (450, 80, "Importo"),
        *statement_rows(PAGE_TWO_ROWS),
        (50, 260, "Saldo finale al 31/01/2024"), (450, 260, "2.882,68"),
        (50, 700, "Pagina 2 di 2"),
    ]
    return build_pdf([page_one, page_two])


@pytest.fixture
def short_text_pdf():
    """Single page whose text layer is far below the minimum length"""
    return build_pdf([[(50, 100, "05/01/2024"), (130, 100, "CAFFE"), (450, 100, "-1,20")]])


@pytest.fixture
def png_bytes():
    image = Image.new('RGB', (800, 600), 'white')
    buffer = io.BytesIO()
    image.save(buffer, format='PNG')
    return buffer.getvalue()
