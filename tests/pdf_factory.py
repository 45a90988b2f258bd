"""
Minimal PDF writer for text-layer fixtures.

Produces real, parseable PDFs with one Helvetica text object per placed
string, so pdfplumber extracts both text and word positions from them.
"""
from typing import List, Sequence, Tuple

PAGE_WIDTH = 612
PAGE_HEIGHT = 792

# (x, y measured from the top of the page, text)
Placement = Tuple[float, float, str]


def _escape(text: str) -> str:
    return text.replace('\\', '\\\\').replace('(', '\\(').replace(')', '\\)')


def _content_stream(placements: Sequence[Placement], font_size: int) -> bytes:
    commands = []
    for x, y_top, text in placements:
        y = PAGE_HEIGHT - y_top
        commands.append(f"BT /F1 {font_size} Tf 1 0 0 1 {x:.2f} {y:.2f} Tm ({_escape(text)}) Tj ET")
    return "\n".join(commands).encode('latin-1')


def build_pdf(pages: List[Sequence[Placement]], font_size: int = 10) -> bytes:
    """
    Build a PDF with one page per entry of `pages`.

    Args:
        pages: For each page, the strings to place and their positions
        font_size: Font size in points

    Returns:
        PDF bytes
    """
    page_count = len(pages)
    first_page_obj = 4
    page_ids = [first_page_obj + 2 * i for i in range(page_count)]

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        ("<< /Type /Pages /Kids [%s] /Count %d >>"
         % (" ".join(f"{pid} 0 R" for pid in page_ids), page_count)).encode('latin-1'),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>",
    ]

    for index, placements in enumerate(pages):
        content_id = page_ids[index] + 1
        objects.append((
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 {PAGE_WIDTH} {PAGE_HEIGHT}] "
            f"/Resources << /Font << /F1 3 0 R >> >> /Contents {content_id} 0 R >>"
        ).encode('latin-1'))
        stream = _content_stream(placements, font_size)
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")

    output = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(output))
        output += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_offset = len(output)
    output += b"xref\n0 %d\n" % (len(objects) + 1)
    output += b"0000000000 65535 f \n"
    for offset in offsets:
        output += b"%010d 00000 n \n" % offset
    output += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_offset)
    return bytes(output)


def statement_rows(rows: Sequence[Tuple[str, str, str]], top: float = 120, spacing: float = 20,
                   columns: Tuple[float, float, float] = (50, 130, 450)) -> List[Placement]:
    """Lay out (date, description, amount) rows as three columns"""
    placements: List[Placement] = []
    for index, (date, description, amount) in enumerate(rows):
        y = top + index * spacing
        placements.append((columns[0], y, date))
        placements.append((columns[1], y, description))
        placements.append((columns[2], y, amount))
    return placements
