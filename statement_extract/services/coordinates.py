import logging
from typing import Iterable, List, Optional

from .. import config
from ..schemas.geometry import PositionedFragment, TableRow

logger = logging.getLogger(__name__)


class _OpenRow:
    """Row under construction: its key y and the y-span of its members"""

    __slots__ = ('y', 'min_y', 'max_y', 'fragments')

    def __init__(self, fragment: PositionedFragment):
        self.y = fragment.y
        self.min_y = fragment.y
        self.max_y = fragment.y
        self.fragments = [fragment]

    def accepts(self, y: float, threshold: float) -> bool:
        # Every member must stay within threshold of every other member
        return y - self.min_y <= threshold and self.max_y - y <= threshold

    def add(self, fragment: PositionedFragment) -> None:
        self.fragments.append(fragment)
        self.min_y = min(self.min_y, fragment.y)
        self.max_y = max(self.max_y, fragment.y)


def reconstruct_rows(fragments: Iterable[PositionedFragment], page_height: Optional[float] = None,
                     y_threshold: float = config.ROW_Y_THRESHOLD,
                     bottom_origin: bool = False) -> List[TableRow]:
    """
    Group positioned fragments into visual table rows.

    Fragments are visited in document order. Each joins the first open row
    whose y-span stays within y_threshold with it, otherwise it opens a new
    row keyed by its own y. Fragments inside a row are then ordered left to
    right and joined with a single space; rows are ordered top to bottom.

    Args:
        fragments: Fragments of one page, in document (stream) order
        page_height: Page height, required when bottom_origin is True
        y_threshold: Maximum vertical distance between fragments of one row
        bottom_origin: Input y is measured from the bottom of the page (PDF user space)

    Returns:
        TableRow list sorted by ascending y (screen coordinates)
    """
    if bottom_origin and page_height is None:
        raise ValueError("page_height is required for bottom-origin coordinates")

    open_rows: List[_OpenRow] = []
    for fragment in fragments:
        if not fragment.text or not fragment.text.strip():
            continue

        if bottom_origin:
            fragment = fragment.model_copy(update={'y': page_height - fragment.y})

        for row in open_rows:
            if row.accepts(fragment.y, y_threshold):
                row.add(fragment)
                break
        else:
            open_rows.append(_OpenRow(fragment))

    rows = []
    for row in open_rows:
        ordered = tuple(sorted(row.fragments, key=lambda f: f.x))
        text = ' '.join(f.text.strip() for f in ordered)
        rows.append(TableRow(y=row.y, fragments=ordered, text=text))

    rows.sort(key=lambda r: r.y)
    logger.debug(f"Reconstructed {len(rows)} rows from positioned fragments")
    return rows


def rows_to_text(rows: Iterable[TableRow]) -> str:
    return '\n'.join(row.text for row in rows)


def looks_tabular(rows: List[TableRow], min_rows: int = 3, min_columns: int = 3,
                  min_gap: float = 10.0) -> bool:
    """
    Heuristic: at least `min_rows` rows split into `min_columns` or more
    horizontally separated cells.
    """
    multi_column_rows = 0
    for row in rows:
        cells = 1
        for left, right in zip(row.fragments, row.fragments[1:]):
            if right.x - (left.x + left.width) >= min_gap:
                cells += 1
        if cells >= min_columns:
            multi_column_rows += 1
            if multi_column_rows >= min_rows:
                return True
    return False
