"""
Positional text models used by the coordinate table reconstructor.

All coordinates use the screen convention: origin at the top-left corner of
the page, ``y`` growing downward. Rows are therefore ordered by ascending
``y``. Producers working in PDF user space (origin bottom-left) must flip
with ``page_height - y`` before building fragments.
"""
from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field


class PositionedFragment(BaseModel):
    """A piece of page text tagged with its on-page location"""
    model_config = ConfigDict(frozen=True)

    text: str
    x: float
    y: float
    width: float = Field(default=0.0, ge=0)
    height: float = Field(default=0.0, ge=0)


class TableRow(BaseModel):
    """Fragments sharing a baseline, ordered left to right"""
    model_config = ConfigDict(frozen=True)

    y: float
    fragments: Tuple[PositionedFragment, ...]
    text: str
