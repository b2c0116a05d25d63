"""Pane tree node models for startall."""
import itertools
from enum import Enum
from typing import Annotated, List, Literal, Optional, Set, Union

from pydantic import BaseModel, Field

_pane_ids = itertools.count(1)


def next_pane_id() -> str:
    """Allocate a process-wide unique pane id."""
    return f"pane-{next(_pane_ids)}"


class Direction(str, Enum):
    """Split direction. Vertical panes sit side by side, horizontal ones stack."""

    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"


class ColorClass(str, Enum):
    """ANSI color families a pane can filter on."""

    RED = "red"
    YELLOW = "yellow"
    GREEN = "green"
    BLUE = "blue"
    MAGENTA = "magenta"
    CYAN = "cyan"
    WHITE = "white"
    GRAY = "gray"


class Pane(BaseModel):
    """A leaf of the layout tree showing a filtered view of the output log."""

    type: Literal["pane"] = "pane"
    id: str = Field(default_factory=next_pane_id, description="Runtime pane id")
    name: str = Field("", description="User-given pane title")
    process_scope: Set[str] = Field(default_factory=set, description="Commands shown (empty = all)")
    hidden: Set[str] = Field(default_factory=set, description="Commands hidden from this pane")
    text_filter: str = Field("", description="Case-insensitive substring filter")
    color_filter: Optional[ColorClass] = Field(None, description="Only lines with this color")
    is_paused: bool = Field(False, description="Frozen: no auto-scroll")
    scroll_offset: int = Field(0, description="Lines scrolled up from the bottom")
    frozen_at: int = Field(0, description="Last sequence number visible while frozen")


class Split(BaseModel):
    """An internal node dividing space among two or more children."""

    type: Literal["split"] = "split"
    direction: Direction = Direction.VERTICAL
    children: List["PaneNode"] = Field(default_factory=list)
    sizes: List[float] = Field(default_factory=list, description="Flex ratios, one per child")


PaneNode = Annotated[Union[Pane, Split], Field(discriminator="type")]

Split.model_rebuild()
