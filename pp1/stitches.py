"""Stitch data model shared by the codec, uploader and timing helpers.

Stitches arrive from the PES import step as ordered `[x, y, command, color]`
rows. `as_stitch` accepts either that row form or a `Stitch`.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import IntFlag
from typing import Iterable, List, NamedTuple, Optional, Sequence

from .constants import DEFAULT_THREAD_PALETTE


class StitchCommand(IntFlag):
    """Stitch command bits (pystitch numbering)."""

    NORMAL = 0x00
    JUMP = 0x10
    TRIM = 0x20
    COLOR_CHANGE = 0x40
    STOP = 0x80
    END = 0x100


class Stitch(NamedTuple):
    x: float
    y: float
    command: StitchCommand = StitchCommand.NORMAL
    color_index: int = 0

    @property
    def is_jump(self) -> bool:
        return bool(self.command & StitchCommand.JUMP)


def as_stitch(item) -> Stitch:
    """Coerce a `Stitch` or an `[x, y, command, color]` row into a `Stitch`."""
    if isinstance(item, Stitch):
        return item
    x, y, command, color = (list(item) + [0, 0])[:4]
    if color < 0:
        raise ValueError(f"Negative color index: {color}")
    return Stitch(x, y, StitchCommand(int(command)), int(color))


@dataclass
class Bounds:
    min_x: int = 0
    max_x: int = 0
    min_y: int = 0
    max_y: int = 0

    @property
    def width(self) -> int:
        return self.max_x - self.min_x

    @property
    def height(self) -> int:
        return self.max_y - self.min_y

    def fits_hoop(self, max_width: int, max_height: int) -> bool:
        """True if the design extent fits a hoop of the given size."""
        return self.width <= max_width and self.height <= max_height

    def to_dict(self) -> dict:
        return {
            "minX": self.min_x,
            "maxX": self.max_x,
            "minY": self.min_y,
            "maxY": self.max_y,
        }


class BoundsAccumulator:
    """Running min/max over genuine stitch positions."""

    def __init__(self):
        self._bounds: Optional[Bounds] = None

    def add(self, x: int, y: int):
        b = self._bounds
        if b is None:
            self._bounds = Bounds(x, x, y, y)
            return
        b.min_x = min(b.min_x, x)
        b.max_x = max(b.max_x, x)
        b.min_y = min(b.min_y, y)
        b.max_y = max(b.max_y, y)

    def result(self) -> Bounds:
        return self._bounds if self._bounds is not None else Bounds()


@dataclass
class ColorBlock:
    color_index: int
    start: int  # index of first stitch in the block
    end: int  # index one past the last stitch

    @property
    def stitch_count(self) -> int:
        return self.end - self.start


def color_blocks(stitches: Iterable) -> List[ColorBlock]:
    """Split a stitch list into maximal runs sharing one color index."""
    blocks: List[ColorBlock] = []
    for i, item in enumerate(stitches):
        s = as_stitch(item)
        if blocks and blocks[-1].color_index == s.color_index:
            blocks[-1].end = i + 1
        else:
            blocks.append(ColorBlock(s.color_index, i, i + 1))
    return blocks


def thread_color(
    threads: Optional[Sequence[str]],
    color_index: int,
    palette: Sequence[str] = DEFAULT_THREAD_PALETTE,
) -> str:
    """Return the hex color for a thread, falling back to `palette`."""
    if not threads or color_index < 0 or color_index >= len(threads):
        return palette[max(0, color_index) % len(palette)]
    return threads[color_index] or "#000000"
