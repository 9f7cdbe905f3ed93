"""PEN stitch encoder: pure functions, no I/O.

PEN is the machine's native stitch stream. Each record is 4 bytes:

  [x_low, x_high, y_low, y_high]

X and Y are 16-bit little-endian words holding `(coord << 3) & 0xFFFF`. The
low 3 bits of each word carry a flag code:

  X: COLOR_END (0x03) last stitch of a color, DATA_END (0x05) last record
  Y: FEED (0x01) travel without needle, CUT (0x02) trim thread

Color changes and long jumps are wrapped in lock stitches (8 tiny
back-and-forth records) so the thread does not unravel after a cut.
"""

from __future__ import annotations
import logging
import math
from dataclasses import dataclass
from typing import Iterable, List, NamedTuple, Sequence, Tuple

from .constants import PP1Constants
from .errors import CoordinateOutOfRangeError
from .stitches import Bounds, BoundsAccumulator, Stitch, StitchCommand, as_stitch

logger = logging.getLogger(__name__)

# X-side flags
COLOR_END = 0x03
DATA_END = 0x05
# Y-side flags
FEED = 0x01
CUT = 0x02

FLAG_MASK = 0x07
RECORD_SIZE = 4
LOCK_BLOCK_SIZE = PP1Constants.LOCK_STITCH_COUNT * RECORD_SIZE


class PenRecord(NamedTuple):
    x: int
    y: int
    x_flag: int
    y_flag: int


@dataclass
class PenEncoding:
    pen_bytes: bytes
    bounds: Bounds

    @property
    def record_count(self) -> int:
        return len(self.pen_bytes) // RECORD_SIZE


def round_coord(value: float) -> int:
    """Round half up (2.5 -> 3, -2.5 -> -2), not banker's rounding."""
    return int(math.floor(value + 0.5))


def check_range(x: int, y: int, index: int = None):
    lo, hi = PP1Constants.COORD_MIN, PP1Constants.COORD_MAX
    if not (lo <= x <= hi and lo <= y <= hi):
        raise CoordinateOutOfRangeError(x, y, index)


def encode_stitch_position(x: float, y: float) -> bytes:
    """Encode a position as a flag-free 4-byte PEN record."""
    xi, yi = round_coord(x), round_coord(y)
    check_range(xi, yi)
    xe = (xi << 3) & 0xFFFF
    ye = (yi << 3) & 0xFFFF
    return bytes([xe & 0xFF, (xe >> 8) & 0xFF, ye & 0xFF, (ye >> 8) & 0xFF])


def _record(x: float, y: float, x_flag: int = 0, y_flag: int = 0) -> bytearray:
    rec = bytearray(encode_stitch_position(x, y))
    rec[0] = (rec[0] & 0xF8) | x_flag
    rec[2] = (rec[2] & 0xF8) | y_flag
    return rec


def _set_x_flag(buf: bytearray, record_offset: int, flag: int):
    buf[record_offset] = (buf[record_offset] & 0xF8) | flag


def decode_pen(data: bytes) -> List[PenRecord]:
    """Split a PEN stream back into records (coordinates sign-extended)."""
    if len(data) % RECORD_SIZE:
        raise ValueError(f"PEN data length {len(data)} is not a multiple of 4")

    def word(lo: int, hi: int) -> int:
        w = lo | (hi << 8)
        return w - 0x10000 if w > 0x7FFF else w

    records = []
    for off in range(0, len(data), RECORD_SIZE):
        xw = word(data[off], data[off + 1])
        yw = word(data[off + 2], data[off + 3])
        records.append(PenRecord(xw >> 3, yw >> 3, xw & FLAG_MASK, yw & FLAG_MASK))
    return records


def calculate_lock_direction(
    stitches: Sequence, index: int, forward: bool
) -> Tuple[float, float]:
    """Estimate the local sewing direction around `index`.

    Walks from `index` forward or backward, summing deltas between consecutive
    non-jump stitches until the sum reaches the target length, then scales the
    sum to exactly that length. Falls back to a diagonal when fewer than two
    usable stitches exist in that direction.
    """
    target = PP1Constants.LOCK_TARGET_LENGTH
    fallback = target / math.sqrt(2)
    n = len(stitches)
    if not 0 <= index < n:
        return fallback, fallback

    step = 1 if forward else -1
    prev = as_stitch(stitches[index])
    acc_x = acc_y = 0.0
    usable = 1

    j = index + step
    while 0 <= j < n:
        s = as_stitch(stitches[j])
        j += step
        if s.is_jump:
            continue
        acc_x += s.x - prev.x
        acc_y += s.y - prev.y
        prev = s
        usable += 1
        if math.hypot(acc_x, acc_y) >= target:
            break

    length = math.hypot(acc_x, acc_y)
    if usable < 2 or length == 0:
        return fallback, fallback
    scale = target / length
    return acc_x * scale, acc_y * scale


def generate_lock_stitches(x: float, y: float, dir_x: float, dir_y: float) -> bytes:
    """Eight records tacking back and forth along (dir_x, dir_y) at (x, y)."""
    ox = dir_x * PP1Constants.LOCK_SCALE
    oy = dir_y * PP1Constants.LOCK_SCALE
    out = bytearray()
    for i in range(PP1Constants.LOCK_STITCH_COUNT):
        sign = 1 if i % 2 == 0 else -1
        out += encode_stitch_position(x + sign * ox, y + sign * oy)
    return bytes(out)


def _validate(stitches: List[Stitch]):
    for i, s in enumerate(stitches):
        check_range(round_coord(s.x), round_coord(s.y), i)
        if s.command & StitchCommand.END:
            break


def encode_stitches(stitches: Iterable) -> PenEncoding:
    """Compile an ordered stitch list into a PEN byte stream plus bounds.

    Raises CoordinateOutOfRangeError before producing any output if a stitch
    does not fit the PEN coordinate range.
    """
    items = [as_stitch(s) for s in stitches]
    if not items:
        return PenEncoding(b"", Bounds())
    _validate(items)

    threshold = PP1Constants.LONG_JUMP_THRESHOLD
    out = bytearray()
    bounds = BoundsAccumulator()
    lock_groups = 0

    for i, s in enumerate(items):
        x, y = round_coord(s.x), round_coord(s.y)
        trim = bool(s.command & StitchCommand.TRIM)

        if s.is_jump:
            prev = items[i - 1] if i > 0 else None
            distance = (
                math.hypot(s.x - prev.x, s.y - prev.y) if prev is not None else 0.0
            )
            if distance > threshold:
                # finish the thread before the travel, restart it after
                bx, by = calculate_lock_direction(items, i - 1, forward=False)
                out += generate_lock_stitches(
                    round_coord(prev.x), round_coord(prev.y), bx, by
                )
                own_offset = len(out)
                out += _record(x, y, y_flag=FEED | CUT)
                fx, fy = calculate_lock_direction(items, i, forward=True)
                out += generate_lock_stitches(x, y, fx, fy)
                lock_groups += 2
            else:
                own_offset = len(out)
                out += _record(x, y, y_flag=FEED | (CUT if trim else 0))
        else:
            own_offset = len(out)
            out += _record(x, y, y_flag=CUT if trim else 0)
            bounds.add(x, y)

        if s.command & StitchCommand.END:
            if i < len(items) - 1:
                logger.debug(f"END at stitch {i}, ignoring {len(items) - i - 1} more")
            break

        nxt = items[i + 1] if i + 1 < len(items) else None
        if nxt is not None and nxt.color_index != s.color_index:
            _set_x_flag(out, own_offset, COLOR_END)
            bx, by = calculate_lock_direction(items, i, forward=False)
            out += generate_lock_stitches(x, y, bx, by)
            out += _record(x, y, y_flag=CUT)
            fx, fy = calculate_lock_direction(items, i + 1, forward=True)
            out += generate_lock_stitches(
                round_coord(nxt.x), round_coord(nxt.y), fx, fy
            )
            lock_groups += 2

    _set_x_flag(out, len(out) - RECORD_SIZE, DATA_END)

    result = PenEncoding(bytes(out), bounds.result())
    logger.debug(
        f"Encoded {len(items)} stitches -> {result.record_count} records "
        f"({lock_groups} lock groups), bounds={result.bounds.to_dict()}"
    )
    return result
