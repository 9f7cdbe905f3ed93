"""Sewing time estimates matching the machine's own display.

The machine budgets 150 ms per stitch plus 3 s startup per color block, and
rounds each block up to whole minutes.
"""

from __future__ import annotations
import logging
import math
from typing import Dict, Iterable

logger = logging.getLogger(__name__)

MS_PER_STITCH = 150
BLOCK_STARTUP_MS = 3000


def convert_stitches_to_minutes(stitch_count: int) -> int:
    """Minutes for one color block, rounded up, minimum 1 (0 for <= 1 stitch)."""
    if stitch_count <= 1:
        return 0
    time_ms = (stitch_count - 1) * MS_PER_STITCH + BLOCK_STARTUP_MS
    return max(1, math.ceil(time_ms / 60000))


def _count(block) -> int:
    return block if isinstance(block, int) else block.stitch_count


def calculate_pattern_time(blocks: Iterable, current_stitch: int) -> Dict[str, int]:
    """Total, elapsed and remaining minutes for a design.

    Args:
        blocks: ColorBlock objects (or plain stitch counts) in sewing order
        current_stitch: stitch index reported by the machine

    Returns:
        {"total_minutes", "elapsed_minutes", "remaining_minutes"}
    """
    counts = [_count(b) for b in blocks]
    total = sum(convert_stitches_to_minutes(c) for c in counts)

    elapsed = 0
    cumulative = 0
    for count in counts:
        cumulative += count
        if cumulative <= current_stitch:
            elapsed += convert_stitches_to_minutes(count)
            if cumulative == current_stitch:
                break
        else:
            # partway through this block
            elapsed += convert_stitches_to_minutes(current_stitch - (cumulative - count))
            break

    result = {
        "total_minutes": total,
        "elapsed_minutes": elapsed,
        "remaining_minutes": max(0, total - elapsed),
    }
    logger.debug(f"Pattern time at stitch {current_stitch}: {result}")
    return result


def format_minutes(minutes: float) -> str:
    """Format minutes as M:SS."""
    mins = math.floor(minutes)
    secs = round((minutes - mins) * 60)
    return f"{mins}:{secs:02d}"
