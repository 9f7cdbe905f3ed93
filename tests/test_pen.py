"""Tests for the PEN stitch encoder."""

import math

import pytest

from pp1 import pen
from pp1.errors import CoordinateOutOfRangeError, ErrorKind
from pp1.stitches import Stitch, StitchCommand

N = StitchCommand.NORMAL
JUMP = StitchCommand.JUMP
TRIM = StitchCommand.TRIM
END = StitchCommand.END


def test_encode_position_origin():
    assert pen.encode_stitch_position(0, 0) == bytes([0x00, 0x00, 0x00, 0x00])


def test_encode_position_shifts_left_three_bits():
    assert pen.encode_stitch_position(1, 1) == bytes([0x08, 0x00, 0x08, 0x00])


def test_encode_position_negative():
    # -1 -> 0xFFFF, shifted -> 0xFFF8
    assert pen.encode_stitch_position(-1, -1) == bytes([0xF8, 0xFF, 0xF8, 0xFF])


def test_encode_position_multibyte():
    assert pen.encode_stitch_position(128, 0) == bytes([0x00, 0x04, 0x00, 0x00])


def test_encode_position_rounds_half_up():
    assert pen.encode_stitch_position(1.5, 2.4) == bytes([0x10, 0x00, 0x10, 0x00])
    assert pen.round_coord(2.5) == 3
    assert pen.round_coord(-2.5) == -2


@pytest.mark.parametrize("coord", [-4096, -4095, -1, 0, 1, 777, 4095])
def test_encode_position_recovers_coordinate(coord):
    rec = pen.decode_pen(pen.encode_stitch_position(coord, coord))[0]
    assert (rec.x, rec.y) == (coord, coord)
    assert rec.x_flag == 0 and rec.y_flag == 0


@pytest.mark.parametrize("x,y", [(4096, 0), (0, -4097), (5000, 5000)])
def test_encode_position_out_of_range(x, y):
    with pytest.raises(CoordinateOutOfRangeError) as exc:
        pen.encode_stitch_position(x, y)
    assert exc.value.kind is ErrorKind.COORDINATE_OUT_OF_RANGE


def test_lock_direction_forward():
    stitches = [[0, 0, N, 0], [10, 0, N, 0], [20, 0, N, 0]]
    dx, dy = pen.calculate_lock_direction(stitches, 0, True)
    assert dx > 0
    assert dy == 0
    assert math.hypot(dx, dy) == pytest.approx(8.0)


def test_lock_direction_backward():
    stitches = [[0, 0, N, 0], [10, 0, N, 0], [20, 0, N, 0]]
    dx, dy = pen.calculate_lock_direction(stitches, 2, False)
    assert dx < 0
    assert dy == 0
    assert math.hypot(dx, dy) == pytest.approx(8.0)


def test_lock_direction_skips_jumps():
    stitches = [[0, 0, N, 0], [5, 5, JUMP, 0], [10, 0, N, 0], [15, 0, N, 0]]
    dx, dy = pen.calculate_lock_direction(stitches, 0, True)
    assert dx == pytest.approx(8.0)
    assert dy == pytest.approx(0.0)


def test_lock_direction_scales_to_target():
    stitches = [[0, 0, N, 0], [3, 4, N, 0], [6, 8, N, 0]]
    dx, dy = pen.calculate_lock_direction(stitches, 0, True)
    assert dx == pytest.approx(4.8)
    assert dy == pytest.approx(6.4)


def test_lock_direction_stops_at_target_length():
    stitches = [[x, 0, N, 0] for x in (0, 2, 4, 6, 8)] + [[8, 100, N, 0]]
    dx, dy = pen.calculate_lock_direction(stitches, 0, True)
    # the far stitch at y=100 is never reached
    assert (dx, dy) == pytest.approx((8.0, 0.0))


def test_lock_direction_fallback_single_stitch():
    d = 8.0 / math.sqrt(2)
    assert pen.calculate_lock_direction([[0, 0, N, 0]], 0, True) == pytest.approx((d, d))


def test_lock_direction_fallback_at_design_edge():
    stitches = [[0, 0, N, 0], [10, 0, N, 0]]
    d = 8.0 / math.sqrt(2)
    assert pen.calculate_lock_direction(stitches, 0, False) == pytest.approx((d, d))


def test_lock_stitches_are_32_bytes():
    assert len(pen.generate_lock_stitches(0, 0, 8.0, 0)) == 32
    assert len(pen.generate_lock_stitches(100, -100, -3.0, 7.0)) == 32
    d = 8.0 / math.sqrt(2)
    assert len(pen.generate_lock_stitches(0, 0, d, d)) == 32


def test_lock_stitches_alternate_along_direction():
    # 0.05 * 40 = 2 units each way
    records = pen.decode_pen(pen.generate_lock_stitches(100, 50, 40.0, 0.0))
    assert [r.x for r in records] == [102, 98] * 4
    assert all(r.y == 50 for r in records)
    assert all(r.x_flag == 0 and r.y_flag == 0 for r in records)


def test_encode_empty():
    result = pen.encode_stitches([])
    assert result.pen_bytes == b""
    assert result.bounds.to_dict() == {"minX": 0, "maxX": 0, "minY": 0, "maxY": 0}


def test_encode_single_stitch():
    result = pen.encode_stitches([[5, 10, END, 0]])
    assert len(result.pen_bytes) == 4
    assert result.bounds.to_dict() == {"minX": 5, "maxX": 5, "minY": 10, "maxY": 10}
    assert pen.decode_pen(result.pen_bytes)[0].x_flag == pen.DATA_END


def test_encode_simple_sequence():
    result = pen.encode_stitches([[0, 0, N, 0], [10, 0, N, 0], [20, 0, N | END, 0]])
    assert len(result.pen_bytes) == 12
    assert result.bounds.min_x == 0
    assert result.bounds.max_x == 20


def test_encode_tracks_bounds():
    stitches = [[10, 20, N, 0], [-5, 30, N, 0], [15, -10, N, 0], [0, 0, END, 0]]
    b = pen.encode_stitches(stitches).bounds
    assert (b.min_x, b.max_x, b.min_y, b.max_y) == (-5, 15, -10, 30)


def test_jump_excluded_from_bounds():
    stitches = [Stitch(0, 0), Stitch(1000, 1000, JUMP), Stitch(10, 10)]
    b = pen.encode_stitches(stitches).bounds
    assert (b.min_x, b.max_x, b.min_y, b.max_y) == (0, 10, 0, 10)


def test_last_record_carries_data_end():
    result = pen.encode_stitches([[0, 0, N, 0], [10, 0, END, 0]])
    assert result.pen_bytes[-4] & 0x07 == pen.DATA_END


def test_last_record_data_end_after_long_jump():
    result = pen.encode_stitches([[0, 0, N, 0], [10, 0, N, 0], [500, 0, JUMP, 0]])
    assert pen.decode_pen(result.pen_bytes)[-1].x_flag == pen.DATA_END


def test_color_change_inserts_locks_and_cut():
    stitches = [[x, 0, N, 0] for x in (0, 10, 20)] + [[x, 0, N, 1] for x in (20, 30, 40)]
    result = pen.encode_stitches(stitches)

    # 3 + 8 (finish lock) + 1 (cut) + 8 (start lock) + 3 records
    assert len(result.pen_bytes) == 23 * 4
    assert len(result.pen_bytes) > 24

    records = pen.decode_pen(result.pen_bytes)
    assert records[2].x == 20 and records[2].x_flag == pen.COLOR_END
    assert all(r.x_flag == 0 and r.y_flag == 0 for r in records[3:11])
    assert records[11].y_flag == pen.CUT
    assert all(r.y_flag == 0 for r in records[12:20])
    assert records[-1].x_flag == pen.DATA_END
    # only the genuine stitch records remain unflagged outside the lock blocks
    assert [r.x for r in records[20:]] == [20, 30, 40]


def test_long_jump_wrapped_in_lock_stitches():
    stitches = [
        [0, 0, N, 0],
        [10, 0, N, 0],
        [100, 0, JUMP, 0],
        [110, 0, N, 0],
        [120, 0, END, 0],
    ]
    result = pen.encode_stitches(stitches)
    records = pen.decode_pen(result.pen_bytes)

    assert len(records) == 2 + 8 + 1 + 8 + 2
    jump = records[10]
    assert jump.x == 100
    assert jump.y_flag == pen.FEED | pen.CUT
    assert all(r.x in (9, 10, 11) for r in records[2:10])
    assert all(r.x in (99, 100, 101) for r in records[11:19])
    assert result.bounds.max_x == 120


def test_short_jump_has_feed_only():
    result = pen.encode_stitches([[0, 0, N, 0], [10, 0, JUMP, 0], [20, 0, END, 0]])
    assert len(result.pen_bytes) == 12
    yl = result.pen_bytes[4 + 2]
    assert yl & 0x07 == pen.FEED


def test_jump_at_threshold_is_short():
    result = pen.encode_stitches([[0, 0, N, 0], [50, 0, JUMP, 0], [60, 0, N, 0]])
    assert len(result.pen_bytes) == 12


def test_trim_sets_cut_without_locks():
    result = pen.encode_stitches([[0, 0, N, 0], [10, 0, TRIM, 0], [20, 0, END, 0]])
    assert len(result.pen_bytes) == 12
    assert result.pen_bytes[4 + 2] & 0x07 == pen.CUT
    assert result.bounds.max_x == 20


def test_end_stops_encoding():
    stitches = [[0, 0, N, 0], [10, 0, END, 0], [9999, 9999, N, 0]]
    result = pen.encode_stitches(stitches)
    assert len(result.pen_bytes) == 8
    assert result.bounds.max_x == 10


def test_out_of_range_rejected_before_output():
    stitches = [[0, 0, N, 0], [10, 0, N, 0], [4200, 0, N, 0]]
    with pytest.raises(CoordinateOutOfRangeError) as exc:
        pen.encode_stitches(stitches)
    assert exc.value.index == 2
    assert exc.value.kind is ErrorKind.COORDINATE_OUT_OF_RANGE


def test_decode_pen_rejects_partial_record():
    with pytest.raises(ValueError):
        pen.decode_pen(b"\x00\x00\x00")
