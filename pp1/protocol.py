"""PP1 protocol utilities: command ids, framing, response decoders, checksums.

Wire envelope: 2-byte big-endian command id followed by the payload. Responses
echo the 2-byte id, then a command-specific payload. Field endianness is mixed
per command (machine info versions are big-endian, geometry and progress are
little-endian); every layout lives in one of the field tables below.
"""

from __future__ import annotations
import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, NamedTuple, Optional, Tuple, Union

import numpy as np

from .constants import PP1Constants
from .errors import MalformedResponseError

logger = logging.getLogger(__name__)

HEADER_LEN = 2

# Upload acceptance / transfer codes (first payload byte)
RESULT_OK = 0x00
TRANSFER_CONTINUE = 0x02


class PP1Command(IntEnum):
    """PP1 command ids (sent big-endian)."""

    MACHINE_INFO = 0x0000
    MACHINE_STATE = 0x0001
    PATTERN_UUID_REQUEST = 0x0702
    MASK_TRACE = 0x0704
    LAYOUT_SEND = 0x0705
    EMB_SEWING_INFO_REQUEST = 0x0706
    PATTERN_SEWING_INFO = 0x0707
    EMB_SEWING_DATA_DELETE = 0x0708
    EMB_UUID_SEND = 0x070A
    START_SEWING = 0x070E
    SEND_DATA_INFO = 0x1200
    SEND_DATA = 0x1201


class MachineStatus(IntEnum):
    INITIAL = 0x00
    LOWER_THREAD = 0x01
    IDLE = 0x10
    SEWING_WAIT = 0x11
    SEWING_DATA_RECEIVE = 0x12
    MASK_TRACE_LOCK_WAIT = 0x20
    MASK_TRACING = 0x21
    MASK_TRACE_COMPLETE = 0x22
    SEWING = 0x30
    SEWING_COMPLETE = 0x31
    SEWING_INTERRUPTION = 0x32
    COLOR_CHANGE_WAIT = 0x40
    PAUSE = 0x41
    STOP = 0x42
    HOOP_AVOIDANCE = 0x50
    HOOP_AVOIDANCE_MOVING = 0x51
    RL_RECEIVING = 0x60
    RL_RECEIVED = 0x61
    NONE = 0xDD


# Error byte values meaning "no error"
NO_ERROR_CODES = (0x00, 0xDD)


def command_name(command_id: int) -> str:
    try:
        return PP1Command(command_id).name
    except ValueError:
        return f"CMD_{command_id:#06x}"


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------


def encode_frame(command_id: int, payload: bytes = b"") -> bytes:
    """Prepend the big-endian command id to `payload`."""
    if not 0 <= command_id <= 0xFFFF:
        raise ValueError(f"Command id out of range: {command_id}")
    return struct.pack(">H", command_id) + bytes(payload)


def split_frame(response: bytes) -> Tuple[int, bytes]:
    """Return (echoed_id, payload). Raises MalformedResponseError if short."""
    if response is None or len(response) < HEADER_LEN:
        raise MalformedResponseError(
            f"Response too short for header: {bytes(response or b'').hex()}"
        )
    return struct.unpack_from(">H", response, 0)[0], bytes(response[HEADER_LEN:])


def result_code(response: bytes, name: str = "command") -> int:
    """First payload byte: acceptance / transfer status."""
    _, payload = split_frame(response)
    if not payload:
        raise MalformedResponseError(f"No result code in {name} response")
    return payload[0]


# ---------------------------------------------------------------------------
# Field tables
# ---------------------------------------------------------------------------


class Field(NamedTuple):
    """One response field: payload offset plus a struct format.

    The format carries width, signedness and endianness, e.g. ">H" big-endian
    u16, "<h" little-endian s16, "B" u8, "9s" raw bytes.
    """

    name: str
    offset: int
    fmt: str

    @property
    def end(self) -> int:
        return self.offset + struct.calcsize(self.fmt)


MACHINE_INFO_FIELDS = (
    Field("software_version", 0, ">H"),
    Field("serial_number", 2, "9s"),
    Field("mac_address", 16, "6s"),
    Field("bluetooth_version", 24, ">H"),
    Field("max_width", 29, "<H"),
    Field("max_height", 31, "<H"),
    Field("software_revision", 35, "B"),
    Field("model_number", 39, "11s"),
)

MACHINE_STATE_FIELDS = (
    Field("status", 0, "B"),
    Field("error", 2, "B"),
)

# Bounds are signed: designs are centred on the hoop origin
PATTERN_INFO_FIELDS = (
    Field("bound_left", 0, "<h"),
    Field("bound_top", 2, "<h"),
    Field("bound_right", 4, "<h"),
    Field("bound_bottom", 6, "<h"),
    Field("total_time", 8, "<H"),
    Field("total_stitches", 10, "<H"),
    Field("speed", 12, "<H"),
)

SEWING_PROGRESS_FIELDS = (
    Field("current_stitch", 0, "<H"),
    Field("current_time", 2, "<h"),
    Field("stop_time", 4, "<h"),
    Field("position_x", 6, "<h"),
    Field("position_y", 8, "<h"),
)

UUID_FIELDS = (Field("uuid", 0, f"{PP1Constants.UUID_LENGTH}s"),)


def decode_fields(payload: bytes, fields, name: str = "response") -> Dict[str, Union[int, bytes]]:
    """Unpack `fields` from `payload` into a dict keyed by field name."""
    needed = max(f.end for f in fields)
    if len(payload) < needed:
        raise MalformedResponseError(
            f"{name} payload has {len(payload)} bytes, need {needed}"
        )
    return {f.name: struct.unpack_from(f.fmt, payload, f.offset)[0] for f in fields}


def _payload_for(response: bytes, command: PP1Command) -> bytes:
    echoed, payload = split_frame(response)
    if echoed != command:
        logger.warning(
            f"{command.name} response echoed {command_name(echoed)} ({echoed:#06x})"
        )
    return payload


def _ascii(raw: bytes) -> str:
    return raw.decode("ascii", errors="replace").replace("\x00", "")


# ---------------------------------------------------------------------------
# Typed responses
# ---------------------------------------------------------------------------


@dataclass
class MachineInfo:
    serial_number: str
    model_number: str
    software_version: str
    bluetooth_version: int
    max_width: int
    max_height: int
    mac_address: str


@dataclass
class MachineState:
    status: Union[MachineStatus, int]
    error: int

    @property
    def has_error(self) -> bool:
        return self.error not in NO_ERROR_CODES


@dataclass
class PatternInfo:
    bound_left: int
    bound_top: int
    bound_right: int
    bound_bottom: int
    total_time: int
    total_stitches: int
    speed: int


@dataclass
class SewingProgress:
    current_stitch: int
    current_time: int
    stop_time: int
    position_x: int
    position_y: int


def decode_machine_info(response: bytes) -> MachineInfo:
    f = decode_fields(
        _payload_for(response, PP1Command.MACHINE_INFO),
        MACHINE_INFO_FIELDS,
        "MACHINE_INFO",
    )
    return MachineInfo(
        serial_number=_ascii(f["serial_number"]),
        model_number=_ascii(f["model_number"]),
        software_version=f"{f['software_version'] / 100:.2f}.{f['software_revision']}",
        bluetooth_version=f["bluetooth_version"],
        max_width=f["max_width"],
        max_height=f["max_height"],
        mac_address=":".join(f"{b:02X}" for b in f["mac_address"]),
    )


def decode_machine_state(response: bytes) -> MachineState:
    f = decode_fields(
        _payload_for(response, PP1Command.MACHINE_STATE),
        MACHINE_STATE_FIELDS,
        "MACHINE_STATE",
    )
    try:
        status = MachineStatus(f["status"])
    except ValueError:
        status = f["status"]
    return MachineState(status=status, error=f["error"])


def decode_pattern_info(response: bytes) -> PatternInfo:
    f = decode_fields(
        _payload_for(response, PP1Command.EMB_SEWING_INFO_REQUEST),
        PATTERN_INFO_FIELDS,
        "EMB_SEWING_INFO",
    )
    return PatternInfo(**f)


def decode_sewing_progress(response: bytes) -> SewingProgress:
    f = decode_fields(
        _payload_for(response, PP1Command.PATTERN_SEWING_INFO),
        SEWING_PROGRESS_FIELDS,
        "PATTERN_SEWING_INFO",
    )
    return SewingProgress(**f)


def decode_pattern_uuid(response: bytes) -> Optional[bytes]:
    """Return the 16-byte pattern id, or None when no pattern is loaded."""
    payload = _payload_for(response, PP1Command.PATTERN_UUID_REQUEST)
    if len(payload) < PP1Constants.UUID_LENGTH:
        logger.info(f"Pattern UUID response too short ({len(response)} bytes)")
        return None
    uuid = decode_fields(payload, UUID_FIELDS, "PATTERN_UUID")["uuid"]
    if not any(uuid):
        return None
    return uuid


# ---------------------------------------------------------------------------
# Checksums and upload payloads
# ---------------------------------------------------------------------------


def _byte_sum(data: bytes) -> int:
    if not data:
        return 0
    return int(np.frombuffer(bytes(data), dtype=np.uint8).sum(dtype=np.uint64))


def checksum16(data: bytes) -> int:
    """Additive checksum of the whole design, modulo 2**16."""
    return _byte_sum(data) & 0xFFFF


def checksum8(data: bytes) -> int:
    """Additive checksum of one chunk, modulo 256."""
    return _byte_sum(data) & 0xFF


def build_data_info(length: int, checksum: int) -> bytes:
    """SEND_DATA_INFO payload: type (u8), length (<I), checksum (<H)."""
    return struct.pack("<BIH", PP1Constants.DATA_TYPE_PEN, length, checksum & 0xFFFF)


def build_data_chunk(offset: int, chunk: bytes) -> bytes:
    """SEND_DATA payload: offset (<I), chunk bytes, chunk checksum (u8)."""
    if not chunk:
        raise ValueError("Empty chunk")
    return struct.pack("<I", offset) + bytes(chunk) + bytes([checksum8(chunk)])


def build_layout(
    move_x: int = 0,
    move_y: int = 0,
    size_x: int = 0,
    size_y: int = 0,
    rotate: int = 0,
    flip: int = 0,
    frame: int = 0,
) -> bytes:
    """LAYOUT_SEND payload: five <h words then flip and frame bytes (12 bytes)."""
    return struct.pack(
        "<hhhhhBB", move_x, move_y, size_x, size_y, rotate, flip & 0xFF, frame & 0xFF
    )


MASK_TRACE_PAYLOAD = b"\x01"
