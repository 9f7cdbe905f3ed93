"""Transport abstractions for the PP1 link (BLE + Mock).

Keep this small and explicit. BleakTransport wraps a bleak GATT client.
MockTransport is for unit tests and mock-device runs: it records every write
and answers reads from queued responses or a small device simulator.
"""

from __future__ import annotations
import asyncio
import struct
from collections import deque
from typing import Callable, List, Optional

from .constants import PP1Constants
from .errors import LinkError, NotConnectedError


class TransportBase:
    """Write-command / read-response primitive plus a connected signal."""

    def __init__(self):
        self._disconnect_callbacks: List[Callable[[], None]] = []

    @property
    def is_connected(self) -> bool:
        raise NotImplementedError

    async def write_command(self, data: bytes) -> None:
        raise NotImplementedError

    async def read_response(self) -> bytes:
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError

    def add_disconnect_callback(self, callback: Callable[[], None]):
        self._disconnect_callbacks.append(callback)

    def _notify_disconnected(self):
        for callback in list(self._disconnect_callbacks):
            callback()


class BleakTransport(TransportBase):
    """PP1 GATT link over bleak. Call `connect()` before use."""

    def __init__(self, address: str, timeout: float = 10.0):
        super().__init__()
        from bleak import BleakClient

        self.address = address
        self._client = BleakClient(
            address,
            disconnected_callback=lambda _client: self._notify_disconnected(),
            timeout=timeout,
        )

    @property
    def is_connected(self) -> bool:
        return self._client.is_connected

    async def connect(self):
        await self._client.connect()
        # fail early if this is not a PP1 machine
        if self._client.services.get_service(PP1Constants.SERVICE_UUID) is None:
            await self._client.disconnect()
            raise LinkError(f"{self.address} does not expose the PP1 service")

    async def write_command(self, data: bytes) -> None:
        if not self.is_connected:
            raise NotConnectedError()
        await self._client.write_gatt_char(
            PP1Constants.WRITE_CHAR_UUID, bytes(data), response=False
        )

    async def read_response(self) -> bytes:
        if not self.is_connected:
            raise NotConnectedError()
        return bytes(await self._client.read_gatt_char(PP1Constants.READ_CHAR_UUID))

    async def close(self):
        if self._client.is_connected:
            await self._client.disconnect()


class MockTransport(TransportBase):
    """Simple mock transport for unit tests and mock-device runs.

    Queued responses are returned in order. If auto_respond is True and the
    queue is empty, a response is synthesized for the last written command so
    the whole driver (including uploads) runs without hardware.
    """

    def __init__(self, auto_respond: bool = False, read_delay: float = 0.0):
        super().__init__()
        self._write_log: List[bytes] = []
        self._resp = deque()
        self._auto = auto_respond
        self._connected = True
        self.read_delay = read_delay
        self.events: List[tuple] = []  # ("write"|"read", command_id)
        self.fail_next_read: Optional[Exception] = None

        # simulated device state
        self.status = 0x10  # IDLE
        self.error = 0x00
        self.current_stitch = 0
        self.announced_length = 0
        self.received = bytearray()
        self.pattern_uuid = bytes(PP1Constants.UUID_LENGTH)
        self.layout: Optional[bytes] = None
        self.machine_info_payload = self._default_machine_info()

    @staticmethod
    def _default_machine_info() -> bytes:
        p = bytearray(50)
        struct.pack_into(">H", p, 0, 150)  # software 1.50
        p[2:11] = b"SN1234567"
        p[16:22] = bytes([0xDE, 0xAD, 0xBE, 0xEF, 0x00, 0x01])
        struct.pack_into(">H", p, 24, 5)
        struct.pack_into("<H", p, 29, 1000)
        struct.pack_into("<H", p, 31, 1000)
        p[35] = 2
        p[39:46] = b"PP1-100"
        return bytes(p)

    def queue_response(self, data: bytes):
        self._resp.append(bytes(data))

    def set_connected(self, connected: bool):
        was = self._connected
        self._connected = connected
        if was and not connected:
            self._notify_disconnected()

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def write_command(self, data: bytes) -> None:
        if not self._connected:
            raise NotConnectedError()
        data = bytes(data)
        self._write_log.append(data)
        command_id = int.from_bytes(data[:2], "big") if len(data) >= 2 else None
        self.events.append(("write", command_id))
        if self._auto and not self._resp and command_id is not None:
            self._resp.append(self._respond(command_id, data[2:]))

    async def read_response(self) -> bytes:
        if self.read_delay:
            await asyncio.sleep(self.read_delay)
        if not self._connected:
            raise NotConnectedError()
        last = self.events[-1][1] if self.events else None
        self.events.append(("read", last))
        if self.fail_next_read is not None:
            exc, self.fail_next_read = self.fail_next_read, None
            raise exc
        if not self._resp:
            return b""
        return self._resp.popleft()

    async def close(self):
        self._resp.clear()
        self.set_connected(False)

    @property
    def writes(self) -> List[bytes]:
        return list(self._write_log)

    def _respond(self, command_id: int, payload: bytes) -> bytes:
        header = struct.pack(">H", command_id)
        if command_id == 0x0000:  # MACHINE_INFO
            return header + self.machine_info_payload
        if command_id == 0x0001:  # MACHINE_STATE
            return header + bytes([self.status, 0x00, self.error])
        if command_id == 0x0706:  # EMB_SEWING_INFO_REQUEST
            stitches = len(self.received) // 4
            return header + struct.pack("<hhhhHHH", 0, 0, 0, 0, 0, stitches, 0)
        if command_id == 0x0707:  # PATTERN_SEWING_INFO
            return header + struct.pack("<Hhhhh", self.current_stitch, 0, 0, 0, 0)
        if command_id == 0x0702:  # PATTERN_UUID_REQUEST
            return header + self.pattern_uuid
        if command_id == 0x0708:  # EMB_SEWING_DATA_DELETE
            self.received = bytearray()
            self.pattern_uuid = bytes(PP1Constants.UUID_LENGTH)
            return header + b"\x00"
        if command_id == 0x1200:  # SEND_DATA_INFO
            self.announced_length = int.from_bytes(payload[1:5], "little")
            self.received = bytearray()
            return header + b"\x00"
        if command_id == 0x1201:  # SEND_DATA
            self.received += payload[4:-1]
            done = len(self.received) >= self.announced_length
            return header + (b"\x00" if done else b"\x02")
        if command_id == 0x070A:  # EMB_UUID_SEND
            self.pattern_uuid = bytes(payload[: PP1Constants.UUID_LENGTH])
            return header + b"\x00"
        if command_id == 0x0705:  # LAYOUT_SEND
            self.layout = bytes(payload)
            return header + b"\x00"
        if command_id == 0x070E:  # START_SEWING
            self.status = 0x30
            return header + b"\x00"
        if command_id == 0x0704:  # MASK_TRACE
            self.status = 0x21
            return header + b"\x00"
        return header + b"\x00"
