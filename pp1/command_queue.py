"""Sequential command queue for the PP1 link.

The PP1 read characteristic has no multiplexing: a response belongs to
whichever command was written last. Every device exchange therefore goes
through one FIFO queue with a single in-flight slot. A failing operation only
fails its own caller; the queue moves on to the next entry.

There is no application timeout. A read that never returns blocks the queue
until the transport reports a failure or disconnect.
"""

from __future__ import annotations
import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Optional

from . import protocol
from .constants import PP1Constants
from .errors import DisconnectedError, LinkError, NotConnectedError, PP1Error

logger = logging.getLogger(__name__)

Operation = Callable[..., Awaitable]


@dataclass
class _Entry:
    name: str
    operation: Operation
    future: asyncio.Future
    phase: str = "operation"
    bytes_sent: int = 0


class CommandQueue:
    """FIFO of device operations, one executing at a time.

    `enqueue` is the only way in. The pending list and the active slot are
    mutated only by `enqueue`, `_advance` and `fail_pending`.
    """

    def __init__(
        self,
        transport=None,
        settle_delay: float = PP1Constants.SETTLE_DELAY_S,
        csv_logger=None,
        byte_logger=None,
    ):
        self.settle_delay = settle_delay
        self.csv_logger = csv_logger
        self.byte_logger = byte_logger
        self._transport = None
        self._pending: Deque[_Entry] = deque()
        self._active: Optional[_Entry] = None
        self._worker: Optional[asyncio.Task] = None
        if transport is not None:
            self.attach(transport)

    @property
    def transport(self):
        return self._transport

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self._transport.is_connected

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def active_name(self) -> Optional[str]:
        return self._active.name if self._active else None

    def attach(self, transport):
        self._transport = transport
        transport.add_disconnect_callback(self._on_disconnect)

    def detach(self):
        """Drop the transport and fail every operation that has not started."""
        self._transport = None
        self.fail_pending()

    def _on_disconnect(self):
        logger.warning("Link disconnected")
        self.fail_pending()

    def fail_pending(self, reason: str = "Disconnected before command was sent"):
        """Reject queued operations. The active one is left to finish."""
        dropped = 0
        while self._pending:
            entry = self._pending.popleft()
            if not entry.future.done():
                entry.future.set_exception(DisconnectedError(reason))
            dropped += 1
        if dropped:
            logger.info(f"Cleared {dropped} queued command(s)")

    def enqueue(
        self,
        operation: Operation,
        name: str = "operation",
        phase: str = "operation",
        bytes_sent: int = 0,
    ) -> asyncio.Future:
        """Queue `operation(transport)`; returns a future for its result.

        Must be called from a running event loop. Rejects immediately with
        NotConnectedError when no connected transport is attached.
        `bytes_sent` is the written frame size, used only for the CSV log.
        """
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        if not self.is_connected:
            future.set_exception(NotConnectedError(f"Not connected ({name})"))
            return future

        self._pending.append(_Entry(name, operation, future, phase, bytes_sent))
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._advance())
        return future

    async def _advance(self):
        while self._pending:
            entry = self._pending.popleft()
            if entry.future.done():  # cancelled by caller
                continue
            self._active = entry
            t_start = time.time()
            state = "COMPLETE"
            result = None
            try:
                transport = self._transport
                if transport is None or not transport.is_connected:
                    raise DisconnectedError(f"Disconnected before {entry.name}")
                result = await entry.operation(transport)
            except NotConnectedError as e:
                # the link went away after this entry started
                state = "ERROR"
                err = DisconnectedError("Link lost mid-exchange")
                err.__cause__ = e
                self._fail(entry, err)
            except PP1Error as e:
                state = "ERROR"
                self._fail(entry, e)
            except asyncio.CancelledError:
                if not entry.future.done():
                    entry.future.cancel()
                raise
            except Exception as e:
                state = "ERROR"
                if self._transport is None or not self._transport.is_connected:
                    err = DisconnectedError(f"Link lost mid-exchange: {e}")
                else:
                    err = LinkError(f"Link error: {e}")
                err.__cause__ = e
                self._fail(entry, err)
            else:
                if not entry.future.done():
                    entry.future.set_result(result)
            finally:
                self._active = None

            self._log_exchange(entry, state, result, time.time() - t_start)

    def _fail(self, entry: _Entry, err: PP1Error):
        logger.warning(f"{entry.name} failed: {err}")
        if self.byte_logger:
            try:
                self.byte_logger.log_error(f"{entry.name} failed: {err}")
            except Exception as e:
                logger.warning(f"Byte dump write failed: {e}")
        if not entry.future.done():
            entry.future.set_exception(err)

    def _log_exchange(self, entry: _Entry, state: str, result, elapsed_s: float):
        if not self.csv_logger:
            return
        is_frame = isinstance(result, (bytes, bytearray))
        received = len(result) if is_frame else 0
        try:
            self.csv_logger.log_operation(
                phase=entry.phase,
                operation=entry.name,
                duration_ms=elapsed_s * 1000,
                bytes_transferred=entry.bytes_sent + received,
                state=state,
                response_code=(
                    f"{result[2]:#04x}" if is_frame and len(result) > 2 else ""
                ),
            )
        except Exception as e:
            logger.warning(f"CSV log write failed for {entry.name}: {e}")

    async def exchange(
        self,
        command_id: int,
        payload: bytes = b"",
        name: str = None,
        phase: str = "operation",
    ) -> bytes:
        """Write a framed command, wait the settle interval, read the response."""
        frame = protocol.encode_frame(command_id, payload)
        name = name or protocol.command_name(command_id)

        async def operation(transport) -> bytes:
            if self.byte_logger:
                self.byte_logger.log_send(frame, name)
            await transport.write_command(frame)
            if self.settle_delay:
                await asyncio.sleep(self.settle_delay)
            response = bytes(await transport.read_response())
            if self.byte_logger:
                self.byte_logger.log_recv(response)
            logger.debug(f"{name}: sent {frame.hex()} received {response.hex()}")
            return response

        return await self.enqueue(
            operation, name=name, phase=phase, bytes_sent=len(frame)
        )
