"""PEN upload sequence.

  DELETE -> ANNOUNCE (length + 16-bit sum) -> TRANSFER (chunks with 8-bit sum)
  -> IDENTIFY (random 128-bit id) -> LAYOUT

Each step needs the previous one to succeed. The first failure stops the
sequence and is reported with its step. Nothing is rolled back: after a failed
transfer the machine may hold a partial design, so callers must delete before
retrying.
"""

from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from . import protocol
from .constants import PP1Constants
from .errors import (
    ErrorKind,
    PP1Error,
    TransferIncompleteError,
    UploadRejectedError,
)
from .protocol import PP1Command

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


class UploadStep(Enum):
    DELETE = "delete"
    ANNOUNCE = "announce"
    TRANSFER = "transfer"
    IDENTIFY = "identify"
    LAYOUT = "layout"


@dataclass
class Layout:
    """Placement of the design in the hoop. All zero means "as encoded"."""

    move_x: int = 0
    move_y: int = 0
    size_x: int = 0
    size_y: int = 0
    rotate: int = 0
    flip: int = 0
    frame: int = 0

    def to_payload(self) -> bytes:
        return protocol.build_layout(
            self.move_x,
            self.move_y,
            self.size_x,
            self.size_y,
            self.rotate,
            self.flip,
            self.frame,
        )


@dataclass
class UploadResult:
    ok: bool
    uuid: Optional[bytes] = None
    failed_step: Optional[UploadStep] = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    bytes_sent: int = 0
    total_bytes: int = 0
    chunks: int = 0

    @property
    def retry_safe(self) -> bool:
        """False once any chunk reached the machine (delete before retrying)."""
        return self.ok or self.chunks == 0


def _default_uuid() -> bytes:
    return uuid.uuid4().bytes


class PatternUploader:
    """Drives one upload at a time over a CommandQueue.

    Args:
        queue: CommandQueue shared with every other device operation
        chunk_size: SEND_DATA payload size
        uuid_factory: returns the 16-byte pattern id; injectable for tests
    """

    def __init__(
        self,
        queue,
        chunk_size: int = PP1Constants.CHUNK_SIZE,
        uuid_factory: Callable[[], bytes] = _default_uuid,
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.queue = queue
        self.chunk_size = chunk_size
        self.uuid_factory = uuid_factory

    async def _expect_ok(
        self, step: UploadStep, command: PP1Command, payload: bytes = b""
    ):
        response = await self.queue.exchange(command, payload, phase="upload")
        code = protocol.result_code(response, command.name)
        if code != protocol.RESULT_OK:
            raise UploadRejectedError(
                f"{command.name} rejected (code {code:#04x})", step=step, code=code
            )

    async def delete(self):
        await self.queue.exchange(PP1Command.EMB_SEWING_DATA_DELETE, phase="upload")

    async def announce(self, data: bytes):
        await self._expect_ok(
            UploadStep.ANNOUNCE,
            PP1Command.SEND_DATA_INFO,
            protocol.build_data_info(len(data), protocol.checksum16(data)),
        )

    async def transfer(
        self,
        data: bytes,
        on_progress: Optional[ProgressCallback] = None,
        state: dict = None,
    ) -> int:
        """Send chunks until the machine reports completion. Returns chunk count."""
        total = len(data)
        offset = 0
        chunks = 0
        state = state if state is not None else {}

        while offset < total:
            chunk = data[offset : offset + self.chunk_size]
            response = await self.queue.exchange(
                PP1Command.SEND_DATA,
                protocol.build_data_chunk(offset, chunk),
                name=f"SEND_DATA {offset}+{len(chunk)}/{total}",
                phase="transfer",
            )
            offset += len(chunk)
            chunks += 1
            state["bytes_sent"] = offset
            state["chunks"] = chunks

            code = protocol.result_code(response, "SEND_DATA")
            if code == protocol.RESULT_OK:
                if offset < total:
                    logger.info(
                        f"Machine reported transfer complete at {offset}/{total} bytes"
                    )
                self._report(on_progress, 100.0)
                return chunks

            if code != protocol.TRANSFER_CONTINUE:
                logger.debug(f"SEND_DATA returned {code:#04x}, continuing")

            # 100% is reserved for the completion signal
            if offset < total:
                self._report(on_progress, offset * 100.0 / total)

        raise TransferIncompleteError(
            f"Sent all {total} bytes in {chunks} chunks without completion signal"
        )

    def _report(self, on_progress: Optional[ProgressCallback], pct: float):
        csv_logger = getattr(self.queue, "csv_logger", None)
        if csv_logger:
            csv_logger.log_operation(
                phase="transfer",
                operation="PROGRESS",
                duration_ms=0,
                progress_pct=pct,
                state="COMPLETE" if pct >= 100.0 else "ACTIVE",
            )
        if on_progress:
            on_progress(pct)

    async def identify(self, pattern_id: bytes):
        if len(pattern_id) != PP1Constants.UUID_LENGTH:
            raise ValueError(f"Pattern id must be {PP1Constants.UUID_LENGTH} bytes")
        await self._expect_ok(UploadStep.IDENTIFY, PP1Command.EMB_UUID_SEND, pattern_id)

    async def send_layout(self, layout: Layout):
        await self.queue.exchange(
            PP1Command.LAYOUT_SEND, layout.to_payload(), phase="upload"
        )

    async def upload(
        self,
        data: bytes,
        on_progress: Optional[ProgressCallback] = None,
        layout: Optional[Layout] = None,
    ) -> UploadResult:
        """Run the full upload sequence.

        Returns an UploadResult; `ok` is False when any step failed, with
        `failed_step` and `error_kind` saying where and why.
        """
        data = bytes(data)
        if not data:
            raise ValueError("Cannot upload an empty design")

        layout = layout or Layout()
        session = {"bytes_sent": 0, "chunks": 0}
        step = UploadStep.DELETE
        pattern_id = None
        logger.info(f"Uploading {len(data)} bytes")

        try:
            await self.delete()

            step = UploadStep.ANNOUNCE
            await self.announce(data)

            step = UploadStep.TRANSFER
            await self.transfer(data, on_progress, session)

            step = UploadStep.IDENTIFY
            pattern_id = bytes(self.uuid_factory())
            await self.identify(pattern_id)

            step = UploadStep.LAYOUT
            await self.send_layout(layout)
        except PP1Error as e:
            if isinstance(e, UploadRejectedError) and e.step is None:
                e.step = step
            logger.error(f"Upload failed at {step.value}: {e}")
            return UploadResult(
                ok=False,
                failed_step=step,
                error_kind=e.kind,
                message=str(e),
                bytes_sent=session["bytes_sent"],
                total_bytes=len(data),
                chunks=session["chunks"],
            )

        logger.info(f"Pattern uploaded, uuid={pattern_id.hex()}")
        return UploadResult(
            ok=True,
            uuid=pattern_id,
            message=f"Upload complete ({session['chunks']} chunks)",
            bytes_sent=session["bytes_sent"],
            total_bytes=len(data),
            chunks=session["chunks"],
        )
