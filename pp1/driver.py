"""PP1 driver: machine reads, control commands and pattern upload.

Every call goes through one CommandQueue, so reads, control commands and
uploads issued concurrently still reach the machine one exchange at a time.
Reads are idempotent and safe to retry; an upload that failed after its first
chunk is not (see UploadResult.retry_safe).
"""

from __future__ import annotations
import logging
from typing import Callable, Iterable, Optional

from . import protocol
from .command_queue import CommandQueue
from .constants import PP1Config
from .errors import PP1Error
from .pen import PenEncoding, encode_stitches
from .protocol import MachineInfo, MachineState, PatternInfo, PP1Command, SewingProgress
from .uploader import Layout, PatternUploader, UploadResult

logger = logging.getLogger(__name__)


class BrotherPP1:
    """Brother PP1 embroidery machine over a request/response link.

    Args:
        config: PP1Config (settle delay, chunk size); defaults from environment
        csv_logger: optional CSVLogger, one row per exchange
        byte_logger: optional ByteDumpLogger for raw frames
        uuid_factory: pattern id source for uploads (injectable for tests)
    """

    def __init__(
        self,
        config: PP1Config = None,
        csv_logger=None,
        byte_logger=None,
        uuid_factory: Callable[[], bytes] = None,
    ):
        self.config = config or PP1Config.from_env()
        self.csv_logger = csv_logger
        self.queue = CommandQueue(
            settle_delay=self.config.settle_delay,
            csv_logger=csv_logger,
            byte_logger=byte_logger,
        )
        kwargs = {"uuid_factory": uuid_factory} if uuid_factory else {}
        self.uploader = PatternUploader(
            self.queue, chunk_size=self.config.chunk_size, **kwargs
        )
        self.machine_info: Optional[MachineInfo] = None

    # -- connection ---------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.queue.is_connected

    async def connect(self, transport) -> Optional[MachineInfo]:
        """Attach a connected transport and read machine info.

        The first read also primes the link; a failure there is logged and
        None is returned, the transport stays attached.
        """
        self.queue.attach(transport)
        try:
            self.machine_info = await self.get_machine_info()
        except PP1Error as e:
            logger.warning(f"Initial MACHINE_INFO read failed: {e}")
            return None
        logger.info(
            f"Connected to {self.machine_info.model_number} "
            f"(sw {self.machine_info.software_version})"
        )
        return self.machine_info

    async def disconnect(self):
        """Fail queued commands and close the transport."""
        transport = self.queue.transport
        self.queue.detach()
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                logger.warning(f"Disconnect warning: {e}")
        self.machine_info = None
        logger.info("Disconnected from PP1")

    # -- reads --------------------------------------------------------------

    async def get_machine_info(self) -> MachineInfo:
        response = await self.queue.exchange(PP1Command.MACHINE_INFO, phase="read")
        return protocol.decode_machine_info(response)

    async def get_machine_state(self) -> MachineState:
        response = await self.queue.exchange(PP1Command.MACHINE_STATE, phase="read")
        state = protocol.decode_machine_state(response)
        if self.csv_logger:
            status = state.status
            self.csv_logger.log_operation(
                phase="read",
                operation="STATUS",
                duration_ms=0,
                state="ERROR" if state.has_error else "COMPLETE",
                machine_status=getattr(status, "name", f"{status:#04x}"),
            )
        return state

    async def get_pattern_info(self) -> PatternInfo:
        response = await self.queue.exchange(
            PP1Command.EMB_SEWING_INFO_REQUEST, phase="read"
        )
        return protocol.decode_pattern_info(response)

    async def get_sewing_progress(self) -> SewingProgress:
        response = await self.queue.exchange(
            PP1Command.PATTERN_SEWING_INFO, phase="read"
        )
        return protocol.decode_sewing_progress(response)

    async def get_pattern_uuid(self) -> Optional[bytes]:
        """UUID of the loaded pattern, or None if the machine holds none."""
        response = await self.queue.exchange(
            PP1Command.PATTERN_UUID_REQUEST, phase="read"
        )
        return protocol.decode_pattern_uuid(response)

    # -- control ------------------------------------------------------------

    async def delete_design(self):
        await self.uploader.delete()

    async def start_sewing(self):
        await self.queue.exchange(PP1Command.START_SEWING, phase="control")

    async def resume_sewing(self):
        # Same command as start: the machine resumes from its stored position
        await self.queue.exchange(
            PP1Command.START_SEWING, name="START_SEWING (resume)", phase="control"
        )

    async def start_mask_trace(self):
        await self.queue.exchange(
            PP1Command.MASK_TRACE, protocol.MASK_TRACE_PAYLOAD, phase="control"
        )

    # -- upload -------------------------------------------------------------

    async def upload(
        self,
        pen_bytes: bytes,
        on_progress: Callable[[float], None] = None,
        layout: Layout = None,
    ) -> UploadResult:
        return await self.uploader.upload(pen_bytes, on_progress, layout)

    async def upload_stitches(
        self,
        stitches: Iterable,
        on_progress: Callable[[float], None] = None,
        layout: Layout = None,
    ) -> tuple:
        """Encode and upload a stitch list. Returns (PenEncoding, UploadResult).

        Encoding errors (CoordinateOutOfRangeError) are raised before any
        command is queued.
        """
        encoding: PenEncoding = encode_stitches(stitches)
        if (
            self.machine_info is not None
            and not encoding.bounds.fits_hoop(
                self.machine_info.max_width, self.machine_info.max_height
            )
        ):
            logger.warning(
                f"Design {encoding.bounds.width}x{encoding.bounds.height} exceeds "
                f"hoop {self.machine_info.max_width}x{self.machine_info.max_height}"
            )
        result = await self.upload(encoding.pen_bytes, on_progress, layout)
        return encoding, result
