"""Brother PP1 embroidery library.

PEN stitch encoding plus the sequential BLE command protocol used to upload,
start and monitor designs. Uses a transport abstraction; BLE is optional.
"""

from .byte_logger import ByteDumpLogger
from .command_queue import CommandQueue
from .csv_logger import CSVLogger
from .driver import BrotherPP1
from .errors import ErrorKind, PP1Error
from .pen import encode_stitches
from .stitches import Stitch, StitchCommand
from .transport import BleakTransport, MockTransport
from .uploader import Layout, PatternUploader, UploadResult, UploadStep

__all__ = [
    "BrotherPP1",
    "CommandQueue",
    "PatternUploader",
    "UploadResult",
    "UploadStep",
    "Layout",
    "BleakTransport",
    "MockTransport",
    "CSVLogger",
    "ByteDumpLogger",
    "ErrorKind",
    "PP1Error",
    "Stitch",
    "StitchCommand",
    "encode_stitches",
]
__version__ = "0.1.0"
