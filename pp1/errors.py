"""PP1 error taxonomy.

Every exception raised by the library carries an `ErrorKind` so callers can
branch on `err.kind` instead of matching exception classes.
"""

from __future__ import annotations
from enum import Enum


class ErrorKind(Enum):
    NOT_CONNECTED = "not_connected"
    DISCONNECTED = "disconnected"
    MALFORMED_RESPONSE = "malformed_response"
    UPLOAD_REJECTED = "upload_rejected"
    COORDINATE_OUT_OF_RANGE = "coordinate_out_of_range"
    TRANSFER_INCOMPLETE = "transfer_incomplete"
    LINK_FAILURE = "link_failure"


class PP1Error(Exception):
    """Base class for PP1 protocol and codec errors."""

    kind: ErrorKind = ErrorKind.LINK_FAILURE

    def __init__(self, message: str = "", kind: ErrorKind = None):
        super().__init__(message or self.__class__.__doc__)
        if kind is not None:
            self.kind = kind


class NotConnectedError(PP1Error):
    """No transport attached."""

    kind = ErrorKind.NOT_CONNECTED


class DisconnectedError(PP1Error):
    """Device disconnected before the operation could run."""

    kind = ErrorKind.DISCONNECTED


class MalformedResponseError(PP1Error):
    """Response frame too short or garbled."""

    kind = ErrorKind.MALFORMED_RESPONSE


class LinkError(PP1Error):
    """Transport failed while writing or reading."""

    kind = ErrorKind.LINK_FAILURE


class UploadRejectedError(PP1Error):
    """Device returned a non-zero acceptance code."""

    kind = ErrorKind.UPLOAD_REJECTED

    def __init__(self, message: str = "", step=None, code: int = None):
        super().__init__(message)
        self.step = step
        self.code = code


class TransferIncompleteError(PP1Error):
    """Buffer exhausted without the device signalling completion."""

    kind = ErrorKind.TRANSFER_INCOMPLETE


class CoordinateOutOfRangeError(PP1Error, ValueError):
    """Stitch coordinate does not fit the 13-bit PEN range."""

    kind = ErrorKind.COORDINATE_OUT_OF_RANGE

    def __init__(self, x: int, y: int, index: int = None):
        where = f" at stitch {index}" if index is not None else ""
        super().__init__(f"Coordinate ({x}, {y}){where} outside PEN range")
        self.x = x
        self.y = y
        self.index = index
