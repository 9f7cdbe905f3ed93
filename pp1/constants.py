"""Shared PP1 constants and environment configuration."""

from __future__ import annotations
import os
from dataclasses import dataclass


class PP1Constants:
    """Single source of truth for PP1 link, codec and upload parameters."""

    # BLE GATT layout
    SERVICE_UUID = "a76eb9e0-f3ac-4990-84cf-3a94d2426b2b"
    WRITE_CHAR_UUID = "a76eb9e2-f3ac-4990-84cf-3a94d2426b2b"
    READ_CHAR_UUID = "a76eb9e1-f3ac-4990-84cf-3a94d2426b2b"

    # Exchange timing
    SETTLE_DELAY_S = 0.05

    # Upload
    CHUNK_SIZE = 500  # well under the negotiated BLE MTU
    DATA_TYPE_PEN = 0x03
    UUID_LENGTH = 16

    # PEN geometry (device units, 0.1 mm)
    COORD_MIN = -4096
    COORD_MAX = 4095
    LONG_JUMP_THRESHOLD = 50.0
    LOCK_STITCH_COUNT = 8
    LOCK_TARGET_LENGTH = 8.0
    LOCK_SCALE = 0.05


# Used when a design carries no thread metadata
DEFAULT_THREAD_PALETTE = (
    "#FF0000",
    "#00FF00",
    "#0000FF",
    "#FFFF00",
    "#FF00FF",
    "#00FFFF",
    "#FFA500",
    "#800080",
)


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class PP1Config:
    settle_delay: float = PP1Constants.SETTLE_DELAY_S
    chunk_size: int = PP1Constants.CHUNK_SIZE
    mock_device: bool = False

    @classmethod
    def from_env(cls) -> "PP1Config":
        """Build config from PP1_SETTLE_DELAY_MS, PP1_CHUNK_SIZE, PP1_MOCK_DEVICE."""
        settle_ms = os.getenv("PP1_SETTLE_DELAY_MS")
        chunk = os.getenv("PP1_CHUNK_SIZE")
        return cls(
            settle_delay=(
                float(settle_ms) / 1000.0 if settle_ms else PP1Constants.SETTLE_DELAY_S
            ),
            chunk_size=int(chunk) if chunk else PP1Constants.CHUNK_SIZE,
            mock_device=_env_bool("PP1_MOCK_DEVICE"),
        )
