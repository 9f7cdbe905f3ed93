"""Raw frame logger for PP1 link inspection.

Captures every frame written to and read from the machine, unfiltered.
Used for protocol debugging and for diffing an upload against a capture
from the vendor app.
"""

from datetime import datetime, timezone
from pathlib import Path

from .protocol import command_name


def _rows(data: bytes, fmt: str) -> str:
    cells = [fmt.format(b) for b in data]
    lines = [" ".join(cells[i : i + 16]) for i in range(0, len(cells), 16)]
    return "\n       ".join(lines)


class ByteDumpLogger:
    """Log raw PP1 frames.

    Creates two files:
    - .dump: binary dump of all I/O
    - .dump.txt: human-readable hex/decimal with command names
    """

    @staticmethod
    def _iso_timestamp() -> str:
        """UTC ISO-8601 timestamp with millisecond precision."""
        return (
            datetime.now(timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

    def __init__(self, base_path: str):
        """Create {base_path}.dump and {base_path}.dump.txt."""
        self.base_path = Path(base_path)
        self.binary_file = open(f"{base_path}.dump", "wb")
        self.text_file = open(f"{base_path}.dump.txt", "w")

        self.text_file.write(f"PP1 BLE I/O Dump - {self._iso_timestamp()}\n")
        self.text_file.write("=" * 70 + "\n\n")
        self.text_file.flush()

    def _write_block(self, direction: str, data: bytes, description: str = ""):
        self.binary_file.write(f"{direction} ".encode() + data + b"\n")
        self.binary_file.flush()

        self.text_file.write(f"[{self._iso_timestamp()}] {direction} ({len(data)} bytes)")
        if description:
            self.text_file.write(f": {description}")
        self.text_file.write("\n")
        self.text_file.write(f"  HEX: {_rows(data, '{:02x}')}\n")
        self.text_file.write(f"  DEC: {_rows(data, '{:3d}')}\n")

    def log_send(self, data: bytes, description: str = ""):
        """Log a frame written to the machine."""
        self._write_block("SEND", data, description)
        self.text_file.write("\n")
        self.text_file.flush()

    def log_recv(self, data: bytes):
        """Log a response read from the machine (empty reads are skipped)."""
        if not data:
            return
        self._write_block("RECV", data)
        if len(data) >= 2:
            echoed = int.from_bytes(data[:2], "big")
            self.text_file.write(f"  -> {command_name(echoed)}")
            if len(data) >= 3:
                self.text_file.write(f" result={data[2]:#04x}")
            self.text_file.write("\n")
        self.text_file.write("\n")
        self.text_file.flush()

    def log_error(self, message: str):
        self.text_file.write(f"[{self._iso_timestamp()}] ERROR: {message}\n\n")
        self.text_file.flush()

    def close(self):
        if self.binary_file and not self.binary_file.closed:
            self.binary_file.close()
        if self.text_file and not self.text_file.closed:
            self.text_file.write(f"\nLog closed: {self._iso_timestamp()}\n")
            self.text_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
