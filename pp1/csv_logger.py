"""CSV logging utilities for PP1 link operations.

Provides CSVLogger for tracking queued device exchanges with timing,
throughput and upload progress.
"""

from __future__ import annotations
import csv
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

COLUMNS = [
    "session_start",
    "timestamp",
    "elapsed_s",
    "phase",
    "operation",
    "duration_ms",
    "bytes_transferred",
    "cumulative_bytes",
    "throughput_kbps",
    "progress_pct",
    "state",
    "response_code",
    "machine_status",
]


class CSVLogger:
    """Logs PP1 operations to a CSV file, one row per exchange.

    Usage:
        with CSVLogger("upload.csv") as log:
            queue = CommandQueue(transport, csv_logger=log)
    """

    def __init__(self, csv_path: str):
        """Create (or overwrite) `csv_path` and write the header row."""
        self.csv_path = Path(csv_path)
        self.csv_file = open(self.csv_path, "w", newline="")
        self.csv_writer = csv.writer(self.csv_file)
        self.csv_writer.writerow(COLUMNS)

        self.start_time = time.time()
        self.session_start_str = datetime.fromtimestamp(self.start_time).strftime(
            "%Y-%m-%d %H:%M:%S"
        )
        self.cumulative_bytes = 0

    def log_operation(
        self,
        phase: str,
        operation: str,
        duration_ms: float,
        bytes_transferred: int = 0,
        progress_pct: Optional[float] = None,
        state: str = "ACTIVE",
        response_code: str = "",
        machine_status: str = "",
    ):
        """Log one operation.

        Args:
            phase: read, control, upload or transfer
            operation: command name (MACHINE_STATE, SEND_DATA 0+500/1200, ...)
            duration_ms: write-settle-read duration in milliseconds
            bytes_transferred: bytes moved in this exchange
            progress_pct: upload progress 0-100
            state: COMPLETE, ERROR, ...
            response_code: first payload byte of the response, hex
            machine_status: decoded MachineStatus name, if known
        """
        self.cumulative_bytes += bytes_transferred
        throughput_kbps = (
            (bytes_transferred / 1024) / (duration_ms / 1000) if duration_ms > 0 else 0
        )
        elapsed_s = time.time() - self.start_time
        now_str = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        self.csv_writer.writerow(
            [
                self.session_start_str,
                now_str,
                f"{elapsed_s:.3f}",
                phase,
                operation,
                f"{duration_ms:.0f}",
                bytes_transferred,
                self.cumulative_bytes,
                f"{throughput_kbps:.2f}",
                f"{progress_pct:.1f}" if progress_pct is not None else "",
                state,
                response_code,
                machine_status,
            ]
        )
        self.csv_file.flush()

    def close(self):
        if self.csv_file and not self.csv_file.closed:
            self.csv_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
