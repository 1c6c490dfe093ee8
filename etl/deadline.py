# etl/deadline.py
import threading
import time
from typing import Optional

from etl.errors import IngestCancelled, IngestTimeout


class Deadline:
    """
    Cooperative time bound for one ingestion pass.

    The loader calls check() between rows; nothing is interrupted from the
    outside, so the transaction is always rolled back by its owner.
    """

    def __init__(self, timeout_sec: Optional[float] = None, cancel_event: Optional[threading.Event] = None):
        self._expires_at = None if timeout_sec is None else time.monotonic() + timeout_sec
        self._cancel_event = cancel_event or threading.Event()

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def remaining(self) -> Optional[float]:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - time.monotonic())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self, line: Optional[int] = None) -> None:
        where = f" at line {line}" if line is not None else ""
        if self.cancelled:
            raise IngestCancelled(f"ingestion cancelled{where}")
        if self.expired():
            raise IngestTimeout(f"ingestion deadline exceeded{where}")
