from __future__ import annotations

import threading

from rigcalib.errors import CalibrationCancelled


class CancellationToken:
    """Shared cancellation flag, polled by workers at every frame read and before each fit."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CalibrationCancelled("calibration cancelled")
