from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Progress:
    frames_done: int
    frames_total: int
    worker_id: int
    unit: str = ""


@dataclass(frozen=True)
class Completed:
    mean_reprojection_error: float
    intrinsics_errors: dict[str, float]
    worker_id: int
    unit: str = ""
    written: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class Failed:
    message: str
    worker_id: int
    unit: str = ""


@dataclass(frozen=True)
class Cancelled:
    worker_id: int
    unit: str = ""


@dataclass(frozen=True)
class ReprojectionUpdated:
    capture: int


TerminalEvent = Completed | Failed | Cancelled
EventCallback = Callable[[object], None]
