from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from rigcalib.calibration.cancellation import CancellationToken
from rigcalib.calibration.intrinsics import calibrate_intrinsics_recording
from rigcalib.calibration.params_io import save_intrinsics
from rigcalib.calibration.rig import calibrate_unit, write_unit
from rigcalib.config import CalibrationConfig, CameraTopology
from rigcalib.core.detector import ChessboardCornerDetector, CornerDetector
from rigcalib.core.video import FrameSource, open_video
from rigcalib.errors import CalibrationCancelled, RigCalibError
from rigcalib.events import Cancelled, Completed, EventCallback, Failed, Progress, TerminalEvent

logger = logging.getLogger(__name__)


class CalibrationOrchestrator:
    """
    Run independent calibration units on a bounded thread pool.

    Every worker emits non-decreasing ``Progress`` events followed by exactly one terminal
    event (``Completed``, ``Failed`` or ``Cancelled``). Events are delivered to ``on_event``
    one at a time. A unit writes its parameter files only once it has fully succeeded.
    """

    def __init__(
        self,
        config: CalibrationConfig,
        *,
        detector: CornerDetector | None = None,
        open_source: Callable[[Path], FrameSource] = open_video,
        max_workers: int | None = None,
        on_event: EventCallback | None = None,
    ) -> None:
        self.config = config
        self.detector = detector or ChessboardCornerDetector(config.pattern_width, config.pattern_height)
        self.open_source = open_source
        self.max_workers = max_workers
        self.on_event = on_event
        self.token = CancellationToken()
        self._lock = threading.Lock()
        self._last_progress: dict[int, int] = {}

    def cancel(self) -> None:
        self.token.cancel()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def _emit(self, event: object) -> None:
        with self._lock:
            if isinstance(event, Progress):
                if event.frames_done < self._last_progress.get(event.worker_id, 0):
                    return
                self._last_progress[event.worker_id] = event.frames_done
            if self.on_event is not None:
                self.on_event(event)

    def _progress_for(self, worker_id: int, unit: str) -> Callable[[int, int], None]:
        def report(done: int, total: int) -> None:
            self._emit(Progress(frames_done=int(done), frames_total=int(total), worker_id=worker_id, unit=unit))

        return report

    def _guarded(self, worker_id: int, unit: str, work: Callable[[], Completed]) -> TerminalEvent:
        import cv2  # type: ignore

        event: TerminalEvent
        try:
            self.token.raise_if_cancelled()
            event = work()
        except CalibrationCancelled:
            logger.info("%s: cancelled, nothing written", unit)
            event = Cancelled(worker_id=worker_id, unit=unit)
        except (RigCalibError, cv2.error) as e:
            logger.error("%s: calibration failed: %s", unit, e)
            message = str(e) if unit in str(e) else f"{unit}: {e}"
            event = Failed(message=message, worker_id=worker_id, unit=unit)
        except Exception as e:
            # Unexpected errors end this worker only.
            logger.exception("%s: unexpected error", unit)
            event = Failed(message=f"{unit}: {type(e).__name__}: {e}", worker_id=worker_id, unit=unit)
        self._emit(event)
        return event

    def _run_unit(self, worker_id: int, topology: CameraTopology) -> TerminalEvent:
        unit = topology.name

        def work() -> Completed:
            logger.info("%s: starting calibration", unit)
            result = calibrate_unit(
                self.config,
                topology,
                detector=self.detector,
                open_source=self.open_source,
                cancel=self.token,
                progress=self._progress_for(worker_id, unit),
            )
            written = write_unit(self.config, result, cancel=self.token)
            return Completed(
                mean_reprojection_error=result.mean_error,
                intrinsics_errors=dict(result.intrinsics_errors),
                worker_id=worker_id,
                unit=unit,
                written=tuple(str(p) for p in written),
            )

        return self._guarded(worker_id, unit, work)

    def _run_camera(self, worker_id: int, camera: str) -> TerminalEvent:
        unit = f"camera {camera}"

        def work() -> Completed:
            intrinsics, err = calibrate_intrinsics_recording(
                self.config,
                camera,
                detector=self.detector,
                open_source=self.open_source,
                cancel=self.token,
                progress=self._progress_for(worker_id, unit),
            )
            self.token.raise_if_cancelled()
            path = save_intrinsics(self.config.intrinsics_dir, camera, intrinsics)
            logger.info("Wrote %s", path)
            return Completed(
                mean_reprojection_error=err,
                intrinsics_errors={camera: err},
                worker_id=worker_id,
                unit=unit,
                written=(str(path),),
            )

        return self._guarded(worker_id, unit, work)

    def _dispatch(self, jobs: Sequence[Callable[[], TerminalEvent]]) -> list[TerminalEvent]:
        if not jobs:
            return []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(job) for job in jobs]
            try:
                return [f.result() for f in futures]
            except KeyboardInterrupt:
                # Leaving the block waits for the workers, so stop them first.
                self.cancel()
                raise

    def run(self, topologies: Sequence[CameraTopology]) -> list[TerminalEvent]:
        """Calibrate every pair/triplet. Returns the terminal events in input order."""
        jobs = [lambda i=i, t=t: self._run_unit(i, t) for i, t in enumerate(topologies)]
        return self._dispatch(jobs)

    def run_intrinsics(self, cameras: Sequence[str]) -> list[TerminalEvent]:
        """Calibrate each camera from its dedicated intrinsics recording."""
        jobs = [lambda i=i, c=c: self._run_camera(i, c) for i, c in enumerate(cameras)]
        return self._dispatch(jobs)
