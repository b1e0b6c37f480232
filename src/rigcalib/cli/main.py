from __future__ import annotations

import argparse
import logging
from pathlib import Path

from rigcalib.calibration.orchestrator import CalibrationOrchestrator
from rigcalib.config import load_calibration_config
from rigcalib.errors import ConfigurationError
from rigcalib.events import Cancelled, Completed, Failed, Progress
from rigcalib.log import setup_logger
from rigcalib.reprojection.camera_rig import load_camera_rig, missing_parameter_files


def _print_event(event: object) -> None:
    if isinstance(event, Progress):
        if event.frames_total > 0:
            pct = 100.0 * min(event.frames_done, event.frames_total) / event.frames_total
            print(f"[{event.unit}] {event.frames_done}/{event.frames_total} frames ({pct:.0f}%)")
    elif isinstance(event, Completed):
        errs = ", ".join(f"{cam}={err:.4f}" for cam, err in sorted(event.intrinsics_errors.items()))
        print(f"[{event.unit}] done: mean reprojection error {event.mean_reprojection_error:.4f}")
        if errs:
            print(f"[{event.unit}] intrinsics errors: {errs}")
        for path in event.written:
            print(f"Wrote {path}")
    elif isinstance(event, Failed):
        print(f"[{event.unit}] FAILED: {event.message}")
    elif isinstance(event, Cancelled):
        print(f"[{event.unit}] cancelled")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="rigcalib")
    sub = parser.add_subparsers(dest="cmd", required=True)

    cal = sub.add_parser("calibrate", help="Calibrate every camera pair/triplet listed in a config file.")
    cal.add_argument("config", type=Path)
    cal.add_argument("--workers", type=int, default=None, help="Thread pool size (default: Python's choice).")
    cal.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    cal.add_argument("--log-file", type=Path, default=None)

    intr = sub.add_parser(
        "calibrate-intrinsics",
        help="Calibrate cameras from dedicated single-camera recordings under paths.intrinsics_path.",
    )
    intr.add_argument("config", type=Path)
    intr.add_argument("cameras", nargs="+")
    intr.add_argument("--workers", type=int, default=None)
    intr.add_argument("--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    intr.add_argument("--log-file", type=Path, default=None)

    chk = sub.add_parser("check-params", help="Check that a rig's intrinsics/extrinsics files exist and load.")
    chk.add_argument("--intrinsics", type=Path, required=True)
    chk.add_argument("--extrinsics", type=Path, required=True)
    chk.add_argument("--primary", type=str, required=True)
    chk.add_argument("--cameras", nargs="+", required=True)

    args = parser.parse_args(argv)

    if args.cmd in ("calibrate", "calibrate-intrinsics"):
        setup_logger(getattr(logging, args.log_level), args.log_file)
        config, topologies = load_calibration_config(args.config)
        orchestrator = CalibrationOrchestrator(config, max_workers=args.workers, on_event=_print_event)
        if args.cmd == "calibrate" and not topologies:
            raise ConfigurationError(f"{args.config} lists no calibration_units")
        try:
            if args.cmd == "calibrate":
                results = orchestrator.run(topologies)
            else:
                results = orchestrator.run_intrinsics(args.cameras)
        except KeyboardInterrupt:
            orchestrator.cancel()
            raise
        return 0 if all(isinstance(r, Completed) for r in results) else 1

    if args.cmd == "check-params":
        try:
            missing = missing_parameter_files(args.intrinsics, args.extrinsics, args.cameras, args.primary)
            if missing:
                for path in missing:
                    print(f"Missing {path}")
                return 1
            rig = load_camera_rig(args.intrinsics, args.extrinsics, args.cameras, args.primary)
        except ConfigurationError as e:
            print(f"Invalid parameters: {e}")
            return 1
        print(f"OK: {rig.num_cameras} cameras, primary {args.primary}")
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
