from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

import numpy as np

from pinholerig.calibration import CalibrationError
from pinholerig.core.measurements import KeyframeState, KFCamMeasurements, LandmarkMap
from pinholerig.core.pinhole import PinholeCamera
from pinholerig.core.pose import RigidTransform
from pinholerig.core.rig import CameraRig

logger = logging.getLogger(__name__)

PROJECTION_SCHEMA = "pinholerig.projection.v0"


def make_test_rig(num_cameras: int) -> CameraRig:
    """Test cameras spread evenly about the body y-axis, all at the body origin."""
    if num_cameras < 1:
        raise ValueError("num_cameras must be >= 1")
    cams = []
    for i in range(num_cameras):
        angle = 2.0 * np.pi * i / num_cameras
        T_b_c = RigidTransform.from_rotvec(np.array([0.0, angle, 0.0]), np.zeros((3,)))
        cams.append(PinholeCamera.create_test_camera(T_b_c))
    return CameraRig(cams)


def load_keyframe_states(path: Path) -> list[KeyframeState]:
    with np.load(str(path)) as npz:
        if "T_w_b" not in npz:
            raise ValueError(f"{path} missing key: T_w_b")
        T_w_b = np.asarray(npz["T_w_b"], dtype=np.float64)
        timestamps = np.asarray(npz["timestamp"], dtype=np.float64) if "timestamp" in npz else None
    if T_w_b.ndim != 3 or T_w_b.shape[1:] != (4, 4):
        raise ValueError("T_w_b must have shape (K,4,4)")
    states = []
    for k in range(T_w_b.shape[0]):
        ts = float(timestamps[k]) if timestamps is not None else float(k)
        states.append(KeyframeState(T_w_b=RigidTransform.from_matrix(T_w_b[k]), timestamp=ts))
    return states


def projection_report(states: list[KeyframeState], meas: KFCamMeasurements) -> dict[str, Any]:
    return {
        "schema_version": PROJECTION_SCHEMA,
        "keyframes": [
            {
                "timestamp": float(state.timestamp),
                "cameras": [{"camera": cam_idx, "observations": m.as_records()} for cam_idx, m in enumerate(kf_meas)],
            }
            for state, kf_meas in zip(states, meas)
        ],
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="pinholerig")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    mk = sub.add_parser("make-test-rig", help="Write a synthetic calibration directory (cam0, cam1, ...).")
    mk.add_argument("--out", type=Path, required=True)
    mk.add_argument("--num-cameras", type=int, default=2)
    mk.add_argument("--margin-ratio", type=float, default=0.0)

    info = sub.add_parser("info", help="Print the cameras of a calibration directory.")
    info.add_argument("calib_dir", type=Path)

    proj = sub.add_parser("project", help="Project a landmark map into every camera of every keyframe.")
    proj.add_argument("--calib-dir", type=Path, required=True)
    proj.add_argument("--map", type=Path, required=True, help="NPZ with ids (N,) and XYZ_world (N,3).")
    proj.add_argument("--poses", type=Path, required=True, help="NPZ with T_w_b (K,4,4) and optional timestamp (K,).")
    proj.add_argument("--out", type=Path, required=True, help="Output JSON report.")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.cmd == "make-test-rig":
            rig = make_test_rig(args.num_cameras)
            for cam in rig:
                cam.set_margin(args.margin_ratio)
            rig.save(args.out)
            print(f"Wrote {len(rig)} cameras to {args.out}")
            return 0

        if args.cmd == "info":
            rig = CameraRig.from_dir(args.calib_dir)
            for i, cam in enumerate(rig):
                print(f"[cam{i}]")
                print(cam)
            return 0

        if args.cmd == "project":
            rig = CameraRig.from_dir(args.calib_dir)
            try:
                landmark_map = LandmarkMap.load_npz(args.map)
                states = load_keyframe_states(args.poses)
            except (OSError, ValueError) as e:
                logger.error("Invalid map or poses input: %s", e)
                return 1
            logger.info(
                "Projecting %d landmarks into %d cameras x %d keyframes", len(landmark_map), len(rig), len(states)
            )
            meas = rig.project(states, landmark_map)
            args.out.parent.mkdir(parents=True, exist_ok=True)
            report = projection_report(states, meas)
            args.out.write_text(json.dumps(report, indent=2), encoding="utf-8")
            print(f"Wrote {args.out}")
            return 0
    except CalibrationError as e:
        logger.error("Calibration error: %s", e)
        return 1

    raise AssertionError(f"Unhandled cmd: {args.cmd}")
