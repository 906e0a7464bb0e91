from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from pinholerig.core.pose import RigidTransform

logger = logging.getLogger(__name__)

GEOMETRY_SCHEMA = "pinholerig.pinhole_geometry.v0"
GEOMETRY_FILENAME = "geometry.json"
T_B_C_FILENAME = "T_b_c.txt"
CAMERA_DIR_PREFIX = "cam"


class CalibrationError(ValueError):
    pass


@dataclass(frozen=True)
class PinholeGeometry:
    fx: float
    fy: float
    cx: float
    cy: float
    width_px: int
    height_px: int
    margin_ratio: float = 0.0
    depth_range: tuple[float, float] = (-1.0, math.inf)
    dist_range: tuple[float, float] = (-1.0, math.inf)

    def params(self) -> tuple[float, float, float, float, int, int]:
        return (self.fx, self.fy, self.cx, self.cy, self.width_px, self.height_px)


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise CalibrationError(msg)


def _parse_range(raw: Any, name: str, default: tuple[float, float]) -> tuple[float, float]:
    if raw is None:
        return default
    _require(isinstance(raw, (list, tuple)) and len(raw) == 2, f"{name} must be [min,max]")
    lo, hi = float(raw[0]), float(raw[1])
    _require(lo < hi, f"{name} must satisfy min < max")
    return lo, hi


def _range_to_json(r: tuple[float, float]) -> list[float | str]:
    # JSON has no infinity literal.
    return [v if math.isfinite(v) else ("inf" if v > 0 else "-inf") for v in r]


def camera_dir(root: Path, index: int) -> Path:
    return Path(root) / f"{CAMERA_DIR_PREFIX}{index}"


def parse_geometry(data: dict[str, Any]) -> PinholeGeometry:
    _require(isinstance(data, dict), "geometry must be a JSON object")
    schema_version = data.get("schema_version")
    _require(schema_version == GEOMETRY_SCHEMA, f"schema_version must be {GEOMETRY_SCHEMA}")

    for k in ("fx", "fy", "cx", "cy", "width_px", "height_px"):
        _require(data.get(k) is not None, f"{k} is required")

    try:
        fx, fy = float(data["fx"]), float(data["fy"])
        cx, cy = float(data["cx"]), float(data["cy"])
        w_raw, h_raw = float(data["width_px"]), float(data["height_px"])
        margin_ratio = float(data.get("margin_ratio", 0.0))
    except (TypeError, ValueError) as e:
        raise CalibrationError(f"malformed geometry field: {e}") from e

    _require(w_raw.is_integer() and h_raw.is_integer(), "width_px and height_px must be integers")
    w, h = int(w_raw), int(h_raw)
    _require(all(math.isfinite(v) for v in (fx, fy, cx, cy)), "intrinsics must be finite")
    _require(fx != 0.0 and fy != 0.0, "fx and fy must be non-zero")
    _require(w > 0 and h > 0, "width_px and height_px must be > 0")
    _require(margin_ratio >= 0.0, "margin_ratio must be >= 0")

    try:
        depth_range = _parse_range(data.get("depth_range"), "depth_range", (-1.0, math.inf))
        dist_range = _parse_range(data.get("dist_range"), "dist_range", (-1.0, math.inf))
    except CalibrationError:
        raise
    except (TypeError, ValueError) as e:
        raise CalibrationError(f"malformed range: {e}") from e

    return PinholeGeometry(
        fx=fx,
        fy=fy,
        cx=cx,
        cy=cy,
        width_px=w,
        height_px=h,
        margin_ratio=margin_ratio,
        depth_range=depth_range,
        dist_range=dist_range,
    )


def load_geometry(path: Path) -> PinholeGeometry:
    path = Path(path)
    if not path.exists():
        logger.warning("Missing camera geometry file %s", path)
        raise CalibrationError(f"Missing {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Unreadable camera geometry file %s: %s", path, e)
        raise CalibrationError(f"{path} is not a readable JSON file: {e}") from e
    try:
        return parse_geometry(data)
    except CalibrationError as e:
        logger.warning("Invalid camera geometry file %s: %s", path, e)
        raise CalibrationError(f"{path}: {e}") from e


def save_geometry(path: Path, geo: PinholeGeometry) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    meta: dict[str, Any] = {
        "schema_version": GEOMETRY_SCHEMA,
        "fx": float(geo.fx),
        "fy": float(geo.fy),
        "cx": float(geo.cx),
        "cy": float(geo.cy),
        "width_px": int(geo.width_px),
        "height_px": int(geo.height_px),
        "margin_ratio": float(geo.margin_ratio),
        "depth_range": _range_to_json(geo.depth_range),
        "dist_range": _range_to_json(geo.dist_range),
    }
    path.write_text(json.dumps(meta, indent=2, sort_keys=True), encoding="utf-8")
    return path


def load_T_b_c(path: Path) -> RigidTransform:
    """
    Load the camera pose in the body frame (4x4 text matrix, p_b = T_b_c p_c).
    """
    path = Path(path)
    if not path.exists():
        logger.warning("Missing camera extrinsic file %s", path)
        raise CalibrationError(f"Missing {path}")
    try:
        T = np.loadtxt(path, dtype=np.float64, ndmin=2)
    except (OSError, ValueError) as e:
        logger.warning("Unreadable camera extrinsic file %s: %s", path, e)
        raise CalibrationError(f"{path} is not a numeric matrix: {e}") from e
    if T.shape != (4, 4):
        logger.warning("Camera extrinsic file %s has shape %s", path, T.shape)
        raise CalibrationError(f"{path} must hold a 4x4 matrix, got {T.shape}")
    if not np.all(np.isfinite(T)):
        raise CalibrationError(f"{path} has non-finite values")
    try:
        return RigidTransform.from_matrix(T)
    except ValueError as e:
        logger.warning("Invalid camera extrinsic in %s: %s", path, e)
        raise CalibrationError(f"{path}: {e}") from e


def save_T_b_c(path: Path, T_b_c: RigidTransform) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    np.savetxt(path, T_b_c.as_matrix())
    return path
