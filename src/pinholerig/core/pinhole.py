from __future__ import annotations

import math
from pathlib import Path
from typing import Sequence

import numpy as np

from pinholerig.calibration import (
    GEOMETRY_FILENAME,
    T_B_C_FILENAME,
    PinholeGeometry,
    load_geometry,
    load_T_b_c,
    save_geometry,
    save_T_b_c,
)
from pinholerig.core.measurements import UNSET_TRACK_ID, CamMeasurements
from pinholerig.core.pose import RigidTransform

DEFAULT_Z_MARGIN = 0.05
_DEGENERATE_Z = 1e-12


class PinholeCamera:
    """
    Ideal pinhole camera (no distortion) rigidly mounted on a body.

    Conventions:
    - camera frame: x right, y down, z along the optical axis
    - pixel (u,v) = (K p_c)[:2] / (K p_c)[2]
    - T_b_c is the camera pose in the body frame: p_b = T_b_c p_c

    Batched methods take points as columns: (3,N) camera-frame points,
    (2,N) pixels. Intrinsics and extrinsic are fixed at construction; the
    visibility thresholds can be tuned afterwards.
    """

    def __init__(self, geo_params: Sequence[float], T_b_c: RigidTransform | None = None) -> None:
        if len(geo_params) != 6:
            raise ValueError("geo_params must be (fx, fy, cx, cy, w, h)")
        fx, fy, cx, cy, w, h = geo_params
        self._fx = float(fx)
        self._fy = float(fy)
        self._cx = float(cx)
        self._cy = float(cy)
        self._w = int(w)
        self._h = int(h)
        if self._fx == 0.0 or self._fy == 0.0:
            raise ValueError("fx and fy must be non-zero")
        if self._w <= 0 or self._h <= 0:
            raise ValueError("image width and height must be > 0")

        self._T_b_c = RigidTransform.identity() if T_b_c is None else T_b_c

        self._margin_ratio = 0.0
        self._w_margin = 0.0
        self._h_margin = 0.0
        self._min_depth = -1.0
        self._max_depth = math.inf
        self._min_dist = -1.0
        self._max_dist = math.inf

        self._bearings_at_pixels: np.ndarray | None = None  # (3, w*h)

        self._update_K()

    def _update_K(self) -> None:
        self._K = np.array(
            [[self._fx, 0.0, self._cx], [0.0, self._fy, self._cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )
        self._K_inv = np.linalg.inv(self._K)

    # construction helpers

    @classmethod
    def from_geometry(cls, geo: PinholeGeometry, T_b_c: RigidTransform | None = None) -> "PinholeCamera":
        cam = cls(geo.params(), T_b_c)
        cam.set_margin(geo.margin_ratio)
        cam.set_depth_range(*geo.depth_range)
        cam.set_dist_range(*geo.dist_range)
        return cam

    @classmethod
    def create_test_camera(cls, T_b_c: RigidTransform | None = None) -> "PinholeCamera":
        return cls((300.0, 300.0, 320.0, 240.0, 640, 480), T_b_c)

    @classmethod
    def load_from_file(cls, geo_path: Path, T_b_c_path: Path) -> "PinholeCamera":
        """Raises `CalibrationError` when either file is missing or malformed."""
        return cls.from_geometry(load_geometry(geo_path), load_T_b_c(T_b_c_path))

    @classmethod
    def load_from_dir(cls, cam_dir: Path) -> "PinholeCamera":
        cam_dir = Path(cam_dir)
        return cls.load_from_file(cam_dir / GEOMETRY_FILENAME, cam_dir / T_B_C_FILENAME)

    def geometry(self) -> PinholeGeometry:
        return PinholeGeometry(
            fx=self._fx,
            fy=self._fy,
            cx=self._cx,
            cy=self._cy,
            width_px=self._w,
            height_px=self._h,
            margin_ratio=self._margin_ratio,
            depth_range=(self._min_depth, self._max_depth),
            dist_range=(self._min_dist, self._max_dist),
        )

    def save_to_file(self, geo_path: Path, T_b_c_path: Path) -> None:
        save_geometry(geo_path, self.geometry())
        save_T_b_c(T_b_c_path, self._T_b_c)

    def save_to_dir(self, cam_dir: Path) -> None:
        cam_dir = Path(cam_dir)
        self.save_to_file(cam_dir / GEOMETRY_FILENAME, cam_dir / T_B_C_FILENAME)

    # accessors

    @property
    def fx(self) -> float:
        return self._fx

    @property
    def fy(self) -> float:
        return self._fy

    @property
    def cx(self) -> float:
        return self._cx

    @property
    def cy(self) -> float:
        return self._cy

    @property
    def w(self) -> int:
        return self._w

    @property
    def h(self) -> int:
        return self._h

    @property
    def T_b_c(self) -> RigidTransform:
        return self._T_b_c

    @property
    def K(self) -> np.ndarray:
        return self._K.copy()

    @property
    def K_inv(self) -> np.ndarray:
        return self._K_inv.copy()

    @property
    def margin_ratio(self) -> float:
        return self._margin_ratio

    @property
    def min_depth(self) -> float:
        return self._min_depth

    @property
    def max_depth(self) -> float:
        return self._max_depth

    @property
    def min_dist(self) -> float:
        return self._min_dist

    @property
    def max_dist(self) -> float:
        return self._max_dist

    # projection

    def project3d(self, p_c: np.ndarray) -> tuple[np.ndarray, bool]:
        """
        Project one camera-frame point. Returns (uv, ok); ok is False and uv is
        NaN when the point is on or behind the camera plane.
        """
        p_c = np.asarray(p_c, dtype=np.float64).reshape(3)
        uv_homo = self._K @ p_c
        z = uv_homo[2]
        if not z > _DEGENERATE_Z:
            return np.full((2,), np.nan, dtype=np.float64), False
        return uv_homo[:2] / z, True

    def project3d_batch(
        self,
        p_cs: np.ndarray,
        us: np.ndarray | None = None,
        is_visible: np.ndarray | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """
        Project (3,N) camera-frame points to (2,N) pixels.

        `is_visible[i]` is depth-valid AND inside-image for column i. Columns
        with z == 0 get non-finite pixels and are never visible. Optional
        output arrays are filled in place and must already be sized to N.
        """
        p_cs = np.asarray(p_cs, dtype=np.float64)
        if p_cs.ndim != 2 or p_cs.shape[0] != 3:
            raise ValueError("p_cs must have shape (3,N)")
        n = p_cs.shape[1]
        if us is None:
            us = np.empty((2, n), dtype=np.float64)
        elif us.shape != (2, n):
            raise ValueError(f"us must have shape (2,{n}), got {us.shape}")
        if is_visible is None:
            is_visible = np.empty((n,), dtype=bool)
        elif is_visible.shape != (n,):
            raise ValueError(f"is_visible must have shape ({n},), got {is_visible.shape}")

        us_homo = self._K @ p_cs
        with np.errstate(divide="ignore", invalid="ignore"):
            us[:] = us_homo[:2] / us_homo[2]

        is_visible[:] = self.is_depth_valid(p_cs) & self.is_inside_image(us)
        return us, is_visible

    def project3d_batch_with_ids(
        self,
        p_cs: np.ndarray,
        ids: np.ndarray,
        cam_meas: CamMeasurements | None = None,
    ) -> CamMeasurements:
        """
        Project (3,N) points tagged with landmark ids and keep the visible ones,
        in their original column order. Track ids are left unset.
        """
        ids = np.asarray(ids).reshape(-1)
        p_cs = np.asarray(p_cs, dtype=np.float64)
        if p_cs.ndim != 2 or ids.shape[0] != p_cs.shape[1]:
            raise ValueError("ids must have one entry per column of p_cs")
        us, is_visible = self.project3d_batch(p_cs)

        n_visible = int(np.count_nonzero(is_visible))
        if cam_meas is None:
            cam_meas = CamMeasurements()
        cam_meas.set_measurements(
            us[:, is_visible],
            ids[is_visible],
            np.full((n_visible,), UNSET_TRACK_ID, dtype=np.int32),
        )
        return cam_meas

    # backprojection

    def backproject3d(self, uv: np.ndarray) -> np.ndarray:
        """Ray direction K^-1 [u, v, 1] (not normalized)."""
        uv = np.asarray(uv, dtype=np.float64).reshape(2)
        return self._K_inv @ np.array([uv[0], uv[1], 1.0], dtype=np.float64)

    def backproject3d_batch(self, us: np.ndarray, fs: np.ndarray | None = None) -> np.ndarray:
        us = np.asarray(us, dtype=np.float64)
        if us.ndim != 2 or us.shape[0] != 2:
            raise ValueError("us must have shape (2,N)")
        n = us.shape[1]
        if fs is None:
            fs = np.empty((3, n), dtype=np.float64)
        elif fs.shape != (3, n):
            raise ValueError(f"fs must have shape (3,{n}), got {fs.shape}")
        us_homo = np.vstack([us, np.ones((1, n), dtype=np.float64)])
        fs[:] = self._K_inv @ us_homo
        return fs

    # visibility predicates

    def is_inside_image(self, uv: np.ndarray) -> np.ndarray | bool:
        uv = np.asarray(uv, dtype=np.float64)
        x, y = uv[0], uv[1]
        return (
            (x > self._w_margin)
            & (x < self._w - self._w_margin)
            & (y > self._h_margin)
            & (y < self._h - self._h_margin)
        )

    def is_depth_valid(self, p_c: np.ndarray, z_margin: float = DEFAULT_Z_MARGIN) -> np.ndarray | bool:
        z = np.asarray(p_c, dtype=np.float64)[2]
        return (z > z_margin) & (z < self._max_depth) & (z > self._min_depth)

    def is_distance_valid(self, p_c: np.ndarray) -> np.ndarray | bool:
        dist = np.linalg.norm(np.asarray(p_c, dtype=np.float64), axis=0)
        return (dist < self._max_dist) & (dist > self._min_dist)

    def set_depth_range(self, min_z: float, max_z: float) -> None:
        if not min_z < max_z:
            raise ValueError(f"depth range must satisfy min < max, got ({min_z}, {max_z})")
        self._min_depth = float(min_z)
        self._max_depth = float(max_z)

    def set_dist_range(self, min_dist: float, max_dist: float) -> None:
        if not min_dist < max_dist:
            raise ValueError(f"distance range must satisfy min < max, got ({min_dist}, {max_dist})")
        self._min_dist = float(min_dist)
        self._max_dist = float(max_dist)

    def set_margin(self, ratio: float) -> None:
        if not ratio >= 0.0:
            raise ValueError(f"margin ratio must be >= 0, got {ratio}")
        self._margin_ratio = float(ratio)
        self._w_margin = self._w * self._margin_ratio
        self._h_margin = self._h * self._margin_ratio

    # per-pixel bearing cache

    def pixel_coord_to_flat_idx(self, x: int, y: int) -> int:
        return y * self._w + x

    def compute_bearing_vectors(self) -> None:
        """Backproject every pixel once; bearings are stored row-major, index y*w + x."""
        if self._bearings_at_pixels is not None:
            return
        yy, xx = np.meshgrid(
            np.arange(self._h, dtype=np.float64), np.arange(self._w, dtype=np.float64), indexing="ij"
        )
        us = np.stack([xx.reshape(-1), yy.reshape(-1)], axis=0)
        bearings = self.backproject3d_batch(us)
        bearings.setflags(write=False)
        self._bearings_at_pixels = bearings

    @property
    def bearing_vectors_computed(self) -> bool:
        return self._bearings_at_pixels is not None

    def _bearings(self) -> np.ndarray:
        if self._bearings_at_pixels is None:
            raise RuntimeError("bearing vectors not computed; call compute_bearing_vectors() first")
        return self._bearings_at_pixels

    def num_bearings(self) -> int:
        return int(self._bearings().shape[1])

    def get_bearing_at_pixel(self, x: int, y: int) -> np.ndarray:
        bearings = self._bearings()
        if not (0 <= x < self._w and 0 <= y < self._h):
            raise ValueError(f"pixel ({x},{y}) outside {self._w}x{self._h} image")
        return bearings[:, self.pixel_coord_to_flat_idx(x, y)]

    def __repr__(self) -> str:
        return (
            f"PinholeCamera(fx={self._fx}, fy={self._fy}, cx={self._cx}, cy={self._cy}, "
            f"w={self._w}, h={self._h})"
        )

    def __str__(self) -> str:
        lines = [
            "Pinhole camera:",
            f"  focal length: {self._fx}, {self._fy}",
            f"  principal point: {self._cx}, {self._cy}",
            f"  resolution: {self._w} x {self._h}",
            f"  margin (w, h): {self._w_margin}, {self._h_margin}",
            f"  depth range: ({self._min_depth}, {self._max_depth})",
            f"  distance range: ({self._min_dist}, {self._max_dist})",
            "  T_b_c:",
        ]
        lines += ["    " + " ".join(f"{v: .6f}" for v in row) for row in self._T_b_c.as_matrix()]
        return "\n".join(lines)
