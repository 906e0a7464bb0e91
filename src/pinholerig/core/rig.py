from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterator, Sequence

from pinholerig.calibration import CAMERA_DIR_PREFIX, CalibrationError, camera_dir
from pinholerig.core.measurements import CamMeasurements, KeyframeState, KFCamMeasurements, LandmarkMap
from pinholerig.core.pinhole import PinholeCamera
from pinholerig.core.pose import RigidTransform

logger = logging.getLogger(__name__)

_CAM_DIR_RE = re.compile(rf"^{CAMERA_DIR_PREFIX}(\d+)$")


def T_c_w_for(state: KeyframeState, cam: PinholeCamera) -> RigidTransform:
    """World -> camera transform for a camera mounted on the keyframe's body."""
    return cam.T_b_c.inverse() @ state.T_w_b.inverse()


def project_batch_with_ids(
    states: Sequence[KeyframeState],
    cameras: Sequence[PinholeCamera],
    landmark_map: LandmarkMap,
) -> KFCamMeasurements:
    """
    Project every landmark into every camera of every keyframe.

    Returns measurements indexed [keyframe][camera]; each holds the visible
    landmarks in map order. No culling: cost is O(keyframes * cameras * landmarks).
    """
    ids = landmark_map.ids
    p_ws = landmark_map.positions_w
    out: KFCamMeasurements = []
    for kf_idx, state in enumerate(states):
        kf_meas: list[CamMeasurements] = []
        for cam_idx, cam in enumerate(cameras):
            p_cs = T_c_w_for(state, cam).transform(p_ws)
            cam_meas = cam.project3d_batch_with_ids(p_cs, ids)
            logger.debug("keyframe %d camera %d: %d/%d landmarks visible", kf_idx, cam_idx, len(cam_meas), len(ids))
            kf_meas.append(cam_meas)
        out.append(kf_meas)
    return out


def num_of_cameras(calib_dir: Path) -> int:
    """Number of consecutive cam0, cam1, ... sub-directories."""
    calib_dir = Path(calib_dir)
    if not calib_dir.is_dir():
        return 0
    indices = set()
    for p in calib_dir.iterdir():
        m = _CAM_DIR_RE.match(p.name)
        if p.is_dir() and m is not None:
            indices.add(int(m.group(1)))
    n = 0
    while n in indices:
        n += 1
    if len(indices) > n:
        logger.warning("Ignoring non-consecutive camera directories in %s", calib_dir)
    return n


def load_cameras_from_dir(calib_dir: Path) -> list[PinholeCamera]:
    calib_dir = Path(calib_dir)
    n = num_of_cameras(calib_dir)
    if n == 0:
        logger.warning("No camera directories found in %s", calib_dir)
        raise CalibrationError(f"no {CAMERA_DIR_PREFIX}<i> directories in {calib_dir}")
    cams = [PinholeCamera.load_from_dir(camera_dir(calib_dir, i)) for i in range(n)]
    logger.info("Loaded %d cameras from %s", n, calib_dir)
    return cams


def save_cameras_to_dir(calib_dir: Path, cameras: Sequence[PinholeCamera]) -> None:
    for i, cam in enumerate(cameras):
        cam.save_to_dir(camera_dir(calib_dir, i))
    logger.info("Saved %d cameras to %s", len(cameras), calib_dir)


class CameraRig:
    """
    Ordered set of cameras rigidly mounted on one body.

    Index i is the physical camera index; each camera is shared, read only,
    by every keyframe projected through the rig.
    """

    def __init__(self, cameras: Sequence[PinholeCamera]) -> None:
        self._cameras = tuple(cameras)

    @classmethod
    def from_dir(cls, calib_dir: Path) -> "CameraRig":
        return cls(load_cameras_from_dir(calib_dir))

    def save(self, calib_dir: Path) -> None:
        save_cameras_to_dir(calib_dir, self._cameras)

    @property
    def cameras(self) -> tuple[PinholeCamera, ...]:
        return self._cameras

    def __len__(self) -> int:
        return len(self._cameras)

    def __getitem__(self, index: int) -> PinholeCamera:
        return self._cameras[index]

    def __iter__(self) -> Iterator[PinholeCamera]:
        return iter(self._cameras)

    def project(self, states: Sequence[KeyframeState], landmark_map: LandmarkMap) -> KFCamMeasurements:
        return project_batch_with_ids(states, self._cameras, landmark_map)
