from pathlib import Path

import numpy as np
import pytest

from pinholerig.calibration import CalibrationError
from pinholerig.core.measurements import CamMeasurements, KeyframeState, LandmarkMap
from pinholerig.core.pinhole import PinholeCamera
from pinholerig.core.pose import RigidTransform
from pinholerig.core.rig import (
    CameraRig,
    load_cameras_from_dir,
    num_of_cameras,
    project_batch_with_ids,
    save_cameras_to_dir,
)


def _front_back_rig() -> list[PinholeCamera]:
    # cam0 looks along body +z, cam1 along body -z.
    front = PinholeCamera.create_test_camera(RigidTransform.identity())
    back = PinholeCamera.create_test_camera(RigidTransform.from_rotvec(np.array([0.0, np.pi, 0.0]), np.zeros(3)))
    return [front, back]


def test_landmark_visible_in_exactly_one_camera():
    cams = _front_back_rig()
    landmark_map = LandmarkMap.from_arrays(np.array([7, 8]), np.array([[0.0, 0.0, 5.0], [0.0, 0.0, -5.0]]))
    states = [KeyframeState(T_w_b=RigidTransform.identity())]

    meas = project_batch_with_ids(states, cams, landmark_map)
    assert len(meas) == 1 and len(meas[0]) == 2
    assert meas[0][0].global_ids.tolist() == [7]
    assert meas[0][1].global_ids.tolist() == [8]
    assert np.allclose(meas[0][0].uv[:, 0], [320.0, 240.0])
    assert np.allclose(meas[0][1].uv[:, 0], [320.0, 240.0])
    assert np.all(meas[0][0].track_ids == -1)


def test_landmark_behind_every_camera_is_never_observed():
    cam = PinholeCamera.create_test_camera()
    cams = [cam, PinholeCamera.create_test_camera(RigidTransform.identity())]
    landmark_map = LandmarkMap.from_arrays(np.array([1]), np.array([[0.0, 0.0, 3.0]]))
    # Body moved past the landmark: it is now behind both forward-looking cameras.
    states = [
        KeyframeState(T_w_b=RigidTransform(R=np.eye(3), t=np.array([0.0, 0.0, 0.0]))),
        KeyframeState(T_w_b=RigidTransform(R=np.eye(3), t=np.array([0.0, 0.0, 4.0]))),
    ]
    meas = project_batch_with_ids(states, cams, landmark_map)
    assert [len(m) for m in meas[0]] == [1, 1]
    assert [len(m) for m in meas[1]] == [0, 0]


def test_world_to_camera_composition():
    rng = np.random.default_rng(0)
    T_b_c = RigidTransform.from_rotvec(np.array([0.0, 0.2, 0.0]), np.array([0.1, 0.0, 0.0]))
    T_w_b = RigidTransform.from_rotvec(np.array([0.0, -0.3, 0.05]), np.array([1.0, 2.0, -1.0]))
    cam = PinholeCamera.create_test_camera(T_b_c)

    # Landmarks generated in the camera frame, moved into the world.
    T_w_c = T_w_b @ T_b_c
    z = rng.uniform(1.0, 10.0, size=50)
    p_cs = np.stack([rng.uniform(-0.5, 0.5, 50) * z, rng.uniform(-0.5, 0.5, 50) * z, z], axis=0)
    p_ws = T_w_c.transform(p_cs)
    landmark_map = LandmarkMap.from_arrays(np.arange(50), p_ws.T)

    meas = project_batch_with_ids([KeyframeState(T_w_b=T_w_b)], [cam], landmark_map)
    expected, vis = cam.project3d_batch(p_cs)
    assert vis.all()
    assert meas[0][0].global_ids.tolist() == list(range(50))
    assert np.max(np.abs(meas[0][0].uv - expected)) < 1e-8


def test_rig_directory_roundtrip(tmp_path: Path) -> None:
    cams = _front_back_rig()
    save_cameras_to_dir(tmp_path, cams)
    (tmp_path / "notes").mkdir()
    assert num_of_cameras(tmp_path) == 2

    loaded = load_cameras_from_dir(tmp_path)
    assert len(loaded) == 2
    assert np.allclose(loaded[1].T_b_c.as_matrix(), cams[1].T_b_c.as_matrix())

    rig = CameraRig.from_dir(tmp_path)
    assert len(rig) == 2
    assert rig[0].fx == 300.0
    landmark_map = LandmarkMap.from_arrays(np.array([3]), np.array([[0.0, 0.0, -2.0]]))
    meas = rig.project([KeyframeState(T_w_b=RigidTransform.identity())], landmark_map)
    assert [len(m) for m in meas[0]] == [0, 1]


def test_num_of_cameras_requires_consecutive_indices(tmp_path: Path) -> None:
    assert num_of_cameras(tmp_path / "missing") == 0
    (tmp_path / "cam0").mkdir()
    (tmp_path / "cam2").mkdir()
    assert num_of_cameras(tmp_path) == 1


def test_empty_calibration_dir_is_a_data_error(tmp_path: Path) -> None:
    with pytest.raises(CalibrationError):
        load_cameras_from_dir(tmp_path)


def test_landmark_map_contract():
    landmark_map = LandmarkMap()
    assert landmark_map.positions_w.shape == (3, 0)
    landmark_map.add_landmark(5, [1.0, 2.0, 3.0])
    assert 5 in landmark_map
    assert np.allclose(landmark_map.position(5), [1.0, 2.0, 3.0])
    with pytest.raises(ValueError):
        landmark_map.add_landmark(5, [0.0, 0.0, 0.0])


def test_landmark_ids_must_fit_int32():
    landmark_map = LandmarkMap()
    with pytest.raises(ValueError):
        landmark_map.add_landmark(2**31, [0.0, 0.0, 5.0])
    with pytest.raises(ValueError):
        LandmarkMap.from_arrays(np.array([-(2**31) - 1], dtype=np.int64), np.array([[0.0, 0.0, 5.0]]))
    assert len(landmark_map) == 0

    landmark_map.add_landmark(2**31 - 1, [0.0, 0.0, 5.0])
    meas = project_batch_with_ids(
        [KeyframeState(T_w_b=RigidTransform.identity())], [PinholeCamera.create_test_camera()], landmark_map
    )
    assert meas[0][0].global_ids.tolist() == [2**31 - 1]


def test_measurements_reject_ids_outside_int32():
    cam_meas = CamMeasurements()
    with pytest.raises(ValueError):
        cam_meas.set_measurements(np.zeros((2, 1)), np.array([2**40], dtype=np.int64), np.array([-1]))
    with pytest.raises(ValueError):
        cam_meas.set_measurements(np.zeros((2, 1)), np.array([1]), np.array([-(2**33)], dtype=np.int64))
    assert len(cam_meas) == 0
