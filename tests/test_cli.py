import json
from pathlib import Path

import numpy as np

from pinholerig.cli.main import main
from pinholerig.core.measurements import LandmarkMap


def test_cli_make_rig_and_project(tmp_path: Path) -> None:
    calib = tmp_path / "calib"
    assert main(["make-test-rig", "--out", str(calib), "--num-cameras", "2"]) == 0
    assert (calib / "cam0" / "geometry.json").exists()
    assert (calib / "cam1" / "T_b_c.txt").exists()
    assert main(["info", str(calib)]) == 0

    map_path = LandmarkMap.from_arrays(
        np.array([10, 11, 12]),
        np.array([[0.0, 0.0, 4.0], [0.0, 0.0, -4.0], [100.0, 0.0, 1.0]]),
    ).save_npz(tmp_path / "map.npz")
    poses_path = tmp_path / "poses.npz"
    np.savez(poses_path, T_w_b=np.stack([np.eye(4), np.eye(4)]))

    out = tmp_path / "out" / "projection.json"
    rc = main(["project", "--calib-dir", str(calib), "--map", str(map_path), "--poses", str(poses_path), "--out", str(out)])
    assert rc == 0

    report = json.loads(out.read_text(encoding="utf-8"))
    assert report["schema_version"] == "pinholerig.projection.v0"
    assert len(report["keyframes"]) == 2
    cams = report["keyframes"][0]["cameras"]
    assert [o["id"] for o in cams[0]["observations"]] == [10]
    assert [o["id"] for o in cams[1]["observations"]] == [11]
    assert abs(cams[0]["observations"][0]["u"] - 320.0) < 1e-9


def test_cli_reports_calibration_errors(tmp_path: Path) -> None:
    assert main(["info", str(tmp_path)]) == 1


def test_cli_reports_bad_map_and_poses(tmp_path: Path) -> None:
    calib = tmp_path / "calib"
    assert main(["make-test-rig", "--out", str(calib)]) == 0
    poses_path = tmp_path / "poses.npz"
    np.savez(poses_path, T_w_b=np.stack([np.eye(4)]))
    out = tmp_path / "projection.json"

    missing_map = tmp_path / "nope.npz"
    rc = main(["project", "--calib-dir", str(calib), "--map", str(missing_map), "--poses", str(poses_path), "--out", str(out)])
    assert rc == 1

    map_path = LandmarkMap.from_arrays(np.array([1]), np.array([[0.0, 0.0, 4.0]])).save_npz(tmp_path / "map.npz")
    bad_poses = tmp_path / "bad_poses.npz"
    np.savez(bad_poses, T_w_b=np.eye(3))
    rc = main(["project", "--calib-dir", str(calib), "--map", str(map_path), "--poses", str(bad_poses), "--out", str(out)])
    assert rc == 1
    assert not out.exists()
