from __future__ import annotations


def test_public_api_exports() -> None:
    import pinholerig as pr

    assert hasattr(pr, "PinholeCamera")
    assert hasattr(pr, "CameraRig")
    assert hasattr(pr, "project_batch_with_ids")
    assert hasattr(pr, "load_cameras_from_dir")
    assert hasattr(pr, "CalibrationError")
