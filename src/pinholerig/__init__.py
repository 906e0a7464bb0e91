from pinholerig import calibration
from pinholerig.calibration import CalibrationError, PinholeGeometry
from pinholerig.core.measurements import CamMeasurements, KeyframeState, LandmarkMap
from pinholerig.core.pinhole import PinholeCamera
from pinholerig.core.pose import RigidTransform
from pinholerig.core.rig import CameraRig, load_cameras_from_dir, num_of_cameras, project_batch_with_ids

__all__ = [
    "calibration",
    "CalibrationError",
    "PinholeGeometry",
    "CamMeasurements",
    "KeyframeState",
    "LandmarkMap",
    "PinholeCamera",
    "RigidTransform",
    "CameraRig",
    "load_cameras_from_dir",
    "num_of_cameras",
    "project_batch_with_ids",
]
