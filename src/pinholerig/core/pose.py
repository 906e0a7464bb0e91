from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def _as_rotation(R: np.ndarray, tol: float = 1e-6) -> np.ndarray:
    R = np.asarray(R, dtype=np.float64)
    if R.shape != (3, 3):
        raise ValueError("R must have shape (3,3)")
    if not np.all(np.isfinite(R)):
        raise ValueError("R has non-finite values")
    if np.max(np.abs(R @ R.T - np.eye(3))) > tol or abs(np.linalg.det(R) - 1.0) > tol:
        raise ValueError("R is not a proper rotation matrix")
    return R


@dataclass(frozen=True, eq=False)
class RigidTransform:
    """
    Rigid transform T_a_b: maps points expressed in frame b into frame a,

      p_a = R p_b + t

    Points are handled as columns, a single (3,) point or a (3,N) batch.
    """

    R: np.ndarray  # (3,3)
    t: np.ndarray  # (3,)

    def __post_init__(self) -> None:
        object.__setattr__(self, "R", _as_rotation(self.R))
        t = np.asarray(self.t, dtype=np.float64).reshape(-1)
        if t.shape != (3,):
            raise ValueError("t must have 3 elements")
        object.__setattr__(self, "t", t)

    @classmethod
    def identity(cls) -> "RigidTransform":
        return cls(R=np.eye(3), t=np.zeros((3,)))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> "RigidTransform":
        T = np.asarray(T, dtype=np.float64)
        if T.shape != (4, 4):
            raise ValueError("T must have shape (4,4)")
        if np.max(np.abs(T[3] - np.array([0.0, 0.0, 0.0, 1.0]))) > 1e-9:
            raise ValueError("last row of T must be [0,0,0,1]")
        return cls(R=T[:3, :3], t=T[:3, 3])

    @classmethod
    def from_quaternion(cls, q_xyzw: np.ndarray, t: np.ndarray) -> "RigidTransform":
        from scipy.spatial.transform import Rotation as Rot  # type: ignore

        q = np.asarray(q_xyzw, dtype=np.float64).reshape(4)
        return cls(R=Rot.from_quat(q).as_matrix(), t=t)

    @classmethod
    def from_rotvec(cls, rvec: np.ndarray, t: np.ndarray) -> "RigidTransform":
        from scipy.spatial.transform import Rotation as Rot  # type: ignore

        rvec = np.asarray(rvec, dtype=np.float64).reshape(3)
        return cls(R=Rot.from_rotvec(rvec).as_matrix(), t=t)

    def as_matrix(self) -> np.ndarray:
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.R
        T[:3, 3] = self.t
        return T

    def quaternion_xyzw(self) -> np.ndarray:
        from scipy.spatial.transform import Rotation as Rot  # type: ignore

        return Rot.from_matrix(self.R).as_quat()

    def inverse(self) -> "RigidTransform":
        R_inv = self.R.T
        return RigidTransform(R=R_inv, t=-R_inv @ self.t)

    def __matmul__(self, other: "RigidTransform") -> "RigidTransform":
        if not isinstance(other, RigidTransform):
            return NotImplemented
        # T_a_c = T_a_b @ T_b_c
        return RigidTransform(R=self.R @ other.R, t=self.R @ other.t + self.t)

    def transform(self, points: np.ndarray) -> np.ndarray:
        p = np.asarray(points, dtype=np.float64)
        if p.ndim == 1:
            if p.shape != (3,):
                raise ValueError("point must have 3 elements")
            return self.R @ p + self.t
        if p.ndim != 2 or p.shape[0] != 3:
            raise ValueError("points must have shape (3,N)")
        return self.R @ p + self.t[:, None]
