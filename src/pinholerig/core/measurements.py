from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np

from pinholerig.core.pose import RigidTransform

UNSET_TRACK_ID = -1

_INT32 = np.iinfo(np.int32)


def _as_int32_ids(ids: np.ndarray, name: str) -> np.ndarray:
    ids = np.asarray(ids).reshape(-1)
    if ids.size and (ids.min() < _INT32.min or ids.max() > _INT32.max):
        raise ValueError(f"{name} must fit in int32")
    return ids.astype(np.int32)


@dataclass(eq=False)
class CamMeasurements:
    """
    Pixel observations of landmarks in one camera at one keyframe.

    Column j of `uv` is the observation of landmark `global_ids[j]`.
    """

    uv: np.ndarray = field(default_factory=lambda: np.zeros((2, 0), dtype=np.float64))  # (2,M)
    global_ids: np.ndarray = field(default_factory=lambda: np.zeros((0,), dtype=np.int32))  # (M,)
    track_ids: np.ndarray = field(default_factory=lambda: np.zeros((0,), dtype=np.int32))  # (M,)

    def set_measurements(self, uv: np.ndarray, global_ids: np.ndarray, track_ids: np.ndarray) -> None:
        uv = np.asarray(uv, dtype=np.float64)
        if uv.ndim != 2 or uv.shape[0] != 2:
            raise ValueError("uv must have shape (2,M)")
        global_ids = _as_int32_ids(global_ids, "global_ids")
        track_ids = _as_int32_ids(track_ids, "track_ids")
        if global_ids.shape[0] != uv.shape[1] or track_ids.shape[0] != uv.shape[1]:
            raise ValueError("uv, global_ids and track_ids must have the same length")
        self.uv = uv
        self.global_ids = global_ids
        self.track_ids = track_ids

    def __len__(self) -> int:
        return int(self.global_ids.shape[0])

    def as_records(self) -> list[dict[str, Any]]:
        return [
            {"id": int(i), "u": float(u), "v": float(v)}
            for i, u, v in zip(self.global_ids, self.uv[0], self.uv[1])
        ]


KFCamMeasurements = list[list[CamMeasurements]]


@dataclass(frozen=True, eq=False)
class KeyframeState:
    T_w_b: RigidTransform
    timestamp: float = 0.0


class LandmarkMap:
    """Landmark id -> world position (insertion ordered)."""

    def __init__(self) -> None:
        self._index: dict[int, int] = {}
        self._ids: list[int] = []
        self._positions: list[np.ndarray] = []

    @classmethod
    def from_arrays(cls, ids: np.ndarray, XYZ_w: np.ndarray) -> "LandmarkMap":
        ids = np.asarray(ids).reshape(-1)
        XYZ_w = np.asarray(XYZ_w, dtype=np.float64)
        if XYZ_w.ndim != 2 or XYZ_w.shape[1] != 3:
            raise ValueError("XYZ_w must have shape (N,3)")
        if XYZ_w.shape[0] != ids.shape[0]:
            raise ValueError("ids and XYZ_w must have the same length")
        landmark_map = cls()
        for i, p in zip(ids, XYZ_w):
            landmark_map.add_landmark(int(i), p)
        return landmark_map

    @classmethod
    def load_npz(cls, path: Path) -> "LandmarkMap":
        with np.load(str(path)) as npz:
            for k in ("ids", "XYZ_world"):
                if k not in npz:
                    raise ValueError(f"{path} missing key: {k}")
            return cls.from_arrays(npz["ids"], npz["XYZ_world"])

    def save_npz(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        np.savez(path, ids=self.ids, XYZ_world=self.positions_w.T)
        return path

    def add_landmark(self, landmark_id: int, p_w: np.ndarray) -> None:
        landmark_id = int(landmark_id)
        if not _INT32.min <= landmark_id <= _INT32.max:
            raise ValueError(f"landmark id {landmark_id} does not fit in int32")
        if landmark_id in self._index:
            raise ValueError(f"duplicate landmark id: {landmark_id}")
        p_w = np.asarray(p_w, dtype=np.float64).reshape(-1)
        if p_w.shape != (3,):
            raise ValueError("landmark position must have 3 elements")
        self._index[landmark_id] = len(self._ids)
        self._ids.append(landmark_id)
        self._positions.append(p_w.copy())

    def position(self, landmark_id: int) -> np.ndarray:
        return self._positions[self._index[int(landmark_id)]].copy()

    def __contains__(self, landmark_id: object) -> bool:
        return landmark_id in self._index

    def __len__(self) -> int:
        return len(self._ids)

    @property
    def ids(self) -> np.ndarray:
        return np.asarray(self._ids, dtype=np.int32)

    @property
    def positions_w(self) -> np.ndarray:
        """World positions as columns, (3,N), in the order of `ids`."""
        if not self._positions:
            return np.zeros((3, 0), dtype=np.float64)
        return np.stack(self._positions, axis=1)
