from __future__ import annotations

"""Shared data model and component interfaces for rigid-body tracking."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

if TYPE_CHECKING:
    from .population import ParticlePopulation

POSE_DIMENSION = 6


@dataclass(frozen=True)
class CameraIntrinsics:
    width_px: int
    height_px: int
    fx_px: float
    fy_px: float
    cx_px: float
    cy_px: float

    def __post_init__(self) -> None:
        if self.width_px <= 0 or self.height_px <= 0:
            raise ValueError("CameraIntrinsics requires a positive image size")
        if self.fx_px <= 0.0 or self.fy_px <= 0.0:
            raise ValueError("CameraIntrinsics requires positive focal lengths")

    @staticmethod
    def from_matrix(matrix: np.ndarray, width_px: int, height_px: int) -> "CameraIntrinsics":
        camera_matrix = np.asarray(matrix, dtype=np.float64)
        if camera_matrix.shape != (3, 3):
            raise ValueError("camera matrix must be 3x3")
        return CameraIntrinsics(
            width_px=int(width_px),
            height_px=int(height_px),
            fx_px=float(camera_matrix[0, 0]),
            fy_px=float(camera_matrix[1, 1]),
            cx_px=float(camera_matrix[0, 2]),
            cy_px=float(camera_matrix[1, 2]),
        )

    def matrix(self) -> np.ndarray:
        return np.asarray(
            (
                (self.fx_px, 0.0, self.cx_px),
                (0.0, self.fy_px, self.cy_px),
                (0.0, 0.0, 1.0),
            ),
            dtype=np.float64,
        )

    def downsampled(self, factor: int) -> "CameraIntrinsics":
        """Intrinsics of an image sliced with stride ``factor`` along both axes."""
        if factor < 1:
            raise ValueError("downsampling factor must be >= 1")
        if factor == 1:
            return self
        return CameraIntrinsics(
            width_px=-(-self.width_px // factor),
            height_px=-(-self.height_px // factor),
            fx_px=self.fx_px / factor,
            fy_px=self.fy_px / factor,
            cx_px=self.cx_px / factor,
            cy_px=self.cy_px / factor,
        )


@dataclass(frozen=True)
class DepthFrame:
    """Depth image in metres; invalid pixels are NaN."""

    depth_m: np.ndarray
    timestamp_s: float

    def __post_init__(self) -> None:
        if np.ndim(self.depth_m) != 2:
            raise ValueError("DepthFrame requires a 2D depth image")

    @property
    def shape(self) -> tuple[int, int]:
        rows, cols = np.shape(self.depth_m)
        return (int(rows), int(cols))


@dataclass(frozen=True)
class RigidBodyPose:
    """Object pose in the camera frame; orientation is a unit quaternion (x, y, z, w)."""

    position: tuple[float, float, float]
    orientation: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)

    @staticmethod
    def identity() -> "RigidBodyPose":
        return RigidBodyPose(position=(0.0, 0.0, 0.0))

    @staticmethod
    def from_vector(vector: Sequence[float]) -> "RigidBodyPose":
        arr = np.asarray(vector, dtype=np.float64)
        if arr.shape != (POSE_DIMENSION,):
            raise ValueError("pose vector must have 6 entries")
        quat = Rotation.from_rotvec(arr[3:]).as_quat()
        return RigidBodyPose(
            position=(float(arr[0]), float(arr[1]), float(arr[2])),
            orientation=(float(quat[0]), float(quat[1]), float(quat[2]), float(quat[3])),
        )

    def rotation(self) -> Rotation:
        return Rotation.from_quat(np.asarray(self.orientation, dtype=np.float64))

    def to_vector(self) -> np.ndarray:
        """Position followed by the rotation vector (axis * angle)."""
        return np.concatenate(
            [np.asarray(self.position, dtype=np.float64), self.rotation().as_rotvec()]
        )

    def homogeneous_matrix(self) -> np.ndarray:
        matrix = np.eye(4, dtype=np.float64)
        matrix[:3, :3] = self.rotation().as_matrix()
        matrix[:3, 3] = np.asarray(self.position, dtype=np.float64)
        return matrix


@dataclass(frozen=True)
class JointState:
    """Ordered poses of all tracked objects; object i always occupies slot i."""

    poses: tuple[RigidBodyPose, ...]

    @property
    def object_count(self) -> int:
        return len(self.poses)

    @staticmethod
    def from_vector(vector: Sequence[float]) -> "JointState":
        arr = np.asarray(vector, dtype=np.float64)
        if arr.ndim != 1 or arr.size == 0 or arr.size % POSE_DIMENSION != 0:
            raise ValueError("joint state vector length must be a positive multiple of 6")
        return JointState(
            poses=tuple(
                RigidBodyPose.from_vector(arr[start:start + POSE_DIMENSION])
                for start in range(0, arr.size, POSE_DIMENSION)
            )
        )

    def to_vector(self) -> np.ndarray:
        return np.concatenate([pose.to_vector() for pose in self.poses])

    def replaced(self, index: int, pose: RigidBodyPose) -> "JointState":
        poses = list(self.poses)
        poses[index] = pose
        return replace(self, poses=tuple(poses))


@dataclass(frozen=True)
class ObjectMesh:
    name: str
    vertices: np.ndarray
    triangles: np.ndarray

    def __post_init__(self) -> None:
        vertices = np.asarray(self.vertices, dtype=np.float64)
        triangles = np.asarray(self.triangles, dtype=np.int64)
        if vertices.ndim != 2 or vertices.shape[1] != 3 or len(vertices) == 0:
            raise ValueError(f"mesh '{self.name}' vertices must be a non-empty Nx3 array")
        if triangles.ndim != 2 or triangles.shape[1] != 3:
            raise ValueError(f"mesh '{self.name}' triangles must be Mx3")
        if triangles.size and (triangles.min() < 0 or triangles.max() >= len(vertices)):
            raise ValueError(f"mesh '{self.name}' triangle index out of range")

    def center(self) -> np.ndarray:
        return np.mean(np.asarray(self.vertices, dtype=np.float64), axis=0)


class ProcessModel(ABC):
    @abstractmethod
    def propagate(
        self,
        poses: np.ndarray,
        velocities: np.ndarray,
        block: Sequence[int],
        dt: float,
        control: np.ndarray,
        rng: np.random.Generator,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Advance the coordinates in ``block`` of every sample by ``dt`` seconds."""


class ObservationScorer(ABC):
    @abstractmethod
    def score(self, poses: np.ndarray, frame: DepthFrame) -> np.ndarray:
        """Log-likelihood of every joint hypothesis (rows of ``poses``) given ``frame``."""


class Resampler(ABC):
    @abstractmethod
    def resample_indices(
        self,
        weights: np.ndarray,
        count: int,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """Indices of ``count`` particles drawn according to normalized ``weights``."""

    def resample(
        self,
        population: "ParticlePopulation",
        count: int,
        rng: np.random.Generator,
    ) -> "ParticlePopulation":
        if count <= 0:
            raise ValueError("resample count must be > 0")
        weights = population.normalized_weights()
        indices = self.resample_indices(weights, count, rng)
        return population.take(indices)
