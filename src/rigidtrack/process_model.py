from __future__ import annotations

"""Damped-acceleration (Ornstein-Uhlenbeck velocity) motion of free-floating rigid bodies."""

import math
from typing import Sequence

import numpy as np

from scipy.spatial.transform import Rotation

from .model import POSE_DIMENSION, ProcessModel


class DampedAccelerationProcessModel(ProcessModel):
    """Per coordinate ``c`` of an active block and elapsed time ``dt``::

        v'[c] = exp(-damping * dt) * v[c] + control[c] + sqrt(dt) * sigma[c] * n
        x'[c] = x[c] + dt * (v[c] + v'[c]) / 2

    with ``n ~ N(0, 1)``. ``sigma`` is the linear acceleration sigma on position
    coordinates and the angular one on rotation-vector coordinates. Coordinates
    outside the block are left untouched and ``dt == 0`` is the identity.

    Rotations pivot about each object's ``centers`` entry (object frame, usually
    the mesh centre): when a block holds both the position and the rotation
    coordinates of an object, the position is shifted by ``(R - R') @ center``
    so the centre does not move under rotational noise.
    """

    def __init__(
        self,
        object_count: int,
        *,
        damping: float = 0.0,
        linear_acceleration_sigma: float = 1.0,
        angular_acceleration_sigma: float = 1.0,
        centers: Sequence[Sequence[float]] | None = None,
    ) -> None:
        if object_count <= 0:
            raise ValueError("object_count must be > 0")
        if damping < 0.0:
            raise ValueError("damping must be >= 0")
        if linear_acceleration_sigma < 0.0 or angular_acceleration_sigma < 0.0:
            raise ValueError("acceleration sigmas must be >= 0")

        self._object_count = object_count
        self._damping = float(damping)
        per_object = np.asarray(
            [linear_acceleration_sigma] * 3 + [angular_acceleration_sigma] * 3,
            dtype=np.float64,
        )
        self._sigma = np.tile(per_object, object_count)

        if centers is None:
            self._centers = np.zeros((object_count, 3), dtype=np.float64)
        else:
            self._centers = np.asarray(centers, dtype=np.float64)
            if self._centers.shape != (object_count, 3):
                raise ValueError(f"centers must be {object_count}x3")

    @property
    def dimension(self) -> int:
        return self._object_count * POSE_DIMENSION

    @property
    def damping(self) -> float:
        return self._damping

    @property
    def centers(self) -> np.ndarray:
        return self._centers.copy()

    def _pivot_about_centers(self, poses: np.ndarray, next_poses: np.ndarray, columns: np.ndarray) -> None:
        active = set(columns.tolist())
        for object_index, center in enumerate(self._centers):
            start = object_index * POSE_DIMENSION
            if not np.any(center) or not active.issuperset(range(start, start + POSE_DIMENSION)):
                continue
            before = Rotation.from_rotvec(poses[:, start + 3:start + 6]).apply(center)
            after = Rotation.from_rotvec(next_poses[:, start + 3:start + 6]).apply(center)
            next_poses[:, start:start + 3] += before - after

    def _check(self, poses: np.ndarray, velocities: np.ndarray, dt: float) -> None:
        if dt < 0.0 or not math.isfinite(dt):
            raise ValueError("dt must be a finite value >= 0")
        if poses.ndim != 2 or poses.shape[1] != self.dimension:
            raise ValueError(f"poses must be Nx{self.dimension}")
        if velocities.shape != poses.shape:
            raise ValueError("velocities must have the same shape as poses")

    def mean(
        self,
        poses: np.ndarray,
        velocities: np.ndarray,
        block: Sequence[int],
        dt: float,
        control: np.ndarray | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Noise-free propagation of the block coordinates."""
        poses = np.asarray(poses, dtype=np.float64)
        velocities = np.asarray(velocities, dtype=np.float64)
        self._check(poses, velocities, dt)

        next_poses = poses.copy()
        next_velocities = velocities.copy()
        if dt == 0.0:
            return next_poses, next_velocities

        columns = np.asarray(block, dtype=np.int64)
        decay = math.exp(-self._damping * dt)
        offset = 0.0 if control is None else np.asarray(control, dtype=np.float64)[columns]

        velocity_block = velocities[:, columns]
        next_velocity_block = decay * velocity_block + offset
        next_velocities[:, columns] = next_velocity_block
        next_poses[:, columns] = poses[:, columns] + 0.5 * dt * (velocity_block + next_velocity_block)
        self._pivot_about_centers(poses, next_poses, columns)
        return next_poses, next_velocities

    def propagate(
        self,
        poses: np.ndarray,
        velocities: np.ndarray,
        block: Sequence[int],
        dt: float,
        control: np.ndarray,
        rng: np.random.Generator,
    ) -> tuple[np.ndarray, np.ndarray]:
        poses = np.asarray(poses, dtype=np.float64)
        velocities = np.asarray(velocities, dtype=np.float64)
        self._check(poses, velocities, dt)

        next_poses = poses.copy()
        next_velocities = velocities.copy()
        if dt == 0.0:
            return next_poses, next_velocities

        columns = np.asarray(block, dtype=np.int64)
        decay = math.exp(-self._damping * dt)
        noise = rng.standard_normal((poses.shape[0], len(columns)))
        offset = np.asarray(control, dtype=np.float64)[columns]

        velocity_block = velocities[:, columns]
        next_velocity_block = (
            decay * velocity_block
            + offset[None, :]
            + math.sqrt(dt) * self._sigma[columns][None, :] * noise
        )
        next_velocities[:, columns] = next_velocity_block
        next_poses[:, columns] = poses[:, columns] + 0.5 * dt * (velocity_block + next_velocity_block)
        self._pivot_about_centers(poses, next_poses, columns)
        return next_poses, next_velocities
