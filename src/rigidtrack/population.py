from __future__ import annotations

"""Weighted particle population over joint rigid-body states."""

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from .errors import DegeneratePopulationError
from .model import POSE_DIMENSION, JointState, RigidBodyPose


@dataclass
class ParticlePopulation:
    """Row ``i`` of every array belongs to particle ``i``.

    ``poses`` holds the 6-per-object pose coordinates (position + rotation vector),
    ``velocities`` the latent linear/angular velocity of the same coordinates,
    ``log_weights`` the unnormalized log importance weights and ``loglikes`` the
    observation log-likelihood of the particle's current state on the frame being
    filtered.
    """

    poses: np.ndarray
    velocities: np.ndarray
    log_weights: np.ndarray
    loglikes: np.ndarray

    def __post_init__(self) -> None:
        self.poses = np.atleast_2d(np.asarray(self.poses, dtype=np.float64))
        self.velocities = np.atleast_2d(np.asarray(self.velocities, dtype=np.float64))
        self.log_weights = np.asarray(self.log_weights, dtype=np.float64).reshape(-1)
        self.loglikes = np.asarray(self.loglikes, dtype=np.float64).reshape(-1)

        count = self.poses.shape[0]
        if self.poses.shape[1] == 0 or self.poses.shape[1] % POSE_DIMENSION != 0:
            raise ValueError("pose rows must hold a positive multiple of 6 coordinates")
        if self.velocities.shape != self.poses.shape:
            raise ValueError("velocities must have the same shape as poses")
        if self.log_weights.shape != (count,) or self.loglikes.shape != (count,):
            raise ValueError("log_weights and loglikes must have one entry per particle")

    @staticmethod
    def from_states(states: Sequence[JointState]) -> "ParticlePopulation":
        if not states:
            raise DegeneratePopulationError("cannot build a population from zero states")
        object_counts = {state.object_count for state in states}
        if len(object_counts) != 1:
            raise ValueError("all joint states must describe the same number of objects")

        poses = np.stack([state.to_vector() for state in states])
        count = len(states)
        return ParticlePopulation(
            poses=poses,
            velocities=np.zeros_like(poses),
            log_weights=np.zeros(count, dtype=np.float64),
            loglikes=np.zeros(count, dtype=np.float64),
        )

    @property
    def size(self) -> int:
        return int(self.poses.shape[0])

    @property
    def dimension(self) -> int:
        return int(self.poses.shape[1])

    @property
    def object_count(self) -> int:
        return self.dimension // POSE_DIMENSION

    def copy(self) -> "ParticlePopulation":
        return ParticlePopulation(
            poses=self.poses.copy(),
            velocities=self.velocities.copy(),
            log_weights=self.log_weights.copy(),
            loglikes=self.loglikes.copy(),
        )

    def take(self, indices: np.ndarray) -> "ParticlePopulation":
        """Unweighted population made of the particles at ``indices`` (repeats allowed)."""
        selected = np.asarray(indices, dtype=np.int64)
        return ParticlePopulation(
            poses=self.poses[selected].copy(),
            velocities=self.velocities[selected].copy(),
            log_weights=np.zeros(len(selected), dtype=np.float64),
            loglikes=self.loglikes[selected].copy(),
        )

    def normalized_weights(self) -> np.ndarray:
        if self.size == 0:
            raise DegeneratePopulationError("population is empty")

        log_weights = np.where(np.isnan(self.log_weights), -np.inf, self.log_weights)
        if np.any(np.isposinf(log_weights)):
            raise DegeneratePopulationError("population has non-finite weights")
        peak = float(np.max(log_weights))
        if not np.isfinite(peak):
            raise DegeneratePopulationError("every particle weight is zero")

        raw = np.exp(log_weights - peak)
        return raw / float(raw.sum())

    def normalize(self) -> np.ndarray:
        """Rescale ``log_weights`` so the weights sum to one; returns the weights."""
        weights = self.normalized_weights()
        with np.errstate(divide="ignore"):
            self.log_weights = np.log(weights)
        return weights

    def kl_divergence_from_uniform(self) -> float:
        weights = self.normalized_weights()
        nonzero = weights[weights > 0.0]
        entropy = -float(np.sum(nonzero * np.log(nonzero)))
        return max(0.0, float(np.log(self.size)) - entropy)

    def effective_sample_size(self) -> float:
        weights = self.normalized_weights()
        return 1.0 / float(np.sum(weights**2))

    def marginal_mean(self, object_index: int) -> RigidBodyPose:
        if not 0 <= object_index < self.object_count:
            raise IndexError(f"object index {object_index} out of range")
        weights = self.normalized_weights()
        start = object_index * POSE_DIMENSION
        block = self.poses[:, start:start + POSE_DIMENSION]

        position = np.average(block[:, :3], axis=0, weights=weights)
        # quaternion average: principal eigenvector of the weighted outer-product matrix
        orientation = Rotation.from_rotvec(block[:, 3:]).mean(weights=weights).as_quat()
        return RigidBodyPose(
            position=(float(position[0]), float(position[1]), float(position[2])),
            orientation=(
                float(orientation[0]),
                float(orientation[1]),
                float(orientation[2]),
                float(orientation[3]),
            ),
        )

    def mean(self) -> JointState:
        return JointState(
            poses=tuple(self.marginal_mean(index) for index in range(self.object_count))
        )
