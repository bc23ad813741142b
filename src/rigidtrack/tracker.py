from __future__ import annotations

"""Multi-object rigid-body tracker: staged initialization and per-frame filtering."""

import logging
import math
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Union

import numpy as np

from .config import TrackerConfig
from .errors import SensorInputMismatchError, TrackerNotInitializedError
from .filter import CoordinateParticleFilter
from .model import (
    POSE_DIMENSION,
    CameraIntrinsics,
    DepthFrame,
    JointState,
    ObjectMesh,
    ObservationScorer,
    RigidBodyPose,
)
from .observation import create_observation_scorer
from .population import ParticlePopulation
from .process_model import DampedAccelerationProcessModel
from .resampling import build_resampler
from .sampling_blocks import SamplingSchedule, full_joint, object_block
from .vision import check_frame_matches

logger = logging.getLogger("rigidtrack.tracker")

# behind the camera: a parked object renders no pixels and scores exactly zero
OUT_OF_FRAME_POSITION = (0.0, 0.0, -1.5)

PartialCandidate = Union[RigidBodyPose, JointState, Sequence[float]]


class StageKind(Enum):
    STAGED = "staged"
    FULL_JOINT_FILTER = "full_joint_filter"
    FULL_JOINT_RESAMPLE = "full_joint_resample"


@dataclass(frozen=True)
class InitializationStage:
    kind: StageKind
    object_index: int | None
    sample_count: int


def out_of_frame_state(object_count: int) -> JointState:
    return JointState(poses=tuple(RigidBodyPose(position=OUT_OF_FRAME_POSITION) for _ in range(object_count)))


def _partial_candidate_vector(candidate: PartialCandidate) -> np.ndarray:
    if isinstance(candidate, RigidBodyPose):
        return candidate.to_vector()
    if isinstance(candidate, JointState):
        if candidate.object_count != 1:
            raise ValueError("partial candidates must describe exactly one object")
        return candidate.poses[0].to_vector()
    vector = np.asarray(candidate, dtype=np.float64)
    if vector.shape != (POSE_DIMENSION,):
        raise ValueError("partial candidate vectors must have 6 entries")
    return vector


class MultiObjectTracker:
    """Owns the particle population and session clock of one tracking session.

    ``initialize`` and ``update`` are serialized by an internal lock; independent
    tracker instances share nothing and may run concurrently.
    """

    def __init__(
        self,
        meshes: Sequence[ObjectMesh],
        intrinsics: CameraIntrinsics,
        config: TrackerConfig | None = None,
        *,
        scorer: ObservationScorer | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._config = config or TrackerConfig()
        self._object_count = len(meshes)
        self._operating_schedule = self._config.validate(self._object_count)
        self._object_names = tuple(mesh.name for mesh in meshes)
        self._intrinsics = intrinsics
        self._rng = rng if rng is not None else np.random.default_rng(self._config.seed)

        if scorer is None:
            selection = create_observation_scorer(
                meshes,
                intrinsics,
                self._config.pixel_model(),
                requested_backend=self._config.observation_backend,
                require_backend=self._config.require_observation_backend,
                surface_subdivisions=self._config.surface_subdivisions,
            )
            scorer = selection.backend
        self._filter = CoordinateParticleFilter(
            process_model=DampedAccelerationProcessModel(
                self._object_count,
                damping=self._config.damping,
                linear_acceleration_sigma=self._config.linear_acceleration_sigma,
                angular_acceleration_sigma=self._config.angular_acceleration_sigma,
                centers=[mesh.center() for mesh in meshes],
            ),
            observation_scorer=scorer,
            schedule=full_joint(self._object_count),
            max_kl_divergence=self._config.max_kl_divergence,
            resampler=build_resampler(self._config.resampler),
            rng=self._rng,
        )

        self._lock = threading.Lock()
        self._initialized = False
        self._last_timestamp_s: float | None = None
        self._stages: tuple[InitializationStage, ...] = ()

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def intrinsics(self) -> CameraIntrinsics:
        return self._intrinsics

    @property
    def object_count(self) -> int:
        return self._object_count

    @property
    def object_names(self) -> tuple[str, ...]:
        return self._object_names

    @property
    def schedule(self) -> SamplingSchedule:
        return self._filter.schedule

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def last_timestamp_s(self) -> float | None:
        return self._last_timestamp_s

    @property
    def initialization_stages(self) -> tuple[InitializationStage, ...]:
        return self._stages

    @property
    def population(self) -> ParticlePopulation:
        with self._lock:
            return self._filter.population

    def _control(self) -> np.ndarray:
        return np.zeros(self._object_count * POSE_DIMENSION, dtype=np.float64)

    def _check_frame(self, frame: DepthFrame) -> None:
        check_frame_matches(frame, self._intrinsics)
        if not math.isfinite(frame.timestamp_s):
            raise SensorInputMismatchError("depth frame timestamp must be finite")

    def initialize(
        self,
        candidate_states: Sequence[JointState] | Sequence[PartialCandidate],
        first_frame: DepthFrame,
        *,
        partial: bool = False,
    ) -> None:
        """Seed the belief from detection candidates scored on ``first_frame``.

        With ``partial=False`` every candidate is a full joint state. With
        ``partial=True`` every candidate is a single-object pose and objects are
        staged one after another in index order: candidate poses are injected for
        object ``b``, only that object's block is scored, and the population is
        resampled back to ``len(candidate_states)`` before object ``b + 1``. Both
        modes end with a resample to ``config.sample_count`` and switch to the
        configured sampling blocks. The session clock is reset.
        """
        if len(candidate_states) == 0:
            raise ValueError("initialize needs at least one candidate state")

        with self._lock:
            self._check_frame(first_frame)
            self._initialized = False
            self._last_timestamp_s = None
            stages: list[InitializationStage] = []
            started = time.perf_counter()

            if partial:
                stages.extend(self._staged_initialization(candidate_states, first_frame))
            else:
                states = list(candidate_states)
                for state in states:
                    if not isinstance(state, JointState) or state.object_count != self._object_count:
                        raise ValueError(
                            f"full-state candidates must be JointState values with {self._object_count} poses"
                        )
                self._filter.schedule = full_joint(self._object_count)
                self._filter.population = ParticlePopulation.from_states(states)
                self._filter.filter(first_frame, 0.0, self._control())
                stages.append(
                    InitializationStage(
                        kind=StageKind.FULL_JOINT_FILTER,
                        object_index=None,
                        sample_count=len(states),
                    )
                )

            self._filter.schedule = full_joint(self._object_count)
            self._filter.resample(self._config.sample_count)
            stages.append(
                InitializationStage(
                    kind=StageKind.FULL_JOINT_RESAMPLE,
                    object_index=None,
                    sample_count=self._config.sample_count,
                )
            )
            self._filter.schedule = self._operating_schedule
            self._stages = tuple(stages)
            self._initialized = True
            logger.info(
                f"initialized {self._object_count} object(s) from {len(candidate_states)} candidates "
                f"({'partial' if partial else 'full'} state) in {time.perf_counter() - started:.3f}s"
            )

    def _staged_initialization(
        self,
        candidates: Sequence[PartialCandidate],
        first_frame: DepthFrame,
    ) -> list[InitializationStage]:
        candidate_vectors = np.stack([_partial_candidate_vector(candidate) for candidate in candidates])
        count = len(candidate_vectors)
        samples = np.tile(out_of_frame_state(self._object_count).to_vector(), (count, 1))

        stages: list[InitializationStage] = []
        for object_index in range(self._object_count):
            logger.info(f"staging object {object_index} ({self._object_names[object_index]})")
            start = object_index * POSE_DIMENSION
            samples = samples.copy()
            samples[:, start:start + POSE_DIMENSION] = candidate_vectors

            self._filter.schedule = object_block(self._object_count, object_index)
            self._filter.population = ParticlePopulation(
                poses=samples,
                velocities=np.zeros_like(samples),
                log_weights=np.zeros(count, dtype=np.float64),
                loglikes=np.zeros(count, dtype=np.float64),
            )
            self._filter.filter(first_frame, 0.0, self._control())
            self._filter.resample(count)
            samples = self._filter.population.poses
            stages.append(
                InitializationStage(
                    kind=StageKind.STAGED,
                    object_index=object_index,
                    sample_count=count,
                )
            )
        return stages

    def update(self, frame: DepthFrame) -> JointState:
        """Filter one frame and return the mean joint state."""
        with self._lock:
            if not self._initialized:
                raise TrackerNotInitializedError("initialize the tracker before filtering frames")
            self._check_frame(frame)

            dt = 0.0 if self._last_timestamp_s is None else frame.timestamp_s - self._last_timestamp_s
            if dt < 0.0:
                logger.warning(
                    f"frame timestamp {frame.timestamp_s:.6f} precedes the last processed frame "
                    f"{self._last_timestamp_s:.6f}; filtering with zero elapsed time"
                )
                dt = 0.0

            started = time.perf_counter()
            self._filter.filter(frame, dt, self._control())
            logger.debug(f"filter step (dt={dt:.4f}s) took {time.perf_counter() - started:.3f}s")

            self._last_timestamp_s = frame.timestamp_s
            return self._filter.population.mean()

    def mean(self) -> JointState:
        with self._lock:
            if not self._initialized:
                raise TrackerNotInitializedError("tracker has no belief yet")
            return self._filter.population.mean()
