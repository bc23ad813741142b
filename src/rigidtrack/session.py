from __future__ import annotations

"""Tracking session: start/stop control surface and per-frame result reporting."""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Sequence

import numpy as np

from .config import TrackerConfig
from .errors import InvalidConfigurationError, TrackerNotInitializedError, TrackingError
from .model import CameraIntrinsics, JointState, ObjectMesh, ObservationScorer
from .tracker import MultiObjectTracker, PartialCandidate
from .vision import prepare_frame

logger = logging.getLogger("rigidtrack.session")

EstimateListener = Callable[[tuple[str, ...], JointState, float], None]
ScorerFactory = Callable[[Sequence[ObjectMesh], CameraIntrinsics, TrackerConfig], ObservationScorer]


@dataclass(frozen=True)
class FrameResult:
    ok: bool
    timestamp_s: float
    state: JointState | None = None
    error: str = ""


class TrackingSession:
    """Drives one ``MultiObjectTracker`` from raw sensor frames.

    Frames arrive at sensor resolution and are downsampled by
    ``config.downsampling_factor`` together with the camera intrinsics.
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        *,
        scorer_factory: ScorerFactory | None = None,
        depth_scale: float = 1.0,
    ) -> None:
        self._config = config or TrackerConfig()
        self._scorer_factory = scorer_factory
        self._depth_scale = float(depth_scale)
        self._tracker: MultiObjectTracker | None = None
        self._listeners: list[EstimateListener] = []

    @property
    def running(self) -> bool:
        return self._tracker is not None

    @property
    def tracker(self) -> MultiObjectTracker:
        if self._tracker is None:
            raise TrackerNotInitializedError("no tracking session is running")
        return self._tracker

    def add_listener(self, listener: EstimateListener) -> None:
        self._listeners.append(listener)

    def start(
        self,
        object_names: Sequence[str],
        meshes: Sequence[ObjectMesh],
        intrinsics: CameraIntrinsics,
        initial_poses: Sequence[JointState] | Sequence[PartialCandidate],
        first_depth: np.ndarray,
        timestamp_s: float,
        *,
        partial: bool = True,
    ) -> None:
        """Start tracking ``object_names``; ``meshes`` are given in the same order."""
        if len(object_names) != len(meshes):
            raise InvalidConfigurationError(
                f"{len(object_names)} object names but {len(meshes)} meshes"
            )
        if len(set(object_names)) != len(object_names):
            raise InvalidConfigurationError("object names must be unique")
        if self.running:
            self.stop()

        factor = self._config.downsampling_factor
        working_intrinsics = intrinsics.downsampled(factor)
        named_meshes = [replace(mesh, name=name) for name, mesh in zip(object_names, meshes, strict=True)]
        scorer = (
            self._scorer_factory(named_meshes, working_intrinsics, self._config)
            if self._scorer_factory is not None
            else None
        )
        tracker = MultiObjectTracker(named_meshes, working_intrinsics, self._config, scorer=scorer)

        first_frame = prepare_frame(
            first_depth,
            timestamp_s,
            depth_scale=self._depth_scale,
            downsampling_factor=factor,
        )
        tracker.initialize(initial_poses, first_frame, partial=partial)
        self._tracker = tracker
        logger.info(f"tracking session started for objects {list(object_names)}")

    def stop(self) -> None:
        if self._tracker is not None:
            logger.info(f"tracking session stopped for objects {list(self._tracker.object_names)}")
        self._tracker = None

    def process_frame(self, depth: np.ndarray, timestamp_s: float) -> FrameResult:
        """Filter one raw frame; failures are reported, never replaced by a default pose."""
        if self._tracker is None:
            return FrameResult(ok=False, timestamp_s=timestamp_s, error="no tracking session is running")

        try:
            frame = prepare_frame(
                depth,
                timestamp_s,
                depth_scale=self._depth_scale,
                downsampling_factor=self._config.downsampling_factor,
            )
            state = self._tracker.update(frame)
        except TrackingError as exc:
            logger.error(f"frame at t={timestamp_s:.6f} rejected: {exc}")
            return FrameResult(ok=False, timestamp_s=timestamp_s, error=f"{type(exc).__name__}: {exc}")

        for listener in self._listeners:
            listener(self._tracker.object_names, state, timestamp_s)
        return FrameResult(ok=True, timestamp_s=timestamp_s, state=state)
