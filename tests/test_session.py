from __future__ import annotations

import numpy as np
import pytest

from rigidtrack.config import TrackerConfig
from rigidtrack.errors import InvalidConfigurationError, TrackerNotInitializedError
from rigidtrack.model import CameraIntrinsics, JointState, RigidBodyPose
from rigidtrack.observation import CallableObservationScorer
from rigidtrack.session import TrackingSession
from rigidtrack.vision import box_mesh


def _sensor_intrinsics() -> CameraIntrinsics:
    return CameraIntrinsics(
        width_px=80,
        height_px=60,
        fx_px=80.0,
        fy_px=80.0,
        cx_px=39.5,
        cy_px=29.5,
    )


def _config() -> TrackerConfig:
    return TrackerConfig(sample_count=30, downsampling_factor=2, surface_subdivisions=2, seed=0)


def _candidates() -> list[RigidBodyPose]:
    return [RigidBodyPose(position=(0.01 * index, 0.0, 1.0)) for index in range(10)]


def _depth() -> np.ndarray:
    return np.full((60, 80), 2000, dtype=np.uint16)


def _session(seen: list | None = None) -> TrackingSession:
    def factory(meshes, intrinsics, config):
        if seen is not None:
            seen.append(([mesh.name for mesh in meshes], intrinsics, config))
        return CallableObservationScorer(lambda poses, frame: -np.abs(poses[:, 0]))

    return TrackingSession(_config(), scorer_factory=factory, depth_scale=0.001)


def _start(session: TrackingSession, names: tuple[str, ...] = ("mug",)) -> None:
    session.start(
        list(names),
        [box_mesh("mesh", (0.1, 0.1, 0.1)) for _ in names],
        _sensor_intrinsics(),
        _candidates(),
        _depth(),
        0.0,
    )


def test_start_downsamples_intrinsics_and_names_meshes() -> None:
    seen: list = []
    session = _session(seen)

    _start(session, ("mug", "box"))

    names, intrinsics, config = seen[0]
    assert names == ["mug", "box"]
    assert (intrinsics.width_px, intrinsics.height_px) == (40, 30)
    assert intrinsics.fx_px == pytest.approx(40.0)
    assert config.sample_count == 30
    assert session.running
    assert session.tracker.object_names == ("mug", "box")
    assert session.tracker.is_initialized


def test_process_frame_reports_estimate_to_listeners() -> None:
    session = _session()
    received: list[tuple[tuple[str, ...], JointState, float]] = []
    session.add_listener(lambda names, state, stamp: received.append((names, state, stamp)))
    _start(session)

    result = session.process_frame(_depth(), 0.1)

    assert result.ok
    assert result.error == ""
    assert result.state is not None
    assert result.state.object_count == 1
    assert received == [(("mug",), result.state, 0.1)]


def test_process_frame_reports_failures_without_stopping() -> None:
    session = _session()
    received: list = []
    session.add_listener(lambda names, state, stamp: received.append(stamp))
    _start(session)

    failed = session.process_frame(np.ones((10, 10), dtype=np.uint16), 0.1)
    recovered = session.process_frame(_depth(), 0.2)

    assert not failed.ok
    assert failed.state is None
    assert failed.error.startswith("SensorInputMismatchError:")
    assert recovered.ok
    assert received == [0.2]
    assert session.tracker.last_timestamp_s == 0.2


def test_process_frame_without_session_fails() -> None:
    result = _session().process_frame(_depth(), 0.0)

    assert not result.ok
    assert "no tracking session" in result.error


def test_start_rejects_inconsistent_objects() -> None:
    session = _session()

    with pytest.raises(InvalidConfigurationError, match="names but"):
        session.start(["a", "b"], [box_mesh("a", (0.1, 0.1, 0.1))], _sensor_intrinsics(), _candidates(), _depth(), 0.0)
    with pytest.raises(InvalidConfigurationError, match="unique"):
        _start(session, ("a", "a"))
    assert not session.running


def test_stop_releases_the_tracker() -> None:
    session = _session()
    _start(session)

    session.stop()

    assert not session.running
    with pytest.raises(TrackerNotInitializedError):
        _ = session.tracker


def test_restart_replaces_the_running_tracker() -> None:
    session = _session()
    _start(session, ("mug",))
    first = session.tracker

    _start(session, ("box",))

    assert session.tracker is not first
    assert session.tracker.object_names == ("box",)


def test_session_builds_cpu_scorer_without_factory() -> None:
    session = TrackingSession(_config(), depth_scale=0.001)

    _start(session)
    result = session.process_frame(_depth(), 0.05)

    assert result.ok
