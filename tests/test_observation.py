from __future__ import annotations

import math

import numpy as np
import pytest

import rigidtrack.observation as observation
from rigidtrack.model import CameraIntrinsics, DepthFrame
from rigidtrack.observation import (
    CallableObservationScorer,
    CpuObservationScorer,
    DepthPixelModel,
    create_observation_scorer,
    visibility_prior,
)
from rigidtrack.rendering import PointSplatRenderer, sample_mesh_surface
from rigidtrack.vision import box_mesh


def _intrinsics() -> CameraIntrinsics:
    return CameraIntrinsics(
        width_px=64,
        height_px=48,
        fx_px=50.0,
        fy_px=50.0,
        cx_px=31.5,
        cy_px=23.5,
    )


def _pose(x: float = 0.0, y: float = 0.0, z: float = 1.0) -> np.ndarray:
    return np.asarray([x, y, z, 0.0, 0.0, 0.0])


def _observed_frame(renderer: PointSplatRenderer, pose: np.ndarray, *, wall_m: float = 2.0) -> DepthFrame:
    return DepthFrame(depth_m=np.fmin(renderer.render_image(pose), wall_m), timestamp_s=0.0)


def test_visibility_prior_mixes_transition_probabilities() -> None:
    assert visibility_prior(0.1, 0.5, 0.1) == pytest.approx(0.14)
    assert visibility_prior(1.0, 0.7, 0.2) == pytest.approx(0.7)
    with pytest.raises(ValueError, match="p_visible_occluded"):
        visibility_prior(0.1, 0.5, 1.2)


def test_pixel_model_prefers_matching_depth() -> None:
    model = DepthPixelModel(p_visible=visibility_prior(0.1, 0.5, 0.1))
    rendered = np.full(3, 1.0)

    ratios = model.log_ratio(np.asarray([1.0, 1.05, 1.5]), rendered)

    assert ratios[0] > 0.0
    assert ratios[0] > ratios[1]
    # an observation behind the rendered surface cannot be explained by occlusion
    assert ratios[2] < 0.0


def test_pixel_model_treats_occluders_as_plausible() -> None:
    model = DepthPixelModel()

    occluded = model.log_ratio(np.asarray([0.5]), np.asarray([1.0]))
    behind = model.log_ratio(np.asarray([1.5]), np.asarray([1.0]))

    assert occluded[0] > behind[0]


def test_pixel_model_ignores_missing_observations() -> None:
    model = DepthPixelModel()

    ratios = model.log_ratio(np.asarray([math.nan, 1.0]), np.asarray([1.0, 1.0]))

    assert ratios[0] == 0.0
    assert np.isfinite(ratios[1])


def test_pixel_model_validates_parameters() -> None:
    with pytest.raises(ValueError):
        DepthPixelModel(tail_weight=1.0)
    with pytest.raises(ValueError):
        DepthPixelModel(model_sigma=0.0)
    with pytest.raises(ValueError):
        DepthPixelModel(p_visible=1.5)


def test_sampled_surface_stays_on_mesh_bounds() -> None:
    points = sample_mesh_surface(box_mesh("box", (0.2, 0.4, 0.6)), 4)

    assert points.shape[1] == 3
    assert len(points) > 8
    np.testing.assert_allclose(np.abs(points).max(axis=0), (0.1, 0.2, 0.3))
    on_face = np.isclose(np.abs(points), (0.1, 0.2, 0.3)).any(axis=1)
    assert on_face.all()


def test_render_image_keeps_nearest_surface() -> None:
    renderer = PointSplatRenderer([box_mesh("box", (0.2, 0.2, 0.2))], _intrinsics(), surface_subdivisions=16)

    image = renderer.render_image(_pose())

    assert image.shape == (48, 64)
    assert image[23, 31] == pytest.approx(0.9)
    assert np.isnan(image[0, 0])


def test_render_skips_hypotheses_behind_camera() -> None:
    renderer = PointSplatRenderer([box_mesh("box", (0.2, 0.2, 0.2))], _intrinsics(), surface_subdivisions=4)

    rendered = renderer.render(np.stack([_pose(z=-1.5), _pose()]))

    assert rendered.particle_indices.size > 0
    assert set(rendered.particle_indices.tolist()) == {1}
    pairs = set(zip(rendered.particle_indices.tolist(), rendered.pixel_indices.tolist()))
    assert len(pairs) == rendered.pixel_indices.size


def test_render_occludes_farther_object() -> None:
    meshes = [box_mesh("near", (0.2, 0.2, 0.2)), box_mesh("far", (0.4, 0.4, 0.2))]
    renderer = PointSplatRenderer(meshes, _intrinsics(), surface_subdivisions=8)

    image = renderer.render_image(np.concatenate([_pose(z=1.0), _pose(z=2.0)]))

    assert image[23, 31] == pytest.approx(0.9)


def test_cpu_scorer_prefers_true_pose_and_scores_absent_objects_zero() -> None:
    mesh = box_mesh("box", (0.2, 0.2, 0.2))
    scorer = CpuObservationScorer([mesh], _intrinsics(), DepthPixelModel(), surface_subdivisions=8)
    frame = _observed_frame(scorer.renderer, _pose())

    scores = scorer.score(np.stack([_pose(), _pose(x=0.05), _pose(z=-1.5)]), frame)

    assert scores.shape == (3,)
    assert scores[0] > scores[1]
    assert scores[2] == 0.0


def test_cpu_scorer_is_additive_over_hypotheses() -> None:
    mesh = box_mesh("box", (0.2, 0.2, 0.2))
    scorer = CpuObservationScorer([mesh], _intrinsics(), DepthPixelModel(), surface_subdivisions=8)
    frame = _observed_frame(scorer.renderer, _pose())
    poses = np.stack([_pose(), _pose(y=0.02), _pose(z=1.1)])

    batched = scorer.score(poses, frame)
    single = [scorer.score(pose[None, :], frame)[0] for pose in poses]

    np.testing.assert_allclose(batched, single)


def test_callable_scorer_adapts_plain_function() -> None:
    scorer = CallableObservationScorer(lambda poses, frame: -np.sum(poses**2, axis=1), name="quadratic")

    scores = scorer.score(np.asarray([[1.0, 0.0], [0.0, 2.0]]), DepthFrame(np.zeros((1, 1)), 0.0))

    assert scorer.backend_name == "quadratic"
    np.testing.assert_allclose(scores, [-1.0, -4.0])


def test_create_observation_scorer_defaults_to_cpu() -> None:
    selection = create_observation_scorer([box_mesh("box", (0.1, 0.1, 0.1))], _intrinsics(), DepthPixelModel())

    assert isinstance(selection.backend, CpuObservationScorer)
    assert selection.requested_backend == "cpu"


def test_create_observation_scorer_rejects_unknown_backend() -> None:
    with pytest.raises(ValueError, match="Unknown observation backend"):
        create_observation_scorer(
            [box_mesh("box", (0.1, 0.1, 0.1))],
            _intrinsics(),
            DepthPixelModel(),
            requested_backend="opencl",
        )


class _UnavailableTorchScorer:
    def __init__(self, *args, **kwargs) -> None:
        raise ImportError("torch is required for the torch observation backend")


def test_create_observation_scorer_falls_back_when_torch_missing(
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    monkeypatch.setattr(observation, "TorchObservationScorer", _UnavailableTorchScorer)

    with caplog.at_level("WARNING", logger="rigidtrack.observation"):
        selection = create_observation_scorer(
            [box_mesh("box", (0.1, 0.1, 0.1))],
            _intrinsics(),
            DepthPixelModel(),
            requested_backend="GPU",
        )

    assert isinstance(selection.backend, CpuObservationScorer)
    assert selection.requested_backend == "gpu"
    assert "falling back to cpu" in caplog.text


def test_create_observation_scorer_raises_when_backend_required(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(observation, "TorchObservationScorer", _UnavailableTorchScorer)

    with pytest.raises(ImportError):
        create_observation_scorer(
            [box_mesh("box", (0.1, 0.1, 0.1))],
            _intrinsics(),
            DepthPixelModel(),
            requested_backend="torch",
            require_backend=True,
        )


def test_torch_scorer_ranks_hypotheses_like_cpu() -> None:
    pytest.importorskip("torch")
    mesh = box_mesh("box", (0.2, 0.2, 0.2))
    model = DepthPixelModel()
    cpu = CpuObservationScorer([mesh], _intrinsics(), model, surface_subdivisions=8)
    gpu = observation.TorchObservationScorer([mesh], _intrinsics(), model, surface_subdivisions=8, prefer_cuda=False)
    frame = _observed_frame(cpu.renderer, _pose())
    poses = np.stack([_pose(), _pose(x=0.05), _pose(z=-1.5)])

    torch_scores = gpu.score(poses, frame)
    cpu_scores = cpu.score(poses, frame)

    assert gpu.backend_name == "torch"
    assert torch_scores[0] > torch_scores[1]
    assert torch_scores[2] == 0.0
    assert np.argmax(torch_scores) == np.argmax(cpu_scores)
