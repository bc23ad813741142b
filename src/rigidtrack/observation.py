from __future__ import annotations

"""Batched depth-image scoring of joint rigid-body hypotheses (CPU and torch backends)."""

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Sequence

import numpy as np

from .model import CameraIntrinsics, DepthFrame, ObjectMesh, ObservationScorer
from .rendering import PointSplatRenderer

logger = logging.getLogger("rigidtrack.observation")

_SQRT_2PI = math.sqrt(2.0 * math.pi)


def visibility_prior(
    p_visible_init: float,
    p_visible_visible: float,
    p_visible_occluded: float,
) -> float:
    """Probability that a rendered pixel is visible after one occlusion-process step.

    ``p_visible_visible`` is P(visible | previously visible) and ``p_visible_occluded``
    is P(visible | previously occluded).
    """
    for name, value in (
        ("p_visible_init", p_visible_init),
        ("p_visible_visible", p_visible_visible),
        ("p_visible_occluded", p_visible_occluded),
    ):
        if not 0.0 <= value <= 1.0:
            raise ValueError(f"{name} must lie in [0, 1]")
    return p_visible_init * p_visible_visible + (1.0 - p_visible_init) * p_visible_occluded


@dataclass(frozen=True)
class DepthPixelModel:
    """Per-pixel depth likelihood with a uniform outlier tail.

    A pixel where the object renders at depth ``d`` explains the observed depth ``o``
    either as the visible surface (Gaussian, sigma growing quadratically with ``d``)
    or as an occluder in front of it (truncated exponential on ``[0, d]``). Both are
    mixed with a uniform tail of weight ``tail_weight`` over ``[0, max_depth_m]``.
    Scores are log-ratios against the background model used for pixels where nothing
    renders, so hypotheses outside the image score exactly zero.
    """

    tail_weight: float = 0.01
    model_sigma: float = 0.003
    sigma_factor: float = 0.00142478
    max_depth_m: float = 6.0
    exponential_rate: float = -math.log(0.5)
    p_visible: float = 0.5

    def __post_init__(self) -> None:
        if not 0.0 < self.tail_weight < 1.0:
            raise ValueError("tail_weight must lie in (0, 1)")
        if self.model_sigma <= 0.0 or self.sigma_factor < 0.0:
            raise ValueError("model_sigma must be > 0 and sigma_factor >= 0")
        if self.max_depth_m <= 0.0 or self.exponential_rate <= 0.0:
            raise ValueError("max_depth_m and exponential_rate must be > 0")
        if not 0.0 <= self.p_visible <= 1.0:
            raise ValueError("p_visible must lie in [0, 1]")

    def _truncated_exponential(self, observed: np.ndarray, limit: np.ndarray) -> np.ndarray:
        rate = self.exponential_rate
        density = rate * np.exp(-rate * observed) / (1.0 - np.exp(-rate * limit))
        return np.where((observed >= 0.0) & (observed <= limit), density, 0.0)

    def background_density(self, observed: np.ndarray) -> np.ndarray:
        observed = np.asarray(observed, dtype=np.float64)
        tail = self.tail_weight / self.max_depth_m
        limit = np.full_like(observed, self.max_depth_m)
        return (1.0 - self.tail_weight) * self._truncated_exponential(observed, limit) + tail

    def object_density(self, observed: np.ndarray, rendered: np.ndarray) -> np.ndarray:
        observed = np.asarray(observed, dtype=np.float64)
        rendered = np.asarray(rendered, dtype=np.float64)
        tail = self.tail_weight / self.max_depth_m

        sigma = self.model_sigma + self.sigma_factor * rendered**2
        gaussian = np.exp(-0.5 * ((observed - rendered) / sigma) ** 2) / (sigma * _SQRT_2PI)
        visible = (1.0 - self.tail_weight) * gaussian + tail
        occluded = (1.0 - self.tail_weight) * self._truncated_exponential(observed, rendered) + tail
        return self.p_visible * visible + (1.0 - self.p_visible) * occluded

    def log_ratio(self, observed: np.ndarray, rendered: np.ndarray) -> np.ndarray:
        observed = np.asarray(observed, dtype=np.float64)
        valid = np.isfinite(observed)
        safe_observed = np.where(valid, observed, 0.0)
        ratio = np.log(self.object_density(safe_observed, rendered)) - np.log(
            self.background_density(safe_observed)
        )
        return np.where(valid, ratio, 0.0)


class CpuObservationScorer(ObservationScorer):
    def __init__(
        self,
        meshes: Sequence[ObjectMesh],
        intrinsics: CameraIntrinsics,
        pixel_model: DepthPixelModel,
        *,
        surface_subdivisions: int = 16,
    ) -> None:
        self._renderer = PointSplatRenderer(
            meshes,
            intrinsics,
            surface_subdivisions=surface_subdivisions,
        )
        self._pixel_model = pixel_model

    @property
    def backend_name(self) -> str:
        return "cpu"

    @property
    def renderer(self) -> PointSplatRenderer:
        return self._renderer

    def score(self, poses: np.ndarray, frame: DepthFrame) -> np.ndarray:
        poses = np.atleast_2d(np.asarray(poses, dtype=np.float64))
        rendered = self._renderer.render(poses)
        observed = np.asarray(frame.depth_m, dtype=np.float64).reshape(-1)[rendered.pixel_indices]
        per_pixel = self._pixel_model.log_ratio(observed, rendered.depths_m)
        return np.bincount(rendered.particle_indices, weights=per_pixel, minlength=poses.shape[0])


class TorchObservationScorer(ObservationScorer):
    """Same pixel model evaluated with torch, on CUDA when available."""

    def __init__(
        self,
        meshes: Sequence[ObjectMesh],
        intrinsics: CameraIntrinsics,
        pixel_model: DepthPixelModel,
        *,
        surface_subdivisions: int = 16,
        prefer_cuda: bool = True,
    ) -> None:
        try:
            import torch
        except Exception as exc:
            raise ImportError("torch is required for the torch observation backend") from exc

        self._torch: Any = torch
        use_cuda = bool(prefer_cuda and torch.cuda.is_available())
        self._device = torch.device("cuda" if use_cuda else "cpu")
        self._dtype = torch.float32
        self._intrinsics = intrinsics
        self._pixel_model = pixel_model
        # surface sampling is shared with the CPU renderer
        renderer = PointSplatRenderer(meshes, intrinsics, surface_subdivisions=surface_subdivisions)
        self._surface_points = [
            torch.as_tensor(points, dtype=self._dtype, device=self._device)
            for points in renderer.surface_points
        ]

    @property
    def backend_name(self) -> str:
        return "torch"

    def _axis_angle_matrices(self, rotvecs: Any) -> Any:
        torch = self._torch
        angle = torch.linalg.norm(rotvecs, dim=1, keepdim=True)
        axis = rotvecs / torch.clamp(angle, min=1e-12)
        x, y, z = axis[:, 0], axis[:, 1], axis[:, 2]
        zeros = torch.zeros_like(x)
        skew = torch.stack(
            [
                torch.stack([zeros, -z, y], dim=1),
                torch.stack([z, zeros, -x], dim=1),
                torch.stack([-y, x, zeros], dim=1),
            ],
            dim=1,
        )
        sin = torch.sin(angle)[:, :, None]
        cos = torch.cos(angle)[:, :, None]
        eye = torch.eye(3, dtype=self._dtype, device=self._device)[None, :, :]
        return eye + sin * skew + (1.0 - cos) * (skew @ skew)

    def _log_ratio(self, observed: Any, rendered: Any) -> Any:
        torch = self._torch
        model = self._pixel_model
        tail = model.tail_weight / model.max_depth_m
        rate = model.exponential_rate

        def truncated(value: Any, limit: Any) -> Any:
            density = rate * torch.exp(-rate * value) / (1.0 - torch.exp(-rate * limit))
            inside = (value >= 0.0) & (value <= limit)
            return torch.where(inside, density, torch.zeros_like(density))

        sigma = model.model_sigma + model.sigma_factor * rendered**2
        gaussian = torch.exp(-0.5 * ((observed - rendered) / sigma) ** 2) / (sigma * _SQRT_2PI)
        visible = (1.0 - model.tail_weight) * gaussian + tail
        occluded = (1.0 - model.tail_weight) * truncated(observed, rendered) + tail
        obj = model.p_visible * visible + (1.0 - model.p_visible) * occluded
        background = (1.0 - model.tail_weight) * truncated(
            observed, torch.full_like(observed, model.max_depth_m)
        ) + tail
        return torch.log(obj) - torch.log(background)

    def score(self, poses: np.ndarray, frame: DepthFrame) -> np.ndarray:
        torch = self._torch
        poses_np = np.atleast_2d(np.asarray(poses, dtype=np.float64))
        count = poses_np.shape[0]
        height = self._intrinsics.height_px
        width = self._intrinsics.width_px

        poses_t = torch.as_tensor(poses_np, dtype=self._dtype, device=self._device)
        zbuffer = torch.full((count, height * width), float("inf"), dtype=self._dtype, device=self._device)
        for object_index, points in enumerate(self._surface_points):
            start = object_index * 6
            rotations = self._axis_angle_matrices(poses_t[:, start + 3:start + 6])
            camera = torch.einsum("mij,pj->mpi", rotations, points) + poses_t[:, None, start:start + 3]
            z = camera[:, :, 2]
            safe_z = torch.where(z > 1e-6, z, torch.ones_like(z))
            u = torch.floor(self._intrinsics.fx_px * camera[:, :, 0] / safe_z + self._intrinsics.cx_px)
            v = torch.floor(self._intrinsics.fy_px * camera[:, :, 1] / safe_z + self._intrinsics.cy_px)
            valid = (z > 1e-6) & (u >= 0) & (u < width) & (v >= 0) & (v < height)

            pixel = torch.where(valid, v * width + u, torch.zeros_like(u)).to(torch.int64)
            depth = torch.where(valid, z, torch.full_like(z, float("inf")))
            zbuffer.scatter_reduce_(1, pixel, depth, reduce="amin")

        observed = torch.as_tensor(
            np.asarray(frame.depth_m, dtype=np.float64).reshape(-1),
            dtype=self._dtype,
            device=self._device,
        )[None, :].expand(count, -1)
        rendered_mask = torch.isfinite(zbuffer) & torch.isfinite(observed)
        safe_rendered = torch.where(rendered_mask, zbuffer, torch.ones_like(zbuffer))
        safe_observed = torch.where(rendered_mask, observed, torch.zeros_like(observed))
        ratio = self._log_ratio(safe_observed, safe_rendered)
        ratio = torch.where(rendered_mask, ratio, torch.zeros_like(ratio))
        return ratio.sum(dim=1).detach().cpu().numpy().astype(np.float64)


class CallableObservationScorer(ObservationScorer):
    """Adapts a plain ``fn(poses, frame) -> log-likelihoods`` to the scorer interface."""

    def __init__(self, fn: Callable[[np.ndarray, DepthFrame], Sequence[float]], *, name: str = "callable") -> None:
        self._fn = fn
        self._name = name

    @property
    def backend_name(self) -> str:
        return self._name

    def score(self, poses: np.ndarray, frame: DepthFrame) -> np.ndarray:
        return np.asarray(self._fn(poses, frame), dtype=np.float64)


@dataclass(frozen=True)
class ObservationScorerSelection:
    backend: ObservationScorer
    requested_backend: str


def create_observation_scorer(
    meshes: Sequence[ObjectMesh],
    intrinsics: CameraIntrinsics,
    pixel_model: DepthPixelModel,
    *,
    requested_backend: str = "cpu",
    require_backend: bool = False,
    surface_subdivisions: int = 16,
) -> ObservationScorerSelection:
    normalized = requested_backend.strip().lower()

    if normalized in {"torch", "gpu", "cuda"}:
        try:
            return ObservationScorerSelection(
                backend=TorchObservationScorer(
                    meshes,
                    intrinsics,
                    pixel_model,
                    surface_subdivisions=surface_subdivisions,
                    prefer_cuda=True,
                ),
                requested_backend=normalized,
            )
        except Exception as exc:
            if require_backend:
                raise
            logger.warning(f"torch observation backend unavailable ({exc}); falling back to cpu")

    elif normalized != "cpu":
        raise ValueError("Unknown observation backend. Expected one of: cpu, torch, gpu, cuda")

    return ObservationScorerSelection(
        backend=CpuObservationScorer(
            meshes,
            intrinsics,
            pixel_model,
            surface_subdivisions=surface_subdivisions,
        ),
        requested_backend=normalized,
    )
