from __future__ import annotations

"""Session configuration for the multi-object tracker."""

import json
import math
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

from .errors import InvalidConfigurationError
from .observation import DepthPixelModel, visibility_prior
from .resampling import build_resampler
from .sampling_blocks import SamplingSchedule, from_config

_OBSERVATION_BACKENDS = {"cpu", "torch", "gpu", "cuda"}


@dataclass(frozen=True)
class TrackerConfig:
    sample_count: int = 200
    sampling_blocks: tuple[tuple[int, ...], ...] | None = None
    max_kl_divergence: float = 2.0
    p_visible_init: float = 0.1
    p_visible_visible: float = 0.5
    p_visible_occluded: float = 0.1
    linear_acceleration_sigma: float = 1.0
    angular_acceleration_sigma: float = 10.0
    damping: float = 5.0
    tail_weight: float = 0.01
    model_sigma: float = 0.003
    sigma_factor: float = 0.00142478
    max_depth_m: float = 6.0
    exponential_rate: float = -math.log(0.5)
    downsampling_factor: int = 2
    observation_backend: str = "cpu"
    require_observation_backend: bool = False
    resampler: str = "systematic"
    surface_subdivisions: int = 16
    seed: int | None = None

    @staticmethod
    def from_mapping(values: Mapping[str, Any]) -> "TrackerConfig":
        known = {field.name for field in fields(TrackerConfig)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise InvalidConfigurationError(f"unknown tracker parameters: {unknown}")

        kwargs = dict(values)
        blocks = kwargs.get("sampling_blocks")
        if blocks is not None:
            try:
                kwargs["sampling_blocks"] = tuple(tuple(int(index) for index in block) for block in blocks)
            except (TypeError, ValueError) as exc:
                raise InvalidConfigurationError("sampling_blocks must be a list of index lists") from exc
        return TrackerConfig(**kwargs)

    def validate(self, object_count: int) -> SamplingSchedule:
        """Check every parameter for ``object_count`` objects; returns the operating schedule."""
        if object_count <= 0:
            raise InvalidConfigurationError("at least one object is required")
        if self.sample_count <= 0:
            raise InvalidConfigurationError("sample_count must be > 0")
        if self.max_kl_divergence < 0.0 or math.isnan(self.max_kl_divergence):
            raise InvalidConfigurationError("max_kl_divergence must be >= 0")
        if self.downsampling_factor < 1:
            raise InvalidConfigurationError("downsampling_factor must be >= 1")
        if self.surface_subdivisions < 1:
            raise InvalidConfigurationError("surface_subdivisions must be >= 1")
        if self.damping < 0.0:
            raise InvalidConfigurationError("damping must be >= 0")
        if self.linear_acceleration_sigma < 0.0 or self.angular_acceleration_sigma < 0.0:
            raise InvalidConfigurationError("acceleration sigmas must be >= 0")
        if self.observation_backend.strip().lower() not in _OBSERVATION_BACKENDS:
            raise InvalidConfigurationError(
                f"observation_backend must be one of {sorted(_OBSERVATION_BACKENDS)}"
            )
        try:
            build_resampler(self.resampler)
            self.pixel_model()
        except ValueError as exc:
            raise InvalidConfigurationError(str(exc)) from exc
        return from_config(self.sampling_blocks, object_count)

    def pixel_model(self) -> DepthPixelModel:
        return DepthPixelModel(
            tail_weight=self.tail_weight,
            model_sigma=self.model_sigma,
            sigma_factor=self.sigma_factor,
            max_depth_m=self.max_depth_m,
            exponential_rate=self.exponential_rate,
            p_visible=visibility_prior(
                self.p_visible_init,
                self.p_visible_visible,
                self.p_visible_occluded,
            ),
        )


def load_tracker_config(path: Path, *, overrides: Mapping[str, Any] | None = None) -> TrackerConfig:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidConfigurationError(f"tracker config {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidConfigurationError(f"tracker config {path} must hold a JSON object")
    if overrides:
        payload.update(overrides)
    return TrackerConfig.from_mapping(payload)
