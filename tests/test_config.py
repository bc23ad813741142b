from __future__ import annotations

import json
import math
from pathlib import Path

import pytest

from rigidtrack.config import TrackerConfig, load_tracker_config
from rigidtrack.errors import InvalidConfigurationError, TrackingError
from rigidtrack.sampling_blocks import per_object


def test_default_config_validates_to_per_object_schedule() -> None:
    config = TrackerConfig()

    assert config.validate(3) == per_object(3)
    assert config.exponential_rate == pytest.approx(math.log(2.0))


def test_pixel_model_uses_one_step_visibility_prior() -> None:
    model = TrackerConfig(p_visible_init=0.1, p_visible_visible=0.5, p_visible_occluded=0.1).pixel_model()

    assert model.p_visible == pytest.approx(0.14)
    assert model.model_sigma == pytest.approx(0.003)


def test_from_mapping_rejects_unknown_keys() -> None:
    with pytest.raises(InvalidConfigurationError, match="unknown tracker parameters"):
        TrackerConfig.from_mapping({"sample_count": 10, "particles": 5})


def test_from_mapping_normalizes_sampling_blocks() -> None:
    config = TrackerConfig.from_mapping({"sampling_blocks": [[0, 1, 2], [3, 4, 5]]})

    assert config.sampling_blocks == ((0, 1, 2), (3, 4, 5))
    assert len(config.validate(1)) == 2


def test_from_mapping_rejects_malformed_sampling_blocks() -> None:
    with pytest.raises(InvalidConfigurationError, match="sampling_blocks"):
        TrackerConfig.from_mapping({"sampling_blocks": [1, 2]})


@pytest.mark.parametrize(
    "overrides",
    [
        {"sample_count": 0},
        {"max_kl_divergence": -1.0},
        {"max_kl_divergence": math.nan},
        {"downsampling_factor": 0},
        {"surface_subdivisions": 0},
        {"damping": -0.5},
        {"linear_acceleration_sigma": -1.0},
        {"observation_backend": "opencl"},
        {"resampler": "residual"},
        {"tail_weight": 1.5},
        {"p_visible_init": 2.0},
        {"sampling_blocks": ((0, 1, 2),)},
    ],
)
def test_validate_rejects_out_of_range_parameters(overrides: dict) -> None:
    config = TrackerConfig.from_mapping(overrides)

    with pytest.raises(InvalidConfigurationError):
        config.validate(1)


def test_validate_requires_objects() -> None:
    with pytest.raises(InvalidConfigurationError):
        TrackerConfig().validate(0)


def test_configuration_errors_are_value_errors() -> None:
    assert issubclass(InvalidConfigurationError, ValueError)
    assert issubclass(InvalidConfigurationError, TrackingError)


def test_load_tracker_config_applies_overrides(tmp_path: Path) -> None:
    path = tmp_path / "tracker.json"
    path.write_text(json.dumps({"sample_count": 120, "resampler": "stratified", "seed": 3}), encoding="utf-8")

    config = load_tracker_config(path, overrides={"seed": 9})

    assert config.sample_count == 120
    assert config.resampler == "stratified"
    assert config.seed == 9


def test_load_tracker_config_rejects_bad_payloads(tmp_path: Path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    listing = tmp_path / "listing.json"
    listing.write_text("[1, 2]", encoding="utf-8")

    with pytest.raises(InvalidConfigurationError, match="not valid JSON"):
        load_tracker_config(broken)
    with pytest.raises(InvalidConfigurationError, match="JSON object"):
        load_tracker_config(listing)
