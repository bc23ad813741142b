from __future__ import annotations

import pytest

from rigidtrack.errors import InvalidConfigurationError
from rigidtrack.sampling_blocks import (
    SamplingSchedule,
    from_config,
    full_joint,
    object_block,
    per_object,
)


def test_full_joint_is_one_block_covering_everything() -> None:
    schedule = full_joint(2)

    assert len(schedule) == 1
    assert schedule.blocks[0] == tuple(range(12))
    assert schedule.is_full_cover


def test_per_object_has_one_block_per_object_in_order() -> None:
    schedule = per_object(3)

    assert len(schedule) == 3
    assert schedule.blocks[1] == (6, 7, 8, 9, 10, 11)
    assert schedule.is_full_cover
    schedule.validate_full_cover()


def test_object_block_is_reduced_schedule() -> None:
    schedule = object_block(3, 2)

    assert schedule.blocks == (tuple(range(12, 18)),)
    assert schedule.dimension == 18
    assert not schedule.is_full_cover


def test_object_block_rejects_out_of_range_object() -> None:
    with pytest.raises(IndexError):
        object_block(2, 2)


def test_from_config_defaults_to_per_object() -> None:
    assert from_config(None, 2) == per_object(2)


def test_from_config_accepts_custom_full_cover() -> None:
    blocks = [[0, 1, 2, 6, 7, 8], [3, 4, 5, 9, 10, 11]]

    schedule = from_config(blocks, 2)

    assert schedule.blocks == ((0, 1, 2, 6, 7, 8), (3, 4, 5, 9, 10, 11))


def test_from_config_rejects_missing_coordinates() -> None:
    with pytest.raises(InvalidConfigurationError, match="miss coordinates"):
        from_config([list(range(5))], 1)


def test_from_config_rejects_duplicated_coordinates() -> None:
    with pytest.raises(InvalidConfigurationError, match="repeat coordinates"):
        from_config([[0, 1, 2, 3, 4, 5], [5]], 1)


@pytest.mark.parametrize(
    "blocks",
    [(), ((),), ((0, 6),), ((-1,),)],
)
def test_schedule_rejects_malformed_blocks(blocks: tuple[tuple[int, ...], ...]) -> None:
    with pytest.raises(InvalidConfigurationError):
        SamplingSchedule(blocks=blocks, dimension=6)


def test_from_config_rejects_zero_objects() -> None:
    with pytest.raises(InvalidConfigurationError):
        from_config(None, 0)
