from __future__ import annotations

"""Partitions of the joint-state coordinates into jointly proposed blocks."""

from dataclasses import dataclass
from typing import Sequence

from .errors import InvalidConfigurationError
from .model import POSE_DIMENSION


@dataclass(frozen=True)
class SamplingSchedule:
    blocks: tuple[tuple[int, ...], ...]
    dimension: int

    def __post_init__(self) -> None:
        if self.dimension <= 0:
            raise InvalidConfigurationError("sampling schedule dimension must be > 0")
        if not self.blocks:
            raise InvalidConfigurationError("sampling schedule needs at least one block")
        for block in self.blocks:
            if not block:
                raise InvalidConfigurationError("sampling blocks must not be empty")
            for index in block:
                if not 0 <= index < self.dimension:
                    raise InvalidConfigurationError(
                        f"sampling block index {index} outside state dimension {self.dimension}"
                    )

    @property
    def is_full_cover(self) -> bool:
        flat = [index for block in self.blocks for index in block]
        return len(flat) == self.dimension and set(flat) == set(range(self.dimension))

    def validate_full_cover(self) -> None:
        seen: set[int] = set()
        duplicated: set[int] = set()
        for block in self.blocks:
            for index in block:
                if index in seen:
                    duplicated.add(index)
                seen.add(index)
        if duplicated:
            raise InvalidConfigurationError(f"sampling blocks repeat coordinates {duplicated}")
        missing = sorted(set(range(self.dimension)) - seen)
        if missing:
            raise InvalidConfigurationError(f"sampling blocks miss coordinates {missing}")

    def __len__(self) -> int:
        return len(self.blocks)


def full_joint(object_count: int) -> SamplingSchedule:
    dimension = object_count * POSE_DIMENSION
    return SamplingSchedule(blocks=(tuple(range(dimension)),), dimension=dimension)


def per_object(object_count: int) -> SamplingSchedule:
    return SamplingSchedule(
        blocks=tuple(
            tuple(range(index * POSE_DIMENSION, (index + 1) * POSE_DIMENSION))
            for index in range(object_count)
        ),
        dimension=object_count * POSE_DIMENSION,
    )


def object_block(object_count: int, object_index: int) -> SamplingSchedule:
    """Reduced schedule that only touches the pose of ``object_index``."""
    if not 0 <= object_index < object_count:
        raise IndexError(f"object index {object_index} out of range")
    start = object_index * POSE_DIMENSION
    return SamplingSchedule(
        blocks=(tuple(range(start, start + POSE_DIMENSION)),),
        dimension=object_count * POSE_DIMENSION,
    )


def from_config(blocks: Sequence[Sequence[int]] | None, object_count: int) -> SamplingSchedule:
    """Operating schedule from configured blocks; ``None`` means one block per object."""
    if object_count <= 0:
        raise InvalidConfigurationError("object count must be > 0")
    if blocks is None:
        return per_object(object_count)

    schedule = SamplingSchedule(
        blocks=tuple(tuple(int(index) for index in block) for block in blocks),
        dimension=object_count * POSE_DIMENSION,
    )
    schedule.validate_full_cover()
    return schedule
