from __future__ import annotations

"""Coordinate (block-wise) particle filter step: propagate, weight, adaptively resample."""

import logging

import numpy as np

from .errors import DegeneratePopulationError, ObservationScorerError
from .model import DepthFrame, ObservationScorer, ProcessModel, Resampler
from .population import ParticlePopulation
from .sampling_blocks import SamplingSchedule

logger = logging.getLogger("rigidtrack.filter")


class CoordinateParticleFilter:
    """Proposes each sampling block from the process model in turn.

    After a block is proposed, every particle is rescored and its log weight grows
    by ``loglike(after block) - loglike(before block)``. The first block of a frame
    starts from zero, so over a full schedule the increments telescope to
    ``log p(frame | final state)``, the standard ``w' = w * p(frame | x')`` update.
    The population is resampled whenever the KL divergence of the weights from
    uniform exceeds ``max_kl_divergence``.
    """

    def __init__(
        self,
        *,
        process_model: ProcessModel,
        observation_scorer: ObservationScorer,
        schedule: SamplingSchedule,
        max_kl_divergence: float,
        resampler: Resampler,
        rng: np.random.Generator,
    ) -> None:
        self._process_model = process_model
        self._scorer = observation_scorer
        self._schedule = schedule
        self._max_kl_divergence = float(max_kl_divergence)
        self._resampler = resampler
        self._rng = rng
        self._population: ParticlePopulation | None = None

    @property
    def schedule(self) -> SamplingSchedule:
        return self._schedule

    @schedule.setter
    def schedule(self, schedule: SamplingSchedule) -> None:
        if self._population is not None and schedule.dimension != self._population.dimension:
            raise ValueError(
                f"schedule dimension {schedule.dimension} does not match "
                f"population dimension {self._population.dimension}"
            )
        self._schedule = schedule

    @property
    def population(self) -> ParticlePopulation:
        if self._population is None:
            raise DegeneratePopulationError("filter has no particles")
        return self._population.copy()

    @population.setter
    def population(self, population: ParticlePopulation) -> None:
        if population.size == 0:
            raise DegeneratePopulationError("cannot set an empty population")
        if population.dimension != self._schedule.dimension:
            raise ValueError(
                f"population dimension {population.dimension} does not match "
                f"schedule dimension {self._schedule.dimension}"
            )
        self._population = population.copy()

    def _score(self, poses: np.ndarray, frame: DepthFrame) -> np.ndarray:
        try:
            loglikes = self._scorer.score(poses, frame)
        except Exception as exc:
            raise ObservationScorerError(f"observation scorer failed: {exc}") from exc

        loglikes = np.asarray(loglikes, dtype=np.float64).reshape(-1)
        if loglikes.shape != (poses.shape[0],):
            raise ObservationScorerError(
                f"observation scorer returned {loglikes.shape[0]} values for {poses.shape[0]} hypotheses"
            )
        return loglikes

    def filter(self, frame: DepthFrame, dt: float, control: np.ndarray) -> None:
        """One propagate-weight-resample step; the population is only replaced on success."""
        working = self.population
        control = np.asarray(control, dtype=np.float64)
        if control.shape != (working.dimension,):
            raise ValueError(f"control input must have {working.dimension} entries")

        for block_index, block in enumerate(self._schedule.blocks):
            working.poses, working.velocities = self._process_model.propagate(
                working.poses,
                working.velocities,
                block,
                dt,
                control,
                self._rng,
            )
            loglikes = self._score(working.poses, frame)
            baseline = working.loglikes if block_index > 0 else np.zeros(working.size, dtype=np.float64)
            with np.errstate(invalid="ignore"):
                working.log_weights = working.log_weights + (loglikes - baseline)
            working.loglikes = loglikes
            working.normalize()

            kl_divergence = working.kl_divergence_from_uniform()
            if kl_divergence > self._max_kl_divergence:
                logger.debug(
                    f"block {block_index}: kl divergence {kl_divergence:.3f} > "
                    f"{self._max_kl_divergence:.3f}, resampling {working.size} particles"
                )
                working = self._resampler.resample(working, working.size, self._rng)

        self._population = working

    def resample(self, count: int) -> None:
        if count <= 0:
            raise ValueError("resample count must be > 0")
        self._population = self._resampler.resample(self.population, count, self._rng)
