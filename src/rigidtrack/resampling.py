from __future__ import annotations

"""Importance resamplers over normalized weight vectors."""

import numpy as np

from .model import Resampler


def _cumulative(weights: np.ndarray) -> np.ndarray:
    cumulative = np.cumsum(np.asarray(weights, dtype=np.float64))
    return cumulative / cumulative[-1]


class SystematicResampler(Resampler):
    def resample_indices(self, weights: np.ndarray, count: int, rng: np.random.Generator) -> np.ndarray:
        if count <= 0:
            raise ValueError("resample count must be > 0")

        cumulative = _cumulative(weights)
        step = 1.0 / count
        start = rng.random() * step
        points = start + step * np.arange(count, dtype=np.float64)
        indices = np.searchsorted(cumulative, points, side="left")
        return np.clip(indices, 0, len(cumulative) - 1)


class StratifiedResampler(Resampler):
    def resample_indices(self, weights: np.ndarray, count: int, rng: np.random.Generator) -> np.ndarray:
        if count <= 0:
            raise ValueError("resample count must be > 0")

        cumulative = _cumulative(weights)
        points = (np.arange(count, dtype=np.float64) + rng.random(count)) / count
        indices = np.searchsorted(cumulative, points, side="left")
        return np.clip(indices, 0, len(cumulative) - 1)


class MultinomialResampler(Resampler):
    def resample_indices(self, weights: np.ndarray, count: int, rng: np.random.Generator) -> np.ndarray:
        if count <= 0:
            raise ValueError("resample count must be > 0")

        probabilities = np.asarray(weights, dtype=np.float64)
        return rng.choice(len(probabilities), size=count, replace=True, p=probabilities / probabilities.sum())


def build_resampler(name: str) -> Resampler:
    normalized = name.strip().lower()
    if normalized == "systematic":
        return SystematicResampler()
    if normalized == "stratified":
        return StratifiedResampler()
    if normalized == "multinomial":
        return MultinomialResampler()
    raise ValueError("Unknown resampler. Expected one of: systematic, stratified, multinomial")
