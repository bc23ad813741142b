from __future__ import annotations

"""Error taxonomy for the tracking core."""


class TrackingError(Exception):
    """Base class for every failure raised by rigidtrack."""


class InvalidConfigurationError(TrackingError, ValueError):
    """Missing or out-of-range parameter; the session never starts."""


class SensorInputMismatchError(TrackingError, ValueError):
    """Frame dimensions disagree with the configured camera intrinsics."""


class DegeneratePopulationError(TrackingError, RuntimeError):
    """Empty population, or every weight is zero or non-finite."""


class ObservationScorerError(TrackingError, RuntimeError):
    """The observation scorer failed or returned an unusable batch."""


class TrackerNotInitializedError(TrackingError, RuntimeError):
    """A frame was filtered before the tracker was initialized."""
