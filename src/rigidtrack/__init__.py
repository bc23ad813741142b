"""rigidtrack -- Multi-object rigid-body tracking in depth images with a coordinate particle filter.

Core modules:
  - model:            Data model (CameraIntrinsics, DepthFrame, RigidBodyPose, JointState, etc.)
  - population:       Weighted particle population, KL/ESS diagnostics and manifold-aware means
  - resampling:       Systematic, stratified and multinomial resamplers
  - sampling_blocks:  Partitions of the joint state into jointly proposed blocks
  - process_model:    Damped-acceleration motion of free-floating rigid bodies
  - observation:      Depth pixel model and batched scorers (numpy / torch)
  - filter:           Coordinate particle filter step
  - tracker:          MultiObjectTracker with staged partial initialization
  - session:          TrackingSession start/stop surface for raw sensor frames
  - config:           TrackerConfig and JSON loading

Demo modules:
  - synthetic:        Rendered depth scenes of moving boxes
"""

from .config import TrackerConfig, load_tracker_config
from .errors import (
    DegeneratePopulationError,
    InvalidConfigurationError,
    ObservationScorerError,
    SensorInputMismatchError,
    TrackerNotInitializedError,
    TrackingError,
)
from .filter import CoordinateParticleFilter
from .model import (
    POSE_DIMENSION,
    CameraIntrinsics,
    DepthFrame,
    JointState,
    ObjectMesh,
    ObservationScorer,
    ProcessModel,
    Resampler,
    RigidBodyPose,
)
from .observation import (
    CallableObservationScorer,
    CpuObservationScorer,
    DepthPixelModel,
    ObservationScorerSelection,
    TorchObservationScorer,
    create_observation_scorer,
    visibility_prior,
)
from .population import ParticlePopulation
from .process_model import DampedAccelerationProcessModel
from .resampling import (
    MultinomialResampler,
    StratifiedResampler,
    SystematicResampler,
    build_resampler,
)
from .sampling_blocks import SamplingSchedule, full_joint, object_block, per_object
from .session import FrameResult, TrackingSession
from .tracker import (
    OUT_OF_FRAME_POSITION,
    InitializationStage,
    MultiObjectTracker,
    StageKind,
    out_of_frame_state,
)
from .vision import box_mesh, prepare_frame

__all__ = [
    # model
    "CameraIntrinsics",
    "DepthFrame",
    "JointState",
    "ObjectMesh",
    "ObservationScorer",
    "POSE_DIMENSION",
    "ProcessModel",
    "Resampler",
    "RigidBodyPose",
    # errors
    "DegeneratePopulationError",
    "InvalidConfigurationError",
    "ObservationScorerError",
    "SensorInputMismatchError",
    "TrackerNotInitializedError",
    "TrackingError",
    # filter
    "CallableObservationScorer",
    "CoordinateParticleFilter",
    "CpuObservationScorer",
    "DampedAccelerationProcessModel",
    "DepthPixelModel",
    "MultinomialResampler",
    "ObservationScorerSelection",
    "ParticlePopulation",
    "SamplingSchedule",
    "StratifiedResampler",
    "SystematicResampler",
    "TorchObservationScorer",
    "build_resampler",
    "create_observation_scorer",
    "full_joint",
    "object_block",
    "per_object",
    "visibility_prior",
    # tracker
    "FrameResult",
    "InitializationStage",
    "MultiObjectTracker",
    "OUT_OF_FRAME_POSITION",
    "StageKind",
    "TrackerConfig",
    "TrackingSession",
    "load_tracker_config",
    "out_of_frame_state",
    # vision
    "box_mesh",
    "prepare_frame",
]
