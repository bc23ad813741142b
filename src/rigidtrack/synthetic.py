from __future__ import annotations

"""Synthetic depth scenes of moving boxes for demos and tests."""

from dataclasses import dataclass, field

import numpy as np
from scipy.spatial.transform import Rotation

from .model import CameraIntrinsics, JointState, ObjectMesh, RigidBodyPose
from .rendering import PointSplatRenderer
from .vision import box_mesh


def kinect_intrinsics() -> CameraIntrinsics:
    return CameraIntrinsics(
        width_px=640,
        height_px=480,
        fx_px=525.0,
        fy_px=525.0,
        cx_px=319.5,
        cy_px=239.5,
    )


@dataclass(frozen=True)
class SyntheticObject:
    name: str
    size_xyz: tuple[float, float, float]
    start: RigidBodyPose
    linear_velocity: tuple[float, float, float] = (0.0, 0.0, 0.0)
    angular_velocity: tuple[float, float, float] = (0.0, 0.0, 0.0)

    def mesh(self) -> ObjectMesh:
        return box_mesh(self.name, self.size_xyz)

    def pose_at(self, t_s: float) -> RigidBodyPose:
        position = np.asarray(self.start.position) + t_s * np.asarray(self.linear_velocity)
        rotation = Rotation.from_rotvec(t_s * np.asarray(self.angular_velocity)) * self.start.rotation()
        quat = rotation.as_quat()
        return RigidBodyPose(
            position=(float(position[0]), float(position[1]), float(position[2])),
            orientation=(float(quat[0]), float(quat[1]), float(quat[2]), float(quat[3])),
        )


def default_objects(count: int) -> tuple[SyntheticObject, ...]:
    catalog = (
        SyntheticObject(
            name="box_a",
            size_xyz=(0.16, 0.12, 0.10),
            start=RigidBodyPose(position=(-0.12, 0.02, 1.0)),
            linear_velocity=(0.05, 0.0, 0.0),
            angular_velocity=(0.0, 0.2, 0.0),
        ),
        SyntheticObject(
            name="box_b",
            size_xyz=(0.10, 0.10, 0.18),
            start=RigidBodyPose(position=(0.15, -0.03, 1.1)),
            linear_velocity=(-0.02, 0.03, 0.0),
        ),
        SyntheticObject(
            name="box_c",
            size_xyz=(0.08, 0.20, 0.08),
            start=RigidBodyPose(position=(0.0, 0.14, 0.9)),
            angular_velocity=(0.1, 0.0, 0.0),
        ),
    )
    if not 1 <= count <= len(catalog):
        raise ValueError(f"synthetic scenes support 1..{len(catalog)} objects")
    return catalog[:count]


@dataclass
class SyntheticScene:
    objects: tuple[SyntheticObject, ...]
    intrinsics: CameraIntrinsics = field(default_factory=kinect_intrinsics)
    background_depth_m: float = 2.0
    noise_std_m: float = 0.002
    surface_subdivisions: int = 24

    def __post_init__(self) -> None:
        self._renderer = PointSplatRenderer(
            self.meshes(),
            self.intrinsics,
            surface_subdivisions=self.surface_subdivisions,
        )

    def meshes(self) -> list[ObjectMesh]:
        return [obj.mesh() for obj in self.objects]

    def object_names(self) -> list[str]:
        return [obj.name for obj in self.objects]

    def state_at(self, t_s: float) -> JointState:
        return JointState(poses=tuple(obj.pose_at(t_s) for obj in self.objects))

    def depth_at(self, t_s: float, rng: np.random.Generator | None = None) -> np.ndarray:
        """Sensor-resolution depth in metres: a flat wall behind the rendered objects."""
        rendered = self._renderer.render_image(self.state_at(t_s).to_vector())
        depth = np.fmin(rendered, self.background_depth_m)
        if rng is not None and self.noise_std_m > 0.0:
            depth = depth + rng.normal(0.0, self.noise_std_m, size=depth.shape)
        return depth

    def perturbed_candidates(
        self,
        object_index: int,
        count: int,
        rng: np.random.Generator,
        *,
        t_s: float = 0.0,
        position_std_m: float = 0.02,
        rotation_std_rad: float = 0.1,
    ) -> list[RigidBodyPose]:
        truth = self.objects[object_index].pose_at(t_s)
        candidates: list[RigidBodyPose] = []
        for _ in range(count):
            vector = truth.to_vector()
            vector[:3] += rng.normal(0.0, position_std_m, size=3)
            rotation = Rotation.from_rotvec(rng.normal(0.0, rotation_std_rad, size=3)) * truth.rotation()
            vector[3:] = rotation.as_rotvec()
            candidates.append(RigidBodyPose.from_vector(vector))
        return candidates
