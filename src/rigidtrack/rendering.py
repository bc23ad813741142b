from __future__ import annotations

"""Z-buffered point-splat depth rendering of joint rigid-body hypotheses."""

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from .model import POSE_DIMENSION, CameraIntrinsics, ObjectMesh
from .vision import project_points


def sample_mesh_surface(mesh: ObjectMesh, subdivisions: int) -> np.ndarray:
    """Barycentric grid of points over every triangle (``subdivisions`` steps per edge)."""
    steps = max(1, int(subdivisions))
    vertices = np.asarray(mesh.vertices, dtype=np.float64)
    triangles = np.asarray(mesh.triangles, dtype=np.int64)
    if triangles.size == 0:
        return vertices.copy()

    grid = [
        (i / steps, j / steps)
        for i in range(steps + 1)
        for j in range(steps + 1 - i)
    ]
    bary = np.asarray(grid, dtype=np.float64)
    weights = np.column_stack([1.0 - bary[:, 0] - bary[:, 1], bary[:, 0], bary[:, 1]])

    corners = vertices[triangles]  # (T, 3 corners, 3 xyz)
    points = np.einsum("gk,tkx->tgx", weights, corners).reshape(-1, 3)
    return np.unique(np.round(points, 9), axis=0)


@dataclass(frozen=True)
class SparseDepthRender:
    """Visible surface of every hypothesis: one entry per (particle, pixel)."""

    particle_indices: np.ndarray
    pixel_indices: np.ndarray
    depths_m: np.ndarray


class PointSplatRenderer:
    def __init__(
        self,
        meshes: Sequence[ObjectMesh],
        intrinsics: CameraIntrinsics,
        *,
        surface_subdivisions: int = 16,
    ) -> None:
        if not meshes:
            raise ValueError("renderer needs at least one mesh")
        self._intrinsics = intrinsics
        self._surface_points = [sample_mesh_surface(mesh, surface_subdivisions) for mesh in meshes]

    @property
    def intrinsics(self) -> CameraIntrinsics:
        return self._intrinsics

    @property
    def object_count(self) -> int:
        return len(self._surface_points)

    @property
    def surface_points(self) -> tuple[np.ndarray, ...]:
        return tuple(self._surface_points)

    def camera_points(self, poses: np.ndarray) -> list[np.ndarray]:
        """Per object, the (M, P, 3) camera-frame surface points of every hypothesis."""
        poses = np.atleast_2d(np.asarray(poses, dtype=np.float64))
        if poses.shape[1] != self.object_count * POSE_DIMENSION:
            raise ValueError(f"poses must be Nx{self.object_count * POSE_DIMENSION}")

        transformed: list[np.ndarray] = []
        for object_index, points in enumerate(self._surface_points):
            start = object_index * POSE_DIMENSION
            rotations = Rotation.from_rotvec(poses[:, start + 3:start + 6]).as_matrix()
            translations = poses[:, start:start + 3]
            transformed.append(np.einsum("mij,pj->mpi", rotations, points) + translations[:, None, :])
        return transformed

    def render(self, poses: np.ndarray) -> SparseDepthRender:
        poses = np.atleast_2d(np.asarray(poses, dtype=np.float64))
        count = poses.shape[0]
        width = self._intrinsics.width_px

        particle_parts: list[np.ndarray] = []
        pixel_parts: list[np.ndarray] = []
        depth_parts: list[np.ndarray] = []
        for object_points in self.camera_points(poses):
            per_particle = object_points.shape[1]
            owners = np.repeat(np.arange(count, dtype=np.int64), per_particle)
            rows, cols, depths, valid = project_points(object_points.reshape(-1, 3), self._intrinsics)

            particle_parts.append(owners[valid])
            pixel_parts.append(rows * width + cols)
            depth_parts.append(depths)

        particles = np.concatenate(particle_parts)
        pixels = np.concatenate(pixel_parts)
        depths = np.concatenate(depth_parts)
        if particles.size == 0:
            empty_int = np.empty((0,), dtype=np.int64)
            return SparseDepthRender(empty_int, empty_int.copy(), np.empty((0,), dtype=np.float64))

        # z-buffer: keep the nearest depth per (particle, pixel)
        keys = particles * (self._intrinsics.height_px * width) + pixels
        order = np.lexsort((depths, keys))
        sorted_keys = keys[order]
        first = np.ones(len(order), dtype=bool)
        first[1:] = sorted_keys[1:] != sorted_keys[:-1]
        nearest = order[first]
        return SparseDepthRender(
            particle_indices=particles[nearest],
            pixel_indices=pixels[nearest],
            depths_m=depths[nearest],
        )

    def render_image(self, pose_vector: np.ndarray) -> np.ndarray:
        """Dense depth image of a single joint state; empty pixels are NaN."""
        rendered = self.render(np.asarray(pose_vector, dtype=np.float64)[None, :])
        image = np.full(
            self._intrinsics.height_px * self._intrinsics.width_px,
            np.nan,
            dtype=np.float64,
        )
        image[rendered.pixel_indices] = rendered.depths_m
        return image.reshape(self._intrinsics.height_px, self._intrinsics.width_px)
