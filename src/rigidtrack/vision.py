from __future__ import annotations

"""Projection, depth-frame preparation and box-mesh helpers."""

import numpy as np

from .errors import SensorInputMismatchError
from .model import CameraIntrinsics, DepthFrame, ObjectMesh


def project_points(
    points_camera: np.ndarray,
    intrinsics: CameraIntrinsics,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Pixel rows, columns and depths of the points landing inside the image.

    The fourth array is the boolean mask over the input points that selects them.
    """
    points = np.asarray(points_camera, dtype=np.float64)
    z = points[:, 2]
    in_front = z > 1e-6
    safe_z = np.where(in_front, z, 1.0)

    with np.errstate(invalid="ignore"):
        u = np.floor(intrinsics.fx_px * points[:, 0] / safe_z + intrinsics.cx_px)
        v = np.floor(intrinsics.fy_px * points[:, 1] / safe_z + intrinsics.cy_px)
    valid = (
        in_front
        & (u >= 0)
        & (u < intrinsics.width_px)
        & (v >= 0)
        & (v < intrinsics.height_px)
    )
    return v[valid].astype(np.int64), u[valid].astype(np.int64), z[valid], valid


def prepare_frame(
    depth: np.ndarray,
    timestamp_s: float,
    *,
    depth_scale: float = 1.0,
    downsampling_factor: int = 1,
) -> DepthFrame:
    """Raw sensor depth to a metric, downsampled ``DepthFrame``.

    ``depth_scale`` converts raw units to metres (0.001 for uint16 millimetres).
    Zero, negative and non-finite readings become NaN.
    """
    if downsampling_factor < 1:
        raise ValueError("downsampling_factor must be >= 1")
    raw = np.asarray(depth)
    if raw.ndim != 2:
        raise SensorInputMismatchError(f"depth image must be 2D, got shape {raw.shape}")

    metres = raw[::downsampling_factor, ::downsampling_factor].astype(np.float64) * float(depth_scale)
    metres[~np.isfinite(metres) | (metres <= 0.0)] = np.nan
    return DepthFrame(depth_m=metres, timestamp_s=float(timestamp_s))


def check_frame_matches(frame: DepthFrame, intrinsics: CameraIntrinsics) -> None:
    expected = (intrinsics.height_px, intrinsics.width_px)
    if frame.shape != expected:
        raise SensorInputMismatchError(
            f"depth frame shape {frame.shape} does not match camera intrinsics {expected}"
        )


def box3d_corners(size_xyz: tuple[float, float, float]) -> np.ndarray:
    hx, hy, hz = (size_xyz[0] * 0.5, size_xyz[1] * 0.5, size_xyz[2] * 0.5)
    corners: list[tuple[float, float, float]] = []
    for sx in (-1.0, 1.0):
        for sy in (-1.0, 1.0):
            for sz in (-1.0, 1.0):
                corners.append((sx * hx, sy * hy, sz * hz))
    return np.asarray(corners, dtype=np.float64)


# corner index = 4 * (x > 0) + 2 * (y > 0) + (z > 0)
_BOX_TRIANGLES = np.asarray(
    (
        (0, 1, 3), (0, 3, 2),  # -x
        (4, 6, 7), (4, 7, 5),  # +x
        (0, 4, 5), (0, 5, 1),  # -y
        (2, 3, 7), (2, 7, 6),  # +y
        (0, 2, 6), (0, 6, 4),  # -z
        (1, 5, 7), (1, 7, 3),  # +z
    ),
    dtype=np.int64,
)


def box_mesh(name: str, size_xyz: tuple[float, float, float]) -> ObjectMesh:
    """Closed box mesh centred on the object origin."""
    return ObjectMesh(name=name, vertices=box3d_corners(size_xyz), triangles=_BOX_TRIANGLES.copy())
