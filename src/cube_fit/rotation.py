"""Euler-angle conversions shared by the search engine and the renderer.

Angles are degrees. A rotation ``(rx, ry, rz)`` is applied about the fixed
Z axis first, then X, then Y, i.e. ``R = Ry @ Rx @ Rz``.
"""

from typing import Sequence

import numpy as np
import torch
from scipy.spatial.transform import Rotation


def rotation_matrix(rotation_deg: Sequence[float]) -> np.ndarray:
    """3x3 rotation matrix for one ``(rx, ry, rz)`` triple in degrees."""
    rx, ry, rz = (float(v) for v in rotation_deg)
    return Rotation.from_euler("zxy", [rz, rx, ry], degrees=True).as_matrix()


def rotation_matrices(rotations_deg: np.ndarray) -> np.ndarray:
    """Stack of rotation matrices, shape ``(n, 3, 3)``, for ``(n, 3)`` angles."""
    angles = np.asarray(rotations_deg, dtype=float).reshape(-1, 3)
    if len(angles) == 0:
        return np.zeros((0, 3, 3))
    return Rotation.from_euler("zxy", angles[:, [2, 0, 1]], degrees=True).as_matrix()


def rotation_matrices_torch(rotations_deg: torch.Tensor) -> torch.Tensor:
    """Device-side equivalent of :func:`rotation_matrices`.

    Args:
        rotations_deg: ``(n, 3)`` tensor of ``(rx, ry, rz)`` in degrees.

    Returns:
        ``(n, 3, 3)`` tensor on the same device and dtype.
    """
    rad = torch.deg2rad(rotations_deg)
    cx, cy, cz = torch.cos(rad).unbind(-1)
    sx, sy, sz = torch.sin(rad).unbind(-1)
    one = torch.ones_like(cx)
    zero = torch.zeros_like(cx)

    rx_m = torch.stack([
        torch.stack([one, zero, zero], -1),
        torch.stack([zero, cx, -sx], -1),
        torch.stack([zero, sx, cx], -1),
    ], -2)
    ry_m = torch.stack([
        torch.stack([cy, zero, sy], -1),
        torch.stack([zero, one, zero], -1),
        torch.stack([-sy, zero, cy], -1),
    ], -2)
    rz_m = torch.stack([
        torch.stack([cz, -sz, zero], -1),
        torch.stack([sz, cz, zero], -1),
        torch.stack([zero, zero, one], -1),
    ], -2)
    return ry_m @ rx_m @ rz_m
