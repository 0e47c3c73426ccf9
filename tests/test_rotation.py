"""Tests for Euler-angle conversion."""
import numpy as np
import pytest
import torch

from cube_fit.rotation import rotation_matrices, rotation_matrices_torch, rotation_matrix


def _axis_matrix(axis: str, deg: float) -> np.ndarray:
    c, s = np.cos(np.radians(deg)), np.sin(np.radians(deg))
    if axis == "x":
        return np.array([[1.0, 0.0, 0.0], [0.0, c, -s], [0.0, s, c]])
    if axis == "y":
        return np.array([[c, 0.0, s], [0.0, 1.0, 0.0], [-s, 0.0, c]])
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


class TestRotationMatrix:

    def test_identity_at_zero(self):
        assert np.allclose(rotation_matrix((0.0, 0.0, 0.0)), np.eye(3))

    def test_composition_order_is_z_then_x_then_y(self):
        rx, ry, rz = 20.0, 35.0, 50.0
        expected = _axis_matrix("y", ry) @ _axis_matrix("x", rx) @ _axis_matrix("z", rz)
        assert np.allclose(rotation_matrix((rx, ry, rz)), expected)

    def test_batched_matches_single(self):
        angles = np.array([[0.0, 0.0, 0.0], [10.0, 20.0, 30.0], [355.0, 90.0, 180.0]])
        stacked = rotation_matrices(angles)
        assert stacked.shape == (3, 3, 3)
        for a, m in zip(angles, stacked):
            assert np.allclose(rotation_matrix(a), m)

    def test_empty_batch(self):
        assert rotation_matrices(np.zeros((0, 3))).shape == (0, 3, 3)


class TestTorchRotation:

    @pytest.mark.parametrize("angles", [
        (0.0, 0.0, 0.0),
        (90.0, 0.0, 0.0),
        (0.0, 45.0, 0.0),
        (15.0, 250.0, 330.0),
        (360.0, 5.0, 72.0),
    ])
    def test_matches_scipy(self, angles):
        device_m = rotation_matrices_torch(
            torch.tensor([angles], dtype=torch.float64)
        )[0].numpy()
        assert np.allclose(device_m, rotation_matrix(angles), atol=1e-9)

    def test_orthonormal(self):
        angles = torch.tensor([[33.0, 71.0, 128.0]], dtype=torch.float32)
        m = rotation_matrices_torch(angles)[0]
        assert torch.allclose(m @ m.T, torch.eye(3), atol=1e-5)
