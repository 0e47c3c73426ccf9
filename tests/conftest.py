"""
Shared test fixtures for the cube-fit search and renderer tests.
"""
import sys
from pathlib import Path

import numpy as np
import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from cube_fit.boundary import BoundaryCage, CollisionOracle, RayHit, reference_solid
from cube_fit.renderer import RenderConfig, VolumetricRenderer
from cube_fit.search import SearchConfig


class ConstantOracle(CollisionOracle):
    """Reports the same hit distance along every ray."""

    def __init__(self, distance: float):
        self.distance = distance
        self.calls = 0

    def raycast(self, origin, direction):
        self.calls += 1
        return RayHit(distance=self.distance)


class NoHitOracle(CollisionOracle):
    """Never hits anything; answers batches without a Python loop."""

    def raycast(self, origin, direction):
        return None

    def raycast_many(self, origins, directions):
        return np.full(len(np.asarray(origins).reshape(-1, 3)), np.inf)


@pytest.fixture
def unit_cube_vertices():
    """Corners at (±1, ±1, ±1)."""
    return np.array(reference_solid("cube", size=1.0).vertices)


@pytest.fixture
def constant_oracle():
    return ConstantOracle(2.0)


@pytest.fixture
def no_hit_oracle():
    return NoHitOracle()


@pytest.fixture
def cube_cage():
    """Outer cube with half extent 1 and box colliders on its six sides."""
    return BoundaryCage.from_mesh(reference_solid("cube", size=1.0))


@pytest.fixture
def small_grid():
    """3 steps per axis, 30 degrees apart: 27 orientations."""
    return SearchConfig(steps_per_axis=3, angle_step_deg=30.0)


@pytest.fixture
def cpu_renderer():
    return VolumetricRenderer(RenderConfig(device="cpu"))
