"""Shared constants, records and errors for the cube-fit search and renderer."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]
GridTriple = Tuple[int, int, int]

# Search grid: 73 steps per axis (0..72), 5 degrees apart.
GRID_STEPS = 73
ANGLE_STEP_DEG = 5.0

# Records the renderer can hold; search and renderer share this bound.
CAPACITY = 72 * 72 * 72

# rotation.x, rotation.y, rotation.z, scale as little-endian float32.
RECORD_DTYPE = np.dtype("<f4")
RECORD_FIELDS = 4
RECORD_SIZE = RECORD_FIELDS * RECORD_DTYPE.itemsize

RENDER_RESOLUTION = (256, 256)
FAST_STEP_BATCH = 250
DEFAULT_DATA_FILE = "data.bin"


# ─── Errors ──────────────────────────────────────────────────────────────────

class CubeFitError(Exception):
    """Base exception for search, persistence and rendering errors."""
    pass


class InitializationError(CubeFitError):
    """A required collaborator (oracle, reference solid) is missing."""
    pass


class FormatError(CubeFitError):
    """Persisted sample data does not have the fixed record layout."""
    pass


class DeviceError(CubeFitError):
    """Kernel dispatch or result transfer failed on the compute device."""
    pass


# ─── Records ─────────────────────────────────────────────────────────────────

def _to_f32(value: float) -> float:
    return float(np.float32(value))


@dataclass(frozen=True)
class Sample:
    """One evaluated grid point: outer-cube rotation (degrees) and its scale.

    Values are held at single precision, the width used on disk and on the
    device.
    """

    rotation: Vec3
    scale: float

    def __post_init__(self):
        rx, ry, rz = self.rotation
        object.__setattr__(self, "rotation", (_to_f32(rx), _to_f32(ry), _to_f32(rz)))
        object.__setattr__(self, "scale", _to_f32(self.scale))

    def to_record(self) -> Tuple[float, float, float, float]:
        return (self.rotation[0], self.rotation[1], self.rotation[2], self.scale)

    @classmethod
    def from_record(cls, record) -> "Sample":
        rx, ry, rz, scale = (float(v) for v in record)
        return cls(rotation=(rx, ry, rz), scale=scale)


@dataclass
class BestFit:
    """Smallest scale seen in the current run (sentinel: ``scale = inf``)."""

    rotation: Optional[Vec3] = None
    scale: float = math.inf
    index: Optional[GridTriple] = None

    @property
    def is_set(self) -> bool:
        return self.rotation is not None and math.isfinite(self.scale)


@dataclass
class VisualTransform:
    """Rotation and uniform scale of the secondary visualization cube."""

    rotation: Vec3 = (0.0, 0.0, 0.0)
    scale: float = 1.0


@dataclass
class Probe:
    """Nearest vertex direction, hit distance and scale of the last step."""

    vertex: np.ndarray = field(default_factory=lambda: np.zeros(3))
    distance: float = math.inf
    scale: float = math.nan


@dataclass(frozen=True)
class GridIndex:
    """Per-axis rotation counters; ``iz`` advances fastest."""

    ix: int = 0
    iy: int = 0
    iz: int = 0

    def angles(self, step_deg: float = ANGLE_STEP_DEG) -> Vec3:
        return (self.ix * step_deg, self.iy * step_deg, self.iz * step_deg)

    def advanced(self, steps_per_axis: int = GRID_STEPS) -> Tuple["GridIndex", bool]:
        """Return the next index and whether the outer axis overflowed."""
        ix, iy, iz = self.ix, self.iy, self.iz + 1
        if iz >= steps_per_axis:
            iz = 0
            iy += 1
        if iy >= steps_per_axis:
            iy = 0
            ix += 1
        if ix >= steps_per_axis:
            return GridIndex(), True
        return GridIndex(ix, iy, iz), False

    def as_tuple(self) -> GridTriple:
        return (self.ix, self.iy, self.iz)
