"""Public API for the rotation-grid cube fitting search and its renderer."""

from cube_fit.boundary import (
    BoundaryCage,
    CollisionOracle,
    RayHit,
    TrimeshOracle,
    load_reference_mesh,
    reference_solid,
)
from cube_fit.contracts import (
    CAPACITY,
    BestFit,
    CubeFitError,
    DeviceError,
    FormatError,
    GridIndex,
    InitializationError,
    Sample,
)
from cube_fit.dataset import SampleDataset, decode, encode, load_dataset, save_dataset
from cube_fit.renderer import RenderConfig, RenderState, VolumetricRenderer
from cube_fit.search import RotationSearch, SearchConfig
from cube_fit.session import CameraPose, SearchSession, SessionConfig

__all__ = [
    "BestFit",
    "BoundaryCage",
    "CAPACITY",
    "CameraPose",
    "CollisionOracle",
    "CubeFitError",
    "DeviceError",
    "FormatError",
    "GridIndex",
    "InitializationError",
    "RayHit",
    "RenderConfig",
    "RenderState",
    "RotationSearch",
    "Sample",
    "SampleDataset",
    "SearchConfig",
    "SearchSession",
    "SessionConfig",
    "TrimeshOracle",
    "VolumetricRenderer",
    "decode",
    "encode",
    "load_dataset",
    "load_reference_mesh",
    "reference_solid",
    "save_dataset",
]
