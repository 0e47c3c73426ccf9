"""
Boundary geometry and the collision oracle used by the rotation search.

The outer boundary is described by its sides: triangles of a mesh grouped by
face normal. Every side gets a box collider sitting just outside it, and the
oracle answers nearest-hit ray queries against the union of those boxes.

Also provides the reference solids (the inner body whose vertices are probed).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import logging
import numpy as np
import trimesh

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RayHit:
    """Nearest intersection along a ray."""
    distance: float


@dataclass
class MeshSide:
    """A group of coplanar triangles sharing one face normal."""
    center: np.ndarray   # (3,) mean of the group's distinct vertices
    normal: np.ndarray   # (3,) unit normal
    face_indices: np.ndarray


# ─── Collision oracle ────────────────────────────────────────────────────────

class CollisionOracle(ABC):
    """Answers nearest-intersection queries against boundary geometry."""

    @abstractmethod
    def raycast(self, origin: np.ndarray, direction: np.ndarray) -> Optional[RayHit]:
        """Return the nearest hit along the ray, or None."""

    def raycast_many(self, origins: np.ndarray, directions: np.ndarray) -> np.ndarray:
        """Nearest hit distance per ray, ``inf`` where nothing is hit."""
        origins = np.asarray(origins, dtype=float).reshape(-1, 3)
        directions = np.asarray(directions, dtype=float).reshape(-1, 3)
        distances = np.full(len(origins), np.inf)
        for i, (origin, direction) in enumerate(zip(origins, directions)):
            hit = self.raycast(origin, direction)
            if hit is not None:
                distances[i] = hit.distance
        return distances


class TrimeshOracle(CollisionOracle):
    """Collision oracle backed by trimesh's ray-triangle intersector."""

    def __init__(self, mesh: trimesh.Trimesh):
        if len(mesh.faces) == 0:
            raise ValueError("Boundary mesh has no faces")
        self.mesh = mesh

    def raycast(self, origin: np.ndarray, direction: np.ndarray) -> Optional[RayHit]:
        distance = float(self.raycast_many(
            np.asarray(origin, dtype=float).reshape(1, 3),
            np.asarray(direction, dtype=float).reshape(1, 3),
        )[0])
        if not np.isfinite(distance):
            return None
        return RayHit(distance=distance)

    def raycast_many(self, origins: np.ndarray, directions: np.ndarray) -> np.ndarray:
        origins = np.asarray(origins, dtype=float).reshape(-1, 3)
        directions = np.asarray(directions, dtype=float).reshape(-1, 3)
        distances = np.full(len(origins), np.inf)
        if len(origins) == 0:
            return distances

        lengths = np.linalg.norm(directions, axis=1, keepdims=True)
        unit = directions / np.maximum(lengths, 1e-12)

        locations, index_ray, _index_tri = self.mesh.ray.intersects_location(
            ray_origins=origins,
            ray_directions=unit,
            multiple_hits=True,
        )
        if len(locations) == 0:
            return distances

        along = np.einsum(
            "ij,ij->i", locations - origins[index_ray], unit[index_ray]
        )
        ahead = along >= 0.0
        np.minimum.at(distances, index_ray[ahead], along[ahead])
        return distances


# ─── Sides and colliders ─────────────────────────────────────────────────────

def extract_sides(mesh: trimesh.Trimesh, decimals: int = 6) -> List[MeshSide]:
    """Group the mesh's triangles by face normal.

    Normals are compared after rounding to *decimals* places. Each side's
    center is the mean of the distinct vertices of its triangles.
    """
    if len(mesh.faces) == 0:
        return []

    normals = np.asarray(mesh.face_normals, dtype=float)
    rounded = np.round(normals, decimals) + 0.0  # fold -0.0 into 0.0
    keys, inverse = np.unique(rounded, axis=0, return_inverse=True)
    inverse = np.asarray(inverse).reshape(-1)

    sides: List[MeshSide] = []
    for group_id in range(len(keys)):
        face_indices = np.flatnonzero(inverse == group_id)
        vertex_ids = np.unique(mesh.faces[face_indices].reshape(-1))
        center = mesh.vertices[vertex_ids].mean(axis=0)
        normal = normals[face_indices].mean(axis=0)
        normal /= max(float(np.linalg.norm(normal)), 1e-12)
        sides.append(MeshSide(center=center, normal=normal, face_indices=face_indices))

    logger.debug("Extracted %d sides from %d faces", len(sides), len(mesh.faces))
    return sides


def build_side_colliders(
    sides: List[MeshSide],
    collider_scale: float = 2.0,
) -> trimesh.Trimesh:
    """One cube collider of edge *collider_scale* per side, just outside it.

    Each box is oriented with the side normal and centred at
    ``center + normal * collider_scale / 2`` so its inner face lies on the
    side's plane.
    """
    if not sides:
        raise ValueError("No sides to place colliders on")

    boxes = []
    for side in sides:
        transform = trimesh.geometry.align_vectors([0.0, 0.0, 1.0], side.normal)
        transform[:3, 3] = side.center + side.normal * (collider_scale * 0.5)
        boxes.append(trimesh.creation.box(
            extents=[collider_scale, collider_scale, collider_scale],
            transform=transform,
        ))
    return trimesh.util.concatenate(boxes)


@dataclass
class BoundaryCage:
    """Outer boundary: its sides, the collider mesh and the oracle over it."""
    sides: List[MeshSide]
    colliders: trimesh.Trimesh
    oracle: TrimeshOracle
    inradius: float   # smallest distance from the origin to a side plane

    @classmethod
    def from_mesh(cls, mesh: trimesh.Trimesh, collider_scale: float = 2.0) -> "BoundaryCage":
        sides = extract_sides(mesh)
        colliders = build_side_colliders(sides, collider_scale)
        inradius = min(abs(float(s.center @ s.normal)) for s in sides)
        logger.info(
            "Boundary cage: %d sides, %d collider faces, inradius %.4f",
            len(sides), len(colliders.faces), inradius,
        )
        return cls(
            sides=sides,
            colliders=colliders,
            oracle=TrimeshOracle(colliders),
            inradius=inradius,
        )


# ─── Reference solids ────────────────────────────────────────────────────────

REFERENCE_SOLIDS = ("tetrahedron", "cube", "octahedron")


def reference_solid(name: str, size: float = 1.0) -> trimesh.Trimesh:
    """Built-in solid centred at the origin.

    *size* is the half extent along each axis: the tetrahedron and cube put
    their corners at ``(±size, ±size, ±size)``, the octahedron its vertices at
    ``±size`` on each axis.
    """
    if name == "cube":
        return trimesh.creation.box(extents=[2.0 * size] * 3)
    if name == "tetrahedron":
        vertices = np.array([
            [1.0, 1.0, 1.0],
            [1.0, -1.0, -1.0],
            [-1.0, 1.0, -1.0],
            [-1.0, -1.0, 1.0],
        ]) * size
        faces = np.array([[0, 1, 2], [0, 3, 1], [0, 2, 3], [1, 3, 2]])
        return trimesh.Trimesh(vertices=vertices, faces=faces, process=False)
    if name == "octahedron":
        vertices = np.array([
            [1.0, 0.0, 0.0], [-1.0, 0.0, 0.0],
            [0.0, 1.0, 0.0], [0.0, -1.0, 0.0],
            [0.0, 0.0, 1.0], [0.0, 0.0, -1.0],
        ]) * size
        faces = np.array([
            [0, 2, 4], [2, 1, 4], [1, 3, 4], [3, 0, 4],
            [2, 0, 5], [1, 2, 5], [3, 1, 5], [0, 3, 5],
        ])
        return trimesh.Trimesh(vertices=vertices, faces=faces, process=False)
    raise ValueError(f"Unknown reference solid '{name}' (expected one of {REFERENCE_SOLIDS})")


def load_reference_mesh(filepath: str) -> trimesh.Trimesh:
    """Load a mesh file (STL, OBJ, GLB, PLY); scenes are flattened."""
    scene_or_mesh = trimesh.load(filepath)
    if isinstance(scene_or_mesh, trimesh.Scene):
        mesh = scene_or_mesh.to_mesh()
    elif isinstance(scene_or_mesh, trimesh.Trimesh):
        mesh = scene_or_mesh
    else:
        raise ValueError(
            f"Unsupported type from trimesh.load: {type(scene_or_mesh)}"
        )
    if len(mesh.vertices) == 0:
        raise ValueError(f"No vertices found in {filepath}")
    mesh.merge_vertices()
    return mesh
