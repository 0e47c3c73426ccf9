"""
Exhaustive rotation-grid search for the smallest enclosing cube scale.

For every grid orientation the outer cube is rotated around the reference
solid. Rays are cast from the origin through each solid vertex; the nearest
boundary hit decides how much the cube must grow (or may shrink) so that the
vertex touches it:

    scale = |v_min| / min_dist

Every successful orientation is appended to the sample dataset and the
smallest scale is tracked as the best fit. The search is incremental: one
``step()`` per grid point, so a driver can spread it over many ticks.
"""

import math
from dataclasses import dataclass
from typing import Optional

import logging
import numpy as np

from cube_fit.boundary import CollisionOracle
from cube_fit.contracts import (
    ANGLE_STEP_DEG,
    FAST_STEP_BATCH,
    GRID_STEPS,
    BestFit,
    GridIndex,
    InitializationError,
    Probe,
    Sample,
    VisualTransform,
)
from cube_fit.dataset import SampleDataset
from cube_fit.rotation import rotation_matrix

logger = logging.getLogger(__name__)


@dataclass
class SearchConfig:
    """Grid resolution of the rotation search."""
    steps_per_axis: int = GRID_STEPS    # counters run 0..steps_per_axis-1
    angle_step_deg: float = ANGLE_STEP_DEG
    progress_log_every: int = 10000

    @property
    def total_steps(self) -> int:
        return self.steps_per_axis ** 3


class RotationSearch:
    """Incremental grid search over outer-cube orientations.

    Args:
        vertices: (n, 3) vertices of the reference solid, in the boundary's
            frame at rotation (0, 0, 0).
        oracle: nearest-hit ray queries against the outer boundary.
        dataset: receives one sample per successful step.
        config: grid resolution.
    """

    def __init__(
        self,
        vertices: Optional[np.ndarray],
        oracle: Optional[CollisionOracle],
        dataset: Optional[SampleDataset] = None,
        config: Optional[SearchConfig] = None,
    ):
        self.vertices = None if vertices is None else np.asarray(vertices, dtype=float).reshape(-1, 3)
        self.oracle = oracle
        self.dataset = dataset if dataset is not None else SampleDataset()
        self.config = config or SearchConfig()

        self.best = BestFit()
        self.visual = VisualTransform()
        self.probe = Probe()
        self._index = GridIndex()
        self._finished = False
        self._attempted = 0

    # ── state ────────────────────────────────────────────────────────────

    @property
    def index(self) -> GridIndex:
        return self._index

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def attempted_steps(self) -> int:
        return self._attempted

    def reset(self, clear_samples: bool = False) -> None:
        """Start a new run: rewind the grid and forget the best fit."""
        self._index = GridIndex()
        self._finished = False
        self._attempted = 0
        self.best = BestFit()
        self.probe = Probe()
        if clear_samples:
            self.dataset.clear()

    def rebuild_best_fit(self) -> BestFit:
        """Recompute the best fit from the samples currently in the dataset."""
        best = BestFit()
        step = self.config.angle_step_deg
        for sample in self.dataset:
            if sample.scale < best.scale:
                best = BestFit(
                    rotation=sample.rotation,
                    scale=sample.scale,
                    index=tuple(int(round(a / step)) for a in sample.rotation),
                )
        self.best = best
        return best

    # ── stepping ─────────────────────────────────────────────────────────

    def step(self) -> Optional[Sample]:
        """Evaluate the current grid point and advance.

        Returns the recorded sample, or None when the search is finished or
        no vertex ray hit the boundary.
        """
        if self._finished:
            return None
        if self.oracle is None:
            raise InitializationError("No collision oracle attached to the search")
        if self.vertices is None:
            raise InitializationError("No reference solid attached to the search")

        if len(self.vertices) == 0:
            logger.info("Reference solid has no vertices; nothing to search")
            self._finished = True
            return None

        index = self._index
        rotation = index.angles(self.config.angle_step_deg)
        self.visual.rotation = rotation

        sample = None
        scale = self._fit_scale(rotation)
        if scale is None:
            logger.debug("No boundary hit at %s; skipping", index.as_tuple())
        else:
            sample = Sample(rotation=rotation, scale=scale)
            self.visual.scale = sample.scale
            self.dataset.append(sample)
            if sample.scale < self.best.scale:
                self.best = BestFit(
                    rotation=sample.rotation,
                    scale=sample.scale,
                    index=index.as_tuple(),
                )

        self._attempted += 1
        self._index, overflowed = index.advanced(self.config.steps_per_axis)
        if overflowed:
            self._finished = True
            logger.info(
                "Search finished after %d steps: %d samples, best scale %.6f at %s",
                self._attempted, len(self.dataset), self.best.scale, self.best.index,
            )
        elif self._attempted % self.config.progress_log_every == 0:
            logger.info(
                "Search step %d/%d, best scale %.6f",
                self._attempted, self.config.total_steps, self.best.scale,
            )
        return sample

    def run_batch(self, count: int = FAST_STEP_BATCH) -> int:
        """Call ``step()`` up to *count* times; return the steps taken."""
        taken = 0
        while taken < count and not self._finished:
            self.step()
            taken += 1
        return taken

    def run_to_completion(self) -> BestFit:
        while not self._finished:
            self.run_batch()
        return self.best

    def _fit_scale(self, rotation) -> Optional[float]:
        # Rotating the cube by R equals rotating the solid by R^T in the
        # cube's frame; row-vector form of R^T v is v @ R.
        matrix = rotation_matrix(rotation)
        local = self.vertices @ matrix
        self.probe = Probe()

        lengths = np.linalg.norm(local, axis=1)
        usable = lengths > 1e-12
        if not usable.any():
            return None
        local = local[usable]
        lengths = lengths[usable]

        directions = local / lengths[:, None]
        distances = np.asarray(
            self.oracle.raycast_many(np.zeros_like(directions), directions),
            dtype=float,
        )
        valid = np.isfinite(distances) & (distances > 0.0)
        if not valid.any():
            return None

        candidates = np.where(valid, distances, np.inf)
        nearest = int(np.argmin(candidates))
        min_dist = float(candidates[nearest])
        scale = float(lengths[nearest]) / min_dist

        self.probe = Probe(vertex=local[nearest], distance=min_dist, scale=scale)
        if not math.isfinite(scale):
            return None
        return scale
