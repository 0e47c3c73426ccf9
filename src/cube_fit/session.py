"""
Per-tick driver that wires the search engine to the renderer.

A display layer (or the CLI) owns one ``SearchSession`` and calls ``tick()``
once per frame. The control triggers map one-to-one onto methods:

    step once         -> step_once()
    run continuously  -> set_auto_step(True)
    run fast          -> set_fast_step(True)  (250 steps per tick while auto)
    render now        -> render_now()
    save / load       -> save() / load()
    show smallest     -> show_smallest()
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import logging
import numpy as np

from cube_fit.contracts import (
    DEFAULT_DATA_FILE,
    FAST_STEP_BATCH,
    InitializationError,
    VisualTransform,
)
from cube_fit.dataset import load_dataset, save_dataset
from cube_fit.renderer import RenderRequest, VolumetricRenderer
from cube_fit.search import RotationSearch

logger = logging.getLogger(__name__)


@dataclass
class CameraPose:
    """Where the render rays start and which way they look."""
    position: Tuple[float, float, float] = (4.0, 3.0, -5.0)
    forward: Tuple[float, float, float] = (-4.0, -3.0, 5.0)


@dataclass
class SessionConfig:
    fast_batch: int = FAST_STEP_BATCH
    data_path: str = DEFAULT_DATA_FILE
    camera: CameraPose = field(default_factory=CameraPose)


class SearchSession:
    """Explicitly composed search + render loop (no global state)."""

    def __init__(
        self,
        search: RotationSearch,
        renderer: VolumetricRenderer,
        config: Optional[SessionConfig] = None,
    ):
        self.search = search
        self.renderer = renderer
        self.config = config or SessionConfig()
        self.auto_step = False
        self.fast_step = False
        self._running = False

    @property
    def dataset(self):
        return self.search.dataset

    @property
    def running(self) -> bool:
        return self._running

    # ── control triggers ─────────────────────────────────────────────────

    def step_once(self) -> None:
        """Arm the search; the next tick evaluates one grid point."""
        self._running = True

    def set_auto_step(self, enabled: bool) -> None:
        self.auto_step = bool(enabled)

    def set_fast_step(self, enabled: bool) -> None:
        self.fast_step = bool(enabled)

    def render_now(self) -> Optional[RenderRequest]:
        """Trim the dataset to the renderer capacity and dispatch a render."""
        self._trim_to_capacity()
        best = self.search.best
        return self.renderer.request(
            self.config.camera.position,
            self.config.camera.forward,
            self.dataset,
            small_rotation=best.rotation,
            small_scale=best.scale,
        )

    def render(self) -> np.ndarray:
        """Blocking variant of ``render_now``; returns the finished target."""
        self._trim_to_capacity()
        best = self.search.best
        return self.renderer.render(
            self.config.camera.position,
            self.config.camera.forward,
            self.dataset,
            small_rotation=best.rotation,
            small_scale=best.scale,
        )

    def save(self, path: Optional[Union[str, Path]] = None) -> Path:
        return save_dataset(self.dataset, path or self.config.data_path)

    def load(self, path: Optional[Union[str, Path]] = None) -> None:
        load_dataset(self.dataset, path or self.config.data_path)
        best = self.search.rebuild_best_fit()
        logger.info("Best fit after load: scale %.6f at %s", best.scale, best.index)

    def show_smallest(self) -> VisualTransform:
        """Put the visualization cube at the best fit found so far."""
        best = self.search.best
        if best.is_set:
            self.search.visual.rotation = best.rotation
            self.search.visual.scale = best.scale
        return self.search.visual

    # ── frame loop ───────────────────────────────────────────────────────

    def tick(self) -> bool:
        """Advance the search and poll the renderer once.

        Returns True if a render completed during this tick.
        """
        count = self.config.fast_batch if (self.auto_step and self.fast_step) else 1
        for _ in range(count):
            if not self._running:
                break
            try:
                self.search.step()
            except InitializationError:
                self._running = False
                raise
            if self.search.finished or not self.auto_step:
                self._running = False
        return self.renderer.poll()

    def status(self) -> Dict[str, object]:
        """Values a display layer shows next to the render."""
        best = self.search.best
        return {
            "step": self.search.index.as_tuple(),
            "attempted": self.search.attempted_steps,
            "finished": self.search.finished,
            "samples": len(self.dataset),
            "last_scale": self.search.probe.scale,
            "smallest_scale": best.scale,
            "smallest_index": best.index,
            "render_state": self.renderer.state.value,
            "render_target": np.asarray(self.renderer.target),
        }

    def _trim_to_capacity(self) -> None:
        dropped = self.dataset.truncate_to_capacity(self.renderer.config.capacity)
        if dropped:
            logger.info("Dropped %d samples past render capacity", dropped)
