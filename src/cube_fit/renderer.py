"""
GPU ray-cast renderer for the sampled (rotation, scale) cubes.

Every sample is drawn as a cube centred at the origin, rotated by the sample
rotation, with half extent ``cube_half_extent * scale``. The renderer:

1. Copies the dataset (truncated to capacity) into a device buffer that is
   allocated once for exactly ``capacity`` records.
2. Dispatches the ray-cast kernel over the output grid in work groups; each
   pixel casts one pinhole-camera ray and slab-tests it against the cubes.
3. Starts an asynchronous device-to-host copy of the RGBA results.
4. On a later ``poll()`` that finds the copy complete, decodes the flat buffer
   into the (height, width, 4) render target.

Compositing modes:
    nearest       shade the nearest cube surface along the ray (default)
    intersection  shade the entry point of the volume shared by all cubes

Pixels whose ray also passes through the best-fit cube are blended halfway
towards the highlight color. Background is transparent black.

Uses PyTorch as the compute device: CUDA with a side stream, pinned host
memory and an event when available, otherwise the CPU (where the transfer
completes immediately).
"""

import contextlib
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence, Tuple

import logging
import numpy as np
import torch

from cube_fit.contracts import (
    CAPACITY,
    RECORD_FIELDS,
    RENDER_RESOLUTION,
    DeviceError,
)
from cube_fit.dataset import SampleDataset
from cube_fit.rotation import rotation_matrices_torch

logger = logging.getLogger(__name__)

COMPOSITE_MODES = ("nearest", "intersection")
_EPS = 1e-9


class RenderState(Enum):
    IDLE = "idle"
    PENDING = "pending"
    READY = "ready"


@dataclass
class RenderConfig:
    """Output grid, kernel partitioning and shading parameters."""
    resolution: Tuple[int, int] = RENDER_RESOLUTION   # (width, height)
    capacity: int = CAPACITY
    workgroup_size: Tuple[int, int] = (16, 16)
    cube_chunk: int = 4096           # cubes tested per kernel pass
    fov_deg: float = 60.0            # vertical field of view
    cube_half_extent: float = 1.0    # half extent of a cube at scale 1
    composite: str = "nearest"
    device: Optional[str] = None     # None: cuda if available, else cpu
    base_color: Tuple[float, float, float] = (0.85, 0.85, 0.85)
    highlight_color: Tuple[float, float, float] = (1.0, 0.3, 0.1)
    ambient: float = 0.2

    @property
    def dispatch_shape(self) -> Tuple[int, int, int]:
        """Work groups along x and y; covers the whole grid."""
        width, height = self.resolution
        group_x, group_y = self.workgroup_size
        return (math.ceil(width / group_x), math.ceil(height / group_y), 1)


class RenderRequest:
    """Handle on one dispatched render and its device-to-host copy."""

    def __init__(self, host_buffer: torch.Tensor, event, active_count: int):
        self.host_buffer = host_buffer
        self.active_count = active_count
        self._event = event

    def done(self) -> bool:
        if self._event is None:
            return True
        return bool(self._event.query())

    def wait(self) -> None:
        if self._event is not None:
            self._event.synchronize()


class VolumetricRenderer:
    """Owns the device buffers and the render target."""

    def __init__(self, config: Optional[RenderConfig] = None):
        self.config = config or RenderConfig()
        if self.config.composite not in COMPOSITE_MODES:
            raise ValueError(
                f"Unknown composite mode '{self.config.composite}' "
                f"(expected one of {COMPOSITE_MODES})"
            )

        device = self.config.device or ("cuda" if torch.cuda.is_available() else "cpu")
        self.device = torch.device(device)
        width, height = self.config.resolution
        on_cuda = self.device.type == "cuda"

        try:
            self._data_buffer = torch.zeros(
                (self.config.capacity, RECORD_FIELDS), dtype=torch.float32, device=self.device
            )
            self._result_buffer = torch.zeros(
                (width * height, 4), dtype=torch.float32, device=self.device
            )
            self._host_buffer = torch.zeros(
                (width * height, 4), dtype=torch.float32, pin_memory=on_cuda
            )
            self._stream = torch.cuda.Stream(device=self.device) if on_cuda else None
        except RuntimeError as exc:
            raise DeviceError(f"Could not allocate render buffers on {self.device}: {exc}") from exc

        self._target = np.zeros((height, width, 4), dtype=np.float32)
        self._pending: Optional[RenderRequest] = None
        self._state = RenderState.IDLE
        self.last_active_count = 0
        logger.info(
            "Renderer on %s: %dx%d, capacity %d, dispatch %s",
            self.device, width, height, self.config.capacity, self.config.dispatch_shape,
        )

    # ── public API ───────────────────────────────────────────────────────

    @property
    def state(self) -> RenderState:
        return self._state

    @property
    def pending(self) -> bool:
        return self._pending is not None

    @property
    def target(self) -> np.ndarray:
        """Read-only view of the last completed render, shape (h, w, 4)."""
        view = self._target.view()
        view.flags.writeable = False
        return view

    def request(
        self,
        camera_position: Sequence[float],
        camera_forward: Sequence[float],
        dataset,
        small_rotation: Optional[Sequence[float]] = None,
        small_scale: float = math.inf,
    ) -> Optional[RenderRequest]:
        """Dispatch a render; returns None while a previous one is pending."""
        if self._pending is not None:
            logger.warning("Render request ignored: previous transfer still pending")
            return None

        records = self._snapshot(dataset)
        try:
            request = self._launch(
                records, camera_position, camera_forward, small_rotation, small_scale
            )
        except RuntimeError as exc:
            raise DeviceError(f"Render dispatch failed: {exc}") from exc

        self._pending = request
        self._state = RenderState.PENDING
        logger.debug("Render dispatched with %d cubes", request.active_count)
        return request

    def poll(self) -> bool:
        """Decode the pending result if its transfer finished.

        Returns True when this call completed a render.
        """
        if self._pending is None:
            return False
        try:
            done = self._pending.done()
        except RuntimeError as exc:
            self._abandon()
            raise DeviceError(f"Render transfer failed: {exc}") from exc
        if not done:
            return False
        self._complete(self._pending)
        return True

    def wait(self) -> None:
        """Block until the pending render (if any) is decoded."""
        if self._pending is None:
            return
        try:
            self._pending.wait()
        except RuntimeError as exc:
            self._abandon()
            raise DeviceError(f"Render transfer failed: {exc}") from exc
        self.poll()

    def render(
        self,
        camera_position: Sequence[float],
        camera_forward: Sequence[float],
        dataset,
        small_rotation: Optional[Sequence[float]] = None,
        small_scale: float = math.inf,
    ) -> np.ndarray:
        """Request, wait and return the finished render target."""
        self.wait()
        self.request(camera_position, camera_forward, dataset, small_rotation, small_scale)
        self.wait()
        return self.target

    def release(self) -> None:
        """Drop device buffers; the renderer is unusable afterwards."""
        self.wait()
        self._data_buffer = None
        self._result_buffer = None
        self._host_buffer = None
        self._stream = None
        if self.device.type == "cuda":
            torch.cuda.empty_cache()

    # ── internals ────────────────────────────────────────────────────────

    def _snapshot(self, dataset) -> np.ndarray:
        capacity = self.config.capacity
        if isinstance(dataset, SampleDataset):
            return dataset.snapshot(capacity)
        records = np.array(dataset, dtype=np.float32).reshape(-1, RECORD_FIELDS)
        return records[:capacity].copy()

    def _abandon(self) -> None:
        self._pending = None
        self._state = RenderState.IDLE

    def _complete(self, request: RenderRequest) -> None:
        width, height = self.config.resolution
        flat = request.host_buffer.numpy()
        # Row-major: index i -> x = i % width, y = i // width.
        np.copyto(self._target, flat.reshape(height, width, 4))
        self.last_active_count = request.active_count
        self._pending = None
        self._state = RenderState.READY

    def _launch(
        self,
        records: np.ndarray,
        camera_position,
        camera_forward,
        small_rotation,
        small_scale,
    ) -> RenderRequest:
        active = len(records)
        if self._stream is not None:
            self._stream.wait_stream(torch.cuda.current_stream(self.device))
            context = torch.cuda.stream(self._stream)
        else:
            context = contextlib.nullcontext()

        with context:
            if active:
                upload = torch.from_numpy(records).to(self.device, non_blocking=True)
                self._data_buffer[:active].copy_(upload)
            self._dispatch(active, camera_position, camera_forward, small_rotation, small_scale)
            self._host_buffer.copy_(self._result_buffer, non_blocking=self._stream is not None)

            event = None
            if self._stream is not None:
                event = torch.cuda.Event()
                event.record(self._stream)
        return RenderRequest(self._host_buffer, event, active)

    def _dispatch(self, active, camera_position, camera_forward, small_rotation, small_scale):
        cfg = self.config
        width, height = cfg.resolution
        group_x, group_y = cfg.workgroup_size
        groups_x, groups_y, _ = cfg.dispatch_shape

        origin, right, up, forward = self._camera_basis(camera_position, camera_forward)

        cubes = self._data_buffer[:active]
        rotations = rotation_matrices_torch(cubes[:, :3])
        halves = cubes[:, 3] * cfg.cube_half_extent

        best = None
        if small_rotation is not None and math.isfinite(small_scale) and small_scale > 0:
            best_angles = torch.tensor(
                [[float(a) for a in small_rotation]], dtype=torch.float32, device=self.device
            )
            best_half = torch.tensor(
                [small_scale * cfg.cube_half_extent], dtype=torch.float32, device=self.device
            )
            best = (rotation_matrices_torch(best_angles), best_half)

        for gy in range(groups_y):
            ys = torch.arange(gy * group_y, min((gy + 1) * group_y, height), device=self.device)
            for gx in range(groups_x):
                xs = torch.arange(gx * group_x, min((gx + 1) * group_x, width), device=self.device)
                yy, xx = torch.meshgrid(ys, xs, indexing="ij")
                yy = yy.reshape(-1)
                xx = xx.reshape(-1)
                dirs = self._pixel_rays(xx, yy, right, up, forward)
                colors = self._shade(origin, dirs, rotations, halves, best)
                self._result_buffer[yy * width + xx] = colors

    def _camera_basis(self, camera_position, camera_forward):
        forward = np.asarray(camera_forward, dtype=float).reshape(3)
        norm = float(np.linalg.norm(forward))
        if norm < 1e-12:
            raise ValueError("Camera forward direction is zero")
        forward = forward / norm

        world_up = np.array([0.0, 1.0, 0.0])
        if np.linalg.norm(np.cross(forward, world_up)) < 1e-6:
            world_up = np.array([0.0, 0.0, 1.0])
        right = np.cross(forward, world_up)
        right /= np.linalg.norm(right)
        up = np.cross(right, forward)

        def as_tensor(v):
            return torch.tensor(np.asarray(v, dtype=float), dtype=torch.float32, device=self.device)

        return (
            as_tensor(np.asarray(camera_position, dtype=float).reshape(3)),
            as_tensor(right),
            as_tensor(up),
            as_tensor(forward),
        )

    def _pixel_rays(self, xx, yy, right, up, forward) -> torch.Tensor:
        width, height = self.config.resolution
        tan_half = math.tan(math.radians(self.config.fov_deg) * 0.5)
        aspect = width / height
        u = ((xx.to(torch.float32) + 0.5) / width * 2.0 - 1.0) * tan_half * aspect
        v = ((yy.to(torch.float32) + 0.5) / height * 2.0 - 1.0) * tan_half
        dirs = forward[None, :] + u[:, None] * right[None, :] + v[:, None] * up[None, :]
        return dirs / dirs.norm(dim=1, keepdim=True)

    def _shade(self, origin, dirs, rotations, halves, best) -> torch.Tensor:
        cfg = self.config
        n_rays = len(dirs)
        if cfg.composite == "intersection":
            hit, normal = self._composite_intersection(origin, dirs, rotations, halves)
        else:
            hit, normal = self._composite_nearest(origin, dirs, rotations, halves)

        lambert = (normal * dirs).sum(dim=1).abs()
        shade = cfg.ambient + (1.0 - cfg.ambient) * lambert
        base = torch.tensor(cfg.base_color, dtype=torch.float32, device=self.device)

        colors = torch.zeros((n_rays, 4), dtype=torch.float32, device=self.device)
        colors[:, :3] = torch.where(hit[:, None], shade[:, None] * base[None, :], colors[:, :3])
        colors[:, 3] = hit.to(torch.float32)

        if best is not None:
            t_near, t_far, _, _ = _slab_test(origin, dirs, best[0], best[1])
            through_best = (t_far >= t_near.clamp(min=0.0))[:, 0]
            highlight = torch.tensor(cfg.highlight_color, dtype=torch.float32, device=self.device)
            blended = 0.5 * colors[:, :3] + 0.5 * highlight[None, :]
            colors[:, :3] = torch.where(through_best[:, None], blended, colors[:, :3])
            colors[:, 3] = torch.where(through_best, torch.ones_like(colors[:, 3]), colors[:, 3])
        return colors

    def _composite_nearest(self, origin, dirs, rotations, halves):
        n_rays = len(dirs)
        best_t = torch.full((n_rays,), math.inf, device=self.device)
        normal = torch.zeros((n_rays, 3), device=self.device)
        rows = torch.arange(n_rays, device=self.device)

        for start in range(0, len(halves), self.config.cube_chunk):
            rot = rotations[start:start + self.config.cube_chunk]
            t_near, t_far, axis_near, axis_far = _slab_test(
                origin, dirs, rot, halves[start:start + self.config.cube_chunk]
            )
            hit = (t_far >= t_near) & (t_far > 0.0)
            inside = t_near <= 0.0
            t_hit = torch.where(inside, t_far, t_near)
            t_hit = torch.where(hit, t_hit, torch.full_like(t_hit, math.inf))
            axis = torch.where(inside, axis_far, axis_near)

            chunk_t, chunk_cube = t_hit.min(dim=1)
            closer = chunk_t < best_t
            chunk_axis = axis[rows, chunk_cube]
            chunk_normal = rot[chunk_cube][rows, :, chunk_axis]
            best_t = torch.where(closer, chunk_t, best_t)
            normal = torch.where(closer[:, None], chunk_normal, normal)

        return torch.isfinite(best_t), normal

    def _composite_intersection(self, origin, dirs, rotations, halves):
        n_rays = len(dirs)
        if len(halves) == 0:
            return torch.zeros(n_rays, dtype=torch.bool, device=self.device), \
                torch.zeros((n_rays, 3), device=self.device)

        entry_t = torch.full((n_rays,), -math.inf, device=self.device)
        exit_t = torch.full((n_rays,), math.inf, device=self.device)
        normal = torch.zeros((n_rays, 3), device=self.device)
        rows = torch.arange(n_rays, device=self.device)

        for start in range(0, len(halves), self.config.cube_chunk):
            rot = rotations[start:start + self.config.cube_chunk]
            t_near, t_far, axis_near, _ = _slab_test(
                origin, dirs, rot, halves[start:start + self.config.cube_chunk]
            )
            chunk_entry, chunk_cube = t_near.max(dim=1)
            later = chunk_entry > entry_t
            chunk_normal = rot[chunk_cube][rows, :, axis_near[rows, chunk_cube]]
            entry_t = torch.where(later, chunk_entry, entry_t)
            normal = torch.where(later[:, None], chunk_normal, normal)
            exit_t = torch.minimum(exit_t, t_far.min(dim=1).values)

        hit = (exit_t >= entry_t.clamp(min=0.0)) & (exit_t > 0.0)
        # Camera inside the shared volume: face the viewer.
        inside = entry_t <= 0.0
        normal = torch.where(inside[:, None], dirs, normal)
        return hit, normal


def _slab_test(origin, dirs, rotations, halves):
    """Ray-vs-oriented-cube slab test.

    Args:
        origin: (3,) ray origin shared by all rays.
        dirs: (P, 3) unit ray directions.
        rotations: (C, 3, 3) cube rotations; cubes are centred at the origin.
        halves: (C,) cube half extents.

    Returns:
        t_near, t_far: (P, C) entry/exit distances (no hit when t_far < t_near).
        axis_near, axis_far: (P, C) local axis of the entry/exit face.
    """
    # Row-vector form of R^T x is x @ R.
    o_local = torch.einsum("j,cjk->ck", origin, rotations)
    d_local = torch.einsum("pj,cjk->pck", dirs, rotations)
    d_safe = torch.where(
        d_local >= 0.0, d_local.clamp(min=_EPS), d_local.clamp(max=-_EPS)
    )
    inv = 1.0 / d_safe
    h = halves[None, :, None]
    t1 = (-h - o_local[None]) * inv
    t2 = (h - o_local[None]) * inv
    t_near, axis_near = torch.minimum(t1, t2).max(dim=-1)
    t_far, axis_far = torch.maximum(t1, t2).min(dim=-1)
    return t_near, t_far, axis_near, axis_far
