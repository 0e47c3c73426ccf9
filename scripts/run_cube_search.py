#!/usr/bin/env python3
"""
Search the rotation grid for the smallest cube enclosing a reference solid,
save the samples and render them.

Usage:
    python scripts/run_cube_search.py
    python scripts/run_cube_search.py --solid octahedron --steps-per-axis 19 --render out.png
    python scripts/run_cube_search.py --mesh model.stl --data runs/data.bin --max-steps 5000
    python scripts/run_cube_search.py --load --data data.bin --render out.png --composite intersection
"""
import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from cube_fit.boundary import REFERENCE_SOLIDS, BoundaryCage, load_reference_mesh, reference_solid
from cube_fit.contracts import ANGLE_STEP_DEG, DEFAULT_DATA_FILE, FAST_STEP_BATCH, GRID_STEPS
from cube_fit.renderer import COMPOSITE_MODES, RenderConfig, VolumetricRenderer
from cube_fit.search import RotationSearch, SearchConfig
from cube_fit.session import CameraPose, SearchSession, SessionConfig


def _vec3(text: str):
    parts = [float(v) for v in text.split(",")]
    if len(parts) != 3:
        raise argparse.ArgumentTypeError(f"Expected x,y,z but got '{text}'")
    return tuple(parts)


def write_png(image, path: Path) -> Path:
    """Write an RGBA float image (row 0 at the bottom) to PNG."""
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt
    import numpy as np

    path.parent.mkdir(parents=True, exist_ok=True)
    plt.imsave(str(path), np.clip(image, 0.0, 1.0), origin="lower")
    return path


def main():
    parser = argparse.ArgumentParser(
        description="Rotation-grid search for the smallest enclosing cube.",
    )
    parser.add_argument(
        "--solid", default="tetrahedron", choices=list(REFERENCE_SOLIDS),
        help="Built-in reference solid (default: tetrahedron)",
    )
    parser.add_argument(
        "--mesh", default=None,
        help="Reference solid mesh file (overrides --solid)",
    )
    parser.add_argument(
        "--solid-size", type=float, default=0.5,
        help="Half extent of the built-in solid (default: 0.5)",
    )
    parser.add_argument(
        "--boundary-size", type=float, default=1.0,
        help="Half extent of the outer cube (default: 1.0)",
    )
    parser.add_argument(
        "--collider-scale", type=float, default=2.0,
        help="Edge length of the per-side box colliders (default: 2.0)",
    )
    parser.add_argument(
        "--steps-per-axis", type=int, default=GRID_STEPS,
        help=f"Grid steps per rotation axis (default: {GRID_STEPS})",
    )
    parser.add_argument(
        "--angle-step", type=float, default=ANGLE_STEP_DEG,
        help=f"Degrees between grid steps (default: {ANGLE_STEP_DEG})",
    )
    parser.add_argument(
        "--max-steps", type=int, default=None,
        help="Stop once at least this many grid steps ran (default: full grid)",
    )
    parser.add_argument(
        "--data", default=DEFAULT_DATA_FILE,
        help=f"Sample file to save to / load from (default: {DEFAULT_DATA_FILE})",
    )
    parser.add_argument(
        "--load", action="store_true",
        help="Load samples from --data instead of searching",
    )
    parser.add_argument(
        "--render", default=None,
        help="Write the rendered cubes to this PNG path",
    )
    parser.add_argument(
        "--camera-position", type=_vec3, default=None,
        help="Camera position as x,y,z",
    )
    parser.add_argument(
        "--camera-forward", type=_vec3, default=None,
        help="Camera view direction as x,y,z",
    )
    parser.add_argument(
        "--composite", default="nearest", choices=list(COMPOSITE_MODES),
        help="How overlapping cubes are composited (default: nearest)",
    )
    parser.add_argument(
        "--device", default=None,
        help="Torch device for rendering (default: cuda if available, else cpu)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.mesh:
        mesh_path = Path(args.mesh).resolve()
        if not mesh_path.is_file():
            parser.error(f"Mesh file not found: {mesh_path}")
        solid = load_reference_mesh(str(mesh_path))
    else:
        solid = reference_solid(args.solid, size=args.solid_size)

    cage = BoundaryCage.from_mesh(
        reference_solid("cube", size=args.boundary_size),
        collider_scale=args.collider_scale,
    )
    search = RotationSearch(
        solid.vertices,
        cage.oracle,
        config=SearchConfig(
            steps_per_axis=args.steps_per_axis,
            angle_step_deg=args.angle_step,
        ),
    )

    camera = CameraPose()
    if args.camera_position is not None:
        camera.position = args.camera_position
        camera.forward = tuple(-v for v in args.camera_position)
    if args.camera_forward is not None:
        camera.forward = args.camera_forward

    renderer = VolumetricRenderer(RenderConfig(
        cube_half_extent=cage.inradius,
        composite=args.composite,
        device=args.device,
    ))
    session = SearchSession(
        search,
        renderer,
        SessionConfig(fast_batch=FAST_STEP_BATCH, data_path=args.data, camera=camera),
    )

    if args.load:
        session.load()
        print(f"Loaded {len(session.dataset)} samples from {args.data}")
    else:
        print(f"Searching {search.config.total_steps} orientations ...")
        session.set_auto_step(True)
        session.set_fast_step(True)
        session.step_once()
        while session.running:
            session.tick()
            if args.max_steps is not None and search.attempted_steps >= args.max_steps:
                break
        out = session.save()
        print(f"Saved {len(session.dataset)} samples to {out}")

    best = search.best
    status = "complete" if search.finished else "partial"
    print(f"\nSearch {status}: {search.attempted_steps} steps, {len(session.dataset)} samples")
    if best.is_set:
        print(f"Smallest scale: {best.scale:.6f}")
        print(f"Smallest rotation: {best.rotation} (index {best.index})")
    else:
        print("Smallest scale: none (no boundary hits)")

    if args.render:
        image = session.render()
        png = write_png(image, Path(args.render))
        print(f"Rendered {renderer.last_active_count} cubes to {png}")

    renderer.release()
    print("\nDone.")


if __name__ == "__main__":
    main()
