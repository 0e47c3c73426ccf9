from __future__ import annotations

import subprocess
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
SCRIPT = REPO_ROOT / "scripts" / "run_cube_search.py"


def _run(*args: str) -> subprocess.CompletedProcess:
    cmd = [sys.executable, str(SCRIPT), "--device", "cpu", *args]
    return subprocess.run(cmd, capture_output=True, text=True)


def test_search_saves_samples_and_renders(tmp_path: Path):
    data = tmp_path / "data.bin"
    png = tmp_path / "render.png"

    proc = _run(
        "--steps-per-axis", "3",
        "--angle-step", "40",
        "--data", str(data),
        "--render", str(png),
    )
    assert proc.returncode == 0, proc.stderr
    assert "Search complete: 27 steps" in proc.stdout
    assert "Smallest scale:" in proc.stdout
    assert "Rendered" in proc.stdout

    assert data.exists()
    assert data.stat().st_size % 16 == 0
    assert data.stat().st_size > 0
    assert png.exists()
    assert png.stat().st_size > 0


def test_load_reuses_saved_samples(tmp_path: Path):
    data = tmp_path / "data.bin"
    first = _run("--steps-per-axis", "2", "--angle-step", "45", "--data", str(data))
    assert first.returncode == 0, first.stderr
    samples = data.stat().st_size // 16

    second = _run("--load", "--angle-step", "45", "--data", str(data))
    assert second.returncode == 0, second.stderr
    assert f"Loaded {samples} samples" in second.stdout
    assert "Smallest scale:" in second.stdout


def test_max_steps_gives_partial_search(tmp_path: Path):
    proc = _run("--max-steps", "3", "--data", str(tmp_path / "data.bin"))
    assert proc.returncode == 0, proc.stderr
    assert "Search partial:" in proc.stdout


def test_missing_mesh_file_is_rejected(tmp_path: Path):
    proc = _run("--mesh", str(tmp_path / "missing.stl"))
    assert proc.returncode != 0
    assert "Mesh file not found" in proc.stderr
