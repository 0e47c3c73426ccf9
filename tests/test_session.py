"""Tests for the per-tick session driver."""
import math

import numpy as np
import pytest

from cube_fit.contracts import FormatError, InitializationError
from cube_fit.renderer import RenderConfig, RenderState, VolumetricRenderer
from cube_fit.search import RotationSearch
from cube_fit.session import SearchSession, SessionConfig


@pytest.fixture
def session(cube_cage, small_grid, cpu_renderer, tmp_path):
    # The second vertex points at the +x face from farther away.
    vertices = np.array([[0.5, 0.0, 0.0], [0.3, 0.1, 0.0]])
    search = RotationSearch(vertices, cube_cage.oracle, config=small_grid)
    config = SessionConfig(fast_batch=5, data_path=str(tmp_path / "data.bin"))
    return SearchSession(search, cpu_renderer, config)


class TestStepping:

    def test_idle_tick_does_nothing(self, session):
        session.tick()
        assert session.search.attempted_steps == 0

    def test_step_once_runs_one_step(self, session):
        session.step_once()
        session.tick()
        session.tick()
        assert session.search.attempted_steps == 1
        assert not session.running

    def test_auto_step_runs_one_per_tick(self, session):
        session.set_auto_step(True)
        session.step_once()
        for _ in range(3):
            session.tick()
        assert session.search.attempted_steps == 3
        assert session.running

    def test_fast_step_runs_batches(self, session):
        session.set_auto_step(True)
        session.set_fast_step(True)
        session.step_once()
        session.tick()
        assert session.search.attempted_steps == 5

    def test_fast_without_auto_is_single_step(self, session):
        session.set_fast_step(True)
        session.step_once()
        session.tick()
        assert session.search.attempted_steps == 1

    def test_running_stops_when_finished(self, session):
        session.set_auto_step(True)
        session.set_fast_step(True)
        session.step_once()
        for _ in range(10):
            session.tick()
        assert session.search.finished
        assert session.search.attempted_steps == 27
        assert not session.running

    def test_failed_step_stops_running(self, constant_oracle, cpu_renderer):
        session = SearchSession(RotationSearch(None, constant_oracle), cpu_renderer)
        session.set_auto_step(True)
        session.step_once()
        with pytest.raises(InitializationError):
            session.tick()
        assert not session.running
        assert session.tick() is False


class TestRendering:

    def test_render_completes_on_tick(self, session):
        session.set_auto_step(True)
        session.set_fast_step(True)
        session.step_once()
        session.tick()
        session.set_auto_step(False)
        session.tick()
        rendered = len(session.dataset)

        assert session.render_now() is not None
        assert session.status()["render_state"] == RenderState.PENDING.value
        assert session.tick()
        status = session.status()
        assert status["render_state"] == RenderState.READY.value
        assert status["render_target"].shape == (256, 256, 4)
        assert session.renderer.last_active_count == rendered

    def test_render_now_ignored_while_pending(self, session):
        assert session.render_now() is not None
        assert session.render_now() is None

    def test_render_trims_dataset_to_capacity(self, cube_cage, small_grid):
        search = RotationSearch(np.array([[0.5, 0.0, 0.0]]), cube_cage.oracle, config=small_grid)
        renderer = VolumetricRenderer(RenderConfig(capacity=3, device="cpu"))
        session = SearchSession(search, renderer)
        search.run_batch(6)
        head = list(session.dataset)[:3]
        assert len(session.dataset) > 3

        assert session.render_now() is not None
        assert len(session.dataset) == 3
        assert list(session.dataset) == head
        session.tick()
        assert renderer.last_active_count == 3

    def test_blocking_render_trims_dataset(self, cube_cage, small_grid):
        search = RotationSearch(np.array([[0.5, 0.0, 0.0]]), cube_cage.oracle, config=small_grid)
        renderer = VolumetricRenderer(RenderConfig(capacity=2, device="cpu"))
        session = SearchSession(search, renderer)
        search.run_batch(5)

        image = session.render()
        assert image.shape == (256, 256, 4)
        assert len(session.dataset) == 2
        assert renderer.last_active_count == 2


class TestPersistenceAndBestFit:

    def test_save_load_round_trip_rebuilds_best(self, session, tmp_path):
        session.set_auto_step(True)
        session.set_fast_step(True)
        session.step_once()
        while session.running:
            session.tick()
        best_scale = session.search.best.scale
        saved = list(session.dataset)
        path = session.save()

        session.search.reset(clear_samples=True)
        assert math.isinf(session.search.best.scale)

        session.load(path)
        assert list(session.dataset) == saved
        assert session.search.best.scale == best_scale

    def test_failed_load_keeps_state(self, session, tmp_path):
        session.step_once()
        session.tick()
        before = list(session.dataset)
        best = session.search.best.scale

        broken = tmp_path / "broken.bin"
        broken.write_bytes(b"\x00" * 21)
        with pytest.raises(FormatError):
            session.load(broken)
        assert list(session.dataset) == before
        assert session.search.best.scale == best

    def test_show_smallest(self, session):
        session.set_auto_step(True)
        session.set_fast_step(True)
        session.step_once()
        while session.running:
            session.tick()
        visual = session.show_smallest()
        assert visual.scale == session.search.best.scale
        assert visual.rotation == session.search.best.rotation

    def test_status_reports_progress(self, session):
        session.step_once()
        session.tick()
        status = session.status()
        assert status["attempted"] == 1
        assert status["step"] == (0, 0, 1)
        assert status["samples"] == 1
        assert status["smallest_scale"] == pytest.approx(0.5, abs=1e-5)
