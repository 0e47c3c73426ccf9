"""Tests for the grid index and sample records."""
import itertools
import math

import numpy as np

from cube_fit.contracts import (
    CAPACITY,
    GRID_STEPS,
    RECORD_SIZE,
    BestFit,
    GridIndex,
    Sample,
)


class TestGridIndex:
    """Angle mapping and lexicographic advance order."""

    def test_angles_are_index_times_five_within_full_turn(self):
        for i in range(GRID_STEPS):
            angles = GridIndex(i, i, i).angles()
            assert angles == (i * 5.0, i * 5.0, i * 5.0)
            assert 0.0 <= angles[0] <= 360.0

    def test_last_index_is_full_turn(self):
        assert GridIndex(72, 72, 72).angles() == (360.0, 360.0, 360.0)

    def test_iz_advances_fastest(self):
        index = GridIndex()
        visited = [index.as_tuple()]
        for _ in range(26):
            index, overflowed = index.advanced(3)
            assert not overflowed
            visited.append(index.as_tuple())
        assert visited == list(itertools.product(range(3), repeat=3))

    def test_overflow_after_last_index(self):
        index, overflowed = GridIndex(72, 72, 72).advanced()
        assert overflowed
        assert index == GridIndex()

    def test_inner_axes_wrap_without_overflow(self):
        index, overflowed = GridIndex(3, 72, 72).advanced()
        assert not overflowed
        assert index == GridIndex(4, 0, 0)


class TestRecords:

    def test_capacity_constant(self):
        assert CAPACITY == 373248
        assert RECORD_SIZE == 16

    def test_sample_is_single_precision(self):
        sample = Sample(rotation=(0.1, 0.2, 0.3), scale=0.7)
        assert sample.scale == float(np.float32(0.7))
        assert sample.rotation[0] == float(np.float32(0.1))

    def test_record_round_trip(self):
        sample = Sample(rotation=(5.0, 10.0, 15.0), scale=1.25)
        assert Sample.from_record(sample.to_record()) == sample

    def test_best_fit_sentinel(self):
        best = BestFit()
        assert math.isinf(best.scale)
        assert best.rotation is None
        assert not best.is_set
