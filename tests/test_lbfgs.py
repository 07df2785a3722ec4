"""Tests for the limited-memory curvature store."""

import numpy as np
import pytest

from vmlmb.bounds import BoundMode, active_set, step_to_bounds
from vmlmb.lbfgs import CurvatureMemory


class TestPush:
    def test_rejects_non_positive_curvature(self):
        memory = CurvatureMemory(2, memory=3)
        assert not memory.push([1.0, 0.0], [-1.0, 0.0])
        assert not memory.push([1.0, 0.0], [0.0, 1.0])
        assert len(memory) == 0
        assert memory.rejected == 2

    def test_stores_curvature(self):
        memory = CurvatureMemory(2, memory=3)
        assert memory.push([1.0, 1.0], [2.0, 0.5])
        s, y, rho = memory.pairs[-1]
        assert rho == pytest.approx(2.5)
        assert all(rho > 0.0 for _, _, rho in memory.pairs)

    def test_oldest_pair_is_evicted_first(self):
        memory = CurvatureMemory(2, memory=2)
        memory.push([1.0, 0.0], [1.0, 0.0])
        memory.push([0.0, 1.0], [0.0, 2.0])
        memory.push([1.0, 1.0], [3.0, 3.0])
        assert len(memory) == 2
        stored = [s.tolist() for s, _, _ in memory.pairs]
        assert [1.0, 0.0] not in stored
        assert stored == [[0.0, 1.0], [1.0, 1.0]]

    def test_pairs_are_copied(self):
        memory = CurvatureMemory(2, memory=1)
        s = np.array([1.0, 0.0])
        memory.push(s, [1.0, 0.0])
        s[0] = -5.0
        assert memory.pairs[0][0][0] == 1.0

    def test_size_mismatch(self):
        memory = CurvatureMemory(3)
        with pytest.raises(ValueError):
            memory.push([1.0, 0.0], [1.0, 0.0])

    def test_restart(self):
        memory = CurvatureMemory(2)
        memory.push([1.0, 0.0], [1.0, 0.0])
        memory.restart()
        assert len(memory) == 0
        assert memory.restarts == 1
        memory.clear()
        assert memory.restarts == 1

    @pytest.mark.parametrize("m", [0, -1, 2.5])
    def test_invalid_memory(self, m):
        with pytest.raises(ValueError):
            CurvatureMemory(2, memory=m)


class TestBuildDirection:
    def test_empty_memory_uses_scaled_steepest_descent(self):
        memory = CurvatureMemory(3, delta=0.1)
        g = np.array([1.0, -2.0, 4.0])
        np.testing.assert_allclose(memory.build_direction(g), -0.1 * g)

    def test_recovers_newton_step_on_isotropic_quadratic(self):
        # f(x) = x.x, H^-1 = I/2
        memory = CurvatureMemory(2)
        memory.push([1.0, 0.0], [2.0, 0.0])
        g = np.array([2.0, 4.0])
        np.testing.assert_allclose(memory.build_direction(g), [-1.0, -2.0])

    def test_active_coordinates_are_zero(self):
        rng = np.random.default_rng(3)
        memory = CurvatureMemory(6, memory=3)
        for _ in range(3):
            s = rng.normal(size=6)
            memory.push(s, 2.0 * s + 0.1 * rng.normal(size=6))
        g = rng.normal(size=6)
        active = np.array([True, False, False, True, False, True])
        d = memory.build_direction(g, active)
        assert np.all(d[active] == 0.0)
        assert np.dot(d, g) < 0.0

    def test_active_coordinates_are_zero_without_memory(self):
        memory = CurvatureMemory(3)
        active = np.array([False, True, False])
        d = memory.build_direction(np.ones(3), active)
        np.testing.assert_array_equal(d, [-0.1, 0.0, -0.1])

    def test_descent_safeguard(self):
        pairs = [([1.0, 0.0], [1.0, 0.0]), ([0.0, 1.0], [0.0, 100.0])]
        g = np.array([1.0, 1.0])

        loose = CurvatureMemory(2, epsilon=0.01)
        for s, y in pairs:
            loose.push(s, y)
        np.testing.assert_allclose(loose.build_direction(g), [-1.0, -0.01])
        assert loose.restarts == 0

        strict = CurvatureMemory(2, epsilon=0.99, delta=0.5)
        for s, y in pairs:
            strict.push(s, y)
        np.testing.assert_allclose(strict.build_direction(g), [-0.5, -0.5])
        assert strict.restarts == 1
        assert len(strict) == 0

    def test_gradient_size_mismatch(self):
        with pytest.raises(ValueError):
            CurvatureMemory(3).build_direction(np.ones(2))

    @pytest.mark.parametrize("seed", range(5))
    def test_direction_enters_the_box(self, seed):
        rng = np.random.default_rng(seed)
        lower, upper = np.zeros(6), np.ones(6)
        x = np.array([0.0, 0.0, 1.0, 1.0, 0.5, 0.3])
        b = rng.normal(size=(6, 6))
        hessian = b @ b.T + np.eye(6)
        memory = CurvatureMemory(6, memory=3)
        for _ in range(3):
            s = rng.normal(size=6)
            memory.push(s, hessian @ s)
        g = rng.normal(size=6)
        active = active_set(x, g, lower, upper, BoundMode.BOTH)
        d = memory.build_direction(g, active)
        assert np.dot(d, g) < 0.0
        assert step_to_bounds(x, d, lower, upper, BoundMode.BOTH) > 0.0
