"""Tests for the outer VMLMB driver and its progress recorder."""

import logging

import numpy as np
import pytest

from pyopti import IterationSnapshot, OutputRecorder, run_vmlmb
from vmlmb import VMLMBConfig


def image_cost(target):
    def cost(x):
        assert x.shape == target.shape
        r = x - target
        return float(np.sum(r * r)), 2.0 * r

    return cost


def rosenbrock(x):
    f = 100.0 * (x[1] - x[0] ** 2) ** 2 + (1.0 - x[0]) ** 2
    g = np.array(
        [
            -400.0 * x[0] * (x[1] - x[0] ** 2) - 2.0 * (1.0 - x[0]),
            200.0 * (x[1] - x[0] ** 2),
        ]
    )
    return f, g


class TestRunVMLMB:
    def test_keeps_the_shape_of_x0(self):
        target = np.array([[1.0, -1.0], [2.0, 0.5]])
        x0 = np.zeros((2, 2))
        result = run_vmlmb(image_cost(target), x0, config=VMLMBConfig(gtol=1e-8))
        assert result.converged
        assert result.x.shape == (2, 2)
        assert result.grad.shape == (2, 2)
        np.testing.assert_allclose(result.x, target, atol=1e-6)
        np.testing.assert_array_equal(x0, 0.0)
        assert result.nevals >= result.niter > 0

    def test_positivity_constraint(self):
        target = np.array([[1.0, -1.0], [2.0, -0.5]])
        result = run_vmlmb(image_cost(target), np.ones((2, 2)), xmin=0.0, config=VMLMBConfig(gtol=1e-8))
        assert result.status == "converged"
        np.testing.assert_allclose(result.x, np.maximum(target, 0.0), atol=1e-6)

    def test_iteration_limit(self):
        result = run_vmlmb(rosenbrock, np.array([-1.2, 1.0]), maxiter=3)
        assert result.status == "max_iter"
        assert result.niter == 3
        assert not result.converged
        assert "maximum number of iterations" in result.reason

    def test_callback_cadence(self):
        snapshots = []
        run_vmlmb(rosenbrock, np.array([-1.2, 1.0]), maxiter=10, callback=snapshots.append, update_every=3)
        assert [s.iteration for s in snapshots] == [3, 6, 9]
        assert all(isinstance(s, IterationSnapshot) for s in snapshots)
        assert snapshots[1].evaluations >= snapshots[0].evaluations
        assert snapshots[-1].elapsed >= snapshots[0].elapsed

    def test_snapshots_are_copies(self):
        snapshots = []
        run_vmlmb(rosenbrock, np.array([-1.2, 1.0]), maxiter=4, callback=snapshots.append)
        assert not np.shares_memory(snapshots[0].x, snapshots[1].x)
        assert not np.array_equal(snapshots[0].x, snapshots[-1].x)

    def test_record_history(self):
        result = run_vmlmb(rosenbrock, np.array([-1.2, 1.0]), maxiter=8, record=True)
        history = result.history
        assert history.sizes["iteration"] == result.niter == 8
        np.testing.assert_array_equal(history["iteration"].values, np.arange(1, 9))
        assert history["cost"].values[-1] == pytest.approx(result.f)
        assert np.all(np.diff(history["cost"].values) <= 0.0)

    def test_record_iterates(self):
        result = run_vmlmb(rosenbrock, np.array([-1.2, 1.0]), maxiter=3, record=True, store_iterates=True)
        assert result.history["x"].shape == (3, 2)
        np.testing.assert_array_equal(result.history["x"].values[-1], result.x)

    def test_warning_is_reported(self):
        def linear(x):
            return float(-np.sum(x)), -np.ones_like(x)

        result = run_vmlmb(linear, np.zeros(2), config=VMLMBConfig(stpmax=0.5))
        assert result.status == "warning"
        assert "stpmax" in result.reason
        assert result.niter == 0
        assert result.f == pytest.approx(-0.1)

    def test_no_history_by_default(self):
        result = run_vmlmb(rosenbrock, np.array([-1.2, 1.0]), maxiter=2)
        assert result.history is None

    def test_error_is_reported(self):
        def cost(x):
            return np.nan, np.zeros_like(x)

        result = run_vmlmb(cost, np.zeros(3))
        assert result.status == "error"
        assert result.niter == 0
        assert "not finite" in result.reason

    @pytest.mark.parametrize("kwargs", [{"maxiter": 0}, {"update_every": 0}])
    def test_invalid_arguments(self, kwargs):
        with pytest.raises(ValueError):
            run_vmlmb(rosenbrock, np.zeros(2), **kwargs)

    def test_invalid_bounds(self):
        with pytest.raises(ValueError):
            run_vmlmb(rosenbrock, np.zeros(2), xmin=1.0, xmax=0.0)

    def test_verbose_logging(self, caplog):
        with caplog.at_level(logging.INFO, logger="pyopti.optimizer"):
            run_vmlmb(rosenbrock, np.array([-1.2, 1.0]), maxiter=2, verbose=True)
        messages = [record.getMessage() for record in caplog.records]
        assert any(message.startswith("Starting VMLMB") for message in messages)
        assert sum("|pg|" in message for message in messages) == 2

    def test_quiet_logging(self, caplog):
        with caplog.at_level(logging.INFO, logger="pyopti.optimizer"):
            run_vmlmb(rosenbrock, np.array([-1.2, 1.0]), maxiter=2)
        assert not any("|pg|" in record.getMessage() for record in caplog.records)


class TestOutputRecorder:
    def _snapshot(self, iteration, x):
        return IterationSnapshot(iteration=iteration, x=np.asarray(x), f=1.0 / iteration, gnorm=0.5, evaluations=2 * iteration, elapsed=0.1 * iteration)

    def test_dataset(self):
        recorder = OutputRecorder()
        recorder(self._snapshot(1, [0.0, 1.0]))
        recorder(self._snapshot(2, [0.5, 1.0]))
        assert len(recorder) == 2
        history = recorder.to_dataset()
        assert set(history.data_vars) == {"cost", "gradient_norm", "evaluations", "elapsed"}
        np.testing.assert_allclose(history["cost"].values, [1.0, 0.5])
        np.testing.assert_array_equal(history["evaluations"].values, [2, 4])
        assert history["elapsed"].attrs["units"] == "s"

    def test_iterates(self):
        recorder = OutputRecorder(store_iterates=True)
        recorder(self._snapshot(1, [[0.0, 1.0], [2.0, 3.0]]))
        recorder(self._snapshot(2, [[0.5, 1.0], [2.0, 3.5]]))
        history = recorder.to_dataset()
        assert history["x"].dims == ("iteration", "parameter")
        np.testing.assert_array_equal(history["x"].values[1], [0.5, 1.0, 2.0, 3.5])

    def test_empty(self):
        history = OutputRecorder(store_iterates=True).to_dataset()
        assert history.sizes["iteration"] == 0
