"""
Tests for multi-guess equilibrium sweeps
"""

import pytest
import numpy as np

import sys
sys.path.insert(0, '..')

from bifurcation.analysis.classification import EquilibriumType
from bifurcation.analysis.equilibrium_scanner import (
    EquilibriumScanner, SweepFailure, cluster_fixed_points, parallel_map,
    sweep_fixed_points, uniform_grid
)
from bifurcation.analysis.root_finder import RootFinder
from bifurcation.errors import InvalidInput
from bifurcation.systems import lorenz, saddle_node


LORENZ_GUESSES = [
    [0.0, 0.0, 0.0],
    [0.1, 0.1, 0.1],
    [8.0, 8.0, 27.0],
    [-8.0, -8.0, 27.0],
]


class TestParallelMap:
    def test_order_preserved(self):
        assert parallel_map(lambda x: x * x, list(range(10)), workers=4) == [x * x for x in range(10)]

    def test_sequential(self):
        assert parallel_map(str, [1, 2], workers=1) == ["1", "2"]

    def test_invalid_workers(self):
        with pytest.raises(InvalidInput):
            parallel_map(str, [1], workers=0)


class TestUniformGrid:
    def test_shape(self):
        grid = uniform_grid([(-1.0, 1.0), (0.0, 2.0)], 3)

        assert grid.shape == (9, 2)
        assert np.allclose(grid[0], [-1.0, 0.0])
        assert np.allclose(grid[-1], [1.0, 2.0])

    def test_single_point(self):
        grid = uniform_grid([(0.0, 2.0)], 1)

        assert np.allclose(grid, [[1.0]])

    def test_invalid_interval(self):
        with pytest.raises(InvalidInput):
            uniform_grid([(1.0, 0.0)], 3)


class TestClustering:
    def test_keeps_smallest_residual(self):
        model = saddle_node()
        params = model.check_parameters(None)
        finder = RootFinder()
        rough = finder.fixed_point_at(model, [1.0], params, residual_norm=1e-9)
        other = finder.fixed_point_at(model, [-1.0], params, residual_norm=1e-12)
        fine = finder.fixed_point_at(model, [1.0 + 1e-9], params, residual_norm=1e-12)

        unique = cluster_fixed_points([rough, other, fine], tolerance=1e-6)

        assert len(unique) == 2
        assert unique[0] is fine
        assert unique[1] is other


class TestEquilibriumScanner:
    """Tests for guess sweeps."""

    def test_lorenz_equilibria(self):
        points = EquilibriumScanner(lorenz()).scan(LORENZ_GUESSES)
        c = np.sqrt(72.0)

        assert len(points) == 3
        assert np.allclose(points[0].state, 0.0, atol=1e-10)
        assert np.allclose(points[1].state, [c, c, 27.0], atol=1e-8)
        assert np.allclose(points[2].state, [-c, -c, 27.0], atol=1e-8)
        assert points[0].eq_type == EquilibriumType.SADDLE
        assert points[1].eq_type == EquilibriumType.SADDLE_FOCUS

    def test_workers_do_not_change_result(self):
        sequential = EquilibriumScanner(lorenz(), workers=1).scan(LORENZ_GUESSES)
        threaded = EquilibriumScanner(lorenz(), workers=4).scan(LORENZ_GUESSES)

        assert len(sequential) == len(threaded)
        for a, b in zip(sequential, threaded):
            assert np.array_equal(a.state, b.state)
            assert a.eq_type == b.eq_type

    def test_without_clustering(self):
        points = EquilibriumScanner(lorenz(), cluster_tolerance=None).scan(LORENZ_GUESSES)

        assert len(points) == 4

    def test_domain_grid(self):
        points = EquilibriumScanner(saddle_node()).scan(domain=[(-2.0, 2.0)], points_per_axis=5)
        states = sorted(float(fp.state[0]) for fp in points)

        assert len(points) == 2
        assert np.allclose(states, [-1.0, 1.0])

    def test_failures_reported(self):
        scanner = EquilibriumScanner(saddle_node(), params={'p': -1.0})
        found, failures = scanner.scan([[0.0], [1.0]], return_failures=True)

        assert found == []
        assert [f.index for f in failures] == [0, 1]
        assert all(isinstance(f, SweepFailure) for f in failures)
        assert failures[0].to_dict()['error'] in ("SingularJacobian", "NoConvergence")

    def test_failures_skipped(self):
        points = EquilibriumScanner(saddle_node(), params={'p': -1.0}).scan([[0.0]])

        assert points == []

    def test_requires_guesses_or_domain(self):
        with pytest.raises(InvalidInput):
            EquilibriumScanner(saddle_node()).scan()

    def test_domain_dimension(self):
        with pytest.raises(InvalidInput):
            EquilibriumScanner(lorenz()).scan(domain=[(-1.0, 1.0)])

    def test_invalid_guess(self):
        with pytest.raises(InvalidInput):
            EquilibriumScanner(lorenz()).scan([[1.0, 2.0]])

    def test_sweep_function(self):
        points, failures = sweep_fixed_points(
            lorenz(), LORENZ_GUESSES, workers=2, return_failures=True
        )

        assert len(points) == 3
        assert failures == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
