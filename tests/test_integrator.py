"""
Tests for the adaptive trajectory integrator
"""

import pytest
import numpy as np

import sys
sys.path.insert(0, '..')

from bifurcation.errors import InvalidInput, NoConvergence, StepSizeUnderflow
from bifurcation.integrator import Integrator, integrate, sample_times
from bifurcation.options import IntegratorOptions
from bifurcation.systems import harmonic_oscillator, linear_decay


class TestRK45:
    """Tests for Dormand-Prince integration."""

    @pytest.fixture
    def tight(self):
        """Integrator with tight tolerances."""
        return Integrator(IntegratorOptions(rtol=1e-9, atol=1e-12))

    def test_linear_decay(self):
        traj = Integrator().integrate(linear_decay(), [1.0], None, (0.0, 1.0))

        assert traj.final_time == 1.0
        assert traj.final_state[0] == pytest.approx(np.exp(-1.0), abs=1e-5)
        assert traj.times[0] == 0.0
        assert traj.states[0][0] == 1.0

    def test_harmonic_period(self, tight):
        """Test return to the initial state after one period."""
        traj = tight.integrate(harmonic_oscillator(), [1.0, 0.0], None, (0.0, 2 * np.pi))

        assert np.allclose(traj.final_state, [1.0, 0.0], atol=1e-7)

    def test_times_monotonic(self, tight):
        traj = tight.integrate(harmonic_oscillator(), [1.0, 0.0], None, (0.0, 10.0))

        assert np.all(np.diff(traj.times) > 0)
        assert traj.n_steps == len(traj) - 1

    def test_backward_integration(self):
        traj = Integrator().integrate(linear_decay(), [np.exp(-1.0)], None, (1.0, 0.0))

        assert np.all(np.diff(traj.times) < 0)
        assert traj.final_state[0] == pytest.approx(1.0, abs=1e-5)

    def test_callable_rhs(self):
        traj = integrate(lambda x, p, t: -x, [2.0], None, (0.0, 1.0))

        assert traj.final_state[0] == pytest.approx(2.0 * np.exp(-1.0), abs=1e-5)

    def test_callable_time_dependent(self):
        traj = integrate(lambda x, p, t: np.array([p['a'] * t]), [0.0], {'a': 2.0}, (0.0, 3.0))

        assert traj.final_state[0] == pytest.approx(9.0, rel=1e-6)

    def test_dense_output(self):
        opts = IntegratorOptions(sample_dt=0.1)
        traj = Integrator(opts).integrate(linear_decay(), [1.0], None, (0.0, 1.0))

        assert len(traj) == 11
        assert np.allclose(traj.times, np.linspace(0.0, 1.0, 11))
        assert np.allclose(traj.states[:, 0], np.exp(-traj.times), atol=1e-5)

    def test_per_call_options(self):
        integrator = Integrator()
        traj = integrator.integrate(linear_decay(), [1.0], None, (0.0, 1.0),
                                    options=IntegratorOptions(sample_dt=0.5))

        assert len(traj) == 3

    def test_result_read_only(self):
        traj = Integrator().integrate(linear_decay(), [1.0], None, (0.0, 1.0))

        with pytest.raises(ValueError):
            traj.states[0, 0] = 3.0

    def test_iteration_and_dict(self):
        traj = Integrator(IntegratorOptions(sample_dt=0.5)).integrate(
            linear_decay(), [1.0], None, (0.0, 1.0)
        )
        pairs = list(traj)
        data = traj.to_dict()

        assert pairs[0][0] == 0.0
        assert data['method'] == "RK45"
        assert len(data['times']) == 3

    def test_finite_time_blowup(self):
        """dx/dt = x**2 from x=1 blows up at t=1."""
        opts = IntegratorOptions(min_step=1e-6)

        with pytest.raises(StepSizeUnderflow) as excinfo:
            integrate(lambda x, p, t: x ** 2, [1.0], None, (0.0, 2.0), opts)

        assert excinfo.value.time == pytest.approx(1.0, abs=1e-2)

    def test_max_steps(self):
        opts = IntegratorOptions(max_step=0.01, max_steps=5)

        with pytest.raises(NoConvergence):
            Integrator(opts).integrate(linear_decay(), [1.0], None, (0.0, 1.0))

    def test_zero_span(self):
        with pytest.raises(InvalidInput):
            Integrator().integrate(linear_decay(), [1.0], None, (1.0, 1.0))

    def test_wrong_dimension(self):
        with pytest.raises(InvalidInput):
            Integrator().integrate(linear_decay(), [1.0, 2.0], None, (0.0, 1.0))

    def test_non_finite_state(self):
        with pytest.raises(InvalidInput):
            Integrator().integrate(linear_decay(), [np.nan], None, (0.0, 1.0))


class TestBDF:
    """Tests for the implicit method."""

    def test_stiff_decay(self):
        opts = IntegratorOptions(method="BDF")
        traj = Integrator(opts).integrate(linear_decay(k=1000.0), [1.0], None, (0.0, 1.0))

        assert traj.method == "BDF"
        assert abs(traj.final_state[0]) < 1e-6
        assert traj.final_time == pytest.approx(1.0)

    def test_sampled(self):
        opts = IntegratorOptions(method="BDF", sample_dt=0.25)
        traj = Integrator(opts).integrate(linear_decay(), [1.0], None, (0.0, 1.0))

        assert len(traj) == 5
        assert np.allclose(traj.states[:, 0], np.exp(-traj.times), atol=1e-4)


class TestVariational:
    """Tests for sensitivity (monodromy) integration."""

    def test_linear_decay_sensitivity(self):
        x, M, traj = Integrator().integrate_variational(linear_decay(), [1.0], None, 1.0)

        assert x[0] == pytest.approx(np.exp(-1.0), abs=1e-5)
        assert M.shape == (1, 1)
        assert M[0, 0] == pytest.approx(np.exp(-1.0), abs=1e-5)
        assert traj.states.shape[1] == 1

    def test_oscillator_monodromy(self):
        integrator = Integrator(IntegratorOptions(rtol=1e-9, atol=1e-12))
        x, M, _ = integrator.integrate_variational(
            harmonic_oscillator(), [1.0, 0.0], None, 2 * np.pi
        )

        assert np.allclose(x, [1.0, 0.0], atol=1e-7)
        assert np.allclose(M, np.eye(2), atol=1e-6)

    def test_requires_positive_duration(self):
        with pytest.raises(InvalidInput):
            Integrator().integrate_variational(linear_decay(), [1.0], None, -1.0)

    def test_requires_rk45(self):
        with pytest.raises(InvalidInput):
            Integrator(IntegratorOptions(method="BDF")).integrate_variational(
                linear_decay(), [1.0], None, 1.0
            )


class TestSampleTimes:
    def test_none(self):
        assert sample_times(0.0, 1.0, None) is None

    def test_partial_last_interval(self):
        grid = sample_times(0.0, 1.0, 0.3)

        assert np.allclose(grid, [0.0, 0.3, 0.6, 0.9, 1.0])

    def test_backward(self):
        grid = sample_times(1.0, 0.0, 0.5)

        assert np.allclose(grid, [1.0, 0.5, 0.0])


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
