"""
Tests for eigenvalue-based equilibrium classification
"""

import pytest
import numpy as np

import sys
sys.path.insert(0, '..')

from bifurcation.analysis.classification import (
    EquilibriumType, StabilityClassifier, branch_point_coefficient, classify, critical_pair,
    first_lyapunov_coefficient
)
from bifurcation.errors import InvalidInput
from bifurcation.model import FunctionModel, SymbolicModel
from bifurcation.options import StabilityOptions
from bifurcation.systems import hopf_normal_form, lorenz, saddle_node


class TestStabilityClassifier:
    """Tests for hyperbolic and non-hyperbolic labels."""

    @pytest.fixture
    def classifier(self):
        return StabilityClassifier()

    def test_stable_node(self, classifier):
        report = classifier.classify([[-1.0, 0.0], [0.0, -2.0]])

        assert report.stable
        assert not report.marginal
        assert report.eq_type == EquilibriumType.NODE_STABLE
        assert report.hopf_test is None
        assert report.determinant == pytest.approx(2.0)
        assert report.trace == pytest.approx(-3.0)

    def test_unstable_node(self, classifier):
        report = classifier.classify(np.diag([1.0, 3.0]))

        assert report.eq_type == EquilibriumType.NODE_UNSTABLE
        assert report.n_positive == 2

    def test_saddle(self, classifier):
        report = classifier.classify(np.diag([1.0, -1.0]))

        assert report.eq_type == EquilibriumType.SADDLE
        assert report.determinant == pytest.approx(-1.0)
        assert not report.stable

    def test_stable_focus(self, classifier):
        report = classifier.classify([[-1.0, -2.0], [2.0, -1.0]])

        assert report.eq_type == EquilibriumType.FOCUS_STABLE
        assert report.hopf_test == pytest.approx(-2.0)

    def test_unstable_focus(self, classifier):
        report = classifier.classify([[0.5, -2.0], [2.0, 0.5]])

        assert report.eq_type == EquilibriumType.FOCUS_UNSTABLE
        assert report.hopf_test == pytest.approx(1.0)

    def test_center(self, classifier):
        report = classifier.classify([[0.0, -1.0], [1.0, 0.0]])

        assert report.eq_type == EquilibriumType.CENTER
        assert report.marginal
        assert not report.stable
        assert report.hopf_test == pytest.approx(0.0, abs=1e-12)

    def test_hopf_candidate(self, classifier):
        J = np.array([
            [0.0, -1.0, 0.0],
            [1.0, 0.0, 0.0],
            [0.0, 0.0, -1.0],
        ])
        report = classifier.classify(J)

        assert report.eq_type == EquilibriumType.HOPF_CANDIDATE
        assert report.n_zero == 2
        assert not report.is_hyperbolic

    def test_degenerate(self, classifier):
        report = classifier.classify(np.diag([0.0, -1.0]))

        assert report.eq_type == EquilibriumType.DEGENERATE
        assert report.marginal
        assert report.determinant == 0.0

    def test_tolerance_band(self):
        """A real part inside [-tol, tol] is neither stable nor unstable."""
        J = np.diag([-1e-10, -1.0])

        assert not classify(J).stable
        assert classify(J).eq_type == EquilibriumType.DEGENERATE
        assert classify(J, StabilityOptions(tol=1e-12)).stable

    def test_saddle_focus(self, classifier):
        J = np.array([
            [0.1, -10.0, 0.0],
            [10.0, 0.1, 0.0],
            [0.0, 0.0, -13.0],
        ])
        report = classifier.classify(J)

        assert report.eq_type == EquilibriumType.SADDLE_FOCUS
        assert report.hopf_test == pytest.approx(0.2)

    def test_test_functions(self, classifier):
        funcs = classifier.classify([[-1.0, -2.0], [2.0, -1.0]]).test_functions

        assert set(funcs) == {'saddle_node', 'hopf'}
        assert funcs['saddle_node'] == pytest.approx(5.0)

    def test_critical_pair_nearest_axis(self):
        values = np.array([0.5 + 2j, 0.5 - 2j, -0.1 + 1j, -0.1 - 1j, -3.0 + 0j])

        assert critical_pair(values, 1e-8) == pytest.approx(-0.1 + 1j)

    def test_hopf_test_spans_all_pairs(self, classifier):
        """The sign follows every pair, not only the one nearest the axis."""
        J = np.zeros((4, 4))
        J[:2, :2] = [[0.5, -2.0], [2.0, 0.5]]
        J[2:, 2:] = [[-0.1, -1.0], [1.0, -0.1]]
        report = classifier.classify(J)

        assert report.n_complex_pairs == 2
        assert report.hopf_test == pytest.approx(1.0 * -0.2)
        assert report.to_dict()['n_complex_pairs'] == 2

    def test_non_square(self, classifier):
        with pytest.raises(InvalidInput):
            classifier.classify(np.ones((2, 3)))

    def test_to_dict(self, classifier):
        data = classifier.classify(np.diag([1.0, -1.0])).to_dict()

        assert data['type'] == "saddle"
        assert data['n_positive'] == 1
        assert data['n_negative'] == 1


class TestModelClassification:
    """Tests classifying model equilibria."""

    def test_lorenz_origin(self):
        J, report = StabilityClassifier().classify_point(lorenz(), [0.0, 0.0, 0.0], None)

        assert J.shape == (3, 3)
        assert report.eq_type == EquilibriumType.SADDLE
        assert report.n_positive == 1
        assert report.n_negative == 2

    def test_lorenz_off_origin(self):
        c = np.sqrt(72.0)
        _, report = StabilityClassifier().classify_point(lorenz(), [-c, -c, 27.0], None)

        assert report.eq_type == EquilibriumType.SADDLE_FOCUS
        assert report.hopf_test > 0

    def test_saddle_node_upper_branch(self):
        _, report = StabilityClassifier().classify_point(saddle_node(), [1.0], {'p': 1.0})

        assert report.stable
        assert report.determinant == pytest.approx(-2.0)


class TestFirstLyapunovCoefficient:
    """Tests for the Hopf criticality coefficient."""

    @staticmethod
    def hopf_model(cubic):
        return SymbolicModel(
            [f"p*x - y + {cubic}*x*(x**2 + y**2)", f"x + p*y + {cubic}*y*(x**2 + y**2)"],
            variables=["x", "y"],
            parameters={"p": 0.0},
        )

    def test_supercritical(self):
        l1 = first_lyapunov_coefficient(hopf_normal_form(), [0.0, 0.0], {'p': 0.0})

        assert l1 < 0

    def test_exact_for_symbolic_model(self):
        """With |q| = 1 the normal form gives l1 = Re<p, C(q,q,q*)>/2 = -2."""
        l1 = first_lyapunov_coefficient(hopf_normal_form(), [0.0, 0.0], {'p': 0.0})

        assert l1 == pytest.approx(-2.0, rel=1e-10)

    def test_finite_differences_for_function_model(self):
        model = FunctionModel(
            lambda s, p, t: [
                -s[1] - s[0] * (s[0] ** 2 + s[1] ** 2),
                s[0] - s[1] * (s[0] ** 2 + s[1] ** 2),
            ],
            dimension=2,
        )

        assert model.derivative_tensors(np.zeros(2), {}) is None
        assert first_lyapunov_coefficient(model, [0.0, 0.0], {}) == pytest.approx(-2.0, rel=1e-3)

    def test_subcritical(self):
        l1 = first_lyapunov_coefficient(self.hopf_model(1.0), [0.0, 0.0], None)

        assert l1 > 0

    def test_scales_with_cubic_coefficient(self):
        l1_a = first_lyapunov_coefficient(self.hopf_model(-1.0), [0.0, 0.0], None)
        l1_b = first_lyapunov_coefficient(self.hopf_model(-2.0), [0.0, 0.0], None)

        assert l1_b == pytest.approx(2.0 * l1_a, rel=1e-4)

    def test_quadratic_terms(self):
        """Quadratic terms enter through B; the result stays finite and signed."""
        model = SymbolicModel(
            ["-y + x**2 - x*(x**2 + y**2)", "x - y*(x**2 + y**2)"],
            variables=["x", "y"],
        )
        l1 = first_lyapunov_coefficient(model, [0.0, 0.0], {})

        assert np.isfinite(l1)

    def test_requires_complex_pair(self):
        with pytest.raises(InvalidInput):
            first_lyapunov_coefficient(saddle_node(), [1.0], {'p': 1.0})


class TestBranchPointCoefficient:
    """Tests for the quadratic coefficient at a zero eigenvalue."""

    def test_transcritical(self):
        model = SymbolicModel(["p*x - x**2"], variables=["x"], parameters={"p": 0.0})

        assert abs(branch_point_coefficient(model, [0.0], None)) == pytest.approx(2.0)

    def test_pitchfork(self):
        model = SymbolicModel(["p*x - x**3"], variables=["x"], parameters={"p": 0.0})

        assert branch_point_coefficient(model, [0.0], None) == pytest.approx(0.0, abs=1e-12)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
