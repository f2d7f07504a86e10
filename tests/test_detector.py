"""
Tests for bifurcation detection and refinement
"""

import pytest
import numpy as np

import sys
sys.path.insert(0, '..')

from bifurcation.analysis.branch import AugmentedSystem, BranchPoint
from bifurcation.analysis.continuation import ContinuationEngine
from bifurcation.analysis.detector import BifurcationDetector, BifurcationKind
from bifurcation.analysis.root_finder import RootFinder
from bifurcation.model import FunctionModel, SymbolicModel
from bifurcation.options import ContinuationOptions
from bifurcation.systems import hopf_normal_form, saddle_node


def make_point(system, finder, state, value, index, previous=None, direction=1):
    """Branch point at a known equilibrium."""
    u = system.join(state, value)
    fp = finder.fixed_point_at(system.model, state, system.params_at(value))
    tangent = system.tangent(u, previous=previous, direction=direction)
    return BranchPoint(fixed_point=fp, parameter=value, arclength=0.0, tangent=tangent, index=index)


class TestSaddleNodeRefinement:
    """Refinement of det(J) sign changes."""

    @pytest.fixture
    def setup(self):
        model = saddle_node()
        system = AugmentedSystem(model, model.check_parameters(None), "p")
        finder = RootFinder()
        return system, finder, BifurcationDetector(system, finder)

    def test_chord_bisection_at_fold(self, setup):
        """Both points at p = 0.01 on either side of the fold."""
        system, finder, detector = setup
        a = make_point(system, finder, [0.1], 0.01, 0, direction=-1)
        b = make_point(system, finder, [-0.1], 0.01, 1, previous=a.tangent)

        assert detector.crossings(a, b) == [BifurcationKind.SADDLE_NODE]
        events = detector.detect(a, b)

        assert len(events) == 1
        event = events[0]
        assert event.kind == BifurcationKind.SADDLE_NODE
        assert event.parameter_value == pytest.approx(0.0, abs=1e-12)
        assert event.state[0] == pytest.approx(0.0, abs=1e-8)
        assert event.bracket == (0, 1)
        assert event.branch_index == 1
        assert event.parameter_name == "p"
        assert event.period is None

    def test_no_crossing(self, setup):
        system, finder, detector = setup
        a = make_point(system, finder, [1.0], 1.0, 0)
        b = make_point(system, finder, [1.1], 1.21, 1, previous=a.tangent)

        assert detector.crossings(a, b) == []
        assert detector.detect(a, b) == []


class TestBranchPoints:
    """det(J) crossings on branches that do not fold."""

    @pytest.fixture
    def model(self):
        return SymbolicModel(["p*x - x**3"], variables=["x"], parameters={"p": -0.5}, name="pitchfork")

    def test_trivial_branch(self, model):
        system = AugmentedSystem(model, model.check_parameters(None), "p")
        finder = RootFinder()
        detector = BifurcationDetector(system, finder)
        a = make_point(system, finder, [0.0], -0.3, 4)
        b = make_point(system, finder, [0.0], 0.2, 5, previous=a.tangent)

        assert detector.crossings(a, b) == [BifurcationKind.BRANCH_POINT]
        event = detector.refine(a, b, BifurcationKind.BRANCH_POINT)

        assert a.tangent[-1] > 0 and b.tangent[-1] > 0
        assert event.kind == BifurcationKind.PITCHFORK
        assert abs(event.parameter_value) < 1e-8
        assert abs(event.test_value) < 1e-8
        assert event.bracket == (4, 5)

    def test_detected_during_trace(self, model):
        branch = ContinuationEngine(model).trace([0.0], "p", (-0.5, 0.5))
        events = branch.events_of(BifurcationKind.PITCHFORK)

        assert len(events) == 1
        assert len(branch.events) == 1
        assert abs(events[0].parameter_value) < 1e-6
        assert branch.is_monotonic()

    def test_transcritical(self):
        model = SymbolicModel(["p*x - x**2"], variables=["x"], parameters={"p": -0.5},
                              name="transcritical")
        branch = ContinuationEngine(model).trace([0.0], "p", (-0.5, 0.5))

        assert [ev.kind for ev in branch.events] == [BifurcationKind.TRANSCRITICAL]
        assert abs(branch.events[0].parameter_value) < 1e-6
        assert branch.is_monotonic()

    def test_jump_without_zero_is_discarded(self):
        """det(J) flips from -1 to +1 without passing through zero."""
        model = FunctionModel(
            lambda x, p, t: -x if p['p'] < 0 else x,
            dimension=1,
            parameter_names=['p'],
            jacobian=lambda x, p: [[-1.0 if p['p'] < 0 else 1.0]],
            defaults={'p': -0.5},
        )
        system = AugmentedSystem(model, model.check_parameters(None), "p")
        finder = RootFinder()
        detector = BifurcationDetector(system, finder)
        a = make_point(system, finder, [0.0], -0.3, 0)
        b = make_point(system, finder, [0.0], 0.2, 1, previous=a.tangent)

        assert detector.crossings(a, b) == [BifurcationKind.BRANCH_POINT]
        assert detector.refine(a, b, BifurcationKind.BRANCH_POINT) is None
        assert detector.detect(a, b) == []


class TestHopfRefinement:
    """Refinement of the critical pair crossing the imaginary axis."""

    @pytest.fixture
    def setup(self):
        model = hopf_normal_form()
        system = AugmentedSystem(model, model.check_parameters(None), "p")
        finder = RootFinder()
        return system, finder, BifurcationDetector(system, finder)

    def test_hopf_event(self, setup):
        system, finder, detector = setup
        a = make_point(system, finder, [0.0, 0.0], -0.1, 0)
        b = make_point(system, finder, [0.0, 0.0], 0.2, 1, previous=a.tangent)

        assert a.test_functions['hopf'] == pytest.approx(-0.2)
        assert detector.crossings(a, b) == [BifurcationKind.HOPF]
        event = detector.detect(a, b)[0]

        assert abs(event.parameter_value) < 1e-8
        assert event.period == pytest.approx(2 * np.pi, rel=1e-6)
        assert event.lyapunov_coefficient < 0
        assert event.supercritical is True
        assert event.parameters == {'p': event.parameter_value}

    def test_event_to_dict(self, setup):
        system, finder, detector = setup
        a = make_point(system, finder, [0.0, 0.0], -0.1, 0)
        b = make_point(system, finder, [0.0, 0.0], 0.2, 1, previous=a.tangent)
        data = detector.detect(a, b)[0].to_dict()

        assert data['kind'] == "Hopf"
        assert 'period' in data
        assert data['supercritical'] is True

    def test_only_real_crossing_reported(self):
        """Two oscillators; only the second pair (0.3 - p) +- 2i crosses the axis."""
        model = SymbolicModel(
            ["-0.1*x1 - y1", "x1 - 0.1*y1", "(0.3 - p)*x2 - 2*y2", "2*x2 + (0.3 - p)*y2"],
            variables=["x1", "y1", "x2", "y2"],
            parameters={"p": 0.0},
            name="two_oscillators",
        )
        branch = ContinuationEngine(model).trace([0.0, 0.0, 0.0, 0.0], "p", (0.0, 0.5))
        events = branch.events_of(BifurcationKind.HOPF)

        assert len(branch.events) == 1
        assert len(events) == 1
        assert events[0].parameter_value == pytest.approx(0.3, abs=1e-6)
        assert events[0].period == pytest.approx(np.pi, rel=1e-6)
        assert np.min(np.abs(events[0].eigenvalues.real)) < 1e-6

    def test_linear_hopf_is_degenerate(self):
        """A linear system has l1 = 0, so criticality is undetermined."""
        model = SymbolicModel(["p*x - y", "x + p*y"], variables=["x", "y"], parameters={"p": -0.2})
        branch = ContinuationEngine(model).trace([0.0, 0.0], "p", (-0.2, 0.2))
        event = branch.events_of(BifurcationKind.HOPF)[0]

        assert event.lyapunov_coefficient == 0.0
        assert event.supercritical is None

    def test_subcritical(self):
        model = SymbolicModel(
            ["p*x - y + x*(x**2 + y**2)", "x + p*y + y*(x**2 + y**2)"],
            variables=["x", "y"],
            parameters={"p": -0.2},
        )
        opts = ContinuationOptions(ds=0.05)
        branch = ContinuationEngine(model, opts).trace([0.0, 0.0], "p", (-0.2, 0.2))

        assert len(branch.events) == 1
        assert branch.events[0].supercritical is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
