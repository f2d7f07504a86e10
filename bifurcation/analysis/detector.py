"""
Bifurcation Detector
Brackets and refines sign changes of test functions along a branch.

A det(J) sign change is a saddle-node when the branch folds between the
bracketing points (the parameter turns back) and a branch point
otherwise; branch points are told apart as transcritical or pitchfork by
their quadratic coefficient. Hopf events are located where the product
of the real parts of the complex pairs changes sign with the number of
pairs unchanged. Refinement is bisection with the parameter held fixed;
across a fold, bisection runs along the chord between the points
instead. Brackets whose refined test value does not vanish are
discarded.
"""

from enum import Enum
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple
import logging
import math

import numpy as np

from ..errors import AnalysisError, NoConvergence, SingularJacobian
from ..options import DetectorOptions
from .branch import AugmentedSystem, BranchPoint
from .classification import branch_point_coefficient, critical_pair, first_lyapunov_coefficient
from .root_finder import FixedPoint, RootFinder, newton

logger = logging.getLogger(__name__)

# |psi . B(phi, phi)| below this marks a symmetric (pitchfork) branch point.
PITCHFORK_TOL = 1e-6


class BifurcationKind(Enum):
    """Kinds of bifurcation events."""

    SADDLE_NODE = "SaddleNode"
    BRANCH_POINT = "BranchPoint"
    TRANSCRITICAL = "Transcritical"
    PITCHFORK = "Pitchfork"
    HOPF = "Hopf"
    LIMIT_POINT_OF_CYCLES = "LimitPointOfCycles"
    PERIOD_DOUBLING = "PeriodDoubling"
    TORUS = "Torus"


TEST_FUNCTIONS = {
    BifurcationKind.SADDLE_NODE: "saddle_node",
    BifurcationKind.BRANCH_POINT: "saddle_node",
    BifurcationKind.TRANSCRITICAL: "saddle_node",
    BifurcationKind.PITCHFORK: "saddle_node",
    BifurcationKind.HOPF: "hopf",
}


@dataclass(frozen=True)
class BifurcationEvent:
    """
    A refined bifurcation location.

    Attributes:
        kind: Bifurcation kind
        branch_index: Index of the branch point closing the bracket
        parameter_value: Refined parameter value
        state: Refined state
        eigenvalues: Eigenvalues (or Floquet multipliers) at the location
        test_value: Test function value at the location
        bracket: Indices of the two bracketing branch points
        period: Emerging cycle period estimate (Hopf only)
        lyapunov_coefficient: First Lyapunov coefficient (Hopf only)
        supercritical: True when lyapunov_coefficient < 0
        parameter_name: Continuation parameter
        parameters: Full parameter mapping at the location
    """

    kind: BifurcationKind
    branch_index: int
    parameter_value: float
    state: np.ndarray
    eigenvalues: np.ndarray = None
    test_value: Optional[float] = None
    bracket: Tuple[int, int] = (0, 0)
    period: Optional[float] = None
    lyapunov_coefficient: Optional[float] = None
    supercritical: Optional[bool] = None
    parameter_name: str = ""
    parameters: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict:
        """Serialize to dictionary."""
        result = {
            'kind': self.kind.value,
            'branch_index': self.branch_index,
            'parameter': self.parameter_name,
            'parameter_value': self.parameter_value,
            'state': self.state.tolist(),
            'test_value': self.test_value,
            'bracket': list(self.bracket),
        }
        if self.eigenvalues is not None:
            result['eigenvalues'] = [complex(v) for v in self.eigenvalues]
        if self.period is not None:
            result['period'] = self.period
        if self.lyapunov_coefficient is not None:
            result['lyapunov_coefficient'] = self.lyapunov_coefficient
            result['supercritical'] = self.supercritical
        return result


def _sign_change(a: Optional[float], b: Optional[float]) -> bool:
    return a is not None and b is not None and a * b < 0


def _folds(point_a: BranchPoint, point_b: BranchPoint) -> bool:
    """True when the parameter component of the tangent turns between two points."""
    return point_a.tangent[-1] * point_b.tangent[-1] <= 0.0


class BifurcationDetector:
    """
    Watches consecutive branch points for test-function sign changes.

    The detector only reads branch points; refinement produces new
    points stored on the returned events.
    """

    def __init__(
        self,
        system: AugmentedSystem,
        root_finder: Optional[RootFinder] = None,
        options: Optional[DetectorOptions] = None
    ):
        self.system = system
        self.root_finder = root_finder or RootFinder()
        self.options = (options or DetectorOptions()).validate()

    def crossings(self, point_a: BranchPoint, point_b: BranchPoint) -> List[BifurcationKind]:
        """Kinds whose test function changes sign between two points."""
        ta = point_a.test_functions
        tb = point_b.test_functions
        kinds = []
        if _sign_change(ta['saddle_node'], tb['saddle_node']):
            kinds.append(BifurcationKind.SADDLE_NODE if _folds(point_a, point_b)
                         else BifurcationKind.BRANCH_POINT)
        same_pairs = (point_a.fixed_point.report.n_complex_pairs
                      == point_b.fixed_point.report.n_complex_pairs)
        if same_pairs and _sign_change(ta['hopf'], tb['hopf']):
            kinds.append(BifurcationKind.HOPF)
        return kinds

    def detect(self, point_a: BranchPoint, point_b: BranchPoint) -> List[BifurcationEvent]:
        """Refine every crossing between two consecutive branch points."""
        events = [self.refine(point_a, point_b, kind) for kind in self.crossings(point_a, point_b)]
        return [event for event in events if event is not None]

    def refine(self, point_a: BranchPoint, point_b: BranchPoint,
               kind: BifurcationKind) -> Optional[BifurcationEvent]:
        """
        Locate the zero of kind's test function between two points.

        For det(J) crossings the reported kind follows the branch geometry:
        SaddleNode across a fold, Transcritical or Pitchfork otherwise.

        Returns:
            BifurcationEvent at the refined location, or None when the
            test function does not vanish inside the bracket
        """
        key = TEST_FUNCTIONS[kind]
        folds = _folds(point_a, point_b)
        if key == "saddle_node" and folds:
            kind = BifurcationKind.SADDLE_NODE
            fp, test_value = self._bisect_chord(point_a, point_b, key)
        else:
            fp, test_value = self._bisect_parameter(point_a, point_b, key)

        scale = max(1.0, abs(self._test(point_a.fixed_point, key) or 0.0),
                    abs(self._test(point_b.fixed_point, key) or 0.0))
        if test_value is None or abs(test_value) > self.options.tol * scale:
            logger.warning(f"Discarding {kind.value} bracket between points {point_a.index} and "
                           f"{point_b.index}: test function did not vanish ({test_value})")
            return None

        parameter_value = float(fp.parameters[self.system.parameter])
        if key == "saddle_node" and not folds:
            kind = self._branch_point_kind(fp)

        event = BifurcationEvent(
            kind=kind,
            branch_index=point_b.index,
            parameter_value=parameter_value,
            state=fp.state,
            eigenvalues=fp.eigenvalues,
            test_value=test_value,
            bracket=(point_a.index, point_b.index),
            parameter_name=self.system.parameter,
            parameters=dict(fp.parameters),
        )
        if kind is BifurcationKind.HOPF:
            event = self._hopf_details(event, fp)

        logger.info(f"{kind.value} detected at {self.system.parameter}={parameter_value:.8g} "
                    f"(between points {point_a.index} and {point_b.index})")
        return event

    def _branch_point_kind(self, fp: FixedPoint) -> BifurcationKind:
        try:
            a = branch_point_coefficient(
                self.system.model, fp.state, fp.parameters, self.system.fd_step
            )
        except AnalysisError as exc:
            logger.debug(f"Branch point coefficient unavailable: {exc.message}")
            return BifurcationKind.BRANCH_POINT
        return BifurcationKind.PITCHFORK if abs(a) < PITCHFORK_TOL else BifurcationKind.TRANSCRITICAL

    # ------------------------------------------------------------------
    # Bisection strategies
    # ------------------------------------------------------------------

    def _test(self, fp: FixedPoint, key: str) -> Optional[float]:
        return fp.report.test_functions[key]

    def _bisect_parameter(self, point_a: BranchPoint, point_b: BranchPoint,
                          key: str) -> Tuple[FixedPoint, Optional[float]]:
        """Bisection in the parameter, solving f(x, p_mid) = 0 at fixed p_mid."""
        pa, pb = point_a.parameter, point_b.parameter
        xa, xb = np.array(point_a.state), np.array(point_b.state)
        ta = self._test(point_a.fixed_point, key)
        best, best_value = None, None

        for depth in range(self.options.max_depth):
            pm = 0.5 * (pa + pb)
            try:
                fp = self.root_finder.find_fixed_point(
                    self.system.model, 0.5 * (xa + xb), self.system.params_at(pm)
                )
            except (NoConvergence, SingularJacobian) as exc:
                logger.debug(f"Bisection solve failed at depth {depth}: {exc.message}")
                break
            tm = self._test(fp, key)
            if tm is None:
                break
            best, best_value = fp, tm
            if abs(tm) < self.options.tol:
                break
            if tm * ta > 0:
                pa, xa, ta = pm, np.array(fp.state), tm
            else:
                pb, xb = pm, np.array(fp.state)
            if abs(pb - pa) <= 1e-15 * max(1.0, abs(pm)):
                break

        if best is None:
            return self._secant(point_a, point_b, key)
        return best, best_value

    def _bisect_chord(self, point_a: BranchPoint, point_b: BranchPoint,
                      key: str) -> Tuple[FixedPoint, Optional[float]]:
        """
        Bisection along the chord u_a -> u_b.

        Each trial solves f(u) = 0 together with d.(u - u_theta) = 0, where
        d = u_b - u_a and u_theta = u_a + theta d, so the solution lies on
        the branch in the hyperplane through u_theta normal to the chord.
        """
        system = self.system
        ua, ub = point_a.u, point_b.u
        d = ub - ua
        lo, hi = 0.0, 1.0
        ta = self._test(point_a.fixed_point, key)
        best, best_value = None, None
        options = self.root_finder.options

        for depth in range(self.options.max_depth):
            theta = 0.5 * (lo + hi)
            anchor = ua + theta * d
            try:
                result = newton(
                    lambda u: np.append(system.residual(u), np.dot(d, u - anchor)),
                    lambda u: np.vstack([system.jacobian(u), d.reshape(1, -1)]),
                    anchor,
                    options,
                )
            except (NoConvergence, SingularJacobian) as exc:
                logger.debug(f"Chord bisection solve failed at depth {depth}: {exc.message}")
                break
            x, p = system.split(result.x)
            fp = self.root_finder.fixed_point_at(
                system.model, x, system.params_at(p), iterations=result.iterations
            )
            tm = self._test(fp, key)
            if tm is None:
                break
            best, best_value = fp, tm
            if abs(tm) < self.options.tol:
                break
            if tm * ta > 0:
                lo, ta = theta, tm
            else:
                hi = theta

        if best is None:
            return self._secant(point_a, point_b, key)
        return best, best_value

    def _secant(self, point_a: BranchPoint, point_b: BranchPoint,
                key: str) -> Tuple[FixedPoint, Optional[float]]:
        """Linear interpolation of the test function between the endpoints."""
        ta = self._test(point_a.fixed_point, key)
        tb = self._test(point_b.fixed_point, key)
        theta = ta / (ta - tb)
        u = point_a.u + theta * (point_b.u - point_a.u)
        x, p = self.system.split(u)
        logger.warning(f"Bisection could not refine the bracket; using secant estimate "
                       f"{self.system.parameter}={p:.6g}")
        fp = self.root_finder.fixed_point_at(self.system.model, x, self.system.params_at(p))
        return fp, self._test(fp, key)

    # ------------------------------------------------------------------
    # Hopf details
    # ------------------------------------------------------------------

    def _hopf_details(self, event: BifurcationEvent, fp: FixedPoint) -> BifurcationEvent:
        pair = critical_pair(fp.eigenvalues, self.root_finder.classifier.tol)
        period = 2.0 * math.pi / abs(pair.imag) if pair is not None and pair.imag != 0 else None

        l1 = None
        try:
            l1 = first_lyapunov_coefficient(
                self.system.model, fp.state, fp.parameters, self.system.fd_step
            )
        except AnalysisError as exc:
            logger.debug(f"First Lyapunov coefficient unavailable: {exc.message}")

        return replace(
            event,
            period=period,
            lyapunov_coefficient=l1,
            supercritical=None if not l1 else l1 < 0,
        )
