"""
Equilibrium Classification Module
Classifies equilibrium points based on Jacobian eigenvalue analysis.

Besides the stability label, the classifier returns the bifurcation test
functions monitored along continuation branches:
- saddle-node: det(J), which changes sign when a real eigenvalue crosses zero
- Hopf: the product of Re(l_i + l_j) over all complex-conjugate pairs,
  which changes sign when any one pair crosses the imaginary axis and,
  unlike the real part of the pair nearest the axis, does not jump when
  a different pair becomes the nearest one
"""

from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
from dataclasses import dataclass
import logging

import numpy as np

from ..errors import InvalidInput
from ..linalg import as_matrix, determinant, eig, eigenvalues, frozen, singular_vectors, solve
from ..model import Model, Parameters
from ..options import StabilityOptions

logger = logging.getLogger(__name__)


class EquilibriumType(Enum):
    """Classification of equilibrium points."""

    # Hyperbolic points (no eigenvalue on the imaginary axis)
    NODE_STABLE = "node_stable"
    NODE_UNSTABLE = "node_unstable"
    SADDLE = "saddle"
    SADDLE_FOCUS = "saddle_focus"
    FOCUS_STABLE = "focus_stable"
    FOCUS_UNSTABLE = "focus_unstable"

    # Non-hyperbolic points
    CENTER = "center"
    HOPF_CANDIDATE = "hopf_candidate"

    # Real eigenvalue at zero
    DEGENERATE = "degenerate"


@dataclass(frozen=True)
class StabilityReport:
    """Result of classifying one Jacobian."""

    eigenvalues: np.ndarray
    stable: bool
    marginal: bool
    eq_type: EquilibriumType
    n_positive: int
    n_negative: int
    n_zero: int
    determinant: float
    trace: float
    hopf_test: Optional[float] = None
    n_complex_pairs: int = 0

    @property
    def test_functions(self) -> Dict[str, Optional[float]]:
        return {'saddle_node': self.determinant, 'hopf': self.hopf_test}

    @property
    def is_hyperbolic(self) -> bool:
        return self.n_zero == 0

    def to_dict(self) -> Dict:
        """Serialize to dictionary."""
        return {
            'eigenvalues': [complex(v) for v in self.eigenvalues],
            'stable': self.stable,
            'marginal': self.marginal,
            'type': self.eq_type.value,
            'n_positive': self.n_positive,
            'n_negative': self.n_negative,
            'n_zero': self.n_zero,
            'determinant': self.determinant,
            'trace': self.trace,
            'hopf_test': self.hopf_test,
            'n_complex_pairs': self.n_complex_pairs,
        }


def critical_pair(values: np.ndarray, tol: float) -> Optional[complex]:
    """
    Member (positive imaginary part) of the complex-conjugate pair with the
    smallest |Re|, or None when every eigenvalue is real.
    """
    oscillatory = [v for v in values if v.imag > tol]
    if not oscillatory:
        return None
    # eigenvalues() orders by descending real part, so min() keeps the
    # first of equally close pairs and the choice is reproducible.
    return min(oscillatory, key=lambda v: abs(v.real))


class StabilityClassifier:
    """
    Classifies Jacobians by their eigenvalues.

    A point is stable iff every eigenvalue has real part < -tol, and
    marginal if any real part lies in [-tol, tol].

    Example:
        >>> classifier = StabilityClassifier()
        >>> report = classifier.classify([[-1.0, 0.0], [0.0, -2.0]])
        >>> report.eq_type
        <EquilibriumType.NODE_STABLE: 'node_stable'>
    """

    def __init__(self, options: Optional[StabilityOptions] = None):
        self.options = (options or StabilityOptions()).validate()

    @property
    def tol(self) -> float:
        return self.options.tol

    def classify(self, jacobian) -> StabilityReport:
        """
        Classify a Jacobian matrix.

        Args:
            jacobian: Real n x n matrix evaluated at an equilibrium

        Returns:
            StabilityReport with eigenvalues, labels and test functions
        """
        J = as_matrix(jacobian, "jacobian").astype(float)
        values = eigenvalues(J)
        tol = self.tol

        re = values.real
        n_positive = int(np.sum(re > tol))
        n_negative = int(np.sum(re < -tol))
        n_zero = values.size - n_positive - n_negative

        pairs = [v for v in values if v.imag > tol]
        hopf_test = float(np.prod([2.0 * v.real for v in pairs])) if pairs else None

        return StabilityReport(
            eigenvalues=values,
            stable=n_negative == values.size,
            marginal=n_zero > 0,
            eq_type=self._label(values, n_positive, n_negative, n_zero),
            n_positive=n_positive,
            n_negative=n_negative,
            n_zero=n_zero,
            determinant=determinant(J),
            trace=float(np.trace(J)),
            hopf_test=hopf_test,
            n_complex_pairs=len(pairs),
        )

    def classify_point(self, model: Model, state, params: Parameters,
                       fd_step: float = 1e-6) -> Tuple[np.ndarray, StabilityReport]:
        """Evaluate the Jacobian of a model at a state and classify it."""
        params = model.check_parameters(params)
        x = model.check_state(state)
        J = model.jacobian_at(x, params, fd_step)
        return frozen(J), self.classify(J)

    def _label(self, values: np.ndarray, n_positive: int, n_negative: int,
               n_zero: int) -> EquilibriumType:
        tol = self.tol
        oscillatory = np.abs(values.imag) > tol

        if n_zero > 0:
            on_axis = np.abs(values.real) <= tol
            if np.any(on_axis & ~oscillatory):
                return EquilibriumType.DEGENERATE
            if n_zero == values.size:
                return EquilibriumType.CENTER
            return EquilibriumType.HOPF_CANDIDATE

        has_complex = bool(np.any(oscillatory))
        if n_positive == 0:
            return EquilibriumType.FOCUS_STABLE if has_complex else EquilibriumType.NODE_STABLE
        if n_negative == 0:
            return EquilibriumType.FOCUS_UNSTABLE if has_complex else EquilibriumType.NODE_UNSTABLE
        return EquilibriumType.SADDLE_FOCUS if has_complex else EquilibriumType.SADDLE


def classify(jacobian, options: Optional[StabilityOptions] = None) -> StabilityReport:
    """Functional form of StabilityClassifier().classify(...)."""
    return StabilityClassifier(options).classify(jacobian)


# ----------------------------------------------------------------------
# First Lyapunov coefficient
# ----------------------------------------------------------------------

def _second_difference(f: Callable, x0: np.ndarray, w: np.ndarray, h: float) -> np.ndarray:
    """B(w, w) = d^2/dt^2 f(x0 + t w) at t = 0."""
    scale = np.linalg.norm(w)
    if scale == 0.0:
        return np.zeros_like(x0)
    u = w / scale
    d2 = (f(x0 + h * u) - 2.0 * f(x0) + f(x0 - h * u)) / (h * h)
    return scale ** 2 * d2


def _third_difference(f: Callable, x0: np.ndarray, w: np.ndarray, h: float) -> np.ndarray:
    """C(w, w, w) = d^3/dt^3 f(x0 + t w) at t = 0."""
    scale = np.linalg.norm(w)
    if scale == 0.0:
        return np.zeros_like(x0)
    u = w / scale
    d3 = (f(x0 + 2 * h * u) - 2.0 * f(x0 + h * u)
          + 2.0 * f(x0 - h * u) - f(x0 - 2 * h * u)) / (2.0 * h ** 3)
    return scale ** 3 * d3


class _MultilinearForms:
    """Second and third derivatives of f at x0 by finite differences."""

    def __init__(self, f: Callable, x0: np.ndarray, h2: float = 1e-4, h3: float = 1e-3):
        self.f = f
        self.x0 = x0
        self.h2 = h2
        self.h3 = h3

    def _B_real(self, u, v):
        B2 = lambda w: _second_difference(self.f, self.x0, w, self.h2)
        return (B2(u + v) - B2(u - v)) / 4.0

    def B(self, u, v) -> np.ndarray:
        a, b = np.real(u), np.imag(u)
        c, d = np.real(v), np.imag(v)
        re = self._B_real(a, c) - self._B_real(b, d)
        im = self._B_real(a, d) + self._B_real(b, c)
        if not (np.iscomplexobj(u) or np.iscomplexobj(v)):
            return re
        return re + 1j * im

    def _C3(self, w):
        return _third_difference(self.f, self.x0, w, self.h3)

    def _C_uvv(self, u, v):
        return (self._C3(u + v) + self._C3(u - v) - 2.0 * self._C3(u)) / 6.0

    def C_qqqbar(self, q) -> np.ndarray:
        """C(q, q, conj(q)) for q = a + ib."""
        a, b = np.real(q), np.imag(q)
        real = self._C3(a) + self._C_uvv(a, b)
        imag = self._C_uvv(b, a) + self._C3(b)
        return real + 1j * imag


class _TensorForms:
    """Multilinear forms contracted from exact derivative tensors."""

    def __init__(self, second: np.ndarray, third: np.ndarray):
        self.second = second
        self.third = third

    def B(self, u, v) -> np.ndarray:
        return np.einsum('ijk,j,k->i', self.second, u, v)

    def C_qqqbar(self, q) -> np.ndarray:
        return np.einsum('ijkl,j,k,l->i', self.third, q, q, np.conj(q))


def _forms(model: Model, x0: np.ndarray, params: Parameters):
    tensors = model.derivative_tensors(x0, params)
    if tensors is not None:
        return _TensorForms(*tensors)
    return _MultilinearForms(lambda x: model.rhs(x, params), x0)


def first_lyapunov_coefficient(model: Model, state, params: Parameters,
                               fd_step: float = 1e-6,
                               options: Optional[StabilityOptions] = None) -> float:
    """
    First Lyapunov coefficient l1 at a Hopf point.

    Uses the invariant formula

        l1 = Re[<p, C(q,q,q*)> - 2<p, B(q, A^-1 B(q,q*))>
                + <p, B(q*, (2iwI - A)^-1 B(q,q))>] / (2w)

    with Aq = iwq, A^T p = -iwp and <p, q> = 1. The multilinear forms B
    and C come from the model's exact derivative tensors when it has
    them (SymbolicModel), otherwise from finite differences of the
    right-hand side.

    Returns:
        l1; negative means supercritical (stable cycle), positive subcritical

    Raises:
        InvalidInput: If the Jacobian has no complex-conjugate pair
        SingularMatrix: If A or 2iwI - A is singular
    """
    opts = (options or StabilityOptions()).validate()
    params = model.check_parameters(params)
    x0 = model.check_state(state)
    A = model.jacobian_at(x0, params, fd_step)

    values, vectors = eig(A)
    pair = critical_pair(values, opts.tol)
    if pair is None:
        raise InvalidInput("Jacobian has no complex-conjugate eigenvalue pair")
    idx = int(np.argmin(np.abs(values - pair)))
    omega = float(pair.imag)

    q = np.array(vectors[:, idx], dtype=complex)
    q /= np.sqrt(np.vdot(q, q).real)

    left_values, left_vectors = eig(A.T)
    jdx = int(np.argmin(np.abs(left_values - np.conj(pair))))
    p = np.array(left_vectors[:, jdx], dtype=complex)
    p /= np.conj(np.vdot(p, q))

    forms = _forms(model, x0, params)
    n = x0.shape[0]

    B_qqbar = forms.B(q, np.conj(q)).real
    s1 = solve(A, B_qqbar)
    B_qq = forms.B(q, q)
    s2 = solve(2j * omega * np.eye(n) - A, B_qq)

    total = (np.vdot(p, forms.C_qqqbar(q))
             - 2.0 * np.vdot(p, forms.B(q, s1))
             + np.vdot(p, forms.B(np.conj(q), s2)))
    l1 = float(total.real / (2.0 * omega))

    logger.debug(f"First Lyapunov coefficient at {x0.tolist()}: l1={l1:.6g} (omega={omega:.6g})")
    return l1


def branch_point_coefficient(model: Model, state, params: Parameters,
                             fd_step: float = 1e-6) -> float:
    """
    Quadratic coefficient a = psi . B(phi, phi) at a simple zero eigenvalue.

    phi and psi are the unit right and left null vectors of the Jacobian.
    On a branch crossing a branch point, a != 0 means a transcritical
    exchange of stability and a == 0 a symmetric (pitchfork) branch point.
    """
    params = model.check_parameters(params)
    x0 = model.check_state(state)
    A = model.jacobian_at(x0, params, fd_step)
    psi, phi = singular_vectors(A)
    a = float(np.dot(psi, _forms(model, x0, params).B(phi, phi)))
    logger.debug(f"Branch point coefficient at {x0.tolist()}: a={a:.6g}")
    return a
