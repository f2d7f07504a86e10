"""
Root Finder
Damped Newton iteration for equilibria of dx/dt = f(x, p).

`newton` is the generic solver shared by fixed-point location, the
continuation corrector and limit-cycle shooting. `find_fixed_point`
wraps it for a model and classifies the converged point.
"""

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Optional, Union
import logging

import numpy as np

from ..errors import InvalidInput, NoConvergence, SingularJacobian, SingularMatrix
from ..linalg import frozen, norm, solve
from ..model import FunctionModel, Model, Parameters
from ..options import NewtonOptions, StabilityOptions
from .classification import EquilibriumType, StabilityClassifier, StabilityReport

logger = logging.getLogger(__name__)

ResidualFn = Callable[[np.ndarray], np.ndarray]
JacobianFn = Callable[[np.ndarray], np.ndarray]

# Levenberg-style shifts tried when the Jacobian is singular, relative to ||J||.
REGULARIZATION_SHIFTS = (1e-8, 1e-6, 1e-4, 1e-2)


@dataclass(frozen=True)
class NewtonResult:
    """Converged Newton iterate."""

    x: np.ndarray
    iterations: int
    residual_norm: float


@dataclass(frozen=True)
class FixedPoint:
    """
    A located and classified equilibrium.

    Attributes:
        state: Equilibrium state
        parameters: Parameter values it was computed for
        jacobian: Jacobian at the state
        eigenvalues: Jacobian eigenvalues (descending real part)
        stable: True iff every eigenvalue has real part < -tol
        residual_norm: |f(state)| at convergence
        marginal: True if some real part lies within the tolerance band
        eq_type: Stability label
        iterations: Newton iterations used
    """

    state: np.ndarray
    parameters: Dict[str, float]
    jacobian: np.ndarray
    eigenvalues: np.ndarray
    stable: bool
    residual_norm: float
    marginal: bool = False
    eq_type: EquilibriumType = EquilibriumType.DEGENERATE
    iterations: int = 0
    report: Optional[StabilityReport] = field(default=None, repr=False, compare=False)

    @property
    def dimension(self) -> int:
        return int(self.state.shape[0])

    def to_dict(self) -> Dict:
        """Serialize to dictionary."""
        return {
            'state': self.state.tolist(),
            'parameters': dict(self.parameters),
            'eigenvalues': [complex(v) for v in self.eigenvalues],
            'stable': self.stable,
            'marginal': self.marginal,
            'type': self.eq_type.value,
            'residual_norm': self.residual_norm,
            'iterations': self.iterations,
        }


def _line_search(residual: ResidualFn, x: np.ndarray, dx: np.ndarray, fnorm: float,
                 max_halvings: int):
    """
    Try damping 1, 1/2, 1/4, ... and return the first step that lowers |f|.

    Returns (x_new, f_new, norm_new, damping, decreased). When no damping
    lowers |f|, the smallest finite trial is returned with decreased=False.
    """
    damping = 1.0
    fallback = None
    for _ in range(max_halvings + 1):
        x_try = x + damping * dx
        f_try = np.asarray(residual(x_try), dtype=float)
        if np.all(np.isfinite(f_try)):
            n_try = norm(f_try)
            if n_try < fnorm:
                return x_try, f_try, n_try, damping, True
            fallback = (x_try, f_try, n_try, damping, False)
        damping *= 0.5
    return fallback


def newton(residual: ResidualFn, jacobian: JacobianFn, x0,
           options: Optional[NewtonOptions] = None) -> NewtonResult:
    """
    Damped Newton iteration for residual(x) = 0.

    At every iterate J dx = -f(x) is solved by LU; the step is damped by
    halving until |f| decreases. If J is singular, shifted systems
    (J + mu I) dx = -f are tried before giving up.

    Args:
        residual: Function returning f(x)
        jacobian: Function returning df/dx at x
        x0: Initial guess
        options: Tolerances and iteration budget

    Returns:
        NewtonResult with the converged iterate

    Raises:
        NoConvergence: If neither |f| < ftol nor |dx| < xtol within the budget
        SingularJacobian: If no usable direction exists at some iterate
    """
    opts = (options or NewtonOptions()).validate()
    x = np.array(x0, dtype=float)
    f = np.asarray(residual(x), dtype=float)
    if not np.all(np.isfinite(f)):
        raise NoConvergence("residual is not finite at the initial guess", iterations=0)
    fnorm = norm(f)

    for iteration in range(1, opts.max_iterations + 1):
        if fnorm < opts.ftol:
            return NewtonResult(x=x, iterations=iteration - 1, residual_norm=fnorm)

        J = np.asarray(jacobian(x), dtype=float)
        try:
            dx = solve(J, -f)
            trial = _line_search(residual, x, dx, fnorm, opts.max_halvings)
        except SingularMatrix as exc:
            logger.debug(f"Newton iteration {iteration}: singular Jacobian ({exc.message}), regularizing")
            dx, trial = _regularized_step(residual, J, x, f, fnorm, opts, iteration)

        if trial is None:
            raise NoConvergence(
                f"residual became non-finite along the Newton direction at iteration {iteration}",
                iterations=iteration, residual_norm=fnorm
            )

        x, f, fnorm, damping, decreased = trial
        step_norm = norm(dx)
        logger.debug(f"Newton iteration {iteration}: |f|={fnorm:.3e}, |dx|={step_norm:.3e}, "
                     f"damping={damping:g}{'' if decreased else ' (no decrease)'}")

        if fnorm < opts.ftol or step_norm < opts.xtol * max(1.0, norm(x)):
            return NewtonResult(x=x, iterations=iteration, residual_norm=fnorm)

    raise NoConvergence(
        f"Newton did not converge after {opts.max_iterations} iterations (|f|={fnorm:.2e})",
        iterations=opts.max_iterations, residual_norm=fnorm
    )


def _regularized_step(residual, J, x, f, fnorm, opts: NewtonOptions, iteration: int):
    scale = max(1.0, float(np.linalg.norm(J, ord=np.inf)))
    identity = np.eye(J.shape[0])
    for shift in REGULARIZATION_SHIFTS:
        try:
            dx = solve(J + shift * scale * identity, -f)
        except SingularMatrix:
            continue
        trial = _line_search(residual, x, dx, fnorm, opts.max_halvings)
        if trial is not None and trial[4]:
            return dx, trial
    raise SingularJacobian(
        f"Jacobian is singular at iteration {iteration} and no damped direction reduces |f|",
        iterations=iteration, residual_norm=fnorm
    )


class RootFinder:
    """
    Locates single fixed points of a model.

    Example:
        >>> finder = RootFinder()
        >>> fp = finder.find_fixed_point(linear_decay(), [3.0], {})
        >>> fp.state, fp.stable
        (array([0.]), True)
    """

    def __init__(self, options: Optional[NewtonOptions] = None,
                 stability: Optional[StabilityOptions] = None):
        self.options = (options or NewtonOptions()).validate()
        self.classifier = StabilityClassifier(stability)

    def find_fixed_point(self, model: Model, guess, params: Optional[Parameters] = None) -> FixedPoint:
        """
        Run Newton from one guess and classify the result.

        Raises:
            NoConvergence, SingularJacobian: When Newton fails
            InvalidInput: On invalid guess or parameters
        """
        params = model.check_parameters(params)
        x0 = model.check_state(guess, "guess")
        fd_step = self.options.fd_step

        result = newton(
            lambda x: model.rhs(x, params),
            lambda x: model.jacobian_at(x, params, fd_step),
            x0,
            self.options,
        )
        return self.fixed_point_at(model, result.x, params, result.residual_norm, result.iterations)

    def fixed_point_at(self, model: Model, state, params: Parameters,
                       residual_norm: Optional[float] = None, iterations: int = 0) -> FixedPoint:
        """Build a classified FixedPoint at a known equilibrium state."""
        x = np.array(state, dtype=float)
        J = model.jacobian_at(x, params, self.options.fd_step)
        report = self.classifier.classify(J)
        if residual_norm is None:
            residual_norm = norm(model.rhs(x, params))
        return FixedPoint(
            state=frozen(x),
            parameters=dict(params),
            jacobian=frozen(J),
            eigenvalues=report.eigenvalues,
            stable=report.stable,
            residual_norm=float(residual_norm),
            marginal=report.marginal,
            eq_type=report.eq_type,
            iterations=iterations,
            report=report,
        )

    def with_budget(self, max_iterations: int) -> "RootFinder":
        """Copy of this finder with a different iteration budget."""
        return RootFinder(replace(self.options, max_iterations=max_iterations),
                          self.classifier.options)


def find_fixed_point(
    f: Union[Model, Callable],
    guess,
    params: Optional[Parameters] = None,
    jacobian: Optional[Callable] = None,
    options: Optional[NewtonOptions] = None,
    stability: Optional[StabilityOptions] = None
) -> FixedPoint:
    """
    Locate a single fixed point from one guess.

    Args:
        f: A Model, or a callable f(state, params, t)
        guess: Initial state
        params: Parameter mapping
        jacobian: Optional analytic J(state, params) when f is a callable
        options: Newton options
        stability: Classification tolerance
    """
    if isinstance(f, Model):
        if jacobian is not None:
            raise InvalidInput("pass the Jacobian through the Model, not separately")
        model = f
    else:
        if not callable(f):
            raise InvalidInput("f must be a Model or a callable f(state, params, t)")
        guess_arr = np.asarray(guess, dtype=float)
        names = sorted(params) if params else []
        model = FunctionModel(f, dimension=int(guess_arr.size), parameter_names=names,
                              jacobian=jacobian, name=getattr(f, "__name__", "function_model"))
    return RootFinder(options, stability).find_fixed_point(model, guess, params)
