"""
Limit Cycles
Shooting for periodic orbits and their natural-parameter continuation.

A cycle through x0 with period T solves

    phi_T(x0) - x0 = 0
    (x0 - x_g) . f(x_g) = 0

where phi_T is the flow and the second row pins the phase to the
hyperplane through the guess x_g normal to the flow. Newton on (x0, T)
uses the monodromy matrix M from the variational equations:

    [[M - I, f(phi_T(x0))],
     [f(x_g)^T,        0 ]]
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple
import logging
import math
import time

import numpy as np

from ..errors import InvalidInput, NoConvergence, SingularJacobian, StalledBranch, StepSizeUnderflow
from ..integrator import Integrator
from ..linalg import eig, eigenvalues, frozen, norm
from ..model import Model, Parameters
from ..options import NewtonOptions, ShootingOptions
from .branch import TerminationReason
from .classification import critical_pair
from .continuation import check_range
from .detector import BifurcationEvent, BifurcationKind
from .root_finder import RootFinder, newton

logger = logging.getLogger(__name__)

# Number of samples stored over one period.
CYCLE_SAMPLES = 200
# A continued cycle whose amplitude falls below this fraction of the
# previous one is taken to have collapsed onto an equilibrium.
MAX_AMPLITUDE_DROP = 0.5


@dataclass(frozen=True)
class LimitCycle:
    """
    A periodic orbit.

    Attributes:
        period: Period T
        samples: States over one period, shape (m, n), first == last
        times: Sample times in [0, T]
        floquet_multipliers: Eigenvalues of the monodromy matrix
        amplitude: Largest half peak-to-peak excursion over all components
        stable: True iff every non-trivial multiplier lies inside the unit circle
        parameters: Parameter values of the cycle
        iterations: Newton iterations used by shooting
        residual_norm: Final shooting residual
    """

    period: float
    samples: np.ndarray
    times: np.ndarray
    floquet_multipliers: np.ndarray
    amplitude: float
    stable: bool
    parameters: Dict[str, float] = field(default_factory=dict)
    iterations: int = 0
    residual_norm: float = 0.0

    @property
    def initial_state(self) -> np.ndarray:
        return self.samples[0]

    def nontrivial_multipliers(self) -> np.ndarray:
        return _nontrivial(self.floquet_multipliers)

    def to_dict(self) -> Dict:
        """Serialize to dictionary."""
        return {
            'period': self.period,
            'amplitude': self.amplitude,
            'stable': self.stable,
            'floquet_multipliers': [complex(m) for m in self.floquet_multipliers],
            'parameters': dict(self.parameters),
            'samples': self.samples.tolist(),
        }


def _nontrivial(multipliers: np.ndarray) -> np.ndarray:
    """Multipliers with the trivial one (closest to +1) removed."""
    trivial = int(np.argmin(np.abs(multipliers - 1.0)))
    return np.delete(np.asarray(multipliers), trivial)


def _complex_pairs(multipliers, tol: float = 1e-8) -> List[complex]:
    """Members with positive imaginary part of the complex multiplier pairs."""
    return [m for m in _nontrivial(np.asarray(multipliers, dtype=complex)) if m.imag > tol]


def floquet_test_functions(multipliers) -> Dict[str, Optional[float]]:
    """
    Test functions for cycle bifurcations.

    'period_doubling' = prod(mu + 1) and 'limit_point' = prod(mu - 1)
    over the non-trivial multipliers. Complex pairs contribute |.|^2 > 0,
    so a sign change means a real multiplier crossed -1 or +1.
    'torus' = prod(|mu|^2 - 1) over the complex pairs changes sign when a
    pair leaves or enters the unit circle (None without complex pairs).
    """
    rest = _nontrivial(np.asarray(multipliers, dtype=complex))
    pairs = _complex_pairs(multipliers)
    return {
        'period_doubling': float(np.prod(rest + 1.0).real),
        'limit_point': float(np.prod(rest - 1.0).real),
        'torus': float(np.prod([abs(m) ** 2 - 1.0 for m in pairs])) if pairs else None,
    }


def _cycle_crossings(a: LimitCycle, b: LimitCycle) -> List[Tuple[BifurcationKind, str]]:
    before = floquet_test_functions(a.floquet_multipliers)
    after = floquet_test_functions(b.floquet_multipliers)
    found = []
    for kind, key in ((BifurcationKind.PERIOD_DOUBLING, 'period_doubling'),
                      (BifurcationKind.LIMIT_POINT_OF_CYCLES, 'limit_point'),
                      (BifurcationKind.TORUS, 'torus')):
        if before[key] is None or after[key] is None or before[key] * after[key] >= 0:
            continue
        if kind is BifurcationKind.TORUS and (len(_complex_pairs(a.floquet_multipliers))
                                             != len(_complex_pairs(b.floquet_multipliers))):
            continue
        found.append((kind, key))
    return found


class LimitCycleSolver:
    """
    Shooting-based limit-cycle solver.

    Example:
        >>> solver = LimitCycleSolver(hopf_normal_form())
        >>> cycle = solver.shoot([0.45, 0.0], {"p": 0.25}, period_guess=6.0)
        >>> round(cycle.period, 4), round(cycle.amplitude, 3)
        (6.2832, 0.5)
    """

    def __init__(self, model: Model, options: Optional[ShootingOptions] = None,
                 fd_step: float = 1e-6):
        if not isinstance(model, Model):
            raise InvalidInput("LimitCycleSolver requires a Model instance")
        self.model = model
        self.options = (options or ShootingOptions()).validate()
        self.integrator = Integrator(self.options.integrator)
        self.fd_step = fd_step

    def shoot(self, guess, params: Optional[Parameters], period_guess: float) -> LimitCycle:
        """
        Correct an initial state and period to a periodic orbit.

        Raises:
            NoConvergence: If shooting fails or collapses onto an equilibrium
            SingularJacobian: If the shooting Jacobian is singular
            InvalidInput: On invalid arguments or an equilibrium guess
        """
        model = self.model
        opts = self.options
        params = model.check_parameters(params)
        x_g = model.check_state(guess, "guess")
        if not (math.isfinite(period_guess) and period_guess > 0):
            raise InvalidInput(f"period_guess must be positive, got {period_guess!r}")
        f_g = model.rhs(x_g, params)
        if norm(f_g) == 0.0:
            raise InvalidInput("guess is an equilibrium; the phase condition is undefined")

        n = x_g.shape[0]
        cache: Dict[bytes, Tuple[np.ndarray, np.ndarray]] = {}

        def flow(z):
            key = z.tobytes()
            if key not in cache:
                cache.clear()
                x_T, M, _ = self.integrator.integrate_variational(
                    model, z[:n], params, z[n], self.fd_step
                )
                cache[key] = (x_T, M)
            return cache[key]

        def residual(z):
            if not z[n] > 0:
                return np.full(n + 1, np.nan)
            try:
                x_T, _ = flow(z)
            except (StepSizeUnderflow, NoConvergence) as exc:
                logger.debug(f"Shooting trial integration failed: {exc.message}")
                return np.full(n + 1, np.nan)
            return np.append(x_T - z[:n], np.dot(z[:n] - x_g, f_g))

        def jacobian(z):
            x_T, M = flow(z)
            top = np.hstack([M - np.eye(n), model.rhs(x_T, params).reshape(-1, 1)])
            bottom = np.append(f_g, 0.0).reshape(1, -1)
            return np.vstack([top, bottom])

        start = time.time()
        result = newton(
            residual,
            jacobian,
            np.append(x_g, period_guess),
            NewtonOptions(ftol=opts.tol, max_iterations=opts.max_iterations),
        )
        x0, period = result.x[:n], float(result.x[n])
        _, M = flow(result.x)

        cycle = self._build(x0, period, M, params, result.iterations, result.residual_norm)
        if cycle.amplitude < opts.min_amplitude:
            raise NoConvergence(
                f"shooting collapsed onto an equilibrium (amplitude {cycle.amplitude:.2e})",
                iterations=result.iterations, residual_norm=result.residual_norm
            )

        logger.info(f"Limit cycle found in {time.time() - start:.2f}s: T={period:.6g}, "
                    f"amplitude={cycle.amplitude:.4g}, stable={cycle.stable}")
        return cycle

    def _build(self, x0, period, M, params, iterations, residual_norm) -> LimitCycle:
        sampling = replace(self.options.integrator, sample_dt=period / CYCLE_SAMPLES)
        traj = self.integrator.integrate(self.model, x0, params, (0.0, period), sampling)
        samples = traj.states
        amplitude = float(np.max(samples.max(axis=0) - samples.min(axis=0)) / 2.0)

        multipliers = eigenvalues(M)
        rest = _nontrivial(multipliers)
        return LimitCycle(
            period=period,
            samples=samples,
            times=traj.times,
            floquet_multipliers=multipliers,
            amplitude=amplitude,
            stable=bool(np.all(np.abs(rest) < 1.0)),
            parameters=dict(params),
            iterations=iterations,
            residual_norm=float(residual_norm),
        )

    def from_hopf(self, event: BifurcationEvent, offset: float,
                  amplitude: float = 0.1) -> LimitCycle:
        """
        Shoot the cycle born at a Hopf point.

        The guess is the equilibrium at the shifted parameter value plus
        amplitude times the real part of the critical eigenvector, with
        period 2*pi/|Im(lambda)|. The sign of offset selects the side of
        the bifurcation on which the cycle is sought.
        """
        if event.kind is not BifurcationKind.HOPF:
            raise InvalidInput(f"expected a Hopf event, got {event.kind.value}")
        if not (math.isfinite(offset) and offset != 0.0):
            raise InvalidInput("offset must be a non-zero finite number")
        if not amplitude > 0:
            raise InvalidInput("amplitude must be positive")

        model = self.model
        params = model.check_parameters(event.parameters)
        name = event.parameter_name
        model.check_parameter_name(name)

        J = model.jacobian_at(np.asarray(event.state, dtype=float), params, self.fd_step)
        values, vectors = eig(J)
        pair = critical_pair(values, 1e-12)
        if pair is None:
            raise InvalidInput("no complex eigenvalue pair at the Hopf point")
        q = np.asarray(vectors[:, int(np.argmin(np.abs(values - pair)))])
        direction = q.real if norm(q.real) >= norm(q.imag) else q.imag
        direction = direction / norm(direction)

        shifted = dict(params)
        shifted[name] = params[name] + offset
        equilibrium = RootFinder().find_fixed_point(model, event.state, shifted).state
        guess = equilibrium + amplitude * direction
        period_guess = 2.0 * math.pi / abs(pair.imag)

        logger.debug(f"Hopf initialisation: {name}={shifted[name]:.6g}, T0={period_guess:.6g}")
        return self.shoot(guess, shifted, period_guess)


@dataclass(frozen=True)
class CycleBranch:
    """A family of limit cycles traced in one parameter."""

    parameter_name: str
    cycles: Tuple[LimitCycle, ...]
    events: Tuple[BifurcationEvent, ...] = ()
    termination: TerminationReason = TerminationReason.MAX_POINTS
    error: Optional[StalledBranch] = None

    def __len__(self) -> int:
        return len(self.cycles)

    def parameter_values(self) -> np.ndarray:
        return np.array([c.parameters[self.parameter_name] for c in self.cycles])

    def periods(self) -> np.ndarray:
        return np.array([c.period for c in self.cycles])

    def amplitudes(self) -> np.ndarray:
        return np.array([c.amplitude for c in self.cycles])

    def to_dict(self) -> Dict:
        return {
            'parameter': self.parameter_name,
            'cycles': [
                {'parameter_value': c.parameters[self.parameter_name], 'period': c.period,
                 'amplitude': c.amplitude, 'stable': c.stable}
                for c in self.cycles
            ],
            'events': [ev.to_dict() for ev in self.events],
            'termination': self.termination.value,
            'error': self.error.message if self.error is not None else None,
        }


def _interpolated_event(kind: BifurcationKind, key: str, a: LimitCycle, b: LimitCycle,
                        name: str, index: int) -> BifurcationEvent:
    ta = floquet_test_functions(a.floquet_multipliers)[key]
    tb = floquet_test_functions(b.floquet_multipliers)[key]
    theta = ta / (ta - tb)
    pa, pb = a.parameters[name], b.parameters[name]
    value = pa + theta * (pb - pa)
    params = dict(b.parameters)
    params[name] = value
    nearest = a if theta < 0.5 else b
    return BifurcationEvent(
        kind=kind,
        branch_index=index,
        parameter_value=float(value),
        state=frozen(a.initial_state + theta * (b.initial_state - a.initial_state)),
        eigenvalues=nearest.floquet_multipliers,
        test_value=0.0,
        bracket=(index - 1, index),
        period=float(a.period + theta * (b.period - a.period)),
        parameter_name=name,
        parameters=params,
    )


def continue_limit_cycles(
    model: Model,
    cycle: LimitCycle,
    parameter: str,
    parameter_range: Tuple[float, float],
    step: float = 0.01,
    min_step: float = 1e-5,
    max_cycles: int = 100,
    options: Optional[ShootingOptions] = None
) -> CycleBranch:
    """
    Natural-parameter continuation of a cycle family.

    The parameter is advanced by step (its sign sets the direction) and
    each new cycle is shot from the previous one. A shot that fails, or
    whose amplitude drops below MAX_AMPLITUDE_DROP times the previous
    one, halves the step. Sign changes of the Floquet test functions
    produce PeriodDoubling, LimitPointOfCycles and Torus events located by
    linear interpolation. When the step falls below min_step the family
    is returned stalled, with the cause in error.
    """
    if not isinstance(cycle, LimitCycle):
        raise InvalidInput("cycle must be a LimitCycle")
    model.check_parameter_name(parameter)
    lo, hi = check_range(parameter_range)
    if not (math.isfinite(step) and step != 0.0):
        raise InvalidInput("step must be a non-zero finite number")
    if not 0 < min_step <= abs(step):
        raise InvalidInput("min_step must satisfy 0 < min_step <= |step|")
    if max_cycles < 1:
        raise InvalidInput("max_cycles must be positive")

    solver = LimitCycleSolver(model, options)
    cycles: List[LimitCycle] = [cycle]
    events: List[BifurcationEvent] = []
    termination = TerminationReason.MAX_POINTS
    error = None
    h = step

    start = time.time()
    logger.info(f"Continuing limit cycles of '{model.name}' in {parameter} over [{lo}, {hi}]")
    while len(cycles) < max_cycles:
        last = cycles[-1]
        value = last.parameters[parameter] + h
        if not lo <= value <= hi:
            termination = TerminationReason.PARAMETER_RANGE
            break
        params = dict(last.parameters)
        params[parameter] = value
        try:
            new = solver.shoot(last.initial_state, params, last.period)
            if new.amplitude < MAX_AMPLITUDE_DROP * last.amplitude:
                raise NoConvergence(
                    f"amplitude collapsed from {last.amplitude:.3g} to {new.amplitude:.3g}",
                    iterations=new.iterations, residual_norm=new.residual_norm
                )
        except (NoConvergence, SingularJacobian, StepSizeUnderflow) as exc:
            h *= 0.5
            logger.debug(f"Cycle rejected at {parameter}={value:.6g}: {exc.message}")
            if abs(h) < min_step:
                termination = TerminationReason.STALLED
                error = StalledBranch(
                    f"cycle continuation stalled at {parameter}={last.parameters[parameter]:.6g}",
                    step=h, points=len(cycles), cause=exc
                )
                logger.warning(error.message)
                break
            continue

        cycles.append(new)
        index = len(cycles) - 1
        for kind, key in _cycle_crossings(last, new):
            event = _interpolated_event(kind, key, last, new, parameter, index)
            events.append(event)
            logger.info(f"{kind.value} detected at {parameter}={event.parameter_value:.6g}")
        h = step

    logger.info(f"Cycle family finished in {time.time() - start:.2f}s: {len(cycles)} cycles, "
                f"{len(events)} events, termination={termination.value}")
    return CycleBranch(
        parameter_name=parameter,
        cycles=tuple(cycles),
        events=tuple(events),
        termination=termination,
        error=error,
    )


def shoot_limit_cycle(model: Model, guess, params: Optional[Parameters], period_guess: float,
                      options: Optional[ShootingOptions] = None) -> LimitCycle:
    """Functional form of LimitCycleSolver(...).shoot(...)."""
    return LimitCycleSolver(model, options).shoot(guess, params, period_guess)


def limit_cycle_from_hopf(model: Model, event: BifurcationEvent, offset: float,
                          amplitude: float = 0.1,
                          options: Optional[ShootingOptions] = None) -> LimitCycle:
    """Functional form of LimitCycleSolver(...).from_hopf(...)."""
    return LimitCycleSolver(model, options).from_hopf(event, offset, amplitude)
