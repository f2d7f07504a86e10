"""
Trajectory Integrator
Adaptive time stepping for dx/dt = f(x, p, t).

Two methods are available:
- 'RK45': explicit Dormand-Prince 5(4) pair with error control in the max
  norm and a quartic continuous extension for dense output.
- 'BDF': implicit backward differences for stiff problems, delegated to
  scipy.integrate.solve_ivp.

The integrator keeps no state between calls; every call returns a new
Trajectory owned by the caller.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Union
import logging
import math
import time

import numpy as np
from scipy.integrate import solve_ivp

from .errors import InvalidInput, NoConvergence, StepSizeUnderflow
from .linalg import as_vector, frozen
from .model import Model, Parameters
from .options import IntegratorOptions

logger = logging.getLogger(__name__)

RHS = Callable[[np.ndarray, Parameters, float], np.ndarray]

# Dormand-Prince 5(4) tableau with the dense-output matrix of Shampine's
# quartic interpolant (same coefficients as scipy's RK45).
RK45_C = np.array([0.0, 1 / 5, 3 / 10, 4 / 5, 8 / 9, 1.0])
RK45_A = np.array([
    [0.0, 0.0, 0.0, 0.0, 0.0],
    [1 / 5, 0.0, 0.0, 0.0, 0.0],
    [3 / 40, 9 / 40, 0.0, 0.0, 0.0],
    [44 / 45, -56 / 15, 32 / 9, 0.0, 0.0],
    [19372 / 6561, -25360 / 2187, 64448 / 6561, -212 / 729, 0.0],
    [9017 / 3168, -355 / 33, 46732 / 5247, 49 / 176, -5103 / 18656],
])
RK45_B = np.array([35 / 384, 0.0, 500 / 1113, 125 / 192, -2187 / 6784, 11 / 84])
RK45_E = np.array([-71 / 57600, 0.0, 71 / 16695, -71 / 1920, 17253 / 339200, -22 / 525, 1 / 40])
RK45_P = np.array([
    [1.0, -8048581381 / 2820520608, 8663915743 / 2820520608, -12715105075 / 11282082432],
    [0.0, 0.0, 0.0, 0.0],
    [0.0, 131558114200 / 32700410799, -68118460800 / 10900136933, 87487479700 / 32700410799],
    [0.0, -1754552775 / 470086768, 14199869525 / 1410260304, -10690763975 / 1880347072],
    [0.0, 127303824393 / 49829197408, -318862633887 / 49829197408, 701980252875 / 199316789632],
    [0.0, -282668133 / 205662961, 2019193451 / 616988883, -1453857185 / 822651844],
    [0.0, 40617522 / 29380423, -110615467 / 29380423, 69997945 / 29380423],
])

ERROR_EXPONENT = -1.0 / 5.0
GROWTH_SAFETY = 0.9
MAX_GROWTH = 5.0


@dataclass(frozen=True)
class Trajectory:
    """
    Ordered (time, state) samples produced by one integration call.

    Attributes:
        times: Sample times, shape (m,)
        states: Sampled states, shape (m, n)
        method: Integration method used
        n_steps: Number of accepted internal steps
        n_rejected: Number of rejected internal steps
        n_evaluations: Number of right-hand-side evaluations
    """

    times: np.ndarray
    states: np.ndarray
    method: str = "RK45"
    n_steps: int = 0
    n_rejected: int = 0
    n_evaluations: int = 0

    def __len__(self) -> int:
        return int(self.times.shape[0])

    def __iter__(self) -> Iterator[Tuple[float, np.ndarray]]:
        for t, x in zip(self.times, self.states):
            yield float(t), x

    @property
    def final_state(self) -> np.ndarray:
        return self.states[-1]

    @property
    def final_time(self) -> float:
        return float(self.times[-1])

    def to_dict(self) -> Dict:
        """Plain-data representation."""
        return {
            'times': self.times.tolist(),
            'states': self.states.tolist(),
            'method': self.method,
            'n_steps': self.n_steps,
            'n_rejected': self.n_rejected,
            'n_evaluations': self.n_evaluations,
        }


@dataclass
class _StepStats:
    accepted: int = 0
    rejected: int = 0
    evaluations: int = 0


def sample_times(t0: float, t1: float, dt: Optional[float]) -> Optional[np.ndarray]:
    """Uniform sample grid from t0 to t1 (inclusive) with spacing dt."""
    if dt is None:
        return None
    span = t1 - t0
    direction = 1.0 if span >= 0 else -1.0
    count = int(math.floor(abs(span) / dt + 1e-9))
    grid = t0 + direction * dt * np.arange(count + 1)
    if abs(t1 - grid[-1]) > 1e-12 * max(1.0, abs(t1)):
        grid = np.append(grid, t1)
    else:
        grid[-1] = t1
    return grid


class Integrator:
    """
    Adaptive ODE integrator.

    Example:
        >>> integrator = Integrator(IntegratorOptions(rtol=1e-9, atol=1e-12))
        >>> traj = integrator.integrate(model, [1.0, 0.0], {}, (0.0, 2 * np.pi))
        >>> traj.final_state
    """

    def __init__(self, options: Optional[IntegratorOptions] = None):
        self.options = (options or IntegratorOptions()).validate()

    def integrate(
        self,
        f: Union[Model, RHS],
        state0,
        params: Optional[Parameters],
        t_span: Tuple[float, float],
        options: Optional[IntegratorOptions] = None
    ) -> Trajectory:
        """
        Integrate from t_span[0] to t_span[1].

        Args:
            f: A Model or a callable f(state, params, t)
            state0: Initial state
            params: Parameter mapping passed through to f
            t_span: (t_start, t_end); t_end may be smaller than t_start
            options: Overrides the integrator's own options for this call

        Returns:
            Trajectory sampled at options.sample_dt, or at accepted steps

        Raises:
            StepSizeUnderflow: When the step falls below min_step
            NoConvergence: When max_steps is exhausted
            InvalidInput: On invalid arguments
        """
        opts = options.validate() if options is not None else self.options
        fun, y0, params = _prepare(f, state0, params)
        t0, t1 = _check_span(t_span)

        start = time.time()
        if opts.method == "BDF":
            traj = self._integrate_bdf(fun, y0, params, t0, t1, opts)
        else:
            traj = self._integrate_rk45(fun, y0, params, t0, t1, opts)

        logger.debug(f"{opts.method} integration over [{t0}, {t1}] finished in "
                     f"{time.time() - start:.3f}s: {traj.n_steps} steps, "
                     f"{traj.n_rejected} rejected, {len(traj)} samples")
        return traj

    def integrate_variational(
        self,
        model: Model,
        state0,
        params: Optional[Parameters],
        duration: float,
        fd_step: float = 1e-6,
        options: Optional[IntegratorOptions] = None
    ) -> Tuple[np.ndarray, np.ndarray, Trajectory]:
        """
        Integrate the state together with its sensitivity matrix.

        Solves dx/dt = f(x), dPhi/dt = J(x) Phi with Phi(0) = I over
        [0, duration]; Phi(duration) is the monodromy matrix when the
        trajectory is periodic with that period.

        Returns:
            (final_state, monodromy, state_trajectory)
        """
        if not isinstance(model, Model):
            raise InvalidInput("integrate_variational requires a Model instance")
        opts = options.validate() if options is not None else self.options
        if opts.method != "RK45":
            raise InvalidInput("variational integration is only available with RK45")

        params = model.check_parameters(params)
        x0 = model.check_state(state0)
        n = x0.shape[0]
        if not (math.isfinite(duration) and duration > 0):
            raise InvalidInput(f"duration must be positive, got {duration!r}")

        def augmented(z, p, t):
            x = z[:n]
            phi = z[n:].reshape(n, n)
            J = model.jacobian_at(x, p, fd_step)
            return np.concatenate([model.rhs(x, p, t), (J @ phi).ravel()])

        z0 = np.concatenate([x0, np.eye(n).ravel()])
        traj = self._integrate_rk45(augmented, z0, params, 0.0, float(duration), opts)
        final = np.array(traj.final_state)
        states = Trajectory(
            times=traj.times,
            states=frozen(traj.states[:, :n]),
            method=traj.method,
            n_steps=traj.n_steps,
            n_rejected=traj.n_rejected,
            n_evaluations=traj.n_evaluations,
        )
        return final[:n].copy(), final[n:].reshape(n, n).copy(), states

    # ------------------------------------------------------------------
    # Dormand-Prince 5(4)
    # ------------------------------------------------------------------

    def _integrate_rk45(self, fun: RHS, y0: np.ndarray, params, t0: float, t1: float,
                        opts: IntegratorOptions) -> Trajectory:
        stats = _StepStats()

        def rhs(t, y):
            stats.evaluations += 1
            return np.asarray(fun(y, params, t), dtype=float)

        direction = 1.0 if t1 >= t0 else -1.0
        samples = sample_times(t0, t1, opts.sample_dt)

        out_t: List[float] = [t0]
        out_y: List[np.ndarray] = [y0.copy()]
        next_sample = 1

        t = t0
        y = y0.copy()
        f = rhs(t, y)
        h = opts.first_step if opts.first_step is not None else self._initial_step(y, f, opts)
        h = min(max(h, opts.min_step), opts.max_step)

        K = np.empty((7, y.shape[0]))
        just_rejected = False
        while direction * (t1 - t) > 0:
            if stats.accepted >= opts.max_steps:
                raise NoConvergence(
                    f"maximum number of steps ({opts.max_steps}) reached at t={t:.6g}",
                    iterations=stats.accepted
                )

            remaining = abs(t1 - t)
            last = h >= remaining
            if last:
                h = remaining

            step = direction * h
            y_new = self._dp_step(rhs, t, y, f, step, K)
            t_new = t1 if last else t + step

            scale = opts.atol + opts.rtol * np.maximum(np.abs(y), np.abs(y_new))
            err = step * (K.T @ RK45_E)
            ratio = float(np.max(np.abs(err) / scale))

            if ratio <= 1.0:
                if samples is None:
                    out_t.append(t_new)
                    out_y.append(y_new.copy())
                else:
                    next_sample = self._dense_output(
                        samples, next_sample, t, t_new, y, y_new, step, K, direction, out_t, out_y
                    )

                t, y, f = t_new, y_new, K[6].copy()
                stats.accepted += 1

                factor = MAX_GROWTH if ratio == 0.0 else min(
                    MAX_GROWTH, GROWTH_SAFETY * ratio ** ERROR_EXPONENT
                )
                if just_rejected:
                    factor = min(1.0, factor)
                just_rejected = False
                h = min(h * factor, opts.max_step)
            else:
                stats.rejected += 1
                just_rejected = True
                factor = max(opts.safety_floor, min(opts.safety, GROWTH_SAFETY * ratio ** ERROR_EXPONENT))
                h *= factor
                logger.debug(f"Step rejected at t={t:.6g} (error ratio {ratio:.3g}), h -> {h:.3e}")
                if h < opts.min_step:
                    raise StepSizeUnderflow(
                        f"step size {h:.3e} fell below min_step {opts.min_step:.3e} at t={t:.6g}",
                        time=t, step=h
                    )

        return Trajectory(
            times=frozen(np.array(out_t)),
            states=frozen(np.array(out_y)),
            method="RK45",
            n_steps=stats.accepted,
            n_rejected=stats.rejected,
            n_evaluations=stats.evaluations,
        )

    @staticmethod
    def _initial_step(y: np.ndarray, f: np.ndarray, opts: IntegratorOptions) -> float:
        scale = opts.atol + opts.rtol * np.abs(y)
        d0 = np.linalg.norm(y / scale) / math.sqrt(y.size)
        d1 = np.linalg.norm(f / scale) / math.sqrt(y.size)
        if d0 < 1e-5 or d1 < 1e-5:
            return 1e-6
        return 0.01 * d0 / d1

    @staticmethod
    def _dp_step(rhs, t: float, y: np.ndarray, f: np.ndarray, h: float, K: np.ndarray) -> np.ndarray:
        """One Dormand-Prince step; fills the 7 stage derivatives into K."""
        K[0] = f
        for i in range(1, 6):
            dy = h * (K[:i].T @ RK45_A[i, :i])
            K[i] = rhs(t + RK45_C[i] * h, y + dy)
        y_new = y + h * (K[:6].T @ RK45_B)
        K[6] = rhs(t + h, y_new)
        return y_new

    @staticmethod
    def _dense_output(samples, index, t, t_new, y, y_new, h, K, direction, out_t, out_y) -> int:
        Q = K.T @ RK45_P
        while index < samples.shape[0] and direction * (samples[index] - t_new) <= 0:
            ts = samples[index]
            if ts == t_new:
                out_y.append(y_new.copy())
            else:
                x = (ts - t) / h
                powers = np.array([x, x ** 2, x ** 3, x ** 4])
                out_y.append(y + h * (Q @ powers))
            out_t.append(float(ts))
            index += 1
        return index

    # ------------------------------------------------------------------
    # Implicit backward differences
    # ------------------------------------------------------------------

    def _integrate_bdf(self, fun: RHS, y0: np.ndarray, params, t0: float, t1: float,
                       opts: IntegratorOptions) -> Trajectory:
        samples = sample_times(t0, t1, opts.sample_dt)
        kwargs = {
            'method': 'BDF',
            'atol': opts.atol,
            'rtol': opts.rtol,
            'max_step': opts.max_step,
        }
        if opts.first_step is not None:
            kwargs['first_step'] = min(opts.first_step, abs(t1 - t0))
        if samples is not None:
            kwargs['t_eval'] = samples

        sol = solve_ivp(lambda t, y: fun(y, params, t), (t0, t1), y0, **kwargs)

        if sol.status != 0:
            t_fail = float(sol.t[-1]) if sol.t.size else t0
            raise StepSizeUnderflow(f"BDF integration failed at t={t_fail:.6g}: {sol.message}", time=t_fail)

        n_steps = int(sol.t.size - 1) if samples is None else 0
        return Trajectory(
            times=frozen(sol.t),
            states=frozen(sol.y.T),
            method="BDF",
            n_steps=n_steps,
            n_rejected=0,
            n_evaluations=int(sol.nfev),
        )


def _prepare(f, state0, params) -> Tuple[RHS, np.ndarray, Parameters]:
    if isinstance(f, Model):
        model = f
        params = model.check_parameters(params)
        return model.rhs, model.check_state(state0, "state0"), params
    if not callable(f):
        raise InvalidInput("f must be a Model or a callable f(state, params, t)")
    y0 = as_vector(state0, "state0").astype(float)
    params = params if params is not None else {}
    first = np.asarray(f(y0, params, 0.0), dtype=float)
    if first.shape != y0.shape:
        raise InvalidInput(f"f returned shape {first.shape} for a state of shape {y0.shape}")
    return f, y0, params


def _check_span(t_span) -> Tuple[float, float]:
    try:
        t0, t1 = (float(v) for v in t_span)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"t_span must be a pair of numbers, got {t_span!r}") from exc
    if not (math.isfinite(t0) and math.isfinite(t1)):
        raise InvalidInput("t_span must be finite")
    if t0 == t1:
        raise InvalidInput("t_span must have non-zero length")
    return t0, t1


def integrate(f, state0, params, t_span, options: Optional[IntegratorOptions] = None) -> Trajectory:
    """Functional form of Integrator().integrate(...)."""
    return Integrator(options).integrate(f, state0, params, t_span)
