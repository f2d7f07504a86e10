"""
Solver Options
Configuration dataclasses for the integrator, Newton solver, classifier,
continuation engine, bifurcation detector and limit-cycle shooting.
"""

from dataclasses import dataclass, field
from typing import Optional
import math

from .errors import InvalidInput


INTEGRATION_METHODS = ("RK45", "BDF")


def _require_positive(name: str, value: float) -> None:
    if not (isinstance(value, (int, float)) and math.isfinite(value) and value > 0):
        raise InvalidInput(f"{name} must be a positive finite number, got {value!r}")


def _require_positive_int(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value < 1:
        raise InvalidInput(f"{name} must be a positive integer, got {value!r}")


@dataclass(frozen=True)
class IntegratorOptions:
    """
    Options for trajectory integration.

    Attributes:
        method: 'RK45' (adaptive Dormand-Prince) or 'BDF' (implicit, stiff)
        atol, rtol: Absolute and relative local error tolerances
        first_step: Initial step (None = automatic)
        min_step: Smallest step before StepSizeUnderflow
        max_step: Largest step allowed
        max_steps: Maximum number of accepted steps
        safety: Step shrink factor applied on rejection
        safety_floor: Lower bound on the shrink factor
        sample_dt: Dense-output sampling interval (None = accepted steps)
    """

    method: str = "RK45"
    atol: float = 1e-8
    rtol: float = 1e-6
    first_step: Optional[float] = None
    min_step: float = 1e-12
    max_step: float = math.inf
    max_steps: int = 100000
    safety: float = 0.5
    safety_floor: float = 0.1
    sample_dt: Optional[float] = None

    def validate(self) -> "IntegratorOptions":
        if self.method not in INTEGRATION_METHODS:
            raise InvalidInput(
                f"Unknown integration method '{self.method}', expected one of {INTEGRATION_METHODS}"
            )
        _require_positive("atol", self.atol)
        _require_positive("rtol", self.rtol)
        _require_positive("min_step", self.min_step)
        if not (self.max_step > 0):
            raise InvalidInput(f"max_step must be positive, got {self.max_step!r}")
        if self.max_step < self.min_step:
            raise InvalidInput("max_step must not be smaller than min_step")
        if self.first_step is not None:
            _require_positive("first_step", self.first_step)
        if self.sample_dt is not None:
            _require_positive("sample_dt", self.sample_dt)
        _require_positive_int("max_steps", self.max_steps)
        if not (0.0 < self.safety_floor <= self.safety < 1.0):
            raise InvalidInput("safety factors must satisfy 0 < safety_floor <= safety < 1")
        return self


@dataclass(frozen=True)
class NewtonOptions:
    """
    Options for damped Newton iteration.

    The finite-difference step for component i is fd_step * max(1, |x_i|).
    """

    ftol: float = 1e-10
    xtol: float = 1e-12
    max_iterations: int = 50
    max_halvings: int = 10
    fd_step: float = 1e-6

    def validate(self) -> "NewtonOptions":
        _require_positive("ftol", self.ftol)
        _require_positive("xtol", self.xtol)
        _require_positive("fd_step", self.fd_step)
        _require_positive_int("max_iterations", self.max_iterations)
        if not isinstance(self.max_halvings, int) or self.max_halvings < 0:
            raise InvalidInput(f"max_halvings must be a non-negative integer, got {self.max_halvings!r}")
        return self


@dataclass(frozen=True)
class StabilityOptions:
    """Tolerance band around zero for eigenvalue real parts."""

    tol: float = 1e-8

    def validate(self) -> "StabilityOptions":
        _require_positive("tol", self.tol)
        return self


@dataclass(frozen=True)
class ContinuationOptions:
    """
    Options for pseudo-arclength continuation.

    Attributes:
        ds: Initial arclength step
        ds_min: Step below which the branch is reported as stalled
        ds_max: Largest arclength step (also the maximum chord length)
        max_points: Maximum number of accepted points, start included
        direction: +1 to start towards increasing parameter, -1 otherwise
        corrector_iterations: Newton budget for each corrector solve
        easy_iterations: Corrections at or below this count grow the step
        growth: Step growth factor after an easy correction
        max_angle: Largest angle (radians) between consecutive tangents
        detect: Whether to run bifurcation detection
    """

    ds: float = 0.01
    ds_min: float = 1e-6
    ds_max: float = 0.1
    max_points: int = 500
    direction: int = 1
    corrector_iterations: int = 10
    easy_iterations: int = 3
    growth: float = 1.5
    max_angle: float = math.pi / 6
    detect: bool = True

    def validate(self) -> "ContinuationOptions":
        _require_positive("ds", self.ds)
        _require_positive("ds_min", self.ds_min)
        _require_positive("ds_max", self.ds_max)
        if not (self.ds_min <= self.ds <= self.ds_max):
            raise InvalidInput("step lengths must satisfy ds_min <= ds <= ds_max")
        _require_positive_int("max_points", self.max_points)
        _require_positive_int("corrector_iterations", self.corrector_iterations)
        _require_positive_int("easy_iterations", self.easy_iterations)
        if self.direction not in (1, -1):
            raise InvalidInput(f"direction must be +1 or -1, got {self.direction!r}")
        if not (self.growth >= 1.0 and math.isfinite(self.growth)):
            raise InvalidInput(f"growth must be >= 1, got {self.growth!r}")
        if not (0.0 < self.max_angle <= math.pi):
            raise InvalidInput(f"max_angle must lie in (0, pi], got {self.max_angle!r}")
        return self


@dataclass(frozen=True)
class DetectorOptions:
    """Options for bisection refinement of bifurcation events."""

    tol: float = 1e-8
    max_depth: int = 40

    def validate(self) -> "DetectorOptions":
        _require_positive("tol", self.tol)
        _require_positive_int("max_depth", self.max_depth)
        return self


@dataclass(frozen=True)
class ShootingOptions:
    """Options for limit-cycle shooting."""

    max_iterations: int = 20
    tol: float = 1e-8
    min_amplitude: float = 1e-6
    integrator: IntegratorOptions = field(
        default_factory=lambda: IntegratorOptions(atol=1e-10, rtol=1e-9)
    )

    def validate(self) -> "ShootingOptions":
        _require_positive_int("max_iterations", self.max_iterations)
        _require_positive("tol", self.tol)
        _require_positive("min_amplitude", self.min_amplitude)
        self.integrator.validate()
        if self.integrator.method != "RK45":
            raise InvalidInput("Shooting requires the RK45 integrator for variational equations")
        return self
