"""
Continuation Engine
Pseudo-arclength continuation of equilibrium branches.

Each step predicts along the unit tangent of the solution curve in
(state, parameter) space and corrects with Newton on

    f(x, p) = 0
    t_prev . (u - u_prev) = ds

so the branch can be followed around folds where the parameter turns
back. Failed corrections halve the step; below ds_min the branch is
returned as stalled together with everything computed so far.
"""

from dataclasses import replace
from typing import List, Optional, Tuple, Union
import logging
import math
import time

import numpy as np

from ..errors import InvalidInput, NoConvergence, SingularJacobian, StalledBranch
from ..linalg import norm
from ..model import Model, Parameters
from ..options import ContinuationOptions, DetectorOptions, NewtonOptions, StabilityOptions
from .branch import AugmentedSystem, Branch, BranchPoint, TerminationReason
from .detector import BifurcationDetector, BifurcationEvent
from .root_finder import FixedPoint, NewtonResult, RootFinder, newton

logger = logging.getLogger(__name__)

# Accepted chords may exceed the predicted step by this factor before the
# corrector is assumed to have jumped to another branch.
MAX_CHORD_RATIO = 1.5
# Step shrink factor after a hard correction or a detected bifurcation.
SHRINK = 0.5


class _Rejected(Exception):
    """Internal signal that a predictor-corrector attempt failed."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ContinuationEngine:
    """
    Traces one branch of equilibria as a parameter varies.

    Example:
        >>> engine = ContinuationEngine(saddle_node(), ContinuationOptions(direction=-1))
        >>> branch = engine.trace([1.0], "p", (-1.0, 2.0))
        >>> [ev.kind for ev in branch.events]
        [<BifurcationKind.SADDLE_NODE: 'SaddleNode'>]
    """

    def __init__(
        self,
        model: Model,
        options: Optional[ContinuationOptions] = None,
        newton_options: Optional[NewtonOptions] = None,
        stability: Optional[StabilityOptions] = None,
        detector_options: Optional[DetectorOptions] = None
    ):
        if not isinstance(model, Model):
            raise InvalidInput("ContinuationEngine requires a Model instance")
        self.model = model
        self.options = (options or ContinuationOptions()).validate()
        self.root_finder = RootFinder(newton_options, stability)
        self.detector_options = (detector_options or DetectorOptions()).validate()
        self._corrector_options = replace(
            self.root_finder.options, max_iterations=self.options.corrector_iterations
        ).validate()

    def trace(
        self,
        start: Union[FixedPoint, np.ndarray, List[float]],
        parameter: str,
        parameter_range: Tuple[float, float],
        params: Optional[Parameters] = None
    ) -> Branch:
        """
        Trace a branch from a starting equilibrium.

        Args:
            start: A FixedPoint, or a state that is corrected at fixed
                parameter before the trace begins
            parameter: Name of the continuation parameter
            parameter_range: (low, high) bounds for the parameter
            params: Parameter values (defaults to start.parameters or the
                model defaults)

        Returns:
            Branch with points, events and the termination reason

        Raises:
            InvalidInput: On invalid arguments
            NoConvergence, SingularJacobian: If the start state cannot be
                corrected to an equilibrium
        """
        opts = self.options
        self.model.check_parameter_name(parameter)
        lo, hi = check_range(parameter_range)

        if isinstance(start, FixedPoint):
            merged = dict(start.parameters)
            merged.update(params or {})
            params = self.model.check_parameters(merged)
            fp0 = start
            if params != start.parameters:
                fp0 = self.root_finder.find_fixed_point(self.model, start.state, params)
        else:
            params = self.model.check_parameters(params)
            fp0 = self.root_finder.find_fixed_point(self.model, start, params)

        p0 = params[parameter]
        if not lo <= p0 <= hi:
            raise InvalidInput(f"start value {parameter}={p0} lies outside the range [{lo}, {hi}]")

        system = AugmentedSystem(self.model, params, parameter, self.root_finder.options.fd_step)
        detector = BifurcationDetector(system, self.root_finder, self.detector_options)

        start_time = time.time()
        logger.info(f"Tracing branch of '{self.model.name}' in {parameter} over [{lo}, {hi}] "
                    f"from {parameter}={p0:.6g} (direction {opts.direction:+d})")

        u0 = system.join(fp0.state, p0)
        points = [BranchPoint(
            fixed_point=fp0,
            parameter=p0,
            arclength=0.0,
            tangent=system.tangent(u0, direction=opts.direction),
            index=0,
        )]
        events: List[BifurcationEvent] = []
        termination = TerminationReason.MAX_POINTS
        error = None
        ds = opts.ds

        while len(points) < opts.max_points:
            previous = points[-1]
            try:
                point, result, ds_used = self._step(system, previous, ds)
            except StalledBranch as exc:
                termination = TerminationReason.STALLED
                error = exc
                logger.warning(f"Branch stalled after {len(points)} points: {exc.message}")
                break

            if not lo <= point.parameter <= hi:
                termination = TerminationReason.PARAMETER_RANGE
                break

            points.append(point)
            found = detector.detect(previous, point) if opts.detect else []
            events.extend(found)
            ds = self._adapt(ds_used, result, bool(found))

        branch = Branch(
            parameter_name=parameter,
            points=tuple(points),
            events=tuple(events),
            termination=termination,
            error=error,
            parameter_range=(lo, hi),
            fixed_parameters={k: v for k, v in params.items() if k != parameter},
        )
        logger.info(f"Branch finished in {time.time() - start_time:.2f}s: {len(points)} points, "
                    f"{len(events)} events, termination={termination.value}")
        return branch

    def _step(self, system: AugmentedSystem, previous: BranchPoint,
              ds: float) -> Tuple[BranchPoint, NewtonResult, float]:
        """Predict and correct, halving ds until a point is accepted."""
        opts = self.options
        u_prev = previous.u
        t_prev = previous.tangent
        last_error = None

        while ds >= opts.ds_min:
            try:
                return self._attempt(system, previous, u_prev, t_prev, ds) + (ds,)
            except (NoConvergence, SingularJacobian) as exc:
                last_error = exc
                reason = exc.message
            except _Rejected as exc:
                reason = exc.reason
            logger.debug(f"Corrector rejected step ds={ds:.3e}: {reason}")
            ds *= 0.5

        raise StalledBranch(
            f"step length fell below ds_min={opts.ds_min:g} at "
            f"{system.parameter}={previous.parameter:.6g}",
            step=ds,
            points=previous.index + 1,
            cause=last_error,
        )

    def _attempt(self, system: AugmentedSystem, previous: BranchPoint, u_prev: np.ndarray,
                 t_prev: np.ndarray, ds: float) -> Tuple[BranchPoint, NewtonResult]:
        opts = self.options
        u_pred = u_prev + ds * t_prev

        result = newton(
            lambda u: np.append(system.residual(u), np.dot(t_prev, u - u_prev) - ds),
            lambda u: np.vstack([system.jacobian(u), t_prev.reshape(1, -1)]),
            u_pred,
            self._corrector_options,
        )
        u_new = result.x

        chord = norm(u_new - u_prev)
        if chord > MAX_CHORD_RATIO * ds:
            raise _Rejected(f"chord {chord:.3e} too long for step {ds:.3e}")

        t_new = system.tangent(u_new, previous=t_prev)
        angle = math.acos(min(1.0, max(-1.0, float(np.dot(t_new, t_prev)))))
        if angle > opts.max_angle:
            raise _Rejected(f"tangent turned by {angle:.3f} rad")

        x, p = system.split(u_new)
        fp = self.root_finder.fixed_point_at(
            system.model, x, system.params_at(p), iterations=result.iterations
        )
        point = BranchPoint(
            fixed_point=fp,
            parameter=p,
            arclength=previous.arclength + chord,
            tangent=t_new,
            index=previous.index + 1,
        )
        return point, result

    def _adapt(self, ds: float, result: NewtonResult, detected: bool) -> float:
        opts = self.options
        if detected or result.iterations > max(opts.easy_iterations, opts.corrector_iterations // 2):
            return max(opts.ds_min, ds * SHRINK)
        if result.iterations <= opts.easy_iterations:
            return min(opts.ds_max, ds * opts.growth)
        return ds


def check_range(parameter_range) -> Tuple[float, float]:
    """Validate a (low, high) parameter range."""
    try:
        lo, hi = (float(v) for v in parameter_range)
    except (TypeError, ValueError) as exc:
        raise InvalidInput(f"parameter range must be a pair of numbers, got {parameter_range!r}") from exc
    if math.isnan(lo) or math.isnan(hi) or not lo < hi:
        raise InvalidInput(f"parameter range must satisfy low < high, got ({lo}, {hi})")
    return lo, hi


def trace_branch(
    model: Model,
    start,
    parameter: str,
    parameter_range: Tuple[float, float],
    params: Optional[Parameters] = None,
    options: Optional[ContinuationOptions] = None,
    newton_options: Optional[NewtonOptions] = None,
    stability: Optional[StabilityOptions] = None,
    detector_options: Optional[DetectorOptions] = None
) -> Branch:
    """Functional form of ContinuationEngine(...).trace(...)."""
    engine = ContinuationEngine(model, options, newton_options, stability, detector_options)
    return engine.trace(start, parameter, parameter_range, params)
