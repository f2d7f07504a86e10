"""
High-Level API (Facade Pattern)
Provides a unified interface to trajectory, equilibrium, branch and cycle analysis.
"""

from dataclasses import replace
from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from .analysis.branch import Branch
from .analysis.continuation import ContinuationEngine, trace_branch
from .analysis.detector import BifurcationKind
from .analysis.equilibrium_scanner import EquilibriumScanner, parallel_map
from .analysis.limit_cycle import (CycleBranch, LimitCycle, LimitCycleSolver,
                                   continue_limit_cycles)
from .analysis.root_finder import FixedPoint
from .errors import InvalidInput
from .integrator import Integrator, Trajectory
from .model import Model, Parameters
from .options import (ContinuationOptions, DetectorOptions, IntegratorOptions,
                      NewtonOptions, ShootingOptions, StabilityOptions)

logger = logging.getLogger(__name__)


def run_trajectory(
    model: Model,
    state0,
    params: Optional[Parameters],
    t_span: Tuple[float, float],
    options: Optional[IntegratorOptions] = None
) -> Trajectory:
    """Integrate a model over t_span."""
    if not isinstance(model, Model):
        raise InvalidInput("run_trajectory requires a Model instance")
    return Integrator(options).integrate(model, state0, params, t_span)


def find_fixed_points(
    model: Model,
    guesses: Sequence,
    params: Optional[Parameters] = None,
    options: Optional[NewtonOptions] = None,
    stability: Optional[StabilityOptions] = None,
    workers: int = 1,
    cluster_tolerance: Optional[float] = None
) -> List[FixedPoint]:
    """
    Run Newton from every guess and return the converged fixed points.

    Failed guesses are logged and skipped. With cluster_tolerance set,
    duplicates are merged; otherwise there is one entry per converged
    guess, in guess order.
    """
    scanner = EquilibriumScanner(model, params, options, stability, workers, cluster_tolerance)
    return scanner.scan(guesses)


def trace_branches(
    model: Model,
    starts: Sequence,
    parameter: str,
    parameter_range: Tuple[float, float],
    params: Optional[Parameters] = None,
    directions: Sequence[int] = (1, -1),
    options: Optional[ContinuationOptions] = None,
    newton_options: Optional[NewtonOptions] = None,
    stability: Optional[StabilityOptions] = None,
    detector_options: Optional[DetectorOptions] = None,
    workers: int = 1
) -> List[Branch]:
    """
    Trace independent branches, one per (start, direction) pair.

    Branches are returned in start-major, direction-minor order whatever
    the number of workers.
    """
    base = (options or ContinuationOptions()).validate()
    jobs = [(start, replace(base, direction=d).validate()) for start in starts for d in directions]
    if not jobs:
        raise InvalidInput("at least one start point is required")

    def run(job):
        start, opts = job
        engine = ContinuationEngine(model, opts, newton_options, stability, detector_options)
        return engine.trace(start, parameter, parameter_range, params)

    return parallel_map(run, jobs, workers)


class BifurcationAnalyzer:
    """
    High-level facade for bifurcation analysis of one model.

    Stores the option set used by every analysis and keeps the results
    for summary().

    Example:
        >>> from bifurcation import BifurcationAnalyzer, systems
        >>> analyzer = BifurcationAnalyzer(systems.hopf_normal_form(p=-0.5))
        >>> branch = analyzer.trace_branch([0.0, 0.0], "p", (-0.5, 0.5))
        >>> [ev.kind.value for ev in branch.events]
        ['Hopf']
    """

    def __init__(
        self,
        model: Model,
        params: Optional[Parameters] = None,
        integrator: Optional[IntegratorOptions] = None,
        newton: Optional[NewtonOptions] = None,
        stability: Optional[StabilityOptions] = None,
        continuation: Optional[ContinuationOptions] = None,
        detector: Optional[DetectorOptions] = None,
        shooting: Optional[ShootingOptions] = None,
        workers: int = 1
    ):
        if not isinstance(model, Model):
            raise InvalidInput("BifurcationAnalyzer requires a Model instance")
        self.model = model
        self.params = model.check_parameters(params)
        self.integrator_options = (integrator or IntegratorOptions()).validate()
        self.newton_options = (newton or NewtonOptions()).validate()
        self.stability_options = (stability or StabilityOptions()).validate()
        self.continuation_options = (continuation or ContinuationOptions()).validate()
        self.detector_options = (detector or DetectorOptions()).validate()
        self.shooting_options = (shooting or ShootingOptions()).validate()
        self.workers = workers

        self.fixed_points: List[FixedPoint] = []
        self.branches: List[Branch] = []
        self.cycles: List[LimitCycle] = []
        self.cycle_branches: List[CycleBranch] = []

    def _params(self, overrides: Optional[Parameters]) -> Parameters:
        merged = dict(self.params)
        merged.update(overrides or {})
        return self.model.check_parameters(merged)

    def run_trajectory(self, state0, t_span: Tuple[float, float],
                       params: Optional[Parameters] = None, **overrides) -> Trajectory:
        """Integrate; keyword overrides replace fields of the stored IntegratorOptions."""
        options = replace(self.integrator_options, **overrides) if overrides else None
        return Integrator(self.integrator_options).integrate(
            self.model, state0, self._params(params), t_span, options
        )

    def find_fixed_points(self, guesses: Optional[Sequence] = None,
                          domain: Optional[Sequence[Tuple[float, float]]] = None,
                          points_per_axis: int = 5, params: Optional[Parameters] = None,
                          cluster_tolerance: Optional[float] = 1e-6) -> List[FixedPoint]:
        """Sweep explicit guesses or a grid over domain."""
        scanner = EquilibriumScanner(
            self.model, self._params(params), self.newton_options, self.stability_options,
            self.workers, cluster_tolerance
        )
        points = scanner.scan(guesses, domain, points_per_axis)
        self.fixed_points.extend(points)
        return points

    def trace_branch(self, start, parameter: str, parameter_range: Tuple[float, float],
                     params: Optional[Parameters] = None, **overrides) -> Branch:
        """Trace a branch; keyword overrides replace fields of the stored ContinuationOptions."""
        options = replace(self.continuation_options, **overrides)
        start_params = None if isinstance(start, FixedPoint) and params is None else self._params(params)
        engine = ContinuationEngine(
            self.model, options, self.newton_options, self.stability_options, self.detector_options
        )
        branch = engine.trace(start, parameter, parameter_range, start_params)
        self.branches.append(branch)
        return branch

    def trace_branches(self, starts: Sequence, parameter: str,
                       parameter_range: Tuple[float, float],
                       directions: Sequence[int] = (1, -1),
                       params: Optional[Parameters] = None) -> List[Branch]:
        branches = trace_branches(
            self.model, starts, parameter, parameter_range, self._params(params), directions,
            self.continuation_options, self.newton_options, self.stability_options,
            self.detector_options, self.workers
        )
        self.branches.extend(branches)
        return branches

    def shoot_limit_cycle(self, guess, period_guess: float,
                          params: Optional[Parameters] = None) -> LimitCycle:
        cycle = LimitCycleSolver(self.model, self.shooting_options).shoot(
            guess, self._params(params), period_guess
        )
        self.cycles.append(cycle)
        return cycle

    def limit_cycle_from_hopf(self, event, offset: float, amplitude: float = 0.1) -> LimitCycle:
        cycle = LimitCycleSolver(self.model, self.shooting_options).from_hopf(event, offset, amplitude)
        self.cycles.append(cycle)
        return cycle

    def continue_limit_cycles(self, cycle: LimitCycle, parameter: str,
                              parameter_range: Tuple[float, float], step: float = 0.01,
                              max_cycles: int = 100) -> CycleBranch:
        family = continue_limit_cycles(
            self.model, cycle, parameter, parameter_range, step=step,
            max_cycles=max_cycles, options=self.shooting_options
        )
        self.cycle_branches.append(family)
        return family

    def events(self) -> List:
        """All events of traced equilibrium and cycle branches, in trace order."""
        found = [ev for branch in self.branches for ev in branch.events]
        found.extend(ev for family in self.cycle_branches for ev in family.events)
        return found

    def summary(self) -> Dict[str, Any]:
        """
        Counts of everything computed so far.

        Returns:
            Dictionary with model info, point counts and event counts by kind
        """
        events = self.events()
        return {
            'model': {
                'name': self.model.name,
                'dimension': self.model.dimension(),
                'parameters': dict(self.params),
            },
            'fixed_points': len(self.fixed_points),
            'stable_fixed_points': sum(1 for fp in self.fixed_points if fp.stable),
            'branches': len(self.branches),
            'branch_points': int(sum(len(b) for b in self.branches)),
            'stalled_branches': sum(1 for b in self.branches if b.stalled),
            'limit_cycles': len(self.cycles),
            'cycle_branches': len(self.cycle_branches),
            'events': {kind.value: sum(1 for ev in events if ev.kind is kind) for kind in BifurcationKind},
        }

    def __repr__(self) -> str:
        return (f"BifurcationAnalyzer(\n"
                f"  model = {self.model!r}\n"
                f"  params = {self.params}\n"
                f"  branches = {len(self.branches)}\n"
                f")")


def create_analyzer(model: Model, params: Optional[Parameters] = None, **kwargs) -> BifurcationAnalyzer:
    """
    Convenience function to create a BifurcationAnalyzer.

    Args:
        model: Model to analyze
        params: Parameter values (model defaults when omitted)
        **kwargs: Additional arguments for BifurcationAnalyzer
    """
    return BifurcationAnalyzer(model, params, **kwargs)


__all__ = [
    "run_trajectory",
    "find_fixed_points",
    "trace_branch",
    "trace_branches",
    "BifurcationAnalyzer",
    "create_analyzer",
]
