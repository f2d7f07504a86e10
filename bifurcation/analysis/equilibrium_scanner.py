"""
Equilibrium Scanner
Multi-guess sweeps for equilibrium points.

Every guess is an independent Newton run, so sweeps are spread over a
thread pool when more than one worker is requested. Results are
collected in input order and de-duplicated deterministically, so the
outcome does not depend on the number of workers.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import product
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union
import logging
import time

import numpy as np

from ..errors import AnalysisError, InvalidInput, NoConvergence, SingularJacobian
from ..model import Model, Parameters
from ..options import NewtonOptions, StabilityOptions
from .root_finder import FixedPoint, RootFinder

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


def parallel_map(func: Callable[[T], R], items: Sequence[T], workers: int = 1) -> List[R]:
    """
    Apply func to every item, in a thread pool when workers > 1.

    The result list is in input order regardless of completion order.
    """
    if not isinstance(workers, int) or workers < 1:
        raise InvalidInput(f"workers must be a positive integer, got {workers!r}")
    if workers == 1 or len(items) <= 1:
        return [func(item) for item in items]
    with ThreadPoolExecutor(max_workers=min(workers, len(items))) as executor:
        return list(executor.map(func, items))


@dataclass(frozen=True)
class SweepFailure:
    """A guess for which Newton failed."""

    index: int
    guess: np.ndarray
    error: AnalysisError

    def to_dict(self):
        return {
            'index': self.index,
            'guess': self.guess.tolist(),
            'error': type(self.error).__name__,
            'message': self.error.message,
        }


def uniform_grid(domain: Sequence[Tuple[float, float]], points_per_axis: int) -> np.ndarray:
    """
    Tensor grid over a box domain.

    Args:
        domain: One (min, max) pair per state variable
        points_per_axis: Grid points along every axis

    Returns:
        Array of shape (points_per_axis ** n, n)
    """
    if not isinstance(points_per_axis, int) or points_per_axis < 1:
        raise InvalidInput(f"points_per_axis must be a positive integer, got {points_per_axis!r}")
    axes = []
    for lo, hi in domain:
        lo, hi = float(lo), float(hi)
        if not (np.isfinite(lo) and np.isfinite(hi) and lo <= hi):
            raise InvalidInput(f"invalid domain interval ({lo}, {hi})")
        axes.append(np.linspace(lo, hi, points_per_axis) if points_per_axis > 1 else np.array([0.5 * (lo + hi)]))
    return np.array(list(product(*axes)), dtype=float)


def cluster_fixed_points(points: Iterable[FixedPoint], tolerance: float) -> List[FixedPoint]:
    """
    Merge fixed points closer than tolerance.

    Each cluster keeps the member with the smallest residual, at the
    position where the cluster first appeared.
    """
    unique: List[FixedPoint] = []
    for fp in points:
        for i, kept in enumerate(unique):
            if np.linalg.norm(fp.state - kept.state) < tolerance:
                if fp.residual_norm < kept.residual_norm:
                    unique[i] = fp
                break
        else:
            unique.append(fp)
    return unique


class EquilibriumScanner:
    """
    Sweeps initial guesses through the root finder.

    Example:
        >>> scanner = EquilibriumScanner(lorenz(), workers=4)
        >>> points = scanner.scan(domain=[(-10, 10), (-10, 10), (0, 30)], points_per_axis=3)
        >>> for pt in points:
        ...     print(pt.state, pt.eq_type.value)
    """

    def __init__(
        self,
        model: Model,
        params: Optional[Parameters] = None,
        options: Optional[NewtonOptions] = None,
        stability: Optional[StabilityOptions] = None,
        workers: int = 1,
        cluster_tolerance: Optional[float] = 1e-6
    ):
        """
        Initialize the scanner.

        Args:
            model: Model whose equilibria are sought
            params: Parameter values (model defaults when omitted)
            options: Newton options for every guess
            stability: Classification tolerance
            workers: Thread pool size; 1 runs sequentially
            cluster_tolerance: Distance below which fixed points are merged
                (None keeps every converged guess)
        """
        if not isinstance(model, Model):
            raise InvalidInput("EquilibriumScanner requires a Model instance")
        if not isinstance(workers, int) or workers < 1:
            raise InvalidInput(f"workers must be a positive integer, got {workers!r}")
        if cluster_tolerance is not None and not cluster_tolerance > 0:
            raise InvalidInput(f"cluster_tolerance must be positive, got {cluster_tolerance!r}")

        self.model = model
        self.params = model.check_parameters(params)
        self.root_finder = RootFinder(options, stability)
        self.workers = workers
        self.cluster_tolerance = cluster_tolerance

        logger.debug(f"EquilibriumScanner initialized for '{model.name}' with {workers} worker(s)")

    def scan(
        self,
        guesses: Optional[Sequence] = None,
        domain: Optional[Sequence[Tuple[float, float]]] = None,
        points_per_axis: int = 5,
        return_failures: bool = False
    ) -> Union[List[FixedPoint], Tuple[List[FixedPoint], List[SweepFailure]]]:
        """
        Run Newton from every guess and collect the converged fixed points.

        Args:
            guesses: Explicit initial states
            domain: Box [(min, max), ...] for a uniform grid of guesses,
                used when guesses is None
            points_per_axis: Grid resolution for domain
            return_failures: Also return the failed guesses

        Returns:
            Fixed points in guess order (de-duplicated when
            cluster_tolerance is set), plus failures if requested
        """
        seeds = self._seeds(guesses, domain, points_per_axis)

        start_time = time.time()
        logger.info(f"Starting equilibrium scan with {len(seeds)} guesses")

        outcomes = parallel_map(self._solve_one, list(enumerate(seeds)), self.workers)

        found: List[FixedPoint] = []
        failures: List[SweepFailure] = []
        for outcome in outcomes:
            if isinstance(outcome, SweepFailure):
                failures.append(outcome)
            else:
                found.append(outcome)

        if self.cluster_tolerance is not None:
            found = cluster_fixed_points(found, self.cluster_tolerance)

        elapsed = time.time() - start_time
        logger.info(f"Equilibrium scan completed in {elapsed:.2f}s: {len(found)} fixed points, "
                    f"{len(failures)} failed guesses")

        if return_failures:
            return found, failures
        return found

    def _seeds(self, guesses, domain, points_per_axis) -> List[np.ndarray]:
        if guesses is None:
            if domain is None:
                raise InvalidInput("either guesses or domain is required")
            if len(domain) != self.model.dimension():
                raise InvalidInput(
                    f"domain has {len(domain)} intervals, model dimension is {self.model.dimension()}"
                )
            return list(uniform_grid(domain, points_per_axis))
        seeds = [self.model.check_state(g, f"guess[{i}]") for i, g in enumerate(guesses)]
        if not seeds:
            raise InvalidInput("at least one guess is required")
        return seeds

    def _solve_one(self, item: Tuple[int, np.ndarray]) -> Union[FixedPoint, SweepFailure]:
        index, guess = item
        try:
            return self.root_finder.find_fixed_point(self.model, guess, self.params)
        except (NoConvergence, SingularJacobian) as exc:
            logger.debug(f"Guess {index} {guess.tolist()} failed: {exc.message}")
            return SweepFailure(index=index, guess=guess, error=exc)


def sweep_fixed_points(
    model: Model,
    guesses: Sequence,
    params: Optional[Parameters] = None,
    options: Optional[NewtonOptions] = None,
    stability: Optional[StabilityOptions] = None,
    workers: int = 1,
    cluster_tolerance: Optional[float] = 1e-6,
    return_failures: bool = False
):
    """Convenience wrapper around EquilibriumScanner(...).scan(guesses)."""
    scanner = EquilibriumScanner(model, params, options, stability, workers, cluster_tolerance)
    return scanner.scan(guesses, return_failures=return_failures)
