"""
Branch Data
Equilibrium branches in the augmented (state, parameter) space.

AugmentedSystem evaluates f and its derivatives on u = (x, p), where p
is the continuation parameter and every other parameter stays fixed.
Branch and BranchPoint are the immutable results handed to callers.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np

from ..errors import SingularMatrix, StalledBranch
from ..linalg import null_vector, solve
from ..model import Model, Parameters
from .root_finder import FixedPoint

logger = logging.getLogger(__name__)


class TerminationReason(Enum):
    """Why a branch trace stopped."""

    PARAMETER_RANGE = "parameter_range"
    MAX_POINTS = "max_points"
    STALLED = "stalled"


class AugmentedSystem:
    """
    f(x, p) viewed as a map from R^(n+1) to R^n.

    Args:
        model: Model providing f, df/dx and df/dp
        params: Full parameter mapping (the continuation entry is overridden)
        parameter: Name of the continuation parameter
        fd_step: Finite-difference step for missing analytic derivatives
    """

    def __init__(self, model: Model, params: Parameters, parameter: str, fd_step: float = 1e-6):
        self.model = model
        self.params = dict(params)
        self.parameter = parameter
        self.fd_step = fd_step
        self.n = model.dimension()

    def params_at(self, value: float) -> Parameters:
        params = dict(self.params)
        params[self.parameter] = float(value)
        return params

    def join(self, state, value: float) -> np.ndarray:
        return np.append(np.asarray(state, dtype=float), float(value))

    def split(self, u: np.ndarray) -> Tuple[np.ndarray, float]:
        return u[:self.n], float(u[self.n])

    def residual(self, u: np.ndarray) -> np.ndarray:
        x, p = self.split(u)
        return self.model.rhs(x, self.params_at(p))

    def jacobian(self, u: np.ndarray) -> np.ndarray:
        """[df/dx | df/dp], shape (n, n+1)."""
        x, p = self.split(u)
        params = self.params_at(p)
        J = self.model.jacobian_at(x, params, self.fd_step)
        dfdp = self.model.parameter_derivative_at(x, params, self.parameter, self.fd_step)
        return np.hstack([J, dfdp.reshape(-1, 1)])

    def tangent(self, u: np.ndarray, previous: Optional[np.ndarray] = None,
                direction: int = 1) -> np.ndarray:
        """
        Unit tangent to the solution curve at u.

        With a previous tangent, solves [DF; t_prev^T] t = (0, ..., 0, 1)
        so the orientation follows the previous tangent through folds.
        Without one, the SVD kernel of DF is oriented so that the
        parameter component has the sign of direction.
        """
        DF = self.jacobian(u)
        if previous is not None:
            bordered = np.vstack([DF, previous.reshape(1, -1)])
            rhs = np.zeros(self.n + 1)
            rhs[-1] = 1.0
            try:
                t = solve(bordered, rhs)
                return t / np.linalg.norm(t)
            except SingularMatrix:
                logger.debug("Bordered tangent system singular, falling back to SVD kernel")
            t = null_vector(DF)
            return t if np.dot(t, previous) >= 0 else -t

        t = null_vector(DF)
        if t[-1] * direction < 0:
            t = -t
        elif t[-1] == 0.0:
            logger.warning("Initial tangent has no parameter component; orientation is arbitrary")
        return t


@dataclass(frozen=True)
class BranchPoint:
    """One accepted point of a branch."""

    fixed_point: FixedPoint
    parameter: float
    arclength: float
    tangent: np.ndarray
    index: int = 0

    @property
    def state(self) -> np.ndarray:
        return self.fixed_point.state

    @property
    def stable(self) -> bool:
        return self.fixed_point.stable

    @property
    def eigenvalues(self) -> np.ndarray:
        return self.fixed_point.eigenvalues

    @property
    def u(self) -> np.ndarray:
        return np.append(self.fixed_point.state, self.parameter)

    @property
    def test_functions(self) -> Dict[str, Optional[float]]:
        return self.fixed_point.report.test_functions

    def to_dict(self) -> Dict:
        result = self.fixed_point.to_dict()
        result.update({
            'index': self.index,
            'parameter': self.parameter,
            'arclength': self.arclength,
            'tangent': self.tangent.tolist(),
        })
        return result


@dataclass(frozen=True)
class Branch:
    """
    Result of one continuation run.

    Consecutive points are joined by bounded chords and bounded tangent
    turns; the parameter need not be monotonic along the branch.
    """

    parameter_name: str
    points: Tuple[BranchPoint, ...]
    events: Tuple = ()
    termination: TerminationReason = TerminationReason.MAX_POINTS
    error: Optional[StalledBranch] = None
    parameter_range: Tuple[float, float] = (-np.inf, np.inf)
    fixed_parameters: Dict[str, float] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    def __getitem__(self, index: int) -> BranchPoint:
        return self.points[index]

    @property
    def stalled(self) -> bool:
        return self.termination is TerminationReason.STALLED

    def parameter_values(self) -> np.ndarray:
        return np.array([pt.parameter for pt in self.points])

    def states(self) -> np.ndarray:
        return np.array([pt.state for pt in self.points])

    def stability(self) -> List[bool]:
        return [pt.stable for pt in self.points]

    def is_monotonic(self) -> bool:
        """True if the parameter never reverses direction along the branch."""
        diffs = np.diff(self.parameter_values())
        return bool(np.all(diffs >= 0) or np.all(diffs <= 0))

    def events_of(self, kind) -> List:
        return [ev for ev in self.events if ev.kind == kind]

    def to_dict(self) -> Dict:
        """Serialize to dictionary."""
        return {
            'parameter': self.parameter_name,
            'parameter_range': list(self.parameter_range),
            'points': [pt.to_dict() for pt in self.points],
            'events': [ev.to_dict() for ev in self.events],
            'termination': self.termination.value,
            'error': self.error.message if self.error is not None else None,
        }
