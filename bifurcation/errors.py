"""
Error Taxonomy
Exceptions raised by the numerical core.

Every exception derives from AnalysisError so callers can catch the whole
family at once. Context attributes (iterations, residual norm, time, step)
are attached where the raising component knows them.
"""

from typing import Optional


class AnalysisError(Exception):
    """Base exception for all bifurcation analysis errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInput(AnalysisError, ValueError):
    """Raised by public entry points when arguments fail validation."""


class SingularMatrix(AnalysisError):
    """Raised when an LU pivot falls below the norm-scaled tolerance."""

    def __init__(self, message: str, pivot: Optional[float] = None):
        super().__init__(message)
        self.pivot = pivot


class SingularJacobian(SingularMatrix):
    """Raised by Newton iteration when no damped direction can be computed."""

    def __init__(self, message: str, iterations: int = 0,
                 residual_norm: Optional[float] = None):
        super().__init__(message)
        self.iterations = iterations
        self.residual_norm = residual_norm


class StepSizeUnderflow(AnalysisError):
    """Raised when adaptive time stepping needs a step below the minimum."""

    def __init__(self, message: str, time: Optional[float] = None,
                 step: Optional[float] = None):
        super().__init__(message)
        self.time = time
        self.step = step


class NoConvergence(AnalysisError):
    """Raised when an iterative solver exhausts its iteration budget."""

    def __init__(self, message: str, iterations: int = 0,
                 residual_norm: Optional[float] = None):
        super().__init__(message)
        self.iterations = iterations
        self.residual_norm = residual_norm


class StalledBranch(AnalysisError):
    """
    Terminal condition of a branch trace.

    Never propagated out of a trace; it is attached to the returned Branch
    together with the points collected so far.
    """

    def __init__(self, message: str, step: Optional[float] = None,
                 points: int = 0, cause: Optional[AnalysisError] = None):
        super().__init__(message)
        self.step = step
        self.points = points
        self.cause = cause


__all__ = [
    "AnalysisError",
    "InvalidInput",
    "SingularMatrix",
    "SingularJacobian",
    "StepSizeUnderflow",
    "NoConvergence",
    "StalledBranch",
]
