"""
Bifurcation v1.0
Numerical bifurcation analysis of parameterised ODE systems.
"""

import logging

from .errors import (
    AnalysisError,
    InvalidInput,
    NoConvergence,
    SingularJacobian,
    SingularMatrix,
    StalledBranch,
    StepSizeUnderflow,
)
from .options import (
    ContinuationOptions,
    DetectorOptions,
    IntegratorOptions,
    NewtonOptions,
    ShootingOptions,
    StabilityOptions,
)
from .model import FunctionModel, Model, SymbolicModel
from .integrator import Integrator, Trajectory, integrate
from .analysis import (
    BifurcationDetector,
    BifurcationEvent,
    BifurcationKind,
    Branch,
    BranchPoint,
    ContinuationEngine,
    CycleBranch,
    EquilibriumScanner,
    EquilibriumType,
    FixedPoint,
    LimitCycle,
    RootFinder,
    StabilityClassifier,
    TerminationReason,
    continue_limit_cycles,
    find_fixed_point,
    first_lyapunov_coefficient,
    limit_cycle_from_hopf,
    shoot_limit_cycle,
    sweep_fixed_points,
)
from .analyzer import (
    BifurcationAnalyzer,
    create_analyzer,
    find_fixed_points,
    run_trajectory,
    trace_branch,
    trace_branches,
)
from . import systems

__version__ = "1.0.0"
__author__ = "Bifurcation Team"

__all__ = [
    "AnalysisError",
    "InvalidInput",
    "NoConvergence",
    "SingularJacobian",
    "SingularMatrix",
    "StalledBranch",
    "StepSizeUnderflow",
    "ContinuationOptions",
    "DetectorOptions",
    "IntegratorOptions",
    "NewtonOptions",
    "ShootingOptions",
    "StabilityOptions",
    "FunctionModel",
    "Model",
    "SymbolicModel",
    "Integrator",
    "Trajectory",
    "integrate",
    "BifurcationDetector",
    "BifurcationEvent",
    "BifurcationKind",
    "Branch",
    "BranchPoint",
    "ContinuationEngine",
    "CycleBranch",
    "EquilibriumScanner",
    "EquilibriumType",
    "FixedPoint",
    "LimitCycle",
    "RootFinder",
    "StabilityClassifier",
    "TerminationReason",
    "continue_limit_cycles",
    "find_fixed_point",
    "first_lyapunov_coefficient",
    "limit_cycle_from_hopf",
    "shoot_limit_cycle",
    "sweep_fixed_points",
    "BifurcationAnalyzer",
    "create_analyzer",
    "find_fixed_points",
    "run_trajectory",
    "trace_branch",
    "trace_branches",
    "systems",
    "enable_debug_logging",
]


def enable_debug_logging(level: str = "DEBUG", log_file: str = None):
    """
    Enable debug logging for bifurcation computations.

    Args:
        level: Logging level ('DEBUG', 'INFO', 'WARNING', 'ERROR')
        log_file: Optional file path to write logs (None = console only)

    Example:
        >>> import bifurcation
        >>> bifurcation.enable_debug_logging()  # Console output
        >>> bifurcation.enable_debug_logging(log_file="bifurcation.log")  # File output
    """
    log_level = getattr(logging, level.upper(), logging.DEBUG)

    logger = logging.getLogger("bifurcation")
    logger.setLevel(log_level)

    if not logger.handlers:
        formatter = logging.Formatter(
            '%(asctime)s | %(name)s | %(levelname)s | %(message)s',
            datefmt='%H:%M:%S'
        )

        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger.info(f"Debug logging enabled (level={level})")
    return logger
