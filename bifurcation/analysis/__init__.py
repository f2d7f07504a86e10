"""
Bifurcation Analysis
Fixed points, stability, continuation, bifurcation detection and limit cycles.
"""

from .classification import (
    EquilibriumType,
    StabilityClassifier,
    StabilityReport,
    branch_point_coefficient,
    classify,
    first_lyapunov_coefficient,
)
from .root_finder import FixedPoint, NewtonResult, RootFinder, find_fixed_point, newton
from .branch import AugmentedSystem, Branch, BranchPoint, TerminationReason
from .detector import BifurcationDetector, BifurcationEvent, BifurcationKind
from .continuation import ContinuationEngine, trace_branch
from .limit_cycle import (
    CycleBranch,
    LimitCycle,
    LimitCycleSolver,
    continue_limit_cycles,
    floquet_test_functions,
    limit_cycle_from_hopf,
    shoot_limit_cycle,
)
from .equilibrium_scanner import (
    EquilibriumScanner,
    SweepFailure,
    cluster_fixed_points,
    parallel_map,
    sweep_fixed_points,
    uniform_grid,
)

__all__ = [
    "EquilibriumType",
    "StabilityClassifier",
    "StabilityReport",
    "branch_point_coefficient",
    "classify",
    "first_lyapunov_coefficient",
    "FixedPoint",
    "NewtonResult",
    "RootFinder",
    "find_fixed_point",
    "newton",
    "AugmentedSystem",
    "Branch",
    "BranchPoint",
    "TerminationReason",
    "BifurcationDetector",
    "BifurcationEvent",
    "BifurcationKind",
    "ContinuationEngine",
    "trace_branch",
    "CycleBranch",
    "LimitCycle",
    "LimitCycleSolver",
    "continue_limit_cycles",
    "floquet_test_functions",
    "limit_cycle_from_hopf",
    "shoot_limit_cycle",
    "EquilibriumScanner",
    "SweepFailure",
    "cluster_fixed_points",
    "parallel_map",
    "sweep_fixed_points",
    "uniform_grid",
]
