"""
Model Definitions
Right-hand-side interface consumed by the numerical core.

A model supplies f(state, params, t), optionally an analytic Jacobian,
and the names of its parameters. Two concrete models are provided:
FunctionModel wraps plain callables, SymbolicModel compiles SymPy
expressions into numerical functions and analytic derivatives.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging
import math
import time

import numpy as np
import sympy as sp
from sympy import Expr, Matrix, Symbol, lambdify, symbols

from .errors import InvalidInput
from .linalg import as_vector

logger = logging.getLogger(__name__)

Parameters = Dict[str, float]


class Model(ABC):
    """
    Abstract ODE model dx/dt = f(x, p, t).

    Subclasses implement dimension(), evaluate() and parameter_names().
    jacobian() returns None when no analytic Jacobian is available, in
    which case central finite differences are used.
    """

    name: str = "model"

    @abstractmethod
    def dimension(self) -> int:
        """Number of state variables."""

    @abstractmethod
    def evaluate(self, state: np.ndarray, params: Parameters, t: float = 0.0) -> np.ndarray:
        """Right-hand side f(state, params, t)."""

    @abstractmethod
    def parameter_names(self) -> List[str]:
        """Names of all model parameters."""

    def jacobian(self, state: np.ndarray, params: Parameters) -> Optional[np.ndarray]:
        """Analytic Jacobian df/dx, or None."""
        return None

    def parameter_derivative(self, state: np.ndarray, params: Parameters,
                             name: str) -> Optional[np.ndarray]:
        """Analytic derivative df/dp for one parameter, or None."""
        return None

    def derivative_tensors(self, state: np.ndarray,
                           params: Parameters) -> Optional[Tuple[np.ndarray, np.ndarray]]:
        """
        Exact second and third derivatives of f with respect to the state,
        as arrays of shape (n, n, n) and (n, n, n, n), or None.
        """
        return None

    def variable_names(self) -> List[str]:
        return [f"x{i}" for i in range(self.dimension())]

    def default_parameters(self) -> Parameters:
        return {}

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def check_state(self, state, name: str = "state") -> np.ndarray:
        """Validate a state vector against the model dimension."""
        x = as_vector(state, name).astype(float)
        if x.shape[0] != self.dimension():
            raise InvalidInput(
                f"{name} has length {x.shape[0]}, model '{self.name}' has dimension {self.dimension()}"
            )
        return x

    def check_parameters(self, params: Optional[Mapping[str, float]]) -> Parameters:
        """
        Merge defaults with the given values and validate the result.

        Raises:
            InvalidInput: For unknown names, missing names or non-finite values
        """
        merged = dict(self.default_parameters())
        if params:
            unknown = set(params) - set(self.parameter_names())
            if unknown:
                raise InvalidInput(f"unknown parameters for model '{self.name}': {sorted(unknown)}")
            merged.update(params)

        missing = [n for n in self.parameter_names() if n not in merged]
        if missing:
            raise InvalidInput(f"missing values for parameters: {missing}")

        checked = {}
        for key in self.parameter_names():
            try:
                value = float(merged[key])
            except (TypeError, ValueError) as exc:
                raise InvalidInput(f"parameter '{key}' is not numeric: {merged[key]!r}") from exc
            if not math.isfinite(value):
                raise InvalidInput(f"parameter '{key}' is not finite: {value}")
            checked[key] = value
        return checked

    def check_parameter_name(self, name: str) -> str:
        if name not in self.parameter_names():
            raise InvalidInput(
                f"'{name}' is not a parameter of model '{self.name}' "
                f"(available: {self.parameter_names()})"
            )
        return name

    # ------------------------------------------------------------------
    # Derivatives with finite-difference fallback
    # ------------------------------------------------------------------

    def rhs(self, state: np.ndarray, params: Parameters, t: float = 0.0) -> np.ndarray:
        """evaluate() with output shape checking."""
        out = np.asarray(self.evaluate(state, params, t), dtype=float)
        if out.shape != (self.dimension(),):
            raise InvalidInput(
                f"model '{self.name}' returned shape {out.shape}, expected ({self.dimension()},)"
            )
        return out

    def jacobian_at(self, state: np.ndarray, params: Parameters,
                    fd_step: float = 1e-6) -> np.ndarray:
        """Analytic Jacobian when available, central differences otherwise."""
        J = self.jacobian(state, params)
        if J is not None:
            J = np.asarray(J, dtype=float)
            n = self.dimension()
            if J.shape != (n, n):
                raise InvalidInput(f"model '{self.name}' Jacobian has shape {J.shape}, expected ({n}, {n})")
            return J
        return central_difference_jacobian(
            lambda x: self.rhs(x, params), np.asarray(state, dtype=float), fd_step
        )

    def parameter_derivative_at(self, state: np.ndarray, params: Parameters,
                                name: str, fd_step: float = 1e-6) -> np.ndarray:
        """df/dp for one parameter, analytic when available."""
        dfdp = self.parameter_derivative(state, params, name)
        if dfdp is not None:
            return np.asarray(dfdp, dtype=float)

        p0 = params[name]
        h = fd_step * max(1.0, abs(p0))
        hi = dict(params)
        lo = dict(params)
        hi[name] = p0 + h
        lo[name] = p0 - h
        return (self.rhs(state, hi) - self.rhs(state, lo)) / (2.0 * h)

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}(name={self.name!r}, dimension={self.dimension()}, "
                f"parameters={self.parameter_names()})")


def central_difference_jacobian(func: Callable[[np.ndarray], np.ndarray],
                                x: np.ndarray, fd_step: float = 1e-6) -> np.ndarray:
    """
    Central finite-difference Jacobian of func at x.

    The step for component i is fd_step * max(1, |x_i|).
    """
    x = np.asarray(x, dtype=float)
    n = x.shape[0]
    f0 = np.asarray(func(x), dtype=float)
    J = np.empty((f0.shape[0], n))
    for j in range(n):
        h = fd_step * max(1.0, abs(x[j]))
        xp = x.copy()
        xm = x.copy()
        xp[j] += h
        xm[j] -= h
        J[:, j] = (np.asarray(func(xp), dtype=float) - np.asarray(func(xm), dtype=float)) / (2.0 * h)
    return J


class FunctionModel(Model):
    """
    Model wrapping plain Python callables.

    Example:
        >>> model = FunctionModel(lambda x, p, t: -p['k'] * x, dimension=1,
        ...                       parameter_names=['k'], defaults={'k': 1.0})
    """

    def __init__(
        self,
        f: Callable[[np.ndarray, Parameters, float], Sequence[float]],
        dimension: int,
        parameter_names: Optional[Sequence[str]] = None,
        jacobian: Optional[Callable[[np.ndarray, Parameters], np.ndarray]] = None,
        defaults: Optional[Mapping[str, float]] = None,
        variable_names: Optional[Sequence[str]] = None,
        name: str = "function_model"
    ):
        if not callable(f):
            raise InvalidInput("f must be callable")
        if jacobian is not None and not callable(jacobian):
            raise InvalidInput("jacobian must be callable")
        if not isinstance(dimension, int) or dimension < 1:
            raise InvalidInput(f"dimension must be a positive integer, got {dimension!r}")
        if variable_names is not None and len(variable_names) != dimension:
            raise InvalidInput("variable_names length must equal dimension")

        self._f = f
        self._jac = jacobian
        self._dimension = dimension
        self._params = list(parameter_names or [])
        self._defaults = dict(defaults or {})
        self._variables = list(variable_names) if variable_names else None
        self.name = name

    def dimension(self) -> int:
        return self._dimension

    def evaluate(self, state, params, t=0.0):
        return np.asarray(self._f(np.asarray(state, dtype=float), params, t), dtype=float)

    def jacobian(self, state, params):
        if self._jac is None:
            return None
        return np.asarray(self._jac(np.asarray(state, dtype=float), params), dtype=float)

    def parameter_names(self) -> List[str]:
        return list(self._params)

    def variable_names(self) -> List[str]:
        return list(self._variables) if self._variables else super().variable_names()

    def default_parameters(self) -> Parameters:
        return dict(self._defaults)


class SymbolicModel(Model):
    """
    Model defined by SymPy expressions.

    The right-hand side, the Jacobian and the parameter derivatives are
    derived symbolically once and compiled with lambdify.

    Example:
        >>> model = SymbolicModel(
        ...     ["p*x - y - x*(x**2 + y**2)", "x + p*y - y*(x**2 + y**2)"],
        ...     variables=["x", "y"],
        ...     parameters={"p": 0.0},
        ... )
    """

    def __init__(
        self,
        equations: Sequence[Union[Expr, str]],
        variables: Sequence[Union[Symbol, str]],
        parameters: Union[Sequence[Union[Symbol, str]], Mapping[Union[Symbol, str], float], None] = None,
        time: Union[Symbol, str] = "t",
        name: str = "symbolic_model"
    ):
        if len(equations) != len(variables):
            raise InvalidInput(
                f"got {len(equations)} equations for {len(variables)} variables"
            )
        if not variables:
            raise InvalidInput("at least one state variable is required")

        self.name = name
        self.variables = [symbols(v) if isinstance(v, str) else v for v in variables]

        defaults: Dict[str, float] = {}
        if parameters is None:
            param_syms = []
        elif isinstance(parameters, Mapping):
            param_syms = [symbols(p) if isinstance(p, str) else p for p in parameters]
            for key, value in parameters.items():
                defaults[str(key)] = float(value)
        else:
            param_syms = [symbols(p) if isinstance(p, str) else p for p in parameters]
        self.params = param_syms
        self.time = symbols(time) if isinstance(time, str) else time
        self._defaults = defaults

        local_dict = {str(s): s for s in self.variables + self.params + [self.time]}
        try:
            self.equations = [sp.sympify(e, locals=local_dict) for e in equations]
        except (sp.SympifyError, TypeError) as exc:
            raise InvalidInput(f"could not parse equations: {exc}") from exc

        allowed = set(self.variables) | set(self.params) | {self.time}
        for eq in self.equations:
            stray = eq.free_symbols - allowed
            if stray:
                raise InvalidInput(f"undeclared symbols in equation {eq}: {sorted(map(str, stray))}")

        F = Matrix(self.equations)
        self.jacobian_expr = F.jacobian(self.variables)
        self.parameter_derivative_expr = {str(p): F.diff(p) for p in self.params}

        state_args = self.variables + self.params
        self._f = lambdify(state_args + [self.time], self.equations, modules=["numpy"])
        self._J = lambdify(state_args, self.jacobian_expr.tolist(), modules=["numpy"])
        self._dfdp = {
            key: lambdify(state_args, list(expr), modules=["numpy"])
            for key, expr in self.parameter_derivative_expr.items()
        }
        self._tensors = None

        logger.debug(f"SymbolicModel '{name}' compiled: {len(self.variables)} variables, "
                     f"{len(self.params)} parameters")

    def _param_vector(self, params: Parameters) -> List[float]:
        return [params[str(p)] for p in self.params]

    def dimension(self) -> int:
        return len(self.variables)

    def evaluate(self, state, params, t=0.0):
        return np.array(self._f(*state, *self._param_vector(params), t), dtype=float)

    def jacobian(self, state, params):
        return np.array(self._J(*state, *self._param_vector(params)), dtype=float)

    def parameter_derivative(self, state, params, name):
        fn = self._dfdp.get(name)
        if fn is None:
            return None
        return np.array(fn(*state, *self._param_vector(params)), dtype=float)

    def derivative_tensors(self, state, params):
        if self._tensors is None:
            self._tensors = self._compile_tensors()
        second, third = self._tensors
        args = list(state) + self._param_vector(params)
        return np.array(second(*args), dtype=float), np.array(third(*args), dtype=float)

    def _compile_tensors(self):
        """Differentiate the Jacobian twice more; compiled on first use."""
        start = time.time()
        n = len(self.variables)
        state_args = self.variables + self.params
        rows = [[self.jacobian_expr[i, j].subs(self.time, 0) for j in range(n)] for i in range(n)]
        second = [[[sp.diff(rows[i][j], xk) for xk in self.variables] for j in range(n)]
                  for i in range(n)]
        third = [[[[sp.diff(second[i][j][k], xl) for xl in self.variables] for k in range(n)]
                  for j in range(n)] for i in range(n)]
        compiled = (lambdify(state_args, second, modules=["numpy"]),
                    lambdify(state_args, third, modules=["numpy"]))
        logger.debug(f"SymbolicModel '{self.name}' derivative tensors compiled in "
                     f"{time.time() - start:.2f}s")
        return compiled

    def parameter_names(self) -> List[str]:
        return [str(p) for p in self.params]

    def variable_names(self) -> List[str]:
        return [str(v) for v in self.variables]

    def default_parameters(self) -> Parameters:
        return dict(self._defaults)

    def __str__(self) -> str:
        lines = [f"{self.name}:"]
        for v, eq in zip(self.variables, self.equations):
            lines.append(f"  d{v}/dt = {eq}")
        return "\n".join(lines)
