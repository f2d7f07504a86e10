"""
Built-in Systems
Reference models with known dynamics, used by examples and tests.
"""

from .errors import InvalidInput
from .model import SymbolicModel


def harmonic_oscillator(omega: float = 1.0) -> SymbolicModel:
    """dx/dt = y, dy/dt = -omega**2 * x (period 2*pi/omega)."""
    return SymbolicModel(
        ["y", "-omega**2 * x"],
        variables=["x", "y"],
        parameters={"omega": omega},
        name="harmonic_oscillator",
    )


def linear_decay(k: float = 1.0) -> SymbolicModel:
    """dx/dt = -k * x."""
    return SymbolicModel(["-k * x"], variables=["x"], parameters={"k": k}, name="linear_decay")


def saddle_node(p: float = 1.0) -> SymbolicModel:
    """Saddle-node normal form dx/dt = p - x**2; the fold sits at p = 0."""
    return SymbolicModel(["p - x**2"], variables=["x"], parameters={"p": p}, name="saddle_node")


def hopf_normal_form(p: float = 0.0) -> SymbolicModel:
    """
    Hopf normal form in Cartesian coordinates.

        dx/dt = p*x - y - x*(x**2 + y**2)
        dy/dt = x + p*y - y*(x**2 + y**2)

    The origin loses stability at p = 0 through a supercritical Hopf
    bifurcation; for p > 0 the limit cycle has radius sqrt(p) and
    period 2*pi.
    """
    return SymbolicModel(
        ["p*x - y - x*(x**2 + y**2)", "x + p*y - y*(x**2 + y**2)"],
        variables=["x", "y"],
        parameters={"p": p},
        name="hopf_normal_form",
    )


def lorenz(sigma: float = 10.0, r: float = 28.0, b: float = 8.0 / 3.0) -> SymbolicModel:
    """
    Lorenz system.

    At the classic values (sigma=10, r=28, b=8/3) the equilibria are the
    origin and (+-sqrt(b*(r-1)), +-sqrt(b*(r-1)), r-1).
    """
    return SymbolicModel(
        ["sigma*(y - x)", "x*(r - z) - y", "x*y - b*z"],
        variables=["x", "y", "z"],
        parameters={"sigma": sigma, "r": r, "b": b},
        name="lorenz",
    )


def fitzhugh_nagumo(I: float = 0.5, a: float = 0.7, b: float = 0.8,
                    eps: float = 0.08) -> SymbolicModel:
    """
    FitzHugh-Nagumo neuron model.

        dv/dt = v - v**3/3 - w + I
        dw/dt = eps*(v + a - b*w)

    Increasing the injected current I drives the resting state through a
    Hopf bifurcation into repetitive spiking.
    """
    return SymbolicModel(
        ["v - v**3/3 - w + I", "eps*(v + a - b*w)"],
        variables=["v", "w"],
        parameters={"I": I, "a": a, "b": b, "eps": eps},
        name="fitzhugh_nagumo",
    )


BUILTIN_SYSTEMS = {
    "harmonic_oscillator": harmonic_oscillator,
    "linear_decay": linear_decay,
    "saddle_node": saddle_node,
    "hopf_normal_form": hopf_normal_form,
    "lorenz": lorenz,
    "fitzhugh_nagumo": fitzhugh_nagumo,
}


def get_system(name: str, **params) -> SymbolicModel:
    """Look up a built-in system by name."""
    try:
        factory = BUILTIN_SYSTEMS[name]
    except KeyError:
        raise InvalidInput(f"Unknown system '{name}'. Available: {sorted(BUILTIN_SYSTEMS)}") from None
    return factory(**params)
