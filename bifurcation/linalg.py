"""
Linear Algebra Kernel
Dense solves, eigenvalues and vector helpers used by the numerical core.

All functions are pure: inputs are copied or read only, outputs are fresh
arrays. Eigen-decomposition is delegated to LAPACK through numpy and the
results are put in a deterministic order so identical inputs always give
identical outputs.
"""

from typing import Tuple
import logging
import warnings

import numpy as np
from scipy.linalg import LinAlgWarning, lu_factor, lu_solve

from .errors import InvalidInput, SingularMatrix

logger = logging.getLogger(__name__)

# Relative pivot tolerance; a pivot below PIVOT_RTOL * ||A||_inf is singular.
PIVOT_RTOL = 1e-13


def as_vector(v, name: str = "vector") -> np.ndarray:
    """Convert to a 1-D finite float (or complex) array."""
    arr = np.asarray(v)
    if arr.dtype.kind not in "fic":
        try:
            arr = arr.astype(float)
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"{name} must be numeric: {exc}") from exc
    if arr.dtype.kind == "i":
        arr = arr.astype(float)
    if arr.ndim != 1:
        raise InvalidInput(f"{name} must be one-dimensional, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise InvalidInput(f"{name} contains non-finite values")
    return arr


def as_matrix(A, name: str = "matrix") -> np.ndarray:
    """Convert to a square 2-D finite array."""
    arr = np.asarray(A)
    if arr.dtype.kind == "i":
        arr = arr.astype(float)
    if arr.dtype.kind not in "fc":
        try:
            arr = arr.astype(float)
        except (TypeError, ValueError) as exc:
            raise InvalidInput(f"{name} must be numeric: {exc}") from exc
    if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
        raise InvalidInput(f"{name} must be square, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise InvalidInput(f"{name} contains non-finite values")
    return arr


def frozen(arr: np.ndarray) -> np.ndarray:
    """Return a read-only copy of an array."""
    out = np.array(arr, copy=True)
    out.setflags(write=False)
    return out


def solve(A, b, pivot_rtol: float = PIVOT_RTOL) -> np.ndarray:
    """
    Solve A x = b by LU factorisation with partial pivoting.

    Args:
        A: Square matrix (real or complex)
        b: Right-hand side vector of matching length
        pivot_rtol: Relative pivot tolerance, scaled by ||A||_inf

    Returns:
        Solution vector x

    Raises:
        SingularMatrix: If a pivot is below pivot_rtol * ||A||_inf
        InvalidInput: On shape mismatch or non-finite input
    """
    A = as_matrix(A, "A")
    b = as_vector(b, "b")
    if b.shape[0] != A.shape[0]:
        raise InvalidInput(f"dimension mismatch: A is {A.shape}, b has length {b.shape[0]}")

    scale = np.linalg.norm(A, ord=np.inf)
    if scale == 0.0:
        raise SingularMatrix("matrix is identically zero", pivot=0.0)

    with warnings.catch_warnings():
        warnings.simplefilter("ignore", LinAlgWarning)
        lu, piv = lu_factor(A, check_finite=False)

    pivots = np.abs(np.diag(lu))
    smallest = float(pivots.min())
    if smallest <= pivot_rtol * scale:
        raise SingularMatrix(
            f"pivot {smallest:.3e} below tolerance {pivot_rtol * scale:.3e}",
            pivot=smallest
        )

    return lu_solve((lu, piv), b, check_finite=False)


def _ordering(values: np.ndarray) -> np.ndarray:
    # Descending real part, then descending imaginary part so that each
    # conjugate pair appears as (a + ib, a - ib).
    return np.lexsort((-values.imag, -values.real))


def eigenvalues(A) -> np.ndarray:
    """
    Compute the eigenvalues of a real or complex square matrix.

    For real input, complex eigenvalues come in exact conjugate pairs,
    ordered with the positive imaginary part first.

    Returns:
        Read-only complex array sorted by descending real part
    """
    A = as_matrix(A, "A")
    values = np.linalg.eigvals(A).astype(complex)
    if np.isrealobj(A):
        values = _pair_conjugates(values)
    return frozen(values[_ordering(values)])


def eig(A) -> Tuple[np.ndarray, np.ndarray]:
    """
    Eigenvalues and right eigenvectors (columns), in eigenvalues() order.
    """
    A = as_matrix(A, "A")
    values, vectors = np.linalg.eig(A)
    values = values.astype(complex)
    vectors = vectors.astype(complex)
    if np.isrealobj(A):
        values = _pair_conjugates(values)
    order = _ordering(values)
    return frozen(values[order]), frozen(vectors[:, order])


def _pair_conjugates(values: np.ndarray) -> np.ndarray:
    """Snap near-real eigenvalues to the real axis and symmetrise pairs."""
    values = values.copy()
    scale = max(1.0, float(np.max(np.abs(values)))) if values.size else 1.0
    tiny = 1e-14 * scale
    for i, v in enumerate(values):
        if abs(v.imag) <= tiny:
            values[i] = complex(v.real, 0.0)
    # LAPACK already returns exact pairs for real input; enforce equal real
    # parts in case a caller passes an almost-real matrix.
    used = np.zeros(values.size, dtype=bool)
    for i in range(values.size):
        if used[i] or values[i].imag == 0.0:
            continue
        target = np.conj(values[i])
        candidates = [j for j in range(values.size)
                      if not used[j] and j != i and values[j].imag != 0.0]
        if not candidates:
            continue
        j = min(candidates, key=lambda k: abs(values[k] - target))
        re = 0.5 * (values[i].real + values[j].real)
        im = 0.5 * (abs(values[i].imag) + abs(values[j].imag))
        values[i] = complex(re, np.sign(values[i].imag) * im)
        values[j] = complex(re, -np.sign(values[i].imag) * im)
        used[i] = used[j] = True
    return values


def determinant(A) -> float:
    """Determinant of a real square matrix."""
    A = as_matrix(A, "A")
    return float(np.linalg.det(A))


def norm(v) -> float:
    """Euclidean norm."""
    return float(np.linalg.norm(np.asarray(v)))


def max_norm(v) -> float:
    """Infinity norm."""
    arr = np.asarray(v)
    return float(np.max(np.abs(arr))) if arr.size else 0.0


def dot(u, v) -> float:
    """Real inner product."""
    u = np.asarray(u, dtype=float)
    v = np.asarray(v, dtype=float)
    if u.shape != v.shape:
        raise InvalidInput(f"dimension mismatch: {u.shape} vs {v.shape}")
    return float(np.dot(u, v))


def null_vector(A) -> np.ndarray:
    """
    Unit vector spanning the (numerical) kernel of an m x (m+1) matrix.

    Uses the right singular vector for the smallest singular value.
    """
    A = np.asarray(A, dtype=float)
    if A.ndim != 2 or A.shape[1] != A.shape[0] + 1:
        raise InvalidInput(f"expected an m x (m+1) matrix, got shape {A.shape}")
    _, _, vh = np.linalg.svd(A)
    v = vh[-1]
    return v / np.linalg.norm(v)


def singular_vectors(A) -> Tuple[np.ndarray, np.ndarray]:
    """
    Left and right unit singular vectors of a square matrix for its
    smallest singular value, i.e. the approximate left and right null
    vectors of a (nearly) singular matrix.
    """
    A = as_matrix(A).astype(float)
    u, _, vh = np.linalg.svd(A)
    return u[:, -1].copy(), vh[-1].copy()
