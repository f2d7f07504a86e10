"""
Tests for the linear algebra kernel
"""

import pytest
import numpy as np

import sys
sys.path.insert(0, '..')

from bifurcation.errors import InvalidInput, SingularMatrix
from bifurcation.linalg import (
    determinant, dot, eig, eigenvalues, max_norm, norm, null_vector, solve
)


class TestSolve:
    """Tests for LU-based dense solves."""

    def test_solve_2x2(self):
        """Test a well-conditioned real system."""
        x = solve([[2.0, 1.0], [1.0, 3.0]], [3.0, 5.0])

        assert np.allclose(x, [0.8, 1.4])

    def test_solve_complex(self):
        """Test a complex system."""
        x = solve(np.array([[1j, 0.0], [0.0, 2.0]]), np.array([1j, 4.0]))

        assert np.allclose(x, [1.0, 2.0])

    def test_singular_matrix(self):
        """Test that a rank-deficient matrix is rejected."""
        with pytest.raises(SingularMatrix) as excinfo:
            solve([[1.0, 2.0], [2.0, 4.0]], [1.0, 1.0])

        assert excinfo.value.pivot is not None

    def test_zero_matrix(self):
        """Test that the zero matrix is rejected."""
        with pytest.raises(SingularMatrix):
            solve(np.zeros((3, 3)), np.ones(3))

    def test_nearly_singular_matrix(self):
        """Test the norm-scaled pivot tolerance."""
        A = np.array([[1.0, 1.0], [1.0, 1.0 + 1e-15]])

        with pytest.raises(SingularMatrix):
            solve(A, [1.0, 2.0])

    def test_dimension_mismatch(self):
        """Test mismatched right-hand side."""
        with pytest.raises(InvalidInput):
            solve(np.eye(2), [1.0, 2.0, 3.0])

    def test_non_square(self):
        """Test non-square matrix."""
        with pytest.raises(InvalidInput):
            solve(np.ones((2, 3)), [1.0, 2.0])

    def test_non_finite(self):
        """Test NaN input."""
        with pytest.raises(InvalidInput):
            solve([[1.0, np.nan], [0.0, 1.0]], [1.0, 1.0])

    def test_inputs_not_modified(self):
        """Test that solve does not overwrite its inputs."""
        A = np.array([[4.0, 1.0], [2.0, 3.0]])
        b = np.array([1.0, 2.0])
        A_copy, b_copy = A.copy(), b.copy()

        solve(A, b)

        assert np.array_equal(A, A_copy)
        assert np.array_equal(b, b_copy)


class TestEigenvalues:
    """Tests for eigenvalue ordering and conjugate pairing."""

    def test_real_ordering(self):
        """Test descending real-part order."""
        values = eigenvalues(np.diag([-1.0, 2.0, 0.5]))

        assert np.allclose(values, [2.0, 0.5, -1.0])

    def test_rotation_pair(self):
        """Test a purely imaginary pair with positive imaginary part first."""
        values = eigenvalues([[0.0, -1.0], [1.0, 0.0]])

        assert values[0] == pytest.approx(1j)
        assert values[1] == pytest.approx(-1j)

    def test_conjugate_pairs_exact(self):
        """Test that complex pairs of real matrices are exact conjugates."""
        A = np.array([
            [1.0, -2.0, 0.0],
            [3.0, 1.0, 0.0],
            [0.0, 0.0, -1.0],
        ])
        values = eigenvalues(A)

        assert values[0] == np.conj(values[1])
        assert values[0].imag > 0
        assert values[0].real == pytest.approx(1.0)
        assert abs(values[0].imag) == pytest.approx(np.sqrt(6.0))
        assert values[2] == pytest.approx(-1.0)

    def test_read_only(self):
        """Test that results cannot be modified."""
        values = eigenvalues(np.eye(2))

        with pytest.raises(ValueError):
            values[0] = 5.0

    def test_reproducible(self):
        """Test bit-identical results for identical input."""
        A = np.array([[0.3, -1.7, 0.2], [1.1, 0.4, -0.5], [0.0, 2.0, -1.0]])

        assert np.array_equal(eigenvalues(A), eigenvalues(A))

    def test_eig_vectors(self):
        """Test that eigenvectors match eigenvalues column-wise."""
        A = np.array([[2.0, 1.0], [0.0, -3.0]])
        values, vectors = eig(A)

        for k in range(2):
            assert np.allclose(A @ vectors[:, k], values[k] * vectors[:, k])


class TestHelpers:
    """Tests for vector helpers."""

    def test_norms(self):
        assert norm([3.0, 4.0]) == pytest.approx(5.0)
        assert max_norm([1.0, -7.0, 2.0]) == 7.0

    def test_dot(self):
        assert dot([1.0, 2.0], [3.0, 4.0]) == pytest.approx(11.0)

    def test_dot_mismatch(self):
        with pytest.raises(InvalidInput):
            dot([1.0, 2.0], [1.0])

    def test_determinant(self):
        assert determinant([[2.0, 0.0], [0.0, 3.0]]) == pytest.approx(6.0)

    def test_null_vector(self):
        """Test kernel of an m x (m+1) matrix."""
        v = null_vector([[1.0, -1.0]])

        assert np.linalg.norm(v) == pytest.approx(1.0)
        assert abs(v[0]) == pytest.approx(abs(v[1]))
        assert v[0] * v[1] > 0

    def test_null_vector_shape(self):
        with pytest.raises(InvalidInput):
            null_vector(np.eye(2))


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
