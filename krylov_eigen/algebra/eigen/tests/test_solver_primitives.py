"""
Tests for the shared EigenSolver primitives: operator variants, Chebyshev
polynomial, Gram-Schmidt (plain and block) and eigen-deflation.
"""

import numpy as np
import pytest
from numpy.polynomial import chebyshev

from krylov_eigen.algebra.eigen.params import EigParam, OperatorVariant, Spectrum
from krylov_eigen.algebra.eigen.operator import DenseOperator, DiagonalOperator
from krylov_eigen.algebra.eigen.solver import EigenSolver, select_ritz
from krylov_eigen.algebra.blas_lapack import BatchedDenseSolver

# ----------------------------------
#! Helpers
# ----------------------------------

def create_complex_matrix(n, seed=7):
    rng = np.random.default_rng(seed)
    return rng.standard_normal((n, n)) + 1j * rng.standard_normal((n, n))

def create_orthonormal_fields(n, count, seed=3):
    """``count`` orthonormal fields of dimension ``n`` (columns of a QR factor)."""
    rng     = np.random.default_rng(seed)
    Q, _    = np.linalg.qr(rng.standard_normal((n, count)))
    return [np.ascontiguousarray(Q[:, i]) for i in range(count)]

def max_overlap(basis, w):
    return max(abs(np.vdot(b, w)) for b in basis)

# ----------------------------------
#! Operator application
# ----------------------------------

class TestMatvec:

    @pytest.mark.parametrize("variant", ["M", "Mdag", "MdagM", "MMdag"])
    def test_variants(self, variant):
        M       = create_complex_matrix(6)
        Md      = M.conj().T
        op      = DenseOperator(M)
        params  = EigParam(variant=variant)
        x       = np.random.default_rng(0).standard_normal(6) + 0j
        out     = np.empty(6, dtype=complex)
        EigenSolver.matvec(op, out, x, params)
        expected = {"M": M @ x, "Mdag": Md @ x, "MdagM": Md @ (M @ x), "MMdag": M @ (Md @ x)}[variant]
        np.testing.assert_allclose(out, expected, atol=1e-12)

    def test_operator_apply_composed(self):
        M   = create_complex_matrix(5)
        op  = DenseOperator(M)
        x   = np.ones(5, dtype=complex)
        np.testing.assert_allclose(op(x, OperatorVariant.MDAGM), M.conj().T @ (M @ x), atol=1e-12)

    def test_input_untouched(self):
        op      = DiagonalOperator(np.arange(1.0, 6.0))
        x       = np.ones(5)
        out     = np.empty(5)
        EigenSolver.matvec(op, out, x, EigParam(variant='MdagM'))
        np.testing.assert_array_equal(x, np.ones(5))
        np.testing.assert_allclose(out, np.arange(1.0, 6.0) ** 2)

# ----------------------------------

class TestChebyshev:

    @pytest.mark.parametrize("deg", [1, 2, 5, 8])
    def test_matches_explicit_polynomial(self, deg):
        """On a diagonal operator T_d(A_hat) is the polynomial of the diagonal."""
        d       = np.arange(1.0, 13.0)
        op      = DiagonalOperator(d)
        params  = EigParam(use_poly_acc=True, poly_deg=deg, a_min=2.0, a_max=10.0)
        x       = np.random.default_rng(1).standard_normal(12)
        out     = np.empty(12)
        EigenSolver.cheby_op(op, out, x, params)

        x_hat   = (2.0 * d - (10.0 + 2.0)) / (10.0 - 2.0)
        coeffs  = np.zeros(deg + 1)
        coeffs[-1] = 1.0
        np.testing.assert_allclose(out, chebyshev.chebval(x_hat, coeffs) * x, rtol=1e-12, atol=1e-12)

    def test_damps_interval(self):
        d       = np.linspace(0.0, 10.0, 21)
        op      = DiagonalOperator(d)
        params  = EigParam(use_poly_acc=True, poly_deg=6, a_min=2.0, a_max=10.0)
        out     = np.empty(21)
        EigenSolver.cheby_op(op, out, np.ones(21), params)
        inside  = d >= 2.0
        assert np.all(np.abs(out[inside]) <= 1.0 + 1e-12)
        assert np.all(np.abs(out[~inside]) > 1.0)

    def test_application_count(self):
        calls   = []
        class CountingOperator(DiagonalOperator):
            def _apply_m(self, out, x):
                calls.append(1)
                super()._apply_m(out, x)
        op      = CountingOperator(np.arange(1.0, 5.0))
        params  = EigParam(use_poly_acc=True, poly_deg=7, a_min=0.5, a_max=4.5)
        EigenSolver.cheby_op(op, np.empty(4), np.ones(4), params)
        assert len(calls) == 7

# ----------------------------------
#! Orthogonalisation
# ----------------------------------

class TestOrthogonalise:

    def test_against_basis(self):
        basis   = create_orthonormal_fields(100, 30)
        w       = np.random.default_rng(5).standard_normal(100)
        w0      = w.copy()
        coeffs  = EigenSolver.orthogonalise(basis, [w], 30)
        print(f"\nmax overlap after CGS: {max_overlap(basis, w):.2e}")
        assert max_overlap(basis, w) < 1e-13
        np.testing.assert_allclose(coeffs[:, 0], [np.vdot(b, w0) for b in basis], atol=1e-12)

    def test_nearly_dependent_vector(self):
        """A vector almost in the span needs the second DGKS pass."""
        basis   = create_orthonormal_fields(100, 20)
        rng     = np.random.default_rng(11)
        w       = sum(c * b for c, b in zip(rng.standard_normal(20), basis)) + 1e-10 * rng.standard_normal(100)
        EigenSolver.orthogonalise(basis, [w], 20)
        assert max_overlap(basis, w) / np.linalg.norm(w) < 1e-8

    def test_count_restricts_basis(self):
        basis   = create_orthonormal_fields(10, 4)
        w       = basis[3].copy()
        EigenSolver.orthogonalise(basis, [w], 3)
        np.testing.assert_allclose(w, basis[3], atol=1e-14)

    def test_empty_basis(self):
        w       = np.ones(4)
        coeffs  = EigenSolver.orthogonalise([], [w], 0)
        assert coeffs.shape == (0, 1)
        np.testing.assert_array_equal(w, np.ones(4))

    def test_block_matches_plain(self):
        basis   = create_orthonormal_fields(60, 12)
        rng     = np.random.default_rng(2)
        w1      = rng.standard_normal(60)
        w2      = w1.copy()
        with BatchedDenseSolver(native=False) as blas:
            c_block = EigenSolver.block_orthogonalise(basis, [w1], 12, blas=blas)
        c_plain = EigenSolver.orthogonalise(basis, [w2], 12)
        np.testing.assert_allclose(w1, w2, atol=1e-12)
        np.testing.assert_allclose(c_block, c_plain, atol=1e-12)

    def test_block_non_orthonormal_basis(self):
        """The Gram solve projects correctly onto a non-orthogonal basis."""
        rng     = np.random.default_rng(9)
        basis   = [rng.standard_normal(50) for _ in range(6)]
        vectors = [rng.standard_normal(50) for _ in range(3)]
        with BatchedDenseSolver(native=False) as blas:
            EigenSolver.block_orthogonalise(basis, vectors, 6, blas=blas)
        for w in vectors:
            assert max_overlap(basis, w) / np.linalg.norm(w) < 1e-10

# ----------------------------------
#! Deflation
# ----------------------------------

class TestDeflate:

    def test_deflation_property(self):
        """vec - A vec_defl has no component along the deflation vectors."""
        d       = np.arange(1.0, 21.0)
        op      = DiagonalOperator(d)
        evecs   = [np.eye(20)[i] for i in range(3)]
        evals   = [1.0 + 0j, 2.0 + 0j, 3.0 + 0j]
        vec     = np.random.default_rng(4).standard_normal(20)
        defl    = np.zeros(20)
        EigenSolver.deflate(defl, vec, evecs, evals)
        np.testing.assert_allclose(defl[:3], vec[:3] / d[:3], atol=1e-14)
        residual = vec - op(defl)
        assert max_overlap(evecs, residual) < 1e-13

    def test_accumulate(self):
        evecs   = [np.eye(4)[0]]
        vec     = np.array([2.0, 1.0, 0.0, 0.0])
        defl    = np.zeros(4)
        EigenSolver.deflate(defl, vec, evecs, [2.0])
        EigenSolver.deflate(defl, vec, evecs, [2.0], accumulate=True)
        np.testing.assert_allclose(defl, [2.0, 0.0, 0.0, 0.0])

    def test_repeated_projection_monotone(self):
        """Projecting out known eigenvectors never increases their component."""
        basis   = create_orthonormal_fields(30, 5)
        vec     = np.random.default_rng(6).standard_normal(30)
        overlaps = [max_overlap(basis, vec)]
        for _ in range(3):
            EigenSolver.project_out(vec, basis)
            overlaps.append(max_overlap(basis, vec))
        assert all(b <= a + 1e-15 for a, b in zip(overlaps, overlaps[1:]))
        assert overlaps[-1] < 1e-13

# ----------------------------------

class TestSelectRitz:

    def test_orders(self):
        values = np.array([3.0, -5.0, 1.0, 4.0])
        assert list(select_ritz(values, Spectrum.SR)) == [1, 2, 0, 3]
        assert list(select_ritz(values, Spectrum.LR)) == [3, 0, 2, 1]
        assert list(select_ritz(values, Spectrum.SM)) == [2, 0, 3, 1]
        assert list(select_ritz(values, Spectrum.LM)) == [1, 3, 0, 2]

    def test_imaginary(self):
        values = np.array([1 + 2j, 1 - 3j, 0 + 0j])
        assert list(select_ritz(values, Spectrum.LI)) == [0, 2, 1]
        assert list(select_ritz(values, Spectrum.SI)) == [1, 2, 0]

# ----------------------------------
#! EOF
# ----------------------------------
