"""
Tests for the Implicitly Restarted Arnoldi eigensolver on non-Hermitian
operators with a known (complex) spectrum.
"""

import numpy as np
import pytest

from krylov_eigen.algebra.eigen.params import EigParam
from krylov_eigen.algebra.eigen.operator import DenseOperator, DiagonalOperator
from krylov_eigen.algebra.eigen.iram import IRAM, apply_hessenberg_shifts
from krylov_eigen.algebra.errors import ConfigurationError, EigenErrorCode

# ----------------------------------
#! Helpers
# ----------------------------------

def create_normal_matrix(n=40, seed=13):
    """
    Real normal matrix Q D Q^T with a rotation block (eigenvalues 50 +- 2i)
    and the real eigenvalues 1, ..., n - 2.
    """
    rng         = np.random.default_rng(seed)
    D           = np.diag(np.concatenate([[50.0, 50.0], np.arange(1.0, n - 1.0)]))
    D[0, 1]     = 2.0
    D[1, 0]     = -2.0
    Q, _        = np.linalg.qr(rng.standard_normal((n, n)))
    return Q @ D @ Q.T

def make_kspace(n_vecs, n, dtype=np.complex128):
    return [np.zeros(n, dtype=dtype) for _ in range(n_vecs)]

# ----------------------------------
#! Test classes
# ----------------------------------

class TestIRAM:

    def test_complex_pair_and_real(self):
        A       = create_normal_matrix()
        params  = EigParam(eig_type='iram', n_ev=3, n_min=8, n_max=20, spectrum='LR', tol=1e-10, max_restarts=300)
        kspace  = make_kspace(20, 40)
        evals   = []
        with IRAM(params, DenseOperator(A)) as solver:
            result = solver.solve(kspace, evals)

        print(f"\nIRAM LR: {evals}, restarts {result.restarts}")
        assert result.converged
        assert result.n_converged == 3 == len(evals)
        np.testing.assert_allclose(np.sort_complex(np.array(evals)),
                                   np.sort_complex(np.array([38.0, 50.0 - 2.0j, 50.0 + 2.0j])), atol=1e-7)
        # the wanted ordering is by real part
        assert abs(evals[2].real - 38.0) < 1e-7

    def test_residuals(self):
        A       = create_normal_matrix()
        params  = EigParam(n_ev=3, n_min=8, n_max=20, spectrum='LR', tol=1e-10, max_restarts=300)
        kspace  = make_kspace(20, 40)
        evals   = []
        result  = IRAM(params, DenseOperator(A)).solve(kspace, evals)
        for i, lam in enumerate(evals):
            assert np.linalg.norm(kspace[i]) == pytest.approx(1.0)
            assert np.linalg.norm(A @ kspace[i] - lam * kspace[i]) / abs(lam) < 1e-8
        assert np.all(result.residual_norms / np.abs(result.eigenvalues) < 1e-8)

    def test_hermitian_operator(self):
        op      = DiagonalOperator(np.arange(1.0, 51.0))
        params  = EigParam(n_ev=4, n_min=8, n_max=20, spectrum='SR', tol=1e-10)
        evals   = []
        result  = IRAM(params, op).solve(make_kspace(20, 50), evals)
        assert result.converged
        np.testing.assert_allclose(np.array(evals), [1.0, 2.0, 3.0, 4.0], atol=1e-8)

    def test_real_kspace_rejected(self):
        params = EigParam(n_ev=3, n_min=8, n_max=20)
        with pytest.raises(ConfigurationError) as err:
            IRAM(params, DenseOperator(create_normal_matrix())).solve(make_kspace(20, 40, np.float64), [])
        assert err.value.code is EigenErrorCode.PRECISION_MISMATCH

# ----------------------------------

class TestHessenbergShifts:

    def test_exact_shifts(self):
        """With exact shifts the leading block keeps the unshifted Ritz values."""
        rng     = np.random.default_rng(8)
        m, k    = 10, 6
        H       = np.triu(rng.standard_normal((m, m)), k=-1)
        theta   = np.linalg.eigvals(H)
        order   = np.argsort(-theta.real, kind='stable')
        shifts  = theta[order[k:]][::-1]
        Hs, Q   = apply_hessenberg_shifts(H, shifts)

        np.testing.assert_allclose(Q.conj().T @ Q, np.eye(m), atol=1e-12)
        assert np.abs(np.tril(Hs, k=-2)).max() == 0.0
        np.testing.assert_allclose(np.sort_complex(np.linalg.eigvals(Hs[:k, :k])),
                                   np.sort_complex(theta[order[:k]]), atol=1e-6)

# ----------------------------------
#! EOF
# ----------------------------------
