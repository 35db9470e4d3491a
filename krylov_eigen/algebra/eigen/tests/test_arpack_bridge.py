"""
Tests for the ARPACK bridge (scipy.sparse.linalg eigsh / eigs).
"""

import numpy as np
import pytest

from krylov_eigen.algebra.eigen.params import EigParam
from krylov_eigen.algebra.eigen.result import EigenStatus
from krylov_eigen.algebra.eigen.operator import DenseOperator, DiagonalOperator
from krylov_eigen.algebra.eigen.arpack import ArpackEigenSolver
from krylov_eigen.algebra.eigen.factory import arpack_solve, irlm_solve
from krylov_eigen.algebra.errors import ConfigurationError

# ----------------------------------

def make_kspace(n_vecs, n, dtype=np.float64):
    return [np.zeros(n, dtype=dtype) for _ in range(n_vecs)]

def create_normal_matrix(n=30, seed=3):
    rng     = np.random.default_rng(seed)
    D       = np.diag(np.concatenate([[40.0, 40.0], np.arange(1.0, n - 1.0)]))
    D[0, 1] = 3.0
    D[1, 0] = -3.0
    Q, _    = np.linalg.qr(rng.standard_normal((n, n)))
    return Q @ D @ Q.T

# ----------------------------------

class TestArpackBridge:

    def test_agrees_with_irlm(self):
        op      = DiagonalOperator(np.arange(1.0, 51.0))
        params  = EigParam(n_ev=4, n_min=8, n_max=20, spectrum='LR', tol=1e-10)
        ev_arp, ev_irlm = [], []
        r_arp   = arpack_solve(make_kspace(20, 50), ev_arp, op, params)
        r_irlm  = irlm_solve(make_kspace(20, 50), ev_irlm, op, params)
        print(f"\nARPACK: {np.real(ev_arp)}\nIRLM  : {np.real(ev_irlm)}")
        assert r_arp.converged and r_irlm.converged
        np.testing.assert_allclose(np.real(ev_arp), [50.0, 49.0, 48.0, 47.0], atol=1e-8)
        np.testing.assert_allclose(np.real(ev_arp), np.real(ev_irlm), atol=1e-8)

    def test_eigenvectors_written_back(self):
        op      = DiagonalOperator(np.arange(1.0, 31.0))
        params  = EigParam(eig_type='arpack', n_ev=3, n_min=6, n_max=12, spectrum='SR', tol=1e-12)
        kspace  = make_kspace(12, 30)
        evals   = []
        result  = ArpackEigenSolver(params, op).solve(kspace, evals)
        assert result.converged
        for i in range(3):
            assert abs(abs(kspace[i][i]) - 1.0) < 1e-8
        assert np.all(result.residual_norms < 1e-8)

    def test_general_operator(self):
        A       = create_normal_matrix()
        params  = EigParam(n_ev=3, n_min=8, n_max=20, spectrum='LR', tol=1e-12)
        evals   = []
        result  = ArpackEigenSolver(params, DenseOperator(A)).solve(make_kspace(20, 30, np.complex128), evals)
        assert result.converged
        np.testing.assert_allclose(np.sort_complex(np.array(evals)),
                                   np.sort_complex(np.array([28.0, 40.0 - 3.0j, 40.0 + 3.0j])), atol=1e-8)

    def test_no_convergence(self):
        op      = DiagonalOperator(np.arange(1.0, 51.0))
        params  = EigParam(n_ev=4, n_min=8, n_max=9, spectrum='LR', tol=1e-15, max_restarts=1)
        evals   = []
        result  = ArpackEigenSolver(params, op).solve(make_kspace(9, 50), evals)
        assert result.status is EigenStatus.EXHAUSTED
        assert result.n_converged < 4
        assert len(evals) == result.n_converged

    def test_general_operator_needs_complex_vectors(self):
        with pytest.raises(ConfigurationError):
            ArpackEigenSolver(EigParam(n_ev=3), DenseOperator(create_normal_matrix())).solve(make_kspace(20, 30), [])

    def test_imaginary_spectrum_for_hermitian(self):
        op = DiagonalOperator(np.arange(1.0, 31.0))
        with pytest.raises(ConfigurationError):
            ArpackEigenSolver(EigParam(n_ev=2, spectrum='LI'), op).solve(make_kspace(20, 30), [])

# ----------------------------------
#! EOF
# ----------------------------------
