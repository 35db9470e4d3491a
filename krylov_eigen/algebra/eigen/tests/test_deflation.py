"""
Tests for the deflation decorator: forwarding, scoped output prefix and
ownership of the wrapped solver.
"""

import numpy as np
import pytest

from krylov_eigen.algebra.eigen.params import EigParam
from krylov_eigen.algebra.eigen.result import EigenStatus, empty_result
from krylov_eigen.algebra.eigen.operator import DiagonalOperator
from krylov_eigen.algebra.eigen.solver import EigenSolver
from krylov_eigen.algebra.eigen.irlm import IRLM
from krylov_eigen.algebra.eigen.deflation import DeflationEigenSolver
from krylov_eigen.algebra.eigen.factory import create_deflation_solver
from krylov_eigen.algebra.errors import EigenSolverError, EigenErrorCode
from krylov_eigen.common.flog import Logger

# ----------------------------------
#! Helpers
# ----------------------------------

class RecordingSolver(EigenSolver):
    """Records the logger prefix seen during solve and counts releases."""

    def __init__(self, *args, fail=False, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail       = fail
        self.prefixes   = []
        self.n_closed   = 0

    def solve(self, kspace, evals):
        self.prefixes.append(self.logger.prefix)
        if self.fail:
            raise RuntimeError("inner solve failed")
        evals.append(1.0 + 0j)
        return empty_result(EigenStatus.CONVERGED)

    def close(self):
        if not self.closed:
            self.n_closed += 1
        super().close()

@pytest.fixture
def logger():
    return Logger(name="test_deflation")

@pytest.fixture
def operator():
    return DiagonalOperator(np.arange(1.0, 31.0))

# ----------------------------------
#! Test classes
# ----------------------------------

class TestDeflationDecorator:

    def test_forwards_with_prefix(self, logger, operator):
        params  = EigParam()
        inner   = RecordingSolver(params, operator, logger=logger)
        defl    = DeflationEigenSolver(inner, operator, params, "deflation: ")
        evals   = []
        result  = defl.solve([], evals)
        assert inner.prefixes == ["deflation: "]
        assert evals == [1.0 + 0j]
        assert result.status is EigenStatus.CONVERGED
        assert logger.prefix == ""

    def test_prefix_restored_on_error(self, logger, operator):
        params  = EigParam()
        logger.set_prefix("outer: ")
        inner   = RecordingSolver(params, operator, logger=logger, fail=True)
        defl    = DeflationEigenSolver(inner, operator, params, "deflation: ")
        with pytest.raises(RuntimeError):
            defl.solve([], [])
        assert inner.prefixes == ["deflation: "]
        assert logger.prefix == "outer: "

    def test_releases_inner_once(self, logger, operator):
        params  = EigParam()
        inner   = RecordingSolver(params, operator, logger=logger)
        with DeflationEigenSolver(inner, operator, params, "d: ") as defl:
            defl.solve([], [])
        defl.close()
        assert inner.n_closed == 1
        assert inner.closed and defl.closed

    def test_use_after_close(self, logger, operator):
        params  = EigParam()
        defl    = DeflationEigenSolver(RecordingSolver(params, operator, logger=logger), operator, params, "d: ")
        defl.close()
        with pytest.raises(EigenSolverError) as err:
            defl.solve([], [])
        assert err.value.code is EigenErrorCode.SOLVER_RELEASED

    def test_shares_inner_backend(self, logger, operator):
        params  = EigParam()
        inner   = RecordingSolver(params, operator, logger=logger)
        defl    = DeflationEigenSolver(inner, operator, params, "d: ")
        assert defl.blas is inner.blas
        assert defl.logger is logger

# ----------------------------------

class TestDeflationFactory:

    def test_wraps_irlm(self, logger, operator):
        params  = EigParam(n_ev=3, n_min=6, n_max=15, spectrum='SR', tol=1e-10)
        evals   = []
        with create_deflation_solver(params, operator, prefix="deflated: ", logger=logger) as solver:
            assert isinstance(solver.inner, IRLM)
            result = solver.solve([np.zeros(30) for _ in range(15)], evals)
        assert result.converged
        np.testing.assert_allclose(np.real(evals), [1.0, 2.0, 3.0], atol=1e-8)
        assert logger.prefix == ""

    def test_explicit_inner(self, logger, operator):
        params  = EigParam()
        inner   = RecordingSolver(params, operator, logger=logger)
        solver  = create_deflation_solver(params, operator, inner=inner)
        assert solver.inner is inner
        assert solver.prefix == "deflation: "

# ----------------------------------
#! EOF
# ----------------------------------
