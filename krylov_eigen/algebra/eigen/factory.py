"""
Eigensolver factory.

Concrete solvers are never constructed directly by callers: the factory maps
``EigParam.eig_type`` onto the implementation and the one-shot helpers wrap
construction, solve and release.

    >>> params = EigParam(n_ev=4, n_min=8, n_max=20, spectrum='SR')
    >>> result = irlm_solve(kspace, evals, operator, params)

----------------------------------------------
File        : krylov_eigen/algebra/eigen/factory.py
----------------------------------------------
"""

from typing import Dict, List, Optional, Type, TYPE_CHECKING

from numpy.typing import NDArray

from .params import EigParam, EigType
from .result import EigenResult
from .operator import Operator
from .solver import EigenSolver
from .irlm import IRLM
from .iram import IRAM
from .arpack import ArpackEigenSolver
from .deflation import DeflationEigenSolver
from ..errors import ConfigurationError, EigenErrorCode
from ..blas_lapack import BatchedDenseSolver

if TYPE_CHECKING:
    from ...common.flog import Logger

# ----------------------------------------------------------------------------------------

_SOLVERS : Dict[EigType, Type[EigenSolver]] = {
    EigType.IRLM    : IRLM,
    EigType.IRAM    : IRAM,
    EigType.ARPACK  : ArpackEigenSolver,
}

def create_eigensolver(params       : EigParam,
                       operator     : Operator,
                       logger       : Optional['Logger']            = None,
                       blas         : Optional[BatchedDenseSolver]  = None) -> EigenSolver:
    '''
    Build the solver selected by ``params.eig_type``.

    Raises:
        ConfigurationError: unknown solver type or inconsistent parameters.
    '''
    if not isinstance(params, EigParam):
        raise ConfigurationError(f"params must be an EigParam, got {type(params).__name__}")
    solver_cls = _SOLVERS.get(params.eig_type)
    if solver_cls is None:
        raise ConfigurationError(f"Unknown eigensolver type {params.eig_type!r}", EigenErrorCode.UNKNOWN_SOLVER)
    return solver_cls(params, operator, logger=logger, blas=blas)

def create_deflation_solver(params      : EigParam,
                            operator    : Operator,
                            prefix      : str                       = "deflation: ",
                            inner       : Optional[EigenSolver]     = None,
                            logger      : Optional['Logger']        = None) -> DeflationEigenSolver:
    '''
    Wrap ``inner`` (built from ``params`` when omitted) in a deflation decorator.
    '''
    if inner is None:
        inner = create_eigensolver(params, operator, logger=logger)
    return DeflationEigenSolver(inner, operator, params, prefix, logger=logger)

# ----------------------------------------------------------------------------------------
#! One-shot helpers
# ----------------------------------------------------------------------------------------

def _solve_with(eig_type: EigType, kspace: List[NDArray], evals: List[complex], operator: Operator,
                params: EigParam, logger: Optional['Logger'] = None) -> EigenResult:
    with create_eigensolver(params.replace(eig_type=eig_type), operator, logger=logger) as solver:
        with solver.logger.timed(f"{eig_type} solve", lvl=1):
            return solver.solve(kspace, evals)

def irlm_solve(kspace: List[NDArray], evals: List[complex], operator: Operator, params: EigParam,
               logger: Optional['Logger'] = None) -> EigenResult:
    ''' Implicitly restarted Lanczos solve. '''
    return _solve_with(EigType.IRLM, kspace, evals, operator, params, logger)

def iram_solve(kspace: List[NDArray], evals: List[complex], operator: Operator, params: EigParam,
               logger: Optional['Logger'] = None) -> EigenResult:
    ''' Implicitly restarted Arnoldi solve. '''
    return _solve_with(EigType.IRAM, kspace, evals, operator, params, logger)

def arpack_solve(kspace: List[NDArray], evals: List[complex], operator: Operator, params: EigParam,
                 logger: Optional['Logger'] = None) -> EigenResult:
    ''' ARPACK solve through scipy. '''
    return _solve_with(EigType.ARPACK, kspace, evals, operator, params, logger)

# ----------------------------------------------------------------------------------------
#! EOF
# ----------------------------------------------------------------------------------------
