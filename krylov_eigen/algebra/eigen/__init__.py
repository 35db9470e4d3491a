"""
Krylov Eigenvalue Solvers Module

Iterative eigensolvers for large operators that are only available through
their action on vector fields.

Available Solvers:
    - IRLM      : implicitly restarted Lanczos with locking, Chebyshev acceleration
                  and singular vector recovery (Hermitian / normal operators)
    - IRAM      : implicitly restarted Arnoldi (general operators)
    - ARPACK    : bridge to scipy.sparse.linalg.eigsh / eigs
    - Deflation : decorator forwarding to a wrapped solver with a scoped log prefix

Factory Functions:
    - create_eigensolver, create_deflation_solver
    - irlm_solve, iram_solve, arpack_solve

This module uses lazy imports to minimize startup overhead.
"""

from typing import TYPE_CHECKING
import importlib

# -----------------------------------------------------------------------------------------------
# Lazy Import Configuration
# -----------------------------------------------------------------------------------------------

_LAZY_IMPORTS = {
    # Parameters
    'EigParam'                  : ('.params', 'EigParam'),
    'EigType'                   : ('.params', 'EigType'),
    'OperatorVariant'           : ('.params', 'OperatorVariant'),
    'Spectrum'                  : ('.params', 'Spectrum'),
    # Result type
    'EigenResult'               : ('.result', 'EigenResult'),
    'EigenStatus'               : ('.result', 'EigenStatus'),
    # Operators
    'Operator'                  : ('.operator', 'Operator'),
    'DenseOperator'             : ('.operator', 'DenseOperator'),
    'DiagonalOperator'          : ('.operator', 'DiagonalOperator'),
    'MatrixFreeOperator'        : ('.operator', 'MatrixFreeOperator'),
    # Solvers
    'EigenSolver'               : ('.solver', 'EigenSolver'),
    'IRLM'                      : ('.irlm', 'IRLM'),
    'IRLMState'                 : ('.irlm', 'IRLMState'),
    'IRAM'                      : ('.iram', 'IRAM'),
    'ArpackEigenSolver'         : ('.arpack', 'ArpackEigenSolver'),
    'DeflationEigenSolver'      : ('.deflation', 'DeflationEigenSolver'),
    # Factory interface
    'create_eigensolver'        : ('.factory', 'create_eigensolver'),
    'create_deflation_solver'   : ('.factory', 'create_deflation_solver'),
    'irlm_solve'                : ('.factory', 'irlm_solve'),
    'iram_solve'                : ('.factory', 'iram_solve'),
    'arpack_solve'              : ('.factory', 'arpack_solve'),
}

_LAZY_CACHE = {}

# For type checking only
if TYPE_CHECKING:
    from .params        import EigParam, EigType, OperatorVariant, Spectrum
    from .result        import EigenResult, EigenStatus
    from .operator      import Operator, DenseOperator, DiagonalOperator, MatrixFreeOperator
    from .solver        import EigenSolver
    from .irlm          import IRLM, IRLMState
    from .iram          import IRAM
    from .arpack        import ArpackEigenSolver
    from .deflation     import DeflationEigenSolver
    from .factory       import create_eigensolver, create_deflation_solver, irlm_solve, iram_solve, arpack_solve

# -----------------------------------------------------------------------------------------------

def __getattr__(name: str):
    """
    Module-level __getattr__ for lazy imports.
    """
    if name in _LAZY_CACHE:
        return _LAZY_CACHE[name]

    if name not in _LAZY_IMPORTS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_path, attr_name  = _LAZY_IMPORTS[name]
    module                  = importlib.import_module(module_path, package=__name__)
    result                  = getattr(module, attr_name)
    _LAZY_CACHE[name]       = result
    return result

__all__ = list(_LAZY_IMPORTS.keys())

# -----------------------------------------------------------------------------------------------
#! EOF
# -----------------------------------------------------------------------------------------------
