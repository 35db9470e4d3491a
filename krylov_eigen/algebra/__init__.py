"""
Linear algebra layer.

- blas_lapack   : batched dense inversion with a native (JAX) and a generic (Numba) engine
- errors        : error taxonomy shared by the backend and the eigensolvers
- utils         : environment configuration and backend detection
- eigen         : Krylov eigensolvers

This module uses lazy imports to minimize startup overhead.
"""

from typing import TYPE_CHECKING
import importlib

_LAZY_IMPORTS = {
    # batched dense backend
    'Precision'             : ('.blas_lapack', 'Precision'),
    'Location'              : ('.blas_lapack', 'Location'),
    'MatrixField'           : ('.blas_lapack', 'MatrixField'),
    'BatchedDenseSolver'    : ('.blas_lapack', 'BatchedDenseSolver'),
    'batch_invert_matrix'   : ('.blas_lapack', 'batch_invert_matrix'),
    'use_native'            : ('.blas_lapack', 'use_native'),
    'set_native'            : ('.blas_lapack', 'set_native'),
    # errors
    'EigenSolverError'      : ('.errors', 'EigenSolverError'),
    'ConfigurationError'    : ('.errors', 'ConfigurationError'),
    'NumericalError'        : ('.errors', 'NumericalError'),
    'BackendError'          : ('.errors', 'BackendError'),
    # submodules
    'blas_lapack'           : ('.blas_lapack', None),
    'errors'                : ('.errors', None),
    'utils'                 : ('.utils', None),
    'eigen'                 : ('.eigen', None),
}

_LAZY_CACHE = {}

if TYPE_CHECKING:
    from .blas_lapack   import Precision, Location, MatrixField, BatchedDenseSolver, batch_invert_matrix, use_native, set_native
    from .errors        import EigenSolverError, ConfigurationError, NumericalError, BackendError

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
    result                  = module if attr_name is None else getattr(module, attr_name)
    _LAZY_CACHE[name]       = result
    return result

__all__ = list(_LAZY_IMPORTS.keys())

# -----------------------------------------------------------------------------------------------
#! EOF
# -----------------------------------------------------------------------------------------------
