# krylov_eigen/__init__.py

"""
Krylov Eigen - implicitly restarted Krylov eigensolvers for matrix-free operators.

Computes a few extremal eigenpairs (and singular triplets) of large linear
operators that are only available through their action on vector fields.

Modules:
--------
- algebra   : batched dense backend (native JAX / generic Numba engines) and the eigensolvers
- common    : logging with verbosity control and scoped output prefixes

Examples:
---------
>>> import numpy as np
>>> from krylov_eigen import EigParam, DiagonalOperator, irlm_solve
>>> op      = DiagonalOperator(np.arange(1.0, 51.0))
>>> kspace  = [np.zeros(50) for _ in range(20)]
>>> evals   = []
>>> result  = irlm_solve(kspace, evals, op, EigParam(n_ev=4, n_min=8, n_max=20, spectrum='LR'))

File    : krylov_eigen/__init__.py
Version : 0.1.0
License : MIT
"""

import importlib

# Package metadata
__version__         = "0.1.0"
__license__         = "MIT"

MODULE_DESCRIPTION  = "Implicitly restarted Lanczos/Arnoldi eigensolvers with a batched dense backend."

# Subpackages (not imported by default)
_SUBPACKAGES        = ["algebra", "common"]

_LAZY_IMPORTS = {
    'EigParam'              : ('.algebra.eigen.params',     'EigParam'),
    'EigType'               : ('.algebra.eigen.params',     'EigType'),
    'OperatorVariant'       : ('.algebra.eigen.params',     'OperatorVariant'),
    'Spectrum'              : ('.algebra.eigen.params',     'Spectrum'),
    'EigenResult'           : ('.algebra.eigen.result',     'EigenResult'),
    'EigenStatus'           : ('.algebra.eigen.result',     'EigenStatus'),
    'DenseOperator'         : ('.algebra.eigen.operator',   'DenseOperator'),
    'DiagonalOperator'      : ('.algebra.eigen.operator',   'DiagonalOperator'),
    'MatrixFreeOperator'    : ('.algebra.eigen.operator',   'MatrixFreeOperator'),
    'create_eigensolver'    : ('.algebra.eigen.factory',    'create_eigensolver'),
    'irlm_solve'            : ('.algebra.eigen.factory',    'irlm_solve'),
    'iram_solve'            : ('.algebra.eigen.factory',    'iram_solve'),
    'arpack_solve'          : ('.algebra.eigen.factory',    'arpack_solve'),
    'BatchedDenseSolver'    : ('.algebra.blas_lapack',      'BatchedDenseSolver'),
    'get_global_logger'     : ('.common.flog',              'get_global_logger'),
}

__all__             = _SUBPACKAGES + list(_LAZY_IMPORTS.keys())

_LAZY_CACHE         = {}

def get_module_description(module_name):
    """
    Get the description of a specific subpackage.
    """
    descriptions = {
        "algebra"   : "Batched dense inversion engines and the Krylov eigensolvers (IRLM, IRAM, ARPACK bridge).",
        "common"    : "Console/file logging with verbosity control and scoped output prefixes.",
    }
    return descriptions.get(module_name, "Module not found.")

# Lazy import subpackages and the main entry points on attribute access (PEP 562)
def __getattr__(name):
    if name in _LAZY_CACHE:
        return _LAZY_CACHE[name]
    if name in _SUBPACKAGES:
        return importlib.import_module(f".{name}", __name__)
    if name not in _LAZY_IMPORTS:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    module_path, attr_name  = _LAZY_IMPORTS[name]
    module                  = importlib.import_module(module_path, package=__name__)
    _LAZY_CACHE[name]       = getattr(module, attr_name)
    return _LAZY_CACHE[name]

def __dir__():
    return sorted(list(globals().keys()) + __all__)

# ---------------------------------------------------------------------
#! EOF
# ---------------------------------------------------------------------
