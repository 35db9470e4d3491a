'''
General tests for import behavior of the krylov_eigen package.

Ensures that subpackages are lazily imported and key exports are available.

Tests:
- Lazy loading of subpackages
- Key class/function exports
- Package metadata presence

File        : krylov_eigen/tests/test_imports.py
License     : MIT
'''

import types

import pytest

# -------------------------------------------------------------------

def test_root_imports_lazy():
    import krylov_eigen as ke
    algebra = ke.algebra
    assert isinstance(algebra, types.ModuleType)
    assert isinstance(ke.common, types.ModuleType)

# -------------------------------------------------------------------

def test_root_exports():
    import krylov_eigen as ke
    from krylov_eigen.algebra.eigen.irlm import IRLM
    params = ke.EigParam(n_ev=2, n_min=4, n_max=10)
    solver = ke.create_eigensolver(params, ke.DiagonalOperator([1.0] * 20))
    assert isinstance(solver, IRLM)
    solver.close()
    assert callable(ke.irlm_solve) and callable(ke.iram_solve) and callable(ke.arpack_solve)

def test_eigen_subpackage_exports():
    from krylov_eigen.algebra import eigen
    assert eigen.IRLMState.CONVERGED is not None
    assert issubclass(eigen.DeflationEigenSolver, eigen.EigenSolver)
    with pytest.raises(AttributeError):
        eigen.lanczos_bidiagonal

def test_unknown_attribute():
    import krylov_eigen as ke
    with pytest.raises(AttributeError):
        ke.does_not_exist

# -------------------------------------------------------------------

def test_package_metadata():
    import krylov_eigen as ke
    assert hasattr(ke, "__version__")
    assert ke.get_module_description("algebra") != "Module not found."
    assert ke.get_module_description("physics") == "Module not found."

# -------------------------------------------------------------------
#! End of file
# -------------------------------------------------------------------
