# file        :   krylov_eigen/algebra/utils.py

'''
Backend utilities for the linear algebra layer.

- Environment-driven configuration (``PY_*`` variables) shared by the
  batched dense backend and the eigensolvers.
- JAX detection without importing it eagerly; ``get_jax`` performs the
  one-time import (with 64-bit precision enabled) on first use.
- Small helpers for random start vectors and array-kind checks.

Environment variables:
    PY_BLAS_NATIVE      : '1' to use the native (JAX) engine by default for batched dense algebra.
    PY_GLOBAL_SEED      : default seed for random Krylov start vectors.
    PY_BACKEND_INFO     : '1' to print backend information on first JAX import.
'''

import os
import sys
import logging
import importlib.util
from typing import Any, Optional, Tuple

import numpy as np

# ---------------------------------------------------------------------
#! Enviroment variable names
# ---------------------------------------------------------------------

PY_BLAS_NATIVE_STR      : str               = "PY_BLAS_NATIVE"
PY_GLOBAL_SEED_STR      : str               = "PY_GLOBAL_SEED"
PY_INFO_VERBOSE_STR     : str               = "PY_BACKEND_INFO"

DEFAULT_SEED            : int               = 42

# ---------------------------------------------------------------------
#! SET VARIABLES
# ---------------------------------------------------------------------

PY_GLOBAL_SEED          : int               = int(os.environ.get(PY_GLOBAL_SEED_STR, DEFAULT_SEED))
PY_BLAS_NATIVE          : bool              = os.environ.get(PY_BLAS_NATIVE_STR, "0").lower() in ["1", "true", "yes", "native"]
PY_INFO_VERBOSE         : bool              = os.environ.get(PY_INFO_VERBOSE_STR, "0") != "0"

#! Backend Detection
JAX_AVAILABLE           : bool              = importlib.util.find_spec("jax") is not None

_JAX_MODULES            : Optional[Tuple[Any, Any, Any]] = None

# ---------------------------------------------------------------------

def get_jax() -> Tuple[Any, Any, Any]:
    '''
    Import JAX on first use and return ``(jax, jax.numpy, jax.scipy.linalg)``.

    64-bit precision is enabled, double precision data would otherwise be
    silently truncated on the device.

    Raises
    ------
    ImportError
        If JAX is not installed.
    '''
    global _JAX_MODULES
    if _JAX_MODULES is not None:
        return _JAX_MODULES

    if not JAX_AVAILABLE:
        raise ImportError("JAX is not installed. Install the 'jax' extra to use the native backend.")

    import jax
    from jax import config as jcfg
    jcfg.update("jax_enable_x64", True)
    logging.getLogger('jax._src.xla_bridge').setLevel(logging.WARNING)

    import jax.numpy as jnp
    import jax.scipy.linalg as jsl

    if PY_INFO_VERBOSE:
        from ..common.flog import get_global_logger
        get_global_logger().info(f"JAX {jax.__version__} imported, devices: {jax.devices()}", lvl=1, color='green')

    _JAX_MODULES = (jax, jnp, jsl)
    return _JAX_MODULES

# ---------------------------------------------------------------------

def is_jax_array(x: Any) -> bool:
    '''
    Checks if an object is a JAX array. Never imports JAX: an object can only
    be a JAX array if JAX was already imported by someone (not necessarily
    through ``get_jax``).
    '''
    jax = sys.modules.get('jax')
    if jax is None:
        return False
    return isinstance(x, jax.Array)

# ---------------------------------------------------------------------

def default_rng(seed: Optional[int] = None) -> np.random.Generator:
    '''
    NumPy generator seeded with ``seed`` or the global ``PY_GLOBAL_SEED``.
    '''
    return np.random.default_rng(PY_GLOBAL_SEED if seed is None else seed)

def random_field(shape: Tuple[int, ...], dtype: Any, rng: np.random.Generator) -> np.ndarray:
    '''
    Gaussian random field of the given shape and dtype (complex fields get a
    random imaginary part as well).
    '''
    dtype = np.dtype(dtype)
    field = rng.standard_normal(shape)
    if np.issubdtype(dtype, np.complexfloating):
        field = field + 1j * rng.standard_normal(shape)
    return field.astype(dtype)

# ---------------------------------------------------------------------
#! EOF
# ---------------------------------------------------------------------
