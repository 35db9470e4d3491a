r'''
Batched dense linear algebra for the small auxiliary problems of the eigensolvers.

The only operation required by the Krylov solvers is the inversion of many
small :math:`n \times n` matrices at once (e.g. Gram matrices of a block
orthogonalisation). Two interchangeable engines implement the same contract:

    - native    : JAX, ``vmap`` of LU factorisation + LU solve, jit-compiled
                  and executed on the default JAX device (GPU/TPU when present).
    - generic   : portable host LU with partial pivoting, compiled with Numba
                  and parallelised over the batch.

Engine selection
----------------
A process-wide toggle ``use_native()`` / ``set_native(flag)`` (default taken
from ``PY_BLAS_NATIVE``) drives the module-level ``batch_invert_matrix``.
Code that prefers an explicit configuration builds a ``BatchedDenseSolver``
with ``native=True/False`` and uses it as a context manager, which acquires
and releases the engine context deterministically.

The engine decides *how* the inversion is computed, ``location`` only states
where the data lives and where the result must be delivered: the native
engine stages host data to the device and back, the generic engine stages
device data to the host and back. The declared location must match the
container type (NumPy array = HOST, JAX array = DEVICE).

Flop counts follow the LAPACK ``getrf`` + ``getri`` operation counts.

----------------------------------------------
File        : krylov_eigen/algebra/blas_lapack.py
----------------------------------------------
'''

from abc import ABC, abstractmethod
from enum import Enum, unique
from typing import Any, Dict, Optional, Union

import numba
import numpy as np

from .utils import JAX_AVAILABLE, PY_BLAS_NATIVE, get_jax, is_jax_array
from .errors import BackendError, ConfigurationError, EigenErrorCode, NumericalError
from ..common.flog import Logger, get_global_logger

# ----------------------------------------------------------------------------------------
#! Enumerations
# ----------------------------------------------------------------------------------------

@unique
class Precision(Enum):
    '''
    Floating point precision of the batched data. Real and complex data are
    both accepted; the pair (precision, complex) fixes the dtype.
    '''
    SINGLE = 4
    DOUBLE = 8

    def dtypes(self):
        if self is Precision.SINGLE:
            return (np.dtype(np.float32), np.dtype(np.complex64))
        return (np.dtype(np.float64), np.dtype(np.complex128))

    @staticmethod
    def of(dtype: Any) -> 'Precision':
        '''
        Precision of a NumPy/JAX dtype.

        Raises
        ------
        ConfigurationError
            For dtypes outside {float32, float64, complex64, complex128}.
        '''
        dtype = np.dtype(dtype)
        if dtype in Precision.SINGLE.dtypes():
            return Precision.SINGLE
        if dtype in Precision.DOUBLE.dtypes():
            return Precision.DOUBLE
        raise ConfigurationError(f"Unsupported dtype {dtype} for batched dense algebra", EigenErrorCode.PRECISION_MISMATCH)

@unique
class Location(Enum):
    '''
    Where the input matrices live and where the output must be delivered.
    '''
    HOST    = 0
    DEVICE  = 1

# ----------------------------------------------------------------------------------------
#! Flop accounting (LAPACK operation counts)
# ----------------------------------------------------------------------------------------

def _fmuls_getrf(m: float, n: float) -> float:
    if m < n:
        return 0.5 * m * (m * (n - (1.0 / 3.0) * m - 1.0) + n) + (2.0 / 3.0) * m
    return 0.5 * n * (n * (m - (1.0 / 3.0) * n - 1.0) + m) + (2.0 / 3.0) * n

def _fadds_getrf(m: float, n: float) -> float:
    if m < n:
        return 0.5 * m * (m * (n - (1.0 / 3.0) * m) - n) + (1.0 / 6.0) * m
    return 0.5 * n * (n * (m - (1.0 / 3.0) * n) - m) + (1.0 / 6.0) * n

def _fmuls_getri(n: float) -> float:
    return n * ((5.0 / 6.0) + n * ((2.0 / 3.0) * n + 0.5))

def _fadds_getri(n: float) -> float:
    return n * ((5.0 / 6.0) + n * ((2.0 / 3.0) * n - 1.5))

def flops_batch_invert(n: int, batch: int, is_complex: bool) -> int:
    '''
    Floating point operations of ``batch`` LU inversions of size ``n``.
    A complex multiply counts 6 real flops, a complex add 2.
    '''
    n       = float(n)
    fmuls   = _fmuls_getrf(n, n) + _fmuls_getri(n)
    fadds   = _fadds_getrf(n, n) + _fadds_getri(n)
    per_mat = 6.0 * fmuls + 2.0 * fadds if is_complex else fmuls + fadds
    return int(round(batch * per_mat))

# ----------------------------------------------------------------------------------------
#! Data containers
# ----------------------------------------------------------------------------------------

class MatrixField:
    '''
    Holder for a batch of matrices. Device (JAX) arrays are immutable, so device
    output is delivered by rebinding ``data``; host output is written in place.
    '''

    def __init__(self, data: Any = None, location: Optional[Location] = None):
        self.data       = data
        if location is None:
            location    = Location.DEVICE if is_jax_array(data) else Location.HOST
        self.location   = location

    @property
    def shape(self):
        return None if self.data is None else tuple(self.data.shape)

    @property
    def dtype(self):
        return None if self.data is None else np.dtype(self.data.dtype)

    def __repr__(self):
        return f"MatrixField(shape={self.shape}, dtype={self.dtype}, location={self.location.name})"

MatrixLike = Union[np.ndarray, MatrixField, Any]

# ----------------------------------------------------------------------------------------
#! Generic host kernel
# ----------------------------------------------------------------------------------------

@numba.njit(cache=True)
def _lu_invert_one(a, ainv, pivot_tol):
    '''
    LU with partial pivoting of ``a`` and its inverse written into ``ainv``.
    Returns False (``ainv`` untouched) when a pivot falls below
    ``pivot_tol * max|a|`` or ``a`` holds non-finite entries.
    '''
    n       = a.shape[0]
    lu      = a.copy()
    perm    = np.arange(n)
    scale   = 0.0
    for i in range(n):
        for j in range(n):
            v = abs(lu[i, j])
            if not np.isfinite(v):
                return False
            if v > scale:
                scale = v
    if scale == 0.0:
        return False

    for k in range(n):
        p       = k
        pmax    = abs(lu[k, k])
        for i in range(k + 1, n):
            v = abs(lu[i, k])
            if v > pmax:
                pmax    = v
                p       = i
        if pmax <= pivot_tol * scale:
            return False
        if p != k:
            for j in range(n):
                tmp         = lu[k, j]
                lu[k, j]    = lu[p, j]
                lu[p, j]    = tmp
            tp          = perm[k]
            perm[k]     = perm[p]
            perm[p]     = tp
        for i in range(k + 1, n):
            lu[i, k] = lu[i, k] / lu[k, k]
            for j in range(k + 1, n):
                lu[i, j] -= lu[i, k] * lu[k, j]

    # column c of the inverse solves L U x = P e_c
    x = np.zeros(n, dtype=lu.dtype)
    for c in range(n):
        for i in range(n):
            x[i] = 1.0 if perm[i] == c else 0.0
        for i in range(n):
            s = x[i]
            for j in range(i):
                s -= lu[i, j] * x[j]
            x[i] = s
        for i in range(n - 1, -1, -1):
            s = x[i]
            for j in range(i + 1, n):
                s -= lu[i, j] * x[j]
            x[i] = s / lu[i, i]
        for i in range(n):
            ainv[i, c] = x[i]
    return True

@numba.njit(parallel=True, cache=True)
def _lu_invert_batch(a, ainv, pivot_tol, singular):
    '''
    Batched ``_lu_invert_one``, parallel over the batch. Failing elements are
    flagged in ``singular``.
    '''
    for b in numba.prange(a.shape[0]):
        singular[b] = not _lu_invert_one(a[b], ainv[b], pivot_tol)

# ----------------------------------------------------------------------------------------
#! Engines
# ----------------------------------------------------------------------------------------

class BlasEngine(ABC):
    '''
    Strategy object for batched dense algebra. ``init`` acquires the engine
    context, ``destroy`` releases it and is a no-op when nothing is held.
    '''

    name : str = "abstract"

    def __init__(self, logger: Optional[Logger] = None):
        self._initialized   = False
        self._logger        = logger

    @property
    def logger(self) -> Logger:
        if self._logger is None:
            self._logger = get_global_logger()
        return self._logger

    @property
    def initialized(self) -> bool:
        return self._initialized

    @abstractmethod
    def init(self) -> None: ...

    @abstractmethod
    def destroy(self) -> None: ...

    @abstractmethod
    def _invert(self, a: Any, n: int, batch: int, location: Location):
        '''
        Returns ``(ainv, singular_mask)`` where ``ainv`` lives at ``location``.
        '''

    # ------------------------------------------------------------------------------------

    def batch_invert_matrix(self,
                            ainv        : MatrixLike,
                            a           : MatrixLike,
                            n           : int,
                            batch       : int,
                            precision   : Precision,
                            location    : Location) -> int:
        '''
        Batch inversion of ``batch`` matrices of dimension ``n`` using an LU
        decomposition.

        Parameters:
        -----------
            ainv:
                Output. A writable NumPy array (HOST) filled in place, or a
                ``MatrixField`` (required for DEVICE) whose ``data`` is replaced.
            a:
                Input matrices, ``batch * n * n`` elements. Never modified.
            n:
                Dimension of each matrix.
            batch:
                Number of matrices.
            precision:
                ``Precision.SINGLE`` or ``Precision.DOUBLE``; must match the dtype.
            location:
                ``Location.HOST`` or ``Location.DEVICE``; must match the containers.

        Returns:
            Number of flops done in this computation.

        Raises:
            ConfigurationError:
                Mismatched precision/location, aliasing, wrong sizes.
            NumericalError:
                Some matrices are singular to working precision. The remaining
                inverses are delivered before raising; ``batch_indices`` lists
                the failing elements.
        '''
        a_data, ainv_data   = _validate_batch_args(ainv, a, n, batch, precision, location)
        if not self._initialized:
            self.init()

        self.logger.debug(f"BatchInvertMatrix[{self.name}]: batch={batch}, n={n}, "
                          f"precision={precision.name}, location={location.name}", lvl=2)

        result, singular    = self._invert(a_data, n, batch, location)
        _deliver(ainv, ainv_data, result, location)

        bad = np.flatnonzero(np.asarray(singular))
        if bad.size > 0:
            raise NumericalError(f"{bad.size} of {batch} matrices are singular to working precision "
                                 f"(first index {int(bad[0])})",
                                 EigenErrorCode.MAT_SINGULAR, batch_indices=bad.tolist())
        return flops_batch_invert(n, batch, np.issubdtype(np.dtype(a_data.dtype), np.complexfloating))

    def __repr__(self):
        return f"{self.__class__.__name__}(initialized={self._initialized})"

# ----------------------------------------------------------------------------------------

class GenericEngine(BlasEngine):
    '''
    Portable host engine (Numba LU kernel).
    '''

    name = "generic"

    def init(self) -> None:
        self._initialized = True

    def destroy(self) -> None:
        self._initialized = False

    def _invert(self, a, n, batch, location):
        host        = np.asarray(a)
        a3          = np.ascontiguousarray(host.reshape(batch, n, n))
        out         = np.zeros_like(a3)
        singular    = np.zeros(batch, dtype=np.bool_)
        eps         = np.finfo(a3.dtype).eps
        _lu_invert_batch(a3, out, float(n * eps), singular)

        if location is Location.DEVICE:
            _, jnp, _   = get_jax()
            out         = jnp.asarray(out)
        return out, singular

# ----------------------------------------------------------------------------------------

class NativeEngine(BlasEngine):
    '''
    Accelerator engine: JAX batched LU on the default device.
    '''

    name = "native"

    def __init__(self, logger: Optional[Logger] = None):
        super().__init__(logger)
        self._device    = None
        self._kernel    = None

    def init(self) -> None:
        if self._initialized:
            return
        try:
            jax, jnp, jsl = get_jax()
        except ImportError as e:
            raise BackendError(f"Native BLAS engine unavailable: {e}") from e

        def _kernel(a, tol):
            lu, piv     = jax.vmap(jsl.lu_factor)(a)
            eye         = jnp.eye(a.shape[-1], dtype=a.dtype)
            inv         = jax.vmap(lambda l, p: jsl.lu_solve((l, p), eye))(lu, piv)
            pivots      = jnp.min(jnp.abs(jnp.diagonal(lu, axis1=-2, axis2=-1)), axis=-1)
            scale       = jnp.max(jnp.abs(a), axis=(-2, -1))
            singular    = (pivots <= tol * scale) | (scale == 0) | ~jnp.all(jnp.isfinite(inv), axis=(-2, -1))
            return inv, singular

        self._device        = jax.devices()[0]
        self._kernel        = jax.jit(_kernel)
        self._initialized   = True
        self.logger.debug(f"Native BLAS engine initialised on {self._device}", lvl=1)

    def destroy(self) -> None:
        self._device        = None
        self._kernel        = None
        self._initialized   = False

    def _invert(self, a, n, batch, location):
        jax, jnp, _ = get_jax()
        a3          = jax.device_put(jnp.reshape(jnp.asarray(a), (batch, n, n)), self._device)
        eps         = np.finfo(np.dtype(a3.dtype)).eps
        inv, bad    = self._kernel(a3, n * eps)
        # singular elements are left as zeros, same as the generic engine
        inv         = jnp.where(bad[:, None, None], jnp.zeros_like(inv), inv)
        if location is Location.HOST:
            return np.asarray(inv), np.asarray(bad)
        return inv, np.asarray(bad)

# ----------------------------------------------------------------------------------------
#! Argument handling
# ----------------------------------------------------------------------------------------

def _location_of(data: Any) -> Optional[Location]:
    if is_jax_array(data):
        return Location.DEVICE
    if isinstance(data, np.ndarray):
        return Location.HOST
    return None

def _validate_batch_args(ainv, a, n, batch, precision, location):
    if not isinstance(precision, Precision):
        raise ConfigurationError(f"precision must be a Precision, got {precision!r}", EigenErrorCode.PRECISION_MISMATCH)
    if not isinstance(location, Location):
        raise ConfigurationError(f"location must be a Location, got {location!r}", EigenErrorCode.LOCATION_MISMATCH)
    if int(n) < 1 or int(batch) < 1:
        raise ConfigurationError(f"n and batch must be positive, got n={n}, batch={batch}")
    if location is Location.DEVICE and not JAX_AVAILABLE:
        raise ConfigurationError("DEVICE location requires JAX", EigenErrorCode.LOCATION_MISMATCH)

    a_data = a.data if isinstance(a, MatrixField) else a
    if _location_of(a_data) is not location:
        raise ConfigurationError(f"Input container {type(a_data).__name__} does not match location {location.name}",
                                 EigenErrorCode.LOCATION_MISMATCH)
    if int(np.prod(a_data.shape)) != n * n * batch:
        raise ConfigurationError(f"Input holds {int(np.prod(a_data.shape))} elements, expected batch*n*n={batch * n * n}")
    if np.dtype(a_data.dtype) not in precision.dtypes():
        raise ConfigurationError(f"Input dtype {a_data.dtype} does not match precision {precision.name}",
                                 EigenErrorCode.PRECISION_MISMATCH)

    if ainv is a or (isinstance(ainv, MatrixField) and ainv.data is a_data):
        raise ConfigurationError("Output aliases the input", EigenErrorCode.ALIASED_OUTPUT)

    if isinstance(ainv, MatrixField):
        ainv_data = ainv.data
        if ainv_data is None:
            return a_data, None
    elif location is Location.DEVICE:
        raise ConfigurationError("DEVICE output must be a MatrixField holder", EigenErrorCode.LOCATION_MISMATCH)
    else:
        ainv_data = ainv

    if location is Location.HOST:
        if not isinstance(ainv_data, np.ndarray):
            raise ConfigurationError("HOST output must be a NumPy array", EigenErrorCode.LOCATION_MISMATCH)
        if not ainv_data.flags.writeable:
            raise ConfigurationError("HOST output array is read-only")
        if np.shares_memory(ainv_data, a_data):
            raise ConfigurationError("Output shares memory with the input", EigenErrorCode.ALIASED_OUTPUT)
    if int(np.prod(ainv_data.shape)) != n * n * batch:
        raise ConfigurationError(f"Output holds {int(np.prod(ainv_data.shape))} elements, expected {batch * n * n}")
    if np.dtype(ainv_data.dtype) != np.dtype(a_data.dtype):
        raise ConfigurationError(f"Output dtype {ainv_data.dtype} differs from input dtype {a_data.dtype}",
                                 EigenErrorCode.PRECISION_MISMATCH)
    return a_data, ainv_data

def _deliver(ainv, ainv_data, result, location):
    if location is Location.DEVICE:
        _, jnp, _   = get_jax()
        shape       = ainv_data.shape if ainv_data is not None else result.shape
        ainv.data       = jnp.reshape(result, shape)
        ainv.location   = Location.DEVICE
        return
    if ainv_data is None:
        ainv.data       = np.asarray(result)
        ainv.location   = Location.HOST
        return
    ainv_data[...] = np.asarray(result).reshape(ainv_data.shape)

# ----------------------------------------------------------------------------------------
#! Scoped solver object
# ----------------------------------------------------------------------------------------

class BatchedDenseSolver:
    '''
    Explicitly configured batched dense solver with a scoped engine context.

    Example:
        >>> with BatchedDenseSolver(native=False) as blas:
        ...     inverses = blas.invert_matrices(matrices)
    '''

    def __init__(self, native: Optional[bool] = None, logger: Optional[Logger] = None):
        self.native = use_native() if native is None else bool(native)
        self.engine = NativeEngine(logger) if self.native else GenericEngine(logger)

    def init(self) -> 'BatchedDenseSolver':
        self.engine.init()
        return self

    def destroy(self) -> None:
        self.engine.destroy()

    def __enter__(self):
        return self.init()

    def __exit__(self, exc_type, exc, tb):
        self.destroy()
        return False

    # ------------------------------------------------------------------------------------

    def batch_invert_matrix(self, ainv, a, n, batch, precision, location) -> int:
        return self.engine.batch_invert_matrix(ainv, a, n, batch, precision, location)

    def invert_matrices(self, matrices: np.ndarray) -> np.ndarray:
        '''
        Invert a host stack of matrices of shape ``(batch, n, n)`` (or a single
        ``(n, n)`` matrix) and return the inverses.
        '''
        matrices    = np.ascontiguousarray(matrices)
        single      = matrices.ndim == 2
        stack       = matrices[None] if single else matrices
        n           = stack.shape[-1]
        out         = np.empty_like(stack)
        self.batch_invert_matrix(out, stack, n, stack.shape[0], Precision.of(stack.dtype), Location.HOST)
        return out[0] if single else out

    def __repr__(self):
        return f"BatchedDenseSolver(engine={self.engine.name}, initialized={self.engine.initialized})"

# ----------------------------------------------------------------------------------------
#! Process-wide default path
# ----------------------------------------------------------------------------------------

_USE_NATIVE         : bool                  = PY_BLAS_NATIVE
_DEFAULT_ENGINES    : Dict[bool, BlasEngine] = {}

def use_native() -> bool:
    '''
    Whether the default path uses the native (JAX) engine.
    '''
    return _USE_NATIVE

def set_native(native: bool) -> None:
    '''
    Select the engine of the default path.
    '''
    global _USE_NATIVE
    _USE_NATIVE = bool(native)

def get_engine(native: Optional[bool] = None) -> BlasEngine:
    '''
    Process-wide engine instance (created on first request, not initialised).
    '''
    native = use_native() if native is None else bool(native)
    if native not in _DEFAULT_ENGINES:
        _DEFAULT_ENGINES[native] = NativeEngine() if native else GenericEngine()
    return _DEFAULT_ENGINES[native]

def init() -> None:
    '''
    Create the default engine contexts: generic always, native when JAX is present.
    '''
    get_engine(False).init()
    if JAX_AVAILABLE:
        get_engine(True).init()

def destroy() -> None:
    '''
    Destroy the default engine contexts. Safe to call at any time.
    '''
    for engine in _DEFAULT_ENGINES.values():
        engine.destroy()

def batch_invert_matrix(ainv        : MatrixLike,
                        a           : MatrixLike,
                        n           : int,
                        batch       : int,
                        precision   : Precision,
                        location    : Location) -> int:
    '''
    Default-path batch inversion; the engine is picked by ``use_native()``
    at the time of the call. See ``BlasEngine.batch_invert_matrix``.
    '''
    return get_engine(use_native()).batch_invert_matrix(ainv, a, n, batch, precision, location)

# ----------------------------------------------------------------------------------------
#! EOF
# ----------------------------------------------------------------------------------------
