r"""
Krylov eigensolver contract.

``EigenSolver`` is the capability interface shared by the concrete algorithms
(IRLM, IRAM, ARPACK bridge) and the deflation decorator. Concrete solvers are
built through the factory (``EigenSolver.create`` or ``create_eigensolver``).

Conventions
-----------
    - The Krylov space ``kspace`` is a list of preallocated NumPy arrays of the
      operator's ``field_shape``. It belongs to the caller, the solver writes
      into its elements in place and never rebinds them.
    - ``evals`` is a list that is cleared and filled with Python ``complex``
      values; ``evals[i]`` belongs to ``kspace[i]``.
    - Inner products are :math:`\langle a, b \rangle = a^\dagger b` over the
      flattened fields (``np.vdot``).

Shared primitives (static, usable without a solver instance):

    - matvec                : operator variant M, M^dag, M^dag M, M M^dag
    - cheby_op              : Chebyshev polynomial of the operator variant
    - orthogonalise         : classical Gram-Schmidt with DGKS re-orthogonalisation
    - block_orthogonalise   : same guarantee through the Gram matrix and the batched backend
    - deflate / project_out : eigen-deflation with known eigenpairs

----------------------------------------------
File        : krylov_eigen/algebra/eigen/solver.py
----------------------------------------------
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .params import EigParam, OperatorVariant, Spectrum
from .result import EigenResult
from .operator import Operator
from ..errors import ConfigurationError, EigenErrorCode, EigenSolverError
from ..utils import default_rng, random_field
from ..blas_lapack import BatchedDenseSolver
from ...common.flog import get_global_logger

if TYPE_CHECKING:
    from ...common.flog import Logger

# DGKS criterion: re-orthogonalise when a pass shrinks the vector below 1/sqrt(2) of its norm
_DGKS_ETA       = 1.0 / np.sqrt(2.0)
_MAX_PASSES     = 3

# ----------------------------------------------------------------------------------------

def _as_rows(basis: Sequence[NDArray], count: int) -> NDArray:
    ''' Stack the first ``count`` fields as rows of a (count, N) matrix. '''
    return np.stack([np.asarray(b).reshape(-1) for b in basis[:count]])

def select_ritz(values: NDArray, spectrum: Spectrum) -> NDArray:
    '''
    Indices of ``values`` ordered wanted-first according to ``spectrum``.
    The sort is stable, ties keep their original order.
    '''
    values = np.asarray(values)
    keys = {
        Spectrum.SR : lambda v: v.real,
        Spectrum.LR : lambda v: -v.real,
        Spectrum.SM : lambda v: np.abs(v),
        Spectrum.LM : lambda v: -np.abs(v),
        Spectrum.SI : lambda v: np.imag(v),
        Spectrum.LI : lambda v: -np.imag(v),
    }
    return np.argsort(keys[spectrum](values), kind='stable')

# ----------------------------------------------------------------------------------------
#! Solver contract
# ----------------------------------------------------------------------------------------

class EigenSolver(ABC):
    '''
    Base class of the Krylov eigensolvers.

    Parameters:
    -----------
        params:
            Validated on construction; immutable for the lifetime of the solver.
        operator:
            Linear operator (``Operator`` contract).
        logger:
            Defaults to the global logger.
        blas:
            Batched dense solver for block orthogonalisation. When omitted the
            solver creates one from ``params.native_blas`` and releases it in ``close``.
    '''

    def __init__(self,
                params      : EigParam,
                operator    : Operator,
                logger      : Optional['Logger']            = None,
                blas        : Optional[BatchedDenseSolver]  = None):
        if not isinstance(params, EigParam):
            raise ConfigurationError(f"params must be an EigParam, got {type(params).__name__}")
        self.params         = params.validate()
        self.operator       = operator
        self.logger         = logger if logger is not None else get_global_logger()
        self._owns_blas     = blas is None
        self.blas           = blas if blas is not None else BatchedDenseSolver(native=params.native_blas, logger=self.logger)
        self.rng            = default_rng(params.seed)
        self.n_matvec       = 0
        self.restarts       = 0
        self._closed        = False

    # ------------------------------------------------------------------------------------
    #! Lifecycle
    # ------------------------------------------------------------------------------------

    def close(self) -> None:
        '''
        Release the owned resources. Calling it again is a no-op.
        '''
        if self._closed:
            return
        if self._owns_blas:
            self.blas.destroy()
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self):
        if self._closed:
            raise EigenSolverError(EigenErrorCode.SOLVER_RELEASED, f"{self.__class__.__name__} was already released")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # ------------------------------------------------------------------------------------
    #! Entry point
    # ------------------------------------------------------------------------------------

    @abstractmethod
    def solve(self, kspace: List[NDArray], evals: List[complex]) -> EigenResult:
        '''
        Compute the requested eigenpairs.

        Args:
            kspace: Krylov space, ``kspace[0]`` is the starting vector (random when zero).
            evals:  Output list of eigenvalues.

        Returns:
            EigenResult describing ``evals`` and ``kspace[:len(evals)]``.
        '''

    def __call__(self, kspace: List[NDArray], evals: List[complex]) -> EigenResult:
        return self.solve(kspace, evals)

    @staticmethod
    def create(params: EigParam, operator: Operator, logger: Optional['Logger'] = None,
            blas: Optional[BatchedDenseSolver] = None) -> 'EigenSolver':
        '''
        Build the concrete solver selected by ``params.eig_type``.
        '''
        from .factory import create_eigensolver
        return create_eigensolver(params, operator, logger=logger, blas=blas)

    # ------------------------------------------------------------------------------------
    #! Operator application
    # ------------------------------------------------------------------------------------

    @staticmethod
    def matvec(mat: Operator, out: NDArray, x: NDArray, params: EigParam) -> None:
        '''
        Apply the operator variant selected by ``params.variant``:
        ``out <- M x``, ``M^dag x``, ``M^dag M x`` or ``M M^dag x``.
        '''
        variant = params.variant
        if variant is OperatorVariant.M or variant is OperatorVariant.MDAG:
            mat.apply(out, x, variant)
            return
        tmp = np.empty_like(out)
        if variant is OperatorVariant.MDAGM:
            mat.apply(tmp, x, OperatorVariant.M)
            mat.apply(out, tmp, OperatorVariant.MDAG)
        else:
            mat.apply(tmp, x, OperatorVariant.MDAG)
            mat.apply(out, tmp, OperatorVariant.M)

    @staticmethod
    def cheby_op(mat: Operator, out: NDArray, x: NDArray, params: EigParam) -> None:
        r'''
        Chebyshev polynomial :math:`T_d(\hat{A})` of the operator variant applied to ``x``.

        The interval ``[a_min, a_max]`` is mapped onto ``[-1, 1]``:

        .. math::
            \hat{A} = \frac{2 A - (a_{max} + a_{min})}{a_{max} - a_{min}},
            \quad T_{k+1} = 2 \hat{A} T_k - T_{k-1}

        so the spectrum inside the interval is damped (``|T_d| <= 1``) and the
        spectrum outside is amplified. Uses exactly ``poly_deg`` applications.
        '''
        deg     = int(params.poly_deg)
        if deg < 1:
            raise ConfigurationError(f"Chebyshev degree must be >= 1, got {deg}")
        d1      = 2.0 / (params.a_max - params.a_min)
        d2      = -(params.a_max + params.a_min) / (params.a_max - params.a_min)

        tmp     = np.empty_like(out)
        EigenSolver.matvec(mat, tmp, x, params)
        t_prev  = np.array(x, dtype=out.dtype, copy=True)
        t_curr  = d1 * tmp + d2 * t_prev
        for _ in range(2, deg + 1):
            EigenSolver.matvec(mat, tmp, t_curr, params)
            t_next  = 2.0 * (d1 * tmp + d2 * t_curr) - t_prev
            t_prev  = t_curr
            t_curr  = t_next
        out[...] = t_curr

    def _apply(self, out: NDArray, x: NDArray, accelerated: bool = True,
               mat: Optional[Operator] = None, params: Optional[EigParam] = None) -> None:
        ''' Operator (or its Chebyshev polynomial) with application bookkeeping. '''
        mat         = self.operator if mat is None else mat
        params      = self.params if params is None else params
        per_call    = 2 if params.variant.is_normal else 1
        if accelerated and params.use_poly_acc:
            EigenSolver.cheby_op(mat, out, x, params)
            self.n_matvec += per_call * params.poly_deg
        else:
            EigenSolver.matvec(mat, out, x, params)
            self.n_matvec += per_call

    # ------------------------------------------------------------------------------------
    #! Orthogonalisation
    # ------------------------------------------------------------------------------------

    @staticmethod
    def orthogonalise(basis: Sequence[NDArray], vectors: Sequence[NDArray], count: int) -> NDArray:
        '''
        Orthogonalise each of ``vectors`` (in place) against ``basis[:count]``.

        Classical Gram-Schmidt with the DGKS correction: a pass is repeated
        when it reduces the vector norm below ``1/sqrt(2)`` of its value before
        the pass (at most three passes). The basis is assumed orthonormal.

        Returns:
            Accumulated projection coefficients, shape ``(count, len(vectors))``.
        '''
        dtype   = np.result_type(*(np.asarray(v).dtype for v in vectors), *(np.asarray(b).dtype for b in basis[:count]))
        coeffs  = np.zeros((count, len(vectors)), dtype=dtype)
        if count == 0:
            return coeffs

        V = _as_rows(basis, count)
        for j, w in enumerate(vectors):
            for _ in range(_MAX_PASSES):
                norm_before = np.linalg.norm(w)
                if norm_before == 0.0:
                    break
                c               = V.conj() @ w.reshape(-1)
                w              -= (V.T @ c).reshape(w.shape)
                coeffs[:, j]   += c
                if np.linalg.norm(w) > _DGKS_ETA * norm_before:
                    break
        return coeffs

    @staticmethod
    def block_orthogonalise(basis: Sequence[NDArray], vectors: Sequence[NDArray], count: int,
                            blas: Optional[BatchedDenseSolver] = None) -> NDArray:
        r'''
        Block variant of ``orthogonalise``.

        With :math:`V` the first ``count`` basis vectors and :math:`R` the
        vectors to orthogonalise (rows), the projection coefficients solve the
        Gram system :math:`G C = V^* R^T`, :math:`G = V^* V^T`. :math:`G^{-1}`
        comes from the batched dense backend, so a basis that is not exactly
        orthonormal is handled correctly. The DGKS repetition rule applies to
        the block norm.

        Returns:
            Accumulated coefficients, shape ``(count, len(vectors))``.
        '''
        dtype   = np.result_type(*(np.asarray(v).dtype for v in vectors), *(np.asarray(b).dtype for b in basis[:count]))
        coeffs  = np.zeros((count, len(vectors)), dtype=dtype)
        if count == 0 or len(vectors) == 0:
            return coeffs

        own_blas    = blas is None
        blas        = BatchedDenseSolver() if own_blas else blas
        try:
            V       = _as_rows(basis, count)
            G       = V.conj() @ V.T
            G_inv   = blas.invert_matrices(np.ascontiguousarray(G))
            for _ in range(_MAX_PASSES):
                R           = _as_rows(vectors, len(vectors))
                norm_before = np.linalg.norm(R)
                if norm_before == 0.0:
                    break
                C       = G_inv @ (V.conj() @ R.T)
                R       = R - (V.T @ C).T
                for w, row in zip(vectors, R):
                    w[...] = row.reshape(w.shape)
                coeffs += C
                if np.linalg.norm(R) > _DGKS_ETA * norm_before:
                    break
        finally:
            if own_blas:
                blas.destroy()
        return coeffs

    # ------------------------------------------------------------------------------------
    #! Deflation
    # ------------------------------------------------------------------------------------

    @staticmethod
    def deflate(vec_defl: NDArray, vec: NDArray, evecs: Sequence[NDArray], evals: Sequence[complex],
                accumulate: bool = False) -> None:
        r'''
        Eigen-deflation of ``vec``:

        .. math::
            v_{defl} = \sum_i \frac{v_i \langle v_i, vec \rangle}{\lambda_i}

        i.e. the action of :math:`M^{-1}` restricted to the known eigenspace.
        The residual ``vec - M vec_defl`` has no component along the ``v_i``.
        With ``accumulate`` the result is added to ``vec_defl``.
        '''
        if len(evecs) < len(evals):
            raise ConfigurationError(f"deflate: {len(evals)} eigenvalues but only {len(evecs)} eigenvectors")
        if not accumulate:
            vec_defl[...] = 0
        real_out = not np.iscomplexobj(vec_defl)
        for v, lam in zip(evecs, evals):
            if lam == 0:
                raise ConfigurationError("deflate: zero eigenvalue cannot be inverted")
            coeff = np.vdot(v, vec) / lam
            vec_defl += (coeff.real if real_out else coeff) * v

    @staticmethod
    def project_out(vec: NDArray, evecs: Sequence[NDArray]) -> NDArray:
        '''
        Remove the span of ``evecs`` (assumed orthonormal) from ``vec`` in place.
        Returns the removed coefficients.
        '''
        return EigenSolver.orthogonalise(evecs, [vec], len(evecs))[:, 0]

    # ------------------------------------------------------------------------------------
    #! Helpers for the concrete solvers
    # ------------------------------------------------------------------------------------

    def _check_kspace(self, kspace: List[NDArray], n_required: int) -> None:
        '''
        Reject a Krylov space that cannot hold the requested subspace.
        '''
        if not isinstance(kspace, list):
            raise ConfigurationError(f"kspace must be a list of arrays, got {type(kspace).__name__}", EigenErrorCode.INVALID_KSPACE)
        if len(kspace) < n_required:
            raise ConfigurationError(f"kspace holds {len(kspace)} vectors, at least {n_required} required", EigenErrorCode.INVALID_KSPACE)
        shape, dtype = self.operator.field_shape, None
        for i, v in enumerate(kspace):
            if not isinstance(v, np.ndarray) or v.shape != shape:
                raise ConfigurationError(f"kspace[{i}] must be an array of shape {shape}", EigenErrorCode.INVALID_KSPACE)
            dtype = v.dtype if dtype is None else dtype
            if v.dtype != dtype:
                raise ConfigurationError(f"kspace[{i}] has dtype {v.dtype}, expected {dtype}", EigenErrorCode.PRECISION_MISMATCH)
        if not np.issubdtype(dtype, np.inexact):
            raise ConfigurationError(f"kspace dtype must be floating point, got {dtype}", EigenErrorCode.PRECISION_MISMATCH)
        if np.result_type(dtype, self.operator.dtype) != dtype:
            raise ConfigurationError(f"kspace dtype {dtype} cannot hold the operator output ({self.operator.dtype})",
                                     EigenErrorCode.PRECISION_MISMATCH)

    def _start_vector(self, v0: NDArray, basis: Sequence[NDArray] = ()) -> None:
        '''
        Normalise ``v0`` in place, replacing it with a random field when it is zero
        (or lies entirely in the span of ``basis``).
        '''
        if len(basis) > 0:
            EigenSolver.orthogonalise(basis, [v0], len(basis))
        norm = np.linalg.norm(v0)
        if norm == 0.0 or not np.isfinite(norm):
            v0[...] = random_field(v0.shape, v0.dtype, self.rng)
            if len(basis) > 0:
                EigenSolver.orthogonalise(basis, [v0], len(basis))
            norm = np.linalg.norm(v0)
        v0 /= norm

    def residual_norms(self, vectors: Sequence[NDArray], values: Sequence[complex]) -> NDArray:
        r'''
        True residuals :math:`\|A v_i - \lambda_i v_i\|` with the plain operator variant.
        '''
        res = np.zeros(len(values))
        if len(values) == 0:
            return res
        tmp = np.empty_like(vectors[0])
        for i, (v, lam) in enumerate(zip(vectors, values)):
            self._apply(tmp, v, accelerated=False)
            lam_cast    = lam if np.iscomplexobj(tmp) else np.real(lam)
            res[i]      = np.linalg.norm(tmp - lam_cast * v)
        return res

    def __repr__(self):
        return f"{self.__class__.__name__}({self.params.summary()})"

# ----------------------------------------------------------------------------------------
#! EOF
# ----------------------------------------------------------------------------------------
