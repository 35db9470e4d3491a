r"""
Linear operators acting on vector fields.

The eigensolvers only ever see an operator through ``apply(out, x, variant)``:
the operator writes :math:`M x` or :math:`M^\dagger x` into ``out`` and never
modifies ``x``. Fields are NumPy arrays of arbitrary shape ``field_shape``;
the operator acts on their flattened view.

Composed variants (M^dag M, M M^dag) are normally built by the solver
(``EigenSolver.matvec``), ``apply`` accepts them too through a double
application into a temporary.

----------------------------------------------
File        : krylov_eigen/algebra/eigen/operator.py
----------------------------------------------
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple, Union

import numpy as np
import scipy.sparse as sp
from numpy.typing import NDArray

from .params import OperatorVariant
from ..errors import ConfigurationError

# ----------------------------------------------------------------------------------------

class Operator(ABC):
    '''
    Abstract linear operator on vector fields.
    '''

    def __init__(self, field_shape: Tuple[int, ...], dtype, hermitian: bool = False):
        self.field_shape    = tuple(int(s) for s in field_shape)
        self.dtype          = np.dtype(dtype)
        self.hermitian      = bool(hermitian)

    @property
    def size(self) -> int:
        return int(np.prod(self.field_shape))

    # ------------------------------------------------------------------------------------

    @abstractmethod
    def _apply_m(self, out: NDArray, x: NDArray) -> None:
        ''' out <- M x on flattened fields '''

    @abstractmethod
    def _apply_mdag(self, out: NDArray, x: NDArray) -> None:
        ''' out <- M^dag x on flattened fields '''

    def apply(self, out: NDArray, x: NDArray, variant: Union[OperatorVariant, str] = OperatorVariant.M) -> None:
        '''
        Apply the operator ``variant`` to ``x`` writing the result into ``out``.
        '''
        variant = OperatorVariant.from_any(variant)
        if out.shape != self.field_shape or x.shape != self.field_shape:
            raise ConfigurationError(f"Field shape mismatch: operator acts on {self.field_shape}, "
                                     f"got out={out.shape}, x={x.shape}")
        o, v = out.reshape(-1), x.reshape(-1)
        if variant is OperatorVariant.M:
            self._apply_m(o, v)
        elif variant is OperatorVariant.MDAG:
            self._apply_mdag(o, v)
        else:
            tmp = np.empty_like(o)
            if variant is OperatorVariant.MDAGM:
                self._apply_m(tmp, v)
                self._apply_mdag(o, tmp)
            else:
                self._apply_mdag(tmp, v)
                self._apply_m(o, tmp)

    def __call__(self, x: NDArray, variant: Union[OperatorVariant, str] = OperatorVariant.M) -> NDArray:
        out = np.empty(self.field_shape, dtype=np.result_type(self.dtype, x.dtype))
        self.apply(out, x, variant)
        return out

    def __repr__(self):
        return f"{self.__class__.__name__}(field_shape={self.field_shape}, dtype={self.dtype}, hermitian={self.hermitian})"

# ----------------------------------------------------------------------------------------

class DenseOperator(Operator):
    '''
    Operator given by an explicit (dense or scipy sparse) square matrix.
    '''

    def __init__(self, matrix, field_shape: Optional[Tuple[int, ...]] = None, hermitian: Optional[bool] = None, tol: float = 1e-12):
        if not sp.issparse(matrix):
            matrix = np.asarray(matrix)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise ConfigurationError(f"Operator matrix must be square, got shape {matrix.shape}")
        n = matrix.shape[0]
        if field_shape is None:
            field_shape = (n,)
        if int(np.prod(field_shape)) != n:
            raise ConfigurationError(f"field_shape {field_shape} does not match matrix dimension {n}")
        if hermitian is None:
            hermitian = DenseOperator._is_hermitian(matrix, tol)
        super().__init__(field_shape, matrix.dtype, hermitian)
        self.matrix     = matrix
        self._adjoint   = matrix.conj().T

    @staticmethod
    def _is_hermitian(A, tol=1e-12):
        '''Check if A is symmetric/Hermitian, works for dense and sparse.'''
        if sp.issparse(A):
            diff = (A - A.conj().T).tocsr()
            return diff.nnz == 0 or bool(np.all(np.abs(diff.data) < tol))
        return bool(np.allclose(A, A.conj().T, atol=tol))

    def _apply_m(self, out, x):
        out[:] = self.matrix @ x

    def _apply_mdag(self, out, x):
        out[:] = self._adjoint @ x

# ----------------------------------------------------------------------------------------

class DiagonalOperator(Operator):
    '''
    Diagonal operator, the classical test case with a known spectrum.
    '''

    def __init__(self, diag, field_shape: Optional[Tuple[int, ...]] = None):
        diag = np.asarray(diag)
        if field_shape is None:
            field_shape = diag.shape
        super().__init__(field_shape, diag.dtype, not np.iscomplexobj(diag) or bool(np.all(diag.imag == 0)))
        self.diag = diag.reshape(-1)

    def _apply_m(self, out, x):
        np.multiply(self.diag, x, out=out)

    def _apply_mdag(self, out, x):
        np.multiply(self.diag.conj(), x, out=out)

# ----------------------------------------------------------------------------------------

class MatrixFreeOperator(Operator):
    '''
    Operator defined by callables acting on fields of shape ``field_shape``.

    Parameters:
    -----------
        matvec:
            ``x -> M x``.
        rmatvec:
            ``x -> M^dag x``; defaults to ``matvec`` when ``hermitian``.
    '''

    def __init__(self,
                matvec      : Callable[[NDArray], NDArray],
                field_shape : Tuple[int, ...],
                dtype                                           = np.complex128,
                rmatvec     : Optional[Callable[[NDArray], NDArray]] = None,
                hermitian   : bool                              = False):
        super().__init__(field_shape, dtype, hermitian)
        if rmatvec is None and hermitian:
            rmatvec = matvec
        self._matvec    = matvec
        self._rmatvec   = rmatvec

    def _apply_m(self, out, x):
        out[:] = np.asarray(self._matvec(x.reshape(self.field_shape))).reshape(-1)

    def _apply_mdag(self, out, x):
        if self._rmatvec is None:
            raise ConfigurationError("Adjoint application requested but no rmatvec was given")
        out[:] = np.asarray(self._rmatvec(x.reshape(self.field_shape))).reshape(-1)

# ----------------------------------------------------------------------------------------
#! EOF
# ----------------------------------------------------------------------------------------
