"""
Eigenvalue Solver Result Types

Standardized result container for the Krylov eigensolvers. The eigenvectors
themselves live in the caller's Krylov space, the result only describes them.
"""

from enum import Enum, unique
from typing import NamedTuple, Optional

import numpy as np
from numpy.typing import NDArray

from ..errors import (
    EigenErrorCode,
    EigenSolverError,
    ConfigurationError,
    NumericalError,
    BackendError,
)

@unique
class EigenStatus(Enum):
    '''
    Terminal state of a solve.
    '''
    CONVERGED   = 'converged'       # all requested pairs converged
    EXHAUSTED   = 'exhausted'       # restart budget spent, partial result

    def __str__(self):
        return self.value

# ---------------------------------------------------------------------------------

class EigenResult(NamedTuple):
    r"""
    Result of a Krylov eigensolve.

    Attributes:
        eigenvalues:
            Converged eigenvalues, ordered by the spectrum criterion. Entry ``i``
            belongs to ``kspace[i]``.
        status:
            ``EigenStatus.CONVERGED`` or ``EigenStatus.EXHAUSTED``.
        n_converged:
            Number of converged pairs (``len(eigenvalues)``).
        restarts:
            Implicit restarts performed.
        n_matvec:
            Operator applications (composed variants count twice).
        residual_norms:
            True residuals :math:`\|A v - \lambda v\|` of the returned pairs.
        singular_values:
            Singular values when SVD recovery was requested.
    """
    eigenvalues     : NDArray
    status          : EigenStatus
    n_converged     : int
    restarts        : int               = 0
    n_matvec        : int               = 0
    residual_norms  : Optional[NDArray] = None
    singular_values : Optional[NDArray] = None

    @property
    def converged(self) -> bool:
        return self.status is EigenStatus.CONVERGED

    def __repr__(self):
        return (f"EigenResult(n_converged={self.n_converged}, "
                f"status={self.status}, restarts={self.restarts}, n_matvec={self.n_matvec})")

    def __str__(self):
        return f'status={self.status}, converged={self.n_converged}, restarts={self.restarts}'

def empty_result(status: EigenStatus = EigenStatus.EXHAUSTED, restarts: int = 0, n_matvec: int = 0) -> EigenResult:
    return EigenResult(np.zeros(0, dtype=complex), status, 0, restarts, n_matvec, np.zeros(0))

__all__ = [
    'EigenStatus', 'EigenResult', 'empty_result',
    'EigenErrorCode', 'EigenSolverError', 'ConfigurationError', 'NumericalError', 'BackendError',
]

# ------------------------------------------------------------------------------------------------
#! EOF
# ------------------------------------------------------------------------------------------------
