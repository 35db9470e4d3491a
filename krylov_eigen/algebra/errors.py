'''
file:       krylov_eigen/algebra/errors.py

Error taxonomy shared by the batched dense backend and the eigensolvers.

- ConfigurationError    : rejected before any operator application or engine work.
- NumericalError        : singular batch element, NaN/Inf in a recurrence coefficient.
- BackendError          : engine context could not be created.

Non-convergence is not an error, it is reported through ``EigenResult.status``.
'''

from typing import Optional, Sequence
from enum import Enum, unique

# -----------------------------------------------------------------------------

@unique
class EigenErrorCode(Enum):
    '''
    Enumeration class for eigensolver and backend error codes.
    '''
    INVALID_PARAM       = 201
    INVALID_KSPACE      = 202
    NOT_HERMITIAN       = 203
    PRECISION_MISMATCH  = 204
    LOCATION_MISMATCH   = 205
    ALIASED_OUTPUT      = 206
    UNKNOWN_SOLVER      = 207
    MAT_SINGULAR        = 208
    NAN_DETECTED        = 209
    BACKEND_INIT        = 210
    BACKEND_DESTROY     = 211
    SOLVER_RELEASED     = 212

    def __str__(self):
        return self.name.replace('_', ' ').title()

    def __repr__(self):
        return f"<{self.__class__.__name__}.{self.name}: '{str(self)}'>"

class EigenSolverError(Exception):
    '''
    Base class for exceptions raised by the eigensolver package.
    '''
    def __init__(self, code: EigenErrorCode, message: Optional[str] = None):
        self.code       = code
        self.message    = message if message else str(code)
        super().__init__(self.message)

    def __str__(self):
        return f"[{self.__class__.__name__} {self.code.name} ({self.code.value})]: {self.message}"

    def __repr__(self):
        return self.__str__()

class ConfigurationError(EigenSolverError):
    '''
    Invalid parameters or an unsupported precision/location/variant combination.
    '''
    def __init__(self, message: str, code: EigenErrorCode = EigenErrorCode.INVALID_PARAM):
        super().__init__(code, message)

class NumericalError(EigenSolverError):
    '''
    Numerical failure. ``batch_indices`` names the offending batch elements of a
    batched inversion, ``ritz_index`` the Lanczos/Arnoldi step or Ritz pair.
    '''
    def __init__(self,
                message         : str,
                code            : EigenErrorCode            = EigenErrorCode.NAN_DETECTED,
                batch_indices   : Optional[Sequence[int]]   = None,
                ritz_index      : Optional[int]             = None):
        self.batch_indices  = list(batch_indices) if batch_indices is not None else None
        self.ritz_index     = ritz_index
        super().__init__(code, message)

class BackendError(EigenSolverError):
    '''
    Engine lifecycle failure (context creation).
    '''
    def __init__(self, message: str, code: EigenErrorCode = EigenErrorCode.BACKEND_INIT):
        super().__init__(code, message)

# -----------------------------------------------------------------------------
#! EOF
# -----------------------------------------------------------------------------
