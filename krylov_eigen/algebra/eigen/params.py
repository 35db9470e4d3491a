"""
Eigensolver parameters.

The ``EigParam`` record is populated once by the caller and stays immutable
for the lifetime of one solve. Enumerations accept their names as strings
(case-insensitive), so a parameter set can be read from a plain mapping:

    >>> params = EigParam.from_dict({'eig_type': 'irlm', 'n_ev': 4, 'n_min': 8, 'n_max': 20,
    ...                              'spectrum': 'SR', 'variant': 'M'})

----------------------------------------------
File        : krylov_eigen/algebra/eigen/params.py
----------------------------------------------
"""

from dataclasses import dataclass, fields, replace as dc_replace
from enum import Enum, unique
from typing import Any, Dict, Mapping, Optional, Union

from ..errors import ConfigurationError, EigenErrorCode

# ----------------------------------------------------------------------------------------
#! Enumerations
# ----------------------------------------------------------------------------------------

class _NamedEnum(Enum):
    '''
    Enum that can be built from its (case-insensitive) name.
    '''

    @classmethod
    def from_any(cls, value: Union[str, 'Enum']):
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper().replace('-', '_').replace('+', '_')
            if key in cls.__members__:
                return cls.__members__[key]
            for member in cls:
                if str(member.value).upper() == key:
                    return member
        raise ConfigurationError(f"Unknown {cls.__name__}: {value!r}. Options: {[m.name for m in cls]}",
                                 EigenErrorCode.UNKNOWN_SOLVER if cls is EigType else EigenErrorCode.INVALID_PARAM)

    def __str__(self):
        return self.name

@unique
class EigType(_NamedEnum):
    '''
    Eigensolver algorithm.
    '''
    IRLM    = 'irlm'        # implicitly restarted Lanczos
    IRAM    = 'iram'        # implicitly restarted Arnoldi
    ARPACK  = 'arpack'      # ARPACK through scipy

@unique
class OperatorVariant(_NamedEnum):
    '''
    Which operator the eigensolver works with.
    '''
    M       = 'M'
    MDAG    = 'Mdag'
    MDAGM   = 'MdagM'
    MMDAG   = 'MMdag'

    @property
    def is_normal(self) -> bool:
        ''' M^dag M and M M^dag are Hermitian positive semi-definite by construction. '''
        return self in (OperatorVariant.MDAGM, OperatorVariant.MMDAG)

@unique
class Spectrum(_NamedEnum):
    '''
    Which part of the spectrum is wanted.
    '''
    SR      = 'smallest_real'
    LR      = 'largest_real'
    SM      = 'smallest_magnitude'
    LM      = 'largest_magnitude'
    SI      = 'smallest_imag'
    LI      = 'largest_imag'

# ----------------------------------------------------------------------------------------
#! Parameters
# ----------------------------------------------------------------------------------------

@dataclass(frozen=True)
class EigParam:
    r"""
    Configuration of one eigensolve.

    Attributes:
        eig_type:
            Algorithm used by the factory.
        n_ev:
            Number of eigenpairs requested.
        n_min, n_max:
            Krylov subspace bounds. The subspace grows to ``n_max`` and is
            truncated back to ``n_min`` at each implicit restart.
        tol:
            Relative residual tolerance, :math:`\|A v - \lambda v\| < tol\,|\lambda|`.
        use_poly_acc, poly_deg, a_min, a_max:
            Chebyshev acceleration. ``[a_min, a_max]`` is the part of the
            spectrum that gets suppressed (mapped onto :math:`[-1, 1]`).
        variant:
            Operator applied: M, M^dag, M^dag M or M M^dag.
        spectrum:
            Selection criterion of the wanted Ritz values.
        max_restarts:
            Restart budget, exhausted runs return the converged subset.
        native_blas:
            Engine of the batched dense backend; ``None`` follows ``use_native()``.
        use_block_ortho:
            Re-orthogonalise with the block (Gram matrix) algorithm.
        compute_svd:
            After the solve, recover singular vectors into ``kspace[n_ev:2 n_ev]``.
        seed:
            Seed for random start/restart vectors (``None`` = ``PY_GLOBAL_SEED``).
        verbose:
            Per-restart progress on the info level.
    """
    eig_type        : EigType           = EigType.IRLM
    n_ev            : int               = 4
    n_min           : int               = 8
    n_max           : int               = 20
    tol             : float             = 1e-10
    use_poly_acc    : bool              = False
    poly_deg        : int               = 0
    a_min           : float             = 0.0
    a_max           : float             = 0.0
    variant         : OperatorVariant   = OperatorVariant.M
    spectrum        : Spectrum          = Spectrum.SR
    max_restarts    : int               = 100
    native_blas     : Optional[bool]    = None
    use_block_ortho : bool              = False
    compute_svd     : bool              = False
    seed            : Optional[int]     = None
    verbose         : bool              = False

    def __post_init__(self):
        # accept strings for the enumerated fields
        object.__setattr__(self, 'eig_type',    EigType.from_any(self.eig_type))
        object.__setattr__(self, 'variant',     OperatorVariant.from_any(self.variant))
        object.__setattr__(self, 'spectrum',    Spectrum.from_any(self.spectrum))

    # ------------------------------------------------------------------------------------

    def validate(self) -> 'EigParam':
        '''
        Check the internal consistency of the parameters.

        Raises:
            ConfigurationError: describing the first inconsistency found.
        '''
        if int(self.n_ev) < 1:
            raise ConfigurationError(f"n_ev must be >= 1, got {self.n_ev}")
        if self.n_min < self.n_ev:
            raise ConfigurationError(f"n_min ({self.n_min}) must be >= n_ev ({self.n_ev})")
        if self.n_max <= self.n_min:
            raise ConfigurationError(f"n_max ({self.n_max}) must be > n_min ({self.n_min})")
        if not self.tol > 0.0:
            raise ConfigurationError(f"tol must be positive, got {self.tol}")
        if self.max_restarts < 0:
            raise ConfigurationError(f"max_restarts must be >= 0, got {self.max_restarts}")
        if self.use_poly_acc:
            if self.poly_deg < 1:
                raise ConfigurationError(f"poly_deg must be >= 1 with polynomial acceleration, got {self.poly_deg}")
            if not self.a_max > self.a_min:
                raise ConfigurationError(f"a_max ({self.a_max}) must be > a_min ({self.a_min})")
        if self.compute_svd:
            if not self.variant.is_normal:
                raise ConfigurationError(f"compute_svd requires MdagM or MMdag, got {self.variant}")
            if self.n_max < 2 * self.n_ev:
                raise ConfigurationError(f"compute_svd requires n_max >= 2*n_ev, got n_max={self.n_max}, n_ev={self.n_ev}",
                                         EigenErrorCode.INVALID_KSPACE)
        return self

    def replace(self, **changes) -> 'EigParam':
        return dc_replace(self, **changes)

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]) -> 'EigParam':
        known   = {f.name for f in fields(cls)}
        unknown = set(mapping) - known
        if unknown:
            raise ConfigurationError(f"Unknown eigensolver parameters: {sorted(unknown)}")
        return cls(**dict(mapping))

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def summary(self) -> str:
        acc = f", poly(deg={self.poly_deg}, [{self.a_min:g}, {self.a_max:g}])" if self.use_poly_acc else ""
        return (f"{self.eig_type}: n_ev={self.n_ev}, n_kr=[{self.n_min}, {self.n_max}], tol={self.tol:.1e}, "
                f"op={self.variant.value}, spectrum={self.spectrum}, max_restarts={self.max_restarts}{acc}")

# ----------------------------------------------------------------------------------------
#! EOF
# ----------------------------------------------------------------------------------------
