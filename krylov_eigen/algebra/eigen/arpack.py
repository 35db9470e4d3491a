"""
Bridge to ARPACK through ``scipy.sparse.linalg``.

The operator variant (optionally through its Chebyshev polynomial) is wrapped
in a ``LinearOperator`` acting on flattened fields and handed to ``eigsh``
(Hermitian problems) or ``eigs`` (general problems). ARPACK's own restart
machinery replaces the IRLM/IRAM loops; the results are written back into
the Krylov space with the same conventions as the native solvers.

----------------------------------------------
File        : krylov_eigen/algebra/eigen/arpack.py
----------------------------------------------
"""

from typing import List

import numpy as np
from numpy.typing import NDArray
from scipy.sparse.linalg import LinearOperator, eigs, eigsh, ArpackNoConvergence

from .params import Spectrum
from .result import EigenResult, EigenStatus, empty_result
from .solver import EigenSolver, select_ritz
from ..errors import ConfigurationError, EigenErrorCode
from ..utils import random_field

# ARPACK 'which' for the Hermitian (eigsh) and the general (eigs) drivers
_WHICH_HERMITIAN = {
    Spectrum.SR : 'SA',
    Spectrum.LR : 'LA',
    Spectrum.SM : 'SM',
    Spectrum.LM : 'LM',
}

_WHICH_GENERAL = {
    Spectrum.SR : 'SR',
    Spectrum.LR : 'LR',
    Spectrum.SM : 'SM',
    Spectrum.LM : 'LM',
    Spectrum.SI : 'SI',
    Spectrum.LI : 'LI',
}

class ArpackEigenSolver(EigenSolver):
    '''
    ARPACK eigensolver (``scipy.sparse.linalg.eigsh`` / ``eigs``).

    ``ncv = n_max``, ``maxiter = max_restarts``; an ``ArpackNoConvergence``
    is turned into an ``EXHAUSTED`` result with the converged pairs.
    '''

    @property
    def hermitian(self) -> bool:
        return self.params.variant.is_normal or self.operator.hermitian

    def _linear_operator(self, dtype) -> LinearOperator:
        shape   = self.operator.field_shape
        n       = self.operator.size

        def _mv(x: NDArray) -> NDArray:
            x_field = np.asarray(x).reshape(shape).astype(dtype, copy=False)
            out     = np.empty(shape, dtype=dtype)
            self._apply(out, x_field)
            return out.reshape(-1)

        return LinearOperator((n, n), matvec=_mv, dtype=dtype)

    def solve(self, kspace: List[NDArray], evals: List[complex]) -> EigenResult:
        self._check_open()
        p       = self.params
        self._check_kspace(kspace, p.n_ev)
        evals.clear()
        self.n_matvec   = 0
        self.restarts   = 0

        n       = self.operator.size
        dtype   = kspace[0].dtype
        crit    = Spectrum.LM if p.use_poly_acc else p.spectrum
        table   = _WHICH_HERMITIAN if self.hermitian else _WHICH_GENERAL
        if crit not in table:
            raise ConfigurationError(f"Spectrum {crit} is not available for a Hermitian ARPACK solve")
        if not self.hermitian and not np.iscomplexobj(kspace[0]):
            raise ConfigurationError("A non-Hermitian ARPACK solve requires complex Krylov vectors", EigenErrorCode.PRECISION_MISMATCH)
        k_max   = n - 1 if self.hermitian else n - 2
        if p.n_ev > k_max:
            raise ConfigurationError(f"ARPACK requires n_ev <= {k_max} for a field of dimension {n}", EigenErrorCode.INVALID_KSPACE)

        v0 = np.array(kspace[0].reshape(-1), copy=True)
        if np.linalg.norm(v0) == 0.0:
            v0 = random_field((n,), dtype, self.rng)

        kwargs  = dict(k=p.n_ev, which=table[crit], tol=p.tol, ncv=min(max(p.n_max, p.n_ev + 2), n), maxiter=max(p.max_restarts, 1), v0=v0)
        driver  = eigsh if self.hermitian else eigs
        self.logger.debug(f"ARPACK {driver.__name__}: {p.summary()}", lvl=0)

        status  = EigenStatus.CONVERGED
        try:
            vals, vecs = driver(self._linear_operator(dtype), **kwargs)
        except ArpackNoConvergence as e:
            vals, vecs  = e.eigenvalues, e.eigenvectors
            status      = EigenStatus.EXHAUSTED
        if len(vals) == 0:
            self.logger.warning("ARPACK returned no converged pairs", lvl=1)
            return empty_result(status, 0, self.n_matvec)

        vecs = np.asarray(vecs)
        vecs = vecs / np.linalg.norm(vecs, axis=0, keepdims=True)
        if not np.iscomplexobj(kspace[0]):
            vecs = vecs.real
        vals = np.asarray(vals, dtype=complex)

        n_conv  = len(vals)
        shape   = self.operator.field_shape
        for i in range(n_conv):
            kspace[i][...] = vecs[:, i].reshape(shape)

        if p.use_poly_acc:
            tmp = np.empty_like(kspace[0])
            for i in range(n_conv):
                self._apply(tmp, kspace[i], accelerated=False)
                vals[i] = np.vdot(kspace[i], tmp)

        order   = select_ritz(vals, p.spectrum)
        rows    = [kspace[i].copy() for i in order]
        for i, row in enumerate(rows):
            kspace[i][...] = row
        vals    = vals[order]
        if self.hermitian:
            vals = vals.real.astype(complex)

        evals.extend(complex(x) for x in vals)
        residuals = self.residual_norms(kspace[:n_conv], vals)
        if status is EigenStatus.EXHAUSTED:
            self.logger.warning(f"ARPACK did not converge: {n_conv} of {p.n_ev} pairs", lvl=1)
        return EigenResult(vals, status, n_conv, self.restarts, self.n_matvec, residuals)

# ----------------------------------------------------------------------------------------
#! EOF
# ----------------------------------------------------------------------------------------
