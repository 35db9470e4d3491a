r"""
Implicitly Restarted Arnoldi Method (IRAM)

Non-Hermitian counterpart of the IRLM: the projection of the operator is an
upper Hessenberg matrix,

    $$
    A V_m = V_m H_m + f_m e_m^T,
    $$

restarted with complex exact shifts (the unwanted Ritz values). There is no
locking: the solve ends when the ``n_ev`` wanted Ritz pairs satisfy
$|f_m|\,|y_i[m-1]| < tol\,|\theta_i|$ simultaneously. The Krylov vectors must be
complex, the Ritz values of a real non-symmetric operator come in conjugate pairs.

----------------------------------------------
File        : krylov_eigen/algebra/eigen/iram.py
----------------------------------------------
"""

from typing import List, Sequence, Tuple

import numpy as np
import scipy.linalg as sla
from numpy.typing import NDArray

from .params import Spectrum
from .result import EigenResult, EigenStatus
from .solver import EigenSolver, select_ritz, _as_rows
from ..errors import ConfigurationError, EigenErrorCode, NumericalError

# ----------------------------------------------------------------------------------------

def apply_hessenberg_shifts(H: NDArray, shifts: Sequence[complex]) -> Tuple[NDArray, NDArray]:
    r'''
    Complex shifted QR steps on the Hessenberg matrix ``H``:
    :math:`H - \mu = Q_i R_i`, :math:`H \to Q_i^\dagger H Q_i`.

    Returns:
        (H', Q) with ``Q`` the accumulated unitary matrix.
    '''
    H = np.array(H, dtype=np.complex128, copy=True)
    m = H.shape[0]
    Q = np.eye(m, dtype=np.complex128)
    I = np.eye(m)
    for mu in shifts:
        Qi, _   = np.linalg.qr(H - mu * I)
        H       = Qi.conj().T @ H @ Qi
        # restore the Hessenberg structure destroyed by rounding
        H       = np.triu(H, k=-1)
        Q       = Q @ Qi
    return H, Q

# ----------------------------------------------------------------------------------------

class IRAM(EigenSolver):
    '''
    Implicitly Restarted Arnoldi eigensolver.

    ``kspace[:n_ev]`` receives the normalised Ritz vectors, ordered by
    ``params.spectrum``.
    '''

    def arnoldi_step(self, v: List[NDArray], f: NDArray, H: NDArray, j: int) -> float:
        '''
        Extend the Arnoldi factorisation by column ``j`` of ``H``; the
        unnormalised residual is left in ``f``. Returns its norm.
        '''
        self._apply(f, v[j])
        norm_aw     = np.linalg.norm(f)
        coeffs      = EigenSolver.orthogonalise(v, [f], j + 1)
        H[:j + 1, j] = coeffs[:, 0]
        beta        = float(np.linalg.norm(f))
        if not (np.all(np.isfinite(coeffs)) and np.isfinite(beta)):
            raise NumericalError(f"Non-finite Arnoldi coefficient at step {j}", EigenErrorCode.NAN_DETECTED, ritz_index=j)

        if beta <= f.size * np.finfo(f.dtype).eps * max(norm_aw, 1.0):
            beta    = 0.0
            f[...]  = 0
            if j + 1 < len(v):
                v[j + 1][...] = 0
                self._start_vector(v[j + 1], v[:j + 1])
        elif j + 1 < len(v):
            np.divide(f, beta, out=v[j + 1])
        if j + 1 < H.shape[0]:
            H[j + 1, j] = beta
        return beta

    # ------------------------------------------------------------------------------------

    def solve(self, kspace: List[NDArray], evals: List[complex]) -> EigenResult:
        self._check_open()
        p       = self.params
        n_kr    = p.n_max
        self._check_kspace(kspace, n_kr)
        if not np.iscomplexobj(kspace[0]):
            raise ConfigurationError("IRAM requires complex Krylov vectors", EigenErrorCode.PRECISION_MISMATCH)
        if self.operator.size < n_kr:
            raise ConfigurationError(f"Field dimension {self.operator.size} is smaller than n_max={n_kr}",
                                     EigenErrorCode.INVALID_KSPACE)

        evals.clear()
        self.n_matvec   = 0
        self.restarts   = 0
        shape           = self.operator.field_shape
        eps             = np.finfo(kspace[0].dtype).eps
        criterion       = Spectrum.LM if p.use_poly_acc else p.spectrum
        V               = kspace[:n_kr]
        H               = np.zeros((n_kr, n_kr), dtype=np.complex128)
        f               = np.zeros_like(kspace[0])
        k               = 0
        beta            = 0.0

        self.logger.debug(f"IRAM start: {p.summary()}", lvl=0)
        self._start_vector(kspace[0])

        while True:
            for j in range(k, n_kr):
                beta = self.arnoldi_step(V, f, H, j)

            theta, Y    = sla.eig(H)
            order       = select_ritz(theta, criterion)
            wanted      = order[:p.n_ev]
            residuals   = beta * np.abs(Y[n_kr - 1, :])
            passed      = [int(i) for i in wanted if residuals[i] < p.tol * max(abs(theta[i]), eps)]
            self.logger.debug(f"restart {self.restarts}: {len(passed)} of {p.n_ev} wanted Ritz pairs converged", lvl=1)

            if len(passed) == p.n_ev or self.restarts >= p.max_restarts:
                break

            # restart: keep n_min, shift out the rest worst-first
            k           = p.n_min
            shifts      = [theta[i] for i in order[::-1][:n_kr - k]]
            Hs, Q       = apply_hessenberg_shifts(H, shifts)
            Vrows       = _as_rows(V, n_kr)
            kept        = Q[:, :k].T @ Vrows
            fnew        = Hs[k, k - 1] * (Q[:, k] @ Vrows) + Q[n_kr - 1, k - 1] * f.reshape(-1)
            for c in range(k):
                V[c][...] = kept[c].reshape(shape)

            f[...]      = fnew.reshape(shape)
            EigenSolver.orthogonalise(V, [f], k)
            beta        = float(np.linalg.norm(f))
            H[...]      = 0
            H[:k, :k]   = Hs[:k, :k]
            if beta <= f.size * eps * max(float(np.max(np.abs(theta))), 1.0):
                H[k, k - 1] = 0.0
                V[k][...]   = 0
                self._start_vector(V[k], V[:k])
            else:
                H[k, k - 1] = beta
                np.divide(f, beta, out=V[k])
            self.restarts += 1

        status      = EigenStatus.CONVERGED if len(passed) == p.n_ev else EigenStatus.EXHAUSTED
        passed_set  = set(passed)
        chosen      = [int(i) for i in wanted if int(i) in passed_set]
        Vrows       = _as_rows(V, n_kr)
        X           = Y[:, chosen].T @ Vrows
        if chosen:
            X      /= np.linalg.norm(X, axis=1, keepdims=True)
        for i, row in enumerate(X):
            kspace[i][...] = row.reshape(shape)

        lam = np.array([theta[i] for i in chosen], dtype=complex)
        if p.use_poly_acc and len(chosen):
            tmp = np.empty_like(kspace[0])
            for i in range(len(chosen)):
                self._apply(tmp, kspace[i], accelerated=False)
                lam[i] = np.vdot(kspace[i], tmp)
            order = select_ritz(lam, p.spectrum)
            X     = _as_rows(kspace, len(chosen))[order]
            for i, row in enumerate(X):
                kspace[i][...] = row.reshape(shape)
            lam   = lam[order]

        evals.extend(complex(x) for x in lam)
        residuals = self.residual_norms(kspace[:len(chosen)], lam)
        if status is EigenStatus.EXHAUSTED:
            self.logger.warning(f"IRAM exhausted {self.restarts} restarts with {len(chosen)} of {p.n_ev} pairs converged", lvl=1)
        return EigenResult(lam, status, len(chosen), self.restarts, self.n_matvec, residuals)

# ----------------------------------------------------------------------------------------
#! EOF
# ----------------------------------------------------------------------------------------
