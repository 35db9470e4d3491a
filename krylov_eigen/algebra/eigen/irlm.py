r"""
Implicitly Restarted Lanczos Method (IRLM)

Computes ``n_ev`` extremal eigenpairs of a Hermitian operator (M or M^dag for
a Hermitian M, or the normal operators M^dag M and M M^dag) that is only
available through its action on vector fields.

Mathematical Background:
    1. The Lanczos recurrence builds an orthonormal basis
       $$
       A V_m = V_m T_m + f_m e_m^T, \qquad f_m = \beta_m v_{m+1},
       $$
       with $T_m$ real symmetric tridiagonal (diagonal $\alpha$, off-diagonal $\beta$).
    2. Ritz pairs $(\theta_i, V_m y_i)$ come from $T_m y_i = \theta_i y_i$ and have the
       residual $\|A V_m y_i - \theta_i V_m y_i\| = |\beta_m\, y_i[m-1]|$.
    3. Converged wanted pairs are locked: $x_i = V_m y_i$ is frozen and every
       later basis vector is kept orthogonal to it. A candidate is locked only
       when its true residual passes the test as well.
    4. Implicit restart with exact shifts, in its thick-restart form: the
       filter that shifts out the unwanted Ritz values leaves exactly the kept
       Ritz vectors, so they are formed directly,
       $$
       A V_m Y_k = V_m Y_k \Theta_k + f_m s^T, \qquad s_i = y_i[m-1],
       $$
       and $v_{k+1} = f_m / \beta_m$ continues the recurrence. The projection
       is then $\Theta_k$ bordered by the spike $\beta_m s$ coupling the kept block
       to $v_{k+1}$, tridiagonal beyond it. No operator application is needed,
       and no shifted QR sweep mixes locked and kept directions.

Polynomial acceleration runs the recurrence on $T_d(\hat{A})$ (see
``EigenSolver.cheby_op``); the wanted eigenvalues become the largest in
magnitude of the polynomial, the final eigenvalues are Rayleigh quotients
of the plain operator.

References:
    [1] D. C. Sorensen, "Implicit application of polynomial filters in a
        k-step Arnoldi method", SIAM J. Matrix Anal. Appl. 13 (1992).
    [2] K. Wu, H. Simon, "Thick-restart Lanczos method for large symmetric
        eigenvalue problems", SIAM J. Matrix Anal. Appl. 22 (2000).

----------------------------------------------
File        : krylov_eigen/algebra/eigen/irlm.py
----------------------------------------------
"""

from enum import Enum, unique
from typing import List, Optional, Sequence, Tuple, TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray

from .params import EigParam, OperatorVariant, Spectrum
from .result import EigenResult, EigenStatus
from .operator import Operator
from .solver import EigenSolver, select_ritz, _as_rows
from ..errors import ConfigurationError, EigenErrorCode, NumericalError
from ..blas_lapack import BatchedDenseSolver

if TYPE_CHECKING:
    from ...common.flog import Logger

# ----------------------------------------------------------------------------------------
#! State and projection
# ----------------------------------------------------------------------------------------

@unique
class IRLMState(Enum):
    '''
    States of one IRLM solve.
    '''
    EMPTY       = 0
    GROWING     = 1
    PROJECTED   = 2
    RESTARTING  = 3
    CONVERGED   = 4
    EXHAUSTED   = 5

class TridiagonalProjection:
    '''
    Projection of the operator onto the active Krylov basis.

    The coefficient arrays are preallocated to ``n_max``; ``alpha`` and ``beta``
    are views of the valid part, ``len(alpha) == dim`` and ``len(beta) == dim - 1``.
    After a restart the first ``n_thick`` basis vectors are Ritz vectors: their
    block is ``diag(alpha[:n_thick])`` (``beta`` vanishes there) and ``spike``
    couples it to basis vector ``n_thick``. Without a restart the projection is
    plain tridiagonal.

    ``boundary`` is the norm of the residual coupling the last basis vector
    to the next one.
    '''

    def __init__(self, n_max: int):
        self.n_max      = int(n_max)
        self.arena_a    = np.zeros(self.n_max, dtype=np.float64)
        self.arena_b    = np.zeros(self.n_max, dtype=np.float64)
        self.arena_s    = np.zeros(self.n_max, dtype=np.float64)
        self.dim        = 0
        self.n_thick    = 0

    @property
    def alpha(self) -> NDArray:
        return self.arena_a[:self.dim]

    @property
    def beta(self) -> NDArray:
        return self.arena_b[:max(self.dim - 1, 0)]

    @property
    def spike(self) -> NDArray:
        return self.arena_s[:self.n_thick]

    @property
    def boundary(self) -> float:
        if self.dim == 0:
            return 0.0
        if self.dim == self.n_thick:
            return float(np.linalg.norm(self.spike))
        return float(self.arena_b[self.dim - 1])

    def check(self) -> None:
        if not 0 <= self.dim <= self.n_max:
            raise RuntimeError(f"Projection dimension {self.dim} outside [0, {self.n_max}]")
        if len(self.alpha) != self.dim or len(self.beta) != max(self.dim - 1, 0):
            raise RuntimeError(f"Projection length invariant broken: dim={self.dim}, "
                               f"len(alpha)={len(self.alpha)}, len(beta)={len(self.beta)}")
        if self.n_thick > self.dim:
            raise RuntimeError(f"Restart block {self.n_thick} larger than the projection ({self.dim})")

    def matrix(self) -> NDArray:
        T = _construct_tridiagonal(self.alpha, self.beta)
        k = self.n_thick
        if 0 < k < self.dim:
            T[k, :k] = self.spike
            T[:k, k] = self.spike
        return T

    def ritz(self) -> Tuple[NDArray, NDArray]:
        ''' Ritz values (ascending) and the eigenvectors of the projection as columns. '''
        return np.linalg.eigh(self.matrix())

    def restart(self, theta: NDArray, spike: NDArray) -> None:
        '''
        Truncate to the kept Ritz values ``theta`` coupled to the next basis
        vector through ``spike``.
        '''
        k                       = len(theta)
        self.arena_a[:]         = 0.0
        self.arena_b[:]         = 0.0
        self.arena_s[:]         = 0.0
        self.arena_a[:k]        = theta
        self.arena_s[:k]        = spike
        self.dim                = k
        self.n_thick            = k
        self.check()

    def __repr__(self):
        return f"TridiagonalProjection(dim={self.dim}, n_thick={self.n_thick}, n_max={self.n_max}, boundary={self.boundary:.3e})"

# ----------------------------------------------------------------------------------------

def _construct_tridiagonal(alpha: NDArray, beta: NDArray) -> NDArray:
    """Construct tridiagonal matrix from diagonal and off-diagonal."""
    T = np.diag(np.asarray(alpha, dtype=np.float64))
    if len(beta) > 0:
        T += np.diag(beta, k=1) + np.diag(beta, k=-1)
    return T

# ----------------------------------------------------------------------------------------
#! IRLM
# ----------------------------------------------------------------------------------------

class IRLM(EigenSolver):
    r'''
    Implicitly Restarted Lanczos eigensolver with locking.

    The first ``n_max`` vectors of the Krylov space are used. On return
    ``kspace[:n_converged]`` holds the orthonormal eigenvectors in the order
    given by ``params.spectrum``; with ``params.compute_svd`` the partner
    singular vectors are in ``kspace[n_ev:n_ev + n_converged]`` and ``evals``
    holds the singular values.

    Example:
        >>> params = EigParam(n_ev=4, n_min=8, n_max=20, spectrum='LR')
        >>> kspace = [np.zeros(50) for _ in range(20)]
        >>> evals  = []
        >>> with IRLM(params, DiagonalOperator(np.arange(1.0, 51.0))) as solver:
        ...     result = solver.solve(kspace, evals)
    '''

    def __init__(self,
                params      : EigParam,
                operator    : Operator,
                logger      : Optional['Logger']            = None,
                blas        : Optional[BatchedDenseSolver]  = None):
        super().__init__(params, operator, logger=logger, blas=blas)
        if self.params.spectrum in (Spectrum.SI, Spectrum.LI):
            raise ConfigurationError(f"IRLM computes real eigenvalues, spectrum {self.params.spectrum} is meaningless")
        if not (self.params.variant.is_normal or operator.hermitian):
            raise ConfigurationError(f"IRLM requires a Hermitian problem: variant {self.params.variant} "
                                     f"of a non-Hermitian operator", EigenErrorCode.NOT_HERMITIAN)
        self.state          = IRLMState.EMPTY
        self.n_locked       = 0
        self.locks          : List[bool]                        = []
        self.projection     : Optional[TridiagonalProjection]   = None

    # ------------------------------------------------------------------------------------

    def _log(self, msg: str, lvl: int = 1):
        if self.params.verbose:
            self.logger.info(msg, lvl=lvl)
        else:
            self.logger.debug(msg, lvl=lvl)

    # ------------------------------------------------------------------------------------
    #! Lanczos step
    # ------------------------------------------------------------------------------------

    def lanczos_step(self,
                    mat     : Operator,
                    v       : List[NDArray],
                    r       : List[NDArray],
                    evecs   : List[NDArray],
                    locked  : Sequence[bool],
                    params  : EigParam,
                    alpha   : NDArray,
                    beta    : NDArray,
                    j       : int,
                    spike   : Optional[NDArray] = None) -> None:
        '''
        One step of the Lanczos recurrence on the active basis ``v``.

        Writes ``alpha[j]``, ``beta[j]``, the unnormalised residual into ``r[0]``
        and, when a slot exists, the next basis vector into ``v[j + 1]``.
        ``evecs[i]`` with ``locked[i]`` set are projected out and never modified.
        ``spike`` couples ``v[j]`` to the Ritz vectors ``v[:j]`` kept by a restart
        (it replaces ``beta[j - 1]`` for the first step after the restart).

        Raises:
            NumericalError: NaN or Inf in a recurrence coefficient.
        '''
        w = r[0]
        self._apply(w, v[j], mat=mat, params=params)
        norm_aw = np.linalg.norm(w)

        if spike is not None and len(spike) > 0:
            for i, s in enumerate(spike):
                w -= s * v[i]
        elif j > 0:
            w -= beta[j - 1] * v[j - 1]
        alpha[j] = np.real(np.vdot(v[j], w))
        w -= alpha[j] * v[j]

        locked_vecs = [evecs[i] for i in range(len(locked)) if locked[i]]
        if locked_vecs:
            EigenSolver.orthogonalise(locked_vecs, [w], len(locked_vecs))

        # full re-orthogonalisation, the diagonal correction is folded into alpha
        if params.use_block_ortho:
            coeffs = EigenSolver.block_orthogonalise(v, [w], j + 1, blas=self.blas)
        else:
            coeffs = EigenSolver.orthogonalise(v, [w], j + 1)
        alpha[j] += np.real(coeffs[j, 0])
        beta[j]   = np.linalg.norm(w)

        if not (np.isfinite(alpha[j]) and np.isfinite(beta[j])):
            raise NumericalError(f"Non-finite Lanczos coefficient at step {j}: alpha={alpha[j]}, beta={beta[j]}",
                                 EigenErrorCode.NAN_DETECTED, ritz_index=j)

        eps = np.finfo(w.dtype).eps
        if beta[j] <= w.size * eps * max(norm_aw, abs(alpha[j])):
            # invariant subspace: continue with a fresh direction
            self._log(f"Lanczos breakdown at step {j}, continuing with a random vector", lvl=2)
            beta[j]  = 0.0
            w[...]   = 0
            if j + 1 < len(v):
                v[j + 1][...] = 0
                self._start_vector(v[j + 1], locked_vecs + list(v[:j + 1]))
        elif j + 1 < len(v):
            np.divide(w, beta[j], out=v[j + 1])

    # ------------------------------------------------------------------------------------
    #! Solve
    # ------------------------------------------------------------------------------------

    def solve(self, kspace: List[NDArray], evals: List[complex]) -> EigenResult:
        self._check_open()
        p       = self.params
        n_kr    = p.n_max
        self._check_kspace(kspace, n_kr)
        if self.operator.size < n_kr:
            raise ConfigurationError(f"Field dimension {self.operator.size} is smaller than n_max={n_kr}",
                                     EigenErrorCode.INVALID_KSPACE)

        evals.clear()
        self.n_matvec       = 0
        self.restarts       = 0
        self.n_locked       = 0
        self.locks          = [False] * n_kr
        self.projection     = proj = TridiagonalProjection(n_kr)
        self.state          = IRLMState.EMPTY

        shape       = self.operator.field_shape
        dtype       = kspace[0].dtype
        eps         = np.finfo(dtype).eps
        r           = [np.zeros_like(kspace[0])]
        criterion   = Spectrum.LM if p.use_poly_acc else p.spectrum

        self._log(f"IRLM start: {p.summary()}", lvl=0)
        self._start_vector(kspace[0])
        self.state  = IRLMState.GROWING

        while True:
            L = self.n_locked
            V = kspace[L:n_kr]
            for j in range(proj.dim, n_kr - L):
                self.lanczos_step(self.operator, V, r, kspace, self.locks, p, proj.arena_a, proj.arena_b, j,
                                  spike=proj.spike if j == proj.n_thick else None)
                proj.dim = j + 1
            proj.check()

            #! projected: Ritz pairs and convergence
            self.state  = IRLMState.PROJECTED
            m           = proj.dim
            theta, Y    = proj.ritz()
            order       = select_ritz(theta, criterion)
            residuals   = np.abs(proj.boundary * Y[m - 1, :])
            wanted      = order[:p.n_ev - L]
            candidates  = [int(i) for i in wanted if residuals[i] < p.tol * max(abs(theta[i]), eps)]

            Vrows       = _as_rows(V, m)
            X           = Y[:, candidates].T @ Vrows
            passed      = self._verify_candidates(X, theta[candidates], shape, dtype)
            if not passed.all():
                self._log(f"{int((~passed).sum())} Ritz pairs pass the estimate but not the true residual test", lvl=2)
            conv        = [i for i, ok in zip(candidates, passed) if ok]
            X           = X[passed]
            n_new       = len(conv)
            L_new       = L + n_new
            self._log(f"restart {self.restarts}: locked {L} + {n_new} of {p.n_ev}, "
                      f"max wanted residual {residuals[wanted].max():.3e}", lvl=1)

            if L_new >= p.n_ev or self.restarts >= p.max_restarts:
                if n_new > 0:
                    self._write_rows(kspace, L, X, shape)
                    self._lock(L, L_new)
                status = EigenStatus.CONVERGED if L_new >= p.n_ev else EigenStatus.EXHAUSTED
                break

            #! restart
            self.state  = IRLMState.RESTARTING
            k           = p.n_min - L_new
            conv_set    = set(conv)
            keep        = [int(i) for i in order if i not in conv_set][:k]
            kept        = Y[:, keep].T @ Vrows
            spike       = proj.boundary * Y[m - 1, keep]

            # everything above is computed from temporaries, now overwrite the basis
            if n_new > 0:
                self._write_rows(kspace, L, X, shape)
                self._lock(L, L_new)
            self._write_rows(kspace, L_new, kept, shape)

            nxt         = kspace[L_new + k]
            nxt[...]    = 0
            if proj.boundary > 0.0:
                np.divide(r[0], proj.boundary, out=nxt)
            else:
                spike[:] = 0.0
            self._start_vector(nxt, kspace[:L_new + k])
            proj.restart(theta[keep], spike)

            self.restarts  += 1
            self.state      = IRLMState.GROWING

        return self._finalize(kspace, evals, status)

    # ------------------------------------------------------------------------------------

    def _verify_candidates(self, X: NDArray, theta: NDArray, shape, dtype) -> NDArray:
        '''
        True residual test of the candidate Ritz vectors (rows of ``X``) with
        the operator of the recurrence. Returns the mask of the passing pairs.
        '''
        eps     = np.finfo(dtype).eps
        passed  = np.zeros(len(theta), dtype=bool)
        x       = np.empty(shape, dtype=dtype)
        ax      = np.empty(shape, dtype=dtype)
        for i, (row, th) in enumerate(zip(X, theta)):
            x[...]      = row.reshape(shape)
            self._apply(ax, x)
            passed[i]   = np.linalg.norm(ax - th * x) < self.params.tol * max(abs(th), eps)
        return passed

    @staticmethod
    def _write_rows(kspace: List[NDArray], start: int, rows: NDArray, shape) -> None:
        for i, row in enumerate(rows):
            kspace[start + i][...] = row.reshape(shape)

    def _lock(self, start: int, stop: int) -> None:
        for i in range(start, stop):
            self.locks[i] = True
        self.n_locked = stop
        self._log(f"locked {stop - start} Ritz pairs, total {stop}", lvl=2)

    def _finalize(self, kspace: List[NDArray], evals: List[complex], status: EigenStatus) -> EigenResult:
        '''
        Rayleigh quotients of the locked vectors, ordering and reporting.
        '''
        p       = self.params
        n_conv  = self.n_locked
        tmp     = np.empty_like(kspace[0])
        lam     = np.zeros(n_conv)
        for i in range(n_conv):
            self._apply(tmp, kspace[i], accelerated=False)
            lam[i] = np.real(np.vdot(kspace[i], tmp))

        order   = select_ritz(lam, p.spectrum)
        if n_conv > 0:
            self._write_rows(kspace, 0, _as_rows(kspace, n_conv)[order], self.operator.field_shape)
        lam     = lam[order]
        evals.extend(complex(x) for x in lam)

        svals   = None
        if p.compute_svd and n_conv > 0:
            svals   = self.compute_svd(self.operator, kspace, kspace[p.n_ev:p.n_ev + n_conv], evals, p,
                                       inverse=p.use_poly_acc)
            lam     = svals ** 2

        residuals   = self.residual_norms(kspace[:n_conv], lam)
        self.state  = IRLMState.CONVERGED if status is EigenStatus.CONVERGED else IRLMState.EXHAUSTED
        if status is EigenStatus.EXHAUSTED:
            self.logger.warning(f"IRLM exhausted {self.restarts} restarts with {n_conv} of {p.n_ev} pairs converged", lvl=1)
        else:
            self._log(f"IRLM converged: {n_conv} pairs, {self.restarts} restarts, {self.n_matvec} operator applications", lvl=0)
        return EigenResult(lam.astype(complex), status, n_conv, self.restarts, self.n_matvec, residuals, svals)

    # ------------------------------------------------------------------------------------
    #! SVD recovery
    # ------------------------------------------------------------------------------------

    def compute_svd(self,
                    mat     : Operator,
                    kspace  : List[NDArray],
                    evecs   : List[NDArray],
                    evals   : List[complex],
                    params  : EigParam,
                    inverse : bool = False) -> NDArray:
        r'''
        Singular triplets from the eigenpairs of a normal operator.

        For M^dag M the eigenvectors ``kspace[i]`` are right singular vectors and
        :math:`u_i = M v_i / \sigma_i`; for M M^dag they are left singular vectors
        and :math:`v_i = M^\dagger u_i / \sigma_i`, :math:`\sigma_i = \|\cdot\|`.
        The largest component of every eigenvector is made real positive first.

        Args:
            evecs:
                Output partner vectors (written in place, appended when missing).
            evals:
                ``len(evals)`` pairs are processed; replaced by the singular values.
            inverse:
                Sort ascending instead of descending.

        Returns:
            Sorted singular values.
        '''
        if not params.variant.is_normal:
            raise ConfigurationError(f"SVD recovery requires MdagM or MMdag, got {params.variant}")
        n = len(evals)
        if n == 0:
            return np.zeros(0)

        partner_variant = OperatorVariant.M if params.variant is OperatorVariant.MDAGM else OperatorVariant.MDAG
        sigma           = np.zeros(n)
        partners        = []
        for i in range(n):
            x       = kspace[i]
            flat    = x.reshape(-1)
            big     = flat[np.argmax(np.abs(flat))]
            if np.iscomplexobj(x):
                x  *= np.conj(big) / np.abs(big)
            elif big < 0:
                x  *= -1.0

            y = np.empty(mat.field_shape, dtype=np.result_type(x.dtype, mat.dtype))
            mat.apply(y, x, partner_variant)
            self.n_matvec  += 1
            sigma[i]        = np.linalg.norm(y)
            if sigma[i] > 0.0:
                y /= sigma[i]
            partners.append(y)

        order = np.argsort(sigma, kind='stable') if inverse else np.argsort(-sigma, kind='stable')
        self._write_rows(kspace, 0, _as_rows(kspace, n)[order], mat.field_shape)
        for out_i, src in enumerate(order):
            if out_i < len(evecs):
                evecs[out_i][...] = partners[src]
            else:
                evecs.append(partners[src])
        evals[:] = [complex(s) for s in sigma[order]]
        return sigma[order]

# ----------------------------------------------------------------------------------------
#! EOF
# ----------------------------------------------------------------------------------------
