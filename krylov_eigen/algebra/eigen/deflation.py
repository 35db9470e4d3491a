"""
Deflation decorator.

``DeflationEigenSolver`` wraps another eigensolver so that upper layers can
run "a solve on the deflated operator" without the inner solver knowing about
it. The solve is forwarded unchanged; the only visible effect is the output
prefix attached to every log line emitted during the inner solve.

The decorator owns the wrapped solver: ``close`` releases it exactly once.
"""

from typing import List, Optional, TYPE_CHECKING

from numpy.typing import NDArray

from .params import EigParam
from .result import EigenResult
from .operator import Operator
from .solver import EigenSolver

if TYPE_CHECKING:
    from ...common.flog import Logger

class DeflationEigenSolver(EigenSolver):
    '''
    Forwarding eigensolver with a scoped diagnostic prefix.

    Parameters:
    -----------
        inner:
            Solver to wrap; ownership is transferred to the decorator.
        operator:
            Operator the (deflated) problem is posed for.
        params:
            Parameters of the deflated solve.
        prefix:
            Label pushed on the logger for the duration of ``solve``.
    '''

    def __init__(self,
                inner       : EigenSolver,
                operator    : Operator,
                params      : EigParam,
                prefix      : str,
                logger      : Optional['Logger'] = None):
        super().__init__(params, operator, logger=logger if logger is not None else inner.logger, blas=inner.blas)
        self.inner  = inner
        self.prefix = prefix

    def solve(self, kspace: List[NDArray], evals: List[complex]) -> EigenResult:
        self._check_open()
        with self.logger.output_prefix(self.prefix):
            return self.inner.solve(kspace, evals)

    def close(self) -> None:
        if self._closed:
            return
        inner, self.inner = self.inner, None
        if inner is not None:
            inner.close()
        super().close()

    def __repr__(self):
        return f"DeflationEigenSolver(prefix={self.prefix!r}, inner={self.inner!r})"
