r"""
nonlinear_solver.py  –  Newton driver for pyhpfem
=================================================
Drives assembly, the pluggable linear solve and the state update of a
:class:`~pyhpfem.assembly.discrete_problem.DiscreteProblem` until the l2 norm
of the residual drops below the tolerance.

At least one full iteration is always performed, even if the residual of the
initial guess is already small: on a freshly built reference space the
transferred coarse solution can have a spuriously small residual.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from pyhpfem.assembly.discrete_problem import DiscreteProblem
from pyhpfem.core.space import solution_to_vector, vector_to_solution
from pyhpfem.solvers.linear_solvers import (
    Backend,
    BackendConfigurationError,
    LinearSolverError,
    get_backend,
)

logger = logging.getLogger(__name__)


class NewtonConvergenceError(RuntimeError):
    """Newton's method reached the iteration cap without converging."""


class NewtonState(Enum):
    ITERATING = "iterating"
    CONVERGED = "converged"
    DIVERGED = "diverged"


# ----------------------------------------------------------------------------
#  Parameter dataclasses
# ----------------------------------------------------------------------------
@dataclass
class NewtonParameters:
    """Settings that govern a *single* Newton solve."""

    newton_tol: float = 1e-6            # ‖R‖_2 convergence threshold
    max_newton_iter: int = 150          # hard cap on Newton iterations


@dataclass
class NewtonResult:
    coeff_vec: np.ndarray
    iterations: int
    residual_norm: float
    elapsed: float


# ----------------------------------------------------------------------------
#  NewtonSolver class
# ----------------------------------------------------------------------------
class NewtonSolver:
    r"""Newton's method for ``F(Y) = 0`` on a fixed space.

    Each step solves :math:`J(Y^n)\,\delta Y^{n+1} = -F(Y^n)` and updates
    :math:`Y^{n+1} = Y^n + \delta Y^{n+1}`. The iterate is written back into
    the element storage of the space after every accepted update, so the
    space always holds the latest solution.
    """

    def __init__(self, dp: DiscreteProblem,
                 newton_params: Optional[NewtonParameters] = None,
                 backend: Optional[Backend] = None,
                 sln: int = 0) -> None:
        self.dp = dp
        self.space = dp.space
        self.np = newton_params or NewtonParameters()
        self.backend = backend or get_backend()
        self.sln = sln
        self.state = NewtonState.ITERATING
        if self.space.dtype != self.backend.dtype:
            raise BackendConfigurationError(
                f"space stores {self.space.dtype} coefficients but the linear solver "
                f"backend is configured for {self.backend.dtype}"
            )

    def solve(self) -> NewtonResult:
        """Run Newton's method starting from the solution stored in the space."""
        space = self.space
        tol = self.np.newton_tol
        ndof = space.get_num_dofs()

        coeff_vec = solution_to_vector(space, self.sln).astype(self.backend.dtype)
        matrix = self.backend.create_matrix()
        rhs = self.backend.create_vector()
        solver = self.backend.create_solver(matrix, rhs)

        self.state = NewtonState.ITERATING
        t_start = time.perf_counter()
        it = 1
        while True:
            # 1) Assemble the Jacobian matrix and residual vector
            self.dp.assemble(matrix, rhs)

            # 2) l2 norm of the residual
            res = rhs.to_array()
            res_norm_squared = float(np.sum(np.abs(res) ** 2))
            logger.info(f"---- Newton iter {it}, residual norm: {np.sqrt(res_norm_squared):.15f}")

            # 3) convergence test, at least one full iteration forced
            if res_norm_squared < tol * tol and it > 1:
                self.state = NewtonState.CONVERGED
                break

            # 4) J δY = -F
            rhs.set_array(-res)
            if not solver.solve():
                self.state = NewtonState.DIVERGED
                raise LinearSolverError("Matrix solver failed.")

            # 5) Y += δY
            coeff_vec += solver.get_solution()

            if it >= self.np.max_newton_iter:
                self.state = NewtonState.DIVERGED
                raise NewtonConvergenceError(
                    f"Newton method did not converge in {self.np.max_newton_iter} iterations "
                    f"(residual norm {np.sqrt(res_norm_squared):.3e})"
                )

            # 6) copy coefficients back into the elements
            vector_to_solution(coeff_vec, space, self.sln)
            it += 1

        elapsed = time.perf_counter() - t_start
        logger.debug(f"Newton converged in {it} iterations ({ndof} DOFs, {elapsed:.3f}s)")
        return NewtonResult(coeff_vec, it, float(np.sqrt(res_norm_squared)), elapsed)
