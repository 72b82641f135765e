"""pyhpfem.adaptivity.driver
Outer hp-adaptivity loop.

    coarse solve ─┐
                  ▼
    ┌─► reference space ─► reference solve ─► [coarse solve, step > 1]
    │         ─► estimate ─► tolerance reached? ─► stop
    └────────── adapt ◄─────────────┘
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

import numpy as np

from pyhpfem.adaptivity.error_estimator import ExactSolution, calc_err_est, calc_err_exact
from pyhpfem.adaptivity.selector import AdaptType, SelectionPolicy, adapt
from pyhpfem.assembly.discrete_problem import DiscreteProblem
from pyhpfem.assembly.weakform import WeakForm
from pyhpfem.core.space import Space, construct_refined_space
from pyhpfem.fem.projection import Norm
from pyhpfem.io.graph import ConvergenceGraph
from pyhpfem.io.visualization import adapt_plotting
from pyhpfem.solvers.linear_solvers import Backend, LinearSolverParameters, get_backend
from pyhpfem.solvers.nonlinear_solver import NewtonParameters, NewtonResult, NewtonSolver
from pyhpfem.utils.timing import CpuTimer

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------------
#  Parameter dataclasses
# ----------------------------------------------------------------------------
@dataclass
class AdaptivityParameters:
    norm: Norm = Norm.H1                # norm for errors and projections
    adapt_type: AdaptType = AdaptType.HP
    threshold: float = 0.7              # refine if err >= threshold * max err
    tol_err_rel: float = 1e-3           # stop when estimated error [%] is below
    max_steps: Optional[int] = None     # hard cap on adaptivity steps
    newton_tol_coarse: float = 1e-6
    newton_tol_ref: float = 1e-6
    newton_max_iter: int = 150
    ref_p_increase: int = 1             # reference space: split + p increase
    n_workers: int = 1                  # assembly threads
    policy: SelectionPolicy = field(default_factory=SelectionPolicy)
    plot_dir: Optional[str] = None      # save one PNG per step if set


@dataclass
class AdaptivityResult:
    converged: bool
    steps: int
    err_est_rel: float
    err_exact_rel: Optional[float]
    space: Space
    graphs: Dict[str, ConvergenceGraph]

    def save_graphs(self, directory: str = ".") -> None:
        os.makedirs(directory, exist_ok=True)
        for name, graph in self.graphs.items():
            if len(graph):
                graph.save(os.path.join(directory, f"conv_{name}.dat"))


StepCallback = Callable[[int, Space, Space, np.ndarray], None]


class AdaptiveSolver:
    """Runs the hp-adaptivity loop for one weak form."""

    def __init__(self, wf: WeakForm, params: Optional[AdaptivityParameters] = None,
                 lin_params: Optional[LinearSolverParameters] = None):
        self.wf = wf
        self.params = params or AdaptivityParameters()
        self.lin_params = lin_params or LinearSolverParameters()

    def _newton(self, space: Space, tol: float, backend: Backend) -> NewtonResult:
        dp = DiscreteProblem(self.wf, space, n_workers=self.params.n_workers)
        newton = NewtonSolver(
            dp,
            NewtonParameters(newton_tol=tol, max_newton_iter=self.params.newton_max_iter),
            backend,
        )
        return newton.solve()

    def run(self, space: Space, exact_sol: Optional[ExactSolution] = None,
            step_callback: Optional[StepCallback] = None) -> AdaptivityResult:
        """Adapt ``space`` in place until the estimated relative error drops
        below ``tol_err_rel``, ``max_steps`` is reached or no marked element
        admits a refinement under the selection policy.

        ``step_callback(step, space, ref_space, err_est_array)`` is invoked after
        the error estimate of every step, before the space is adapted.
        Newton and linear solver failures propagate to the caller.
        """
        prm = self.params
        cpu_time = CpuTimer()
        graphs = {
            "dof_est": ConvergenceGraph("estimated error", "ndof"),
            "cpu_est": ConvergenceGraph("estimated error", "cpu time [s]"),
            "dof_exact": ConvergenceGraph("exact error", "ndof"),
            "cpu_exact": ConvergenceGraph("exact error", "cpu time [s]"),
        }

        with get_backend(self.lin_params) as backend:
            logger.info(f"N_dof = {space.assign_dofs()}")

            # Initial coarse solve, zero initial guess
            logger.info("Solving on coarse mesh")
            self._newton(space, prm.newton_tol_coarse, backend)

            step = 1
            err_exact_rel = None
            while True:
                logger.info(f"============ Adaptivity step {step} ============")

                ref_space = construct_refined_space(space, prm.ref_p_increase, prm.norm)
                logger.info(f"Ndof coarse: {space.get_num_dofs()}, ndof ref: {ref_space.get_num_dofs()}")

                logger.info("Solving on fine mesh")
                self._newton(ref_space, prm.newton_tol_ref, backend)

                # From the second step on, warm-start from the last coarse solution
                if step > 1:
                    logger.info("Solving on coarse mesh")
                    self._newton(space, prm.newton_tol_coarse, backend)

                err_est_array, err_est_rel = calc_err_est(prm.norm, space, ref_space)
                logger.info(f"Relative error (est) = {err_est_rel:g} %")

                cpu_time.tick()
                ndof = space.get_num_dofs()
                if exact_sol is not None:
                    err_exact_rel = calc_err_exact(prm.norm, space, exact_sol)
                    logger.info(f"Relative error (exact) = {err_exact_rel:g} %")
                    graphs["dof_exact"].add_values(ndof, err_exact_rel)
                    graphs["cpu_exact"].add_values(cpu_time.accumulated(), err_exact_rel)
                graphs["dof_est"].add_values(ndof, err_est_rel)
                graphs["cpu_est"].add_values(cpu_time.accumulated(), err_est_rel)

                if prm.plot_dir is not None:
                    adapt_plotting(space, ref_space, step, prm.plot_dir,
                                   err_est_array=err_est_array, exact_sol=exact_sol)
                if step_callback is not None:
                    step_callback(step, space, ref_space, err_est_array)

                if err_est_rel < prm.tol_err_rel:
                    logger.info(f"Tolerance {prm.tol_err_rel:g} % reached after {step} steps")
                    converged = True
                    break
                if prm.max_steps is not None and step >= prm.max_steps:
                    logger.warning(f"Maximum number of adaptivity steps ({prm.max_steps}) reached, "
                                   f"error {err_est_rel:g} % above tolerance {prm.tol_err_rel:g} %")
                    converged = False
                    break

                committed = adapt(prm.norm, prm.adapt_type, prm.threshold, err_est_array,
                                  space, ref_space, prm.policy)
                if not committed:
                    logger.warning(f"No admissible refinement left after step {step}, "
                                   f"error {err_est_rel:g} % above tolerance {prm.tol_err_rel:g} %")
                    converged = False
                    break
                step += 1

        return AdaptivityResult(converged, step, err_est_rel, err_exact_rel, space, graphs)
