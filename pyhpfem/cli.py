"""Command line front end: run hp-adaptivity on one of the benchmark problems.

Exit codes: 0 converged, 1 step limit reached or nothing left to refine, 2 Newton did not
converge, 3 linear solver failure, 4 configuration error.
"""
import argparse
import logging
import sys

from pyhpfem.adaptivity.driver import AdaptiveSolver, AdaptivityParameters
from pyhpfem.adaptivity.selector import AdaptType, SelectionPolicy
from pyhpfem.fem.projection import Norm
from pyhpfem.problems import PROBLEMS, get_problem
from pyhpfem.solvers.linear_solvers import (
    BackendConfigurationError,
    LinearSolverError,
    LinearSolverParameters,
)
from pyhpfem.solvers.nonlinear_solver import NewtonConvergenceError

logger = logging.getLogger("pyhpfem")

EXIT_CONVERGED = 0
EXIT_MAX_STEPS = 1
EXIT_NEWTON = 2
EXIT_LINEAR_SOLVER = 3
EXIT_CONFIG = 4


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pyhpfem",
                                     description="Automatic hp-adaptivity for 1D boundary-value problems")
    parser.add_argument("--problem", choices=sorted(PROBLEMS), default="poisson",
                        help="benchmark problem to solve (default: poisson)")
    parser.add_argument("--n-elem", type=int, default=2, help="number of initial elements")
    parser.add_argument("--p-init", type=int, default=1, help="initial polynomial degree")
    parser.add_argument("--adapt-type", choices=[t.name.lower() for t in AdaptType], default="hp",
                        help="refinement strategy (default: hp)")
    parser.add_argument("--norm", choices=[n.name.lower() for n in Norm], default="h1",
                        help="norm for error estimation and projections (default: h1)")
    parser.add_argument("--threshold", type=float, default=0.7,
                        help="refine elements with error >= threshold * max error")
    parser.add_argument("--tol", type=float, default=1e-3,
                        help="stop when the estimated relative error [%%] drops below")
    parser.add_argument("--max-steps", type=int, default=None, help="cap on adaptivity steps")
    parser.add_argument("--max-p", type=int, default=10, help="maximum polynomial degree")
    parser.add_argument("--newton-tol", type=float, default=1e-6,
                        help="Newton residual tolerance on both meshes")
    parser.add_argument("--newton-max-iter", type=int, default=150)
    parser.add_argument("--backend", choices=("scipy", "scipy-gmres", "petsc"), default="scipy",
                        help="sparse linear solver backend (default: scipy)")
    parser.add_argument("--scalar", choices=("real", "complex"), default="real")
    parser.add_argument("--workers", type=int, default=1, help="assembly threads")
    parser.add_argument("--output-dir", default=None,
                        help="write conv_*.dat convergence graphs to this directory")
    parser.add_argument("--plot-dir", default=None,
                        help="save one PNG per adaptivity step to this directory")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug output")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    lin_params = LinearSolverParameters(backend=args.backend, scalar=args.scalar)
    try:
        problem = get_problem(args.problem, args.n_elem, args.p_init, dtype=lin_params.dtype)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG

    params = AdaptivityParameters(
        norm=Norm[args.norm.upper()],
        adapt_type=AdaptType[args.adapt_type.upper()],
        threshold=args.threshold,
        tol_err_rel=args.tol,
        max_steps=args.max_steps,
        newton_tol_coarse=args.newton_tol,
        newton_tol_ref=args.newton_tol,
        newton_max_iter=args.newton_max_iter,
        n_workers=args.workers,
        policy=SelectionPolicy(max_p=args.max_p),
        plot_dir=args.plot_dir,
    )

    try:
        result = AdaptiveSolver(problem.wf, params, lin_params).run(problem.space, problem.exact_sol)
    except BackendConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_CONFIG
    except NewtonConvergenceError as e:
        logger.error(str(e))
        return EXIT_NEWTON
    except LinearSolverError as e:
        logger.error(str(e))
        return EXIT_LINEAR_SOLVER

    if args.output_dir is not None:
        result.save_graphs(args.output_dir)
        logger.info(f"Convergence graphs written to {args.output_dir}")

    logger.info(f"Steps: {result.steps}, ndof: {result.space.get_num_dofs()}, "
                f"error (est): {result.err_est_rel:g} %")
    if result.err_exact_rel is not None:
        logger.info(f"Error (exact): {result.err_exact_rel:g} %")
    return EXIT_CONVERGED if result.converged else EXIT_MAX_STEPS


if __name__ == "__main__":
    sys.exit(main())
