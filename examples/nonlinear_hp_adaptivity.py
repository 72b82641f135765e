"""
hp-adaptive solution of  -u'' + u^3 = f  on (0, 1) with u = sin(pi x).

Compares h-, p- and hp-adaptivity by their convergence in the number of DOFs
and writes the graphs (and optionally one plot per step) to --output-dir.
"""
import argparse
import logging
import os

import matplotlib.pyplot as plt

from pyhpfem.adaptivity.driver import AdaptiveSolver, AdaptivityParameters
from pyhpfem.adaptivity.selector import AdaptType
from pyhpfem.problems import nonlinear


def run(adapt_type, tol, max_steps, plot_dir=None):
    problem = nonlinear.build(n_elem=2, p_init=1)
    params = AdaptivityParameters(adapt_type=adapt_type, tol_err_rel=tol, max_steps=max_steps,
                                  plot_dir=plot_dir)
    return AdaptiveSolver(problem.wf, params).run(problem.space, problem.exact_sol)


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description="h / p / hp adaptivity for a semilinear problem")
    parser.add_argument("--tol", type=float, default=1e-4, help="relative error tolerance in percent")
    parser.add_argument("--max-steps", type=int, default=25)
    parser.add_argument("--output-dir", default="nonlinear_out")
    parser.add_argument("--plots", action="store_true", help="save one figure per adaptivity step")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    fig, ax = plt.subplots()
    for adapt_type in AdaptType:
        name = adapt_type.name.lower()
        out = os.path.join(args.output_dir, name)
        result = run(adapt_type, args.tol, args.max_steps,
                     plot_dir=os.path.join(out, "steps") if args.plots else None)
        result.save_graphs(out)
        graph = result.graphs["dof_exact"]
        graph.name = f"{name} ({result.space.get_num_dofs()} DOFs)"
        graph.plot(ax)
        print(f"{name:>2}: steps={result.steps}, converged={result.converged}, "
              f"err_est={result.err_est_rel:.3e} %, err_exact={result.err_exact_rel:.3e} %")

    fig.savefig(os.path.join(args.output_dir, "convergence.png"))
