import os

import numpy as np
import pytest

from pyhpfem.adaptivity.driver import AdaptiveSolver, AdaptivityParameters
from pyhpfem.adaptivity.error_estimator import calc_err_exact
from pyhpfem.adaptivity.selector import AdaptType, SelectionPolicy
from pyhpfem.fem.projection import Norm
from pyhpfem.io.graph import load_graph
from pyhpfem.problems import get_problem, nonlinear, poisson, system
from pyhpfem.solvers.linear_solvers import BackendConfigurationError, LinearSolverParameters


@pytest.mark.parametrize("adapt_type", [AdaptType.HP, AdaptType.P])
def test_exact_recovery_of_quadratic(adapt_type):
    problem = poisson.build(n_elem=2, p_init=1)
    params = AdaptivityParameters(norm=Norm.H1, adapt_type=adapt_type, threshold=0.7)
    result = AdaptiveSolver(problem.wf, params).run(problem.space, problem.exact_sol)

    assert result.converged
    assert result.steps == 2
    assert result.err_exact_rel < 1e-10
    elems = list(result.space.active_elements())
    assert len(elems) == 2
    assert [e.p for e in elems] == [2, 2]


def test_nonlinear_error_decreases():
    problem = nonlinear.build(n_elem=2, p_init=1)
    params = AdaptivityParameters(tol_err_rel=1e-4, max_steps=6)
    result = AdaptiveSolver(problem.wf, params).run(problem.space, problem.exact_sol)

    est = result.graphs["dof_est"].data
    exact = result.graphs["dof_exact"].data
    assert len(est) == result.steps
    assert est[-1, 1] < est[0, 1]
    assert exact[-1, 1] < exact[0, 1]
    # DOF counts grow strictly from step to step
    assert np.all(np.diff(est[:, 0]) > 0)


def test_step_limit_reports_not_converged():
    problem = nonlinear.build(n_elem=2, p_init=1)
    params = AdaptivityParameters(tol_err_rel=1e-12, max_steps=2)
    result = AdaptiveSolver(problem.wf, params).run(problem.space)

    assert not result.converged
    assert result.steps == 2
    assert result.err_exact_rel is None
    assert result.err_est_rel > 1e-12
    assert len(result.graphs["dof_exact"]) == 0


def test_step_callback_sees_every_estimate():
    calls = []

    def callback(step, space, ref_space, err_est_array):
        assert len(err_est_array) == space.n_active_elements
        assert ref_space.n_active_elements == 2 * space.n_active_elements
        calls.append(step)

    problem = nonlinear.build(n_elem=2, p_init=1)
    params = AdaptivityParameters(adapt_type=AdaptType.H, max_steps=3, tol_err_rel=1e-12)
    AdaptiveSolver(problem.wf, params).run(problem.space, step_callback=callback)
    assert calls == [1, 2, 3]


def test_system_of_equations():
    problem = system.build(n_elem=2, p_init=1)
    result = AdaptiveSolver(problem.wf).run(problem.space, problem.exact_sol)
    assert result.converged
    assert result.err_exact_rel < 1e-8


def test_threaded_assembly_and_gmres():
    problem = get_problem("nonlinear", n_elem=3, p_init=2)
    params = AdaptivityParameters(max_steps=2, tol_err_rel=1e-12, n_workers=3)
    lin = LinearSolverParameters(backend="scipy-gmres")
    result = AdaptiveSolver(problem.wf, params, lin).run(problem.space)
    assert result.steps == 2


def test_complex_run():
    problem = poisson.build(n_elem=2, p_init=1, dtype=complex)
    lin = LinearSolverParameters(scalar="complex")
    result = AdaptiveSolver(problem.wf, lin_params=lin).run(problem.space, problem.exact_sol)
    assert result.converged
    assert result.err_exact_rel < 1e-10


def test_configuration_error_before_any_solve():
    problem = poisson.build(n_elem=2, p_init=1)
    lin = LinearSolverParameters(backend="no-such-backend")
    with pytest.raises(BackendConfigurationError):
        AdaptiveSolver(problem.wf, lin_params=lin).run(problem.space)
    assert all(np.all(e.coeffs == 0) for e in problem.space.active_elements())


def test_graphs_and_plots_written(tmp_path):
    problem = poisson.build(n_elem=2, p_init=1)
    plot_dir = tmp_path / "plots"
    params = AdaptivityParameters(plot_dir=str(plot_dir))
    result = AdaptiveSolver(problem.wf, params).run(problem.space, problem.exact_sol)
    result.save_graphs(str(tmp_path))

    for name in ("dof_est", "cpu_est", "dof_exact", "cpu_exact"):
        graph = load_graph(os.path.join(tmp_path, f"conv_{name}.dat"))
        assert len(graph) == result.steps
    assert sorted(os.listdir(plot_dir)) == ["step-001.png", "step-002.png"]


def test_unknown_problem():
    with pytest.raises(ValueError):
        get_problem("helmholtz")


@pytest.mark.parametrize("adapt_type, policy", [
    (AdaptType.P, SelectionPolicy(max_p=2)),
    (AdaptType.H, SelectionPolicy(max_level=1)),
])
def test_stops_when_policy_allows_no_refinement(adapt_type, policy):
    problem = nonlinear.build(n_elem=2, p_init=1)
    params = AdaptivityParameters(adapt_type=adapt_type, policy=policy,
                                  tol_err_rel=1e-12, max_steps=None)
    result = AdaptiveSolver(problem.wf, params).run(problem.space)

    assert not result.converged
    assert result.steps == 2
    assert result.err_est_rel > 1e-12


def test_complex_exact_solution():
    problem = poisson.build(n_elem=2, p_init=1, dtype=complex)
    problem.space.assign_dofs()
    # the space holds zero, so the relative error is 100 %
    rel = calc_err_exact(Norm.H1, problem.space, lambda x: ([1j * (1 - x * x)], [-2j * x]))
    assert np.isclose(rel, 100.0)

    lin = LinearSolverParameters(scalar="complex")
    result = AdaptiveSolver(problem.wf, lin_params=lin).run(
        problem.space, lambda x: ([(1 - x * x) + 0j], [-2 * x + 0j]))
    assert result.converged
    assert result.err_exact_rel < 1e-10
