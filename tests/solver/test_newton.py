import numpy as np
import pytest

from pyhpfem.assembly import DiscreteProblem, WeakForm
from pyhpfem.core.space import Space
from pyhpfem.fem.projection import PiecewiseSolution
from pyhpfem.problems import nonlinear, poisson
from pyhpfem.solvers.linear_solvers import (
    BackendConfigurationError,
    LinearSolverError,
    LinearSolverParameters,
    get_backend,
)
from pyhpfem.solvers.nonlinear_solver import (
    NewtonConvergenceError,
    NewtonParameters,
    NewtonSolver,
    NewtonState,
)


def _newton(problem, backend=None, **kw):
    problem.space.assign_dofs()
    return NewtonSolver(DiscreteProblem(problem.wf, problem.space), NewtonParameters(**kw), backend)


def test_linear_problem_takes_two_iterations():
    problem = poisson.build(n_elem=2, p_init=2)
    newton = _newton(problem)
    result = newton.solve()
    assert result.iterations == 2
    assert result.residual_norm < 1e-6
    assert newton.state == NewtonState.CONVERGED

    sol = PiecewiseSolution.from_space(problem.space)
    for x in np.linspace(-1.0, 1.0, 9):
        assert np.isclose(sol.value_at(x)[0], 1.0 - x * x, atol=1e-12)


def test_resolve_from_converged_state_is_idempotent():
    problem = poisson.build(n_elem=3, p_init=3)
    first = _newton(problem).solve()
    second = _newton(problem).solve()
    assert second.iterations == 2
    np.testing.assert_allclose(second.coeff_vec, first.coeff_vec, atol=1e-12)


def test_nonlinear_problem_converges():
    problem = nonlinear.build(n_elem=4, p_init=5)
    result = _newton(problem, newton_tol=1e-10).solve()
    assert 2 < result.iterations < 20
    sol = PiecewiseSolution.from_space(problem.space)
    for x in np.linspace(0.0, 1.0, 11):
        assert np.isclose(sol.value_at(x)[0], np.sin(np.pi * x), atol=1e-4)


def test_iteration_cap_raises():
    problem = poisson.build(n_elem=2, p_init=1)
    newton = _newton(problem, max_newton_iter=1)
    with pytest.raises(NewtonConvergenceError):
        newton.solve()
    assert newton.state == NewtonState.DIVERGED


def test_singular_jacobian_raises_linear_solver_error():
    space = Space(-1.0, 1.0, 2, 1)
    space.set_bc_left_dirichlet(0, 0.0)
    space.set_bc_right_dirichlet(0, 0.0)
    space.assign_dofs()
    wf = WeakForm()
    wf.add_matrix_form(lambda *args: 0.0)
    wf.add_vector_form(poisson.residual)
    with pytest.raises(LinearSolverError):
        NewtonSolver(DiscreteProblem(wf, space)).solve()


def test_scalar_type_mismatch():
    problem = poisson.build(n_elem=2, p_init=2, dtype=complex)
    with pytest.raises(BackendConfigurationError):
        _newton(problem)


def test_complex_coefficients():
    problem = poisson.build(n_elem=2, p_init=2, dtype=complex)
    with get_backend(LinearSolverParameters(scalar="complex")) as backend:
        result = _newton(problem, backend).solve()
    assert result.coeff_vec.dtype == np.complex128
    sol = PiecewiseSolution.from_space(problem.space)
    assert np.isclose(sol.value_at(0.5)[0], 0.75 + 0.0j, atol=1e-12)


def test_gmres_backend():
    problem = nonlinear.build(n_elem=3, p_init=3)
    with get_backend(LinearSolverParameters(backend="scipy-gmres")) as backend:
        gmres = _newton(problem, backend, newton_tol=1e-10).solve()
    reference = nonlinear.build(n_elem=3, p_init=3)
    direct = _newton(reference, newton_tol=1e-10).solve()
    np.testing.assert_allclose(gmres.coeff_vec, direct.coeff_vec, atol=1e-8)
