import threading
import time

import numpy as np
import pytest

from pyhpfem.assembly import DiscreteProblem, WeakForm
from pyhpfem.core.space import Space, vector_to_solution
from pyhpfem.problems import nonlinear, poisson, system
from pyhpfem.solvers.linear_solvers import NumpyVector, ScipyMatrix


def _poisson_wf():
    wf = WeakForm()
    wf.add_matrix_form(poisson.jacobian)
    wf.add_vector_form(poisson.residual)
    return wf


def _assemble(dp):
    matrix, rhs = ScipyMatrix(), NumpyVector()
    dp.assemble(matrix, rhs)
    return matrix.to_csr().toarray(), rhs.to_array().copy()


def test_linear_stiffness_and_load():
    space = Space(-1.0, 1.0, 2, 1)
    space.assign_dofs()
    K, F = _assemble(DiscreteProblem(_poisson_wf(), space))
    np.testing.assert_allclose(K, [[1, -1, 0], [-1, 2, -1], [0, -1, 1]], atol=1e-14)
    # residual at u = 0 is -∫ 2 v
    np.testing.assert_allclose(F, [-1.0, -2.0, -1.0])


def test_bubble_block_is_identity():
    space = Space(-1.0, 1.0, 1, 3)
    space.assign_dofs()
    K, _ = _assemble(DiscreteProblem(_poisson_wf(), space))
    # dof order: left vertex, bubbles, right vertex
    np.testing.assert_allclose(K[1:3, 1:3], np.eye(2), atol=1e-13)
    np.testing.assert_allclose(K[0, 1:3], 0.0, atol=1e-13)
    np.testing.assert_allclose([K[0, 0], K[0, 3]], [0.5, -0.5])


def test_dirichlet_rows_are_skipped():
    space = Space(-1.0, 1.0, 2, 1)
    space.set_bc_left_dirichlet(0, 0.0)
    space.set_bc_right_dirichlet(0, 0.0)
    space.assign_dofs()
    K, F = _assemble(DiscreteProblem(_poisson_wf(), space))
    assert K.shape == (1, 1)
    np.testing.assert_allclose(K, [[2.0]])
    np.testing.assert_allclose(F, [-2.0])


def test_dirichlet_lift_enters_residual():
    # u = 1 on the boundary, zero inside: residual of the only interior dof is ∫ u' v' - 2 v
    space = Space(-1.0, 1.0, 2, 1)
    space.set_bc_left_dirichlet(0, 1.0)
    space.set_bc_right_dirichlet(0, 1.0)
    space.assign_dofs()
    _, F = _assemble(DiscreteProblem(_poisson_wf(), space))
    np.testing.assert_allclose(F, [-2.0 - 2.0])


def test_threaded_assembly_matches_sequential():
    problem = nonlinear.build(n_elem=7, p_init=3)
    space = problem.space
    ndof = space.assign_dofs()
    vector_to_solution(np.random.default_rng(3).normal(size=ndof), space)

    K1, F1 = _assemble(DiscreteProblem(problem.wf, space))
    K4, F4 = _assemble(DiscreteProblem(problem.wf, space, n_workers=4))
    np.testing.assert_allclose(K4, K1, rtol=1e-13, atol=1e-13)
    np.testing.assert_allclose(F4, F1, rtol=1e-13, atol=1e-13)


class _ExclusiveAdds:
    """Counts ``add`` calls that overlap in time with another one."""

    def __init__(self):
        self._guard = threading.Lock()
        self._in_flight = 0
        self.overlaps = 0
        self.calls = 0

    def enter(self):
        with self._guard:
            self._in_flight += 1
            self.calls += 1
            if self._in_flight > 1:
                self.overlaps += 1
        time.sleep(1e-3)

    def leave(self):
        with self._guard:
            self._in_flight -= 1


class _CheckedMatrix(ScipyMatrix):
    def __init__(self):
        super().__init__()
        self.adds = _ExclusiveAdds()

    def add(self, rows, cols, values):
        self.adds.enter()
        try:
            super().add(rows, cols, values)
        finally:
            self.adds.leave()


class _CheckedVector(NumpyVector):
    def __init__(self):
        super().__init__()
        self.adds = _ExclusiveAdds()

    def add(self, rows, values):
        self.adds.enter()
        try:
            super().add(rows, values)
        finally:
            self.adds.leave()


def test_threaded_assembly_serialises_adds():
    problem = nonlinear.build(n_elem=16, p_init=3)
    space = problem.space
    space.assign_dofs()
    matrix, rhs = _CheckedMatrix(), _CheckedVector()
    DiscreteProblem(problem.wf, space, n_workers=8).assemble(matrix, rhs)

    assert matrix.adds.calls == rhs.adds.calls == space.n_active_elements
    assert matrix.adds.overlaps == 0
    assert rhs.adds.overlaps == 0


def test_rhs_only():
    problem = poisson.build(n_elem=3, p_init=2)
    problem.space.assign_dofs()
    dp = DiscreteProblem(problem.wf, problem.space)
    rhs = NumpyVector()
    dp.assemble(None, rhs, rhsonly=True)
    assert rhs.to_array().shape == (problem.space.get_num_dofs(),)


def test_system_blocks_are_decoupled():
    problem = system.build(n_elem=2, p_init=2)
    space = problem.space
    space.assign_dofs()
    K, _ = _assemble(DiscreteProblem(problem.wf, space))
    eq0 = sorted({int(d) for e in space.active_elements() for d in e.dof[0] if d >= 0})
    eq1 = sorted({int(d) for e in space.active_elements() for d in e.dof[1] if d >= 0})
    assert not set(eq0) & set(eq1)
    np.testing.assert_allclose(K[np.ix_(eq0, eq1)], 0.0)
    np.testing.assert_allclose(K[np.ix_(eq1, eq0)], 0.0)


def test_equation_count_mismatch():
    with pytest.raises(ValueError):
        DiscreteProblem(WeakForm(neq=2), Space(0.0, 1.0, 2))


def test_weakform_rejects_bad_equation_index():
    wf = WeakForm(neq=2)
    with pytest.raises(ValueError):
        wf.add_matrix_form(poisson.jacobian, 0, 2)
    with pytest.raises(ValueError):
        wf.add_vector_form(poisson.residual, -1)
    with pytest.raises(ValueError):
        WeakForm(neq=0)
