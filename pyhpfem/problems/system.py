"""Two decoupled equations on (-1, 1):

    -u'' = 2,  u(-1) = u(1) = 0     ->  u = 1 - x^2
    -w'' = 0,  w(-1) = 1, w(1) = 3  ->  w = x + 2
"""
import numpy as np

from pyhpfem.assembly.weakform import WeakForm
from pyhpfem.core.space import Space
from pyhpfem.problems import Problem

A, B = -1.0, 1.0


def jacobian(num, x, weights, u, dudx, v, dvdx, u_prev, du_prevdx, user_data):
    return np.sum(dudx * dvdx * weights)


def residual(num, x, weights, u_prev, du_prevdx, v, dvdx, user_data):
    eq, source = user_data
    return np.sum((du_prevdx[0][eq] * dvdx - source * v) * weights)


def exact_sol(x):
    return [1.0 - x * x, x + 2.0], [-2.0 * x, 1.0]


def build(n_elem=2, p_init=1, dtype=float):
    space = Space(A, B, n_elem, p_init, neq=2, dtype=dtype)
    space.set_bc_left_dirichlet(0, 0.0)
    space.set_bc_right_dirichlet(0, 0.0)
    space.set_bc_left_dirichlet(1, 1.0)
    space.set_bc_right_dirichlet(1, 3.0)

    wf = WeakForm(neq=2)
    wf.add_matrix_form(jacobian, 0, 0)
    wf.add_matrix_form(jacobian, 1, 1)
    wf.add_vector_form(residual, 0, user_data=(0, 2.0))
    wf.add_vector_form(residual, 1, user_data=(1, 0.0))
    return Problem("system", space, wf, exact_sol)
