"""-u'' = 2 on (-1, 1), u(-1) = u(1) = 0; exact solution u = 1 - x^2."""
import numpy as np

from pyhpfem.assembly.weakform import WeakForm
from pyhpfem.core.space import Space
from pyhpfem.problems import Problem

A, B = -1.0, 1.0
RHS = 2.0


def jacobian(num, x, weights, u, dudx, v, dvdx, u_prev, du_prevdx, user_data):
    return np.sum(dudx * dvdx * weights)


def residual(num, x, weights, u_prev, du_prevdx, v, dvdx, user_data):
    return np.sum((du_prevdx[0][0] * dvdx - RHS * v) * weights)


def exact_sol(x):
    return [1.0 - x * x], [-2.0 * x]


def build(n_elem=2, p_init=1, dtype=float):
    space = Space(A, B, n_elem, p_init, dtype=dtype)
    space.set_bc_left_dirichlet(0, 0.0)
    space.set_bc_right_dirichlet(0, 0.0)

    wf = WeakForm()
    wf.add_matrix_form(jacobian)
    wf.add_vector_form(residual)
    return Problem("poisson", space, wf, exact_sol)
