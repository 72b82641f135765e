"""Semilinear model problem

    -u'' + u^3 = f  on (0, 1),   u(0) = u(1) = 0,

with f chosen such that u = sin(pi x). The Jacobian of the cubic term is
3 u_prev^2 du.
"""
import numpy as np

from pyhpfem.assembly.weakform import WeakForm
from pyhpfem.core.space import Space
from pyhpfem.problems import Problem

A, B = 0.0, 1.0


def rhs(x):
    s = np.sin(np.pi * x)
    return np.pi ** 2 * s + s ** 3


def jacobian(num, x, weights, u, dudx, v, dvdx, u_prev, du_prevdx, user_data):
    up = u_prev[0][0]
    return np.sum((dudx * dvdx + 3.0 * up ** 2 * u * v) * weights)


def residual(num, x, weights, u_prev, du_prevdx, v, dvdx, user_data):
    up = u_prev[0][0]
    dup = du_prevdx[0][0]
    return np.sum((dup * dvdx + up ** 3 * v - rhs(x) * v) * weights)


def exact_sol(x):
    return [np.sin(np.pi * x)], [np.pi * np.cos(np.pi * x)]


def build(n_elem=2, p_init=1, dtype=float):
    space = Space(A, B, n_elem, p_init, dtype=dtype)
    space.set_bc_left_dirichlet(0, 0.0)
    space.set_bc_right_dirichlet(0, 0.0)

    wf = WeakForm()
    wf.add_matrix_form(jacobian)
    wf.add_vector_form(residual)
    return Problem("nonlinear", space, wf, exact_sol)
