"""pyhpfem.adaptivity.error_estimator
Element error indicators from the difference between the coarse and the
reference solution, and the relative error against an exact solution.
"""
from __future__ import annotations

import logging
from typing import Callable, Sequence, Tuple

import numpy as np

from pyhpfem.core.space import Space
from pyhpfem.fem.projection import (
    Norm,
    PiecewiseSolution,
    difference_squared,
    element_values,
    norm_squared,
    solution_norm_squared,
)
from pyhpfem.integration.quadrature import interval_quadrature, points_for_degree

logger = logging.getLogger(__name__)

ExactSolution = Callable[[float], Tuple[Sequence[float], Sequence[float]]]


def calc_elem_est_errors_squared(norm: Norm, space: Space, ref_space: Space,
                                 sln: int = 0) -> np.ndarray:
    """Squared norm of (u_ref - u_coarse) on every active coarse element.

    The reference solution is integrated piece by piece over the reference
    elements that tile each coarse element.
    """
    ref = PiecewiseSolution.from_space(ref_space)
    return np.array([
        difference_squared(ref, e.x1, e.x2, e.coeffs[sln], norm, sln)
        for e in space.active_elements()
    ])


def calc_solution_norm(norm: Norm, space: Space, sln: int = 0) -> float:
    return float(np.sqrt(solution_norm_squared(PiecewiseSolution.from_space(space), norm, sln)))


def calc_err_est(norm: Norm, space: Space, ref_space: Space, sln: int = 0):
    """
    Estimate the discretization error of the coarse solution.

    Returns
    -------
    err_est_array : ndarray
        Error norm per active coarse element (left to right).
    err_est_rel : float
        sqrt(sum err^2) / ||u_ref||, in percent.
    """
    err_squared = calc_elem_est_errors_squared(norm, space, ref_space, sln)
    ref_norm = calc_solution_norm(norm, ref_space, sln)
    err_total = float(np.sqrt(err_squared.sum()))
    if ref_norm == 0.0:
        err_rel = 0.0 if err_total == 0.0 else np.inf
    else:
        err_rel = err_total / ref_norm * 100
    logger.debug(f"Estimated error: {err_total:.6e} absolute, ||u_ref|| = {ref_norm:.6e}")
    return np.sqrt(err_squared), err_rel


def _exact_values(exact_sol: ExactSolution, x: np.ndarray, neq: int):
    """Exact values and derivatives at x, shape (neq, len(x)); complex if exact_sol is."""
    vals, ders = zip(*(exact_sol(float(xk)) for xk in x))
    u = np.asarray(vals).reshape(len(x), neq).T
    du = np.asarray(ders).reshape(len(x), neq).T
    return u, du


def calc_err_exact(norm: Norm, space: Space, exact_sol: ExactSolution, sln: int = 0,
                   quad_extra: int = 10) -> float:
    """Relative error (percent) of the space solution against ``exact_sol``.

    ``exact_sol(x)`` returns ``(values, derivatives)``, each of length neq.
    Used for validation only.
    """
    err_squared = 0.0
    exact_squared = 0.0
    for e in space.active_elements():
        x, w = interval_quadrature(e.x1, e.x2, points_for_degree(2 * e.p + quad_extra))
        u, du = element_values(e, x, sln)
        ue, due = _exact_values(exact_sol, x, space.neq)
        err_squared += norm_squared(u - ue, du - due, w, norm)
        exact_squared += norm_squared(ue, due, w, norm)
    if exact_squared == 0.0:
        return 0.0 if err_squared == 0.0 else np.inf
    return float(np.sqrt(err_squared / exact_squared)) * 100
