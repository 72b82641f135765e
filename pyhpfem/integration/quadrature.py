"""pyhpfem.integration.quadrature
Gauss–Legendre rules on the reference interval and on physical elements.
"""
# pyhpfem.integration.quadrature
from functools import lru_cache

import numba as _nb
import numpy as np
from numpy.polynomial.legendre import leggauss


# -------------------------------------------------------------------------
# 1‑D Gauss–Legendre
# -------------------------------------------------------------------------
@lru_cache(maxsize=None)
def gauss_legendre(order: int):
    """``order``-point rule on [-1,1], exact for polynomials of degree 2*order-1."""
    if order < 1:
        raise ValueError(order)
    xi, w = leggauss(order)
    return xi, w


def points_for_degree(degree: int) -> int:
    """Smallest number of Gauss points integrating ``degree`` exactly."""
    return max(1, degree // 2 + 1)


@_nb.njit(cache=True, fastmath=True)
def _map_interval_rule(a, b, xi, w_ref):
    mid = 0.5 * (a + b)
    half = 0.5 * (b - a)
    nQ = xi.shape[0]
    pts = np.empty(nQ)
    wts = np.empty(nQ)
    for q in range(nQ):
        pts[q] = mid + xi[q] * half
        wts[q] = w_ref[q] * half
    return pts, wts


def interval_quadrature(a: float, b: float, order: int):
    """Gauss–Legendre points and weights on the physical interval [a, b]."""
    xi, w = gauss_legendre(int(order))
    return _map_interval_rule(float(a), float(b), xi, w)


def to_reference(x, x1: float, x2: float):
    """Map physical points of the element [x1, x2] to [-1, 1]."""
    return (2.0 * np.asarray(x, dtype=float) - x1 - x2) / (x2 - x1)
