"""pyhpfem.fem.projection
Evaluation of piecewise-polynomial solutions, element norms and
projection-based interpolation onto a single element.

All routines work on a *source* (:class:`PiecewiseSolution`) that may be
finer or coarser than the target interval; integrals are always split at the
source element boundaries so that polynomial integrands are integrated
exactly.
"""
from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from pyhpfem.fem.reference import get_reference
from pyhpfem.integration.quadrature import interval_quadrature, points_for_degree, to_reference

if TYPE_CHECKING:
    from pyhpfem.core.topology import Element


class Norm(IntEnum):
    """Norm used for error measurement and projections."""
    L2 = 0
    H1 = 1


def basis_on(x1: float, x2: float, p: int, x):
    """Basis values and physical derivatives of the element [x1, x2] at x."""
    ref = get_reference(p)
    xi = to_reference(x, x1, x2)
    return ref.shape(xi), ref.derivative(xi) * (2.0 / (x2 - x1))


def element_values(elem: Element, x, sln: int = 0):
    """Solution values and derivatives on ``elem`` at physical points x.

    Returns two arrays of shape (neq, len(x)).
    """
    phi, dphi = basis_on(elem.x1, elem.x2, elem.p, x)
    c = elem.coeffs[sln]
    return c @ phi, c @ dphi


def norm_squared(u, dudx, weights, norm: Norm) -> float:
    val = float(np.sum(np.abs(u) ** 2 * weights))
    if norm == Norm.H1:
        val += float(np.sum(np.abs(dudx) ** 2 * weights))
    return val


class PiecewiseSolution:
    """Read-only view on the active elements of a space, sorted left to right."""

    def __init__(self, elements: Sequence[Element], neq: int, dtype=float):
        self.elements: List[Element] = list(elements)
        self.neq = neq
        self.dtype = np.dtype(dtype)
        self._left = np.array([e.x1 for e in self.elements])
        self._right = np.array([e.x2 for e in self.elements])

    @classmethod
    def from_space(cls, space) -> "PiecewiseSolution":
        return cls(space.active_elements(), space.neq, space.dtype)

    def pieces(self, x1: float, x2: float) -> List[Element]:
        """Active elements overlapping (x1, x2) with positive length."""
        tol = 1e-10 * (x2 - x1)
        i0 = int(np.searchsorted(self._right, x1 + tol, side='right'))
        i1 = int(np.searchsorted(self._left, x2 - tol, side='left'))
        return self.elements[i0:i1]

    def segments(self, x1: float, x2: float) -> Iterator[Tuple[Element, float, float]]:
        for e in self.pieces(x1, x2):
            yield e, max(x1, e.x1), min(x2, e.x2)

    def value_at(self, x: float, sln: int = 0) -> np.ndarray:
        i = int(np.searchsorted(self._left, x, side='right')) - 1
        i = min(max(i, 0), len(self.elements) - 1)
        u, _ = element_values(self.elements[i], np.array([x]), sln)
        return u[:, 0]


def project_onto_element(source: PiecewiseSolution, x1: float, x2: float, p: int,
                         norm: Norm, sln: int = 0,
                         vertex_values: Optional[Sequence[np.ndarray]] = None) -> np.ndarray:
    """
    Projection-based interpolation of ``source`` onto degree ``p`` on [x1, x2].

    The vertex coefficients interpolate the source at the endpoints (or take
    the given ``vertex_values``); the bubble coefficients are the projection of
    the remainder in the ``norm`` inner product. Polynomials of degree <= p are
    reproduced exactly.

    Returns an array of shape (neq, p+1).
    """
    c = np.zeros((source.neq, p + 1), dtype=source.dtype)
    if vertex_values is None:
        c[:, 0] = source.value_at(x1, sln)
        c[:, 1] = source.value_at(x2, sln)
    else:
        c[:, 0], c[:, 1] = vertex_values
    if p < 2:
        return c

    nb = p - 1
    G = np.zeros((nb, nb))
    b = np.zeros((source.neq, nb), dtype=source.dtype)
    for e, a, bb in source.segments(x1, x2):
        x, w = interval_quadrature(a, bb, points_for_degree(2 * max(p, e.p)))
        u, du = element_values(e, x, sln)
        phi, dphi = basis_on(x1, x2, p, x)
        r = u - c[:, :2] @ phi[:2]
        dr = du - c[:, :2] @ dphi[:2]
        B, dB = phi[2:], dphi[2:]
        G += (B * w) @ B.T
        b += (r * w) @ B.T
        if norm == Norm.H1:
            G += (dB * w) @ dB.T
            b += (dr * w) @ dB.T
    c[:, 2:] = np.linalg.solve(G, b.T).T
    return c


def difference_squared(source: PiecewiseSolution, x1: float, x2: float,
                       coeffs: np.ndarray, norm: Norm, sln: int = 0) -> float:
    """Squared norm over [x1, x2] of source minus the polynomial ``coeffs``."""
    p = coeffs.shape[-1] - 1
    err = 0.0
    for e, a, bb in source.segments(x1, x2):
        x, w = interval_quadrature(a, bb, points_for_degree(2 * max(p, e.p)))
        u, du = element_values(e, x, sln)
        phi, dphi = basis_on(x1, x2, p, x)
        err += norm_squared(u - coeffs @ phi, du - coeffs @ dphi, w, norm)
    return err


def solution_norm_squared(source: PiecewiseSolution, norm: Norm, sln: int = 0) -> float:
    total = 0.0
    for e in source.elements:
        x, w = interval_quadrature(e.x1, e.x2, points_for_degree(2 * e.p))
        u, du = element_values(e, x, sln)
        total += norm_squared(u, du, w, norm)
    return total
