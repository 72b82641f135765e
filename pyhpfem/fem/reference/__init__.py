# pyhpfem.fem.reference
"""
Degree-agnostic reference-element factory for the interval [-1, 1].
"""
from functools import lru_cache
from importlib import import_module

from pyhpfem.integration.quadrature import gauss_legendre


class Ref:
    def __init__(self, poly_order, shape_fn, deriv_fn):
        self.poly_order = poly_order
        self.shape_fn = shape_fn
        self.deriv_fn = deriv_fn

    @property
    def n_basis(self) -> int:
        return self.poly_order + 1

    def shape(self, xi):
        return self.shape_fn(xi)

    def derivative(self, xi):
        return self.deriv_fn(xi)

    @lru_cache(maxsize=None)
    def tabulate(self, n_points: int):
        """Gauss points/weights and basis values/derivatives on [-1,1].

        Returns (xi, w, phi, dphi) with phi, dphi of shape (p+1, n_points).
        """
        xi, w = gauss_legendre(n_points)
        return xi, w, self.shape(xi), self.derivative(xi)


@lru_cache(maxsize=None)
def get_reference(poly_order: int = 1, family: str = "lobatto"):
    if family == "lobatto":
        shape_fn, deriv_fn = import_module("pyhpfem.fem.reference.lobatto").lobatto(poly_order)
    else:
        raise KeyError(family)
    return Ref(poly_order, shape_fn, deriv_fn)

