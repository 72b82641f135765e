from functools import lru_cache
import sympy as sp
import numpy as np


@lru_cache(maxsize=None)
def _lobatto_basis_1d(p: int):
    """Return hierarchic Lobatto shape functions of degree <= p as NUMPY lambdas.

    Index 0 and 1 are the vertex functions (1-x)/2 and (1+x)/2. Index k >= 2 is
    the bubble  l_k(x) = sqrt((2k-1)/2) * int_{-1}^{x} P_{k-1}(t) dt , which
    vanishes at both endpoints. The derivatives of the bubbles are orthonormal
    on [-1, 1].
    """
    x, t = sp.symbols('x t')
    exprs = [(1 - x) / 2, (1 + x) / 2]
    for k in range(2, p + 1):
        lk = sp.sqrt(sp.Rational(2 * k - 1, 2)) * sp.integrate(sp.legendre(k - 1, t), (t, -1, x))
        exprs.append(sp.expand(lk))
    L = [sp.lambdify(x, e, 'numpy') for e in exprs]
    dL = [sp.lambdify(x, sp.diff(e, x), 'numpy') for e in exprs]
    return L, dL


@lru_cache(maxsize=None)
def lobatto(p: int):
    """
    Lobatto basis of degree p on [-1,1].
    Returns: (shape_fn, deriv_fn) where
      shape_fn(xi) -> (p+1, len(xi))
      deriv_fn(xi) -> (p+1, len(xi))
    """
    if p < 1:
        raise ValueError(f"polynomial degree must be >= 1, got {p}")
    L, dL = _lobatto_basis_1d(p)

    def _eval_1d(fns, z):
        z = np.asarray(z, dtype=float)
        # constant lambdas return scalars; broadcast to the point set
        return np.array([np.broadcast_to(f(z), z.shape) for f in fns], dtype=float)

    def shape(xi):
        return _eval_1d(L, xi)

    def deriv(xi):
        return _eval_1d(dL, xi)

    return shape, deriv
