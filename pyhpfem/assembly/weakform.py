"""pyhpfem.assembly.weakform"""
from dataclasses import dataclass
from typing import Any, Callable, Tuple

MatrixFormFn = Callable[..., float]
VectorFormFn = Callable[..., float]


@dataclass(frozen=True)
class MatrixForm:
    i: int                   # equation of the test function
    j: int                   # equation of the basis (trial) function
    fn: MatrixFormFn
    user_data: Any = None


@dataclass(frozen=True)
class VectorForm:
    i: int
    fn: VectorFormFn
    user_data: Any = None


class WeakForm:
    """
    Collection of Jacobian (matrix) and residual (vector) forms.

    Matrix form signature::

        fn(num, x, weights, u, dudx, v, dvdx, u_prev, du_prevdx, user_data) -> float

    Vector form signature::

        fn(num, x, weights, u_prev, du_prevdx, v, dvdx, user_data) -> float

    ``x``/``weights`` are the ``num`` quadrature points and weights of the
    element; ``u``, ``dudx``, ``v``, ``dvdx`` are basis / test function values
    and physical derivatives there; ``u_prev[sln][eq][k]`` and
    ``du_prevdx[sln][eq][k]`` hold the current solution slots.
    """

    def __init__(self, neq: int = 1):
        if neq < 1:
            raise ValueError(f"neq must be positive, got {neq}")
        self.neq = neq
        self._matrix_forms = []
        self._vector_forms = []

    def _check(self, *eqs):
        for eq in eqs:
            if not 0 <= eq < self.neq:
                raise ValueError(f"equation index {eq} out of range [0, {self.neq})")

    def add_matrix_form(self, fn: MatrixFormFn, i: int = 0, j: int = 0, user_data=None) -> None:
        self._check(i, j)
        self._matrix_forms.append(MatrixForm(i, j, fn, user_data))

    def add_vector_form(self, fn: VectorFormFn, i: int = 0, user_data=None) -> None:
        self._check(i)
        self._vector_forms.append(VectorForm(i, fn, user_data))

    @property
    def matrix_forms(self) -> Tuple[MatrixForm, ...]:
        return tuple(self._matrix_forms)

    @property
    def vector_forms(self) -> Tuple[VectorForm, ...]:
        return tuple(self._vector_forms)
