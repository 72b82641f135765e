# space.py

from __future__ import annotations

import copy
import logging
from typing import Iterator, List, Optional, Sequence

import numpy as np

from pyhpfem.core.topology import Element
from pyhpfem.fem.projection import Norm, PiecewiseSolution, project_onto_element

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
#  Main class
# -----------------------------------------------------------------------------
class Space:
    """H1-conforming hp space on an interval, with its refinement tree.

    Elements live in an arena (``self._elements``) and are addressed by their
    integer handle ``Element.id``. Splitting deactivates the parent and appends
    two children; nothing is ever removed from the arena.
    """

    # .........................................................................
    def __init__(self, a: float, b: float, n_elem: int, p_init: int = 1,
                 neq: int = 1, n_sln: int = 1, *, points: Optional[Sequence[float]] = None,
                 dtype=float):
        """
        Parameters
        ----------
        a, b : float
            Domain end points.
        n_elem : int
            Number of equally sized initial elements (ignored if ``points``
            is given).
        p_init : int
            Initial polynomial degree of every element.
        neq : int
            Number of equations (solution components).
        n_sln : int
            Number of solution slots stored per element. Slot 0 holds the
            current Newton iterate; the others are free for the application
            (e.g. previous time levels).
        points : sequence of float, optional
            Explicit increasing element end points.
        dtype : numpy dtype
            Scalar type of the coefficients (float or complex).
        """
        if points is None:
            if n_elem < 1:
                raise ValueError(f"n_elem must be positive, got {n_elem}")
            points = np.linspace(a, b, n_elem + 1)
        points = np.asarray(points, dtype=float)
        if points.size < 2 or np.any(np.diff(points) <= 0):
            raise ValueError("element end points must be strictly increasing")
        if p_init < 1:
            raise ValueError(f"p_init must be >= 1, got {p_init}")
        if neq < 1 or n_sln < 1:
            raise ValueError("neq and n_sln must be positive")

        self.a, self.b = float(points[0]), float(points[-1])
        self.neq = neq
        self.n_sln = n_sln
        self.dtype = np.dtype(dtype)
        self._elements: List[Element] = []
        self.roots: List[int] = []
        self.bc_left: List[Optional[float]] = [None] * neq
        self.bc_right: List[Optional[float]] = [None] * neq
        self._ndof: Optional[int] = None

        for x1, x2 in zip(points[:-1], points[1:]):
            self.roots.append(self._new_element(x1, x2, p_init).id)

    # ---------------------------------------------------------------- arena
    def _new_element(self, x1, x2, p, level=0, parent=None) -> Element:
        elem = Element(id=len(self._elements), x1=float(x1), x2=float(x2), p=int(p),
                       level=level, parent=parent,
                       coeffs=np.zeros((self.n_sln, self.neq, p + 1), dtype=self.dtype))
        self._elements.append(elem)
        return elem

    def element(self, handle: int) -> Element:
        return self._elements[handle]

    def _leaves(self, handle: int) -> Iterator[Element]:
        elem = self._elements[handle]
        if elem.active:
            yield elem
        else:
            for child in elem.children:
                yield from self._leaves(child)

    def active_elements(self) -> Iterator[Element]:
        """Active elements from left to right."""
        for root in self.roots:
            yield from self._leaves(root)

    @property
    def n_active_elements(self) -> int:
        return sum(1 for _ in self.active_elements())

    def first_active_element(self) -> Element:
        return next(self._leaves(self.roots[0]))

    def last_active_element(self) -> Element:
        elem = self._elements[self.roots[-1]]
        while not elem.active:
            elem = self._elements[elem.children[-1]]
        return elem

    # ---------------------------------------------------------------- BCs
    def _check_eq(self, eq: int) -> None:
        if not 0 <= eq < self.neq:
            raise ValueError(f"equation index {eq} out of range [0, {self.neq})")

    def set_bc_left_dirichlet(self, eq: int, value: float) -> None:
        self._check_eq(eq)
        self.bc_left[eq] = value
        self._ndof = None

    def set_bc_right_dirichlet(self, eq: int, value: float) -> None:
        self._check_eq(eq)
        self.bc_right[eq] = value
        self._ndof = None

    # ---------------------------------------------------------------- DOFs
    def assign_dofs(self) -> int:
        """Enumerate DOFs of all active elements; returns their number.

        Vertex DOFs are shared by neighbouring elements. Dirichlet vertices get
        the index -1 and their coefficient is set to the boundary value in every
        solution slot.
        """
        active = list(self.active_elements())
        count = 0
        prev_right = [None] * self.neq
        for idx, elem in enumerate(active):
            elem.dof = np.full((self.neq, elem.p + 1), -1, dtype=int)
            for c in range(self.neq):
                if idx == 0:
                    if self.bc_left[c] is not None:
                        elem.coeffs[:, c, 0] = self.bc_left[c]
                    else:
                        elem.dof[c, 0] = count
                        count += 1
                else:
                    elem.dof[c, 0] = prev_right[c]
                for k in range(2, elem.p + 1):
                    elem.dof[c, k] = count
                    count += 1
                if idx == len(active) - 1 and self.bc_right[c] is not None:
                    elem.coeffs[:, c, 1] = self.bc_right[c]
                else:
                    elem.dof[c, 1] = count
                    count += 1
                prev_right[c] = elem.dof[c, 1]
        self._ndof = count
        return count

    def get_num_dofs(self) -> int:
        if self._ndof is None:
            raise RuntimeError("DOFs are not assigned; call assign_dofs() first")
        return self._ndof

    # ---------------------------------------------------------------- refinement
    def split_element(self, handle: int, p_left: int, p_right: int,
                      coeffs_left: Optional[np.ndarray] = None,
                      coeffs_right: Optional[np.ndarray] = None,
                      norm: Norm = Norm.H1):
        """Bisect an active element.

        Without explicit coefficients, the parent's solution (all slots) is
        transferred to the children by projection-based interpolation, which is
        exact when the child degrees are not lower than the parent's.
        Invalidates the DOF numbering.
        """
        parent = self._elements[handle]
        if not parent.active:
            raise ValueError(f"element {handle} is not active")
        xm = parent.midpoint
        left = self._new_element(parent.x1, xm, p_left, parent.level + 1, handle)
        right = self._new_element(xm, parent.x2, p_right, parent.level + 1, handle)

        if coeffs_left is None or coeffs_right is None:
            source = PiecewiseSolution([parent], self.neq, self.dtype)
            for s in range(self.n_sln):
                left.coeffs[s] = project_onto_element(source, left.x1, left.x2, p_left, norm, s)
                right.coeffs[s] = project_onto_element(source, right.x1, right.x2, p_right, norm, s)
        else:
            left.coeffs[:] = coeffs_left
            right.coeffs[:] = coeffs_right

        parent.active = False
        parent.children = (left.id, right.id)
        parent.dof = None
        self._ndof = None
        return left.id, right.id

    def set_degree(self, handle: int, p: int, coeffs: Optional[np.ndarray] = None) -> None:
        """Change the degree of an active element in place."""
        if p < 1:
            raise ValueError(f"polynomial degree must be >= 1, got {p}")
        elem = self._elements[handle]
        if not elem.active:
            raise ValueError(f"element {handle} is not active")
        elem.resize_coeffs(p)
        if coeffs is not None:
            elem.coeffs[:] = coeffs
        self._ndof = None

    def copy(self) -> "Space":
        return copy.deepcopy(self)

    def __repr__(self):
        ndof = self._ndof if self._ndof is not None else "?"
        return (f"Space([{self.a}, {self.b}], active={self.n_active_elements}, "
                f"neq={self.neq}, ndof={ndof})")


# -----------------------------------------------------------------------------
#  Coefficient vector <-> element storage
# -----------------------------------------------------------------------------
def solution_to_vector(space: Space, sln: int = 0) -> np.ndarray:
    """Gather the coefficients of solution slot ``sln`` into a DOF vector."""
    y = np.zeros(space.get_num_dofs(), dtype=space.dtype)
    for elem in space.active_elements():
        mask = elem.dof >= 0
        y[elem.dof[mask]] = elem.coeffs[sln][mask]
    return y


def vector_to_solution(y: np.ndarray, space: Space, sln: int = 0) -> None:
    """Scatter a DOF vector into the element coefficients of slot ``sln``."""
    if len(y) != space.get_num_dofs():
        raise ValueError(f"vector length {len(y)} != number of DOFs {space.get_num_dofs()}")
    for elem in space.active_elements():
        mask = elem.dof >= 0
        elem.coeffs[sln][mask] = y[elem.dof[mask]]


def construct_refined_space(space: Space, p_increase: int = 1, norm: Norm = Norm.H1) -> Space:
    """Globally refined copy of ``space``: every active element is bisected and
    both children get degree p + p_increase. The coarse solution is carried
    over exactly. DOFs of the returned space are assigned."""
    ref_space = space.copy()
    for elem in list(ref_space.active_elements()):
        ref_space.split_element(elem.id, elem.p + p_increase, elem.p + p_increase, norm=norm)
    ndof = ref_space.assign_dofs()
    logger.debug(f"Reference space: {ref_space.n_active_elements} elements, {ndof} DOFs")
    return ref_space
