import numpy as np
from dataclasses import dataclass, field
from typing import Tuple, Optional


@dataclass
class Element:
    """
    One interval element of the refinement tree.

    ``id`` is a stable handle into the owning Space's arena; ``parent`` and
    ``children`` are handles as well. Inactive elements keep their record so
    that the refinement history survives copies of the space.

    Element-local storage:
      dof    : (neq, p+1) global DOF index per basis function, -1 = Dirichlet
      coeffs : (n_sln, neq, p+1) solution coefficients
    """
    id: int
    x1: float
    x2: float
    p: int
    level: int = 0
    parent: Optional[int] = None
    children: Tuple[int, ...] = ()
    active: bool = True
    dof: np.ndarray = field(default=None, repr=False)
    coeffs: np.ndarray = field(default=None, repr=False)

    @property
    def length(self) -> float:
        return self.x2 - self.x1

    @property
    def midpoint(self) -> float:
        return 0.5 * (self.x1 + self.x2)

    def resize_coeffs(self, p: int) -> None:
        """Change the degree, truncating or zero-padding the bubble coefficients."""
        n_sln, neq, _ = self.coeffs.shape
        new = np.zeros((n_sln, neq, p + 1), dtype=self.coeffs.dtype)
        n = min(p, self.p) + 1
        new[:, :, :n] = self.coeffs[:, :, :n]
        self.coeffs = new
        self.p = p
        self.dof = None

    def __repr__(self):
        state = "active" if self.active else f"split -> {self.children}"
        return f"Element {self.id}([{self.x1:.6g}, {self.x2:.6g}], p={self.p}, {state})"
