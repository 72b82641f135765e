"""pyhpfem.assembly.discrete_problem
Global Jacobian / residual assembly over the active elements of a space.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from pyhpfem.assembly.weakform import WeakForm
from pyhpfem.core.space import Space
from pyhpfem.fem.reference import get_reference
from pyhpfem.integration.quadrature import interval_quadrature

logger = logging.getLogger(__name__)


class DiscreteProblem:
    """Weak form bound to a space.

    Element-local contributions are independent and may be computed on a
    thread pool (``n_workers > 1``). Each global structure has its own lock,
    so at most one ``add`` is in flight per matrix / vector.
    """

    def __init__(self, wf: WeakForm, space: Space, *, n_workers: int = 1, quad_extra: int = 1):
        if wf.neq != space.neq:
            raise ValueError(f"weak form has {wf.neq} equations, space has {space.neq}")
        self.space = space
        self.matrix_forms = wf.matrix_forms
        self.vector_forms = wf.vector_forms
        self.n_workers = max(1, int(n_workers))
        self.quad_extra = quad_extra
        self._matrix_lock = threading.Lock()
        self._vector_lock = threading.Lock()

    def n_points(self, p: int) -> int:
        """Gauss points per element of degree p."""
        return 2 * p + 1 + self.quad_extra

    # ------------------------------------------------------------------
    def _element_data(self, elem):
        n = self.n_points(elem.p)
        x, w = interval_quadrature(elem.x1, elem.x2, n)
        _, _, phi, dphi = get_reference(elem.p).tabulate(n)
        dphi = dphi * (2.0 / elem.length)
        u_prev = elem.coeffs @ phi           # (n_sln, neq, n)
        du_prev = elem.coeffs @ dphi
        return n, x, w, phi, dphi, u_prev, du_prev

    def element_contributions(self, elem, rhsonly: bool = False):
        """Local (rows, cols, values) for the matrix and (rows, values) for the
        residual; Dirichlet basis functions (dof -1) are skipped."""
        n, x, w, phi, dphi, u_prev, du_prev = self._element_data(elem)
        nb = elem.p + 1

        m_rows, m_cols, m_vals = [], [], []
        if not rhsonly:
            for form in self.matrix_forms:
                for k in range(nb):
                    row = elem.dof[form.i, k]
                    if row < 0:
                        continue
                    for l in range(nb):
                        col = elem.dof[form.j, l]
                        if col < 0:
                            continue
                        m_rows.append(row)
                        m_cols.append(col)
                        m_vals.append(form.fn(n, x, w, phi[l], dphi[l], phi[k], dphi[k],
                                              u_prev, du_prev, form.user_data))

        v_rows, v_vals = [], []
        for form in self.vector_forms:
            for k in range(nb):
                row = elem.dof[form.i, k]
                if row < 0:
                    continue
                v_rows.append(row)
                v_vals.append(form.fn(n, x, w, u_prev, du_prev, phi[k], dphi[k], form.user_data))

        return (m_rows, m_cols, m_vals), (v_rows, v_vals)

    def _assemble_element(self, elem, matrix, rhs, rhsonly):
        (m_rows, m_cols, m_vals), (v_rows, v_vals) = self.element_contributions(elem, rhsonly)
        if m_rows:
            with self._matrix_lock:
                matrix.add(m_rows, m_cols, m_vals)
        if v_rows:
            with self._vector_lock:
                rhs.add(v_rows, np.asarray(v_vals))

    def assemble(self, matrix=None, rhs=None, rhsonly: bool = False) -> None:
        """Zero ``matrix`` and ``rhs`` and accumulate all element contributions.

        ``matrix`` may be None when ``rhsonly`` is set.
        """
        ndof = self.space.get_num_dofs()
        if not rhsonly:
            matrix.prealloc(ndof)
        rhs.alloc(ndof)

        elements = list(self.space.active_elements())
        if self.n_workers == 1:
            for elem in elements:
                self._assemble_element(elem, matrix, rhs, rhsonly)
        else:
            with ThreadPoolExecutor(max_workers=self.n_workers) as pool:
                futures = [pool.submit(self._assemble_element, elem, matrix, rhs, rhsonly)
                           for elem in elements]
                for fut in futures:
                    fut.result()

        if not rhsonly:
            matrix.finish()
        rhs.finish()
        logger.debug(f"Assembled {len(elements)} elements, {ndof} DOFs")
