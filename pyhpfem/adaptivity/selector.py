"""pyhpfem.adaptivity.selector
Greedy per-element choice between h-, p- and hp-refinement.

Every marked element is treated independently: each admissible candidate is
scored by the error reduction it achieves on the reference solution per added
degree of freedom, and the best one is committed to the coarse space.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from typing import List, Optional, Sequence, Tuple

import numpy as np

from pyhpfem.core.space import Space
from pyhpfem.core.topology import Element
from pyhpfem.fem.projection import Norm, PiecewiseSolution, difference_squared, project_onto_element

logger = logging.getLogger(__name__)


class AdaptType(IntEnum):
    HP = 0
    H = 1
    P = 2


@dataclass
class SelectionPolicy:
    """Bounds of the candidate enumeration."""

    max_p: int = 10                 # no candidate degree above this
    max_p_raise: int = 2            # p-candidates: p+1 .. p+max_p_raise
    hp_child_raise: int = 1         # hp-candidates: child degrees 1 .. p+hp_child_raise
    max_level: int = 30             # no splits below this refinement level


@dataclass
class Candidate:
    kind: str                       # "p", "h" or "hp"
    degrees: Tuple[int, ...]        # (p,) or (p_left, p_right)
    error: float = np.inf
    dof_cost: int = 0
    score: float = -np.inf

    @property
    def is_split(self) -> bool:
        return len(self.degrees) == 2


def mark_elements(err_est_array: Sequence[float], threshold: float) -> np.ndarray:
    """Indices of elements with ``err >= threshold * max(err)``."""
    err = np.asarray(err_est_array, dtype=float)
    if err.size == 0:
        return np.zeros(0, dtype=int)
    max_err = err.max()
    if max_err <= 0.0:
        return np.zeros(0, dtype=int)
    return np.flatnonzero(err >= threshold * max_err)


def enumerate_candidates(elem: Element, adapt_type: AdaptType,
                         policy: SelectionPolicy) -> List[Candidate]:
    p = elem.p
    cands = []
    if adapt_type in (AdaptType.P, AdaptType.HP):
        for k in range(1, policy.max_p_raise + 1):
            if p + k <= policy.max_p:
                cands.append(Candidate("p", (p + k,)))
    can_split = elem.level < policy.max_level
    if adapt_type in (AdaptType.H, AdaptType.HP) and can_split:
        cands.append(Candidate("h", (p, p)))
    if adapt_type == AdaptType.HP and can_split:
        top = min(p + policy.hp_child_raise, policy.max_p)
        for p1 in range(1, top + 1):
            for p2 in range(1, top + 1):
                if (p1, p2) != (p, p):
                    cands.append(Candidate("hp", (p1, p2)))
    return cands


def dof_cost(elem: Element, cand: Candidate, neq: int) -> int:
    """DOFs added minus DOFs removed by committing ``cand``."""
    if cand.is_split:
        p1, p2 = cand.degrees
        return neq * (p1 + p2 - elem.p)
    return neq * (cand.degrees[0] - elem.p)


def _candidate_error(ref: PiecewiseSolution, elem: Element, cand: Candidate, norm: Norm) -> float:
    if cand.is_split:
        xm = elem.midpoint
        p1, p2 = cand.degrees
        cl = project_onto_element(ref, elem.x1, xm, p1, norm)
        cr = project_onto_element(ref, xm, elem.x2, p2, norm)
        err2 = difference_squared(ref, elem.x1, xm, cl, norm) + \
            difference_squared(ref, xm, elem.x2, cr, norm)
    else:
        c = project_onto_element(ref, elem.x1, elem.x2, cand.degrees[0], norm)
        err2 = difference_squared(ref, elem.x1, elem.x2, c, norm)
    return float(np.sqrt(err2))


def select_refinement(elem: Element, elem_err: float, ref: PiecewiseSolution,
                      adapt_type: AdaptType, norm: Norm, policy: SelectionPolicy,
                      neq: int) -> Optional[Candidate]:
    """Best candidate for ``elem``, or None if nothing is admissible.

    score = (elem_err - candidate_err) / max(dof_cost, 1); ties go to the
    lower candidate error, then to the lower DOF cost. Candidates that do not
    add DOFs are not admissible.
    """
    best = None
    for cand in enumerate_candidates(elem, adapt_type, policy):
        cand.dof_cost = dof_cost(elem, cand, neq)
        if cand.dof_cost <= 0:
            continue
        cand.error = _candidate_error(ref, elem, cand, norm)
        cand.score = (elem_err - cand.error) / max(cand.dof_cost, 1)
        key = (-cand.score, cand.error, cand.dof_cost)
        if best is None or key < (-best.score, best.error, best.dof_cost):
            best = cand
    return best


def apply_candidate(space: Space, elem: Element, cand: Candidate,
                    ref: PiecewiseSolution, norm: Norm) -> None:
    """Commit ``cand`` to ``space``.

    New coefficients are the projection of the reference solution; the outer
    vertex values of the element are kept so the coarse solution stays
    continuous with the untouched neighbours.
    """
    n_sln = space.n_sln
    left = elem.coeffs[:, :, 0].copy()
    right = elem.coeffs[:, :, 1].copy()
    if cand.is_split:
        xm = elem.midpoint
        p1, p2 = cand.degrees
        cl = np.zeros((n_sln, space.neq, p1 + 1), dtype=space.dtype)
        cr = np.zeros((n_sln, space.neq, p2 + 1), dtype=space.dtype)
        for s in range(n_sln):
            um = ref.value_at(xm, s)
            cl[s] = project_onto_element(ref, elem.x1, xm, p1, norm, s, (left[s], um))
            cr[s] = project_onto_element(ref, xm, elem.x2, p2, norm, s, (um, right[s]))
        space.split_element(elem.id, p1, p2, cl, cr)
    else:
        p_new = cand.degrees[0]
        c = np.zeros((n_sln, space.neq, p_new + 1), dtype=space.dtype)
        for s in range(n_sln):
            c[s] = project_onto_element(ref, elem.x1, elem.x2, p_new, norm, s, (left[s], right[s]))
        space.set_degree(elem.id, p_new, c)


def adapt(norm: Norm, adapt_type: AdaptType, threshold: float,
          err_est_array: Sequence[float], space: Space, ref_space: Space,
          policy: Optional[SelectionPolicy] = None) -> List[Tuple[int, Candidate]]:
    """
    Refine the marked elements of ``space`` in place and re-enumerate DOFs.

    Parameters
    ----------
    norm : Norm
        Norm used to measure candidate errors.
    adapt_type : AdaptType
        HP, H or P.
    threshold : float
        Elements with error >= threshold * max error are refined.
    err_est_array : sequence of float
        One error per active element of ``space``, left to right.
    space, ref_space : Space
        Coarse space (mutated) and the reference space holding the fine solution.

    Returns
    -------
    list of (element handle, committed Candidate)
    """
    policy = policy or SelectionPolicy()
    active = list(space.active_elements())
    if len(err_est_array) != len(active):
        raise ValueError(
            f"got {len(err_est_array)} element errors for {len(active)} active elements"
        )
    marked = mark_elements(err_est_array, threshold)
    ref = PiecewiseSolution.from_space(ref_space)

    committed = []
    for idx in marked:
        elem = active[idx]
        best = select_refinement(elem, float(err_est_array[idx]), ref, AdaptType(adapt_type),
                                 norm, policy, space.neq)
        if best is None:
            logger.warning(f"No admissible refinement for {elem}; element left unchanged")
            continue
        logger.debug(f"{elem}: {best.kind}-refinement to {best.degrees} "
                     f"(err {err_est_array[idx]:.3e} -> {best.error:.3e}, +{best.dof_cost} DOFs)")
        apply_candidate(space, elem, best, ref, norm)
        committed.append((elem.id, best))

    ndof = space.assign_dofs()
    logger.info(f"Refined {len(committed)} of {len(active)} elements, ndof = {ndof}")
    return committed
