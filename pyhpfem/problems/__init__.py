"""pyhpfem.problems
Benchmark boundary-value problems with known exact solutions.

Every module exposes ``build(n_elem, p_init, dtype) -> Problem``.
"""
from dataclasses import dataclass
from importlib import import_module
from typing import Optional

from pyhpfem.adaptivity.error_estimator import ExactSolution
from pyhpfem.assembly.weakform import WeakForm
from pyhpfem.core.space import Space


@dataclass
class Problem:
    name: str
    space: Space
    wf: WeakForm
    exact_sol: Optional[ExactSolution] = None


PROBLEMS = {
    "poisson": "pyhpfem.problems.poisson",
    "nonlinear": "pyhpfem.problems.nonlinear",
    "system": "pyhpfem.problems.system",
}


def get_problem(name: str, n_elem: int = 2, p_init: int = 1, dtype=float) -> Problem:
    try:
        module = PROBLEMS[name]
    except KeyError:
        raise ValueError(f"unknown problem '{name}', expected one of {sorted(PROBLEMS)}") from None
    return import_module(module).build(n_elem=n_elem, p_init=p_init, dtype=dtype)


__all__ = ['Problem', 'PROBLEMS', 'get_problem']
