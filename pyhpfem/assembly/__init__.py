from .weakform import WeakForm
from .discrete_problem import DiscreteProblem
__all__ = ['WeakForm', 'DiscreteProblem']
