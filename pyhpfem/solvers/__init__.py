from .linear_solvers import (
    LinearSolverParameters, LinearSolverError, BackendConfigurationError, get_backend,
)
from .nonlinear_solver import NewtonSolver, NewtonParameters, NewtonConvergenceError
__all__ = ['LinearSolverParameters', 'LinearSolverError', 'BackendConfigurationError', 'get_backend',
           'NewtonSolver', 'NewtonParameters', 'NewtonConvergenceError']
