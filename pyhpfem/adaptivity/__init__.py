from .error_estimator import calc_err_est, calc_err_exact
from .selector import AdaptType, SelectionPolicy, adapt
from .driver import AdaptivityParameters, AdaptivityResult, AdaptiveSolver
__all__ = ['calc_err_est', 'calc_err_exact', 'AdaptType', 'SelectionPolicy', 'adapt',
           'AdaptivityParameters', 'AdaptivityResult', 'AdaptiveSolver']
