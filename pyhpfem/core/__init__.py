from .topology import Element
from .space import Space, solution_to_vector, vector_to_solution, construct_refined_space
__all__=['Element','Space','solution_to_vector','vector_to_solution','construct_refined_space']
