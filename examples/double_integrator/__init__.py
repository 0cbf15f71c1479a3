from .problem_definition import DoubleIntegrator
