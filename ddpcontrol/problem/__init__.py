"""
The `problem` module implements the `OptimalControlProblem` class which serves
as a standard template for subclasses implementing specific optimal control
problems (OCPs) to be solved by `DDPSolver`. The `LinearQuadraticProblem` class
is a simple example of how one might subclass `OptimalControlProblem` to
realize a prototypical OCP. Dynamics, cost, and constraint parameters are not
hard-coded in the class but stored in a `ProblemParameters` instance attached
to the class instance, and can be updated between solves.

---

* [`OptimalControlProblem`](problem/problem#OptimalControlProblem):
    Base superclass used to implement OCPs.

* [`LinearQuadraticProblem`](problem/linear_quadratic#LinearQuadraticProblem):
    `OptimalControlProblem` implementing linear dynamics and quadratic costs
    with optional linear constraints.

* [`ProblemParameters`](problem/problem#ProblemParameters):
    Class housing dynamics and cost function parameters for
    `OptimalControlProblem` instances.
"""

from .problem import OptimalControlProblem, ProblemParameters
from .linear_quadratic import LinearQuadraticProblem
