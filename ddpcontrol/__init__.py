"""
`ddpcontrol` solves finite horizon, continuous-time nonlinear optimal control
problems with differential dynamic programming, and re-solves them from new
initial states for model predictive control.

---

* [`problem`](ddpcontrol/problem):
    `OptimalControlProblem` template for dynamics, costs, and constraints.

* [`controls`](ddpcontrol/controls):
    Control laws, including the feedback and open-loop policies returned by
    the solver.

* [`simulate`](ddpcontrol/simulate):
    Rollouts and closed-loop simulation.

* [`ddp`](ddpcontrol/ddp):
    The solver.

* [`settings`](ddpcontrol/settings):
    Solver configuration.
"""

__version__ = '0.1.0'

from . import controls, problem, simulate, utilities
from .exceptions import (ConfigurationError, ConstraintInfeasible,
                         IntegrationFailure, NumericalInstability)
from .settings import DDPSettings, LineSearchSettings, TrustRegionSettings
from .parallel import ThreadPool
from .ddp import DDPSolver, DDPSolution
