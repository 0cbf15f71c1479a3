"""
The `ddp` module contains the differential dynamic programming solver and its
building blocks.

---

* [`DDPSolver`](ddp/solver#DDPSolver):
    Iteration controller: rollout, backward pass, globalization step, and
    convergence test.

* [`DDPSolution`](ddp/solver#DDPSolution):
    Outcome of a solve, with the final trajectory, control law, and iteration
    records.

* [`riccati`](ddp/riccati):
    Local linear quadratic approximation and backward Riccati pass.

* [`globalization`](ddp/globalization):
    Line search and trust region strategies.

* [`constraints`](ddp/constraints):
    Relaxed log barrier and state constraint penalty.
"""

from .constraints import ConstraintState, relaxed_log_barrier
from .globalization import LineSearch, TrustRegion, StepResult
from .riccati import (QuadraticModel, RiccatiSolution, ValueFunction,
                      approximate, backward_pass)
from .solver import (DDPSolver, DDPSolution, IterationRecord, CONVERGED,
                     ITERATION_LIMIT, ABORTED, FAILED)
