"""
The `simulate` module contains functions to integrate closed-loop dynamical
systems. `rollout` is the forward pass used by `DDPSolver`: it integrates the
closed loop with an adaptive Runge-Kutta method which enforces a minimum time
step, and accumulates cost and constraint violation metrics. The remaining
functions wrap `scipy.integrate.solve_ivp` for evaluating computed policies.

---

* [`rollout`](simulate/rollout#rollout):
    Integrate a closed-loop system and accumulate cost and constraint metrics.

* [`Trajectory`](simulate/rollout#Trajectory):
    Result of a rollout.

* [`AdaptiveRK45`](simulate/_adaptive#AdaptiveRK45):
    `scipy.integrate.RK45` with a minimum step size.

* [`integrate_fixed_time`](simulate/simulate#integrate_fixed_time):
    Integrate a closed-loop system over a fixed time horizon.

* [`monte_carlo`](simulate/simulate#monte_carlo):
    Integrate a closed-loop system over a fixed time horizon from multiple
    initial conditions.
"""

from ._adaptive import AdaptiveRK45, integrate_adaptive
from .rollout import Trajectory, rollout
from .simulate import integrate_fixed_time, monte_carlo
