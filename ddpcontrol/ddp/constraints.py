"""
Constraint handling for `DDPSolver`: the relaxed log barrier for inequality
constraints and the geometrically growing quadratic penalty for state-only
equality constraints. State-input equality constraints are eliminated by
projection in the backward pass and only measured here through their ISE.
"""

import numpy as np


def relaxed_log_barrier(g, mu, delta):
    r"""
    Evaluate the relaxed log barrier and its first two derivatives for
    inequality constraints `g >= 0`,

        `B(g) = - mu * log(g)` if `g > delta`,
        `B(g) = mu * (((g - 2 delta) / delta)**2 / 2 - 1/2 - log(delta))`
        otherwise.

    The quadratic extension matches the value, slope, and curvature of the
    logarithm at `g = delta`, so the barrier is twice continuously
    differentiable and defined for infeasible `g`.

    Parameters
    ----------
    g : array_like
        Constraint values.
    mu : float
        Barrier scaling.
    delta : float
        Positive threshold at which the barrier becomes quadratic.

    Returns
    -------
    value : array
        Barrier `B(g)`, same shape as `g`.
    grad : array
        First derivative $dB/dg$.
    hess : array
        Second derivative $d^2B/dg^2$. Always positive.
    """
    g = np.asarray(g, dtype=float)
    log_part = g > delta
    g_safe = np.where(log_part, g, 1.)

    value = np.where(
        log_part, - mu * np.log(g_safe),
        mu * (0.5 * ((g - 2. * delta) / delta) ** 2 - 0.5 - np.log(delta)))
    grad = np.where(log_part, - mu / g_safe, mu * (g - 2. * delta) / delta ** 2)
    hess = np.where(log_part, mu / g_safe ** 2, mu / delta ** 2)

    return value, grad, hess


class ConstraintState:
    """
    Penalty and barrier parameters of one solver, and which constraint
    handling paths are active.

    The state constraint penalty at outer iteration `i` is
    `state_constraint_penalty_coeff * state_constraint_penalty_base ** i`,
    capped at `max_state_constraint_penalty`.
    The iteration index is reset to zero at the start of every solve if
    `settings.penalty_reset == 'solve'`, or only at the first solve if
    `settings.penalty_reset == 'persist'`.

    Parameters
    ----------
    settings : `DDPSettings`
        Solver settings.
    sizes : dict
        Number of constraints of each kind, as returned by
        `OptimalControlProblem.constraint_sizes`.
    """
    def __init__(self, settings, sizes):
        self.coeff = settings.state_constraint_penalty_coeff
        self.base = settings.state_constraint_penalty_base
        self.max_penalty = settings.max_state_constraint_penalty
        self.mu = settings.inequality_constraint_mu
        self.delta = settings.inequality_constraint_delta
        self.rho = settings.merit_function_rho
        self.reset_policy = settings.penalty_reset

        self.n_state_input = int(sizes.get('state_input', 0))
        self.n_state = int(sizes.get('state', 0))
        self.n_inequality = int(sizes.get('inequality', 0))

        self.state_active = (not settings.no_state_constraints
                             and self.n_state > 0)
        self.inequality_active = self.mu > 0. and self.n_inequality > 0
        self.state_input_active = self.n_state_input > 0

        self.iteration = 0
        self._n_solves = 0

    @property
    def penalty(self):
        """float. Current state constraint penalty coefficient, zero if state
        constraints are ignored."""
        if not self.state_active or self.coeff == 0.:
            return 0.
        # Compare exponents so that large iteration counts cannot overflow
        if (self.base > 1. and self.iteration * np.log(self.base)
                >= np.log(self.max_penalty / self.coeff)):
            return self.max_penalty
        return min(self.max_penalty, self.coeff * self.base ** self.iteration)

    @property
    def constrained(self):
        """bool. Whether any constraint handling path is active."""
        return (self.state_active or self.inequality_active
                or self.state_input_active)

    def start_solve(self):
        """Apply the reset policy at the start of a solve."""
        if self.reset_policy == 'solve' or self._n_solves == 0:
            self.iteration = 0
        self._n_solves += 1

    def advance(self):
        """Move to the next outer iteration, escalating the penalty."""
        self.iteration += 1

    def barrier(self, g):
        """Sum of the relaxed log barrier over all inequality constraints
        `g`, or zero if inequality handling is inactive."""
        if not self.inequality_active or np.size(g) == 0:
            return 0.
        return float(relaxed_log_barrier(g, self.mu, self.delta)[0].sum())

    def barrier_terms(self, g):
        """Relaxed log barrier value, gradient, and Hessian for each of the
        constraints `g`."""
        return relaxed_log_barrier(g, self.mu, self.delta)

    def state_penalty(self, trajectory):
        """
        Quadratic penalty of the state-only constraint violation of a
        trajectory, `penalty / 2 * (state_ise + final_state_violation)`.

        Parameters
        ----------
        trajectory : `Trajectory`

        Returns
        -------
        penalty : float
        """
        if not self.state_active or trajectory.state_ise is None:
            return 0.
        return 0.5 * self.penalty * (trajectory.state_ise
                                     + trajectory.final_state_violation)

    def merit(self, trajectory):
        """
        Merit function used for step acceptance,
        `cost + state_penalty + rho * state_input_ise`.

        Parameters
        ----------
        trajectory : `Trajectory`

        Returns
        -------
        merit : float
        """
        return (trajectory.cost + self.state_penalty(trajectory)
                + self.rho * trajectory.state_input_ise)
