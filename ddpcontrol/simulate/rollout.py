import numpy as np

from ._adaptive import integrate_adaptive
from ..utilities import pack_dataframe


class Trajectory:
    """
    State-input trajectory produced by `rollout`, together with the cost and
    constraint violation metrics accumulated along it. All arrays are
    read-only.

    Parameters
    ----------
    t : (n_points,) array
        Strictly increasing time grid (the accepted integration steps).
    x : (n_states, n_points) array
        States at times `t`.
    u : (n_controls, n_points) array
        Control inputs at times `t`.
    cost : float
        Integrated running cost plus terminal cost, including the inequality
        constraint barrier (if any).
    state_ise : float or None
        Integral of the squared state-only constraint violation, or `None` if
        it was not computed.
    final_state_violation : float
        Squared norm of the state-only constraints at the final state.
    state_input_ise : float
        Integral of the squared state-input constraint violation.
    """
    def __init__(self, t, x, u, cost, state_ise=None, final_state_violation=0.,
                 state_input_ise=0.):
        self.t = self._freeze(np.reshape(t, -1))
        self.x = self._freeze(np.reshape(x, (-1, self.t.shape[0])))
        self.u = self._freeze(np.reshape(u, (-1, self.t.shape[0])))

        if np.any(np.diff(self.t) <= 0.):
            raise ValueError("t must be strictly increasing")

        self.cost = float(cost)
        self.state_ise = None if state_ise is None else float(state_ise)
        self.final_state_violation = float(final_state_violation)
        self.state_input_ise = float(state_input_ise)

    @staticmethod
    def _freeze(array):
        array = np.array(array, dtype=float)
        array.flags.writeable = False
        return array

    @property
    def n_points(self):
        return self.t.shape[0]

    @property
    def t_span(self):
        return self.t[0], self.t[-1]

    def to_dataframe(self):
        """
        Pack the trajectory into a `DataFrame` using `pack_dataframe`.

        Returns
        -------
        data : DataFrame
            `DataFrame` with `n_points` rows and columns 't', 'x1', ..., 'xn',
            'u1', ..., 'um'.
        """
        return pack_dataframe(self.t, self.x, self.u)

    def __repr__(self):
        return (f"Trajectory(n_points={self.n_points:d}, "
                f"t_span=({self.t[0]:.4g}, {self.t[-1]:.4g}), "
                f"cost={self.cost:.6e}, state_ise={self.state_ise}, "
                f"state_input_ise={self.state_input_ise:.3e})")


def rollout(ocp, policy, x0, t_span, atol=1e-09, rtol=1e-06,
            min_time_step=1e-03, max_num_steps_per_second=10000,
            state_constraints=True, barrier=None):
    """
    Integrate the closed-loop dynamics `dx/dt = f(t, x, policy(t, x))` over a
    fixed time horizon with `AdaptiveRK45`, accumulating the running cost and
    the squared constraint violations along the way.

    Parameters
    ----------
    ocp : `OptimalControlProblem`
        Problem implementing `dynamics`, `running_cost`, `terminal_cost` and
        (optionally) constraint methods.
    policy : `Controller`
        Control law evaluated as `policy(t, x)`.
    x0 : (`ocp.n_states`,) array
        Initial state.
    t_span : 2-tuple of floats
        Time horizon `(t0, tf)` with `tf > t0`.
    atol : float, default=1e-09
        Absolute ODE tolerance.
    rtol : float, default=1e-06
        Relative ODE tolerance.
    min_time_step : float, default=1e-03
        Minimum integration step.
    max_num_steps_per_second : int, default=10000
        Maximum number of integration steps per unit time.
    state_constraints : bool, default=True
        If `False`, state-only constraints are not evaluated and
        `Trajectory.state_ise` is `None`.
    barrier : callable, optional
        Function `barrier(g)` of the inequality constraint values returning the
        (scalar) barrier cost, which is added to the running cost. If `None`,
        inequality constraints are not evaluated.

    Returns
    -------
    trajectory : `Trajectory`

    Raises
    ------
    IntegrationFailure
        If the integrator rejects a step at the minimum time step or exceeds
        the maximum number of steps.
    """
    t0, tf = float(t_span[0]), float(t_span[1])
    if not tf > t0:
        raise ValueError("t_span must satisfy t_span[1] > t_span[0]")

    n = ocp.n_states
    x0 = np.reshape(np.asarray(x0, dtype=float), -1)
    if x0.shape[0] != n:
        raise ValueError("x0 must have shape (n_states,)")

    def fun(t, y):
        x = y[:n]
        u = policy(t, x)

        L = ocp.running_cost(t, x, u)
        if barrier is not None:
            L += barrier(ocp.inequality_constraints(t, x, u))

        if state_constraints:
            h = ocp.state_constraints(t, x)
            dhdt = np.dot(h, h)
        else:
            dhdt = 0.

        c = ocp.state_input_constraints(t, x, u)

        return np.concatenate((ocp.dynamics(t, x, u), [L, dhdt, np.dot(c, c)]))

    y0 = np.concatenate((x0, np.zeros(3)))
    t, y = integrate_adaptive(fun, (t0, tf), y0, atol=atol, rtol=rtol,
                              min_step=min_time_step,
                              max_num_steps_per_second=max_num_steps_per_second)

    x = y[:n]
    u = np.stack([policy(t[k], x[:, k]) for k in range(t.shape[0])], axis=-1)

    cost = y[n, -1] + ocp.terminal_cost(tf, x[:, -1])

    if state_constraints:
        state_ise = y[n + 1, -1]
        h_f = ocp.state_constraints(tf, x[:, -1])
        final_state_violation = np.dot(h_f, h_f)
    else:
        state_ise, final_state_violation = None, 0.

    return Trajectory(t, x, u, cost, state_ise=state_ise,
                      final_state_violation=final_state_violation,
                      state_input_ise=y[n + 2, -1])
