import numpy as np
from scipy.integrate import solve_ivp
from tqdm import tqdm


def integrate_fixed_time(ocp, controller, x0, t_span, t_eval=None,
                         method='RK45', atol=1e-06, rtol=1e-03):
    """
    Integrate continuous-time system dynamics with a given control law over a
    fixed time horizon for one initial condition. Unlike `rollout`, this uses
    `scipy.integrate.solve_ivp` without a minimum step and does not accumulate
    cost or constraint metrics, and is intended for evaluating computed
    policies.

    Parameters
    ----------
    ocp : `OptimalControlProblem`
        An instance of an `OptimalControlProblem` subclass implementing
        `dynamics`.
    controller : `Controller`
        Control law evaluated as `controller(t, x)`.
    x0 : (`ocp.n_states`,) array
        Initial state.
    t_span : 2-tuple of floats
        Interval of integration `(t0, tf)`.
    t_eval : array_like, optional
        Times at which to store the computed solution, must be sorted and lie
        within `t_span`. If `None` (default), use points selected by the solver.
    method : string or `OdeSolver`, default='RK45'
        See `scipy.integrate.solve_ivp`.
    atol : float or array_like, default=1e-06
        See `scipy.integrate.solve_ivp`.
    rtol : float or array_like, default=1e-03
        See `scipy.integrate.solve_ivp`.

    Returns
    -------
    t : (n_points,) array
        Time points.
    x : (`ocp.n_states`, n_points) array
        System states at times `t`.
    u : (`ocp.n_controls`, n_points) array
        Control inputs at times `t`.
    status : int
        Reason for algorithm termination:

            * -1: Integration step failed.
            *  0: The solver successfully reached the end of `t_span`.
    """
    def fun(t, x):
        return ocp.dynamics(t, x, controller(t, x))

    ode_sol = solve_ivp(fun, t_span, np.reshape(x0, -1), t_eval=t_eval,
                        method=method, rtol=rtol, atol=atol)

    t, x = ode_sol.t, ode_sol.y
    u = np.stack([controller(t[k], x[:, k]) for k in range(t.shape[0])],
                 axis=-1)

    return t, x, u, ode_sol.status


def monte_carlo(ocp, controller, x0, t_span, t_eval=None, method='RK45',
                atol=1e-06, rtol=1e-03):
    """
    Wraps `integrate_fixed_time` to integrate continuous time system dynamics
    with a given control law over a fixed time horizon for multiple initial
    conditions.

    Parameters
    ----------
    ocp : `OptimalControlProblem`
        An instance of an `OptimalControlProblem` subclass implementing
        `dynamics`.
    controller : `Controller`
        Control law evaluated as `controller(t, x)`.
    x0 : (`ocp.n_states`, n_sims) array
        Initial states.
    t_span : 2-tuple of floats
        Interval of integration `(t0, tf)`.
    t_eval : array_like, optional
        Times at which to store the computed solution.
    method : string or `OdeSolver`, default='RK45'
        See `scipy.integrate.solve_ivp`.
    atol : float or array_like, default=1e-06
        See `scipy.integrate.solve_ivp`.
    rtol : float or array_like, default=1e-03
        See `scipy.integrate.solve_ivp`.

    Returns
    -------
    sims : (n_sims,) object array of dicts
        The results of the closed loop simulations for each initial condition,
        `x0[:, i]`. Each list element is a dict containing

            * 't' : (n_points,) array
                Time points.
            * 'x' : (`ocp.n_states`, n_points) array
                System states at times 't'.
            * 'u' : (`ocp.n_controls`, n_points) array
                Control inputs at times 't'.
    status : (n_sims,) integer array
        `status[i]` contains the reason for algorithm termination for `sims[i]`:

            * -1: Integration step failed.
            *  0: The solver successfully reached the end of `t_span`.
    """
    x0_pool = np.reshape(x0, (ocp.n_states, -1)).T
    n_sims = x0_pool.shape[0]

    sims = []
    status = np.zeros(n_sims, dtype=int)

    print(f"Simulating closed-loop system for {n_sims:d} initial conditions "
          f"({controller})...")
    for i in tqdm(range(n_sims)):
        t, x, u, status[i] = integrate_fixed_time(
            ocp, controller, x0_pool[i], t_span, t_eval=t_eval, method=method,
            atol=atol, rtol=rtol)
        sims.append({'t': t, 'x': x, 'u': u})

    return np.asarray(sims, dtype=object), status
