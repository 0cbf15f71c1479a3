import numpy as np
from scipy.integrate import RK45
from scipy.integrate._ivp.rk import rk_step

from ..exceptions import IntegrationFailure


class AdaptiveRK45(RK45):
    """Explicit Runge-Kutta method of order 5(4) with a lower bound on the
    step size.

    Based on `scipy.integrate.RK45`. The step size controller is the same,
    except that steps are never attempted with a size smaller than `min_step`
    (apart from the final step, which may be clipped to `t_bound`). If the
    local error estimate rejects a step of size `min_step`, the integration
    fails rather than shrinking the step further.

    Parameters
    ----------
    fun : callable
        Right-hand side of the system, `fun(t, y)`.
    t0 : float
        Initial time.
    y0 : array_like, shape (n,)
        Initial state.
    t_bound : float
        Boundary time - the integration won't continue beyond it.
    min_step : float, default=0.
        Minimum allowed step size.
    first_step : float or None, optional
        Initial step size. Default is `None` which means that the algorithm
        should choose.
    max_step : float, default=np.inf
        Maximum allowed step size.
    rtol, atol : float and array_like, optional
        Relative and absolute tolerances. See `scipy.integrate.RK45`.
    """
    SAFETY = 0.9
    MIN_FACTOR = 0.2
    MAX_FACTOR = 10.

    TOO_SMALL_STEP = "Required step size is less than the minimum time step."

    def __init__(self, fun, t0, y0, t_bound, min_step=0., **kwargs):
        super().__init__(fun, t0, y0, t_bound, **kwargs)
        if min_step < 0.:
            raise ValueError("min_step must be non-negative")
        self.min_step = min_step
        self._error_exponent = -1. / (self.error_estimator_order + 1)

    def _error_norm(self, h, scale):
        err = self.K.T.dot(self.E) * h
        return np.linalg.norm(err / scale) / np.sqrt(err.shape[0])

    def _step_impl(self):
        t = self.t
        y = self.y

        spacing = 10. * np.abs(np.nextafter(t, self.direction * np.inf) - t)
        min_step = max(self.min_step, spacing)

        h_abs = min(max(self.h_abs, min_step), self.max_step)

        step_rejected = False
        while True:
            h = h_abs * self.direction
            t_new = t + h
            if self.direction * (t_new - self.t_bound) >= 0.:
                t_new = self.t_bound
            h = t_new - t
            h_abs = np.abs(h)

            y_new, f_new = rk_step(self.fun, t, y, self.f, h, self.A,
                                   self.B, self.C, self.K)
            scale = self.atol + np.maximum(np.abs(y), np.abs(y_new)) * self.rtol
            error_norm = self._error_norm(h, scale)

            if error_norm < 1.:
                if error_norm == 0.:
                    factor = self.MAX_FACTOR
                else:
                    factor = min(self.MAX_FACTOR,
                                 self.SAFETY * error_norm ** self._error_exponent)
                if step_rejected:
                    factor = min(1., factor)
                h_abs *= factor
                break

            # The final step may be clipped below min_step and shrink further
            final_step = t_new == self.t_bound
            if h_abs <= (spacing if final_step else min_step):
                return False, self.TOO_SMALL_STEP

            factor = max(self.MIN_FACTOR,
                         self.SAFETY * error_norm ** self._error_exponent)
            if h_abs > min_step:
                h_abs = max(min_step, h_abs * factor)
            else:
                h_abs = max(spacing, h_abs * factor)
            step_rejected = True

        self.h_previous = h
        self.y_old = y

        self.t = t_new
        self.y = y_new

        self.h_abs = h_abs
        self.f = f_new

        return True, None


def integrate_adaptive(fun, t_span, y0, atol=1e-09, rtol=1e-06, min_step=1e-03,
                       max_num_steps_per_second=10000, first_step=None,
                       max_num_steps=None):
    """
    Integrate `dy/dt = fun(t, y)` over `t_span` with `AdaptiveRK45`, recording
    the solution at every accepted step.

    Parameters
    ----------
    fun : callable
        Right-hand side of the system, `fun(t, y)`.
    t_span : 2-tuple of floats
        Interval of integration `(t0, tf)`. Can be decreasing, for integrating
        backwards in time.
    y0 : (n,) array
        Initial condition at `t_span[0]`.
    atol : float, default=1e-09
        Absolute error tolerance.
    rtol : float, default=1e-06
        Relative error tolerance.
    min_step : float, default=1e-03
        Minimum step size.
    max_num_steps_per_second : int, default=10000
        The integration fails if it takes more than
        `max_num_steps_per_second * abs(tf - t0)` steps.
    first_step : float, optional
        Initial step size. By default this is selected automatically.
    max_num_steps : int, optional
        Maximum number of steps. Overrides `max_num_steps_per_second`.

    Returns
    -------
    t : (n_points,) array
        Times of accepted steps, including `t0` and `tf`.
    y : (n, n_points) array
        Solution at times `t`.

    Raises
    ------
    IntegrationFailure
        If a step is rejected at the minimum step size or the maximum number of
        steps is exceeded.
    """
    t0, tf = float(t_span[0]), float(t_span[1])
    if t0 == tf:
        raise ValueError("t_span must have non-zero length")

    if max_num_steps is None:
        max_num_steps = max(1, int(np.ceil(max_num_steps_per_second
                                           * np.abs(tf - t0))))

    solver = AdaptiveRK45(fun, t0, np.array(y0, dtype=float), tf,
                          min_step=min_step, rtol=rtol, atol=atol,
                          first_step=first_step)

    t, y = [t0], [np.copy(solver.y)]
    while solver.status == 'running':
        if len(t) > max_num_steps:
            raise IntegrationFailure(
                f"Exceeded maximum number of integration steps "
                f"({max_num_steps:d}) at t = {solver.t:.4g}", t=solver.t)

        message = solver.step()

        if solver.status == 'failed':
            raise IntegrationFailure(f"{message} t = {solver.t:.4g}, "
                                     f"min_step = {min_step:.2e}", t=solver.t)

        t.append(solver.t)
        y.append(solver.y)

    return np.array(t), np.stack(y, axis=-1)
