"""
The `controls` module contains the `Controller` template class for control
laws `u(t, x)` which can be rolled out and optimized by `DDPSolver`. The
solver produces either a `LinearFeedbackPolicy` or a `FeedforwardPolicy`,
depending on its settings. The `LinearQuadraticRegulator` is implemented as a
closed-form reference and as a convenient initial guess.
"""

import numpy as np
from scipy.linalg import solve_continuous_are

from . import utilities


class Controller:
    """Base class for implementing a (possibly time-varying) state feedback
    controller."""
    def __init__(self, *args, **kwargs):
        pass

    def __str__(self):
        return type(self).__name__

    def __call__(self, t, x):
        """
        Evaluates the control, `u(t, x)`, for a single time and state.

        Parameters
        ----------
        t : float
            Time at which to evaluate the control.
        x : (n_states,) array
            State to evaluate the control for.

        Returns
        -------
        u : (n_controls,) array
            Control input.
        """
        raise NotImplementedError

    def jac(self, t, x, u0=None):
        """
        Evaluates the Jacobian of the control with respect to the state,
        $du/dx (t, x)$. Default implementation uses finite differences.

        Parameters
        ----------
        t : float
            Time at which to evaluate the control.
        x : (n_states,) array
            State to evaluate the control for.
        u0 : (n_controls,) array, optional
            `self(t, x)`, pre-evaluated at the inputs.

        Returns
        -------
        dudx : (n_controls, n_states) array
            Jacobian of the control.
        """
        return utilities.approx_derivative(lambda x: self(t, x), x, f0=u0)


class _TimeIndexedPolicy(Controller):
    """Shared time grid handling for policies stored on a sample grid. Values
    are interpolated linearly in time and held constant outside the grid."""
    def _set_time(self, t):
        t = np.array(t, dtype=float).reshape(-1)
        if t.shape[0] < 1:
            raise ValueError("t must contain at least one time")
        if np.any(np.diff(t) <= 0.):
            raise ValueError("t must be strictly increasing")
        t.flags.writeable = False
        self.t = t

    @staticmethod
    def _freeze(array):
        array = np.array(array, dtype=float)
        array.flags.writeable = False
        return array

    @property
    def t_span(self):
        """tuple. First and last time of the policy grid."""
        return self.t[0], self.t[-1]


class LinearFeedbackPolicy(_TimeIndexedPolicy):
    """
    Time-varying affine state feedback, `u(t, x) = bias(t) + gain(t) @ x`.
    Arrays are copied and made read-only at construction.

    Parameters
    ----------
    t : (n_points,) array
        Strictly increasing time grid.
    bias : (n_controls, n_points) array
        Feedforward (bias) term at each time in `t`.
    gain : (n_controls, n_states, n_points) array
        Feedback gain at each time in `t`.
    """
    def __init__(self, t, bias, gain):
        self._set_time(t)
        n_points = self.t.shape[0]

        bias = np.asarray(bias, dtype=float)
        if bias.ndim == 1 and n_points == 1:
            bias = bias[:, None]
        if bias.ndim != 2 or bias.shape[1] != n_points:
            raise ValueError("bias must have shape (n_controls, n_points)")

        gain = np.asarray(gain, dtype=float)
        if gain.ndim == 2 and n_points == 1:
            gain = gain[..., None]
        if gain.ndim != 3 or gain.shape[::2] != bias.shape:
            raise ValueError(
                "gain must have shape (n_controls, n_states, n_points)")

        self.bias = self._freeze(bias)
        self.gain = self._freeze(gain)

        self.n_controls, self.n_states = self.gain.shape[:2]

    def __call__(self, t, x):
        bias = utilities.interp_time(self.t, self.bias, t)
        gain = utilities.interp_time(self.t, self.gain, t)
        return bias + gain @ np.reshape(x, -1)

    def jac(self, t, x, u0=None):
        """Returns the feedback gain interpolated at time `t`, independent of
        `x`."""
        return utilities.interp_time(self.t, self.gain, t)

    def feedforward(self, t, x):
        """
        Convert into an open-loop policy by evaluating the control along a
        state trajectory.

        Parameters
        ----------
        t : (n_points,) array
            Time grid of the trajectory.
        x : (n_states, n_points) array
            States along the trajectory.

        Returns
        -------
        policy : `FeedforwardPolicy`
        """
        t = np.reshape(t, -1)
        x = np.reshape(x, (self.n_states, t.shape[0]))
        u = np.stack([self(t[k], x[:, k]) for k in range(t.shape[0])], axis=-1)
        return FeedforwardPolicy(t, u)


class FeedforwardPolicy(_TimeIndexedPolicy):
    """
    Open-loop control, `u(t, x) = u(t)`.

    Parameters
    ----------
    t : (n_points,) array
        Strictly increasing time grid.
    u : (n_controls, n_points) array
        Control inputs at each time in `t`.
    """
    def __init__(self, t, u):
        self._set_time(t)

        u = np.asarray(u, dtype=float)
        if u.ndim == 1 and self.t.shape[0] == 1:
            u = u[:, None]
        if u.ndim != 2 or u.shape[1] != self.t.shape[0]:
            raise ValueError("u must have shape (n_controls, n_points)")

        self.u = self._freeze(u)
        self.n_controls = self.u.shape[0]

    def __call__(self, t, x=None):
        return utilities.interp_time(self.t, self.u, t)

    def jac(self, t, x, u0=None):
        return np.zeros((self.n_controls, np.size(x)))


class LinearQuadraticRegulator(Controller):
    """Infinite horizon linear quadratic regulator (LQR) control,
    `u(t, x) = uf - K @ (x - xf)`."""
    def __init__(self, A=None, B=None, Q=None, R=None, K=None, P=None,
                 xf=0., uf=0.):
        """
        Parameters
        ----------
        A : (n_states, n_states) array, optional
            State Jacobian matrix, $df/dx (x_f, u_f)$. Required if `K` is
            `None`.
        B : (n_states, n_controls) array, optional
            Control Jacobian matrix, $df/du (x_f, u_f)$. Required if `K` is
            `None`.
        Q : (n_states, n_states) array, optional
            Running cost weight on states, `L = x.T @ Q @ x + u.T @ R @ u`.
            Must be positive semi-definite. Required if `K` is `None`.
        R : (n_controls, n_controls) array, optional
            Running cost weight on controls. Must be positive definite.
            Required if `K` is `None`.
        K : (n_controls, n_states) array, optional
            Previously-computed control gain matrix for this problem,
            `K = inv(R) @ B.T @ P`.
        P : (n_states, n_states) array, optional
            Previously-computed solution to the continuous algebraic Riccati
            equation. The optimal infinite horizon cost-to-go is
            `(x - xf).T @ P @ (x - xf)`.
        xf : {(n_states,) array, float}, default=0.
            Goal state, nominal linearization point.
        uf : {(n_controls,) array, float}, default=0.
            Control values at nominal linearization point.
        """
        if P is not None:
            self.P = np.asarray(P, dtype=float)

        if K is not None:
            self.K = np.atleast_2d(np.asarray(K, dtype=float))
        else:
            B = np.reshape(B, (np.shape(A)[0], -1))
            R = np.reshape(R, (B.shape[1], B.shape[1]))

            if not hasattr(self, 'P'):
                self.P = self.solve_care(A, B, Q, R)

            self.K = np.linalg.solve(R, B.T @ self.P)

        self.n_controls, self.n_states = self.K.shape

        self.xf = utilities.resize_vector(xf, self.n_states)
        self.uf = utilities.resize_vector(uf, self.n_controls)

    @staticmethod
    def solve_care(A, B, Q, R, zero_tol=1e-12):
        r"""
        Wrapper of `scipy.linalg.solve_continuous_are` to solve continuous-time
        algebraic Riccati equations (CARE), where one or more columns of `A` and
        `Q` can be all zeros. Such zero-column states don't impact dynamics of
        other states or the cost function, and are excluded before solving the
        CARE for the remaining states.

        Parameters
        ----------
        A : (n_states, n_states) array
            State Jacobian matrix.
        B : (n_states, n_controls) array
            Control Jacobian matrix.
        Q : (n_states, n_states) array
            Running cost weight on states. Must be positive semi-definite.
        R : (n_controls, n_controls) array
            Running cost weight on controls. Must be positive definite.
        zero_tol : float, default=1e-12
            Absolute tolerance when comparing elements of `A` and `Q` to zero.

        Returns
        -------
        P : (n_states, n_states) array
            Solution to the continuous-time algebraic Riccati equation. If any
            columns of `A` and `Q` are all zeros, these columns of `P` will also
            be zero.

        Raises
        ------
        LinAlgError
            For cases where the stable subspace of the pencil could not be
            isolated. See `scipy.linalg.solve_continuous_are` for details.
        """
        n = np.shape(A)[0]

        A = np.reshape(A, (n, n))
        Q = np.reshape(Q, (n, n))
        B = np.reshape(B, (n, -1))
        R = np.reshape(R, (B.shape[1], B.shape[1]))

        A_zero_idx = np.isclose(A, 0., atol=zero_tol).all(axis=0)
        Q_zero_idx = np.isclose(Q, 0., atol=zero_tol).all(axis=0)
        non_zero_idx = ~ np.all([A_zero_idx, Q_zero_idx], axis=0)

        A = A[non_zero_idx][:, non_zero_idx]
        Q = Q[non_zero_idx][:, non_zero_idx]
        B = B[non_zero_idx]

        P = np.zeros((n, n))
        P_sub = np.zeros((A.shape[0], n))
        P_sub[:, non_zero_idx] = solve_continuous_are(A, B, Q, R)
        P[non_zero_idx] = P_sub

        return P

    def __call__(self, t, x):
        return self.uf - self.K @ (np.reshape(x, -1) - self.xf)

    def jac(self, t, x, u0=None):
        return - self.K

    def as_feedback_policy(self, t):
        """
        Represent the LQR control law as a `LinearFeedbackPolicy` on a time
        grid, e.g. for use as an initial guess.

        Parameters
        ----------
        t : (n_points,) array
            Time grid.

        Returns
        -------
        policy : `LinearFeedbackPolicy`
        """
        t = np.reshape(t, -1)
        bias = np.tile((self.uf + self.K @ self.xf)[:, None], (1, t.shape[0]))
        gain = np.tile(- self.K[..., None], (1, 1, t.shape[0]))
        return LinearFeedbackPolicy(t, bias, gain)


class ConstantControl(Controller):
    """A `Controller` subclass which returns a single constant value for all
    times and states, used as the default initial guess and for simulating
    uncontrolled systems."""
    def __init__(self, u):
        """
        Parameters
        ----------
        u : (n_controls,) array
            The constant value to return for all inputs.
        """
        self.u = np.reshape(np.asarray(u, dtype=float), -1)
        self.n_controls = self.u.shape[0]

    def __call__(self, t, x):
        return np.copy(self.u)

    def jac(self, t, x, u0=None):
        return np.zeros((self.n_controls, np.size(x)))
