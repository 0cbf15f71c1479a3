import numpy as np

from ..utilities import resize_vector
from .problem import OptimalControlProblem


def _check_psd(M, name, shape, definite=False):
    try:
        M = np.reshape(np.asarray(M, dtype=float), shape)
        eigs = np.linalg.eigvalsh(0.5 * (M + M.T))
        if not np.allclose(M, M.T):
            raise ValueError
        if definite and not np.all(eigs > 0.):
            raise ValueError
        if not np.all(eigs >= -1e-12 * max(1., np.abs(eigs).max(initial=0.))):
            raise ValueError
    except ValueError:
        raise ValueError(f"{name} must have shape {shape} and be positive "
                         f"{'definite' if definite else 'semi-definite'}")
    return M


class LinearQuadraticProblem(OptimalControlProblem):
    """
    General class for defining finite horizon linear quadratic problems, with
    optional input bounds and linear equality constraints. The dynamics and
    costs are

        `dx/dt = A @ (x - xf) + B @ (u - uf)`,
        `L = (x - xf).T @ Q @ (x - xf) + (u - uf).T @ R @ (u - uf)`,
        `F = (x - xf).T @ Qf @ (x - xf)`.

    Takes the following parameters upon initialization.

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
    Qf : (n_states, n_states) array, optional
        Terminal cost weight on states. Must be positive semi-definite.
        Defaults to zero.
    xf : {(n_states,) array, float}, default=0.
        Goal state, nominal linearization point. If float, will be broadcast
        into an array of shape `(n_states,)`.
    uf : {(n_controls,) array, float}, default=0.
        Control values at nominal linearization point. If float, will be
        broadcast into an array of shape `(n_controls,)`.
    u_lb : {(n_controls,) array, float}, optional
        Lower control bounds, posed as inequality constraints
        `u - u_lb >= 0`. Entries equal to `-np.inf` are ignored.
    u_ub : {(n_controls,) array, float}, optional
        Upper control bounds, posed as inequality constraints
        `u_ub - u >= 0`. Entries equal to `np.inf` are ignored.
    C_eq : (n_eq, n_states) array, optional
        State matrix of the state-input constraint
        `C_eq @ x + D_eq @ u + e_eq = 0`. Defaults to zero.
    D_eq : (n_eq, n_controls) array, optional
        Control matrix of the state-input constraint. Must have full row rank.
    e_eq : {(n_eq,) array, float}, default=0.
        Offset of the state-input constraint.
    H_state : (n_state_eq, n_states) array, optional
        Matrix of the state-only constraint `H_state @ x + h_state = 0`.
    h_state : {(n_state_eq,) array, float}, default=0.
        Offset of the state-only constraint.
    """
    _required_parameters = {'A': None, 'B': None, 'Q': None, 'R': None,
                            'xf': 0., 'uf': 0.}
    _optional_parameters = {'Qf': None, 'u_lb': None, 'u_ub': None,
                            'C_eq': None, 'D_eq': None, 'e_eq': 0.,
                            'H_state': None, 'h_state': 0.}

    @property
    def n_states(self):
        return self.parameters.n_states

    @property
    def n_controls(self):
        return self.parameters.n_controls

    @staticmethod
    def _parameter_update_fun(obj, **new_params):
        if 'A' in new_params:
            try:
                obj.A = np.atleast_1d(np.asarray(obj.A, dtype=float))
                obj.n_states = obj.A.shape[0]
                obj.A = obj.A.reshape(obj.n_states, obj.n_states)
            except ValueError:
                raise ValueError("State Jacobian matrix A must have shape "
                                 "(n_states, n_states)")

        if 'B' in new_params:
            try:
                obj.B = np.asarray(obj.B, dtype=float)
                if obj.B.ndim == 2 and obj.B.shape[0] != obj.n_states:
                    raise ValueError
                obj.B = np.reshape(obj.B, (obj.n_states, -1))
                obj.n_controls = obj.B.shape[1]
            except ValueError:
                raise ValueError("Control Jacobian matrix B must have shape "
                                 "(n_states, n_controls)")

        n, m = obj.n_states, obj.n_controls

        if 'Q' in new_params:
            obj.Q = _check_psd(obj.Q, 'State cost matrix Q', (n, n))

        if 'R' in new_params:
            obj.R = _check_psd(obj.R, 'Control cost matrix R', (m, m),
                               definite=True)

        if 'Qf' in new_params:
            if obj.Qf is None:
                obj.Qf = np.zeros((n, n))
            obj.Qf = _check_psd(obj.Qf, 'Terminal cost matrix Qf', (n, n))

        if 'xf' in new_params:
            obj.xf = resize_vector(obj.xf, n)

        if 'uf' in new_params:
            obj.uf = resize_vector(obj.uf, m)

        if 'u_lb' in new_params or 'u_ub' in new_params:
            rows, offsets = [], []
            for key, sign in (('u_lb', 1.), ('u_ub', -1.)):
                bound = getattr(obj, key, None)
                if bound is not None:
                    bound = resize_vector(bound, m)
                    setattr(obj, key, bound)
                    for i in np.flatnonzero(np.isfinite(bound)):
                        rows.append(sign * np.eye(m)[i])
                        offsets.append(- sign * bound[i])
            if (getattr(obj, 'u_lb', None) is not None
                    and getattr(obj, 'u_ub', None) is not None
                    and np.any(obj.u_lb > obj.u_ub)):
                raise ValueError("u_lb must be less than or equal to u_ub")
            obj._G_u = np.reshape(rows, (len(rows), m))
            obj._g_0 = np.asarray(offsets, dtype=float)

        if any(key in new_params for key in ('C_eq', 'D_eq', 'e_eq')):
            if obj.C_eq is None and obj.D_eq is None:
                obj._n_eq = 0
                obj._C_eq = np.zeros((0, n))
                obj._D_eq = np.zeros((0, m))
                obj._e_eq = np.zeros(0)
            else:
                try:
                    D = np.atleast_2d(np.asarray(obj.D_eq, dtype=float))
                    D = np.reshape(D, (-1, m))
                    if np.linalg.matrix_rank(D) < D.shape[0]:
                        raise ValueError
                except (TypeError, ValueError):
                    raise ValueError("D_eq must have shape (n_eq, n_controls) "
                                     "and full row rank")
                obj._n_eq = D.shape[0]
                obj._D_eq = D
                if obj.C_eq is None:
                    obj._C_eq = np.zeros((obj._n_eq, n))
                else:
                    try:
                        obj._C_eq = np.reshape(obj.C_eq, (obj._n_eq, n))
                    except ValueError:
                        raise ValueError("C_eq must have shape "
                                         "(n_eq, n_states)")
                obj._e_eq = resize_vector(obj.e_eq, obj._n_eq)

        if 'H_state' in new_params or 'h_state' in new_params:
            if obj.H_state is None:
                obj._H_state = np.zeros((0, n))
                obj._h_state = np.zeros(0)
            else:
                try:
                    obj._H_state = np.reshape(
                        np.asarray(obj.H_state, dtype=float), (-1, n))
                except ValueError:
                    raise ValueError("H_state must have shape "
                                     "(n_state_eq, n_states)")
                obj._h_state = resize_vector(obj.h_state,
                                             obj._H_state.shape[0])

    def dynamics(self, t, x, u):
        x_err = np.reshape(x, -1) - self.parameters.xf
        u_err = np.reshape(u, -1) - self.parameters.uf
        return self.parameters.A @ x_err + self.parameters.B @ u_err

    def jac(self, t, x, u, f0=None):
        return np.copy(self.parameters.A), np.copy(self.parameters.B)

    def running_cost(self, t, x, u):
        x_err = np.reshape(x, -1) - self.parameters.xf
        u_err = np.reshape(u, -1) - self.parameters.uf
        return float(x_err @ self.parameters.Q @ x_err
                     + u_err @ self.parameters.R @ u_err)

    def running_cost_grad(self, t, x, u, L0=None):
        x_err = np.reshape(x, -1) - self.parameters.xf
        u_err = np.reshape(u, -1) - self.parameters.uf
        return 2. * self.parameters.Q @ x_err, 2. * self.parameters.R @ u_err

    def running_cost_hess(self, t, x, u):
        return (2. * self.parameters.Q, 2. * self.parameters.R,
                np.zeros((self.n_controls, self.n_states)))

    def terminal_cost(self, t, x):
        x_err = np.reshape(x, -1) - self.parameters.xf
        return float(x_err @ self.parameters.Qf @ x_err)

    def terminal_cost_grad(self, t, x, F0=None):
        x_err = np.reshape(x, -1) - self.parameters.xf
        return 2. * self.parameters.Qf @ x_err

    def terminal_cost_hess(self, t, x):
        return 2. * self.parameters.Qf

    def state_input_constraints(self, t, x, u):
        p = self.parameters
        return p._C_eq @ np.reshape(x, -1) + p._D_eq @ np.reshape(u, -1) + p._e_eq

    def state_input_constraints_jac(self, t, x, u, c0=None):
        return np.copy(self.parameters._C_eq), np.copy(self.parameters._D_eq)

    def state_constraints(self, t, x):
        p = self.parameters
        return p._H_state @ np.reshape(x, -1) + p._h_state

    def state_constraints_jac(self, t, x, h0=None):
        return np.copy(self.parameters._H_state)

    def inequality_constraints(self, t, x, u):
        return self.parameters._G_u @ np.reshape(u, -1) + self.parameters._g_0

    def inequality_constraints_jac(self, t, x, u, g0=None):
        G_u = self.parameters._G_u
        return np.zeros((G_u.shape[0], self.n_states)), np.copy(G_u)
