"""
Backward pass of the DDP iteration. The problem is approximated to second order
along the nominal trajectory, state-input equality constraints are eliminated
by projecting the input correction onto the null space of their input
Jacobian, and the Riccati equation of the resulting linear quadratic problem
is solved backwards in time.

The affine terms are handled by working in augmented coordinates
`z = [dx; 1]`, in which the local problem has dynamics `dz/dt = Az z + Bz v`,
running cost `z.T Qz z / 2 + v.T Pz z + v.T R v / 2`, and quadratic value
function `V(t, z) = z.T Sz(t) z / 2` satisfying

    `-dSz/dt = Qz + Az.T Sz + Sz Az - (Pz + Bz.T Sz).T inv(R) (Pz + Bz.T Sz)`.
"""

import numpy as np
from scipy.integrate import trapezoid
from scipy.linalg import expm, null_space

from ..controls import LinearFeedbackPolicy
from ..exceptions import NumericalInstability
from ..simulate import integrate_adaptive
from ..utilities import interp_time, symmetrize


class QuadraticModel:
    """
    Projected linear quadratic approximation of the problem along a nominal
    trajectory, in augmented coordinates. Arrays are indexed by time along the
    last axis.

    Parameters
    ----------
    t : (n_points,) array
        Time grid of the nominal trajectory.
    x : (n, n_points) array
        Nominal states.
    n_controls : int
        Number of controls `m`.
    n_free : int
        Number of input directions left free by the state-input constraints.

    Attributes
    ----------
    Az : (n + 1, n + 1, n_points) array
    Bz : (n + 1, n_free, n_points) array
    Qz : (n + 1, n + 1, n_points) array
    Pz : (n_free, n + 1, n_points) array
    R : (n_free, n_free, n_points) array
        Projected (and regularized) input Hessian.
    U : (m, n, n_points) array
        Feedback part of the state-input constraint projection.
    u0 : (m, n_points) array
        Constraint correction term of the state-input constraint projection.
    N : (m, n_free, n_points) array
        Orthonormal basis of the null space of the state-input constraint
        Jacobian with respect to inputs.
    terminal : (n + 1, n + 1) array
        Augmented terminal value function Hessian.
    """
    def __init__(self, t, x, n_controls, n_free):
        self.t = t
        self.x = x
        n_states = x.shape[0]
        self.n_states = n_states
        self.n_controls = n_controls
        self.n_free = n_free

        n1, m, N = n_states + 1, n_controls, t.shape[0]

        self.Az = np.zeros((n1, n1, N))
        self.Bz = np.zeros((n1, n_free, N))
        self.Qz = np.zeros((n1, n1, N))
        self.Pz = np.zeros((n_free, n1, N))
        self.R = np.zeros((n_free, n_free, N))
        self.U = np.zeros((m, n_states, N))
        self.u0 = np.zeros((m, N))
        self.N = np.zeros((m, n_free, N))
        self.terminal = np.zeros((n1, n1))

    @property
    def n_points(self):
        return self.t.shape[0]

    def interpolate(self, k, theta):
        """Linearly interpolate `(Az, Bz, Qz, Pz, R)` between samples `k` and
        `k + 1`, at fraction `theta` of the interval."""
        return tuple((1. - theta) * M[..., k] + theta * M[..., k + 1]
                     for M in (self.Az, self.Bz, self.Qz, self.Pz, self.R))

    def _align_null_space(self):
        # Rotate each null space basis towards the previous one so that
        # projected quantities vary continuously in time
        for k in range(1, self.n_points):
            V, _, Wt = np.linalg.svd(self.N[..., k].T @ self.N[..., k - 1])
            W = V @ Wt
            self.N[..., k] = self.N[..., k] @ W
            self.Bz[..., k] = self.Bz[..., k] @ W
            self.Pz[..., k] = W.T @ self.Pz[..., k]
            self.R[..., k] = W.T @ self.R[..., k] @ W


def _check_positive_definite(R, t):
    if R.shape[0] == 0:
        return
    try:
        np.linalg.cholesky(R)
    except np.linalg.LinAlgError:
        raise NumericalInstability(
            f"Input Hessian is not positive definite at t = {t:.4g}", t=t)


def _approximate_sample(ocp, model, constraints, settings, regularization,
                        k, t, x, u):
    n, m, f = model.n_states, model.n_controls, model.n_free

    A, B = ocp.jac(t, x, u)

    q0 = ocp.running_cost(t, x, u)
    qx, r = ocp.running_cost_grad(t, x, u, L0=q0)
    Q, R, P = ocp.running_cost_hess(t, x, u)

    A, B = np.array(A, dtype=float), np.array(B, dtype=float)
    qx, r = np.array(qx, dtype=float), np.array(r, dtype=float)
    Q, R, P = (np.array(M, dtype=float) for M in (Q, R, P))

    if constraints.inequality_active:
        g = ocp.inequality_constraints(t, x, u)
        gx, gu = ocp.inequality_constraints_jac(t, x, u, g0=g)
        b, db, d2b = constraints.barrier_terms(g)
        # Gauss-Newton approximation of the barrier Hessian
        q0 += b.sum()
        qx += gx.T @ db
        r += gu.T @ db
        Q += gx.T @ (d2b[:, None] * gx)
        R += gu.T @ (d2b[:, None] * gu)
        P += gu.T @ (d2b[:, None] * gx)

    if constraints.state_active and constraints.penalty > 0.:
        penalty = constraints.penalty
        h = ocp.state_constraints(t, x)
        H = ocp.state_constraints_jac(t, x, h0=h)
        q0 += 0.5 * penalty * np.dot(h, h)
        qx += penalty * H.T @ h
        Q += penalty * H.T @ H

    if constraints.state_input_active:
        c = ocp.state_input_constraints(t, x, u)
        C, D = ocp.state_input_constraints_jac(t, x, u, c0=c)
        sv = np.linalg.svd(D, compute_uv=False)
        if sv.min() <= 1e-12 * max(1., sv.max()):
            raise NumericalInstability(
                f"State-input constraint Jacobian is rank deficient at "
                f"t = {t:.4g}", t=t)
        D_pinv = np.linalg.pinv(D)
        N = null_space(D)
        U = - D_pinv @ C
        if settings.simulation_is_constrained:
            u0 = np.zeros(m)
        else:
            u0 = - settings.constraint_step_size * D_pinv @ c
    else:
        N, U, u0 = np.eye(m), np.zeros((m, n)), np.zeros(m)

    # Substitute du = u0 + U dx + N v into the local problem
    RU, Ru0 = R @ U, R @ u0
    R_proj = N.T @ R @ N + regularization * np.eye(f)
    P_proj = N.T @ (P + RU)
    r_proj = N.T @ (r + Ru0)
    Q_proj = (Q + U.T @ RU + U.T @ P + P.T @ U
              + regularization * np.eye(n))
    qx_proj = qx + U.T @ r + U.T @ Ru0 + P.T @ u0
    q0_proj = q0 + r @ u0 + 0.5 * u0 @ Ru0

    R_proj = symmetrize(R_proj)
    _check_positive_definite(R_proj, t)

    model.Az[:n, :n, k] = A + B @ U
    model.Az[:n, n, k] = B @ u0
    model.Bz[:n, :, k] = B @ N
    model.Qz[:n, :n, k] = symmetrize(Q_proj)
    model.Qz[:n, n, k] = qx_proj
    model.Qz[n, :n, k] = qx_proj
    model.Qz[n, n, k] = 2. * q0_proj
    model.Pz[:, :n, k] = P_proj
    model.Pz[:, n, k] = r_proj
    model.R[..., k] = R_proj
    model.U[..., k] = U
    model.u0[:, k] = u0
    model.N[..., k] = N


def approximate(ocp, trajectory, constraints, settings, pool,
                regularization=0.):
    """
    Build the projected linear quadratic approximation of the problem along a
    nominal trajectory. Samples are processed concurrently in contiguous
    segments.

    Parameters
    ----------
    ocp : `OptimalControlProblem`
        The problem being solved.
    trajectory : `Trajectory`
        Nominal trajectory.
    constraints : `ConstraintState`
        Current penalty and barrier parameters.
    settings : `DDPSettings`
        Solver settings.
    pool : `ThreadPool`
        Worker pool for evaluating samples.
    regularization : float, default=0.
        Multiple of the identity added to the projected state and input
        Hessians.

    Returns
    -------
    model : `QuadraticModel`

    Raises
    ------
    NumericalInstability
        If the projected input Hessian is not positive definite or the
        state-input constraints are degenerate at any sample.
    """
    n, m = ocp.n_states, ocp.n_controls
    n_free = m - constraints.n_state_input
    if n_free < 0:
        raise NumericalInstability(
            f"Number of state-input constraints ({constraints.n_state_input}) "
            f"exceeds the number of controls ({m})")

    t, x, u = trajectory.t, trajectory.x, trajectory.u
    model = QuadraticModel(t, x, m, n_free)

    def work(start, stop):
        for k in range(start, stop):
            _approximate_sample(ocp, model, constraints, settings,
                                regularization, k, t[k], x[:, k], u[:, k])

    pool.run_segments(work, model.n_points)

    if 0 < n_free < m:
        model._align_null_space()

    tf, xf = t[-1], x[:, -1]
    F = ocp.terminal_cost(tf, xf)
    Fx = np.array(ocp.terminal_cost_grad(tf, xf, F0=F), dtype=float)
    Fxx = np.array(ocp.terminal_cost_hess(tf, xf), dtype=float)

    if constraints.state_active and constraints.penalty > 0.:
        penalty = constraints.penalty
        h = ocp.state_constraints(tf, xf)
        H = ocp.state_constraints_jac(tf, xf, h0=h)
        F += 0.5 * penalty * np.dot(h, h)
        Fx += penalty * H.T @ h
        Fxx += penalty * H.T @ H

    model.terminal[:n, :n] = symmetrize(Fxx)
    model.terminal[:n, n] = Fx
    model.terminal[n, :n] = Fx
    model.terminal[n, n] = 2. * F

    return model


def _riccati_rhs(Sz, Az, Bz, Qz, Pz, R):
    minus_dSdt = Qz + Az.T @ Sz + Sz @ Az
    if R.shape[0]:
        M = Pz + Bz.T @ Sz
        minus_dSdt -= M.T @ np.linalg.solve(R, M)
    return - symmetrize(minus_dSdt)


def _solve_ode(model, settings):
    n1 = model.n_states + 1
    Sz = np.empty((n1, n1, model.n_points))
    Sz[..., -1] = model.terminal

    # One step budget shared by all intervals of the horizon
    n_steps_left = max(1, int(np.ceil(settings.max_num_steps_per_second
                                      * (model.t[-1] - model.t[0]))))

    for k in range(model.n_points - 2, -1, -1):
        t0, t1 = model.t[k], model.t[k + 1]

        def fun(t, y):
            data = model.interpolate(k, (t - t0) / (t1 - t0))
            return _riccati_rhs(y.reshape(n1, n1), *data).reshape(-1)

        S1 = Sz[..., k + 1].reshape(-1)
        t_steps, y = integrate_adaptive(fun, (t1, t0), S1,
                                        atol=settings.abs_tol_ode,
                                        rtol=settings.rel_tol_ode,
                                        min_step=0., first_step=t1 - t0,
                                        max_num_steps=n_steps_left)
        n_steps_left -= t_steps.shape[0] - 1
        Sz[..., k] = symmetrize(y[:, -1].reshape(n1, n1))

    return Sz


def _hamiltonian(Az, Bz, Qz, Pz, R):
    if R.shape[0]:
        R_inv_Pz = np.linalg.solve(R, Pz)
        A_hat = Az - Bz @ R_inv_Pz
        Q_hat = Qz - Pz.T @ R_inv_Pz
        G = Bz @ np.linalg.solve(R, Bz.T)
    else:
        A_hat, Q_hat, G = Az, Qz, np.zeros_like(Az)
    return np.block([[A_hat, - G], [- Q_hat, - A_hat.T]])


def _solve_expm(model, pool):
    n1 = model.n_states + 1
    n_intervals = model.n_points - 1

    transitions = np.empty((2 * n1, 2 * n1, n_intervals))

    def work(start, stop):
        for k in range(start, stop):
            H = _hamiltonian(*model.interpolate(k, 0.5))
            transitions[..., k] = expm(- H * (model.t[k + 1] - model.t[k]))

    pool.run_segments(work, n_intervals)

    Sz = np.empty((n1, n1, model.n_points))
    Sz[..., -1] = model.terminal
    identity = np.eye(n1)
    for k in range(n_intervals - 1, -1, -1):
        XY = transitions[..., k] @ np.vstack((identity, Sz[..., k + 1]))
        X, Y = XY[:n1], XY[n1:]
        try:
            S = np.linalg.solve(X.T, Y.T).T
        except np.linalg.LinAlgError:
            raise NumericalInstability(
                f"Singular state transition in matrix exponential at "
                f"t = {model.t[k]:.4g}", t=model.t[k])
        Sz[..., k] = symmetrize(S)

    return Sz


class ValueFunction:
    """
    Quadratic approximation of the cost-to-go around the nominal trajectory,
    `V(t, x) = s + Sv.T @ dx + dx.T @ S @ dx / 2` with `dx = x - x_nom(t)`.

    Parameters
    ----------
    t : (n_points,) array
        Time grid.
    x : (n_states, n_points) array
        Nominal states.
    S : (n_states, n_states, n_points) array
        Value function Hessians.
    Sv : (n_states, n_points) array
        Value function gradients.
    s : (n_points,) array
        Value function at the nominal states.
    """
    def __init__(self, t, x, S, Sv, s):
        self.t = t
        self.x = x
        self.S = S
        self.Sv = Sv
        self.s = s

    @classmethod
    def from_augmented(cls, t, x, Sz):
        n = Sz.shape[0] - 1
        return cls(t, x, Sz[:n, :n], Sz[:n, n], 0.5 * Sz[n, n])

    def __call__(self, t, x):
        """Evaluate the quadratic approximation `V(t, x)` at a single time and
        state."""
        dx = np.reshape(x, -1) - interp_time(self.t, self.x, t)
        S = interp_time(self.t, self.S, t)
        Sv = interp_time(self.t, self.Sv, t)
        return interp_time(self.t, self.s, t) + Sv @ dx + 0.5 * dx @ S @ dx


class RiccatiSolution:
    """
    Output of the backward pass: the input correction
    `du(t, dx) = feedforward(t) + gain(t) @ dx` and the value function
    approximation.

    Attributes
    ----------
    t : (n_points,) array
        Time grid.
    feedforward : (n_controls, n_points) array
        Feedforward correction, including the state-input constraint
        correction.
    gain : (n_controls, n_states, n_points) array
        Feedback gains.
    value_function : `ValueFunction`
    lv_norm : float
        Integral of `Lv.T @ R @ Lv` over time, where `Lv` is the free part of
        the feedforward correction and `R` the projected input Hessian.
    step_norm : float
        L2 norm in time of the feedforward correction.
    """
    def __init__(self, t, feedforward, gain, value_function, lv_norm,
                 step_norm):
        self.t = t
        self.feedforward = feedforward
        self.gain = gain
        self.value_function = value_function
        self.lv_norm = lv_norm
        self.step_norm = step_norm

    def expected_decrease(self, step_size):
        """Decrease of the cost predicted by the local model for a step of
        size `step_size`, `(a - a**2 / 2) * lv_norm`."""
        return (step_size - 0.5 * step_size ** 2) * self.lv_norm

    def policy(self, trajectory, step_size):
        """
        Updated control law, `u(t, x) = u_nom(t) + step_size * feedforward(t)
        + gain(t) @ (x - x_nom(t))`.

        Parameters
        ----------
        trajectory : `Trajectory`
            Nominal trajectory used in the backward pass.
        step_size : float
            Scaling of the feedforward correction.

        Returns
        -------
        policy : `LinearFeedbackPolicy`
        """
        bias = (trajectory.u + step_size * self.feedforward
                - np.einsum('ijk,jk->ik', self.gain, trajectory.x))
        return LinearFeedbackPolicy(self.t, bias, self.gain)


def backward_pass(model, settings, pool, use_riccati_solver=None):
    """
    Solve the Riccati equation of a `QuadraticModel` backwards in time and
    compute the feedforward and feedback corrections.

    Parameters
    ----------
    model : `QuadraticModel`
        Projected local approximation of the problem.
    settings : `DDPSettings`
        With `settings.use_riccati_solver=True` the Riccati equation is
        integrated as a matrix ODE on each interval of the time grid, with the
        model linearly interpolated between samples. Otherwise it is
        propagated with the matrix exponential of the Hamiltonian matrix on
        each interval, with the model evaluated at the interval midpoint.
    pool : `ThreadPool`
        Worker pool for the matrix exponentials and gain computations.
    use_riccati_solver : bool, optional
        Overrides `settings.use_riccati_solver` if given.

    Returns
    -------
    solution : `RiccatiSolution`

    Raises
    ------
    IntegrationFailure
        If the matrix ODE cannot be integrated within
        `settings.max_num_steps_per_second` steps per unit time of the horizon.
    NumericalInstability
        If `settings.check_numerical_stability` is set and a value function
        Hessian is not positive semi-definite, or if the Riccati solution is
        not finite.
    """
    n, m = model.n_states, model.n_controls

    if use_riccati_solver is None:
        use_riccati_solver = settings.use_riccati_solver

    if use_riccati_solver:
        Sz = _solve_ode(model, settings)
    else:
        Sz = _solve_expm(model, pool)

    feedforward = np.empty((m, model.n_points))
    gain = np.empty((m, n, model.n_points))
    lv_sq = np.empty(model.n_points)

    def work(start, stop):
        for k in range(start, stop):
            t = model.t[k]
            if not np.all(np.isfinite(Sz[..., k])):
                raise NumericalInstability(
                    f"Riccati solution is not finite at t = {t:.4g}", t=t)

            if settings.check_numerical_stability:
                eigs = np.linalg.eigvalsh(Sz[:n, :n, k])
                if eigs.min() < - 1e-06 * max(1., np.abs(eigs).max()):
                    raise NumericalInstability(
                        f"Value function Hessian is not positive "
                        f"semi-definite at t = {t:.4g} (minimum eigenvalue "
                        f"{eigs.min():.3e})", t=t)

            if model.n_free:
                Kz = - np.linalg.solve(
                    model.R[..., k],
                    model.Pz[..., k] + model.Bz[..., k].T @ Sz[..., k])
                Lv, K = Kz[:, n], Kz[:, :n]
                lv_sq[k] = Lv @ model.R[..., k] @ Lv
            else:
                Lv, K = np.zeros(0), np.zeros((0, n))
                lv_sq[k] = 0.

            feedforward[:, k] = model.u0[:, k] + model.N[..., k] @ Lv
            gain[..., k] = model.U[..., k] + model.N[..., k] @ K

    pool.run_segments(work, model.n_points)

    lv_norm = float(trapezoid(lv_sq, model.t))
    step_norm = float(np.sqrt(trapezoid(np.sum(feedforward ** 2, axis=0),
                                       model.t)))

    return RiccatiSolution(model.t, feedforward, gain,
                           ValueFunction.from_augmented(model.t, model.x, Sz),
                           lv_norm, step_norm)
