import numpy as np
import pytest

from ddpcontrol.controls import ConstantControl
from ddpcontrol.ddp.constraints import ConstraintState
from ddpcontrol.ddp.riccati import approximate, backward_pass
from ddpcontrol.exceptions import IntegrationFailure, NumericalInstability
from ddpcontrol.parallel import ThreadPool
from ddpcontrol.problem import LinearQuadraticProblem
from ddpcontrol.settings import DDPSettings
from ddpcontrol.simulate import rollout

from ._problems import ConcaveInputLQ, make_double_integrator, make_lqr


def _nominal(ocp, policy, x0, t_span):
    # Tight tolerances give a dense time grid for the backward pass
    return rollout(ocp, policy, x0, t_span, atol=1e-12, rtol=1e-10)


def _solve(ocp, trajectory, settings=None, n_threads=1, regularization=0.):
    if settings is None:
        settings = DDPSettings()
    t0, x0, u0 = trajectory.t[0], trajectory.x[:, 0], trajectory.u[:, 0]
    constraints = ConstraintState(settings,
                                  ocp.constraint_sizes(t0, x0, u0))
    with ThreadPool(n_threads) as pool:
        model = approximate(ocp, trajectory, constraints, settings, pool,
                            regularization=regularization)
        return model, backward_pass(model, settings, pool)


@pytest.mark.parametrize('use_riccati_solver', [True, False])
def test_care_solution(use_riccati_solver):
    """With the CARE solution as terminal weight, the backward pass along the
    LQR trajectory reproduces the LQR gain and value function, and has no
    feedforward correction."""
    ocp = make_double_integrator()
    lqr = make_lqr(ocp)
    P, K = lqr.P, lqr.K

    trajectory = _nominal(ocp, lqr, [1., 0.], (0., 3.))
    settings = DDPSettings(use_riccati_solver=use_riccati_solver)
    _, solution = _solve(ocp, trajectory, settings)

    n_points = trajectory.n_points
    V = solution.value_function

    np.testing.assert_allclose(
        V.S, np.tile(2. * P[..., None], (1, 1, n_points)),
        rtol=1e-05, atol=1e-06)
    np.testing.assert_allclose(
        solution.gain, np.tile(- K[..., None], (1, 1, n_points)),
        rtol=1e-05, atol=1e-06)
    np.testing.assert_allclose(solution.feedforward, 0., atol=1e-03)
    assert solution.lv_norm < 1e-05
    assert solution.step_norm < 5e-03

    x = trajectory.x
    np.testing.assert_allclose(V.Sv, 2. * P @ x, atol=1e-03)
    np.testing.assert_allclose(V.s, np.einsum('ik,ij,jk->k', x, P, x),
                               atol=1e-03)

    # The quadratic approximation is exact away from the nominal trajectory
    x_test = np.array([0.3, -0.7])
    np.testing.assert_allclose(V(1.5, x_test), x_test @ P @ x_test,
                               atol=1e-03)
    np.testing.assert_allclose(V(trajectory.t[5], x[:, 5]), V.s[5])


def test_ode_matches_expm():
    ocp = make_double_integrator(terminal=None)
    trajectory = _nominal(ocp, make_lqr(ocp), [1., 0.5], (0., 2.))

    _, ode = _solve(ocp, trajectory, DDPSettings(use_riccati_solver=True))
    _, mexp = _solve(ocp, trajectory, DDPSettings(use_riccati_solver=False))

    np.testing.assert_allclose(ode.value_function.S, mexp.value_function.S,
                               rtol=1e-04, atol=1e-06)
    np.testing.assert_allclose(ode.gain, mexp.gain, rtol=1e-04, atol=1e-06)
    np.testing.assert_allclose(ode.feedforward, mexp.feedforward, rtol=1e-02,
                               atol=1e-03)
    np.testing.assert_allclose(ode.lv_norm, mexp.lv_norm, rtol=5e-02)

    # Zero terminal weight
    np.testing.assert_allclose(ode.value_function.S[..., -1], 0.)
    assert ode.lv_norm > 0.


def test_ode_step_budget():
    """The Riccati ODE shares one step budget of `max_num_steps_per_second`
    per unit time over the horizon, and the matrix exponential mode can
    replace it."""
    ocp = make_double_integrator(terminal=None)
    trajectory = _nominal(ocp, make_lqr(ocp), [1., 0.5], (0., 2.))
    assert trajectory.n_points > 3

    settings = DDPSettings(max_num_steps_per_second=1)
    with pytest.raises(IntegrationFailure, match='maximum number'):
        _solve(ocp, trajectory, settings)

    model, mexp = _solve(ocp, trajectory,
                         settings.replace(use_riccati_solver=False))
    with ThreadPool(1) as pool:
        override = backward_pass(model, settings, pool,
                                 use_riccati_solver=False)
    np.testing.assert_array_equal(override.gain, mexp.gain)

    # Ten steps per interval on average
    n_intervals = trajectory.n_points - 1
    settings = DDPSettings(max_num_steps_per_second=5 * n_intervals)
    _, ode = _solve(ocp, trajectory, settings)
    np.testing.assert_allclose(ode.gain, mexp.gain, rtol=1e-04, atol=1e-06)


@pytest.mark.parametrize('use_riccati_solver', [True, False])
def test_thread_independence(use_riccati_solver):
    ocp = make_double_integrator(terminal=None)
    trajectory = _nominal(ocp, make_lqr(ocp), [1., 0.], (0., 2.))
    settings = DDPSettings(use_riccati_solver=use_riccati_solver)

    _, serial = _solve(ocp, trajectory, settings, n_threads=1)
    _, parallel = _solve(ocp, trajectory, settings, n_threads=3)

    np.testing.assert_allclose(serial.gain, parallel.gain, rtol=1e-12)
    np.testing.assert_allclose(serial.feedforward, parallel.feedforward,
                               rtol=1e-12, atol=1e-15)
    np.testing.assert_allclose(serial.value_function.S,
                               parallel.value_function.S, rtol=1e-12)
    np.testing.assert_allclose(serial.lv_norm, parallel.lv_norm, rtol=1e-12)


def _constrained_problem():
    return LinearQuadraticProblem(
        A=[[0., 1.], [0., 0.]], B=[[0., 0.], [1., 0.5]], Q=np.eye(2),
        R=np.eye(2), Qf=np.eye(2), C_eq=[[0.5, 0.]], D_eq=[[1., -1.]],
        e_eq=0.1)


@pytest.mark.parametrize('simulation_is_constrained', [False, True])
def test_state_input_projection(simulation_is_constrained):
    """Input corrections satisfy the linearized state-input constraints."""
    ocp = _constrained_problem()
    p = ocp.parameters
    C, D = p._C_eq, p._D_eq

    trajectory = _nominal(ocp, ConstantControl([0.5, 0.]), [1., 0.], (0., 1.))
    settings = DDPSettings(constraint_step_size=0.5,
                           simulation_is_constrained=simulation_is_constrained)
    model, solution = _solve(ocp, trajectory, settings)

    assert model.n_free == 1
    np.testing.assert_allclose(np.einsum('ij,jk->ik', D, model.N[..., 0]), 0.,
                               atol=1e-12)

    for k in range(trajectory.n_points):
        np.testing.assert_allclose(D @ solution.gain[..., k], - C, atol=1e-10)

        if simulation_is_constrained:
            expected = np.zeros(1)
        else:
            c = ocp.state_input_constraints(trajectory.t[k],
                                            trajectory.x[:, k],
                                            trajectory.u[:, k])
            expected = - 0.5 * c
        np.testing.assert_allclose(D @ solution.feedforward[:, k], expected,
                                   atol=1e-10)


def test_null_space_alignment():
    """Null space bases vary continuously in time."""
    ocp = LinearQuadraticProblem(
        A=np.zeros((2, 2)), B=np.eye(2, 3), Q=np.eye(2), R=np.eye(3),
        C_eq=[[1., 0.]], D_eq=[[1., 1., 1.]])
    trajectory = _nominal(ocp, ConstantControl([0., 0.1, 0.]), [1., 1.],
                          (0., 1.))
    model, _ = _solve(ocp, trajectory)

    assert model.N.shape == (3, 2, trajectory.n_points)
    for k in range(1, trajectory.n_points):
        np.testing.assert_allclose(model.N[..., k], model.N[..., 0],
                                   atol=1e-10)
        np.testing.assert_allclose(model.N[..., k].T @ model.N[..., k],
                                   np.eye(2), atol=1e-12)


def test_step_quantities():
    ocp = make_double_integrator(terminal=None)
    trajectory = _nominal(ocp, make_lqr(ocp), [1., 0.], (0., 2.))
    _, solution = _solve(ocp, trajectory)

    for step_size in [0., 0.25, 1.]:
        np.testing.assert_allclose(
            solution.expected_decrease(step_size),
            (step_size - step_size ** 2 / 2.) * solution.lv_norm)

    # The policy reproduces the corrected nominal input on the nominal states
    policy = solution.policy(trajectory, 0.5)
    for k in range(0, trajectory.n_points, 7):
        t, x = trajectory.t[k], trajectory.x[:, k]
        np.testing.assert_allclose(
            policy(t, x),
            trajectory.u[:, k] + 0.5 * solution.feedforward[:, k],
            atol=1e-12)
        np.testing.assert_allclose(policy.jac(t, x), solution.gain[..., k])


def test_regularization():
    ocp = make_double_integrator(terminal=None)
    trajectory = _nominal(ocp, ConstantControl([0.]), [1., 0.], (0., 1.))

    model, _ = _solve(ocp, trajectory, regularization=0.1)
    R = ocp.parameters.R
    np.testing.assert_allclose(model.R[..., 0], 2. * R + 0.1)
    np.testing.assert_allclose(model.Qz[:2, :2, 0],
                               2. * ocp.parameters.Q + 0.1 * np.eye(2))


def test_indefinite_input_hessian():
    ocp = ConcaveInputLQ(A=[[0., 1.], [0., 0.]], B=[[0.], [1.]], Q=np.eye(2),
                         R=1.)
    trajectory = _nominal(ocp, ConstantControl([0.]), [1., 0.], (0., 1.))

    with pytest.raises(NumericalInstability, match='not positive definite'):
        _solve(ocp, trajectory)

    # Enough regularization restores a positive definite input Hessian
    _, solution = _solve(ocp, trajectory, regularization=3.)
    assert np.all(np.isfinite(solution.gain))
