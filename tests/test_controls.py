import numpy as np
import pytest

from ddpcontrol import controls

from ._utilities import make_LQ_params, compare_finite_difference


rng = np.random.default_rng()


@pytest.mark.parametrize('n_states', range(1, 4))
@pytest.mark.parametrize('n_controls', range(1, 4))
def test_ConstantControl(n_states, n_controls):
    u = rng.normal(size=(n_controls, 1))

    ctrl = controls.ConstantControl(u)

    assert ctrl.n_controls == n_controls
    np.testing.assert_array_equal(u.flatten(), ctrl.u)

    t = rng.uniform()
    x = rng.normal(size=(n_states,))
    u = ctrl(t, x)
    dudx = ctrl.jac(t, x)
    assert u.shape == (n_controls,)
    assert dudx.shape == (n_controls, n_states)
    np.testing.assert_array_equal(u, ctrl.u)
    np.testing.assert_array_equal(dudx, 0.)

    # Returned controls are copies
    u[:] = 0.
    assert not np.allclose(ctrl(t, x), 0.)


@pytest.mark.parametrize('zero_index', (0, 1, 2, [0, 1], [0, 2], [1, 2]))
def test_zero_column_lqr(zero_index):
    """
    Test that LQR can be created when one or more columns of A and Q are zero.
    This creates a situation where some states don't impact dynamics of other
    states or the cost function. The Riccati solver will often fail for the full
    set of states, but can find a solution to the sub-problem which ignores
    these states.
    """
    n_states = 3
    n_controls = 2

    # Start with usual random matrices
    A, B, Q, R, _, _ = make_LQ_params(n_states, n_controls)

    # Set some columns of A and Q to zero
    A[:, zero_index] = 0.
    Q[zero_index] = 0.
    Q[:, zero_index] = 0.

    # Should still be able to make an lqr controller
    lqr = controls.LinearQuadraticRegulator(A=A, B=B, Q=Q, R=R)

    # The closed-loop eigenvalues should be non-positive
    A_cl = A + np.matmul(B, - lqr.K)
    assert np.linalg.eigvals(A_cl).real.max() <= 0.


@pytest.mark.parametrize('n_states', (1, 2, 3))
@pytest.mark.parametrize('n_controls', (1, 2))
def test_lqr(n_states, n_controls):
    """Test that the LQR gain solves the algebraic Riccati equation and that
    the controller evaluates `uf - K @ (x - xf)`."""
    A, B, Q, R, xf, uf = make_LQ_params(n_states, n_controls, seed=123)
    Q += 0.1 * np.eye(n_states)
    lqr = controls.LinearQuadraticRegulator(A=A, B=B, Q=Q, R=R, xf=xf, uf=uf)

    P = lqr.P
    np.testing.assert_allclose(
        A.T @ P + P @ A - P @ B @ np.linalg.solve(R, B.T @ P) + Q, 0.,
        atol=1e-06 * max(1., np.abs(P).max()) ** 2)
    np.testing.assert_allclose(lqr.K, np.linalg.solve(R, B.T @ P), atol=1e-10)

    x = rng.normal(size=n_states)
    np.testing.assert_allclose(lqr(0., x), uf - lqr.K @ (x - xf), atol=1e-12)
    compare_finite_difference(x, lqr.jac(0., x), lambda x: lqr(0., x),
                              atol=1e-08)

    # Rebuilding from the gain gives the same controller
    lqr2 = controls.LinearQuadraticRegulator(K=lqr.K, xf=xf, uf=uf)
    np.testing.assert_allclose(lqr2(1., x), lqr(0., x), atol=1e-12)

    # Representation on a time grid
    t = np.linspace(0., 2., 5)
    policy = lqr.as_feedback_policy(t)
    assert isinstance(policy, controls.LinearFeedbackPolicy)
    for tk in (0., 0.3, 2., 5.):
        np.testing.assert_allclose(policy(tk, x), lqr(tk, x), atol=1e-12)


@pytest.mark.parametrize('n_states', (1, 3))
@pytest.mark.parametrize('n_controls', (1, 2))
def test_LinearFeedbackPolicy(n_states, n_controls):
    n_points = 4
    t = np.sort(rng.uniform(high=3., size=n_points))
    bias = rng.normal(size=(n_controls, n_points))
    gain = rng.normal(size=(n_controls, n_states, n_points))

    policy = controls.LinearFeedbackPolicy(t, bias, gain)
    assert policy.n_controls == n_controls
    assert policy.n_states == n_states
    assert policy.t_span == (t[0], t[-1])

    x = rng.normal(size=n_states)

    # Exact at grid points
    for k in range(n_points):
        np.testing.assert_allclose(policy(t[k], x),
                                   bias[:, k] + gain[..., k] @ x, atol=1e-12)
        np.testing.assert_allclose(policy.jac(t[k], x), gain[..., k],
                                   atol=1e-12)

    # Linear interpolation between grid points
    tk = 0.25 * t[1] + 0.75 * t[2]
    u_expected = (0.75 * (bias[:, 2] + gain[..., 2] @ x)
                  + 0.25 * (bias[:, 1] + gain[..., 1] @ x))
    np.testing.assert_allclose(policy(tk, x), u_expected, atol=1e-12)
    compare_finite_difference(x, policy.jac(tk, x), lambda x: policy(tk, x),
                              atol=1e-08)

    # Held constant outside the grid
    np.testing.assert_allclose(policy(t[0] - 1., x), policy(t[0], x))
    np.testing.assert_allclose(policy(t[-1] + 1., x), policy(t[-1], x))

    # Arrays are copied and read-only
    bias[:] = 0.
    assert not np.allclose(policy.bias, 0.)
    with pytest.raises(ValueError):
        policy.gain[0, 0, 0] = 1.
    with pytest.raises(ValueError):
        policy.t[0] = -1.


def test_LinearFeedbackPolicy_bad_inits():
    t = np.linspace(0., 1., 3)
    with pytest.raises(ValueError, match='increasing'):
        controls.LinearFeedbackPolicy(t[::-1], np.zeros((1, 3)),
                                      np.zeros((1, 2, 3)))
    with pytest.raises(ValueError, match='bias'):
        controls.LinearFeedbackPolicy(t, np.zeros((1, 2)), np.zeros((1, 2, 3)))
    with pytest.raises(ValueError, match='gain'):
        controls.LinearFeedbackPolicy(t, np.zeros((1, 3)), np.zeros((2, 2, 3)))


def test_FeedforwardPolicy():
    t = np.linspace(0., 1., 3)
    u = rng.normal(size=(2, 3))
    policy = controls.FeedforwardPolicy(t, u)
    x = rng.normal(size=4)

    np.testing.assert_allclose(policy(0.5, x), u[:, 1])
    np.testing.assert_allclose(policy(0.25), 0.5 * (u[:, 0] + u[:, 1]))
    np.testing.assert_allclose(policy(-1., x), u[:, 0])
    np.testing.assert_allclose(policy(2., x), u[:, -1])
    np.testing.assert_array_equal(policy.jac(0.5, x), np.zeros((2, 4)))

    with pytest.raises(ValueError):
        controls.FeedforwardPolicy(t, u[:, :2])


def test_feedforward_conversion():
    """Converting a feedback policy to open loop along a trajectory reproduces
    the controls on that trajectory."""
    t = np.linspace(0., 1., 5)
    gain = rng.normal(size=(1, 2, 5))
    policy = controls.LinearFeedbackPolicy(t, rng.normal(size=(1, 5)), gain)

    x = rng.normal(size=(2, 5))
    ff = policy.feedforward(t, x)
    assert isinstance(ff, controls.FeedforwardPolicy)
    for k in range(5):
        np.testing.assert_allclose(ff(t[k]), policy(t[k], x[:, k]),
                                   atol=1e-12)
