import pytest

import numpy as np
import pandas as pd

from ddpcontrol import utilities


rng = np.random.default_rng()


@pytest.mark.parametrize('n', [0., 1.5, np.array([[5], [6]]), [7, 8], 'n'])
def test_check_int_input_bad_type(n):
    """Make sure `check_int_input` catches a range of bad input types."""
    with pytest.raises(TypeError):
        utilities.check_int_input(n, 'n')


@pytest.mark.parametrize('low', [-7., np.pi, np.array([[1, 2]]), [3, 4], 'm'])
def test_check_int_input_bad_low(low):
    """Make sure `check_int_input` catches a range of bad `low` input types."""
    with pytest.raises(TypeError):
        utilities.check_int_input(rng.choice(100), 'n', low=low)


@pytest.mark.parametrize('shape', [(), (1,), (1, 1)])
def test_check_int_input(shape):
    """Make sure `check_int_input` works with a variety of acceptable inputs."""
    n = rng.choice(100, size=shape) - 50
    _n = int(np.squeeze(n))
    assert utilities.check_int_input(n.tolist(), 'n') == _n
    for dtype in [np.int8, np.int16, np.int32, np.int64]:
        assert utilities.check_int_input(n.astype(dtype), 'n') == _n


@pytest.mark.parametrize('low', [0, 1, -5, 10])
def test_check_int_input_with_low(low):
    """Make sure `check_int_input` works with minimum inputs and throws an error
    if the desired minimum is not found."""
    assert utilities.check_int_input(low, 'n', low=low) == low
    assert utilities.check_int_input(low + 1, 'n', low=low) == low + 1
    with pytest.raises(ValueError):
        utilities.check_int_input(low - 1, 'n', low=low)


def test_check_int_input_bool():
    with pytest.raises(TypeError):
        utilities.check_int_input(True, 'n')


@pytest.mark.parametrize('n_rows', [1, 2, 3, -1])
def test_resize_vector(n_rows):
    if n_rows > 0:
        x = rng.normal(size=n_rows)
    else:
        x = rng.normal(size=17)

    y = utilities.resize_vector(x, n_rows)
    assert y.shape == x.shape
    np.testing.assert_allclose(y, x)

    y = utilities.resize_vector(x.reshape(-1, 1), n_rows)
    np.testing.assert_allclose(y, x)

    y = utilities.resize_vector(x.reshape(1, -1), n_rows)
    np.testing.assert_allclose(y, x)

    y = utilities.resize_vector(x.tolist(), n_rows)
    np.testing.assert_allclose(y, x)

    if n_rows > 2:
        with pytest.raises(ValueError):
            _ = utilities.resize_vector(x[:-1], n_rows)


@pytest.mark.parametrize('n_rows', [2, 3])
def test_resize_vector_float_in(n_rows):
    x = np.full(n_rows, rng.normal())

    y = utilities.resize_vector(x[0], n_rows)
    np.testing.assert_allclose(y, x)

    y = utilities.resize_vector(x[:1], n_rows)
    np.testing.assert_allclose(y, x)


def test_resize_vector_bad_rows():
    with pytest.raises(ValueError):
        utilities.resize_vector(1., 0)


@pytest.mark.parametrize('n_points', range(4))
@pytest.mark.parametrize('n_states', range(1, 4))
@pytest.mark.parametrize('n_out', range(4))
def test_approx_derivative(n_states, n_out, n_points):
    if n_points == 0:
        x = rng.uniform(low=-1., high=1., size=(n_states,))
    else:
        x = rng.uniform(low=-1., high=1., size=(n_states, n_points))

    w = np.pi * np.arange(1, n_states+1)
    if n_points > 0:
        w = w.reshape(-1, 1)

    if n_out == 0:
        n_out = 1
        flatten = True
    else:
        flatten = False

    def vector_fun(x):
        f = [np.cos(i * (x * w).sum(axis=0)) for i in range(1, n_out+1)]
        f = np.stack(f, axis=0)
        if flatten:
            return f[0]
        else:
            return f

    f0 = vector_fun(x)

    if n_points == 0:
        if flatten:
            assert f0.ndim == 0
        else:
            assert f0.shape == (n_out,)
    else:
        if flatten:
            assert f0.shape == (n_points,)
        else:
            assert f0.shape == (n_out, n_points)

    # Construct analytical derivatives for comparison
    if n_points == 0:
        dfdx_expected = np.empty((n_out, n_states))
    else:
        dfdx_expected = np.empty((n_out, n_states, n_points))
    for i in range(1, n_out+1):
        dfdx_expected[i-1] = -i * np.sin(i * (x * w).sum(axis=0)) * w
    if flatten:
        dfdx_expected = dfdx_expected[0]

    for method in ['2-point', '3-point']:
        dfdx_approx = utilities.approx_derivative(vector_fun, x, method=method)
        np.testing.assert_allclose(dfdx_approx, dfdx_expected,
                                   rtol=1e-03, atol=1e-06)


def test_interp_time():
    t_grid = np.array([0., 1., 3.])
    values = np.stack([np.full((2, 2), v) for v in (0., 2., 6.)], axis=-1)

    np.testing.assert_allclose(utilities.interp_time(t_grid, values, 0.5), 1.)
    np.testing.assert_allclose(utilities.interp_time(t_grid, values, 2.), 4.)

    # Grid points are reproduced exactly
    for k, t in enumerate(t_grid):
        np.testing.assert_array_equal(
            utilities.interp_time(t_grid, values, t), values[..., k])

    # Constant extrapolation
    np.testing.assert_array_equal(utilities.interp_time(t_grid, values, -1.),
                                  values[..., 0])
    np.testing.assert_array_equal(utilities.interp_time(t_grid, values, 10.),
                                  values[..., -1])

    # Single time grid
    np.testing.assert_array_equal(
        utilities.interp_time(t_grid[:1], values[..., :1], 5.), values[..., 0])


def test_symmetrize():
    M = rng.normal(size=(3, 3, 5))
    S = utilities.symmetrize(M)
    np.testing.assert_allclose(S, np.swapaxes(S, 0, 1))
    np.testing.assert_allclose(S[..., 2], 0.5 * (M[..., 2] + M[..., 2].T))


@pytest.mark.parametrize('n_states', [1, 3])
@pytest.mark.parametrize('n_controls', [1, 2])
def test_pack_dataframe(n_states, n_controls):
    n_points = 11
    t = np.linspace(0., 1., n_points)
    x = rng.normal(size=(n_states, n_points))
    u = rng.normal(size=(n_controls, n_points))
    v = rng.normal(size=n_points)

    data = utilities.pack_dataframe(t, x, u, value=v)
    assert isinstance(data, pd.DataFrame)
    assert list(data.columns) == (
        ['t'] + [f'x{i + 1}' for i in range(n_states)]
        + [f'u{i + 1}' for i in range(n_controls)] + ['value'])
    np.testing.assert_array_equal(data['value'].to_numpy(), v)

    np.testing.assert_array_equal(data['t'].to_numpy(), t)
    x_cols = [f'x{i + 1}' for i in range(n_states)]
    u_cols = [f'u{i + 1}' for i in range(n_controls)]
    np.testing.assert_array_equal(data[x_cols].to_numpy().T, x)
    np.testing.assert_array_equal(data[u_cols].to_numpy().T, u)
