import numpy as np
import pandas as pd
from scipy.optimize import _numdiff


def check_int_input(n, argname, low=None):
    """
    Convert an input to an int, raising errors if this is not possible without
    likely loss of information or if the int is less than a specified minimum.

    Parameters
    ----------
    n : array_like, size 1
        Input to check.
    argname : str
        How to refer to the argument `n` in error messages.
    low : int, optional
        Minimum value which `n` should take.

    Raises
    ------
    TypeError
        If `n` is not an int or array_like of size 1.
    ValueError
        If `n < low`.

    Returns
    -------
    n : int
        Input `n` converted to an int, if possible.
    """
    if not isinstance(argname, str):
        raise TypeError("argname must be a str")
    if low is not None:
        low = check_int_input(low, 'low')

    if isinstance(n, (bool, np.bool_)):
        raise TypeError(f"{argname} must be an int")

    try:
        n = np.squeeze(n).astype(np.int64, casting='safe')
        n = int(n)
    except TypeError:
        raise TypeError(f"{argname} must be an int")

    if low is not None and n < low:
        raise ValueError(f"{argname} must be greater than or equal to {low:d}")

    return n


def resize_vector(array, n_rows):
    """
    Reshapes or resizes an array_like to a 1d array with a specified number of
    entries. Scalars and arrays of size 1 are broadcast.

    Parameters
    ----------
    array : array_like
        Array to reshape or resize into shape `(n_rows,)`.
    n_rows : int
        Number of entries desired. Can be any positive int or -1. If
        `n_rows == -1` then uses `n_rows = np.size(array)`.

    Returns
    -------
    reshaped_array : (n_rows,) float array
    """
    n_rows = check_int_input(n_rows, "n_rows")
    if n_rows == -1:
        n_rows = np.size(array)
    elif n_rows <= 0:
        raise ValueError("n_rows must be a positive int or -1")

    array = np.reshape(np.asarray(array, dtype=float), -1)
    if array.shape[0] == n_rows:
        return array
    elif array.shape[0] == 1:
        return np.full(n_rows, array[0])
    else:
        raise ValueError("The size of array is not compatible with the desired "
                         "shape (n_rows,)")


def approx_derivative(fun, x0, method="3-point", rel_step=None, f0=None,
                      args=(), kwargs={}):
    """
    Compute (batched) finite difference approximation of the derivatives of an
    array-valued function. Modified from
    `scipy.optimize._numdiff.approx_derivative` to allow for array-valued
    functions evaluated at multiple inputs.

    If a function maps from $R^n$ to $R^m$, its derivatives form m-by-n matrix
    called the Jacobian, where an element `[i, j]` is a partial derivative of
    `f[i]` with respect to `x[j]`.

    Parameters
    ----------
    fun : callable
        Function of which to estimate the derivatives. The argument `x`
        passed to this function is an ndarray of shape `(n,)` or
        `(n, n_points)`. It must return a float or an nd array_like of shape
        `(n_points,)`, `(m_1, ..., m_l)`, or `(m_1, ..., m_l, n_points)`,
        depending on the shape of the input.
    x0 : (n,) or (n, n_points) array
        Point(s) at which to estimate the derivatives.
    method : {"3-point", "2-point"}, optional
        Finite difference method to use:

            * "2-point" - use the first order accuracy forward or backward
                          difference.
            * "3-point" - use central difference
    rel_step : array_like, optional
        Relative step size to use. If `None` (default) the absolute step size is
        computed as `h = rel_step * sign(x0) * max(1, abs(x0))`, with
        `rel_step` being selected automatically. Otherwise
        `h = rel_step * sign(x0) * abs(x0)`. For `method="3-point"` the sign of
        `h` is ignored.
    f0 : array_like, optional
        If not `None` it is assumed to be equal to `fun(x0)`, in this case
        `fun(x0)` is not called.
    args, kwargs : tuple and dict, optional
        Additional arguments passed to `fun`. Both empty by default.
        The calling signature is `fun(x, *args, **kwargs)`.

    Returns
    -------
    dfdx : (n,), (n_points,), (m_1, ..., m_l, n), or \
            (m_1, ..., m_l, n, n_points) array
        Finite difference approximation of the Jacobian matrix or matrices. The
        shape of `dfdx` depends on the sizes of `x0` and `fun(x0)`.
    """
    if method not in ["2-point", "3-point"]:
        raise ValueError(f"Unknown method '{method}'. ")

    x0 = np.atleast_1d(np.asarray(x0, dtype=float))

    flatten = [False]

    def fun_wrapped(x):
        f = fun(x, *args, **kwargs)
        if np.ndim(f) < 1:
            flatten[0] = True
        return np.atleast_1d(f)

    if f0 is None:
        f0 = fun_wrapped(x0)
    else:
        if np.ndim(f0) < 1:
            flatten[0] = True
        f0 = np.atleast_1d(f0)

    h = _numdiff._compute_absolute_step(rel_step, x0, f0, method)

    dfdx = _dense_difference(fun_wrapped, x0, f0, h, method)

    if flatten[0]:
        return dfdx[0]
    else:
        return dfdx


def _dense_difference(fun, x0, f0, h, method):
    dfdx_T = np.empty(x0.shape[:1] + f0.shape)

    for i in range(x0.shape[0]):
        if method == "2-point":
            x = np.copy(x0)
            x[i] += h[i]
            dx = x[i] - x0[i]  # Recompute dx as exactly representable number.
            df = fun(x) - f0
        elif method == "3-point":
            x1, x2 = np.copy(x0), np.copy(x0)
            x1[i] += h[i]
            x2[i] -= h[i]
            dx = x2[i] - x1[i]
            df = fun(x2) - fun(x1)
        else:
            raise ValueError(f"Unknown method '{method}'. ")

        dfdx_T[i] = df / dx

    if x0.ndim < 2:
        return np.moveaxis(dfdx_T, 0, -1)

    return np.moveaxis(dfdx_T, 0, -2)


def interp_time(t_grid, values, t):
    """
    Linear interpolation of time-indexed arrays, with constant extrapolation
    outside of `t_grid`.

    Parameters
    ----------
    t_grid : (n_points,) array
        Strictly increasing time grid.
    values : (..., n_points) array
        Data at times `t_grid`, arranged with time along the last axis.
    t : float
        Time at which to interpolate.

    Returns
    -------
    value : (...) array
        `values` interpolated at time `t`.
    """
    n_points = t_grid.shape[0]
    if n_points == 1 or t <= t_grid[0]:
        return values[..., 0]
    if t >= t_grid[-1]:
        return values[..., -1]

    k = int(np.searchsorted(t_grid, t, side='right')) - 1
    k = min(k, n_points - 2)
    theta = (t - t_grid[k]) / (t_grid[k + 1] - t_grid[k])
    return (1. - theta) * values[..., k] + theta * values[..., k + 1]


def symmetrize(M):
    """Return the symmetric part of a square matrix (or stack of matrices with
    the matrix dimensions first)."""
    return 0.5 * (M + np.swapaxes(M, 0, 1))


def pack_dataframe(t, x, u, **columns):
    """
    Collect `numpy` arrays into a `DataFrame` which is convenient for saving as
    a .csv file.

    Parameters
    ----------
    t : (n_data,) array
        Time values of each data point.
    x : (n_states, n_data) array
        System states at times `t`.
    u : (n_controls, n_data) array
        Control inputs at times `t`.
    **columns : dict of (n_data,) arrays
        Additional named scalar columns, e.g. the value function.

    Returns
    -------
    data : DataFrame
        `DataFrame` with `n_data` rows and columns 't', 'x1', ..., 'xn',
        'u1', ..., 'um', followed by any additional columns.
    """
    n_states = np.shape(x)[0]
    n_controls = np.shape(u)[0]

    t = np.reshape(t, (1, -1))
    x = np.reshape(x, (n_states, -1))
    u = np.reshape(u, (n_controls, -1))
    data = [t, x, u]
    for val in columns.values():
        data.append(np.reshape(val, (1, -1)))

    data = np.vstack(data).T

    column_names = (['t'] + ['x' + str(i + 1) for i in range(n_states)]
                    + ['u' + str(i + 1) for i in range(n_controls)]
                    + list(columns.keys()))

    return pd.DataFrame(data, columns=column_names)

