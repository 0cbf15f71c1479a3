import numpy as np

from ..utilities import approx_derivative, symmetrize


class OptimalControlProblem:
    """
    Template superclass defining a finite horizon optimal control problem (OCP)
    including nonlinear dynamics, running and terminal costs, and three kinds
    of constraints:

        * state-input equality constraints `c(t, x, u) = 0` (type-1),
        * state-only equality constraints `h(t, x) = 0`, which are also
          imposed at the final time,
        * inequality constraints `g(t, x, u) >= 0`.

    All methods take a single time `t`, state `x` of shape `(n_states,)`, and
    control `u` of shape `(n_controls,)`. Implementations must be safe to call
    concurrently with different arguments. Derivatives which are not
    overwritten by a subclass are approximated with finite differences, and
    constraints which are not implemented are empty.
    """
    # Dicts of default cost function and dynamics parameters, separated into
    # required and optional parameters. To be overwritten by subclass
    # implementations.
    _required_parameters = {}
    _optional_parameters = {}
    # Finite difference method for default gradient, Jacobian, and Hessian
    # approximations
    _fin_diff_method = '3-point'

    def __init__(self, **problem_parameters):
        """
        Parameters
        ----------
        problem_parameters : dict, default={}
            Parameters specifying the cost function, system dynamics, and
            constraints. If empty, defaults defined by the subclass will be
            used.
        """
        problem_parameters = {**self._required_parameters,
                              **self._optional_parameters,
                              **problem_parameters}
        # type(self) is used here in case subclass implementations forget to
        # make _parameter_update_fun a staticmethod.
        self.parameters = ProblemParameters(
            required=self._required_parameters.keys(),
            update_fun=type(self)._parameter_update_fun)
        """`ProblemParameters`. Cost function and system dynamics parameters."""
        self.parameters.update(**problem_parameters)

    def __str__(self):
        return type(self).__name__

    @property
    def n_states(self):
        """The number of system states (positive int)."""
        raise NotImplementedError

    @property
    def n_controls(self):
        """The number of control inputs to the system (positive int)."""
        raise NotImplementedError

    @staticmethod
    def _parameter_update_fun(obj, **new_params):
        """
        Performs operations on `self.parameters` during initialization and each
        time `self.parameters.update` is called. This is used for checking
        parameter shapes and performing other needed calculations.

        Parameters
        ----------
        obj : `ProblemParameters`
            In standard use, `obj` refers to `self.parameters`. Note that
            `_parameter_update_fun` allows `obj` itself to be modified.
        **new_params : dict
            Parameters which are being set or changing.
        """
        pass

    def dynamics(self, t, x, u):
        """
        Evaluate the system dynamics.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.
        u : (n_controls,) array
            Control.

        Returns
        -------
        dxdt : (n_states,) array
            System dynamics $dx/dt = f(t, x, u)$.
        """
        raise NotImplementedError

    def jac(self, t, x, u, f0=None):
        """
        Evaluate the Jacobians of the dynamics, $df/dx$ and $df/du$. Default
        implementation approximates the Jacobians with finite differences.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.
        u : (n_controls,) array
            Control.
        f0 : (n_states,) array, optional
            Dynamics evaluated at (`t`, `x`, `u`).

        Returns
        -------
        dfdx : (n_states, n_states) array
            State Jacobian $df/dx (t, x, u)$.
        dfdu : (n_states, n_controls) array
            Control Jacobian $df/du (t, x, u)$.
        """
        if f0 is None:
            f0 = self.dynamics(t, x, u)

        dfdx = approx_derivative(lambda x: self.dynamics(t, x, u), x, f0=f0,
                                 method=self._fin_diff_method)
        dfdu = approx_derivative(lambda u: self.dynamics(t, x, u), u, f0=f0,
                                 method=self._fin_diff_method)
        return dfdx, dfdu

    def running_cost(self, t, x, u):
        """
        Evaluate the running cost `L(t, x, u)`.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.
        u : (n_controls,) array
            Control.

        Returns
        -------
        L : float
            Running cost.
        """
        raise NotImplementedError

    def running_cost_grad(self, t, x, u, L0=None):
        """
        Evaluate the gradients of the running cost, $dL/dx$ and $dL/du$.
        Default implementation approximates these with finite differences.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.
        u : (n_controls,) array
            Control.
        L0 : float, optional
            Running cost evaluated at (`t`, `x`, `u`).

        Returns
        -------
        dLdx : (n_states,) array
            State gradient $dL/dx (t, x, u)$.
        dLdu : (n_controls,) array
            Control gradient $dL/du (t, x, u)$.
        """
        if L0 is None:
            L0 = self.running_cost(t, x, u)

        dLdx = approx_derivative(lambda x: self.running_cost(t, x, u), x,
                                 f0=L0, method=self._fin_diff_method)
        dLdu = approx_derivative(lambda u: self.running_cost(t, x, u), u,
                                 f0=L0, method=self._fin_diff_method)
        return dLdx, dLdu

    def running_cost_hess(self, t, x, u):
        """
        Evaluate the Hessians of the running cost. Default implementation
        approximates these with finite differences of `running_cost_grad`.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.
        u : (n_controls,) array
            Control.

        Returns
        -------
        dLdx2 : (n_states, n_states) array
            State Hessian $d^2L/dx^2 (t, x, u)$.
        dLdu2 : (n_controls, n_controls) array
            Control Hessian $d^2L/du^2 (t, x, u)$.
        dLdudx : (n_controls, n_states) array
            Mixed second derivatives $d^2L/dudx (t, x, u)$.
        """
        dLdx, dLdu = self.running_cost_grad(t, x, u)

        dLdx2 = approx_derivative(
            lambda x: self.running_cost_grad(t, x, u)[0], x, f0=dLdx,
            method=self._fin_diff_method)
        dLdu2 = approx_derivative(
            lambda u: self.running_cost_grad(t, x, u)[1], u, f0=dLdu,
            method=self._fin_diff_method)
        dLdudx = approx_derivative(
            lambda x: self.running_cost_grad(t, x, u)[1], x, f0=dLdu,
            method=self._fin_diff_method)

        return symmetrize(dLdx2), symmetrize(dLdu2), dLdudx

    def terminal_cost(self, t, x):
        """
        Evaluate the terminal cost $F(t, x)$.

        Parameters
        ----------
        t : float
            Final time.
        x : (n_states,) array
            Final state.

        Returns
        -------
        F : float
            Terminal cost.
        """
        return 0.

    def terminal_cost_grad(self, t, x, F0=None):
        """
        Evaluate the gradient of the terminal cost, $dF/dx$. Default
        implementation uses finite differences.

        Parameters
        ----------
        t : float
            Final time.
        x : (n_states,) array
            Final state.
        F0 : float, optional
            Terminal cost evaluated at (`t`, `x`).

        Returns
        -------
        dFdx : (n_states,) array
        """
        return approx_derivative(lambda x: self.terminal_cost(t, x), x, f0=F0,
                                 method=self._fin_diff_method)

    def terminal_cost_hess(self, t, x):
        """
        Evaluate the Hessian of the terminal cost, $d^2F/dx^2$. Default
        implementation uses finite differences.

        Parameters
        ----------
        t : float
            Final time.
        x : (n_states,) array
            Final state.

        Returns
        -------
        dFdx2 : (n_states, n_states) array
        """
        dFdx2 = approx_derivative(lambda x: self.terminal_cost_grad(t, x), x,
                                  method=self._fin_diff_method)
        return symmetrize(dFdx2)

    def state_input_constraints(self, t, x, u):
        """
        Evaluate the state-input equality constraints `c(t, x, u) = 0`. The
        Jacobian of these constraints with respect to `u` must have full row
        rank. Default is no constraints.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.
        u : (n_controls,) array
            Control.

        Returns
        -------
        c : (n_constraints,) array
            Constraint values.
        """
        return np.zeros(0)

    def state_input_constraints_jac(self, t, x, u, c0=None):
        """
        Evaluate the Jacobians of the state-input constraints, $dc/dx$ and
        $dc/du$. Default implementation uses finite differences.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.
        u : (n_controls,) array
            Control.
        c0 : (n_constraints,) array, optional
            Constraints evaluated at (`t`, `x`, `u`).

        Returns
        -------
        C : (n_constraints, n_states) array
            State Jacobian $dc/dx (t, x, u)$.
        D : (n_constraints, n_controls) array
            Control Jacobian $dc/du (t, x, u)$.
        """
        if c0 is None:
            c0 = self.state_input_constraints(t, x, u)
        if np.size(c0) == 0:
            return np.zeros((0, self.n_states)), np.zeros((0, self.n_controls))

        C = approx_derivative(lambda x: self.state_input_constraints(t, x, u),
                              x, f0=c0, method=self._fin_diff_method)
        D = approx_derivative(lambda u: self.state_input_constraints(t, x, u),
                              u, f0=c0, method=self._fin_diff_method)
        return np.atleast_2d(C), np.atleast_2d(D)

    def state_constraints(self, t, x):
        """
        Evaluate the state-only equality constraints `h(t, x) = 0`. These are
        imposed along the whole trajectory and at the final time. Default is no
        constraints.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.

        Returns
        -------
        h : (n_constraints,) array
            Constraint values.
        """
        return np.zeros(0)

    def state_constraints_jac(self, t, x, h0=None):
        """
        Evaluate the Jacobian of the state-only constraints, $dh/dx$. Default
        implementation uses finite differences.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.
        h0 : (n_constraints,) array, optional
            Constraints evaluated at (`t`, `x`).

        Returns
        -------
        H : (n_constraints, n_states) array
        """
        if h0 is None:
            h0 = self.state_constraints(t, x)
        if np.size(h0) == 0:
            return np.zeros((0, self.n_states))

        H = approx_derivative(lambda x: self.state_constraints(t, x), x,
                              f0=h0, method=self._fin_diff_method)
        return np.atleast_2d(H)

    def inequality_constraints(self, t, x, u):
        """
        Evaluate the inequality constraints, which are satisfied if
        `g(t, x, u) >= 0`. Default is no constraints.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.
        u : (n_controls,) array
            Control.

        Returns
        -------
        g : (n_constraints,) array
            Constraint values.
        """
        return np.zeros(0)

    def inequality_constraints_jac(self, t, x, u, g0=None):
        """
        Evaluate the Jacobians of the inequality constraints, $dg/dx$ and
        $dg/du$. Default implementation uses finite differences.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.
        u : (n_controls,) array
            Control.
        g0 : (n_constraints,) array, optional
            Constraints evaluated at (`t`, `x`, `u`).

        Returns
        -------
        gx : (n_constraints, n_states) array
            State Jacobian $dg/dx (t, x, u)$.
        gu : (n_constraints, n_controls) array
            Control Jacobian $dg/du (t, x, u)$.
        """
        if g0 is None:
            g0 = self.inequality_constraints(t, x, u)
        if np.size(g0) == 0:
            return np.zeros((0, self.n_states)), np.zeros((0, self.n_controls))

        gx = approx_derivative(lambda x: self.inequality_constraints(t, x, u),
                               x, f0=g0, method=self._fin_diff_method)
        gu = approx_derivative(lambda u: self.inequality_constraints(t, x, u),
                               u, f0=g0, method=self._fin_diff_method)
        return np.atleast_2d(gx), np.atleast_2d(gu)

    def constraint_sizes(self, t, x, u):
        """
        Count the constraints of each kind by evaluating them once.

        Parameters
        ----------
        t : float
            Time.
        x : (n_states,) array
            State.
        u : (n_controls,) array
            Control.

        Returns
        -------
        sizes : dict
            Number of constraints with keys 'state_input', 'state', and
            'inequality'.
        """
        return {'state_input': np.size(self.state_input_constraints(t, x, u)),
                'state': np.size(self.state_constraints(t, x)),
                'inequality': np.size(self.inequality_constraints(t, x, u))}


class ProblemParameters:
    """Utility class to store cost function and system dynamics parameters and
    allow these to be updated (between solves, for example)."""
    def __init__(self, required=[], update_fun=None, **params):
        """
        Parameters
        ----------
        required : list or set of strings, default=[]
            Names of parameters which cannot be None.
        update_fun : callable, optional
            A function to execute whenever problem parameters are modified by
            `update`. The function must have the call signature
            `update_fun(obj, **params)` where `obj` refers to the
            `ProblemParameters` instance and `params` are parameters to be
            modified, specified as keyword arguments.
        **params : dict
            Parameters to set as initialization, as keyword arguments.
        """
        if update_fun is None:
            self._update_fun = lambda s, **p: None
        elif callable(update_fun):
            self._update_fun = update_fun
        else:
            raise TypeError('update_fun must be set with a callable')

        self._param_dict = dict()
        self.required = set(required)
        if len(params):
            self.update(**params)

    def update(self, check_required=True, **params):
        """
        Modify individual or multiple parameters using keyword arguments. This
        internally calls `self._update_fun(self, **params)`.

        Parameters
        ----------
        check_required : bool, default=True
            Ensure that all required parameters have been set (after updating).
        **params : dict
            Parameters to change, as keyword arguments.

        Raises
        ------
        RuntimeError
            If `check_required` is True and any of the parameters in
            `self.required` is None after updating.
        """
        self._param_dict.update(params)
        self.__dict__.update(params)

        if check_required:
            for p in self.required:
                if getattr(self, p, None) is None:
                    raise RuntimeError(f"{p} is required but has not been set")

        self._update_fun(self, **params)

    def as_dict(self):
        """
        Return all named parameters in the form of a dict.

        Returns
        -------
        parameter_dict : dict
            Dict containing all parameters set using `__init__` or `update`.
        """
        return self._param_dict
