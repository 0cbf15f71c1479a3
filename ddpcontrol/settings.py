"""
The `settings` module contains the configuration objects consumed by
`DDPSolver`. Settings are validated once at construction and cannot be
modified afterwards; use `replace` to derive a modified copy. The
globalization strategy is selected by the type of `DDPSettings.strategy`,
which carries its own sub-configuration:

* [`LineSearchSettings`](settings#LineSearchSettings):
    Backtracking line search on a merit function.

* [`TrustRegionSettings`](settings#TrustRegionSettings):
    Trust region on the feedforward step with Levenberg-Marquardt damping.
"""

import numpy as np

from .exceptions import ConfigurationError


class _Settings:
    """Base class for immutable settings containers. Subclasses define
    `_defaults`, a dict of option names and default values, and may override
    `_validate`."""
    _defaults = {}

    def __init__(self, **options):
        unknown = set(options) - set(self._defaults)
        if unknown:
            raise ConfigurationError(
                f"Unknown {type(self).__name__} option(s): "
                f"{', '.join(sorted(unknown))}")

        for key, default in self._defaults.items():
            object.__setattr__(self, key, options.get(key, default))

        self._validate()
        object.__setattr__(self, '_frozen', True)

    def __setattr__(self, key, value):
        if getattr(self, '_frozen', False):
            raise AttributeError(f"{type(self).__name__} is immutable; use "
                                 f"replace({key}=...) to derive new settings")
        object.__setattr__(self, key, value)

    def __repr__(self):
        options = ', '.join(f"{key}={getattr(self, key)!r}"
                            for key in self._defaults)
        return f"{type(self).__name__}({options})"

    def __eq__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def as_dict(self):
        """
        Return all options in the form of a dict.

        Returns
        -------
        options : dict
            Option names and their current values.
        """
        return {key: getattr(self, key) for key in self._defaults}

    def replace(self, **changes):
        """
        Create a copy of the settings with some options changed.

        Parameters
        ----------
        **changes : dict
            Options to change, as keyword arguments.

        Returns
        -------
        settings : same type as `self`
            New, validated settings instance.
        """
        return type(self)(**{**self.as_dict(), **changes})

    def _validate(self):
        pass

    def _check_positive(self, *names, strict=True):
        for name in names:
            val = getattr(self, name)
            try:
                val = float(val)
            except (TypeError, ValueError):
                raise ConfigurationError(f"{name} must be a float")
            if not np.isfinite(val) or val < 0. or (strict and val == 0.):
                raise ConfigurationError(
                    f"{name} must be {'positive' if strict else 'non-negative'}"
                    f", got {val}")
            object.__setattr__(self, name, val)

    def _check_int(self, *names, low=0):
        for name in names:
            val = getattr(self, name)
            if (isinstance(val, (bool, np.bool_))
                    or not isinstance(val, (int, np.integer))):
                raise ConfigurationError(f"{name} must be an int")
            if val < low:
                raise ConfigurationError(
                    f"{name} must be greater than or equal to {low}")
            object.__setattr__(self, name, int(val))

    def _check_bool(self, *names):
        for name in names:
            val = getattr(self, name)
            if not isinstance(val, (bool, np.bool_)):
                raise ConfigurationError(f"{name} must be a bool")
            object.__setattr__(self, name, bool(val))


class LineSearchSettings(_Settings):
    """
    Line search strategy settings. Candidate step sizes are
    `max_step_size * contraction_rate ** j` for `j = 0, 1, ...` as long as
    they are not smaller than `min_step_size`.

    Parameters
    ----------
    max_step_size : float, default=1.
        First (largest) step size tried.
    min_step_size : float, default=0.05
        Smallest step size tried before declaring a failed step.
    contraction_rate : float, default=0.5
        Factor in (0, 1) between successive step sizes.
    armijo_coefficient : float, default=1e-04
        Sufficient decrease coefficient. A step `a` is accepted if the merit
        function decreases by at least `armijo_coefficient` times the expected
        decrease of the quadratic model for the step `a`.
    """
    name = 'line_search'
    _defaults = {'max_step_size': 1.,
                 'min_step_size': 0.05,
                 'contraction_rate': 0.5,
                 'armijo_coefficient': 1e-04}

    def _validate(self):
        self._check_positive('max_step_size', 'min_step_size',
                             'contraction_rate')
        self._check_positive('armijo_coefficient', strict=False)
        if self.min_step_size > self.max_step_size:
            raise ConfigurationError(
                "min_step_size must not exceed max_step_size")
        if self.contraction_rate >= 1.:
            raise ConfigurationError("contraction_rate must be in (0, 1)")
        if self.armijo_coefficient >= 1.:
            raise ConfigurationError("armijo_coefficient must be in [0, 1)")

    @property
    def step_sizes(self):
        """(n_candidates,) array. Candidate step sizes in the order they are
        tried."""
        step_sizes = [self.max_step_size]
        while step_sizes[-1] * self.contraction_rate >= self.min_step_size:
            step_sizes.append(step_sizes[-1] * self.contraction_rate)
        return np.array(step_sizes)


class TrustRegionSettings(_Settings):
    """
    Trust region strategy settings. The trust region bounds the L2 norm (in
    time) of the feedforward correction.

    Parameters
    ----------
    initial_radius : float, default=1.
        Trust region radius at the start of a solve.
    min_radius : float, default=1e-04
        Lower bound of the radius.
    max_radius : float, default=100.
        Upper bound of the radius.
    acceptance_ratio : float, default=0.1
        A step is accepted if the ratio of actual to expected merit decrease
        exceeds this value.
    shrink_ratio : float, default=0.25
        The radius shrinks if the ratio falls below this value.
    expand_ratio : float, default=0.75
        The radius grows if the ratio exceeds this value.
    shrink_factor : float, default=0.25
        Factor applied to the radius when shrinking.
    expand_factor : float, default=2.
        Factor applied to the radius when expanding.
    damping_init : float, default=1e-03
        First damping added to the input Hessian when the step exceeds the
        radius.
    damping_factor : float, default=10.
        Factor by which the damping increases between re-solves.
    max_num_damping_attempts : int, default=20
        Maximum number of damped re-solves of the backward pass.
    """
    name = 'trust_region'
    _defaults = {'initial_radius': 1.,
                 'min_radius': 1e-04,
                 'max_radius': 100.,
                 'acceptance_ratio': 0.1,
                 'shrink_ratio': 0.25,
                 'expand_ratio': 0.75,
                 'shrink_factor': 0.25,
                 'expand_factor': 2.,
                 'damping_init': 1e-03,
                 'damping_factor': 10.,
                 'max_num_damping_attempts': 20}

    def _validate(self):
        self._check_positive('initial_radius', 'min_radius', 'max_radius',
                             'shrink_ratio', 'expand_ratio', 'shrink_factor',
                             'expand_factor', 'damping_init', 'damping_factor')
        self._check_positive('acceptance_ratio', strict=False)
        self._check_int('max_num_damping_attempts', low=1)
        if not self.min_radius <= self.initial_radius <= self.max_radius:
            raise ConfigurationError(
                "Trust region radii must satisfy "
                "min_radius <= initial_radius <= max_radius")
        if not self.acceptance_ratio <= self.shrink_ratio < self.expand_ratio:
            raise ConfigurationError(
                "Ratios must satisfy "
                "acceptance_ratio <= shrink_ratio < expand_ratio")
        if self.shrink_factor >= 1. or self.expand_factor <= 1.:
            raise ConfigurationError(
                "shrink_factor must be in (0, 1) and expand_factor > 1")
        if self.damping_factor <= 1.:
            raise ConfigurationError("damping_factor must be greater than 1")


STRATEGIES = {LineSearchSettings.name: LineSearchSettings,
              TrustRegionSettings.name: TrustRegionSettings}


class DDPSettings(_Settings):
    """
    Settings for one DDP solve.

    Parameters
    ----------
    max_num_iterations : int, default=15
        Maximum number of outer DDP iterations.
    min_rel_cost : float, default=1e-03
        Convergence threshold on the relative change of the cost between
        successive accepted iterations.
    state_constraint_penalty_coeff : float, default=0.
        Penalty coefficient `alpha` for state-only constraints. The penalty at
        iteration `i` is `alpha * base ** i`.
    state_constraint_penalty_base : float, default=1.
        Penalty base `base` for state-only constraints.
    max_state_constraint_penalty : float, default=1e08
        Upper bound on the state constraint penalty, so that the penalty stays
        finite when it persists over many solves.
    inequality_constraint_mu : float, default=0.
        Scaling `mu` of the relaxed log barrier for inequality constraints.
        Inequality constraints are ignored when `mu == 0`.
    inequality_constraint_delta : float, default=1e-06
        Threshold `delta` at which the relaxed log barrier switches from the
        logarithm to a quadratic extension.
    merit_function_rho : float, default=1.
        Weight of the state-input constraint ISE in the merit function.
    constraint_step_size : float, default=1.
        Step size of the state-input constraint correction.
    display_info : bool, default=False
        Print information at every iteration.
    display_short_summary : bool, default=False
        Print a termination report.
    abs_tol_ode : float, default=1e-09
        Absolute tolerance of the ODE solvers.
    rel_tol_ode : float, default=1e-06
        Relative tolerance of the ODE solvers.
    max_num_steps_per_second : int, default=10000
        Maximum number of integration steps per unit of time, for rollouts
        and for the Riccati ODE over the whole horizon.
    min_time_step : float, default=1e-03
        Minimum integration time step.
    min_abs_constraint1_ise : float, default=1e-03
        Maximum permitted absolute ISE of state-input constraints at
        convergence.
    min_rel_constraint1_ise : float, default=1e-03
        Maximum permitted relative change of the state-input constraint ISE at
        convergence.
    simulation_is_constrained : bool, default=False
        Skip the state-input constraint correction (error feedback) term,
        assuming the rollout already satisfies these constraints.
    no_state_constraints : bool, default=False
        Ignore state-only constraints entirely (no ISE, no penalty).
    check_numerical_stability : bool, default=True
        Check positive semi-definiteness of the value function Hessian at every
        sample of the backward pass.
    n_threads : int, default=1
        Number of worker threads.
    thread_priority : int or None, default=None
        Real-time scheduling priority requested for worker threads. `None`
        keeps the priority of the calling process.
    use_riccati_solver : bool, default=True
        Solve the Riccati equation with the adaptive ODE solver if `True`,
        otherwise with interval-wise matrix exponentials.
    use_feedback_policy : bool, default=False
        Return the optimized linear feedback policy if `True`, otherwise the
        optimized open-loop input trajectory.
    debug_print_rollout : bool, default=False
        Print a summary of every rollout.
    penalty_reset : {'solve', 'persist'}, default='solve'
        When the iteration index of the state constraint penalty is reset:
        at the start of every solve, or only at the first solve and then
        carried across warm-started re-solves.
    max_num_regularization_attempts : int, default=5
        Maximum number of regularized re-solves of the backward pass after a
        numerical instability.
    regularization_init : float, default=1e-06
        First Hessian regularization used after a numerical instability.
    regularization_factor : float, default=10.
        Factor by which the regularization increases between attempts.
    strategy : {'line_search', 'trust_region'}, `LineSearchSettings`, or \
            `TrustRegionSettings`, default='line_search'

        Globalization strategy. Strings select the strategy with default
        sub-settings.
    """
    _defaults = {'max_num_iterations': 15,
                 'min_rel_cost': 1e-03,
                 'state_constraint_penalty_coeff': 0.,
                 'state_constraint_penalty_base': 1.,
                 'max_state_constraint_penalty': 1e08,
                 'inequality_constraint_mu': 0.,
                 'inequality_constraint_delta': 1e-06,
                 'merit_function_rho': 1.,
                 'constraint_step_size': 1.,
                 'display_info': False,
                 'display_short_summary': False,
                 'abs_tol_ode': 1e-09,
                 'rel_tol_ode': 1e-06,
                 'max_num_steps_per_second': 10000,
                 'min_time_step': 1e-03,
                 'min_abs_constraint1_ise': 1e-03,
                 'min_rel_constraint1_ise': 1e-03,
                 'simulation_is_constrained': False,
                 'no_state_constraints': False,
                 'check_numerical_stability': True,
                 'n_threads': 1,
                 'thread_priority': None,
                 'use_riccati_solver': True,
                 'use_feedback_policy': False,
                 'debug_print_rollout': False,
                 'penalty_reset': 'solve',
                 'max_num_regularization_attempts': 5,
                 'regularization_init': 1e-06,
                 'regularization_factor': 10.,
                 'strategy': LineSearchSettings.name}

    def _validate(self):
        self._check_int('max_num_iterations', 'max_num_regularization_attempts')
        self._check_int('max_num_steps_per_second', 'n_threads', low=1)
        self._check_positive('min_rel_cost', 'inequality_constraint_delta',
                             'abs_tol_ode', 'rel_tol_ode', 'min_time_step',
                             'state_constraint_penalty_base',
                             'max_state_constraint_penalty',
                             'regularization_init', 'regularization_factor')
        self._check_positive('state_constraint_penalty_coeff',
                             'inequality_constraint_mu', 'merit_function_rho',
                             'constraint_step_size', 'min_abs_constraint1_ise',
                             'min_rel_constraint1_ise', strict=False)
        self._check_bool('display_info', 'display_short_summary',
                         'simulation_is_constrained', 'no_state_constraints',
                         'check_numerical_stability', 'use_riccati_solver',
                         'use_feedback_policy', 'debug_print_rollout')

        if self.thread_priority is not None:
            self._check_int('thread_priority', low=1)

        if self.penalty_reset not in ('solve', 'persist'):
            raise ConfigurationError(
                "penalty_reset must be one of {'solve', 'persist'}")

        strategy = self.strategy
        if isinstance(strategy, str):
            if strategy not in STRATEGIES:
                raise ConfigurationError(
                    f"strategy = {strategy} is not recognized. Valid options "
                    f"are {', '.join(STRATEGIES)}")
            strategy = STRATEGIES[strategy]()
        elif not isinstance(strategy, tuple(STRATEGIES.values())):
            raise ConfigurationError(
                "strategy must be a strategy name, LineSearchSettings, or "
                "TrustRegionSettings")
        object.__setattr__(self, 'strategy', strategy)

    @property
    def strategy_name(self):
        """{'line_search', 'trust_region'}. Name of the selected strategy."""
        return self.strategy.name

    def as_dict(self, nested=False):
        """
        Return all options in the form of a dict.

        Parameters
        ----------
        nested : bool, default=False
            If `True`, the strategy is stored by name and its sub-settings in
            a separate block, in the format accepted by `from_dict`.

        Returns
        -------
        options : dict
        """
        options = super().as_dict()
        if nested:
            options['strategy'] = self.strategy_name
            options[self.strategy_name] = self.strategy.as_dict()
        return options

    @classmethod
    def from_dict(cls, options):
        """
        Build settings from a (possibly parsed config file) dict. The strategy
        is given by name under the key 'strategy', and its sub-settings under
        a key with the same name, e.g.
        `{'strategy': 'trust_region', 'trust_region': {'max_radius': 10.}}`.

        Parameters
        ----------
        options : dict
            Option names and values. Options which are not present take their
            default values.

        Returns
        -------
        settings : `DDPSettings`

        Raises
        ------
        ConfigurationError
            If an option is unknown or invalid, if 'strategy' is given without
            its sub-configuration block, or if a block is given for a strategy
            which is not selected.
        """
        if not isinstance(options, dict):
            raise ConfigurationError("options must be a dict")
        options = dict(options)

        blocks = {name: options.pop(name) for name in STRATEGIES
                  if name in options}

        strategy = options.pop('strategy', None)
        if strategy is None:
            if len(blocks) > 1:
                raise ConfigurationError(
                    "Sub-configurations for more than one strategy given")
            strategy = next(iter(blocks), LineSearchSettings.name)
        elif not isinstance(strategy, str) or strategy not in STRATEGIES:
            raise ConfigurationError(
                f"strategy = {strategy} is not recognized. Valid options are "
                f"{', '.join(STRATEGIES)}")
        elif strategy not in blocks:
            raise ConfigurationError(
                f"Missing '{strategy}' sub-configuration for strategy "
                f"'{strategy}'")

        for name in blocks:
            if name != strategy:
                raise ConfigurationError(
                    f"Sub-configuration '{name}' given but strategy is "
                    f"'{strategy}'")

        block = blocks.get(strategy, {})
        if not isinstance(block, dict):
            raise ConfigurationError(f"'{strategy}' block must be a dict")

        return cls(strategy=STRATEGIES[strategy](**block), **options)
