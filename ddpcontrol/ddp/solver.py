import threading
import warnings

import numpy as np
import pandas as pd

from . import riccati as riccati_module
from .constraints import ConstraintState
from .globalization import make_strategy
from ..controls import ConstantControl, LinearFeedbackPolicy
from ..exceptions import (ConfigurationError, ConstraintInfeasible,
                          IntegrationFailure, NumericalInstability)
from ..parallel import ThreadPool
from ..settings import DDPSettings
from ..simulate import rollout


CONVERGED = 0
ITERATION_LIMIT = 1
ABORTED = 2
FAILED = -1

_status_messages = {
    CONVERGED: "Converged",
    ITERATION_LIMIT: "Iteration limit reached",
    ABORTED: "Aborted"
}

# Number of consecutive iterations without a decrease of the state constraint
# ISE (while the penalty grows) before the problem is reported infeasible
_infeasible_patience = 2


class IterationRecord:
    """Scalar summary of one outer iteration."""
    _fields = ('iteration', 'cost', 'merit', 'state_ise', 'state_input_ise',
               'accepted', 'step_size', 'rel_cost_change',
               'expected_decrease', 'penalty', 'regularization',
               'trust_radius', 'constraint_infeasible')

    def __init__(self, iteration, cost, merit, state_ise, state_input_ise,
                 accepted, step_size, rel_cost_change, expected_decrease,
                 penalty, regularization, trust_radius=None,
                 constraint_infeasible=False):
        self.iteration = iteration
        self.cost = cost
        self.merit = merit
        self.state_ise = state_ise
        self.state_input_ise = state_input_ise
        self.accepted = accepted
        self.step_size = step_size
        self.rel_cost_change = rel_cost_change
        self.expected_decrease = expected_decrease
        self.penalty = penalty
        self.regularization = regularization
        self.trust_radius = trust_radius
        self.constraint_infeasible = constraint_infeasible

    def as_dict(self):
        return {key: getattr(self, key) for key in self._fields}

    def __repr__(self):
        return (f"IterationRecord(iteration={self.iteration}, "
                f"cost={self.cost:.6e}, accepted={self.accepted}, "
                f"step_size={self.step_size:.3g})")


class DDPSolution:
    """
    Result of `DDPSolver.solve` or `DDPSolver.resolve`.
    """
    def __init__(self, status, message, trajectory, policy, value_function,
                 iterations):
        self.status = int(status)
        """int. Reason for solver termination:

            *  0: Converged.
            *  1: Iteration limit reached without convergence.
            *  2: Aborted between outer iterations by `DDPSolver.abort`.
            * -1: Failed; see `message` for the reason.
        """
        self.message = str(message)
        """str. Human-readable description of `status`."""
        self.trajectory = trajectory
        """`Trajectory` or None. Rollout of the last accepted control law.
        `None` only if the initial rollout failed."""
        self.policy = policy
        """`Controller`. Last accepted control law: a `LinearFeedbackPolicy` or
        a `FeedforwardPolicy` depending on `use_feedback_policy`, or the initial
        guess if no iteration was performed."""
        self.value_function = value_function
        """`ValueFunction` or None. Quadratic cost-to-go approximation from the
        last backward pass."""
        self.iterations = list(iterations)
        """list of `IterationRecord`. One record per outer iteration."""

    @property
    def success(self):
        """bool. `True` unless the solve failed."""
        return self.status != FAILED

    @property
    def n_iterations(self):
        return len(self.iterations)

    def iterations_dataframe(self):
        """
        Collect the iteration records into a `DataFrame`.

        Returns
        -------
        data : DataFrame
            One row per outer iteration and one column per record field.
        """
        return pd.DataFrame([record.as_dict() for record in self.iterations],
                            columns=IterationRecord._fields)


class DDPSolver:
    """
    Continuous-time differential dynamic programming (sequential linear
    quadratic) solver. Each outer iteration

        1. builds a local linear quadratic model of the problem along the
           current trajectory and solves its Riccati equation backwards in
           time (`riccati.approximate`, `riccati.backward_pass`),
        2. takes a step along the resulting correction with the selected
           globalization strategy, rolling out candidate control laws
           (`simulate.rollout`),
        3. tests for convergence.

    Numerical instabilities in the backward pass are retried with increasing
    Hessian regularization. Integration and numerical failures which cannot
    be recovered end the solve with `status=-1`, returning the last accepted
    control law; they are never raised to the caller.

    Parameters
    ----------
    ocp : `OptimalControlProblem`
        Problem to solve.
    settings : `DDPSettings` or dict, optional
        Solver settings. Dicts are parsed with `DDPSettings.from_dict`.

    Raises
    ------
    ConfigurationError
        If the settings are invalid.
    """
    def __init__(self, ocp, settings=None):
        if settings is None:
            settings = DDPSettings()
        elif isinstance(settings, dict):
            settings = DDPSettings.from_dict(settings)
        elif not isinstance(settings, DDPSettings):
            raise ConfigurationError("settings must be a DDPSettings or dict")

        self.ocp = ocp
        self.settings = settings

        self.pool = ThreadPool(settings.n_threads, settings.thread_priority)
        self.strategy = make_strategy(settings, self.pool)

        self._constraints = None
        self._last_policy = None
        self._abort = threading.Event()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        """Shut down the worker threads."""
        self.pool.shutdown()

    def abort(self):
        """Request the running solve to stop before its next outer iteration.
        The solve returns `status=2` with the last accepted control law. Safe
        to call from any thread."""
        self._abort.set()

    def solve(self, x0, t_span, initial_policy=None, callback=None):
        """
        Optimize the control law for one initial state and time horizon.

        Parameters
        ----------
        x0 : (`ocp.n_states`,) array
            Initial state.
        t_span : 2-tuple of floats
            Time horizon `(t0, tf)` with `tf > t0`.
        initial_policy : `Controller`, optional
            Initial guess of the control law, evaluated as
            `initial_policy(t, x)`. Defaults to zero control.
        callback : callable, optional
            Called as `callback(record)` with the `IterationRecord` after each
            outer iteration.

        Returns
        -------
        solution : `DDPSolution`
        """
        return self._solve(x0, t_span, initial_policy, callback)

    def resolve(self, x0, t_span, warm_start=None, callback=None):
        """
        Re-optimize from a new initial state and horizon, warm-started from a
        given control law or from the last one computed by this solver, as
        in model predictive control. The state constraint penalty index is
        carried over if `settings.penalty_reset == 'persist'`.

        Parameters
        ----------
        x0 : (`ocp.n_states`,) array
            New initial state.
        t_span : 2-tuple of floats
            New time horizon `(t0, tf)`. Control laws stored on a time grid are
            held constant outside it.
        warm_start : `Controller`, optional
            Control law to start from. Defaults to the last control law
            computed by `solve` or `resolve`, or zero control if there is none.
        callback : callable, optional
            See `solve`.

        Returns
        -------
        solution : `DDPSolution`
        """
        if warm_start is None:
            warm_start = self._last_policy
        return self._solve(x0, t_span, warm_start, callback)

    def _check_inputs(self, x0, t_span, policy):
        x0 = np.reshape(np.asarray(x0, dtype=float), -1)
        if x0.shape[0] != self.ocp.n_states:
            raise ValueError("x0 must have shape (n_states,)")

        if np.size(t_span) != 2:
            raise ValueError("t_span must be a 2-tuple of floats")
        t_span = (float(t_span[0]), float(t_span[1]))
        if not t_span[1] > t_span[0]:
            raise ValueError("t_span must satisfy t_span[1] > t_span[0]")

        if policy is None:
            policy = ConstantControl(np.zeros(self.ocp.n_controls))
        elif not callable(policy):
            raise TypeError("initial_policy must be a Controller")

        return x0, t_span, policy

    def _setup_constraints(self, x0, t_span, policy):
        t0 = t_span[0]
        sizes = self.ocp.constraint_sizes(t0, x0, policy(t0, x0))
        state = self._constraints
        if state is None or (state.n_state_input, state.n_state,
                             state.n_inequality) != (sizes['state_input'],
                                                     sizes['state'],
                                                     sizes['inequality']):
            state = ConstraintState(self.settings, sizes)
            self._constraints = state
        state.start_solve()
        return state

    def _rollout(self, policy, x0, t_span, constraints):
        settings = self.settings
        trajectory = rollout(
            self.ocp, policy, x0, t_span, atol=settings.abs_tol_ode,
            rtol=settings.rel_tol_ode, min_time_step=settings.min_time_step,
            max_num_steps_per_second=settings.max_num_steps_per_second,
            state_constraints=constraints.state_active,
            barrier=(constraints.barrier if constraints.inequality_active
                     else None))
        if settings.debug_print_rollout:
            print(f"Rollout: {trajectory}")
        return trajectory

    def _backward_once(self, trajectory, constraints, regularization,
                       use_riccati_solver=None):
        model = riccati_module.approximate(self.ocp, trajectory, constraints,
                                           self.settings, self.pool,
                                           regularization=regularization)
        return riccati_module.backward_pass(
            model, self.settings, self.pool,
            use_riccati_solver=use_riccati_solver)

    def _backward(self, trajectory, constraints, regularization):
        """Backward pass with retries. Numerical instabilities are retried with
        increasing regularization, and a Riccati ODE which cannot be integrated
        is solved once more with matrix exponentials. Returns the
        `RiccatiSolution`, the regularization used, and whether the ODE solver
        was used."""
        settings = self.settings
        use_ode = settings.use_riccati_solver
        n_attempts = 0
        while True:
            try:
                riccati = self._backward_once(trajectory, constraints,
                                              regularization,
                                              use_riccati_solver=use_ode)
                return riccati, regularization, use_ode
            except IntegrationFailure as e:
                if not use_ode:
                    raise
                use_ode = False
                if settings.display_info:
                    print(f"{e}; retrying with matrix exponentials")
            except NumericalInstability as e:
                if n_attempts >= settings.max_num_regularization_attempts:
                    raise
                n_attempts += 1
                regularization = max(settings.regularization_init,
                                     regularization
                                     * settings.regularization_factor)
                if settings.display_info:
                    print(f"{e}; retrying with regularization "
                          f"{regularization:.1e}")

    def _constraints_converged(self, constraints, ise, ise_prev):
        if not constraints.state_input_active:
            return True
        settings = self.settings
        if ise > settings.min_abs_constraint1_ise:
            return False
        if ise_prev is None:
            return False
        rel_change = (np.abs(ise - ise_prev)
                      / max(ise_prev, settings.min_abs_constraint1_ise))
        return rel_change <= settings.min_rel_constraint1_ise

    def _output_policy(self, policy, trajectory):
        if self.settings.use_feedback_policy or not isinstance(
                policy, LinearFeedbackPolicy):
            return policy
        return policy.feedforward(trajectory.t, trajectory.x)

    def _print_iteration(self, record):
        radius = ('' if record.trust_radius is None
                  else f" | radius {record.trust_radius:.2e}")
        state_ise = ('' if record.state_ise is None
                     else f" | state ISE {record.state_ise:.2e}")
        print(f"iter {record.iteration:3d} | cost {record.cost:.6e} | "
              f"merit {record.merit:.6e} | step {record.step_size:.3f} "
              f"({'accepted' if record.accepted else 'rejected'}) | "
              f"rel change {record.rel_cost_change:.2e} | "
              f"input ISE {record.state_input_ise:.2e}" + state_ise + radius)

    def _print_summary(self, solution):
        print(f"DDP terminated after {solution.n_iterations:d} iteration(s) "
              f"(status {solution.status:d}): {solution.message}")
        if solution.trajectory is not None:
            traj = solution.trajectory
            print(f"    cost = {traj.cost:.6e}, state-input ISE = "
                  f"{traj.state_input_ise:.2e}, state ISE = {traj.state_ise}")

    def _solve(self, x0, t_span, policy, callback):
        settings = self.settings
        x0, t_span, policy = self._check_inputs(x0, t_span, policy)
        self._abort.clear()

        constraints = self._setup_constraints(x0, t_span, policy)
        self.strategy.reset()

        records = []
        value_function = None

        def finish(status, message, trajectory, policy):
            if trajectory is not None:
                self._last_policy = policy
            solution = DDPSolution(
                status, message, trajectory,
                (policy if trajectory is None
                 else self._output_policy(policy, trajectory)),
                value_function, records)
            if settings.display_short_summary:
                self._print_summary(solution)
            return solution

        try:
            trajectory = self._rollout(policy, x0, t_span, constraints)
        except IntegrationFailure as e:
            return finish(FAILED, f"Initial rollout failed: {e}", None, policy)

        if settings.max_num_iterations == 0:
            self._last_policy = policy
            solution = DDPSolution(ITERATION_LIMIT,
                                   _status_messages[ITERATION_LIMIT],
                                   trajectory, policy, None, records)
            if settings.display_short_summary:
                self._print_summary(solution)
            return solution

        regularization = 0.
        ise_prev = None
        state_ise_prev = None
        n_no_decrease = 0
        warned_infeasible = False

        for i in range(settings.max_num_iterations):
            if self._abort.is_set():
                return finish(ABORTED, _status_messages[ABORTED], trajectory,
                              policy)

            merit = constraints.merit(trajectory)

            try:
                riccati, regularization, use_ode = self._backward(
                    trajectory, constraints, regularization)
            except (NumericalInstability, IntegrationFailure) as e:
                return finish(FAILED, f"Backward pass failed: {e}",
                              trajectory, policy)

            value_function = riccati.value_function

            # Stationary point: the model predicts no further decrease
            expected_rel = (riccati.expected_decrease(1.)
                            / max(np.abs(merit), np.finfo(float).eps))
            if (expected_rel < settings.min_rel_cost
                    and self._constraints_converged(
                        constraints, trajectory.state_input_ise, ise_prev)):
                record = IterationRecord(
                    i, trajectory.cost, merit, trajectory.state_ise,
                    trajectory.state_input_ise, False, 0., 0.,
                    riccati.expected_decrease(1.), constraints.penalty,
                    regularization, self.strategy.radius)
                records.append(record)
                if settings.display_info:
                    self._print_iteration(record)
                if callback is not None:
                    callback(record)
                return finish(CONVERGED, _status_messages[CONVERGED],
                              trajectory, policy)

            def evaluate(candidate):
                new_trajectory = self._rollout(candidate, x0, t_span,
                                               constraints)
                return new_trajectory, constraints.merit(new_trajectory)

            def resolve(damping):
                return self._backward_once(trajectory, constraints,
                                           regularization + damping,
                                           use_riccati_solver=use_ode)

            try:
                step = self.strategy.step(evaluate, trajectory, merit, riccati,
                                          resolve=resolve)
            except IntegrationFailure as e:
                return finish(FAILED, f"Rollout failed: {e}", trajectory,
                              policy)
            except NumericalInstability as e:
                return finish(FAILED, f"Backward pass failed: {e}",
                              trajectory, policy)

            ise_before = trajectory.state_input_ise
            if step.accepted:
                rel_change = (np.abs(trajectory.cost - step.trajectory.cost)
                              / max(np.abs(trajectory.cost),
                                    np.finfo(float).eps))
                trajectory, policy = step.trajectory, step.policy
                if regularization <= settings.regularization_init:
                    regularization = 0.
                else:
                    regularization /= settings.regularization_factor
            else:
                rel_change = 0.
                regularization = max(settings.regularization_init,
                                     regularization
                                     * settings.regularization_factor)

            infeasible = False
            if (constraints.state_active and constraints.coeff > 0.
                    and constraints.base > 1.):
                state_ise = trajectory.state_ise
                if state_ise_prev is not None and state_ise >= state_ise_prev:
                    n_no_decrease += 1
                else:
                    n_no_decrease = 0
                state_ise_prev = state_ise
                if n_no_decrease >= _infeasible_patience:
                    infeasible = True
                    if not warned_infeasible:
                        warned_infeasible = True
                        warnings.warn(
                            f"State constraint ISE ({state_ise:.3e}) has not "
                            f"decreased in {n_no_decrease:d} iterations "
                            f"despite penalty {constraints.penalty:.3e}",
                            ConstraintInfeasible)

            record = IterationRecord(
                i, trajectory.cost, constraints.merit(trajectory),
                trajectory.state_ise, trajectory.state_input_ise,
                step.accepted, step.step_size, rel_change,
                step.expected_decrease, constraints.penalty, regularization,
                self.strategy.radius, infeasible)
            records.append(record)
            if settings.display_info:
                self._print_iteration(record)
            if callback is not None:
                callback(record)

            if (step.accepted and rel_change < settings.min_rel_cost
                    and self._constraints_converged(
                        constraints, trajectory.state_input_ise, ise_before)):
                return finish(CONVERGED, _status_messages[CONVERGED],
                              trajectory, policy)

            ise_prev = ise_before
            constraints.advance()

        return finish(ITERATION_LIMIT, _status_messages[ITERATION_LIMIT],
                      trajectory, policy)
