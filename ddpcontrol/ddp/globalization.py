"""
Globalization strategies deciding how far to move along the direction computed
by the backward pass. Both compare a merit function (cost plus constraint
violation terms, see `ConstraintState.merit`) before and after the step:

* [`LineSearch`](ddp/globalization#LineSearch):
    Backtracking over a fixed sequence of step sizes with an Armijo test.

* [`TrustRegion`](ddp/globalization#TrustRegion):
    Bounds the size of the feedforward correction by damping the backward
    pass, and adapts the bound from the ratio of actual to expected decrease.
"""

import numpy as np

from ..exceptions import IntegrationFailure
from ..settings import LineSearchSettings, TrustRegionSettings


class StepResult:
    """
    Outcome of one globalization attempt.

    Attributes
    ----------
    accepted : bool
        Whether a step was accepted. If `False` the remaining attributes
        describe the last candidate tried (or are `None`), and the current
        policy should be kept.
    step_size : float
        Scaling of the feedforward correction.
    policy : `LinearFeedbackPolicy` or None
        Updated control law.
    trajectory : `Trajectory` or None
        Rollout of `policy`.
    merit : float
        Merit function of `trajectory`.
    expected_decrease : float
        Merit decrease predicted by the local model for `step_size`.
    riccati : `RiccatiSolution`
        Backward pass solution the step was taken along.
    radius : float or None
        Trust region radius after the step (trust region only).
    """
    def __init__(self, accepted, step_size=0., policy=None, trajectory=None,
                 merit=np.inf, expected_decrease=0., riccati=None,
                 radius=None):
        self.accepted = accepted
        self.step_size = step_size
        self.policy = policy
        self.trajectory = trajectory
        self.merit = merit
        self.expected_decrease = expected_decrease
        self.riccati = riccati
        self.radius = radius


def _evaluate_candidate(evaluate, riccati, trajectory, step_size):
    policy = riccati.policy(trajectory, step_size)
    try:
        new_trajectory, merit = evaluate(policy)
    except IntegrationFailure as e:
        return e
    return policy, new_trajectory, merit


class LineSearch:
    """
    Backtracking line search. Candidate step sizes are rolled out in ordered
    batches of `pool.n_threads`, and the first candidate in the sequence which
    satisfies the sufficient decrease condition

        `merit_new <= merit_old - armijo_coefficient * expected_decrease(a)`

    and strictly decreases the merit is accepted. The result does not depend on
    the number of threads.

    Parameters
    ----------
    settings : `LineSearchSettings`
        Line search parameters.
    pool : `ThreadPool`
        Worker pool for concurrent rollouts.
    """
    name = LineSearchSettings.name

    def __init__(self, settings, pool):
        self.settings = settings
        self.pool = pool
        self.step_sizes = settings.step_sizes

    @property
    def radius(self):
        return None

    def reset(self):
        pass

    def step(self, evaluate, trajectory, merit, riccati, resolve=None):
        """
        Search for an acceptable step size.

        Parameters
        ----------
        evaluate : callable
            `evaluate(policy)` rolls out a policy and returns the trajectory
            and its merit. Raises `IntegrationFailure` if the rollout fails.
        trajectory : `Trajectory`
            Current nominal trajectory.
        merit : float
            Merit of `trajectory`.
        riccati : `RiccatiSolution`
            Backward pass solution along `trajectory`.
        resolve : callable, optional
            Unused; accepted for interface compatibility with `TrustRegion`.

        Returns
        -------
        result : `StepResult`

        Raises
        ------
        IntegrationFailure
            If the rollouts of all candidates fail.
        """
        batch_size = self.pool.n_threads
        last_error = None
        n_failed = 0
        tried = StepResult(False, riccati=riccati)

        for start in range(0, self.step_sizes.shape[0], batch_size):
            batch = self.step_sizes[start:start + batch_size]
            outcomes = self.pool.map(
                lambda a: _evaluate_candidate(evaluate, riccati, trajectory, a),
                batch)

            for step_size, outcome in zip(batch, outcomes):
                if isinstance(outcome, IntegrationFailure):
                    n_failed += 1
                    last_error = outcome
                    continue

                policy, new_trajectory, new_merit = outcome
                expected = riccati.expected_decrease(step_size)
                tried = StepResult(False, float(step_size), policy,
                                   new_trajectory, new_merit, expected,
                                   riccati)

                sufficient = (new_merit <= merit
                              - self.settings.armijo_coefficient * expected)
                if sufficient and new_merit < merit:
                    tried.accepted = True
                    return tried

        if n_failed == self.step_sizes.shape[0]:
            raise last_error

        return tried


class TrustRegion:
    """
    Trust region on the L2 norm (in time) of the feedforward correction. If
    the undamped step exceeds the radius, the backward pass is re-solved with
    increasing damping of the Hessians until the step fits. The step is
    accepted if the ratio of actual to expected merit decrease exceeds
    `acceptance_ratio` and the merit does not increase, and the radius is
    adapted from the same ratio.

    Parameters
    ----------
    settings : `TrustRegionSettings`
        Trust region parameters.
    pool : `ThreadPool`
        Worker pool; unused directly since only one candidate is evaluated per
        attempt.
    """
    name = TrustRegionSettings.name

    def __init__(self, settings, pool):
        self.settings = settings
        self.pool = pool
        self.radius = settings.initial_radius

    def reset(self):
        """Reset the radius to `initial_radius`."""
        self.radius = self.settings.initial_radius

    def _shrink(self):
        self.radius = max(self.settings.min_radius,
                          self.radius * self.settings.shrink_factor)

    def _fit_to_radius(self, riccati, resolve):
        damping = self.settings.damping_init
        for _ in range(self.settings.max_num_damping_attempts):
            if riccati.step_norm <= self.radius:
                break
            riccati = resolve(damping)
            damping *= self.settings.damping_factor

        if riccati.step_norm > self.radius:
            return riccati, self.radius / riccati.step_norm
        return riccati, 1.

    def step(self, evaluate, trajectory, merit, riccati, resolve=None):
        """
        Take a trust region step.

        Parameters
        ----------
        evaluate : callable
            `evaluate(policy)` rolls out a policy and returns the trajectory
            and its merit. Raises `IntegrationFailure` if the rollout fails.
        trajectory : `Trajectory`
            Current nominal trajectory.
        merit : float
            Merit of `trajectory`.
        riccati : `RiccatiSolution`
            Undamped backward pass solution along `trajectory`.
        resolve : callable
            `resolve(damping)` re-solves the backward pass with additional
            Hessian regularization `damping` and returns a `RiccatiSolution`.

        Returns
        -------
        result : `StepResult`

        Raises
        ------
        IntegrationFailure
            If the rollout fails, and fails again after shrinking the radius.
        """
        if resolve is None:
            raise ValueError("TrustRegion requires a resolve function")

        for attempt in range(2):
            damped, step_size = self._fit_to_radius(riccati, resolve)
            outcome = _evaluate_candidate(evaluate, damped, trajectory,
                                          step_size)
            if not isinstance(outcome, IntegrationFailure):
                break
            self._shrink()
            if attempt == 1:
                raise outcome

        policy, new_trajectory, new_merit = outcome
        expected = damped.expected_decrease(step_size)
        actual = merit - new_merit

        if expected > 0.:
            ratio = actual / expected
        else:
            ratio = np.inf if actual >= 0. else - np.inf

        accepted = ratio > self.settings.acceptance_ratio and actual >= 0.

        if not accepted or ratio < self.settings.shrink_ratio:
            self._shrink()
        elif ratio > self.settings.expand_ratio:
            self.radius = min(self.settings.max_radius,
                              self.radius * self.settings.expand_factor)

        return StepResult(accepted, float(step_size), policy, new_trajectory,
                          new_merit, expected, damped, self.radius)


def make_strategy(settings, pool):
    """
    Construct the globalization strategy selected by `settings.strategy`.

    Parameters
    ----------
    settings : `DDPSettings`
        Solver settings.
    pool : `ThreadPool`
        Worker pool owned by the solver.

    Returns
    -------
    strategy : `LineSearch` or `TrustRegion`
    """
    if isinstance(settings.strategy, TrustRegionSettings):
        return TrustRegion(settings.strategy, pool)
    return LineSearch(settings.strategy, pool)
