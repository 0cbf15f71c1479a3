import numpy as np
import pytest

from ddpcontrol.ddp.globalization import LineSearch, TrustRegion, make_strategy
from ddpcontrol.exceptions import IntegrationFailure
from ddpcontrol.parallel import ThreadPool
from ddpcontrol.settings import (DDPSettings, LineSearchSettings,
                                 TrustRegionSettings)


class _Direction:
    """Minimal stand-in for a `RiccatiSolution`. The 'policy' of a step is
    just its step size, so `evaluate` can look up a prescribed merit."""
    def __init__(self, lv_norm=1., step_norm=0.5):
        self.lv_norm = lv_norm
        self.step_norm = step_norm

    def expected_decrease(self, step_size):
        return (step_size - 0.5 * step_size ** 2) * self.lv_norm

    def policy(self, trajectory, step_size):
        return step_size


def _make_evaluate(merits, failures=()):
    calls = []

    def evaluate(step_size):
        calls.append(step_size)
        if step_size in failures:
            raise IntegrationFailure("rollout failed", t=0.)
        return f'trajectory-{step_size}', merits(step_size)

    evaluate.calls = calls
    return evaluate


@pytest.mark.parametrize('n_threads', [1, 3])
def test_line_search_first_acceptable(n_threads):
    """The first candidate in the sequence satisfying the Armijo test is
    accepted, regardless of the number of threads."""
    merits = {1.: 2., 0.5: 0.9, 0.25: 0.5, 0.125: 0.7, 0.0625: 0.8}
    evaluate = _make_evaluate(merits.get)

    with ThreadPool(n_threads) as pool:
        search = LineSearch(LineSearchSettings(), pool)
        result = search.step(evaluate, None, 1., _Direction())

    assert result.accepted
    assert result.step_size == 0.5
    assert result.merit == 0.9
    assert result.policy == 0.5
    assert result.trajectory == 'trajectory-0.5'
    assert result.expected_decrease == 0.375
    assert result.radius is None
    assert search.radius is None


def test_line_search_sufficient_decrease():
    """Steps with a decrease smaller than required by the Armijo test are
    rejected."""
    settings = LineSearchSettings(armijo_coefficient=0.5)
    # Expected decreases are 0.5, 0.375, 0.21875, ...
    merits = {1.: 0.9, 0.5: 0.7, 0.25: 0.8, 0.125: 0.99, 0.0625: 0.99}

    with ThreadPool(1) as pool:
        result = LineSearch(settings, pool).step(
            _make_evaluate(merits.get), None, 1., _Direction())

    assert result.accepted
    assert result.step_size == 0.5


@pytest.mark.parametrize('n_threads', [1, 2])
def test_line_search_all_rejected(n_threads):
    evaluate = _make_evaluate(lambda a: 1.5)

    with ThreadPool(n_threads) as pool:
        result = LineSearch(LineSearchSettings(), pool).step(
            evaluate, None, 1., _Direction())

    assert not result.accepted
    assert result.step_size == 0.0625
    assert sorted(evaluate.calls, reverse=True) == [1., 0.5, 0.25, 0.125,
                                                    0.0625]


@pytest.mark.parametrize('n_threads', [1, 3])
def test_line_search_failures(n_threads):
    settings = LineSearchSettings()

    with ThreadPool(n_threads) as pool:
        search = LineSearch(settings, pool)

        # Failed rollouts are skipped
        evaluate = _make_evaluate(lambda a: 1. - a / 4., failures=(1.,))
        result = search.step(evaluate, None, 1., _Direction())
        assert result.accepted
        assert result.step_size == 0.5

        # Only raise if every rollout fails
        evaluate = _make_evaluate(lambda a: 0., failures=settings.step_sizes)
        with pytest.raises(IntegrationFailure):
            search.step(evaluate, None, 1., _Direction())


def _resolve_factory(step_norm_fun):
    dampings = []

    def resolve(damping):
        dampings.append(damping)
        return _Direction(step_norm=step_norm_fun(damping))

    resolve.dampings = dampings
    return resolve


def test_trust_region_expand():
    settings = TrustRegionSettings()
    with ThreadPool(1) as pool:
        region = TrustRegion(settings, pool)
        resolve = _resolve_factory(lambda d: 0.)

        # Expected decrease is 0.5, actual decrease 0.5
        result = region.step(_make_evaluate(lambda a: 0.5), None, 1.,
                             _Direction(step_norm=0.5), resolve)

    assert result.accepted
    assert result.step_size == 1.
    assert result.radius == 2.
    assert region.radius == 2.
    assert not resolve.dampings


def test_trust_region_keep():
    settings = TrustRegionSettings()
    with ThreadPool(1) as pool:
        region = TrustRegion(settings, pool)
        result = region.step(_make_evaluate(lambda a: 0.75), None, 1.,
                             _Direction(step_norm=0.5),
                             _resolve_factory(lambda d: 0.))

    # ratio = 0.5
    assert result.accepted
    assert region.radius == settings.initial_radius


def test_trust_region_shrink():
    settings = TrustRegionSettings()
    with ThreadPool(1) as pool:
        region = TrustRegion(settings, pool)
        result = region.step(_make_evaluate(lambda a: 1.1), None, 1.,
                             _Direction(step_norm=0.5),
                             _resolve_factory(lambda d: 0.))

    assert not result.accepted
    assert region.radius == settings.initial_radius * settings.shrink_factor

    region.reset()
    assert region.radius == settings.initial_radius


def test_trust_region_damping():
    """Steps larger than the radius are damped by re-solving the backward
    pass, and scaled down if damping is not enough."""
    settings = TrustRegionSettings(max_num_damping_attempts=3)

    with ThreadPool(1) as pool:
        region = TrustRegion(settings, pool)
        resolve = _resolve_factory(lambda d: 4. / (1. + 1e03 * d))
        result = region.step(_make_evaluate(lambda a: 0.5), None, 1.,
                             _Direction(step_norm=4.), resolve)
    # 4 / (1 + 1) = 2 > 1, then 4 / (1 + 10) < 1
    np.testing.assert_allclose(resolve.dampings, [1e-03, 1e-02])
    assert result.step_size == 1.
    assert result.riccati.step_norm < settings.initial_radius

    with ThreadPool(1) as pool:
        region = TrustRegion(settings, pool)
        resolve = _resolve_factory(lambda d: 4.)
        result = region.step(_make_evaluate(lambda a: 0.9), None, 1.,
                             _Direction(step_norm=4.), resolve)
    assert len(resolve.dampings) == settings.max_num_damping_attempts
    assert result.step_size == settings.initial_radius / 4.


def test_trust_region_failures():
    settings = TrustRegionSettings()

    with ThreadPool(1) as pool:
        region = TrustRegion(settings, pool)
        with pytest.raises(ValueError, match='resolve'):
            region.step(_make_evaluate(lambda a: 0.), None, 1., _Direction())

        # Recovers after one failure with a smaller radius
        outcomes = iter([IntegrationFailure("rollout failed"), 0.9])

        def evaluate(policy):
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return 'trajectory', outcome

        result = region.step(evaluate, None, 1., _Direction(step_norm=0.1),
                             _resolve_factory(lambda d: 0.))
        assert result.accepted
        assert result.trajectory == 'trajectory'

        region.reset()
        evaluate = _make_evaluate(lambda a: 0., failures=(1.,))
        with pytest.raises(IntegrationFailure):
            region.step(evaluate, None, 1., _Direction(step_norm=0.1),
                        _resolve_factory(lambda d: 0.))
        assert len(evaluate.calls) == 2
        assert region.radius == settings.initial_radius * (
            settings.shrink_factor ** 2)


def test_make_strategy():
    with ThreadPool(1) as pool:
        strategy = make_strategy(DDPSettings(), pool)
        assert isinstance(strategy, LineSearch)
        assert strategy.name == 'line_search'

        strategy = make_strategy(DDPSettings(strategy='trust_region'), pool)
        assert isinstance(strategy, TrustRegion)
        assert strategy.radius == TrustRegionSettings().initial_radius
