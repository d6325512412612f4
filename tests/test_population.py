import math

import pytest

from loreweave.population import (
    Metric, PopulationTracker, DynamicWeightCalculator, deviation,
)

from conftest import add


class FakeTemplate:
    def __init__(self, produces=(('npc', 'merchant'),), id='merchant_arrival'):
        self.id = id
        self.produces = produces


def metrics_for(count, target, key='npc:merchant'):
    return {key: Metric(key=key, count=count, target=target,
                        deviation=deviation(count, target))}


@pytest.fixture
def calc():
    return DynamicWeightCalculator()


# ── Deviation ──

def test_deviation():
    assert deviation(100, 50) == 1.0
    assert deviation(1, 50) == pytest.approx(-0.98)
    assert deviation(5, 0) == 0.0


# ── Scenarios ──

def test_max_suppression_at_double_target(calc):
    adj = calc.calculate_weight(FakeTemplate(), 1.0, metrics_for(100, 50))
    assert adj.adjusted_weight == pytest.approx(0.2)
    assert adj.adjustment_factor == pytest.approx(0.2)
    assert adj.reason == 'npc:merchant 100% over target (100/50)'


def test_capped_boost_when_starved(calc):
    adj = calc.calculate_weight(FakeTemplate(), 1.0, metrics_for(1, 50))
    assert adj.adjusted_weight == pytest.approx(2.0)
    assert 'under target' in adj.reason


def test_deviation_exactly_at_threshold_is_not_adjusted(calc):
    adj = calc.calculate_weight(FakeTemplate(), 1.0, metrics_for(60, 50))
    assert adj.adjustment_factor == 1.0
    assert adj.adjusted_weight == 1.0
    assert adj.reason == 'No adjustment needed'
    low = calc.calculate_weight(FakeTemplate(), 1.0, metrics_for(40, 50))
    assert low.adjustment_factor == 1.0


def test_suppression_is_monotonic_in_count(calc):
    weights = [calc.calculate_weight(FakeTemplate(), 1.0, metrics_for(c, 50)).adjusted_weight
               for c in range(61, 140)]
    floor = 1.0 - calc.max_suppression
    for prev, cur in zip(weights, weights[1:]):
        assert cur <= prev
        if prev > floor + 1e-9:
            assert cur < prev
    assert weights[-1] == pytest.approx(floor)


def test_mild_boost_formula(calc):
    # d = -0.5: 1 / (1 - (0.5 - 0.2)) = 1 / 0.7
    adj = calc.calculate_weight(FakeTemplate(), 0.5, metrics_for(25, 50))
    assert adj.adjustment_factor == pytest.approx(1 / 0.7)
    assert adj.adjusted_weight == pytest.approx(0.5 / 0.7)


def test_factors_multiply_across_outputs(calc):
    t = FakeTemplate(produces=(('npc', 'merchant'), ('location', 'market')))
    metrics = dict(metrics_for(100, 50))
    metrics.update(metrics_for(35, 50, key='location:market'))   # d = -0.3 -> 1/0.9
    adj = calc.calculate_weight(t, 1.0, metrics)
    assert adj.adjustment_factor == pytest.approx(0.2 / 0.9)
    assert '; ' in adj.reason


def test_disabled_template(calc):
    adj = calc.calculate_weight(FakeTemplate(), 0, metrics_for(1, 50))
    assert (adj.adjusted_weight, adj.adjustment_factor) == (0.0, 0.0)
    assert adj.reason == 'Template disabled by era'


def test_template_without_tracked_output(calc):
    adj = calc.calculate_weight(FakeTemplate(produces=()), 0.7, metrics_for(100, 50))
    assert adj.adjusted_weight == 0.7
    assert adj.adjustment_factor == 1.0
    assert adj.reason == 'No tracked entity output'


def test_zero_target_and_nan_are_skipped(calc):
    zero = calc.calculate_weight(FakeTemplate(), 1.0, metrics_for(10, 0))
    assert zero.adjustment_factor == 1.0
    nan = {'npc:merchant': Metric('npc:merchant', 10, 50, float('nan'))}
    adj = calc.calculate_weight(FakeTemplate(), 1.0, nan)
    assert adj.adjustment_factor == 1.0
    assert not math.isnan(adj.adjusted_weight)


def test_configure_and_bulk_helpers(calc):
    calc.configure(threshold=0.5, max_boost=3.0)
    assert calc.factor_for(0.4) == 1.0
    templates = [FakeTemplate(id='a'), FakeTemplate(id='b', produces=(('npc', 'mystic'),))]
    metrics = dict(metrics_for(100, 50))
    metrics.update(metrics_for(1, 50, key='npc:mystic'))
    adjustments = calc.calculate_all_weights(templates, {'a': 1.0}, metrics)
    assert [a.template_id for a in calc.get_suppressed_templates(adjustments)] == ['a']
    boosted = calc.get_boosted_templates(adjustments)
    assert [a.template_id for a in boosted] == ['b']
    assert boosted[0].adjustment_factor == pytest.approx(1 / (1 - 0.48))


# ── Tracker ──

def test_tracker_preseeds_targets_as_fully_under():
    tracker = PopulationTracker({'npc:merchant': 10, 'npc:ghost': 0})
    assert tracker.entities['npc:merchant'].deviation == -1.0
    assert tracker.entities['npc:ghost'].deviation == 0.0


def test_tracker_update_counts_live_entities(graph):
    tracker = PopulationTracker({'npc:merchant': 2})
    a = add(graph, 'npc', 'merchant')
    add(graph, 'npc', 'merchant')
    dead = add(graph, 'npc', 'merchant')
    graph.update_entity(dead.id, status='dead')
    graph.add_relationship('friend_of', a.id, dead.id)
    graph.set_pressure('conflict', 60)
    tracker.update(graph)
    m = tracker.entities['npc:merchant']
    assert (m.count, m.deviation) == (2, 0.0)
    assert tracker.relationships['friend_of'].count == 1
    assert tracker.pressures['conflict'].target == 40
    assert tracker.pressures['conflict'].deviation == pytest.approx(0.5)


def test_metric_trend():
    m = Metric('k', target=10)
    for c in (2, 4, 8):
        m.observe(c)
    assert m.trend == pytest.approx(3.0)
    assert list(m.history) == [2, 4, 8]


def test_outliers_and_summary(graph):
    tracker = PopulationTracker({'npc:merchant': 2, 'npc:mystic': 10, 'npc:warrior': 3})
    for _ in range(4):
        add(graph, 'npc', 'merchant')
    add(graph, 'npc', 'mystic')
    for _ in range(3):
        add(graph, 'npc', 'warrior')
    tracker.update(graph)
    out = tracker.get_outliers()
    assert [m.key for m in out['overpopulated']] == ['npc:merchant']
    assert [m.key for m in out['underpopulated']] == ['npc:mystic']
    summary = tracker.get_summary()
    assert summary['total_entities'] == 8 + 3     # era entities are counted too
    assert summary['max_deviation'] == pytest.approx(1.0)
    assert summary['avg_deviation'] == pytest.approx((1.0 + 0.9 + 0.0) / 3)
    snap = tracker.snapshot()
    assert snap['entities']['npc:mystic']['count'] == 1
