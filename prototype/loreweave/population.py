"""Homeostatic control: population metrics and feedback weights for templates."""
import logging
from collections import deque
from dataclasses import dataclass, field

import numpy as np

from .config import (
    STATUS_HISTORICAL, DEVIATION_THRESHOLD, MAX_SUPPRESSION, MAX_BOOST,
    METRIC_HISTORY_WINDOW, OUTLIER_THRESHOLD, PRESSURE_TARGETS, DEFAULT_PRESSURE_TARGET,
)

logger = logging.getLogger(__name__)


def deviation(count, target):
    """(count - target) / target; 0 when there is no positive target."""
    if not target > 0:
        return 0.0
    return (count - target) / target


@dataclass
class Metric:
    key: str
    count: float = 0
    target: float = 0
    deviation: float = 0.0
    trend: float = 0.0        # mean consecutive delta over the window
    history: deque = field(default_factory=lambda: deque(maxlen=METRIC_HISTORY_WINDOW))

    def observe(self, count):
        self.count = count
        self.deviation = deviation(count, self.target)
        self.history.append(count)
        if len(self.history) >= 2:
            self.trend = float(np.mean(np.diff(np.asarray(self.history, dtype=float))))
        else:
            self.trend = 0.0

    def to_dict(self):
        return {'key': self.key, 'count': self.count, 'target': self.target,
                'deviation': self.deviation, 'trend': self.trend}


class PopulationTracker:
    """Entity, relationship and pressure metrics, refreshed once per tick."""

    def __init__(self, distribution_targets=None, relationship_targets=None,
                 pressure_targets=None, window=METRIC_HISTORY_WINDOW):
        self.window = window
        self.distribution_targets = dict(distribution_targets or {})
        self.relationship_targets = dict(relationship_targets or {})
        self.pressure_targets = dict(PRESSURE_TARGETS if pressure_targets is None
                                     else pressure_targets)
        self.entities = {}
        self.relationships = {}
        self.pressures = {}
        for key, target in self.distribution_targets.items():
            m = self._metric(self.entities, key, target)
            m.deviation = -1.0 if target > 0 else 0.0

    def _metric(self, table, key, target):
        m = table.get(key)
        if m is None:
            m = Metric(key=key, target=target,
                       history=deque(maxlen=self.window))
            table[key] = m
        return m

    def update(self, graph):
        counts = {}
        for e in graph.entities.values():
            if e.status == STATUS_HISTORICAL or graph.is_terminal(e):
                continue
            key = f'{e.kind}:{e.subtype}'
            counts[key] = counts.get(key, 0) + 1
        for key in sorted(set(counts) | set(self.entities)):
            m = self._metric(self.entities, key, self.distribution_targets.get(key, 0))
            m.observe(counts.get(key, 0))

        rel_counts = {}
        for r in graph.find_relationships():
            rel_counts[r.kind] = rel_counts.get(r.kind, 0) + 1
        for kind in sorted(set(rel_counts) | set(self.relationships)):
            m = self._metric(self.relationships, kind, self.relationship_targets.get(kind, 0))
            m.observe(rel_counts.get(kind, 0))

        for name, value in graph.pressures.items():
            m = self._metric(self.pressures, name,
                             self.pressure_targets.get(name, DEFAULT_PRESSURE_TARGET))
            m.observe(value)

    def get_outliers(self, threshold=OUTLIER_THRESHOLD):
        over = [m for m in self.entities.values() if m.target > 0 and m.deviation > threshold]
        under = [m for m in self.entities.values() if m.target > 0 and m.deviation < -threshold]
        over.sort(key=lambda m: m.deviation, reverse=True)
        under.sort(key=lambda m: m.deviation)
        return {'overpopulated': over, 'underpopulated': under}

    def get_summary(self):
        tracked = [abs(m.deviation) for m in self.entities.values() if m.target > 0]
        return {
            'total_entities': int(sum(m.count for m in self.entities.values())),
            'total_relationships': int(sum(m.count for m in self.relationships.values())),
            'entity_kinds': len(self.entities),
            'avg_deviation': float(np.mean(tracked)) if tracked else 0.0,
            'max_deviation': float(np.max(tracked)) if tracked else 0.0,
            'pressure_deviations': {k: m.deviation for k, m in self.pressures.items()},
        }

    def snapshot(self):
        return {
            'entities': {k: m.to_dict() for k, m in self.entities.items()},
            'relationships': {k: m.to_dict() for k, m in self.relationships.items()},
            'pressures': {k: m.to_dict() for k, m in self.pressures.items()},
        }


# ── Dynamic weights ──

@dataclass
class WeightAdjustment:
    template_id: str
    base_weight: float
    adjusted_weight: float
    adjustment_factor: float
    reason: str


class DynamicWeightCalculator:
    """Suppresses templates whose outputs are overpopulated, boosts the starved ones.

    Per produced kind with deviation d and threshold t:
      d >  t  ->  factor 1 - min(d - t, max_suppression)
      d < -t  ->  factor min(1 / (1 - min(|d| - t, max_suppression)), max_boost)
    Factors multiply across outputs; the product is clamped to [0, max_boost]."""

    def __init__(self, threshold=DEVIATION_THRESHOLD, max_suppression=MAX_SUPPRESSION,
                 max_boost=MAX_BOOST):
        self.threshold = threshold
        self.max_suppression = max_suppression
        self.max_boost = max_boost

    def configure(self, threshold=None, max_suppression=None, max_boost=None):
        if threshold is not None:
            self.threshold = threshold
        if max_suppression is not None:
            self.max_suppression = max_suppression
        if max_boost is not None:
            self.max_boost = max_boost

    def factor_for(self, d):
        if d > self.threshold:
            return 1.0 - min(d - self.threshold, self.max_suppression)
        if d < -self.threshold:
            return min(1.0 / (1.0 - min(-d - self.threshold, self.max_suppression)),
                       self.max_boost)
        return 1.0

    def calculate_weight(self, template, base_weight, metrics):
        """`metrics` maps 'kind:subtype' to Metric (PopulationTracker.entities)."""
        tid = template.id
        if base_weight == 0:
            return WeightAdjustment(tid, 0.0, 0.0, 0.0, 'Template disabled by era')
        produces = getattr(template, 'produces', ()) or ()
        if not produces:
            return WeightAdjustment(tid, base_weight, base_weight, 1.0, 'No tracked entity output')

        factor = 1.0
        reasons = []
        for kind, subtype in produces:
            key = f'{kind}:{subtype}'
            m = metrics.get(key)
            if m is None or not m.target > 0 or np.isnan(m.deviation):
                continue
            f = self.factor_for(m.deviation)
            if f == 1.0:
                continue
            side = 'over' if m.deviation > 0 else 'under'
            reasons.append(f'{key} {abs(m.deviation) * 100:.0f}% {side} target '
                           f'({m.count:g}/{m.target:g})')
            factor *= f

        factor = float(np.clip(factor, 0.0, self.max_boost))
        reason = '; '.join(reasons) if reasons else 'No adjustment needed'
        return WeightAdjustment(tid, base_weight, base_weight * factor, factor, reason)

    def calculate_all_weights(self, templates, base_weights, metrics):
        out = {}
        for t in templates:
            adj = self.calculate_weight(t, base_weights.get(t.id, 1.0), metrics)
            logger.debug('%s: %.3f -> %.3f (%s)', t.id, adj.base_weight,
                         adj.adjusted_weight, adj.reason)
            out[t.id] = adj
        return out

    def get_suppressed_templates(self, adjustments):
        return [a for a in adjustments.values()
                if a.base_weight > 0 and a.adjustment_factor < 1.0]

    def get_boosted_templates(self, adjustments):
        return [a for a in adjustments.values() if a.adjustment_factor > 1.0]
