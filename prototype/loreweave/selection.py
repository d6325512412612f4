"""Seeded random selection and hub-aware target scoring."""
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

import numpy as np

from .config import (
    CONNECTION_WEIGHT_STEPS, HUB_CONNECTION_WEIGHT, PREFERENCE_BOOST,
    HUB_PENALTY_STRENGTH, GENERAL_HUB_LINKS, SATURATION_THRESHOLD,
)

logger = logging.getLogger(__name__)


# ── Random helpers (rng is always explicit) ──

def pick_random(items, rng):
    if not items:
        return None
    return items[rng.randint(len(items))]


def pick_multiple(items, n, rng):
    """n distinct elements, shuffled."""
    items = list(items)
    order = rng.permutation(len(items))
    return [items[i] for i in order[:max(0, n)]]


def weighted_random(items, weights, rng):
    """Roulette-wheel pick. Empty or mismatched inputs give None; a zero total
    weight falls through to the last item."""
    if not items or len(items) != len(weights):
        return None
    w = np.clip(np.asarray(weights, dtype=float), 0.0, None)
    total = w.sum()
    if not total > 0:
        logger.debug('zero total weight over %d items, taking the last', len(items))
        return items[-1]
    r = rng.random_sample() * total
    for item, wi in zip(items, w):
        r -= wi
        if r <= 0:
            return item
    return items[-1]


def roll_probability(p, era_modifier, rng):
    """Odds-scaled roll: p' = o^m / (1 + o^m), o = p / (1 - p)."""
    if p <= 0:
        return False
    if p >= 1:
        return True
    odds = (p / (1 - p)) ** era_modifier
    return rng.random_sample() < odds / (1 + odds)


def connection_weight(entity):
    """Selection multiplier: isolated 3.0, sparse 2.0, average 1.0, busy 0.5, hub 0.2."""
    n = len(entity.links)
    for bound, weight in CONNECTION_WEIGHT_STEPS:
        if n <= bound:
            return weight
    return HUB_CONNECTION_WEIGHT


# ── Target selector ──

@dataclass
class SelectionBias:
    prefer_subtypes: List[str] = field(default_factory=list)
    prefer_tags: List[str] = field(default_factory=list)
    prefer_prominence: List[str] = field(default_factory=list)
    prefer_same_location_as: Optional[str] = None
    preference_boost: float = PREFERENCE_BOOST
    avoid_relationship_kinds: List[str] = field(default_factory=list)
    avoid_hubs: bool = False
    hub_penalty_strength: float = HUB_PENALTY_STRENGTH
    status: Optional[str] = None                  # only candidates with this status
    max_total_relationships: Optional[int] = None
    exclude_related_to: Optional[Tuple[str, Optional[str]]] = None   # (entity id, kind)
    tracking_id: Optional[str] = None
    diversity_strength: float = 1.0
    create_factory: Optional[Callable] = None     # factory(view, context) -> draft entity
    saturation_threshold: float = SATURATION_THRESHOLD
    max_created: Optional[int] = None


@dataclass
class SelectionResult:
    existing: list
    created: list
    diagnostics: dict


class TargetSelector:
    """Scores candidates so that growth spreads instead of piling onto hubs."""

    def __init__(self):
        self.selection_counts = {}    # tracking id → entity id → count

    def reset(self, tracking_id=None):
        if tracking_id is None:
            self.selection_counts.clear()
        else:
            self.selection_counts.pop(tracking_id, None)

    def _location_of(self, graph, entity):
        for r in entity.links:
            if r.kind == 'resident_of' and r.src == entity.id:
                return r.dst
        return None

    def score(self, graph, entity, bias):
        s = 1.0
        boost = bias.preference_boost
        if entity.subtype in bias.prefer_subtypes:
            s *= boost
        if any(t in entity.tags for t in bias.prefer_tags):
            s *= boost
        if entity.prominence in bias.prefer_prominence:
            s *= boost
        if bias.prefer_same_location_as is not None:
            ref = graph.get_entity(bias.prefer_same_location_as)
            if ref is not None:
                loc = self._location_of(graph, ref)
                if loc is not None and loc == self._location_of(graph, entity):
                    s *= boost

        if bias.avoid_relationship_kinds or bias.avoid_hubs:
            n_penalized = sum(1 for r in entity.links if r.kind in bias.avoid_relationship_kinds)
            if n_penalized > 0:
                s *= 1.0 / (1.0 + n_penalized ** bias.hub_penalty_strength)
            n_links = len(entity.links)
            if n_links > GENERAL_HUB_LINKS:
                s *= 1.0 / (1.0 + math.sqrt(n_links - GENERAL_HUB_LINKS))

        if bias.tracking_id is not None:
            n_sel = self.selection_counts.get(bias.tracking_id, {}).get(entity.id, 0)
            if n_sel > 0:
                s *= 1.0 / (1.0 + n_sel ** bias.diversity_strength)
        return max(0.0, s)

    def _filter(self, graph, scored, bias):
        if bias.max_total_relationships is not None:
            scored = [(e, s) for e, s in scored if len(e.links) < bias.max_total_relationships]
        if bias.exclude_related_to is not None:
            other, kind = bias.exclude_related_to
            scored = [(e, s) for e, s in scored if not graph.has_relationship(e.id, other, kind)]
        return scored

    def _diagnostics(self, n_candidates, scores, created):
        return {
            'candidates_evaluated': n_candidates,
            'best_score': max(scores, default=0.0),
            'worst_score': min(scores, default=0.0),
            'avg_score': float(np.mean(scores)) if scores else 0.0,
            'creation_triggered': created,
        }

    def select_targets(self, view, kind, count, bias=None):
        """Top-`count` candidates of `kind` by score. When every candidate scores
        below the saturation threshold and a factory is given, drafts new entities
        instead (returned in `created`, not committed)."""
        bias = bias or SelectionBias()
        graph = view.graph
        candidates = graph.find_entities(kind=kind, status=bias.status)
        scored = [(e, self.score(graph, e, bias)) for e in candidates]
        scored = self._filter(graph, scored, bias)
        scored.sort(key=lambda es: es[1], reverse=True)
        scores = [s for _, s in scored]

        best = scores[0] if scores else 0.0
        if best < bias.saturation_threshold and bias.create_factory is not None:
            max_created = bias.max_created if bias.max_created is not None \
                else math.ceil(count / 2)
            n_create = count if not scored else min(count, max_created)
            context = {'requested_count': count, 'best_score': best, 'candidates': scored}
            created = [bias.create_factory(view, context) for _ in range(n_create)]
            existing = [e for e, _ in scored[:count - n_create]]
            return SelectionResult(existing, created,
                                   self._diagnostics(len(candidates), scores, True))

        selected = [e for e, _ in scored[:count]]
        if bias.tracking_id is not None:
            counts = self.selection_counts.setdefault(bias.tracking_id, {})
            for e in selected:
                counts[e.id] = counts.get(e.id, 0) + 1
        return SelectionResult(selected, [], self._diagnostics(len(candidates), scores, False))
