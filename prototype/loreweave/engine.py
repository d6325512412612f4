"""WorldEngine: epoch loop of growth phase, simulation ticks and maintenance."""
import logging
import math

import numpy as np
from tqdm.auto import tqdm

from .config import (
    STATUS_ACTIVE, STATUS_CURRENT, GROWTH_VARIANCE, GROWTH_MIN_PER_EPOCH,
    GROWTH_MAX_PER_EPOCH, MAX_RUNS_PER_TEMPLATE, GROWTH_RATE_WARNING,
    PRESSURE_MIN_GROWTH_SCALE, PRESSURE_MAX_DELTA, FORGOTTEN_AGE, FORGOTTEN_MIN_LINKS,
    NPC_MORTALITY_AGE, NPC_MORTALITY_CHANCE,
)
from .changes import ChangeTracker
from .graph import build_world_graph
from .meta import MetaEntityFormation
from .population import PopulationTracker, DynamicWeightCalculator
from .selection import TargetSelector, pick_random, weighted_random
from .systems import link_prominent_entities
from .validation import ContractValidator, ConfigurationError
from .view import GraphView

logger = logging.getLogger(__name__)

GROWTH_ATTEMPT_FACTOR = 10        # attempts allowed per entity of growth target
GROWTH_RATE_MIN_SAMPLES = 10      # window entries before the growth-rate warning fires


def contract_allows(component, graph):
    """Enablement gates from a component's contract; no contract means always on."""
    contract = getattr(component, 'contract', None)
    if contract is None or contract.enabled_by is None:
        return True
    gates = contract.enabled_by
    for g in gates.pressures:
        level = graph.get_pressure(g.name)
        if (g.above and level < g.threshold) or (not g.above and level > g.threshold):
            return False
    for g in gates.entity_counts:
        n = sum(1 for e in graph.find_entities(kind=g.kind) if e.status == STATUS_ACTIVE)
        if n < g.min or (g.max is not None and n > g.max):
            return False
    if gates.eras and (graph.current_era is None or graph.current_era.id not in gates.eras):
        return False
    return True


class WorldEngine:
    """Grows a world graph from an EngineConfig.

    One epoch = growth phase, `simulation_ticks_per_growth` simulation ticks,
    pressure update, pruning, meta-entity formation."""

    def __init__(self, config, seed=42, seed_fragment=None, strict=False, progress=False):
        self.config = config
        self.seed = seed
        self.strict = strict
        self.progress = progress
        self.graph = build_world_graph(config, seed=seed, seed_fragment=seed_fragment)
        self.selector = TargetSelector()
        self.tracker = PopulationTracker(config.distribution_targets)
        self.weights = DynamicWeightCalculator()
        self.meta = MetaEntityFormation(config.meta_configs)
        self.changes = ChangeTracker()
        self.epoch = 0
        self.planned_epochs = len(config.eras) * 2
        self.template_runs = {}
        self.epoch_stats = []
        self.change_log = []
        self.metric_history = []
        self.validation = None
        scale = config.scale_factor
        self.growth_bounds = (math.ceil(GROWTH_MIN_PER_EPOCH * scale),
                              math.ceil(GROWTH_MAX_PER_EPOCH * scale))

    # ── Validation ──

    def validate(self):
        self.validation = ContractValidator(self.config).validate()
        for err in self.validation.errors:
            logger.warning('configuration error: %s', err)
        for warn in self.validation.warnings:
            logger.debug('configuration warning: %s', warn)
        if self.strict and not self.validation.valid:
            raise ConfigurationError(self.validation.errors)
        return self.validation

    # ── Growth phase ──

    def calculate_growth_target(self):
        """Entity deficit over configured kinds, spread across the epochs left."""
        kinds = self.config.entity_kinds
        per_kind = self.config.target_entities_per_kind
        counts = {}
        for e in self.graph.entities.values():
            counts[e.kind] = counts.get(e.kind, 0) + 1
        remaining = sum(max(0, per_kind - counts.get(k, 0)) for k in kinds)
        lo, hi = self.growth_bounds
        if remaining == 0:
            return lo
        epochs_left = max(1, self.planned_epochs - self.epoch)
        base = math.ceil(remaining / epochs_left)
        jitter = 1 - GROWTH_VARIANCE + self.graph.rng.random_sample() * GROWTH_VARIANCE * 2
        return int(np.clip(math.floor(base * jitter), lo, hi))

    def _applicable_templates(self, view):
        era = self.graph.current_era
        out = []
        for t in self.config.templates:
            if era is not None and era.template_weight(t.id) == 0:
                continue
            if self.template_runs.get(t.id, 0) >= MAX_RUNS_PER_TEMPLATE:
                continue
            if not contract_allows(t, self.graph):
                continue
            try:
                if not t.can_apply(view):
                    continue
            except Exception:
                logger.exception('template %s failed in can_apply', t.id)
                continue
            out.append(t)
        return out

    def template_weights(self, templates):
        """Era weight x homeostatic factor x diversity penalty 1/(1+runs^2)."""
        era = self.graph.current_era
        base = {t.id: era.template_weight(t.id) if era is not None else 1.0 for t in templates}
        adjustments = self.weights.calculate_all_weights(templates, base, self.tracker.entities)
        weights = []
        for t in templates:
            runs = self.template_runs.get(t.id, 0)
            weights.append(max(0.0, adjustments[t.id].adjusted_weight / (1 + runs * runs)))
        return weights

    def sample_template(self, templates):
        if not templates:
            return None
        weights = self.template_weights(templates)
        if not sum(weights) > 0:
            return pick_random(templates, self.graph.rng)
        return weighted_random(templates, weights, self.graph.rng)

    def run_growth_phase(self, target=None):
        """Apply templates until `target` entities exist or attempts run out.
        Returns the number of entities created."""
        G = self.graph
        target = self.calculate_growth_target() if target is None else target
        self.template_runs = {}
        self.tracker.update(G)
        max_attempts = math.ceil(target * GROWTH_ATTEMPT_FACTOR * self.config.scale_factor)
        created = attempts = 0

        G.open_budget(self.config.max_relationships_per_growth_phase)
        try:
            while created < target and attempts < max_attempts:
                attempts += 1
                view = GraphView(G, self.selector)
                template = self.sample_template(self._applicable_templates(view))
                if template is None:
                    logger.debug('no applicable templates (%d/%d created)', created, target)
                    break
                try:
                    targets = template.find_targets(view)
                    if not targets:
                        continue
                    result = template.expand(view, pick_random(targets, G.rng))
                    if result.is_empty:
                        logger.debug('%s: %s', template.id, result.description)
                        continue
                    new_ids, rels = G.commit(result)
                    rels += self.enforce_lineage(new_ids)
                except Exception:
                    logger.exception('template %s failed', template.id)
                    continue
                for rel in rels:
                    G.record_relationship_formation(rel.src, rel.kind)
                self.template_runs[template.id] = self.template_runs.get(template.id, 0) + 1
                created += len(new_ids)
                G.record('growth', result.description, entities_created=new_ids,
                         relationships_created=rels)
                logger.debug('tick %d %s: +%d entities, +%d relationships',
                             G.tick, template.id, len(new_ids), len(rels))
        finally:
            G.close_budget()
        return created

    def enforce_lineage(self, entity_ids):
        """Link each new entity to the ancestor its registry's lineage finds,
        at a distance sampled from the lineage range."""
        G = self.graph
        lineages = {}
        for reg in self.config.entity_registries:
            if reg.lineage is not None:
                lineages.setdefault(reg.kind, reg.lineage)
        made = []
        for eid in entity_ids:
            entity = G.get_entity(eid)
            lineage = lineages.get(entity.kind) if entity is not None else None
            if lineage is None:
                continue
            if any(r.kind == lineage.relationship_kind and r.src == eid for r in entity.links):
                continue
            ancestor = lineage.find_ancestor(entity, G)
            if ancestor is None or ancestor.id == eid:
                continue
            lo, hi = lineage.distance_range
            rel = G.add_relationship(lineage.relationship_kind, eid, ancestor.id,
                                     distance=float(G.rng.uniform(lo, hi)))
            if rel is not None:
                made.append(rel)
        return made

    # ── Simulation phase ──

    def step(self):
        """One simulation tick: every system once, then the tick advances."""
        G = self.graph
        self.tracker.update(G)
        n_added, modified, added = 0, [], []
        G.open_budget(self.config.max_relationships_per_tick)
        try:
            for system in self.config.systems:
                era = G.current_era
                modifier = era.system_modifier(system.id) if era is not None else 1.0
                if modifier == 0:
                    continue
                try:
                    result = system.apply(G, modifier)
                except Exception:
                    logger.exception('system %s failed', system.id)
                    continue
                for mod in result.entities_modified:
                    G.update_entity(mod['id'], **mod['changes'])
                    modified.append(mod['id'])
                for name, delta in result.pressure_changes.items():
                    G.change_pressure(name, delta)
                added += result.relationships_added
                n_added += len(result.relationships_added)
        finally:
            G.close_budget()

        if added or modified:
            G.record('simulation', f'Systems: +{n_added} relationships, {len(modified)} modifications',
                     relationships_created=added, entities_modified=modified)
        self.monitor_growth_rate(n_added)
        G.tick += 1

    def monitor_growth_rate(self, n_added):
        rate = self.graph.record_growth_rate(n_added)
        if rate > GROWTH_RATE_WARNING and len(self.graph.growth_rate_window) >= GROWTH_RATE_MIN_SAMPLES:
            logger.warning('high relationship growth rate: %.1f/tick (%d relationships)',
                           rate, len(self.graph.find_relationships()))
        return rate

    # ── Epoch maintenance ──

    def update_pressures(self):
        """growth scaled by max(0.1, 1 - (v/100)^2), minus decay, times the era
        modifier, clamped to +-PRESSURE_MAX_DELTA per update."""
        G = self.graph
        era = G.current_era
        for p in self.config.pressures:
            current = G.pressures.get(p.id, p.value)
            growth = p.growth(G) if p.growth is not None else 0.0
            if growth > 0:
                growth *= max(PRESSURE_MIN_GROWTH_SCALE, 1 - (current / 100) ** 2)
            mod = era.pressure_modifier(p.id) if era is not None else 1.0
            delta = float(np.clip((growth - p.decay) * mod, -PRESSURE_MAX_DELTA, PRESSURE_MAX_DELTA))
            G.set_pressure(p.id, current + delta)

    def prune_and_consolidate(self):
        """Old, poorly connected entities fade to forgotten; old npcs may die."""
        G = self.graph
        faded = died = 0
        for e in list(G.entities.values()):
            if e.kind == 'era' or e.prominence == 'forgotten':
                continue
            if G.tick - e.created_at > FORGOTTEN_AGE and len(e.links) < FORGOTTEN_MIN_LINKS:
                G.update_entity(e.id, prominence='forgotten')
                faded += 1
        for npc in G.find_entities(kind='npc', status=STATUS_ACTIVE):
            if G.tick - npc.created_at > NPC_MORTALITY_AGE \
                    and G.rng.random_sample() < NPC_MORTALITY_CHANCE:
                G.update_entity(npc.id, status='dead')
                died += 1
        return faded, died

    def run_epoch(self):
        G = self.graph
        era = G.current_era
        n_entities, n_rels = len(G.entities), len(G.relationships)
        self.changes.capture(G)

        target = self.calculate_growth_target()
        grown = self.run_growth_phase(target)
        for _ in range(self.config.simulation_ticks_per_growth):
            self.step()

        self.update_pressures()
        faded, died = self.prune_and_consolidate()
        formed = self.meta.run(G)
        self.tracker.update(G)

        for eid, changes in self.changes.diff(G).items():
            self.change_log.append({'epoch': self.epoch, 'tick': G.tick,
                                    'entity': eid, 'changes': changes})
        self.changes.reset()

        summary = self.tracker.get_summary()
        stats = {
            'epoch': self.epoch,
            'tick': G.tick,
            'era': era.id if era is not None else None,
            'growth_target': target,
            'entities_grown': grown,
            'entities': len(G.entities),
            'entities_created': len(G.entities) - n_entities,
            'relationships': len(G.find_relationships()),
            'relationships_created': len(G.relationships) - n_rels,
            'forgotten': faded,
            'deaths': died,
            'meta_entities': len(formed),
            'avg_deviation': summary['avg_deviation'],
            'pressures': dict(G.pressures),
        }
        self.epoch_stats.append(stats)
        self.metric_history.append(self.tracker.snapshot())
        logger.info('epoch %d (%s): %d entities, %d relationships, target %d, grown %d',
                    self.epoch, stats['era'], stats['entities'], stats['relationships'],
                    target, grown)
        self.epoch += 1
        return stats

    # ── Run ──

    def should_continue(self, n_epochs):
        return self.epoch < n_epochs and self.graph.tick < self.config.max_ticks

    def link_final_era(self):
        """The last era never ends, so link its prominent entities at shutdown."""
        current = [e for e in self.graph.era_entities(STATUS_CURRENT)]
        if not current:
            return []
        era = current[0]
        start = (era.temporal or {}).get('start_tick', era.created_at)
        links = link_prominent_entities(self.graph, era, start, fallback=True)
        if links:
            logger.info('linked final era %s to %d entities', era.name, len(links))
        return links

    def run(self, n_epochs=None):
        self.validate()
        if n_epochs is not None:
            self.planned_epochs = n_epochs
        n_epochs = self.planned_epochs
        logger.info('starting: %d entities, %d epochs planned', len(self.graph.entities), n_epochs)
        with tqdm(total=n_epochs, desc='epochs', disable=not self.progress) as bar:
            while self.should_continue(n_epochs):
                stats = self.run_epoch()
                bar.set_postfix(entities=stats['entities'], era=stats['era'])
                bar.update(1)
        self.link_final_era()
        logger.info('finished at tick %d: %d entities, %d relationships', self.graph.tick,
                    len(self.graph.entities), len(self.graph.find_relationships()))
        return self.graph

    def export(self):
        data = self.graph.to_dict()
        data['seed'] = self.seed
        data['epochs'] = self.epoch_stats
        data['changes'] = self.change_log
        data['population'] = self.tracker.snapshot()
        data['validation'] = None if self.validation is None else {
            'valid': self.validation.valid,
            'errors': self.validation.errors,
            'warnings': self.validation.warnings,
        }
        return data
