"""Simulation systems: mutate the graph directly, once per tick."""
import logging

import numpy as np
import networkx as nx

from .config import (
    STATUS_ACTIVE, STATUS_HISTORICAL, STATUS_CURRENT, STATUS_FUTURE,
    DECAY_RATES, DECAY_BUCKET_BY_CATEGORY, DECAY_MIN_AGE, DECAY_PROXIMITY_FACTOR,
    DECAY_SHARED_FACTION_FACTOR, DECAY_FLOOR,
    ALLIANCE_BASE_CHANCE, ALLIANCE_MIN_WAR_STRENGTH, ALLIANCE_STABILITY_GAIN,
    PROMINENCE_GAIN_CHANCE, PROMINENCE_DECAY_CHANCE, PROMINENCE_GAIN_LINKS,
    PROMINENCE_DECAY_LINKS, CATALYZED_EVENT_LINKS,
    MIN_ERA_LENGTH, ERA_TRANSITION_COOLDOWN, ERA_LINK_LIMIT,
    WAR_THRESHOLD, DISASTER_THRESHOLD, MOVEMENT_THRESHOLD, BOOM_THRESHOLD,
    ACTION_ATTEMPT_RATE, INFLUENCE_GAIN, INFLUENCE_LOSS, PRESSURE_MULTIPLIER,
    MAX_SUCCESS_CHANCE, CATALYST_PROMINENCE_MULTIPLIER, CATALYST_PROMINENCE_INFLUENCE,
)
from .graph import relationship_category, prominence_value, adjust_prominence
from .model import (
    SystemResult, Catalyst, ComponentContract, ComponentPurpose, EnabledBy,
    EntityCountGate, Affects, EntityEffect, RelationshipEffect, PressureEffect,
)
from .selection import weighted_random, roll_probability

logger = logging.getLogger(__name__)


class SimulationSystem:
    """Shared shape: apply(graph, modifier) -> SystemResult.

    `modifier` is the era multiplier times any caller scalar; 0 means no effect."""
    id = 'system'
    name = 'System'
    contract = None

    def apply(self, graph, modifier=1.0):
        return SystemResult.empty(f'{self.name}: nothing to do')


def _live(graph, entity):
    return entity.status != STATUS_HISTORICAL and not graph.is_terminal(entity)


def _location_id(graph, entity_id):
    entity = graph.get_entity(entity_id)
    if entity is None:
        return None
    for r in entity.links:
        if r.kind in ('resident_of', 'located_at') and r.src == entity_id:
            return r.dst
    return None


def _factions_of(graph, entity_id):
    entity = graph.get_entity(entity_id)
    if entity is None:
        return set()
    return {r.dst for r in entity.links if r.kind == 'member_of' and r.src == entity_id}


# ── Relationship decay ──

class RelationshipDecay(SimulationSystem):
    """Unreinforced relationships weaken. Spatial links fade fastest, conflict slowest."""
    id = 'relationship_decay'
    name = 'Relationship Decay'
    contract = ComponentContract(
        purpose=ComponentPurpose.STATE_MODIFICATION,
        enabled_by=EnabledBy(entity_counts=[EntityCountGate('npc', min=1)]),
        affects=Affects(relationships=[RelationshipEffect('resident_of', 'delete', (0, 5)),
                                       RelationshipEffect('member_of', 'delete', (0, 5))]),
    )

    def decay_amount(self, graph, rel, modifier=1.0):
        age = graph.tick - (rel.created_at or 0)
        if age < DECAY_MIN_AGE:
            return 0.0
        rate = DECAY_RATES[DECAY_BUCKET_BY_CATEGORY[relationship_category(rel.kind)]]
        if rate == 0.0:
            return 0.0
        loc_a, loc_b = _location_id(graph, rel.src), _location_id(graph, rel.dst)
        if loc_a is not None and loc_a == loc_b:
            rate *= DECAY_PROXIMITY_FACTOR
        if _factions_of(graph, rel.src) & _factions_of(graph, rel.dst):
            rate *= DECAY_SHARED_FACTION_FACTOR
        return rate * modifier

    def apply(self, graph, modifier=1.0):
        if modifier <= 0:
            return SystemResult.empty('Relationship decay suspended')
        weakened = 0
        for rel in graph.find_relationships():
            if rel.strength <= DECAY_FLOOR:
                continue
            amount = self.decay_amount(graph, rel, modifier)
            if amount <= 0:
                continue
            rel.strength = float(max(DECAY_FLOOR, rel.strength - amount))
            weakened += 1
        return SystemResult(description=f'{weakened} relationships weakened')


# ── Alliance formation ──

class AllianceFormation(SimulationSystem):
    """Factions sharing an enemy may ally. Each new alliance steadies the world."""
    id = 'alliance_formation'
    name = 'Alliance Formation'
    contract = ComponentContract(
        purpose=ComponentPurpose.RELATIONSHIP_CREATION,
        enabled_by=EnabledBy(entity_counts=[EntityCountGate('faction', min=3)]),
        affects=Affects(
            relationships=[RelationshipEffect('allied_with', 'create', (0, 3))],
            pressures=[PressureEffect('stability', ALLIANCE_STABILITY_GAIN)],
        ),
    )

    def __init__(self, base_chance=ALLIANCE_BASE_CHANCE, min_war_strength=ALLIANCE_MIN_WAR_STRENGTH,
                 stability_gain=ALLIANCE_STABILITY_GAIN):
        self.base_chance = base_chance
        self.min_war_strength = min_war_strength
        self.stability_gain = stability_gain

    def enemies(self, graph, faction_id):
        entity = graph.get_entity(faction_id)
        found = set()
        for r in entity.links:
            if r.kind != 'at_war_with' or r.strength < self.min_war_strength:
                continue
            found.add(r.dst if r.src == faction_id else r.src)
        return found

    def apply(self, graph, modifier=1.0):
        chance = float(np.clip(self.base_chance * modifier, 0.0, 1.0))
        if chance <= 0:
            return SystemResult.empty('Alliance formation suspended')
        factions = [f for f in graph.find_entities(kind='faction') if f.status == STATUS_ACTIVE]
        enemies = {f.id: self.enemies(graph, f.id) for f in factions}

        added = []
        for i, a in enumerate(factions):
            for b in factions[i + 1:]:
                if graph.has_relationship(a.id, b.id, 'allied_with') \
                        or graph.has_relationship(a.id, b.id, 'at_war_with'):
                    continue
                common = (enemies[a.id] & enemies[b.id]) - {a.id, b.id}
                if not common:
                    continue
                if not (graph.can_form_relationship(a.id, 'allied_with')
                        and graph.can_form_relationship(b.id, 'allied_with')):
                    continue
                if graph.rng.random_sample() >= chance:
                    continue
                rel = graph.add_relationship('allied_with', a.id, b.id, strength=0.6)
                if rel is None:
                    continue
                graph.record_relationship_formation(a.id, 'allied_with')
                graph.record_relationship_formation(b.id, 'allied_with')
                added.append(rel)

        if not added:
            return SystemResult.empty('No new alliances')
        return SystemResult(
            relationships_added=added,
            pressure_changes={'stability': self.stability_gain * len(added)},
            description=f'{len(added)} alliances formed against common enemies',
        )


# ── Prominence evolution ──

class ProminenceEvolution(SimulationSystem):
    """Well-connected entities grow famous, isolated ones fade toward obscurity.

    An entity rises one step when its connection score reaches
    (level + 1) * gain_links[kind], and falls one step when the score drops
    below level * PROMINENCE_DECAY_LINKS. Kinds missing from gain_links are left
    alone. Gain rolls are odds-scaled by the era modifier; decay rolls are not."""
    id = 'prominence_evolution'
    name = 'Fame and Obscurity'
    contract = ComponentContract(
        purpose=ComponentPurpose.PROMINENCE_EVOLUTION,
        enabled_by=EnabledBy(entity_counts=[EntityCountGate('npc', min=1)]),
        affects=Affects(entities=[EntityEffect(k, 'modify') for k in PROMINENCE_GAIN_LINKS]),
    )

    def __init__(self, gain_chance=PROMINENCE_GAIN_CHANCE, decay_chance=PROMINENCE_DECAY_CHANCE,
                 gain_links=None):
        self.gain_chance = gain_chance
        self.decay_chance = decay_chance
        self.gain_links = dict(PROMINENCE_GAIN_LINKS if gain_links is None else gain_links)

    def connection_score(self, entity):
        n = len(entity.links)
        if entity.catalyst is not None and entity.catalyst.catalyzed_events:
            n = max(n, CATALYZED_EVENT_LINKS * len(entity.catalyst.catalyzed_events))
        return n

    def shift(self, graph, entity, modifier=1.0):
        level = prominence_value(entity.prominence)
        score = self.connection_score(entity)
        if score >= (level + 1) * self.gain_links[entity.kind]:
            return 1 if roll_probability(self.gain_chance, modifier, graph.rng) else 0
        if score < level * PROMINENCE_DECAY_LINKS:
            return -1 if roll_probability(self.decay_chance, 1.0, graph.rng) else 0
        return 0

    def apply(self, graph, modifier=1.0):
        modified = []
        for e in list(graph.entities.values()):
            if e.kind not in self.gain_links or not _live(graph, e):
                continue
            delta = self.shift(graph, e, modifier)
            if delta == 0:
                continue
            prominence = adjust_prominence(e.prominence, delta)
            if prominence != e.prominence:
                modified.append({'id': e.id, 'changes': {'prominence': prominence}})
        if not modified:
            return SystemResult.empty('Prominence unchanged')
        return SystemResult(entities_modified=modified,
                            description=f'Prominence shifts for {len(modified)} entities')


# ── Era transition ──

def link_prominent_entities(graph, era_entity, start, limit=ERA_LINK_LIMIT, fallback=False):
    """active_during links from recognized+ entities created since `start`.
    With `fallback`, an era that produced none borrows the renowned+ of any age."""
    def rank(e):
        return prominence_value(e.prominence)

    others = [e for e in graph.entities.values()
              if e.kind != 'era' and e.status != STATUS_HISTORICAL]
    candidates = [e for e in others if start <= e.created_at <= graph.tick
                  and rank(e) >= prominence_value('recognized')]
    if not candidates and fallback:
        candidates = [e for e in others if rank(e) >= prominence_value('renowned')]
    candidates.sort(key=rank, reverse=True)
    added = []
    for e in candidates[:limit]:
        rel = graph.add_relationship('active_during', e.id, era_entity.id, strength=1.0)
        if rel is not None:
            added.append(rel)
    return added


class EraTransition(SimulationSystem):
    """Advances the era sequence by at most one step per call.

    `check(graph, era_entity) -> bool` decides readiness; without one the era
    simply has to have lasted `min_era_length` ticks."""
    id = 'era_transition'
    name = 'Era Transition'
    contract = ComponentContract(
        purpose=ComponentPurpose.PHASE_TRANSITION,
        affects=Affects(
            entities=[EntityEffect('era', 'modify', (0, 2))],
            relationships=[RelationshipEffect('active_during', 'create', (0, ERA_LINK_LIMIT))],
        ),
    )

    def __init__(self, check=None, min_era_length=MIN_ERA_LENGTH):
        self.check = check
        self.min_era_length = min_era_length

    def _begin(self, graph, era_entity):
        graph.update_entity(era_entity.id, status=STATUS_CURRENT,
                            temporal={'start_tick': graph.tick, 'end_tick': None})
        if graph.config is not None:
            graph.current_era = graph.config.era_by_id(era_entity.subtype)

    def _ready(self, graph, era_entity):
        start = (era_entity.temporal or {}).get('start_tick', era_entity.created_at)
        age = graph.tick - start
        if age < ERA_TRANSITION_COOLDOWN:
            return False
        check = self.check
        if check is None and graph.config is not None:
            check = graph.config.era_transition_check
        if check is not None:
            return bool(check(graph, era_entity))
        return age >= self.min_era_length

    def apply(self, graph, modifier=1.0):
        eras = graph.era_entities()
        current = [e for e in eras if e.status == STATUS_CURRENT]
        future = [e for e in eras if e.status == STATUS_FUTURE]

        if not current:
            if not future:
                return SystemResult.empty('No era left to begin')
            first = future[0]
            self._begin(graph, first)
            graph.record('special', f'{first.name} begins', entities_modified=[first.id])
            logger.info('era %s promoted at tick %d (no current era)', first.name, graph.tick)
            return SystemResult(
                entities_modified=[{'id': first.id, 'changes': {'status': STATUS_CURRENT}}],
                description=f'{first.name} begins')

        era = current[0]
        modified = []
        for extra in current[1:]:
            graph.update_entity(extra.id, status=STATUS_HISTORICAL)
            modified.append({'id': extra.id, 'changes': {'status': STATUS_HISTORICAL}})

        if modifier <= 0 or not self._ready(graph, era):
            return SystemResult(entities_modified=modified, description=f'{era.name} continues')
        if not future:
            return SystemResult(entities_modified=modified,
                                description=f'{era.name} endures (final era)')

        start = (era.temporal or {}).get('start_tick', era.created_at)
        links = link_prominent_entities(graph, era, start)
        graph.update_entity(era.id, status=STATUS_HISTORICAL,
                            temporal={'start_tick': start, 'end_tick': graph.tick})
        nxt = future[0]
        self._begin(graph, nxt)
        modified += [{'id': era.id, 'changes': {'status': STATUS_HISTORICAL}},
                     {'id': nxt.id, 'changes': {'status': STATUS_CURRENT}}]

        description = f'{era.name} ends; {nxt.name} begins'
        graph.record('special', description, relationships_created=links,
                     entities_modified=[era.id, nxt.id])
        logger.info('tick %d: %s', graph.tick, description)
        return SystemResult(relationships_added=links, entities_modified=modified,
                            description=description)


# ── Occurrence creation ──

class OccurrenceCreation(SimulationSystem):
    """Macro-events emerge from clusters of low-level facts and become agents themselves."""
    id = 'occurrence_creation'
    name = 'Occurrence Creation'
    contract = ComponentContract(
        purpose=ComponentPurpose.STATE_MODIFICATION,
        affects=Affects(
            entities=[EntityEffect('occurrence', 'create', (0, 4))],
            relationships=[RelationshipEffect('participant_in', 'create', (0, 10)),
                           RelationshipEffect('epicenter_of', 'create', (0, 2)),
                           RelationshipEffect('triggered_by', 'create', (0, 4))],
        ),
    )

    def __init__(self, war_threshold=WAR_THRESHOLD, disaster_threshold=DISASTER_THRESHOLD,
                 movement_threshold=MOVEMENT_THRESHOLD, boom_threshold=BOOM_THRESHOLD):
        self.war_threshold = war_threshold
        self.disaster_threshold = disaster_threshold
        self.movement_threshold = movement_threshold
        self.boom_threshold = boom_threshold

    def _active_occurrences(self, graph, subtype):
        return [e for e in graph.find_entities(kind='occurrence', subtype=subtype)
                if e.status == STATUS_ACTIVE]

    def _participants(self, occurrence):
        return {r.src for r in occurrence.links
                if r.kind == 'participant_in' and r.dst == occurrence.id}

    def _create(self, graph, subtype, name, description, prominence, tags, domains, influence):
        return graph.add_entity(
            'occurrence', subtype, name, description=description, prominence=prominence,
            tags=tags, catalyst=Catalyst(can_act=True, action_domains=list(domains),
                                         influence=influence),
            temporal={'start_tick': graph.tick, 'end_tick': None})

    def _link(self, graph, kind, src, dst, out, catalyzed_by=None):
        rel = graph.add_relationship(kind, src, dst, strength=1.0, catalyzed_by=catalyzed_by)
        if rel is not None:
            out.append(rel)

    # -- war --
    def check_war(self, graph):
        wars = [r for r in graph.find_relationships(kind='at_war_with')
                if graph.get_entity(r.src).kind == 'faction'
                and graph.get_entity(r.dst).kind == 'faction']
        if len(wars) < self.war_threshold:
            return None
        G = nx.Graph()
        G.add_edges_from((r.src, r.dst) for r in wars)
        cluster = max(nx.connected_components(G), key=len)
        if len(cluster) < 2:
            return None

        rels = []
        for war in self._active_occurrences(graph, 'war'):
            joined = self._participants(war)
            if joined & cluster:
                for fid in sorted(cluster - joined):
                    self._link(graph, 'participant_in', fid, war.id, rels, catalyzed_by=fid)
                if not rels:
                    return None
                return war, rels, f'{len(rels)} factions drawn into {war.name}'

        factions = sorted((graph.get_entity(fid) for fid in cluster),
                          key=lambda f: (f.created_at, f.id))
        names = [f.name for f in factions[:2]]
        war = self._create(graph, 'war', f'The {names[0]}-{names[1]} Conflict',
                           f'A major conflict between {len(factions)} factions', 'recognized',
                           ['war', 'conflict', 'violence'],
                           ['military', 'conflict_escalation', 'political'], 0.7)
        for f in factions:
            self._link(graph, 'participant_in', f.id, war.id, rels, catalyzed_by=f.id)
        aggressor = min((r for r in wars if r.src in cluster), key=lambda r: r.created_at or 0)
        self._link(graph, 'triggered_by', war.id, aggressor.src, rels)
        contested = self._contested_location(graph, cluster)
        if contested is not None:
            self._link(graph, 'epicenter_of', war.id, contested.id, rels)
        return war, rels, f'{war.name} erupts between {len(factions)} factions'

    def _contested_location(self, graph, faction_ids):
        for loc in graph.find_entities(kind='location'):
            controllers = {r.src for r in graph.find_relationships(kind='controls', dst=loc.id)}
            if len(controllers & faction_ids) >= 2:
                return loc
        return None

    # -- magical disaster --
    def check_disaster(self, graph):
        recent = [r for r in graph.find_relationships(kind='corrupted_by')
                  if r.created_at == graph.tick]
        if len(recent) < self.disaster_threshold or self._active_occurrences(graph, 'magical_disaster'):
            return None
        disaster = self._create(graph, 'magical_disaster', 'The Corruption Cascade',
                                'Magical corruption spreads uncontrollably', 'renowned',
                                ['disaster', 'magic', 'corruption'],
                                ['magical', 'disaster_spread'], 0.8)
        rels = []
        counts = {}
        for r in recent:
            counts[r.src] = counts.get(r.src, 0) + 1
        epicenter = max(counts, key=counts.get)
        self._link(graph, 'epicenter_of', disaster.id, epicenter, rels)
        sources = {r.dst for r in recent}
        for src in sorted(sources):
            self._link(graph, 'triggered_by', disaster.id, src, rels)
        return disaster, rels, f'{disaster.name} unleashed as corruption spreads'

    # -- cultural movement --
    def check_movement(self, graph):
        adoption = {}
        for r in graph.find_relationships():
            if r.kind not in ('weaponized_by', 'kept_secret_by'):
                continue
            faction, rule = graph.get_entity(r.src), graph.get_entity(r.dst)
            if faction.kind == 'faction' and rule.kind == 'rules':
                adoption.setdefault(rule.id, set()).add(faction.id)
        widespread = [(rid, fs) for rid, fs in adoption.items() if len(fs) >= self.movement_threshold]
        if not widespread:
            return None
        rule_id, faction_ids = max(widespread, key=lambda rf: len(rf[1]))
        for movement in self._active_occurrences(graph, 'cultural_movement'):
            if any(r.dst == rule_id for r in movement.links):
                return None
        rule = graph.get_entity(rule_id)
        movement = self._create(graph, 'cultural_movement', f'The {rule.name} Movement',
                                f'Widespread adoption of {rule.name}', 'recognized',
                                ['cultural', 'ideology', 'movement'], ['cultural', 'political'], 0.6)
        rels = []
        for fid in sorted(faction_ids):
            self._link(graph, 'participant_in', fid, movement.id, rels, catalyzed_by=fid)
        self._link(graph, 'triggered_by', movement.id, rule_id, rels)
        return movement, rels, f'{movement.name} spreads across {len(faction_ids)} factions'

    # -- economic boom --
    def check_boom(self, graph):
        routes = [r for r in graph.find_relationships() if r.kind in ('trades_with', 'monopolizes')]
        if len(routes) < self.boom_threshold or self._active_occurrences(graph, 'economic_boom'):
            return None
        boom = self._create(graph, 'economic_boom', 'The Prosperity Era',
                            f'Economic prosperity driven by {len(routes)} trade connections',
                            'recognized', ['economic', 'prosperity', 'trade'],
                            ['economic', 'environmental'], 0.7)
        rels = []
        traders = {}
        for r in routes:
            traders[r.src] = traders.get(r.src, 0) + 1
        self._link(graph, 'triggered_by', boom.id, max(traders, key=traders.get), rels)
        return boom, rels, f'{boom.name} begins as trade flourishes'

    def apply(self, graph, modifier=1.0):
        if modifier <= 0:
            return SystemResult.empty('Occurrence creation suspended')
        added, names = [], []
        for check in (self.check_war, self.check_disaster, self.check_movement, self.check_boom):
            outcome = check(graph)
            if outcome is None:
                continue
            occurrence, rels, description = outcome
            added += rels
            names.append(occurrence.name)
            created = [occurrence.id] if occurrence.created_at == graph.tick else []
            graph.record('special', description, entities_created=created,
                         relationships_created=rels)
        if not names:
            return SystemResult.empty('No major occurrences this cycle')
        return SystemResult(relationships_added=added,
                            description=f'Major occurrences ({len(names)}: {", ".join(names)})')


# ── Universal catalyst ──

def get_influence(entity):
    """Base influence plus a prominence bonus, clamped to [0, 1]."""
    if entity.catalyst is None:
        return 0.0
    bonus = CATALYST_PROMINENCE_INFLUENCE.get(entity.prominence, 0.0)
    return float(np.clip(entity.catalyst.influence + bonus, 0.0, 1.0))


def attempt_chance(entity, base_rate=ACTION_ATTEMPT_RATE):
    if entity.catalyst is None or not entity.catalyst.can_act:
        return 0.0
    mult = CATALYST_PROMINENCE_MULTIPLIER.get(entity.prominence, 1.0)
    return float(np.clip(base_rate * mult * entity.catalyst.influence, 0.0, 1.0))


def update_influence(entity, success, amount):
    delta = amount if success else -amount
    entity.catalyst.influence = float(np.clip(entity.catalyst.influence + delta, 0.0, 1.0))


class UniversalCatalyst(SimulationSystem):
    """Every catalyst-capable entity may attempt one domain action per tick."""
    id = 'universal_catalyst'
    name = 'Agent Actions'
    contract = ComponentContract(
        purpose=ComponentPurpose.BEHAVIORAL_MODIFIER,
        affects=Affects(relationships=[RelationshipEffect('*', 'create', (0, 10))]),
    )

    def __init__(self, domains=None, attempt_rate=ACTION_ATTEMPT_RATE,
                 influence_gain=INFLUENCE_GAIN, influence_loss=INFLUENCE_LOSS,
                 pressure_multiplier=PRESSURE_MULTIPLIER):
        self.domains = domains
        self.attempt_rate = attempt_rate
        self.influence_gain = influence_gain
        self.influence_loss = influence_loss
        self.pressure_multiplier = pressure_multiplier

    def _domains(self, graph):
        if self.domains is not None:
            return self.domains
        return graph.config.action_domains if graph.config is not None else []

    def _pressure_domains(self, graph):
        return graph.config.pressure_domains if graph.config is not None else {}

    def relevant_pressure(self, graph, domain_ids):
        """Mean of the pressures mapped to the agent's domains, 0..1."""
        mapping = self._pressure_domains(graph)
        values = [graph.get_pressure(p) / 100.0 for d in domain_ids for p in mapping.get(d, [])]
        return float(np.mean(values)) if values else 0.0

    def _meets_requirements(self, graph, agent, action):
        if action.min_prominence is not None \
                and prominence_value(agent.prominence) < prominence_value(action.min_prominence):
            return False
        kinds = {r.kind for r in agent.links}
        if any(k not in kinds for k in action.required_relationships):
            return False
        return all(graph.get_pressure(p) >= v for p, v in action.required_pressures.items())

    def _action_weight(self, graph, action, domain_id):
        w = action.base_weight
        if graph.current_era is not None:
            w *= graph.current_era.system_modifier(action.id)
        for p in self._pressure_domains(graph).get(domain_id, []):
            level = graph.get_pressure(p)
            if level > 50:
                w *= 1 + (level - 50) / 100
        return max(0.1, w)

    def select_action(self, graph, agent, domains):
        options, weights = [], []
        for domain in domains:
            if domain.id not in agent.catalyst.action_domains:
                continue
            for action in domain.actions:
                if self._meets_requirements(graph, agent, action):
                    options.append(action)
                    weights.append(self._action_weight(graph, action, domain.id))
        return weighted_random(options, weights, graph.rng)

    def apply(self, graph, modifier=1.0):
        domains = self._domains(graph)
        if not domains:
            return SystemResult.empty('Catalyst system dormant (no action domains configured)')
        agents = [e for e in list(graph.entities.values())
                  if e.catalyst is not None and e.catalyst.can_act and _live(graph, e)]

        added, modified = [], []
        attempted = succeeded = 0
        for agent in agents:
            bonus = self.relevant_pressure(graph, agent.catalyst.action_domains) \
                * (self.pressure_multiplier - 1.0)
            chance = min(1.0, (attempt_chance(agent, self.attempt_rate) + bonus) * modifier)
            if graph.rng.random_sample() >= chance:
                continue
            action = self.select_action(graph, agent, domains)
            if action is None:
                continue
            attempted += 1
            p_success = min(MAX_SUCCESS_CHANCE,
                            action.base_success_chance * (1 + get_influence(agent)))
            outcome = action.handler(agent, graph) if graph.rng.random_sample() < p_success else None

            if outcome is not None and outcome.success:
                succeeded += 1
                for rel in outcome.relationships:
                    made = graph.add_relationship(rel.kind, rel.src, rel.dst, strength=rel.strength,
                                                  distance=rel.distance, catalyzed_by=agent.id)
                    if made is not None:
                        added.append(made)
                update_influence(agent, True, self.influence_gain)
                agent.catalyst.catalyzed_events.append(
                    {'action': action.id, 'tick': graph.tick, 'description': outcome.description})
            else:
                update_influence(agent, False, self.influence_loss)
            modified.append({'id': agent.id, 'changes': {'catalyst': agent.catalyst}})

        if attempted == 0:
            return SystemResult.empty('No agents acted')
        return SystemResult(relationships_added=added, entities_modified=modified,
                            description=f'Agents act ({succeeded}/{attempted} succeeded)')


def system_registry(systems):
    """Lookup table by id; ids must be unique."""
    table = {}
    for s in systems:
        if s.id in table:
            raise ValueError(f'duplicate system id: {s.id}')
        table[s.id] = s
    return table
