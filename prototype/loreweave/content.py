"""
Demo world: a frontier realm growing through three eras
========================================================
Small but complete domain used by the CLI, the Monte Carlo runner and the
end-to-end tests.

Exports:
    ERAS                    — list of Era
    DISTRIBUTION_TARGETS    — 'kind:subtype' → target count
    ACTION_DOMAINS          — catalyst action domains with their handlers
    PRESSURE_DOMAINS        — action domain → pressure ids
    build_default_config()  — ready-to-run EngineConfig
    default_seed_fragment() — the initial world, as a draft fragment
"""
from .config import STATUS_ACTIVE, PRESSURE_TARGETS
from .model import (
    Era, Pressure, PressureContract, PressureFlow, Equilibrium, EntityRegistry,
    CreatorSpec, ModifierSpec, ExpectedDistribution, LineageSpec, MetaEntityConfig,
    ClusteringSpec, ClusterCriterion, TransformationSpec, EngineConfig, ActionDomain, ActionSpec,
    ActionOutcome, GrowthResult, Relationship, Catalyst, placeholder,
)
from .selection import pick_random
from .systems import (
    RelationshipDecay, AllianceFormation, ProminenceEvolution, OccurrenceCreation,
    UniversalCatalyst, EraTransition,
)
from .templates import (
    SettlementFounding, ResidentArrival, FactionFounding, AbilityDiscovery, RuleEnactment,
    WarDeclaration,
)

ENTITY_KINDS = ['npc', 'faction', 'location', 'abilities', 'rules']

# ============================================================
# ERAS
# ============================================================

ERAS = [
    Era('expansion', 'The Great Expansion',
        'Settlers spread across the frontier',
        template_weights={'settlement_founding': 2.0, 'resident_arrival': 1.5,
                          'war_declaration': 0.2},
        system_modifiers={'alliance_formation': 0.5, 'escalate_conflict': 0.5},
        pressure_modifiers={'resource_scarcity': 1.2}),
    Era('strife', 'The Age of Strife',
        'Houses contest the land and its secrets',
        template_weights={'war_declaration': 2.0, 'faction_founding': 1.5,
                          'settlement_founding': 0.5},
        system_modifiers={'alliance_formation': 1.5, 'escalate_conflict': 2.0},
        pressure_modifiers={'conflict': 1.5, 'stability': 0.7}),
    Era('reconstruction', 'The Reconstruction',
        'Law and learning rebuild what war broke',
        template_weights={'war_declaration': 0.0, 'rule_enactment': 2.0,
                          'ability_discovery': 1.5},
        system_modifiers={'relationship_decay': 0.5, 'broker_trade': 2.0},
        pressure_modifiers={'conflict': 0.5, 'stability': 1.3}),
]

ERA_MIN_TICKS = 20       # an era never ends before this
ERA_MAX_TICKS = 40       # and always ends by this, if a successor exists


def era_transition_check(graph, era_entity):
    """Each era ends once its defining condition is met, or when it has run long."""
    start = (era_entity.temporal or {}).get('start_tick', era_entity.created_at)
    age = graph.tick - start
    if age < ERA_MIN_TICKS:
        return False
    if age >= ERA_MAX_TICKS:
        return True
    if era_entity.subtype == 'expansion':
        return _count(graph, 'location') >= 6
    if era_entity.subtype == 'strife':
        return bool(graph.find_relationships(kind='allied_with'))
    return False


def _count(graph, kind, subtype=None):
    return sum(1 for e in graph.find_entities(kind=kind, subtype=subtype)
               if e.status == STATUS_ACTIVE)


# ============================================================
# PRESSURES
# ============================================================

def _wars(graph):
    return len(graph.find_relationships(kind='at_war_with'))


PRESSURES = [
    Pressure('resource_scarcity', 'resource_scarcity', value=20.0, decay=1.5,
             growth=lambda g: 0.1 * _count(g, 'npc'),
             contract=PressureContract(
                 sources=[PressureFlow('template.settlement_founding', 1.0),
                          PressureFlow('formula.population', 40.0, 'npcs / 10')],
                 sinks=[PressureFlow('system.relationship_decay', -1.0)],
                 equilibrium=Equilibrium((15, 50), 30))),
    Pressure('conflict', 'conflict', value=15.0, decay=2.0,
             growth=lambda g: 1.5 * _wars(g),
             contract=PressureContract(
                 sources=[PressureFlow('template.war_declaration', 3.0),
                          PressureFlow('relationship.at_war_with', 80.0, 'wars * 1.5')],
                 sinks=[PressureFlow('system.alliance_formation', -5.0),
                        PressureFlow('time.decay')],
                 affects=[PressureFlow('template.war_declaration')],
                 equilibrium=Equilibrium((20, 60), 40))),
    Pressure('magical_instability', 'magical_instability', value=10.0, decay=1.0,
             growth=lambda g: 0.4 * _count(g, 'abilities'),
             contract=PressureContract(
                 sources=[PressureFlow('template.ability_discovery', 2.0),
                          PressureFlow('formula.abilities', 30.0, 'abilities * 0.4')],
                 sinks=[PressureFlow('system.occurrence_creation', -5.0)],
                 equilibrium=Equilibrium((10, 45), 25))),
    Pressure('cultural_tension', 'cultural_tension', value=20.0, decay=1.2,
             growth=lambda g: 0.5 * _count(g, 'faction'),
             contract=PressureContract(
                 sources=[PressureFlow('template.faction_founding', 2.0),
                          PressureFlow('formula.factions', 40.0, 'factions * 0.5')],
                 sinks=[PressureFlow('template.rule_enactment', -2.0)],
                 equilibrium=Equilibrium((15, 55), 35))),
    Pressure('stability', 'stability', value=60.0, decay=1.0,
             growth=lambda g: 1.0 + 0.2 * _count(g, 'rules') - 0.5 * _wars(g),
             contract=PressureContract(
                 sources=[PressureFlow('system.alliance_formation', 5.0),
                          PressureFlow('template.rule_enactment', 1.0),
                          PressureFlow('formula.base', 60.0)],
                 sinks=[PressureFlow('template.war_declaration', -3.0),
                        PressureFlow('formula.conflict', -3.0, 'wars * 0.5')],
                 equilibrium=Equilibrium((40, 80), 60))),
    Pressure('external_threat', 'external_threat', value=10.0, decay=1.0,
             growth=lambda g: 1.0,
             contract=PressureContract(
                 sources=[PressureFlow('formula.frontier', 16.0)],
                 sinks=[PressureFlow('system.universal_catalyst', -1.0)],
                 equilibrium=Equilibrium((5, 30), PRESSURE_TARGETS['external_threat']))),
]

# ============================================================
# POPULATION TARGETS
# ============================================================

DISTRIBUTION_TARGETS = {
    'location:settlement': 15,
    'npc:founder': 10,
    'npc:merchant': 10,
    'npc:warrior': 10,
    'npc:mystic': 8,
    'faction:political': 6,
    'abilities:magic': 8,
    'abilities:technology': 8,
    'rules:edict': 8,
}


def _older_ability(entity, graph):
    """Most recent active ability of the same subtype that predates `entity`."""
    older = [a for a in graph.find_entities(kind='abilities', subtype=entity.subtype,
                                            status=STATUS_ACTIVE)
             if a.id != entity.id and a.created_at <= entity.created_at]
    return older[-1] if older else None


ENTITY_REGISTRIES = [
    EntityRegistry('location',
                   creators=[CreatorSpec('settlement_founding', target_count=1)],
                   expected_distribution=ExpectedDistribution(
                       15, {'marginal': 0.6, 'recognized': 0.3, 'renowned': 0.1})),
    EntityRegistry('npc',
                   creators=[CreatorSpec('resident_arrival', target_count=2),
                             CreatorSpec('settlement_founding', primary=False, target_count=1)],
                   modifiers=[ModifierSpec('universal_catalyst', 'influence'),
                              ModifierSpec('prominence_evolution', 'prominence')],
                   expected_distribution=ExpectedDistribution(
                       38, {'forgotten': 0.1, 'marginal': 0.6, 'recognized': 0.25,
                            'renowned': 0.05})),
    EntityRegistry('faction',
                   creators=[CreatorSpec('faction_founding', target_count=1)],
                   modifiers=[ModifierSpec('alliance_formation', 'relationships')],
                   expected_distribution=ExpectedDistribution(
                       6, {'marginal': 0.5, 'recognized': 0.4, 'renowned': 0.1})),
    EntityRegistry('abilities',
                   creators=[CreatorSpec('ability_discovery', target_count=1)],
                   expected_distribution=ExpectedDistribution(16),
                   lineage=LineageSpec('derived_from', _older_ability, (0.1, 0.4))),
    EntityRegistry('rules',
                   creators=[CreatorSpec('rule_enactment', target_count=1)],
                   expected_distribution=ExpectedDistribution(8)),
]

# ============================================================
# META-ENTITIES
# ============================================================

def _school_factory(originals, graph):
    subtypes = sorted({e.subtype for e in originals})
    founder = min(originals, key=lambda e: e.created_at)
    return {
        'kind': 'abilities', 'subtype': 'school',
        'name': f'School of {founder.name.split()[0]}',
        'description': f'A tradition uniting {len(originals)} related {"/".join(subtypes)} arts',
        'prominence': 'recognized', 'culture': founder.culture,
        'tags': ['school'] + subtypes,
    }


def _legal_code_factory(originals, graph):
    first = min(originals, key=lambda e: e.created_at)
    return {
        'kind': 'rules', 'subtype': 'code',
        'name': f'Code of {first.name.replace("Edict of ", "")}',
        'description': f'{len(originals)} edicts gathered into one code of law',
        'prominence': 'renowned', 'culture': first.culture,
        'tags': ['law', 'code'],
    }


def _govern_legal_code(code, originals, graph):
    """Bind the new code to whoever controls the first place it applies in.
    With no controller there, a council is founded to administer it."""
    places = [r.dst for r in code.links if r.kind == 'applies_in' and r.src == code.id]
    if not places:
        return []
    where = graph.get_entity(places[0])
    for r in where.links:
        if r.kind == 'controls' and r.dst == where.id:
            ruler = graph.get_entity(r.src)
            if ruler.kind == 'faction' and ruler.status == STATUS_ACTIVE:
                return [graph.add_relationship('weaponized_by', ruler.id, code.id, strength=0.8)]
    name = code.name.replace('Code', 'Council') if 'Code' in code.name \
        else f'Council of {where.name}'
    council = graph.add_entity('faction', 'political', name,
                               description=f'Administers {code.name}, gathered from '
                                           f'{len(originals)} edicts',
                               prominence=code.prominence, culture=where.culture,
                               tags=['political', 'governance'])
    return [graph.add_relationship('weaponized_by', council.id, code.id, strength=0.8),
            graph.add_relationship('controls', council.id, where.id, strength=0.6)]


META_CONFIGS = [
    MetaEntityConfig(
        'abilities', 'abilities',
        ClusteringSpec(min_size=3, minimum_score=3.0, max_size=6, criteria=[
            ClusterCriterion('shared_practitioner', 5.0),
            ClusterCriterion('shared_tags', 2.0, threshold=0.5),
            ClusterCriterion('temporal_proximity', 1.0, threshold=30),
        ]),
        factory=_school_factory,
        transformation=TransformationSpec(redirect_future_relationships=True)),
    MetaEntityConfig(
        'rules', 'rules',
        ClusteringSpec(min_size=3, minimum_score=3.0, max_size=5, criteria=[
            ClusterCriterion('shared_location', 2.0),
            ClusterCriterion('shared_tags', 1.0),
            ClusterCriterion('temporal_proximity', 1.0, threshold=20),
        ]),
        factory=_legal_code_factory,
        on_formed=_govern_legal_code),
]

# ============================================================
# CATALYST ACTIONS
# ============================================================

def _factions(graph):
    return [f for f in graph.find_entities(kind='faction') if f.status == STATUS_ACTIVE]


def _pair(graph, candidates, blocked_kinds):
    """Random ordered pair with none of `blocked_kinds` between them, or None."""
    a = pick_random(candidates, graph.rng)
    if a is None:
        return None
    others = [b for b in candidates if b.id != a.id
              and not any(graph.has_relationship(a.id, b.id, k) for k in blocked_kinds)]
    b = pick_random(others, graph.rng)
    return (a, b) if b is not None else None


def escalate_conflict(agent, graph):
    pair = _pair(graph, _factions(graph), ('at_war_with', 'allied_with'))
    if pair is None:
        return ActionOutcome(False, description='no rivals left to provoke')
    a, b = pair
    return ActionOutcome(True, [Relationship('at_war_with', a.id, b.id, strength=0.6)],
                         f'{agent.name} drives {a.name} to war with {b.name}')


def broker_trade(agent, graph):
    pair = _pair(graph, _factions(graph), ('trades_with', 'at_war_with'))
    if pair is None:
        return ActionOutcome(False, description='no partners to bring together')
    a, b = pair
    return ActionOutcome(True, [Relationship('trades_with', a.id, b.id, strength=0.5)],
                         f'{agent.name} opens trade between {a.name} and {b.name}')


def spread_corruption(agent, graph):
    sites = [r for r in graph.find_relationships(kind='manifests_at')
             if not graph.has_relationship(r.dst, r.src, 'corrupted_by')]
    site = pick_random(sites, graph.rng)
    if site is None:
        return ActionOutcome(False, description='no unguarded wellspring')
    return ActionOutcome(True, [Relationship('corrupted_by', site.dst, site.src, strength=0.7)],
                         f'{agent.name} corrupts the wellspring of {graph.get_entity(site.src).name}')


def champion_rule(agent, graph):
    rules = [r for r in graph.find_entities(kind='rules') if r.status == STATUS_ACTIVE]
    rule = pick_random(rules, graph.rng)
    if rule is None:
        return ActionOutcome(False, description='no law worth spreading')
    adopters = [f for f in _factions(graph) if not graph.has_relationship(f.id, rule.id)]
    faction = pick_random(adopters, graph.rng)
    if faction is None:
        return ActionOutcome(False, description=f'{rule.name} is already everywhere')
    return ActionOutcome(True, [Relationship('weaponized_by', faction.id, rule.id, strength=0.6)],
                         f'{agent.name} persuades {faction.name} to adopt {rule.name}')


ACTION_DOMAINS = [
    ActionDomain('military', [ActionSpec('escalate_conflict', escalate_conflict,
                                         base_weight=1.0, base_success_chance=0.4)]),
    ActionDomain('conflict_escalation', [ActionSpec('escalate_conflict', escalate_conflict,
                                                    base_weight=1.5, base_success_chance=0.5,
                                                    required_pressures={'conflict': 20})]),
    ActionDomain('political', [
        ActionSpec('broker_trade', broker_trade, base_weight=1.0, base_success_chance=0.5),
        ActionSpec('champion_rule', champion_rule, base_weight=0.8, base_success_chance=0.4,
                   min_prominence='recognized'),
    ]),
    ActionDomain('economic', [ActionSpec('broker_trade', broker_trade,
                                         base_weight=1.5, base_success_chance=0.6)]),
    ActionDomain('cultural', [ActionSpec('champion_rule', champion_rule,
                                         base_weight=1.2, base_success_chance=0.5)]),
    ActionDomain('magical', [ActionSpec('spread_corruption', spread_corruption,
                                        base_weight=1.0, base_success_chance=0.3,
                                        required_pressures={'magical_instability': 15})]),
    ActionDomain('disaster_spread', [ActionSpec('spread_corruption', spread_corruption,
                                                base_weight=1.5, base_success_chance=0.5)]),
]

PRESSURE_DOMAINS = {
    'military': ['conflict'],
    'conflict_escalation': ['conflict', 'cultural_tension'],
    'political': ['stability', 'cultural_tension'],
    'economic': ['resource_scarcity'],
    'cultural': ['cultural_tension'],
    'magical': ['magical_instability'],
    'disaster_spread': ['magical_instability'],
}

# ============================================================
# SEED WORLD
# ============================================================

def default_seed_fragment():
    """Two settlements, a wild frontier and a first generation of notables."""
    entities = [
        {'kind': 'location', 'subtype': 'settlement', 'name': 'Highmarch',
         'description': 'The first colony on the frontier', 'culture': 'marcher',
         'prominence': 'renowned', 'tags': ['settlement', 'capital']},
        {'kind': 'location', 'subtype': 'settlement', 'name': 'Saltmere',
         'description': 'A fishing town on the grey coast', 'culture': 'coastal',
         'tags': ['settlement', 'coast']},
        {'kind': 'location', 'subtype': 'wilderness', 'name': 'The Thornwild',
         'description': 'Untamed forest beyond the last road', 'tags': ['wild', 'frontier']},
        {'kind': 'npc', 'subtype': 'founder', 'name': 'Aldric Vane', 'culture': 'marcher',
         'prominence': 'renowned', 'tags': ['founder', 'leader'],
         'catalyst': Catalyst(action_domains=['political', 'military'], influence=0.6)},
        {'kind': 'npc', 'subtype': 'mystic', 'name': 'Seren Ashdown', 'culture': 'coastal',
         'prominence': 'recognized', 'tags': ['mystic'],
         'catalyst': Catalyst(action_domains=['magical', 'cultural'], influence=0.5)},
        {'kind': 'npc', 'subtype': 'merchant', 'name': 'Tobin Reed', 'culture': 'coastal',
         'tags': ['merchant'],
         'catalyst': Catalyst(action_domains=['economic'], influence=0.4)},
    ]
    rels = [
        Relationship('resident_of', placeholder(3), placeholder(0), strength=0.9),
        Relationship('resident_of', placeholder(4), placeholder(1), strength=0.8),
        Relationship('resident_of', placeholder(5), placeholder(1), strength=0.8),
        Relationship('adjacent_to', placeholder(0), placeholder(1), distance=0.6),
        Relationship('adjacent_to', placeholder(0), placeholder(2), distance=0.3),
    ]
    return GrowthResult(entities, rels, 'The frontier is settled')


# ============================================================
# CONFIG
# ============================================================

def build_templates():
    return [SettlementFounding(), ResidentArrival(), FactionFounding(), AbilityDiscovery(),
            RuleEnactment(), WarDeclaration()]


def build_systems():
    return [RelationshipDecay(), AllianceFormation(), ProminenceEvolution(), OccurrenceCreation(),
            UniversalCatalyst(), EraTransition()]


def build_default_config(**overrides):
    """Ready-to-run demo configuration. Keyword overrides replace EngineConfig fields."""
    fields = dict(
        eras=list(ERAS),
        templates=build_templates(),
        systems=build_systems(),
        pressures=list(PRESSURES),
        entity_registries=list(ENTITY_REGISTRIES),
        distribution_targets=dict(DISTRIBUTION_TARGETS),
        meta_configs=list(META_CONFIGS),
        entity_kinds=list(ENTITY_KINDS),
        target_entities_per_kind=12,
        action_domains=list(ACTION_DOMAINS),
        pressure_domains=dict(PRESSURE_DOMAINS),
        era_transition_check=era_transition_check,
    )
    fields.update(overrides)
    return EngineConfig(**fields)
