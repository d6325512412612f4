"""Growth templates: propose new entities and relationships as draft fragments."""
from .config import STATUS_ACTIVE
from .model import (
    GrowthResult, Relationship, ComponentContract, ComponentPurpose, EnabledBy,
    EntityCountGate, PressureGate, Affects, EntityEffect, RelationshipEffect,
    PressureEffect, placeholder,
)
from .selection import SelectionBias

_SYLLABLES = ['ar', 'bel', 'cor', 'dun', 'el', 'fen', 'gal', 'hol', 'ir', 'kal',
              'lor', 'mir', 'nor', 'or', 'pel', 'quen', 'ros', 'sel', 'tor', 'ul',
              'vor', 'wyn', 'yr', 'zan']


def default_namer(rng, kind, subtype):
    n = 2 + rng.randint(2)
    stem = ''.join(_SYLLABLES[rng.randint(len(_SYLLABLES))] for _ in range(n))
    return stem.capitalize()


class GrowthTemplate:
    """Shared shape: can_apply / find_targets / expand.

    `produces` lists the (kind, subtype) pairs the population controller tracks
    for this template; an empty list means its weight is never adjusted."""
    id = 'template'
    name = 'Template'
    produces = ()
    contract = None

    def __init__(self, namer=default_namer):
        self.namer = namer

    def can_apply(self, view):
        return True

    def find_targets(self, view):
        return []

    def expand(self, view, target=None):
        return GrowthResult.empty(f'{self.name}: nothing to do')

    def _name(self, view, kind, subtype):
        return self.namer(view.rng, kind, subtype)


def _active(entities):
    return [e for e in entities if e.status == STATUS_ACTIVE]


class SettlementFounding(GrowthTemplate):
    """New settlement with a founder, next to an existing location."""
    id = 'settlement_founding'
    name = 'Settlement Founding'
    produces = (('location', 'settlement'), ('npc', 'founder'))
    contract = ComponentContract(
        purpose=ComponentPurpose.ENTITY_CREATION,
        affects=Affects(
            entities=[EntityEffect('location', 'create', (1, 1), 'settlement'),
                      EntityEffect('npc', 'create', (1, 1), 'founder')],
            relationships=[RelationshipEffect('resident_of', 'create', (1, 1)),
                           RelationshipEffect('adjacent_to', 'create', (0, 1))],
            pressures=[PressureEffect('resource_scarcity', 1.0)],
        ),
    )

    def find_targets(self, view):
        return _active(view.find_entities(kind='location'))

    def expand(self, view, target=None):
        culture = target.culture if target is not None else None
        entities = [
            {'kind': 'location', 'subtype': 'settlement',
             'name': self._name(view, 'location', 'settlement'),
             'description': 'A young settlement', 'culture': culture,
             'tags': ['settlement', 'frontier']},
            {'kind': 'npc', 'subtype': 'founder',
             'name': self._name(view, 'npc', 'founder'),
             'description': 'Led the first settlers', 'culture': culture,
             'prominence': 'recognized', 'tags': ['founder']},
        ]
        rels = [Relationship('resident_of', placeholder(1), placeholder(0), strength=0.8)]
        if target is not None:
            rels.append(Relationship('adjacent_to', placeholder(0), target.id))
        where = f' near {target.name}' if target is not None else ''
        return GrowthResult(entities, rels, f'{entities[0]["name"]} founded{where}')


class ResidentArrival(GrowthTemplate):
    """A handful of npcs settle in a location, biased toward quiet places."""
    id = 'resident_arrival'
    name = 'Resident Arrival'
    contract = ComponentContract(
        purpose=ComponentPurpose.ENTITY_CREATION,
        enabled_by=EnabledBy(entity_counts=[EntityCountGate('location', min=1)]),
        affects=Affects(
            entities=[EntityEffect('npc', 'create', (1, 3))],
            relationships=[RelationshipEffect('resident_of', 'create', (1, 3))],
        ),
    )

    def __init__(self, subtypes=('merchant', 'warrior', 'mystic'), namer=default_namer):
        super().__init__(namer)
        self.subtypes = tuple(subtypes)
        self.produces = tuple(('npc', s) for s in self.subtypes)

    def can_apply(self, view):
        return bool(self.find_targets(view))

    def find_targets(self, view):
        return _active(view.find_entities(kind='location'))

    def expand(self, view, target=None):
        if target is None or not view.has_entity(target.id) or target.status != STATUS_ACTIVE:
            return GrowthResult.empty('Resident Arrival: destination no longer available')
        n = 1 + view.rng.randint(3)
        entities, rels = [], []
        for i in range(n):
            subtype = self.subtypes[view.rng.randint(len(self.subtypes))]
            entities.append({'kind': 'npc', 'subtype': subtype,
                             'name': self._name(view, 'npc', subtype),
                             'culture': target.culture, 'tags': [subtype]})
            rels.append(Relationship('resident_of', placeholder(i), target.id))
        return GrowthResult(entities, rels, f'{n} newcomers settle in {target.name}')


class FactionFounding(GrowthTemplate):
    """An npc founds a faction that controls the founder's home."""
    id = 'faction_founding'
    name = 'Faction Founding'
    produces = (('faction', 'political'),)
    contract = ComponentContract(
        purpose=ComponentPurpose.ENTITY_CREATION,
        enabled_by=EnabledBy(entity_counts=[EntityCountGate('npc', min=1)]),
        affects=Affects(
            entities=[EntityEffect('faction', 'create', (1, 1), 'political')],
            relationships=[RelationshipEffect('leader_of', 'create', (1, 1)),
                           RelationshipEffect('member_of', 'create', (1, 1)),
                           RelationshipEffect('controls', 'create', (1, 1))],
            pressures=[PressureEffect('cultural_tension', 2.0)],
        ),
    )

    def can_apply(self, view):
        return bool(self.find_targets(view))

    def find_targets(self, view):
        npcs = _active(view.find_entities(kind='npc'))
        return [n for n in npcs if view.get_location(n.id) is not None
                and not view.get_related_entities(n.id, 'leader_of', direction='src')]

    def expand(self, view, target=None):
        if target is None:
            return GrowthResult.empty('Faction Founding: no founder')
        home = view.get_location(target.id)
        if home is None:
            return GrowthResult.empty(f'Faction Founding: {target.name} has no home any more')
        faction = {'kind': 'faction', 'subtype': 'political',
                   'name': f'House {self._name(view, "faction", "political")}',
                   'description': f'Founded by {target.name}',
                   'culture': target.culture, 'tags': ['political']}
        rels = [Relationship('leader_of', target.id, placeholder(0), strength=0.9),
                Relationship('member_of', target.id, placeholder(0), strength=0.9),
                Relationship('controls', placeholder(0), home.id, strength=0.7)]
        return GrowthResult([faction], rels, f'{target.name} founds {faction["name"]} in {home.name}')


class AbilityDiscovery(GrowthTemplate):
    """A practitioner discovers an ability where they live. Ancestor links come
    from the abilities lineage, after commit."""
    id = 'ability_discovery'
    name = 'Ability Discovery'
    contract = ComponentContract(
        purpose=ComponentPurpose.ENTITY_CREATION,
        enabled_by=EnabledBy(entity_counts=[EntityCountGate('npc', min=1)]),
        affects=Affects(
            entities=[EntityEffect('abilities', 'create', (1, 1))],
            relationships=[RelationshipEffect('practitioner_of', 'create', (1, 1)),
                           RelationshipEffect('manifests_at', 'create', (0, 1))],
            pressures=[PressureEffect('magical_instability', 2.0)],
        ),
    )

    def __init__(self, subtypes=('magic', 'technology'), namer=default_namer):
        super().__init__(namer)
        self.subtypes = tuple(subtypes)
        self.produces = tuple(('abilities', s) for s in self.subtypes)

    def can_apply(self, view):
        return bool(self.find_targets(view))

    def find_targets(self, view):
        result = view.select_targets('npc', 5, SelectionBias(
            prefer_subtypes=['mystic'], avoid_relationship_kinds=['practitioner_of'],
            status=STATUS_ACTIVE))
        return result.existing

    def expand(self, view, target=None):
        if target is None:
            return GrowthResult.empty('Ability Discovery: no practitioner')
        subtype = self.subtypes[view.rng.randint(len(self.subtypes))]
        ability = {'kind': 'abilities', 'subtype': subtype,
                   'name': f'{self._name(view, "abilities", subtype)} {subtype}',
                   'culture': target.culture, 'tags': [subtype]}
        rels = [Relationship('practitioner_of', target.id, placeholder(0), strength=0.8)]
        home = view.get_location(target.id)
        if home is not None:
            rels.append(Relationship('manifests_at', placeholder(0), home.id))
        return GrowthResult([ability], rels, f'{target.name} discovers {ability["name"]}')


class RuleEnactment(GrowthTemplate):
    """A faction enacts an edict over the territory it controls."""
    id = 'rule_enactment'
    name = 'Rule Enactment'
    produces = (('rules', 'edict'),)
    contract = ComponentContract(
        purpose=ComponentPurpose.ENTITY_CREATION,
        enabled_by=EnabledBy(entity_counts=[EntityCountGate('faction', min=1)]),
        affects=Affects(
            entities=[EntityEffect('rules', 'create', (1, 1), 'edict')],
            relationships=[RelationshipEffect('weaponized_by', 'create', (1, 1)),
                           RelationshipEffect('applies_in', 'create', (0, 1))],
            pressures=[PressureEffect('stability', 1.0)],
        ),
    )

    def can_apply(self, view):
        return bool(self.find_targets(view))

    def find_targets(self, view):
        return _active(view.find_entities(kind='faction'))

    def expand(self, view, target=None):
        if target is None:
            return GrowthResult.empty('Rule Enactment: no faction')
        rule = {'kind': 'rules', 'subtype': 'edict',
                'name': f'Edict of {self._name(view, "rules", "edict")}',
                'culture': target.culture, 'tags': ['law']}
        rels = [Relationship('weaponized_by', target.id, placeholder(0), strength=0.7)]
        for loc in view.get_related_entities(target.id, 'controls', direction='src'):
            rels.append(Relationship('applies_in', placeholder(0), loc.id))
        return GrowthResult([rule], rels, f'{target.name} enacts {rule["name"]}')


class WarDeclaration(GrowthTemplate):
    """Two factions go to war. Creates relationships only."""
    id = 'war_declaration'
    name = 'War Declaration'
    contract = ComponentContract(
        purpose=ComponentPurpose.RELATIONSHIP_CREATION,
        enabled_by=EnabledBy(entity_counts=[EntityCountGate('faction', min=2)],
                             pressures=[PressureGate('conflict', 10.0)]),
        affects=Affects(
            relationships=[RelationshipEffect('at_war_with', 'create', (1, 1))],
            pressures=[PressureEffect('conflict', 3.0)],
        ),
    )

    def can_apply(self, view):
        return len(_active(view.find_entities(kind='faction'))) >= 2

    def find_targets(self, view):
        return [f for f in _active(view.find_entities(kind='faction'))
                if view.can_form_relationship(f.id, 'at_war_with')]

    def expand(self, view, target=None):
        if target is None:
            return GrowthResult.empty('War Declaration: no aggressor')
        rivals = [f for f in _active(view.find_entities(kind='faction'))
                  if f.id != target.id
                  and not view.has_relationship(target.id, f.id, 'at_war_with')
                  and not view.has_relationship(target.id, f.id, 'allied_with')]
        if not rivals:
            return GrowthResult.empty(f'War Declaration: {target.name} has no one left to fight')
        enemy = view.pick_by_connection_weight(rivals)
        rel = Relationship('at_war_with', target.id, enemy.id, strength=0.6)
        return GrowthResult([], [rel], f'{target.name} declares war on {enemy.name}')


def template_registry(templates):
    """Lookup table by id; ids must be unique."""
    table = {}
    for t in templates:
        if t.id in table:
            raise ValueError(f'duplicate template id: {t.id}')
        table[t.id] = t
    return table
