import pytest

from loreweave.model import Catalyst, ActionDomain, ActionSpec, ActionOutcome, Relationship
from loreweave.systems import (
    SimulationSystem, RelationshipDecay, AllianceFormation, ProminenceEvolution, EraTransition,
    OccurrenceCreation, UniversalCatalyst, link_prominent_entities, get_influence, attempt_chance,
    system_registry,
)

from conftest import add, link


def apply_result(graph, result):
    for name, delta in result.pressure_changes.items():
        graph.change_pressure(name, delta)


# ── Relationship decay ──

class TestRelationshipDecay:

    def test_young_relationships_are_left_alone(self, graph):
        a, b = add(graph, 'npc'), add(graph, 'npc')
        rel = link(graph, 'friend_of', a, b)
        graph.tick = 3
        RelationshipDecay().apply(graph)
        assert rel.strength == 0.5

    def test_social_decay_rate(self, graph):
        a, b = add(graph, 'npc'), add(graph, 'npc')
        rel = link(graph, 'friend_of', a, b)
        graph.tick = 10
        result = RelationshipDecay().apply(graph)
        assert rel.strength == pytest.approx(0.47)
        assert result.description == '1 relationships weakened'

    def test_co_location_and_shared_faction_slow_decay(self, graph, village):
        a, b = village['leader'], village['mystic']
        link(graph, 'member_of', b, village['faction'])
        rel = link(graph, 'friend_of', a, b)
        graph.tick = 10
        amount = RelationshipDecay().decay_amount(graph, rel)
        assert amount == pytest.approx(0.03 * 0.5 * 0.7)

    def test_structural_never_decays_and_floor_holds(self, graph):
        a, b = add(graph, 'npc'), add(graph, 'faction')
        part = link(graph, 'part_of', a, b)
        weak = link(graph, 'at_war_with', b, a, strength=0.105)
        graph.tick = 100
        RelationshipDecay().apply(graph, modifier=2.0)
        assert part.strength == 0.5
        assert weak.strength == 0.1

    def test_zero_modifier_suspends(self, graph):
        assert 'suspended' in RelationshipDecay().apply(graph, 0).description


# ── Alliance formation ──

@pytest.fixture
def two_against_one(graph):
    a = add(graph, 'faction', 'political', 'House Ash')
    b = add(graph, 'faction', 'political', 'House Birch')
    c = add(graph, 'faction', 'political', 'House Cinder')
    link(graph, 'at_war_with', a, c, strength=0.6)
    link(graph, 'at_war_with', b, c, strength=0.6)
    graph.set_pressure('stability', 50)
    return a, b, c


class TestAllianceFormation:

    def test_common_enemy_alliance_forms_once(self, graph, two_against_one):
        a, b, c = two_against_one
        system = AllianceFormation()
        formed = None
        for tick in range(100):
            graph.tick = tick
            result = system.apply(graph, 1.0)
            apply_result(graph, result)
            if result.relationships_added:
                formed = result
                break
        assert formed is not None
        assert len(formed.relationships_added) == 1
        assert len(graph.find_relationships(kind='allied_with')) == 1
        assert graph.has_relationship(a.id, b.id, 'allied_with')
        assert graph.get_pressure('stability') == 55

        graph.tick += 50
        again = system.apply(graph, 1.0)
        assert again.relationships_added == []
        assert not again.changed
        assert len(graph.find_relationships(kind='allied_with')) == 1

    def test_weak_wars_do_not_count(self, graph, two_against_one):
        a, b, c = two_against_one
        graph.modify_relationship_strength(a.id, c.id, 'at_war_with', -0.5)
        assert AllianceFormation().enemies(graph, a.id) == set()
        assert AllianceFormation().enemies(graph, c.id) == {b.id}

    def test_zero_modifier(self, graph, two_against_one):
        result = AllianceFormation().apply(graph, 0.0)
        assert result.relationships_added == []


# ── Prominence evolution ──

class TestProminenceEvolution:

    def test_connected_entities_rise(self, graph):
        hub = add(graph, 'location', 'settlement', 'Crossroads')
        for _ in range(10):
            link(graph, 'adjacent_to', hub, add(graph, 'location'))
        result = ProminenceEvolution(gain_chance=1.0, decay_chance=0.0).apply(graph)
        assert result.entities_modified == [{'id': hub.id, 'changes': {'prominence': 'recognized'}}]
        assert result.description == 'Prominence shifts for 1 entities'

    def test_gain_threshold_depends_on_kind(self, graph):
        spell = add(graph, 'abilities', 'magic', 'Tidecall')
        for _ in range(6):
            link(graph, 'practitioner_of', add(graph, 'npc'), spell)
        system = ProminenceEvolution(gain_chance=1.0, decay_chance=0.0)
        assert system.shift(graph, spell) == 1
        npc = graph.find_entities(kind='npc')[0]
        assert system.shift(graph, npc) == 0

    def test_isolated_entities_fade(self, graph):
        hero = add(graph, 'npc', 'warrior', 'Old Bran', prominence='renowned')
        nobody = add(graph, 'npc', 'warrior', 'Nobody', prominence='forgotten')
        result = ProminenceEvolution(gain_chance=0.0, decay_chance=1.0).apply(graph)
        assert result.entities_modified == [{'id': hero.id, 'changes': {'prominence': 'recognized'}}]
        assert nobody.id not in [m['id'] for m in result.entities_modified]

    def test_catalyzed_events_count_double(self, graph):
        agent = add(graph, 'npc', 'mystic', 'Seren',
                    catalyst=Catalyst(catalyzed_events=[{'action': 'x'}] * 6))
        assert ProminenceEvolution().connection_score(agent) == 12
        assert ProminenceEvolution(gain_chance=1.0).shift(graph, agent) == 1

    def test_dead_and_unconfigured_kinds_are_left_alone(self, graph):
        ghost = add(graph, 'npc', 'warrior', 'Ghost', prominence='renowned')
        graph.update_entity(ghost.id, status='dead')
        add(graph, 'occurrence', 'war', 'The Long War', prominence='renowned')
        result = ProminenceEvolution(gain_chance=0.0, decay_chance=1.0).apply(graph)
        assert not result.changed
        assert result.description == 'Prominence unchanged'
        assert all(e.prominence == 'mythic' for e in graph.era_entities())

    def test_mythic_is_the_ceiling(self, graph):
        legend = add(graph, 'abilities', 'magic', 'Worldsong', prominence='mythic')
        for _ in range(15):
            link(graph, 'practitioner_of', add(graph, 'npc'), legend)
        result = ProminenceEvolution(gain_chance=1.0, decay_chance=0.0).apply(graph)
        assert legend.id not in [m['id'] for m in result.entities_modified]


# ── Era transition ──

class TestEraTransition:

    def test_promotes_first_future_era_when_none_is_current(self, graph):
        dawn = graph.era_entities()[0]
        graph.update_entity(dawn.id, status='future')
        graph.current_era = None
        EraTransition().apply(graph)
        current = graph.era_entities('current')
        assert current == [dawn]
        assert graph.current_era.id == 'dawn'
        assert len(graph.era_entities('future')) == 2

    def test_extra_current_eras_are_demoted(self, graph):
        noon = graph.era_entities()[1]
        graph.update_entity(noon.id, status='current')
        EraTransition().apply(graph)
        assert len(graph.era_entities('current')) == 1
        assert noon.status == 'historical'

    def test_transition_links_prominent_entities(self, graph):
        hero = add(graph, 'npc', 'founder', 'Hero', prominence='renowned')
        add(graph, 'npc', 'merchant', 'Nobody')
        system = EraTransition(check=lambda g, era: True)
        graph.tick = 5
        system.apply(graph)
        assert graph.current_era.id == 'dawn'      # cooldown not over

        graph.tick = 12
        result = system.apply(graph)
        dawn, noon, _ = graph.era_entities()
        assert dawn.status == 'historical'
        assert dawn.temporal == {'start_tick': 0, 'end_tick': 12}
        assert noon.status == 'current'
        assert noon.temporal['start_tick'] == 12
        assert graph.current_era.id == 'noon'
        assert [(r.src, r.dst) for r in result.relationships_added] == [(hero.id, dawn.id)]
        assert graph.history[-1].description == 'The Dawn ends; High Noon begins'

    def test_default_check_uses_min_era_length(self, graph):
        system = EraTransition(min_era_length=30)
        graph.tick = 29
        system.apply(graph)
        assert graph.current_era.id == 'dawn'
        graph.tick = 30
        system.apply(graph)
        assert graph.current_era.id == 'noon'

    def test_final_era_endures(self, graph):
        dawn, noon, dusk = graph.era_entities()
        graph.update_entity(dawn.id, status='historical')
        graph.update_entity(noon.id, status='historical')
        graph.update_entity(dusk.id, status='current', temporal={'start_tick': 0})
        graph.tick = 200
        result = EraTransition().apply(graph)
        assert result.description == 'The Dusk endures (final era)'
        assert dusk.status == 'current'

    def test_link_prominent_entities_fallback(self, graph):
        dusk = graph.era_entities()[2]
        old = add(graph, 'npc', name='Elder', prominence='mythic')
        graph.tick = 100
        assert link_prominent_entities(graph, dusk, start=50) == []
        links = link_prominent_entities(graph, dusk, start=50, fallback=True)
        assert [r.src for r in links] == [old.id]


# ── Occurrences ──

class TestOccurrenceCreation:

    def test_war_occurrence_from_war_cluster(self, graph, two_against_one):
        a, b, c = two_against_one
        loc = add(graph, 'location')
        link(graph, 'controls', a, loc)
        link(graph, 'controls', c, loc)
        result = OccurrenceCreation().apply(graph)
        wars = graph.find_entities(kind='occurrence', subtype='war')
        assert len(wars) == 1
        war = wars[0]
        assert war.name == 'The House Ash-House Birch Conflict'
        assert war.catalyst.can_act
        participants = {r.src for r in graph.find_relationships(kind='participant_in')}
        assert participants == {a.id, b.id, c.id}
        assert graph.get_relationship(war.id, a.id, 'triggered_by') is not None
        assert graph.get_relationship(war.id, loc.id, 'epicenter_of') is not None
        assert 'Major occurrences' in result.description

        # a second pass only adds newcomers to the existing war
        d = add(graph, 'faction', 'political', 'House Dusk')
        link(graph, 'at_war_with', d, a)
        OccurrenceCreation().apply(graph)
        assert len(graph.find_entities(kind='occurrence', subtype='war')) == 1
        assert graph.get_relationship(d.id, war.id, 'participant_in') is not None

    def test_single_war_is_below_threshold(self, graph):
        a, b = add(graph, 'faction'), add(graph, 'faction')
        link(graph, 'at_war_with', a, b)
        result = OccurrenceCreation().apply(graph)
        assert result.description == 'No major occurrences this cycle'

    def test_cultural_movement(self, graph):
        rule = add(graph, 'rules', 'edict', 'Edict of Salt')
        factions = [add(graph, 'faction') for _ in range(3)]
        for f in factions:
            link(graph, 'weaponized_by', f, rule)
        OccurrenceCreation().apply(graph)
        movement = graph.find_entities(kind='occurrence', subtype='cultural_movement')
        assert [m.name for m in movement] == ['The Edict of Salt Movement']
        OccurrenceCreation().apply(graph)
        assert len(graph.find_entities(kind='occurrence', subtype='cultural_movement')) == 1

    def test_magical_disaster_needs_fresh_corruption(self, graph):
        loc = add(graph, 'location')
        spells = [add(graph, 'abilities', 'magic') for _ in range(2)]
        for s in spells:
            link(graph, 'corrupted_by', loc, s)
        graph.tick = 1
        OccurrenceCreation().apply(graph)
        assert graph.find_entities(kind='occurrence') == []
        graph.tick = 0
        OccurrenceCreation().apply(graph)
        disaster = graph.find_entities(kind='occurrence', subtype='magical_disaster')[0]
        assert graph.get_relationship(disaster.id, loc.id, 'epicenter_of') is not None


# ── Catalyst ──

def _befriend(agent, graph):
    others = [e for e in graph.find_entities(kind='npc') if e.id != agent.id
              and not graph.has_relationship(agent.id, e.id, 'friend_of')]
    if not others:
        return ActionOutcome(False, description='no one left')
    return ActionOutcome(True, [Relationship('friend_of', agent.id, others[0].id)], 'befriends')


class TestUniversalCatalyst:

    def test_influence_and_attempt_chance(self, graph):
        e = add(graph, 'npc', prominence='renowned', catalyst=Catalyst(influence=0.9))
        assert get_influence(e) == 1.0
        assert attempt_chance(e) == pytest.approx(0.3 * 1.5 * 0.9)
        plain = add(graph, 'npc')
        assert get_influence(plain) == 0.0
        assert attempt_chance(plain) == 0.0

    def test_dormant_without_domains(self, graph):
        result = UniversalCatalyst().apply(graph)
        assert 'dormant' in result.description

    def test_agents_act_and_gain_influence(self, graph):
        domain = ActionDomain('social', [ActionSpec('befriend', _befriend,
                                                    base_success_chance=1.0)])
        agent = add(graph, 'npc', prominence='mythic',
                    catalyst=Catalyst(action_domains=['social'], influence=1.0))
        for _ in range(3):
            add(graph, 'npc')
        system = UniversalCatalyst(domains=[domain])
        added = []
        for tick in range(20):
            graph.tick = tick
            added += system.apply(graph).relationships_added
        assert added
        assert all(r.catalyzed_by == agent.id for r in added)
        assert agent.catalyst.catalyzed_events
        assert agent.catalyst.catalyzed_events[0]['action'] == 'befriend'

    def test_requirements_filter_actions(self, graph):
        domain = ActionDomain('social', [ActionSpec('befriend', _befriend,
                                                    min_prominence='renowned',
                                                    required_pressures={'conflict': 50})])
        agent = add(graph, 'npc', prominence='mythic', catalyst=Catalyst(action_domains=['social']))
        system = UniversalCatalyst(domains=[domain])
        assert system.select_action(graph, agent, [domain]) is None
        graph.set_pressure('conflict', 60)
        assert system.select_action(graph, agent, [domain]).id == 'befriend'


def test_base_system_and_registry():
    assert not SimulationSystem().apply(None).changed
    with pytest.raises(ValueError):
        system_registry([RelationshipDecay(), RelationshipDecay()])
    assert set(system_registry([RelationshipDecay(), EraTransition()])) == {
        'relationship_decay', 'era_transition'}
