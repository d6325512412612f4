import pytest

from loreweave.model import LocalRef
from loreweave.templates import (
    SettlementFounding, ResidentArrival, FactionFounding, AbilityDiscovery, RuleEnactment,
    WarDeclaration, GrowthTemplate, template_registry, default_namer,
)
from loreweave.view import GraphView

from conftest import add


def test_default_namer_is_seeded(rng):
    import numpy as np
    a = [default_namer(np.random.RandomState(5), 'npc', 'x') for _ in range(3)]
    b = [default_namer(np.random.RandomState(5), 'npc', 'x') for _ in range(3)]
    assert a == b
    assert a[0][0].isupper()


def test_base_template_is_a_no_op(graph):
    result = GrowthTemplate().expand(GraphView(graph))
    assert result.is_empty
    assert 'nothing to do' in result.description


def test_settlement_founding_fragment(graph, village):
    view = GraphView(graph)
    t = SettlementFounding()
    assert t.find_targets(view) == [village['location']]
    frag = t.expand(view, village['location'])
    assert [(e['kind'], e['subtype']) for e in frag.entities] == [('location', 'settlement'),
                                                                   ('npc', 'founder')]
    kinds = [r.kind for r in frag.relationships]
    assert kinds == ['resident_of', 'adjacent_to']
    assert frag.relationships[0].src == LocalRef(1)
    assert frag.relationships[1].dst == village['location'].id
    # nothing is in the graph until commit
    assert len(graph.find_entities(kind='location')) == 1

    new_ids, rels = graph.commit(frag)
    settlement, founder = (graph.get_entity(i) for i in new_ids)
    assert view.get_location(founder.id) is settlement
    assert graph.has_relationship(settlement.id, village['location'].id, 'adjacent_to')
    assert founder.culture == village['location'].culture


def test_resident_arrival_rejects_stale_target(graph, village):
    view = GraphView(graph)
    t = ResidentArrival()
    loc = village['location']
    graph.update_entity(loc.id, status='historical')
    assert not t.can_apply(view)
    assert t.expand(view, loc).is_empty


def test_resident_arrival_produces_configured_subtypes(graph, village):
    t = ResidentArrival(subtypes=('farmer',))
    assert t.produces == (('npc', 'farmer'),)
    frag = t.expand(GraphView(graph), village['location'])
    assert 1 <= len(frag.entities) <= 3
    assert {e['subtype'] for e in frag.entities} == {'farmer'}
    assert all(r.dst == village['location'].id for r in frag.relationships)


def test_faction_founding_targets_homed_non_leaders(graph, village):
    view = GraphView(graph)
    add(graph, 'npc', 'warrior', 'Homeless Hal')
    t = FactionFounding()
    assert t.find_targets(view) == [village['mystic']]
    frag = t.expand(view, village['mystic'])
    assert frag.entities[0]['kind'] == 'faction'
    assert {r.kind for r in frag.relationships} == {'leader_of', 'member_of', 'controls'}


def test_ability_discovery_fragment(graph, village):
    view = GraphView(graph)
    t = AbilityDiscovery(subtypes=('magic',))
    assert t.find_targets(view)[0] is village['mystic']
    add(graph, 'abilities', 'magic', 'Old Flame')
    frag = t.expand(view, village['mystic'])
    kinds = {r.kind: r for r in frag.relationships}
    assert set(kinds) == {'practitioner_of', 'manifests_at'}
    assert kinds['practitioner_of'].src == village['mystic'].id
    assert kinds['manifests_at'].dst == village['location'].id


def test_ability_discovery_skips_dead_mystics(graph):
    view = GraphView(graph)
    for _ in range(6):
        ghost = add(graph, 'npc', 'mystic')
        graph.update_entity(ghost.id, status='dead')
    living = add(graph, 'npc', 'merchant', 'Tam Rook')
    t = AbilityDiscovery()
    assert t.find_targets(view) == [living]
    assert t.can_apply(view)


def test_rule_enactment_applies_in_controlled_territory(graph, village):
    frag = RuleEnactment().expand(GraphView(graph), village['faction'])
    targets = {r.kind: r.dst for r in frag.relationships}
    assert targets['applies_in'] == village['location'].id
    assert frag.relationships[0].kind == 'weaponized_by'


def test_war_declaration(graph, village):
    view = GraphView(graph)
    t = WarDeclaration()
    assert not t.can_apply(view)
    assert t.expand(view, village['faction']).is_empty
    rival = add(graph, 'faction', 'political', 'House Grey')
    assert t.can_apply(view)
    frag = t.expand(view, village['faction'])
    assert frag.entities == []
    assert (frag.relationships[0].src, frag.relationships[0].dst) == (village['faction'].id,
                                                                       rival.id)


def test_war_declaration_skips_allies(graph, village):
    rival = add(graph, 'faction', 'political', 'House Grey')
    graph.add_relationship('allied_with', village['faction'].id, rival.id)
    assert WarDeclaration().expand(GraphView(graph), village['faction']).is_empty


def test_template_registry():
    table = template_registry([SettlementFounding(), WarDeclaration()])
    assert set(table) == {'settlement_founding', 'war_declaration'}
    with pytest.raises(ValueError):
        template_registry([WarDeclaration(), WarDeclaration()])
