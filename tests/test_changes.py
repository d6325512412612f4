import pytest

from loreweave.changes import ChangeTracker, capture_snapshot, detect_changes

from conftest import add, link


@pytest.fixture
def town(graph):
    loc = add(graph, 'location', 'settlement', 'Brackwater')
    residents = [add(graph, 'npc') for _ in range(10)]
    for npc in residents:
        link(graph, 'resident_of', npc, loc)
    return loc, residents


class TestLocationChanges:

    def test_new_settlement_gains_residents(self, graph):
        loc = add(graph, 'location', 'settlement', 'Emptyfield')
        snap = capture_snapshot(loc, graph)
        for _ in range(5):
            link(graph, 'resident_of', add(graph, 'npc'), loc)
        assert detect_changes(loc, snap, graph) == ['population: +5 residents']

    def test_arrivals_are_reported(self, graph, town):
        loc, _ = town
        snap = capture_snapshot(loc, graph)
        assert snap.resident_count == 10
        for _ in range(5):
            link(graph, 'resident_of', add(graph, 'npc'), loc)
        assert detect_changes(loc, snap, graph) == ['population: +5 residents']

    def test_exodus_is_reported(self, graph, town):
        loc, residents = town
        snap = capture_snapshot(loc, graph)
        for npc in residents:
            graph.archive_relationship(npc.id, loc.id, 'resident_of')
        assert detect_changes(loc, snap, graph) == ['population: -10 residents']

    def test_small_change_is_ignored(self, graph, town):
        loc, _ = town
        snap = capture_snapshot(loc, graph)
        for _ in range(2):
            link(graph, 'resident_of', add(graph, 'npc'), loc)
        assert detect_changes(loc, snap, graph) == []

    def test_control_and_prominence(self, graph, town):
        loc, _ = town
        snap = capture_snapshot(loc, graph)
        house = add(graph, 'faction', 'political', 'House Reed')
        link(graph, 'controls', house, loc)
        graph.update_entity(loc.id, prominence='renowned')
        assert detect_changes(loc, snap, graph) == [
            'control: now controlled by House Reed',
            'prominence: marginal → renowned',
        ]


def test_faction_changes(graph, village):
    faction = village['faction']
    snap = capture_snapshot(faction, graph)
    rival = add(graph, 'faction', 'political', 'House Grey')
    friend = add(graph, 'faction', 'political', 'House Lark')
    graph.archive_relationship(village['leader'].id, faction.id, 'leader_of')
    link(graph, 'leader_of', village['mystic'], faction)
    link(graph, 'controls', faction, add(graph, 'location', name='Fenmoor'))
    link(graph, 'allied_with', faction, friend)
    link(graph, 'at_war_with', faction, rival)
    assert detect_changes(faction, snap, graph) == [
        'leadership: Idris Fen took power',
        'territory: gained 1 locations',
        'alliance: allied with House Lark',
        'war: declared war on House Grey',
    ]


def test_faction_loses_territory(graph, village):
    faction = village['faction']
    snap = capture_snapshot(faction, graph)
    graph.archive_relationship(faction.id, village['location'].id, 'controls')
    assert detect_changes(faction, snap, graph) == ['territory: lost 1 locations']


def test_minor_rules_are_not_reported(graph, village):
    rule = add(graph, 'rules', 'edict', 'Edict of Tolls')
    snap = capture_snapshot(rule, graph)
    link(graph, 'weaponized_by', village['faction'], rule)
    assert detect_changes(rule, snap, graph) == []

    graph.update_entity(rule.id, prominence='recognized')
    assert detect_changes(rule, snap, graph) == [
        'enforcement: House Quill began enforcing this',
        'prominence: marginal → recognized',
    ]


def test_ability_spread(graph, village):
    spell = add(graph, 'abilities', 'magic', 'Tidecall')
    snap = capture_snapshot(spell, graph)
    for _ in range(3):
        link(graph, 'practitioner_of', add(graph, 'npc'), spell)
    link(graph, 'manifests_at', spell, village['location'])
    assert detect_changes(spell, snap, graph) == [
        'practitioners: +3',
        'spread: now manifests at Oakhollow',
    ]


def test_only_renowned_npcs_are_reported(graph, village):
    npc = village['mystic']
    snap = capture_snapshot(npc, graph)
    link(graph, 'leader_of', npc, village['faction'])
    assert detect_changes(npc, snap, graph) == []
    graph.update_entity(npc.id, prominence='renowned')
    assert detect_changes(npc, snap, graph) == [
        'leadership: became leader of House Quill',
        'prominence: marginal → renowned',
    ]


def test_unknown_kind_has_no_detector(graph):
    era = graph.era_entities()[0]
    snap = capture_snapshot(era, graph)
    graph.update_entity(era.id, status='historical')
    assert detect_changes(era, snap, graph) == []


def test_change_tracker_diff_and_reset(graph, town):
    loc, _ = town
    tracker = ChangeTracker()
    tracker.capture(graph)
    assert len(tracker.snapshots) == len(graph.entities)
    for _ in range(3):
        link(graph, 'resident_of', add(graph, 'npc'), loc)
    assert tracker.diff(graph) == {loc.id: ['population: +3 residents']}
    tracker.reset()
    assert tracker.diff(graph) == {}
