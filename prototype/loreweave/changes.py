"""Entity snapshots and per-kind change detection for the history log."""
from dataclasses import dataclass, field
from typing import Optional, Set

from .config import RESIDENT_CHANGE_THRESHOLD, PRACTITIONER_CHANGE_THRESHOLD
from .graph import prominence_value

CONTROL_KINDS = ('controls', 'stronghold_of')
ENFORCE_KINDS = ('weaponized_by', 'kept_secret_by')


@dataclass
class EntitySnapshot:
    tick: int
    status: str
    prominence: str
    relationship_keys: Set[tuple] = field(default_factory=set)
    # location
    resident_count: int = 0
    controller_id: Optional[str] = None
    # faction
    leader_id: Optional[str] = None
    territory_count: int = 0
    ally_ids: Set[str] = field(default_factory=set)
    enemy_ids: Set[str] = field(default_factory=set)
    # rules
    enforcer_ids: Set[str] = field(default_factory=set)
    # abilities
    practitioner_count: int = 0
    location_ids: Set[str] = field(default_factory=set)
    # npc
    leadership_ids: Set[str] = field(default_factory=set)


def _rels(graph, kinds, src=None, dst=None):
    if isinstance(kinds, str):
        kinds = (kinds,)
    return [r for r in graph.find_relationships(src=src, dst=dst) if r.kind in kinds]


def _first_src(graph, kinds, dst):
    found = _rels(graph, kinds, dst=dst)
    return found[0].src if found else None


def _name(graph, entity_id):
    e = graph.get_entity(entity_id) if entity_id is not None else None
    return e.name if e is not None else 'none'


def capture_snapshot(entity, graph):
    snap = EntitySnapshot(tick=graph.tick, status=entity.status, prominence=entity.prominence,
                          relationship_keys={r.key for r in entity.links})
    eid = entity.id
    if entity.kind == 'location':
        snap.resident_count = len(_rels(graph, 'resident_of', dst=eid))
        snap.controller_id = _first_src(graph, CONTROL_KINDS, eid)
    elif entity.kind == 'faction':
        snap.leader_id = _first_src(graph, 'leader_of', eid)
        snap.territory_count = len(_rels(graph, CONTROL_KINDS, src=eid))
        snap.ally_ids = {r.dst for r in _rels(graph, 'allied_with', src=eid)}
        snap.enemy_ids = {r.dst for r in _rels(graph, 'at_war_with', src=eid)}
    elif entity.kind == 'rules':
        snap.enforcer_ids = {r.src for r in _rels(graph, ENFORCE_KINDS, dst=eid)}
    elif entity.kind == 'abilities':
        snap.practitioner_count = len(_rels(graph, 'practitioner_of', dst=eid))
        snap.location_ids = {r.dst for r in _rels(graph, 'manifests_at', src=eid)}
    elif entity.kind == 'npc':
        snap.leadership_ids = {r.dst for r in entity.links
                               if r.kind == 'leader_of' and r.src == eid}
    return snap


def _signed(n):
    return f'+{n}' if n > 0 else str(n)


def _status_and_prominence(entity, snap, changes):
    if entity.status != snap.status:
        changes.append(f'status: {snap.status} → {entity.status}')
    if entity.prominence != snap.prominence:
        changes.append(f'prominence: {snap.prominence} → {entity.prominence}')


# ── Per-kind detectors ──

def detect_location_changes(entity, snap, graph):
    changes = []
    delta = len(_rels(graph, 'resident_of', dst=entity.id)) - snap.resident_count
    if abs(delta) >= RESIDENT_CHANGE_THRESHOLD:
        changes.append(f'population: {_signed(delta)} residents')
    controller = _first_src(graph, CONTROL_KINDS, entity.id)
    if controller != snap.controller_id:
        changes.append(f'control: now controlled by {_name(graph, controller)}')
    if entity.prominence != snap.prominence:
        changes.append(f'prominence: {snap.prominence} → {entity.prominence}')
    if entity.status != snap.status:
        changes.append(f'status: {snap.status} → {entity.status}')
    return changes


def detect_faction_changes(entity, snap, graph):
    changes = []
    eid = entity.id
    leader = _first_src(graph, 'leader_of', eid)
    if leader != snap.leader_id:
        changes.append(f'leadership: {_name(graph, leader)} took power')
    delta = len(_rels(graph, CONTROL_KINDS, src=eid)) - snap.territory_count
    if delta > 0:
        changes.append(f'territory: gained {delta} locations')
    elif delta < 0:
        changes.append(f'territory: lost {-delta} locations')
    for ally in sorted({r.dst for r in _rels(graph, 'allied_with', src=eid)} - snap.ally_ids):
        changes.append(f'alliance: allied with {_name(graph, ally)}')
    for enemy in sorted({r.dst for r in _rels(graph, 'at_war_with', src=eid)} - snap.enemy_ids):
        changes.append(f'war: declared war on {_name(graph, enemy)}')
    _status_and_prominence(entity, snap, changes)
    return changes


def detect_rule_changes(entity, snap, graph):
    """Only recognized-or-better rules are worth reporting."""
    if prominence_value(entity.prominence) < prominence_value('recognized'):
        return []
    changes = []
    if entity.status != snap.status:
        changes.append(f'status: {snap.status} → {entity.status}')
    enforcers = {r.src for r in _rels(graph, ENFORCE_KINDS, dst=entity.id)}
    for fid in sorted(enforcers - snap.enforcer_ids):
        changes.append(f'enforcement: {_name(graph, fid)} began enforcing this')
    if entity.prominence != snap.prominence:
        changes.append(f'prominence: {snap.prominence} → {entity.prominence}')
    return changes


def detect_ability_changes(entity, snap, graph):
    changes = []
    delta = len(_rels(graph, 'practitioner_of', dst=entity.id)) - snap.practitioner_count
    if abs(delta) >= PRACTITIONER_CHANGE_THRESHOLD:
        changes.append(f'practitioners: {_signed(delta)}')
    places = {r.dst for r in _rels(graph, 'manifests_at', src=entity.id)}
    for loc in sorted(places - snap.location_ids):
        changes.append(f'spread: now manifests at {_name(graph, loc)}')
    if entity.prominence != snap.prominence \
            and prominence_value(entity.prominence) >= prominence_value('recognized'):
        changes.append(f'prominence: {snap.prominence} → {entity.prominence}')
    return changes


def detect_npc_changes(entity, snap, graph):
    """Only renowned-or-better npcs are worth reporting."""
    if prominence_value(entity.prominence) < prominence_value('renowned'):
        return []
    changes = []
    led = {r.dst for r in entity.links if r.kind == 'leader_of' and r.src == entity.id}
    for fid in sorted(led - snap.leadership_ids):
        changes.append(f'leadership: became leader of {_name(graph, fid)}')
    if entity.prominence != snap.prominence:
        changes.append(f'prominence: {snap.prominence} → {entity.prominence}')
    return changes


DETECTORS = {
    'location': detect_location_changes,
    'faction': detect_faction_changes,
    'rules': detect_rule_changes,
    'abilities': detect_ability_changes,
    'npc': detect_npc_changes,
}


def detect_changes(entity, snap, graph):
    detector = DETECTORS.get(entity.kind)
    return detector(entity, snap, graph) if detector is not None else []


class ChangeTracker:
    """Keeps one snapshot per entity and reports what moved since it was taken."""

    def __init__(self):
        self.snapshots = {}

    def capture(self, graph, entity_ids=None):
        ids = graph.entities.keys() if entity_ids is None else entity_ids
        for eid in ids:
            entity = graph.get_entity(eid)
            if entity is not None:
                self.snapshots[eid] = capture_snapshot(entity, graph)

    def diff(self, graph):
        """entity id -> list of change strings, for entities with any change."""
        out = {}
        for eid, snap in self.snapshots.items():
            entity = graph.get_entity(eid)
            if entity is None:
                continue
            changes = detect_changes(entity, snap, graph)
            if changes:
                out[eid] = changes
        return out

    def reset(self):
        self.snapshots.clear()
