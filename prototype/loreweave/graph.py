"""WorldGraph store: entities, relationships, pressures, cooldowns, history."""
import logging
import re
from collections import deque

import numpy as np
import networkx as nx

from .config import (
    MAX_TAGS, NAME_TAG_PREFIX, PROMINENCE_LEVELS, PROMINENCE_VALUE,
    STATUS_ACTIVE, STATUS_HISTORICAL, STATUS_CURRENT, STATUS_FUTURE,
    TERMINAL_STATUSES, DEFAULT_STRENGTH, RELATIONSHIP_COOLDOWN,
    LINEAGE_DISTANCE_RANGES, CONFLICT_KINDS, SPATIAL_KINDS, STRUCTURAL_KINDS,
    PRESSURE_MIN, PRESSURE_MAX, GROWTH_RATE_WINDOW,
)
from .model import Entity, Relationship, LocalRef, HistoryEvent

logger = logging.getLogger(__name__)


# ── Small pure helpers ──

def slugify_name(name):
    slug = re.sub(r'[^a-z0-9]+', '-', name.strip().lower()).strip('-')
    return slug or 'unknown'


def normalize_tags(tags, name=None):
    """Dedupe, keep exactly one name tag (first slot), cap at MAX_TAGS."""
    out = []
    for t in tags or []:
        if t.startswith(NAME_TAG_PREFIX) or t in out:
            continue
        out.append(t)
    if name is not None:
        out.insert(0, NAME_TAG_PREFIX + slugify_name(name))
    return out[:MAX_TAGS]


def prominence_value(prominence):
    return PROMINENCE_VALUE.get(prominence, 0)


def adjust_prominence(current, delta):
    idx = PROMINENCE_VALUE.get(current, 0) + delta
    return PROMINENCE_LEVELS[int(np.clip(idx, 0, len(PROMINENCE_LEVELS) - 1))]


def relationship_category(kind):
    if kind in CONFLICT_KINDS:
        return 'conflict'
    if kind in SPATIAL_KINDS:
        return 'spatial'
    if kind in STRUCTURAL_KINDS:
        return 'structural'
    return 'social'


class WorldGraph:
    """The single mutable aggregate. Owns its own id counter and random source,
    so independent instances never share state."""

    def __init__(self, config=None, seed=42, rng=None):
        self.config = config
        self.rng = rng if rng is not None else np.random.RandomState(seed)
        self.entities = {}
        self.relationships = []
        self.tick = 0
        self.current_era = None
        self.pressures = {}
        self.cooldowns = {}             # entity id → relationship kind → tick
        self.history = []
        self.growth_rate_window = deque(maxlen=GROWTH_RATE_WINDOW)
        self.terminal_statuses = set(config.terminal_statuses if config is not None
                                     else TERMINAL_STATUSES)
        self._id_counter = 0
        self._active = {}               # (src, dst, kind) → Relationship
        self.redirects = {}             # absorbed original id → meta entity id
        self.budget_remaining = None    # relationships still allowed in the open phase

    # ── Identity ──

    def next_id(self, prefix):
        new_id = f'{prefix}_{self._id_counter}'
        self._id_counter += 1
        return new_id

    # ── Entities ──

    def add_entity(self, kind, subtype, name, **fields):
        """Mint an id and insert a new entity. Returns the Entity."""
        fields.pop('id', None)
        fields.pop('links', None)
        tags = normalize_tags(fields.pop('tags', None), name)
        entity = Entity(id=self.next_id(kind), kind=kind, subtype=subtype, name=name,
                        tags=tags, created_at=self.tick, updated_at=self.tick, **fields)
        self.entities[entity.id] = entity
        return entity

    def load_entity(self, entity):
        """Insert an entity that already carries an id (seed data)."""
        if entity.id in self.entities:
            raise ValueError(f'duplicate entity id: {entity.id}')
        entity.tags = normalize_tags(entity.tags, entity.name)
        self.entities[entity.id] = entity
        return entity

    def get_entity(self, entity_id):
        return self.entities.get(entity_id)

    def find_entities(self, kind=None, subtype=None, status=None, prominence=None,
                      culture=None, tag=None, exclude=None):
        out = []
        for e in self.entities.values():
            if kind is not None and e.kind != kind:
                continue
            if subtype is not None and e.subtype != subtype:
                continue
            if status is not None and e.status != status:
                continue
            if prominence is not None and e.prominence != prominence:
                continue
            if culture is not None and e.culture != culture:
                continue
            if tag is not None and tag not in e.tags:
                continue
            if exclude and e.id in exclude:
                continue
            out.append(e)
        return out

    def is_terminal(self, entity):
        return entity.status in self.terminal_statuses

    def update_entity(self, entity_id, **changes):
        """Apply field changes. A terminal status is never overwritten."""
        entity = self.entities.get(entity_id)
        if entity is None:
            return False
        if 'status' in changes and self.is_terminal(entity) \
                and changes['status'] != entity.status:
            logger.debug('refusing status change on terminal entity %s', entity_id)
            changes = {k: v for k, v in changes.items() if k != 'status'}
        for k, v in changes.items():
            if k in ('id', 'links'):
                continue
            if k == 'tags':
                v = normalize_tags(v, entity.name)
            setattr(entity, k, v)
        if 'name' in changes:
            entity.tags = normalize_tags(entity.tags, entity.name)
        entity.updated_at = self.tick
        return True

    # ── Relationships ──

    def find_relationships(self, kind=None, src=None, dst=None, category=None,
                           min_strength=None, include_historical=False):
        out = []
        for r in self.relationships:
            if not include_historical and not r.is_active:
                continue
            if kind is not None and r.kind != kind:
                continue
            if src is not None and r.src != src:
                continue
            if dst is not None and r.dst != dst:
                continue
            if category is not None and relationship_category(r.kind) != category:
                continue
            if min_strength is not None and r.strength < min_strength:
                continue
            out.append(r)
        return out

    def get_entity_relationships(self, entity_id, direction='both', include_historical=False):
        out = []
        for r in self.relationships:
            if not include_historical and not r.is_active:
                continue
            if direction in ('src', 'both') and r.src == entity_id:
                out.append(r)
            elif direction in ('dst', 'both') and r.dst == entity_id:
                out.append(r)
        return out

    def get_relationship(self, src, dst, kind):
        return self._active.get((src, dst, kind))

    def has_relationship(self, a, b, kind=None):
        """Active link between a and b in either direction."""
        entity = self.entities.get(a)
        if entity is None:
            return False
        for r in entity.links:
            if kind is not None and r.kind != kind:
                continue
            if (r.src == a and r.dst == b) or (r.src == b and r.dst == a):
                return True
        return False

    def add_relationship(self, kind, src, dst, strength=None, distance=None,
                         catalyzed_by=None):
        """Create an active relationship. Returns None when it would be a duplicate,
        a self-loop, dangling, or carry an out-of-range lineage distance.
        Endpoints absorbed into a meta entity are redirected to it."""
        src = self.resolve(src)
        dst = self.resolve(dst)
        if src == dst or src not in self.entities or dst not in self.entities:
            return None
        if (src, dst, kind) in self._active:
            return None
        if self.budget_remaining is not None and self.budget_remaining <= 0:
            return None

        if kind in LINEAGE_DISTANCE_RANGES:
            lo, hi = LINEAGE_DISTANCE_RANGES[kind]
            if distance is None:
                distance = float(self.rng.uniform(lo, hi))
            elif not lo <= distance <= hi:
                logger.debug('distance %.3f outside %s range [%s, %s]', distance, kind, lo, hi)
                return None
        else:
            distance = None

        rel = Relationship(kind=kind, src=src, dst=dst,
                           strength=DEFAULT_STRENGTH if strength is None
                           else float(np.clip(strength, 0.0, 1.0)),
                           distance=distance, catalyzed_by=catalyzed_by,
                           created_at=self.tick)
        if self.budget_remaining is not None:
            self.budget_remaining -= 1
        self.relationships.append(rel)
        self._active[rel.key] = rel
        for end in (src, dst):
            e = self.entities[end]
            e.links.append(rel)
            e.updated_at = self.tick
        return rel

    def resolve(self, entity_id):
        seen = set()
        while entity_id in self.redirects and entity_id not in seen:
            seen.add(entity_id)
            entity_id = self.redirects[entity_id]
        return entity_id

    def archive_relationship(self, src, dst, kind):
        """Mark historical; the record stays in the relationship list."""
        rel = self._active.pop((src, dst, kind), None)
        if rel is None:
            return False
        rel.status = STATUS_HISTORICAL
        rel.archived_at = self.tick
        for end in (src, dst):
            e = self.entities.get(end)
            if e is not None and rel in e.links:
                e.links.remove(rel)
        return True

    def modify_relationship_strength(self, src, dst, kind, delta):
        rel = self._active.get((src, dst, kind))
        if rel is None:
            return False
        rel.strength = float(np.clip(rel.strength + delta, 0.0, 1.0))
        for end in (src, dst):
            self.entities[end].updated_at = self.tick
        return True

    # ── Relationship budget ──

    def open_budget(self, n):
        """Cap relationship creation until close_budget(); extra adds are dropped."""
        self.budget_remaining = n

    def close_budget(self):
        self.budget_remaining = None

    # ── Cooldowns ──

    def can_form_relationship(self, entity_id, kind, cooldown=RELATIONSHIP_COOLDOWN):
        last = self.cooldowns.get(entity_id, {}).get(kind)
        return last is None or self.tick - last >= cooldown

    def record_relationship_formation(self, entity_id, kind):
        self.cooldowns.setdefault(entity_id, {})[kind] = self.tick

    # ── Two-phase fragment commit ──

    def commit(self, fragment, relationship_budget=None):
        """Merge a template's draft fragment.

        Phase 1 checks every LocalRef against the draft entity list; phase 2 mints
        ids in entity order and rewrites references. Relationships past the budget
        are dropped, never rolled back.
        Returns (new_ids, created_relationships)."""
        n = len(fragment.entities)
        for rel in fragment.relationships:
            for end in (rel.src, rel.dst):
                if isinstance(end, LocalRef) and not 0 <= end.index < n:
                    raise KeyError(f'{end} does not name a draft entity (have {n})')

        new_ids = []
        for fields in fragment.entities:
            fields = dict(fields)
            kind = fields.pop('kind')
            subtype = fields.pop('subtype', kind)
            name = fields.pop('name', None) or f'{subtype} {self._id_counter}'
            new_ids.append(self.add_entity(kind, subtype, name, **fields).id)

        def resolve(end):
            return new_ids[end.index] if isinstance(end, LocalRef) else end

        created = []
        for rel in fragment.relationships:
            if relationship_budget is not None and len(created) >= relationship_budget:
                break
            made = self.add_relationship(rel.kind, resolve(rel.src), resolve(rel.dst),
                                         strength=rel.strength, distance=rel.distance,
                                         catalyzed_by=rel.catalyzed_by)
            if made is not None:
                created.append(made)
        return new_ids, created

    # ── Pressures ──

    def get_pressure(self, name):
        return self.pressures.get(name, 0.0)

    def set_pressure(self, name, value):
        self.pressures[name] = float(np.clip(value, PRESSURE_MIN, PRESSURE_MAX))

    def change_pressure(self, name, delta):
        self.set_pressure(name, self.get_pressure(name) + delta)

    # ── Eras ──

    def era_entities(self, status=None):
        return self.find_entities(kind='era', status=status)

    # ── History ──

    def record(self, type, description, entities_created=(), relationships_created=(),
               entities_modified=()):
        event = HistoryEvent(
            tick=self.tick,
            era=self.current_era.id if self.current_era is not None else '',
            type=type, description=description,
            entities_created=list(entities_created),
            relationships_created=[{'kind': r.kind, 'src': r.src, 'dst': r.dst}
                                   for r in relationships_created],
            entities_modified=list(entities_modified),
        )
        self.history.append(event)
        return event

    def record_growth_rate(self, n_relationships):
        self.growth_rate_window.append(n_relationships)
        return float(np.mean(self.growth_rate_window))

    # ── Export ──

    def to_networkx(self, include_historical=False):
        G = nx.MultiDiGraph()
        for e in self.entities.values():
            G.add_node(e.id, kind=e.kind, subtype=e.subtype, status=e.status,
                       prominence=e.prominence, name=e.name)
        for r in self.relationships:
            if include_historical or r.is_active:
                G.add_edge(r.src, r.dst, key=r.kind, kind=r.kind, strength=r.strength)
        return G

    def to_dict(self):
        return {
            'tick': self.tick,
            'era': self.current_era.id if self.current_era is not None else None,
            'pressures': dict(self.pressures),
            'entities': [e.to_dict() for e in self.entities.values()],
            'relationships': [r.to_dict() for r in self.relationships],
            'history': [h.to_dict() for h in self.history],
            'redirects': dict(self.redirects),
        }


def build_world_graph(config, seed=42, seed_fragment=None):
    """Seed a WorldGraph: one era entity per configured era (first current,
    rest future), pressures at their initial values, then the seed fragment
    committed the same way template output is."""
    G = WorldGraph(config=config, seed=seed)

    # ── Era entities ──
    for i, era in enumerate(config.eras):
        e = G.add_entity('era', era.id, era.name, description=era.description,
                         status=STATUS_CURRENT if i == 0 else STATUS_FUTURE,
                         prominence='mythic')
        if i == 0:
            e.temporal = {'start_tick': 0, 'end_tick': None}
    if config.eras:
        G.current_era = config.eras[0]

    # ── Pressures ──
    for p in config.pressures:
        G.set_pressure(p.id, p.value)

    if seed_fragment is not None:
        G.commit(seed_fragment)

    G.record('special', f'World initialized: {len(G.entities)} entities, '
                        f'{len(G.find_relationships())} relationships')
    return G
