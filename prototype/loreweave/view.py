"""GraphView: the read-only façade templates see."""
from .config import RELATIONSHIP_COOLDOWN
from .selection import (
    TargetSelector, SelectionBias, pick_random, pick_multiple, weighted_random,
    connection_weight,
)


class GraphView:
    """Queries and target selection over a WorldGraph. Templates get this instead
    of the graph and hand back draft fragments; they never mutate directly."""

    def __init__(self, graph, selector=None):
        self.graph = graph
        self.selector = selector if selector is not None else TargetSelector()

    # ── Read-only state ──

    @property
    def tick(self):
        return self.graph.tick

    @property
    def current_era(self):
        return self.graph.current_era

    @property
    def config(self):
        return self.graph.config

    @property
    def rng(self):
        return self.graph.rng

    def get_pressure(self, name):
        return self.graph.get_pressure(name)

    def get_all_pressures(self):
        return dict(self.graph.pressures)

    # ── Entities ──

    def get_entity(self, entity_id):
        return self.graph.get_entity(entity_id)

    def has_entity(self, entity_id):
        return entity_id in self.graph.entities

    def get_entity_count(self, kind=None, subtype=None):
        if kind is None:
            return len(self.graph.entities)
        return len(self.graph.find_entities(kind=kind, subtype=subtype))

    def find_entities(self, **criteria):
        return self.graph.find_entities(**criteria)

    # ── Relationships ──

    def get_all_relationships(self):
        return tuple(self.graph.find_relationships())

    def get_relationships(self, entity_id, kind=None):
        entity = self.graph.get_entity(entity_id)
        if entity is None:
            return []
        return [r for r in entity.links if kind is None or r.kind == kind]

    def has_relationship(self, a, b, kind=None):
        return self.graph.has_relationship(a, b, kind)

    def get_related_entities(self, entity_id, kind=None, direction='both',
                             min_strength=None, max_strength=None, sort_by_strength=False):
        """Neighbours over active links. `direction='src'` follows links where
        entity_id is the source."""
        entity = self.graph.get_entity(entity_id)
        if entity is None:
            return []
        found = []
        for r in entity.links:
            if kind is not None and r.kind != kind:
                continue
            if min_strength is not None and r.strength < min_strength:
                continue
            if max_strength is not None and r.strength > max_strength:
                continue
            if direction in ('src', 'both') and r.src == entity_id:
                other = self.graph.get_entity(r.dst)
            elif direction in ('dst', 'both') and r.dst == entity_id:
                other = self.graph.get_entity(r.src)
            else:
                continue
            if other is not None:
                found.append((other, r.strength))
        if sort_by_strength:
            found.sort(key=lambda es: es[1], reverse=True)
        return [e for e, _ in found]

    def relationship_cooldown(self, entity_id, kind, period=RELATIONSHIP_COOLDOWN):
        """Ticks left before entity_id may form another `kind` link."""
        last = self.graph.cooldowns.get(entity_id, {}).get(kind)
        if last is None:
            return 0
        return max(0, period - (self.graph.tick - last))

    def can_form_relationship(self, entity_id, kind):
        return self.relationship_cooldown(entity_id, kind) == 0

    # ── Domain-agnostic helpers ──

    def get_location(self, entity_id):
        """Where entity_id lives or stands, following its own outgoing link."""
        for r in self.get_relationships(entity_id):
            if r.kind in ('resident_of', 'located_at') and r.src == entity_id:
                return self.graph.get_entity(r.dst)
        return None

    def get_faction_members(self, faction_id):
        return self.get_related_entities(faction_id, 'member_of', direction='dst')

    def get_faction_leader(self, faction_id):
        leaders = self.get_related_entities(faction_id, 'leader_of', direction='dst')
        return leaders[0] if leaders else None

    # ── Target selection ──

    def select_targets(self, kind, count, bias=None):
        return self.selector.select_targets(self, kind, count, bias or SelectionBias())

    def pick_random(self, items):
        return pick_random(items, self.graph.rng)

    def pick_multiple(self, items, n):
        return pick_multiple(items, n, self.graph.rng)

    def weighted_random(self, items, weights):
        return weighted_random(items, weights, self.graph.rng)

    def pick_by_connection_weight(self, items):
        """Weighted pick that favours poorly connected entities."""
        return weighted_random(items, [connection_weight(e) for e in items], self.graph.rng)
