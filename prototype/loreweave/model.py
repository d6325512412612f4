"""Plain data records shared by the store, templates, systems and validator."""
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import (
    DEFAULT_STRENGTH, STATUS_ACTIVE, ID_PLACEHOLDER_PREFIX,
    SIMULATION_TICKS_PER_GROWTH, TARGET_ENTITIES_PER_KIND,
    MAX_TICKS, MAX_RELATIONSHIPS_PER_TICK, MAX_RELATIONSHIPS_PER_GROWTH_PHASE,
    TERMINAL_STATUSES,
)


class ComponentPurpose(str, Enum):
    ENTITY_CREATION = 'entity_creation'
    RELATIONSHIP_CREATION = 'relationship_creation'
    TAG_PROPAGATION = 'tag_propagation'
    STATE_MODIFICATION = 'state_modification'
    PROMINENCE_EVOLUTION = 'prominence_evolution'
    PRESSURE_ACCUMULATION = 'pressure_accumulation'
    CONSTRAINT_ENFORCEMENT = 'constraint_enforcement'
    PHASE_TRANSITION = 'phase_transition'
    BEHAVIORAL_MODIFIER = 'behavioral_modifier'


# ── Graph records ──

@dataclass
class Catalyst:
    """Agency carried by entities that can act on their own each tick."""
    can_act: bool = True
    action_domains: List[str] = field(default_factory=list)
    influence: float = 0.5                # 0..1
    catalyzed_events: List[dict] = field(default_factory=list)


@dataclass
class Entity:
    id: str
    kind: str
    subtype: str
    name: str
    description: str = ''
    status: str = STATUS_ACTIVE
    prominence: str = 'marginal'
    culture: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    links: List['Relationship'] = field(default_factory=list)   # denormalized cache
    created_at: int = 0
    updated_at: int = 0
    catalyst: Optional[Catalyst] = None
    temporal: Optional[dict] = None       # {'start_tick', 'end_tick'} for eras/occurrences

    def has_tag(self, tag):
        return tag in self.tags

    def to_dict(self):
        d = asdict(self)
        d['links'] = [{'kind': r.kind, 'src': r.src, 'dst': r.dst} for r in self.links]
        return d


@dataclass
class Relationship:
    kind: str
    src: Any                              # entity id, or LocalRef inside a draft fragment
    dst: Any
    strength: float = DEFAULT_STRENGTH
    distance: Optional[float] = None      # lineage kinds only
    status: str = STATUS_ACTIVE
    catalyzed_by: Optional[str] = None
    created_at: Optional[int] = None
    archived_at: Optional[int] = None

    @property
    def key(self):
        return (self.src, self.dst, self.kind)

    @property
    def is_active(self):
        return self.status != 'historical'

    def to_dict(self):
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass(frozen=True)
class LocalRef:
    """Index into the entity list of a draft fragment, resolved at commit."""
    index: int

    def __str__(self):
        return f'{ID_PLACEHOLDER_PREFIX}{self.index}'


def placeholder(i):
    return LocalRef(i)


@dataclass
class HistoryEvent:
    tick: int
    era: str
    type: str                             # growth | simulation | special
    description: str
    entities_created: List[str] = field(default_factory=list)
    relationships_created: List[dict] = field(default_factory=list)
    entities_modified: List[str] = field(default_factory=list)

    def to_dict(self):
        return asdict(self)


# ── Component results ──

@dataclass
class GrowthResult:
    """Draft fragment proposed by a template; nothing here is in the graph yet."""
    entities: List[dict] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    description: str = ''

    @classmethod
    def empty(cls, description):
        return cls(description=description)

    @property
    def is_empty(self):
        return not self.entities and not self.relationships


@dataclass
class SystemResult:
    relationships_added: List[Relationship] = field(default_factory=list)
    entities_modified: List[dict] = field(default_factory=list)   # {'id', 'changes'}
    pressure_changes: Dict[str, float] = field(default_factory=dict)
    description: str = ''

    @classmethod
    def empty(cls, description):
        return cls(description=description)

    @property
    def changed(self):
        return bool(self.relationships_added or self.entities_modified
                    or any(self.pressure_changes.values()))


# ── Contracts (descriptive, never executed) ──

@dataclass
class PressureGate:
    name: str
    threshold: float
    above: bool = True


@dataclass
class EntityCountGate:
    kind: str
    min: int = 0
    max: Optional[int] = None


@dataclass
class EnabledBy:
    pressures: List[PressureGate] = field(default_factory=list)
    entity_counts: List[EntityCountGate] = field(default_factory=list)
    eras: List[str] = field(default_factory=list)


@dataclass
class EntityEffect:
    kind: str
    operation: str                        # create | modify | delete
    count: Tuple[int, int] = (0, 1)
    subtype: Optional[str] = None


@dataclass
class RelationshipEffect:
    kind: str
    operation: str                        # create | delete
    count: Tuple[int, int] = (0, 1)


@dataclass
class PressureEffect:
    name: str
    delta: float = 0.0


@dataclass
class Affects:
    entities: List[EntityEffect] = field(default_factory=list)
    relationships: List[RelationshipEffect] = field(default_factory=list)
    pressures: List[PressureEffect] = field(default_factory=list)


@dataclass
class ComponentContract:
    purpose: ComponentPurpose
    enabled_by: Optional[EnabledBy] = None
    affects: Affects = field(default_factory=Affects)


@dataclass
class PressureFlow:
    """A source or sink reference such as 'template.faction_founding'."""
    component: str
    delta: Optional[float] = None
    formula: Optional[str] = None


@dataclass
class Equilibrium:
    expected_range: Tuple[float, float]
    resting_point: float
    oscillation_period: Optional[int] = None


@dataclass
class PressureContract:
    sources: List[PressureFlow] = field(default_factory=list)
    sinks: List[PressureFlow] = field(default_factory=list)
    affects: List[PressureFlow] = field(default_factory=list)
    equilibrium: Equilibrium = field(default_factory=lambda: Equilibrium((0, 100), 50))


@dataclass
class Pressure:
    id: str
    name: str
    value: float = 0.0
    growth: Optional[Callable] = None    # growth(graph) -> float per update
    decay: float = 0.0
    contract: Optional[PressureContract] = None


@dataclass
class Era:
    id: str
    name: str
    description: str = ''
    template_weights: Dict[str, float] = field(default_factory=dict)
    system_modifiers: Dict[str, float] = field(default_factory=dict)
    pressure_modifiers: Dict[str, float] = field(default_factory=dict)

    def template_weight(self, template_id):
        return self.template_weights.get(template_id, 1.0)

    def system_modifier(self, system_id):
        return self.system_modifiers.get(system_id, 1.0)

    def pressure_modifier(self, pressure_id):
        return self.pressure_modifiers.get(pressure_id, 1.0)


# ── Entity-operator registries ──

@dataclass
class CreatorSpec:
    template_id: str
    primary: bool = True
    target_count: Optional[int] = None   # entities per activation


@dataclass
class ModifierSpec:
    system_id: str
    operation: str


@dataclass
class LineageSpec:
    relationship_kind: str
    find_ancestor: Callable
    distance_range: Tuple[float, float]


@dataclass
class ExpectedDistribution:
    target_count: int
    prominence_distribution: Dict[str, float] = field(default_factory=dict)


@dataclass
class EntityRegistry:
    kind: str
    creators: List[CreatorSpec] = field(default_factory=list)
    modifiers: List[ModifierSpec] = field(default_factory=list)
    expected_distribution: ExpectedDistribution = field(
        default_factory=lambda: ExpectedDistribution(0))
    subtype: Optional[str] = None
    lineage: Optional[LineageSpec] = None


# ── Meta-entity formation ──

@dataclass
class ClusterCriterion:
    type: str         # shared_practitioner | shared_location | same_creator |
                      # same_location | shared_tags | temporal_proximity
    weight: float
    threshold: Optional[float] = None


@dataclass
class ClusteringSpec:
    min_size: int
    criteria: List[ClusterCriterion]
    minimum_score: float
    max_size: Optional[int] = None


@dataclass
class TransformationSpec:
    mark_originals_historical: bool = True
    transfer_relationships: bool = True
    redirect_future_relationships: bool = False
    preserve_original_links: bool = True


@dataclass
class MetaEntityConfig:
    source_kind: str
    meta_kind: str
    clustering: ClusteringSpec
    factory: Callable                     # factory(cluster, graph) -> entity fields
    transformation: TransformationSpec = field(default_factory=TransformationSpec)
    on_formed: Optional[Callable] = None  # on_formed(meta, originals, graph) -> relationships
    trigger: str = 'epoch_end'


@dataclass
class Cluster:
    entities: List[Entity]
    score: float
    matched_criteria: List[str] = field(default_factory=list)


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str]
    warnings: List[str]


# ── Run configuration ──

@dataclass
class EngineConfig:
    eras: List[Era]
    templates: list
    systems: list
    pressures: List[Pressure] = field(default_factory=list)
    entity_registries: List[EntityRegistry] = field(default_factory=list)
    distribution_targets: Dict[str, int] = field(default_factory=dict)   # 'kind:subtype' -> count
    meta_configs: List[MetaEntityConfig] = field(default_factory=list)
    entity_kinds: List[str] = field(default_factory=list)
    terminal_statuses: Tuple[str, ...] = TERMINAL_STATUSES
    simulation_ticks_per_growth: int = SIMULATION_TICKS_PER_GROWTH
    target_entities_per_kind: int = TARGET_ENTITIES_PER_KIND
    max_ticks: int = MAX_TICKS
    max_relationships_per_tick: int = MAX_RELATIONSHIPS_PER_TICK
    max_relationships_per_growth_phase: int = MAX_RELATIONSHIPS_PER_GROWTH_PHASE
    scale_factor: float = 1.0
    action_domains: list = field(default_factory=list)
    pressure_domains: Dict[str, List[str]] = field(default_factory=dict)  # action domain -> pressure ids
    era_transition_check: Optional[Callable] = None   # check(graph, era_entity) -> bool

    def era_by_id(self, era_id):
        for era in self.eras:
            if era.id == era_id:
                return era
        raise KeyError(f'unknown era: {era_id}')


# ── Catalyst actions (supplied by configuration) ──

@dataclass
class ActionOutcome:
    success: bool
    relationships: List[Relationship] = field(default_factory=list)
    description: str = ''
    entities_modified: List[str] = field(default_factory=list)


@dataclass
class ActionSpec:
    id: str
    handler: Callable                     # handler(agent, graph) -> ActionOutcome
    base_weight: float = 1.0
    base_success_chance: float = 0.5
    min_prominence: Optional[str] = None
    required_relationships: List[str] = field(default_factory=list)
    required_pressures: Dict[str, float] = field(default_factory=dict)


@dataclass
class ActionDomain:
    id: str
    actions: List[ActionSpec] = field(default_factory=list)
