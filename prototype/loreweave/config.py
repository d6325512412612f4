"""Engine parameters and constants."""
from collections import OrderedDict

# ── Prominence (ordinal) ──
PROMINENCE_LEVELS = ['forgotten', 'marginal', 'recognized', 'renowned', 'mythic']
PROMINENCE_VALUE = {p: i for i, p in enumerate(PROMINENCE_LEVELS)}

# ── Entity shape ──
MAX_TAGS = 10                 # tags per entity, name tag included
NAME_TAG_PREFIX = 'name:'     # reserved tag, at most one per entity
META_TAG = 'meta-entity'      # marker carried by every meta-entity
ID_PLACEHOLDER_PREFIX = 'will-be-assigned-'

# ── Statuses ──
STATUS_ACTIVE = 'active'
STATUS_HISTORICAL = 'historical'
STATUS_CURRENT = 'current'    # era entities
STATUS_FUTURE = 'future'
TERMINAL_STATUSES = ('dead', 'ended', 'destroyed')

# ── Relationships ──
DEFAULT_STRENGTH = 0.5
RELATIONSHIP_COOLDOWN = 10    # ticks before an entity may form the same kind again

# lineage kinds carry distance; every other kind never does
LINEAGE_DISTANCE_RANGES = {
    'derived_from': (0.1, 0.4),
    'split_from':   (0.3, 0.7),
    'adjacent_to':  (0.0, 1.0),
}

# ── Relationship categories (decay buckets) ──
CONFLICT_KINDS = ('at_war_with', 'enemy_of', 'rival_of', 'opposes')
SPATIAL_KINDS = ('resident_of', 'located_at', 'adjacent_to', 'manifests_at',
                 'applies_in', 'epicenter_of', 'controls', 'stronghold_of')
STRUCTURAL_KINDS = ('part_of', 'active_during', 'derived_from', 'split_from',
                    'participant_in', 'triggered_by', 'created_by')

DECAY_RATES = {               # strength lost per tick at modifier 1.0
    'none':   0.0,
    'slow':   0.01,
    'medium': 0.03,
    'fast':   0.06,
}
DECAY_BUCKET_BY_CATEGORY = {
    'conflict':   'slow',
    'social':     'medium',
    'spatial':    'fast',
    'structural': 'none',
}
DECAY_MIN_AGE = 5             # younger relationships are left alone
DECAY_PROXIMITY_FACTOR = 0.5  # co-located endpoints decay at half rate
DECAY_SHARED_FACTION_FACTOR = 0.7   # endpoints in the same faction
DECAY_FLOOR = 0.1             # strength never decays below this

# ── Connection weight (target-selection bias) ──
# (max link count, weight); anything above the last bound is a hub
CONNECTION_WEIGHT_STEPS = [(0, 3.0), (1, 2.0), (4, 1.0), (8, 0.5)]
HUB_CONNECTION_WEIGHT = 0.2

# ── Target selector ──
PREFERENCE_BOOST = 2.0
HUB_PENALTY_STRENGTH = 1.0
GENERAL_HUB_LINKS = 5         # links above this get 1/(1+sqrt(links-5))
SATURATION_THRESHOLD = 0.1    # best score below this triggers creation

# ── Homeostatic control ──
DEVIATION_THRESHOLD = 0.20    # |deviation| must exceed this (strictly)
MAX_SUPPRESSION = 0.80        # weight never drops below 1 - MAX_SUPPRESSION per output
MAX_BOOST = 2.0               # final adjustment factor cap
METRIC_HISTORY_WINDOW = 10    # ticks kept for trend
OUTLIER_THRESHOLD = 0.3

PRESSURE_TARGETS = OrderedDict([
    ('resource_scarcity',  30),
    ('conflict',           40),
    ('magical_instability', 25),
    ('cultural_tension',   35),
    ('stability',          60),
    ('external_threat',    15),
])
DEFAULT_PRESSURE_TARGET = 50

# ── Pressure dynamics ──
PRESSURE_MIN = 0.0
PRESSURE_MAX = 100.0
PRESSURE_MAX_DELTA = 15.0     # per update, after scaling
PRESSURE_MIN_GROWTH_SCALE = 0.1

# ── Growth phase ──
GROWTH_VARIANCE = 0.3         # ±30% on the per-epoch target
GROWTH_MIN_PER_EPOCH = 3      # × scale_factor, ceil
GROWTH_MAX_PER_EPOCH = 25     # × scale_factor, ceil
MAX_RUNS_PER_TEMPLATE = 12    # per growth phase

# ── Relationship budget ──
MAX_RELATIONSHIPS_PER_TICK = 50
MAX_RELATIONSHIPS_PER_GROWTH_PHASE = 150
GROWTH_RATE_WINDOW = 20
GROWTH_RATE_WARNING = 30      # average relationships per tick

# ── Pruning ──
FORGOTTEN_AGE = 50
FORGOTTEN_MIN_LINKS = 2
NPC_MORTALITY_AGE = 80
NPC_MORTALITY_CHANCE = 0.3

# ── Alliance formation ──
ALLIANCE_BASE_CHANCE = 0.5
ALLIANCE_MIN_WAR_STRENGTH = 0.3
ALLIANCE_STABILITY_GAIN = 5

# ── Prominence evolution ──
PROMINENCE_GAIN_CHANCE = 0.3
PROMINENCE_DECAY_CHANCE = 0.5
PROMINENCE_GAIN_LINKS = {     # links needed per level to rise one step
    'npc': 6, 'location': 5, 'rules': 4, 'abilities': 3, 'faction': 4,
}
PROMINENCE_DECAY_LINKS = 2    # below level * this, fame fades
CATALYZED_EVENT_LINKS = 2     # one catalyzed event counts as this many links

# ── Era transition ──
MIN_ERA_LENGTH = 50
ERA_TRANSITION_COOLDOWN = 10
ERA_LINK_LIMIT = 10

# ── Occurrences ──
WAR_THRESHOLD = 2             # at_war_with edges among factions
DISASTER_THRESHOLD = 2        # corrupted_by edges created this tick
MOVEMENT_THRESHOLD = 3        # factions sharing one rule
BOOM_THRESHOLD = 4            # trade edges

# ── Catalyst ──
ACTION_ATTEMPT_RATE = 0.3
INFLUENCE_GAIN = 0.1
INFLUENCE_LOSS = 0.05
PRESSURE_MULTIPLIER = 1.5
MAX_SUCCESS_CHANCE = 0.95
CATALYST_PROMINENCE_MULTIPLIER = {
    'forgotten': 0.3, 'marginal': 0.6, 'recognized': 1.0,
    'renowned': 1.5, 'mythic': 2.0,
}
CATALYST_PROMINENCE_INFLUENCE = {   # added to base influence, result clamped [0, 1]
    'forgotten': -0.2, 'marginal': -0.1, 'recognized': 0.0,
    'renowned': 0.15, 'mythic': 0.3,
}

# ── Meta-entity formation ──
CLUSTER_JOIN_FACTOR = 0.7     # join when avg similarity >= minimum_score * factor
DEFAULT_JACCARD_THRESHOLD = 0.5
DEFAULT_TEMPORAL_WINDOW = 30

# ── Change detection ──
RESIDENT_CHANGE_THRESHOLD = 3
PRACTITIONER_CHANGE_THRESHOLD = 3

# ── Run defaults ──
SIMULATION_TICKS_PER_GROWTH = 10
TARGET_ENTITIES_PER_KIND = 30
MAX_TICKS = 500
