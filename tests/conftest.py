import numpy as np
import pytest

from loreweave.graph import build_world_graph
from loreweave.model import EngineConfig, Era


def make_config(**overrides):
    fields = dict(
        eras=[Era('dawn', 'The Dawn'), Era('noon', 'High Noon'), Era('dusk', 'The Dusk')],
        templates=[],
        systems=[],
    )
    fields.update(overrides)
    return EngineConfig(**fields)


def add(graph, kind, subtype=None, name=None, **fields):
    """Insert an entity with a readable default name."""
    subtype = subtype or kind
    return graph.add_entity(kind, subtype, name or f'{subtype} {len(graph.entities)}', **fields)


def link(graph, kind, src, dst, **kw):
    return graph.add_relationship(kind, src.id, dst.id, **kw)


@pytest.fixture
def rng():
    return np.random.RandomState(0)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def graph(config):
    """Three era entities (era_0 current, era_1 and era_2 future), nothing else."""
    return build_world_graph(config, seed=1)


@pytest.fixture
def village(graph):
    """A location with two residents, one of whom leads a faction controlling it."""
    loc = add(graph, 'location', 'settlement', 'Oakhollow')
    a = add(graph, 'npc', 'merchant', 'Mara Quill')
    b = add(graph, 'npc', 'mystic', 'Idris Fen')
    faction = add(graph, 'faction', 'political', 'House Quill')
    link(graph, 'resident_of', a, loc)
    link(graph, 'resident_of', b, loc)
    link(graph, 'leader_of', a, faction)
    link(graph, 'member_of', a, faction)
    link(graph, 'controls', faction, loc)
    return {'location': loc, 'leader': a, 'mystic': b, 'faction': faction}
