"""loreweave: procedural world knowledge-graph growth with homeostatic control."""
from .engine import WorldEngine
from .graph import WorldGraph, build_world_graph
from .model import EngineConfig, Era, Pressure, GrowthResult, SystemResult, placeholder
from .population import PopulationTracker, DynamicWeightCalculator
from .meta import MetaEntityFormation
from .validation import ContractValidator, ConfigurationError
from .view import GraphView
