import pytest

from loreweave.content import build_default_config
from loreweave.engine import WorldEngine
from loreweave.model import (
    ComponentContract, ComponentPurpose, EnabledBy, PressureGate, EntityCountGate, Affects,
    EntityEffect, Pressure, PressureContract, PressureFlow, Equilibrium, EntityRegistry,
    CreatorSpec, ModifierSpec, ExpectedDistribution,
)
from loreweave.validation import ContractValidator, ConfigurationError

from conftest import make_config


class Stub:
    def __init__(self, id, contract=None):
        self.id = id
        self.contract = contract


def creator(id='raise_village', **contract):
    return Stub(id, ComponentContract(ComponentPurpose.ENTITY_CREATION, **contract))


def pressure(name='unrest', sources=('template.raise_village',), sinks=('time',),
             expected=(20, 60), decay=0.0, source_delta=None, sink_delta=None):
    return Pressure(name, name, decay=decay, contract=PressureContract(
        sources=[PressureFlow(s, delta=source_delta) for s in sources],
        sinks=[PressureFlow(s, delta=sink_delta) for s in sinks],
        equilibrium=Equilibrium(expected, sum(expected) / 2)))


def validate(**fields):
    fields.setdefault('templates', [creator()])
    return ContractValidator(make_config(**fields)).validate()


class TestCoverage:

    def test_registry_without_creators(self):
        result = validate(entity_registries=[EntityRegistry('npc')])
        assert "Entity kind 'npc' has no creators" in result.errors
        assert not result.valid

    def test_registry_references_missing_components(self):
        reg = EntityRegistry('npc', creators=[CreatorSpec('ghost_template')],
                             modifiers=[ModifierSpec('ghost_system', 'decay')])
        result = validate(entity_registries=[reg])
        assert "Entity kind 'npc' references non-existent template: ghost_template" in result.errors
        assert "Entity kind 'npc' references non-existent system: ghost_system" in result.errors

    def test_no_registries_is_only_a_warning(self):
        result = validate()
        assert result.valid
        assert 'No entity registries defined - lineage enforcement disabled' in result.warnings

    def test_pressure_without_sources_or_sinks(self):
        result = validate(pressures=[pressure(sources=(), sinks=())])
        assert "Pressure 'unrest' has no sources - will decay to 0" in result.errors
        assert "Pressure 'unrest' has no sinks - will saturate at 100!" in result.errors

    def test_pressure_flow_references(self):
        result = validate(pressures=[pressure(sources=('template.missing', 'formula.x'),
                                              sinks=('system.nope', 'relationship.allied_with'))])
        assert "Pressure 'unrest' references non-existent source: template.missing" in result.errors
        assert "Pressure 'unrest' references non-existent sink: system.nope" in result.errors
        assert len(result.errors) == 2

    def test_pressure_without_contract(self):
        result = validate(pressures=[Pressure('calm', 'calm')])
        assert "Pressure 'calm' has no contract - validation skipped" in result.warnings


class TestEquilibrium:

    def test_predicted_equilibrium_mismatch_warns(self):
        p = pressure(decay=1.0, source_delta=10.0, sink_delta=-5.0)
        assert ContractValidator(make_config()).predicted_equilibrium(p) == 5.0
        result = validate(pressures=[p])
        assert result.valid
        assert result.warnings[-1].startswith("Pressure 'unrest' equilibrium mismatch: "
                                              "predicted=5.0, expected=[20, 60].")

    def test_predicted_equilibrium_within_slack(self):
        # 16 is inside [20 * 0.8, 60 * 1.2]
        p = pressure(decay=1.0, source_delta=16.0)
        result = validate(pressures=[p])
        assert not any('mismatch' in w for w in result.warnings)

    def test_no_decay_means_no_prediction(self):
        assert ContractValidator(make_config()).predicted_equilibrium(pressure()) is None

    @pytest.mark.parametrize('expected,message', [
        ((-5, 50), "Pressure 'unrest' has invalid equilibrium range: [-5, 50]. "
                   "Must be within [0, 100]."),
        ((50, 150), "Pressure 'unrest' has invalid equilibrium range: [50, 150]. "
                    "Must be within [0, 100]."),
        ((60, 40), "Pressure 'unrest' has invalid equilibrium range: min (60) >= max (40)"),
    ])
    def test_invalid_ranges(self, expected, message):
        result = validate(pressures=[pressure(expected=expected)])
        assert message in result.errors


class TestAchievability:

    def test_capacity_warning(self):
        reg = EntityRegistry('npc', creators=[CreatorSpec('raise_village', target_count=1)],
                             expected_distribution=ExpectedDistribution(30))
        result = validate(entity_registries=[reg])
        assert result.valid
        assert result.warnings == [
            "Entity kind 'npc' may not reach target count 30 with current creators "
            "(estimated capacity: 10). Consider adding more creators or increasing "
            "targetCount per activation."]

    def test_secondary_creators_do_not_count(self):
        reg = EntityRegistry('npc', creators=[CreatorSpec('raise_village', primary=False)],
                             expected_distribution=ExpectedDistribution(2))
        assert any('estimated capacity: 0' in w for w in validate(entity_registries=[reg]).warnings)

    def test_prominence_distribution_must_sum_to_one(self):
        reg = EntityRegistry('npc', creators=[CreatorSpec('raise_village')],
                             expected_distribution=ExpectedDistribution(
                                 5, {'marginal': 0.5, 'renowned': 0.3}))
        result = validate(entity_registries=[reg])
        assert "Entity kind 'npc' prominence distribution sums to 0.80, expected 1.0" \
            in result.errors

    def test_prominence_tolerance(self):
        reg = EntityRegistry('npc', creators=[CreatorSpec('raise_village')],
                             expected_distribution=ExpectedDistribution(
                                 5, {'marginal': 0.705, 'renowned': 0.3}))
        assert validate(entity_registries=[reg]).valid


class TestContracts:

    def test_missing_contracts_warn(self):
        result = validate(templates=[Stub('bare')], systems=[Stub('idle')])
        assert "Template 'bare' has no contract" in result.warnings
        assert "System 'idle' has no contract" in result.warnings

    def test_enabled_by_references(self):
        gate = EnabledBy(pressures=[PressureGate('dread', 40)],
                         entity_counts=[EntityCountGate('dragon', min=1)],
                         eras=['dawn', 'twilight'])
        result = validate(templates=[creator(enabled_by=gate)])
        assert result.errors == [
            "Template 'raise_village' references non-existent pressure: dread",
            "Template 'raise_village' references non-existent entity kind: dragon",
            "Template 'raise_village' references non-existent era: twilight",
        ]

    def test_affected_entity_kind(self):
        affects = Affects(entities=[EntityEffect('dragon', 'create')])
        result = validate(templates=[creator(affects=affects)])
        assert result.errors == ["Template 'raise_village' affects non-existent entity kind: dragon"]

    def test_declared_entity_kinds_replace_defaults(self):
        affects = Affects(entities=[EntityEffect('dragon', 'create')])
        assert validate(templates=[creator(affects=affects)], entity_kinds=['dragon']).valid
        affects = Affects(entities=[EntityEffect('npc', 'create')])
        assert not validate(templates=[creator(affects=affects)], entity_kinds=['dragon']).valid

    def test_template_purpose_warning(self):
        t = Stub('odd', ComponentContract(ComponentPurpose.PHASE_TRANSITION))
        result = validate(templates=[t])
        assert result.valid
        assert "Template 'odd' has purpose phase_transition, expected entity_creation " \
               "or relationship_creation" in result.warnings

    def test_system_must_not_create_entities(self):
        s = Stub('spawner', ComponentContract(ComponentPurpose.ENTITY_CREATION))
        result = validate(systems=[s])
        assert result.errors == ["System 'spawner' has purpose entity_creation - systems "
                                 "should not create entities, use templates instead"]


class TestDemoConfig:

    def test_demo_config_has_no_errors(self):
        result = ContractValidator(build_default_config()).validate()
        assert result.errors == []
        assert result.valid

    def test_strict_run_refuses_invalid_config(self):
        config = make_config(entity_registries=[EntityRegistry('npc')])
        engine = WorldEngine(config, strict=True)
        with pytest.raises(ConfigurationError) as info:
            engine.run(1)
        assert info.value.errors == ["Entity kind 'npc' has no creators"]

    def test_lenient_run_keeps_going(self):
        config = make_config(entity_registries=[EntityRegistry('npc')])
        engine = WorldEngine(config)
        engine.run(1)
        assert not engine.validation.valid
        assert engine.epoch == 1
