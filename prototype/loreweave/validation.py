"""Static contract validation over a full EngineConfig.

Every check runs and every finding is collected; nothing here mutates state.
Errors block a strict run, warnings are advisory.
"""
import logging

import numpy as np

from .model import ComponentPurpose, ValidationResult

logger = logging.getLogger(__name__)

ASSUMED_RUNS_PER_CREATOR = 10     # activations a primary creator gets over a run
CAPACITY_WARNING_RATIO = 0.5      # warn below this share of the target count
EQUILIBRIUM_SLACK = (0.8, 1.2)    # predicted fixed point tolerance around the range
PROMINENCE_TOLERANCE = 0.01
DEFAULT_ENTITY_KINDS = ('npc', 'faction', 'location', 'abilities', 'rules')
BUILTIN_PREFIXES = ('time', 'formula', 'relationship', 'tag')

TEMPLATE_PURPOSES = (ComponentPurpose.ENTITY_CREATION, ComponentPurpose.RELATIONSHIP_CREATION)


class ConfigurationError(ValueError):
    """Raised by a strict run whose configuration fails validation."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__(f'{len(self.errors)} configuration errors: ' + '; '.join(self.errors))


class ContractValidator:

    def __init__(self, config):
        self.config = config

    def validate(self):
        errors, warnings = [], []
        self.validate_coverage(errors, warnings)
        self.validate_equilibrium(errors, warnings)
        self.validate_achievability(errors, warnings)
        self.validate_contracts(errors, warnings)
        for e in errors:
            logger.debug('contract error: %s', e)
        return ValidationResult(valid=not errors, errors=errors, warnings=warnings)

    # ── Lookups ──

    def component_exists(self, ref):
        """'template.<id>', 'system.<id>', 'pressure.<id>' must resolve; time, formula,
        relationship and tag references are always accepted."""
        kind, _, ident = ref.partition('.')
        if kind == 'template':
            return any(t.id == ident for t in self.config.templates)
        if kind == 'system':
            return any(s.id == ident for s in self.config.systems)
        if kind == 'pressure':
            return self.pressure_exists(ident)
        return kind in BUILTIN_PREFIXES

    def pressure_exists(self, name):
        return any(p.id == name or p.name == name for p in self.config.pressures)

    def entity_kind_exists(self, kind):
        if any(r.kind == kind for r in self.config.entity_registries):
            return True
        if self.config.entity_kinds:
            return kind in self.config.entity_kinds
        return kind in DEFAULT_ENTITY_KINDS

    # ── (a) + (b) coverage ──

    def validate_coverage(self, errors, warnings):
        if not self.config.entity_registries:
            warnings.append('No entity registries defined - lineage enforcement disabled')
        for reg in self.config.entity_registries:
            if not reg.creators:
                errors.append(f"Entity kind '{reg.kind}' has no creators")
            for c in reg.creators:
                if not any(t.id == c.template_id for t in self.config.templates):
                    errors.append(f"Entity kind '{reg.kind}' references non-existent "
                                  f"template: {c.template_id}")
            for m in reg.modifiers:
                if not any(s.id == m.system_id for s in self.config.systems):
                    errors.append(f"Entity kind '{reg.kind}' references non-existent "
                                  f"system: {m.system_id}")

        for p in self.config.pressures:
            if p.contract is None:
                warnings.append(f"Pressure '{p.name}' has no contract - validation skipped")
                continue
            if not p.contract.sources:
                errors.append(f"Pressure '{p.name}' has no sources - will decay to 0")
            if not p.contract.sinks:
                errors.append(f"Pressure '{p.name}' has no sinks - will saturate at 100!")
            for label, flows in (('source', p.contract.sources), ('sink', p.contract.sinks),
                                 ('affected component', p.contract.affects)):
                for flow in flows:
                    if not self.component_exists(flow.component):
                        errors.append(f"Pressure '{p.name}' references non-existent "
                                      f"{label}: {flow.component}")

    # ── (c) equilibrium ──

    def predicted_equilibrium(self, pressure):
        """(sum of source deltas - sum of |sink deltas|) / decay, or None without decay."""
        if not pressure.decay > 0:
            return None
        inflow = sum(f.delta for f in pressure.contract.sources if f.delta is not None)
        outflow = sum(abs(f.delta) for f in pressure.contract.sinks if f.delta is not None)
        return (inflow - outflow) / pressure.decay

    def validate_equilibrium(self, errors, warnings):
        for p in self.config.pressures:
            if p.contract is None:
                continue
            lo, hi = p.contract.equilibrium.expected_range
            predicted = self.predicted_equilibrium(p)
            if predicted is not None and \
                    not lo * EQUILIBRIUM_SLACK[0] <= predicted <= hi * EQUILIBRIUM_SLACK[1]:
                warnings.append(f"Pressure '{p.name}' equilibrium mismatch: "
                                f"predicted={predicted:.1f}, expected=[{lo}, {hi}]. "
                                f"Consider adjusting sources, sinks, or decay rate.")
            if lo < 0 or hi > 100:
                errors.append(f"Pressure '{p.name}' has invalid equilibrium range: "
                              f"[{lo}, {hi}]. Must be within [0, 100].")
            if lo >= hi:
                errors.append(f"Pressure '{p.name}' has invalid equilibrium range: "
                              f"min ({lo}) >= max ({hi})")

    # ── (d) + (e) achievability ──

    def validate_achievability(self, errors, warnings):
        for reg in self.config.entity_registries:
            target = reg.expected_distribution.target_count
            per_run = sum(c.target_count or 1 for c in reg.creators if c.primary)
            capacity = per_run * ASSUMED_RUNS_PER_CREATOR
            if capacity < target * CAPACITY_WARNING_RATIO:
                warnings.append(f"Entity kind '{reg.kind}' may not reach target count {target} "
                                f"with current creators (estimated capacity: {capacity}). "
                                f"Consider adding more creators or increasing targetCount "
                                f"per activation.")
            dist = reg.expected_distribution.prominence_distribution
            if dist:
                total = float(np.sum(list(dist.values())))
                if abs(total - 1.0) > PROMINENCE_TOLERANCE:
                    errors.append(f"Entity kind '{reg.kind}' prominence distribution sums "
                                  f"to {total:.2f}, expected 1.0")

    # ── (f) contracts ──

    def _check_enabled_by(self, label, component, errors):
        enabled = component.contract.enabled_by
        if enabled is None:
            return
        for gate in enabled.pressures:
            if not self.pressure_exists(gate.name):
                errors.append(f"{label} '{component.id}' references non-existent pressure: "
                              f"{gate.name}")
        for gate in enabled.entity_counts:
            if not self.entity_kind_exists(gate.kind):
                errors.append(f"{label} '{component.id}' references non-existent entity "
                              f"kind: {gate.kind}")
        for era_id in enabled.eras:
            if not any(e.id == era_id for e in self.config.eras):
                errors.append(f"{label} '{component.id}' references non-existent era: {era_id}")

    def validate_contracts(self, errors, warnings):
        for t in self.config.templates:
            if t.contract is None:
                warnings.append(f"Template '{t.id}' has no contract")
                continue
            if t.contract.purpose not in TEMPLATE_PURPOSES:
                warnings.append(f"Template '{t.id}' has purpose {t.contract.purpose.value}, "
                                f"expected entity_creation or relationship_creation")
            self._check_enabled_by('Template', t, errors)
            for eff in t.contract.affects.entities:
                if not self.entity_kind_exists(eff.kind):
                    errors.append(f"Template '{t.id}' affects non-existent entity kind: {eff.kind}")

        for s in self.config.systems:
            if s.contract is None:
                warnings.append(f"System '{s.id}' has no contract")
                continue
            if s.contract.purpose == ComponentPurpose.ENTITY_CREATION:
                errors.append(f"System '{s.id}' has purpose entity_creation - systems should "
                              f"not create entities, use templates instead")
            self._check_enabled_by('System', s, errors)
