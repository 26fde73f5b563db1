"""
Case and stage definitions.

A case is authored content: one or more patient variants, each a fixed
ordered list of stages. Stages name the interventions that are required,
helpful, harmful or neutral and the vital effects each one produces.
Nothing here changes at runtime.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from pedsim.core.constants import (
    DEFAULT_LICENSE,
    DEFAULT_SOURCE_VERSION,
    DEFAULT_SOURCE_CITATION,
)
from pedsim.core.errors import ContentConfigurationError
from pedsim.core.log import get_logger
from pedsim.core.state import InterventionCategory, Vitals, VitalField
from pedsim.physiology.curves import VitalCurve

logger = get_logger(__name__)

STAGE_SEVERITIES = ("low", "moderate", "severe", "critical")

VitalEffect = Dict[VitalField, object]


def parse_vital_effects(effects: Optional[Mapping[str, Mapping[str, object]]],
                        owner: str = "") -> Dict[str, VitalEffect]:
    """
    Convert authored camelCase effect maps to VitalField-keyed effects.

    Unknown vital names are dropped with a content warning.
    """
    parsed: Dict[str, VitalEffect] = {}
    for name, effect in (effects or {}).items():
        entry: VitalEffect = {}
        for key, value in (effect or {}).items():
            vital = VitalField.parse(key)
            if vital is None:
                logger.warning("%s: effect for %r references unknown vital field %r", owner, name, key)
                continue
            entry[vital] = value
        parsed[name] = entry
    return parsed


def misconfigured_effects(effects: Optional[Mapping[str, Mapping[str, object]]]) -> Tuple[str, ...]:
    """Names of authored effects that reference a vital field the engine does not know."""
    return tuple(
        name for name, effect in (effects or {}).items()
        if any(VitalField.parse(key) is None for key in (effect or {}))
    )


@dataclass(frozen=True)
class Stage:
    """
    One stage of a case variant.

    Attributes:
        number: 1-based stage number
        name: Display name (e.g. "Recognition & ABCs")
        severity: low, moderate, severe or critical; picks the fallback drift curve
        tti_sec: Time-to-intervene target from stage start
        ordered: Required interventions must first succeed in authored order
        required: Interventions that alone decide stage completion
        helpful / harmful / neutral: Classification-only lists
        vital_effects: Intervention name -> VitalField deltas
        curve: Optional stage-specific deterioration curve
        synonyms: Alias -> canonical intervention name
        misconfigured_effects: Effects authored with unknown vital fields; the
            stage cannot complete while any are listed
    """
    number: int
    name: str
    severity: str = "moderate"
    tti_sec: float = 0.0
    ordered: bool = False
    required: Tuple[str, ...] = ()
    helpful: Tuple[str, ...] = ()
    harmful: Tuple[str, ...] = ()
    neutral: Tuple[str, ...] = ()
    vital_effects: Dict[str, VitalEffect] = field(default_factory=dict)
    curve: Optional[VitalCurve] = None
    synonyms: Dict[str, str] = field(default_factory=dict)
    misconfigured_effects: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.severity not in STAGE_SEVERITIES:
            raise ContentConfigurationError(
                f"Stage {self.number} severity should be one of: {', '.join(STAGE_SEVERITIES)}",
                details={"severity": self.severity},
            )

    @property
    def vocabulary(self) -> Tuple[str, ...]:
        """Every canonical intervention name this stage knows about."""
        seen = {}
        for group in (self.required, self.harmful, self.helpful, self.neutral, tuple(self.vital_effects)):
            for name in group:
                seen.setdefault(name, None)
        return tuple(seen)

    def categorize(self, name: str) -> InterventionCategory:
        """Category of a canonical name. Precedence: required > harmful > helpful > neutral."""
        if name in self.required:
            return InterventionCategory.REQUIRED
        if name in self.harmful:
            return InterventionCategory.HARMFUL
        if name in self.helpful:
            return InterventionCategory.HELPFUL
        if name in self.neutral:
            return InterventionCategory.NEUTRAL
        return InterventionCategory.UNLISTED

    def resolve_name(self, name: str) -> str:
        """
        Map a submitted name to its canonical authored spelling.

        Exact matches win; then a case-insensitive match against the
        vocabulary; then the synonym table. Unknown names are returned as given.
        """
        name = name.strip()
        vocabulary = self.vocabulary
        if name in vocabulary:
            return name
        folded = name.casefold()
        for canonical in vocabulary:
            if canonical.casefold() == folded:
                return canonical
        for alias, canonical in self.synonyms.items():
            if alias.casefold() == folded:
                return canonical
        return name

    def effect_for(self, name: str) -> VitalEffect:
        return self.vital_effects.get(name, {})


@dataclass(frozen=True)
class CaseVariant:
    """A single patient presentation of a case."""
    case_id: str
    variant_id: str
    display_name: str
    age_band: str
    age_years: float
    weight_kg: float
    initial_vitals: Vitals
    stages: Tuple[Stage, ...]
    curve: Optional[VitalCurve] = None
    source_citation: str = DEFAULT_SOURCE_CITATION
    license: str = DEFAULT_LICENSE
    source_version: str = DEFAULT_SOURCE_VERSION

    def __len__(self) -> int:
        return len(self.stages)

    def __getitem__(self, idx: int) -> Stage:
        return self.stages[idx]

    @property
    def vocabulary(self) -> frozenset:
        """Canonical names and aliases across all stages."""
        names = set()
        for stage in self.stages:
            names.update(stage.vocabulary)
            names.update(stage.synonyms)
        return frozenset(names)

    def knows(self, name: str) -> bool:
        folded = name.strip().casefold()
        return any(n.casefold() == folded for n in self.vocabulary)

    def resolve_name(self, name: str, stage: Stage) -> str:
        """Resolve against `stage` first, then against the other stages."""
        resolved = stage.resolve_name(name)
        if resolved in stage.vocabulary:
            return resolved
        for other in self.stages:
            if other is stage:
                continue
            candidate = other.resolve_name(name)
            if candidate in other.vocabulary:
                return candidate
        return resolved

    @property
    def attribution(self) -> Dict[str, str]:
        return {
            "license": self.license,
            "sourceVersion": self.source_version,
            "sourceCitation": self.source_citation,
        }


@dataclass(frozen=True)
class CaseDefinition:
    """
    A case with its variants.

    Attributes:
        id: Case identifier (e.g. "aliem_case_01_anaphylaxis")
        category: Grouping label (e.g. "Anaphylaxis")
        display_name: Name shown to learners
        description: Short summary
        variants: Variant id -> CaseVariant, first entry is the default
    """
    id: str
    category: str
    display_name: str
    description: str = ""
    clinical_history: str = ""
    variants: Dict[str, CaseVariant] = field(default_factory=dict)

    @property
    def default_variant_id(self) -> str:
        return next(iter(self.variants))

    def variant(self, variant_id: Optional[str] = None) -> Optional[CaseVariant]:
        if variant_id is None:
            if not self.variants:
                return None
            variant_id = self.default_variant_id
        return self.variants.get(variant_id)

    def variant_ids(self) -> List[str]:
        return list(self.variants)
