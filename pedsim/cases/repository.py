"""
Read-only case repository.

Cases come from the bundled builders or from a JSON case bank (a list of
case objects with camelCase keys). The bank is validated once at load time;
after construction the repository never changes.
"""
import json
from typing import Callable, Dict, Iterable, Iterator, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pedsim.cases.base import CaseDefinition, CaseVariant, Stage, misconfigured_effects, parse_vital_effects
from pedsim.core.constants import DEFAULT_LICENSE, DEFAULT_SOURCE_VERSION, DEFAULT_SOURCE_CITATION
from pedsim.core.errors import CaseNotFoundError, ContentConfigurationError
from pedsim.core.log import get_logger
from pedsim.core.state import Vitals
from pedsim.physiology.curves import VitalCurve

logger = get_logger(__name__)

EffectScalar = Union[float, str, None]


class _Model(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class CurveModel(_Model):
    id: str
    name: str = ""
    params: Dict[str, float] = Field(default_factory=dict)
    time_to_effect: float = Field(0.0, alias="timeToEffect")


class StageModel(_Model):
    stage: int = Field(ge=1)
    name: str = ""
    ordered: bool = False
    severity: Literal["low", "moderate", "severe", "critical"] = "moderate"
    tti_sec: float = Field(0.0, alias="TTIsec", ge=0)
    required_interventions: List[str] = Field(default_factory=list, alias="requiredInterventions")
    helpful: List[str] = Field(default_factory=list)
    harmful: List[str] = Field(default_factory=list)
    neutral: List[str] = Field(default_factory=list)
    vital_effects: Dict[str, Dict[str, EffectScalar]] = Field(default_factory=dict, alias="vitalEffects")
    synonyms: Dict[str, str] = Field(default_factory=dict)
    curve: Optional[CurveModel] = None


class VariantModel(_Model):
    variant_id: str = Field(alias="variantId")
    age_band: str = Field("", alias="ageBand")
    age_years: float = Field(0.0, alias="ageYears")
    weight_kg: float = Field(0.0, alias="weightKg")
    initial_vitals: Dict[str, EffectScalar] = Field(default_factory=dict, alias="initialVitals")
    stages: List[StageModel] = Field(min_length=1)
    curve: Optional[CurveModel] = None


class CaseModel(_Model):
    id: str
    category: str = ""
    display_name: str = Field("", alias="displayName")
    description: str = ""
    clinical_history: str = Field("", alias="clinicalHistory")
    source_version: str = Field(DEFAULT_SOURCE_VERSION, alias="sourceVersion")
    license: str = DEFAULT_LICENSE
    source_citation: str = Field(DEFAULT_SOURCE_CITATION, alias="sourceCitation")
    variants: List[VariantModel] = Field(min_length=1)


def _build_curve(model: Optional[CurveModel]) -> Optional[VitalCurve]:
    if model is None:
        return None
    return VitalCurve.from_authored(model.id, model.name or model.id, model.params, model.time_to_effect)


def _build_case(model: CaseModel) -> CaseDefinition:
    variants: Dict[str, CaseVariant] = {}
    for v in model.variants:
        owner = f"{model.id}/{v.variant_id}"
        stages = tuple(
            Stage(
                number=s.stage,
                name=s.name or f"Stage {s.stage}",
                severity=s.severity,
                tti_sec=s.tti_sec,
                ordered=s.ordered,
                required=tuple(s.required_interventions),
                helpful=tuple(s.helpful),
                harmful=tuple(s.harmful),
                neutral=tuple(s.neutral),
                vital_effects=parse_vital_effects(s.vital_effects, owner=owner),
                curve=_build_curve(s.curve),
                synonyms=dict(s.synonyms),
                misconfigured_effects=misconfigured_effects(s.vital_effects),
            )
            for s in sorted(v.stages, key=lambda s: s.stage)
        )
        variants[v.variant_id] = CaseVariant(
            case_id=model.id,
            variant_id=v.variant_id,
            display_name=model.display_name or model.id,
            age_band=v.age_band,
            age_years=v.age_years,
            weight_kg=v.weight_kg,
            initial_vitals=Vitals.from_dict(v.initial_vitals),
            stages=stages,
            curve=_build_curve(v.curve),
            source_citation=model.source_citation,
            license=model.license,
            source_version=model.source_version,
        )
    return CaseDefinition(
        id=model.id,
        category=model.category,
        display_name=model.display_name or model.id,
        description=model.description,
        clinical_history=model.clinical_history,
        variants=variants,
    )


def _check_content(case: CaseDefinition):
    """Log stages that can never complete. Loading still succeeds."""
    for variant in case.variants.values():
        numbers = [s.number for s in variant.stages]
        if numbers != list(range(1, len(numbers) + 1)):
            raise ContentConfigurationError(
                f"Stages of {case.id}/{variant.variant_id} must be numbered 1..N, got {numbers}",
                case_id=case.id,
            )
        for stage in variant.stages:
            if not stage.required:
                logger.error(
                    "Stage %d of %s/%s has no required interventions and cannot complete",
                    stage.number, case.id, variant.variant_id,
                )
            if stage.misconfigured_effects:
                logger.error(
                    "Stage %d of %s/%s has effects with unknown vital fields and cannot complete: %s",
                    stage.number, case.id, variant.variant_id, ", ".join(stage.misconfigured_effects),
                )


class CaseRepository:
    """
    Read-only collection of case definitions addressed by case id.
    """

    def __init__(self, cases: Iterable[CaseDefinition] = ()):
        self._cases: Dict[str, CaseDefinition] = {}
        for case in cases:
            if case.id in self._cases:
                raise ContentConfigurationError(f"Duplicate case id: {case.id}", case_id=case.id)
            _check_content(case)
            self._cases[case.id] = case

    @classmethod
    def from_builders(cls, builders: Optional[Mapping[str, Callable[[], CaseDefinition]]] = None) -> "CaseRepository":
        """Build from case builder functions (defaults to the bundled cases)."""
        if builders is None:
            from pedsim.cases import CASE_BUILDERS
            builders = CASE_BUILDERS
        return cls(builder() for builder in builders.values())

    @classmethod
    def from_records(cls, records: Iterable[Mapping]) -> "CaseRepository":
        """Validate raw case-bank records and build the repository."""
        cases = []
        for index, record in enumerate(records):
            try:
                model = CaseModel.model_validate(record)
            except ValidationError as exc:
                case_id = record.get("id", f"#{index}") if isinstance(record, Mapping) else f"#{index}"
                raise ContentConfigurationError(
                    f"Invalid case record {case_id}",
                    case_id=str(case_id),
                    details={"errors": exc.errors(include_url=False)},
                ) from exc
            cases.append(_build_case(model))
        return cls(cases)

    @classmethod
    def from_json(cls, path: str) -> "CaseRepository":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, Mapping):
            data = [data]
        repo = cls.from_records(data)
        logger.info("Loaded %d cases from %s", len(repo), path)
        return repo

    def __len__(self) -> int:
        return len(self._cases)

    def __contains__(self, case_id: str) -> bool:
        return case_id in self._cases

    def __iter__(self) -> Iterator[CaseDefinition]:
        return iter(self._cases.values())

    def get_case(self, case_id: str) -> CaseDefinition:
        case = self._cases.get(case_id)
        if case is None:
            raise CaseNotFoundError(case_id)
        return case

    def get_variant(self, case_id: str, variant_id: Optional[str] = None) -> CaseVariant:
        variant = self.get_case(case_id).variant(variant_id)
        if variant is None:
            raise CaseNotFoundError(case_id, variant_id)
        return variant

    def list_cases(self) -> List[Tuple[str, str]]:
        """(case id, display name) pairs in load order."""
        return [(case.id, case.display_name) for case in self._cases.values()]
