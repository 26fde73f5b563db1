from dataclasses import dataclass, field, fields
from enum import Enum
from typing import List, Dict, Optional, Tuple, Any, TYPE_CHECKING

from pedsim.core.constants import (
    HR_MIN, HR_MAX, RR_MIN, RR_MAX, SBP_MIN, SBP_MAX, DBP_MIN, DBP_MAX,
    SPO2_MIN, SPO2_MAX, TEMP_MIN_C, TEMP_MAX_C,
    CAP_REFILL_MIN_SEC, CAP_REFILL_MAX_SEC,
    DEFAULT_TICK_SEC, DEFAULT_GUIDANCE_TIMEOUT_SEC, DEFAULT_HARMFUL_STRIKE_LIMIT,
)

if TYPE_CHECKING:
    from pedsim.cases.base import CaseVariant, Stage


class VitalField(Enum):
    """Closed set of tracked vitals. Values are the authored (camelCase) keys."""
    HEART_RATE = "heartRate"
    RESP_RATE = "respRate"
    BP_SYS = "bloodPressureSys"
    BP_DIA = "bloodPressureDia"
    SPO2 = "spo2"
    TEMPERATURE = "temperature"
    CAP_REFILL = "capillaryRefill"
    CONSCIOUSNESS = "consciousness"

    @property
    def attr(self) -> str:
        """Attribute name on the Vitals dataclass."""
        return _FIELD_ATTRS[self]

    @property
    def is_numeric(self) -> bool:
        return self is not VitalField.CONSCIOUSNESS

    @classmethod
    def parse(cls, name: str) -> Optional["VitalField"]:
        """Resolve an authored or attribute-style name; None if unknown."""
        if isinstance(name, VitalField):
            return name
        if not isinstance(name, str):
            return None
        return _FIELD_LOOKUP.get(name) or _FIELD_LOOKUP.get(name.strip().lower())


_FIELD_ATTRS = {
    VitalField.HEART_RATE: "heart_rate",
    VitalField.RESP_RATE: "resp_rate",
    VitalField.BP_SYS: "blood_pressure_sys",
    VitalField.BP_DIA: "blood_pressure_dia",
    VitalField.SPO2: "spo2",
    VitalField.TEMPERATURE: "temperature",
    VitalField.CAP_REFILL: "capillary_refill",
    VitalField.CONSCIOUSNESS: "consciousness",
}

_FIELD_LOOKUP: Dict[str, VitalField] = {}
for _f, _attr in _FIELD_ATTRS.items():
    _FIELD_LOOKUP[_f.value] = _f
    _FIELD_LOOKUP[_f.value.lower()] = _f
    _FIELD_LOOKUP[_attr] = _f
# Legacy alias used by older content.
_FIELD_LOOKUP["oxygensat"] = VitalField.SPO2

NUMERIC_FIELDS: Tuple[VitalField, ...] = tuple(f for f in VitalField if f.is_numeric)

# Absolute bounds (inclusive) per numeric field.
VITAL_BOUNDS: Dict[VitalField, Tuple[float, float]] = {
    VitalField.HEART_RATE: (HR_MIN, HR_MAX),
    VitalField.RESP_RATE: (RR_MIN, RR_MAX),
    VitalField.BP_SYS: (SBP_MIN, SBP_MAX),
    VitalField.BP_DIA: (DBP_MIN, DBP_MAX),
    VitalField.SPO2: (SPO2_MIN, SPO2_MAX),
    VitalField.TEMPERATURE: (TEMP_MIN_C, TEMP_MAX_C),
    VitalField.CAP_REFILL: (CAP_REFILL_MIN_SEC, CAP_REFILL_MAX_SEC),
}

# Labels used in range warnings.
VITAL_LABELS: Dict[VitalField, str] = {
    VitalField.HEART_RATE: "Heart rate",
    VitalField.RESP_RATE: "Respiratory rate",
    VitalField.BP_SYS: "Systolic BP",
    VitalField.BP_DIA: "Diastolic BP",
    VitalField.SPO2: "SpO2",
    VitalField.TEMPERATURE: "Temperature",
    VitalField.CAP_REFILL: "Capillary refill",
    VitalField.CONSCIOUSNESS: "Consciousness",
}


@dataclass(frozen=True, slots=True)
class Vitals:
    """Immutable snapshot of the patient's vital signs."""
    heart_rate: float = 100.0         # bpm
    resp_rate: float = 24.0           # breaths/min
    blood_pressure_sys: float = 100.0 # mmHg
    blood_pressure_dia: float = 60.0  # mmHg
    spo2: float = 98.0                # %
    temperature: float = 37.0         # Celsius
    consciousness: str = "alert"
    capillary_refill: Optional[float] = None  # seconds

    def get(self, vital: VitalField):
        return getattr(self, vital.attr)

    def to_dict(self) -> Dict[str, Any]:
        """Authored (camelCase) representation."""
        out = {f.value: self.get(f) for f in VitalField}
        if out[VitalField.CAP_REFILL.value] is None:
            del out[VitalField.CAP_REFILL.value]
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Vitals":
        """
        Build a snapshot from an authored mapping.

        Unknown keys and null values are ignored; missing fields keep the
        dataclass defaults.
        """
        kwargs = {}
        for key, value in (data or {}).items():
            vital = VitalField.parse(key)
            if vital is None or value is None:
                continue
            if vital is VitalField.CONSCIOUSNESS:
                kwargs[vital.attr] = str(value)
            else:
                kwargs[vital.attr] = float(value)
        return cls(**kwargs)


class ClinicalStatus(str, Enum):
    STABLE = "stable"
    CONCERNING = "concerning"
    CRITICAL = "critical"
    EMERGENT = "emergent"


@dataclass
class ClinicalClassification:
    """Status derived from the current vitals. Never stored."""
    status: ClinicalStatus
    priority: int
    recommendations: List[str] = field(default_factory=list)
    severity_score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "priority": self.priority,
            "recommendations": list(self.recommendations),
            "severityScore": self.severity_score,
        }


class InterventionCategory(str, Enum):
    REQUIRED = "required"
    HELPFUL = "helpful"
    HARMFUL = "harmful"
    NEUTRAL = "neutral"
    UNLISTED = "unlisted"


class CompletionState(str, Enum):
    AWAITING_INTERVENTIONS = "awaiting_interventions"
    STAGE_COMPLETE = "stage_complete"
    CASE_COMPLETE = "case_complete"
    CASE_FAILED = "case_failed"


@dataclass(frozen=True)
class AppliedIntervention:
    """One ledger entry."""
    name: str
    stage: int
    success: bool
    timestamp: float = 0.0  # session seconds
    category: InterventionCategory = InterventionCategory.UNLISTED

    @property
    def intervention_id(self) -> str:
        return f"{self.stage}:{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "stage": self.stage,
            "success": self.success,
            "timestamp": self.timestamp,
            "category": self.category.value,
        }


@dataclass
class StageRecord:
    """Timing of one stage within a session."""
    stage: int
    started_at: float
    completed_at: Optional[float] = None
    first_required_at: Optional[float] = None


@dataclass
class EngineConfig:
    """Configuration for the simulation engine."""
    default_tick_sec: float = DEFAULT_TICK_SEC
    guidance_timeout_sec: float = DEFAULT_GUIDANCE_TIMEOUT_SEC

    # Harmful interventions tolerated per stage before the case fails (0 disables).
    harmful_strike_limit: int = DEFAULT_HARMFUL_STRIKE_LIMIT

    # Fall back to the severity curve when content authors none.
    auto_deterioration: bool = True
    resolve_synonyms: bool = True

    # Alarm sustain windows (seconds) keyed by alarm name, e.g. {"SpO2": 5}.
    alarm_delays: Dict[str, float] = field(default_factory=dict)

    # CSV sampling interval for the recorder.
    record_interval_sec: float = 0.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EngineConfig":
        """Build from a JSON-style mapping, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class SimulationSession:
    """
    Runtime state of one learner's run through a case variant.

    Owned by the caller. The engine mutates it only inside
    SimulationEngine.apply_intervention() and SimulationEngine.tick().
    """
    session_id: str
    case_id: str
    variant: "CaseVariant"
    vitals: Vitals
    stage_index: int = 0
    ledger: List[AppliedIntervention] = field(default_factory=list)
    completion_state: CompletionState = CompletionState.AWAITING_INTERVENTIONS
    elapsed_sec: float = 0.0
    stage_elapsed_sec: float = 0.0
    harmful_count: int = 0
    stage_history: List[StageRecord] = field(default_factory=list)
    failure_reason: str = ""

    # Per-session AlarmSystem, attached by the engine.
    monitor: Any = field(default=None, repr=False, compare=False)

    @property
    def current_stage(self) -> "Stage":
        return self.variant.stages[self.stage_index]

    @property
    def is_closed(self) -> bool:
        return self.completion_state in (CompletionState.CASE_COMPLETE, CompletionState.CASE_FAILED)


@dataclass(frozen=True)
class SessionState:
    """Read-only view returned by SimulationEngine.get_session_state()."""
    current_stage: int
    ledger: Tuple[AppliedIntervention, ...]
    completion_state: CompletionState
    elapsed_sec: float = 0.0
    vitals: Optional[Vitals] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentStage": self.current_stage,
            "ledger": [entry.to_dict() for entry in self.ledger],
            "completionState": self.completion_state.value,
            "elapsedSec": self.elapsed_sec,
            "vitals": self.vitals.to_dict() if self.vitals else None,
        }
