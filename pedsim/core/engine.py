import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pedsim.cases.repository import CaseRepository
from pedsim.core.completion import StageCompletionMachine
from pedsim.core.errors import OutOfRangeWarning
from pedsim.core.log import get_logger
from pedsim.core.state import (
    AppliedIntervention,
    ClinicalClassification,
    EngineConfig,
    InterventionCategory,
    SessionState,
    SimulationSession,
    StageRecord,
    VitalField,
    Vitals,
)
from pedsim.guidance.gateway import EvidenceGateway, Guidance, GuidanceResolver
from pedsim.monitors.alarms import AlarmSystem, generate_alerts
from pedsim.physiology.curves import VitalCurve, condition_for_case, severity_curve
from pedsim.physiology.vitals_engine import (
    apply_vital_effects,
    clamp_vitals,
    determine_clinical_status,
    tick_vitals,
    validate_vital_ranges,
    vitals_delta,
)
from pedsim.telemetry.events import (
    COMPLETED_BY_ALL_REQUIRED,
    TelemetrySink,
    emit_case_completed,
    emit_case_failed,
    emit_guidance_query,
)

logger = get_logger(__name__)


class SessionLockRegistry:
    """One lock per session id; different sessions never contend."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def lock_for(self, session_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(session_id)
            if lock is None:
                lock = self._locks[session_id] = threading.Lock()
            return lock

    def discard(self, session_id: str):
        with self._guard:
            self._locks.pop(session_id, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


def _vital_map(values: Dict[VitalField, float]) -> Dict[str, float]:
    return {k.value: v for k, v in values.items()}


@dataclass
class InterventionResult:
    vitals_before: Vitals
    vitals_after: Vitals
    classification: ClinicalClassification
    guidance: Guidance
    stage_advanced: bool
    case_completed: bool
    category: InterventionCategory
    delta: Dict[VitalField, float] = field(default_factory=dict)
    alerts: List[str] = field(default_factory=list)
    entry: Optional[AppliedIntervention] = None
    case_failed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vitalsBefore": self.vitals_before.to_dict(),
            "vitalsAfter": self.vitals_after.to_dict(),
            "classification": self.classification.to_dict(),
            "guidance": self.guidance.to_dict(),
            "stageAdvanced": self.stage_advanced,
            "caseCompleted": self.case_completed,
            "caseFailed": self.case_failed,
            "category": self.category.value,
            "delta": _vital_map(self.delta),
            "alerts": list(self.alerts),
            "entry": self.entry.to_dict() if self.entry else None,
        }


@dataclass
class TickOutcome:
    vitals: Vitals
    deterioration_rates: Dict[VitalField, float]
    classification: ClinicalClassification
    alerts: List[str] = field(default_factory=list)
    tti_overdue: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vitals": self.vitals.to_dict(),
            "deteriorationRates": _vital_map(self.deterioration_rates),
            "classification": self.classification.to_dict(),
            "alerts": list(self.alerts),
            "ttiOverdue": self.tti_overdue,
        }


class SimulationEngine:
    """
    Facade over the vitals engine, the stage machine, guidance and telemetry.

    The engine holds no session state of its own: every call takes the
    session explicitly. Mutations of one session are serialized by a
    per-session lock; the guidance lookup runs after the commit, outside it.
    """

    def __init__(self, repository: CaseRepository,
                 gateway: Optional[EvidenceGateway] = None,
                 telemetry: Optional[TelemetrySink] = None,
                 config: Optional[EngineConfig] = None):
        self.repository = repository
        self.config = config or EngineConfig()
        self.telemetry = telemetry
        self.machine = StageCompletionMachine(self.config)
        self.resolver = GuidanceResolver(gateway, self.config.guidance_timeout_sec)
        self.locks = SessionLockRegistry()

    def start_session(self, case_id: str, variant_id: Optional[str] = None,
                      session_id: Optional[str] = None) -> SimulationSession:
        variant = self.repository.get_variant(case_id, variant_id)

        validation = validate_vital_ranges(variant.initial_vitals)
        for warning in validation.warnings:
            logger.warning("%s: %s/%s initial vitals: %s", OutOfRangeWarning.__name__,
                           case_id, variant.variant_id, warning)

        session = SimulationSession(
            session_id=session_id or uuid.uuid4().hex,
            case_id=case_id,
            variant=variant,
            vitals=clamp_vitals(variant.initial_vitals),
            stage_history=[StageRecord(stage=variant.stages[0].number, started_at=0.0)],
        )
        session.monitor = AlarmSystem(
            condition=condition_for_case(case_id),
            delays=self.config.alarm_delays,
            dt=self.config.default_tick_sec,
        )
        logger.info("Started session %s for %s/%s", session.session_id, case_id, variant.variant_id)
        return session

    def curve_for(self, session: SimulationSession) -> Optional[VitalCurve]:
        """Stage curve, else case curve, else the severity drift (if enabled)."""
        stage = session.current_stage
        if stage.curve is not None:
            return stage.curve
        if session.variant.curve is not None:
            return session.variant.curve
        if self.config.auto_deterioration:
            return severity_curve(stage.severity)
        return None

    async def apply_intervention(self, session: SimulationSession, name: str) -> InterventionResult:
        """
        Apply an intervention to the current stage.

        Validation happens before any mutation; an invalid name or a closed
        session raises and leaves the session untouched.
        """
        with self.locks.lock_for(session.session_id):
            entry = self.machine.prepare(session, name, session.elapsed_sec)
            stage = session.current_stage
            before = session.vitals
            after = apply_vital_effects(before, stage.effect_for(entry.name))
            classification = determine_clinical_status(after)

            session.vitals = after
            transition = self.machine.record(session, entry)
            ledger_ids = [e.intervention_id for e in session.ledger]

        logger.info(
            "Session %s: %s (%s, stage %d, success=%s)",
            session.session_id, entry.name, entry.category.value, entry.stage, entry.success,
        )

        if transition.case_completed:
            emit_case_completed(self.telemetry, session.case_id, COMPLETED_BY_ALL_REQUIRED, ledger_ids)
        elif transition.case_failed:
            emit_case_failed(self.telemetry, session.case_id, session.failure_reason, ledger_ids)

        started = time.perf_counter()
        guidance = await self.resolver.resolve(session.case_id, stage, entry.name, entry.category)
        emit_guidance_query(
            self.telemetry,
            session.case_id,
            stage.number,
            entry.name,
            (time.perf_counter() - started) * 1000.0,
            guidance.fallback,
            len(guidance.evidence_sources),
            len(guidance.risk_flags),
        )

        alerts = [str(a) for a in generate_alerts(after, condition_for_case(session.case_id))]
        return InterventionResult(
            vitals_before=before,
            vitals_after=after,
            classification=classification,
            guidance=guidance,
            stage_advanced=transition.stage_advanced,
            case_completed=transition.case_completed,
            category=entry.category,
            delta=vitals_delta(before, after),
            alerts=alerts,
            entry=entry,
            case_failed=transition.case_failed,
        )

    def tick(self, session: SimulationSession, delta_time_seconds: Optional[float] = None) -> TickOutcome:
        """Advance the session clock and drift vitals along the active curve."""
        dt = self.config.default_tick_sec if delta_time_seconds is None else delta_time_seconds
        if dt < 0:
            raise ValueError("delta_time_seconds must be >= 0")

        with self.locks.lock_for(session.session_id):
            self.machine.ensure_open(session)
            stage = session.current_stage
            result = tick_vitals(session.vitals, self.curve_for(session), dt)

            session.vitals = result.vitals
            session.elapsed_sec += dt
            session.stage_elapsed_sec += dt

            if session.monitor is not None:
                alerts = [str(a) for a in session.monitor.update(result.vitals, dt if dt > 0 else None)]
            else:
                alerts = [str(a) for a in generate_alerts(result.vitals, condition_for_case(session.case_id))]
            tti_overdue = stage.tti_sec > 0 and session.stage_elapsed_sec > stage.tti_sec

        return TickOutcome(
            vitals=result.vitals,
            deterioration_rates=result.deterioration_rates,
            classification=determine_clinical_status(result.vitals),
            alerts=alerts,
            tti_overdue=tti_overdue,
        )

    def get_session_state(self, session: SimulationSession) -> SessionState:
        with self.locks.lock_for(session.session_id):
            return SessionState(
                current_stage=session.current_stage.number,
                ledger=tuple(session.ledger),
                completion_state=session.completion_state,
                elapsed_sec=session.elapsed_sec,
                vitals=session.vitals,
            )

    def end_session(self, session: SimulationSession):
        """Release the per-session lock. The session object stays readable."""
        self.locks.discard(session.session_id)
