"""
Stage completion state machine.

A stage completes only when every one of its required interventions has a
successful ledger entry recorded in that stage. Helpful, harmful, neutral and
unlisted interventions never complete a stage. Completing the last stage
completes the case; too many harmful interventions in one stage fail it.
"""

from dataclasses import dataclass
from typing import List, Sequence

from pedsim.core.errors import InvalidInterventionError, SessionClosedError
from pedsim.core.log import get_logger
from pedsim.core.state import (
    AppliedIntervention,
    CompletionState,
    EngineConfig,
    InterventionCategory,
    SimulationSession,
    StageRecord,
)

logger = get_logger(__name__)


def first_success_order(stage, ledger: Sequence[AppliedIntervention]) -> List[str]:
    """Required names of `stage` in the order they first succeeded."""
    order = []
    for entry in ledger:
        if entry.stage != stage.number or not entry.success:
            continue
        if entry.name in stage.required and entry.name not in order:
            order.append(entry.name)
    return order


def is_stage_complete(stage, ledger: Sequence[AppliedIntervention]) -> bool:
    """
    True iff every required name of `stage` has a successful entry for that stage.

    Ordered stages additionally need the first successes in authored order.
    A stage with no required interventions, or with effects that reference
    unknown vital fields, never completes.
    """
    if not stage.required:
        logger.error(
            "Stage %d (%s) has no required interventions; it cannot complete",
            stage.number, stage.name,
        )
        return False
    if stage.misconfigured_effects:
        logger.error(
            "Stage %d (%s) has effects with unknown vital fields (%s); it cannot complete",
            stage.number, stage.name, ", ".join(stage.misconfigured_effects),
        )
        return False

    order = first_success_order(stage, ledger)
    if any(name not in order for name in stage.required):
        return False
    if stage.ordered:
        return order == list(stage.required)
    return True


def missing_required(stage, ledger: Sequence[AppliedIntervention]) -> List[str]:
    """Required names of `stage` still lacking a successful entry."""
    done = set(first_success_order(stage, ledger))
    return [name for name in stage.required if name not in done]


@dataclass(frozen=True)
class Transition:
    """What a recorded intervention did to the machine."""
    entry: AppliedIntervention
    stage_advanced: bool = False
    case_completed: bool = False
    case_failed: bool = False
    completed_stage: int = 0


class StageCompletionMachine:
    """
    Drives a session through its stages.

    prepare() validates and classifies without touching the session;
    record() commits the ledger entry and applies any transition.
    """

    def __init__(self, config: EngineConfig = None):
        self.config = config or EngineConfig()

    def ensure_open(self, session: SimulationSession):
        if session.is_closed:
            raise SessionClosedError(session.session_id, session.completion_state.value)

    def resolve(self, session: SimulationSession, name: str) -> str:
        """Canonical name for a submitted intervention. Raises on unknown names."""
        if not isinstance(name, str) or not name.strip():
            raise InvalidInterventionError("Intervention name must be a non-empty string", intervention=str(name))
        if not session.variant.knows(name):
            raise InvalidInterventionError(
                f"Unknown intervention for case {session.case_id}: {name}",
                intervention=name,
            )
        if self.config.resolve_synonyms:
            return session.variant.resolve_name(name, session.current_stage)
        return name.strip()

    def prepare(self, session: SimulationSession, name: str, timestamp: float) -> AppliedIntervention:
        """Build the ledger entry an application of `name` would record."""
        self.ensure_open(session)
        canonical = self.resolve(session, name)
        stage = session.current_stage
        category = stage.categorize(canonical)

        success = True
        if stage.ordered and category is InterventionCategory.REQUIRED:
            # Out-of-order attempts are recorded as unsuccessful and can be repeated.
            done = first_success_order(stage, session.ledger)
            idx = stage.required.index(canonical)
            if canonical not in done:
                success = all(prev in done for prev in stage.required[:idx])

        return AppliedIntervention(
            name=canonical,
            stage=stage.number,
            success=success,
            timestamp=timestamp,
            category=category,
        )

    def record(self, session: SimulationSession, entry: AppliedIntervention) -> Transition:
        """Append `entry` and advance, complete or fail the session as needed."""
        self.ensure_open(session)
        stage = session.current_stage
        session.ledger.append(entry)

        if not session.stage_history:
            session.stage_history.append(StageRecord(stage=stage.number, started_at=0.0))
        record = session.stage_history[-1]
        if entry.category is InterventionCategory.REQUIRED and entry.success and record.first_required_at is None:
            record.first_required_at = entry.timestamp

        if entry.category is InterventionCategory.HARMFUL:
            session.harmful_count += 1
            limit = self.config.harmful_strike_limit
            if limit and session.harmful_count >= limit:
                session.completion_state = CompletionState.CASE_FAILED
                session.failure_reason = (
                    f"{session.harmful_count} harmful interventions in stage {stage.number}"
                )
                logger.warning("Session %s failed: %s", session.session_id, session.failure_reason)
                return Transition(entry, case_failed=True)

        if not is_stage_complete(stage, session.ledger):
            return Transition(entry)

        session.completion_state = CompletionState.STAGE_COMPLETE
        record.completed_at = entry.timestamp
        logger.info("Session %s completed stage %d", session.session_id, stage.number)

        if session.stage_index + 1 >= len(session.variant.stages):
            session.completion_state = CompletionState.CASE_COMPLETE
            return Transition(entry, case_completed=True, completed_stage=stage.number)

        session.stage_index += 1
        session.stage_elapsed_sec = 0.0
        session.harmful_count = 0
        session.stage_history.append(
            StageRecord(stage=session.current_stage.number, started_at=entry.timestamp)
        )
        session.completion_state = CompletionState.AWAITING_INTERVENTIONS
        return Transition(entry, stage_advanced=True, completed_stage=stage.number)
