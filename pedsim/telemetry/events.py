"""
Telemetry emission.

Events are plain dicts handed to a sink. Emission is fire-and-forget: a
failing sink is logged and never affects the simulation.
"""
import json
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from pedsim.core.log import get_logger

logger = get_logger(__name__)

COMPLETED_BY_ALL_REQUIRED = "final_stage_all_required_applied"
FAILED_BY_HARMFUL_STRIKES = "harmful_strike_limit"


def _iso(timestamp: Optional[datetime]) -> str:
    return (timestamp or datetime.now(timezone.utc)).isoformat()


class TelemetrySink(ABC):
    @abstractmethod
    def emit(self, record: Dict[str, Any]) -> None:
        ...


class LoggingTelemetrySink(TelemetrySink):
    """Writes each event as one JSON line to the `pedsim.telemetry` logger."""

    def __init__(self, logger_name: str = "pedsim.telemetry"):
        self.logger = get_logger(logger_name)

    def emit(self, record: Dict[str, Any]) -> None:
        self.logger.info(json.dumps(record, sort_keys=True, default=str))


class InMemoryTelemetrySink(TelemetrySink):
    """Keeps events in a list; thread-safe."""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: List[Dict[str, Any]] = []

    def emit(self, record: Dict[str, Any]) -> None:
        with self._lock:
            self._events.append(dict(record))

    @property
    def events(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._events)

    def of_type(self, event: str) -> List[Dict[str, Any]]:
        return [e for e in self.events if e.get("event") == event]


def _safe_emit(sink: Optional[TelemetrySink], record: Dict[str, Any]) -> bool:
    if sink is None:
        return False
    try:
        sink.emit(record)
    except Exception:
        logger.exception("Telemetry sink failed for %s event", record.get("event"))
        return False
    return True


def emit_case_completed(
    sink: Optional[TelemetrySink],
    case_id: str,
    completed_by: str,
    applied_intervention_ids: Sequence[str],
    timestamp: Optional[datetime] = None,
) -> bool:
    """Emit the case_completed event. Returns False if the sink failed."""
    record = {
        "event": "case_completed",
        "caseId": case_id,
        "completedBy": completed_by,
        "appliedInterventionIds": list(applied_intervention_ids),
        "timestamp": _iso(timestamp),
    }
    return _safe_emit(sink, record)


def emit_case_failed(
    sink: Optional[TelemetrySink],
    case_id: str,
    reason: str,
    applied_intervention_ids: Sequence[str],
    timestamp: Optional[datetime] = None,
) -> bool:
    record = {
        "event": "case_failed",
        "caseId": case_id,
        "failedBy": FAILED_BY_HARMFUL_STRIKES,
        "reason": reason,
        "appliedInterventionIds": list(applied_intervention_ids),
        "timestamp": _iso(timestamp),
    }
    return _safe_emit(sink, record)


def emit_guidance_query(
    sink: Optional[TelemetrySink],
    case_id: str,
    stage: int,
    intervention: str,
    response_time_ms: float,
    fallback: bool,
    evidence_sources: int,
    risk_flags: int,
    timestamp: Optional[datetime] = None,
) -> bool:
    """One record per guidance lookup."""
    record = {
        "event": "guidance_query",
        "caseId": case_id,
        "stage": stage,
        "intervention": intervention,
        "responseTimeMs": round(response_time_ms, 1),
        "fallback": fallback,
        "evidenceSources": evidence_sources,
        "riskFlags": risk_flags,
        "timestamp": _iso(timestamp),
    }
    return _safe_emit(sink, record)
