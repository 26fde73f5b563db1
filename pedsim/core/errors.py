"""
Exception hierarchy for the simulation engine.

Every error carries a machine-readable code and a details mapping so the
caller (CLI or an HTTP layer) can serialize it without inspecting types.
"""
from typing import Optional, Dict, Any


class SimulationError(Exception):
    """Base exception for all simulation errors."""

    def __init__(
        self,
        message: str,
        code: str = "SIMULATION_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details
        }


class ContentConfigurationError(SimulationError):
    """Authored case content is unusable (e.g. a stage with no required interventions)."""

    def __init__(
        self,
        message: str,
        case_id: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code="CONTENT_CONFIGURATION_ERROR",
            details={"case_id": case_id, **(details or {})}
        )
        self.case_id = case_id


class OutOfRangeWarning(UserWarning):
    """Category for vitals outside their physiological bounds. Reported, never raised."""


class GatewayUnavailable(SimulationError):
    """The evidence gateway could not produce guidance."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code="GATEWAY_UNAVAILABLE",
            details=details
        )


class InvalidInterventionError(SimulationError):
    """Intervention name is empty or not part of the case vocabulary."""

    def __init__(
        self,
        message: str,
        intervention: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code="INVALID_INTERVENTION",
            details={"intervention": intervention, **(details or {})}
        )
        self.intervention = intervention


class CaseNotFoundError(SimulationError):
    """No case (or variant) with the requested id."""

    def __init__(
        self,
        case_id: str,
        variant_id: Optional[str] = None
    ):
        target = case_id if variant_id is None else f"{case_id}/{variant_id}"
        super().__init__(
            message=f"Unknown case: {target}",
            code="CASE_NOT_FOUND",
            details={"case_id": case_id, "variant_id": variant_id}
        )
        self.case_id = case_id
        self.variant_id = variant_id


class SessionStateError(SimulationError):
    """Session is inconsistent with the requested operation."""

    def __init__(
        self,
        message: str,
        session_id: str = "",
        code: str = "SESSION_STATE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            details={"session_id": session_id, **(details or {})}
        )
        self.session_id = session_id


class SessionClosedError(SessionStateError):
    """Session already reached CASE_COMPLETE or CASE_FAILED."""

    def __init__(self, session_id: str, state: str):
        super().__init__(
            message=f"Session {session_id} is closed ({state})",
            session_id=session_id,
            code="SESSION_CLOSED",
            details={"completion_state": state}
        )
        self.state = state
