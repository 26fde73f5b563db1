"""
Clinical and numerical constants for PedSim.

This module centralizes the breakpoints and bounds used by the vitals engine.

NOTE: Only add constants here that are ACTIVELY IMPORTED elsewhere.
"""

from dataclasses import dataclass

# Absolute vital bounds (inclusive). Values produced by the engine are clamped
# to these; validate_vital_ranges() reports anything outside them.
HR_MIN = 0.0
HR_MAX = 300.0
RR_MIN = 0.0
RR_MAX = 100.0
SBP_MIN = 0.0
SBP_MAX = 300.0
DBP_MIN = 0.0
DBP_MAX = 200.0
SPO2_MIN = 0.0
SPO2_MAX = 100.0
TEMP_MIN_C = 30.0
TEMP_MAX_C = 45.0
CAP_REFILL_MIN_SEC = 0.0
CAP_REFILL_MAX_SEC = 10.0

# Named consciousness levels accepted in authored content.
CONSCIOUSNESS_LEVELS = (
    "alert",
    "anxious",
    "irritable",
    "confused",
    "drowsy",
    "lethargic",
    "post-ictal",
    "unresponsive",
)

# Severity score cap.
SEVERITY_SCORE_MAX = 20

# Consciousness points for the severity score.
CONSCIOUSNESS_POINTS = {
    "unresponsive": 4,
    "lethargic": 2,
    "confused": 1,
}

# Capillary refill above this (seconds) is delayed.
CAP_REFILL_DELAYED_SEC = 3.0

# Status bands: (max score inclusive, status, priority, base recommendations).
STATUS_BANDS = (
    (3, "stable", 4, ("Continue monitoring", "Reassess in 15 minutes")),
    (6, "concerning", 3, (
        "Increase monitoring frequency",
        "Consider intervention",
        "Reassess in 5 minutes",
    )),
    (10, "critical", 2, (
        "Immediate intervention required",
        "Prepare for escalation",
        "Continuous monitoring",
    )),
    (SEVERITY_SCORE_MAX, "emergent", 1, (
        "Immediate life-saving intervention",
        "Call for help",
        "Prepare for resuscitation",
    )),
)

# Field-specific recommendation triggers.
REC_SPO2_BELOW = 90.0
REC_SBP_BELOW = 90.0
REC_HR_LOW = 60.0
REC_HR_HIGH = 180.0

# Engine defaults (seconds).
DEFAULT_TICK_SEC = 10.0
DEFAULT_GUIDANCE_TIMEOUT_SEC = 3.0
DEFAULT_HARMFUL_STRIKE_LIMIT = 3

# Fallback guidance templates keyed by intervention category.
FALLBACK_INDICATED = "{name} is indicated for this stage based on established guidelines"
FALLBACK_NOT_RECOMMENDED = "{name} is not recommended for this stage based on established guidelines"
FALLBACK_NO_EFFECT = "{name} is not expected to change the patient's course at this stage"

# Attribution used when content omits it.
DEFAULT_LICENSE = "CC BY-NC-SA 4.0"
DEFAULT_SOURCE_VERSION = "aliem-rescu-peds-03-29-21"
DEFAULT_SOURCE_CITATION = "ALiEM EM ReSCu Peds - Pediatric Emergency Medicine Cases"


@dataclass(frozen=True)
class AlertThresholds:
    """Systolic pressure alert thresholds (mmHg) for one condition."""
    critical: float = 80.0
    urgent: float = 95.0


# Shock definitions differ by mechanism (distributive vs hypovolemic).
SYSTOLIC_ALERT_THRESHOLDS = {
    "anaphylaxis": AlertThresholds(critical=70.0, urgent=85.0),
    "sepsis": AlertThresholds(critical=70.0, urgent=85.0),
    "dka": AlertThresholds(critical=75.0, urgent=90.0),
    "default": AlertThresholds(),
}
