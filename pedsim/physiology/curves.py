from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import numpy as np

from pedsim.core.state import VitalField
from pedsim.core.log import get_logger

logger = get_logger(__name__)

# Column order shared by every rate table below.
_TABLE_FIELDS = (
    VitalField.HEART_RATE,
    VitalField.RESP_RATE,
    VitalField.BP_SYS,
    VitalField.BP_DIA,
    VitalField.SPO2,
    VitalField.TEMPERATURE,
    VitalField.CAP_REFILL,
)

_F_TO_C = 5.0 / 9.0

SEVERITY_TICK_SEC = 10.0


@dataclass(frozen=True)
class VitalCurve:
    """
    Named deterioration curve.

    `params` holds signed per-minute rates. Fields absent from `params` are
    not touched by a tick.
    """
    id: str
    name: str
    params: Dict[VitalField, float] = field(default_factory=dict)
    time_to_effect: float = 0.0  # seconds, informational

    def rate(self, vital: VitalField) -> Optional[float]:
        return self.params.get(vital)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "params": {k.value: v for k, v in self.params.items()},
            "timeToEffect": self.time_to_effect,
        }

    @classmethod
    def from_authored(cls, curve_id: str, name: str, params: Mapping[str, float],
                      time_to_effect: float = 0.0) -> "VitalCurve":
        """Parse authored camelCase rates; unknown or non-numeric entries are dropped."""
        parsed = {}
        for key, rate in (params or {}).items():
            vital = VitalField.parse(key)
            if vital is None or not vital.is_numeric:
                logger.warning("Curve %s: ignoring unknown vital field %r", curve_id, key)
                continue
            if isinstance(rate, bool) or not isinstance(rate, (int, float)):
                logger.warning("Curve %s: ignoring non-numeric rate for %s", curve_id, key)
                continue
            parsed[vital] = float(rate)
        return cls(curve_id, name, parsed, float(time_to_effect or 0.0))


def _curve_from_row(curve_id: str, name: str, row: np.ndarray, scale: float) -> VitalCurve:
    # NaN marks a field the profile leaves alone.
    params = {
        vital: float(rate * scale)
        for vital, rate in zip(_TABLE_FIELDS, row)
        if not np.isnan(rate)
    }
    return VitalCurve(curve_id, name, params)


# Generic drift by stage severity, per SEVERITY_TICK_SEC tick.
SEVERITY_ROWS = {"low": 0, "moderate": 1, "severe": 2, "critical": 2}
SEVERITY_TABLE = np.array([
    # HR,  RR,   SBP,  DBP,  SpO2, Temp, CapRefill
    [1.0, 0.5, -0.5, -0.3, -0.2, 0.1, np.nan],
    [2.0, 1.0, -1.0, -0.6, -0.4, 0.2, np.nan],
    [3.0, 1.5, -1.5, -0.9, -0.6, 0.3, np.nan],
])

# Condition-specific trends, per second. Temperature rates were authored in
# Fahrenheit and are converted on read.
CONDITION_META = [
    ("anaphylaxis", "Anaphylaxis (distributive shock)"),
    ("status_asthmaticus", "Status asthmaticus"),
    ("status_epilepticus", "Status epilepticus"),
    ("dka", "Diabetic ketoacidosis"),
    ("sepsis", "Sepsis / septic shock"),
    ("foreign_body_aspiration", "Foreign body aspiration"),
    ("opioid_toxicity", "Opioid toxicity"),
    ("default", "Unspecified deterioration"),
]
CONDITION_ROWS = {key: i for i, (key, _) in enumerate(CONDITION_META)}
CASE_TREND_TABLE = np.array([
    # HR,   RR,    SBP,   DBP,   SpO2,  Temp(F), CapRefill
    [0.40, 0.25, -0.20, -0.12, -0.12, 0.002, 0.030],
    [0.35, 0.40, 0.08, 0.03, -0.18, 0.008, 0.015],
    [0.30, 0.15, 0.15, 0.08, -0.10, 0.020, 0.015],
    [0.35, 0.30, -0.15, -0.08, -0.06, 0.005, 0.025],
    [0.45, 0.20, -0.25, -0.15, -0.10, 0.025, 0.035],
    [0.30, 0.35, 0.05, 0.00, -0.20, 0.000, 0.020],
    [-0.15, -0.25, -0.10, -0.05, -0.15, -0.010, 0.020],
    [0.15, 0.12, -0.08, -0.04, -0.08, 0.008, 0.015],
])
_TEMP_COL = _TABLE_FIELDS.index(VitalField.TEMPERATURE)


def severity_curve(severity: str) -> VitalCurve:
    """Generic per-minute drift for a stage severity (low, moderate, severe)."""
    row = SEVERITY_ROWS.get(severity)
    if row is None:
        raise ValueError(f"severity should be one of: {', '.join(SEVERITY_ROWS)}")
    return _curve_from_row(
        f"severity_{severity}",
        f"{severity.capitalize()} severity drift",
        SEVERITY_TABLE[row],
        60.0 / SEVERITY_TICK_SEC,
    )


def condition_for_case(case_id: str) -> str:
    """Map a case id (e.g. 'aliem_case_01_anaphylaxis') to a condition key."""
    case_id = (case_id or "").lower()
    if "anaphylaxis" in case_id:
        return "anaphylaxis"
    if "asthmaticus" in case_id:
        return "status_asthmaticus"
    if "epilepticus" in case_id:
        return "status_epilepticus"
    if "dka" in case_id:
        return "dka"
    if "sepsis" in case_id or "pneumonia" in case_id:
        return "sepsis"
    if "foreign_body" in case_id:
        return "foreign_body_aspiration"
    if "opioid" in case_id:
        return "opioid_toxicity"
    return "default"


def case_trend_curve(condition: str) -> VitalCurve:
    """Per-minute trend for a named condition."""
    row = CONDITION_ROWS.get(condition)
    if row is None:
        raise ValueError(f"condition should be one of: {', '.join(CONDITION_ROWS)}")
    rates = CASE_TREND_TABLE[row].copy()
    rates[_TEMP_COL] *= _F_TO_C
    label = dict(CONDITION_META)[condition]
    return _curve_from_row(f"trend_{condition}", label, rates, 60.0)
