"""
Deterministic vitals engine.

Pure functions over immutable Vitals snapshots: intervention effects,
curve-driven deterioration, severity scoring and status classification.
Nothing here keeps state or draws random numbers.
"""
import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Mapping, Optional, Union

from pedsim.core.constants import (
    SEVERITY_SCORE_MAX,
    CONSCIOUSNESS_POINTS,
    CAP_REFILL_DELAYED_SEC,
    STATUS_BANDS,
    REC_SPO2_BELOW,
    REC_SBP_BELOW,
    REC_HR_LOW,
    REC_HR_HIGH,
    CONSCIOUSNESS_LEVELS,
)
from pedsim.core.state import (
    Vitals,
    VitalField,
    VITAL_BOUNDS,
    VITAL_LABELS,
    NUMERIC_FIELDS,
    ClinicalClassification,
    ClinicalStatus,
)
from pedsim.core.utils import clamp, is_finite_number
from pedsim.physiology.curves import VitalCurve

EffectValue = Union[float, str]
VitalEffect = Mapping[Union[VitalField, str], EffectValue]


@dataclass(frozen=True)
class TickResult:
    vitals: Vitals
    deterioration_rates: Dict[VitalField, float] = field(default_factory=dict)


@dataclass(frozen=True)
class RangeValidation:
    is_valid: bool
    warnings: List[str] = field(default_factory=list)


# Severity breakpoints: first matching rule within a field wins.
# Each rule is (comparison, threshold, points).
_SEVERITY_RULES = {
    VitalField.HEART_RATE: (("<", 60, 2), (">", 180, 3), (">", 160, 2), (">", 140, 1)),
    VitalField.RESP_RATE: (("<", 20, 2), (">", 60, 3), (">", 50, 2), (">", 40, 1)),
    VitalField.BP_SYS: (("<", 90, 3), ("<", 100, 2), ("<", 110, 1)),
    VitalField.SPO2: (("<", 90, 3), ("<", 95, 1)),
    VitalField.TEMPERATURE: ((">", 40, 2), (">", 39, 1), ("<", 36, 1)),
    VitalField.CAP_REFILL: ((">", CAP_REFILL_DELAYED_SEC, 2),),
}


def apply_vital_effects(vitals: Vitals, effect: Optional[VitalEffect]) -> Vitals:
    """
    Apply an intervention's additive deltas and clamp each touched field.

    Consciousness is replaced when the effect carries a non-empty string;
    numeric consciousness placeholders are ignored. Capillary refill adds to
    the current value, or to zero when the snapshot has none.
    """
    if not effect:
        return vitals

    updates = {}
    for key, delta in effect.items():
        vital = VitalField.parse(key)
        if vital is None:
            continue
        if vital is VitalField.CONSCIOUSNESS:
            if isinstance(delta, str) and delta.strip():
                updates[vital.attr] = delta.strip()
            continue
        if not is_finite_number(delta):
            continue
        current = vitals.get(vital)
        if current is None:
            current = 0.0
        low, high = VITAL_BOUNDS[vital]
        updates[vital.attr] = clamp(current + delta, low, high)

    if not updates:
        return vitals
    return replace(vitals, **updates)


def tick_vitals(vitals: Vitals, curve: Optional[VitalCurve], delta_time_seconds: float) -> TickResult:
    """
    Advance vitals along a deterioration curve.

    delta = rate_per_minute * dt / 60 for every field the curve names, and the
    result is clamped to the field bounds on both sides.
    """
    if delta_time_seconds < 0:
        raise ValueError("delta_time_seconds must be >= 0")
    if curve is None or not curve.params:
        return TickResult(vitals, {})

    rates: Dict[VitalField, float] = {}
    updates = {}
    for vital, rate_per_minute in curve.params.items():
        if not vital.is_numeric:
            continue
        delta = rate_per_minute * delta_time_seconds / 60.0
        rates[vital] = delta
        if rate_per_minute == 0:
            continue
        current = vitals.get(vital)
        if current is None:
            current = 0.0
        low, high = VITAL_BOUNDS[vital]
        updates[vital.attr] = clamp(current + delta, low, high)

    new_vitals = replace(vitals, **updates) if updates else vitals
    return TickResult(new_vitals, rates)


def _field_points(vital: VitalField, value) -> int:
    if value is None:
        return 0
    for op, threshold, points in _SEVERITY_RULES[vital]:
        if op == "<" and value < threshold:
            return points
        if op == ">" and value > threshold:
            return points
    return 0


def calculate_severity_score(vitals: Vitals) -> int:
    """Summed per-field severity points, capped at SEVERITY_SCORE_MAX."""
    score = 0
    for vital in _SEVERITY_RULES:
        score += _field_points(vital, vitals.get(vital))
    score += CONSCIOUSNESS_POINTS.get((vitals.consciousness or "").lower(), 0)
    return min(score, SEVERITY_SCORE_MAX)


def determine_clinical_status(vitals: Vitals) -> ClinicalClassification:
    score = calculate_severity_score(vitals)

    for max_score, status, priority, base_recs in STATUS_BANDS:
        if score <= max_score:
            break
    recommendations = list(base_recs)

    if vitals.spo2 < REC_SPO2_BELOW:
        recommendations.append("Oxygen therapy indicated")
    if vitals.blood_pressure_sys < REC_SBP_BELOW:
        recommendations.append("Fluid resuscitation may be needed")
    if vitals.heart_rate < REC_HR_LOW or vitals.heart_rate > REC_HR_HIGH:
        recommendations.append("Cardiac monitoring essential")

    return ClinicalClassification(
        status=ClinicalStatus(status),
        priority=priority,
        recommendations=recommendations,
        severity_score=score,
    )


def calculate_time_to_critical(
    vitals: Vitals,
    curve: VitalCurve,
    thresholds: Mapping[Union[VitalField, str], float],
) -> Dict[VitalField, float]:
    """
    Seconds until each thresholded field reaches its threshold at the curve rate.

    Fields without a current numeric value or without a curve rate are
    omitted. A zero rate yields infinity.
    """
    result: Dict[VitalField, float] = {}
    for key, threshold in thresholds.items():
        vital = VitalField.parse(key)
        if vital is None or not vital.is_numeric or not is_finite_number(threshold):
            continue
        current = vitals.get(vital)
        rate = curve.rate(vital)
        if current is None or rate is None:
            continue
        if rate == 0:
            result[vital] = math.inf
        else:
            result[vital] = abs((threshold - current) / rate) * 60.0
    return result


def validate_vital_ranges(vitals: Vitals) -> RangeValidation:
    """Report bound violations without clamping."""
    warnings = []
    for vital in NUMERIC_FIELDS:
        value = vitals.get(vital)
        if value is None:
            continue
        low, high = VITAL_BOUNDS[vital]
        if not is_finite_number(value) or value < low or value > high:
            warnings.append(f"{VITAL_LABELS[vital]} out of range: {value}")
    if vitals.consciousness not in CONSCIOUSNESS_LEVELS:
        warnings.append(f"{VITAL_LABELS[VitalField.CONSCIOUSNESS]} level not recognized: {vitals.consciousness}")
    return RangeValidation(is_valid=not warnings, warnings=warnings)


def clamp_vitals(vitals: Vitals) -> Vitals:
    """Pull every numeric field into its bounds. Missing fields stay missing."""
    updates = {}
    for vital in NUMERIC_FIELDS:
        value = vitals.get(vital)
        if value is None:
            continue
        low, high = VITAL_BOUNDS[vital]
        bounded = clamp(value, low, high) if is_finite_number(value) else low
        if bounded != value:
            updates[vital.attr] = bounded
    return replace(vitals, **updates) if updates else vitals


def vitals_delta(before: Vitals, after: Vitals) -> Dict[VitalField, float]:
    """Per numeric field change; fields unchanged or missing on either side are omitted."""
    delta = {}
    for vital in NUMERIC_FIELDS:
        a = before.get(vital)
        b = after.get(vital)
        if a is None and b is None:
            continue
        diff = (b or 0.0) - (a or 0.0)
        if diff != 0:
            delta[vital] = diff
    return delta
