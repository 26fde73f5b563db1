"""
Vitals engine tests.

Covers intervention effects, curve-driven ticks, severity scoring and the
status classification thresholds.
"""

import math

import pytest

from pedsim.core.state import Vitals, VitalField, ClinicalStatus
from pedsim.physiology.curves import VitalCurve
from pedsim.physiology.vitals_engine import (
    apply_vital_effects,
    tick_vitals,
    calculate_severity_score,
    determine_clinical_status,
    calculate_time_to_critical,
    validate_vital_ranges,
    clamp_vitals,
    vitals_delta,
)


ANAPHYLAXIS_INITIAL = Vitals(
    heart_rate=130,
    resp_rate=41,
    blood_pressure_sys=85,
    blood_pressure_dia=50,
    spo2=93,
    temperature=38.5,
    consciousness="lethargic",
    capillary_refill=4,
)

IM_EPINEPHRINE = {
    VitalField.HEART_RATE: -19,
    VitalField.RESP_RATE: -10,
    VitalField.BP_SYS: 20,
    VitalField.SPO2: 4,
}


# =============================================================================
# Intervention effects
# =============================================================================

class TestApplyVitalEffects:

    def test_epinephrine_effect_matches_expected_vitals(self):
        after = apply_vital_effects(ANAPHYLAXIS_INITIAL, IM_EPINEPHRINE)
        assert after == Vitals(
            heart_rate=111,
            resp_rate=31,
            blood_pressure_sys=105,
            blood_pressure_dia=50,
            spo2=97,
            temperature=38.5,
            consciousness="lethargic",
            capillary_refill=4,
        )

    def test_input_snapshot_is_not_modified(self):
        apply_vital_effects(ANAPHYLAXIS_INITIAL, IM_EPINEPHRINE)
        assert ANAPHYLAXIS_INITIAL.heart_rate == 130

    def test_camel_case_keys_are_accepted(self):
        after = apply_vital_effects(ANAPHYLAXIS_INITIAL, {"heartRate": -10, "bloodPressureSys": 5})
        assert after.heart_rate == 120
        assert after.blood_pressure_sys == 90

    @pytest.mark.parametrize("delta", [1e3, 1e9, -1e3, -1e9])
    def test_result_is_clamped_for_any_magnitude(self, delta):
        effect = {f: delta for f in VitalField if f.is_numeric}
        after = apply_vital_effects(ANAPHYLAXIS_INITIAL, effect)
        assert 0 <= after.heart_rate <= 300
        assert 0 <= after.resp_rate <= 100
        assert 0 <= after.blood_pressure_sys <= 300
        assert 0 <= after.blood_pressure_dia <= 200
        assert 0 <= after.spo2 <= 100
        assert 30 <= after.temperature <= 45
        assert 0 <= after.capillary_refill <= 10

    def test_empty_effect_is_noop(self):
        assert apply_vital_effects(ANAPHYLAXIS_INITIAL, {}) == ANAPHYLAXIS_INITIAL
        assert apply_vital_effects(ANAPHYLAXIS_INITIAL, None) is ANAPHYLAXIS_INITIAL

    def test_consciousness_is_replaced(self):
        after = apply_vital_effects(ANAPHYLAXIS_INITIAL, {VitalField.CONSCIOUSNESS: "alert"})
        assert after.consciousness == "alert"

    def test_numeric_consciousness_placeholder_is_ignored(self):
        after = apply_vital_effects(ANAPHYLAXIS_INITIAL, {"heartRate": 0, "consciousness": 0})
        assert after == ANAPHYLAXIS_INITIAL

    def test_unknown_fields_are_ignored(self):
        after = apply_vital_effects(ANAPHYLAXIS_INITIAL, {"bloodGlucose": 40, "heartRate": 1})
        assert after.heart_rate == 131

    def test_capillary_refill_adds_to_current_value(self):
        after = apply_vital_effects(ANAPHYLAXIS_INITIAL, {VitalField.CAP_REFILL: -1.5})
        assert after.capillary_refill == pytest.approx(2.5)

    def test_capillary_refill_missing_starts_from_zero(self):
        # Absent refill is treated as 0 s before the delta is added.
        vitals = Vitals(capillary_refill=None)
        after = apply_vital_effects(vitals, {VitalField.CAP_REFILL: 2})
        assert after.capillary_refill == 2


# =============================================================================
# Deterioration ticks
# =============================================================================

class TestTickVitals:

    CURVE = VitalCurve("test", "Test curve", {
        VitalField.HEART_RATE: 6.0,
        VitalField.SPO2: -3.0,
        VitalField.RESP_RATE: 0.0,
    })

    def test_rates_are_scaled_to_elapsed_time(self):
        result = tick_vitals(ANAPHYLAXIS_INITIAL, self.CURVE, 10.0)
        assert result.vitals.heart_rate == pytest.approx(131.0)
        assert result.vitals.spo2 == pytest.approx(92.5)
        assert result.deterioration_rates[VitalField.HEART_RATE] == pytest.approx(1.0)
        assert result.deterioration_rates[VitalField.SPO2] == pytest.approx(-0.5)

    def test_zero_rate_leaves_value_unchanged(self):
        result = tick_vitals(ANAPHYLAXIS_INITIAL, self.CURVE, 60.0)
        assert result.vitals.resp_rate == ANAPHYLAXIS_INITIAL.resp_rate
        assert result.deterioration_rates[VitalField.RESP_RATE] == 0.0

    def test_fields_outside_curve_untouched(self):
        result = tick_vitals(ANAPHYLAXIS_INITIAL, self.CURVE, 60.0)
        assert result.vitals.blood_pressure_sys == ANAPHYLAXIS_INITIAL.blood_pressure_sys
        assert VitalField.BP_SYS not in result.deterioration_rates

    def test_is_deterministic(self):
        a = tick_vitals(ANAPHYLAXIS_INITIAL, self.CURVE, 37.0)
        b = tick_vitals(ANAPHYLAXIS_INITIAL, self.CURVE, 37.0)
        assert a == b

    def test_positive_rate_clamps_at_maximum(self):
        vitals = Vitals(heart_rate=299)
        result = tick_vitals(vitals, self.CURVE, 600.0)
        assert result.vitals.heart_rate == 300

    def test_negative_rate_clamps_at_minimum(self):
        vitals = Vitals(spo2=1)
        result = tick_vitals(vitals, self.CURVE, 600.0)
        assert result.vitals.spo2 == 0

    def test_out_of_range_input_is_pulled_into_bounds(self):
        # Above the maximum with a falling rate: both bounds still apply.
        vitals = Vitals(spo2=120)
        result = tick_vitals(vitals, self.CURVE, 60.0)
        assert result.vitals.spo2 == 100

    def test_negative_capillary_refill_rate_floors_at_zero(self):
        curve = VitalCurve("crt", "CRT", {VitalField.CAP_REFILL: -6.0})
        result = tick_vitals(Vitals(capillary_refill=0.5), curve, 60.0)
        assert result.vitals.capillary_refill == 0

    def test_missing_capillary_refill_starts_from_zero(self):
        curve = VitalCurve("crt", "CRT", {VitalField.CAP_REFILL: 1.2})
        result = tick_vitals(Vitals(capillary_refill=None), curve, 60.0)
        assert result.vitals.capillary_refill == pytest.approx(1.2)

    def test_no_curve_is_noop(self):
        result = tick_vitals(ANAPHYLAXIS_INITIAL, None, 10.0)
        assert result.vitals is ANAPHYLAXIS_INITIAL
        assert result.deterioration_rates == {}

    def test_negative_dt_rejected(self):
        with pytest.raises(ValueError):
            tick_vitals(ANAPHYLAXIS_INITIAL, self.CURVE, -1.0)


# =============================================================================
# Severity and status
# =============================================================================

class TestSeverity:

    def test_anaphylaxis_presentation_score(self):
        # RR>40 (1) + SBP<90 (3) + SpO2<95 (1) + CRT>3 (2) + lethargic (2)
        assert calculate_severity_score(ANAPHYLAXIS_INITIAL) == 9

    def test_score_improves_after_epinephrine(self):
        after = apply_vital_effects(ANAPHYLAXIS_INITIAL, IM_EPINEPHRINE)
        assert calculate_severity_score(ANAPHYLAXIS_INITIAL) >= calculate_severity_score(after)

    def test_heart_rate_monotonicity(self):
        prev = -1
        for hr in range(150, 191):
            score = calculate_severity_score(Vitals(heart_rate=hr, blood_pressure_sys=120))
            assert score >= prev, f"score dropped at HR {hr}"
            prev = score

    def test_first_matching_breakpoint_wins(self):
        base = dict(blood_pressure_sys=120)
        assert calculate_severity_score(Vitals(heart_rate=185, **base)) == 3
        assert calculate_severity_score(Vitals(heart_rate=165, **base)) == 2
        assert calculate_severity_score(Vitals(heart_rate=145, **base)) == 1
        assert calculate_severity_score(Vitals(heart_rate=50, **base)) == 2

    def test_worst_case_is_capped(self):
        worst = Vitals(
            heart_rate=200, resp_rate=70, blood_pressure_sys=50, blood_pressure_dia=20,
            spo2=70, temperature=41, consciousness="unresponsive", capillary_refill=6,
        )
        assert calculate_severity_score(worst) == 20

    @pytest.mark.parametrize("vitals,status,priority", [
        (Vitals(blood_pressure_sys=120), ClinicalStatus.STABLE, 4),
        (Vitals(blood_pressure_sys=95, spo2=93, heart_rate=150), ClinicalStatus.CONCERNING, 3),
        (ANAPHYLAXIS_INITIAL, ClinicalStatus.CRITICAL, 2),
        (Vitals(heart_rate=200, resp_rate=70, blood_pressure_sys=50, spo2=80), ClinicalStatus.EMERGENT, 1),
    ])
    def test_status_bands(self, vitals, status, priority):
        result = determine_clinical_status(vitals)
        assert result.status is status
        assert result.priority == priority

    def test_field_specific_recommendations(self):
        result = determine_clinical_status(Vitals(heart_rate=190, blood_pressure_sys=80, spo2=85))
        assert "Oxygen therapy indicated" in result.recommendations
        assert "Fluid resuscitation may be needed" in result.recommendations
        assert "Cardiac monitoring essential" in result.recommendations

    def test_stable_has_no_extra_recommendations(self):
        result = determine_clinical_status(Vitals(blood_pressure_sys=120))
        assert result.recommendations == ["Continue monitoring", "Reassess in 15 minutes"]


# =============================================================================
# Time to critical, validation, deltas
# =============================================================================

def test_time_to_critical():
    curve = VitalCurve("c", "c", {VitalField.SPO2: -2.0, VitalField.HEART_RATE: 0.0})
    result = calculate_time_to_critical(
        ANAPHYLAXIS_INITIAL, curve,
        {VitalField.SPO2: 85, VitalField.HEART_RATE: 180, VitalField.BP_SYS: 70},
    )
    assert result[VitalField.SPO2] == pytest.approx(240.0)
    assert math.isinf(result[VitalField.HEART_RATE])
    assert VitalField.BP_SYS not in result


def test_validate_vital_ranges_reports_without_clamping():
    vitals = Vitals(heart_rate=350, temperature=25)
    result = validate_vital_ranges(vitals)
    assert not result.is_valid
    assert "Heart rate out of range: 350" in result.warnings
    assert any(w.startswith("Temperature out of range") for w in result.warnings)
    assert vitals.heart_rate == 350


def test_validate_vital_ranges_accepts_presentation():
    result = validate_vital_ranges(ANAPHYLAXIS_INITIAL)
    assert result.is_valid
    assert result.warnings == []


def test_clamp_vitals_bounds_every_numeric_field():
    vitals = Vitals(heart_rate=350, spo2=120, temperature=25, capillary_refill=None)
    bounded = clamp_vitals(vitals)
    assert bounded.heart_rate == 300
    assert bounded.spo2 == 100
    assert bounded.temperature == 30
    assert bounded.capillary_refill is None
    assert vitals.heart_rate == 350


def test_clamp_vitals_leaves_valid_vitals_untouched():
    assert clamp_vitals(ANAPHYLAXIS_INITIAL) is ANAPHYLAXIS_INITIAL


def test_vitals_delta():
    after = apply_vital_effects(ANAPHYLAXIS_INITIAL, IM_EPINEPHRINE)
    assert vitals_delta(ANAPHYLAXIS_INITIAL, after) == {
        VitalField.HEART_RATE: -19,
        VitalField.RESP_RATE: -10,
        VitalField.BP_SYS: 20,
        VitalField.SPO2: 4,
    }
