"""
Simulation engine tests: end-to-end case runs through the public facade.
"""

import asyncio
import dataclasses
import logging
from concurrent.futures import ThreadPoolExecutor

import pytest

from pedsim.cases.repository import CaseRepository
from pedsim.core.engine import SimulationEngine
from pedsim.core.errors import CaseNotFoundError, InvalidInterventionError, SessionClosedError
from pedsim.core.state import (
    CompletionState,
    EngineConfig,
    InterventionCategory,
    VitalField,
    Vitals,
)
from pedsim.guidance.gateway import EvidenceGateway, EvidenceRef, Guidance
from pedsim.physiology.curves import VitalCurve, severity_curve
from pedsim.telemetry.events import (
    COMPLETED_BY_ALL_REQUIRED,
    TelemetrySink,
)


ANAPHYLAXIS = "aliem_case_01_anaphylaxis"
SEPSIS = "aliem_case_13_pneumonia_sepsis"

FULL_ANAPHYLAXIS_RUN = [
    "IM epinephrine",
    "IV fluids bolus",
    "diphenhydramine IV",
    "steroids IV",
    "Discussion around need for admission",
    "Discussion with family about anaphylaxis/allergic reactions",
    "Outpatient treatment and follow up discussion",
]


class SlowGateway(EvidenceGateway):
    async def fetch_guidance(self, case_id, stage, intervention_name, intervention_category):
        await asyncio.sleep(1.0)
        return Guidance("Too late.", [EvidenceRef(case_id, "x", "1")])


class BrokenSink(TelemetrySink):
    def emit(self, record):
        raise ConnectionError("collector down")


# =============================================================================
# Applying interventions
# =============================================================================

class TestApplyIntervention:

    def test_epinephrine_at_presentation(self, engine, session, apply, telemetry):
        result = apply(engine, session, "IM epinephrine")

        assert result.vitals_before == Vitals(130, 41, 85, 50, 93, 38.5, "lethargic", 4)
        assert result.vitals_after == Vitals(111, 31, 105, 50, 97, 38.5, "lethargic", 4)
        assert session.vitals == result.vitals_after
        assert result.category is InterventionCategory.REQUIRED
        assert result.entry.success
        assert not result.stage_advanced and not result.case_completed
        assert result.delta[VitalField.HEART_RATE] == -19

        assert result.classification.severity_score < 9

        assert result.guidance.fallback
        assert result.guidance.explanation == (
            "IM epinephrine is indicated for this stage based on established guidelines"
        )
        queries = telemetry.of_type("guidance_query")
        assert len(queries) == 1
        assert queries[0]["fallback"] is True
        assert queries[0]["intervention"] == "IM epinephrine"

    def test_ordered_stage_rejects_fluids_before_epinephrine(self, engine, session, apply):
        first = apply(engine, session, "IV fluids bolus")
        assert first.category is InterventionCategory.REQUIRED
        assert not first.entry.success
        # Effects apply even to an out-of-order attempt.
        assert session.vitals.blood_pressure_sys == 93

        apply(engine, session, "IM epinephrine")
        assert session.current_stage.number == 1
        assert apply(engine, session, "IV fluids bolus").stage_advanced
        assert session.current_stage.number == 2

    def test_synonym_is_recorded_canonically(self, engine, session, apply):
        result = apply(engine, session, "EpiPen")
        assert result.entry.name == "IM epinephrine"
        assert session.ledger[-1].intervention_id == "1:IM epinephrine"

    def test_full_run_completes_case(self, engine, session, apply, telemetry):
        results = apply(engine, session, *FULL_ANAPHYLAXIS_RUN)

        assert [r.stage_advanced for r in results] == [False, True, False, True, True, False, False]
        assert results[-1].case_completed
        assert session.completion_state is CompletionState.CASE_COMPLETE

        completed = telemetry.of_type("case_completed")
        assert len(completed) == 1
        event = completed[0]
        assert event["caseId"] == ANAPHYLAXIS
        assert event["completedBy"] == COMPLETED_BY_ALL_REQUIRED
        assert event["appliedInterventionIds"] == [
            "1:IM epinephrine",
            "1:IV fluids bolus",
            "2:diphenhydramine IV",
            "2:steroids IV",
            "3:Discussion around need for admission",
            "4:Discussion with family about anaphylaxis/allergic reactions",
            "4:Outpatient treatment and follow up discussion",
        ]
        assert "timestamp" in event

    def test_closed_session_rejects_everything(self, engine, session, apply):
        apply(engine, session, *FULL_ANAPHYLAXIS_RUN)
        with pytest.raises(SessionClosedError):
            apply(engine, session, "IM epinephrine")
        with pytest.raises(SessionClosedError):
            engine.tick(session, 10)
        assert len(session.ledger) == len(FULL_ANAPHYLAXIS_RUN)

    def test_failing_telemetry_sink_does_not_affect_result(self, repository, apply):
        engine = SimulationEngine(repository, telemetry=BrokenSink())
        session = engine.start_session(ANAPHYLAXIS)
        results = apply(engine, session, *FULL_ANAPHYLAXIS_RUN)
        assert results[-1].case_completed
        assert session.completion_state is CompletionState.CASE_COMPLETE

    def test_harmful_strikes_fail_case(self, engine, session, apply, telemetry):
        results = apply(engine, session, "epinephrine PO", "epinephrine PO", "epinephrine PO")
        assert results[-1].case_failed
        assert "Harmful intervention: epinephrine PO" in results[-1].guidance.risk_flags
        assert session.completion_state is CompletionState.CASE_FAILED

        failed = telemetry.of_type("case_failed")
        assert len(failed) == 1
        assert failed[0]["appliedInterventionIds"] == ["1:epinephrine PO"] * 3
        assert telemetry.of_type("case_completed") == []

    def test_invalid_intervention_leaves_session_untouched(self, engine, session, apply, telemetry):
        snapshot = session.vitals
        with pytest.raises(InvalidInterventionError):
            apply(engine, session, "juggling")
        assert session.ledger == []
        assert session.vitals is snapshot
        assert telemetry.events == []

    def test_guidance_timeout_falls_back_after_commit(self, repository, telemetry, apply):
        engine = SimulationEngine(
            repository, gateway=SlowGateway(), telemetry=telemetry,
            config=EngineConfig(guidance_timeout_sec=0.05),
        )
        session = engine.start_session(ANAPHYLAXIS)
        result = apply(engine, session, "IM epinephrine")

        assert result.guidance.fallback
        assert session.ledger[-1].name == "IM epinephrine"
        assert session.vitals.heart_rate == 111
        assert telemetry.of_type("guidance_query")[0]["fallback"] is True


# =============================================================================
# Ticks
# =============================================================================

class TestTick:

    def test_tick_follows_case_trend(self, engine, session):
        outcome = engine.tick(session, 10)
        # Anaphylaxis trend: HR +0.4/s, SpO2 -0.12/s.
        assert outcome.vitals.heart_rate == pytest.approx(134.0)
        assert outcome.vitals.spo2 == pytest.approx(91.8)
        assert session.elapsed_sec == 10
        assert session.vitals == outcome.vitals

    def test_tick_is_deterministic(self, engine):
        a = engine.start_session(ANAPHYLAXIS)
        b = engine.start_session(ANAPHYLAXIS)
        for dt in (10, 5, 30, 0, 12.5):
            assert engine.tick(a, dt).vitals == engine.tick(b, dt).vitals

    def test_default_tick_length(self, engine, session):
        engine.tick(session)
        assert session.elapsed_sec == engine.config.default_tick_sec

    def test_negative_dt_rejected(self, engine, session):
        with pytest.raises(ValueError):
            engine.tick(session, -5)
        assert session.elapsed_sec == 0

    def test_tti_overdue(self, engine, session, advance_time):
        assert not advance_time(engine, session, 60).tti_overdue
        assert engine.tick(session, 10).tti_overdue

    def test_stage_clock_resets_on_advance(self, engine, session, apply, advance_time):
        advance_time(engine, session, 70)
        apply(engine, session, "IM epinephrine", "IV fluids bolus")
        assert session.stage_elapsed_sec == 0
        assert not engine.tick(session, 10).tti_overdue
        assert session.elapsed_sec == 80

    def test_curve_selection_order(self, engine, session):
        assert engine.curve_for(session) == session.variant.curve

        stage_curve = VitalCurve("stage", "Stage curve", {VitalField.HEART_RATE: -6.0})
        stages = list(session.variant.stages)
        stages[0] = dataclasses.replace(stages[0], curve=stage_curve)
        session.variant = dataclasses.replace(session.variant, stages=tuple(stages))
        assert engine.curve_for(session) is stage_curve
        assert engine.tick(session, 10).vitals.heart_rate == pytest.approx(129.0)

    def test_severity_drift_when_no_curve(self, engine):
        session = engine.start_session(SEPSIS)
        assert engine.curve_for(session) == severity_curve("critical")
        outcome = engine.tick(session, 10)
        assert outcome.vitals.heart_rate == pytest.approx(163.0)

    def test_auto_deterioration_disabled(self, repository):
        engine = SimulationEngine(repository, config=EngineConfig(auto_deterioration=False))
        session = engine.start_session(SEPSIS)
        before = session.vitals
        outcome = engine.tick(session, 60)
        assert outcome.vitals == before
        assert outcome.deterioration_rates == {}
        assert session.elapsed_sec == 60

    def test_alerts_reported(self, engine, session):
        outcome = engine.tick(session, 10)
        assert any("Hypoxemia" in alert for alert in outcome.alerts)

    def test_parallel_sessions_do_not_interfere(self, engine):
        sessions = [engine.start_session(ANAPHYLAXIS) for _ in range(4)]

        def run(s):
            for _ in range(25):
                engine.tick(s, 2)
            return s.vitals

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(run, sessions))

        assert all(s.elapsed_sec == 50 for s in sessions)
        assert all(v == results[0] for v in results)

    def test_concurrent_interventions_on_one_session_are_serialized(self, engine, session):
        names = ["supplemental oxygen", "CBC", "H2 blocker IV", "CXR (normal)"] * 3

        def run(name):
            return asyncio.run(engine.apply_intervention(session, name))

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(run, names))

        assert len(session.ledger) == len(names)
        assert session.completion_state is CompletionState.AWAITING_INTERVENTIONS


# =============================================================================
# Session state
# =============================================================================

class TestSessionState:

    def test_snapshot(self, engine, session, apply):
        apply(engine, session, "IM epinephrine")
        state = engine.get_session_state(session)
        assert state.current_stage == 1
        assert state.completion_state is CompletionState.AWAITING_INTERVENTIONS
        assert [e.name for e in state.ledger] == ["IM epinephrine"]

        apply(engine, session, "IV fluids bolus")
        assert len(state.ledger) == 1

        data = engine.get_session_state(session).to_dict()
        assert data["currentStage"] == 2
        assert data["completionState"] == "awaiting_interventions"
        assert data["ledger"][1]["name"] == "IV fluids bolus"

    def test_end_session_releases_lock(self, engine, session):
        engine.tick(session, 1)
        assert len(engine.locks) == 1
        engine.end_session(session)
        assert len(engine.locks) == 0

    def test_result_serializes(self, engine, session, apply):
        data = apply(engine, session, "IM epinephrine").to_dict()
        assert data["vitalsAfter"]["heartRate"] == 111
        assert data["delta"]["heartRate"] == -19
        assert data["entry"]["category"] == "required"
        assert data["guidance"]["fallback"] is True

    def test_unsupported_case(self, engine):
        with pytest.raises(CaseNotFoundError):
            engine.start_session("aliem_case_99_unknown")



# =============================================================================
# Authored content problems
# =============================================================================

def custom_case(initial_vitals=None, effects=None):
    vitals = {"heartRate": 120, "respRate": 28, "bloodPressureSys": 95,
              "bloodPressureDia": 55, "spo2": 96, "temperature": 37.0,
              "consciousness": "alert"}
    vitals.update(initial_vitals or {})
    return CaseRepository.from_records([{
        "id": "aliem_case_97_custom",
        "category": "Test",
        "displayName": "Custom",
        "variants": [{
            "variantId": "A",
            "ageBand": "school",
            "ageYears": 7,
            "weightKg": 22,
            "initialVitals": vitals,
            "stages": [
                {"stage": 1, "severity": "critical", "requiredInterventions": ["A"],
                 "vitalEffects": effects or {}},
                {"stage": 2, "requiredInterventions": ["B"]},
            ],
        }],
    }])


class TestAuthoredContentProblems:

    def test_effect_with_unknown_vital_field_holds_stage(self, apply, caplog):
        repository = custom_case(effects={"A": {"bloodGlucose": 40, "heartRate": -5}})
        engine = SimulationEngine(repository)
        session = engine.start_session("aliem_case_97_custom")

        with caplog.at_level(logging.ERROR):
            result = apply(engine, session, "A")

        assert result.entry.success
        assert not result.stage_advanced
        assert session.current_stage.number == 1
        assert session.completion_state is CompletionState.AWAITING_INTERVENTIONS
        assert session.vitals.heart_rate == 115
        assert "unknown vital fields" in caplog.text

    def test_known_effect_fields_let_stage_advance(self, apply):
        repository = custom_case(effects={"A": {"heartRate": -5}})
        engine = SimulationEngine(repository)
        session = engine.start_session("aliem_case_97_custom")
        assert apply(engine, session, "A").stage_advanced
        assert session.current_stage.number == 2

    def test_out_of_range_initial_vitals_start_clamped(self, caplog):
        repository = custom_case(initial_vitals={"spo2": 120, "heartRate": 350})
        engine = SimulationEngine(repository)

        with caplog.at_level(logging.WARNING):
            session = engine.start_session("aliem_case_97_custom")

        assert session.vitals.spo2 == 100
        assert session.vitals.heart_rate == 300
        assert session.variant.initial_vitals.spo2 == 120
        assert "OutOfRangeWarning" in caplog.text

        outcome = engine.tick(session, 60)
        assert 0 <= outcome.vitals.spo2 <= 100
        assert 0 <= outcome.vitals.heart_rate <= 300
