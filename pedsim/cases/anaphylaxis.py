from pedsim.cases.base import CaseDefinition, CaseVariant, Stage, parse_vital_effects
from pedsim.core.state import Vitals
from pedsim.physiology.curves import case_trend_curve

CASE_ID = "aliem_case_01_anaphylaxis"

_HARMFUL = (
    "delay epinephrine",
    "epinephrine PO",
    "unnecessary intubation without indications",
)

_EPI_SYNONYMS = {
    "epinephrine IM": "IM epinephrine",
    "intramuscular epinephrine": "IM epinephrine",
    "epinephrine 0.01 mg/kg IM": "IM epinephrine",
    "EpiPen": "IM epinephrine",
}


def create_anaphylaxis_case() -> CaseDefinition:
    """
    Peanut anaphylaxis in a 6-year-old at school.

    Clinical Goals:
    1. Recognize distributive shock and give IM epinephrine first.
    2. Fluid bolus and adjunct therapy.
    3. Observation and admission decision.
    4. Discharge teaching and follow up.
    """
    stages = (
        # Stage 1: Recognition
        Stage(
            number=1,
            name="Recognition & ABCs",
            severity="severe",
            tti_sec=60,
            ordered=True,
            required=("IM epinephrine", "IV fluids bolus"),
            helpful=(
                "diphenhydramine IV",
                "H2 blocker IV",
                "nebulized beta-agonist",
                "steroids IV",
                "supplemental oxygen",
            ),
            harmful=_HARMFUL,
            neutral=("CBC", "CXR (normal)"),
            vital_effects=parse_vital_effects({
                "IM epinephrine": {"heartRate": -19, "respRate": -10, "bloodPressureSys": 20, "spo2": 4},
                "IV fluids bolus": {"bloodPressureSys": 8, "bloodPressureDia": 5, "capillaryRefill": -1},
                "diphenhydramine IV": {"heartRate": -5, "respRate": -2},
                "H2 blocker IV": {"heartRate": -3, "respRate": -1},
                "nebulized beta-agonist": {"respRate": -5, "spo2": 2},
                "steroids IV": {"heartRate": -2, "respRate": -1},
                "supplemental oxygen": {"spo2": 3},
                "CBC": {"heartRate": 0, "consciousness": 0},
                "CXR (normal)": {"heartRate": 0, "consciousness": 0},
                "delay epinephrine": {"heartRate": 8, "bloodPressureSys": -8, "spo2": -3},
                "epinephrine PO": {"bloodPressureSys": -4},
            }, owner=CASE_ID),
            synonyms={
                **_EPI_SYNONYMS,
                "normal saline bolus": "IV fluids bolus",
                "20 mL/kg crystalloid bolus": "IV fluids bolus",
                "oxygen": "supplemental oxygen",
            },
        ),
        # Stage 2: Adjuncts
        Stage(
            number=2,
            name="Initial Therapy & Monitoring",
            severity="moderate",
            tti_sec=300,
            ordered=False,
            required=("diphenhydramine IV", "steroids IV"),
            helpful=("IM epinephrine", "H2 blocker IV", "nebulized beta-agonist", "IV fluids bolus"),
            harmful=_HARMFUL,
            neutral=("CBC", "CXR (normal)"),
            vital_effects=parse_vital_effects({
                "IM epinephrine": {"heartRate": -15, "bloodPressureSys": 15, "spo2": 3},
                "diphenhydramine IV": {"heartRate": -3, "consciousness": "alert"},
                "H2 blocker IV": {"heartRate": -3, "respRate": -1},
                "nebulized beta-agonist": {"respRate": -5, "spo2": 2, "heartRate": 2},
                "steroids IV": {"heartRate": -2, "respRate": -1},
                "IV fluids bolus": {"bloodPressureSys": 5, "capillaryRefill": -1},
            }, owner=CASE_ID),
            synonyms={
                **_EPI_SYNONYMS,
                "Benadryl": "diphenhydramine IV",
                "methylprednisolone IV": "steroids IV",
                "famotidine IV": "H2 blocker IV",
            },
        ),
        # Stage 3: Observation
        Stage(
            number=3,
            name="Stabilization & Observation",
            severity="moderate",
            tti_sec=600,
            ordered=False,
            required=("Discussion around need for admission",),
            helpful=("continuous cardiorespiratory monitoring",),
            harmful=("discharge without observation",),
            neutral=("CBC",),
        ),
        # Stage 4: Disposition
        Stage(
            number=4,
            name="Discharge & Follow-up",
            severity="low",
            tti_sec=900,
            ordered=False,
            required=(
                "Discussion with family about anaphylaxis/allergic reactions",
                "Outpatient treatment and follow up discussion",
            ),
            helpful=("prescribe epinephrine auto-injector",),
            harmful=("discharge without observation",),
        ),
    )

    variant = CaseVariant(
        case_id=CASE_ID,
        variant_id="A",
        display_name="Anaphylaxis",
        age_band="school",
        age_years=6,
        weight_kg=25,
        initial_vitals=Vitals(
            heart_rate=130,
            resp_rate=41,
            blood_pressure_sys=85,
            blood_pressure_dia=50,
            spo2=93,
            temperature=38.5,
            consciousness="lethargic",
            capillary_refill=4,
        ),
        stages=stages,
        curve=case_trend_curve("anaphylaxis"),
        source_citation="ALiEM EM ReSCu Peds – Case 1: Anaphylaxis",
    )

    return CaseDefinition(
        id=CASE_ID,
        category="Anaphylaxis",
        display_name="Anaphylaxis",
        description="Severe anaphylactic reaction in a 6-year-old child",
        clinical_history=(
            "6-year-old with known peanut allergy presents with facial swelling, "
            "difficulty breathing and wheezing after accidental peanut exposure at school."
        ),
        variants={variant.variant_id: variant},
    )
