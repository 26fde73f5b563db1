from pedsim.cases.base import CaseDefinition, CaseVariant, Stage, parse_vital_effects
from pedsim.core.state import Vitals
from pedsim.physiology.curves import case_trend_curve

CASE_ID = "aliem_case_14_status_asthmaticus"


def create_status_asthmaticus_case() -> CaseDefinition:
    """
    Severe asthma exacerbation in a 9-year-old.

    Immediate bronchodilators and steroids, escalation to second-line
    therapy with noninvasive ventilation, then a tension pneumothorax.
    """
    stages = (
        Stage(
            number=1,
            name="Initial Management",
            severity="severe",
            tti_sec=60,
            ordered=False,
            required=(
                "albuterol/ipratropium nebulizer",
                "steroids",
                "supplemental oxygen",
                "Place on monitor",
            ),
            helpful=("Identify team leader and roles",),
            harmful=("sedation for anxiety", "delay bronchodilators"),
            neutral=("CXR",),
            vital_effects=parse_vital_effects({
                "albuterol/ipratropium nebulizer": {"spo2": 3, "respRate": -2, "heartRate": 5},
                "steroids": {"respRate": -1},
                "supplemental oxygen": {"spo2": 2},
                "sedation for anxiety": {"respRate": -8, "spo2": -6, "consciousness": "drowsy"},
            }, owner=CASE_ID),
            synonyms={
                "DuoNeb": "albuterol/ipratropium nebulizer",
                "albuterol": "albuterol/ipratropium nebulizer",
                "dexamethasone": "steroids",
                "oxygen": "supplemental oxygen",
            },
        ),
        Stage(
            number=2,
            name="Escalation",
            severity="severe",
            tti_sec=300,
            ordered=False,
            required=("magnesium sulfate IV", "Initiate noninvasive ventilation"),
            helpful=("terbutaline", "IM epinephrine", "Call for additional resources"),
            harmful=("sedation for anxiety",),
            vital_effects=parse_vital_effects({
                "magnesium sulfate IV": {"respRate": -3, "spo2": 2, "bloodPressureSys": -4},
                "Initiate noninvasive ventilation": {"spo2": 5, "respRate": -5},
                "terbutaline": {"heartRate": 10, "spo2": 1},
                "IM epinephrine": {"heartRate": 12, "spo2": 1},
            }, owner=CASE_ID),
            synonyms={"BiPAP": "Initiate noninvasive ventilation", "magnesium": "magnesium sulfate IV"},
        ),
        Stage(
            number=3,
            name="Complications",
            severity="critical",
            tti_sec=450,
            ordered=True,
            required=("Recognize pneumothorax", "Perform needle decompression"),
            helpful=("Give news to parent",),
            harmful=("increase NIV pressures",),
            vital_effects=parse_vital_effects({
                "Perform needle decompression": {"spo2": 5, "respRate": -5, "bloodPressureSys": 10},
                "increase NIV pressures": {"spo2": -4, "bloodPressureSys": -10},
            }, owner=CASE_ID),
        ),
        Stage(
            number=4,
            name="Disposition",
            severity="moderate",
            tti_sec=600,
            required=("Sign out to PICU team", "Discuss further treatment/contingency planning"),
        ),
    )

    variant = CaseVariant(
        case_id=CASE_ID,
        variant_id="A",
        display_name="Status Asthmaticus",
        age_band="school",
        age_years=9,
        weight_kg=30,
        initial_vitals=Vitals(
            heart_rate=150,
            resp_rate=40,
            blood_pressure_sys=110,
            blood_pressure_dia=70,
            spo2=88,
            temperature=37.0,
            consciousness="anxious",
            capillary_refill=2,
        ),
        stages=stages,
        curve=case_trend_curve("status_asthmaticus"),
        source_citation="ALiEM EM ReSCu Peds – Case 14",
    )

    return CaseDefinition(
        id=CASE_ID,
        category="Asthma",
        display_name="Status Asthmaticus",
        description="Pediatric patient with severe asthma exacerbation.",
        variants={variant.variant_id: variant},
    )
