from pedsim.cases.base import CaseDefinition, CaseVariant, Stage, parse_vital_effects
from pedsim.core.state import Vitals

CASE_ID = "aliem_case_13_pneumonia_sepsis"


def create_sepsis_case() -> CaseDefinition:
    """
    Tracheostomized child with pneumonia and septic shock.

    No case-level curve is authored: the stage severity drift applies.
    """
    stages = (
        Stage(
            number=1,
            name="Trach Management & ABCs",
            severity="critical",
            tti_sec=60,
            ordered=True,
            required=(
                "Provide supplemental oxygen",
                "Suction tracheostomy tube",
                "Replace tracheostomy tube",
            ),
            helpful=(
                "Perform BMV through tracheostomy",
                "Place patient on continuous cardiac monitor",
                "Obtain point-of-care rapid glucose level",
            ),
            harmful=("oral intubation attempt",),
            vital_effects=parse_vital_effects({
                "Provide supplemental oxygen": {"spo2": 2},
                "Suction tracheostomy tube": {"spo2": 2, "respRate": -2},
                "Replace tracheostomy tube": {"spo2": 8},
                "Perform BMV through tracheostomy": {"spo2": 3},
                "oral intubation attempt": {"spo2": -8, "heartRate": 10},
            }, owner=CASE_ID),
            synonyms={"trach change": "Replace tracheostomy tube", "oxygen": "Provide supplemental oxygen"},
        ),
        Stage(
            number=2,
            name="Sepsis Management",
            severity="severe",
            tti_sec=300,
            required=("IV fluids", "broad-spectrum antibiotics"),
            helpful=("RUSH POCUS", "Establish vascular access"),
            harmful=("delay antibiotics", "delay fluids"),
            vital_effects=parse_vital_effects({
                "IV fluids": {"bloodPressureSys": 10, "heartRate": -5, "capillaryRefill": -1},
                "broad-spectrum antibiotics": {"heartRate": -2},
                "delay antibiotics": {"bloodPressureSys": -5, "heartRate": 5},
                "delay fluids": {"bloodPressureSys": -5, "heartRate": 5, "capillaryRefill": 1},
            }, owner=CASE_ID),
            synonyms={"ceftriaxone": "broad-spectrum antibiotics", "20 mL/kg NS bolus": "IV fluids"},
        ),
        Stage(
            number=3,
            name="Disposition",
            severity="severe",
            tti_sec=600,
            required=("Plan transfer to pediatric ICU", "Ensure family is updated on plan"),
        ),
    )

    variant = CaseVariant(
        case_id=CASE_ID,
        variant_id="A",
        display_name="Pneumonia & Septic Shock (Trach)",
        age_band="child",
        age_years=5,
        weight_kg=18,
        initial_vitals=Vitals(
            heart_rate=160,
            resp_rate=40,
            blood_pressure_sys=70,
            blood_pressure_dia=40,
            spo2=88,
            temperature=39.5,
            consciousness="lethargic",
            capillary_refill=4,
        ),
        stages=stages,
        source_citation="ALiEM EM ReSCu Peds – Case 13",
    )

    return CaseDefinition(
        id=CASE_ID,
        category="Sepsis",
        display_name="Pneumonia & Septic Shock (Trach)",
        description="Tracheostomized pediatric patient in respiratory distress with suspected pneumonia and septic shock.",
        variants={variant.variant_id: variant},
    )
