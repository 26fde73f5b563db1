# Cases package
from .base import Stage, CaseVariant, CaseDefinition
from .anaphylaxis import create_anaphylaxis_case
from .status_asthmaticus import create_status_asthmaticus_case
from .sepsis import create_sepsis_case

__all__ = [
    'Stage',
    'CaseVariant',
    'CaseDefinition',
    'create_anaphylaxis_case',
    'create_status_asthmaticus_case',
    'create_sepsis_case',
    'CASE_BUILDERS',
]

CASE_BUILDERS = {
    "aliem_case_01_anaphylaxis": create_anaphylaxis_case,
    "aliem_case_13_pneumonia_sepsis": create_sepsis_case,
    "aliem_case_14_status_asthmaticus": create_status_asthmaticus_case,
}
