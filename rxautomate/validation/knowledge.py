"""Default clinical reference tables for the table-driven rule checks.

Deployments with a pharmacological rules service plug in their own
``RuleCheck`` implementations instead.
"""

from rxautomate.models import Severity

# prescribed medication -> [(interacts with, severity, description)]
INTERACTIONS: dict[str, list[tuple[str, Severity, str]]] = {
    "warfarin": [
        (
            "aspirin",
            Severity.HIGH,
            "Increased risk of bleeding when warfarin is combined with aspirin",
        ),
    ],
    "fluoxetine": [
        (
            "tramadol",
            Severity.CRITICAL,
            "Risk of serotonin syndrome when fluoxetine is combined with tramadol",
        ),
    ],
}

# "<medication> <dosage>" -> (severity, description)
DOSAGE_LIMITS: dict[str, tuple[Severity, str]] = {
    "metformin 1000mg": (
        Severity.MEDIUM,
        "Dosage of metformin may be too high for patient weight",
    ),
}

# medication -> allergen classes it contains
ALLERGEN_COMPONENTS: dict[str, list[str]] = {
    "amoxicillin": ["penicillin"],
    "augmentin": ["penicillin", "clavulanic acid"],
    "aspirin": ["salicylates"],
    "ibuprofen": ["nsaids"],
}

# medication -> [(condition, severity)]
CONTRAINDICATIONS: dict[str, list[tuple[str, Severity]]] = {
    "ibuprofen": [("peptic ulcer", Severity.HIGH), ("kidney disease", Severity.MEDIUM)],
    "metformin": [("kidney failure", Severity.CRITICAL)],
    "propranolol": [("asthma", Severity.CRITICAL), ("heart block", Severity.HIGH)],
}
