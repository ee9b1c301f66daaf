"""Radioactive half-life investigation with a virtual Geiger counter."""

from __future__ import annotations

from ..decay import IsotopeProfile
from ..sections import (
    SOURCE_ANALYSIS,
    AcknowledgmentRule,
    MeasurementCountRule,
    SectionSpec,
    StructuredRule,
)
from .base import LabDefinition, SubmissionPolicy

EXERCISE_ID = "course2_lab_half_life"
BACKGROUND_CPM = 25.0

# Half-lives are shortened to seconds so a run fits in a lesson.
ISOTOPES = {
    "unknown1": IsotopeProfile("unknown1", "Unknown Isotope A", 30.0, 2000.0, BACKGROUND_CPM, "Radon-220"),
    "unknown2": IsotopeProfile("unknown2", "Unknown Isotope B", 60.0, 1800.0, BACKGROUND_CPM, "Francium-223"),
    "unknown3": IsotopeProfile("unknown3", "Unknown Isotope C", 90.0, 1500.0, BACKGROUND_CPM, "Astatine-218"),
    "unknown4": IsotopeProfile("unknown4", "Unknown Isotope D", 45.0, 2200.0, BACKGROUND_CPM, "Polonium-214"),
}

PRELAB_QUESTIONS = (
    "What is the mathematical relationship between half-life and decay constant?",
    "Why is radioactive decay considered a random process, and how does this affect measurements?",
    "What is background radiation and why must it be subtracted from measurements?",
    "Explain how linearization of exponential data helps in determining half-life.",
)

_ANSWER_MIN = 10

DEFINITION = LabDefinition(
    exercise_id=EXERCISE_ID,
    title="Lab 10 - Radioactive Half-Life Investigation",
    sections=(
        SectionSpec("introduction", "Introduction", AcknowledgmentRule(field="confirmed")),
        SectionSpec(
            "prelab",
            "Pre-Lab",
            StructuredRule(
                parts=tuple((str(i), _ANSWER_MIN) for i in range(len(PRELAB_QUESTIONS))),
                field="answers",
            ),
        ),
        SectionSpec(
            "investigation",
            "Investigation",
            StructuredRule(parts=(("plan", _ANSWER_MIN), ("procedure_notes", _ANSWER_MIN))),
        ),
        SectionSpec("observations", "Observations", MeasurementCountRule(required=10, key="measurements")),
        SectionSpec(
            "analysis",
            "Analysis",
            StructuredRule(
                parts=(
                    ("manual_slope", 0),
                    ("decay_constant", 0),
                    ("calculated_half_life", 0),
                    ("graph_analysis", _ANSWER_MIN),
                ),
                source=SOURCE_ANALYSIS,
            ),
        ),
        SectionSpec(
            "conclusions",
            "Conclusions",
            StructuredRule(
                parts=(
                    ("identified_isotope", 0),
                    ("justification", _ANSWER_MIN),
                    ("sources_of_error", _ANSWER_MIN),
                    ("improvements", _ANSWER_MIN),
                ),
                required=3,
            ),
        ),
    ),
    submission=SubmissionPolicy(min_fraction=0.8),
    static_paths=(
        "observation_data.background_cpm",
        "observation_data.isotope_id",
    ),
    section_defaults={
        "introduction": {"confirmed": False},
        "prelab": {"answers": [""] * len(PRELAB_QUESTIONS)},
        "investigation": {"plan": "", "procedure_notes": ""},
        "conclusions": {"identified_isotope": "", "justification": "", "sources_of_error": "", "improvements": ""},
    },
    observation_defaults={
        "isotope_id": "",
        "selected_isotope": "",
        "background_cpm": BACKGROUND_CPM,
        "measurements": [],
        "total_measurement_time": 0,
        "data_quality": "good",
    },
    analysis_defaults={
        "manual_slope": "",
        "manual_intercept": "",
        "decay_constant": "",
        "calculated_half_life": "",
        "correlation_coefficient": "",
        "graph_analysis": "",
        "uncertainty_analysis": "",
    },
    isotopes=ISOTOPES,
)
