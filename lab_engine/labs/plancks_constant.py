"""Planck's constant from LED threshold voltages."""

from __future__ import annotations

from ..circuit import led
from ..sections import SOURCE_ANALYSIS, MeasurementCountRule, SectionSpec, StructuredRule, TextRule
from .base import LabDefinition, SubmissionPolicy

EXERCISE_ID = "course2_lab_plancks_constant"

LEDS = (
    led("Red", 4.54e14),
    led("Amber", 5.00e14),
    led("Yellow", 5.08e14),
    led("Green", 5.31e14),
    led("Blue", 6.38e14),
)

DEFINITION = LabDefinition(
    exercise_id=EXERCISE_ID,
    title="Planck's Constant from LED Threshold Voltages",
    sections=(
        SectionSpec("hypothesis", "Hypothesis", TextRule(min_length=50)),
        SectionSpec(
            "observations",
            "Observations",
            MeasurementCountRule(required=len(LEDS), key="measurements", value_key="voltage"),
        ),
        SectionSpec(
            "analysis",
            "Analysis",
            StructuredRule(
                parts=(
                    ("graph_generated", 0),
                    ("slope", 0),
                    ("student_calculated_h", 0),
                    ("student_percent_error", 0),
                ),
                source=SOURCE_ANALYSIS,
            ),
        ),
        SectionSpec("error", "Error Analysis", TextRule(min_length=100)),
    ),
    submission=SubmissionPolicy(min_completed=3),
    static_paths=(
        "observation_data.measurements.*.color",
        "observation_data.measurements.*.frequency",
    ),
    section_defaults={"hypothesis": {"text": ""}, "error": {"text": ""}},
    observation_defaults={
        "measurements": [
            {"color": item.color, "frequency": item.frequency_hz, "voltage": None, "measured": False}
            for item in LEDS
        ],
        "current_item": 0,
        "completed_measurements": 0,
    },
    analysis_defaults={
        "selected_x_axis": "",
        "selected_y_axis": "",
        "graph_generated": False,
        "slope": None,
        "student_calculated_h": "",
        "student_percent_error": "",
    },
    circuit_items=LEDS,
)
