from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from diagnostics.logging_setup import configure_logging, get_logger
from lab_engine.analysis import fit_half_life, fit_plancks_constant
from lab_engine.circuit import ThresholdCircuitModel
from lab_engine.config import SAMPLERS, load_engine_config
from lab_engine.decay import DecayExperiment, make_sampler
from lab_engine.registry import list_labs, require_lab
from lab_engine.sections import SectionStatus, SectionStatusDeriver
from lab_engine.session import DocumentKey
from lab_engine.store import AssessmentRecordStore, JsonDocumentStore

_HALF_LIFE_LAB = "course2_lab_half_life"
_PLANCK_LAB = "course2_lab_plancks_constant"


def _dump(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=True))


def _voltages(step: float, maximum: float) -> List[float]:
    if step <= 0:
        raise ValueError(f"step must be positive: {step}")
    count = int(round(maximum / step))
    return [round(i * step, 4) for i in range(count + 1)]


def cmd_simulate_decay(lab_id: str, isotope_id: Optional[str], seconds: int, seed: Optional[int], sampler: str) -> int:
    definition = require_lab(lab_id)
    if not definition.isotopes:
        raise ValueError(f"{lab_id} has no decay experiment")
    config = load_engine_config()
    experiment = DecayExperiment(
        definition.isotopes,
        tick_ms=config.tick_ms,
        sample_stride=config.sample_stride,
        sampler=make_sampler(sampler, seed),
    )
    if isotope_id is not None:
        experiment.select_isotope(isotope_id)
    ticks = int(seconds * 1000 / config.tick_ms)
    experiment.run_for(ticks)
    export = experiment.export()
    fit = fit_half_life(export["measurements"])
    _dump(
        {
            "export": export,
            "fit": None
            if fit is None
            else {
                "decay_constant": round(fit.decay_constant, 6),
                "half_life_s": round(fit.half_life_s, 2),
                "correlation": round(fit.correlation, 4),
                "points": fit.points,
            },
            "expected_half_life_s": experiment.isotope.half_life_s,
        }
    )
    return 0


def cmd_sweep_led(lab_id: str, color: Optional[str], index: Optional[int], step: float, maximum: float) -> int:
    definition = require_lab(lab_id)
    if not definition.circuit_items:
        raise ValueError(f"{lab_id} has no circuit experiment")
    items = list(definition.circuit_items)
    if color is not None:
        matches = [i for i, item in enumerate(items) if item.color.lower() == color.lower()]
        if not matches:
            raise ValueError(f"unknown LED color: {color}")
        indices = matches[:1]
    elif index is not None:
        indices = [index]
    else:
        indices = list(range(len(items)))

    circuit = ThresholdCircuitModel(items)
    voltages = _voltages(step, maximum)
    rows: List[Dict[str, Any]] = []
    for i in indices:
        circuit.select_item(i)
        detected = circuit.sweep(voltages)
        rows.append(
            {
                "color": circuit.item.color,
                "frequency": circuit.item.frequency_hz,
                "threshold": circuit.threshold,
                "voltage": None if detected is None else round(detected, 2),
            }
        )
    result: Dict[str, Any] = {"measurements": rows}
    fit = fit_plancks_constant(rows)
    if fit is not None:
        result["fit"] = {
            "slope": fit.slope,
            "plancks_constant": fit.plancks_constant,
            "percent_error": round(fit.percent_error, 2),
        }
    _dump(result)
    return 0


def cmd_status(root: Path, user_id: str, course_id: str, exercise_id: str) -> int:
    definition = require_lab(exercise_id)
    key = DocumentKey(user_id=user_id, course_id=course_id, exercise_id=exercise_id)
    document = JsonDocumentStore(root).read(key)
    if document is None:
        raise FileNotFoundError(f"no saved document for {user_id}/{course_id}/{exercise_id}")
    statuses = SectionStatusDeriver(definition.sections).derive_all(document)
    completed = sum(1 for status in statuses.values() if status is SectionStatus.COMPLETED)
    total = len(statuses)
    record = AssessmentRecordStore(root).get(key) or {}
    _dump(
        {
            "exercise_id": exercise_id,
            "sections": {name: status.value for name, status in statuses.items()},
            "completed": completed,
            "required": definition.submission.required_count(total),
            "started": bool(document.get("started")),
            "submitted": bool(record.get("submitted") or document.get("submitted")),
            "current_section": document.get("current_section"),
            "record_version": record.get("version"),
        }
    )
    return 0


def cmd_labs() -> int:
    for exercise_id, definition in sorted(list_labs().items()):
        print(f"{exercise_id}\t{definition.title}\t{','.join(definition.section_keys)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run lab simulations and inspect saved lab sessions.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    decay = sub.add_parser("simulate-decay", help="Run the Geiger counter and print the exported data.")
    decay.add_argument("--lab", default=_HALF_LIFE_LAB)
    decay.add_argument("--isotope", default=None)
    decay.add_argument("--seconds", type=int, default=120)
    decay.add_argument("--seed", type=int, default=None)
    decay.add_argument("--sampler", choices=SAMPLERS, default=None)

    sweep = sub.add_parser("sweep-led", help="Ramp the voltage across LEDs and report thresholds.")
    sweep.add_argument("--lab", default=_PLANCK_LAB)
    target = sweep.add_mutually_exclusive_group()
    target.add_argument("--color", default=None)
    target.add_argument("--index", type=int, default=None)
    sweep.add_argument("--step", type=float, default=0.01)
    sweep.add_argument("--max", dest="maximum", type=float, default=4.0)

    status = sub.add_parser("status", help="Show derived section statuses of a saved session.")
    status.add_argument("--root", type=Path, default=None)
    status.add_argument("--user", required=True)
    status.add_argument("--course", required=True)
    status.add_argument("--exercise", required=True)

    sub.add_parser("labs", help="List registered labs.")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging()
    get_logger().info("lab_session cmd=%s", args.cmd)
    try:
        if args.cmd == "simulate-decay":
            sampler = args.sampler or load_engine_config().sampler
            return cmd_simulate_decay(args.lab, args.isotope, args.seconds, args.seed, sampler)
        if args.cmd == "sweep-led":
            return cmd_sweep_led(args.lab, args.color, args.index, args.step, args.maximum)
        if args.cmd == "status":
            root = args.root or load_engine_config().store_path
            return cmd_status(root, args.user, args.course, args.exercise)
        if args.cmd == "labs":
            return cmd_labs()
    except Exception as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    parser.print_help()
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
