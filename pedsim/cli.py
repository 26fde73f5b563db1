import argparse
import asyncio
import json
import sys
from typing import List, Optional, Tuple

from pedsim.cases.repository import CaseRepository
from pedsim.core.engine import SimulationEngine
from pedsim.core.errors import SimulationError
from pedsim.core.log import setup_logging, get_logger
from pedsim.core.metrics import summarize_session
from pedsim.core.recorder import SessionRecorder
from pedsim.core.state import EngineConfig, SimulationSession
from pedsim.guidance.static import StaticEvidenceGateway
from pedsim.telemetry.events import LoggingTelemetrySink

logger = get_logger(__name__)


def parse_schedule(items: List[str], tick_sec: float) -> List[Tuple[float, str]]:
    """
    Turn 'NAME' or 'NAME@SECONDS' items into (time, name) pairs.

    Items without a time are spaced one tick apart in the order given.
    """
    schedule = []
    next_slot = 0.0
    for item in items or []:
        name, sep, when = item.rpartition("@")
        at = None
        if sep:
            try:
                at = float(when)
            except ValueError:
                name = item
        else:
            name = item
        if at is None:
            at = next_slot
            next_slot += tick_sec
        schedule.append((at, name.strip()))
    return sorted(schedule, key=lambda pair: pair[0])


def format_status(session: SimulationSession, status: str) -> str:
    v = session.vitals
    crt = f"{v.capillary_refill:.1f}s" if v.capillary_refill is not None else "-"
    return (
        f"Time: {session.elapsed_sec:6.1f}s | Stage {session.current_stage.number} | "
        f"HR: {v.heart_rate:.0f} | RR: {v.resp_rate:.0f} | "
        f"BP: {v.blood_pressure_sys:.0f}/{v.blood_pressure_dia:.0f} | SpO2: {v.spo2:.0f} | "
        f"CRT: {crt} | {v.consciousness} | {status}"
    )


async def run_session(engine: SimulationEngine, session: SimulationSession,
                      schedule: List[Tuple[float, str]], duration: float, tick_sec: float,
                      recorder: Optional[SessionRecorder] = None) -> None:
    pending = list(schedule)
    if recorder:
        recorder.log(session, event="start")

    while session.elapsed_sec <= duration and not session.is_closed:
        while pending and pending[0][0] <= session.elapsed_sec and not session.is_closed:
            _, name = pending.pop(0)
            try:
                result = await engine.apply_intervention(session, name)
            except SimulationError as e:
                print(f"  ! {name}: {e.message}")
                continue
            if recorder:
                recorder.log(session, event="intervention", intervention=result.entry.name)
            tag = " [fallback]" if result.guidance.fallback else ""
            print(f"  > {result.entry.name} ({result.category.value}){tag}: {result.guidance.explanation}")
            for flag in result.guidance.risk_flags:
                print(f"    ! {flag}")
            if result.stage_advanced:
                print(f"  * Stage {result.entry.stage} complete")

        if session.is_closed or session.elapsed_sec + tick_sec > duration:
            break
        outcome = engine.tick(session, tick_sec)
        if recorder:
            recorder.log(session)
        overdue = " | TTI overdue" if outcome.tti_overdue else ""
        print(format_status(session, outcome.classification.status.value) + overdue)
        for alert in outcome.alerts:
            print(f"    {alert}")


def run_headless(args) -> int:
    """Run one case headless with a scripted intervention list."""
    config_data = {}
    if args.config:
        try:
            with open(args.config, 'r') as f:
                config_data = json.load(f)
        except (OSError, ValueError) as e:
            print(f"Error loading config: {e}")
            return 1
    config = EngineConfig.from_dict(config_data)
    tick_sec = args.tick if args.tick is not None else config.default_tick_sec

    try:
        repository = CaseRepository.from_json(args.case_bank) if args.case_bank else CaseRepository.from_builders()
    except (OSError, ValueError, SimulationError) as e:
        print(f"Error loading cases: {e}")
        return 1

    if args.list:
        for case_id, name in repository.list_cases():
            variants = ",".join(repository.get_case(case_id).variant_ids())
            print(f"{case_id}\t{name}\t[{variants}]")
        return 0

    if args.guidance_url:
        from pedsim.guidance.http import HttpEvidenceGateway
        gateway = HttpEvidenceGateway(args.guidance_url)
    else:
        gateway = StaticEvidenceGateway()

    engine = SimulationEngine(repository, gateway=gateway, telemetry=LoggingTelemetrySink(), config=config)
    try:
        session = engine.start_session(args.case, args.variant)
    except SimulationError as e:
        print(e.message)
        return 1

    print(f"Starting {session.variant.display_name} ({session.case_id}/{session.variant.variant_id}), "
          f"{session.variant.age_years:g}y {session.variant.weight_kg:g}kg")
    print(format_status(session, "initial"))

    recorder = None
    if args.record:
        interval = args.record_interval if args.record_interval is not None else config.record_interval_sec
        recorder = SessionRecorder(output_dir=args.record_dir, sample_interval_sec=interval)
        recorder.start()

    try:
        asyncio.run(run_session(engine, session, parse_schedule(args.interventions, tick_sec),
                                args.duration, tick_sec, recorder))
    finally:
        if recorder:
            recorder.stop()
        engine.end_session(session)

    print(f"Final state: {session.completion_state.value}")
    if args.summary:
        history = recorder.history if recorder else None
        print(json.dumps(summarize_session(session, history), indent=2, default=str))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="PedSim - Pediatric Emergency Case Simulator")
    parser.add_argument("--case", type=str, default="aliem_case_01_anaphylaxis", help="Case id to run")
    parser.add_argument("--variant", type=str, default=None, help="Variant id (default: first)")
    parser.add_argument("--list", action="store_true", help="List available cases and exit")
    parser.add_argument("--case-bank", type=str, help="Path to a JSON case bank")
    parser.add_argument("-i", "--interventions", nargs="*", default=[],
                        help="Interventions to apply, as NAME or NAME@SECONDS")
    parser.add_argument("--duration", type=float, default=300.0, help="Simulated duration in seconds")
    parser.add_argument("--tick", type=float, default=None, help="Tick length in seconds")
    parser.add_argument("--config", type=str, help="Path to JSON engine configuration file")
    parser.add_argument("--guidance-url", type=str, help="Base URL of an evidence retrieval service")
    parser.add_argument("--record", action="store_true", help="Enable CSV recording")
    parser.add_argument("--record-dir", type=str, default="recordings", help="Output directory for recordings")
    parser.add_argument("--record-interval", type=float, default=None, help="Sample interval in seconds for CSV")
    parser.add_argument("--summary", action="store_true", help="Print a debrief summary as JSON")
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level")
    parser.add_argument("--log-file", type=str, help="Optional log file")

    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_file)
    return run_headless(args)


if __name__ == "__main__":
    sys.exit(main())
