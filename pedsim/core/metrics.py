from collections import Counter
from typing import Dict, List, Optional, Sequence

import numpy as np

from pedsim.core.state import NUMERIC_FIELDS, SimulationSession, Vitals


def compute_vital_stats(history: Sequence[Vitals]) -> Dict[str, Dict[str, float]]:
    """
    Per-field min/max/mean over a vitals history.

    Fields that are missing in every snapshot are omitted.
    """
    stats = {}
    for vital in NUMERIC_FIELDS:
        values = np.array([v.get(vital) for v in history if v.get(vital) is not None], dtype=float)
        if values.size == 0:
            continue
        stats[vital.value] = {
            "min": float(np.min(values)),
            "max": float(np.max(values)),
            "mean": float(np.mean(values)),
            "last": float(values[-1]),
        }
    return stats


def compute_time_to_intervene(session: SimulationSession) -> List[dict]:
    """
    Seconds from stage start to the first successful required intervention.

    Args:
        session: Session whose stage_history is evaluated

    Returns:
        list of dicts: {stage, name, tti_sec, target_sec, met, duration_sec}
    """
    stages = {s.number: s for s in session.variant.stages}
    rows = []
    for record in session.stage_history:
        stage = stages.get(record.stage)
        target = stage.tti_sec if stage else 0.0
        tti: Optional[float] = None
        if record.first_required_at is not None:
            tti = record.first_required_at - record.started_at
        duration = None
        if record.completed_at is not None:
            duration = record.completed_at - record.started_at
        rows.append({
            "stage": record.stage,
            "name": stage.name if stage else "",
            "tti_sec": tti,
            "target_sec": target,
            "met": tti is not None and (target <= 0 or tti <= target),
            "duration_sec": duration,
        })
    return rows


def summarize_session(session: SimulationSession, history: Optional[Sequence[Vitals]] = None) -> dict:
    """Debrief summary: outcome, intervention counts, TTI per stage and vital stats."""
    history = list(history) if history else [session.variant.initial_vitals, session.vitals]
    counts = Counter(entry.category.value for entry in session.ledger)
    tti = compute_time_to_intervene(session)
    met = [row["met"] for row in tti]
    return {
        "case_id": session.case_id,
        "variant_id": session.variant.variant_id,
        "completion_state": session.completion_state.value,
        "failure_reason": session.failure_reason,
        "elapsed_sec": session.elapsed_sec,
        "stages_reached": len(session.stage_history),
        "interventions": dict(counts),
        "time_to_intervene": tti,
        "tti_met_fraction": float(np.mean(met)) if met else 0.0,
        "vitals": compute_vital_stats(history),
    }
