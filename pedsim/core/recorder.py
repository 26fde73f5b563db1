import csv
import os
import time
from collections import deque
from typing import Deque, Optional

from pedsim.core.log import get_logger
from pedsim.core.state import SimulationSession, VitalField, Vitals
from pedsim.physiology.vitals_engine import calculate_severity_score

logger = get_logger(__name__)

HEADER = (
    ["elapsed_sec", "stage", "event", "intervention"]
    + [f.attr for f in VitalField]
    + ["severity_score", "completion_state"]
)


class SessionRecorder:
    """
    Records session snapshots to CSV and keeps the vitals history in memory.

    The in-memory history covers one recording run and keeps at most
    history_limit snapshots, dropping the oldest first.
    """
    def __init__(self, output_dir: str = ".", sample_interval_sec: float = 0.0, filename: Optional[str] = None,
                 history_limit: int = 100_000):
        self.output_dir = output_dir
        self.filename = filename or f"pedsim_log_{int(time.time())}.csv"
        self.file_path = os.path.join(output_dir, self.filename)
        self.file = None
        self.writer = None
        self.is_recording = False
        self.sample_interval_sec = max(0.0, sample_interval_sec)
        self._last_sample_time = None
        self.history: Deque[Vitals] = deque(maxlen=max(1, history_limit))

    def start(self):
        self.history.clear()
        self._last_sample_time = None
        try:
            os.makedirs(self.output_dir, exist_ok=True)
            self.file = open(self.file_path, 'w', newline='')
        except OSError as e:
            logger.error("Failed to start recording to %s: %s", self.file_path, e)
            self.is_recording = False
            return
        self.writer = csv.writer(self.file)
        self.writer.writerow(HEADER)
        self.is_recording = True

    def log(self, session: SimulationSession, event: str = "tick", intervention: str = ""):
        """
        Append one row. Ticks honour sample_interval_sec; interventions are always written.
        """
        if event == "tick" and self.sample_interval_sec > 0.0:
            now = session.elapsed_sec
            if self._last_sample_time is not None and (now - self._last_sample_time) < self.sample_interval_sec:
                return
            self._last_sample_time = now

        vitals = session.vitals
        self.history.append(vitals)
        if not self.is_recording or not self.writer:
            return

        row = [round(session.elapsed_sec, 3), session.current_stage.number, event, intervention]
        for f in VitalField:
            value = vitals.get(f)
            row.append("" if value is None else value)
        row += [calculate_severity_score(vitals), session.completion_state.value]
        self.writer.writerow(row)

    def stop(self):
        if self.file:
            self.file.close()
            self.file = None
        self.is_recording = False

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()
        return False
