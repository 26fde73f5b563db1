from pathlib import Path
import asyncio
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

import pytest

from pedsim.cases.repository import CaseRepository
from pedsim.core.engine import SimulationEngine
from pedsim.core.state import EngineConfig
from pedsim.telemetry.events import InMemoryTelemetrySink


ANAPHYLAXIS = "aliem_case_01_anaphylaxis"


@pytest.fixture
def repository():
    """Repository of the bundled cases."""
    return CaseRepository.from_builders()


@pytest.fixture
def telemetry():
    return InMemoryTelemetrySink()


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def engine(repository, telemetry, config):
    """Engine with no evidence gateway (fallback guidance only)."""
    return SimulationEngine(repository, telemetry=telemetry, config=config)


@pytest.fixture
def session(engine):
    """Fresh anaphylaxis session at stage 1."""
    return engine.start_session(ANAPHYLAXIS)


@pytest.fixture
def apply():
    """Run engine.apply_intervention synchronously."""
    def _apply(engine, session, *names):
        results = []
        for name in names:
            results.append(asyncio.run(engine.apply_intervention(session, name)))
        return results[-1] if len(results) == 1 else results

    return _apply


@pytest.fixture
def advance_time():
    """Tick a session forward in fixed steps."""
    def _advance(engine, session, seconds, dt=10.0):
        outcome = None
        steps = int(seconds / dt)
        for _ in range(steps):
            outcome = engine.tick(session, dt)
        remainder = seconds - steps * dt
        if remainder > 1e-9:
            outcome = engine.tick(session, remainder)
        return outcome

    return _advance
