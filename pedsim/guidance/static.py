"""
In-memory evidence gateway.

Serves pre-authored passages keyed by case, stage and intervention. Used by
the CLI and tests, and as a stand-in when no retrieval service is running.
"""
import asyncio
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from pedsim.core.constants import DEFAULT_LICENSE, DEFAULT_SOURCE_CITATION
from pedsim.core.errors import GatewayUnavailable
from pedsim.core.state import InterventionCategory
from pedsim.guidance.gateway import EvidenceGateway, EvidenceRef, Guidance, VERDICTS


@dataclass(frozen=True)
class StaticPassage:
    """
    One authored explanation.

    stage=None matches every stage of the case.
    """
    case_id: str
    intervention: str
    text: str
    stage: Optional[int] = None
    section: str = "management"
    passage_id: str = ""
    source_citation: str = DEFAULT_SOURCE_CITATION
    license: str = DEFAULT_LICENSE
    confidence: float = 0.8

    def to_ref(self) -> EvidenceRef:
        passage_id = self.passage_id or f"{self.case_id}:{self.stage or '*'}:{self.intervention}"
        return EvidenceRef(self.case_id, self.section, passage_id, self.source_citation, self.license)


class StaticEvidenceGateway(EvidenceGateway):
    def __init__(self, passages: Iterable[StaticPassage] = (), latency_sec: float = 0.0):
        self.latency_sec = latency_sec
        self._passages: Dict[Tuple[str, Optional[int], str], StaticPassage] = {}
        for p in passages:
            self._passages[(p.case_id, p.stage, p.intervention.casefold())] = p

    def lookup(self, case_id: str, stage_number: int, name: str) -> Optional[StaticPassage]:
        key = name.casefold()
        return self._passages.get((case_id, stage_number, key)) or self._passages.get((case_id, None, key))

    async def fetch_guidance(self, case_id: str, stage, intervention_name: str,
                             intervention_category: InterventionCategory) -> Guidance:
        if self.latency_sec > 0:
            await asyncio.sleep(self.latency_sec)
        passage = self.lookup(case_id, stage.number, intervention_name)
        if passage is None:
            raise GatewayUnavailable(
                f"No passage for {intervention_name!r}",
                details={"case_id": case_id, "stage": stage.number},
            )
        return Guidance(
            explanation=passage.text,
            evidence_sources=[passage.to_ref()],
            verdict=VERDICTS[intervention_category],
            confidence=passage.confidence,
        )
