"""
Evidence gateway backed by an external retrieval service.

POSTs the query as JSON and validates the response before turning it into
Guidance. Transport and schema failures surface as GatewayUnavailable.
"""
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pedsim.core.constants import DEFAULT_LICENSE, DEFAULT_SOURCE_CITATION
from pedsim.core.errors import GatewayUnavailable
from pedsim.core.log import get_logger
from pedsim.core.state import InterventionCategory
from pedsim.guidance.gateway import EvidenceGateway, EvidenceRef, Guidance, VERDICTS

logger = get_logger(__name__)


class EvidencePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    case_id: str = Field(alias="caseId")
    section: str = ""
    passage_id: str = Field(alias="passageId")
    source_citation: str = Field(DEFAULT_SOURCE_CITATION, alias="sourceCitation")
    license: str = DEFAULT_LICENSE


class GuidancePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    explanation: str
    evidence_sources: List[EvidencePayload] = Field(default_factory=list, alias="evidenceSources")
    risk_flags: List[str] = Field(default_factory=list, alias="riskFlags")
    verdict: Optional[str] = None
    confidence: float = Field(0.0, ge=0.0, le=1.0)


class HttpEvidenceGateway(EvidenceGateway):
    """
    Client for a retrieval service exposing POST {base_url}/guidance.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None,
                 timeout_sec: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_sec = timeout_sec
        self._client = client

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> httpx.Response:
        return await client.post(
            f"{self.base_url}/guidance",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout_sec,
        )

    async def fetch_guidance(self, case_id: str, stage, intervention_name: str,
                             intervention_category: InterventionCategory) -> Guidance:
        payload = {
            "caseId": case_id,
            "stage": stage.number,
            "stageName": stage.name,
            "intervention": intervention_name,
            "category": intervention_category.value,
        }
        try:
            if self._client is not None:
                response = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, payload)
            response.raise_for_status()
            data = GuidancePayload.model_validate(response.json())
        except httpx.HTTPError as exc:
            raise GatewayUnavailable(f"Retrieval service request failed: {exc}") from exc
        except (ValidationError, ValueError) as exc:
            raise GatewayUnavailable(
                "Retrieval service returned an invalid payload",
                details={"error": str(exc)},
            ) from exc

        logger.debug("Retrieved %d passages for %r", len(data.evidence_sources), intervention_name)
        return Guidance(
            explanation=data.explanation,
            evidence_sources=[
                EvidenceRef(e.case_id, e.section, e.passage_id, e.source_citation, e.license)
                for e in data.evidence_sources
            ],
            risk_flags=list(data.risk_flags),
            verdict=data.verdict or VERDICTS[intervention_category],
            confidence=data.confidence,
        )
