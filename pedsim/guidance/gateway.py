"""
Evidence grounding contract.

A gateway turns (case, stage, intervention) into an explanation backed by
cited passages. The resolver bounds every call with a timeout and replaces
anything unusable (timeout, error, empty or ungrounded text, unsafe advice)
with deterministic fallback guidance. Gateways never see the session.
"""
import asyncio
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pedsim.core.constants import (
    DEFAULT_GUIDANCE_TIMEOUT_SEC,
    DEFAULT_LICENSE,
    DEFAULT_SOURCE_CITATION,
    FALLBACK_INDICATED,
    FALLBACK_NOT_RECOMMENDED,
    FALLBACK_NO_EFFECT,
)
from pedsim.core.errors import GatewayUnavailable
from pedsim.core.log import get_logger
from pedsim.core.state import InterventionCategory

logger = get_logger(__name__)

VERDICTS = {
    InterventionCategory.REQUIRED: "correct",
    InterventionCategory.HELPFUL: "correct",
    InterventionCategory.HARMFUL: "harmful",
    InterventionCategory.NEUTRAL: "neutral",
    InterventionCategory.UNLISTED: "informational",
}

# Advice to postpone or not give something.
_DELAY_ADVICE = re.compile(
    r"^\s*(delay|defer|withhold|postpone|hold off( on)?|avoid)\b"
    r"|\b(consider|recommend|advise|suggest)(s|ed)?\s+(\w+\s+){0,2}(delaying|deferring|withholding|postponing|holding off)\b"
    r"|\b(should|can|may|could)\s+(be\s+)?(delayed|deferred|withheld|postponed|wait)\b"
    r"|\b(do not|don'?t|never)\s+(give|administer|start)\b"
    r"|\bnot (yet )?(indicated|needed|necessary)\b",
    re.IGNORECASE,
)
# Explicit advice against delay ("do not delay", "without delay").
_NO_DELAY = re.compile(
    r"\b(do not|don'?t|never|without|must not|should not)\s+(delay|defer|withhold|postpone)",
    re.IGNORECASE,
)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?;])\s+")


@dataclass(frozen=True)
class EvidenceRef:
    """Pointer to a retrieved passage."""
    case_id: str
    section: str
    passage_id: str
    source_citation: str = DEFAULT_SOURCE_CITATION
    license: str = DEFAULT_LICENSE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "caseId": self.case_id,
            "section": self.section,
            "passageId": self.passage_id,
            "sourceCitation": self.source_citation,
            "license": self.license,
        }


@dataclass
class Guidance:
    explanation: str
    evidence_sources: List[EvidenceRef] = field(default_factory=list)
    risk_flags: List[str] = field(default_factory=list)
    fallback: bool = False
    verdict: str = "informational"
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "explanation": self.explanation,
            "evidenceSources": [ref.to_dict() for ref in self.evidence_sources],
            "riskFlags": list(self.risk_flags),
            "fallback": self.fallback,
            "verdict": self.verdict,
            "confidence": self.confidence,
        }


class EvidenceGateway(ABC):
    """Retrieval backend. Implementations raise GatewayUnavailable when they cannot answer."""

    @abstractmethod
    async def fetch_guidance(
        self,
        case_id: str,
        stage,
        intervention_name: str,
        intervention_category: InterventionCategory,
    ) -> Guidance:
        ...


def harmful_flag(name: str) -> str:
    return f"Harmful intervention: {name}"


def fallback_guidance(name: str, category: InterventionCategory) -> Guidance:
    """Deterministic guidance used whenever grounded guidance is unavailable."""
    if category in (InterventionCategory.REQUIRED, InterventionCategory.HELPFUL):
        text = FALLBACK_INDICATED
    elif category is InterventionCategory.HARMFUL:
        text = FALLBACK_NOT_RECOMMENDED
    else:
        text = FALLBACK_NO_EFFECT
    risk_flags = [harmful_flag(name)] if category is InterventionCategory.HARMFUL else []
    return Guidance(
        explanation=text.format(name=name),
        evidence_sources=[],
        risk_flags=risk_flags,
        fallback=True,
        verdict=VERDICTS[category],
        confidence=0.0,
    )


def advises_delay(explanation: str, required: List[str]) -> Optional[str]:
    """
    Return the first required intervention the text advises delaying or withholding.

    A sentence counts when it names the intervention and advises delaying,
    withholding or skipping it. Sentences warning against delay do not count.
    """
    for sentence in _SENTENCE_SPLIT.split(explanation or ""):
        lowered = sentence.casefold()
        if _NO_DELAY.search(sentence) or not _DELAY_ADVICE.search(sentence):
            continue
        for name in required:
            if name.casefold() in lowered:
                return name
    return None


class GuidanceResolver:
    """
    Wraps a gateway with a timeout, fallback and the safety guard.
    """

    def __init__(self, gateway: Optional[EvidenceGateway] = None,
                 timeout_sec: float = DEFAULT_GUIDANCE_TIMEOUT_SEC):
        self.gateway = gateway
        self.timeout_sec = timeout_sec

    async def resolve(self, case_id: str, stage, name: str,
                      category: InterventionCategory) -> Guidance:
        if self.gateway is None:
            return fallback_guidance(name, category)

        try:
            guidance = await asyncio.wait_for(
                self.gateway.fetch_guidance(case_id, stage, name, category),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError:
            logger.warning("Guidance for %r timed out after %.1fs; using fallback", name, self.timeout_sec)
            return fallback_guidance(name, category)
        except GatewayUnavailable as exc:
            logger.info("Guidance for %r unavailable (%s); using fallback", name, exc.message)
            return fallback_guidance(name, category)
        except Exception as exc:
            logger.warning("Guidance for %r unavailable (%s); using fallback", name, exc)
            return fallback_guidance(name, category)

        if not isinstance(guidance, Guidance) or not (guidance.explanation or "").strip():
            logger.warning("Guidance for %r was empty or malformed; using fallback", name)
            return fallback_guidance(name, category)
        if not guidance.evidence_sources:
            logger.warning("Guidance for %r cited no evidence; using fallback", name)
            return fallback_guidance(name, category)

        return self._apply_safety_guard(guidance, stage, name, category)

    def _apply_safety_guard(self, guidance: Guidance, stage, name: str,
                            category: InterventionCategory) -> Guidance:
        unsafe = advises_delay(guidance.explanation, list(stage.required))
        if unsafe is not None:
            logger.warning("Discarded guidance for %r: advised delaying required %r", name, unsafe)
            result = fallback_guidance(name, category)
            result.risk_flags.append(f"Discarded guidance advising delay of required intervention: {unsafe}")
            return result

        flags = list(guidance.risk_flags)
        if category is InterventionCategory.HARMFUL and harmful_flag(name) not in flags:
            flags.append(harmful_flag(name))
        return Guidance(
            explanation=guidance.explanation,
            evidence_sources=list(guidance.evidence_sources),
            risk_flags=flags,
            fallback=False,
            verdict=guidance.verdict or VERDICTS[category],
            confidence=min(1.0, max(0.0, float(guidance.confidence))),
        )
