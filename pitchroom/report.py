from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Tuple

from .constants import MAX_SCORE, MIN_SCORE
from .decoding import coerce_int, parse_json_object
from .errors import ConfigurationError, TransportError
from .llm_gateway import ModelGateway, truncate
from .models import Decision, Report, Turn
from .prompts.persona import default_locale
from .prompts.report import REPORT_PROMPT_VERSION, SYSTEM_PROMPT, USER_PROMPT_TEMPLATE
from .scoring import clamp


logger = logging.getLogger("uvicorn.error")

REPORT_TEMPERATURE = 0.3
MAX_DECODE_ATTEMPTS = 2
MAX_LIST_ITEMS = 5
FUNDED_THRESHOLD = 75

FALLBACK_FEEDBACK = (
    "We could not produce a detailed analysis for this session, but finishing a full pitch "
    "under pressure is real progress. Review the transcript, tighten the answers where the "
    "investor pushed back, and try again."
)
FALLBACK_STRENGTHS = ("Persistence: you stayed in the room and finished the pitch.",)
FALLBACK_WEAKNESSES = ("The detailed analysis was unavailable for this session.",)

DECISION_ALIASES = {
    "funded": Decision.FUNDED,
    "passed": Decision.PASSED,
    "pass": Decision.PASSED,
    "ghosted": Decision.GHOSTED,
}


def fallback_report(final_score: int) -> Report:
    return Report(
        score=clamp(int(final_score), MIN_SCORE, MAX_SCORE),
        feedback=FALLBACK_FEEDBACK,
        decision=Decision.PASSED,
        strengths=FALLBACK_STRENGTHS,
        weaknesses=FALLBACK_WEAKNESSES,
    )


def render_transcript(transcript: Sequence[Turn]) -> str:
    lines = []
    for turn in transcript:
        speaker = "Investor" if turn.is_counterpart else "Founder"
        lines.append(f"{speaker}: {turn.text.strip()}")
    return "\n".join(lines)


def _decision_for_score(score: int) -> Decision:
    return Decision.FUNDED if score >= FUNDED_THRESHOLD else Decision.PASSED


def _normalize_decision(value: Any, final_score: int) -> Decision:
    if isinstance(value, str):
        decision = DECISION_ALIASES.get(value.strip().lower())
        if decision is not None:
            return decision
    return _decision_for_score(final_score)


def _string_list(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    cleaned = [str(item).strip() for item in value if isinstance(item, (str, int, float)) and str(item).strip()]
    return tuple(cleaned[:MAX_LIST_ITEMS])


def parse_report(raw: str, final_score: int) -> Optional[Report]:
    payload = parse_json_object(raw)
    if payload is None:
        return None

    feedback = payload.get("feedback")
    if not isinstance(feedback, str) or not feedback.strip():
        return None

    score = coerce_int(payload.get("score"), default=final_score)
    return Report(
        score=clamp(score, MIN_SCORE, MAX_SCORE),
        feedback=feedback.strip(),
        decision=_normalize_decision(payload.get("funding_decision") or payload.get("decision"), final_score),
        strengths=_string_list(payload.get("strengths")),
        weaknesses=_string_list(payload.get("weaknesses")),
    )


class ReportGenerator:
    """Turns a finished transcript into a verdict. Never raises."""

    def __init__(self, gateway: ModelGateway) -> None:
        self._gateway = gateway

    def generate(
        self,
        transcript: Sequence[Turn],
        final_score: int,
        provider_id: Optional[str] = None,
        locale: Optional[str] = None,
    ) -> Report:
        system_prompt = SYSTEM_PROMPT.replace("{locale}", (locale or "").strip() or default_locale())
        user_prompt = USER_PROMPT_TEMPLATE.replace("{final_score}", str(int(final_score))).replace(
            "{transcript_text}", render_transcript(transcript)
        )

        for attempt in range(1, MAX_DECODE_ATTEMPTS + 1):
            try:
                raw = self._gateway.complete(
                    system_prompt=system_prompt,
                    user_prompt=user_prompt,
                    provider_id=provider_id,
                    temperature=REPORT_TEMPERATURE,
                )
            except (ConfigurationError, TransportError) as exc:
                logger.warning(
                    "report_generation_failed version=%s attempt=%s error=%s",
                    REPORT_PROMPT_VERSION,
                    attempt,
                    truncate(str(exc)),
                )
                break

            report = parse_report(raw, final_score)
            if report is not None:
                logger.info(
                    "report_generated version=%s attempt=%s decision=%s",
                    REPORT_PROMPT_VERSION,
                    attempt,
                    report.decision.value,
                )
                return report
            logger.warning("report_decode_failed version=%s attempt=%s", REPORT_PROMPT_VERSION, attempt)

        return fallback_report(final_score)
