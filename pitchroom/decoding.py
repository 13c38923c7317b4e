"""Decoding of untrusted model output into structured results.

Models are asked for a bare JSON object but routinely wrap it in markdown
fences, prepend chatter, or ignore the contract altogether. Everything here is
total: malformed input degrades to a neutral result and never raises.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Optional

from .constants import MAX_MODEL_DELTA
from .models import TurnResult
from .scoring import clamp


logger = logging.getLogger("uvicorn.error")

FENCED_BLOCK_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
FENCE_MARKER_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)
LEADING_INT_PATTERN = re.compile(r"^\s*([+-]?\d+)")

DEFAULT_PROBE_REPLY = "Be specific. Walk me through your numbers and your assumptions."
DEFAULT_CONTINUE_REPLY = "Go on. Tell me more about the details of your project."


def extract_json_candidate(raw: str) -> str:
    text = raw or ""
    match = FENCED_BLOCK_PATTERN.search(text)
    if match and match.group(1).strip():
        return match.group(1).strip()

    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start : end + 1]
    return text.strip()


def strip_fences(raw: str) -> str:
    return FENCE_MARKER_PATTERN.sub("", raw or "").strip()


def parse_json_object(raw: str) -> Optional[dict]:
    candidate = extract_json_candidate(raw)
    if not candidate:
        return None
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed


def coerce_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return default
        return int(round(value))
    if isinstance(value, str):
        match = LEADING_INT_PATTERN.match(value)
        if match:
            return int(match.group(1))
    return default


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1"}
    return False


def _excerpt(raw: str, limit: int = 200) -> str:
    value = (raw or "").strip().replace("\n", " ")
    return value if len(value) <= limit else value[: limit - 3] + "..."


def decode_turn(raw: str) -> TurnResult:
    payload = parse_json_object(raw)
    if payload is None:
        logger.warning("turn_decode_degraded raw=%s", _excerpt(raw))
        return TurnResult(reply=strip_fences(raw) or DEFAULT_CONTINUE_REPLY, delta=0, dealbreaker=False)

    reply = payload.get("response")
    if not isinstance(reply, str) or not reply.strip():
        logger.warning("turn_decode_missing_response keys=%s", sorted(payload.keys()))
        reply = DEFAULT_PROBE_REPLY

    delta = clamp(coerce_int(payload.get("interest_change")), -MAX_MODEL_DELTA, MAX_MODEL_DELTA)
    return TurnResult(
        reply=reply.strip(),
        delta=delta,
        dealbreaker=coerce_bool(payload.get("is_dealbreaker", False)),
    )
