import json
import logging
import os
import threading
from typing import Any, Dict, Optional, Sequence

import httpx

from .errors import ConfigurationError, TransportError
from .llm_gateway import (
    CONVERSATION_TEMPERATURE,
    Message,
    ProviderAdapter,
    extract_content,
    llm_timeout_seconds,
    truncate,
)


logger = logging.getLogger("uvicorn.error")

DEFAULT_BASE_URL = "https://api.deepseek.com"
DEFAULT_MODEL = "deepseek-chat"
MAX_TOKENS = 1024


def _get_api_key() -> str:
    api_key = os.getenv("DEEPSEEK_API_KEY", "").strip()
    if not api_key:
        raise ConfigurationError(
            "Missing DEEPSEEK_API_KEY. Set it before starting a session with provider=deepseek "
            '(example: export DEEPSEEK_API_KEY="YOUR_KEY_HERE").'
        )
    return api_key


def _base_url() -> str:
    return os.getenv("DEEPSEEK_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL


def _model_name() -> str:
    return os.getenv("DEEPSEEK_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL


def _is_response_format_unsupported(error_message: str) -> bool:
    lowered = (error_message or "").lower()
    return "response_format" in lowered or "json_object" in lowered


def _error_detail(response: httpx.Response) -> str:
    try:
        error_payload = response.json()
        detail = (
            error_payload.get("error", {}).get("message")
            if isinstance(error_payload, dict)
            else ""
        ) or ""
    except (json.JSONDecodeError, ValueError, AttributeError):
        detail = response.text or ""
    return detail


class DeepSeekAdapter(ProviderAdapter):
    """Stateless chat-completions provider over raw HTTP.

    One ``httpx.Client`` (and its connection pool) is shared by every session.
    """

    provider_id = "deepseek"

    def __init__(self, client: Optional[httpx.Client] = None) -> None:
        self._client = client
        self._client_lock = threading.Lock()

    def is_configured(self) -> bool:
        return bool(os.getenv("DEEPSEEK_API_KEY", "").strip())

    def _http(self) -> httpx.Client:
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(timeout=llm_timeout_seconds())
            return self._client

    def chat(
        self,
        *,
        system_prompt: str,
        messages: Sequence[Message],
        temperature: float = CONVERSATION_TEMPERATURE,
        json_mode: bool = True,
    ) -> str:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {_get_api_key()}",
        }
        payload: Dict[str, Any] = {
            "model": _model_name(),
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "temperature": temperature,
            "max_tokens": MAX_TOKENS,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        timeout_seconds = llm_timeout_seconds()
        endpoint = _base_url().rstrip("/") + "/chat/completions"

        def _send(json_payload: Dict[str, Any]) -> httpx.Response:
            try:
                return self._http().post(endpoint, headers=headers, json=json_payload, timeout=timeout_seconds)
            except httpx.TimeoutException as exc:
                raise TransportError(
                    f"DeepSeek request timed out after {int(timeout_seconds)} seconds.",
                    provider=self.provider_id,
                ) from exc
            except httpx.HTTPError as exc:
                raise TransportError(f"Failed to call DeepSeek: {exc}", provider=self.provider_id) from exc

        response = _send(payload)
        if response.status_code == 400 and "response_format" in payload:
            if _is_response_format_unsupported(_error_detail(response)):
                logger.info("provider=deepseek retry_without_response_format")
                payload = {key: value for key, value in payload.items() if key != "response_format"}
                response = _send(payload)

        if response.status_code >= 400:
            detail = truncate(_error_detail(response) or "Unknown provider error")
            logger.warning("provider=deepseek http_error status=%s detail=%s", response.status_code, detail)
            raise TransportError(
                f"DeepSeek error {response.status_code}: {detail}",
                provider=self.provider_id,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise TransportError("DeepSeek returned a non-JSON HTTP response.", provider=self.provider_id) from exc

        choices = body.get("choices") if isinstance(body, dict) else None
        if not choices or not isinstance(choices, list):
            raise TransportError("DeepSeek response did not contain choices.", provider=self.provider_id)

        first_choice = choices[0]
        message = first_choice.get("message") if isinstance(first_choice, dict) else None
        return extract_content(message.get("content") if isinstance(message, dict) else "")
