import json
import logging
import os
import threading
from typing import Any, Dict, Optional, Sequence

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

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

DEFAULT_BASE_URL = "https://api.gptsapi.net/v1"
DEFAULT_MODEL = "gpt-5.1-chat"
MAX_TOKENS = 1024


def _get_api_key() -> str:
    api_key = os.getenv("GPTSAPI_KEY", "").strip()
    if not api_key:
        raise ConfigurationError(
            "Missing GPTSAPI_KEY. Set it before starting a session with provider=gptsapi "
            '(example: export GPTSAPI_KEY="YOUR_KEY_HERE").'
        )
    return api_key


def _model_name() -> str:
    return os.getenv("GPTSAPI_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL


def _build_client() -> OpenAI:
    base_url = os.getenv("GPTSAPI_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL
    api_key = _get_api_key()
    default_headers = None
    if os.getenv("GPTSAPI_AUTH_MODE", "authorization").strip().lower() == "x-api-key":
        default_headers = {"x-api-key": api_key}
    return OpenAI(
        base_url=base_url,
        api_key=api_key,
        timeout=llm_timeout_seconds(),
        max_retries=0,
        default_headers=default_headers,
    )


def _status_message(exc: APIStatusError) -> str:
    return (getattr(exc, "message", "") or str(exc)).lower()


def _unsupported_response_format(exc: APIStatusError) -> bool:
    message = _status_message(exc)
    return "response_format" in message or "json_object" in message


def _unsupported_temperature(exc: APIStatusError) -> bool:
    message = _status_message(exc)
    return "temperature" in message and "default (1)" in message


class GptsApiAdapter(ProviderAdapter):
    """Stateless OpenAI-compatible provider through the official SDK.

    Some models behind the gateway reject ``temperature`` or ``response_format``;
    those parameters are dropped one at a time on a 400 that names them.
    """

    provider_id = "gptsapi"

    def __init__(self, client: Optional[OpenAI] = None) -> None:
        self._client = client
        self._client_lock = threading.Lock()

    def is_configured(self) -> bool:
        return self._client is not None or bool(os.getenv("GPTSAPI_KEY", "").strip())

    def _openai(self) -> OpenAI:
        with self._client_lock:
            if self._client is None:
                self._client = _build_client()
            return self._client

    def chat(
        self,
        *,
        system_prompt: str,
        messages: Sequence[Message],
        temperature: float = CONVERSATION_TEMPERATURE,
        json_mode: bool = True,
    ) -> str:
        client = self._openai()
        base_kwargs: Dict[str, Any] = {
            "model": _model_name(),
            "messages": [{"role": "system", "content": system_prompt}, *messages],
            "max_tokens": MAX_TOKENS,
            "temperature": temperature,
        }
        if json_mode:
            base_kwargs["response_format"] = {"type": "json_object"}

        attempts = [
            dict(base_kwargs),
            {k: v for k, v in base_kwargs.items() if k != "temperature"},
            {k: v for k, v in base_kwargs.items() if k != "response_format"},
            {k: v for k, v in base_kwargs.items() if k not in {"temperature", "response_format"}},
        ]
        seen_signatures: set[str] = set()
        last_status_error: Optional[APIStatusError] = None

        for kwargs in attempts:
            signature = json.dumps(sorted(kwargs.keys()))
            if signature in seen_signatures:
                continue
            seen_signatures.add(signature)

            try:
                response = client.chat.completions.create(**kwargs)
            except APIStatusError as exc:
                last_status_error = exc
                if exc.status_code == 400 and (_unsupported_response_format(exc) or _unsupported_temperature(exc)):
                    continue
                raise self._status_error(exc) from exc
            except APITimeoutError as exc:
                raise TransportError("GPTsAPI request timed out.", provider=self.provider_id) from exc
            except APIConnectionError as exc:
                raise TransportError(f"Failed to connect to GPTsAPI: {exc}", provider=self.provider_id) from exc

            choice = response.choices[0] if response.choices else None
            if choice is None:
                raise TransportError("GPTsAPI returned no choices.", provider=self.provider_id)
            return extract_content(choice.message.content)

        if last_status_error is not None:
            raise self._status_error(last_status_error) from last_status_error
        raise TransportError("GPTsAPI request failed before receiving a response.", provider=self.provider_id)

    def _status_error(self, exc: APIStatusError) -> TransportError:
        status_code = getattr(exc, "status_code", None)
        detail = truncate(getattr(exc, "message", None) or str(exc))
        logger.warning("provider=gptsapi http_error status=%s detail=%s", status_code, detail)
        return TransportError(
            f"GPTsAPI request failed ({status_code}): {detail}",
            provider=self.provider_id,
            status_code=status_code,
        )
