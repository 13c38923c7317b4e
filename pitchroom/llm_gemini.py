import logging
import os
import threading
from typing import Any, Optional, Sequence

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .errors import ConfigurationError, TransportError
from .llm_gateway import (
    CONVERSATION_TEMPERATURE,
    ConversationHandle,
    Message,
    ProviderAdapter,
    llm_timeout_seconds,
    truncate,
)
from .models import Turn


logger = logging.getLogger("uvicorn.error")

DEFAULT_MODEL = "gemini-2.5-flash"


def _get_api_key() -> str:
    api_key = os.getenv("GEMINI_API_KEY", "").strip() or os.getenv("API_KEY", "").strip()
    if not api_key:
        raise ConfigurationError(
            "Missing GEMINI_API_KEY. Set it before starting a session with provider=gemini "
            '(example: export GEMINI_API_KEY="YOUR_KEY_HERE").'
        )
    return api_key


def _model_name() -> str:
    return os.getenv("GEMINI_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL


def _build_client() -> genai.Client:
    timeout_ms = int(llm_timeout_seconds() * 1000)
    return genai.Client(api_key=_get_api_key(), http_options=types.HttpOptions(timeout=timeout_ms))


def _to_content(role: str, text: str) -> types.Content:
    return types.Content(role="model" if role in ("assistant", "model") else "user", parts=[types.Part(text=text)])


def _generation_config(system_prompt: str, temperature: float, json_mode: bool) -> types.GenerateContentConfig:
    return types.GenerateContentConfig(
        system_instruction=system_prompt,
        temperature=temperature,
        response_mime_type="application/json" if json_mode else None,
    )


class GeminiConversation(ConversationHandle):
    """Wraps an SDK chat session; the SDK keeps the history, not us."""

    def __init__(self, adapter: "GeminiAdapter", chat: Any) -> None:
        self.provider = adapter.provider_id
        self._adapter = adapter
        self._chat = chat

    def send(self, text: str) -> str:
        return self._adapter.call(lambda: self._chat.send_message(text))


class GeminiAdapter(ProviderAdapter):
    provider_id = "gemini"

    def __init__(self, client: Optional[Any] = None) -> None:
        self._client = client
        self._client_lock = threading.Lock()

    def is_configured(self) -> bool:
        if self._client is not None:
            return True
        return bool(os.getenv("GEMINI_API_KEY", "").strip() or os.getenv("API_KEY", "").strip())

    def _genai(self) -> Any:
        with self._client_lock:
            if self._client is None:
                self._client = _build_client()
            return self._client

    def call(self, request) -> str:
        try:
            response = request()
        except genai_errors.APIError as exc:
            detail = truncate(getattr(exc, "message", None) or str(exc))
            status_code = getattr(exc, "code", None)
            logger.warning("provider=gemini api_error status=%s detail=%s", status_code, detail)
            raise TransportError(
                f"Gemini request failed ({status_code}): {detail}",
                provider=self.provider_id,
                status_code=status_code,
            ) from exc
        except httpx.TimeoutException as exc:
            raise TransportError("Gemini request timed out.", provider=self.provider_id) from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to connect to Gemini: {exc}", provider=self.provider_id) from exc
        return (getattr(response, "text", None) or "").strip()

    def open(self, system_prompt: str, history: Sequence[Turn] = ()) -> ConversationHandle:
        chat = self._genai().chats.create(
            model=_model_name(),
            config=_generation_config(system_prompt, CONVERSATION_TEMPERATURE, json_mode=True),
            history=[_to_content("assistant" if turn.is_counterpart else "user", turn.text) for turn in history],
        )
        return GeminiConversation(self, chat)

    def chat(
        self,
        *,
        system_prompt: str,
        messages: Sequence[Message],
        temperature: float = CONVERSATION_TEMPERATURE,
        json_mode: bool = True,
    ) -> str:
        client = self._genai()
        contents = [_to_content(message["role"], message["content"]) for message in messages]
        return self.call(
            lambda: client.models.generate_content(
                model=_model_name(),
                contents=contents,
                config=_generation_config(system_prompt, temperature, json_mode),
            )
        )
