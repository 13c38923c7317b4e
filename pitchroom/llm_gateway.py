from __future__ import annotations

import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .constants import DEFAULT_TIMEOUT_SECONDS, MAX_ERROR_CHARS
from .decoding import decode_turn
from .errors import ConfigurationError
from .models import Turn, TurnResult


logger = logging.getLogger("uvicorn.error")

DEFAULT_PROVIDER = "deepseek"
CONVERSATION_TEMPERATURE = 0.7

Message = Dict[str, str]


def truncate(text: str, max_chars: int = MAX_ERROR_CHARS) -> str:
    value = (text or "").strip()
    if len(value) <= max_chars:
        return value
    return value[: max_chars - 3] + "..."


def extract_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts: List[str] = []
        for item in value:
            if isinstance(item, dict):
                text = item.get("text")
                if text:
                    parts.append(str(text))
        return "\n".join(parts).strip()
    return str(value or "").strip()


def llm_timeout_seconds() -> float:
    raw = os.getenv("PITCHROOM_LLM_TIMEOUT_SECONDS", "").strip()
    if not raw:
        return DEFAULT_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError:
        logger.warning("invalid PITCHROOM_LLM_TIMEOUT_SECONDS=%r, using %s", raw, DEFAULT_TIMEOUT_SECONDS)
        return DEFAULT_TIMEOUT_SECONDS
    return value if value > 0 else DEFAULT_TIMEOUT_SECONDS


def configured_default_provider() -> str:
    value = os.getenv("PITCHROOM_PROVIDER", "").strip() or os.getenv("MODEL_PROVIDER", "").strip()
    return (value or DEFAULT_PROVIDER).lower()


def turns_to_messages(history: Iterable[Turn]) -> List[Message]:
    return [
        {"role": "assistant" if turn.is_counterpart else "user", "content": turn.text}
        for turn in history
    ]


class ConversationHandle:
    """A conversation bound to one provider for its whole lifetime.

    ``send`` must not change the handle; the gateway calls ``commit`` only once
    the reply has been received, so a failed call leaves the context untouched.
    """

    provider: str = ""

    def send(self, text: str) -> str:
        raise NotImplementedError

    def commit(self, user_text: str, reply: str) -> None:
        pass


class StatelessConversation(ConversationHandle):
    """Keeps the message list locally and replays it on every call."""

    def __init__(
        self,
        adapter: "ProviderAdapter",
        system_prompt: str,
        history: Sequence[Turn] = (),
        temperature: float = CONVERSATION_TEMPERATURE,
    ) -> None:
        self.provider = adapter.provider_id
        self._adapter = adapter
        self._system_prompt = system_prompt
        self._temperature = temperature
        self._messages: List[Message] = turns_to_messages(history)

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def send(self, text: str) -> str:
        return self._adapter.chat(
            system_prompt=self._system_prompt,
            messages=self._messages + [{"role": "user", "content": text}],
            temperature=self._temperature,
        )

    def commit(self, user_text: str, reply: str) -> None:
        self._messages.append({"role": "user", "content": user_text})
        self._messages.append({"role": "assistant", "content": reply})


class ProviderAdapter:
    """One model provider. Subclasses share a single client across sessions."""

    provider_id: str = ""

    def is_configured(self) -> bool:
        raise NotImplementedError

    def chat(
        self,
        *,
        system_prompt: str,
        messages: Sequence[Message],
        temperature: float = CONVERSATION_TEMPERATURE,
        json_mode: bool = True,
    ) -> str:
        raise NotImplementedError

    def open(self, system_prompt: str, history: Sequence[Turn] = ()) -> ConversationHandle:
        return StatelessConversation(self, system_prompt, history)

    def complete(self, *, system_prompt: str, user_prompt: str, temperature: float) -> str:
        return self.chat(
            system_prompt=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=temperature,
        )


class ModelGateway:
    def __init__(self, adapters: Iterable[ProviderAdapter], default_provider: Optional[str] = None) -> None:
        self._adapters: Dict[str, ProviderAdapter] = {adapter.provider_id.lower(): adapter for adapter in adapters}
        self._default_provider = (default_provider or configured_default_provider()).lower()

    @property
    def default_provider(self) -> str:
        return self._default_provider

    def provider_status(self) -> Dict[str, bool]:
        return {adapter.provider_id: adapter.is_configured() for adapter in self._adapters.values()}

    def available_providers(self) -> List[str]:
        return [provider_id for provider_id, ready in self.provider_status().items() if ready]

    def resolve(self, provider_id: Optional[str] = None) -> ProviderAdapter:
        selected = (provider_id or self._default_provider or "").strip().lower()
        adapter = self._adapters.get(selected)
        if adapter is None:
            known = ", ".join(sorted(self._adapters)) or "none"
            raise ConfigurationError(f"Unknown model provider {selected!r}. Known providers: {known}.")
        if not adapter.is_configured():
            raise ConfigurationError(f"Model provider {selected!r} has no credentials configured.")
        return adapter

    def open(
        self,
        system_prompt: str,
        provider_id: Optional[str] = None,
        history: Sequence[Turn] = (),
    ) -> ConversationHandle:
        adapter = self.resolve(provider_id)
        handle = adapter.open(system_prompt, history)
        logger.info("conversation_opened provider=%s replayed_turns=%s", adapter.provider_id, len(history))
        return handle

    def converse(self, handle: ConversationHandle, text: str) -> TurnResult:
        raw = handle.send(text)
        result = decode_turn(raw)
        handle.commit(text, result.reply)
        return result

    def complete(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        provider_id: Optional[str] = None,
        temperature: float = 0.3,
    ) -> str:
        adapter = self.resolve(provider_id)
        return adapter.complete(system_prompt=system_prompt, user_prompt=user_prompt, temperature=temperature)


def build_model_gateway() -> ModelGateway:
    from .llm_deepseek import DeepSeekAdapter
    from .llm_gemini import GeminiAdapter
    from .llm_gptsapi import GptsApiAdapter

    return ModelGateway([DeepSeekAdapter(), GptsApiAdapter(), GeminiAdapter()])

