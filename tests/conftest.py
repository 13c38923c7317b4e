from __future__ import annotations

import json
import threading
from typing import Any, Optional, Sequence

import pytest

from pitchroom.llm_gateway import CONVERSATION_TEMPERATURE, ConversationHandle, ModelGateway, ProviderAdapter
from pitchroom.models import SessionState, StartupProfile, Turn, TurnResult
from pitchroom.personas import get_persona
from pitchroom.storage import InMemorySessionStore


def turn_json(response: str, delta: Any = 0, dealbreaker: bool = False) -> str:
    return json.dumps({"response": response, "interest_change": delta, "is_dealbreaker": dealbreaker})


class ScriptedAdapter(ProviderAdapter):
    """Stateless provider that replays canned raw completions (or raises them)."""

    def __init__(self, provider_id: str = "providerA", replies: Sequence[Any] = (), configured: bool = True) -> None:
        self.provider_id = provider_id
        self.replies = list(replies)
        self.configured = configured
        self.calls: list[dict] = []
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()

    def is_configured(self) -> bool:
        return self.configured

    def chat(self, *, system_prompt, messages, temperature=CONVERSATION_TEMPERATURE, json_mode=True) -> str:
        self.calls.append(
            {"system_prompt": system_prompt, "messages": [dict(m) for m in messages], "temperature": temperature}
        )
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if not self.replies:
            return turn_json("Go on.")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class _ScriptedHandle(ConversationHandle):
    provider = "providerA"

    def send(self, text: str) -> str:
        return ""


class ScriptedGateway:
    """Gateway double that hands back pre-decoded turn results verbatim."""

    default_provider = "providerA"

    def __init__(self, results: Sequence[Any] = (), report_raw: Sequence[Any] = ()) -> None:
        self.results = list(results)
        self.report_raw = list(report_raw)
        self.sent: list[str] = []
        self.opened: list[dict] = []

    def open(self, system_prompt: str, provider_id: Optional[str] = None, history: Sequence[Turn] = ()):
        self.opened.append({"system_prompt": system_prompt, "provider_id": provider_id, "history": list(history)})
        return _ScriptedHandle()

    def converse(self, handle, text: str) -> TurnResult:
        self.sent.append(text)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def complete(self, *, system_prompt, user_prompt, provider_id=None, temperature=0.3) -> str:
        raw = self.report_raw.pop(0)
        if isinstance(raw, Exception):
            raise raw
        return raw


class FlakyStore(InMemorySessionStore):
    """In-memory store whose next ``save_session`` can be made to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_next_save = False
        self.saves = 0
        self.read_gate: Optional[threading.Event] = None
        self.reading = threading.Event()

    def save_session(self, state: SessionState) -> None:
        if self.fail_next_save:
            self.fail_next_save = False
            raise RuntimeError("connection to database lost")
        self.saves += 1
        super().save_session(state)

    def get_session(self, session_id: str) -> Optional[SessionState]:
        self.reading.set()
        if self.read_gate is not None:
            self.read_gate.wait(timeout=5)
        return super().get_session(session_id)


@pytest.fixture
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter(replies=[turn_json("You have two minutes. Go.")])


@pytest.fixture
def gateway(adapter: ScriptedAdapter) -> ModelGateway:
    return ModelGateway([adapter], default_provider="providerA")


@pytest.fixture
def investor():
    return get_persona("shark")


@pytest.fixture
def mentor():
    return get_persona("mentor")


@pytest.fixture
def startup() -> StartupProfile:
    return StartupProfile(name="PetUber", description="Uber for dogs")
