import pytest

from pitchroom.errors import ConfigurationError, TransportError
from pitchroom.llm_gateway import ModelGateway, StatelessConversation
from pitchroom.models import COUNTERPART_ROLE, USER_ROLE, Turn

from conftest import ScriptedAdapter, turn_json


def test_open_unknown_provider_is_configuration_error(gateway) -> None:
    with pytest.raises(ConfigurationError):
        gateway.open("system", "nope")


def test_open_unconfigured_provider_is_configuration_error() -> None:
    gateway = ModelGateway([ScriptedAdapter(configured=False)], default_provider="providerA")
    with pytest.raises(ConfigurationError):
        gateway.open("system")


def test_default_provider_resolved_at_open(monkeypatch) -> None:
    monkeypatch.setenv("PITCHROOM_PROVIDER", "providerB")
    gateway = ModelGateway([ScriptedAdapter("providerA"), ScriptedAdapter("providerB")])
    assert gateway.default_provider == "providerb"
    handle = ModelGateway(
        [ScriptedAdapter("providerA"), ScriptedAdapter("providerB")], default_provider="providerB"
    ).open("system")
    assert handle.provider == "providerB"


def test_converse_replays_full_history_for_stateless_provider(adapter, gateway) -> None:
    adapter.replies.append(turn_json("Numbers?", delta=-4))
    handle = gateway.open("system prompt", history=[Turn(role=USER_ROLE, text="cue")])
    assert isinstance(handle, StatelessConversation)

    opening = gateway.converse(handle, "hello")
    second = gateway.converse(handle, "we have traction")

    assert opening.reply == "You have two minutes. Go."
    assert second.delta == -4
    assert adapter.calls[-1]["system_prompt"] == "system prompt"
    assert adapter.calls[-1]["messages"] == [
        {"role": "user", "content": "cue"},
        {"role": "user", "content": "hello"},
        {"role": "assistant", "content": "You have two minutes. Go."},
        {"role": "user", "content": "we have traction"},
    ]


def test_transport_error_leaves_handle_unchanged(adapter, gateway) -> None:
    adapter.replies.append(TransportError("down", provider="providerA"))
    handle = gateway.open("system")
    gateway.converse(handle, "first")
    before = handle.messages

    with pytest.raises(TransportError):
        gateway.converse(handle, "second")

    assert handle.messages == before


def test_converse_clamps_model_delta(adapter, gateway) -> None:
    adapter.replies = [turn_json("Amazing", delta=99)]
    handle = gateway.open("system")
    assert gateway.converse(handle, "we are profitable").delta == 15


def test_handles_do_not_share_state(gateway) -> None:
    first = gateway.open("system")
    second = gateway.open("system")
    gateway.converse(first, "only in first")
    assert second.messages == []


def test_complete_uses_requested_temperature(adapter, gateway) -> None:
    adapter.replies = ['{"feedback": "ok"}']
    raw = gateway.complete(system_prompt="report", user_prompt="transcript", temperature=0.3)
    assert raw == '{"feedback": "ok"}'
    assert adapter.calls[-1]["temperature"] == 0.3
    assert adapter.calls[-1]["messages"] == [{"role": "user", "content": "transcript"}]


def test_available_providers_lists_configured_only() -> None:
    gateway = ModelGateway(
        [ScriptedAdapter("providerA"), ScriptedAdapter("providerB", configured=False)],
        default_provider="providerA",
    )
    assert gateway.available_providers() == ["providerA"]
    assert gateway.provider_status() == {"providerA": True, "providerB": False}


def test_counterpart_turns_become_assistant_messages(adapter, gateway) -> None:
    handle = gateway.open("system", history=[Turn(role=COUNTERPART_ROLE, text="Hi")])
    assert handle.messages == [{"role": "assistant", "content": "Hi"}]
