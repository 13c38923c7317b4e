import threading

import pytest

from pitchroom.constants import OPENING_CUE
from pitchroom.errors import ConfigurationError, DuplicateSubmitError, TransportError, ValidationError
from pitchroom.llm_gateway import ModelGateway
from pitchroom.models import (
    COUNTERPART_ROLE,
    USER_ROLE,
    Decision,
    SessionStatus,
    TerminationReason,
    TurnResult,
)
from pitchroom.report import ReportGenerator
from pitchroom.session import PitchSessionMachine

from conftest import ScriptedAdapter, ScriptedGateway, turn_json


def _started(gateway, persona, startup) -> PitchSessionMachine:
    machine = PitchSessionMachine(gateway)
    machine.start(persona, startup, "providerA")
    return machine


def test_end_to_end_scenario(investor, startup) -> None:
    gateway = ScriptedGateway(
        results=[
            TurnResult(reply="You have two minutes."),
            TurnResult(reply="No revenue? Then what are we doing here?", delta=-18),
            TurnResult(reply="Better. What is your churn?", delta=12),
        ],
        report_raw=[
            '{"score": 44, "feedback": "Recovered late.", "funding_decision": "Passed",'
            ' "strengths": ["Unit economics"], "weaknesses": ["Opening"]}'
        ],
    )
    machine = PitchSessionMachine(gateway)

    opening = machine.start(investor, startup, "providerA")
    assert opening.opening_line == "You have two minutes."
    state = machine.snapshot()
    assert (state.status, state.score, state.trajectory) == (SessionStatus.ACTIVE, 50, (50,))
    assert gateway.sent == [OPENING_CUE]

    first = machine.submit_turn("We have no revenue model yet")
    assert (first.score, first.terminated) == (32, False)
    assert machine.snapshot().trajectory == (50, 32)
    assert machine.status is SessionStatus.ACTIVE

    second = machine.submit_turn("We charge $50/month, 1000 paying users, $20 CAC")
    assert second.score == 44
    assert machine.snapshot().trajectory == (50, 32, 44)

    machine.end_early()
    state = machine.snapshot()
    assert state.status is SessionStatus.TERMINATED
    assert state.termination_reason is TerminationReason.USER_ENDED

    report = ReportGenerator(gateway).generate(state.transcript, state.score)
    assert report.score == 44
    assert report.decision in set(Decision)
    assert machine.snapshot() == state


def test_opening_turn_has_no_delta(adapter, gateway, investor, startup) -> None:
    machine = _started(gateway, investor, startup)
    (opening,) = machine.snapshot().transcript
    assert opening.role == COUNTERPART_ROLE
    assert opening.interest_change is None


def test_dealbreaker_terminates_regardless_of_score(adapter, gateway, investor, startup) -> None:
    adapter.replies = [turn_json("Opening."), turn_json("I'm out.", delta=10, dealbreaker=True)]
    machine = _started(gateway, investor, startup)

    outcome = machine.submit_turn("We plan to pivot every month.")

    assert outcome.terminated is True
    assert outcome.score == 60
    assert outcome.termination_reason is TerminationReason.DEALBREAKER
    assert machine.snapshot().termination_reason is TerminationReason.DEALBREAKER


def test_score_exactly_ten_hits_floor(adapter, gateway, investor, startup) -> None:
    adapter.replies = [turn_json("Opening."), turn_json("a", -15), turn_json("b", -15), turn_json("c", -10)]
    machine = _started(gateway, investor, startup)

    assert machine.submit_turn("one").score == 35
    assert machine.submit_turn("two").score == 20
    outcome = machine.submit_turn("three")

    assert outcome.score == 10
    assert outcome.termination_reason is TerminationReason.SCORE_FLOOR
    assert machine.snapshot().trajectory == (50, 35, 20, 10)


def test_score_eleven_stays_active(adapter, gateway, investor, startup) -> None:
    adapter.replies = [turn_json("Opening."), turn_json("a", -15), turn_json("b", -15), turn_json("c", -9)]
    machine = _started(gateway, investor, startup)
    for text in ("one", "two", "three"):
        outcome = machine.submit_turn(text)
    assert outcome.score == 11
    assert outcome.terminated is False
    assert machine.status is SessionStatus.ACTIVE


def test_transcript_and_trajectory_stay_in_step(adapter, gateway, investor, startup) -> None:
    adapter.replies = [turn_json("Opening."), turn_json("a", 3), "garbage reply", turn_json("c", -2)]
    machine = _started(gateway, investor, startup)
    for text in ("one", "two", "three"):
        machine.submit_turn(text)

    state = machine.snapshot()
    scored = [turn for turn in state.transcript if turn.interest_change is not None]
    assert len(state.trajectory) == len(scored) + 1
    assert [turn.role for turn in state.transcript] == [COUNTERPART_ROLE] + [USER_ROLE, COUNTERPART_ROLE] * 3
    assert state.transcript[4].text == "garbage reply"
    assert state.transcript[4].interest_change == 0


def test_transport_error_commits_nothing(adapter, gateway, investor, startup) -> None:
    adapter.replies = [turn_json("Opening."), TransportError("timeout"), turn_json("Now I hear you.", 5)]
    machine = _started(gateway, investor, startup)
    before = machine.snapshot()

    with pytest.raises(TransportError):
        machine.submit_turn("Our TAM is $4B")
    assert machine.snapshot() == before

    outcome = machine.submit_turn("Our TAM is $4B")
    assert outcome.score == 55
    assert len(machine.snapshot().transcript) == 3


def test_blank_turn_is_rejected_without_mutation(gateway, investor, startup) -> None:
    machine = _started(gateway, investor, startup)
    before = machine.snapshot()
    with pytest.raises(ValidationError):
        machine.submit_turn("   \n\t")
    assert machine.snapshot() == before


def test_submit_before_start_is_rejected(gateway) -> None:
    with pytest.raises(ValidationError):
        PitchSessionMachine(gateway).submit_turn("hello")


def test_submit_after_termination_is_rejected(gateway, investor, startup) -> None:
    machine = _started(gateway, investor, startup)
    machine.end_early()
    frozen = machine.snapshot()
    with pytest.raises(ValidationError):
        machine.submit_turn("one more thing")
    with pytest.raises(ValidationError):
        machine.end_early()
    assert machine.snapshot() == frozen


def test_duplicate_submit_is_rejected_while_in_flight(adapter, gateway, investor, startup) -> None:
    adapter.replies = [turn_json("Opening."), turn_json("Interesting.", 4)]
    machine = _started(gateway, investor, startup)
    adapter.entered.clear()
    adapter.gate = threading.Event()
    outcomes = []

    worker = threading.Thread(target=lambda: outcomes.append(machine.submit_turn("First answer")))
    worker.start()
    assert adapter.entered.wait(timeout=5)

    with pytest.raises(DuplicateSubmitError):
        machine.submit_turn("Second answer")

    adapter.gate.set()
    worker.join(timeout=5)

    state = machine.snapshot()
    assert len(outcomes) == 1
    assert len(state.transcript) == 3
    assert state.trajectory == (50, 54)


def test_end_while_in_flight_discards_reply(adapter, gateway, investor, startup) -> None:
    adapter.replies = [turn_json("Opening."), turn_json("Late reply.", 9)]
    machine = _started(gateway, investor, startup)
    adapter.entered.clear()
    adapter.gate = threading.Event()
    errors = []

    def submit() -> None:
        try:
            machine.submit_turn("Answer")
        except ValidationError as exc:
            errors.append(exc)

    worker = threading.Thread(target=submit)
    worker.start()
    assert adapter.entered.wait(timeout=5)
    machine.end_early()
    adapter.gate.set()
    worker.join(timeout=5)

    state = machine.snapshot()
    assert len(errors) == 1
    assert state.status is SessionStatus.TERMINATED
    assert len(state.transcript) == 1
    assert state.trajectory == (50,)


def test_start_without_provider_stays_in_setup(investor, startup) -> None:
    gateway = ModelGateway([ScriptedAdapter(configured=False)], default_provider="providerA")
    machine = PitchSessionMachine(gateway)

    with pytest.raises(ConfigurationError):
        machine.start(investor, startup)

    state = machine.snapshot()
    assert state.status is SessionStatus.SETUP
    assert state.transcript == ()
    assert state.termination_reason is None


def test_start_transport_failure_stays_in_setup_and_can_retry(adapter, gateway, investor, startup) -> None:
    adapter.replies = [TransportError("down"), turn_json("Finally.")]
    machine = PitchSessionMachine(gateway)

    with pytest.raises(TransportError):
        machine.start(investor, startup)
    assert machine.status is SessionStatus.SETUP

    assert machine.start(investor, startup).opening_line == "Finally."
    assert machine.status is SessionStatus.ACTIVE


def test_attach_report_only_after_termination(gateway, investor, startup) -> None:
    machine = _started(gateway, investor, startup)
    report = ReportGenerator(gateway).generate(machine.snapshot().transcript, 50)
    with pytest.raises(ValidationError):
        machine.attach_report(report)

    machine.end_early()
    machine.attach_report(report)
    state = machine.snapshot()
    assert state.status is SessionStatus.REPORTED
    assert state.report == report
    assert state.termination_reason is TerminationReason.USER_ENDED


def test_resumed_session_replays_identical_context(investor, startup) -> None:
    replies = [turn_json("Opening."), turn_json("Go on.", -3)]
    original_adapter = ScriptedAdapter(replies=replies + [turn_json("Same.", 2)])
    original = _started(ModelGateway([original_adapter], "providerA"), investor, startup)
    original.submit_turn("First answer")
    saved = original.snapshot()
    original.submit_turn("Second answer")

    resumed_adapter = ScriptedAdapter(replies=[turn_json("Same.", 2)])
    resumed = PitchSessionMachine.resume(ModelGateway([resumed_adapter], "providerA"), saved)
    outcome = resumed.submit_turn("Second answer")

    assert resumed_adapter.calls[-1]["messages"] == original_adapter.calls[-1]["messages"]
    assert resumed_adapter.calls[-1]["system_prompt"] == original_adapter.calls[-1]["system_prompt"]
    assert outcome.score == original.snapshot().score == 49
    assert resumed.snapshot().trajectory == original.snapshot().trajectory


def test_resume_terminated_session_is_read_only(gateway, investor, startup) -> None:
    machine = _started(gateway, investor, startup)
    machine.end_early()
    resumed = PitchSessionMachine.resume(gateway, machine.snapshot())
    assert resumed.snapshot() == machine.snapshot()
    with pytest.raises(ValidationError):
        resumed.submit_turn("hello?")


def test_abandoned_session_rejects_turns(gateway, investor, startup) -> None:
    machine = _started(gateway, investor, startup)
    machine.abandon()
    with pytest.raises(ValidationError):
        machine.submit_turn("anyone there?")
