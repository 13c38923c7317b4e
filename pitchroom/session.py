"""Pitch session lifecycle: SETUP -> ACTIVE -> TERMINATED -> REPORTED.

A ``PitchSessionMachine`` owns one session's authoritative state. It suspends
only inside gateway calls, and never while holding its state lock, so
``snapshot`` and ``end_early`` stay responsive while a turn is in flight.
Turns are strictly sequential: a second ``submit_turn`` issued while one is
still waiting on the model is rejected rather than queued.

When a ``persist`` callback is given, every transition is saved before it
becomes visible. A failed save rolls the machine back to its previous state
and raises ``PersistenceError``, so the caller can resubmit without the turn
being scored twice.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Callable, List, NamedTuple, Optional

from .constants import OPENING_CUE, SCORE_FLOOR, SEED_SCORE
from .errors import DuplicateSubmitError, PersistenceError, ValidationError
from .llm_gateway import ConversationHandle, ModelGateway, truncate
from .models import (
    COUNTERPART_ROLE,
    USER_ROLE,
    OpeningResult,
    Persona,
    Report,
    SessionState,
    SessionStatus,
    StartupProfile,
    TerminationReason,
    Turn,
    TurnOutcome,
    utc_now,
)
from .prompts.persona import PERSONA_PROMPT_VERSION, build_system_prompt
from .scoring import ScoreTracker


logger = logging.getLogger("uvicorn.error")

OPENING_TURN_ID = "init"

PersistCallback = Callable[[SessionState], None]


def new_session_id() -> str:
    return str(uuid.uuid4())


class _Checkpoint(NamedTuple):
    status: SessionStatus
    transcript: List[Turn]
    trajectory: Optional[tuple]
    termination_reason: Optional[TerminationReason]
    provider: Optional[str]
    persona: Optional[Persona]
    startup: Optional[StartupProfile]
    report: Optional[Report]
    handle: Optional[ConversationHandle]
    abandoned: bool
    updated_at: object


class PitchSessionMachine:
    def __init__(
        self,
        gateway: ModelGateway,
        session_id: Optional[str] = None,
        locale: Optional[str] = None,
        persist: Optional[PersistCallback] = None,
    ) -> None:
        self.session_id = session_id or new_session_id()
        self._gateway = gateway
        self._locale = locale
        self._persist = persist
        self._lock = threading.Lock()
        self._in_flight = threading.Lock()

        self._status = SessionStatus.SETUP
        self._transcript: List[Turn] = []
        self._tracker: Optional[ScoreTracker] = None
        self._termination_reason: Optional[TerminationReason] = None
        self._provider: Optional[str] = None
        self._persona: Optional[Persona] = None
        self._startup: Optional[StartupProfile] = None
        self._report: Optional[Report] = None
        self._handle: Optional[ConversationHandle] = None
        self._abandoned = False
        self._created_at = utc_now()
        self._updated_at = self._created_at

    @property
    def status(self) -> SessionStatus:
        with self._lock:
            return self._status

    @property
    def provider(self) -> Optional[str]:
        return self._provider

    def _acquire_turn_slot(self) -> None:
        if not self._in_flight.acquire(blocking=False):
            raise DuplicateSubmitError(f"A turn is already in flight for session {self.session_id}.")

    def _require(self, expected: SessionStatus, action: str) -> None:
        if self._abandoned:
            raise ValidationError(f"Cannot {action}: session {self.session_id} was abandoned.")
        if self._status is not expected:
            raise ValidationError(
                f"Cannot {action}: session {self.session_id} is {self._status.value}, expected {expected.value}."
            )

    def _touch(self) -> None:
        self._updated_at = utc_now()

    def _checkpoint(self) -> _Checkpoint:
        return _Checkpoint(
            status=self._status,
            transcript=list(self._transcript),
            trajectory=self._tracker.trajectory if self._tracker else None,
            termination_reason=self._termination_reason,
            provider=self._provider,
            persona=self._persona,
            startup=self._startup,
            report=self._report,
            handle=self._handle,
            abandoned=self._abandoned,
            updated_at=self._updated_at,
        )

    def _rollback(self, checkpoint: _Checkpoint) -> None:
        self._status = checkpoint.status
        self._transcript = list(checkpoint.transcript)
        self._tracker = ScoreTracker.restore(checkpoint.trajectory) if checkpoint.trajectory is not None else None
        self._termination_reason = checkpoint.termination_reason
        self._provider = checkpoint.provider
        self._persona = checkpoint.persona
        self._startup = checkpoint.startup
        self._report = checkpoint.report
        self._handle = checkpoint.handle
        self._abandoned = checkpoint.abandoned
        self._updated_at = checkpoint.updated_at

    def _save(self, checkpoint: _Checkpoint) -> None:
        """Persist the current state; on failure restore ``checkpoint`` and raise.

        Must be called with ``_lock`` held.
        """
        if self._persist is None:
            return
        try:
            self._persist(self._snapshot_locked())
        except Exception as exc:
            self._rollback(checkpoint)
            logger.warning(
                "session_id=%s session_save_failed status=%s error=%s",
                self.session_id,
                self._status.value,
                truncate(str(exc)),
            )
            raise PersistenceError(
                f"Could not save session {self.session_id}; nothing was recorded. Please resubmit."
            ) from exc

    def _terminate(self, reason: TerminationReason) -> None:
        self._status = SessionStatus.TERMINATED
        self._termination_reason = reason
        self._handle = None
        self._touch()

    def _log_termination(self) -> None:
        logger.info(
            "session_id=%s session_terminated reason=%s score=%s",
            self.session_id,
            self._termination_reason.value if self._termination_reason else None,
            self._tracker.score if self._tracker else SEED_SCORE,
        )

    def _open_handle(self, history: List[Turn]) -> ConversationHandle:
        system_prompt = build_system_prompt(self._persona, self._startup, self._locale)
        return self._gateway.open(
            system_prompt,
            self._provider,
            history=[Turn(role=USER_ROLE, text=OPENING_CUE), *history],
        )

    def start(self, persona: Persona, startup: StartupProfile, provider_id: Optional[str] = None) -> OpeningResult:
        if not startup.name.strip() or not startup.description.strip():
            raise ValidationError("Startup name and description must not be empty.")

        self._acquire_turn_slot()
        try:
            with self._lock:
                self._require(SessionStatus.SETUP, "start")

            system_prompt = build_system_prompt(persona, startup, self._locale)
            # ConfigurationError and TransportError leave the machine in SETUP.
            handle = self._gateway.open(system_prompt, provider_id)
            opening = self._gateway.converse(handle, OPENING_CUE)

            with self._lock:
                self._require(SessionStatus.SETUP, "start")
                checkpoint = self._checkpoint()
                self._persona = persona
                self._startup = startup
                self._handle = handle
                self._provider = handle.provider
                self._transcript = [Turn(role=COUNTERPART_ROLE, text=opening.reply, id=OPENING_TURN_ID)]
                self._tracker = ScoreTracker.initial(SEED_SCORE)
                self._status = SessionStatus.ACTIVE
                self._touch()
                self._save(checkpoint)
                logger.info(
                    "session_id=%s session_started persona=%s provider=%s prompt_version=%s",
                    self.session_id,
                    persona.id,
                    self._provider,
                    PERSONA_PROMPT_VERSION,
                )
                return OpeningResult(
                    session_id=self.session_id,
                    opening_line=opening.reply,
                    score=self._tracker.score,
                    provider=self._provider,
                )
        finally:
            self._in_flight.release()

    def submit_turn(self, text: str) -> TurnOutcome:
        cleaned = (text or "").strip()
        self._acquire_turn_slot()
        try:
            with self._lock:
                self._require(SessionStatus.ACTIVE, "submit a turn")
                if not cleaned:
                    raise ValidationError("Turn text must not be empty.")
                handle = self._handle
                history = list(self._transcript)

            if handle is None:
                # Resumed, or rolled back after a failed save: rebuild from the transcript.
                handle = self._open_handle(history)
                with self._lock:
                    if self._status is SessionStatus.ACTIVE and not self._abandoned:
                        self._handle = handle

            # TransportError propagates here with nothing committed.
            result = self._gateway.converse(handle, cleaned)

            with self._lock:
                if self._abandoned or self._status is not SessionStatus.ACTIVE:
                    logger.info("session_id=%s turn_discarded status=%s", self.session_id, self._status.value)
                    raise ValidationError(
                        f"Session {self.session_id} ended while the turn was in flight; the reply was discarded."
                    )

                checkpoint = self._checkpoint()._replace(handle=None)
                score = self._tracker.apply(result.delta)
                index = len(self._transcript)
                self._transcript.append(Turn(role=USER_ROLE, text=cleaned, id=str(index)))
                self._transcript.append(
                    Turn(role=COUNTERPART_ROLE, text=result.reply, interest_change=result.delta, id=str(index + 1))
                )
                self._touch()
                if result.dealbreaker:
                    self._terminate(TerminationReason.DEALBREAKER)
                elif score <= SCORE_FLOOR:
                    self._terminate(TerminationReason.SCORE_FLOOR)
                # The handle already holds this exchange, so a rollback drops it.
                self._save(checkpoint)

                logger.info(
                    "session_id=%s turn_accepted delta=%s score=%s dealbreaker=%s",
                    self.session_id,
                    result.delta,
                    score,
                    result.dealbreaker,
                )
                if self._status is SessionStatus.TERMINATED:
                    self._log_termination()

                return TurnOutcome(
                    reply=result.reply,
                    score=score,
                    delta=result.delta,
                    terminated=self._status is SessionStatus.TERMINATED,
                    termination_reason=self._termination_reason,
                )
        finally:
            self._in_flight.release()

    def end_early(self) -> None:
        with self._lock:
            self._require(SessionStatus.ACTIVE, "end the session")
            checkpoint = self._checkpoint()
            self._terminate(TerminationReason.USER_ENDED)
            self._save(checkpoint)
            self._log_termination()

    def attach_report(self, report: Report) -> None:
        with self._lock:
            self._require(SessionStatus.TERMINATED, "attach a report")
            checkpoint = self._checkpoint()
            self._report = report
            self._status = SessionStatus.REPORTED
            self._touch()
            self._save(checkpoint)
            logger.info("session_id=%s report_attached decision=%s", self.session_id, report.decision.value)

    def abandon(self) -> None:
        """Detach the session; a reply still in flight will be dropped.

        An active session is closed as ended by the founder, and that is saved,
        so a later lookup restores it as terminated rather than live.
        """
        with self._lock:
            if self._abandoned:
                return
            if self._status is SessionStatus.ACTIVE:
                checkpoint = self._checkpoint()
                self._terminate(TerminationReason.USER_ENDED)
                self._save(checkpoint)
                self._log_termination()
            self._abandoned = True
            self._handle = None

    def _snapshot_locked(self) -> SessionState:
        tracker = self._tracker
        return SessionState(
            id=self.session_id,
            status=self._status,
            transcript=tuple(self._transcript),
            score=tracker.score if tracker else SEED_SCORE,
            trajectory=tracker.trajectory if tracker else (),
            termination_reason=self._termination_reason,
            provider=self._provider,
            persona=self._persona,
            startup=self._startup,
            report=self._report,
            created_at=self._created_at,
            updated_at=self._updated_at,
        )

    def snapshot(self) -> SessionState:
        with self._lock:
            return self._snapshot_locked()

    @classmethod
    def resume(
        cls,
        gateway: ModelGateway,
        state: SessionState,
        locale: Optional[str] = None,
        persist: Optional[PersistCallback] = None,
    ) -> "PitchSessionMachine":
        """Rebuild a machine from a persisted snapshot.

        An active session reopens its conversation on the recorded provider at
        the next turn, seeded with the opening cue and the stored transcript,
        so that turn is scored exactly as it would have been without the restart.
        """
        if state.status is SessionStatus.ACTIVE and (state.persona is None or state.startup is None):
            raise ValidationError(f"Session {state.id} cannot be resumed without its persona and startup.")

        machine = cls(gateway, session_id=state.id, locale=locale, persist=persist)
        machine._status = state.status
        machine._transcript = list(state.transcript)
        machine._termination_reason = state.termination_reason
        machine._provider = state.provider
        machine._persona = state.persona
        machine._startup = state.startup
        machine._report = state.report
        machine._created_at = state.created_at
        machine._updated_at = state.updated_at
        if state.status is not SessionStatus.SETUP:
            machine._tracker = ScoreTracker.restore(state.trajectory)
        logger.info(
            "session_id=%s session_resumed status=%s turns=%s",
            state.id,
            state.status.value,
            len(state.transcript),
        )
        return machine
