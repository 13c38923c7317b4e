from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

from .errors import SessionNotFoundError, ValidationError
from .llm_gateway import ModelGateway
from .models import OpeningResult, Report, SessionState, SessionStatus, StartupProfile, TurnOutcome
from .personas import get_persona
from .report import ReportGenerator
from .session import PitchSessionMachine
from .storage import SessionStore


logger = logging.getLogger("uvicorn.error")


class SessionRegistry:
    """Live session machines keyed by session id.

    Machines save themselves to the store on every transition. Only sessions
    that can still change stay in memory: once a session is terminal it is
    evicted, and any later lookup is served from the store.
    """

    def __init__(self, gateway: ModelGateway, store: SessionStore, locale: Optional[str] = None) -> None:
        self.gateway = gateway
        self.store = store
        self._locale = locale
        self._reports = ReportGenerator(gateway)
        self._machines: Dict[str, PitchSessionMachine] = {}
        self._lock = threading.Lock()

    def live_session_count(self) -> int:
        with self._lock:
            return len(self._machines)

    def _release_if_finished(self, machine: PitchSessionMachine) -> None:
        if not machine.status.is_terminal:
            return
        with self._lock:
            if self._machines.get(machine.session_id) is machine:
                del self._machines[machine.session_id]
                logger.info("session_id=%s session_evicted status=%s", machine.session_id, machine.status.value)

    def start(self, persona_id: str, startup: StartupProfile, provider_id: Optional[str] = None) -> OpeningResult:
        persona = get_persona(persona_id)
        machine = PitchSessionMachine(self.gateway, locale=self._locale, persist=self.store.save_session)
        opening = machine.start(persona, startup, provider_id)
        with self._lock:
            self._machines[machine.session_id] = machine
        return opening

    def get(self, session_id: str) -> PitchSessionMachine:
        with self._lock:
            machine = self._machines.get(session_id)
        if machine is not None:
            return machine

        state = self.store.get_session(session_id)
        if state is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        resumed = PitchSessionMachine.resume(
            self.gateway, state, locale=self._locale, persist=self.store.save_session
        )
        # A concurrent lookup may have resumed the same session first.
        with self._lock:
            return self._machines.setdefault(session_id, resumed)

    def snapshot(self, session_id: str) -> SessionState:
        with self._lock:
            machine = self._machines.get(session_id)
        if machine is not None:
            return machine.snapshot()
        state = self.store.get_session(session_id)
        if state is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return state

    def submit_turn(self, session_id: str, text: str) -> TurnOutcome:
        machine = self.get(session_id)
        try:
            return machine.submit_turn(text)
        finally:
            self._release_if_finished(machine)

    def end(self, session_id: str) -> SessionState:
        machine = self.get(session_id)
        if machine.status is SessionStatus.ACTIVE:
            try:
                machine.end_early()
            except ValidationError:
                # Lost a race with a terminating turn; the session is already closed.
                if not machine.status.is_terminal:
                    raise
        state = machine.snapshot()
        if not state.status.is_terminal:
            raise ValidationError(f"Session {session_id} has not started yet.")
        self._release_if_finished(machine)
        return state

    def report(self, session_id: str) -> Report:
        machine = self.get(session_id)
        state = machine.snapshot()
        if state.report is not None:
            self._release_if_finished(machine)
            return state.report
        if state.status is not SessionStatus.TERMINATED:
            raise ValidationError(f"Session {session_id} must be ended before a report can be generated.")

        report = self._reports.generate(state.transcript, state.score, provider_id=state.provider, locale=self._locale)
        try:
            machine.attach_report(report)
        except ValidationError:
            current = machine.snapshot()
            if current.report is not None:
                return current.report
            raise
        finally:
            self._release_if_finished(machine)
        return report

    def discard(self, session_id: str) -> None:
        """Close a session and drop it from memory.

        An active session is recorded as ended by the founder, so it cannot be
        picked up again from the store.
        """
        machine = self.get(session_id)
        machine.abandon()
        with self._lock:
            if self._machines.get(session_id) is machine:
                del self._machines[session_id]
        logger.info("session_id=%s session_abandoned", session_id)
