from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        return datetime.fromisoformat(value)
    return utc_now()


class SessionStatus(str, Enum):
    SETUP = "SETUP"
    ACTIVE = "ACTIVE"
    TERMINATED = "TERMINATED"
    REPORTED = "REPORTED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.TERMINATED, SessionStatus.REPORTED)


class TerminationReason(str, Enum):
    DEALBREAKER = "DEALBREAKER"
    SCORE_FLOOR = "SCORE_FLOOR"
    USER_ENDED = "USER_ENDED"


class Decision(str, Enum):
    FUNDED = "FUNDED"
    PASSED = "PASSED"
    GHOSTED = "GHOSTED"


USER_ROLE = "user"
COUNTERPART_ROLE = "counterpart"


@dataclass(frozen=True)
class Persona:
    id: str
    name: str
    role: str
    description: str
    style: str
    kind: str = "investor"
    icon: str = ""
    color: str = ""

    @property
    def is_mentor(self) -> bool:
        return self.kind == "mentor"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "description": self.description,
            "style": self.style,
            "kind": self.kind,
            "icon": self.icon,
            "color": self.color,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Persona":
        return cls(
            id=str(payload.get("id") or ""),
            name=str(payload.get("name") or ""),
            role=str(payload.get("role") or ""),
            description=str(payload.get("description") or ""),
            style=str(payload.get("style") or ""),
            kind=str(payload.get("kind") or "investor"),
            icon=str(payload.get("icon") or ""),
            color=str(payload.get("color") or ""),
        )


@dataclass(frozen=True)
class StartupProfile:
    name: str
    description: str

    def to_dict(self) -> dict:
        return {"name": self.name, "description": self.description}

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "StartupProfile":
        return cls(name=str(payload.get("name") or ""), description=str(payload.get("description") or ""))


@dataclass(frozen=True)
class Turn:
    role: str
    text: str
    interest_change: Optional[int] = None
    id: str = ""

    @property
    def is_counterpart(self) -> bool:
        return self.role == COUNTERPART_ROLE

    def to_dict(self) -> dict:
        payload: Dict[str, Any] = {"id": self.id, "role": self.role, "text": self.text}
        if self.interest_change is not None:
            payload["interest_change"] = self.interest_change
        return payload

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Turn":
        change = payload.get("interest_change")
        return cls(
            role=str(payload.get("role") or USER_ROLE),
            text=str(payload.get("text") or ""),
            interest_change=int(change) if change is not None else None,
            id=str(payload.get("id") or ""),
        )


@dataclass(frozen=True)
class TurnResult:
    reply: str
    delta: int = 0
    dealbreaker: bool = False


@dataclass(frozen=True)
class Report:
    score: int
    feedback: str
    decision: Decision
    strengths: Tuple[str, ...] = ()
    weaknesses: Tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "feedback": self.feedback,
            "decision": self.decision.value,
            "strengths": list(self.strengths),
            "weaknesses": list(self.weaknesses),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Report":
        return cls(
            score=int(payload.get("score") or 0),
            feedback=str(payload.get("feedback") or ""),
            decision=Decision(str(payload.get("decision") or Decision.PASSED.value)),
            strengths=tuple(str(item) for item in payload.get("strengths") or ()),
            weaknesses=tuple(str(item) for item in payload.get("weaknesses") or ()),
        )


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of one pitch session, shaped for the storage layer."""

    id: str
    status: SessionStatus
    transcript: Tuple[Turn, ...]
    score: int
    trajectory: Tuple[int, ...]
    provider: Optional[str]
    persona: Optional[Persona]
    startup: Optional[StartupProfile]
    termination_reason: Optional[TerminationReason] = None
    report: Optional[Report] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "status": self.status.value,
            "transcript": [turn.to_dict() for turn in self.transcript],
            "score": self.score,
            "trajectory": list(self.trajectory),
            "termination_reason": self.termination_reason.value if self.termination_reason else None,
            "provider": self.provider,
            "persona": self.persona.to_dict() if self.persona else None,
            "startup": self.startup.to_dict() if self.startup else None,
            "report": self.report.to_dict() if self.report else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SessionState":
        reason = payload.get("termination_reason")
        persona = payload.get("persona")
        startup = payload.get("startup")
        report = payload.get("report")
        return cls(
            id=str(payload["id"]),
            status=SessionStatus(payload.get("status") or SessionStatus.SETUP.value),
            transcript=tuple(Turn.from_dict(item) for item in payload.get("transcript") or ()),
            score=int(payload.get("score") or 0),
            trajectory=tuple(int(value) for value in payload.get("trajectory") or ()),
            termination_reason=TerminationReason(reason) if reason else None,
            provider=payload.get("provider"),
            persona=Persona.from_dict(persona) if isinstance(persona, dict) else None,
            startup=StartupProfile.from_dict(startup) if isinstance(startup, dict) else None,
            report=Report.from_dict(report) if isinstance(report, dict) else None,
            created_at=_parse_timestamp(payload.get("created_at")),
            updated_at=_parse_timestamp(payload.get("updated_at")),
        )


@dataclass(frozen=True)
class OpeningResult:
    session_id: str
    opening_line: str
    score: int
    provider: str


@dataclass(frozen=True)
class TurnOutcome:
    reply: str
    score: int
    delta: int
    terminated: bool
    termination_reason: Optional[TerminationReason] = None


class StartupPayload(BaseModel):
    name: str
    description: str


class StartSessionRequest(BaseModel):
    persona_id: str
    startup: StartupPayload
    provider: Optional[str] = None


class StartSessionResponse(BaseModel):
    session_id: str
    opening_line: str
    score: int
    provider: str


class TurnRequest(BaseModel):
    session_id: str
    text: str


class TurnResponse(BaseModel):
    reply: str
    score: int
    trajectory_delta: int
    terminated: bool
    termination_reason: Optional[str] = None


class SessionRequest(BaseModel):
    session_id: str


class EndSessionResponse(BaseModel):
    session_id: str
    terminated: bool
    termination_reason: Optional[str] = None
    score: int


class ReportResponse(BaseModel):
    score: int
    feedback: str
    decision: str
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
