from typing import Dict, List

from .errors import ValidationError
from .models import Persona


PERSONAS: List[Persona] = [
    Persona(
        id="shark",
        name='Kevin "The Shark"',
        role="Venture Capitalist",
        description="Ruthless. Only cares about profit, CAC and LTV. Hates fluff.",
        style="Short, aggressive, numbers-first.",
        kind="investor",
        icon="shark",
        color="bg-red-500",
    ),
    Persona(
        id="visionary",
        name="Elara Moon",
        role="Angel Investor",
        description='Looks for moonshots. Cares about the "why" and the human impact.',
        style="Inspiring, abstract, curious.",
        kind="investor",
        icon="star",
        color="bg-purple-500",
    ),
    Persona(
        id="skeptic",
        name="Dave Ops",
        role="Technical Founder",
        description="Former CTO. Digs into the tech stack and whether it can actually be built.",
        style="Detailed, doubtful, technical.",
        kind="investor",
        icon="code",
        color="bg-blue-500",
    ),
    Persona(
        id="mentor",
        name="Maya Chen",
        role="Startup Mentor",
        description="Patient, educational, encouraging.",
        style="Clear, explanatory, friendly.",
        kind="mentor",
        icon="graduation-cap",
        color="bg-emerald-500",
    ),
]

PERSONAS_BY_ID: Dict[str, Persona] = {persona.id: persona for persona in PERSONAS}


def get_persona(persona_id: str) -> Persona:
    persona = PERSONAS_BY_ID.get((persona_id or "").strip())
    if persona is None:
        raise ValidationError(f"Unknown persona: {persona_id!r}.")
    return persona
