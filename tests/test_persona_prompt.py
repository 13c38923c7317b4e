from pitchroom.models import Persona, StartupProfile
from pitchroom.prompts.persona import build_system_prompt


def test_investor_prompt_embeds_persona_and_startup(investor, startup) -> None:
    prompt = build_system_prompt(investor, startup, locale="en-US")
    assert investor.name in prompt
    assert investor.role in prompt
    assert investor.description in prompt
    assert investor.style in prompt
    assert '"PetUber"' in prompt
    assert "Uber for dogs" in prompt
    assert "between -20 and +15" in prompt
    assert "attack it immediately" in prompt
    assert "Never say or imply that you are an AI" in prompt
    assert '"interest_change": integer' in prompt
    assert "No code fences" in prompt


def test_mentor_prompt_uses_gentle_template(mentor, startup) -> None:
    prompt = build_system_prompt(mentor, startup, locale="en-US")
    assert "between -10 and +10" in prompt
    assert "Never be harsh" in prompt
    assert "Total Addressable Market" in prompt
    assert "attack it immediately" not in prompt


def test_prompt_is_deterministic(investor, startup) -> None:
    assert build_system_prompt(investor, startup, "de-DE") == build_system_prompt(investor, startup, "de-DE")


def test_locale_falls_back_to_environment(monkeypatch, investor, startup) -> None:
    monkeypatch.setenv("PITCHROOM_LOCALE", "zh-CN")
    assert "reply in zh-CN" in build_system_prompt(investor, startup)
    assert "reply in fr-FR" in build_system_prompt(investor, startup, locale="fr-FR")


def test_startup_text_is_not_treated_as_placeholder() -> None:
    persona = Persona(id="p", name="Ann", role="VC", description="d", style="s")
    startup = StartupProfile(name="Acme", description="We sell {locale} adapters")
    assert "We sell {locale} adapters" in build_system_prompt(persona, startup, locale="en-US")
