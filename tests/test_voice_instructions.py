"""
Tests for persona loading.
"""
import pytest

import voice_pipeline.instructions as instructions
from voice_pipeline.instructions import (
    PERSONA_INSTRUCTIONS,
    Persona,
    get_persona,
    load_scenario,
)


def test_default_scenario_exists():
    scenario = load_scenario("default")
    assert scenario["name"] == "tea"
    assert "prompt" in scenario
    assert scenario["voice_id"] is None


def test_unknown_scenario_falls_back_to_default():
    assert load_scenario("does-not-exist") == load_scenario("default")


def test_get_persona_default():
    persona = get_persona("default")
    assert isinstance(persona, Persona)
    assert persona.name == "tea"
    assert "You are Tea" in persona.prompt
    assert persona.voice_id is None


def test_get_persona_uses_env_var(monkeypatch, tmp_path):
    (tmp_path / "coach.yml").write_text("name: coach\nvoice_id: voice-42\nprompt: You are a running coach.\n")
    monkeypatch.setattr(instructions, "_get_scenarios_dir", lambda: tmp_path)
    monkeypatch.setenv("VOICE_PERSONA", "coach")

    persona = get_persona()

    assert persona.name == "coach"
    assert persona.prompt == "You are a running coach."
    assert persona.voice_id == "voice-42"


def test_json_persona_file(monkeypatch, tmp_path):
    (tmp_path / "librarian.json").write_text('{"name": "librarian", "prompt": "Speak softly."}')
    monkeypatch.setattr(instructions, "_get_scenarios_dir", lambda: tmp_path)

    persona = get_persona("librarian")

    assert persona.name == "librarian"
    assert persona.prompt == "Speak softly."


def test_hardcoded_fallback_when_no_files(monkeypatch, tmp_path):
    monkeypatch.setattr(instructions, "_get_scenarios_dir", lambda: tmp_path)

    persona = get_persona("anything")

    assert persona.name == "default"
    assert persona.prompt == PERSONA_INSTRUCTIONS


def test_persona_file_must_be_mapping(monkeypatch, tmp_path):
    (tmp_path / "broken.yaml").write_text("- just\n- a list\n")
    monkeypatch.setattr(instructions, "_get_scenarios_dir", lambda: tmp_path)

    with pytest.raises(ValueError):
        load_scenario("broken")


def test_empty_prompt_uses_fallback(monkeypatch, tmp_path):
    (tmp_path / "quiet.yaml").write_text("name: quiet\nprompt: ''\n")
    monkeypatch.setattr(instructions, "_get_scenarios_dir", lambda: tmp_path)

    assert get_persona("quiet").prompt == PERSONA_INSTRUCTIONS

