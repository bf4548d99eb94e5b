"""
Assistant persona (system prompt) loading.

Personas are stored as YAML (preferred) or JSON under voice_pipeline/scenarios/.
We use PyYAML's safe_load, which can parse both YAML and pure JSON.

Default persona: Tea, a warm and concise voice companion.
- Short replies (2-3 sentences), written to be spoken
- No emojis, markdown or roleplay actions
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


# Fallback when no persona file can be found
PERSONA_INSTRUCTIONS = """
You are Tea, a warm and caring friend who enjoys talking with people by voice.

Keep replies natural and short, two or three sentences at most.
Show real interest in what people share and be encouraging.
Your reply is spoken aloud: never use emojis, lists, markdown or roleplay actions.
""".strip()


@dataclass(frozen=True)
class Persona:
    name: str
    prompt: str
    voice_id: Optional[str] = None


def _get_scenarios_dir() -> Path:
    return Path(__file__).parent / "scenarios"


def _load_file(path: Path) -> Dict[str, Any]:
    """Load a persona file; it must contain a mapping at top level."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Persona file {path} must contain a mapping at top-level")
        return data


def load_scenario(scenario_name: str) -> Dict[str, Any]:
    """
    Load persona configuration from YAML or JSON file.

    Resolution order:
    1) <name>.yaml
    2) <name>.yml
    3) <name>.json
    4) default.yaml / default.yml / default.json
    5) hardcoded default fallback
    """
    scenarios_dir = _get_scenarios_dir()

    for name in (scenario_name, "default"):
        for suffix in (".yaml", ".yml", ".json"):
            candidate = scenarios_dir / f"{name}{suffix}"
            if candidate.exists():
                return _load_file(candidate)

    return {
        "name": "default",
        "prompt": PERSONA_INSTRUCTIONS,
        "voice_id": None,
    }


def get_persona(name: Optional[str] = None) -> Persona:
    """
    Resolve the persona by name, falling back to the VOICE_PERSONA env var, then "default".
    """
    scenario_name = name or os.getenv("VOICE_PERSONA", "default")
    scenario = load_scenario(scenario_name)
    prompt = (scenario.get("prompt") or PERSONA_INSTRUCTIONS).strip()
    return Persona(
        name=scenario.get("name", scenario_name),
        prompt=prompt,
        voice_id=scenario.get("voice_id") or None,
    )

