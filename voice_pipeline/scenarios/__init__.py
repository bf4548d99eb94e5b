"""
Persona configurations for the voice assistant.

Each persona file defines:
- name: Persona identifier
- prompt: System instructions for the LLM
- voice_id: Optional TTS voice override
"""
