"""
Voice pipeline for the voice gateway.

Session-scoped audio processing: STT -> retrieval -> LLM -> TTS.
Transport concerns (HTTP, WebSocket, auth) live in the gateway package.

Invariants:
- Session content lives only in memory and never outlives its TTL
- Every external call runs under its own timeout
- All behavior is observable via structured events
"""
