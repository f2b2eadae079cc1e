"""
AI voice agent platforms (VAPI, ElevenLabs).

Adapters are built per tenant through AdapterRegistry.create_ai_agent_adapter.
"""

__all__ = [
    "elevenlabs",
    "interface",
    "models",
    "prompts",
    "vapi",
]
