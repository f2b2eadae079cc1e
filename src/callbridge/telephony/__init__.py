"""
Telephony carriers package.

Keep package import side-effects to a minimum to avoid circular imports.
Do not import the registry or adapters here.
"""

__all__ = [
    "interface",
    "models",
    "registry",
    "signatures",
    "twiml",
]
