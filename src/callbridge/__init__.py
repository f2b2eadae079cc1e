"""
Provider adapter layer for the CRM.

Keep package import side-effects to a minimum to avoid circular imports.
Do not import adapters here.
"""

__version__ = "0.1.0"
