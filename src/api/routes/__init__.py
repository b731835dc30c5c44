"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from src.api.routes import conversations, whatsapp

__all__ = [
    "conversations",
    "whatsapp",
]
