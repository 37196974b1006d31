"""API endpoint modules for v1."""

from tradyfi.api.v1.endpoints import chat, fcm, push, visitors

__all__ = [
    "chat",
    "fcm",
    "push",
    "visitors",
]
