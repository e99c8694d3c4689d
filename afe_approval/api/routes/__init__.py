from . import afes, audit, health, uploads, users

__all__ = [
    "afes",
    "audit",
    "health",
    "uploads",
    "users",
]
