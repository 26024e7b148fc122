"""
Core infrastructure: configuration, logging, metrics, errors,
circuit breaking, Redis cache and the Supabase client.
"""
from .config import Settings, get_settings
from .errors import (
    ConflictError,
    NotFoundError,
    OrchestrationError,
    PersistentBackendError,
    TransientBackendError,
    ValidationError,
)

__all__ = [
    "Settings",
    "get_settings",
    "OrchestrationError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "TransientBackendError",
    "PersistentBackendError",
]
