"""CRUD service for user records kept in a document store."""

from __future__ import annotations

from typing import Any

from .errors import PersistenceError, ResourceAbsent, StoreUnavailableError, ValidationError
from .models import User
from .schema import SchemaOptions, UserSchema
from .store import DocumentStore


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the HTTP application."""

    from .api import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "DocumentStore",
    "PersistenceError",
    "ResourceAbsent",
    "SchemaOptions",
    "StoreUnavailableError",
    "User",
    "UserSchema",
    "ValidationError",
    "create_app",
]
