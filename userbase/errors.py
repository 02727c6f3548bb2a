"""Error taxonomy shared by the validator, repository and controller."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class UserbaseError(Exception):
    """Base class for errors raised by the user service."""


class ValidationError(UserbaseError):
    """Client-supplied data is malformed."""

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors: List[Dict[str, str]] = list(errors or [])

    @property
    def fields(self) -> List[str]:
        return [error["field"] for error in self.errors if error.get("field")]


class PersistenceError(UserbaseError):
    """The store rejected a write, e.g. because a unique field is taken."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class StoreUnavailableError(UserbaseError):
    """The document store could not be reached or failed mid-operation."""


@dataclass(frozen=True)
class ResourceAbsent:
    """Outcome of a lookup whose target does not exist.

    This is a value, not an exception: the controller branches on it and
    turns it into a 404 response.
    """

    resource: str
    key: Dict[str, Any]

    @property
    def message(self) -> str:
        return f"{self.resource} not found"


__all__ = [
    "UserbaseError",
    "ValidationError",
    "PersistenceError",
    "StoreUnavailableError",
    "ResourceAbsent",
]
