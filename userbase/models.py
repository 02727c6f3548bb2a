"""Domain models for the user service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class User:
    """Represents a user document stored in the ``users`` collection."""

    id: str
    name: str
    email: str
    username: Optional[str] = None
    age: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Return the JSON-ready representation used in HTTP responses."""

        payload: Dict[str, Any] = dict(self.extra)
        payload.update({"id": self.id, "name": self.name, "email": self.email})
        if self.username is not None:
            payload["username"] = self.username
        if self.age is not None:
            payload["age"] = self.age
        if self.created_at is not None:
            payload["createdAt"] = self.created_at.isoformat()
        if self.updated_at is not None:
            payload["updatedAt"] = self.updated_at.isoformat()
        return payload


__all__ = ["User"]
