"""Request policy for the user resource.

The controller validates inbound data, calls the repository and turns the
outcome into a :class:`ResponseDescriptor`. It is transport-agnostic: the
HTTP layer only serialises what it returns.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .errors import PersistenceError, ResourceAbsent, StoreUnavailableError, ValidationError
from .models import User
from .repository import UserRepository

logger = logging.getLogger("userbase.controller")

RESOURCE_NAME = "User"


@dataclass(frozen=True)
class ResponseDescriptor:
    status_code: int
    body: Any


def _ok(user: User, status_code: int = 200) -> ResponseDescriptor:
    return ResponseDescriptor(status_code, user.to_dict())


def _absent(key: Dict[str, Any]) -> ResponseDescriptor:
    absent = ResourceAbsent(RESOURCE_NAME, key)
    return ResponseDescriptor(404, {"message": absent.message})


class UserController:
    """Maps create/read/update/delete requests onto :class:`UserRepository`."""

    def __init__(self, repository: UserRepository) -> None:
        self._repository = repository
        self._schema = repository.schema

    def create(self, payload: Any) -> ResponseDescriptor:
        def action() -> ResponseDescriptor:
            record = self._schema.validate_create(payload)
            return _ok(self._repository.create(record), status_code=201)

        return self._dispatch("create", action)

    def list(self, filter: Optional[Mapping[str, Any]] = None) -> ResponseDescriptor:
        def action() -> ResponseDescriptor:
            criteria = self._schema.validate_filter(filter)
            users = self._repository.find_all(criteria)
            return ResponseDescriptor(200, [user.to_dict() for user in users])

        return self._dispatch("list", action)

    def get(self, user_id: str) -> ResponseDescriptor:
        def action() -> ResponseDescriptor:
            user = self._repository.find_by_id(user_id)
            if user is None:
                return _absent({"id": user_id})
            return _ok(user)

        return self._dispatch("get", action)

    def update(self, user_id: str, patch: Any) -> ResponseDescriptor:
        return self._update({"id": user_id}, patch)

    def update_where(self, filter: Optional[Mapping[str, Any]], patch: Any) -> ResponseDescriptor:
        return self._dispatch("update", lambda: self._update_matching(filter, patch))

    def delete(self, user_id: str) -> ResponseDescriptor:
        def action() -> ResponseDescriptor:
            removed = self._repository.delete_by_id(user_id)
            if removed is None:
                return _absent({"id": user_id})
            return _ok(removed)

        return self._dispatch("delete", action)

    def delete_where(self, filter: Optional[Mapping[str, Any]]) -> ResponseDescriptor:
        def action() -> ResponseDescriptor:
            criteria = self._required_filter(filter)
            removed = self._repository.delete_one(criteria)
            if removed is None:
                return _absent(criteria)
            return _ok(removed)

        return self._dispatch("delete", action)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _update(self, criteria: Dict[str, Any], patch: Any) -> ResponseDescriptor:
        def action() -> ResponseDescriptor:
            changes = self._schema.validate_patch(patch)
            return self._apply(criteria, changes)

        return self._dispatch("update", action)

    def _update_matching(self, filter: Optional[Mapping[str, Any]], patch: Any) -> ResponseDescriptor:
        criteria = self._required_filter(filter)
        changes = self._schema.validate_patch(patch)
        return self._apply(criteria, changes)

    def _apply(self, criteria: Dict[str, Any], changes: Dict[str, Any]) -> ResponseDescriptor:
        if not changes:
            user = self._repository.find_one(criteria)
        else:
            user = self._repository.update_one(criteria, changes, return_updated=True)
        if user is None:
            return _absent(criteria)
        return _ok(user)

    def _required_filter(self, filter: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        criteria = self._schema.validate_filter(filter)
        if not criteria:
            raise ValidationError(
                "A filter is required to select the user",
                [{"field": "", "message": "Filter must not be empty", "type": "filter"}],
            )
        return criteria

    @staticmethod
    def _dispatch(operation: str, action: Callable[[], ResponseDescriptor]) -> ResponseDescriptor:
        try:
            return action()
        except ValidationError as exc:
            return ResponseDescriptor(400, {"message": exc.message, "errors": exc.errors})
        except PersistenceError as exc:
            return ResponseDescriptor(400, {"message": exc.message, "field": exc.field})
        except StoreUnavailableError:
            logger.exception("Data store unavailable during %s", operation)
            return ResponseDescriptor(503, {"message": "Data store unavailable"})


__all__ = ["ResponseDescriptor", "UserController"]
