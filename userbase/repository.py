"""Persistence for users on top of the document store."""
from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

from .errors import PersistenceError
from .models import User
from .schema import UserSchema
from .store import Collection, DocumentStore, DuplicateKeyError

logger = logging.getLogger("userbase.repository")

USERS_COLLECTION = "users"


class UserRepository:
    """The only component that talks to the store about users.

    Lookups return ``None`` when nothing matches; they never raise for
    absence. Filter-based operations act on the first match in insertion
    order. Store outages surface as
    :class:`~userbase.errors.StoreUnavailableError`.
    """

    def __init__(self, store: DocumentStore, schema: Optional[UserSchema] = None) -> None:
        self._store = store
        self.schema = schema or UserSchema()

    @property
    def _users(self) -> Collection:
        return self._store.collection(USERS_COLLECTION, timestamps=self.schema.options.timestamps)

    def initialize(self) -> None:
        """Create the unique indexes required by the schema options."""

        for field in self.schema.options.unique_fields:
            try:
                self._users.create_unique_index(field)
            except DuplicateKeyError as exc:
                raise PersistenceError(
                    f"Existing users share the same {field}; cannot enforce uniqueness",
                    field=field,
                ) from exc
        logger.info(
            "User repository ready (unique fields: %s)",
            ", ".join(self.schema.options.unique_fields) or "none",
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def create(self, record: Mapping[str, Any]) -> User:
        """Insert a validated record and return it with its new ``id``."""

        try:
            stored = self._users.insert_one(record)
        except DuplicateKeyError as exc:
            raise self._duplicate(exc) from exc
        user = self.schema.to_user(stored)
        logger.info("Created user %s", user.id)
        return user

    def update_one(
        self,
        filter: Mapping[str, Any],
        patch: Mapping[str, Any],
        *,
        return_updated: bool = True,
    ) -> Optional[User]:
        try:
            document = self._users.find_one_and_update(filter, patch, return_updated=return_updated)
        except DuplicateKeyError as exc:
            raise self._duplicate(exc) from exc
        if document is None:
            return None
        return self.schema.to_user(document)

    def update_by_id(
        self,
        user_id: str,
        patch: Mapping[str, Any],
        *,
        return_updated: bool = True,
    ) -> Optional[User]:
        return self.update_one({"id": user_id}, patch, return_updated=return_updated)

    def delete_one(self, filter: Mapping[str, Any]) -> Optional[User]:
        document = self._users.find_one_and_delete(filter)
        if document is None:
            return None
        logger.info("Deleted user %s", document["id"])
        return self.schema.to_user(document)

    def delete_by_id(self, user_id: str) -> Optional[User]:
        return self.delete_one({"id": user_id})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def find_all(self, filter: Optional[Mapping[str, Any]] = None) -> List[User]:
        return [self.schema.to_user(document) for document in self._users.find(filter or {})]

    def find_one(self, filter: Mapping[str, Any]) -> Optional[User]:
        document = self._users.find_one(filter)
        if document is None:
            return None
        return self.schema.to_user(document)

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self.find_one({"id": user_id})

    def count(self, filter: Optional[Mapping[str, Any]] = None) -> int:
        return self._users.count(filter or {})

    @staticmethod
    def _duplicate(exc: DuplicateKeyError) -> PersistenceError:
        field = exc.field or "unique field"
        logger.warning("Rejected write: duplicate %s", field)
        return PersistenceError(f"A user with that {field} already exists", field=exc.field)


__all__ = ["UserRepository", "USERS_COLLECTION"]
