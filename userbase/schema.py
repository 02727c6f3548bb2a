"""Schema and validation rules for user payloads.

Payloads arrive as plain mappings (decoded JSON bodies or query strings).
The validator turns them into normalised documents ready for the store or
raises :class:`~userbase.errors.ValidationError` naming the offending
fields. It never touches the store.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import User

USER_FIELDS: Tuple[str, ...] = ("name", "email", "username", "age")
STORE_MANAGED_FIELDS: Tuple[str, ...] = ("id", "createdAt", "updatedAt")

# Largest integer the store can hold and compare.
MAX_AGE = 2**63 - 1

_NON_NULLABLE = {"name", "email", "username"}
_FIELD_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class SchemaOptions:
    """Policy switches for the user schema.

    ``require_username`` and the uniqueness flags differ between the minimal
    and extended record shapes, so they are configuration rather than code.
    """

    require_username: bool = False
    unique_email: bool = True
    unique_username: bool = False
    timestamps: bool = True
    allow_extra_fields: bool = False

    @classmethod
    def minimal(cls) -> "SchemaOptions":
        return cls(
            require_username=True,
            unique_email=False,
            unique_username=False,
            timestamps=False,
        )

    @classmethod
    def extended(cls) -> "SchemaOptions":
        return cls()

    @property
    def unique_fields(self) -> Tuple[str, ...]:
        fields: List[str] = []
        if self.unique_email:
            fields.append("email")
        if self.unique_username:
            fields.append("username")
        return tuple(fields)


def _strip_required_text(value: Optional[str], label: str) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{label} must not be empty")
    return stripped


class _UserPatch(BaseModel):
    """Field rules shared by every payload shape."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0, le=MAX_AGE)

    @field_validator("age", mode="before")
    @classmethod
    def _reject_boolean_age(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("age must be a number")
        return value

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: Optional[str]) -> Optional[str]:
        return _strip_required_text(value, "name")

    @field_validator("username")
    @classmethod
    def _normalize_username(cls, value: Optional[str]) -> Optional[str]:
        return _strip_required_text(value, "username")

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: Optional[str]) -> Optional[str]:
        stripped = _strip_required_text(value, "email")
        return stripped.lower() if stripped is not None else None


class _OpenUserPatch(_UserPatch):
    model_config = ConfigDict(extra="allow")


class _UserCreate(_UserPatch):
    name: str
    email: str


class _OpenUserCreate(_UserCreate):
    model_config = ConfigDict(extra="allow")


def _translate_errors(exc: PydanticValidationError) -> List[Dict[str, str]]:
    errors: List[Dict[str, str]] = []
    for error in exc.errors():
        loc = error.get("loc") or ()
        field = str(loc[0]) if loc else ""
        kind = error.get("type")
        if kind == "missing":
            message = "Field required"
        elif kind == "extra_forbidden":
            message = "Unknown field"
        else:
            message = str(error.get("msg", "Invalid value"))
            if message.startswith("Value error, "):
                message = message[len("Value error, "):]
        errors.append({"field": field, "message": message, "type": str(kind)})
    return errors


def _summarise(errors: List[Dict[str, str]], default: str) -> str:
    missing = sorted({e["field"] for e in errors if e.get("type") == "missing"})
    if missing:
        return f"Missing required field(s): {', '.join(missing)}"
    unknown = sorted({e["field"] for e in errors if e.get("type") == "extra_forbidden"})
    if unknown and len(unknown) == len(errors):
        return f"Unknown field(s): {', '.join(unknown)}"
    fields = sorted({e["field"] for e in errors if e.get("field")})
    if fields:
        return f"{default}: {', '.join(fields)}"
    return default


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


class UserSchema:
    """Validates and normalises user payloads according to :class:`SchemaOptions`."""

    def __init__(self, options: Optional[SchemaOptions] = None) -> None:
        self.options = options or SchemaOptions()

    @property
    def _create_model(self) -> Type[_UserCreate]:
        return _OpenUserCreate if self.options.allow_extra_fields else _UserCreate

    @property
    def _patch_model(self) -> Type[_UserPatch]:
        return _OpenUserPatch if self.options.allow_extra_fields else _UserPatch

    def validate_create(self, payload: Any) -> Dict[str, Any]:
        """Return a normalised document for a new user."""

        data = self._require_mapping(payload)
        errors = self._store_managed_errors(data)
        try:
            model = self._create_model.model_validate(self._writable(data))
        except PydanticValidationError as exc:
            errors.extend(_translate_errors(exc))
            model = None

        username_given = data.get("username") is not None
        if self.options.require_username and not username_given:
            if not any(e["field"] == "username" for e in errors):
                errors.append({"field": "username", "message": "Field required", "type": "missing"})

        if errors:
            raise ValidationError(_summarise(errors, "Invalid user payload"), errors)

        assert model is not None
        document = model.model_dump(exclude_none=True, exclude=set(model.model_extra or {}))
        document.update(self._extra_fields(model))
        return document

    def validate_patch(self, payload: Any) -> Dict[str, Any]:
        """Return the subset of fields to merge into an existing user.

        Only keys present in ``payload`` appear in the result. ``age`` may be
        ``None`` to clear it; the other known fields may not.
        """

        data = self._require_mapping(payload)
        errors = self._store_managed_errors(data)
        for key in sorted(_NON_NULLABLE):
            if key in data and data[key] is None:
                errors.append({"field": key, "message": "Field may not be null", "type": "null"})

        model = None
        try:
            model = self._patch_model.model_validate(self._writable(data))
        except PydanticValidationError as exc:
            errors.extend(_translate_errors(exc))

        if errors:
            raise ValidationError(_summarise(errors, "Invalid user update"), errors)

        assert model is not None
        known = {key: getattr(model, key) for key in USER_FIELDS if key in model.model_fields_set}
        known.update(self._extra_fields(model))
        return known

    def validate_filter(self, raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Coerce an equality filter, typically taken from a query string."""

        if not raw:
            return {}
        data = self._require_mapping(raw)
        criteria: Dict[str, Any] = {}
        errors: List[Dict[str, str]] = []

        if "id" in data:
            criteria["id"] = str(data["id"])
        for key in ("createdAt", "updatedAt"):
            if key in data:
                errors.append({"field": key, "message": "Cannot filter on this field", "type": "filter"})

        candidate = self._writable(data)
        for key in candidate:
            if not _FIELD_NAME.match(str(key)):
                errors.append({"field": str(key), "message": "Invalid field name", "type": "filter"})
        if errors:
            raise ValidationError(_summarise(errors, "Invalid filter"), errors)

        try:
            model = self._patch_model.model_validate(candidate)
        except PydanticValidationError as exc:
            errors = _translate_errors(exc)
            raise ValidationError(_summarise(errors, "Invalid filter"), errors) from exc

        criteria.update({key: getattr(model, key) for key in USER_FIELDS if key in model.model_fields_set})
        criteria.update(self._extra_fields(model))
        return criteria

    def to_user(self, document: Mapping[str, Any]) -> User:
        """Build a :class:`User` from a stored document."""

        extra = {
            key: value
            for key, value in document.items()
            if key not in USER_FIELDS and key not in STORE_MANAGED_FIELDS
        }
        age = document.get("age")
        return User(
            id=str(document["id"]),
            name=str(document["name"]),
            email=str(document["email"]),
            username=document.get("username"),
            age=int(age) if age is not None else None,
            created_at=_parse_timestamp(document.get("createdAt")),
            updated_at=_parse_timestamp(document.get("updatedAt")),
            extra=extra,
        )

    @staticmethod
    def _require_mapping(payload: Any) -> Mapping[str, Any]:
        if not isinstance(payload, Mapping):
            raise ValidationError(
                "Request body must be a JSON object",
                [{"field": "", "message": "Expected an object", "type": "body"}],
            )
        return payload

    @staticmethod
    def _writable(data: Mapping[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in data.items() if key not in STORE_MANAGED_FIELDS}

    @staticmethod
    def _store_managed_errors(data: Mapping[str, Any]) -> List[Dict[str, str]]:
        return [
            {"field": key, "message": "Assigned by the store and cannot be supplied", "type": "read_only"}
            for key in STORE_MANAGED_FIELDS
            if key in data
        ]

    @staticmethod
    def _extra_fields(model: BaseModel) -> Dict[str, Any]:
        extra = model.model_extra or {}
        invalid = sorted(key for key in extra if not _FIELD_NAME.match(key))
        if invalid:
            raise ValidationError(
                f"Invalid field name(s): {', '.join(invalid)}",
                [{"field": key, "message": "Invalid field name", "type": "field_name"} for key in invalid],
            )
        return dict(extra)


__all__ = ["SchemaOptions", "UserSchema", "USER_FIELDS", "STORE_MANAGED_FIELDS"]
