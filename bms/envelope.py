"""Response envelope and camelCase base model, shared by both services.

Kept free of ORM imports so the payment service can use it without touching
the core database.
"""
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire; either form accepted on input."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class ApiResponse(BaseModel, Generic[T]):
    success: bool
    data: T | None = None
    message: str | None = None
    errors: list[str] | None = None
    timestamp: datetime = Field(default_factory=_now)
    path: str | None = None

    @classmethod
    def ok(cls, data: Any = None, message: str | None = None, path: str | None = None) -> "ApiResponse":
        return cls(success=True, data=data, message=message, path=path)

    @classmethod
    def error(cls, message: str, errors: list[str] | None = None, path: str | None = None) -> "ApiResponse":
        return cls(success=False, message=message, errors=errors, path=path)
