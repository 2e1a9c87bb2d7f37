"""
Base Models for Domain Records and API Schemas

Three flavours of pydantic base class are used across the project:

    DomainModel    - records passed between services and the repository
                     (items, sessions, segments, stats). Built from ORM rows
                     via from_attributes and copied with model_copy(update=...)
                     rather than mutated in place by the pure functions.
    StrictRequest  - request bodies. Unknown fields are rejected with 422 so
                     client/server drift surfaces immediately.
    StrictResponse - response bodies. Extra attributes coming from ORM rows
                     are ignored.

Usage:
    class SessionDurationUpdate(StrictRequest):
        work_minutes: float

    class FocusStats(StrictResponse):
        total_sessions: int
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, computed_field


class DomainModel(BaseModel):
    """Base for domain records shared by services and persistence adapters."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM conversion
        validate_assignment=True,
    )


class StrictRequest(BaseModel):
    """
    Base model for API request bodies with strict validation.

    Features:
        - extra="forbid": Unknown fields raise 422 Unprocessable Entity
        - validate_default=True: Validates default values
        - str_strip_whitespace=True: Trims whitespace from strings
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        str_strip_whitespace=True,
    )


class StrictResponse(BaseModel):
    """Base model for API response bodies (extra fields ignored)."""

    model_config = ConfigDict(
        extra="ignore",
        validate_default=True,
        from_attributes=True,
    )


T = TypeVar("T")


class Page(StrictResponse, Generic[T]):
    """One page of a paginated listing."""

    items: list[T]
    total: int
    limit: int
    offset: int

    @computed_field
    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total
