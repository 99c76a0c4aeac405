from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_NAME_LENGTH = 120
MAX_PLACE_LENGTH = 120
MAX_DESCRIPTION_LENGTH = 160


class EntrySubmission(BaseModel):
    """Form fields of a gallery submission, trimmed and length-checked."""

    full_name: str = Field(min_length=1, max_length=MAX_NAME_LENGTH)
    country: str = Field(min_length=1, max_length=MAX_PLACE_LENGTH)
    city: str = Field(min_length=1, max_length=MAX_PLACE_LENGTH)
    description: str = Field(default="", max_length=MAX_DESCRIPTION_LENGTH)

    @field_validator("full_name", "country", "city", "description", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class EntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    full_name: str
    country: str
    city: str
    description: str
    score: int
    created_at: datetime
    updated_at: datetime
    photo_url: str | None = None


class EntryPageOut(BaseModel):
    entries: list[EntryOut]
    query: str
    page: int
    page_size: int
    total: int
    has_prev: bool
    has_next: bool


class VoteOut(BaseModel):
    outcome: str
    score: int | None = None
    retry_after: int | None = None
