from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from data.tag_normalizer import TagNormalizer

_normalizer = TagNormalizer()

TITLE_MAX = 100
CONTENT_MAX = 10_000
BEST_FOR_MAX = 100
NOTES_MAX = 1_000
FOLDER_NAME_MAX = 50


class Prompt(BaseModel):
    """A stored prompt as the backend returns it.

    Lengths are not enforced here; records coming back from the backend are
    trusted, only their tags are cleaned up.
    """
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(min_length=1)
    title: str
    content: str

    # Zusatzinfos
    best_for: Optional[str] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    folder_id: Optional[str] = None
    is_favorite: bool = False
    user_id: Optional[str] = None

    created_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v):
        return str(v) if v is not None else v

    @field_validator("tags", mode="before")
    @classmethod
    def _clean_tags(cls, v):
        return _normalizer.normalize_list(_normalizer.coerce(v))


class PromptDraft(BaseModel):
    """User input for a new prompt (the "new prompt" form)."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=TITLE_MAX)
    content: str = Field(min_length=1, max_length=CONTENT_MAX)
    best_for: Optional[str] = Field(default=None, max_length=BEST_FOR_MAX)
    notes: Optional[str] = Field(default=None, max_length=NOTES_MAX)
    tags: List[str] = Field(default_factory=list)
    # folder name or id; resolved by the index
    folder: Optional[str] = None
    is_favorite: bool = False

    @field_validator("tags", mode="before")
    @classmethod
    def _clean_tags(cls, v):
        return _normalizer.normalize_list(_normalizer.coerce(v))


class PromptPatch(BaseModel):
    """Partial edit of an existing prompt. Unset fields are left alone."""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=TITLE_MAX)
    content: Optional[str] = Field(default=None, min_length=1, max_length=CONTENT_MAX)
    best_for: Optional[str] = Field(default=None, max_length=BEST_FOR_MAX)
    notes: Optional[str] = Field(default=None, max_length=NOTES_MAX)
    tags: Optional[List[str]] = None
    folder: Optional[str] = None
    is_favorite: Optional[bool] = None

    @field_validator("title", "content", "is_favorite")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("may not be null")
        return v

    @field_validator("tags", mode="before")
    @classmethod
    def _clean_tags(cls, v):
        if v is None:
            return None
        return _normalizer.normalize_list(_normalizer.coerce(v))


class Folder(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=FOLDER_NAME_MAX)
    order: Optional[int] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, v):
        return str(v) if v is not None else v

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, v):
        return v.strip() if isinstance(v, str) else v
