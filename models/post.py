from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AccessLevel(str, Enum):
    PUBLIC = "public"
    FREE = "free"
    PAID = "paid"


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    PDF = "pdf"
    MIXED = "mixed"


EXCERPT_LENGTH = 150


class PostCreate(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    excerpt: Optional[str] = None
    access_level: AccessLevel = Field(default=AccessLevel.PUBLIC, alias="accessLevel")
    content_type: ContentType = Field(default=ContentType.TEXT, alias="contentType")
    tags: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class PostUpdate(BaseModel):
    """Partial post update: only fields sent by the client are applied."""
    title: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    access_level: Optional[AccessLevel] = Field(default=None, alias="accessLevel")
    content_type: Optional[ContentType] = Field(default=None, alias="contentType")
    tags: Optional[List[str]] = None
    published: Optional[bool] = None

    model_config = ConfigDict(populate_by_name=True)

    def provided(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}


class PostAuthor(BaseModel):
    id: int
    name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PostOut(BaseModel):
    id: int
    title: str
    content: str
    excerpt: Optional[str] = None
    access_level: AccessLevel = Field(serialization_alias="accessLevel")
    content_type: ContentType = Field(serialization_alias="contentType")
    tags: List[str] = Field(default_factory=list)
    published: bool
    views: int
    author_id: int = Field(serialization_alias="authorId")
    author: Optional[PostAuthor] = None
    created_at: datetime = Field(serialization_alias="createdAt")
    updated_at: datetime = Field(serialization_alias="updatedAt")

    model_config = ConfigDict(from_attributes=True)

    def to_response(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)
