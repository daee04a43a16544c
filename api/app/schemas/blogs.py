from datetime import datetime

from pydantic import BaseModel, Field


class BlogCreateRequest(BaseModel):
    title: str
    author: str
    category: str
    image: str | None = None
    short_desc: str | None = None
    content: str
    tags: list[str] | str = Field(default_factory=list)
    published_at: datetime | None = None


class BlogOut(BaseModel):
    id: str
    title: str
    author: str
    category: str
    image: str | None = None
    short_desc: str | None = None
    content: str
    tags: list[str] = Field(default_factory=list)
    published_at: datetime
    created_at: datetime
    updated_at: datetime
