from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=10_000)
    is_internal: bool = False


class CommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    user_id: int
    author_name: Optional[str] = None
    content: str
    is_internal: bool
    created_at: datetime

    @classmethod
    def build(cls, c) -> "CommentOut":
        out = cls.model_validate(c)
        out.author_name = c.author.full_name if c.author is not None else None
        return out
