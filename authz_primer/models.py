import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    created_at: datetime.datetime = Field(default_factory=_utcnow)


class Document(SQLModel, table=True):
    """A record behind the guarded API. Listing is public, everything else needs a login."""
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    content: str = ""
    author_id: Optional[int] = Field(default=None, index=True)
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)
