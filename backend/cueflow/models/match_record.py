from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class MatchRecord(SQLModel, table=True):
    """Stored match document. `data` holds the wire-format Match."""

    id: str = Field(primary_key=True)
    version: int = Field(default=0)
    data: Dict[str, Any] = Field(sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
