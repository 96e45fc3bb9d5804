"""Key-value entry model backing the durable store."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, DateTime, JSON
from sqlmodel import Field, SQLModel


class KVEntry(SQLModel, table=True):
    """One logical collection or counter of the coordinator's state.

    ``version`` increases by one on every write and is what optimistic
    commits compare against.
    """

    __tablename__ = "kv_entries"

    key: str = Field(primary_key=True, max_length=100)
    # Generic JSON so the table works on both Postgres and SQLite
    value: Any = Field(default=None, sa_column=Column(JSON))
    version: int = Field(default=1)
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column=Column(DateTime(timezone=True))
    )
