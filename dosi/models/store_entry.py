"""Tree store entry model (SQLite backend)."""

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


class StoreEntry(SQLModel, table=True):
    __tablename__ = "store_entries"

    key: str = Field(primary_key=True)
    parent: str = Field(default="", index=True)
    name: str
    is_dir: bool = Field(default=False)
    content: str = Field(default="")
    modified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
