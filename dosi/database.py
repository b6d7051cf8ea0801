"""Database connection and initialization (SQLite store backend)."""

from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from dosi.config import settings

# Import all models so SQLModel registers them
import dosi.models  # noqa: F401


def make_engine(db_path=None) -> Engine:
    path = db_path or settings.database_path
    return create_engine(
        f"sqlite:///{path}",
        echo=settings.debug,
        connect_args={"check_same_thread": False},
    )


engine = make_engine()


def init_db(bind: Engine = engine) -> None:
    """Create all tables and enable WAL mode."""
    SQLModel.metadata.create_all(bind)

    # Enable WAL mode for better concurrent read performance
    with bind.connect() as conn:
        conn.exec_driver_sql("PRAGMA journal_mode=WAL")
        conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
        conn.commit()
