"""
Database wiring: engine from DATABASE_URL (.env honoured), table creation,
and the request-scoped match store dependency.
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import Request
from sqlalchemy.engine import Engine, make_url
from sqlmodel import SQLModel, create_engine

from cueflow.services.match_store import SqlMatchStore

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./cueflow.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")


def make_engine(url: str = DATABASE_URL, echo: bool = SQL_ECHO) -> Engine:
    """
    Engine for a database URL.

    SQLite engines may be shared across threads (the match store writes
    from worker threads) and get their database directory created.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return create_engine(url, echo=echo)

    if parsed.database and parsed.database != ":memory:":
        Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, echo=echo, connect_args={"check_same_thread": False})


engine: Engine = make_engine()


def init_db(bind: Engine = engine) -> None:
    """Create the match tables on `bind`"""
    from cueflow.models.match_record import MatchRecord  # noqa: F401

    SQLModel.metadata.create_all(bind)


def get_match_store(request: Request) -> SqlMatchStore:
    """Match store created at startup"""
    return request.app.state.match_store
