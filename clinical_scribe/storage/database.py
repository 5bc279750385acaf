"""
Database connection via SQLAlchemy.

The default SQLite file lives at data/sessions.db and is created on first use.
Any SQLAlchemy URL can be supplied through DATABASE_URL.
"""

from pathlib import Path
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from clinical_scribe.config.settings import get_settings

Base = declarative_base()


def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """Create an engine, making sure a SQLite file's directory exists."""
    database_url = database_url or get_settings().database_url

    if not database_url.startswith("sqlite"):
        return create_engine(database_url)

    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, or every session would see an empty database
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    db_path = database_url.split("///", 1)[-1]
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, connect_args={"check_same_thread": False})


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables if they don't exist."""
    from clinical_scribe.storage import models  # noqa: F401 - registers models with Base
    Base.metadata.create_all(bind=engine)
