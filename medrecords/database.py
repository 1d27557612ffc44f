"""
Database engine initialisation and table definitions.
"""

import logging
import sys
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from medrecords.config import get_env

logger = logging.getLogger(__name__)

metadata = MetaData()

# Owned by the identity provider; the rest of the app never reads it.
users = Table(
    "users", metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), unique=True, nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("created_at", DateTime, nullable=False),
)

profiles = Table(
    "profiles", metadata,
    Column("id", String(36), ForeignKey("users.id"), primary_key=True),
    Column("full_name", String(255), nullable=False),
    Column("email", String(255), nullable=False),
    Column("role", String(20), nullable=False),
)

medical_records = Table(
    "medical_records", metadata,
    Column("id", String(36), primary_key=True),
    Column("patient_id", String(36), ForeignKey("profiles.id"), nullable=False, index=True),
    Column("doctor_id", String(36), ForeignKey("profiles.id"), nullable=False),
    Column("file_name", String(255), nullable=False),
    Column("file_url", String(500), unique=True, nullable=False),
    Column("file_type", String(255)),
    Column("notes", Text),
    Column("uploaded_at", DateTime, nullable=False),
)


def _enable_sqlite_foreign_keys(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_uri: str) -> Engine:
    """Create an engine; SQLite gets foreign keys on and, in memory, a shared connection."""
    kwargs = {"echo": False, "future": True}
    if db_uri.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in db_uri or db_uri in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(db_uri, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def init_engine(db_uri: Optional[str] = None) -> Engine:
    """Create a SQLAlchemy engine, verify the connection and ensure the schema."""
    db_uri = db_uri or get_env("DB_URI")
    engine = create_db_engine(db_uri)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        print("ERROR: could not connect to DB:", e, file=sys.stderr)
        sys.exit(1)
    create_schema(engine)
    logger.info("Connected to DB (%s).", engine.dialect.name)
    return engine


def create_schema(engine: Engine) -> None:
    """Create any missing tables."""
    metadata.create_all(engine)


def check_connection(engine: Engine) -> bool:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        logger.exception("Database health check failed")
        return False
