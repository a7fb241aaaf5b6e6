"""
Database configuration and session management

This module provides the basic SQLAlchemy setup for database connectivity.
NO models are defined here - this is just infrastructure.
"""

import os
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool, StaticPool

from apps.shared.errors import StorageError, log_and_sanitize_error

# Get database URL from environment variable
DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://backend_user:changeme@db:5432/backend_db")


def _engine_kwargs(url: str) -> dict:
    """Pool settings per backend"""
    if url.startswith("sqlite"):
        # In-memory SQLite must share one connection across sessions
        return {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    # Using NullPool for better compatibility with containerized environments
    return {"poolclass": NullPool}


engine = create_engine(
    DATABASE_URL,
    echo=False,  # Set to True for SQL query logging during development
    **_engine_kwargs(DATABASE_URL),
)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for ORM models
Base = declarative_base()


def get_db():
    """
    Dependency injection for database sessions
    Usage in FastAPI endpoints:

    @app.get("/endpoint")
    def endpoint(db: Session = Depends(get_db)):
        # use db here
        pass
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_connection() -> bool:
    """
    Test database connectivity
    Returns True if connection successful, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


def dialect_name(db) -> str:
    """Name of the SQL dialect a session is bound to (postgresql, sqlite)"""
    return db.get_bind().dialect.name


def commit_or_raise(db, context: str) -> None:
    """Commit the session, or roll back and raise a sanitized StorageError"""
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        sanitized_msg, _ = log_and_sanitize_error(e, context)
        raise StorageError(sanitized_msg) from e
