from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
import logging
import os
from models import Base

logger = logging.getLogger(__name__)

# Default to SQLite for development if DATABASE_URL is not set
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./lexidocs.db")

SessionLocal = sessionmaker(autocommit=False, autoflush=False)
engine = None


def init_engine(url: str = DATABASE_URL):
    """(Re)bind the module engine and session factory to ``url``."""
    global engine

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # An in-memory database only exists on a single connection
        if ":memory:" in url or url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
    else:
        # PostgreSQL or other database configuration
        engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=5,
            max_overflow=10
        )

    SessionLocal.configure(bind=engine)
    return engine


init_engine(DATABASE_URL)


def create_tables():
    Base.metadata.create_all(bind=engine)


def drop_tables():
    Base.metadata.drop_all(bind=engine)


def ping() -> bool:
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    return True


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
