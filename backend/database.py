from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
import config

# ------------------------------------------------------------------
# Database configuration
# ------------------------------------------------------------------

DATABASE_URL = config.DATABASE_URL


def make_engine(url: str):
    """
    Create an engine for the given URL.
    SQLite connections are shared between the request threads and the
    worker threads the realtime hub uses, so same-thread checking is off.
    """
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


# Create SQLAlchemy engine
engine = make_engine(DATABASE_URL)

# Create a configured "Session" class
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)

# Base class for ORM models
Base = declarative_base()


def init_db(bind=None):
    """
    Create all tables that do not exist yet.
    """
    import models  # noqa: F401  (registers the tables on Base.metadata)

    Base.metadata.create_all(bind=bind or engine)


# ------------------------------------------------------------------
# Dependency to get DB session
# ------------------------------------------------------------------

def get_db():
    """
    Provides a database session to FastAPI routes.
    Ensures session is properly closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(session_factory=None):
    """
    Session for code running outside a request (the realtime hub).
    Rolls back on error and always closes.
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
