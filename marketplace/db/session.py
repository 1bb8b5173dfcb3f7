from contextlib import contextmanager
import os
from pathlib import Path
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/app.db")


def _make_engine(url: str):
    # Ensure sqlite file parent directory exists to avoid 'unable to open database file'
    if url.startswith("sqlite:///") and ":memory:" not in url:
        db_path = url.split("sqlite:///")[-1]
        Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, future=True, connect_args=connect_args)


engine = _make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)


def configure_engine(url: str):
    """Rebind the default session factory to ``url``."""
    global engine
    if str(engine.url) != url:
        engine = _make_engine(url)
        SessionLocal.configure(bind=engine)
    return engine


@contextmanager
def get_session():
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def session_scope(session_factory, session=None):
    """Reuse the caller's session (its transaction) or open a fresh unit of work."""
    if session is not None:
        yield session
        return
    with session_factory() as own:
        yield own


def init_db(bind=None) -> None:
    from ..models import Base

    Base.metadata.create_all(bind=bind or engine)
