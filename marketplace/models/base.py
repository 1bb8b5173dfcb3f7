from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy.orm import declarative_base


Base = declarative_base()


def utcnow() -> datetime:
    # naive UTC, matching what SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())
