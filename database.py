from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from sqlalchemy import create_engine, Column, Integer, String, DateTime, Text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Database Models
class AuthorizationAttempt(Base):
    __tablename__ = "authorization_attempts"

    id = Column(Integer, primary_key=True, index=True)
    key_prefix = Column(String(16))  # Never the full key

    # Attempt Result
    result = Column(String(20), nullable=False)  # success, failed, offline
    error_message = Column(Text)

    # Context
    server_url = Column(String(255))
    attempted_at = Column(DateTime, default=_utcnow, index=True)


class HistoryStore:
    """Local record of authorization attempts made by this client."""

    def __init__(self, database_url: str):
        url = make_url(database_url)
        if url.drivername.startswith("sqlite") and url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(database_url)
        self.SessionLocal = sessionmaker(autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

    def record(self, key_prefix: str, result: str, error_message: Optional[str], server_url: str):
        db = self.SessionLocal()
        try:
            db.add(AuthorizationAttempt(
                key_prefix=key_prefix,
                result=result,
                error_message=error_message,
                server_url=server_url,
            ))
            db.commit()
        finally:
            db.close()

    def recent(self, limit: int = 20) -> List[AuthorizationAttempt]:
        db = self.SessionLocal()
        try:
            return (
                db.query(AuthorizationAttempt)
                .order_by(AuthorizationAttempt.attempted_at.desc(), AuthorizationAttempt.id.desc())
                .limit(limit)
                .all()
            )
        finally:
            db.close()
