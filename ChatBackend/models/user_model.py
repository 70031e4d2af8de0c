from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String

from ChatBackend.database import Base, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Registered identities; email is stored lower-cased and is unique at the DB level
class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False)
