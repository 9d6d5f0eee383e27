from sqlalchemy import Column, String, DateTime, Integer, BigInteger, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, timedelta, timezone
from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)

    # Foreign key to Property
    property_id = Column(BigInteger, ForeignKey("properties.id"), nullable=False, index=True)
    property = relationship("Property", back_populates="tickets")

    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    priority = Column(String, nullable=False, default="MEDIUM")  # LOW/MEDIUM/HIGH/URGENT
    status = Column(String, nullable=False, default="OPEN")  # OPEN/IN_PROGRESS_BY_AI/NEEDS_MANUAL_REVIEW/RESOLVED/CLOSED

    # contact info, AI flags, attachments ("metadata" is reserved on declarative models)
    details = Column("metadata", JSON, nullable=True)

    # timestamps; updated_at is bumped explicitly so it never goes backwards
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


def next_updated_at(previous) -> datetime:
    """A timestamp strictly after `previous`, even if the clock has not moved or went backwards."""
    now = utcnow()
    if previous is None:
        return now
    if previous.tzinfo is None:
        previous = previous.replace(tzinfo=timezone.utc)
    return now if now > previous else previous + timedelta(microseconds=1)
