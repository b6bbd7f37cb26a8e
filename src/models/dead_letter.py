"""Delivery tasks that exhausted their retry budget."""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime

from src.database import Base


class DeadLetter(Base):
    __tablename__ = "dead_letters"

    id = Column(Integer, primary_key=True, autoincrement=True)
    incident_key = Column(String, nullable=False, index=True)
    event_id = Column(String, nullable=False)
    last_error = Column(Text, nullable=False)
    attempt_count = Column(Integer, nullable=False)
    message_body = Column(Text, nullable=False)
    created_at = Column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )
