"""Twist installations that relay GCP notifications."""

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime

from src.database import Base


class TwistIntegration(Base):
    __tablename__ = "twist_integrations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # Secret part of the GCP webhook URL handed out on configure.
    install_id = Column(String, unique=True, nullable=False, index=True)
    post_data_url = Column(String, nullable=False)
    user_id = Column(String, nullable=False)
    user_name = Column(String, nullable=False)
    channel_id = Column(String, nullable=True)
    created_at = Column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )
