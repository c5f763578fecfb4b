"""Visitor sessions and activity events for usage statistics."""
from keyscope.models.base import *


class UserSession(Base):
    __tablename__ = "user_sessions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=True)  # null for anonymous visitors
    email = Column(String, nullable=True)
    session_key = Column(String, nullable=True)  # browser session id
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    start_time = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    end_time = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    activities = relationship("UserActivity", back_populates="session")

    __table_args__ = (
        Index("idx_user_sessions_user_id", "user_id"),
        Index("idx_user_sessions_start_time", "start_time"),
    )


class UserActivity(Base):
    __tablename__ = "user_activities"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=True)
    session_id = Column(Uuid(as_uuid=True), ForeignKey("user_sessions.id"), nullable=True)
    activity_type = Column(String(50), nullable=False)  # search, login, page_view, export, csv_upload
    activity_data = Column(JSONType, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    session = relationship("UserSession", back_populates="activities")

    __table_args__ = (
        Index("idx_user_activities_type", "activity_type"),
        Index("idx_user_activities_timestamp", "timestamp"),
    )
