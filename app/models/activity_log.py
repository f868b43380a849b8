import uuid
from datetime import datetime

from sqlalchemy import Column, String, Text, DateTime, Index, JSON
from sqlalchemy.dialects.postgresql import UUID

from app.core.database import Base


class ActivityLog(Base):
    """Append-only audit trail of account and session events."""
    __tablename__ = "activity_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    # "system" events have no actor
    actor_id = Column(UUID(as_uuid=True), nullable=True)
    action = Column(String(50), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_activity_logs_entity", "entity_type", "entity_id"),
        Index("ix_activity_logs_action", "action"),
    )

    def __repr__(self):
        return f"<ActivityLog {self.action} {self.entity_type}:{self.entity_id}>"
