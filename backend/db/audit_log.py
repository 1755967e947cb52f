import uuid
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Text, Uuid
from .database import Base, utcnow


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    action = Column(Text, nullable=False, index=True)  # CREATE|UPDATE|DELETE|STATUS|MOVEMENT|LOGIN|TOTP
    entity_type = Column(Text, nullable=False, index=True)
    entity_id = Column(Text, nullable=True, index=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
