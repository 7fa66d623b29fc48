from sqlalchemy import Column, String, DateTime
from database.db import Base
from datetime import datetime


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, index=True)  # UUID
    user_id = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False)  # e.g. "START_ANALYSIS", "UPDATE_WORKFLOW_SHARES"
    target_id = Column(String, nullable=True)  # e.g. workflow_id
    payload = Column(String, nullable=True)  # JSON string of details
    timestamp = Column(DateTime, default=datetime.utcnow)
    ip_address = Column(String, nullable=True)
