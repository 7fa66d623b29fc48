# File: database/models/share_model.py
import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String

from database.db import Base


class ShareStatus(str, enum.Enum):
    ACTIVE = "active"
    CLAIMED = "claimed"
    REVOKED = "revoked"
    EXPIRED = "expired"


class ShareToken(Base):
    """
    Link that lets one browser session read a workflow without an account.
    The first claim binds the token to that session.
    """
    __tablename__ = "work_share_tokens"

    token = Column(String(64), primary_key=True)
    workflow_id = Column(
        Integer,
        ForeignKey("work_workflows.workflow_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_by = Column(String(255), nullable=True)
    status = Column(
        Enum(ShareStatus, values_callable=lambda x: [e.value for e in x]),
        default=ShareStatus.ACTIVE,
        nullable=False,
    )
    session_id = Column(String(255), nullable=True)
    expires_at = Column(DateTime, nullable=True)  # NULL never expires
    claimed_at = Column(DateTime, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
