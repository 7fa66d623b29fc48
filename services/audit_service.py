from sqlalchemy.orm import Session
from database.models.audit_model import AuditLog
import uuid
import json
from datetime import datetime, timezone


def log_action(db: Session, user_id: str, action: str, target_id=None, payload: dict = None, ip_address: str = None):
    """
    Creates an immutable audit log entry for a workflow-level action.
    """
    log_entry = AuditLog(
        id=str(uuid.uuid4()),
        user_id=user_id,
        action=action,
        target_id=str(target_id) if target_id is not None else None,
        payload=json.dumps(payload, default=str) if payload else None,
        ip_address=ip_address,
        timestamp=datetime.now(timezone.utc).replace(tzinfo=None)
    )
    db.add(log_entry)
    db.commit()
    db.refresh(log_entry)
    return log_entry
