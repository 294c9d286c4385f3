# backend/utils/audit.py
from sqlalchemy.orm import Session
from models.log import AuditLog

# Adds an audit row. Pass commit=False when the entry must share the caller's transaction.
def write_log(db: Session, *, user_id, action, resource, resource_id=None, status="SUCCESS", ip=None, meta=None,
              commit=True):
    entry = AuditLog(user_id=user_id, action=action, resource=resource, resource_id=resource_id,
                     status=status, ip=ip, meta=meta or {})
    db.add(entry)
    if commit:
        db.commit()
    return entry
