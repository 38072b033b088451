from sqlalchemy.orm import Session
from models.log import Log

# Record an audit entry; services pass commit=False so it lands with their transaction
def write_log(db: Session, *, user_id, action, resource, status="SUCCESS", ip=None, order_id=None, meta=None, commit=True):
    entry = Log(user_id=user_id, order_id=order_id, action=action, resource=resource, status=status, ip=ip, meta=meta or {})
    db.add(entry)
    if commit:
        db.commit()
    return entry
