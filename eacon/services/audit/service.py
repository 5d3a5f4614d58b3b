import logging
from typing import Any

from sqlalchemy.orm import Session

from eacon.models.audit_log import AuditLog

logger = logging.getLogger("audit")


class AuditService:
    """
    Audit trail for payment disputes: every event goes to the audit_logs table
    and to the "audit" JSON logger.

    log() commits, so never call it while a ledger transaction is open.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def log(
        self,
        actor_type: str,
        actor_id: str | None,
        action: str,
        entity_type: str,
        entity_id: str | None,
        payload: dict[str, Any] | None = None,
        client_ip: str | None = None,
        suspicious: bool = False,
    ) -> AuditLog:
        payload = dict(payload or {})
        if client_ip:
            payload["clientIp"] = client_ip
        if suspicious:
            payload["suspiciousActivity"] = True
        log_fn = logger.warning if suspicious else logger.info
        log_fn(
            action,
            extra={
                "action": action,
                "user_id": actor_id if actor_type == "user" else None,
                "client_ip": client_ip,
                "payload": payload,
            },
        )
        entry = AuditLog(
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload,
        )
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry
