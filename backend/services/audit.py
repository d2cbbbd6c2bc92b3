from __future__ import annotations

import json

from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import AuditLog


def log_action(
    db: Session,
    *,
    action: str,
    entity_type: str,
    entity_id: int | str,
    actor: str | None = None,
    meta: dict | None = None,
) -> AuditLog:
    """
    Journal d'audit central.
    Écrit dans la transaction de l'appelant (rollback = pas de trace).
    """
    entry = AuditLog(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        meta=json.dumps(meta, default=str) if meta else None,
    )
    db.add(entry)
    return entry
