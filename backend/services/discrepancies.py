"""
Cycle de vie des écarts.

    PENDING -> IN_PROGRESS -> RESOLVED | ACCEPTED | REJECTED
    PENDING ----------------> RESOLVED | ACCEPTED | REJECTED

Les statuts terminaux sont définitifs: toute transition depuis l'un d'eux
lève InvalidState sans toucher à l'enregistrement.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import select, func, case, or_
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import Discrepancy, DeliveryNote, Flight, Article
from backend.app.db.models.core_types import DiscrepancyStatus, DiscrepancyType
from backend.services import audit
from backend.services.errors import NotFound, ValidationError
from backend.services.ledger import quantize, require_text
from backend.services.transitions import DISCREPANCY_TRANSITIONS, ensure_transition, is_terminal

logger = logging.getLogger(__name__)

GROUP_BY_FLIGHT = "flight"
GROUP_BY_PERIOD = "period"


def get_discrepancy(db: Session, discrepancy_id: int, *, for_update: bool = False) -> Discrepancy:
    if for_update:
        d = (
            db.execute(
                select(Discrepancy)
                .where(Discrepancy.id == discrepancy_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            .scalars()
            .one_or_none()
        )
    else:
        d = db.get(Discrepancy, discrepancy_id)
    if not d:
        raise NotFound(f"Discrepancy {discrepancy_id} not found")
    return d


def _filtered(
    stmt,
    *,
    status: DiscrepancyStatus | None = None,
    type: DiscrepancyType | None = None,
    flight_id: int | None = None,
    delivery_note_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
):
    if status is not None:
        stmt = stmt.where(Discrepancy.status == status)
    if type is not None:
        stmt = stmt.where(Discrepancy.type == type)
    if flight_id is not None:
        stmt = stmt.where(DeliveryNote.flight_id == flight_id)
    if delivery_note_id is not None:
        stmt = stmt.where(Discrepancy.delivery_note_id == delivery_note_id)
    if date_from is not None:
        stmt = stmt.where(Discrepancy.created_at >= date_from)
    if date_to is not None:
        stmt = stmt.where(Discrepancy.created_at <= date_to)
    return stmt


def list_discrepancies(db: Session, *, search: str | None = None, **filters: Any) -> Sequence[Discrepancy]:
    stmt = (
        select(Discrepancy)
        .join(DeliveryNote, DeliveryNote.id == Discrepancy.delivery_note_id)
        .order_by(Discrepancy.created_at.desc(), Discrepancy.id.desc())
    )
    stmt = _filtered(stmt, **filters)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.join(Article, Article.id == Discrepancy.article_id).where(
            or_(
                DeliveryNote.number.ilike(pattern),
                Article.code.ilike(pattern),
                Article.name.ilike(pattern),
                Discrepancy.description.ilike(pattern),
            )
        )
    return db.execute(stmt).scalars().all()


def _transition(
    db: Session,
    discrepancy_id: int,
    target: DiscrepancyStatus,
    *,
    actor: str | None,
    now: datetime | None = None,
    **changes: Any,
) -> Discrepancy:
    d = get_discrepancy(db, discrepancy_id, for_update=True)
    previous = d.status
    # garde AVANT toute mutation
    ensure_transition(DISCREPANCY_TRANSITIONS, previous, target, entity=f"Discrepancy {d.id}")

    d.status = target
    for field, value in changes.items():
        setattr(d, field, value)
    if is_terminal(DISCREPANCY_TRANSITIONS, target):
        d.closed_at = now or datetime.now(timezone.utc)
    db.flush()

    audit.log_action(db, action=target.value.lower(), entity_type="discrepancy", entity_id=d.id, actor=actor,
                     meta={"from": previous.value, "to": target.value})
    logger.info("Discrepancy %s: %s -> %s", d.id, previous.value, target.value)
    return d


def start_discrepancy(db: Session, discrepancy_id: int, *, actor: str | None = None) -> Discrepancy:
    return _transition(db, discrepancy_id, DiscrepancyStatus.in_progress, actor=actor)


def resolve_discrepancy(
    db: Session,
    discrepancy_id: int,
    corrective_action: str,
    notes: str | None = None,
    *,
    actor: str | None = None,
) -> Discrepancy:
    corrective_action = require_text(corrective_action, "corrective_action")
    return _transition(
        db,
        discrepancy_id,
        DiscrepancyStatus.resolved,
        actor=actor,
        corrective_action=corrective_action,
        notes=notes or None,
    )


def accept_discrepancy(db: Session, discrepancy_id: int, *, actor: str | None = None) -> Discrepancy:
    """L'écart est reconnu et ne sera pas corrigé."""
    return _transition(db, discrepancy_id, DiscrepancyStatus.accepted, actor=actor)


def reject_discrepancy(db: Session, discrepancy_id: int, reason: str, *, actor: str | None = None) -> Discrepancy:
    reason = require_text(reason, "reason")
    return _transition(db, discrepancy_id, DiscrepancyStatus.rejected, actor=actor, rejection_reason=reason)


# ---------- STATISTIQUES ----------
def _impact_expr():
    # impact financier = somme des |amount_delta|
    absolute = case((Discrepancy.amount_delta < 0, -Discrepancy.amount_delta), else_=Discrepancy.amount_delta)
    return func.coalesce(func.sum(absolute), 0)


def _month_key(db: Session):
    if db.get_bind().dialect.name == "postgresql":
        return func.to_char(Discrepancy.created_at, "YYYY-MM")
    return func.strftime("%Y-%m", Discrepancy.created_at)


def _empty_bucket() -> dict:
    return {
        "total": 0,
        "by_status": {s.value: 0 for s in DiscrepancyStatus},
        "financial_impact": Decimal("0"),
        "net_amount": Decimal("0"),
    }


def _fold(bucket: dict, status: DiscrepancyStatus, count: int, impact, net) -> None:
    bucket["total"] += int(count)
    bucket["by_status"][DiscrepancyStatus(status).value] += int(count)
    bucket["financial_impact"] += Decimal(str(impact or 0))
    bucket["net_amount"] += Decimal(str(net or 0))


def _finish(bucket: dict) -> dict:
    bucket["financial_impact"] = quantize(bucket["financial_impact"])
    bucket["net_amount"] = quantize(bucket["net_amount"])
    bucket["pending"] = bucket["by_status"][DiscrepancyStatus.pending.value]
    bucket["in_progress"] = bucket["by_status"][DiscrepancyStatus.in_progress.value]
    bucket["resolved"] = bucket["by_status"][DiscrepancyStatus.resolved.value]
    return bucket


def get_statistics(db: Session, *, group_by: str | None = None, **filters: Any) -> dict:
    """
    Agrégats sur les écarts filtrés:
    - total, compte par statut
    - financial_impact = somme des |amount_delta|, net_amount = somme signée
    - groups: par vol (flight_number + date) ou par mois (YYYY-MM)
    """
    if group_by not in (None, GROUP_BY_FLIGHT, GROUP_BY_PERIOD):
        raise ValidationError(f"group_by must be '{GROUP_BY_FLIGHT}' or '{GROUP_BY_PERIOD}'")

    measures = (
        Discrepancy.status,
        func.count(Discrepancy.id),
        _impact_expr(),
        func.coalesce(func.sum(Discrepancy.amount_delta), 0),
    )

    stmt = (
        select(*measures)
        .select_from(Discrepancy)
        .join(DeliveryNote, DeliveryNote.id == Discrepancy.delivery_note_id)
        .group_by(Discrepancy.status)
    )
    summary = _empty_bucket()
    for status, count, impact, net in db.execute(_filtered(stmt, **filters)).all():
        _fold(summary, status, count, impact, net)
    result = _finish(summary)

    if group_by is None:
        return result

    if group_by == GROUP_BY_FLIGHT:
        keys = (Flight.flight_number, Flight.flight_date)
    else:
        keys = (_month_key(db).label("period"),)

    stmt = (
        select(*keys, *measures)
        .select_from(Discrepancy)
        .join(DeliveryNote, DeliveryNote.id == Discrepancy.delivery_note_id)
        .join(Flight, Flight.id == DeliveryNote.flight_id)
        .group_by(*keys, Discrepancy.status)
        .order_by(*keys)
    )

    groups: dict[str, dict] = {}
    for row in db.execute(_filtered(stmt, **filters)).all():
        key_parts, (status, count, impact, net) = row[: len(keys)], row[len(keys):]
        key = " ".join(str(k) for k in key_parts)
        bucket = groups.setdefault(key, _empty_bucket())
        _fold(bucket, status, count, impact, net)

    result["groups"] = [{"key": key, **_finish(bucket)} for key, bucket in groups.items()]
    return result
