from __future__ import annotations

from datetime import datetime
from typing import Literal
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db, get_actor
from backend.app.db.models.core_types import DiscrepancyStatus, DiscrepancyType
from backend.app.schemas.discrepancy import DiscrepancyRead, DiscrepancyStatistics
from backend.services import discrepancies

router = APIRouter(prefix="/discrepancies")


class ResolvePayload(BaseModel):
    corrective_action: str = Field(min_length=1)
    notes: str | None = None


class RejectPayload(BaseModel):
    reason: str = Field(min_length=1)


@router.get("", response_model=list[DiscrepancyRead])
def list_discrepancies(
    status: DiscrepancyStatus | None = None,
    type: DiscrepancyType | None = None,
    flight_id: int | None = None,
    delivery_note_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
    db: Session = Depends(get_db),
):
    return discrepancies.list_discrepancies(
        db,
        search=search,
        status=status,
        type=type,
        flight_id=flight_id,
        delivery_note_id=delivery_note_id,
        date_from=date_from,
        date_to=date_to,
    )


@router.get("/statistics", response_model=DiscrepancyStatistics)
def get_statistics(
    group_by: Literal["flight", "period"] | None = None,
    type: DiscrepancyType | None = None,
    flight_id: int | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    db: Session = Depends(get_db),
):
    """
    Statistiques (READ ONLY)
    - financial_impact = somme des |amount_delta|
    - group_by=flight | period pour le détail
    """
    return discrepancies.get_statistics(
        db,
        group_by=group_by,
        type=type,
        flight_id=flight_id,
        date_from=date_from,
        date_to=date_to,
    )


@router.get("/{discrepancy_id}", response_model=DiscrepancyRead)
def get_discrepancy(discrepancy_id: int, db: Session = Depends(get_db)):
    return discrepancies.get_discrepancy(db, discrepancy_id)


@router.post("/{discrepancy_id}/start", response_model=DiscrepancyRead)
def start_discrepancy(discrepancy_id: int, db: Session = Depends(get_db), actor: str | None = Depends(get_actor)):
    d = discrepancies.start_discrepancy(db, discrepancy_id, actor=actor)
    db.commit()
    return d


@router.post("/{discrepancy_id}/resolve", response_model=DiscrepancyRead)
def resolve_discrepancy(
    discrepancy_id: int,
    payload: ResolvePayload,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    d = discrepancies.resolve_discrepancy(db, discrepancy_id, payload.corrective_action, payload.notes, actor=actor)
    db.commit()
    return d


@router.post("/{discrepancy_id}/accept", response_model=DiscrepancyRead)
def accept_discrepancy(discrepancy_id: int, db: Session = Depends(get_db), actor: str | None = Depends(get_actor)):
    d = discrepancies.accept_discrepancy(db, discrepancy_id, actor=actor)
    db.commit()
    return d


@router.post("/{discrepancy_id}/reject", response_model=DiscrepancyRead)
def reject_discrepancy(
    discrepancy_id: int,
    payload: RejectPayload,
    db: Session = Depends(get_db),
    actor: str | None = Depends(get_actor),
):
    d = discrepancies.reject_discrepancy(db, discrepancy_id, payload.reason, actor=actor)
    db.commit()
    return d
