from __future__ import annotations

from datetime import date
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import Flight
from backend.app.schemas.flight import FlightRead

router = APIRouter(prefix="/flights")


class FlightCreate(BaseModel):
    flight_number: str = Field(min_length=2, max_length=16)
    flight_date: date
    origin: str | None = Field(default=None, max_length=64)
    destination: str | None = Field(default=None, max_length=64)
    aircraft: str | None = Field(default=None, max_length=16)
    zone: str | None = Field(default=None, max_length=32)
    estimated_passengers: int | None = Field(default=None, gt=0)


@router.get("", response_model=list[FlightRead])
def list_flights(
    date_from: date | None = None,
    date_to: date | None = None,
    zone: str | None = None,
    db: Session = Depends(get_db),
):
    stmt = select(Flight).order_by(Flight.flight_date.desc(), Flight.flight_number)
    if date_from is not None:
        stmt = stmt.where(Flight.flight_date >= date_from)
    if date_to is not None:
        stmt = stmt.where(Flight.flight_date <= date_to)
    if zone:
        stmt = stmt.where(Flight.zone == zone)
    return db.execute(stmt).scalars().all()


@router.get("/{flight_id}", response_model=FlightRead)
def get_flight(flight_id: int, db: Session = Depends(get_db)):
    flight = db.get(Flight, flight_id)
    if not flight:
        raise HTTPException(status_code=404, detail="Flight not found")
    return flight


@router.post("", response_model=FlightRead)
def create_flight(payload: FlightCreate, db: Session = Depends(get_db)):
    flight_number = payload.flight_number.strip().upper()
    exists = db.execute(
        select(Flight).where(Flight.flight_number == flight_number, Flight.flight_date == payload.flight_date)
    ).scalar_one_or_none()
    if exists:
        raise HTTPException(status_code=409, detail="Flight already exists for this date")

    flight = Flight(**payload.model_dump(exclude={"flight_number"}), flight_number=flight_number)
    db.add(flight)
    db.commit()
    db.refresh(flight)
    return flight
