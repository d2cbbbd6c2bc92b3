from datetime import date

from pydantic import BaseModel


class FlightRead(BaseModel):
    id: int
    flight_number: str
    flight_date: date
    origin: str | None = None
    destination: str | None = None
    aircraft: str | None = None
    zone: str | None = None
    estimated_passengers: int | None = None

    class Config:
        from_attributes = True
