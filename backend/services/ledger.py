"""
Helpers communs aux deux registres (BCP et BL).

- validation des lignes AVANT toute écriture
- montants de ligne / total recalculés, jamais saisis
- numérotation <PREFIX>-<vol>-<yyyymmdd>-<seq>
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Callable, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import Article, Flight
from backend.services.errors import NotFound, ValidationError

AMOUNT_QUANT = Decimal("0.001")

# <PREFIX>-<vol>-<yyyymmdd>-<seq>, ex: BL-TU712-20260301-001
NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z]+)-(?P<flight>[A-Z0-9]+)-(?P<day>[0-9]{8})-(?P<seq>[0-9]{3,})$")


@dataclass(frozen=True)
class LineInput:
    article_id: int
    quantity: int
    unit_price: Decimal


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid amount {value!r}") from exc


def quantize(amount: Decimal) -> Decimal:
    return to_decimal(amount).quantize(AMOUNT_QUANT, rounding=ROUND_HALF_UP)


def line_amount(quantity: int, unit_price: Decimal) -> Decimal:
    return quantize(Decimal(quantity) * to_decimal(unit_price))


def compute_total(amounts: Iterable[Decimal]) -> Decimal:
    return quantize(sum((to_decimal(a) for a in amounts), Decimal("0")))


def require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def validate_lines(db: Session, lines: Sequence[LineInput]) -> list[LineInput]:
    """
    Règles:
    - quantité > 0, prix >= 0
    - un article au plus une fois par document
    - chaque article doit exister
    """
    seen: set[int] = set()
    cleaned: list[LineInput] = []
    for ln in lines:
        if ln.article_id in seen:
            raise ValidationError(f"article_id {ln.article_id} appears more than once")
        seen.add(ln.article_id)

        if isinstance(ln.quantity, bool) or not isinstance(ln.quantity, int):
            raise ValidationError(f"quantity must be an integer (article_id {ln.article_id})")
        if ln.quantity <= 0:
            raise ValidationError(f"quantity must be > 0 (article_id {ln.article_id})")

        price = to_decimal(ln.unit_price)
        if not price.is_finite():
            raise ValidationError(f"unit_price must be a finite number (article_id {ln.article_id})")
        if price < 0:
            raise ValidationError(f"unit_price must be >= 0 (article_id {ln.article_id})")

        cleaned.append(LineInput(article_id=int(ln.article_id), quantity=ln.quantity, unit_price=quantize(price)))

    # FK checks (fail fast, message clair)
    if seen:
        found = set(db.execute(select(Article.id).where(Article.id.in_(seen))).scalars().all())
        missing = sorted(seen - found)
        if missing:
            raise NotFound(f"Article not found: {missing[0]}")

    return cleaned


def get_flight(db: Session, flight_id: int) -> Flight:
    flight = db.get(Flight, flight_id)
    if not flight:
        raise NotFound(f"Flight {flight_id} not found")
    return flight


def format_number(prefix: str, flight_number: str, on_date: date, seq: int) -> str:
    return f"{prefix}-{flight_number}-{on_date:%Y%m%d}-{seq:03d}"


def next_number(db: Session, model, prefix: str, flight: Flight, when: datetime | date | None = None) -> str:
    """Prochain numéro libre pour (vol, date). Ex: BCP-TU712-20260301-002."""
    on_date = when.date() if isinstance(when, datetime) else (when or flight.flight_date)
    stem = format_number(prefix, flight.flight_number, on_date, 0)[:-3]

    existing = db.execute(select(model.number).where(model.number.like(f"{stem}%"))).scalars().all()
    seqs = [int(n[len(stem):]) for n in existing if n[len(stem):].isdigit()]
    return format_number(prefix, flight.flight_number, on_date, max(seqs, default=0) + 1)


def sync_lines(current: list, cleaned: Sequence[LineInput], make_line: Callable, qty_attr: str) -> Decimal:
    """
    Aligne la collection de lignes d'un document sur `cleaned`, en place.

    Mise à jour en place, la clé primaire d'une ligne est (document, article).

    Retourne le nouveau total du document.
    """
    by_article = {row.article_id: row for row in current}
    keep = {ln.article_id for ln in cleaned}

    for row in list(current):
        if row.article_id not in keep:
            current.remove(row)

    for line_no, ln in enumerate(cleaned, start=1):
        row = by_article.get(ln.article_id)
        if row is None:
            row = make_line(article_id=ln.article_id)
            current.append(row)
        row.line_no = line_no
        setattr(row, qty_attr, ln.quantity)
        row.unit_price = ln.unit_price
        row.line_amount = line_amount(ln.quantity, ln.unit_price)

    return compute_total(row.line_amount for row in current)


def check_number(number: str, prefix: str, flight: Flight) -> str:
    """Numéro saisi: même format que les numéros générés, préfixe et vol du document."""
    number = require_text(number, "number").upper()
    m = NUMBER_RE.match(number)
    if not m or m.group("prefix") != prefix:
        raise ValidationError(f"number must look like {prefix}-<flight>-<yyyymmdd>-<seq>, got {number!r}")
    if m.group("flight") != flight.flight_number:
        raise ValidationError(f"number {number} does not belong to flight {flight.flight_number}")
    try:
        datetime.strptime(m.group("day"), "%Y%m%d")
    except ValueError as exc:
        raise ValidationError(f"number {number} carries an invalid date") from exc
    return number
