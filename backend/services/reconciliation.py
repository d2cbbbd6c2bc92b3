"""
Moteur de rapprochement BCP / BL.

Règle métier (par article, union des deux documents) :
    - présent des deux côtés, quantités différentes   -> QUANTITY_HIGHER / QUANTITY_LOWER
    - présent des deux côtés, même quantité, prix ≠   -> PRICE_DIFFERENT
    - commandé mais pas livré                         -> ARTICLE_MISSING
    - livré mais pas commandé                         -> ARTICLE_EXTRA
    - identique                                       -> rien

Propriétés :
- `diff_lines` est pur et déterministe (sortie triée par article)
- `reconcile_delivery` remplace l'ensemble généré, n'ajoute jamais
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy.orm import Session

from backend.app.db.models.models_v1 import DeliveryNote, Discrepancy
from backend.app.db.models.core_types import DiscrepancyStatus, DiscrepancyType
from backend.services.ledger import LineInput, quantize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscrepancyDraft:
    article_id: int
    type: DiscrepancyType
    qty_ordered: int
    qty_delivered: int
    ordered_unit_price: Decimal | None
    delivered_unit_price: Decimal | None
    amount_delta: Decimal
    description: str

    @property
    def qty_delta(self) -> int:
        return self.qty_delivered - self.qty_ordered


def _by_article(lines: Iterable[LineInput]) -> dict[int, LineInput]:
    return {int(ln.article_id): ln for ln in lines}


def diff_lines(ordered: Iterable[LineInput], delivered: Iterable[LineInput]) -> list[DiscrepancyDraft]:
    ordered_map = _by_article(ordered)
    delivered_map = _by_article(delivered)

    drafts: list[DiscrepancyDraft] = []
    for article_id in sorted(ordered_map.keys() | delivered_map.keys()):
        o = ordered_map.get(article_id)
        d = delivered_map.get(article_id)

        if o is not None and d is not None:
            o_price = quantize(o.unit_price)
            d_price = quantize(d.unit_price)

            if o.quantity != d.quantity:
                kind = DiscrepancyType.quantity_higher if d.quantity > o.quantity else DiscrepancyType.quantity_lower
                amount = d.quantity * d_price - o.quantity * o_price
                description = f"Delivered {d.quantity}, ordered {o.quantity}"
            elif o_price != d_price:
                kind = DiscrepancyType.price_different
                amount = (d_price - o_price) * d.quantity
                description = f"Unit price {d_price} delivered vs {o_price} ordered"
            else:
                continue

            drafts.append(
                DiscrepancyDraft(
                    article_id=article_id,
                    type=kind,
                    qty_ordered=o.quantity,
                    qty_delivered=d.quantity,
                    ordered_unit_price=o_price,
                    delivered_unit_price=d_price,
                    amount_delta=quantize(amount),
                    description=description,
                )
            )

        elif o is not None:
            o_price = quantize(o.unit_price)
            drafts.append(
                DiscrepancyDraft(
                    article_id=article_id,
                    type=DiscrepancyType.article_missing,
                    qty_ordered=o.quantity,
                    qty_delivered=0,
                    ordered_unit_price=o_price,
                    delivered_unit_price=None,
                    amount_delta=quantize(-(o.quantity * o_price)),
                    description=f"Ordered {o.quantity}, nothing delivered",
                )
            )

        else:
            d_price = quantize(d.unit_price)
            drafts.append(
                DiscrepancyDraft(
                    article_id=article_id,
                    type=DiscrepancyType.article_extra,
                    qty_ordered=0,
                    qty_delivered=d.quantity,
                    ordered_unit_price=None,
                    delivered_unit_price=d_price,
                    amount_delta=quantize(d.quantity * d_price),
                    description=f"Delivered {d.quantity}, not ordered",
                )
            )

    return drafts


def reconcile_delivery(db: Session, note: DeliveryNote, *, now: datetime) -> list[Discrepancy]:
    """
    (Re)génère les écarts d'un BL dans la transaction courante.
    BL sans BCP associé -> aucun écart (rien à comparer).
    """
    drafts: list[DiscrepancyDraft] = []
    order = note.purchase_order
    if order is not None:
        ordered = [LineInput(ln.article_id, ln.qty_ordered, ln.unit_price) for ln in order.lines]
        delivered = [LineInput(ln.article_id, ln.qty_delivered, ln.unit_price) for ln in note.lines]
        drafts = diff_lines(ordered, delivered)

    # remplacement: les anciens écarts partent avant l'insertion (unicité BL/article)
    if note.discrepancies:
        note.discrepancies.clear()
        db.flush()

    for draft in drafts:
        note.discrepancies.append(
            Discrepancy(
                purchase_order_id=note.purchase_order_id,
                article_id=draft.article_id,
                type=draft.type,
                qty_ordered=draft.qty_ordered,
                qty_delivered=draft.qty_delivered,
                qty_delta=draft.qty_delta,
                ordered_unit_price=draft.ordered_unit_price,
                delivered_unit_price=draft.delivered_unit_price,
                amount_delta=draft.amount_delta,
                status=DiscrepancyStatus.pending,
                description=draft.description,
                created_at=now,
            )
        )
        logger.warning(
            "Discrepancy on BL %s article=%s type=%s qty_delta=%d amount_delta=%s",
            note.number,
            draft.article_id,
            draft.type.value,
            draft.qty_delta,
            draft.amount_delta,
        )

    return list(note.discrepancies)
