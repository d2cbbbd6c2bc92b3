"""
Tables de transitions des trois machines à états (BCP, BL, écart).

Toute vérification de statut passe par `ensure_transition`.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping

from backend.app.db.models.core_types import OrderStatus, DeliveryStatus, DiscrepancyStatus
from backend.services.errors import InvalidState


ORDER_TRANSITIONS: Mapping[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.draft: frozenset({OrderStatus.sent, OrderStatus.cancelled}),
    OrderStatus.sent: frozenset({OrderStatus.confirmed, OrderStatus.cancelled}),
    OrderStatus.confirmed: frozenset({OrderStatus.cancelled}),
    OrderStatus.cancelled: frozenset(),
}

DELIVERY_TRANSITIONS: Mapping[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.pending: frozenset({DeliveryStatus.received, DeliveryStatus.validated, DeliveryStatus.rejected}),
    DeliveryStatus.received: frozenset({DeliveryStatus.validated, DeliveryStatus.rejected}),
    DeliveryStatus.validated: frozenset(),
    DeliveryStatus.rejected: frozenset(),
}

_OPEN_DISCREPANCY = frozenset(
    {
        DiscrepancyStatus.in_progress,
        DiscrepancyStatus.resolved,
        DiscrepancyStatus.accepted,
        DiscrepancyStatus.rejected,
    }
)

DISCREPANCY_TRANSITIONS: Mapping[DiscrepancyStatus, frozenset[DiscrepancyStatus]] = {
    DiscrepancyStatus.pending: _OPEN_DISCREPANCY,
    DiscrepancyStatus.in_progress: _OPEN_DISCREPANCY - {DiscrepancyStatus.in_progress},
    DiscrepancyStatus.resolved: frozenset(),
    DiscrepancyStatus.accepted: frozenset(),
    DiscrepancyStatus.rejected: frozenset(),
}

# Statuts où le document est encore modifiable
EDITABLE_ORDER_STATUSES = frozenset({OrderStatus.draft})
EDITABLE_DELIVERY_STATUSES = frozenset({DeliveryStatus.pending, DeliveryStatus.received})
DELETABLE_DELIVERY_STATUSES = frozenset({DeliveryStatus.pending, DeliveryStatus.received, DeliveryStatus.rejected})


def is_terminal(table: Mapping[Enum, frozenset], status: Enum) -> bool:
    return not table[status]


def ensure_transition(table: Mapping[Enum, frozenset], current: Enum, target: Enum, *, entity: str) -> None:
    if target not in table[current]:
        raise InvalidState(f"{entity} cannot go from {current.value} to {target.value}")
