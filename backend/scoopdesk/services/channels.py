# Overview: Registry of the three order-taking channels (walk-in sale, comanda, delivery).

from __future__ import annotations

from dataclasses import dataclass

from ..errors import ValidationError
from ..models import (
    Comanda, ComandaItem, ComandaPayment,
    DeliveryItem, DeliveryOrder, DeliveryPayment,
    Sale, SaleItem, SalePayment,
)


@dataclass(frozen=True)
class Channel:
    """
    Persistence shape of one channel.

    settled_statuses: statuses whose effects (stock, session totals,
    rewards) are currently applied. Session recalculation, session reports
    and financial reports all count exactly these rows.
    """
    name: str
    order_model: type
    item_model: type
    payment_model: type
    link_field: str  # FK name on items/payments/ledger rows
    settled_statuses: tuple[str, ...]
    settled_at_attr: str  # when the revenue is recognized

    @property
    def payment_order_column(self):
        return getattr(self.payment_model, self.link_field)

    @property
    def item_order_column(self):
        return getattr(self.item_model, self.link_field)

    @property
    def settled_at_column(self):
        return getattr(self.order_model, self.settled_at_attr)

    def settled_clause(self):
        return self.order_model.status.in_(self.settled_statuses)

    def order_ref(self, order_id: int) -> str:
        return f"{self.name}-{order_id}"

    def order_links(self, order_id: int) -> dict:
        return {self.link_field: order_id}


SALE = Channel(
    name="SALE",
    order_model=Sale,
    item_model=SaleItem,
    payment_model=SalePayment,
    link_field="sale_id",
    settled_statuses=("COMPLETED", "ADJUSTED"),
    settled_at_attr="created_at",
)

COMANDA = Channel(
    name="COMANDA",
    order_model=Comanda,
    item_model=ComandaItem,
    payment_model=ComandaPayment,
    link_field="comanda_id",
    settled_statuses=("CLOSED",),
    settled_at_attr="closed_at",
)

DELIVERY = Channel(
    name="DELIVERY",
    order_model=DeliveryOrder,
    item_model=DeliveryItem,
    payment_model=DeliveryPayment,
    link_field="delivery_order_id",
    settled_statuses=("RECEIVED", "PREPARING", "OUT_FOR_DELIVERY", "DELIVERED"),
    settled_at_attr="created_at",
)

CHANNELS = (SALE, COMANDA, DELIVERY)
CHANNELS_BY_NAME = {c.name: c for c in CHANNELS}


def get_channel(name: str) -> Channel:
    try:
        return CHANNELS_BY_NAME[(name or "").upper()]
    except KeyError:
        raise ValidationError(f"Unknown channel '{name}'", {"channels": list(CHANNELS_BY_NAME)})
