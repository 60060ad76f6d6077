"""Consultas sobre órdenes: búsqueda del comprador, ingresos y exportación.

Una orden no es una tabla aparte: es el grupo de boletos que comparten
``payment_reference``.
"""

from __future__ import annotations

import datetime as dt
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import pandas as pd

from rifas.core.errors import InvalidRequest
from rifas.core.logger import get_logger
from rifas.domain import CanceledClaim, ReferenceCode, RequestContext, ReservedClaim, SoldClaim, TicketClaim
from rifas.stores import TicketStore
from rifas.services.raffles import ensure_staff, load_raffle
from rifas.services.utils import Clock, mask_email, round2, utc_now

logger = get_logger(__name__)

CSV_COLUMNS = [
    "reference_code",
    "status",
    "buyer_name",
    "buyer_email",
    "buyer_phone",
    "buyer_city",
    "tickets",
    "ticket_numbers",
    "order_total",
    "approved_at",
]


@dataclass(frozen=True)
class OrderSummary:
    raffle_id: str
    reference_code: str
    status: str
    ticket_numbers: Tuple[str, ...]
    buyer_name: Optional[str]
    buyer_email_masked: Optional[str]
    reserved_until: Optional[dt.datetime]
    order_total: Optional[Decimal]
    has_proof: bool


@dataclass(frozen=True)
class RevenueSummary:
    raffle_id: str
    currency: str
    orders: int
    tickets_sold: int
    total: Decimal


def _group(claims: List[TicketClaim]) -> "OrderedDict[Tuple[str, str], List[TicketClaim]]":
    groups: "OrderedDict[Tuple[str, str], List[TicketClaim]]" = OrderedDict()
    for c in claims:
        if not c.payment_reference:
            continue
        groups.setdefault((c.raffle_id, c.payment_reference), []).append(c)
    return groups


def order_status(claims: List[TicketClaim], now: dt.datetime) -> str:
    if all(isinstance(c, SoldClaim) for c in claims):
        return "sold"
    if all(isinstance(c, CanceledClaim) for c in claims):
        return "canceled"
    if all(isinstance(c, ReservedClaim) for c in claims):
        return "expired" if all(c.is_expired(now) for c in claims) else "reserved"
    return "mixed"


def order_amount(claims: List[TicketClaim], ticket_price: Decimal) -> Decimal:
    # order_total ya trae descuentos; se cuenta una vez por orden
    total = next((c.order_total for c in claims if c.order_total is not None), None)
    if total is None:
        total = ticket_price * len(claims)
    return total


class OrderDesk:

    def __init__(self, store: TicketStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def find_orders(
        self,
        raffle_id: Optional[str] = None,
        reference_code: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> List[OrderSummary]:
        reference = ReferenceCode.normalize(reference_code)
        email = (email or "").strip().lower() or None
        phone = (phone or "").strip() or None
        if not any([reference, email, phone]):
            raise InvalidRequest("Indica la clave de reserva, el correo o el teléfono")

        now = self.clock()
        claims = self.store.find_claims(raffle_id, reference, email, phone)
        out: List[OrderSummary] = []
        for (rid, ref), group in _group(claims).items():
            group.sort(key=lambda c: c.number)
            reserved = [c.reserved_until for c in group if isinstance(c, ReservedClaim)]
            first = group[0]
            out.append(OrderSummary(
                raffle_id=rid,
                reference_code=ref,
                status=order_status(group, now),
                ticket_numbers=tuple(c.ticket_number for c in group),
                buyer_name=first.buyer.name,
                buyer_email_masked=mask_email(first.buyer.email) if first.buyer.email else None,
                reserved_until=max(reserved) if reserved else None,
                order_total=first.order_total,
                has_proof=any(c.payment_proof_url for c in group),
            ))
        return out

    def revenue(self, ctx: RequestContext, raffle_id: str) -> RevenueSummary:
        raffle = load_raffle(self.store, raffle_id)
        ensure_staff(ctx, raffle)
        sold = self.store.sold_claims(raffle_id)
        groups = _group(sold)
        total = sum(
            (order_amount(group, raffle.ticket_price) for group in groups.values()),
            Decimal("0"),
        )
        return RevenueSummary(
            raffle_id=raffle_id,
            currency=raffle.currency,
            orders=len(groups),
            tickets_sold=len(sold),
            total=round2(total),
        )

    def buyers_frame(self, ctx: RequestContext, raffle_id: str) -> pd.DataFrame:
        raffle = load_raffle(self.store, raffle_id)
        ensure_staff(ctx, raffle)
        rows: List[Dict[str, object]] = []
        for (_, ref), group in _group(self.store.sold_claims(raffle_id)).items():
            group.sort(key=lambda c: c.number)
            first = group[0]
            approved = [c.approved_at for c in group if c.approved_at]
            rows.append({
                "reference_code": ref,
                "status": "sold",
                "buyer_name": first.buyer.name,
                "buyer_email": first.buyer.email,
                "buyer_phone": first.buyer.phone,
                "buyer_city": first.buyer.city,
                "tickets": len(group),
                "ticket_numbers": " ".join(c.ticket_number for c in group),
                "order_total": str(round2(order_amount(group, raffle.ticket_price))),
                "approved_at": max(approved).isoformat() if approved else None,
            })
        df = pd.DataFrame(rows, columns=CSV_COLUMNS)
        return df.sort_values("reference_code", kind="stable").reset_index(drop=True)

    def export_buyers_csv(self, ctx: RequestContext, raffle_id: str) -> str:
        df = self.buyers_frame(ctx, raffle_id)
        logger.info("Exportando %s orden(es) de la rifa %s", len(df), raffle_id)
        return df.to_csv(index=False)
