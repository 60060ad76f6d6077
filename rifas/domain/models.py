"""Domain models representing persisted state.

Pure domain objects: no HTTP input rules and no storage client. The
stores convert rows to and from these types.
"""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Union

from rifas.domain.value_objects import (
    format_ticket_number,
    label_width,
    parse_decimal,
    parse_iso,
    to_iso,
)


class RaffleStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELED = "canceled"


class TicketStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"
    CANCELED = "canceled"


class DrawMethod(str, Enum):
    MANUAL = "manual"
    LOTTERY = "lottery"
    RANDOM = "random_org"


class DrawType(str, Enum):
    PRE_DRAW = "pre_draw"
    MAIN_DRAW = "main_draw"


class Role(str, Enum):
    BUYER = "buyer"
    STAFF = "staff"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class RequestContext:
    """Who is acting, on behalf of which organization."""

    actor_id: Optional[str] = None
    organization_id: Optional[str] = None
    role: Role = Role.BUYER

    @classmethod
    def buyer(cls) -> "RequestContext":
        return cls()

    @classmethod
    def system(cls) -> "RequestContext":
        return cls(actor_id="system", role=Role.SYSTEM)

    @property
    def is_staff(self) -> bool:
        return self.role in (Role.STAFF, Role.ADMIN, Role.SYSTEM)

    @property
    def is_privileged(self) -> bool:
        return self.role in (Role.ADMIN, Role.SYSTEM)


@dataclass(frozen=True)
class Prize:
    id: str
    name: str
    value: Optional[Decimal] = None
    currency: Optional[str] = None
    scheduled_draw_date: Optional[dt.datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Prize":
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            name=(data.get("name") or "").strip(),
            value=parse_decimal(data.get("value")),
            currency=data.get("currency"),
            scheduled_draw_date=parse_iso(data.get("scheduled_draw_date")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "value": str(self.value) if self.value is not None else None,
            "currency": self.currency,
            "scheduled_draw_date": to_iso(self.scheduled_draw_date),
        }


@dataclass(frozen=True)
class Raffle:
    """Owns the numbering space ``[1, total_tickets]``."""

    id: str
    organization_id: Optional[str]
    title: str
    total_tickets: int
    ticket_price: Decimal
    currency: str = "USD"
    status: RaffleStatus = RaffleStatus.DRAFT
    prizes: Tuple[Prize, ...] = ()
    ticket_digits: Optional[int] = None
    reservation_minutes: Optional[int] = None
    draw_date: Optional[dt.datetime] = None
    created_at: Optional[dt.datetime] = None

    @property
    def width(self) -> int:
        return label_width(self.total_tickets, self.ticket_digits)

    def label(self, number: int) -> str:
        return format_ticket_number(number, self.width)

    def contains(self, number: int) -> bool:
        return 1 <= number <= self.total_tickets

    def effective_prizes(self) -> Tuple[Prize, ...]:
        if self.prizes:
            return self.prizes
        # Rifas de un solo premio: el id es estable para poder marcarlo sorteado.
        return (Prize(id=f"{self.id}:main", name=self.title, scheduled_draw_date=self.draw_date),)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Raffle":
        return cls(
            id=str(row["id"]),
            organization_id=row.get("organization_id"),
            title=row.get("title") or "",
            total_tickets=int(row["total_tickets"]),
            ticket_price=parse_decimal(row.get("ticket_price")) or Decimal("0"),
            currency=row.get("currency") or "USD",
            status=RaffleStatus(row.get("status") or RaffleStatus.DRAFT.value),
            prizes=tuple(Prize.from_dict(p) for p in (row.get("prizes") or [])),
            ticket_digits=row.get("ticket_digits"),
            reservation_minutes=row.get("reservation_minutes"),
            draw_date=parse_iso(row.get("draw_date")),
            created_at=parse_iso(row.get("created_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "title": self.title,
            "total_tickets": self.total_tickets,
            "ticket_price": str(self.ticket_price),
            "currency": self.currency,
            "status": self.status.value,
            "prizes": [p.to_dict() for p in self.prizes],
            "ticket_digits": self.ticket_digits,
            "reservation_minutes": self.reservation_minutes,
            "draw_date": to_iso(self.draw_date),
            "created_at": to_iso(self.created_at),
        }


@dataclass(frozen=True)
class Buyer:
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    city: Optional[str] = None

    def normalized(self) -> "Buyer":
        return Buyer(
            name=(self.name or "").strip() or None,
            email=(self.email or "").strip().lower() or None,
            phone=(self.phone or "").strip() or None,
            city=(self.city or "").strip() or None,
        )


# ---------- Claims: una variante por estado ----------
@dataclass(frozen=True, kw_only=True)
class _Claim:
    raffle_id: str
    number: int
    ticket_number: str
    buyer: Buyer = field(default_factory=Buyer)
    payment_reference: Optional[str] = None
    payment_proof_url: Optional[str] = None
    order_total: Optional[Decimal] = None
    order_size: Optional[int] = None


@dataclass(frozen=True, kw_only=True)
class ReservedClaim(_Claim):
    status: ClassVar[TicketStatus] = TicketStatus.RESERVED

    reserved_at: dt.datetime
    reserved_until: dt.datetime

    def is_expired(self, now: dt.datetime) -> bool:
        return self.reserved_until <= now


@dataclass(frozen=True, kw_only=True)
class SoldClaim(_Claim):
    status: ClassVar[TicketStatus] = TicketStatus.SOLD

    sold_at: dt.datetime
    approved_at: Optional[dt.datetime] = None
    reserved_at: Optional[dt.datetime] = None


@dataclass(frozen=True, kw_only=True)
class CanceledClaim(_Claim):
    status: ClassVar[TicketStatus] = TicketStatus.CANCELED

    canceled_at: dt.datetime
    cancel_reason: Optional[str] = None


TicketClaim = Union[ReservedClaim, SoldClaim, CanceledClaim]


def is_active(claim: Optional[TicketClaim], now: dt.datetime) -> bool:
    """True when the claim keeps its number out of the available pool."""
    if isinstance(claim, SoldClaim):
        return True
    if isinstance(claim, ReservedClaim):
        return not claim.is_expired(now)
    return False


def effective_status(claim: Optional[TicketClaim], now: dt.datetime) -> TicketStatus:
    if claim is None or not is_active(claim, now):
        return TicketStatus.AVAILABLE
    return claim.status


def sell(claim: ReservedClaim, now: dt.datetime) -> SoldClaim:
    return SoldClaim(
        raffle_id=claim.raffle_id,
        number=claim.number,
        ticket_number=claim.ticket_number,
        buyer=claim.buyer,
        payment_reference=claim.payment_reference,
        payment_proof_url=claim.payment_proof_url,
        order_total=claim.order_total,
        order_size=claim.order_size,
        reserved_at=claim.reserved_at,
        approved_at=now,
        sold_at=now,
    )


def cancel(claim: TicketClaim, now: dt.datetime, reason: Optional[str] = None) -> CanceledClaim:
    return CanceledClaim(
        raffle_id=claim.raffle_id,
        number=claim.number,
        ticket_number=claim.ticket_number,
        buyer=claim.buyer,
        payment_reference=claim.payment_reference,
        payment_proof_url=claim.payment_proof_url,
        order_total=claim.order_total,
        order_size=claim.order_size,
        canceled_at=now,
        cancel_reason=reason,
    )


def with_proof(claim: TicketClaim, proof_url: str) -> TicketClaim:
    return replace(claim, payment_proof_url=proof_url)


def claim_from_row(row: Dict[str, Any]) -> TicketClaim:
    common = dict(
        raffle_id=str(row["raffle_id"]),
        number=int(row.get("ticket_index") or row["ticket_number"]),
        ticket_number=str(row["ticket_number"]),
        buyer=Buyer(
            name=row.get("buyer_name"),
            email=row.get("buyer_email"),
            phone=row.get("buyer_phone"),
            city=row.get("buyer_city"),
        ),
        payment_reference=row.get("payment_reference"),
        payment_proof_url=row.get("payment_proof_url"),
        order_total=parse_decimal(row.get("order_total")),
        order_size=row.get("order_size"),
    )
    status = TicketStatus(row["status"])
    if status == TicketStatus.RESERVED:
        return ReservedClaim(
            **common,
            reserved_at=parse_iso(row.get("reserved_at")) or parse_iso(row["reserved_until"]),
            reserved_until=parse_iso(row["reserved_until"]),
        )
    if status == TicketStatus.SOLD:
        return SoldClaim(
            **common,
            sold_at=parse_iso(row.get("sold_at")) or parse_iso(row.get("approved_at")),
            approved_at=parse_iso(row.get("approved_at")),
            reserved_at=parse_iso(row.get("reserved_at")),
        )
    if status == TicketStatus.CANCELED:
        return CanceledClaim(
            **common,
            canceled_at=parse_iso(row.get("canceled_at")),
            cancel_reason=row.get("cancel_reason"),
        )
    raise ValueError(f"Unexpected claim status: {status.value}")


@dataclass(frozen=True)
class TicketView:
    """One slot of the numbering space as seen by a reader."""

    number: int
    ticket_number: str
    status: TicketStatus
    buyer_name: Optional[str] = None
    buyer_city: Optional[str] = None
    payment_reference: Optional[str] = None
    reserved_until: Optional[dt.datetime] = None


@dataclass(frozen=True)
class TicketCounts:
    total: int
    available: int
    reserved: int
    sold: int
    canceled: int = 0


@dataclass(frozen=True)
class ClaimCounts:
    """Server-side tallies of stored claims; available is derived from them."""

    reserved_active: int
    sold: int
    canceled: int = 0


@dataclass(frozen=True)
class Reservation:
    reference_code: str
    raffle_id: str
    reserved_until: dt.datetime
    claims: Tuple[ReservedClaim, ...]

    @property
    def ticket_numbers(self) -> Tuple[str, ...]:
        return tuple(c.ticket_number for c in self.claims)


@dataclass(frozen=True)
class Draw:
    id: str
    raffle_id: str
    prize_id: str
    prize_name: str
    number: int
    ticket_number: str
    winner: Buyer
    draw_method: DrawMethod
    draw_type: DrawType
    drawn_at: dt.datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    announced: bool = False
    announced_at: Optional[dt.datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Draw":
        return cls(
            id=str(row["id"]),
            raffle_id=str(row["raffle_id"]),
            prize_id=str(row["prize_id"]),
            prize_name=row.get("prize_name") or "",
            number=int(row.get("ticket_index") or row["ticket_number"]),
            ticket_number=str(row["ticket_number"]),
            winner=Buyer(
                name=row.get("winner_name"),
                email=row.get("winner_email"),
                phone=row.get("winner_phone"),
                city=row.get("winner_city"),
            ),
            draw_method=DrawMethod(row["draw_method"]),
            draw_type=DrawType(row["draw_type"]),
            drawn_at=parse_iso(row.get("drawn_at")),
            metadata=dict(row.get("draw_metadata") or {}),
            announced=bool(row.get("announced")),
            announced_at=parse_iso(row.get("announced_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "raffle_id": self.raffle_id,
            "prize_id": self.prize_id,
            "prize_name": self.prize_name,
            "ticket_index": self.number,
            "ticket_number": self.ticket_number,
            "winner_name": self.winner.name,
            "winner_email": self.winner.email,
            "winner_phone": self.winner.phone,
            "winner_city": self.winner.city,
            "draw_method": self.draw_method.value,
            "draw_type": self.draw_type.value,
            "drawn_at": to_iso(self.drawn_at),
            "draw_metadata": self.metadata,
            "announced": self.announced,
            "announced_at": to_iso(self.announced_at),
        }
