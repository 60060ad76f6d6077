"""Supabase (PostgREST) implementation of the TicketStore.

Tablas: ``raffles``, ``ticket_claims`` (una fila por número que salió de
"disponible") y ``raffle_draws``. Ver supabase/migrations/.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from supabase import Client

from rifas.core.errors import PrizeUnavailable, StorageError
from rifas.core.logger import get_logger
from rifas.domain import (
    Buyer,
    CanceledClaim,
    ClaimCounts,
    Draw,
    Raffle,
    RaffleStatus,
    ReservedClaim,
    SoldClaim,
    TicketClaim,
    TicketStatus,
)
from rifas.domain.models import claim_from_row
from rifas.domain.value_objects import to_iso
from rifas.stores.interfaces import TicketStore

logger = get_logger(__name__)

_PAGE_SIZE = 1000  # límite por defecto de PostgREST
_UNIQUE_VIOLATION = "23505"


class SupabaseTicketStore(TicketStore):

    def __init__(self, client: Client):
        self.client = client
        self._raffles = "raffles"
        self._claims = "ticket_claims"
        self._draws = "raffle_draws"

    def _run(self, operation: str, query: Any):
        try:
            return query.execute()
        except Exception as e:
            logger.error("Supabase %s falló: %s", operation, e)
            raise StorageError(operation, e) from e

    def _claims_q(self, raffle_id: str):
        return self.client.table(self._claims).select("*").eq("raffle_id", raffle_id)

    # ---------- Rifas ----------
    def get_raffle(self, raffle_id: str) -> Optional[Raffle]:
        r = self._run(
            "get_raffle",
            self.client.table(self._raffles).select("*").eq("id", raffle_id).limit(1),
        )
        return Raffle.from_row(r.data[0]) if r.data else None

    def save_raffle(self, raffle: Raffle) -> Raffle:
        r = self._run("save_raffle", self.client.table(self._raffles).upsert(raffle.to_row()))
        return Raffle.from_row(r.data[0]) if r.data else raffle

    def update_raffle_status(self, raffle_id: str, status: RaffleStatus) -> None:
        self._run(
            "update_raffle_status",
            self.client.table(self._raffles).update({"status": status.value}).eq("id", raffle_id),
        )

    def count_raffles(self, organization_id: str, statuses: Iterable[RaffleStatus]) -> int:
        r = self._run(
            "count_raffles",
            self.client.table(self._raffles)
            .select("id", count="exact", head=True)
            .eq("organization_id", organization_id)
            .in_("status", [s.value for s in statuses]),
        )
        return r.count or 0

    def list_raffles(self, statuses: Iterable[RaffleStatus]) -> List[Raffle]:
        r = self._run(
            "list_raffles",
            self.client.table(self._raffles)
            .select("*")
            .in_("status", [s.value for s in statuses])
            .order("created_at"),
        )
        return [Raffle.from_row(row) for row in (r.data or [])]

    # ---------- Claims: lectura ----------
    def get_claims(self, raffle_id: str, numbers: Sequence[int]) -> List[TicketClaim]:
        if not numbers:
            return []
        r = self._run(
            "get_claims",
            self._claims_q(raffle_id).in_("ticket_index", sorted(set(numbers))).order("ticket_index"),
        )
        return [claim_from_row(row) for row in (r.data or [])]

    def list_active_claims(
        self,
        raffle_id: str,
        status: TicketStatus,
        now: dt.datetime,
        offset: int,
        limit: int,
    ) -> List[TicketClaim]:
        q = self._claims_q(raffle_id).eq("status", status.value)
        if status == TicketStatus.RESERVED:
            q = q.gt("reserved_until", to_iso(now))
        r = self._run(
            "list_active_claims",
            q.order("ticket_index").range(offset, offset + limit - 1),
        )
        return [claim_from_row(row) for row in (r.data or [])]

    def _count(self, raffle_id: str, status: TicketStatus, now: Optional[dt.datetime] = None) -> int:
        q = (
            self.client.table(self._claims)
            .select("id", count="exact", head=True)
            .eq("raffle_id", raffle_id)
            .eq("status", status.value)
        )
        if now is not None:
            q = q.gt("reserved_until", to_iso(now))
        return self._run(f"count_{status.value}", q).count or 0

    def count_claims(self, raffle_id: str, now: dt.datetime) -> ClaimCounts:
        return ClaimCounts(
            reserved_active=self._count(raffle_id, TicketStatus.RESERVED, now),
            sold=self._count(raffle_id, TicketStatus.SOLD),
            canceled=self._count(raffle_id, TicketStatus.CANCELED),
        )

    def unavailable_numbers(self, raffle_id: str, now: dt.datetime) -> Set[int]:
        """Pagina de a 1000 filas: PostgREST corta ahí por defecto."""
        now_iso = to_iso(now)
        taken: Set[int] = set()
        start = 0
        while True:
            r = self._run(
                "unavailable_numbers",
                self.client.table(self._claims)
                .select("ticket_index")
                .eq("raffle_id", raffle_id)
                .or_(f"status.eq.sold,and(status.eq.reserved,reserved_until.gt.{now_iso})")
                .order("ticket_index")
                .range(start, start + _PAGE_SIZE - 1),
            )
            batch = r.data or []
            taken.update(int(row["ticket_index"]) for row in batch)
            if len(batch) < _PAGE_SIZE:
                return taken
            start += _PAGE_SIZE

    def claims_by_reference(self, raffle_id: str, reference: str) -> List[TicketClaim]:
        r = self._run(
            "claims_by_reference",
            self._claims_q(raffle_id).eq("payment_reference", reference).order("ticket_index"),
        )
        return [claim_from_row(row) for row in (r.data or [])]

    def find_claims(
        self,
        raffle_id: Optional[str] = None,
        reference: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> List[TicketClaim]:
        if not any([reference, email, phone]):
            return []
        q = self.client.table(self._claims).select("*")
        if raffle_id:
            q = q.eq("raffle_id", raffle_id)
        if reference:
            q = q.eq("payment_reference", reference)
        if email:
            q = q.eq("buyer_email", email)
        if phone:
            q = q.eq("buyer_phone", phone)
        r = self._run("find_claims", q.order("ticket_index"))
        return [claim_from_row(row) for row in (r.data or [])]

    def sold_claims(self, raffle_id: str) -> List[SoldClaim]:
        out: List[SoldClaim] = []
        start = 0
        while True:
            r = self._run(
                "sold_claims",
                self._claims_q(raffle_id)
                .eq("status", TicketStatus.SOLD.value)
                .order("ticket_index")
                .range(start, start + _PAGE_SIZE - 1),
            )
            batch = r.data or []
            out.extend(claim_from_row(row) for row in batch)
            if len(batch) < _PAGE_SIZE:
                return out
            start += _PAGE_SIZE

    def reference_exists(self, raffle_id: str, reference: str) -> bool:
        r = self._run(
            "reference_exists",
            self.client.table(self._claims)
            .select("id", count="exact", head=True)
            .eq("raffle_id", raffle_id)
            .eq("payment_reference", reference),
        )
        return bool(r.count)

    def expiring_reservations(self, now: dt.datetime, until: dt.datetime) -> List[ReservedClaim]:
        r = self._run(
            "expiring_reservations",
            self.client.table(self._claims)
            .select("*")
            .eq("status", TicketStatus.RESERVED.value)
            .is_("payment_proof_url", "null")
            .gt("reserved_until", to_iso(now))
            .lte("reserved_until", to_iso(until))
            .order("reserved_until"),
        )
        return [claim_from_row(row) for row in (r.data or [])]

    def pending_approval_claims(self, now: dt.datetime) -> List[ReservedClaim]:
        r = self._run(
            "pending_approval_claims",
            self.client.table(self._claims)
            .select("*")
            .eq("status", TicketStatus.RESERVED.value)
            .not_.is_("payment_proof_url", "null")
            .gt("reserved_until", to_iso(now))
            .order("reserved_at"),
        )
        return [claim_from_row(row) for row in (r.data or [])]

    # ---------- Claims: escrituras condicionales ----------
    def claim_available(
        self,
        raffle: Raffle,
        numbers: Sequence[int],
        reference: str,
        buyer: Buyer,
        reserved_until: dt.datetime,
        order_total: Optional[Decimal],
        now: dt.datetime,
    ) -> List[ReservedClaim]:
        # INSERT ... ON CONFLICT DO UPDATE WHERE (libre o vencido) RETURNING
        params: Dict[str, Any] = {
            "p_raffle_id": raffle.id,
            "p_indices": list(numbers),
            "p_width": raffle.width,
            "p_reference": reference,
            "p_buyer_name": buyer.name,
            "p_buyer_email": buyer.email,
            "p_buyer_phone": buyer.phone,
            "p_buyer_city": buyer.city,
            "p_reserved_until": to_iso(reserved_until),
            "p_order_total": str(order_total) if order_total is not None else None,
            "p_now": to_iso(now),
        }
        r = self._run("claim_tickets", self.client.rpc("claim_tickets", params))
        return [claim_from_row(row) for row in (r.data or [])]

    def release_reference(
        self,
        raffle_id: str,
        reference: str,
        numbers: Optional[Sequence[int]] = None,
        only_reserved: bool = True,
    ) -> int:
        q = (
            self.client.table(self._claims)
            .delete()
            .eq("raffle_id", raffle_id)
            .eq("payment_reference", reference)
        )
        if numbers is not None:
            q = q.in_("ticket_index", list(numbers))
        if only_reserved:
            q = q.eq("status", TicketStatus.RESERVED.value)
        r = self._run("release_reference", q)
        return len(r.data or [])

    def mark_sold(self, raffle_id: str, reference: str, now: dt.datetime) -> List[SoldClaim]:
        now_iso = to_iso(now)
        r = self._run(
            "mark_sold",
            self.client.table(self._claims)
            .update({
                "status": TicketStatus.SOLD.value,
                "approved_at": now_iso,
                "sold_at": now_iso,
                "reserved_until": None,
            })
            .eq("raffle_id", raffle_id)
            .eq("payment_reference", reference)
            .eq("status", TicketStatus.RESERVED.value)
            .gt("reserved_until", now_iso),
        )
        return [claim_from_row(row) for row in (r.data or [])]

    def mark_canceled(
        self, raffle_id: str, reference: str, now: dt.datetime, reason: Optional[str]
    ) -> List[CanceledClaim]:
        r = self._run(
            "mark_canceled",
            self.client.table(self._claims)
            .update({
                "status": TicketStatus.CANCELED.value,
                "canceled_at": to_iso(now),
                "cancel_reason": reason,
                "reserved_until": None,
            })
            .eq("raffle_id", raffle_id)
            .eq("payment_reference", reference)
            .in_("status", [TicketStatus.RESERVED.value, TicketStatus.SOLD.value]),
        )
        return [claim_from_row(row) for row in (r.data or [])]

    def attach_proof(
        self, raffle_id: str, reference: str, proof_url: str, now: dt.datetime
    ) -> List[TicketClaim]:
        r = self._run(
            "attach_proof",
            self.client.table(self._claims)
            .update({"payment_proof_url": proof_url})
            .eq("raffle_id", raffle_id)
            .eq("payment_reference", reference)
            .eq("status", TicketStatus.RESERVED.value)
            .gt("reserved_until", to_iso(now)),
        )
        return [claim_from_row(row) for row in (r.data or [])]

    def extend_reservation(
        self, raffle_id: str, reference: str, reserved_until: dt.datetime
    ) -> List[ReservedClaim]:
        r = self._run(
            "extend_reservation",
            self.client.table(self._claims)
            .update({"reserved_until": to_iso(reserved_until)})
            .eq("raffle_id", raffle_id)
            .eq("payment_reference", reference)
            .eq("status", TicketStatus.RESERVED.value),
        )
        return [claim_from_row(row) for row in (r.data or [])]

    def delete_expired(self, before: dt.datetime, raffle_id: Optional[str] = None) -> int:
        q = (
            self.client.table(self._claims)
            .delete()
            .eq("status", TicketStatus.RESERVED.value)
            .lt("reserved_until", to_iso(before))
        )
        if raffle_id:
            q = q.eq("raffle_id", raffle_id)
        r = self._run("delete_expired", q)
        return len(r.data or [])

    def sample_available(
        self, raffle: Raffle, count: int, exclude: Set[int], now: dt.datetime
    ) -> List[int]:
        r = self._run(
            "select_random_available",
            self.client.rpc("select_random_available", {
                "p_raffle_id": raffle.id,
                "p_total": raffle.total_tickets,
                "p_count": count,
                "p_exclude": sorted(exclude),
                "p_now": to_iso(now),
            }),
        )
        return [int(row["ticket_index"]) for row in (r.data or [])]

    # ---------- Sorteos ----------
    def add_draw(self, draw: Draw) -> Draw:
        try:
            r = self._run("add_draw", self.client.table(self._draws).insert(draw.to_row()))
        except StorageError as e:
            # unique (raffle_id, prize_id)
            if getattr(e.__cause__, "code", None) == _UNIQUE_VIOLATION:
                raise PrizeUnavailable(
                    f"El premio {draw.prize_id} ya fue sorteado", prize_id=draw.prize_id
                ) from e
            raise
        return Draw.from_row(r.data[0]) if r.data else draw

    def list_draws(self, raffle_id: str) -> List[Draw]:
        r = self._run(
            "list_draws",
            self.client.table(self._draws).select("*").eq("raffle_id", raffle_id).order("drawn_at"),
        )
        return [Draw.from_row(row) for row in (r.data or [])]

    def get_draw(self, raffle_id: str, draw_id: str) -> Optional[Draw]:
        r = self._run(
            "get_draw",
            self.client.table(self._draws).select("*").eq("raffle_id", raffle_id).eq("id", draw_id).limit(1),
        )
        return Draw.from_row(r.data[0]) if r.data else None

    def delete_draw(self, raffle_id: str, draw_id: str) -> bool:
        r = self._run(
            "delete_draw",
            self.client.table(self._draws).delete().eq("raffle_id", raffle_id).eq("id", draw_id),
        )
        return bool(r.data)

    def mark_announced(self, raffle_id: str, draw_id: str, now: dt.datetime) -> Optional[Draw]:
        r = self._run(
            "mark_announced",
            self.client.table(self._draws)
            .update({"announced": True, "announced_at": to_iso(now)})
            .eq("raffle_id", raffle_id)
            .eq("id", draw_id),
        )
        return Draw.from_row(r.data[0]) if r.data else None
