"""In-memory implementation of the TicketStore.

Keeps the API running without Supabase (local demo, tests). Data resets on
restart. A single lock serializes each write the way the database
serializes a conditional UPDATE, so concurrent callers still observe
"first write wins" per ticket number.
"""

from __future__ import annotations

import datetime as dt
import threading
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Set

from rifas.core.errors import PrizeUnavailable
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
from rifas.domain.models import cancel, is_active, sell, with_proof
from rifas.domain.rng import secure_shuffle
from rifas.stores.interfaces import TicketStore


class InMemoryTicketStore(TicketStore):

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._raffles: Dict[str, Raffle] = {}
        self._claims: Dict[str, Dict[int, TicketClaim]] = {}
        self._draws: Dict[str, Dict[str, Draw]] = {}

    def _table(self, raffle_id: str) -> Dict[int, TicketClaim]:
        return self._claims.setdefault(raffle_id, {})

    # ---------- Rifas ----------
    def get_raffle(self, raffle_id: str) -> Optional[Raffle]:
        with self._lock:
            return self._raffles.get(raffle_id)

    def save_raffle(self, raffle: Raffle) -> Raffle:
        with self._lock:
            self._raffles[raffle.id] = raffle
            return raffle

    def update_raffle_status(self, raffle_id: str, status: RaffleStatus) -> None:
        with self._lock:
            raffle = self._raffles.get(raffle_id)
            if raffle is not None:
                self._raffles[raffle_id] = replace(raffle, status=status)

    def count_raffles(self, organization_id: str, statuses: Iterable[RaffleStatus]) -> int:
        wanted = set(statuses)
        with self._lock:
            return sum(
                1 for r in self._raffles.values()
                if r.organization_id == organization_id and r.status in wanted
            )

    def list_raffles(self, statuses: Iterable[RaffleStatus]) -> List[Raffle]:
        wanted = set(statuses)
        with self._lock:
            return [r for r in self._raffles.values() if r.status in wanted]

    # ---------- Claims: lectura ----------
    def get_claims(self, raffle_id: str, numbers: Sequence[int]) -> List[TicketClaim]:
        with self._lock:
            table = self._table(raffle_id)
            return [table[n] for n in sorted(set(numbers)) if n in table]

    def list_active_claims(
        self,
        raffle_id: str,
        status: TicketStatus,
        now: dt.datetime,
        offset: int,
        limit: int,
    ) -> List[TicketClaim]:
        with self._lock:
            rows = [
                c for _, c in sorted(self._table(raffle_id).items())
                if c.status == status and is_active(c, now)
            ]
        return rows[offset:offset + limit]

    def count_claims(self, raffle_id: str, now: dt.datetime) -> ClaimCounts:
        reserved = sold = canceled = 0
        with self._lock:
            for claim in self._table(raffle_id).values():
                if isinstance(claim, SoldClaim):
                    sold += 1
                elif isinstance(claim, ReservedClaim):
                    if not claim.is_expired(now):
                        reserved += 1
                else:
                    canceled += 1
        return ClaimCounts(reserved_active=reserved, sold=sold, canceled=canceled)

    def unavailable_numbers(self, raffle_id: str, now: dt.datetime) -> Set[int]:
        with self._lock:
            return {n for n, c in self._table(raffle_id).items() if is_active(c, now)}

    def claims_by_reference(self, raffle_id: str, reference: str) -> List[TicketClaim]:
        with self._lock:
            return [
                c for _, c in sorted(self._table(raffle_id).items())
                if c.payment_reference == reference
            ]

    def find_claims(
        self,
        raffle_id: Optional[str] = None,
        reference: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> List[TicketClaim]:
        if not any([reference, email, phone]):
            return []
        with self._lock:
            tables = [self._table(raffle_id)] if raffle_id else list(self._claims.values())
            found = []
            for table in tables:
                for _, c in sorted(table.items()):
                    if reference and c.payment_reference != reference:
                        continue
                    if email and c.buyer.email != email:
                        continue
                    if phone and c.buyer.phone != phone:
                        continue
                    found.append(c)
            return found

    def sold_claims(self, raffle_id: str) -> List[SoldClaim]:
        with self._lock:
            return [c for _, c in sorted(self._table(raffle_id).items()) if isinstance(c, SoldClaim)]

    def reference_exists(self, raffle_id: str, reference: str) -> bool:
        with self._lock:
            return any(c.payment_reference == reference for c in self._table(raffle_id).values())

    def expiring_reservations(self, now: dt.datetime, until: dt.datetime) -> List[ReservedClaim]:
        with self._lock:
            return [
                c for table in self._claims.values() for _, c in sorted(table.items())
                if isinstance(c, ReservedClaim)
                and not c.payment_proof_url
                and now < c.reserved_until <= until
            ]

    def pending_approval_claims(self, now: dt.datetime) -> List[ReservedClaim]:
        with self._lock:
            return [
                c for table in self._claims.values() for _, c in sorted(table.items())
                if isinstance(c, ReservedClaim) and c.payment_proof_url and not c.is_expired(now)
            ]

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
        claimed: List[ReservedClaim] = []
        with self._lock:
            table = self._table(raffle.id)
            for n in numbers:
                if is_active(table.get(n), now):
                    continue
                claim = ReservedClaim(
                    raffle_id=raffle.id,
                    number=n,
                    ticket_number=raffle.label(n),
                    buyer=buyer,
                    payment_reference=reference,
                    order_total=order_total,
                    order_size=len(numbers),
                    reserved_at=now,
                    reserved_until=reserved_until,
                )
                table[n] = claim
                claimed.append(claim)
        return claimed

    def release_reference(
        self,
        raffle_id: str,
        reference: str,
        numbers: Optional[Sequence[int]] = None,
        only_reserved: bool = True,
    ) -> int:
        scope = set(numbers) if numbers is not None else None
        with self._lock:
            table = self._table(raffle_id)
            doomed = [
                n for n, c in table.items()
                if c.payment_reference == reference
                and (scope is None or n in scope)
                and (not only_reserved or isinstance(c, ReservedClaim))
            ]
            for n in doomed:
                del table[n]
            return len(doomed)

    def mark_sold(self, raffle_id: str, reference: str, now: dt.datetime) -> List[SoldClaim]:
        moved: List[SoldClaim] = []
        with self._lock:
            table = self._table(raffle_id)
            for n, c in sorted(table.items()):
                if (
                    isinstance(c, ReservedClaim)
                    and c.payment_reference == reference
                    and not c.is_expired(now)
                ):
                    table[n] = sell(c, now)
                    moved.append(table[n])
        return moved

    def mark_canceled(
        self, raffle_id: str, reference: str, now: dt.datetime, reason: Optional[str]
    ) -> List[CanceledClaim]:
        moved: List[CanceledClaim] = []
        with self._lock:
            table = self._table(raffle_id)
            for n, c in sorted(table.items()):
                if c.payment_reference == reference and not isinstance(c, CanceledClaim):
                    table[n] = cancel(c, now, reason)
                    moved.append(table[n])
        return moved

    def attach_proof(
        self, raffle_id: str, reference: str, proof_url: str, now: dt.datetime
    ) -> List[TicketClaim]:
        updated: List[TicketClaim] = []
        with self._lock:
            table = self._table(raffle_id)
            for n, c in sorted(table.items()):
                if (
                    isinstance(c, ReservedClaim)
                    and c.payment_reference == reference
                    and not c.is_expired(now)
                ):
                    table[n] = with_proof(c, proof_url)
                    updated.append(table[n])
        return updated

    def extend_reservation(
        self, raffle_id: str, reference: str, reserved_until: dt.datetime
    ) -> List[ReservedClaim]:
        updated: List[ReservedClaim] = []
        with self._lock:
            table = self._table(raffle_id)
            for n, c in sorted(table.items()):
                if isinstance(c, ReservedClaim) and c.payment_reference == reference:
                    table[n] = replace(c, reserved_until=reserved_until)
                    updated.append(table[n])
        return updated

    def delete_expired(self, before: dt.datetime, raffle_id: Optional[str] = None) -> int:
        removed = 0
        with self._lock:
            tables = [self._table(raffle_id)] if raffle_id else list(self._claims.values())
            for table in tables:
                doomed = [
                    n for n, c in table.items()
                    if isinstance(c, ReservedClaim) and c.reserved_until < before
                ]
                for n in doomed:
                    del table[n]
                removed += len(doomed)
        return removed

    def sample_available(
        self, raffle: Raffle, count: int, exclude: Set[int], now: dt.datetime
    ) -> List[int]:
        with self._lock:
            taken = {n for n, c in self._table(raffle.id).items() if is_active(c, now)}
        candidates = [
            n for n in range(1, raffle.total_tickets + 1)
            if n not in taken and n not in exclude
        ]
        return secure_shuffle(candidates)[:count]

    # ---------- Sorteos ----------
    def add_draw(self, draw: Draw) -> Draw:
        with self._lock:
            draws = self._draws.setdefault(draw.raffle_id, {})
            if any(d.prize_id == draw.prize_id for d in draws.values()):
                raise PrizeUnavailable(
                    f"El premio {draw.prize_id} ya fue sorteado", prize_id=draw.prize_id
                )
            draws[draw.id] = draw
            return draw

    def list_draws(self, raffle_id: str) -> List[Draw]:
        with self._lock:
            return sorted(self._draws.get(raffle_id, {}).values(), key=lambda d: d.drawn_at)

    def get_draw(self, raffle_id: str, draw_id: str) -> Optional[Draw]:
        with self._lock:
            return self._draws.get(raffle_id, {}).get(draw_id)

    def delete_draw(self, raffle_id: str, draw_id: str) -> bool:
        with self._lock:
            return self._draws.get(raffle_id, {}).pop(draw_id, None) is not None

    def mark_announced(self, raffle_id: str, draw_id: str, now: dt.datetime) -> Optional[Draw]:
        with self._lock:
            draw = self._draws.get(raffle_id, {}).get(draw_id)
            if draw is None:
                return None
            draw = replace(draw, announced=True, announced_at=now)
            self._draws[raffle_id][draw_id] = draw
            return draw
