"""Lectura del inventario de boletos "virtuales".

Un número sin fila está disponible; una reserva vencida se lee como
disponible aunque la fila siga ahí hasta que otro la reclame o el barrido
la borre.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from rifas.core.errors import InvalidTicketSelection
from rifas.domain import ReservedClaim, TicketCounts, TicketStatus, TicketView
from rifas.domain.models import effective_status
from rifas.stores import TicketStore
from rifas.services.raffles import load_raffle
from rifas.services.utils import Clock, TicketRef, parse_numbers, utc_now

MAX_PAGE_SIZE = 500

FILTERS = ("all", "available", "reserved", "sold")


@dataclass(frozen=True)
class TicketPage:
    items: Tuple[TicketView, ...]
    page: int
    page_size: int
    total: int

    @property
    def pages(self) -> int:
        return max((self.total + self.page_size - 1) // self.page_size, 1)


class TicketInventory:

    def __init__(self, store: TicketStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    def _view(self, raffle, number: int, claim, now) -> TicketView:
        status = effective_status(claim, now)
        if status == TicketStatus.AVAILABLE:
            return TicketView(number=number, ticket_number=raffle.label(number), status=status)
        return TicketView(
            number=number,
            ticket_number=raffle.label(number),
            status=status,
            buyer_name=claim.buyer.name,
            buyer_city=claim.buyer.city,
            payment_reference=claim.payment_reference,
            reserved_until=claim.reserved_until if isinstance(claim, ReservedClaim) else None,
        )

    def status(self, raffle_id: str, ticket: TicketRef) -> TicketView:
        raffle = load_raffle(self.store, raffle_id)
        (number,) = parse_numbers(raffle, [ticket])
        claims = self.store.get_claims(raffle_id, [number])
        return self._view(raffle, number, claims[0] if claims else None, self.clock())

    def counts(self, raffle_id: str) -> TicketCounts:
        raffle = load_raffle(self.store, raffle_id)
        c = self.store.count_claims(raffle_id, self.clock())
        available = max(raffle.total_tickets - c.reserved_active - c.sold, 0)
        return TicketCounts(
            total=raffle.total_tickets,
            available=available,
            reserved=c.reserved_active,
            sold=c.sold,
            canceled=c.canceled,
        )

    def list_page(
        self,
        raffle_id: str,
        status_filter: str = "all",
        page: int = 1,
        page_size: int = 100,
    ) -> TicketPage:
        if status_filter not in FILTERS:
            raise InvalidTicketSelection(f"Filtro desconocido: {status_filter}")
        page = max(int(page), 1)
        page_size = min(max(int(page_size), 1), MAX_PAGE_SIZE)
        offset = (page - 1) * page_size

        raffle = load_raffle(self.store, raffle_id)
        now = self.clock()

        if status_filter in ("sold", "reserved"):
            status = TicketStatus(status_filter)
            counts = self.store.count_claims(raffle_id, now)
            total = counts.sold if status == TicketStatus.SOLD else counts.reserved_active
            claims = self.store.list_active_claims(raffle_id, status, now, offset, page_size)
            items = tuple(self._view(raffle, c.number, c, now) for c in claims)
            return TicketPage(items=items, page=page, page_size=page_size, total=total)

        if status_filter == "available":
            taken = self.store.unavailable_numbers(raffle_id, now)
            total = raffle.total_tickets - len(taken)
            numbers: List[int] = []
            skipped = 0
            for n in range(1, raffle.total_tickets + 1):
                if n in taken:
                    continue
                if skipped < offset:
                    skipped += 1
                    continue
                numbers.append(n)
                if len(numbers) >= page_size:
                    break
            items = tuple(
                TicketView(number=n, ticket_number=raffle.label(n), status=TicketStatus.AVAILABLE)
                for n in numbers
            )
            return TicketPage(items=items, page=page, page_size=page_size, total=total)

        # "all": rango virtual, solo se leen las filas de la página
        first = offset + 1
        last = min(offset + page_size, raffle.total_tickets)
        numbers = list(range(first, last + 1))
        by_number = {c.number: c for c in self.store.get_claims(raffle_id, numbers)} if numbers else {}
        items = tuple(self._view(raffle, n, by_number.get(n), now) for n in numbers)
        return TicketPage(items=items, page=page, page_size=page_size, total=raffle.total_tickets)
