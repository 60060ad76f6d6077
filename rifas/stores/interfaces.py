"""Store interfaces (repository pattern).

Stores must be swappable and return domain models. Every write here is a
single conditional statement on the backing store: callers never get a
multi-row transaction, so the services compose these writes into sagas.
"""

from __future__ import annotations

import datetime as dt
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Set

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


class TicketStore(ABC):
    """Persistence for raffles, ticket claims and draws."""

    # ---------- Rifas ----------
    @abstractmethod
    def get_raffle(self, raffle_id: str) -> Optional[Raffle]:
        """Return a raffle by ID, or None if not found."""
        ...

    @abstractmethod
    def save_raffle(self, raffle: Raffle) -> Raffle:
        """Insert or replace a raffle."""
        ...

    @abstractmethod
    def update_raffle_status(self, raffle_id: str, status: RaffleStatus) -> None:
        ...

    @abstractmethod
    def count_raffles(self, organization_id: str, statuses: Iterable[RaffleStatus]) -> int:
        ...

    @abstractmethod
    def list_raffles(self, statuses: Iterable[RaffleStatus]) -> List[Raffle]:
        """Raffles in any of ``statuses``, oldest first."""
        ...

    # ---------- Claims: lectura ----------
    @abstractmethod
    def get_claims(self, raffle_id: str, numbers: Sequence[int]) -> List[TicketClaim]:
        """Return stored claims (any status) for the given numbers."""
        ...

    @abstractmethod
    def list_active_claims(
        self,
        raffle_id: str,
        status: TicketStatus,
        now: dt.datetime,
        offset: int,
        limit: int,
    ) -> List[TicketClaim]:
        """Page through sold or live-reserved claims ordered by number."""
        ...

    @abstractmethod
    def count_claims(self, raffle_id: str, now: dt.datetime) -> ClaimCounts:
        """Count live reservations, sales and cancellations without paging rows."""
        ...

    @abstractmethod
    def unavailable_numbers(self, raffle_id: str, now: dt.datetime) -> Set[int]:
        """Numbers held by a sale or a reservation that has not expired."""
        ...

    @abstractmethod
    def claims_by_reference(self, raffle_id: str, reference: str) -> List[TicketClaim]:
        ...

    @abstractmethod
    def find_claims(
        self,
        raffle_id: Optional[str] = None,
        reference: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> List[TicketClaim]:
        ...

    @abstractmethod
    def sold_claims(self, raffle_id: str) -> List[SoldClaim]:
        """All sold claims ordered by number."""
        ...

    @abstractmethod
    def reference_exists(self, raffle_id: str, reference: str) -> bool:
        ...

    @abstractmethod
    def expiring_reservations(self, now: dt.datetime, until: dt.datetime) -> List[ReservedClaim]:
        """Live reserved claims without a proof whose deadline falls in ``(now, until]``."""
        ...

    @abstractmethod
    def pending_approval_claims(self, now: dt.datetime) -> List[ReservedClaim]:
        """Live reserved claims that already carry a payment proof."""
        ...

    # ---------- Claims: escrituras condicionales ----------
    @abstractmethod
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
        """Reserve each number that is free, expired or canceled right now.

        Returns only the claims this call actually transitioned.
        """
        ...

    @abstractmethod
    def release_reference(
        self,
        raffle_id: str,
        reference: str,
        numbers: Optional[Sequence[int]] = None,
        only_reserved: bool = True,
    ) -> int:
        """Delete claims still tagged with ``reference``; returns the row count."""
        ...

    @abstractmethod
    def mark_sold(self, raffle_id: str, reference: str, now: dt.datetime) -> List[SoldClaim]:
        """Move the live reserved claims of an order to sold; returns the moved claims.

        Reservations already past ``reserved_until`` are left untouched.
        """
        ...

    @abstractmethod
    def mark_canceled(
        self, raffle_id: str, reference: str, now: dt.datetime, reason: Optional[str]
    ) -> List[CanceledClaim]:
        ...

    @abstractmethod
    def attach_proof(
        self, raffle_id: str, reference: str, proof_url: str, now: dt.datetime
    ) -> List[TicketClaim]:
        """Set the proof URL on the live reserved claims of an order."""
        ...

    @abstractmethod
    def extend_reservation(
        self, raffle_id: str, reference: str, reserved_until: dt.datetime
    ) -> List[ReservedClaim]:
        ...

    @abstractmethod
    def delete_expired(self, before: dt.datetime, raffle_id: Optional[str] = None) -> int:
        """Physically remove reservations whose ``reserved_until`` < ``before``."""
        ...

    @abstractmethod
    def sample_available(
        self, raffle: Raffle, count: int, exclude: Set[int], now: dt.datetime
    ) -> List[int]:
        """Bulk random selection run next to the data; may return fewer than ``count``."""
        ...

    # ---------- Sorteos ----------
    @abstractmethod
    def add_draw(self, draw: Draw) -> Draw:
        """Insert a draw; raises PrizeUnavailable if the prize already has one."""
        ...

    @abstractmethod
    def list_draws(self, raffle_id: str) -> List[Draw]:
        """Draws ordered by ``drawn_at`` ascending."""
        ...

    @abstractmethod
    def get_draw(self, raffle_id: str, draw_id: str) -> Optional[Draw]:
        ...

    @abstractmethod
    def delete_draw(self, raffle_id: str, draw_id: str) -> bool:
        ...

    @abstractmethod
    def mark_announced(self, raffle_id: str, draw_id: str, now: dt.datetime) -> Optional[Draw]:
        ...
