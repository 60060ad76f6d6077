"""Reserva de boletos: reclamar, verificar y compensar.

El almacenamiento solo garantiza una escritura condicional por boleto
("reclama si está libre o vencido"). La reserva completa se arma así:

1. Se genera una clave de 8 caracteres para la orden.
2. Una sola escritura condicional reclama los números pedidos y devuelve
   los que realmente cambiaron.
3. Si faltó alguno, se liberan solo las filas que todavía llevan *esta*
   clave (nunca una reserva posterior de otro comprador) y se informa el
   faltante.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Iterable, Optional

from rifas.core.errors import (
    InsufficientAvailability,
    InvalidTicketSelection,
    RaffleNotOpen,
    StorageError,
)
from rifas.core.logger import get_logger
from rifas.core.settings import Settings
from rifas.domain import Buyer, RaffleStatus, ReferenceCode, Reservation
from rifas.stores import TicketStore
from rifas.services.raffles import load_raffle
from rifas.services.sampler import RandomSampler
from rifas.services.utils import Clock, TicketRef, format_ticket_summary, parse_numbers, utc_now

logger = get_logger(__name__)

_MAX_CODE_ATTEMPTS = 5


class ReservationCoordinator:

    def __init__(
        self,
        store: TicketStore,
        sampler: RandomSampler,
        cfg: Settings,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.sampler = sampler
        self.cfg = cfg
        self.clock = clock

    def _new_reference(self, raffle_id: str) -> str:
        for _ in range(_MAX_CODE_ATTEMPTS):
            code = ReferenceCode.generate().value
            if not self.store.reference_exists(raffle_id, code):
                return code
        raise StorageError("generate_reference", RuntimeError("no se pudo generar una clave única"))

    def _ttl(self, raffle, ttl_minutes: Optional[int]) -> int:
        if ttl_minutes is not None:
            minutes = ttl_minutes
        else:
            minutes = raffle.reservation_minutes or self.cfg.reservation_minutes
        if minutes < 1:
            raise InvalidTicketSelection("El tiempo de reserva debe ser de al menos 1 minuto")
        return minutes

    def reserve(
        self,
        raffle_id: str,
        tickets: Iterable[TicketRef],
        buyer: Buyer,
        ttl_minutes: Optional[int] = None,
        order_total: Optional[Decimal] = None,
    ) -> Reservation:
        raffle = load_raffle(self.store, raffle_id)
        if raffle.status != RaffleStatus.ACTIVE:
            raise RaffleNotOpen(raffle_id, raffle.status.value)

        numbers = parse_numbers(raffle, tickets)
        if not numbers:
            raise InvalidTicketSelection("Selecciona al menos un boleto")
        if len(numbers) > self.cfg.max_tickets_per_order:
            raise InvalidTicketSelection(
                f"Máximo {self.cfg.max_tickets_per_order:,} boletos por orden",
                requested=len(numbers),
            )

        now = self.clock()
        reserved_until = now + dt.timedelta(minutes=self._ttl(raffle, ttl_minutes))
        reference = self._new_reference(raffle_id)

        claimed = self.store.claim_available(
            raffle,
            numbers,
            reference,
            buyer.normalized(),
            reserved_until,
            order_total,
            now,
        )

        if len(claimed) < len(numbers):
            got = {c.number for c in claimed}
            lost = [raffle.label(n) for n in numbers if n not in got]
            if claimed:
                released = self.store.release_reference(
                    raffle_id, reference, numbers=sorted(got), only_reserved=True
                )
                logger.info(
                    "Rollback de %s: liberados %s/%s boletos propios",
                    reference, released, len(claimed),
                )
            logger.warning(
                "Reserva incompleta en rifa %s: %s de %s (%s no disponibles: %s)",
                raffle_id, len(claimed), len(numbers), len(lost), format_ticket_summary(lost),
            )
            raise InsufficientAvailability(
                requested=len(numbers), missing=len(numbers) - len(claimed), unavailable=lost
            )

        logger.info(
            "Reserva %s en rifa %s: %s boleto(s) hasta %s",
            reference, raffle_id, len(claimed), reserved_until.isoformat(),
        )
        return Reservation(
            reference_code=reference,
            raffle_id=raffle_id,
            reserved_until=reserved_until,
            claims=tuple(sorted(claimed, key=lambda c: c.number)),
        )

    def reserve_random(
        self,
        raffle_id: str,
        count: int,
        buyer: Buyer,
        ttl_minutes: Optional[int] = None,
        order_total: Optional[Decimal] = None,
    ) -> Reservation:
        """Elige al azar y reserva; un reintento si otro comprador ganó algún número."""
        raffle = load_raffle(self.store, raffle_id)
        if raffle.status != RaffleStatus.ACTIVE:
            raise RaffleNotOpen(raffle_id, raffle.status.value)
        try:
            picked = self.sampler.sample_available(raffle_id, count)
            return self.reserve(raffle_id, picked, buyer, ttl_minutes, order_total)
        except InsufficientAvailability as e:
            if not e.unavailable:
                raise
            logger.info("Quick pick en rifa %s perdió %s número(s); reintentando", raffle_id, e.missing)
        picked = self.sampler.sample_available(raffle_id, count)
        return self.reserve(raffle_id, picked, buyer, ttl_minutes, order_total)
