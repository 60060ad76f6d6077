"""Selección de ganadores entre boletos vendidos.

Tres métodos: manual (el staff indica el número), lotería externa (los
últimos K dígitos del número publicado) y RNG seguro. En rifas con varios
premios cada sorteo cubre un ``prize_id``; el sorteo principal, o el del
último premio pendiente, cierra la rifa.
"""

from __future__ import annotations

import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

from rifas.core.errors import (
    AmbiguousDraw,
    DrawNotFound,
    InvalidRequest,
    NoEligibleTickets,
    PrizeUnavailable,
    RaffleNotOpen,
)
from rifas.core.logger import get_logger
from rifas.core.settings import Settings
from rifas.domain import Draw, DrawMethod, DrawType, Prize, Raffle, RaffleStatus, RequestContext, SoldClaim
from rifas.domain.rng import secure_choice
from rifas.stores import TicketStore
from rifas.services.notifications import WINNER_SELECTED, Notification, NotificationOutbox
from rifas.services.raffles import ensure_staff, load_raffle
from rifas.services.utils import Clock, TicketRef, parse_numbers, utc_now

logger = get_logger(__name__)

MIN_LOTTERY_DIGITS = 2
MAX_LOTTERY_DIGITS = 5

_DRAWABLE = (RaffleStatus.ACTIVE, RaffleStatus.PAUSED)


def lottery_suffix(draw_number: str, digits: int) -> str:
    only_digits = re.sub(r"\D", "", str(draw_number or ""))
    if not only_digits:
        raise InvalidRequest("El número de lotería debe contener dígitos")
    return only_digits.zfill(digits)[-digits:]


def ends_with(label: str, suffix: str) -> bool:
    return label.zfill(len(suffix))[-len(suffix):] == suffix


class DrawSelector:

    def __init__(
        self,
        store: TicketStore,
        outbox: NotificationOutbox,
        cfg: Settings,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.outbox = outbox
        self.cfg = cfg
        self.clock = clock

    # ---------- Lectura ----------
    def list_draws(self, raffle_id: str) -> List[Draw]:
        load_raffle(self.store, raffle_id)
        return self.store.list_draws(raffle_id)

    def _remaining(self, raffle: Raffle) -> List[Prize]:
        drawn = {d.prize_id for d in self.store.list_draws(raffle.id)}
        return [p for p in raffle.effective_prizes() if p.id not in drawn]

    def remaining_prizes(self, raffle_id: str) -> List[Prize]:
        return self._remaining(load_raffle(self.store, raffle_id))

    def _eligible(self, raffle: Raffle) -> List[SoldClaim]:
        winners = {d.number for d in self.store.list_draws(raffle.id)}
        return [c for c in self.store.sold_claims(raffle.id) if c.number not in winners]

    def _digits(self, digits: Optional[int]) -> int:
        k = int(digits or self.cfg.lottery_digits)
        if not MIN_LOTTERY_DIGITS <= k <= MAX_LOTTERY_DIGITS:
            raise InvalidRequest(
                f"Los dígitos de lotería deben estar entre {MIN_LOTTERY_DIGITS} y {MAX_LOTTERY_DIGITS}"
            )
        return k

    def lottery_matches(
        self, raffle_id: str, draw_number: str, digits: Optional[int] = None
    ) -> Tuple[str, List[str]]:
        """Boletos vendidos (aún sin premio) cuyo número termina en el sufijo."""
        raffle = load_raffle(self.store, raffle_id)
        suffix = lottery_suffix(draw_number, self._digits(digits))
        return suffix, [c.ticket_number for c in self._eligible(raffle) if ends_with(c.ticket_number, suffix)]

    # ---------- Sorteo ----------
    def select_winner(
        self,
        ctx: RequestContext,
        raffle_id: str,
        method: DrawMethod,
        prize_id: Optional[str] = None,
        draw_type: DrawType = DrawType.MAIN_DRAW,
        ticket: Optional[TicketRef] = None,
        lottery_number: Optional[str] = None,
        digits: Optional[int] = None,
    ) -> Draw:
        raffle = load_raffle(self.store, raffle_id)
        ensure_staff(ctx, raffle)
        if raffle.status not in _DRAWABLE:
            raise RaffleNotOpen(raffle_id, raffle.status.value)

        remaining = self._remaining(raffle)
        if not remaining:
            raise PrizeUnavailable("Todos los premios de esta rifa ya fueron sorteados")
        if prize_id:
            prize = next((p for p in remaining if p.id == prize_id), None)
            if prize is None:
                raise PrizeUnavailable(f"El premio {prize_id} no existe o ya fue sorteado", prize_id=prize_id)
        else:
            prize = remaining[0]

        eligible = self._eligible(raffle)
        if not eligible:
            raise NoEligibleTickets("No hay boletos vendidos elegibles para el sorteo")
        by_number = {c.number: c for c in eligible}
        metadata: Dict[str, Any] = {"eligible_count": len(eligible)}

        if method == DrawMethod.MANUAL:
            if ticket is None:
                raise InvalidRequest("Indica el número ganador")
            (number,) = parse_numbers(raffle, [ticket])
            winner = by_number.get(number)
            if winner is None:
                raise NoEligibleTickets(
                    f"El boleto {raffle.label(number)} no está vendido o ya ganó otro premio",
                    ticket_number=raffle.label(number),
                )
        elif method == DrawMethod.LOTTERY:
            if not lottery_number:
                raise InvalidRequest("Falta el número publicado por la lotería")
            k = self._digits(digits)
            suffix = lottery_suffix(lottery_number, k)
            matches = [c for c in eligible if ends_with(c.ticket_number, suffix)]
            if not matches:
                raise NoEligibleTickets(
                    f"Ningún boleto vendido termina en {suffix}", suffix=suffix
                )
            if len(matches) == 1:
                winner = matches[0]
            else:
                picked = parse_numbers(raffle, [ticket])[0] if ticket is not None else None
                winner = next((c for c in matches if c.number == picked), None)
                if winner is None:
                    raise AmbiguousDraw(suffix, [c.ticket_number for c in matches])
            metadata.update(lottery_number=str(lottery_number), digits=k, suffix=suffix, matches=len(matches))
        else:
            winner = secure_choice(eligible)
            metadata.update(source="secrets")

        draw = self.store.add_draw(Draw(
            id=str(uuid.uuid4()),
            raffle_id=raffle.id,
            prize_id=prize.id,
            prize_name=prize.name,
            number=winner.number,
            ticket_number=winner.ticket_number,
            winner=winner.buyer,
            draw_method=method,
            draw_type=draw_type,
            drawn_at=self.clock(),
            metadata=metadata,
        ))
        logger.info(
            "Sorteo %s en rifa %s: premio '%s' -> boleto %s (%s)",
            draw_type.value, raffle.id, prize.name, winner.ticket_number, method.value,
        )

        if draw_type == DrawType.MAIN_DRAW or len(remaining) == 1:
            self.store.update_raffle_status(raffle.id, RaffleStatus.COMPLETED)
            logger.info("Rifa %s completada", raffle.id)

        self.outbox.emit(Notification(
            kind=WINNER_SELECTED,
            raffle_id=raffle.id,
            recipient=winner.buyer.email,
            reference_code=winner.payment_reference,
            data={
                "raffle_title": raffle.title,
                "prize_name": prize.name,
                "ticket_number": winner.ticket_number,
                "winner_name": winner.buyer.name,
                "draw_type": draw_type.value,
            },
        ))
        return draw

    # ---------- Administración de sorteos ----------
    def delete_draw(self, ctx: RequestContext, raffle_id: str, draw_id: str) -> None:
        raffle = load_raffle(self.store, raffle_id)
        ensure_staff(ctx, raffle)
        draw = self.store.get_draw(raffle_id, draw_id)
        if draw is None or not self.store.delete_draw(raffle_id, draw_id):
            raise DrawNotFound(draw_id)
        logger.info("Sorteo %s (%s, boleto %s) eliminado en rifa %s",
                    draw_id, draw.prize_name, draw.ticket_number, raffle_id)
        if raffle.status == RaffleStatus.COMPLETED:
            # el premio vuelve a quedar pendiente
            self.store.update_raffle_status(raffle_id, RaffleStatus.ACTIVE)

    def announce(self, ctx: RequestContext, raffle_id: str, draw_id: str) -> Draw:
        raffle = load_raffle(self.store, raffle_id)
        ensure_staff(ctx, raffle)
        draw = self.store.mark_announced(raffle_id, draw_id, self.clock())
        if draw is None:
            raise DrawNotFound(draw_id)
        return draw
