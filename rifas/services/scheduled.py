"""Tareas periódicas que corren junto al barrido de reservas.

- Recordatorio de pago a quien tiene una reserva sin comprobante que vence
  pronto.
- Aviso diario al organizador con los comprobantes que esperan aprobación.
- Sorteo automático de los premios cuya fecha programada ya pasó.
"""

from __future__ import annotations

import datetime as dt
from typing import Dict, List, Set, Tuple

from rifas.core.errors import NoEligibleTickets, RaffleError
from rifas.core.logger import get_logger
from rifas.core.settings import Settings
from rifas.domain import Draw, DrawMethod, DrawType, Raffle, RaffleStatus, RequestContext, ReservedClaim
from rifas.domain.value_objects import to_iso
from rifas.stores import TicketStore
from rifas.services.draws import DrawSelector
from rifas.services.notifications import PAYMENT_REMINDER, PENDING_APPROVALS, Notification, NotificationOutbox
from rifas.services.utils import Clock, utc_now

logger = get_logger(__name__)


def _by_order(claims: List[ReservedClaim]) -> Dict[Tuple[str, str], List[ReservedClaim]]:
    orders: Dict[Tuple[str, str], List[ReservedClaim]] = {}
    for c in claims:
        if c.payment_reference:
            orders.setdefault((c.raffle_id, c.payment_reference), []).append(c)
    return orders


class PaymentReminders:
    """Un recordatorio por orden y plazo; si el staff extiende la reserva se puede volver a avisar."""

    def __init__(self, store: TicketStore, outbox: NotificationOutbox, cfg: Settings, clock: Clock = utc_now):
        self.store = store
        self.outbox = outbox
        self.cfg = cfg
        self.clock = clock
        self._sent: Set[Tuple[str, str, dt.datetime]] = set()

    def run(self) -> int:
        if self.cfg.reminder_minutes <= 0:
            return 0
        now = self.clock()
        # olvidar plazos que ya pasaron
        self._sent = {k for k in self._sent if k[2] > now}

        claims = self.store.expiring_reservations(now, now + dt.timedelta(minutes=self.cfg.reminder_minutes))
        raffles: Dict[str, Raffle] = {}
        sent = 0
        for (raffle_id, reference), group in _by_order(claims).items():
            buyer = group[0].buyer
            if not buyer.email and not buyer.phone:
                continue
            deadline = min(c.reserved_until for c in group)
            key = (raffle_id, reference, deadline)
            if key in self._sent:
                continue
            raffle = raffles.get(raffle_id) or self.store.get_raffle(raffle_id)
            if raffle is None:
                continue
            raffles[raffle_id] = raffle

            self.outbox.emit(Notification(
                kind=PAYMENT_REMINDER,
                raffle_id=raffle_id,
                recipient=buyer.email,
                reference_code=reference,
                data={
                    "raffle_title": raffle.title,
                    "buyer_name": buyer.name,
                    "buyer_phone": buyer.phone,
                    "ticket_numbers": [c.ticket_number for c in group],
                    "reserved_until": to_iso(deadline),
                    "minutes_remaining": max(int((deadline - now).total_seconds() // 60), 0),
                },
            ))
            self._sent.add(key)
            sent += 1
        if sent:
            logger.info("Recordatorios de pago enviados: %s", sent)
        return sent


class PendingApprovalDigest:
    """Resumen por organización, como máximo uno por día."""

    def __init__(self, store: TicketStore, outbox: NotificationOutbox, cfg: Settings, clock: Clock = utc_now):
        self.store = store
        self.outbox = outbox
        self.cfg = cfg
        self.clock = clock
        self._last_sent: Dict[str, dt.date] = {}

    def run(self) -> int:
        if not self.cfg.notify_pending_approvals:
            return 0
        now = self.clock()
        per_raffle: Dict[str, List[ReservedClaim]] = {}
        for c in self.store.pending_approval_claims(now):
            per_raffle.setdefault(c.raffle_id, []).append(c)

        per_org: Dict[str, List[dict]] = {}
        for raffle_id, group in per_raffle.items():
            raffle = self.store.get_raffle(raffle_id)
            if raffle is None or not raffle.organization_id:
                continue
            oldest = min(c.reserved_at for c in group)
            per_org.setdefault(raffle.organization_id, []).append({
                "raffle_id": raffle.id,
                "raffle_title": raffle.title,
                "pending_count": len({c.payment_reference for c in group}),
                "ticket_count": len(group),
                "waiting_hours": round((now - oldest).total_seconds() / 3600, 1),
            })

        today = now.date()
        sent = 0
        for org_id, entries in per_org.items():
            if self._last_sent.get(org_id) == today:
                continue
            total = sum(e["pending_count"] for e in entries)
            titles = ", ".join(e["raffle_title"] for e in entries)
            self.outbox.emit(Notification(
                kind=PENDING_APPROVALS,
                raffle_id=entries[0]["raffle_id"],
                data={
                    "organization_id": org_id,
                    "pending_count": total,
                    "raffles": entries,
                    "message": f"Tienes {total} comprobante(s) de pago pendiente(s) por aprobar en {titles}",
                },
            ))
            self._last_sent[org_id] = today
            sent += 1
        if sent:
            logger.info("Avisos de comprobantes pendientes enviados a %s organización(es)", sent)
        return sent


class AutoDrawer:
    """Sortea con RNG los premios vencidos de las rifas activas."""

    def __init__(self, store: TicketStore, draws: DrawSelector, cfg: Settings, clock: Clock = utc_now):
        self.store = store
        self.draws = draws
        self.cfg = cfg
        self.clock = clock

    def run(self) -> List[Draw]:
        if not self.cfg.auto_draw:
            return []
        now = self.clock()
        done: List[Draw] = []
        for raffle in self.store.list_raffles([RaffleStatus.ACTIVE]):
            try:
                done.extend(self._draw_due(raffle, now))
            except RaffleError as e:
                logger.warning("Sorteo automático de rifa %s falló: %s", raffle.id, e)
        return done

    def _draw_due(self, raffle: Raffle, now: dt.datetime) -> List[Draw]:
        remaining = self.draws.remaining_prizes(raffle.id)
        due = [p for p in remaining if p.scheduled_draw_date and p.scheduled_draw_date <= now]
        done: List[Draw] = []
        for i, prize in enumerate(due):
            last = len(remaining) - i == 1
            try:
                draw = self.draws.select_winner(
                    RequestContext.system(),
                    raffle.id,
                    DrawMethod.RANDOM,
                    prize_id=prize.id,
                    draw_type=DrawType.MAIN_DRAW if last else DrawType.PRE_DRAW,
                )
            except NoEligibleTickets:
                if last:
                    self.store.update_raffle_status(raffle.id, RaffleStatus.COMPLETED)
                    logger.warning("Rifa %s cerrada sin ganador: no hay boletos vendidos", raffle.id)
                else:
                    logger.warning("Premio '%s' de rifa %s sin boletos elegibles", prize.name, raffle.id)
                break
            logger.info("Sorteo automático en rifa %s: '%s' -> boleto %s", raffle.id, prize.name, draw.ticket_number)
            done.append(draw)
        return done
