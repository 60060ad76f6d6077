"""Registro de rifas y controles de acceso compartidos por los servicios."""

from __future__ import annotations

import datetime as dt
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Protocol

from rifas.core.errors import (
    EntitlementExceeded,
    InvalidTicketSelection,
    PermissionDenied,
    RaffleNotFound,
)
from rifas.core.logger import get_logger
from rifas.core.settings import Settings
from rifas.domain import Prize, Raffle, RaffleStatus, RequestContext
from rifas.domain.value_objects import parse_iso
from rifas.stores import TicketStore
from rifas.services.utils import Clock, utc_now

logger = get_logger(__name__)

_OPEN_STATUSES = (RaffleStatus.DRAFT, RaffleStatus.ACTIVE, RaffleStatus.PAUSED)


@dataclass(frozen=True)
class PlanLimits:
    max_tickets_per_raffle: int = 0
    max_active_raffles: int = 0


class Entitlements(Protocol):
    """Colaborador externo: qué permite el plan de la organización."""

    def limits_for(self, organization_id: Optional[str]) -> PlanLimits:
        ...


class SettingsEntitlements:
    """Mismos límites para todas las organizaciones, tomados de la config."""

    def __init__(self, cfg: Settings):
        self._limits = PlanLimits(
            max_tickets_per_raffle=cfg.max_tickets_per_raffle,
            max_active_raffles=cfg.max_active_raffles,
        )

    def limits_for(self, organization_id: Optional[str]) -> PlanLimits:
        return self._limits


def ensure_staff(ctx: RequestContext, raffle: Raffle) -> None:
    if not ctx.is_staff:
        raise PermissionDenied("Solo el staff de la organización puede hacer esto")
    if ctx.is_privileged:
        return
    if raffle.organization_id and ctx.organization_id != raffle.organization_id:
        raise PermissionDenied("La rifa pertenece a otra organización")


def load_raffle(store: TicketStore, raffle_id: str) -> Raffle:
    raffle = store.get_raffle(raffle_id) if raffle_id else None
    if raffle is None:
        raise RaffleNotFound(raffle_id)
    return raffle


class RaffleRegistry:

    def __init__(self, store: TicketStore, entitlements: Entitlements, clock: Clock = utc_now):
        self.store = store
        self.entitlements = entitlements
        self.clock = clock

    def get(self, raffle_id: str) -> Raffle:
        return load_raffle(self.store, raffle_id)

    def create_raffle(
        self,
        ctx: RequestContext,
        title: str,
        total_tickets: int,
        ticket_price: Decimal,
        currency: str = "USD",
        prizes: Iterable[Dict[str, Any]] = (),
        ticket_digits: Optional[int] = None,
        reservation_minutes: Optional[int] = None,
        draw_date: Optional[dt.datetime] = None,
        status: RaffleStatus = RaffleStatus.DRAFT,
        raffle_id: Optional[str] = None,
    ) -> Raffle:
        if not ctx.is_staff:
            raise PermissionDenied("Solo el staff puede crear rifas")
        if total_tickets < 1:
            raise InvalidTicketSelection("total_tickets debe ser >= 1")
        if ticket_price < 0:
            raise InvalidTicketSelection("ticket_price no puede ser negativo")

        limits = self.entitlements.limits_for(ctx.organization_id)
        if limits.max_tickets_per_raffle and total_tickets > limits.max_tickets_per_raffle:
            raise EntitlementExceeded(
                f"Tu plan permite hasta {limits.max_tickets_per_raffle:,} boletos por rifa",
                limit=limits.max_tickets_per_raffle,
            )
        if limits.max_active_raffles and ctx.organization_id:
            current = self.store.count_raffles(ctx.organization_id, _OPEN_STATUSES)
            if current >= limits.max_active_raffles:
                raise EntitlementExceeded(
                    f"Tu plan permite hasta {limits.max_active_raffles} rifas abiertas",
                    limit=limits.max_active_raffles,
                )

        raffle = Raffle(
            id=raffle_id or str(uuid.uuid4()),
            organization_id=ctx.organization_id,
            title=title.strip(),
            total_tickets=int(total_tickets),
            ticket_price=Decimal(str(ticket_price)),
            currency=currency,
            status=status,
            prizes=tuple(Prize.from_dict(p) for p in prizes),
            ticket_digits=ticket_digits,
            reservation_minutes=reservation_minutes,
            draw_date=parse_iso(draw_date),
            created_at=self.clock(),
        )
        saved = self.store.save_raffle(raffle)
        logger.info("Rifa creada %s (%s boletos) por org=%s", saved.id, saved.total_tickets, ctx.organization_id)
        return saved

    def set_status(self, ctx: RequestContext, raffle_id: str, status: RaffleStatus) -> Raffle:
        raffle = load_raffle(self.store, raffle_id)
        ensure_staff(ctx, raffle)
        self.store.update_raffle_status(raffle_id, status)
        logger.info("Rifa %s: %s -> %s", raffle_id, raffle.status.value, status.value)
        return load_raffle(self.store, raffle_id)
