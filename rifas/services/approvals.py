"""Aprobación y rechazo de órdenes por clave de reserva.

Todas las filas de una orden cambian juntas en una sola escritura filtrada
por ``payment_reference``. La notificación al comprador sale por la cola
después de confirmar el cambio; si falla, el cambio se queda.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from rifas.core.errors import (
    AssociationFailure,
    ConcurrentApprovalConflict,
    InvalidRequest,
    MissingReferenceCode,
    RaffleError,
)
from rifas.core.logger import get_logger
from rifas.domain import (
    CanceledClaim,
    Raffle,
    ReferenceCode,
    RequestContext,
    ReservedClaim,
    SoldClaim,
    TicketClaim,
)
from rifas.stores import TicketStore
from rifas.services.notifications import (
    ORDER_CANCELED,
    PAYMENT_APPROVED,
    PAYMENT_REJECTED,
    Notification,
    NotificationOutbox,
)
from rifas.services.raffles import ensure_staff, load_raffle
from rifas.services.utils import Clock, utc_now

logger = get_logger(__name__)

APPROVED = "approved"
ALREADY_SOLD = "already_sold"
REJECTED = "rejected"
CANCELED = "canceled"
ALREADY_CANCELED = "already_canceled"
EXTENDED = "extended"
CONFLICT = "conflict"

DEFAULT_EXTEND_MINUTES = 30


@dataclass(frozen=True)
class OrderResult:
    reference_code: str
    outcome: str
    ticket_numbers: Tuple[str, ...] = ()
    reserved_until: Optional[dt.datetime] = None
    message: Optional[str] = None


@dataclass
class BulkResult:
    results: List[OrderResult] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> int:
        return len(self.errors)


def _require_reference(raw: Optional[str]) -> str:
    reference = ReferenceCode.normalize(raw)
    if not reference:
        raise MissingReferenceCode()
    return reference


def _labels(claims: Iterable[TicketClaim]) -> Tuple[str, ...]:
    return tuple(c.ticket_number for c in sorted(claims, key=lambda c: c.number))


class ApprovalStateMachine:
    """reserved -> sold | available; sold -> available (reembolso)."""

    def __init__(self, store: TicketStore, outbox: NotificationOutbox, clock: Clock = utc_now):
        self.store = store
        self.outbox = outbox
        self.clock = clock

    def _staff_raffle(self, ctx: RequestContext, raffle_id: str) -> Raffle:
        raffle = load_raffle(self.store, raffle_id)
        ensure_staff(ctx, raffle)
        return raffle

    def _notify(self, kind: str, raffle: Raffle, reference: str, claims: List[TicketClaim], **data) -> None:
        if not claims:
            return
        buyer = claims[0].buyer
        self.outbox.emit(Notification(
            kind=kind,
            raffle_id=raffle.id,
            reference_code=reference,
            recipient=buyer.email,
            data={
                "raffle_title": raffle.title,
                "buyer_name": buyer.name,
                "ticket_numbers": list(_labels(claims)),
                **data,
            },
        ))

    # ---------- Aprobar ----------
    def approve(self, ctx: RequestContext, raffle_id: str, reference_code: str) -> OrderResult:
        raffle = self._staff_raffle(ctx, raffle_id)
        reference = _require_reference(reference_code)
        now = self.clock()

        rows = self.store.claims_by_reference(raffle_id, reference)
        if not rows:
            raise AssociationFailure(reference)
        pending = [c for c in rows if isinstance(c, ReservedClaim)]
        if not pending and all(isinstance(c, SoldClaim) for c in rows):
            # doble aprobación: sin cambios
            return OrderResult(reference, ALREADY_SOLD, _labels(rows))
        if not pending or any(isinstance(c, CanceledClaim) for c in rows):
            statuses = [c.status.value for c in rows]
            return self._conflict(reference, rows, ConcurrentApprovalConflict(reference, statuses))

        size = max((c.order_size or 0) for c in rows)
        if len(rows) < size:
            return self._conflict(reference, rows, ConcurrentApprovalConflict(
                reference,
                ["superseded"],
                message=(
                    f"La orden {reference} conserva {len(rows)} de {size} boletos; "
                    "el resto pasó a otro comprador"
                ),
            ))
        if any(c.is_expired(now) for c in pending):
            return self._conflict(reference, rows, ConcurrentApprovalConflict(
                reference,
                ["expired"],
                message=f"La reserva {reference} venció; extiéndela antes de aprobar el pago",
            ))

        moved = self.store.mark_sold(raffle_id, reference, now)
        if len(moved) < len(pending):
            # venció entre la lectura y la escritura; extender y aprobar de nuevo vende el resto
            current = self.store.claims_by_reference(raffle_id, reference)
            return self._conflict(reference, current, ConcurrentApprovalConflict(
                reference, [c.status.value for c in current]
            ))
        logger.info("Orden %s aprobada por %s: %s boleto(s) vendidos", reference, ctx.actor_id, len(moved))
        self._notify(PAYMENT_APPROVED, raffle, reference, moved)
        return OrderResult(reference, APPROVED, _labels(moved))

    def _conflict(
        self, reference: str, rows: List[TicketClaim], conflict: ConcurrentApprovalConflict
    ) -> OrderResult:
        logger.warning("%s", conflict)
        return OrderResult(reference, CONFLICT, _labels(rows), message=conflict.message)

    # ---------- Rechazar (también reembolso de vendidos) ----------
    def reject(
        self,
        ctx: RequestContext,
        raffle_id: str,
        reference_code: str,
        reason: Optional[str] = None,
    ) -> OrderResult:
        raffle = self._staff_raffle(ctx, raffle_id)
        reference = _require_reference(reference_code)

        rows = self.store.claims_by_reference(raffle_id, reference)
        if not rows:
            raise AssociationFailure(reference)
        released = self.store.release_reference(raffle_id, reference, only_reserved=False)
        logger.info(
            "Orden %s rechazada por %s: %s boleto(s) liberados. Motivo: %s",
            reference, ctx.actor_id, released, reason or "-",
        )
        live = [c for c in rows if not isinstance(c, CanceledClaim)]
        self._notify(PAYMENT_REJECTED, raffle, reference, live, reason=reason)
        return OrderResult(reference, REJECTED, _labels(rows), message=reason)

    # ---------- Cancelar con registro ----------
    def cancel(
        self,
        ctx: RequestContext,
        raffle_id: str,
        reference_code: str,
        reason: Optional[str] = None,
    ) -> OrderResult:
        raffle = self._staff_raffle(ctx, raffle_id)
        reference = _require_reference(reference_code)

        moved = self.store.mark_canceled(raffle_id, reference, self.clock(), reason)
        if not moved:
            rows = self.store.claims_by_reference(raffle_id, reference)
            if not rows:
                raise AssociationFailure(reference)
            return OrderResult(reference, ALREADY_CANCELED, _labels(rows), message=reason)

        logger.info("Orden %s cancelada por %s (%s boleto(s))", reference, ctx.actor_id, len(moved))
        self._notify(ORDER_CANCELED, raffle, reference, moved, reason=reason)
        return OrderResult(reference, CANCELED, _labels(moved), message=reason)

    # ---------- Extender reserva ----------
    def extend(
        self,
        ctx: RequestContext,
        raffle_id: str,
        reference_code: str,
        minutes: int = DEFAULT_EXTEND_MINUTES,
    ) -> OrderResult:
        self._staff_raffle(ctx, raffle_id)
        reference = _require_reference(reference_code)
        if minutes < 1:
            raise InvalidRequest("Los minutos deben ser >= 1")

        reserved_until = self.clock() + dt.timedelta(minutes=minutes)
        updated = self.store.extend_reservation(raffle_id, reference, reserved_until)
        if not updated:
            raise AssociationFailure(reference)
        logger.info("Reserva %s extendida hasta %s", reference, reserved_until.isoformat())
        return OrderResult(reference, EXTENDED, _labels(updated), reserved_until=reserved_until)

    # ---------- Masivos: una orden a la vez, sin atomicidad entre órdenes ----------
    def _bulk(self, op, references: Iterable[str]) -> BulkResult:
        out = BulkResult()
        seen = set()
        for raw in references:
            reference = ReferenceCode.normalize(raw)
            if reference in seen:
                continue
            seen.add(reference)
            try:
                out.results.append(op(reference))
            except RaffleError as e:
                logger.warning("Operación masiva: %s falló (%s)", raw, e)
                out.errors.append({"reference_code": reference or raw, **e.to_dict()})
        return out

    def bulk_approve(self, ctx: RequestContext, raffle_id: str, references: Iterable[str]) -> BulkResult:
        self._staff_raffle(ctx, raffle_id)
        return self._bulk(lambda ref: self.approve(ctx, raffle_id, ref), references)

    def bulk_reject(
        self,
        ctx: RequestContext,
        raffle_id: str,
        references: Iterable[str],
        reason: Optional[str] = None,
    ) -> BulkResult:
        self._staff_raffle(ctx, raffle_id)
        return self._bulk(lambda ref: self.reject(ctx, raffle_id, ref, reason), references)
