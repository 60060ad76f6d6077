"""Asociación de comprobantes de pago a una reserva por su clave.

Solo se acepta la clave de 8 caracteres: un correo o un nombre pueden
corresponder a varias órdenes del mismo comprador. Corre con privilegios de
sistema porque actualiza filas que el comprador no puede escribir.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from rifas.core.errors import AssociationFailure, InvalidRequest, MissingReferenceCode
from rifas.core.logger import get_logger
from rifas.domain import ReferenceCode, ReservedClaim, SoldClaim
from rifas.stores import TicketStore
from rifas.services.notifications import PROOF_SUBMITTED, Notification, NotificationOutbox
from rifas.services.raffles import load_raffle
from rifas.services.utils import Clock, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProofResult:
    reference_code: str
    updated: int
    replaced_previous: bool


class PaymentProofAssociator:

    def __init__(self, store: TicketStore, outbox: NotificationOutbox, clock: Clock = utc_now):
        self.store = store
        self.outbox = outbox
        self.clock = clock

    def submit_proof(
        self,
        raffle_id: str,
        reference_code: Optional[str],
        proof_url: str,
        buyer_email: Optional[str] = None,
    ) -> ProofResult:
        reference = ReferenceCode.normalize(reference_code)
        if not reference:
            raise MissingReferenceCode()
        if not (proof_url or "").strip():
            raise InvalidRequest("Falta la URL del comprobante")
        raffle = load_raffle(self.store, raffle_id)
        now = self.clock()

        claims = self.store.claims_by_reference(raffle_id, reference)
        live = [c for c in claims if isinstance(c, ReservedClaim) and not c.is_expired(now)]
        if not live:
            if claims and all(isinstance(c, SoldClaim) for c in claims):
                raise AssociationFailure(
                    reference,
                    f"La orden {reference} ya fue aprobada; no hace falta otro comprobante.",
                )
            logger.warning("Comprobante sin reserva vigente: rifa=%s ref=%s", raffle_id, reference)
            raise AssociationFailure(reference)

        email = (buyer_email or "").strip().lower()
        if email and any(c.buyer.email and c.buyer.email != email for c in live):
            logger.warning("Comprobante de %s con correo distinto al de la reserva (%s)", reference, email)

        replaced = any(c.payment_proof_url for c in live)
        updated = self.store.attach_proof(raffle_id, reference, proof_url.strip(), now)
        if not updated:
            # venció entre la lectura y la escritura
            raise AssociationFailure(reference)

        logger.info(
            "Comprobante asociado a %s (%s boleto(s))%s",
            reference, len(updated), " reemplazando el anterior" if replaced else "",
        )
        self.outbox.emit(Notification(
            kind=PROOF_SUBMITTED,
            raffle_id=raffle.id,
            reference_code=reference,
            recipient=raffle.organization_id,
            data={
                "raffle_title": raffle.title,
                "ticket_numbers": [c.ticket_number for c in updated],
                "buyer_name": updated[0].buyer.name,
                "proof_url": proof_url.strip(),
            },
        ))
        return ProofResult(reference_code=reference, updated=len(updated), replaced_previous=replaced)
