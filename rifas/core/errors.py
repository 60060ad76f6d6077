"""Códigos de error del motor de rifas.

Cada error lleva un ``code`` estable (lo usa la API para elegir el status
HTTP) y un ``message`` apto para mostrar al comprador o al staff.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, Optional


class ErrorCode(Enum):
    INSUFFICIENT_AVAILABILITY = "INSUFFICIENT_AVAILABILITY"
    MISSING_REFERENCE_CODE = "MISSING_REFERENCE_CODE"
    ASSOCIATION_FAILURE = "ASSOCIATION_FAILURE"
    CONCURRENT_APPROVAL_CONFLICT = "CONCURRENT_APPROVAL_CONFLICT"
    RAFFLE_NOT_FOUND = "RAFFLE_NOT_FOUND"
    RAFFLE_NOT_OPEN = "RAFFLE_NOT_OPEN"
    INVALID_TICKET_SELECTION = "INVALID_TICKET_SELECTION"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    ENTITLEMENT_EXCEEDED = "ENTITLEMENT_EXCEEDED"
    NO_ELIGIBLE_TICKETS = "NO_ELIGIBLE_TICKETS"
    AMBIGUOUS_DRAW = "AMBIGUOUS_DRAW"
    PRIZE_UNAVAILABLE = "PRIZE_UNAVAILABLE"
    DRAW_NOT_FOUND = "DRAW_NOT_FOUND"
    STORAGE_ERROR = "STORAGE_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INVALID_REQUEST = "INVALID_REQUEST"


class RaffleError(Exception):
    """Error base con código y mensaje seguro para el usuario."""

    code: ErrorCode = ErrorCode.STORAGE_ERROR

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message, **self.details}

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InsufficientAvailability(RaffleError):
    """No se pudo cubrir la cantidad pedida (reserva o selección al azar)."""

    code = ErrorCode.INSUFFICIENT_AVAILABILITY

    def __init__(self, requested: int, missing: int, unavailable: Iterable[str] = ()) -> None:
        unavailable = sorted(unavailable)
        message = f"{missing} boleto(s) ya no estaban disponibles. Selecciona otros boletos."
        if unavailable:
            shown = ", ".join(unavailable[:10])
            if len(unavailable) > 10:
                shown += f" y {len(unavailable) - 10} más"
            message = f"{message} No disponibles: {shown}."
        super().__init__(message, requested=requested, missing=missing, unavailable=unavailable)
        self.requested = requested
        self.missing = missing
        self.unavailable = unavailable


class MissingReferenceCode(RaffleError):
    code = ErrorCode.MISSING_REFERENCE_CODE

    def __init__(self) -> None:
        super().__init__("Se requiere la clave de reserva para asociar el comprobante.")


class AssociationFailure(RaffleError):
    """La clave no corresponde a ninguna reserva vigente."""

    code = ErrorCode.ASSOCIATION_FAILURE

    def __init__(self, reference_code: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or (
                f"No se encontró una reserva vigente con la clave {reference_code}. "
                "Contacta al organizador indicando esta clave."
            ),
            reference_code=reference_code,
        )
        self.reference_code = reference_code


class ConcurrentApprovalConflict(RaffleError):
    code = ErrorCode.CONCURRENT_APPROVAL_CONFLICT

    def __init__(
        self, reference_code: str, statuses: Iterable[str] = (), message: Optional[str] = None
    ) -> None:
        statuses = sorted(set(statuses))
        super().__init__(
            message
            or f"La orden {reference_code} cambió mientras se procesaba ({', '.join(statuses) or 'sin filas'}).",
            reference_code=reference_code,
            statuses=statuses,
        )
        self.reference_code = reference_code


class RaffleNotFound(RaffleError):
    code = ErrorCode.RAFFLE_NOT_FOUND

    def __init__(self, raffle_id: str) -> None:
        super().__init__("Rifa no encontrada", raffle_id=raffle_id)
        self.raffle_id = raffle_id


class RaffleNotOpen(RaffleError):
    code = ErrorCode.RAFFLE_NOT_OPEN

    def __init__(self, raffle_id: str, status: str) -> None:
        super().__init__(f"La rifa no admite esta operación en estado '{status}'", raffle_id=raffle_id, status=status)


class InvalidTicketSelection(RaffleError):
    code = ErrorCode.INVALID_TICKET_SELECTION


class PermissionDenied(RaffleError):
    code = ErrorCode.PERMISSION_DENIED


class EntitlementExceeded(RaffleError):
    code = ErrorCode.ENTITLEMENT_EXCEEDED


class NoEligibleTickets(RaffleError):
    code = ErrorCode.NO_ELIGIBLE_TICKETS


class AmbiguousDraw(RaffleError):
    """Varios boletos vendidos coinciden con el número de lotería; el staff elige."""

    code = ErrorCode.AMBIGUOUS_DRAW

    def __init__(self, suffix: str, matches: Iterable[str]) -> None:
        matches = sorted(matches)
        super().__init__(
            f"{len(matches)} boletos terminan en {suffix}; indica cuál es el ganador.",
            suffix=suffix,
            matches=matches,
        )
        self.matches = matches


class PrizeUnavailable(RaffleError):
    code = ErrorCode.PRIZE_UNAVAILABLE


class DrawNotFound(RaffleError):
    code = ErrorCode.DRAW_NOT_FOUND

    def __init__(self, draw_id: str) -> None:
        super().__init__("Sorteo no encontrado", draw_id=draw_id)


class StorageError(RaffleError):
    code = ErrorCode.STORAGE_ERROR

    def __init__(self, operation: str, cause: Exception) -> None:
        super().__init__(f"Fallo de almacenamiento en {operation}: {cause}", operation=operation)
        self.operation = operation


class ConfigurationError(RaffleError):
    code = ErrorCode.CONFIGURATION_ERROR


class InvalidRequest(RaffleError):
    code = ErrorCode.INVALID_REQUEST
