from rifas.domain.models import (
    Buyer,
    CanceledClaim,
    ClaimCounts,
    Draw,
    DrawMethod,
    DrawType,
    Prize,
    Raffle,
    RaffleStatus,
    RequestContext,
    Reservation,
    ReservedClaim,
    Role,
    SoldClaim,
    TicketClaim,
    TicketCounts,
    TicketStatus,
    TicketView,
)
from rifas.domain.value_objects import ReferenceCode

__all__ = [
    "Buyer",
    "CanceledClaim",
    "ClaimCounts",
    "Draw",
    "DrawMethod",
    "DrawType",
    "Prize",
    "Raffle",
    "RaffleStatus",
    "ReferenceCode",
    "RequestContext",
    "Reservation",
    "ReservedClaim",
    "Role",
    "SoldClaim",
    "TicketClaim",
    "TicketCounts",
    "TicketStatus",
    "TicketView",
]
