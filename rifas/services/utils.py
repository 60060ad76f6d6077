import datetime as dt
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable, List, Sequence, Union

from rifas.core.errors import InvalidTicketSelection
from rifas.domain import Raffle
from rifas.domain.value_objects import parse_ticket_number, utc_now

Clock = Callable[[], dt.datetime]
TicketRef = Union[int, str]

__all__ = ["Clock", "TicketRef", "utc_now", "mask_email", "round2", "parse_numbers", "format_ticket_summary"]


def mask_email(email: str) -> str:
    if not email or "@" not in email:
        return email
    user, dom = email.split("@", 1)

    def _mask(s: str) -> str:
        if len(s) <= 2:
            return s[:1] + "*"
        return s[:2] + "***"

    dom_parts = dom.split(".")
    dom_parts[0] = _mask(dom_parts[0])
    return f"{_mask(user)}@{'.'.join(dom_parts)}"


def round2(x: float | Decimal) -> Decimal:
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def parse_numbers(raffle: Raffle, refs: Iterable[TicketRef]) -> List[int]:
    """Convierte números o etiquetas ("0042") a enteros únicos y ordenados.

    Falla si alguno no se puede leer o cae fuera de ``[1, total_tickets]``.
    """
    numbers = set()
    bad: List[str] = []
    for ref in refs:
        try:
            n = ref if isinstance(ref, int) else parse_ticket_number(ref)
        except ValueError:
            bad.append(str(ref))
            continue
        if not raffle.contains(n):
            bad.append(str(ref))
            continue
        numbers.add(n)
    if bad:
        raise InvalidTicketSelection(
            f"Números de boleto inválidos para esta rifa: {', '.join(bad[:10])}",
            invalid=bad,
        )
    return sorted(numbers)


def format_ticket_summary(ticket_numbers: Sequence[str], max_display: int = 10) -> str:
    """"001, 002, 003 y 97 más" sin unir listas enormes."""
    if not ticket_numbers:
        return ""
    if len(ticket_numbers) <= max_display:
        return ", ".join(ticket_numbers)
    shown = ", ".join(ticket_numbers[:max_display])
    return f"{shown} y {len(ticket_numbers) - max_display:,} más"
