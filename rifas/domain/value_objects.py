"""Domain primitives that enforce validity at creation time."""

from __future__ import annotations

import datetime as dt
import re
import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional, Self

# Sin 0/O ni 1/I para que la clave se pueda dictar por teléfono.
REFERENCE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
REFERENCE_LENGTH = 8
REFERENCE_PATTERN = re.compile(r"^[A-Z0-9]{8}$")


@dataclass(frozen=True)
class ReferenceCode:
    """8-character order key shared by every claim of one reservation."""

    value: str

    def __post_init__(self) -> None:
        if not REFERENCE_PATTERN.match(self.value):
            raise ValueError("Reference code must be 8 uppercase alphanumeric characters")

    @classmethod
    def generate(cls) -> Self:
        return cls("".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(REFERENCE_LENGTH)))

    @classmethod
    def normalize(cls, raw: Optional[str]) -> Optional[str]:
        """Strip and uppercase user input; ``None`` when nothing usable was sent."""
        if raw is None:
            return None
        cleaned = str(raw).strip().upper()
        return cleaned or None

    def __str__(self) -> str:
        return self.value


def label_width(total_tickets: int, digits: Optional[int] = None) -> int:
    return max(int(digits or 0), len(str(total_tickets)), 1)


def format_ticket_number(number: int, width: int) -> str:
    return str(number).zfill(width)


def parse_ticket_number(label: str) -> int:
    """Accepts ``"0042"``, ``"42"`` or a prefixed label such as ``"A-0042"``."""
    match = re.search(r"(\d+)$", str(label).strip())
    if not match:
        raise ValueError(f"Invalid ticket number: {label!r}")
    return int(match.group(1))


# ---------- Tiempo (ISO-8601 con 'Z', como lo espera PostgREST) ----------
def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def to_iso(value: Optional[dt.datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def parse_iso(value: Any) -> Optional[dt.datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, dt.datetime):
        parsed = value
    else:
        parsed = dt.datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def parse_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))
