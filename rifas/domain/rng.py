"""Cryptographically secure helpers for ticket sampling and winner draws."""

from __future__ import annotations

import secrets
from typing import List, Sequence, TypeVar

T = TypeVar("T")


def secure_shuffle(items: Sequence[T]) -> List[T]:
    """Fisher-Yates over a copy of ``items`` driven by ``secrets``."""
    shuffled = list(items)
    for i in range(len(shuffled) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
    return shuffled


def secure_sample(items: Sequence[T], k: int) -> List[T]:
    if k > len(items):
        raise ValueError("Sample larger than population")
    return secure_shuffle(items)[:k]


def secure_choice(items: Sequence[T]) -> T:
    if not items:
        raise IndexError("Cannot choose from an empty sequence")
    return items[secrets.randbelow(len(items))]
