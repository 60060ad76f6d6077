"""Selección aleatoria segura de boletos disponibles ("quick pick")."""

from __future__ import annotations

from typing import Iterable, List

from rifas.core.errors import InsufficientAvailability, InvalidTicketSelection
from rifas.core.logger import get_logger
from rifas.core.settings import Settings
from rifas.domain.rng import secure_sample
from rifas.stores import TicketStore
from rifas.services.raffles import load_raffle
from rifas.services.utils import Clock, TicketRef, parse_numbers, utc_now

logger = get_logger(__name__)


class RandomSampler:

    def __init__(self, store: TicketStore, cfg: Settings, clock: Clock = utc_now):
        self.store = store
        self.cfg = cfg
        self.clock = clock

    def sample_available(
        self,
        raffle_id: str,
        count: int,
        exclude: Iterable[TicketRef] = (),
    ) -> List[str]:
        """Devuelve ``count`` etiquetas distintas, uniformes entre las disponibles.

        Hasta ``random_bulk_threshold`` se baraja aquí (Fisher-Yates con
        ``secrets``) sobre el conjunto completo de disponibles; por encima se
        delega al almacenamiento, que elige del lado del servidor.
        """
        if count < 1 or count > self.cfg.max_random_tickets:
            raise InvalidTicketSelection(
                f"La cantidad debe estar entre 1 y {self.cfg.max_random_tickets:,}",
                count=count,
            )
        raffle = load_raffle(self.store, raffle_id)
        excluded = set(parse_numbers(raffle, exclude))
        now = self.clock()

        if count > self.cfg.random_bulk_threshold:
            picked = self.store.sample_available(raffle, count, excluded, now)
            logger.info("Selección masiva %s/%s en rifa %s", len(picked), count, raffle_id)
        else:
            taken = self.store.unavailable_numbers(raffle_id, now) | excluded
            candidates = [n for n in range(1, raffle.total_tickets + 1) if n not in taken]
            if len(candidates) < count:
                raise InsufficientAvailability(requested=count, missing=count - len(candidates))
            picked = secure_sample(candidates, count)

        if len(picked) < count:
            raise InsufficientAvailability(requested=count, missing=count - len(picked))
        return [raffle.label(n) for n in sorted(set(picked))]
