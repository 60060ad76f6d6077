"""Barrido de reservas vencidas.

La lectura ya trata como disponible una reserva vencida; el barrido solo
compacta la tabla. Borra únicamente filas ``reserved`` cuyo
``reserved_until`` ya pasó, así que puede correr en paralelo con reservas
nuevas sin pisarlas.
"""

from __future__ import annotations

import datetime as dt
import threading
from typing import Any, Callable, Optional, Sequence, Tuple

from rifas.core.logger import get_logger
from rifas.core.settings import Settings
from rifas.stores import TicketStore
from rifas.services.utils import Clock, utc_now

logger = get_logger(__name__)


class ExpiryReclaimer:

    def __init__(self, store: TicketStore, cfg: Settings, clock: Clock = utc_now):
        self.store = store
        self.cfg = cfg
        self.clock = clock

    def sweep(self, raffle_id: Optional[str] = None) -> int:
        cutoff = self.clock() - dt.timedelta(seconds=max(self.cfg.sweep_grace_seconds, 0))
        removed = self.store.delete_expired(cutoff, raffle_id=raffle_id)
        if removed:
            logger.info("Barrido: %s reserva(s) vencida(s) liberadas%s",
                        removed, f" en rifa {raffle_id}" if raffle_id else "")
        return removed


class ExpirySweeper:
    """Hilo daemon que llama ``sweep()`` cada ``interval_seconds``.

    ``tasks`` corre después de cada barrido (recordatorios, avisos,
    sorteos automáticos); un fallo en una no frena las demás.
    """

    def __init__(
        self,
        reclaimer: ExpiryReclaimer,
        interval_seconds: int = 60,
        tasks: Sequence[Tuple[str, Callable[[], Any]]] = (),
    ):
        self.reclaimer = reclaimer
        self.interval_seconds = max(int(interval_seconds or 60), 1)
        self.tasks = list(tasks)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def run_once(self) -> None:
        try:
            self.reclaimer.sweep()
        except Exception:
            # mantener el loop vivo
            logger.exception("Fallo en el barrido de reservas vencidas")
        for name, task in self.tasks:
            try:
                task()
            except Exception:
                logger.exception("Fallo en la tarea periódica %s", name)

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="expiry-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
