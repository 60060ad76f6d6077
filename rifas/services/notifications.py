"""Notificaciones salientes (email / telegram) desacopladas de las transiciones.

Los servicios emiten un ``Notification`` *después* de confirmar el cambio de
estado; un hilo aparte lo entrega. Un fallo de entrega se registra y se
descarta: nunca deshace la aprobación o el rechazo que lo originó.
"""

from __future__ import annotations

import queue
import threading
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import requests

from rifas.core.logger import get_logger

logger = get_logger(__name__)

_HTTP_TIMEOUT = 8  # seg


@dataclass(frozen=True)
class Notification:
    kind: str
    raffle_id: str
    recipient: Optional[str] = None
    reference_code: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Tipos emitidos por el motor
PAYMENT_APPROVED = "payment_approved"
PAYMENT_REJECTED = "payment_rejected"
ORDER_CANCELED = "order_canceled"
PROOF_SUBMITTED = "payment_proof_submitted"
WINNER_SELECTED = "winner_selected"
PAYMENT_REMINDER = "payment_reminder"
PENDING_APPROVALS = "pending_approvals"


class Notifier(Protocol):
    def deliver(self, notification: Notification) -> None:
        ...


class LogNotifier:
    """Sin webhook configurado: solo deja constancia en el log."""

    def deliver(self, notification: Notification) -> None:
        logger.info(
            "[NOTIFY] %s raffle=%s ref=%s to=%s",
            notification.kind,
            notification.raffle_id,
            notification.reference_code,
            notification.recipient,
        )


class WebhookNotifier:
    """POST JSON al servicio de envío (email/telegram)."""

    def __init__(self, url: str, timeout: float = _HTTP_TIMEOUT, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def deliver(self, notification: Notification) -> None:
        r = self.session.post(self.url, json=notification.to_dict(), timeout=self.timeout)
        r.raise_for_status()


class NotificationOutbox:
    """Cola en memoria + hilo de entrega."""

    def __init__(self, notifier: Notifier):
        self.notifier = notifier
        self._queue: "queue.Queue[Notification]" = queue.Queue()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def emit(self, notification: Notification) -> None:
        self._queue.put(notification)

    def _deliver_one(self, notification: Notification) -> bool:
        try:
            self.notifier.deliver(notification)
            return True
        except Exception:
            logger.exception(
                "No se pudo entregar %s (ref=%s); se descarta",
                notification.kind,
                notification.reference_code,
            )
            return False

    def drain(self) -> List[Notification]:
        """Entrega en el hilo actual todo lo pendiente; devuelve lo entregado."""
        delivered: List[Notification] = []
        while True:
            try:
                notification = self._queue.get_nowait()
            except queue.Empty:
                return delivered
            if self._deliver_one(notification):
                delivered.append(notification)
            self._queue.task_done()

    def pending(self) -> int:
        return self._queue.qsize()

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                notification = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            self._deliver_one(notification)
            self._queue.task_done()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="notification-outbox", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
