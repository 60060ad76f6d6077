"""Arma todos los servicios sobre un mismo almacenamiento, cola y reloj."""

from __future__ import annotations

from typing import Optional

from rifas.core.logger import get_logger
from rifas.core.settings import Settings, settings
from rifas.stores import TicketStore, build_store
from rifas.services.approvals import ApprovalStateMachine
from rifas.services.draws import DrawSelector
from rifas.services.expiry import ExpiryReclaimer, ExpirySweeper
from rifas.services.inventory import TicketInventory
from rifas.services.notifications import LogNotifier, NotificationOutbox, Notifier, WebhookNotifier
from rifas.services.orders import OrderDesk
from rifas.services.payment_proof import PaymentProofAssociator
from rifas.services.raffles import Entitlements, RaffleRegistry, SettingsEntitlements
from rifas.services.reservations import ReservationCoordinator
from rifas.services.sampler import RandomSampler
from rifas.services.scheduled import AutoDrawer, PaymentReminders, PendingApprovalDigest
from rifas.services.utils import Clock, utc_now

logger = get_logger(__name__)


class RaffleEngine:

    def __init__(
        self,
        cfg: Settings,
        store: TicketStore,
        outbox: NotificationOutbox,
        entitlements: Entitlements,
        clock: Clock = utc_now,
    ):
        self.cfg = cfg
        self.store = store
        self.outbox = outbox
        self.clock = clock

        self.raffles = RaffleRegistry(store, entitlements, clock)
        self.inventory = TicketInventory(store, clock)
        self.sampler = RandomSampler(store, cfg, clock)
        self.reservations = ReservationCoordinator(store, self.sampler, cfg, clock)
        self.reclaimer = ExpiryReclaimer(store, cfg, clock)
        self.proofs = PaymentProofAssociator(store, outbox, clock)
        self.approvals = ApprovalStateMachine(store, outbox, clock)
        self.draws = DrawSelector(store, outbox, cfg, clock)
        self.orders = OrderDesk(store, clock)

        self.reminders = PaymentReminders(store, outbox, cfg, clock)
        self.pending_digest = PendingApprovalDigest(store, outbox, cfg, clock)
        self.auto_draw = AutoDrawer(store, self.draws, cfg, clock)
        self.sweeper = ExpirySweeper(
            self.reclaimer,
            cfg.cleanup_interval_seconds,
            tasks=[
                ("recordatorios", self.reminders.run),
                ("comprobantes pendientes", self.pending_digest.run),
                ("sorteo automático", self.auto_draw.run),
            ],
        )

    def start(self) -> None:
        self.outbox.start()
        self.sweeper.start()
        logger.info("Motor iniciado (backend=%s, barrido cada %ss)",
                    type(self.store).__name__, self.sweeper.interval_seconds)

    def stop(self) -> None:
        self.sweeper.stop()
        self.outbox.stop()
        # lo que quedó en cola se entrega antes de salir
        self.outbox.drain()


def default_notifier(cfg: Settings) -> Notifier:
    if cfg.notify_webhook_url:
        return WebhookNotifier(cfg.notify_webhook_url, timeout=cfg.notify_timeout_seconds)
    return LogNotifier()


def build_engine(
    cfg: Settings = settings,
    store: Optional[TicketStore] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[Clock] = None,
    entitlements: Optional[Entitlements] = None,
) -> RaffleEngine:
    return RaffleEngine(
        cfg=cfg,
        store=store or build_store(cfg),
        outbox=NotificationOutbox(notifier or default_notifier(cfg)),
        entitlements=entitlements or SettingsEntitlements(cfg),
        clock=clock or utc_now,
    )
