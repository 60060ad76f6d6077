import datetime as dt
from decimal import Decimal
from typing import List

import pytest

from rifas.core.settings import Settings
from rifas.domain import Buyer, RaffleStatus, RequestContext, Role
from rifas.services import build_engine
from rifas.services.notifications import Notification
from rifas.stores import InMemoryTicketStore

T0 = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.timezone.utc)

ANA = Buyer(name="Ana Pérez", email="Ana@Example.com", phone="04141234567", city="Caracas")
LUIS = Buyer(name="Luis Mora", email="luis@example.com", phone="04249876543", city="Maracay")


class FrozenClock:
    def __init__(self, now: dt.datetime):
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + dt.timedelta(**kwargs)


class CollectingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.delivered: List[Notification] = []

    def deliver(self, notification: Notification) -> None:
        if self.fail:
            raise RuntimeError("smtp caído")
        self.delivered.append(notification)

    def kinds(self) -> List[str]:
        return [n.kind for n in self.delivered]


@pytest.fixture
def cfg():
    return Settings(
        store_backend="memory",
        admin_api_key="test-key",
        reservation_minutes=15,
        max_tickets_per_order=10000,
        random_bulk_threshold=100,
        max_random_tickets=100000,
        lottery_digits=2,
        cleanup_interval_seconds=60,
        sweep_grace_seconds=0,
        reminder_minutes=30,
        notify_pending_approvals=True,
        auto_draw=True,
        notify_webhook_url="",
        max_active_raffles=0,
        max_tickets_per_raffle=0,
        cloudinary_cloud_name="",
        cloudinary_api_key="",
        cloudinary_api_secret="",
        log_file="",
    )


@pytest.fixture
def store():
    return InMemoryTicketStore()


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def notifier():
    return CollectingNotifier()


@pytest.fixture
def engine(cfg, store, notifier, clock):
    return build_engine(cfg, store=store, notifier=notifier, clock=clock)


@pytest.fixture
def staff():
    return RequestContext(actor_id="staff-1", organization_id="org-1", role=Role.STAFF)


@pytest.fixture
def make_raffle(engine, staff):
    def _make(total=10, status=RaffleStatus.ACTIVE, price="5.00", **kwargs):
        return engine.raffles.create_raffle(
            staff,
            title=kwargs.pop("title", "Rifa de prueba"),
            total_tickets=total,
            ticket_price=Decimal(price),
            status=status,
            **kwargs,
        )
    return _make


@pytest.fixture
def sell(engine, staff):
    """Reserva y aprueba; devuelve la clave de la orden."""
    def _sell(raffle, numbers, buyer=ANA, **kwargs):
        res = engine.reservations.reserve(raffle.id, numbers, buyer, **kwargs)
        engine.approvals.approve(staff, raffle.id, res.reference_code)
        return res.reference_code
    return _sell
