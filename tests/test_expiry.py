import threading

from rifas.domain import TicketStatus
from rifas.services.expiry import ExpirySweeper

from conftest import ANA, LUIS


def test_sweep_removes_only_expired_reservations(engine, make_raffle, sell, store, clock):
    raffle = make_raffle(total=10)
    engine.reservations.reserve(raffle.id, [1, 2], ANA, ttl_minutes=5)
    engine.reservations.reserve(raffle.id, [3], LUIS, ttl_minutes=60)
    sell(raffle, [4])
    clock.advance(minutes=10)

    assert engine.reclaimer.sweep() == 2
    assert [c.number for c in store.get_claims(raffle.id, range(1, 11))] == [3, 4]
    assert engine.inventory.status(raffle.id, 3).status == TicketStatus.RESERVED
    assert engine.inventory.status(raffle.id, 4).status == TicketStatus.SOLD

    # idempotente
    assert engine.reclaimer.sweep() == 0


def test_sweep_can_be_scoped_to_one_raffle(engine, make_raffle, clock):
    a = make_raffle(total=5)
    b = make_raffle(total=5)
    engine.reservations.reserve(a.id, [1], ANA, ttl_minutes=1)
    engine.reservations.reserve(b.id, [1], ANA, ttl_minutes=1)
    clock.advance(minutes=2)

    assert engine.reclaimer.sweep(a.id) == 1
    assert engine.reclaimer.sweep() == 1


def test_grace_period_keeps_recently_expired_rows(engine, make_raffle, cfg, clock):
    raffle = make_raffle(total=5)
    engine.reservations.reserve(raffle.id, [1], ANA, ttl_minutes=1)
    cfg.sweep_grace_seconds = 300
    clock.advance(minutes=2)

    assert engine.reclaimer.sweep() == 0
    # aunque siga la fila, se lee como disponible
    assert engine.inventory.counts(raffle.id).available == 5

    clock.advance(minutes=10)
    assert engine.reclaimer.sweep() == 1


def test_sweeper_thread_runs_and_survives_errors():
    calls = []
    done = threading.Event()

    class FlakyReclaimer:
        def sweep(self, raffle_id=None):
            calls.append(raffle_id)
            if len(calls) == 1:
                raise RuntimeError("db caída")
            done.set()
            return 0

    sweeper = ExpirySweeper(FlakyReclaimer(), interval_seconds=1)
    sweeper.start()
    try:
        assert sweeper.running
        assert done.wait(timeout=5)
    finally:
        sweeper.stop()
    assert not sweeper.running
    assert len(calls) >= 2


def test_a_failing_task_does_not_stop_the_others(caplog):
    ran = []

    class QuietReclaimer:
        def sweep(self, raffle_id=None):
            ran.append("sweep")
            return 0

    def boom():
        raise RuntimeError("webhook caído")

    sweeper = ExpirySweeper(
        QuietReclaimer(),
        tasks=[("recordatorios", boom), ("sorteo automático", lambda: ran.append("draw"))],
    )
    sweeper.run_once()
    assert ran == ["sweep", "draw"]
    assert "Fallo en la tarea periódica recordatorios" in caplog.text
