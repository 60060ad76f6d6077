import datetime as dt

import pytest

from rifas.core.errors import PrizeUnavailable, StorageError
from rifas.domain import Buyer, Draw, DrawMethod, DrawType, Raffle, RaffleStatus, ReservedClaim, SoldClaim
from rifas.stores import SupabaseTicketStore

from conftest import T0

NOW = "2026-03-01T12:00:00Z"


class FakeResult:
    def __init__(self, data=None, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    """Graba cada llamada del builder de PostgREST y devuelve el resultado preparado."""

    def __init__(self, client, target, result=None, error=None):
        self.client = client
        self.target = target
        self.calls = []
        self.result = result or FakeResult([])
        self.error = error

    def _record(self, name):
        def call(*args, **kwargs):
            self.calls.append((name, args))
            return self
        return call

    def __getattr__(self, name):
        if name.startswith("__"):
            raise AttributeError(name)
        return self._record(name)

    @property
    def not_(self):
        self.calls.append(("not_", ()))
        return self

    def execute(self):
        if self.error is not None:
            raise self.error
        return self.result


class FakeClient:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.queries = []

    def table(self, name):
        q = FakeQuery(self, name, self.result, self.error)
        self.queries.append(q)
        return q

    def rpc(self, name, params):
        q = FakeQuery(self, f"rpc:{name}", self.result, self.error)
        q.calls.append(("rpc", (name, params)))
        self.queries.append(q)
        return q

    @property
    def last(self):
        return self.queries[-1]


def _row(number, status="reserved", **extra):
    row = {
        "raffle_id": "r1",
        "ticket_index": number,
        "ticket_number": f"{number:02d}",
        "status": status,
        "buyer_name": "Ana Pérez",
        "buyer_email": "ana@example.com",
        "payment_reference": "ABCD1234",
        "reserved_at": NOW,
        "reserved_until": "2026-03-01T12:15:00Z",
        "order_size": 2,
    }
    row.update(extra)
    return row


def _store(result=None, error=None):
    client = FakeClient(result, error)
    return SupabaseTicketStore(client), client


def test_release_is_scoped_to_reference_numbers_and_status():
    store, client = _store(FakeResult([_row(3), _row(4)]))

    assert store.release_reference("r1", "ABCD1234", numbers=[3, 4]) == 2

    q = client.last
    assert q.target == "ticket_claims"
    assert q.calls == [
        ("delete", ()),
        ("eq", ("raffle_id", "r1")),
        ("eq", ("payment_reference", "ABCD1234")),
        ("in_", ("ticket_index", [3, 4])),
        ("eq", ("status", "reserved")),
    ]


def test_full_release_of_a_sold_order_skips_the_status_filter():
    store, client = _store(FakeResult([_row(3, status="sold")]))
    store.release_reference("r1", "ABCD1234", only_reserved=False)

    names = [c[0] for c in client.last.calls]
    assert ("eq", ("status", "reserved")) not in client.last.calls
    assert "in_" not in names


def test_mark_sold_only_touches_live_reservations():
    sold = _row(1, status="sold", sold_at=NOW, approved_at=NOW, reserved_until=None)
    store, client = _store(FakeResult([sold]))

    (claim,) = store.mark_sold("r1", "ABCD1234", T0)

    assert isinstance(claim, SoldClaim)
    assert claim.order_size == 2
    q = client.last
    assert q.calls[0] == ("update", ({
        "status": "sold",
        "approved_at": NOW,
        "sold_at": NOW,
        "reserved_until": None,
    },))
    assert ("eq", ("payment_reference", "ABCD1234")) in q.calls
    assert ("eq", ("status", "reserved")) in q.calls
    assert ("gt", ("reserved_until", NOW)) in q.calls


def test_attach_proof_requires_a_live_reservation():
    store, client = _store(FakeResult([_row(1, payment_proof_url="https://img/p.png")]))

    (claim,) = store.attach_proof("r1", "ABCD1234", "https://img/p.png", T0)

    assert isinstance(claim, ReservedClaim)
    assert claim.payment_proof_url == "https://img/p.png"
    assert client.last.calls == [
        ("update", ({"payment_proof_url": "https://img/p.png"},)),
        ("eq", ("raffle_id", "r1")),
        ("eq", ("payment_reference", "ABCD1234")),
        ("eq", ("status", "reserved")),
        ("gt", ("reserved_until", NOW)),
    ]


def test_delete_expired_filters_reserved_rows_before_the_cutoff():
    store, client = _store(FakeResult([_row(1), _row(2)]))

    assert store.delete_expired(T0, raffle_id="r1") == 2
    assert client.last.calls == [
        ("delete", ()),
        ("eq", ("status", "reserved")),
        ("lt", ("reserved_until", NOW)),
        ("eq", ("raffle_id", "r1")),
    ]

    store.delete_expired(T0)
    assert ("eq", ("raffle_id", "r1")) not in client.last.calls


def test_claim_goes_through_the_conditional_function():
    store, client = _store(FakeResult([_row(5)]))
    raffle = Raffle(id="r1", organization_id="org-1", title="Rifa", total_tickets=50, ticket_price=1)

    (claim,) = store.claim_available(
        raffle, [5, 6], "ABCD1234", Buyer(name="Ana"), T0 + dt.timedelta(minutes=15), None, T0
    )

    assert claim.number == 5
    name, params = client.last.calls[0][1]
    assert name == "claim_tickets"
    assert params["p_indices"] == [5, 6]
    assert params["p_width"] == 2
    assert params["p_reference"] == "ABCD1234"
    assert params["p_now"] == NOW


def test_expiring_and_pending_queries():
    store, client = _store(FakeResult([_row(1)]))

    store.expiring_reservations(T0, T0 + dt.timedelta(minutes=30))
    calls = client.last.calls
    assert ("is_", ("payment_proof_url", "null")) in calls
    assert ("gt", ("reserved_until", NOW)) in calls
    assert ("lte", ("reserved_until", "2026-03-01T12:30:00Z")) in calls

    store.pending_approval_claims(T0)
    names = [c[0] for c in client.last.calls]
    assert names[names.index("not_") + 1] == "is_"
    assert ("gt", ("reserved_until", NOW)) in client.last.calls


def test_client_errors_become_storage_errors():
    store, _ = _store(error=RuntimeError("connection reset"))
    with pytest.raises(StorageError) as info:
        store.delete_expired(T0)
    assert info.value.operation == "delete_expired"


class UniqueViolation(Exception):
    code = "23505"


def test_second_draw_for_a_prize_is_refused():
    store, _ = _store(error=UniqueViolation("duplicate key value violates unique constraint"))
    draw = Draw(
        id="d1", raffle_id="r1", prize_id="tv", prize_name="Televisor", number=3, ticket_number="03",
        winner=Buyer(name="Ana"), draw_method=DrawMethod.RANDOM, draw_type=DrawType.PRE_DRAW, drawn_at=T0,
    )
    with pytest.raises(PrizeUnavailable):
        store.add_draw(draw)


def test_list_raffles_by_status():
    row = {"id": "r1", "total_tickets": 10, "status": "active", "title": "Rifa"}
    store, client = _store(FakeResult([row]))

    (raffle,) = store.list_raffles([RaffleStatus.ACTIVE])
    assert raffle.status == RaffleStatus.ACTIVE
    assert ("in_", ("status", ["active"])) in client.last.calls
