import pytest

from rifas.core.errors import InvalidTicketSelection, RaffleNotFound
from rifas.domain import TicketStatus

from conftest import ANA, LUIS


def test_unclaimed_numbers_are_available(engine, make_raffle):
    raffle = make_raffle(total=10)
    view = engine.inventory.status(raffle.id, 7)
    assert view.status == TicketStatus.AVAILABLE
    assert view.ticket_number == "07"

    counts = engine.inventory.counts(raffle.id)
    assert (counts.total, counts.available, counts.reserved, counts.sold) == (10, 10, 0, 0)


def test_counts_track_reserved_and_sold(engine, make_raffle, sell):
    raffle = make_raffle(total=10)
    engine.reservations.reserve(raffle.id, [1, 2], ANA)
    sell(raffle, [3, 4, 5], LUIS)

    counts = engine.inventory.counts(raffle.id)
    assert counts.reserved == 2
    assert counts.sold == 3
    assert counts.available == 5
    assert counts.reserved + counts.sold <= counts.total


def test_expired_reservation_reads_as_available(engine, make_raffle, clock):
    raffle = make_raffle(total=10)
    engine.reservations.reserve(raffle.id, ["03"], ANA, ttl_minutes=15)
    assert engine.inventory.status(raffle.id, "03").status == TicketStatus.RESERVED

    clock.advance(minutes=15)
    assert engine.inventory.status(raffle.id, "03").status == TicketStatus.AVAILABLE
    assert engine.inventory.counts(raffle.id).available == 10


def test_list_page_all_is_a_virtual_range(engine, make_raffle):
    raffle = make_raffle(total=250)
    engine.reservations.reserve(raffle.id, [101, 102], ANA)

    page = engine.inventory.list_page(raffle.id, "all", page=2, page_size=100)
    assert page.total == 250
    assert page.pages == 3
    assert [v.ticket_number for v in page.items[:3]] == ["101", "102", "103"]
    assert page.items[0].status == TicketStatus.RESERVED
    assert page.items[2].status == TicketStatus.AVAILABLE

    last = engine.inventory.list_page(raffle.id, "all", page=3, page_size=100)
    assert len(last.items) == 50


def test_list_page_available_skips_taken_numbers(engine, make_raffle, sell):
    raffle = make_raffle(total=10)
    sell(raffle, [1, 2, 3])

    page = engine.inventory.list_page(raffle.id, "available", page=1, page_size=4)
    assert [v.number for v in page.items] == [4, 5, 6, 7]
    assert page.total == 7

    page2 = engine.inventory.list_page(raffle.id, "available", page=2, page_size=4)
    assert [v.number for v in page2.items] == [8, 9, 10]


def test_list_page_sold_and_reserved(engine, make_raffle, sell, clock):
    raffle = make_raffle(total=10)
    sell(raffle, [9, 2], LUIS)
    engine.reservations.reserve(raffle.id, [5], ANA, ttl_minutes=5)
    engine.reservations.reserve(raffle.id, [6], ANA, ttl_minutes=30)
    clock.advance(minutes=10)

    sold = engine.inventory.list_page(raffle.id, "sold")
    assert [v.ticket_number for v in sold.items] == ["02", "09"]
    assert sold.items[0].buyer_name == "Luis Mora"

    reserved = engine.inventory.list_page(raffle.id, "reserved")
    assert [v.number for v in reserved.items] == [6]
    assert reserved.total == 1


def test_list_page_rejects_unknown_filter(engine, make_raffle):
    raffle = make_raffle()
    with pytest.raises(InvalidTicketSelection):
        engine.inventory.list_page(raffle.id, "pending")


def test_unknown_raffle(engine):
    with pytest.raises(RaffleNotFound):
        engine.inventory.counts("no-existe")
