from dataclasses import replace

import pytest

from rifas.core.errors import (
    AmbiguousDraw,
    DrawNotFound,
    InvalidRequest,
    NoEligibleTickets,
    PermissionDenied,
    PrizeUnavailable,
    RaffleNotOpen,
)
from rifas.domain import DrawMethod, DrawType, RaffleStatus, RequestContext
from rifas.services.draws import ends_with, lottery_suffix
from rifas.services.notifications import WINNER_SELECTED

from conftest import ANA, LUIS

PRIZES = [
    {"id": "moto", "name": "Moto"},
    {"id": "tv", "name": "Televisor"},
    {"id": "carro", "name": "Carro"},
]


def test_suffix_helpers():
    assert lottery_suffix("48245", 2) == "45"
    assert lottery_suffix("7", 3) == "007"
    assert lottery_suffix("12-345", 3) == "345"
    assert ends_with("045", "45")
    assert ends_with("5", "05")
    assert not ends_with("145", "245")
    with pytest.raises(InvalidRequest):
        lottery_suffix("abc", 2)


def test_random_draw_only_considers_sold_tickets(engine, make_raffle, staff, sell, notifier):
    raffle = make_raffle(total=20)
    sell(raffle, [3, 8], LUIS)
    engine.reservations.reserve(raffle.id, [1, 2, 4, 5], ANA)

    draw = engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM)
    assert draw.number in (3, 8)
    assert draw.winner.name == "Luis Mora"
    assert draw.prize_id == f"{raffle.id}:main"
    assert engine.raffles.get(raffle.id).status == RaffleStatus.COMPLETED

    engine.outbox.drain()
    assert WINNER_SELECTED in notifier.kinds()


def test_no_sold_tickets_means_no_draw(engine, make_raffle, staff):
    raffle = make_raffle(total=10)
    engine.reservations.reserve(raffle.id, [1], ANA)
    with pytest.raises(NoEligibleTickets):
        engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM)


def test_manual_draw_requires_a_sold_ticket(engine, make_raffle, staff, sell):
    raffle = make_raffle(total=10)
    sell(raffle, [6])
    with pytest.raises(NoEligibleTickets):
        engine.draws.select_winner(staff, raffle.id, DrawMethod.MANUAL, ticket="07")
    with pytest.raises(InvalidRequest):
        engine.draws.select_winner(staff, raffle.id, DrawMethod.MANUAL)

    draw = engine.draws.select_winner(staff, raffle.id, DrawMethod.MANUAL, ticket="06")
    assert draw.ticket_number == "06"


def test_lottery_draw_single_match(engine, make_raffle, staff, sell):
    raffle = make_raffle(total=300)
    sell(raffle, [12, 45, 146])

    draw = engine.draws.select_winner(staff, raffle.id, DrawMethod.LOTTERY, lottery_number="99912")
    assert draw.ticket_number == "012"
    assert draw.metadata["suffix"] == "12"
    assert draw.metadata["lottery_number"] == "99912"


def test_lottery_draw_with_several_matches_needs_a_pick(engine, make_raffle, staff, sell):
    raffle = make_raffle(total=300)
    sell(raffle, [45, 145], ANA)
    sell(raffle, [245], LUIS)

    assert engine.draws.lottery_matches(raffle.id, "48245") == ("45", ["045", "145", "245"])
    with pytest.raises(AmbiguousDraw) as exc:
        engine.draws.select_winner(staff, raffle.id, DrawMethod.LOTTERY, lottery_number="48245")
    assert exc.value.matches == ["045", "145", "245"]

    draw = engine.draws.select_winner(
        staff, raffle.id, DrawMethod.LOTTERY, lottery_number="48245", ticket="245"
    )
    assert draw.winner.name == "Luis Mora"


def test_lottery_digits_change_the_suffix(engine, make_raffle, staff, sell):
    raffle = make_raffle(total=300)
    sell(raffle, [45, 145])

    draw = engine.draws.select_winner(staff, raffle.id, DrawMethod.LOTTERY, lottery_number="48145", digits=3)
    assert draw.ticket_number == "145"

    with pytest.raises(InvalidRequest):
        engine.draws.lottery_matches(raffle.id, "48145", digits=6)


def test_lottery_without_matches(engine, make_raffle, staff, sell):
    raffle = make_raffle(total=300)
    sell(raffle, [45])
    with pytest.raises(NoEligibleTickets):
        engine.draws.select_winner(staff, raffle.id, DrawMethod.LOTTERY, lottery_number="48211")


def test_multi_prize_flow(engine, make_raffle, staff, sell):
    raffle = make_raffle(total=50, prizes=PRIZES)
    sell(raffle, [1, 2, 3, 4])

    pre = engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM, prize_id="tv", draw_type=DrawType.PRE_DRAW)
    assert pre.prize_name == "Televisor"
    assert engine.raffles.get(raffle.id).status == RaffleStatus.ACTIVE
    assert [p.id for p in engine.draws.remaining_prizes(raffle.id)] == ["moto", "carro"]

    with pytest.raises(PrizeUnavailable):
        engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM, prize_id="tv", draw_type=DrawType.PRE_DRAW)

    main = engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM, prize_id="carro")
    assert main.number != pre.number
    assert engine.raffles.get(raffle.id).status == RaffleStatus.COMPLETED
    assert [p.id for p in engine.draws.remaining_prizes(raffle.id)] == ["moto"]

    with pytest.raises(RaffleNotOpen):
        engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM, draw_type=DrawType.PRE_DRAW)

    # borrar el sorteo principal devuelve el premio y reabre la rifa
    engine.draws.delete_draw(staff, raffle.id, main.id)
    assert engine.raffles.get(raffle.id).status == RaffleStatus.ACTIVE
    assert [p.id for p in engine.draws.remaining_prizes(raffle.id)] == ["moto", "carro"]
    assert [d.id for d in engine.draws.list_draws(raffle.id)] == [pre.id]


def test_last_remaining_prize_completes_the_raffle(engine, make_raffle, staff, sell):
    raffle = make_raffle(total=20, prizes=PRIZES[:2])
    sell(raffle, [1, 2, 3])
    engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM, draw_type=DrawType.PRE_DRAW)
    assert engine.raffles.get(raffle.id).status == RaffleStatus.ACTIVE
    engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM, draw_type=DrawType.PRE_DRAW)
    assert engine.raffles.get(raffle.id).status == RaffleStatus.COMPLETED


def test_previous_winners_are_excluded(engine, make_raffle, staff, sell):
    raffle = make_raffle(total=20, prizes=PRIZES)
    sell(raffle, [9])
    engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM, draw_type=DrawType.PRE_DRAW)
    with pytest.raises(NoEligibleTickets):
        engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM, draw_type=DrawType.PRE_DRAW)


def test_draw_requires_open_raffle_and_staff(engine, make_raffle, staff):

    draft = make_raffle(status=RaffleStatus.DRAFT)
    with pytest.raises(RaffleNotOpen):
        engine.draws.select_winner(staff, draft.id, DrawMethod.RANDOM)
    with pytest.raises(PermissionDenied):
        engine.draws.select_winner(RequestContext.buyer(), draft.id, DrawMethod.RANDOM)


def test_announce_and_missing_draws(engine, make_raffle, staff, sell, clock):
    raffle = make_raffle(total=10)
    sell(raffle, [2])
    draw = engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM)

    announced = engine.draws.announce(staff, raffle.id, draw.id)
    assert announced.announced is True
    assert announced.announced_at == clock()

    with pytest.raises(DrawNotFound):
        engine.draws.announce(staff, raffle.id, "nope")
    with pytest.raises(DrawNotFound):
        engine.draws.delete_draw(staff, raffle.id, "nope")


def test_store_keeps_one_draw_per_prize(engine, make_raffle, staff, sell, store):
    raffle = make_raffle(total=20, prizes=PRIZES)
    sell(raffle, [1, 2])
    first = engine.draws.select_winner(staff, raffle.id, DrawMethod.RANDOM, prize_id="tv", draw_type=DrawType.PRE_DRAW)

    duplicate = replace(first, id="otro-sorteo", number=3 - first.number)
    with pytest.raises(PrizeUnavailable):
        store.add_draw(duplicate)
    assert [d.id for d in store.list_draws(raffle.id)] == [first.id]
