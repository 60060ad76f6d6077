import datetime as dt

import pytest

from rifas.core.errors import AssociationFailure, InvalidRequest, MissingReferenceCode
from rifas.services.notifications import PROOF_SUBMITTED

from conftest import ANA


def _reserve_with_code(store, raffle, numbers, code, clock, minutes=15):
    return store.claim_available(
        raffle, numbers, code, ANA.normalized(), clock() + dt.timedelta(minutes=minutes), None, clock()
    )


def test_missing_reference_is_rejected_outright(engine, make_raffle, store):
    raffle = make_raffle()
    engine.reservations.reserve(raffle.id, [1], ANA)
    for blank in (None, "", "   "):
        with pytest.raises(MissingReferenceCode):
            engine.proofs.submit_proof(raffle.id, blank, "https://img/1.png", buyer_email=ANA.email)
    assert all(c.payment_proof_url is None for c in store.get_claims(raffle.id, [1]))


def test_unknown_reference_fails_with_the_code(engine, make_raffle):
    raffle = make_raffle()
    with pytest.raises(AssociationFailure) as exc:
        engine.proofs.submit_proof(raffle.id, "zzzz9999", "https://img/1.png")
    assert exc.value.reference_code == "ZZZZ9999"
    assert exc.value.to_dict()["reference_code"] == "ZZZZ9999"


def test_scenario_c_resubmission_overwrites_same_rows(engine, make_raffle, store, clock, notifier):
    raffle = make_raffle(total=10)
    _reserve_with_code(store, raffle, [2, 3], "ABCDEFGH", clock)

    first = engine.proofs.submit_proof(raffle.id, "ABCDEFGH", "https://img/a.png")
    second = engine.proofs.submit_proof(raffle.id, "ABCDEFGH", "https://img/b.png")

    assert (first.updated, first.replaced_previous) == (2, False)
    assert (second.updated, second.replaced_previous) == (2, True)
    claims = store.claims_by_reference(raffle.id, "ABCDEFGH")
    assert [c.number for c in claims] == [2, 3]
    assert {c.payment_proof_url for c in claims} == {"https://img/b.png"}

    engine.outbox.drain()
    assert notifier.kinds() == [PROOF_SUBMITTED, PROOF_SUBMITTED]
    assert notifier.delivered[0].recipient == "org-1"


def test_expired_reservation_cannot_take_a_proof(engine, make_raffle, clock):
    raffle = make_raffle()
    res = engine.reservations.reserve(raffle.id, [1], ANA, ttl_minutes=5)
    clock.advance(minutes=6)
    with pytest.raises(AssociationFailure):
        engine.proofs.submit_proof(raffle.id, res.reference_code, "https://img/1.png")


def test_reference_is_normalized_and_email_mismatch_only_warns(engine, make_raffle, caplog):
    raffle = make_raffle()
    res = engine.reservations.reserve(raffle.id, [4, 5], ANA)
    result = engine.proofs.submit_proof(
        raffle.id, f"  {res.reference_code.lower()} ", "https://img/x.png", buyer_email="otro@example.com"
    )
    assert result.updated == 2
    assert "correo distinto" in caplog.text


def test_proof_url_is_required(engine, make_raffle):
    raffle = make_raffle()
    res = engine.reservations.reserve(raffle.id, [1], ANA)
    with pytest.raises(InvalidRequest):
        engine.proofs.submit_proof(raffle.id, res.reference_code, "  ")


def test_approved_order_does_not_need_a_proof(engine, make_raffle, sell):
    raffle = make_raffle()
    ref = sell(raffle, [1])
    with pytest.raises(AssociationFailure) as exc:
        engine.proofs.submit_proof(raffle.id, ref, "https://img/1.png")
    assert "ya fue aprobada" in exc.value.message
