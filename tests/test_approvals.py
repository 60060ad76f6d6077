import pytest

from rifas.core.errors import AssociationFailure, MissingReferenceCode, PermissionDenied
from rifas.domain import CanceledClaim, RaffleStatus, RequestContext, Role, SoldClaim, TicketStatus
from rifas.services import build_engine
from rifas.services.approvals import (
    ALREADY_CANCELED,
    ALREADY_SOLD,
    APPROVED,
    CANCELED,
    CONFLICT,
    EXTENDED,
    REJECTED,
)
from rifas.services.notifications import ORDER_CANCELED, PAYMENT_APPROVED, PAYMENT_REJECTED

from conftest import ANA, LUIS, CollectingNotifier


def test_approve_moves_every_ticket_of_the_order_to_sold(engine, make_raffle, staff, store, notifier):
    raffle = make_raffle(total=10)
    res = engine.reservations.reserve(raffle.id, [1, 2, 3], ANA)
    other = engine.reservations.reserve(raffle.id, [4], LUIS)

    result = engine.approvals.approve(staff, raffle.id, res.reference_code)
    assert result.outcome == APPROVED
    assert result.ticket_numbers == ("01", "02", "03")

    claims = store.claims_by_reference(raffle.id, res.reference_code)
    assert all(isinstance(c, SoldClaim) and c.sold_at is not None for c in claims)
    assert engine.inventory.status(raffle.id, 4).payment_reference == other.reference_code
    assert engine.inventory.status(raffle.id, 4).status == TicketStatus.RESERVED

    engine.outbox.drain()
    assert notifier.kinds() == [PAYMENT_APPROVED]
    assert notifier.delivered[0].recipient == "ana@example.com"


def test_scenario_d_second_approval_is_a_noop(engine, make_raffle, staff, store, clock, notifier):
    raffle = make_raffle(total=5)
    res = engine.reservations.reserve(raffle.id, [1, 2], ANA)
    engine.approvals.approve(staff, raffle.id, res.reference_code)
    before = store.claims_by_reference(raffle.id, res.reference_code)

    clock.advance(minutes=3)
    again = engine.approvals.approve(staff, raffle.id, res.reference_code)

    assert again.outcome == ALREADY_SOLD
    assert store.claims_by_reference(raffle.id, res.reference_code) == before
    engine.outbox.drain()
    assert notifier.kinds() == [PAYMENT_APPROVED]


def test_expired_reservation_needs_an_extension_before_approval(engine, make_raffle, staff, clock, notifier):
    raffle = make_raffle(total=5)
    res = engine.reservations.reserve(raffle.id, [1], ANA, ttl_minutes=5)
    clock.advance(minutes=30)

    result = engine.approvals.approve(staff, raffle.id, res.reference_code)
    assert result.outcome == CONFLICT
    assert "extiéndela" in result.message
    assert engine.inventory.status(raffle.id, 1).status == TicketStatus.AVAILABLE

    engine.approvals.extend(staff, raffle.id, res.reference_code, minutes=30)
    assert engine.approvals.approve(staff, raffle.id, res.reference_code).outcome == APPROVED
    assert engine.inventory.status(raffle.id, 1).status == TicketStatus.SOLD
    engine.outbox.drain()
    assert notifier.kinds() == [PAYMENT_APPROVED]


def test_order_partly_taken_by_another_buyer_is_not_approved(engine, make_raffle, staff, store, clock, notifier):
    raffle = make_raffle(total=5)
    first = engine.reservations.reserve(raffle.id, [1, 2], ANA, ttl_minutes=5)
    clock.advance(minutes=10)
    second = engine.reservations.reserve(raffle.id, [1], LUIS)

    result = engine.approvals.approve(staff, raffle.id, first.reference_code)
    assert result.outcome == CONFLICT
    assert result.ticket_numbers == ("2",)
    assert "1 de 2" in result.message
    assert engine.inventory.status(raffle.id, 1).payment_reference == second.reference_code
    assert engine.inventory.status(raffle.id, 2).status == TicketStatus.AVAILABLE
    assert store.sold_claims(raffle.id) == []

    # extender no devuelve el boleto perdido
    engine.approvals.extend(staff, raffle.id, first.reference_code)
    assert engine.approvals.approve(staff, raffle.id, first.reference_code).outcome == CONFLICT
    assert store.sold_claims(raffle.id) == []
    engine.outbox.drain()
    assert notifier.kinds() == []


def test_claims_remember_the_size_of_their_order(engine, make_raffle, store):
    raffle = make_raffle(total=10)
    res = engine.reservations.reserve(raffle.id, [3, 4, 5], ANA)
    assert {c.order_size for c in store.claims_by_reference(raffle.id, res.reference_code)} == {3}


def test_reject_releases_numbers_for_new_reservations(engine, make_raffle, staff, notifier):
    raffle = make_raffle(total=5)
    res = engine.reservations.reserve(raffle.id, [2, 3], ANA)

    result = engine.approvals.reject(staff, raffle.id, res.reference_code, reason="Comprobante ilegible")
    assert result.outcome == REJECTED
    assert engine.inventory.counts(raffle.id).available == 5

    again = engine.reservations.reserve(raffle.id, [2, 3], LUIS)
    assert again.ticket_numbers == ("2", "3")

    engine.outbox.drain()
    assert notifier.kinds() == [PAYMENT_REJECTED]
    assert notifier.delivered[0].data["reason"] == "Comprobante ilegible"


def test_reject_after_sale_is_the_refund_path(engine, make_raffle, staff, sell):
    raffle = make_raffle(total=5)
    ref = sell(raffle, [1, 2])
    engine.approvals.reject(staff, raffle.id, ref)
    assert engine.inventory.counts(raffle.id).sold == 0
    with pytest.raises(AssociationFailure):
        engine.approvals.reject(staff, raffle.id, ref)


def test_cancel_keeps_an_audit_record(engine, make_raffle, staff, store, sell, notifier):
    raffle = make_raffle(total=5)
    ref = sell(raffle, [4])

    result = engine.approvals.cancel(staff, raffle.id, ref, reason="Reembolso")
    assert result.outcome == CANCELED
    (claim,) = store.get_claims(raffle.id, [4])
    assert isinstance(claim, CanceledClaim)
    assert claim.cancel_reason == "Reembolso"
    assert engine.inventory.status(raffle.id, 4).status == TicketStatus.AVAILABLE
    assert engine.approvals.cancel(staff, raffle.id, ref).outcome == ALREADY_CANCELED

    # el número cancelado se vuelve a reservar encima del registro
    engine.reservations.reserve(raffle.id, [4], LUIS)
    assert engine.inventory.status(raffle.id, 4).status == TicketStatus.RESERVED

    engine.outbox.drain()
    assert ORDER_CANCELED in notifier.kinds()


def test_approve_after_cancel_reports_conflict(engine, make_raffle, staff):
    raffle = make_raffle(total=5)
    res = engine.reservations.reserve(raffle.id, [1, 2], ANA)
    engine.approvals.cancel(staff, raffle.id, res.reference_code)

    result = engine.approvals.approve(staff, raffle.id, res.reference_code)
    assert result.outcome == CONFLICT
    assert "canceled" in result.message


def test_extend_pushes_the_deadline(engine, make_raffle, staff, clock):
    raffle = make_raffle(total=5)
    res = engine.reservations.reserve(raffle.id, [1], ANA, ttl_minutes=5)
    clock.advance(minutes=4)

    result = engine.approvals.extend(staff, raffle.id, res.reference_code, minutes=30)
    assert result.outcome == EXTENDED
    clock.advance(minutes=20)
    assert engine.inventory.status(raffle.id, 1).status == TicketStatus.RESERVED


def test_bulk_variants_process_each_order_independently(engine, make_raffle, staff):
    raffle = make_raffle(total=10)
    a = engine.reservations.reserve(raffle.id, [1], ANA)
    b = engine.reservations.reserve(raffle.id, [2, 3], LUIS)

    out = engine.approvals.bulk_approve(staff, raffle.id, [a.reference_code, "NOPE0000", b.reference_code, a.reference_code])
    assert out.succeeded == 2
    assert out.failed == 1
    assert out.errors[0]["code"] == "ASSOCIATION_FAILURE"
    assert engine.inventory.counts(raffle.id).sold == 3

    out = engine.approvals.bulk_reject(staff, raffle.id, [a.reference_code, b.reference_code], reason="sorteo anulado")
    assert out.succeeded == 2
    assert engine.inventory.counts(raffle.id).available == 10


def test_staff_operations_check_role_and_organization(engine, make_raffle):
    raffle = make_raffle(total=5)
    res = engine.reservations.reserve(raffle.id, [1], ANA)

    with pytest.raises(PermissionDenied):
        engine.approvals.approve(RequestContext.buyer(), raffle.id, res.reference_code)
    outsider = RequestContext(actor_id="x", organization_id="org-2", role=Role.STAFF)
    with pytest.raises(PermissionDenied):
        engine.approvals.reject(outsider, raffle.id, res.reference_code)

    admin = RequestContext(actor_id="root", role=Role.ADMIN)
    assert engine.approvals.approve(admin, raffle.id, res.reference_code).outcome == APPROVED


def test_missing_reference(engine, make_raffle, staff):
    raffle = make_raffle()
    with pytest.raises(MissingReferenceCode):
        engine.approvals.approve(staff, raffle.id, "")


def test_notification_failure_never_undoes_the_approval(cfg, store, clock, staff, caplog):
    engine = build_engine(cfg, store=store, notifier=CollectingNotifier(fail=True), clock=clock)
    raffle = engine.raffles.create_raffle(staff, title="Rifa", total_tickets=5, ticket_price=1, status=RaffleStatus.ACTIVE)
    res = engine.reservations.reserve(raffle.id, [1], ANA)

    assert engine.approvals.approve(staff, raffle.id, res.reference_code).outcome == APPROVED
    assert engine.outbox.drain() == []
    assert "No se pudo entregar" in caplog.text
    assert engine.inventory.status(raffle.id, 1).status == TicketStatus.SOLD
