"""Idempotency ledger: key derivation, reservation, settlement, reclaim."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from teampay.services.ledger.models import IdempotencyRecord
from teampay.services.ledger.service import to_cents


NOW = datetime(2026, 10, 17, 12, 0, 5, tzinfo=timezone.utc)


def test_derive_key_is_deterministic_within_bucket(ledger):
    first = ledger.derive_key("spring-fees", "a@example.com", Decimal("25.00"), "cnon:abc123xyz", now=NOW)
    second = ledger.derive_key(
        "spring-fees", "  A@Example.com ", Decimal("25"), "cnon:abc123xyz", now=NOW + timedelta(seconds=50)
    )

    assert first == second
    assert first.startswith("pay_")
    assert len(first) <= 45


def test_derive_key_changes_with_inputs(ledger):
    base = ("spring-fees", "a@example.com", Decimal("25.00"), "cnon:abc123xyz")
    key = ledger.derive_key(*base, now=NOW)

    assert ledger.derive_key("fall-fees", *base[1:], now=NOW) != key
    assert ledger.derive_key(base[0], "b@example.com", *base[2:], now=NOW) != key
    assert ledger.derive_key(base[0], base[1], Decimal("25.01"), base[3], now=NOW) != key
    assert ledger.derive_key(*base, now=NOW + timedelta(seconds=60)) != key


def test_derive_key_only_uses_token_prefix(ledger):
    one = ledger.derive_key("spring-fees", "a@example.com", Decimal("5"), "cnon:abcde-111", now=NOW)
    two = ledger.derive_key("spring-fees", "a@example.com", Decimal("5"), "cnon:abcde-222", now=NOW)

    assert one == two


def test_to_cents_rounds_half_up():
    assert to_cents(Decimal("25.00")) == 2500
    assert to_cents(Decimal("0.005")) == 1
    assert to_cents(Decimal("10.994")) == 1099


def test_reserve_creates_pending_then_refuses_second_claim(ledger, collection):
    assert ledger.reserve("pay_k1", collection.id, Decimal("25.00"), "A@example.com") is True
    assert ledger.reserve("pay_k1", collection.id, Decimal("25.00"), "a@example.com") is False

    record = ledger.lookup("pay_k1")
    assert record.status == "pending"
    assert record.payer_email == "a@example.com"
    assert record.payment_id is None


def test_lookup_missing_key(ledger):
    assert ledger.lookup("pay_missing") is None


def test_mark_completed_links_charge(ledger, collection):
    ledger.reserve("pay_k2", collection.id, Decimal("10"), "a@example.com")

    assert ledger.mark_completed("pay_k2", "payment-1") is True
    record = ledger.lookup("pay_k2")
    assert record.status == "completed"
    assert record.payment_id == "payment-1"

    # Completed keys are terminal.
    assert ledger.mark_failed("pay_k2") is False
    assert ledger.reserve("pay_k2", collection.id, Decimal("10"), "a@example.com") is False


def test_failed_key_can_be_reserved_again(ledger, collection):
    ledger.reserve("pay_k3", collection.id, Decimal("10"), "a@example.com")
    assert ledger.mark_failed("pay_k3") is True

    assert ledger.reserve("pay_k3", collection.id, Decimal("10"), "a@example.com") is True
    assert ledger.lookup("pay_k3").status == "pending"


def test_fresh_pending_is_not_stale(ledger, collection, clock):
    ledger.reserve("pay_k4", collection.id, Decimal("10"), "a@example.com")
    clock.advance(29)
    record = ledger.lookup("pay_k4")

    assert ledger.is_stale(record) is False
    assert ledger.reclaim_if_stale(record) is False
    assert ledger.lookup("pay_k4").status == "pending"


def test_stale_pending_is_reclaimed_to_failed(ledger, collection, clock):
    ledger.reserve("pay_k5", collection.id, Decimal("10"), "a@example.com")
    clock.advance(31)
    record = ledger.lookup("pay_k5")

    assert ledger.is_stale(record) is True
    assert ledger.reclaim_if_stale(record) is True
    assert ledger.lookup("pay_k5").status == "failed"
    assert ledger.reserve("pay_k5", collection.id, Decimal("10"), "a@example.com") is True


def test_completed_record_is_never_stale(ledger, session_factory):
    record = IdempotencyRecord(
        key="pay_k6",
        collection_id="c",
        amount=Decimal("1"),
        payer_email="a@example.com",
        status="completed",
        updated_at=NOW - timedelta(days=1),
    )

    assert ledger.is_stale(record, now=NOW) is False


def test_touch_keeps_pending_record_fresh(ledger, collection, clock):
    ledger.reserve("pay_k7", collection.id, Decimal("10"), "a@example.com")
    clock.advance(25)
    assert ledger.touch("pay_k7") is True
    clock.advance(25)

    assert ledger.is_stale(ledger.lookup("pay_k7")) is False


def test_touch_ignores_settled_records(ledger, collection):
    ledger.reserve("pay_k8", collection.id, Decimal("10"), "a@example.com")
    ledger.mark_failed("pay_k8")

    assert ledger.touch("pay_k8") is False
    assert ledger.touch("pay_missing") is False


def test_transitions_are_validated_against_current_status(ledger, collection):
    ledger.reserve("pay_k9", collection.id, Decimal("10"), "a@example.com")
    ledger.mark_failed("pay_k9")

    # failed -> completed is not a legal move.
    assert ledger.mark_completed("pay_k9", "payment-9") is False
    assert ledger.lookup("pay_k9").payment_id is None
    assert ledger.mark_completed("pay_missing", "payment-x") is False
