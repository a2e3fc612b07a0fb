"""Idempotency ledger: reserve-before-charge deduplication of submissions.

A submission's key is derived from who pays what into which collection within
a short time bucket. The ledger row for that key is reserved (`pending`)
before the processor is called and settled to `completed`/`failed` afterwards.
The reservation is an atomic upsert, so two concurrent submissions with the
same key cannot both own the pending slot.
"""

import hashlib
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable

from sqlalchemy import update

from teampay.common.logging import logger
from teampay.common.state_machine import sources_for, validate_transition
from teampay.services.ledger.models import IdempotencyRecord


KEY_PREFIX = "pay_"
TOKEN_PREFIX_LENGTH = 10


def to_cents(amount: Decimal) -> int:
    """Round a currency amount half-up to whole minor units."""

    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive timestamps; they are stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _dialect_insert(db):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"idempotency ledger needs upsert support, got dialect={dialect}")
    return insert


class IdempotencyLedger:
    """Durable key -> outcome record used to suppress duplicate charges."""

    def __init__(
        self,
        session_factory,
        stale_after_seconds: int = 30,
        bucket_seconds: int = 60,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.session_factory = session_factory
        self.clock = clock
        self.stale_after = timedelta(seconds=stale_after_seconds)
        self.bucket_seconds = bucket_seconds

    def derive_key(
        self,
        collection_slug: str,
        email: str,
        amount: Decimal,
        method_token_prefix: str,
        now: datetime | None = None,
    ) -> str:
        """Deterministic key for (collection, payer, amount, time bucket, card token prefix)."""

        now = now or self.clock()
        bucket = int(now.timestamp()) // self.bucket_seconds
        material = "|".join(
            [
                collection_slug,
                normalize_email(email),
                str(to_cents(amount)),
                str(bucket),
                method_token_prefix[:TOKEN_PREFIX_LENGTH],
            ]
        )
        # 4 + 40 chars stays under Square's 45-character idempotency key limit.
        return KEY_PREFIX + hashlib.sha256(material.encode()).hexdigest()[:40]

    def lookup(self, key: str) -> IdempotencyRecord | None:
        with self.session_factory() as db:
            return db.get(IdempotencyRecord, key)

    def reserve(self, key: str, collection_id: str, amount: Decimal, email: str) -> bool:
        """Claim the pending slot for `key`.

        Inserts a `pending` row, or flips an existing `failed` row back to
        `pending`. A row that is already `pending` or `completed` is left as-is
        and the call returns False: somebody else owns the key.
        """

        now = self.clock()
        table = IdempotencyRecord.__table__
        with self.session_factory() as db:
            insert = _dialect_insert(db)
            stmt = insert(table).values(
                key=key,
                collection_id=collection_id,
                amount=amount,
                payer_email=normalize_email(email),
                status="pending",
                payment_id=None,
                created_at=now,
                updated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.key],
                set_={
                    "status": "pending",
                    "collection_id": stmt.excluded.collection_id,
                    "amount": stmt.excluded.amount,
                    "payer_email": stmt.excluded.payer_email,
                    "payment_id": None,
                    "updated_at": now,
                },
                where=table.c.status.in_(sources_for("pending")),
            ).returning(table.c.key)
            claimed = db.execute(stmt).first() is not None
            db.commit()
        logger.info("idempotency reserve claimed=%s", claimed)
        return claimed

    def _transition(self, key: str, new_status: str, **values) -> bool:
        """Apply one validated status change, guarded on the status it was read in."""

        table = IdempotencyRecord.__table__
        with self.session_factory() as db:
            record = db.get(IdempotencyRecord, key)
            if record is None:
                logger.warning("idempotency transition on missing key new_status=%s", new_status)
                return False
            from_status = record.status
            try:
                validate_transition(from_status, new_status)
            except ValueError as exc:
                logger.warning("idempotency transition skipped: %s", exc)
                return False
            result = db.execute(
                update(table)
                .where(table.c.key == key, table.c.status == from_status)
                .values(status=new_status, updated_at=self.clock(), **values)
            )
            db.commit()
        if result.rowcount != 1:
            logger.warning("idempotency transition lost a race from=%s new_status=%s", from_status, new_status)
            return False
        return True

    def touch(self, key: str) -> bool:
        """Refresh `updated_at` on a pending record so it is not reclaimed as stale."""

        table = IdempotencyRecord.__table__
        with self.session_factory() as db:
            result = db.execute(
                update(table)
                .where(table.c.key == key, table.c.status == "pending")
                .values(updated_at=self.clock())
            )
            db.commit()
        return result.rowcount > 0

    def mark_completed(self, key: str, payment_id: str | None) -> bool:
        return self._transition(key, "completed", payment_id=payment_id)

    def mark_failed(self, key: str) -> bool:
        return self._transition(key, "failed")

    def is_stale(self, record: IdempotencyRecord, now: datetime | None = None) -> bool:
        """True for a `pending` record nobody has touched within the staleness window."""

        if record.status != "pending":
            return False
        now = now or self.clock()
        return now - _as_utc(record.updated_at) > self.stale_after

    def reclaim_if_stale(self, record: IdempotencyRecord, now: datetime | None = None) -> bool:
        """Move an abandoned `pending` record to `failed` so the key can be reused."""

        if not self.is_stale(record, now):
            return False
        now = now or self.clock()
        table = IdempotencyRecord.__table__
        with self.session_factory() as db:
            result = db.execute(
                update(table)
                .where(
                    table.c.key == record.key,
                    table.c.status == "pending",
                    table.c.updated_at <= now - self.stale_after,
                )
                .values(status="failed", updated_at=now)
            )
            db.commit()
        reclaimed = result.rowcount > 0
        logger.warning("stale idempotency record reclaim reclaimed=%s", reclaimed)
        return reclaimed
