"""Payment submission workflow.

Sequences one charge end to end: rate limits, input validation, collection
checks, idempotency reservation, the processor call (with retries), and the
post-charge bookkeeping. Every check that is free and reversible runs before
the processor is called; once money has moved, bookkeeping failures are
logged instead of surfaced.
"""

import re
from decimal import Decimal, InvalidOperation

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from teampay.common.errors import (
    CollectionStateError,
    DuplicateInFlightError,
    LedgerWriteError,
    PaymentError,
    PaymentValidationError,
    ProcessorError,
    RateLimitExceeded,
)
from teampay.common.logging import collection_slug_ctx, idempotency_key_ctx, logger
from teampay.common.metrics import (
    payment_duplicates_total,
    payment_failure_total,
    payment_requests_total,
    payment_success_total,
    rate_limited_total,
)
from teampay.common.retry import PaymentRetryManager, RetryOptions
from teampay.common.tracing import processor_span
from teampay.services.ledger.service import IdempotencyLedger, normalize_email, to_cents
from teampay.services.orchestrator.models import Payment, PaymentCollection
from teampay.services.orchestrator.schemas import ChargeRequest, PaymentOut, PaymentResult
from teampay.services.provider_adapter.errors import GENERIC_FAILURE, classify, log_processor_error


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
MAX_SLUG_LENGTH = 100
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100


class PaymentOrchestrator:
    """Owns the charge lifecycle; all collaborators are injected."""

    def __init__(
        self,
        session_factory,
        ledger: IdempotencyLedger,
        processor,
        rate_limiters: dict,
        notifier,
        settings,
        sleep=None,
        service_name: str = "teampay-api",
    ) -> None:
        self.session_factory = session_factory
        self.ledger = ledger
        self.processor = processor
        self.payment_limiter = rate_limiters["payment"]
        self.notifier = notifier
        self.settings = settings
        self.sleep = sleep
        self.service_name = service_name
        self.retry_options = RetryOptions(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            backoff_multiplier=settings.retry_backoff_multiplier,
        )

    async def submit(self, req: ChargeRequest, client_ip: str = "unknown") -> PaymentResult:
        """Run one submission through every gate and, if they pass, charge it."""

        payment_requests_total.labels(service=self.service_name).inc()
        collection_slug_ctx.set(req.collection_slug)
        try:
            self._enforce_rate_limits(req, client_ip)
            amount = self._validate(req)
            collection = self._load_collection(req.collection_slug)
            key = self.ledger.derive_key(req.collection_slug, req.payer_email, amount, req.source_id)
            idempotency_key_ctx.set(key)
            record = self._lookup_key(key)
            if record is not None and record.status == "completed":
                # A repeat of a charge that already landed is answered before the target check.
                return self._duplicate_result(record)
            self._check_target(collection, amount)
            duplicate = self._claim_key(key, record, collection, amount, req.payer_email)
            if duplicate is not None:
                return duplicate
        except PaymentError as exc:
            payment_failure_total.labels(service=self.service_name, reason=exc.reason).inc()
            logger.info("payment rejected reason=%s", exc.reason)
            return PaymentResult.from_error(exc)
        except Exception as exc:
            payment_failure_total.labels(service=self.service_name, reason="internal").inc()
            logger.exception("payment pre-charge failure: %s", exc)
            return PaymentResult.failure(GENERIC_FAILURE.message)

        return await self._charge(req, collection, amount, key)

    def _enforce_rate_limits(self, req: ChargeRequest, client_ip: str) -> None:
        checks = [
            ("ip", f"payment:ip:{client_ip}", self.settings.payment_ip_limit),
            ("email", f"payment:email:{normalize_email(req.payer_email)}", self.settings.payment_email_limit),
            (
                "fingerprint",
                f"payment:fingerprint:{client_ip}:{self._amount_fingerprint(req.amount)}",
                self.settings.payment_fingerprint_limit,
            ),
        ]
        for scope, key, limit in checks:
            result = self.payment_limiter.check(key, limit)
            if not result.allowed:
                rate_limited_total.labels(service=self.service_name, scope=scope).inc()
                raise RateLimitExceeded(result.retry_after_seconds())

    @staticmethod
    def _amount_fingerprint(raw: str) -> str:
        """Cents for a parseable amount, so "25" and "25.00" share one bucket."""

        raw = raw.strip()
        try:
            amount = Decimal(raw)
        except InvalidOperation:
            return raw
        if not amount.is_finite():
            return raw
        return str(to_cents(amount))

    def _validate(self, req: ChargeRequest) -> Decimal:
        """Check every field; return the amount rounded to whole cents."""

        try:
            amount = Decimal(req.amount.strip())
        except InvalidOperation:
            raise PaymentValidationError("Please enter a valid payment amount.") from None
        if not amount.is_finite():
            raise PaymentValidationError("Please enter a valid payment amount.")
        if amount < Decimal(str(self.settings.min_payment_amount)):
            raise PaymentValidationError(f"Minimum payment amount is ${self.settings.min_payment_amount:,.2f}")
        if amount > Decimal(str(self.settings.max_payment_amount)):
            raise PaymentValidationError(f"Maximum payment amount is ${self.settings.max_payment_amount:,.2f}")

        if not EMAIL_PATTERN.match(req.payer_email.strip()):
            raise PaymentValidationError("Please enter a valid email address.")
        name_length = len(req.payer_name.strip())
        if not MIN_NAME_LENGTH <= name_length <= MAX_NAME_LENGTH:
            raise PaymentValidationError(
                f"Name must be between {MIN_NAME_LENGTH} and {MAX_NAME_LENGTH} characters."
            )
        if len(req.collection_slug) > MAX_SLUG_LENGTH or not SLUG_PATTERN.match(req.collection_slug):
            raise PaymentValidationError("Invalid collection.")
        if not req.source_id.startswith(tuple(self.settings.square_token_prefixes)):
            raise PaymentValidationError("Invalid payment method. Please refresh the page and try again.")

        return Decimal(to_cents(amount)) / 100

    def _load_collection(self, slug: str) -> PaymentCollection:
        with self.session_factory() as db:
            collection = db.execute(
                select(PaymentCollection).where(
                    PaymentCollection.slug == slug,
                    PaymentCollection.is_active.is_(True),
                )
            ).scalar_one_or_none()
        if collection is None:
            raise CollectionStateError("Collection not found or inactive")
        return collection

    def _check_target(self, collection: PaymentCollection, amount: Decimal) -> None:
        """Reject a payment that would push the collection past its overage ceiling."""

        if not collection.target_amount:
            return
        ceiling = Decimal(collection.target_amount) * Decimal(str(self.settings.target_overage_ratio))
        if Decimal(collection.current_amount or 0) + amount > ceiling:
            raise CollectionStateError(
                "This payment would exceed the collection target. Please contact support."
            )

    def _lookup_key(self, key: str):
        try:
            return self.ledger.lookup(key)
        except SQLAlchemyError as exc:
            logger.exception("idempotency ledger read failed: %s", exc)
            raise LedgerWriteError() from exc

    def _claim_key(self, key: str, record, collection, amount: Decimal, email: str) -> PaymentResult | None:
        """Reserve the ledger slot, or return the earlier result if the key completed meanwhile.

        `record` is the ledger row read before the target check, if any.
        """

        try:
            if record is not None and record.status == "pending":
                if not self.ledger.is_stale(record):
                    payment_duplicates_total.labels(service=self.service_name, outcome="in_flight").inc()
                    raise DuplicateInFlightError()
                self.ledger.reclaim_if_stale(record)
            claimed = self.ledger.reserve(key, collection.id, amount, email)
            if not claimed:
                # Another submission took the key between lookup and reserve.
                record = self.ledger.lookup(key)
                if record is not None and record.status == "completed":
                    return self._duplicate_result(record)
                payment_duplicates_total.labels(service=self.service_name, outcome="in_flight").inc()
                raise DuplicateInFlightError()
        except SQLAlchemyError as exc:
            logger.exception("idempotency ledger write failed: %s", exc)
            raise LedgerWriteError() from exc
        return None

    def _duplicate_result(self, record) -> PaymentResult:
        payment = None
        if record.payment_id:
            with self.session_factory() as db:
                payment = db.get(Payment, record.payment_id)
        logger.info("duplicate submission served from ledger")
        if payment is None:
            payment_duplicates_total.labels(service=self.service_name, outcome="completed").inc()
            return PaymentResult(success=True, is_duplicate=True)
        return self._duplicate_payment_result(payment)

    def _duplicate_payment_result(self, payment: Payment) -> PaymentResult:
        payment_duplicates_total.labels(service=self.service_name, outcome="completed").inc()
        return PaymentResult(
            success=True,
            payment=PaymentOut.model_validate(payment),
            payment_id=payment.square_payment_id,
            receipt_url=(payment.metadata_ or {}).get("receipt_url"),
            is_duplicate=True,
        )

    async def _charge(self, req: ChargeRequest, collection, amount: Decimal, key: str) -> PaymentResult:
        kwargs = {"service_name": self.service_name}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        manager = PaymentRetryManager(self.retry_options, **kwargs)
        amount_cents = to_cents(amount)

        async def attempt():
            self._heartbeat(key)
            return await self.processor.create_payment(
                source_id=req.source_id,
                idempotency_key=key,
                amount_cents=amount_cents,
                currency=self.settings.currency,
                buyer_email=normalize_email(req.payer_email),
                note=collection.title,
            )

        def on_retry(attempt_number: int, error: BaseException) -> None:
            log_processor_error(error, f"create_payment attempt={attempt_number}")

        try:
            with processor_span("create_payment", idempotency_key=key, amount_cents=amount_cents):
                charge = await manager.execute_with_retry(attempt, on_retry=on_retry)
        except ProcessorError as exc:
            log_processor_error(exc, "create_payment")
            self._settle_failed(key)
            payment_failure_total.labels(service=self.service_name, reason="processor").inc()
            return PaymentResult.failure(classify(exc).message)
        except Exception as exc:
            logger.exception("unexpected charge failure: %s", exc)
            self._settle_failed(key)
            payment_failure_total.labels(service=self.service_name, reason="internal").inc()
            return PaymentResult.failure(GENERIC_FAILURE.message)

        return self._record_success(req, collection, amount, key, charge)

    def _heartbeat(self, key: str) -> None:
        """Keep the pending reservation fresh across retries and backoff."""

        try:
            self.ledger.touch(key)
        except SQLAlchemyError as exc:
            logger.warning("idempotency heartbeat failed: %s", exc)

    def _settle_failed(self, key: str) -> None:
        try:
            self.ledger.mark_failed(key)
        except SQLAlchemyError as exc:
            logger.exception("failed to mark idempotency record failed: %s", exc)

    def _record_success(self, req: ChargeRequest, collection, amount: Decimal, key: str, charge) -> PaymentResult:
        """Persist the charge and settle bookkeeping; the money has already moved.

        A charge is recorded at most once. If another submission with the same
        key already wrote the row for this processor payment (for example after
        reclaiming a slow attempt as stale), this call returns that record as a
        duplicate and leaves the collection total alone.
        """

        payment = None
        try:
            with self.session_factory() as db:
                payment = Payment(
                    collection_id=collection.id,
                    square_payment_id=charge.id,
                    amount=amount,
                    currency=self.settings.currency,
                    payer_email=normalize_email(req.payer_email),
                    payer_name=req.payer_name.strip(),
                    status="completed",
                    metadata_={
                        "environment": self.settings.square_environment,
                        "idempotency_key": key,
                        "square_status": charge.status,
                        "receipt_url": charge.receipt_url,
                    },
                )
                db.add(payment)
                db.commit()
                db.refresh(payment)
        except IntegrityError:
            payment = None
            existing = self._existing_charge(charge.id)
            if existing is not None:
                logger.warning("charge already recorded square_payment_id=%s", charge.id)
                self._complete_key(key, existing.id)
                return self._duplicate_payment_result(existing)
            logger.exception("charge record write failed square_payment_id=%s", charge.id)
        except SQLAlchemyError as exc:
            payment = None
            logger.exception("charge record write failed square_payment_id=%s: %s", charge.id, exc)

        if not self._complete_key(key, payment.id if payment is not None else None):
            existing = self._existing_charge(charge.id)
            if existing is not None and (payment is None or existing.id != payment.id):
                logger.warning("key already completed for square_payment_id=%s", charge.id)
                return self._duplicate_payment_result(existing)

        try:
            with self.session_factory() as db:
                db.execute(
                    update(PaymentCollection)
                    .where(PaymentCollection.id == collection.id)
                    .values(current_amount=PaymentCollection.current_amount + amount)
                )
                db.commit()
            collection.current_amount = Decimal(collection.current_amount or 0) + amount
        except SQLAlchemyError as exc:
            logger.exception("failed to update collection total: %s", exc)

        if payment is not None and self.notifier is not None:
            try:
                self.notifier.dispatch(payment, collection, charge.receipt_url)
            except Exception as exc:
                logger.exception("notification dispatch failed: %s", exc)

        payment_success_total.labels(service=self.service_name).inc()
        logger.info("payment completed square_payment_id=%s", charge.id)
        return PaymentResult(
            success=True,
            payment=PaymentOut.model_validate(payment) if payment is not None else None,
            payment_id=charge.id,
            receipt_url=charge.receipt_url,
        )

    def _complete_key(self, key: str, payment_id: str | None) -> bool:
        """False only when the ledger says the key was already settled by someone else."""

        try:
            return self.ledger.mark_completed(key, payment_id)
        except SQLAlchemyError as exc:
            logger.exception("failed to mark idempotency record completed: %s", exc)
            return True

    def _existing_charge(self, square_payment_id: str) -> Payment | None:
        try:
            with self.session_factory() as db:
                return db.execute(
                    select(Payment).where(Payment.square_payment_id == square_payment_id)
                ).scalar_one_or_none()
        except SQLAlchemyError as exc:
            logger.exception("charge record lookup failed: %s", exc)
            return None

    def get_payment(self, payment_id: str) -> Payment | None:
        with self.session_factory() as db:
            return db.get(Payment, payment_id)
