# Overview: Payment intents for ecommerce checkout and the processor webhook.

"""
Payment Intent Service

WHY: An ecommerce order may only be finalized after the processor has
confirmed payment. We create the intent up front, the client confirms it
with the client_secret, and the processor's webhook marks it succeeded.
place_order() then claims a succeeded intent for exactly the order total.

LIFECYCLE:
requires_confirmation -> succeeded   (webhook payment_intent.succeeded)
requires_confirmation -> canceled    (webhook payment_intent.canceled)

DESIGN PRINCIPLES:
- Webhooks are idempotent: replaying an event changes nothing
- A succeeded event is only applied once the processor confirms it
- An intent is claimed by at most one order (order_id is unique)
- The webhook carries no tenant header; the company comes from the row
"""

from __future__ import annotations

import hmac

from flask import current_app

from ..errors import AuthenticationError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import PaymentIntent
from ..time_utils import utcnow
from ..validation import parse_money_cents
from .concurrency import lock_for_update, run_atomic
from .payment_gateway import get_payment_processor
from .tenant_service import scoped_query


INTENT_STATUS_REQUIRES_CONFIRMATION = "requires_confirmation"
INTENT_STATUS_SUCCEEDED = "succeeded"
INTENT_STATUS_CANCELED = "canceled"

EVENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_CANCELED = "payment_intent.canceled"


def create_payment_intent(
    company_id: int,
    *,
    amount_cents,
    user_id: int | None = None,
    currency: str | None = None,
) -> tuple[PaymentIntent, str]:
    """
    Create an intent at the processor and record it locally.

    Returns (intent, client_secret). Raises PaymentProcessorError (502)
    when the processor is unreachable; nothing is stored in that case.
    """
    amount_cents = parse_money_cents(amount_cents, "amount_cents", allow_zero=False)
    currency = (currency or current_app.config["PAYMENT_CURRENCY"]).lower()

    remote = get_payment_processor().create_intent(
        amount_cents,
        currency,
        metadata={"company_id": company_id, "user_id": user_id or ""},
    )
    if not remote.get("id"):
        raise ConflictError("Payment processor did not return an intent id")

    def _op():
        intent = PaymentIntent(
            company_id=company_id,
            user_id=user_id,
            processor_intent_id=remote["id"],
            client_secret=remote.get("client_secret"),
            amount_cents=amount_cents,
            currency=currency,
            status=INTENT_STATUS_REQUIRES_CONFIRMATION,
        )
        db.session.add(intent)
        db.session.flush()
        return intent

    intent = run_atomic(_op)
    current_app.logger.info("Payment intent %s created (company_id=%s)", intent.processor_intent_id, company_id)
    return intent, intent.client_secret


def verify_webhook_secret(provided: str | None) -> None:
    expected = current_app.config.get("PAYMENT_WEBHOOK_SECRET") or ""
    if not expected or not provided or not hmac.compare_digest(provided, expected):
        raise AuthenticationError("Invalid webhook secret")


def _confirm_with_processor(intent: PaymentIntent) -> None:
    """
    Re-read the intent at the processor before applying a succeeded event.

    The processor must report status "succeeded" and the stored amount.
    """
    remote = get_payment_processor().retrieve_intent(intent.processor_intent_id)
    if remote.get("status") != INTENT_STATUS_SUCCEEDED or remote.get("amount") != intent.amount_cents:
        current_app.logger.warning(
            "Webhook for intent %s not confirmed by processor (status=%r amount=%r)",
            intent.processor_intent_id, remote.get("status"), remote.get("amount"),
        )
        raise ConflictError("Payment processor has not confirmed this payment intent")


def handle_webhook_event(payload) -> PaymentIntent | None:
    """
    Apply a processor event. Unknown event types are acknowledged and ignored.

    A succeeded event is checked against the processor (retrieve_intent)
    unless the intent is already succeeded locally.

    Returns the affected intent, or None for ignored events.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Webhook body must be a JSON object")
    event_type = payload.get("type")
    data = payload.get("data") or {}
    intent_id = data.get("id") if isinstance(data, dict) else None

    if event_type not in (EVENT_SUCCEEDED, EVENT_CANCELED):
        current_app.logger.info("Ignoring payment webhook event type=%r", event_type)
        return None
    if not intent_id:
        raise ValidationError("Webhook event is missing data.id")

    known = db.session.query(PaymentIntent).filter(PaymentIntent.processor_intent_id == intent_id).first()
    if known is None:
        raise NotFoundError("Payment intent not found")
    if event_type == EVENT_SUCCEEDED and known.status != INTENT_STATUS_SUCCEEDED:
        _confirm_with_processor(known)

    def _op():
        intent = lock_for_update(
            db.session.query(PaymentIntent).filter(PaymentIntent.processor_intent_id == intent_id)
        ).first()
        if intent is None:
            raise NotFoundError("Payment intent not found")

        if event_type == EVENT_SUCCEEDED:
            if intent.status != INTENT_STATUS_SUCCEEDED:
                intent.status = INTENT_STATUS_SUCCEEDED
                intent.succeeded_at = utcnow()
        elif intent.status == INTENT_STATUS_REQUIRES_CONFIRMATION:
            intent.status = INTENT_STATUS_CANCELED
        db.session.flush()
        return intent

    intent = run_atomic(_op)
    current_app.logger.info("Payment intent %s is %s", intent.processor_intent_id, intent.status)
    return intent


def claim_intent_for_order(
    company_id: int,
    processor_intent_id: str,
    *,
    amount_cents: int,
    user_id: int | None,
) -> PaymentIntent:
    """
    Lock a succeeded, unclaimed intent for an order of exactly amount_cents.

    Runs inside place_order()'s unit of work; the caller sets order_id.
    """
    intent = lock_for_update(
        scoped_query(PaymentIntent, company_id).filter(PaymentIntent.processor_intent_id == processor_intent_id)
    ).first()
    if intent is None:
        raise NotFoundError("Payment intent not found")
    if intent.user_id is not None and user_id is not None and intent.user_id != user_id:
        raise NotFoundError("Payment intent not found")
    if intent.status != INTENT_STATUS_SUCCEEDED:
        raise ConflictError("Payment has not been confirmed")
    if intent.order_id is not None:
        raise ConflictError("Payment intent has already been used for an order")
    if intent.amount_cents != amount_cents:
        raise ConflictError(
            f"Payment amount {intent.amount_cents} does not match order total {amount_cents}",
        )
    return intent
