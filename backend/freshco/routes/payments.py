# Overview: Flask API routes for payment intents and the processor webhook.

# backend/freshco/routes/payments.py
"""
Payment API Routes

WHY: Ecommerce orders are only accepted once the processor confirms the
payment. The client creates an intent here, confirms it with the
processor using client_secret, and the processor calls our webhook.

SECURITY:
- Creating an intent requires authentication (any role)
- The webhook is authenticated by the X-Webhook-Secret header, not a
  session; it carries no tenant header and is tenant-exempt
"""

from flask import Blueprint, request, g

from ..decorators import require_auth
from ..responses import created, ok
from ..services import payment_service


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")

WEBHOOK_SECRET_HEADER = "X-Webhook-Secret"


@payments_bp.post("/intents")
@require_auth
def create_intent_route():
    """
    Create a payment intent for an upcoming ecommerce order.

    Request body:
    {
        "amount_cents": 1598,   // required, must equal the order total
        "currency": "usd"       // optional
    }

    Returns:
        201: {intent, client_secret}
        502: payment processor unreachable
    """
    data = request.get_json(silent=True) or {}
    intent, client_secret = payment_service.create_payment_intent(
        g.company_id,
        amount_cents=data.get("amount_cents"),
        user_id=g.current_user.id,
        currency=data.get("currency"),
    )
    return created({"intent": intent.to_dict(), "client_secret": client_secret})


@payments_bp.post("/webhook")
def payment_webhook():
    """
    Processor event callback.

    Request body:
    {
        "type": "payment_intent.succeeded",
        "data": {"id": "pi_..."}
    }

    Replaying an event is harmless; unknown event types are acknowledged.
    """
    payment_service.verify_webhook_secret(request.headers.get(WEBHOOK_SECRET_HEADER))
    intent = payment_service.handle_webhook_event(request.get_json(silent=True))
    return ok({
        "received": True,
        "intent": intent.to_dict() if intent else None,
    })
