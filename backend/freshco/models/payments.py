from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class PaymentIntent(db.Model):
    """
    Local record of a payment processor intent.

    LIFECYCLE:
    requires_confirmation -> succeeded (webhook "payment_intent.succeeded")
                          -> canceled

    An ecommerce order may only be placed against a succeeded intent whose
    amount matches the order total; order_id links the two afterwards and
    prevents reuse.
    """
    __tablename__ = "payment_intents"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.Integer, db.ForeignKey("companies.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, unique=True)

    # Identifier assigned by the processor (pi_...)
    processor_intent_id = db.Column(db.String(128), nullable=False, unique=True, index=True)
    client_secret = db.Column(db.String(255), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(8), nullable=False, default="usd")
    status = db.Column(db.String(32), nullable=False, default="requires_confirmation", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    succeeded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "processor_intent_id": self.processor_intent_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "succeeded_at": to_utc_z(self.succeeded_at),
        }
