import hashlib
import hmac

from flask import Blueprint, current_app, request

from rentat.schemas.rental_schemas import PaymentWebhookSchema
from rentat.services import rental_service
from rentat.utils.errors import Unauthorized
from rentat.utils.responses import success_response

bp = Blueprint("payments", __name__)

payment_webhook_schema = PaymentWebhookSchema()


def _verify_signature() -> None:
    secret = current_app.config.get("PAYMENT_WEBHOOK_SECRET") or ""
    if not secret:
        return
    expected = hmac.new(secret.encode(), request.get_data(), hashlib.sha256).hexdigest()
    received = request.headers.get("X-Signature", "")
    if not hmac.compare_digest(expected, received):
        current_app.logger.warning("[payments] webhook signature rejected from %s", request.remote_addr)
        raise Unauthorized("Invalid webhook signature.", rule="webhook_signature", code="INVALID_SIGNATURE")


@bp.post("/webhook")
def payment_webhook():
    """
    Gateway callback; not JWT protected.
    Body JSON:
    {
      "rental_id": 1,
      "payment_intent_id": "pi_...",
      "status": "succeeded",
      "amount": "275.00"
    }
    """
    _verify_signature()
    data = payment_webhook_schema.load(request.get_json() or {})
    result = rental_service.on_payment_result(
        data["rental_id"],
        data["payment_intent_id"],
        data["status"],
        data["amount"],
    )
    return success_response(data=result, message="Processed" if result["applied"] else "Already processed")
