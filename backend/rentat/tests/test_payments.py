import hashlib
import hmac
import json

import pytest

from rentat.models.deposit import Deposit
from rentat.services import rental_service
from rentat.utils.errors import InvalidState, Unauthorized, ValidationError


def test_success_moves_to_awaiting_handover_and_holds_deposit(rental_in_status, get_rental, pay_rental):
	ctx = rental_in_status("approved")
	result = pay_rental(ctx.id)
	assert result == {"applied": True, "rental_id": ctx.id, "status": "awaiting_handover"}

	rental = get_rental(ctx.id)
	assert rental.payment_status == "succeeded"
	assert rental.deposit_status == "held"
	assert rental.deposit.status == "held"
	assert float(rental.deposit.amount) == 50.0
	assert rental.deposit.user_id == ctx.renter_id


def test_replayed_success_is_a_no_op(rental_in_status, get_rental, pay_rental):
	ctx = rental_in_status("awaiting_handover")
	before = len(get_rental(ctx.id).timeline)

	assert pay_rental(ctx.id)["applied"] is False

	rental = get_rental(ctx.id)
	assert rental.status == "awaiting_handover"
	assert len(rental.timeline) == before
	assert Deposit.query.filter_by(rental_id=ctx.id).count() == 1


def test_replay_after_paid_cancellation_is_a_no_op(rental_in_status, get_rental, pay_rental):
	ctx = rental_in_status("cancelled")
	before = len(get_rental(ctx.id).timeline)

	result = pay_rental(ctx.id)
	assert result == {"applied": False, "rental_id": ctx.id, "status": "cancelled"}

	rental = get_rental(ctx.id)
	assert rental.payment_status == "refunded"
	assert len(rental.timeline) == before


def test_intent_mismatch_is_rejected(rental_in_status, get_rental):
	ctx = rental_in_status("approved")
	with pytest.raises(Unauthorized) as exc:
		rental_service.on_payment_result(ctx.id, "pi_forged", "succeeded", 270)
	assert exc.value.payload["code"] == "PAYMENT_INTENT_MISMATCH"
	assert get_rental(ctx.id).status == "approved"


def test_callback_before_approval_has_no_intent_to_match(rental_in_status):
	ctx = rental_in_status("pending")
	with pytest.raises(Unauthorized):
		rental_service.on_payment_result(ctx.id, "pi_anything", "succeeded", 270)


def test_amount_must_match_total(rental_in_status, get_rental):
	ctx = rental_in_status("approved")
	intent = get_rental(ctx.id).payment_intent_id
	with pytest.raises(ValidationError):
		rental_service.on_payment_result(ctx.id, intent, "succeeded", "269.99")
	assert get_rental(ctx.id).status == "approved"


def test_failed_payment_keeps_rental_approved_and_can_be_retried(rental_in_status, get_rental, pay_rental):
	ctx = rental_in_status("approved")
	intent = get_rental(ctx.id).payment_intent_id

	result = rental_service.on_payment_result(ctx.id, intent, "failed", 270)
	assert result["applied"] is True
	rental = get_rental(ctx.id)
	assert rental.status == "approved"
	assert rental.payment_status == "failed"
	assert rental.timeline[-1].event == "payment_failed"

	assert rental_service.on_payment_result(ctx.id, intent, "failed", 270)["applied"] is False
	assert pay_rental(ctx.id)["status"] == "awaiting_handover"


def test_success_after_cancellation_is_invalid(rental_in_status, get_rental):
	ctx = rental_in_status("approved")
	rental_service.cancel(ctx.id, ctx.renter_id)
	intent = get_rental(ctx.id).payment_intent_id

	with pytest.raises(InvalidState):
		rental_service.on_payment_result(ctx.id, intent, "succeeded", 270)


def test_webhook_signature_is_checked_when_configured(app, client, rental_in_status, get_rental, monkeypatch):
	ctx = rental_in_status("approved")
	monkeypatch.setitem(app.config, "PAYMENT_WEBHOOK_SECRET", "whsec_test")
	body = json.dumps(
		{
			"rental_id": ctx.id,
			"payment_intent_id": get_rental(ctx.id).payment_intent_id,
			"status": "succeeded",
			"amount": "270.00",
		}
	).encode()

	r = client.post(
		"/api/payments/webhook",
		data=body,
		headers={"Content-Type": "application/json", "X-Signature": "bad"},
	)
	assert r.status_code == 403
	assert r.get_json()["payload"]["code"] == "INVALID_SIGNATURE"

	signature = hmac.new(b"whsec_test", body, hashlib.sha256).hexdigest()
	r = client.post(
		"/api/payments/webhook",
		data=body,
		headers={"Content-Type": "application/json", "X-Signature": signature},
	)
	assert r.status_code == 200
	assert r.get_json()["data"]["applied"] is True


def test_webhook_body_is_validated(client):
	r = client.post("/api/payments/webhook", json={"rental_id": 1, "status": "maybe"})
	assert r.status_code == 400
