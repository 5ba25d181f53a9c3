from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from rentat.models.commission_record import CommissionRecord
from rentat.models.wallet_transaction import WalletTransaction
from rentat.services import rental_service
from rentat.utils.errors import InvalidState, NotFound, Unauthorized, ValidationError


def _iso(dt: datetime) -> str:
	return dt.replace(microsecond=0).isoformat()


def _request(client, auth_header, renter_id, item_id, days=2, offset=1, **extra):
	start = datetime.utcnow() + timedelta(days=offset)
	return client.post(
		"/api/rentals",
		json={"item_id": item_id, "start": _iso(start), "end": _iso(start + timedelta(days=days)), **extra},
		headers=auth_header(renter_id),
	)


def test_full_lifecycle_scenario(client, make_user, make_item, auth_header, get_rental):
	owner = make_user()
	renter = make_user()
	item = make_item(owner.id)

	r = _request(client, auth_header, renter.id, item.id)
	assert r.status_code == 201
	data = r.get_json()["data"]
	rental_id = data["id"]
	assert data["status"] == "pending"
	assert data["pricing"]["subtotal"] == 200.0
	assert data["pricing"]["platform_fee"] == 20.0
	assert data["pricing"]["total"] == 270.0

	r = client.post(f"/api/rentals/{rental_id}/approve", json={}, headers=auth_header(owner.id))
	assert r.status_code == 200
	approved = r.get_json()["data"]
	assert approved["status"] == "approved"
	assert approved["dates"]["confirmed_start"] == approved["dates"]["requested_start"]
	intent = approved["payment"]["payment_intent_id"]
	assert intent.startswith("pi_")

	r = client.post(
		"/api/payments/webhook",
		json={"rental_id": rental_id, "payment_intent_id": intent, "status": "succeeded", "amount": "270.00"},
	)
	assert r.status_code == 200
	assert r.get_json()["data"]["status"] == "awaiting_handover"

	r = client.post(f"/api/rentals/{rental_id}/handover/confirm", headers=auth_header(renter.id))
	assert r.status_code == 200
	assert r.get_json()["data"]["bothConfirmed"] is False

	r = client.post(f"/api/rentals/{rental_id}/handover/confirm", headers=auth_header(owner.id))
	assert r.status_code == 200
	assert r.get_json()["data"]["bothConfirmed"] is True

	rental = get_rental(rental_id)
	assert rental.status == "active"
	assert rental.actual_start is not None

	for user in (renter, owner):
		r = client.post(f"/api/rentals/{rental_id}/completion/confirm", headers=auth_header(user.id))
		assert r.status_code == 200
	assert get_rental(rental_id).status == "completed"
	assert CommissionRecord.query.filter_by(rental_id=rental_id).count() == 1

	# One post-completion dispute is allowed; once resolved, nothing reopens the rental.
	r = client.post(
		f"/api/rentals/{rental_id}/disputes",
		json={"reason": "Lens scratched", "evidence": ["https://storage.test/e/1.jpg"]},
		headers=auth_header(renter.id),
	)
	assert r.status_code == 201
	r = client.post(
		f"/api/admin/rentals/{rental_id}/dispute/resolve",
		json={"decision": "No damage found"},
		headers=auth_header(owner.id + 100000, roles=["MODERATOR"]),
	)
	assert r.status_code == 200
	assert get_rental(rental_id).status == "completed"

	r = client.post(f"/api/rentals/{rental_id}/completion/confirm", headers=auth_header(owner.id))
	assert r.status_code == 409
	assert r.get_json()["payload"]["code"] == "INVALID_STATE"

	r = client.post(
		f"/api/rentals/{rental_id}/disputes",
		json={"reason": "Again"},
		headers=auth_header(owner.id),
	)
	assert r.status_code == 409
	assert r.get_json()["payload"]["code"] == "INVALID_STATE"


def test_approve_by_non_owner_is_unauthorized(client, rental_in_status, auth_header):
	ctx = rental_in_status("pending")
	r = client.post(f"/api/rentals/{ctx.id}/approve", json={}, headers=auth_header(ctx.renter_id))
	assert r.status_code == 403
	payload = r.get_json()["payload"]
	assert payload["code"] == "UNAUTHORIZED"
	assert payload["rule"] == "owner_only"


def test_approving_twice_reports_current_and_expected_status(client, rental_in_status, auth_header):
	ctx = rental_in_status("approved")
	r = client.post(f"/api/rentals/{ctx.id}/approve", json={}, headers=auth_header(ctx.owner_id))
	assert r.status_code == 409
	payload = r.get_json()["payload"]
	assert payload["code"] == "INVALID_STATE"
	assert payload["current_status"] == "approved"
	assert payload["expected_status"] == ["pending"]
	assert payload["action"] == "approve"


def test_reject_is_terminal(rental_in_status, get_rental):
	ctx = rental_in_status("rejected")
	assert get_rental(ctx.id).status == "rejected"
	with pytest.raises(InvalidState):
		rental_service.approve(ctx.id, ctx.owner_id)


def test_unknown_rental_is_not_found(client, make_user, auth_header):
	u = make_user()
	r = client.post("/api/rentals/987654/approve", json={}, headers=auth_header(u.id))
	assert r.status_code == 404
	assert r.get_json()["payload"]["code"] == "NOT_FOUND"


def test_rental_visible_to_parties_and_staff_only(client, rental_in_status, make_user, auth_header):
	ctx = rental_in_status("pending")
	stranger = make_user()

	assert client.get(f"/api/rentals/{ctx.id}", headers=auth_header(ctx.renter_id)).status_code == 200
	assert client.get(f"/api/rentals/{ctx.id}", headers=auth_header(stranger.id)).status_code == 403
	r = client.get(f"/api/rentals/{ctx.id}", headers=auth_header(stranger.id, roles=["ADMIN"]))
	assert r.status_code == 200
	timeline = r.get_json()["data"]["timeline"]
	assert [e["event"] for e in timeline] == ["rental_requested"]


def test_weekly_rate_and_delivery_fee_in_snapshot(make_user, make_item):
	owner = make_user()
	renter = make_user()
	item = make_item(owner.id, daily_rate=100, weekly_rate=600, security_deposit=0, delivery_fee=25)
	start = datetime.utcnow() + timedelta(days=1)

	data = rental_service.request_rental(
		renter.id, item.id, start, start + timedelta(days=8), delivery_method="delivery"
	)
	pricing = data["pricing"]
	assert pricing["total_days"] == 8
	assert pricing["subtotal"] == 700.0
	assert pricing["platform_fee"] == 70.0
	assert pricing["delivery_fee"] == 25.0
	assert pricing["total"] == 795.0


def test_partial_days_round_up(make_user, make_item):
	owner = make_user()
	renter = make_user()
	item = make_item(owner.id, daily_rate=80, security_deposit=0)
	start = datetime.utcnow() + timedelta(days=1)

	data = rental_service.request_rental(renter.id, item.id, start, start + timedelta(days=1, hours=3))
	assert data["pricing"]["total_days"] == 2
	assert data["pricing"]["subtotal"] == 160.0


def test_overlapping_request_rejected_once_approved(client, make_user, make_item, auth_header):
	owner = make_user()
	first = make_user()
	second = make_user()
	item = make_item(owner.id)

	r = _request(client, auth_header, first.id, item.id, days=3, offset=5)
	assert r.status_code == 201
	rental_service.approve(r.get_json()["data"]["id"], owner.id)

	r2 = _request(client, auth_header, second.id, item.id, days=3, offset=6)
	assert r2.status_code == 409


def test_cannot_rent_own_item(make_user, make_item):
	owner = make_user()
	item = make_item(owner.id)
	start = datetime.utcnow() + timedelta(days=1)
	with pytest.raises(Unauthorized):
		rental_service.request_rental(owner.id, item.id, start, start + timedelta(days=1))


def test_unverified_renter_needs_kyc(client, make_user, make_item, auth_header):
	owner = make_user()
	renter = make_user(verified=False)
	item = make_item(owner.id)

	r = _request(client, auth_header, renter.id, item.id)
	assert r.status_code == 403
	assert r.get_json()["payload"]["code"] == "KYC_REQUIRED"


def test_request_body_is_validated(client, make_user, make_item, auth_header):
	owner = make_user()
	renter = make_user()
	item = make_item(owner.id)
	start = datetime.utcnow() + timedelta(days=2)

	r = client.post(
		"/api/rentals",
		json={"item_id": item.id, "start": _iso(start), "end": _iso(start - timedelta(days=1))},
		headers=auth_header(renter.id),
	)
	assert r.status_code == 400

	with pytest.raises(NotFound):
		rental_service.request_rental(renter.id, 999999, start, start + timedelta(days=1))
	with pytest.raises(ValidationError):
		rental_service.request_rental(renter.id, item.id, start, start - timedelta(hours=1))


def test_cancel_after_payment_refunds_card_minus_deposit_and_releases_deposit(rental_in_status, get_rental):
	ctx = rental_in_status("awaiting_handover")
	rental_service.cancel(ctx.id, ctx.renter_id)

	rental = get_rental(ctx.id)
	assert rental.status == "cancelled"
	assert rental.cancelled_by == "renter"
	assert rental.payment_status == "refunded"
	assert rental.refund_amount == Decimal("220.00")
	assert rental.deposit.status == "released"

	entries = WalletTransaction.query.filter_by(related_rental_id=ctx.id).all()
	assert [(e.type, e.amount, e.user_id) for e in entries] == [("deposit_release", Decimal("50.00"), ctx.renter_id)]


def test_owner_must_give_a_reason_to_cancel(rental_in_status, get_rental):
	ctx = rental_in_status("active")
	with pytest.raises(ValidationError):
		rental_service.cancel(ctx.id, ctx.owner_id)

	rental_service.cancel(ctx.id, ctx.owner_id, reason="Item broke before use")
	rental = get_rental(ctx.id)
	assert rental.status == "cancelled"
	assert rental.refund_amount == Decimal("0.00")


def test_pending_rental_cannot_be_cancelled(rental_in_status):
	ctx = rental_in_status("pending")
	with pytest.raises(InvalidState):
		rental_service.cancel(ctx.id, ctx.renter_id)


def test_admin_cancellation(client, rental_in_status, make_user, auth_header, get_rental):
	ctx = rental_in_status("approved")
	admin = make_user()
	r = client.post(
		f"/api/rentals/{ctx.id}/cancel",
		json={"reason": "Fraud review"},
		headers=auth_header(admin.id, roles=["ADMIN"]),
	)
	assert r.status_code == 200
	assert get_rental(ctx.id).cancelled_by == "admin"


def test_completion_requires_both_parties(rental_in_status, get_rental):
	ctx = rental_in_status("active")
	first = rental_service.confirm_completion(ctx.id, ctx.owner_id)
	assert first["bothConfirmed"] is False
	assert get_rental(ctx.id).status == "active"

	second = rental_service.confirm_completion(ctx.id, ctx.renter_id)
	assert second["bothConfirmed"] is True
	rental = get_rental(ctx.id)
	assert rental.status == "completed"
	assert rental.actual_end is not None
