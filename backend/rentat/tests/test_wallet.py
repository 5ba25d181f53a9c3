from decimal import Decimal

import pytest

from rentat.extensions import db
from rentat.services import ledger_service, wallet_service
from rentat.utils.errors import Unauthorized, ValidationError


def _fund(user_id, amount, status="AVAILABLE"):
	ledger_service.append(user_id, amount, "rental_income", availability_status=status)
	db.session.commit()


def test_withdrawal_needs_kyc(make_user):
	u = make_user(verified=False)
	_fund(u.id, 100)

	with pytest.raises(Unauthorized) as exc:
		wallet_service.request_withdrawal(u.id, 10, "bank_transfer")
	assert exc.value.payload["code"] == "KYC_REQUIRED"
	assert ledger_service.balance(u.id)["available"] == Decimal("100.00")


def test_withdrawal_debits_available_funds_only(make_user):
	u = make_user()
	_fund(u.id, 100)
	_fund(u.id, 500, status="PENDING")

	result = wallet_service.request_withdrawal(u.id, "40.00", "instapay")
	assert result["entry"]["amount"] == -40.0
	assert result["entry"]["type"] == "withdrawal"
	assert result["balance"]["available"] == 60.0
	assert result["balance"]["pending"] == 500.0

	with pytest.raises(ValidationError):
		wallet_service.request_withdrawal(u.id, 61, "instapay")
	with pytest.raises(ValidationError):
		wallet_service.request_withdrawal(u.id, -5, "instapay")


def test_kyc_is_read_through_the_identity_collaborator(app, make_user, monkeypatch):
	u = make_user(verified=False)
	_fund(u.id, 20)

	class AlwaysVerified:
		def is_verified(self, user_id):
			return True

	monkeypatch.setitem(app.extensions["rentat"], "identity", AlwaysVerified())
	wallet_service.request_withdrawal(u.id, 20, "mobile_wallet")
	assert ledger_service.balance(u.id)["available"] == Decimal("0.00")


def test_wallet_endpoints(client, make_user, auth_header):
	u = make_user()
	_fund(u.id, 75)
	_fund(u.id, 25, status="LOCKED")

	r = client.get("/api/wallet/balance", headers=auth_header(u.id))
	assert r.status_code == 200
	assert r.get_json()["data"] == {"available": 75.0, "pending": 0.0, "locked": 25.0, "total": 100.0, "currency": "EGP"}

	r = client.get("/api/wallet/transactions?availability=LOCKED", headers=auth_header(u.id))
	assert [i["amount"] for i in r.get_json()["data"]["items"]] == [25.0]

	r = client.post("/api/wallet/withdrawals", json={"amount": "80", "method": "bank_transfer"}, headers=auth_header(u.id))
	assert r.status_code == 400

	r = client.post("/api/wallet/withdrawals", json={"amount": "75", "method": "bank_transfer"}, headers=auth_header(u.id))
	assert r.status_code == 201


def test_admin_ledger_transition_endpoint(client, make_user, auth_header):
	u = make_user()
	admin = make_user()
	entry = ledger_service.append(u.id, 15, "referral_reward", availability_status="PENDING")
	db.session.commit()

	r = client.post(
		f"/api/admin/ledger/{entry.id}/availability",
		json={"availability_status": "AVAILABLE"},
		headers=auth_header(admin.id, roles=["ADMIN"]),
	)
	assert r.status_code == 200
	assert r.get_json()["data"]["availability_status"] == "AVAILABLE"

	r = client.post(
		f"/api/admin/ledger/{entry.id}/availability",
		json={"availability_status": "LOCKED"},
		headers=auth_header(admin.id, roles=["ADMIN"]),
	)
	assert r.status_code == 409
