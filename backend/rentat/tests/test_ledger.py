from decimal import Decimal

import pytest

from rentat.extensions import db
from rentat.models.wallet_transaction import WalletTransaction
from rentat.services import ledger_service
from rentat.utils.errors import InvalidState, NotFound, ValidationError


def test_balance_groups_signed_entries_by_availability(make_user):
	u = make_user()
	ledger_service.append(u.id, 100, "rental_income")
	ledger_service.append(u.id, 50, "rental_income", availability_status="PENDING")
	ledger_service.append(u.id, 30, "rental_income", availability_status="LOCKED")
	ledger_service.append(u.id, -20, "withdrawal")
	db.session.commit()

	b = ledger_service.balance(u.id)
	assert b["available"] == Decimal("80.00")
	assert b["pending"] == Decimal("50.00")
	assert b["locked"] == Decimal("30.00")
	assert b["total"] == Decimal("160.00")
	assert b["currency"] == "EGP"


def test_legacy_entries_without_status_count_as_available(make_user):
	u = make_user()
	db.session.add(WalletTransaction(user_id=u.id, amount=Decimal("12.50"), currency="EGP", type="referral_reward"))
	db.session.commit()

	b = ledger_service.balance(u.id)
	assert b["available"] == Decimal("12.50")
	assert b["total"] == Decimal("12.50")

	items = ledger_service.list_transactions(u.id, availability="AVAILABLE")
	assert [i["availability_status"] for i in items] == ["AVAILABLE"]


def test_balance_of_user_without_entries_is_zero(make_user):
	u = make_user()
	b = ledger_service.balance(u.id)
	assert b["total"] == Decimal("0.00")
	assert b["available"] == b["pending"] == b["locked"] == Decimal("0.00")


def test_balance_always_equals_sum_of_entries(make_user):
	u = make_user()
	amounts = ["10.10", "-3.05", "7.00", "0.95", "-1.00"]
	for i, amount in enumerate(amounts):
		status = ("AVAILABLE", "PENDING")[i % 2]
		ledger_service.append(u.id, amount, "fee", availability_status=status)
	db.session.commit()

	expected = sum(Decimal(a) for a in amounts)
	for _ in range(3):
		assert ledger_service.balance(u.id)["total"] == expected


@pytest.mark.parametrize(
	"kwargs, field",
	[
		({"amount": "NaN", "entry_type": "fee"}, "amount"),
		({"amount": "Infinity", "entry_type": "fee"}, "amount"),
		({"amount": "abc", "entry_type": "fee"}, "amount"),
		({"amount": 10, "entry_type": "lottery"}, "type"),
		({"amount": 10, "entry_type": "fee", "availability_status": "FROZEN"}, "availability_status"),
	],
)
def test_append_rejects_malformed_input(make_user, kwargs, field):
	u = make_user()
	amount = kwargs.pop("amount")
	entry_type = kwargs.pop("entry_type")
	with pytest.raises(ValidationError) as exc:
		ledger_service.append(u.id, amount, entry_type, **kwargs)
	assert exc.value.payload["field"] == field
	db.session.rollback()


def test_append_rejects_unknown_user(app):
	with pytest.raises(ValidationError):
		ledger_service.append(999999, 10, "fee")
	db.session.rollback()


def test_transition_moves_pending_and_locked_but_never_back_from_available(make_user):
	u = make_user()
	entry = ledger_service.append(u.id, 40, "rental_income", availability_status="PENDING")
	db.session.commit()

	ledger_service.transition(entry.id, "LOCKED")
	ledger_service.transition(entry.id, "PENDING")
	ledger_service.transition(entry.id, "AVAILABLE")
	db.session.commit()
	assert db.session.get(WalletTransaction, entry.id).availability_status == "AVAILABLE"

	for target in ("PENDING", "LOCKED", "AVAILABLE"):
		with pytest.raises(InvalidState) as exc:
			ledger_service.transition(entry.id, target)
		assert exc.value.payload["current_status"] == "AVAILABLE"
	db.session.rollback()


def test_transition_unknown_entry(app):
	with pytest.raises(NotFound):
		ledger_service.transition(987654, "AVAILABLE")


def test_amount_and_type_are_immutable(make_user):
	u = make_user()
	entry = ledger_service.append(u.id, 40, "rental_income")
	db.session.commit()

	entry.amount = Decimal("400.00")
	with pytest.raises(ValueError):
		db.session.flush()
	db.session.rollback()

	assert db.session.get(WalletTransaction, entry.id).amount == Decimal("40.00")


def test_same_idempotency_key_posts_once(make_user):
	u = make_user()
	key = f"referral:{u.id}"
	first = ledger_service.append(u.id, 25, "referral_reward", idempotency_key=key)
	db.session.commit()

	again = ledger_service.append(u.id, 25, "referral_reward", idempotency_key=key)
	db.session.commit()

	assert again.id == first.id
	assert WalletTransaction.query.filter_by(user_id=u.id).count() == 1
	assert ledger_service.balance(u.id)["available"] == Decimal("25.00")


def test_list_transactions_filters_and_orders_newest_first(make_user):
	u = make_user()
	first = ledger_service.append(u.id, 5, "fee", availability_status="PENDING")
	second = ledger_service.append(u.id, 6, "fee")
	db.session.commit()

	items = ledger_service.list_transactions(u.id)
	assert [i["id"] for i in items] == [second.id, first.id]

	pending = ledger_service.list_transactions(u.id, availability="PENDING")
	assert [i["id"] for i in pending] == [first.id]

	with pytest.raises(ValidationError):
		ledger_service.list_transactions(u.id, availability="SOMETIME")
