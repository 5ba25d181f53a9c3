from flask import current_app

from rentat.extensions import db
from rentat.models.user import User
from rentat.services import ledger_service
from rentat.services.collaborators import get_identity
from rentat.services.unit_of_work import run_atomic
from rentat.utils.errors import NotFound, Unauthorized, ValidationError


WITHDRAWAL_METHODS = {"bank_transfer", "mobile_wallet", "instapay"}


def get_balance(user_id: int) -> dict:
    return ledger_service.balance_to_dict(ledger_service.balance(user_id))


def _withdraw(uow, user_id: int, amount, method: str) -> dict:
    if method not in WITHDRAWAL_METHODS:
        raise ValidationError("Unknown withdrawal method.", field="method")
    value = ledger_service.to_money(amount)
    if value <= 0:
        raise ValidationError("Withdrawal amount must be positive.", field="amount")

    # Serializes concurrent withdrawals of the same user.
    user = db.session.get(User, user_id, with_for_update=True)
    if user is None:
        raise NotFound("user", user_id)
    if not get_identity().is_verified(user_id):
        raise Unauthorized("Identity verification is required to withdraw.", rule="kyc", code="KYC_REQUIRED")

    current = ledger_service.balance(user_id)
    available = current["available"]
    if value > available:
        raise ValidationError(f"Amount exceeds the available balance ({available}).", field="amount")

    entry = ledger_service.append(
        user_id,
        -value,
        "withdrawal",
        currency=current["currency"],
        availability_status=ledger_service.AVAILABLE,
        description=f"Withdrawal via {method}",
    )

    uow.notify(user_id, "withdrawal_requested", {"amount": float(value), "event_key": f"withdrawal:{entry.id}"})
    current_app.logger.info("[wallet] withdrawal user=%s amount=%s method=%s entry=%s", user_id, value, method, entry.id)
    return {"entry": ledger_service.entry_to_dict(entry), "balance": get_balance(user_id)}


def request_withdrawal(user_id: int, amount, method: str) -> dict:
    return run_atomic(_withdraw, user_id, amount, method)
