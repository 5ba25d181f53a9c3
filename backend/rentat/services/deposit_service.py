from datetime import datetime
from decimal import Decimal

from flask import current_app

from rentat.extensions import db
from rentat.models.deposit import Deposit
from rentat.services import ledger_service
from rentat.services.unit_of_work import run_atomic
from rentat.utils.errors import InvalidState, NotFound, ValidationError


HELD = "held"
RELEASED = "released"
PARTIAL_REFUND = "partial_refund"


def _require_reason(reason) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required.", field="reason")
    return reason[:300]


def _load(deposit_id: int) -> Deposit:
    deposit = db.session.get(Deposit, deposit_id, with_for_update=True)
    if deposit is None:
        raise NotFound("deposit", deposit_id)
    return deposit


def _require_held(deposit: Deposit, action: str) -> None:
    if deposit.status != HELD:
        raise InvalidState(
            f"Deposit is {deposit.status}; only held deposits can be settled.",
            current_status=deposit.status,
            expected_status=HELD,
            action=action,
        )


def open_for_rental(rental, now: datetime | None = None) -> Deposit | None:
    """Open the held deposit of a freshly paid rental. Joins the caller's transaction."""
    amount = Decimal(str(rental.security_deposit or 0))
    if amount <= 0:
        return None
    if rental.deposit is not None:
        return rental.deposit

    deposit = Deposit(
        user_id=rental.renter_id,
        amount=amount,
        currency=rental.currency,
        status=HELD,
        created_at=now or datetime.utcnow(),
    )
    rental.deposit = deposit
    rental.deposit_status = HELD
    db.session.add(deposit)
    db.session.flush()
    current_app.logger.info("[deposits] opened id=%s rental=%s amount=%s", deposit.id, rental.id, amount)
    return deposit


def _settle(deposit: Deposit, status: str, actor, reason: str, now: datetime, partial_amount=None) -> None:
    deposit.status = status
    deposit.partial_amount = partial_amount
    deposit.release_reason = reason
    deposit.settled_by = str(actor)
    deposit.settled_at = now
    if deposit.rental is not None:
        deposit.rental.deposit_status = "released" if status == RELEASED else "claimed"


def release_to_wallet(deposit: Deposit, actor, reason: str, now: datetime):
    """Full release inside an existing unit of work."""
    _require_held(deposit, "release")
    entry = ledger_service.append(
        deposit.user_id,
        deposit.amount,
        "deposit_release",
        currency=deposit.currency,
        related_rental_id=deposit.rental_id,
        related_deposit_id=deposit.id,
        description=reason,
        idempotency_key=f"deposit_release:{deposit.id}",
    )
    deposit.ledger_entry_id = entry.id
    _settle(deposit, RELEASED, actor, reason, now)
    return entry


def settle_from_dispute(deposit: Deposit, refund_amount: Decimal, actor, entry, now: datetime) -> None:
    """Mark a held deposit settled by a dispute decision.

    The refund ledger entry is written by the dispute resolution itself, so
    no new entry is posted here. Without a refund the deposit stays held and
    is settled later through the admin deposit actions.
    """
    if deposit is None or deposit.status != HELD:
        return
    refund = Decimal(str(refund_amount or 0))
    if refund <= 0:
        current_app.logger.info("[deposits] id=%s stays held after dispute without refund", deposit.id)
        return
    reason = "Settled by dispute resolution"
    if refund >= Decimal(str(deposit.amount)):
        _settle(deposit, RELEASED, actor, reason, now)
    else:
        _settle(deposit, PARTIAL_REFUND, actor, reason, now, partial_amount=refund)
    if entry is not None:
        deposit.ledger_entry_id = entry.id
    current_app.logger.info("[deposits] id=%s settled by dispute status=%s", deposit.id, deposit.status)


def _release(uow, deposit_id: int, actor_id: int, reason: str) -> dict:
    reason = _require_reason(reason)
    deposit = _load(deposit_id)
    release_to_wallet(deposit, actor_id, reason, uow.now)
    uow.notify(
        deposit.user_id,
        "deposit_released",
        {"deposit_id": deposit.id, "rental_id": deposit.rental_id, "amount": float(deposit.amount)},
    )
    current_app.logger.info("[deposits] released id=%s by=%s amount=%s", deposit.id, actor_id, deposit.amount)
    return deposit_to_dict(deposit)


def release_deposit(deposit_id: int, actor_id: int, reason: str) -> dict:
    return run_atomic(_release, deposit_id, actor_id, reason)


def _release_partial(uow, deposit_id: int, actor_id: int, amount, reason: str) -> dict:
    reason = _require_reason(reason)
    value = ledger_service.to_money(amount)
    if value <= 0:
        raise ValidationError("Partial amount must be positive.", field="amount")

    deposit = _load(deposit_id)
    _require_held(deposit, "release_partial")
    if value > Decimal(str(deposit.amount)):
        raise ValidationError(
            f"Partial amount {value} exceeds the deposit of {deposit.amount}.", field="amount"
        )

    entry = ledger_service.append(
        deposit.user_id,
        value,
        "deposit_refund",
        currency=deposit.currency,
        related_rental_id=deposit.rental_id,
        related_deposit_id=deposit.id,
        description=reason,
        idempotency_key=f"deposit_refund:{deposit.id}",
    )
    deposit.ledger_entry_id = entry.id
    _settle(deposit, PARTIAL_REFUND, actor_id, reason, uow.now, partial_amount=value)

    uow.notify(
        deposit.user_id,
        "deposit_partial_refund",
        {"deposit_id": deposit.id, "rental_id": deposit.rental_id, "amount": float(value)},
    )
    current_app.logger.info("[deposits] partial refund id=%s by=%s amount=%s", deposit.id, actor_id, value)
    return deposit_to_dict(deposit)


def release_partial_deposit(deposit_id: int, actor_id: int, amount, reason: str) -> dict:
    return run_atomic(_release_partial, deposit_id, actor_id, amount, reason)


def _hold(uow, deposit_id: int, actor_id: int, reason: str) -> dict:
    reason = _require_reason(reason)
    deposit = _load(deposit_id)
    _require_held(deposit, "hold")
    deposit.hold_reason = reason

    uow.notify(
        deposit.user_id,
        "deposit_held",
        {"deposit_id": deposit.id, "rental_id": deposit.rental_id, "reason": reason},
    )
    current_app.logger.info("[deposits] hold id=%s by=%s", deposit.id, actor_id)
    return deposit_to_dict(deposit)


def hold_deposit(deposit_id: int, actor_id: int, reason: str) -> dict:
    return run_atomic(_hold, deposit_id, actor_id, reason)


def deposit_to_dict(deposit: Deposit) -> dict:
    return {
        "id": deposit.id,
        "rental_id": deposit.rental_id,
        "user_id": deposit.user_id,
        "amount": float(deposit.amount),
        "currency": deposit.currency,
        "status": deposit.status,
        "partial_amount": float(deposit.partial_amount) if deposit.partial_amount is not None else None,
        "hold_reason": deposit.hold_reason,
        "release_reason": deposit.release_reason,
        "settled_by": deposit.settled_by,
        "settled_at": deposit.settled_at.isoformat() if deposit.settled_at else None,
    }
