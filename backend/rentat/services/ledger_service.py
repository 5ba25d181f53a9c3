"""Wallet ledger: append-only entries and the one balance aggregation.

Functions here never commit; they join the caller's unit of work so that a
ledger posting is atomic with the transition that produced it.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy import case, func

from rentat.extensions import db
from rentat.models.user import User
from rentat.models.wallet_transaction import WalletTransaction
from rentat.utils.errors import InvalidState, NotFound, ValidationError


PENDING = "PENDING"
LOCKED = "LOCKED"
AVAILABLE = "AVAILABLE"
AVAILABILITY_STATUSES = (PENDING, LOCKED, AVAILABLE)

ENTRY_TYPES = frozenset(
    {
        "rental_income",
        "rental_payment",
        "deposit_hold",
        "deposit_release",
        "deposit_refund",
        "referral_reward",
        "fee",
        "withdrawal",
    }
)

# PENDING and LOCKED move between each other; AVAILABLE is final.
ALLOWED_STATUS_CHANGES = {
    PENDING: {LOCKED, AVAILABLE},
    LOCKED: {PENDING, AVAILABLE},
    AVAILABLE: set(),
}

CENT = Decimal("0.01")


def to_money(value, field: str = "amount") -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number.", field=field)
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number.", field=field) from None
    if not amount.is_finite():
        raise ValidationError(f"{field} must be finite.", field=field)
    return amount.quantize(CENT)


def append(
    user_id: int,
    amount,
    entry_type: str,
    *,
    currency: str | None = None,
    availability_status: str = AVAILABLE,
    related_rental_id: int | None = None,
    related_deposit_id: int | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
) -> WalletTransaction:
    if user_id is None:
        raise ValidationError("user_id is required.", field="user_id")
    if entry_type not in ENTRY_TYPES:
        raise ValidationError(f"Unknown ledger entry type '{entry_type}'.", field="type")
    if availability_status not in AVAILABILITY_STATUSES:
        raise ValidationError(
            f"Unknown availability status '{availability_status}'.", field="availability_status"
        )
    value = to_money(amount)
    if db.session.get(User, user_id) is None:
        raise ValidationError(f"User {user_id} does not exist.", field="user_id")

    if idempotency_key:
        existing = find_by_key(idempotency_key)
        if existing is not None:
            current_app.logger.info("[ledger] key=%s already posted as entry=%s", idempotency_key, existing.id)
            return existing

    entry = WalletTransaction(
        user_id=user_id,
        amount=value,
        currency=(currency or current_app.config.get("DEFAULT_CURRENCY", "EGP")).upper(),
        type=entry_type,
        availability_status=availability_status,
        related_rental_id=related_rental_id,
        related_deposit_id=related_deposit_id,
        description=(description or None) and description[:300],
        idempotency_key=idempotency_key,
        created_at=datetime.utcnow(),
    )
    db.session.add(entry)
    db.session.flush()

    current_app.logger.info(
        "[ledger] append id=%s user=%s type=%s amount=%s status=%s rental=%s",
        entry.id,
        user_id,
        entry_type,
        value,
        availability_status,
        related_rental_id,
    )
    return entry


def find_by_key(idempotency_key: str) -> WalletTransaction | None:
    return WalletTransaction.query.filter_by(idempotency_key=idempotency_key).first()


def balance(user_id: int) -> dict:
    """Sum of the user's signed entries grouped by availability.

    Entries without a status (legacy rows) count as AVAILABLE. ``total`` is
    the sum of the three buckets.
    """
    bucket = func.coalesce(WalletTransaction.availability_status, AVAILABLE)
    rows = (
        db.session.query(bucket, func.coalesce(func.sum(WalletTransaction.amount), 0))
        .filter(WalletTransaction.user_id == user_id)
        .group_by(bucket)
        .all()
    )
    sums = {status: Decimal("0.00") for status in AVAILABILITY_STATUSES}
    for status, amount in rows:
        sums[status] = Decimal(str(amount)).quantize(CENT)

    currency_row = (
        db.session.query(WalletTransaction.currency)
        .filter(WalletTransaction.user_id == user_id)
        .order_by(WalletTransaction.id.desc())
        .first()
    )

    return {
        "available": sums[AVAILABLE],
        "pending": sums[PENDING],
        "locked": sums[LOCKED],
        "total": sums[AVAILABLE] + sums[PENDING] + sums[LOCKED],
        "currency": currency_row[0] if currency_row else current_app.config.get("DEFAULT_CURRENCY", "EGP"),
    }


def transition(entry_id: int, new_status: str, *, lock: bool = True) -> WalletTransaction:
    if new_status not in AVAILABILITY_STATUSES:
        raise ValidationError(f"Unknown availability status '{new_status}'.", field="availability_status")

    entry = db.session.get(WalletTransaction, entry_id, with_for_update=lock)
    if entry is None:
        raise NotFound("ledger entry", entry_id)

    current = entry.availability_status or AVAILABLE
    if new_status not in ALLOWED_STATUS_CHANGES[current]:
        raise InvalidState(
            f"Ledger entry cannot move from {current} to {new_status}.",
            current_status=current,
            expected_status=sorted(s for s, targets in ALLOWED_STATUS_CHANGES.items() if new_status in targets),
            action="transition",
        )

    entry.availability_status = new_status
    entry.status_changed_at = datetime.utcnow()
    current_app.logger.info("[ledger] entry=%s %s -> %s", entry.id, current, new_status)
    return entry


def transition_rental_entries(rental_id: int, from_status: str, to_status: str, user_id: int | None = None) -> list:
    """Move every entry of a rental currently in ``from_status``."""
    q = WalletTransaction.query.filter(
        WalletTransaction.related_rental_id == rental_id,
        WalletTransaction.availability_status == from_status,
    )
    if user_id is not None:
        q = q.filter(WalletTransaction.user_id == user_id)
    return [transition(e.id, to_status, lock=False) for e in q.order_by(WalletTransaction.id).all()]


def list_transactions(user_id: int, availability: str | None = None, limit: int = 50) -> list[dict]:
    q = WalletTransaction.query.filter(WalletTransaction.user_id == user_id)
    if availability:
        if availability not in AVAILABILITY_STATUSES:
            raise ValidationError(f"Unknown availability status '{availability}'.", field="availability")
        if availability == AVAILABLE:
            q = q.filter(
                case(
                    (WalletTransaction.availability_status.is_(None), AVAILABLE),
                    else_=WalletTransaction.availability_status,
                )
                == AVAILABLE
            )
        else:
            q = q.filter(WalletTransaction.availability_status == availability)

    items = q.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc()).limit(
        max(1, min(int(limit), 200))
    )
    return [entry_to_dict(e) for e in items]


def entry_to_dict(entry: WalletTransaction) -> dict:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "amount": float(entry.amount),
        "currency": entry.currency,
        "type": entry.type,
        "availability_status": entry.availability_status or AVAILABLE,
        "related_rental_id": entry.related_rental_id,
        "related_deposit_id": entry.related_deposit_id,
        "description": entry.description,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "status_changed_at": entry.status_changed_at.isoformat() if entry.status_changed_at else None,
    }


def balance_to_dict(b: dict) -> dict:
    return {
        "available": float(b["available"]),
        "pending": float(b["pending"]),
        "locked": float(b["locked"]),
        "total": float(b["total"]),
        "currency": b["currency"],
    }
