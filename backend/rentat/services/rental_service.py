from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
import math

from flask import current_app
from sqlalchemy import and_, func

from rentat.extensions import db
from rentat.models.item import Item
from rentat.models.rental import Rental
from rentat.services import deposit_service
from rentat.services import ledger_service
from rentat.services import rental_state as rs
from rentat.services.commission_service import try_process_commission
from rentat.services.collaborators import get_identity, get_payment_gateway
from rentat.services.unit_of_work import run_atomic
from rentat.utils.errors import (
    AlreadyConfirmed,
    ApiError,
    DependencyFailure,
    InvalidState,
    NotFound,
    Unauthorized,
    ValidationError,
)


CENT = Decimal("0.01")
PRIVILEGED_ROLES = {"ADMIN", "MODERATOR"}
DELIVERY_METHODS = {"pickup", "delivery", "meet-in-middle"}


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _load_for_update(rental_id: int) -> Rental:
    rental = db.session.get(Rental, rental_id, with_for_update=True)
    if rental is None:
        raise NotFound("rental", rental_id)
    return rental


def calculate_pricing(item: Item, start: datetime, end: datetime, delivery_method: str | None) -> dict:
    """Pricing snapshot for a request; frozen on the rental once created."""
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        raise ValidationError("End date must be after start date.", field="end")
    days = math.ceil(seconds / 86400)

    daily = _money(item.daily_rate)
    if days >= 30 and item.monthly_rate:
        months, rest = divmod(days, 30)
        subtotal = months * _money(item.monthly_rate) + rest * daily
    elif days >= 7 and item.weekly_rate:
        weeks, rest = divmod(days, 7)
        subtotal = weeks * _money(item.weekly_rate) + rest * daily
    else:
        subtotal = days * daily
    subtotal = _money(subtotal)

    fee_rate = Decimal(str(current_app.config.get("RENTER_SERVICE_FEE_RATE", "0.10")))
    platform_fee = _money(subtotal * fee_rate)
    delivery_fee = _money(item.delivery_fee) if delivery_method == "delivery" else Decimal("0.00")
    deposit = _money(item.security_deposit)

    return {
        "daily_rate": daily,
        "total_days": days,
        "subtotal": subtotal,
        "platform_fee": platform_fee,
        "security_deposit": deposit,
        "delivery_fee": delivery_fee,
        "total": subtotal + platform_fee + delivery_fee + deposit,
        "currency": (item.currency or current_app.config.get("DEFAULT_CURRENCY", "EGP")).upper(),
    }


def _has_overlap(item_id: int, start: datetime, end: datetime) -> bool:
    begin = func.coalesce(Rental.confirmed_start, Rental.requested_start)
    finish = func.coalesce(Rental.confirmed_end, Rental.requested_end)
    q = Rental.query.filter(
        Rental.item_id == item_id,
        Rental.status.in_(rs.OCCUPYING_STATUSES),
        and_(begin < end, finish > start),
    )
    return db.session.query(q.exists()).scalar()


def _request(uow, renter_id: int, item_id: int, start, end, delivery_method=None, message=None) -> dict:
    start, end = _naive_utc(start), _naive_utc(end)

    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFound("item", item_id)
    if not item.is_available:
        raise InvalidState("Item is not available for rent.", action="request_rental", item_id=item.id)
    if item.owner_id == renter_id:
        raise Unauthorized("You cannot rent your own item.", rule="not_own_item")
    if not get_identity().is_verified(renter_id):
        raise Unauthorized("Identity verification is required to rent.", rule="kyc", code="KYC_REQUIRED")
    if delivery_method is not None and delivery_method not in DELIVERY_METHODS:
        raise ValidationError("Unknown delivery method.", field="delivery_method")

    pricing = calculate_pricing(item, start, end, delivery_method)
    if _has_overlap(item.id, start, end):
        raise InvalidState(
            "Item is already booked for the requested dates.",
            action="request_rental",
            item_id=item.id,
        )

    rental = Rental(
        item_id=item.id,
        owner_id=item.owner_id,
        renter_id=renter_id,
        status=rs.PENDING,
        requested_start=start,
        requested_end=end,
        delivery_method=delivery_method,
        request_message=(message or None),
        created_at=uow.now,
        updated_at=uow.now,
        **pricing,
    )
    db.session.add(rental)
    rs.append_event(rental, rs.REQUEST_EVENT, renter_id, {"total": float(pricing["total"])}, uow.now)
    db.session.flush()

    uow.notify(item.owner_id, "rental_requested", {"rental_id": rental.id, "item_id": item.id})
    current_app.logger.info(
        "[rentals] requested rental=%s item=%s renter=%s total=%s %s",
        rental.id,
        item.id,
        renter_id,
        rental.total,
        rental.currency,
    )
    return rental_to_dict(rental)


def request_rental(renter_id: int, item_id: int, start, end, delivery_method=None, message=None) -> dict:
    return run_atomic(_request, renter_id, item_id, start, end, delivery_method, message)


def _log_transition(rental: Rental, action: str, actor, from_status: str) -> None:
    current_app.logger.info(
        "[rentals] rental=%s action=%s actor=%s %s -> %s",
        rental.id,
        action,
        actor,
        from_status,
        rental.status,
    )


def _approve(uow, rental_id: int, owner_id: int, message=None) -> dict:
    rental = _load_for_update(rental_id)
    if rental.owner_id != owner_id:
        raise Unauthorized("Only the owner can approve this rental.", rule="owner_only")

    from_status = rental.status
    rs.apply_transition(rental, "approve", owner_id, {"message": message} if message else None, uow.now)
    rental.confirmed_start = rental.requested_start
    rental.confirmed_end = rental.requested_end

    try:
        intent_id = get_payment_gateway().create_intent(rental.id, rental.total, rental.currency)
    except ApiError:
        raise
    except Exception as err:
        current_app.logger.exception("[payments] intent creation failed rental=%s", rental.id)
        raise DependencyFailure("Payment gateway unavailable; the rental was not approved.") from err

    rental.payment_intent_id = intent_id
    rental.payment_status = "pending"

    uow.notify(
        rental.renter_id,
        "rental_approved",
        {"rental_id": rental.id, "payment_intent_id": intent_id, "amount": float(rental.total)},
    )
    _log_transition(rental, "approve", owner_id, from_status)
    return rental_to_dict(rental)


def approve(rental_id: int, owner_id: int, message=None) -> dict:
    return run_atomic(_approve, rental_id, owner_id, message)


def _reject(uow, rental_id: int, owner_id: int, message=None) -> dict:
    rental = _load_for_update(rental_id)
    if rental.owner_id != owner_id:
        raise Unauthorized("Only the owner can reject this rental.", rule="owner_only")

    from_status = rental.status
    rs.apply_transition(rental, "reject", owner_id, {"message": message} if message else None, uow.now)

    uow.notify(rental.renter_id, "rental_rejected", {"rental_id": rental.id, "message": message})
    _log_transition(rental, "reject", owner_id, from_status)
    return rental_to_dict(rental)


def reject(rental_id: int, owner_id: int, message=None) -> dict:
    return run_atomic(_reject, rental_id, owner_id, message)


def _payment_result(uow, rental_id: int, payment_intent_id: str, status: str, amount) -> dict:
    rental = _load_for_update(rental_id)
    if not rental.payment_intent_id or rental.payment_intent_id != payment_intent_id:
        raise Unauthorized(
            "Payment intent does not match this rental.",
            rule="payment_intent",
            code="PAYMENT_INTENT_MISMATCH",
        )

    # A refunded rental was paid before it was cancelled.
    if rental.payment_status in ("succeeded", "refunded"):
        current_app.logger.info("[payments] replay ignored rental=%s intent=%s", rental.id, payment_intent_id)
        return {"applied": False, "rental_id": rental.id, "status": rental.status}

    if status == "succeeded":
        paid = ledger_service.to_money(amount)
        if paid != _money(rental.total):
            raise ValidationError(
                f"Paid amount {paid} does not match the rental total {rental.total}.", field="amount"
            )
        from_status = rental.status
        rs.apply_transition(
            rental, "payment_succeeded", rs.SYSTEM_ACTOR, {"payment_intent_id": payment_intent_id}, uow.now
        )
        rental.payment_status = "succeeded"
        deposit_service.open_for_rental(rental, uow.now)

        for user_id in (rental.renter_id, rental.owner_id):
            uow.notify(user_id, "payment_succeeded", {"rental_id": rental.id, "amount": float(paid)})
        _log_transition(rental, "payment_succeeded", rs.SYSTEM_ACTOR, from_status)
        return {"applied": True, "rental_id": rental.id, "status": rental.status}

    if status == "failed":
        if rental.payment_status == "failed":
            return {"applied": False, "rental_id": rental.id, "status": rental.status}
        rs.require_status(rental, rs.APPROVED, "payment_failed")
        rental.payment_status = "failed"
        rs.append_event(rental, "payment_failed", rs.SYSTEM_ACTOR, {"payment_intent_id": payment_intent_id}, uow.now)

        uow.notify(rental.renter_id, "payment_failed", {"rental_id": rental.id})
        current_app.logger.info("[payments] failed rental=%s intent=%s", rental.id, payment_intent_id)
        return {"applied": True, "rental_id": rental.id, "status": rental.status}

    raise ValidationError("Payment status must be 'succeeded' or 'failed'.", field="status")


def on_payment_result(rental_id: int, payment_intent_id: str, status: str, amount) -> dict:
    """Webhook entry point. Replays on an already-paid rental change nothing."""
    return run_atomic(_payment_result, rental_id, payment_intent_id, status, amount)


def _cancel(uow, rental_id: int, actor_id: int, reason=None, is_admin: bool = False) -> dict:
    rental = _load_for_update(rental_id)
    party = rental.party_of(actor_id)
    if is_admin:
        party = "admin"
    elif party is None:
        raise Unauthorized("You are not a party to this rental.", rule="rental_party_only")

    reason = (reason or "").strip() or None
    if party == "owner" and not reason:
        raise ValidationError("A cancellation reason is required.", field="reason")

    from_status = rental.status
    rs.apply_transition(rental, "cancel", actor_id, {"by": party, "reason": reason}, uow.now)
    rental.cancelled_by = party
    rental.cancellation_reason = reason[:300] if reason else None
    rental.cancelled_at = uow.now

    refund = Decimal("0.00")
    if rental.payment_status == "succeeded":
        if from_status != rs.ACTIVE:
            refund = _money(rental.total) - _money(rental.security_deposit)
        rental.payment_status = "refunded"
    rental.refund_amount = refund

    deposit = rental.deposit
    if deposit is not None and deposit.status == deposit_service.HELD:
        deposit_service.release_to_wallet(deposit, actor_id, "Rental cancelled", uow.now)

    for user_id in (rental.owner_id, rental.renter_id):
        if user_id != actor_id:
            uow.notify(
                user_id,
                "rental_cancelled",
                {"rental_id": rental.id, "by": party, "reason": reason, "refund_amount": float(refund)},
            )
    _log_transition(rental, "cancel", actor_id, from_status)
    return rental_to_dict(rental)


def cancel(rental_id: int, actor_id: int, reason=None, is_admin: bool = False) -> dict:
    return run_atomic(_cancel, rental_id, actor_id, reason, is_admin)


def _confirm_completion(uow, rental_id: int, actor_id: int) -> dict:
    rental = _load_for_update(rental_id)
    rs.require_status(rental, rs.ACTIVE, "confirm_completion")

    party = rental.party_of(actor_id)
    if party is None:
        raise Unauthorized("You are not a party to this rental.", rule="rental_party_only")
    if getattr(rental, f"{party}_completed"):
        raise AlreadyConfirmed(party, current_status=rental.status)

    setattr(rental, f"{party}_completed", True)
    setattr(rental, f"{party}_completed_at", uow.now)
    rs.append_event(rental, f"completion_confirmed_by_{party}", actor_id, None, uow.now)

    both = bool(rental.owner_completed and rental.renter_completed)
    if both:
        rs.apply_transition(rental, "complete", actor_id, {"actual_end": uow.now.isoformat()}, uow.now)
        rental.actual_end = uow.now
        for user_id in (rental.owner_id, rental.renter_id):
            uow.notify(user_id, "rental_completed", {"rental_id": rental.id})
        _log_transition(rental, "complete", actor_id, rs.ACTIVE)
    else:
        other = rental.renter_id if party == "owner" else rental.owner_id
        uow.notify(other, "completion_confirmed", {"rental_id": rental.id, "party": party})

    return {"success": True, "bothConfirmed": both, "status": rental.status}


def confirm_completion(rental_id: int, actor_id: int) -> dict:
    result = run_atomic(_confirm_completion, rental_id, actor_id)
    if result["status"] == rs.COMPLETED:
        try_process_commission(rental_id)
    return result


def get_rental(rental_id: int, user_id: int, roles=None) -> dict:
    rental = db.session.get(Rental, rental_id)
    if rental is None:
        raise NotFound("rental", rental_id)
    if rental.party_of(user_id) is None and not (set(roles or []) & PRIVILEGED_ROLES):
        raise Unauthorized("You are not a party to this rental.", rule="rental_party_only")
    return rental_to_dict(rental)


def _iso(value):
    return value.isoformat() if value else None


def _num(value):
    return float(value) if value is not None else None


def rental_to_dict(r: Rental) -> dict:
    dispute = r.dispute
    deposit = r.deposit
    return {
        "id": r.id,
        "item_id": r.item_id,
        "owner_id": r.owner_id,
        "renter_id": r.renter_id,
        "status": r.status,
        "dates": {
            "requested_start": _iso(r.requested_start),
            "requested_end": _iso(r.requested_end),
            "confirmed_start": _iso(r.confirmed_start),
            "confirmed_end": _iso(r.confirmed_end),
            "actual_start": _iso(r.actual_start),
            "actual_end": _iso(r.actual_end),
        },
        "pricing": {
            "daily_rate": _num(r.daily_rate),
            "total_days": r.total_days,
            "subtotal": _num(r.subtotal),
            "platform_fee": _num(r.platform_fee),
            "security_deposit": _num(r.security_deposit),
            "delivery_fee": _num(r.delivery_fee),
            "total": _num(r.total),
            "currency": r.currency,
        },
        "delivery_method": r.delivery_method,
        "payment": {
            "payment_intent_id": r.payment_intent_id,
            "payment_status": r.payment_status,
            "deposit_status": r.deposit_status,
            "payout_status": r.payout_status,
            "refund_amount": _num(r.refund_amount),
        },
        "handover": {
            "owner_confirmed": bool(r.owner_confirmed),
            "owner_confirmed_at": _iso(r.owner_confirmed_at),
            "renter_confirmed": bool(r.renter_confirmed),
            "renter_confirmed_at": _iso(r.renter_confirmed_at),
            "manual_override": bool(r.manual_override),
            "override_by": r.override_by,
            "override_reason": r.override_reason,
            "override_at": _iso(r.override_at),
        },
        "completion": {
            "owner_completed": bool(r.owner_completed),
            "renter_completed": bool(r.renter_completed),
        },
        "cancellation": (
            {
                "by": r.cancelled_by,
                "reason": r.cancellation_reason,
                "at": _iso(r.cancelled_at),
            }
            if r.cancelled_at
            else None
        ),
        "dispute": (
            {
                "id": dispute.id,
                "status": dispute.status,
                "initiated_by": dispute.initiated_by,
                "reason": dispute.reason,
                "evidence": list(dispute.evidence or []),
                "resolution": (
                    {
                        "decision": dispute.decision,
                        "refund_amount": _num(dispute.refund_amount),
                        "owner_compensation": _num(dispute.owner_compensation),
                        "resolved_by": dispute.resolved_by,
                        "resolved_at": _iso(dispute.resolved_at),
                    }
                    if dispute.status == "resolved"
                    else None
                ),
            }
            if dispute is not None
            else None
        ),
        "deposit": (
            {"id": deposit.id, "status": deposit.status, "amount": _num(deposit.amount)}
            if deposit is not None
            else None
        ),
        "timeline": [
            {
                "event": e.event,
                "actor": e.actor,
                "details": e.details or {},
                "at": _iso(e.created_at),
            }
            for e in r.timeline
        ],
        "created_at": _iso(r.created_at),
        "updated_at": _iso(r.updated_at),
    }
