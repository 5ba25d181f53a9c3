"""Dual-confirmation handover and its operator override."""

from datetime import datetime

from flask import current_app

from rentat.extensions import db
from rentat.models.rental import Rental
from rentat.services import rental_state as rs
from rentat.services.unit_of_work import run_atomic
from rentat.utils.errors import AlreadyConfirmed, NotFound, Unauthorized, ValidationError


OVERRIDE_EVENT = "handover_manual_override"


def _load(rental_id: int) -> Rental:
    rental = db.session.get(Rental, rental_id, with_for_update=True)
    if rental is None:
        raise NotFound("rental", rental_id)
    return rental


def _activate(uow, rental: Rental, actor) -> None:
    rs.apply_transition(rental, "activate", actor, {"actual_start": uow.now.isoformat()}, uow.now)
    rental.actual_start = uow.now
    for user_id in (rental.owner_id, rental.renter_id):
        uow.notify(user_id, "rental_activated", {"rental_id": rental.id})
    current_app.logger.info("[rentals] rental=%s activated by=%s", rental.id, actor)


def _confirm(uow, rental_id: int, actor_id: int, party: str) -> dict:
    rental = _load(rental_id)
    rs.require_status(rental, rs.AWAITING_HANDOVER, f"confirm_handover_{party}")

    expected_id = rental.owner_id if party == "owner" else rental.renter_id
    if actor_id != expected_id:
        raise Unauthorized(f"Only the {party} can confirm this handover.", rule=f"handover_{party}_only")

    if getattr(rental, f"{party}_confirmed"):
        raise AlreadyConfirmed(party, current_status=rental.status)

    setattr(rental, f"{party}_confirmed", True)
    setattr(rental, f"{party}_confirmed_at", uow.now)
    rs.append_event(rental, f"handover_confirmed_by_{party}", actor_id, None, uow.now)

    both = rental.both_confirmed
    if both:
        _activate(uow, rental, actor_id)
    else:
        other = rental.renter_id if party == "owner" else rental.owner_id
        uow.notify(other, "handover_confirmed", {"rental_id": rental.id, "party": party})

    current_app.logger.info(
        "[rentals] rental=%s handover confirmed by %s=%s both=%s", rental.id, party, actor_id, both
    )
    return {"success": True, "bothConfirmed": both, "status": rental.status}


def confirm_by_owner(rental_id: int, owner_id: int) -> dict:
    return run_atomic(_confirm, rental_id, owner_id, "owner")


def confirm_by_renter(rental_id: int, renter_id: int) -> dict:
    return run_atomic(_confirm, rental_id, renter_id, "renter")


def confirm_handover(rental_id: int, user_id: int) -> dict:
    """Route helper: confirms on behalf of whichever party the caller is."""
    rental = db.session.get(Rental, rental_id)
    if rental is None:
        raise NotFound("rental", rental_id)
    party = rental.party_of(user_id)
    if party == "owner":
        return confirm_by_owner(rental_id, user_id)
    if party == "renter":
        return confirm_by_renter(rental_id, user_id)
    raise Unauthorized("You are not a party to this rental.", rule="rental_party_only")


def _override(uow, rental_id: int, operator_id: int, reason: str) -> dict:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("An override reason is required.", field="reason")

    rental = _load(rental_id)
    rs.require_status(rental, rs.AWAITING_HANDOVER, "manual_override")

    for party in ("owner", "renter"):
        if not getattr(rental, f"{party}_confirmed"):
            setattr(rental, f"{party}_confirmed", True)
            setattr(rental, f"{party}_confirmed_at", uow.now)
    rental.manual_override = True
    rental.override_by = operator_id
    rental.override_reason = reason[:300]
    rental.override_at = uow.now

    rs.append_event(rental, OVERRIDE_EVENT, operator_id, {"reason": rental.override_reason}, uow.now)
    _activate(uow, rental, operator_id)

    current_app.logger.warning(
        "[rentals] MANUAL HANDOVER OVERRIDE rental=%s operator=%s reason=%s",
        rental.id,
        operator_id,
        rental.override_reason,
    )
    return {"success": True, "bothConfirmed": True, "status": rental.status, "manual_override": True}


def manual_override(rental_id: int, operator_id: int, reason: str) -> dict:
    return run_atomic(_override, rental_id, operator_id, reason)


def _paid_at(rental: Rental) -> datetime:
    for entry in reversed(rental.timeline):
        if entry.event == rs.ACTION_EVENTS["payment_succeeded"]:
            return entry.created_at
    return rental.updated_at or rental.created_at


def list_pending_handovers(now: datetime | None = None) -> list[dict]:
    now = now or datetime.utcnow()
    threshold = float(current_app.config.get("HANDOVER_DELAY_HOURS", 24))
    rentals = (
        Rental.query.filter(Rental.status == rs.AWAITING_HANDOVER)
        .order_by(Rental.updated_at.asc(), Rental.id.asc())
        .all()
    )

    out = []
    for r in rentals:
        hours = round((now - _paid_at(r)).total_seconds() / 3600, 1)
        out.append(
            {
                "rental_id": r.id,
                "item_id": r.item_id,
                "owner_id": r.owner_id,
                "renter_id": r.renter_id,
                "owner_confirmed": bool(r.owner_confirmed),
                "renter_confirmed": bool(r.renter_confirmed),
                "hours_since_payment": hours,
                "is_delayed": hours > threshold,
                "confirmed_start": r.confirmed_start.isoformat() if r.confirmed_start else None,
            }
        )
    return out
