from decimal import Decimal

from flask import current_app

from rentat.extensions import db
from rentat.models.dispute import Dispute
from rentat.models.rental import Rental
from rentat.services import deposit_service
from rentat.services import ledger_service
from rentat.services import rental_state as rs
from rentat.services.commission_service import try_process_commission
from rentat.services.unit_of_work import run_atomic
from rentat.utils.errors import InvalidState, NotFound, Unauthorized, ValidationError


OPEN = "open"
RESOLVED = "resolved"
MAX_EVIDENCE = 10


def _load(rental_id: int) -> Rental:
    rental = db.session.get(Rental, rental_id, with_for_update=True)
    if rental is None:
        raise NotFound("rental", rental_id)
    return rental


def _raise(uow, rental_id: int, actor_id: int, reason: str, evidence=None) -> dict:
    rental = _load(rental_id)
    party = rental.party_of(actor_id)
    if party is None:
        raise Unauthorized("Only the owner or the renter can raise a dispute.", rule="rental_party_only")

    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A dispute reason is required.", field="reason")
    urls = [str(u).strip() for u in (evidence or []) if str(u).strip()]
    if len(urls) > MAX_EVIDENCE:
        raise ValidationError(f"At most {MAX_EVIDENCE} evidence files are allowed.", field="evidence")

    if rental.dispute is not None:
        raise InvalidState(
            "A dispute already exists for this rental.",
            current_status=rental.status,
            action="raise_dispute",
            dispute_status=rental.dispute.status,
        )

    from_status = rental.status
    rs.apply_transition(rental, "raise_dispute", actor_id, {"by": party, "evidence": len(urls)}, uow.now)

    dispute = Dispute(
        status=OPEN,
        initiated_by=party,
        initiator_id=actor_id,
        reason=reason,
        evidence=urls,
        raised_from=from_status,
        initiated_at=uow.now,
    )
    rental.dispute = dispute
    db.session.add(dispute)

    locked = []
    if from_status == rs.COMPLETED:
        # Earnings still pending payout are frozen until a decision.
        locked = ledger_service.transition_rental_entries(rental.id, ledger_service.PENDING, ledger_service.LOCKED)

    other = rental.renter_id if party == "owner" else rental.owner_id
    uow.notify(other, "dispute_raised", {"rental_id": rental.id, "by": party})

    current_app.logger.info(
        "[disputes] raised rental=%s by=%s(%s) from=%s locked_entries=%s",
        rental.id,
        party,
        actor_id,
        from_status,
        len(locked),
    )
    db.session.flush()
    return dispute_to_dict(dispute)


def raise_dispute(rental_id: int, actor_id: int, reason: str, evidence=None) -> dict:
    return run_atomic(_raise, rental_id, actor_id, reason, evidence)


def _amount(value, field: str) -> Decimal:
    amount = ledger_service.to_money(value if value is not None else 0, field=field)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative.", field=field)
    return amount


def _resolve(uow, rental_id: int, moderator_id: int, decision: str, refund_amount=0, owner_compensation=0) -> dict:
    rental = _load(rental_id)
    dispute = rental.dispute
    if dispute is None or dispute.status != OPEN:
        raise InvalidState(
            "There is no open dispute for this rental.",
            current_status=rental.status,
            expected_status=rs.DISPUTED,
            action="resolve_dispute",
        )

    decision = (decision or "").strip()
    if not decision:
        raise ValidationError("A decision is required.", field="decision")
    refund = _amount(refund_amount, "refund_amount")
    compensation = _amount(owner_compensation, "owner_compensation")
    paid = Decimal(str(rental.total))
    if refund + compensation > paid:
        raise ValidationError(
            f"Refund plus compensation ({refund + compensation}) exceeds the amount paid ({paid}).",
            field="refund_amount",
        )

    rs.apply_transition(
        rental,
        "resolve_dispute",
        moderator_id,
        {"refund_amount": float(refund), "owner_compensation": float(compensation)},
        uow.now,
    )
    dispute.status = RESOLVED
    dispute.decision = decision
    dispute.refund_amount = refund
    dispute.owner_compensation = compensation
    dispute.resolved_by = moderator_id
    dispute.resolved_at = uow.now
    if rental.actual_end is None:
        rental.actual_end = uow.now

    refund_entry = None
    if refund > 0:
        refund_entry = ledger_service.append(
            rental.renter_id,
            refund,
            "deposit_refund",
            currency=rental.currency,
            related_rental_id=rental.id,
            related_deposit_id=rental.deposit.id if rental.deposit is not None else None,
            description=f"Dispute refund for rental #{rental.id}",
            idempotency_key=f"dispute_refund:{dispute.id}",
        )
    if compensation > 0:
        ledger_service.append(
            rental.owner_id,
            compensation,
            "rental_income",
            currency=rental.currency,
            related_rental_id=rental.id,
            description=f"Dispute compensation for rental #{rental.id}",
            idempotency_key=f"dispute_compensation:{dispute.id}",
        )

    released = ledger_service.transition_rental_entries(rental.id, ledger_service.LOCKED, ledger_service.AVAILABLE)
    rental.payout_status = "completed"
    deposit_service.settle_from_dispute(rental.deposit, refund, moderator_id, refund_entry, uow.now)

    for user_id in (rental.renter_id, rental.owner_id):
        uow.notify(
            user_id,
            "dispute_resolved",
            {
                "rental_id": rental.id,
                "refund_amount": float(refund),
                "owner_compensation": float(compensation),
            },
        )

    current_app.logger.info(
        "[disputes] resolved rental=%s moderator=%s refund=%s compensation=%s unlocked_entries=%s",
        rental.id,
        moderator_id,
        refund,
        compensation,
        len(released),
    )
    return dispute_to_dict(dispute)


def resolve_dispute(rental_id: int, moderator_id: int, decision: str, refund_amount=0, owner_compensation=0) -> dict:
    """Close the open dispute and split funds between refund and compensation.

    The caller is expected to have checked moderator authority.
    """
    result = run_atomic(_resolve, rental_id, moderator_id, decision, refund_amount, owner_compensation)
    # Rentals disputed while active have no commission record yet.
    try_process_commission(rental_id)
    return result


def list_open_disputes(limit: int = 100) -> list[dict]:
    disputes = (
        Dispute.query.filter_by(status=OPEN)
        .order_by(Dispute.initiated_at.asc(), Dispute.id.asc())
        .limit(max(1, min(int(limit), 500)))
        .all()
    )
    return [dispute_to_dict(d) for d in disputes]


def dispute_to_dict(d: Dispute) -> dict:
    return {
        "id": d.id,
        "rental_id": d.rental_id,
        "status": d.status,
        "initiated_by": d.initiated_by,
        "initiator_id": d.initiator_id,
        "reason": d.reason,
        "evidence": list(d.evidence or []),
        "raised_from": d.raised_from,
        "initiated_at": d.initiated_at.isoformat() if d.initiated_at else None,
        "decision": d.decision,
        "refund_amount": float(d.refund_amount) if d.refund_amount is not None else None,
        "owner_compensation": float(d.owner_compensation) if d.owner_compensation is not None else None,
        "resolved_by": d.resolved_by,
        "resolved_at": d.resolved_at.isoformat() if d.resolved_at else None,
    }
