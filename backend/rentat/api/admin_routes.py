from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from rentat.schemas.rental_schemas import (
    DisputeResolveSchema,
    LedgerTransitionSchema,
    PartialReleaseSchema,
    ReasonSchema,
)
from rentat.services import (
    commission_service,
    deposit_service,
    dispute_service,
    handover_service,
    ledger_service,
)
from rentat.services.unit_of_work import run_atomic
from rentat.utils.responses import success_response
from rentat.utils.security import current_user_id, require_admin, require_moderator

bp = Blueprint("admin", __name__)

dispute_resolve_schema = DisputeResolveSchema()
reason_schema = ReasonSchema()
partial_release_schema = PartialReleaseSchema()
ledger_transition_schema = LedgerTransitionSchema()


@bp.get("/disputes")
@jwt_required()
def list_open_disputes():
    require_moderator()
    return success_response(data={"items": dispute_service.list_open_disputes()})


@bp.post("/rentals/<int:rental_id>/dispute/resolve")
@jwt_required()
def resolve_dispute(rental_id: int):
    """
    Body JSON:
    {
      "decision": "Damage confirmed, partial refund",
      "refund_amount": "30.00",
      "owner_compensation": "20.00"
    }
    """
    require_moderator()
    data = dispute_resolve_schema.load(request.get_json() or {})
    result = dispute_service.resolve_dispute(
        rental_id,
        current_user_id(),
        data["decision"],
        data.get("refund_amount"),
        data.get("owner_compensation"),
    )
    return success_response(data=result, message="Dispute resolved")


@bp.get("/handovers")
@jwt_required()
def list_pending_handovers():
    require_admin()
    return success_response(data={"items": handover_service.list_pending_handovers()})


@bp.post("/rentals/<int:rental_id>/handover/override")
@jwt_required()
def override_handover(rental_id: int):
    require_admin()
    data = reason_schema.load(request.get_json() or {})
    result = handover_service.manual_override(rental_id, current_user_id(), data["reason"])
    return success_response(data=result, message="Handover overridden")


@bp.post("/rentals/<int:rental_id>/commission")
@jwt_required()
def process_commission(rental_id: int):
    require_admin()
    result = commission_service.process_commission(rental_id)
    return success_response(data=result)


@bp.post("/commissions/sweep")
@jwt_required()
def sweep_commissions():
    require_admin()
    limit = request.args.get("limit", 100, type=int)
    return success_response(data=commission_service.process_pending_commissions(limit=limit))


@bp.post("/rentals/<int:rental_id>/earnings/release")
@jwt_required()
def release_earnings(rental_id: int):
    require_admin()
    result = commission_service.release_owner_earnings(rental_id)
    return success_response(data=result, message="Earnings released")


def _transition_entry(uow, entry_id: int, status: str) -> dict:
    return ledger_service.entry_to_dict(ledger_service.transition(entry_id, status))


@bp.post("/ledger/<int:entry_id>/availability")
@jwt_required()
def transition_ledger_entry(entry_id: int):
    require_admin()
    data = ledger_transition_schema.load(request.get_json() or {})
    entry = run_atomic(_transition_entry, entry_id, data["availability_status"])
    return success_response(data=entry)


@bp.post("/deposits/<int:deposit_id>/release")
@jwt_required()
def release_deposit(deposit_id: int):
    require_admin()
    data = reason_schema.load(request.get_json() or {})
    result = deposit_service.release_deposit(deposit_id, current_user_id(), data["reason"])
    return success_response(data=result, message="Deposit released")


@bp.post("/deposits/<int:deposit_id>/release-partial")
@jwt_required()
def release_partial_deposit(deposit_id: int):
    require_admin()
    data = partial_release_schema.load(request.get_json() or {})
    result = deposit_service.release_partial_deposit(
        deposit_id,
        current_user_id(),
        data["amount"],
        data["reason"],
    )
    return success_response(data=result, message="Partial refund processed")


@bp.post("/deposits/<int:deposit_id>/hold")
@jwt_required()
def hold_deposit(deposit_id: int):
    require_admin()
    data = reason_schema.load(request.get_json() or {})
    result = deposit_service.hold_deposit(deposit_id, current_user_id(), data["reason"])
    return success_response(data=result, message="Deposit held")
