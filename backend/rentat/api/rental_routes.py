from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from rentat.schemas.rental_schemas import (
    CancelSchema,
    DisputeRaiseSchema,
    OwnerDecisionSchema,
    RentalRequestSchema,
)
from rentat.services import dispute_service, handover_service, rental_service
from rentat.utils.responses import success_response
from rentat.utils.security import current_roles, current_user_id, is_admin

bp = Blueprint("rentals", __name__)

rental_request_schema = RentalRequestSchema()
owner_decision_schema = OwnerDecisionSchema()
cancel_schema = CancelSchema()
dispute_raise_schema = DisputeRaiseSchema()


@bp.post("")
@jwt_required()
def request_rental():
    """
    Request an item for a date range.
    Body JSON:
    {
      "item_id": 1,
      "start": "2026-03-10T10:00:00",
      "end": "2026-03-12T10:00:00",
      "delivery_method": "pickup"
    }
    """
    user_id = current_user_id()
    data = rental_request_schema.load(request.get_json() or {})
    rental = rental_service.request_rental(
        user_id,
        data["item_id"],
        data["start"],
        data["end"],
        delivery_method=data.get("delivery_method"),
        message=data.get("message"),
    )
    return success_response(data=rental, message="Rental requested", status_code=201)


@bp.get("/<int:rental_id>")
@jwt_required()
def get_rental(rental_id: int):
    data = rental_service.get_rental(rental_id, current_user_id(), current_roles())
    return success_response(data=data)


@bp.post("/<int:rental_id>/approve")
@jwt_required()
def approve_rental(rental_id: int):
    data = owner_decision_schema.load(request.get_json(silent=True) or {})
    rental = rental_service.approve(rental_id, current_user_id(), data.get("message"))
    return success_response(data=rental, message="Rental approved")


@bp.post("/<int:rental_id>/reject")
@jwt_required()
def reject_rental(rental_id: int):
    data = owner_decision_schema.load(request.get_json(silent=True) or {})
    rental = rental_service.reject(rental_id, current_user_id(), data.get("message"))
    return success_response(data=rental, message="Rental rejected")


@bp.post("/<int:rental_id>/handover/confirm")
@jwt_required()
def confirm_handover(rental_id: int):
    """Owner or renter confirms the handover; the second confirmation activates."""
    result = handover_service.confirm_handover(rental_id, current_user_id())
    message = "Rental is now active" if result["bothConfirmed"] else "Waiting for the other party"
    return success_response(data=result, message=message)


@bp.post("/<int:rental_id>/completion/confirm")
@jwt_required()
def confirm_completion(rental_id: int):
    result = rental_service.confirm_completion(rental_id, current_user_id())
    message = "Rental completed" if result["bothConfirmed"] else "Waiting for the other party"
    return success_response(data=result, message=message)


@bp.post("/<int:rental_id>/cancel")
@jwt_required()
def cancel_rental(rental_id: int):
    data = cancel_schema.load(request.get_json(silent=True) or {})
    rental = rental_service.cancel(
        rental_id,
        current_user_id(),
        data.get("reason"),
        is_admin=is_admin(),
    )
    return success_response(data=rental, message="Rental cancelled")


@bp.post("/<int:rental_id>/disputes")
@jwt_required()
def raise_dispute(rental_id: int):
    """
    Body JSON:
    {
      "reason": "Item returned damaged",
      "evidence": ["https://storage.example.com/evidence/1.jpg"]
    }
    """
    data = dispute_raise_schema.load(request.get_json() or {})
    dispute = dispute_service.raise_dispute(
        rental_id,
        current_user_id(),
        data["reason"],
        data.get("evidence") or [],
    )
    return success_response(data=dispute, message="Dispute raised", status_code=201)
