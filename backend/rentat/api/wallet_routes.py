from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from rentat.schemas.rental_schemas import WithdrawalSchema
from rentat.services import ledger_service, wallet_service
from rentat.utils.responses import success_response
from rentat.utils.security import current_user_id

bp = Blueprint("wallet", __name__)

withdrawal_schema = WithdrawalSchema()


@bp.get("/balance")
@jwt_required()
def get_balance():
    return success_response(data=wallet_service.get_balance(current_user_id()))


@bp.get("/transactions")
@jwt_required()
def list_transactions():
    """
    Query params:
    - ?availability=PENDING|LOCKED|AVAILABLE
    - ?limit=50
    """
    availability = request.args.get("availability")
    limit = request.args.get("limit", 50, type=int)
    data = ledger_service.list_transactions(current_user_id(), availability=availability, limit=limit)
    return success_response(data={"items": data})


@bp.post("/withdrawals")
@jwt_required()
def request_withdrawal():
    data = withdrawal_schema.load(request.get_json() or {})
    result = wallet_service.request_withdrawal(current_user_id(), data["amount"], data["method"])
    return success_response(data=result, message="Withdrawal requested", status_code=201)
