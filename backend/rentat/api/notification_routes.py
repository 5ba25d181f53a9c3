from flask import Blueprint, current_app, request
from flask_jwt_extended import jwt_required

from rentat.services import notification_service
from rentat.utils.responses import success_response
from rentat.utils.security import current_user_id

bp = Blueprint("notifications", __name__)


@bp.get("")
@jwt_required()
def list_notifications():
    user_id = current_user_id()
    data = notification_service.list_notifications(user_id, limit=request.args.get("limit", 50, type=int))

    if str(current_app.config.get("NOTIFICATIONS_DEBUG", "0")) == "1":
        current_app.logger.info(
            "[notifications] GET /api/notifications user=%s -> items=%s unread=%s",
            user_id,
            len(data.get("items") or []),
            data.get("unread_count"),
        )
    return success_response(data=data, message="OK")


@bp.post("/<int:notification_id>/read")
@jwt_required()
def mark_read(notification_id: int):
    notification_service.mark_read(notification_id, current_user_id())
    return success_response(message="OK")
