from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from rentat.extensions import db
from rentat.models.notification import Notification
from rentat.utils.errors import NotFound


MESSAGES = {
	"rental_requested": "New rental request.",
	"rental_approved": "Your rental request has been approved. Complete payment to confirm.",
	"rental_rejected": "Your rental request has been declined.",
	"payment_succeeded": "Payment received. Arrange the handover.",
	"payment_failed": "Your rental payment could not be processed. Please try again.",
	"handover_confirmed": "The other party confirmed the handover.",
	"rental_activated": "Both parties confirmed the handover. The rental is now active.",
	"completion_confirmed": "The other party confirmed the return.",
	"rental_completed": "Rental completed.",
	"rental_cancelled": "The rental was cancelled.",
	"dispute_raised": "A dispute has been raised for your rental.",
	"dispute_resolved": "The dispute for your rental has been resolved.",
	"deposit_released": "Your security deposit has been released.",
	"deposit_partial_refund": "A partial refund of your security deposit has been processed.",
	"deposit_held": "Your security deposit is being held.",
	"earnings_available": "Your rental earnings are now available.",
	"withdrawal_requested": "Withdrawal requested.",
}


def _debug() -> bool:
	return str(current_app.config.get("NOTIFICATIONS_DEBUG", "0")) == "1"


def _event_key(user_id: int, event_type: str, payload: dict) -> str | None:
	rental_id = payload.get("rental_id")
	deposit_id = payload.get("deposit_id")
	if rental_id is not None:
		return f"{event_type}:rental:{rental_id}:{user_id}"
	if deposit_id is not None:
		return f"{event_type}:deposit:{deposit_id}:{user_id}"
	return None


def create_notification(user_id: int, event_type: str, payload: dict | None = None) -> Notification | None:
	payload = dict(payload or {})
	t = (event_type or "").strip()
	if not t:
		return None

	message = str(payload.pop("message", "") or MESSAGES.get(t) or t)[:300]
	key = payload.pop("event_key", None) or _event_key(user_id, t, payload)

	try:
		if key:
			# Retried calls must not spam the user.
			exists = Notification.query.filter_by(user_id=user_id, event_key=key).first()
			if exists is not None:
				if _debug():
					current_app.logger.info("[notifications] dedupe skip user=%s type=%s key=%s", user_id, t, key)
				return exists

		n = Notification(user_id=user_id, event_type=t, message=message, event_key=key, payload=payload or None)
		db.session.add(n)
		db.session.commit()
		if _debug():
			current_app.logger.info("[notifications] created id=%s user=%s type=%s", n.id, user_id, t)
		return n
	except SQLAlchemyError:
		db.session.rollback()
		raise


def list_notifications(user_id: int, limit: int = 50) -> dict:
	q = (
		Notification.query.filter_by(user_id=user_id)
		.order_by(Notification.created_at.desc(), Notification.id.desc())
		.limit(max(1, min(int(limit), 100)))
	)
	items = q.all()
	unread = Notification.query.filter_by(user_id=user_id, is_read=False).count()

	return {
		"items": [
			{
				"id": n.id,
				"event_type": n.event_type,
				"message": n.message,
				"is_read": bool(n.is_read),
				"created_at": n.created_at.isoformat() if n.created_at else None,
				"payload": n.payload,
			}
			for n in items
		],
		"unread_count": int(unread),
	}


def mark_read(notification_id: int, user_id: int) -> None:
	n = db.session.get(Notification, notification_id)
	if not n or n.user_id != user_id:
		raise NotFound("notification", notification_id)

	if not n.is_read:
		n.is_read = True
		db.session.commit()
		if _debug():
			current_app.logger.info("[notifications] marked read id=%s user=%s", notification_id, user_id)
