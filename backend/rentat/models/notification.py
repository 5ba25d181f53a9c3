from datetime import datetime

from rentat.extensions import db


class Notification(db.Model):
	__tablename__ = "notifications"

	id = db.Column(db.Integer, primary_key=True, autoincrement=True)
	user_id = db.Column(
		db.Integer,
		db.ForeignKey("users.id", ondelete="RESTRICT"),
		nullable=False,
		index=True,
	)

	event_type = db.Column(db.String(60), nullable=False)
	message = db.Column(db.String(300), nullable=False)
	is_read = db.Column(db.Boolean, default=False, nullable=False, index=True)
	created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False, index=True)
	event_key = db.Column(db.String(160), nullable=True, index=True)
	payload = db.Column(db.JSON, nullable=True)

	def __repr__(self) -> str:
		return f"<Notification id={self.id} user={self.user_id} type={self.event_type} read={self.is_read}>"
