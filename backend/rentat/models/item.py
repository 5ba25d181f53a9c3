from datetime import datetime

from rentat.extensions import db


class Item(db.Model):
    __tablename__ = "items"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)

    owner_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    title = db.Column(db.String(200), nullable=False)
    category = db.Column(db.String(50), nullable=False, default="other")

    daily_rate = db.Column(db.Numeric(10, 2), nullable=False)
    weekly_rate = db.Column(db.Numeric(10, 2), nullable=True)
    monthly_rate = db.Column(db.Numeric(10, 2), nullable=True)
    security_deposit = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    delivery_fee = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="EGP")

    is_available = db.Column(db.Boolean, nullable=False, default=True)

    # Image URLs come from object storage and are stored opaquely.
    images = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    owner = db.relationship("User", lazy="joined")

    def __repr__(self) -> str:
        return f"<Item id={self.id} owner={self.owner_id}>"
